"""
Instruction extraction.

Flattens a transaction into execution order: each top-level instruction is
followed by the inner instructions it invoked, before the next top-level one.
"""

from typing import List

from ..core.records import InstructionOrigin
from ..ledger.models import RawInstruction, TransactionDetail


def extract_instructions(tx: TransactionDetail) -> List[RawInstruction]:
    """
    All instructions of `tx`, top-level and inner, in execution order.

    `position` numbers the entries 0..n-1 across the whole transaction, so
    (signature, position) identifies one instruction occurrence.
    """
    result: List[RawInstruction] = []
    for index, instruction in enumerate(tx.instructions):
        result.append(RawInstruction(
            program_id=instruction.program_id,
            accounts=instruction.accounts,
            data=instruction.data,
            origin=InstructionOrigin.top_level(),
            position=len(result),
        ))
        for inner in tx.inner_for(index):
            result.append(RawInstruction(
                program_id=inner.program_id,
                accounts=inner.accounts,
                data=inner.data,
                origin=InstructionOrigin.inner(index),
                position=len(result),
            ))
    return result
