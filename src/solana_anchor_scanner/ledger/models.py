"""
Ledger Data Model

Plain, immutable views of what a ledger client returns: signature listings,
transactions with their top-level and inner instructions, blocks, and
program-owned accounts. Instruction data is always raw bytes; decoding is the
scanner's job, not the client's.

Based on: https://solana.com/docs/rpc/http
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..core.records import InstructionOrigin


@dataclass(frozen=True)
class LedgerInstruction:
    """One instruction as stored in a transaction, with addresses resolved."""
    program_id: str                # Program invoked
    accounts: Tuple[str, ...]      # Account addresses, in the order passed
    data: bytes                    # Opaque instruction data

    def __str__(self) -> str:
        return f"Instruction({self.program_id[:8]}..., {len(self.accounts)} accounts, {len(self.data)} bytes)"


@dataclass(frozen=True)
class RawInstruction:
    """
    An instruction occurrence ready for decoding.

    `position` is the execution-order index inside the transaction: each
    top-level instruction is followed by the inner instructions it produced.
    """
    program_id: str
    accounts: Tuple[str, ...]
    data: bytes
    origin: InstructionOrigin
    position: int

    @property
    def is_inner(self) -> bool:
        return self.origin.is_inner


@dataclass(frozen=True)
class SignatureInfo:
    """One entry of a signature listing (getSignaturesForAddress)."""
    signature: str
    slot: int
    succeeded: bool = True
    block_time: Optional[int] = None
    confirmation_status: Optional[str] = None   # processed | confirmed | finalized

    @classmethod
    def from_rpc_item(cls, item: Dict[str, Any]) -> "SignatureInfo":
        return cls(
            signature=item["signature"],
            slot=int(item["slot"]),
            succeeded=item.get("err") is None,
            block_time=item.get("blockTime"),
            confirmation_status=item.get("confirmationStatus"),
        )


@dataclass(frozen=True)
class TransactionDetail:
    """
    A fetched transaction.

    `inner_instructions` pairs the index of a top-level instruction with the
    instructions it invoked, in execution order.
    """
    signature: str
    slot: int
    instructions: Tuple[LedgerInstruction, ...]
    inner_instructions: Tuple[Tuple[int, Tuple[LedgerInstruction, ...]], ...] = ()
    succeeded: bool = True
    block_time: Optional[int] = None
    log_messages: Tuple[str, ...] = ()

    def inner_for(self, parent_index: int) -> List[LedgerInstruction]:
        """All inner instructions produced by one top-level instruction."""
        result: List[LedgerInstruction] = []
        for index, group in self.inner_instructions:
            if index == parent_index:
                result.extend(group)
        return result


@dataclass(frozen=True)
class BlockDetail:
    """A fetched block: every transaction in the slot, in ledger order."""
    slot: int
    transactions: Tuple[TransactionDetail, ...]
    block_time: Optional[int] = None
    blockhash: Optional[str] = None
    parent_slot: Optional[int] = None


@dataclass(frozen=True)
class ProgramAccount:
    """An account owned by a program (getProgramAccounts)."""
    address: str
    owner: str
    data: bytes
    lamports: int = 0
    executable: bool = False
