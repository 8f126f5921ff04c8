"""
Decoded Records

A DecodedRecord is what the scanner hands to its sink: the schema name, the
decoded field values, and where on the ledger the bytes came from. Records are
immutable and carry no references back into the engine.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from .discriminator import Namespace
from .types import EnumValue


@dataclass(frozen=True)
class InstructionOrigin:
    """
    Where an instruction sits in its transaction.

    Top-level instructions have no parent; inner instructions (invoked by a
    program while executing another instruction) record the index of the
    top-level instruction that produced them.
    """
    parent_index: Optional[int] = None

    @classmethod
    def top_level(cls) -> "InstructionOrigin":
        return cls(None)

    @classmethod
    def inner(cls, parent_index: int) -> "InstructionOrigin":
        return cls(parent_index)

    @property
    def is_inner(self) -> bool:
        return self.parent_index is not None

    def __str__(self) -> str:
        return f"inner({self.parent_index})" if self.is_inner else "top_level"


@dataclass(frozen=True)
class RecordContext:
    """Ledger coordinates of a decoded record."""
    slot: int
    signature: str
    program_id: str
    position: int                          # execution-order index inside the transaction
    origin: InstructionOrigin = InstructionOrigin()
    block_time: Optional[int] = None       # Unix seconds, when the ledger knows it
    accounts: Tuple[str, ...] = ()         # account addresses passed to the instruction

    @property
    def is_inner(self) -> bool:
        return self.origin.is_inner


@dataclass(frozen=True)
class DecodedRecord:
    """
    A successfully decoded instruction, account or event.

    `anomalies` lists soft irregularities found while decoding (for example a
    bool stored as 0x02); the values are still usable but worth surfacing.
    """
    schema_name: str
    namespace: Namespace
    fields: Dict[str, Any]
    anomalies: Tuple[str, ...] = ()
    context: Optional[RecordContext] = None
    account_names: Tuple[str, ...] = field(default=(), compare=False)

    def with_context(self, context: RecordContext) -> "DecodedRecord":
        return replace(self, context=context)

    @property
    def key(self) -> Tuple[str, int, str]:
        """Identity of the record on the ledger: (signature, position, namespace)."""
        if self.context is None:
            raise ValueError("Record has no ledger context")
        return self.context.signature, self.context.position, self.namespace.name

    @property
    def named_accounts(self) -> Dict[str, str]:
        """Map the instruction's declared account names to the addresses it was given."""
        if self.context is None:
            return {}
        return dict(zip(self.account_names, self.context.accounts))

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (bytes as hex, enums as {variant: fields})."""
        result: Dict[str, Any] = {
            "schema": self.schema_name,
            "namespace": self.namespace.name.lower(),
            "fields": _jsonable(self.fields),
        }
        if self.anomalies:
            result["anomalies"] = list(self.anomalies)
        if self.context is not None:
            ctx = self.context
            result.update({
                "slot": ctx.slot,
                "signature": ctx.signature,
                "program_id": ctx.program_id,
                "position": ctx.position,
                "origin": str(ctx.origin),
                "is_inner": ctx.is_inner,
                "block_time": ctx.block_time,
                "accounts": list(ctx.accounts),
            })
        return result


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, EnumValue):
        return {value.variant: _jsonable(value.fields)}
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
