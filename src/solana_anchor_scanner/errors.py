"""
Scanner Error Taxonomy

Every failure the scanner can produce falls into one of three families:
- Schema errors: the IDL document itself is unusable (fatal at startup)
- Decode errors: one instruction's bytes do not fit its schema (per-instruction)
- Ledger errors: the fetch layer failed (retried, skipped or fatal)

The scanning engine decides what to do purely from the class of the error,
so ledger clients must translate their own failures into these classes.
"""

from typing import Any, Optional


class ScannerError(Exception):
    """Base class for all scanner errors."""


class SchemaLoadError(ScannerError):
    """The schema document is malformed or internally inconsistent."""


class EncodeError(ScannerError, ValueError):
    """A value does not fit the type it is being encoded as."""


class DecodeError(ScannerError):
    """
    Raw bytes could not be decoded against a schema.

    Attributes:
        schema_name: Name of the schema entry being decoded, once known
        path: Dotted field path where decoding failed (e.g. "args.color")
    """

    def __init__(self, message: str, *, path: str = "", schema_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.schema_name = schema_name

    def __str__(self) -> str:
        location = ""
        if self.schema_name:
            location = f"{self.schema_name}"
        if self.path:
            location = f"{location}.{self.path}" if location else self.path
        return f"{self.message} (at {location})" if location else self.message


class UnknownDiscriminator(DecodeError):
    """No schema entry matches the 8-byte prefix (expected, non-fatal)."""

    def __init__(self, namespace: str, prefix: bytes):
        super().__init__(f"Unknown {namespace} discriminator {list(prefix)}")
        self.namespace = namespace
        self.prefix = bytes(prefix)


class TruncatedBuffer(DecodeError):
    """The buffer ended before the schema's layout was satisfied."""

    def __init__(self, needed: int, available: int, offset: int, *, path: str = ""):
        super().__init__(
            f"Buffer truncated: need {needed} bytes at offset {offset}, {available} available",
            path=path,
        )
        self.needed = needed
        self.available = available
        self.offset = offset


class InvalidEncoding(DecodeError):
    """The bytes are present but not a valid encoding (bad UTF-8, bad tag, ...)."""


class LedgerError(ScannerError):
    """Base class for failures reported by a ledger client."""


class RpcTransientError(LedgerError):
    """Network trouble, timeouts, rate limits: worth retrying."""


class RpcSkippedItem(LedgerError):
    """The ledger permanently has nothing at this position (skipped or pruned slot)."""

    def __init__(self, message: str, position: Any = None):
        super().__init__(message)
        self.position = position


class RpcFatalError(LedgerError):
    """Unrecoverable ledger failure; the caller decides whether to restart."""


class SinkTimeout(ScannerError):
    """The record sink did not accept a record within its time budget."""
