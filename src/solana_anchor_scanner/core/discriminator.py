"""
Anchor Discriminators

Every Anchor instruction, account and event is tagged with an 8-byte
discriminator: the first 8 bytes of SHA-256 over "<namespace>:<name>".

    global:set_favorites  -> instruction set_favorites
    account:Favorites     -> account type Favorites
    event:MyEvent         -> event MyEvent

The resolver keeps one exact-match index per namespace so an instruction prefix
can never be mistaken for an account or event that happens to share the bytes.
"""

import hashlib
import re
from enum import Enum
from typing import Dict, Generic, Iterator, Optional, Tuple, TypeVar

from ..errors import SchemaLoadError, TruncatedBuffer


DISCRIMINATOR_SIZE = 8


class Namespace(Enum):
    """Schema namespaces and the seed prefix each one hashes with."""
    INSTRUCTION = "global"
    ACCOUNT = "account"
    EVENT = "event"
    STATE = "state"

    @property
    def prefix(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value) -> "Namespace":
        """Accept a Namespace, its member name ("instruction") or its seed prefix ("global")."""
        if isinstance(value, Namespace):
            return value
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if lowered in (member.name.lower(), member.value):
                    return member
        raise ValueError(f"Unknown namespace: {value!r}")


def derive(namespace, name: str) -> bytes:
    """
    Compute the canonical discriminator for `name` in `namespace`.

    >>> list(derive("instruction", "set_favorites"))
    [211, 137, 87, 135, 161, 224, 187, 120]
    """
    seed = f"{Namespace.parse(namespace).prefix}:{name}"
    return hashlib.sha256(seed.encode("utf-8")).digest()[:DISCRIMINATOR_SIZE]


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake_case(name: str) -> str:
    """setFavorites -> set_favorites (older IDLs store camelCase instruction names)."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def candidate_names(namespace: Namespace, name: str) -> Tuple[str, ...]:
    """Names that may legitimately have produced an IDL discriminator."""
    if namespace is Namespace.INSTRUCTION:
        snake = snake_case(name)
        return (name,) if snake == name else (name, snake)
    return (name,)


def verify(namespace: Namespace, name: str, discriminator: bytes) -> bool:
    """Check an explicit discriminator against the derived value."""
    return any(derive(namespace, candidate) == bytes(discriminator)
               for candidate in candidate_names(namespace, name))


def extract_discriminator(data: bytes) -> bytes:
    """Return the 8-byte prefix of instruction or account data."""
    if len(data) < DISCRIMINATOR_SIZE:
        raise TruncatedBuffer(DISCRIMINATOR_SIZE, len(data), 0, path="discriminator")
    return bytes(data[:DISCRIMINATOR_SIZE])


def format_discriminator(discriminator: bytes) -> str:
    """Human-readable form matching the IDL array notation: [211, 137, ...]."""
    return f"[{', '.join(str(b) for b in discriminator)}]"


T = TypeVar("T")


class DiscriminatorIndex(Generic[T]):
    """
    Exact-match lookup from 8 raw bytes to a schema entry, one map per namespace.

    Resolution is a single dict lookup, so the common case of "this instruction
    belongs to something else" costs almost nothing.
    """

    def __init__(self):
        self._by_namespace: Dict[Namespace, Dict[bytes, T]] = {ns: {} for ns in Namespace}

    def add(self, namespace: Namespace, discriminator: bytes, entry: T) -> None:
        """
        Register an entry.

        Raises:
            SchemaLoadError: if the discriminator is malformed or already taken
        """
        key = bytes(discriminator)
        if len(key) != DISCRIMINATOR_SIZE:
            raise SchemaLoadError(
                f"Discriminator must be {DISCRIMINATOR_SIZE} bytes, got {len(key)}"
            )
        table = self._by_namespace[namespace]
        if key in table:
            raise SchemaLoadError(
                f"Duplicate {namespace.name.lower()} discriminator {format_discriminator(key)}"
            )
        table[key] = entry

    def resolve(self, namespace: Namespace, prefix: bytes) -> Optional[T]:
        return self._by_namespace[namespace].get(bytes(prefix[:DISCRIMINATOR_SIZE]))

    def items(self, namespace: Namespace) -> Iterator[Tuple[bytes, T]]:
        return iter(self._by_namespace[namespace].items())

    def __len__(self) -> int:
        return sum(len(table) for table in self._by_namespace.values())
