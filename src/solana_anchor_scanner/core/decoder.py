"""
Instruction, Account and Event Decoder

Combines the registry (discriminator -> schema) with the Borsh codec to turn
raw Anchor payloads into DecodedRecords:

    [ 8-byte discriminator | Borsh-encoded fields ... ]

Decoding is pure: the same bytes always produce the same record, and nothing
is logged or counted here. Callers decide whether an error matters; an
UnknownDiscriminator in particular just means "not one of ours".
"""

import base64
import binascii
import re
from typing import Any, Iterator, List, Mapping, Optional, Tuple

from ..errors import DecodeError, TruncatedBuffer, UnknownDiscriminator
from .discriminator import DISCRIMINATOR_SIZE, Namespace
from .records import DecodedRecord
from .schema import SchemaRegistry


_INVOKE = re.compile(r"^Program (\w+) invoke \[(\d+)\]$")
_EXIT = re.compile(r"^Program (\w+) (success|failed.*)$")
PROGRAM_DATA_PREFIX = "Program data: "


class Decoder:
    """
    Decoder bound to one program's schema registry.

    Example:
        decoder = Decoder(SchemaRegistry.from_file("favorites.json"))
        data = decoder.encode("instruction", "set_favorites", {"number": 42, "color": "blue"})
        record = decoder.decode("instruction", data)
        assert record.fields == {"number": 42, "color": "blue"}
    """

    def __init__(self, registry: SchemaRegistry):
        self.registry = registry

    @property
    def program_id(self) -> Optional[str]:
        return self.registry.program_id

    def decode(self, namespace, raw: bytes) -> DecodedRecord:
        """
        Decode discriminator-prefixed bytes.

        Raises:
            TruncatedBuffer: fewer than 8 bytes, or payload shorter than the layout
            UnknownDiscriminator: no entry in `namespace` has this prefix
            InvalidEncoding: payload bytes are not a valid encoding
        """
        ns = Namespace.parse(namespace)
        raw = bytes(raw)
        if len(raw) < DISCRIMINATOR_SIZE:
            raise TruncatedBuffer(DISCRIMINATOR_SIZE, len(raw), 0, path="discriminator")

        entry = self.registry.resolve(ns, raw)
        if entry is None:
            raise UnknownDiscriminator(ns.name.lower(), raw[:DISCRIMINATOR_SIZE])

        anomalies: List[str] = []
        try:
            fields, _ = self.registry.codec.decode_fields(entry.fields, raw, DISCRIMINATOR_SIZE, anomalies)
        except DecodeError as e:
            e.schema_name = entry.name
            raise

        return DecodedRecord(
            schema_name=entry.name,
            namespace=ns,
            fields=fields,
            anomalies=tuple(anomalies),
            account_names=entry.account_names,
        )

    def try_decode(self, namespace, raw: bytes) -> Optional[DecodedRecord]:
        """Like decode(), but returns None when the prefix is not ours."""
        ns = Namespace.parse(namespace)
        if len(raw) >= DISCRIMINATOR_SIZE and self.registry.resolve(ns, raw) is None:
            return None
        return self.decode(ns, raw)

    def decode_instruction(self, data: bytes) -> DecodedRecord:
        return self.decode(Namespace.INSTRUCTION, data)

    def decode_account(self, data: bytes) -> DecodedRecord:
        return self.decode(Namespace.ACCOUNT, data)

    def decode_event(self, data: bytes) -> DecodedRecord:
        return self.decode(Namespace.EVENT, data)

    def encode(self, namespace, name: str, values: Mapping[str, Any]) -> bytes:
        """
        Encode `values` for the named entry, discriminator first.

        Raises:
            KeyError: if there is no such entry
            EncodeError: if a value does not fit its field type
        """
        entry = self.registry.get(namespace, name)
        return entry.discriminator + self.registry.codec.encode_fields(entry.fields, values)

    # Events

    def program_data(self, logs: List[str]) -> Iterator[Tuple[int, bytes]]:
        """
        Yield (log index, payload) for every "Program data:" line emitted while
        this program was the innermost executing program.

        Anchor's emit! writes base64(discriminator + event) on such lines; the
        invoke/success lines around them tell us which program wrote them.
        """
        stack: List[str] = []
        for index, line in enumerate(logs or []):
            invoke = _INVOKE.match(line)
            if invoke:
                stack.append(invoke.group(1))
                continue
            if _EXIT.match(line):
                if stack:
                    stack.pop()
                continue
            if not line.startswith(PROGRAM_DATA_PREFIX):
                continue
            current = stack[-1] if stack else None
            if self.program_id is not None and current != self.program_id:
                continue
            for chunk in line[len(PROGRAM_DATA_PREFIX):].split():
                try:
                    yield index, base64.b64decode(chunk, validate=True)
                except binascii.Error:
                    continue

    def decode_logs(self, logs: List[str]) -> List[DecodedRecord]:
        """
        Decode every event of this program found in a transaction's logs.

        Payloads that do not decode are skipped and the rest are still
        returned. Use program_data() with decode() to see the errors.
        """
        records = []
        for _, payload in self.program_data(logs):
            try:
                record = self.try_decode(Namespace.EVENT, payload)
            except DecodeError:
                continue
            if record is not None:
                records.append(record)
        return records


def decode(registry: SchemaRegistry, namespace, raw: bytes) -> DecodedRecord:
    """One-shot decode without keeping a Decoder around."""
    return Decoder(registry).decode(namespace, raw)


def encode(registry: SchemaRegistry, namespace, name: str, values: Mapping[str, Any]) -> bytes:
    """One-shot encode without keeping a Decoder around."""
    return Decoder(registry).encode(namespace, name, values)
