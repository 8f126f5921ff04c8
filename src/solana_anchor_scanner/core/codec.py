"""
Borsh Binary Codec

Anchor programs serialize instruction arguments and account state with Borsh:
a packed, order-significant, little-endian format with no padding and no
alignment. The layout is entirely driven by the schema:

    integers       exact width, little-endian (u128/i128 are 16 bytes)
    bool           1 byte, 0 = false, nonzero = true
    string         u32 byte length + UTF-8 bytes
    [T; N]         N elements back to back
    vec<T>         u32 element count + elements
    option<T>      1 presence byte (0/1) + T if present
    struct         fields in declared order
    enum           u8 variant tag + variant fields

Python integers are arbitrary precision, so 64- and 128-bit values round-trip
exactly.

Based on: https://borsh.io and Anchor's BorshCoder
"""

import struct
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import base58

from ..errors import EncodeError, InvalidEncoding, TruncatedBuffer
from .types import (
    FLOAT_TYPES, INTEGER_TYPES, PUBKEY_LENGTH,
    AliasDef, ArrayType, DefinedType, EnumDef, EnumValue, Field, IdlType,
    OptionType, PrimitiveType, StructDef, TypeDef, VecType,
)


LENGTH_PREFIX = 4   # u32 prefix for strings, bytes and vecs
ENUM_TAG = 1        # u8 variant tag


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _is_u8(idl_type: IdlType) -> bool:
    return isinstance(idl_type, PrimitiveType) and idl_type.name == "u8"


class BorshCodec:
    """
    Schema-driven Borsh encoder/decoder.

    The codec is stateless apart from the table of named types used to
    resolve `defined` references, so one instance can be shared freely.
    """

    def __init__(self, types: Optional[Mapping[str, TypeDef]] = None):
        self.types: Dict[str, TypeDef] = dict(types or {})

    # Decoding

    def decode_fields(self, fields: Sequence[Field], buffer: bytes, offset: int = 0,
                      anomalies: Optional[List[str]] = None,
                      path: str = "") -> Tuple[Dict[str, Any], int]:
        """
        Decode an ordered field list starting at `offset`.

        Args:
            fields: Schema fields in declaration order
            buffer: Raw bytes
            offset: Where the first field starts
            anomalies: Optional list that collects soft anomalies
                       (e.g. a bool byte that is neither 0 nor 1)
            path: Field path prefix used in error messages

        Returns:
            Tuple of (field name -> value, offset after the last field)

        Raises:
            TruncatedBuffer: if the buffer ends early
            InvalidEncoding: if bytes are present but invalid
        """
        if not isinstance(buffer, bytes):
            buffer = bytes(buffer)
        values: Dict[str, Any] = {}
        for schema_field in fields:
            values[schema_field.name], offset = self.decode_type(
                schema_field.type, buffer, offset, anomalies, _join(path, schema_field.name)
            )
        return values, offset

    def decode_type(self, idl_type: IdlType, buffer: bytes, offset: int,
                    anomalies: Optional[List[str]] = None, path: str = "") -> Tuple[Any, int]:
        """Decode a single value of `idl_type` at `offset`."""
        if isinstance(idl_type, PrimitiveType):
            return self._decode_primitive(idl_type.name, buffer, offset, anomalies, path)

        if isinstance(idl_type, ArrayType):
            if _is_u8(idl_type.element):
                return self._take(buffer, offset, idl_type.length, path), offset + idl_type.length
            return self._decode_sequence(idl_type.element, idl_type.length, buffer, offset, anomalies, path)

        if isinstance(idl_type, VecType):
            count, offset = self._read_length(buffer, offset, path)
            if _is_u8(idl_type.element):
                return self._take(buffer, offset, count, path), offset + count
            return self._decode_sequence(idl_type.element, count, buffer, offset, anomalies, path)

        if isinstance(idl_type, OptionType):
            flag = self._take(buffer, offset, 1, path)[0]
            offset += 1
            if flag == 0:
                return None, offset
            if flag != 1:
                raise InvalidEncoding(f"Option flag must be 0 or 1, got {flag}", path=path)
            return self.decode_type(idl_type.element, buffer, offset, anomalies, path)

        if isinstance(idl_type, DefinedType):
            return self._decode_defined(self.lookup(idl_type.name), buffer, offset, anomalies, path)

        raise TypeError(f"Not an IDL type: {idl_type!r}")

    def _decode_primitive(self, name: str, buffer: bytes, offset: int,
                          anomalies: Optional[List[str]], path: str) -> Tuple[Any, int]:
        if name in INTEGER_TYPES:
            width, signed = INTEGER_TYPES[name]
            raw = self._take(buffer, offset, width, path)
            return int.from_bytes(raw, "little", signed=signed), offset + width

        if name in FLOAT_TYPES:
            width, fmt = FLOAT_TYPES[name]
            raw = self._take(buffer, offset, width, path)
            return struct.unpack(fmt, raw)[0], offset + width

        if name == "bool":
            byte = self._take(buffer, offset, 1, path)[0]
            if byte not in (0, 1) and anomalies is not None:
                anomalies.append(f"{path or 'bool'}: bool byte {byte:#04x} read as true")
            return byte != 0, offset + 1

        if name == "string":
            length, offset = self._read_length(buffer, offset, path)
            raw = self._take(buffer, offset, length, path)
            try:
                return raw.decode("utf-8"), offset + length
            except UnicodeDecodeError as e:
                raise InvalidEncoding(f"String is not valid UTF-8: {e.reason}", path=path) from e

        if name == "bytes":
            length, offset = self._read_length(buffer, offset, path)
            return self._take(buffer, offset, length, path), offset + length

        if name == "pubkey":
            raw = self._take(buffer, offset, PUBKEY_LENGTH, path)
            return base58.b58encode(raw).decode("ascii"), offset + PUBKEY_LENGTH

        raise TypeError(f"Unknown primitive {name!r}")

    def _decode_sequence(self, element: IdlType, count: int, buffer: bytes, offset: int,
                         anomalies: Optional[List[str]], path: str) -> Tuple[List[Any], int]:
        # Fail fast on absurd counts instead of looping until the buffer runs out
        minimum = count * self.min_size(element)
        if minimum > len(buffer) - offset:
            raise TruncatedBuffer(minimum, max(len(buffer) - offset, 0), offset, path=path)

        items = []
        for index in range(count):
            item, offset = self.decode_type(element, buffer, offset, anomalies, f"{path}[{index}]")
            items.append(item)
        return items, offset

    def _decode_defined(self, typedef: TypeDef, buffer: bytes, offset: int,
                        anomalies: Optional[List[str]], path: str) -> Tuple[Any, int]:
        body = typedef.body
        if isinstance(body, StructDef):
            return self.decode_fields(body.fields, buffer, offset, anomalies, path)
        if isinstance(body, AliasDef):
            return self.decode_type(body.target, buffer, offset, anomalies, path)
        if not isinstance(body, EnumDef):
            raise TypeError(f"Not a type definition body: {body!r}")

        tag = self._take(buffer, offset, ENUM_TAG, path)[0]
        offset += ENUM_TAG
        if tag >= len(body.variants):
            raise InvalidEncoding(
                f"Enum {typedef.name} has no variant with tag {tag}", path=path
            )
        variant = body.variants[tag]
        fields, offset = self.decode_fields(
            variant.fields, buffer, offset, anomalies, _join(path, variant.name)
        )
        return EnumValue(variant.name, fields), offset

    @staticmethod
    def _take(buffer: bytes, offset: int, size: int, path: str) -> bytes:
        end = offset + size
        if end > len(buffer):
            raise TruncatedBuffer(size, max(len(buffer) - offset, 0), offset, path=path)
        return buffer[offset:end]

    def _read_length(self, buffer: bytes, offset: int, path: str) -> Tuple[int, int]:
        raw = self._take(buffer, offset, LENGTH_PREFIX, path)
        return int.from_bytes(raw, "little"), offset + LENGTH_PREFIX

    # Encoding

    def encode_fields(self, fields: Sequence[Field], values: Mapping[str, Any],
                      path: str = "") -> bytes:
        """
        Encode `values` (a mapping keyed by field name) in field order.

        Raises:
            EncodeError: if a field is missing, unexpected, or out of range
        """
        out = bytearray()
        self._encode_struct(fields, values, out, path)
        return bytes(out)

    def encode_type(self, idl_type: IdlType, value: Any, out: bytearray, path: str = "") -> None:
        """Append the encoding of a single value to `out`."""
        if isinstance(idl_type, PrimitiveType):
            self._encode_primitive(idl_type.name, value, out, path)

        elif isinstance(idl_type, ArrayType):
            if _is_u8(idl_type.element):
                raw = self._coerce_bytes(value, path)
                if len(raw) != idl_type.length:
                    raise EncodeError(f"{path}: expected {idl_type.length} bytes, got {len(raw)}")
                out += raw
                return
            items = self._coerce_list(value, path)
            if len(items) != idl_type.length:
                raise EncodeError(f"{path}: expected {idl_type.length} elements, got {len(items)}")
            for index, item in enumerate(items):
                self.encode_type(idl_type.element, item, out, f"{path}[{index}]")

        elif isinstance(idl_type, VecType):
            if _is_u8(idl_type.element):
                raw = self._coerce_bytes(value, path)
                out += len(raw).to_bytes(LENGTH_PREFIX, "little")
                out += raw
                return
            items = self._coerce_list(value, path)
            out += len(items).to_bytes(LENGTH_PREFIX, "little")
            for index, item in enumerate(items):
                self.encode_type(idl_type.element, item, out, f"{path}[{index}]")

        elif isinstance(idl_type, OptionType):
            if value is None:
                out.append(0)
            else:
                out.append(1)
                self.encode_type(idl_type.element, value, out, path)

        elif isinstance(idl_type, DefinedType):
            self._encode_defined(self.lookup(idl_type.name), value, out, path)

        else:
            raise TypeError(f"Not an IDL type: {idl_type!r}")

    def _encode_primitive(self, name: str, value: Any, out: bytearray, path: str) -> None:
        if name in INTEGER_TYPES:
            width, signed = INTEGER_TYPES[name]
            if isinstance(value, bool) or not isinstance(value, int):
                raise EncodeError(f"{path}: {name} needs an int, got {type(value).__name__}")
            try:
                out += value.to_bytes(width, "little", signed=signed)
            except OverflowError as e:
                raise EncodeError(f"{path}: {value} does not fit in {name}") from e

        elif name in FLOAT_TYPES:
            _, fmt = FLOAT_TYPES[name]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise EncodeError(f"{path}: {name} needs a number, got {type(value).__name__}")
            out += struct.pack(fmt, value)

        elif name == "bool":
            if not isinstance(value, bool):
                raise EncodeError(f"{path}: bool needs True/False, got {value!r}")
            out.append(1 if value else 0)

        elif name == "string":
            if not isinstance(value, str):
                raise EncodeError(f"{path}: string needs a str, got {type(value).__name__}")
            raw = value.encode("utf-8")
            out += len(raw).to_bytes(LENGTH_PREFIX, "little")
            out += raw

        elif name == "bytes":
            raw = self._coerce_bytes(value, path)
            out += len(raw).to_bytes(LENGTH_PREFIX, "little")
            out += raw

        elif name == "pubkey":
            raw = value if isinstance(value, (bytes, bytearray)) else None
            if isinstance(value, str):
                try:
                    raw = base58.b58decode(value)
                except ValueError as e:
                    raise EncodeError(f"{path}: {value!r} is not base58") from e
            if raw is None or len(raw) != PUBKEY_LENGTH:
                raise EncodeError(f"{path}: pubkey must be {PUBKEY_LENGTH} bytes")
            out += bytes(raw)

        else:
            raise TypeError(f"Unknown primitive {name!r}")

    def _encode_struct(self, fields: Sequence[Field], values: Any, out: bytearray, path: str) -> None:
        if not isinstance(values, Mapping):
            if isinstance(values, (list, tuple)) and len(values) == len(fields):
                values = {f.name: v for f, v in zip(fields, values)}
            else:
                raise EncodeError(f"{path or 'fields'}: expected a mapping of field values")

        expected = [f.name for f in fields]
        missing = [name for name in expected if name not in values]
        extra = [name for name in values if name not in expected]
        if missing:
            raise EncodeError(f"{path or 'fields'}: missing fields {missing}")
        if extra:
            raise EncodeError(f"{path or 'fields'}: unexpected fields {extra}")

        for schema_field in fields:
            self.encode_type(schema_field.type, values[schema_field.name], out,
                             _join(path, schema_field.name))

    def _encode_defined(self, typedef: TypeDef, value: Any, out: bytearray, path: str) -> None:
        body = typedef.body
        if isinstance(body, StructDef):
            self._encode_struct(body.fields, value, out, path)
            return
        if isinstance(body, AliasDef):
            self.encode_type(body.target, value, out, path)
            return

        if not isinstance(body, EnumDef):
            raise TypeError(f"Not a type definition body: {body!r}")
        if isinstance(value, str):
            value = EnumValue(value)
        elif isinstance(value, Mapping) and len(value) == 1:
            (name, fields), = value.items()
            # Tuple variants may be given positionally
            value = EnumValue(name, list(fields) if isinstance(fields, (list, tuple)) else dict(fields or {}))
        if not isinstance(value, EnumValue):
            raise EncodeError(f"{path}: enum {typedef.name} needs an EnumValue, got {value!r}")

        try:
            tag = body.variant_index(value.variant)
        except KeyError:
            raise EncodeError(f"{path}: {typedef.name} has no variant {value.variant!r}") from None
        out.append(tag)
        self._encode_struct(body.variants[tag].fields, value.fields, out, _join(path, value.variant))

    @staticmethod
    def _coerce_bytes(value: Any, path: str) -> bytes:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, (list, tuple)):
            try:
                return bytes(value)
            except (TypeError, ValueError) as e:
                raise EncodeError(f"{path}: byte values must be ints in 0..255") from e
        raise EncodeError(f"{path}: expected bytes, got {type(value).__name__}")

    @staticmethod
    def _coerce_list(value: Any, path: str) -> List[Any]:
        if isinstance(value, (list, tuple)):
            return list(value)
        raise EncodeError(f"{path}: expected a list, got {type(value).__name__}")

    # Helpers

    def lookup(self, name: str) -> TypeDef:
        try:
            return self.types[name]
        except KeyError:
            raise InvalidEncoding(f"Undefined type {name!r}") from None

    def min_size(self, idl_type: IdlType, _seen: Tuple[str, ...] = ()) -> int:
        """Smallest number of bytes any value of `idl_type` can occupy."""
        if isinstance(idl_type, PrimitiveType):
            if idl_type.name in INTEGER_TYPES:
                return INTEGER_TYPES[idl_type.name][0]
            if idl_type.name in FLOAT_TYPES:
                return FLOAT_TYPES[idl_type.name][0]
            return {"bool": 1, "string": LENGTH_PREFIX, "bytes": LENGTH_PREFIX,
                    "pubkey": PUBKEY_LENGTH}[idl_type.name]
        if isinstance(idl_type, ArrayType):
            return idl_type.length * self.min_size(idl_type.element, _seen)
        if isinstance(idl_type, VecType):
            return LENGTH_PREFIX
        if isinstance(idl_type, OptionType):
            return 1
        if idl_type.name in _seen:
            return 0
        seen = _seen + (idl_type.name,)
        body = self.lookup(idl_type.name).body
        if isinstance(body, StructDef):
            return sum(self.min_size(f.type, seen) for f in body.fields)
        if isinstance(body, AliasDef):
            return self.min_size(body.target, seen)
        return ENUM_TAG + min(sum(self.min_size(f.type, seen) for f in v.fields) for v in body.variants)


def decode_fields(fields: Sequence[Field], buffer: bytes, offset: int = 0,
                  types: Optional[Mapping[str, TypeDef]] = None) -> Tuple[Dict[str, Any], int]:
    """Decode a field list with a throwaway codec (convenience for one-shot use)."""
    return BorshCodec(types).decode_fields(fields, buffer, offset)


def encode_fields(fields: Sequence[Field], values: Mapping[str, Any],
                  types: Optional[Mapping[str, TypeDef]] = None) -> bytes:
    """Encode a field list with a throwaway codec (convenience for one-shot use)."""
    return BorshCodec(types).encode_fields(fields, values)
