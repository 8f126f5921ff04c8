import struct

import base58
import pytest

from solana_anchor_scanner.core.codec import BorshCodec, decode_fields, encode_fields
from solana_anchor_scanner.core.types import EnumValue, Field, TypeDef, parse_fields, parse_type, parse_typedef
from solana_anchor_scanner.errors import EncodeError, InvalidEncoding, SchemaLoadError, TruncatedBuffer

FAVORITES_FIELDS = (Field("number", parse_type("u64")), Field("color", parse_type("string")))


def _fields(raw):
    fields, _ = parse_fields(raw)
    return fields


def _codec(*raw_types):
    types = {}
    for raw in raw_types:
        typedef = parse_typedef(raw)
        types[typedef.name] = typedef
    return BorshCodec(types)


def test_favorites_layout_bytes():
    encoded = encode_fields(FAVORITES_FIELDS, {"number": 42, "color": "blue"})
    assert list(encoded) == [42, 0, 0, 0, 0, 0, 0, 0, 4, 0, 0, 0, 98, 108, 117, 101]

    values, offset = decode_fields(FAVORITES_FIELDS, encoded)
    assert values == {"number": 42, "color": "blue"}
    assert offset == len(encoded)


def test_decode_starts_at_offset_and_ignores_trailing_bytes():
    payload = b"\xff" * 8 + encode_fields(FAVORITES_FIELDS, {"number": 1, "color": ""}) + b"\x00" * 10
    values, offset = decode_fields(FAVORITES_FIELDS, payload, 8)
    assert values == {"number": 1, "color": ""}
    assert offset == 8 + 8 + 4


@pytest.mark.parametrize("type_name, value, size", [
    ("u8", 255, 1),
    ("i8", -128, 1),
    ("u16", 65535, 2),
    ("i32", -2, 4),
    ("u64", 2 ** 64 - 1, 8),
    ("i64", -(2 ** 63), 8),
    ("u128", 2 ** 128 - 1, 16),
    ("i128", -(2 ** 127), 16),
])
def test_integers_keep_full_precision(type_name, value, size):
    fields = (Field("v", parse_type(type_name)),)
    encoded = encode_fields(fields, {"v": value})
    assert len(encoded) == size
    assert decode_fields(fields, encoded)[0]["v"] == value


def test_integer_range_is_checked_on_encode():
    fields = (Field("v", parse_type("u8")),)
    with pytest.raises(EncodeError):
        encode_fields(fields, {"v": 256})
    with pytest.raises(EncodeError):
        encode_fields(fields, {"v": -1})
    with pytest.raises(EncodeError):
        encode_fields(fields, {"v": True})


def test_floats():
    fields = _fields([{"name": "a", "type": "f32"}, {"name": "b", "type": "f64"}])
    encoded = encode_fields(fields, {"a": 1.5, "b": -0.25})
    assert encoded == struct.pack("<f", 1.5) + struct.pack("<d", -0.25)
    assert decode_fields(fields, encoded)[0] == {"a": 1.5, "b": -0.25}


def test_bool_other_than_zero_or_one_is_an_anomaly():
    codec = BorshCodec()
    fields = (Field("flag", parse_type("bool")),)
    anomalies = []

    values, _ = codec.decode_fields(fields, b"\x02", 0, anomalies)

    assert values == {"flag": True}
    assert len(anomalies) == 1
    assert "flag" in anomalies[0]


def test_invalid_utf8_string():
    with pytest.raises(InvalidEncoding):
        decode_fields(FAVORITES_FIELDS, bytes(8) + b"\x02\x00\x00\x00\xff\xfe")


def test_truncated_string_reports_what_was_missing():
    encoded = encode_fields(FAVORITES_FIELDS, {"number": 42, "color": "blue"})
    with pytest.raises(TruncatedBuffer) as excinfo:
        decode_fields(FAVORITES_FIELDS, encoded[:-1])
    assert excinfo.value.needed == 4
    assert excinfo.value.available == 3
    assert excinfo.value.path == "color"


def test_byte_arrays_vec_u8_and_bytes_decode_to_bytes():
    fields = _fields([
        {"name": "seed", "type": {"array": ["u8", 4]}},
        {"name": "blob", "type": {"vec": "u8"}},
        {"name": "raw", "type": "bytes"},
    ])
    values = {"seed": b"\x01\x02\x03\x04", "blob": b"ab", "raw": b""}
    encoded = encode_fields(fields, values)

    assert encoded == b"\x01\x02\x03\x04" + b"\x02\x00\x00\x00ab" + b"\x00\x00\x00\x00"
    assert decode_fields(fields, encoded)[0] == values


def test_fixed_array_length_is_enforced_on_encode():
    fields = _fields([{"name": "seed", "type": {"array": ["u8", 4]}}])
    with pytest.raises(EncodeError):
        encode_fields(fields, {"seed": b"\x01"})


def test_vec_and_array_of_integers():
    fields = _fields([
        {"name": "points", "type": {"vec": "u16"}},
        {"name": "pair", "type": {"array": ["i32", 2]}},
    ])
    encoded = encode_fields(fields, {"points": [1, 2, 3], "pair": [-1, 7]})
    assert encoded[:4] == b"\x03\x00\x00\x00"
    assert decode_fields(fields, encoded)[0] == {"points": [1, 2, 3], "pair": [-1, 7]}


def test_huge_vec_count_fails_fast():
    fields = _fields([{"name": "points", "type": {"vec": "u64"}}])
    with pytest.raises(TruncatedBuffer):
        decode_fields(fields, b"\xff\xff\xff\xff" + bytes(16))


def test_option():
    fields = _fields([{"name": "maybe", "type": {"option": "u32"}}])
    assert encode_fields(fields, {"maybe": None}) == b"\x00"
    assert encode_fields(fields, {"maybe": 5}) == b"\x01\x05\x00\x00\x00"
    assert decode_fields(fields, b"\x00")[0] == {"maybe": None}
    assert decode_fields(fields, b"\x01\x05\x00\x00\x00")[0] == {"maybe": 5}

    with pytest.raises(InvalidEncoding):
        decode_fields(fields, b"\x02\x05\x00\x00\x00")


def test_pubkey_is_base58():
    fields = _fields([{"name": "owner", "type": "publicKey"}])
    raw = bytes(range(32))
    address = base58.b58encode(raw).decode()

    assert encode_fields(fields, {"owner": address}) == raw
    assert decode_fields(fields, raw)[0] == {"owner": address}
    with pytest.raises(EncodeError):
        encode_fields(fields, {"owner": "abc"})


def test_nested_struct_and_enum():
    codec = _codec(
        {"name": "Point", "type": {"kind": "struct", "fields": [
            {"name": "x", "type": "i16"}, {"name": "y", "type": "i16"}]}},
        {"name": "Shape", "type": {"kind": "enum", "variants": [
            {"name": "Empty"},
            {"name": "Dot", "fields": [{"name": "at", "type": {"defined": {"name": "Point"}}}]},
            {"name": "Line", "fields": [{"defined": "Point"}, {"defined": "Point"}]},
        ]}},
    )
    fields = _fields([{"name": "shape", "type": {"defined": {"name": "Shape"}}}])

    empty = codec.encode_fields(fields, {"shape": "Empty"})
    assert empty == b"\x00"
    assert codec.decode_fields(fields, empty)[0] == {"shape": EnumValue("Empty")}

    dot = codec.encode_fields(fields, {"shape": EnumValue("Dot", {"at": {"x": 1, "y": -1}})})
    assert dot == b"\x01\x01\x00\xff\xff"
    assert codec.decode_fields(fields, dot)[0] == {"shape": EnumValue("Dot", {"at": {"x": 1, "y": -1}})}

    line = codec.encode_fields(fields, {"shape": {"Line": [{"x": 0, "y": 0}, {"x": 2, "y": 3}]}})
    decoded = codec.decode_fields(fields, line)[0]["shape"]
    assert decoded.variant == "Line"
    assert decoded.fields == {"0": {"x": 0, "y": 0}, "1": {"x": 2, "y": 3}}


def test_unknown_enum_tag_is_invalid():
    codec = _codec({"name": "Side", "type": {"kind": "enum", "variants": [{"name": "Bid"}, {"name": "Ask"}]}})
    fields = _fields([{"name": "side", "type": {"defined": "Side"}}])

    with pytest.raises(InvalidEncoding):
        codec.decode_fields(fields, b"\x02")
    with pytest.raises(EncodeError):
        codec.encode_fields(fields, {"side": "Mid"})


def test_type_alias_resolves_to_target():
    codec = _codec({"name": "Lamports", "type": {"kind": "type", "alias": "u64"}})
    fields = _fields([{"name": "amount", "type": {"defined": "Lamports"}}])
    assert codec.decode_fields(fields, (7).to_bytes(8, "little"))[0] == {"amount": 7}


def test_typedef_with_foreign_body_is_a_type_error():
    codec = BorshCodec({"Broken": TypeDef("Broken", body="not a body")})
    fields = _fields([{"name": "value", "type": {"defined": "Broken"}}])
    with pytest.raises(TypeError):
        codec.encode_fields(fields, {"value": "Anything"})
    with pytest.raises(TypeError):
        codec.decode_fields(fields, b"\x00")


def test_missing_and_extra_fields_are_rejected():
    with pytest.raises(EncodeError):
        encode_fields(FAVORITES_FIELDS, {"number": 1})
    with pytest.raises(EncodeError):
        encode_fields(FAVORITES_FIELDS, {"number": 1, "color": "x", "size": 3})


def test_min_size():
    codec = _codec({"name": "Point", "type": {"kind": "struct", "fields": [
        {"name": "x", "type": "i16"}, {"name": "y", "type": "i16"}]}})
    assert codec.min_size(parse_type("u64")) == 8
    assert codec.min_size(parse_type({"array": [{"defined": "Point"}, 3]})) == 12
    assert codec.min_size(parse_type({"vec": "u64"})) == 4
    assert codec.min_size(parse_type({"option": "u64"})) == 1


def test_unknown_type_expressions_fail_at_parse_time():
    with pytest.raises(SchemaLoadError):
        parse_type("u256")
    with pytest.raises(SchemaLoadError):
        parse_type({"array": ["u8"]})
    with pytest.raises(SchemaLoadError):
        parse_type({"hashmap": ["u8", "u8"]})
