"""
IDL Type Model

Anchor IDL documents describe instruction arguments and account layouts with a
small JSON type language:

    "u64", "string", "pubkey", "bytes", "bool"      primitives
    {"vec": T}, {"option": T}, {"array": [T, N]}    composites
    {"defined": {"name": "MyStruct"}}                reference into "types"

This module parses that language once, at schema load time, into an immutable
tree of small dataclasses. The codec walks the tree; nothing is inferred from
the bytes at decode time.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple, Union

from ..errors import SchemaLoadError


# name -> (width in bytes, signed)
INTEGER_TYPES: Dict[str, Tuple[int, bool]] = {
    "u8": (1, False), "i8": (1, True),
    "u16": (2, False), "i16": (2, True),
    "u32": (4, False), "i32": (4, True),
    "u64": (8, False), "i64": (8, True),
    "u128": (16, False), "i128": (16, True),
}

FLOAT_TYPES: Dict[str, Tuple[int, str]] = {
    "f32": (4, "<f"),
    "f64": (8, "<d"),
}

OTHER_PRIMITIVES = ("bool", "string", "pubkey", "bytes")

# Spellings used by older IDL generations
PRIMITIVE_ALIASES = {
    "publicKey": "pubkey",
}

PUBKEY_LENGTH = 32


@dataclass(frozen=True)
class PrimitiveType:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ArrayType:
    """Fixed-length array: exactly `length` elements, no length prefix."""
    element: "IdlType"
    length: int

    def __str__(self) -> str:
        return f"[{self.element}; {self.length}]"


@dataclass(frozen=True)
class VecType:
    """Variable-length sequence with a u32 element count prefix."""
    element: "IdlType"

    def __str__(self) -> str:
        return f"vec<{self.element}>"


@dataclass(frozen=True)
class OptionType:
    """One presence byte followed by the value when present."""
    element: "IdlType"

    def __str__(self) -> str:
        return f"option<{self.element}>"


@dataclass(frozen=True)
class DefinedType:
    """Reference to a named entry of the document's `types` list."""
    name: str

    def __str__(self) -> str:
        return self.name


IdlType = Union[PrimitiveType, ArrayType, VecType, OptionType, DefinedType]


@dataclass(frozen=True)
class Field:
    name: str
    type: IdlType


@dataclass(frozen=True)
class StructDef:
    fields: Tuple[Field, ...]
    tuple_like: bool = False   # tuple structs have positional fields "0", "1", ...


@dataclass(frozen=True)
class Variant:
    name: str
    fields: Tuple[Field, ...] = ()
    tuple_like: bool = False


@dataclass(frozen=True)
class EnumDef:
    variants: Tuple[Variant, ...]

    def variant_index(self, name: str) -> int:
        for index, variant in enumerate(self.variants):
            if variant.name == name:
                return index
        raise KeyError(name)


@dataclass(frozen=True)
class AliasDef:
    target: IdlType


@dataclass(frozen=True)
class TypeDef:
    """A named composite from the document's `types` list."""
    name: str
    body: Union[StructDef, EnumDef, AliasDef]


@dataclass(frozen=True)
class EnumValue:
    """
    Decoded value of an enum (tagged union).

    Unit variants carry an empty `fields` mapping; tuple variants use the
    positional names "0", "1", ... as keys.
    """
    variant: str
    fields: Dict[str, Any] = field(default_factory=dict)


def parse_type(raw: Any) -> IdlType:
    """
    Parse one IDL type expression.

    Raises:
        SchemaLoadError: if the expression is not part of the type language
    """
    if isinstance(raw, str):
        name = PRIMITIVE_ALIASES.get(raw, raw)
        if name in INTEGER_TYPES or name in FLOAT_TYPES or name in OTHER_PRIMITIVES:
            return PrimitiveType(name)
        raise SchemaLoadError(f"Unknown primitive type: {raw!r}")

    if isinstance(raw, dict) and len(raw) == 1:
        (kind, inner), = raw.items()
        if kind == "vec":
            return VecType(parse_type(inner))
        if kind == "option":
            return OptionType(parse_type(inner))
        if kind == "array":
            if not isinstance(inner, list) or len(inner) != 2 or not isinstance(inner[1], int):
                raise SchemaLoadError(f"Array type needs [element, length]: {inner!r}")
            if inner[1] < 0:
                raise SchemaLoadError(f"Array length cannot be negative: {inner[1]}")
            return ArrayType(parse_type(inner[0]), inner[1])
        if kind == "defined":
            name = inner.get("name") if isinstance(inner, dict) else inner
            if not isinstance(name, str) or not name:
                raise SchemaLoadError(f"Defined type needs a name: {inner!r}")
            if isinstance(inner, dict) and inner.get("generics"):
                raise SchemaLoadError(f"Generic type {name!r} is not supported")
            return DefinedType(name)

    raise SchemaLoadError(f"Unsupported type expression: {raw!r}")


def parse_fields(raw_fields: Any) -> Tuple[Tuple[Field, ...], bool]:
    """
    Parse a field list.

    Named fields look like {"name": ..., "type": ...}; tuple fields are bare
    type expressions and get positional names.

    Returns:
        Tuple of (fields, tuple_like)
    """
    if raw_fields is None:
        return (), False
    if not isinstance(raw_fields, list):
        raise SchemaLoadError(f"Field list must be a list: {raw_fields!r}")

    named = [isinstance(item, dict) and "name" in item and "type" in item for item in raw_fields]
    if all(named):
        fields = tuple(Field(item["name"], parse_type(item["type"])) for item in raw_fields)
        names = [f.name for f in fields]
        if len(set(names)) != len(names):
            raise SchemaLoadError(f"Duplicate field names in {names}")
        return fields, False
    if not any(named):
        return tuple(Field(str(i), parse_type(item)) for i, item in enumerate(raw_fields)), True
    raise SchemaLoadError("Field list mixes named and positional fields")


def parse_typedef(raw: Dict[str, Any]) -> TypeDef:
    """Parse one entry of the document's `types` list."""
    name = raw.get("name")
    body = raw.get("type")
    if not isinstance(name, str) or not isinstance(body, dict):
        raise SchemaLoadError(f"Type definition needs 'name' and 'type': {raw!r}")

    kind = body.get("kind")
    if kind == "struct":
        fields, tuple_like = parse_fields(body.get("fields", []))
        return TypeDef(name, StructDef(fields, tuple_like))
    if kind == "enum":
        variants = []
        for raw_variant in body.get("variants", []):
            fields, tuple_like = parse_fields(raw_variant.get("fields"))
            variants.append(Variant(raw_variant["name"], fields, tuple_like))
        if not variants:
            raise SchemaLoadError(f"Enum {name!r} has no variants")
        if len(variants) > 256:
            raise SchemaLoadError(f"Enum {name!r} has more variants than a u8 tag can hold")
        return TypeDef(name, EnumDef(tuple(variants)))
    if kind == "type":
        return TypeDef(name, AliasDef(parse_type(body.get("alias"))))

    raise SchemaLoadError(f"Unsupported type kind {kind!r} for {name!r}")


def referenced_names(idl_type: IdlType):
    """Yield every defined-type name referenced by a type expression."""
    if isinstance(idl_type, DefinedType):
        yield idl_type.name
    elif isinstance(idl_type, (ArrayType, VecType, OptionType)):
        yield from referenced_names(idl_type.element)
