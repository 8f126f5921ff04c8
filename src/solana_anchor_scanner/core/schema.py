"""
Schema Registry

Loads an Anchor IDL document and indexes every instruction, account and event
by name and by discriminator. The registry is built once at startup and is
read-only afterwards; any inconsistency in the document (duplicate
discriminators, a discriminator that does not match its name, a reference to
an undefined type) fails the load instead of surfacing later as bad decodes.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ..errors import SchemaLoadError
from .codec import BorshCodec
from .discriminator import (
    DISCRIMINATOR_SIZE, DiscriminatorIndex, Namespace, candidate_names, derive,
    format_discriminator, verify,
)
from .types import (
    AliasDef, Field, StructDef, TypeDef, parse_fields, parse_typedef, referenced_names,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaEntry:
    """
    One decodable instruction, account or event.

    `account_names` is only populated for instructions: the names of the
    accounts the instruction expects, in the order they are passed.
    """
    namespace: Namespace
    name: str
    discriminator: bytes
    fields: Tuple[Field, ...]
    account_names: Tuple[str, ...] = ()

    def __str__(self) -> str:
        return f"{self.namespace.name.lower()}:{self.name} {format_discriminator(self.discriminator)}"


class SchemaRegistry:
    """
    Immutable index over one program's IDL.

    Attributes:
        program_id: Program address from the IDL (None if the document has none)
        program_name: Program name from the IDL metadata
        codec: Borsh codec bound to the document's named types
    """

    def __init__(self, entries: Iterable[SchemaEntry], types: Mapping[str, TypeDef],
                 program_id: Optional[str] = None, program_name: Optional[str] = None):
        self.program_id = program_id
        self.program_name = program_name
        self.types: Dict[str, TypeDef] = dict(types)
        self.codec = BorshCodec(self.types)

        self._index: DiscriminatorIndex[SchemaEntry] = DiscriminatorIndex()
        self._by_name: Dict[Tuple[Namespace, str], SchemaEntry] = {}
        for entry in entries:
            key = (entry.namespace, entry.name)
            if key in self._by_name:
                raise SchemaLoadError(f"Duplicate {entry.namespace.name.lower()} name {entry.name!r}")
            self._index.add(entry.namespace, entry.discriminator, entry)
            self._by_name[key] = entry

        self._check_references()

    # Construction

    @classmethod
    def from_idl(cls, document: Mapping[str, Any], verify_discriminators: bool = True) -> "SchemaRegistry":
        """
        Build a registry from a parsed IDL document.

        Args:
            document: The IDL as a dict (instructions / accounts / events / types)
            verify_discriminators: Check explicit discriminators against
                                   sha256("<namespace>:<name>")[:8]

        Raises:
            SchemaLoadError: on any malformed or inconsistent content
        """
        if not isinstance(document, Mapping):
            raise SchemaLoadError("IDL document must be a JSON object")

        metadata = document.get("metadata") or {}
        program_id = document.get("address") or metadata.get("address")
        program_name = metadata.get("name") or document.get("name")

        try:
            types: Dict[str, TypeDef] = {}
            for raw in document.get("types") or []:
                typedef = parse_typedef(raw)
                if typedef.name in types:
                    raise SchemaLoadError(f"Duplicate type name {typedef.name!r}")
                types[typedef.name] = typedef

            entries: List[SchemaEntry] = []
            for raw in document.get("instructions") or []:
                fields, _ = parse_fields(raw.get("args", []))
                entries.append(cls._make_entry(
                    Namespace.INSTRUCTION, raw, fields, verify_discriminators,
                    account_names=tuple(_flatten_account_names(raw.get("accounts") or [])),
                ))
            for raw in document.get("accounts") or []:
                fields = cls._layout_fields(raw, types, "account")
                entries.append(cls._make_entry(Namespace.ACCOUNT, raw, fields, verify_discriminators))
            for raw in document.get("events") or []:
                fields = cls._layout_fields(raw, types, "event")
                entries.append(cls._make_entry(Namespace.EVENT, raw, fields, verify_discriminators))
        except SchemaLoadError:
            raise
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise SchemaLoadError(f"Malformed IDL document: {e}") from e

        registry = cls(entries, types, program_id=program_id, program_name=program_name)
        logger.debug(
            "Loaded IDL %s: %d instructions, %d accounts, %d events, %d types",
            program_name or program_id or "<unnamed>",
            len(registry.entries(Namespace.INSTRUCTION)),
            len(registry.entries(Namespace.ACCOUNT)),
            len(registry.entries(Namespace.EVENT)),
            len(types),
        )
        return registry

    @classmethod
    def from_file(cls, path: Union[str, Path], verify_discriminators: bool = True) -> "SchemaRegistry":
        """Load an IDL JSON file from disk."""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SchemaLoadError(f"Cannot read IDL {path}: {e}") from e
        return cls.from_idl(document, verify_discriminators=verify_discriminators)

    @staticmethod
    def _make_entry(namespace: Namespace, raw: Mapping[str, Any], fields: Tuple[Field, ...],
                    verify_discriminators: bool, account_names: Tuple[str, ...] = ()) -> SchemaEntry:
        name = raw.get("name")
        if not isinstance(name, str) or not name:
            raise SchemaLoadError(f"{namespace.name.lower()} entry without a name: {raw!r}")

        explicit = raw.get("discriminator")
        if explicit is None:
            # Legacy IDLs spell instructions in camelCase but hash the snake_case name
            discriminator = derive(namespace, candidate_names(namespace, name)[-1])
        else:
            if (not isinstance(explicit, list) or len(explicit) != DISCRIMINATOR_SIZE
                    or not all(isinstance(b, int) and 0 <= b <= 255 for b in explicit)):
                raise SchemaLoadError(f"{name}: discriminator must be {DISCRIMINATOR_SIZE} bytes")
            discriminator = bytes(explicit)
            if verify_discriminators and not verify(namespace, name, discriminator):
                raise SchemaLoadError(
                    f"{namespace.name.lower()} {name}: discriminator {format_discriminator(discriminator)} "
                    f"does not match derived {format_discriminator(derive(namespace, name))}"
                )

        return SchemaEntry(namespace, name, discriminator, fields, account_names)

    @staticmethod
    def _layout_fields(raw: Mapping[str, Any], types: Mapping[str, TypeDef], kind: str) -> Tuple[Field, ...]:
        """Accounts and events carry their layout inline (legacy IDL) or in `types`."""
        if "type" in raw:
            typedef = parse_typedef({"name": raw["name"], "type": raw["type"]})
            body = typedef.body
        elif "fields" in raw:
            fields, _ = parse_fields(raw["fields"])
            return fields
        elif raw.get("name") in types:
            body = types[raw["name"]].body
        else:
            raise SchemaLoadError(f"{kind} {raw.get('name')!r} has no layout in the IDL")

        while isinstance(body, AliasDef) and getattr(body.target, "name", None) in types:
            body = types[body.target.name].body
        if not isinstance(body, StructDef):
            raise SchemaLoadError(f"{kind} {raw.get('name')!r} must be a struct")
        return body.fields

    def _check_references(self) -> None:
        pending = [f.type for entry in self._by_name.values() for f in entry.fields]
        for typedef in self.types.values():
            body = typedef.body
            if isinstance(body, StructDef):
                pending.extend(f.type for f in body.fields)
            elif isinstance(body, AliasDef):
                pending.append(body.target)
            else:
                pending.extend(f.type for v in body.variants for f in v.fields)

        for idl_type in pending:
            for name in referenced_names(idl_type):
                if name not in self.types:
                    raise SchemaLoadError(f"Reference to undefined type {name!r}")

    # Lookup

    def resolve(self, namespace, prefix: bytes) -> Optional[SchemaEntry]:
        """Find the entry whose discriminator equals the first 8 bytes of `prefix`."""
        return self._index.resolve(Namespace.parse(namespace), prefix)

    def get(self, namespace, name: str) -> SchemaEntry:
        """Look up an entry by name. Raises KeyError if absent."""
        try:
            return self._by_name[(Namespace.parse(namespace), name)]
        except KeyError:
            raise KeyError(f"No {namespace} named {name!r}") from None

    def entries(self, namespace) -> List[SchemaEntry]:
        ns = Namespace.parse(namespace)
        return [entry for _, entry in self._index.items(ns)]

    def all_discriminators(self, namespace) -> Dict[str, bytes]:
        """Name -> discriminator for every entry in a namespace."""
        return {entry.name: entry.discriminator for entry in self.entries(namespace)}

    def __contains__(self, key: Tuple[Any, str]) -> bool:
        namespace, name = key
        return (Namespace.parse(namespace), name) in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)

    def __repr__(self) -> str:
        return f"SchemaRegistry(program={self.program_name or self.program_id!r}, entries={len(self)})"


def _flatten_account_names(accounts: List[Mapping[str, Any]], prefix: str = "") -> List[str]:
    """IDL account lists may nest composite groups; flatten them in order."""
    names = []
    for account in accounts:
        name = f"{prefix}{account['name']}"
        if "accounts" in account:
            names.extend(_flatten_account_names(account["accounts"], f"{name}."))
        else:
            names.append(name)
    return names
