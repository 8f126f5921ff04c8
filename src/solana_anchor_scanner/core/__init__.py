"""
Schema-Driven Decoding Core

Everything needed to turn raw Anchor bytes into typed records, usable without
a ledger connection:
- IDL type model and Borsh codec
- Discriminator derivation and lookup
- Schema registry built from an IDL document
- Decoder for instructions, accounts and events
"""

from .codec import BorshCodec, decode_fields, encode_fields
from .decoder import Decoder, decode, encode
from .discriminator import (
    DISCRIMINATOR_SIZE, DiscriminatorIndex, Namespace,
    derive, extract_discriminator, format_discriminator, snake_case,
)
from .records import DecodedRecord, InstructionOrigin, RecordContext
from .schema import SchemaEntry, SchemaRegistry
from .types import EnumValue, Field, parse_type

__all__ = [
    'BorshCodec', 'decode_fields', 'encode_fields',
    'Decoder', 'decode', 'encode',
    'DISCRIMINATOR_SIZE', 'DiscriminatorIndex', 'Namespace',
    'derive', 'extract_discriminator', 'format_discriminator', 'snake_case',
    'DecodedRecord', 'InstructionOrigin', 'RecordContext',
    'SchemaEntry', 'SchemaRegistry',
    'EnumValue', 'Field', 'parse_type',
]
