"""
Solana Anchor Scanner

Schema-driven decoding and resumable scanning for Anchor programs:
- Anchor IDL loading, discriminator derivation and Borsh decoding
- Instruction, account and event decoding, usable without a ledger
- A scanning engine that follows a program's history exactly once,
  through signature listings or block by block, and survives restarts
- JSON-RPC and in-process ledgers

Based on: https://www.anchor-lang.com/docs and https://solana.com/docs/rpc
"""

__version__ = "0.1.0"

from .core import *
from .errors import (
    DecodeError, EncodeError, InvalidEncoding, LedgerError, RpcFatalError,
    RpcSkippedItem, RpcTransientError, ScannerError, SchemaLoadError,
    SinkTimeout, TruncatedBuffer, UnknownDiscriminator,
)
from .ledger import LedgerClient, LocalLedger, RpcLedger
from .observability import ScanStats, configure_logging
from .scanner import (
    FileCursorStore, JsonLinesSink, QueueSink, CallbackSink, ScanCursor, ScanEngine,
    ScannerConfig, ScanState, SignaturePagedStrategy, SlotRangeStrategy, Watermark,
)
from .snapshot import snapshot_program_accounts, summarize_field

__all__ = [
    # Decoding
    'BorshCodec', 'Decoder', 'SchemaRegistry', 'SchemaEntry', 'Namespace',
    'DecodedRecord', 'InstructionOrigin', 'RecordContext', 'EnumValue',
    'decode', 'encode', 'derive', 'extract_discriminator', 'format_discriminator',

    # Errors
    'ScannerError', 'SchemaLoadError', 'EncodeError', 'DecodeError',
    'UnknownDiscriminator', 'TruncatedBuffer', 'InvalidEncoding',
    'LedgerError', 'RpcTransientError', 'RpcSkippedItem', 'RpcFatalError', 'SinkTimeout',

    # Ledgers
    'LedgerClient', 'LocalLedger', 'RpcLedger',

    # Scanning
    'ScanEngine', 'ScannerConfig', 'ScanState', 'ScanCursor', 'Watermark', 'FileCursorStore',
    'SignaturePagedStrategy', 'SlotRangeStrategy',
    'CallbackSink', 'QueueSink', 'JsonLinesSink',
    'ScanStats', 'configure_logging',
    'snapshot_program_accounts', 'summarize_field',
]
