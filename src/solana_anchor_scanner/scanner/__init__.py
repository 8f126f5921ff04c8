"""
Resumable Ledger Scanning

- Cursor with a forward-only watermark and optional file persistence
- Fetch strategies: signature-paged for one address, slot-ranged for blocks
- Extraction of top-level and inner instructions in execution order
- Engine that decodes, delivers to a sink, and advances
"""

from .cursor import CursorStore, FileCursorStore, ScanCursor, Watermark
from .engine import IterationResult, ScanEngine, ScannerConfig, ScanState
from .extract import extract_instructions
from .sinks import CallbackSink, JsonLinesSink, ListSink, QueueSink, RecordSink, make_sink, read_json_lines
from .strategy import FetchStrategy, PageItem, SignaturePagedStrategy, SlotRangeStrategy

__all__ = [
    'CursorStore', 'FileCursorStore', 'ScanCursor', 'Watermark',
    'IterationResult', 'ScanEngine', 'ScannerConfig', 'ScanState',
    'extract_instructions',
    'CallbackSink', 'JsonLinesSink', 'ListSink', 'QueueSink', 'RecordSink', 'make_sink', 'read_json_lines',
    'FetchStrategy', 'PageItem', 'SignaturePagedStrategy', 'SlotRangeStrategy',
]
