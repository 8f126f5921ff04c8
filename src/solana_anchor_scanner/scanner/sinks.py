"""
Record Sinks

Where decoded records go. The engine awaits `emit()` for every record, in
order, so a slow sink slows the scan instead of losing records.
"""

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, List, Optional

from ..core.records import DecodedRecord
from ..errors import SinkTimeout

logger = logging.getLogger(__name__)


class RecordSink(ABC):
    """Receiver of decoded records."""

    @abstractmethod
    async def emit(self, record: DecodedRecord) -> None:
        """Accept one record. Returning means the record is delivered."""

    async def close(self) -> None:
        """Flush and release resources."""


class CallbackSink(RecordSink):
    """Hands each record to a plain or async callable."""

    def __init__(self, callback: Callable[[DecodedRecord], Any]):
        self.callback = callback

    async def emit(self, record: DecodedRecord) -> None:
        result = self.callback(record)
        if inspect.isawaitable(result):
            await result


class ListSink(RecordSink):
    """Collects records in memory."""

    def __init__(self):
        self.records: List[DecodedRecord] = []

    async def emit(self, record: DecodedRecord) -> None:
        self.records.append(record)


class QueueSink(RecordSink):
    """
    Bounded queue between the scanner and a consumer task.

    When the queue stays full for `put_timeout` seconds, emit() raises
    SinkTimeout rather than waiting forever.
    """

    def __init__(self, maxsize: int = 1000, put_timeout: float = 30.0):
        self.queue: "asyncio.Queue[DecodedRecord]" = asyncio.Queue(maxsize=maxsize)
        self.put_timeout = put_timeout

    async def emit(self, record: DecodedRecord) -> None:
        try:
            await asyncio.wait_for(self.queue.put(record), timeout=self.put_timeout)
        except asyncio.TimeoutError as exc:
            raise SinkTimeout(f"Queue full for {self.put_timeout}s") from exc

    async def get(self) -> DecodedRecord:
        return await self.queue.get()


class JsonLinesSink(RecordSink):
    """Appends one JSON object per record to a file."""

    def __init__(self, path, flush_every: int = 1):
        self.path = Path(path)
        self.flush_every = max(1, flush_every)
        self._file = None
        self._pending = 0
        self.written = 0

    async def emit(self, record: DecodedRecord) -> None:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, 'a', encoding='utf-8')
        self._file.write(json.dumps(record.to_dict(), sort_keys=True) + "\n")
        self.written += 1
        self._pending += 1
        if self._pending >= self.flush_every:
            self._file.flush()
            self._pending = 0

    async def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            logger.info("Wrote %d records to %s", self.written, self.path)


def read_json_lines(path) -> List[dict]:
    """Load records written by JsonLinesSink."""
    with open(path, 'r', encoding='utf-8') as f:
        return [json.loads(line) for line in f if line.strip()]


def make_sink(target: Optional[Any]) -> RecordSink:
    """Accept a sink, a callable, or a path, and return a sink."""
    if isinstance(target, RecordSink):
        return target
    if target is None:
        return ListSink()
    if callable(target):
        return CallbackSink(target)
    return JsonLinesSink(target)
