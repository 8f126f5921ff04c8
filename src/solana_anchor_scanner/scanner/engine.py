"""
Scanning Engine

Walks ledger history for a set of programs and hands every decodable
instruction (and optionally event) to a sink, exactly once per item:

    IDLE -> FETCHING -> EXTRACTING -> DECODING -> ADVANCING -> SLEEPING -> FETCHING ...
                                                                   '-> STOPPED

A page is fetched completely before anything from it is emitted, and the
watermark moves only after the whole page reached the sink. A failed fetch
therefore never produces a half-delivered page. Pages end on slot
boundaries, so the watermark always covers whole slots and restarting from
the persisted watermark never repeats delivered items.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..core.decoder import Decoder
from ..core.discriminator import Namespace
from ..core.records import DecodedRecord, InstructionOrigin, RecordContext
from ..errors import DecodeError, RpcFatalError, RpcSkippedItem, RpcTransientError, SinkTimeout, UnknownDiscriminator
from ..ledger.base import LedgerClient
from ..ledger.models import TransactionDetail
from ..observability import ScanStats
from .cursor import CursorStore, ScanCursor, Watermark
from .extract import extract_instructions
from .sinks import RecordSink, make_sink
from .strategy import FetchStrategy, PageItem, SignaturePagedStrategy, SlotRangeStrategy

logger = logging.getLogger(__name__)


class ScanState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    DECODING = "decoding"
    ADVANCING = "advancing"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


@dataclass
class ScannerConfig:
    """Engine knobs."""
    page_size: int = 10             # Items per page (signatures or slots)
    poll_interval: float = 0.4      # Seconds to sleep when nothing new was found
    max_retries: int = 5            # Transient failures retried per fetch
    backoff_base: float = 0.5       # First retry delay (seconds), doubled each attempt
    backoff_max: float = 10.0       # Retry delay cap (seconds)
    recent_capacity: int = 1024     # Recently-seen signatures kept in memory
    include_failed: bool = False    # Decode transactions that failed on-chain
    decode_events: bool = False     # Also decode "Program data:" events from logs
    sink_timeout: float = 30.0      # Seconds the sink may take per record
    start_at_latest: bool = True    # Fresh cursors start at the tip, not from genesis

    def __post_init__(self):
        if self.page_size < 1:
            raise ValueError("page_size must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.poll_interval < 0 or self.backoff_base < 0 or self.backoff_max < 0:
            raise ValueError("intervals cannot be negative")
        if self.sink_timeout <= 0:
            raise ValueError("sink_timeout must be positive")

    def backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based)."""
        return min(self.backoff_max, self.backoff_base * (2 ** attempt))


@dataclass
class IterationResult:
    """What one run_once() call did."""
    fetched: int = 0                        # New items listed after the watermark
    processed: int = 0                      # Items delivered and advanced past
    records: int = 0                        # Records handed to the sink
    watermark: Optional[Watermark] = None   # Watermark after the iteration
    exhausted: bool = False                 # Gave up on a fetch after max_retries
    stopped: bool = False                   # Interrupted by stop()


class _Stopped(Exception):
    """Raised internally when stop() interrupts a fetch or sleep."""


_EXHAUSTED = object()


def _pages(items: List[PageItem], page_size: int) -> List[List[PageItem]]:
    """
    Split oldest-first items into pages of about `page_size`.

    A page only ends at a slot boundary, so it grows past `page_size` when
    one slot holds more items than that.
    """
    pages: List[List[PageItem]] = []
    page: List[PageItem] = []
    for item in items:
        if len(page) >= page_size and item.slot != page[-1].slot:
            pages.append(page)
            page = []
        page.append(item)
    if page:
        pages.append(page)
    return pages


class ScanEngine:
    """
    Resumable scanner for one target.

    Example:
        engine = ScanEngine(ledger, Decoder(registry), sink=JsonLinesSink("out.jsonl"))
        task = asyncio.create_task(engine.run())
        ...
        engine.stop()
        stats = await task
    """

    def __init__(self, ledger: LedgerClient, decoders: Union[Decoder, Iterable[Decoder]],
                 strategy: Optional[FetchStrategy] = None, sink=None,
                 config: Optional[ScannerConfig] = None, cursor: Optional[ScanCursor] = None,
                 cursor_store: Optional[CursorStore] = None):
        """
        Args:
            ledger: Where transactions come from
            decoders: One decoder per program of interest (keyed by program id)
            strategy: Fetch strategy; defaults to following the program's
                signatures for one program, and walking slots for several
            sink: RecordSink, callable, or file path for JSON lines. Sinks the
                engine builds from a callable or path are closed when run() ends;
                a RecordSink passed in is left for the caller to close
            config: Engine knobs
            cursor: Resume state; a fresh one is created if omitted
            cursor_store: Where the watermark is loaded from and saved to

        Raises:
            ValueError: if no decoder is given or a decoder has no program id
        """
        if isinstance(decoders, Decoder):
            decoders = [decoders]
        self.decoders: Dict[str, Decoder] = {}
        for decoder in decoders:
            if not decoder.program_id:
                raise ValueError("Decoder schema has no program address")
            self.decoders[decoder.program_id] = decoder
        if not self.decoders:
            raise ValueError("At least one decoder is required")

        self.ledger = ledger
        self.config = config or ScannerConfig()
        if strategy is None:
            if len(self.decoders) == 1:
                strategy = SignaturePagedStrategy(ledger, next(iter(self.decoders)))
            else:
                strategy = SlotRangeStrategy(ledger)
        self.strategy = strategy
        self.sink: RecordSink = make_sink(sink)
        self._owns_sink = not isinstance(sink, RecordSink)
        self.cursor = cursor or ScanCursor(recent_capacity=self.config.recent_capacity)
        self.cursor_store = cursor_store
        self.stats = ScanStats()

        self._state = ScanState.IDLE
        self._stop = asyncio.Event()
        self._positioned = self.cursor.watermark is not None

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask the engine to stop; in-flight fetches and sleeps are interrupted."""
        self._stop.set()

    async def run(self) -> ScanStats:
        """
        Scan until stop() is called.

        Raises:
            RpcFatalError: the ledger failed in a way retrying cannot fix
            SinkTimeout: the sink did not accept a record in time
        """
        logger.info("Scanning %s from %s", ", ".join(self.decoders), self.cursor.watermark or "the beginning")
        try:
            while not self._stop.is_set():
                result = await self.run_once()
                if result.stopped:
                    break
                if result.fetched == 0 or result.exhausted:
                    self._set_state(ScanState.SLEEPING)
                    await self._interruptible(asyncio.sleep(self.config.poll_interval))
        except _Stopped:
            pass
        finally:
            self._set_state(ScanState.STOPPED)
            if self._owns_sink:
                await self.sink.close()
            logger.info("Scanner stopped at %s: %s", self.cursor.watermark, self.stats.summary())
        return self.stats

    async def run_once(self) -> IterationResult:
        """One fetch/extract/decode/advance pass over everything new."""
        result = IterationResult(watermark=self.cursor.watermark)
        try:
            if not self._positioned and not await self._position():
                result.exhausted = True
                return result

            self._set_state(ScanState.FETCHING)
            items = await self._fetch(self.strategy.list_recent, self.cursor.watermark, self.config.page_size)
            if items is _EXHAUSTED:
                result.exhausted = True
                return result

            items = [item for item in items if self.cursor.is_new(item.slot, item.signature)]
            result.fetched = len(items)

            for page in _pages(items, self.config.page_size):
                if self._stop.is_set():
                    result.stopped = True
                    break
                emitted = await self._process_page(page)
                if emitted is None:
                    result.exhausted = True
                    break
                result.processed += len(page)
                result.records += emitted
        except _Stopped:
            result.stopped = True
        finally:
            result.watermark = self.cursor.watermark
        return result

    # Steps

    async def _position(self) -> bool:
        """Give a fresh cursor its starting watermark. False if the ledger kept failing."""
        stored = self.cursor_store.load() if self.cursor_store is not None else None
        if stored is not None:
            self.cursor.advance(stored)
            logger.info("Resuming from stored watermark %s", stored)
        elif self.config.start_at_latest:
            self._set_state(ScanState.FETCHING)
            start = await self._fetch(self.strategy.initial_watermark)
            if start is _EXHAUSTED:
                return False
            if start is not None:
                self._advance(start)
            logger.info("Starting at the ledger tip: %s", start or "no activity yet")
        self._positioned = True
        return True

    async def _process_page(self, page: List[PageItem]) -> Optional[int]:
        """Fetch, decode, emit and advance past one page. None if a fetch was abandoned."""
        self._set_state(ScanState.FETCHING)
        fetched: List[Tuple[PageItem, List[TransactionDetail]]] = []
        for item in page:
            if self._stop.is_set():
                raise _Stopped()
            if not item.succeeded and not self.config.include_failed:
                self.stats.failed_transactions += 1
                fetched.append((item, []))
                continue
            try:
                transactions = await self._fetch(self.strategy.fetch_detail, item)
            except RpcSkippedItem as exc:
                logger.warning("Skipping %s: %s", item, exc)
                self.stats.skipped_items += 1
                fetched.append((item, []))
                continue
            if transactions is _EXHAUSTED:
                return None
            fetched.append((item, transactions))

        emitted = 0
        for item, transactions in fetched:
            for tx in transactions:
                for record in self.decode_transaction(tx):
                    await self._emit(record)
                    emitted += 1
            if item.signature is not None:
                self.cursor.mark_seen(item.signature, item.slot)
            self.stats.items += 1

        self._set_state(ScanState.ADVANCING)
        self._advance(page[-1].watermark())
        self.stats.pages += 1
        logger.info("Processed %d items, %d records, watermark %s", len(page), emitted, self.cursor.watermark)
        return emitted

    def decode_transaction(self, tx: TransactionDetail) -> List[DecodedRecord]:
        """All records of interest in one transaction, in execution order."""
        self.stats.transactions += 1
        if not tx.succeeded and not self.config.include_failed:
            self.stats.failed_transactions += 1
            logger.debug("Transaction %s... failed on-chain, not decoded", tx.signature[:8])
            return []

        self._set_state(ScanState.EXTRACTING)
        instructions = extract_instructions(tx)

        self._set_state(ScanState.DECODING)
        records = []
        for instruction in instructions:
            self.stats.instructions_seen += 1
            decoder = self.decoders.get(instruction.program_id)
            if decoder is None:
                continue
            record = self._decode(decoder, Namespace.INSTRUCTION, instruction.data, tx.signature, instruction.position)
            if record is not None:
                records.append(record.with_context(RecordContext(
                    slot=tx.slot,
                    signature=tx.signature,
                    program_id=instruction.program_id,
                    position=instruction.position,
                    origin=instruction.origin,
                    block_time=tx.block_time,
                    accounts=instruction.accounts,
                )))

        if self.config.decode_events:
            for program_id, decoder in self.decoders.items():
                for index, payload in decoder.program_data(list(tx.log_messages)):
                    record = self._decode(decoder, Namespace.EVENT, payload, tx.signature, index)
                    if record is not None:
                        records.append(record.with_context(RecordContext(
                            slot=tx.slot,
                            signature=tx.signature,
                            program_id=program_id,
                            position=index,
                            origin=InstructionOrigin.top_level(),
                            block_time=tx.block_time,
                        )))
        return records

    def _decode(self, decoder: Decoder, namespace: Namespace, data: bytes,
                signature: str, position: int) -> Optional[DecodedRecord]:
        try:
            return decoder.decode(namespace, data)
        except UnknownDiscriminator as exc:
            self.stats.unknown_discriminators += 1
            logger.debug("%s... #%d: %s", signature[:8], position, exc)
        except DecodeError as exc:
            self.stats.record_decode_failure(exc)
            logger.warning("Failed to decode %s in %s... #%d: %s",
                           namespace.name.lower(), signature[:8], position, exc)
        return None

    async def _emit(self, record: DecodedRecord) -> None:
        try:
            await asyncio.wait_for(self.sink.emit(record), timeout=self.config.sink_timeout)
        except asyncio.TimeoutError as exc:
            raise SinkTimeout(f"Sink did not accept record within {self.config.sink_timeout}s") from exc
        self.stats.records_emitted += 1

    def _advance(self, watermark: Watermark) -> None:
        self.cursor.advance(watermark)
        if self.cursor_store is not None:
            self.cursor_store.save(watermark)

    # Fetching

    async def _fetch(self, method, *args):
        """
        Call a strategy method, retrying transient failures with backoff.

        Returns _EXHAUSTED once max_retries is used up. Skipped items and fatal
        errors propagate; stop() interrupts both the call and the backoff.
        """
        attempt = 0
        while True:
            try:
                return await self._interruptible(method(*args))
            except RpcTransientError as exc:
                if attempt >= self.config.max_retries:
                    self.stats.retries_exhausted += 1
                    logger.warning("Giving up after %d attempts: %s", attempt + 1, exc)
                    return _EXHAUSTED
                delay = self.config.backoff(attempt)
                self.stats.transient_retries += 1
                logger.debug("Transient ledger error (%s), retrying in %.2fs", exc, delay)
                attempt += 1
                await self._interruptible(asyncio.sleep(delay))
            except RpcFatalError as exc:
                logger.error("Fatal ledger error: %s", exc)
                raise

    async def _interruptible(self, coro):
        """Await `coro` unless stop() comes first, in which case raise _Stopped."""
        if self._stop.is_set():
            coro.close()
            raise _Stopped()
        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        raise _Stopped()

    def _set_state(self, state: ScanState) -> None:
        if state is not self._state:
            logger.debug("%s -> %s", self._state.name, state.name)
            self._state = state
