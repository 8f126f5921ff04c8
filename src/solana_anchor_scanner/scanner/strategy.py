"""
Fetch Strategies

How the engine discovers new ledger activity. Both strategies answer the same
two questions, so one engine loop serves both:

    list_recent(bound, page_size)  what happened after the watermark, oldest first
    fetch_detail(item)             the transactions behind one listed item

SignaturePagedStrategy follows one address through getSignaturesForAddress.
SlotRangeStrategy walks every block, slot by slot.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ..ledger.base import LedgerClient
from ..ledger.models import TransactionDetail
from .cursor import Watermark

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageItem:
    """One listed ledger position: a signature, or a whole slot."""
    slot: int
    signature: Optional[str] = None
    succeeded: bool = True

    def watermark(self) -> Watermark:
        return Watermark(self.slot, self.signature)

    def __str__(self) -> str:
        return f"{self.slot}/{self.signature[:8]}..." if self.signature else f"slot {self.slot}"


class FetchStrategy(ABC):
    """Discovery of new items after a watermark."""

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    @abstractmethod
    async def initial_watermark(self) -> Optional[Watermark]:
        """Watermark for a fresh scan that starts at the ledger's current tip."""

    @abstractmethod
    async def list_recent(self, bound: Optional[Watermark], page_size: int) -> List[PageItem]:
        """
        Items strictly after `bound`, oldest first.

        Args:
            bound: Watermark to list after (None lists from the beginning)
            page_size: Request size; strategies may issue several requests
        """

    @abstractmethod
    async def fetch_detail(self, item: PageItem) -> List[TransactionDetail]:
        """Transactions for one listed item, in ledger order."""


class SignaturePagedStrategy(FetchStrategy):
    """
    Follow the signatures that touch one address.

    The ledger lists signatures newest first, so listing pages backwards
    from the tip until it reaches the watermark signature, then reverses.
    """

    def __init__(self, ledger: LedgerClient, address: str):
        super().__init__(ledger)
        self.address = address

    async def initial_watermark(self) -> Optional[Watermark]:
        latest = await self.ledger.get_signatures(self.address, limit=1)
        if not latest:
            return None
        return Watermark(latest[0].slot, latest[0].signature)

    async def list_recent(self, bound: Optional[Watermark], page_size: int) -> List[PageItem]:
        until = bound.signature if bound is not None else None
        newest_first = []
        before = None
        while True:
            page = await self.ledger.get_signatures(self.address, until=until, before=before, limit=page_size)
            newest_first.extend(page)
            if len(page) < page_size:
                break
            before = page[-1].signature

        if len(newest_first) > page_size:
            logger.debug("Listed %d signatures after %s", len(newest_first), bound)
        return [PageItem(info.slot, info.signature, info.succeeded) for info in reversed(newest_first)]

    async def fetch_detail(self, item: PageItem) -> List[TransactionDetail]:
        return [await self.ledger.get_transaction(item.signature)]


class SlotRangeStrategy(FetchStrategy):
    """Walk blocks slot by slot, at most `page_size` slots per listing."""

    async def initial_watermark(self) -> Optional[Watermark]:
        return Watermark(await self.ledger.get_slot())

    async def list_recent(self, bound: Optional[Watermark], page_size: int) -> List[PageItem]:
        latest = await self.ledger.get_slot()
        start = bound.slot + 1 if bound is not None else 0
        end = min(latest, start + page_size - 1)
        return [PageItem(slot) for slot in range(start, end + 1)]

    async def fetch_detail(self, item: PageItem) -> List[TransactionDetail]:
        block = await self.ledger.get_block(item.slot)
        return list(block.transactions)
