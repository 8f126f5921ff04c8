"""
Ledger Client Interface

The scanner never talks to a cluster directly; it goes through a LedgerClient.
Implementations must raise only the ledger errors from `errors`:

    RpcTransientError   timeouts, connection trouble, rate limits, "not yet"
    RpcSkippedItem      the slot was skipped or pruned and never will exist
    RpcFatalError       anything else

so that retry/skip/abort policy lives in one place (the engine) and never has
to look at client-specific error shapes.
"""

import abc
from typing import List, Optional

from .models import BlockDetail, ProgramAccount, SignatureInfo, TransactionDetail


class LedgerClient(abc.ABC):
    """Asynchronous read access to a Solana-like ledger."""

    @abc.abstractmethod
    async def get_signatures(self, address: str, *, until: Optional[str] = None,
                             before: Optional[str] = None, limit: int = 1000) -> List[SignatureInfo]:
        """
        List signatures touching `address`, newest first.

        Args:
            address: Program or account address
            until: Stop (exclusive) when this signature is reached
            before: Start strictly before this signature
            limit: Maximum entries to return
        """

    @abc.abstractmethod
    async def get_transaction(self, signature: str) -> TransactionDetail:
        """Fetch one transaction with raw instruction data and inner instructions."""

    @abc.abstractmethod
    async def get_slot(self) -> int:
        """Latest slot at the client's commitment level."""

    @abc.abstractmethod
    async def get_block(self, slot: int) -> BlockDetail:
        """Fetch every transaction in `slot`. Raises RpcSkippedItem for skipped slots."""

    @abc.abstractmethod
    async def get_program_accounts(self, program_id: str) -> List[ProgramAccount]:
        """Snapshot of every account owned by `program_id`."""

    async def close(self) -> None:
        """Release network resources (no-op by default)."""

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
