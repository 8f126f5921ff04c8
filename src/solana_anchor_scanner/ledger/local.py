"""
In-Process Ledger

A small slot-ordered ledger that lives in memory:
- Submitted transactions wait in a pending list until a block is produced
- Each produced block takes the next slot and links to its parent's hash
- Slots can be skipped, exactly like a leader missing its slot
- Program-owned accounts can be set directly for snapshot decoding

It implements LedgerClient, so the scanner runs against it unchanged. Faults
can be injected per method to exercise retry and skip handling.
"""

import hashlib
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterator, List, Optional, Sequence, Set, Tuple

import base58

from ..errors import LedgerError, RpcFatalError, RpcSkippedItem, RpcTransientError
from .base import LedgerClient
from .models import BlockDetail, LedgerInstruction, ProgramAccount, SignatureInfo, TransactionDetail
from .transactions import Instruction, TransactionBuilder, TransactionMessage

logger = logging.getLogger(__name__)

GENESIS_BLOCKHASH = base58.b58encode(bytes(32)).decode()


@dataclass
class LedgerStats:
    """Counters for what the ledger has produced and served."""
    blocks_produced: int = 0
    slots_skipped: int = 0
    transactions: int = 0
    failed_transactions: int = 0
    requests: int = 0
    injected_failures: int = 0


class LocalLedger(LedgerClient):
    """
    In-memory ledger.

    Example:
        ledger = LocalLedger()
        signature = ledger.submit_instructions(payer_address, [instruction])
        block = ledger.produce_block()
    """

    def __init__(self, start_slot: int = 0, slot_time: float = 0.4):
        """
        Args:
            start_slot: Slot of the genesis block; produced blocks start after it
            slot_time: Seconds between slots, used for block times
        """
        self.slot_time = slot_time
        self.genesis_time = int(time.time())
        self.stats = LedgerStats()

        self._slot = start_slot
        self._start_slot = start_slot
        self._blocks: Dict[int, BlockDetail] = {}
        self._skipped: Set[int] = set()
        self._transactions: Dict[str, TransactionDetail] = {}
        self._pending: List[TransactionDetail] = []
        self._accounts: Dict[str, ProgramAccount] = {}
        self._failures: Dict[str, Deque[LedgerError]] = defaultdict(deque)
        self._latest_blockhash = GENESIS_BLOCKHASH

    # Producing

    @property
    def latest_blockhash(self) -> str:
        return self._latest_blockhash

    @property
    def current_slot(self) -> int:
        return self._slot

    def submit(self, message: TransactionMessage,
               inner_instructions: Optional[Dict[int, Sequence[LedgerInstruction]]] = None,
               logs: Sequence[str] = (), succeeded: bool = True, signature: Optional[str] = None) -> str:
        """
        Queue a transaction message for the next block.

        Args:
            message: Compiled transaction message
            inner_instructions: Instructions invoked by each top-level instruction,
                keyed by its index
            logs: Program log lines recorded for the transaction
            succeeded: False to record the transaction as failed
            signature: Identifier to list it under; defaults to the message's
                transaction_id()

        Returns:
            The transaction signature

        Raises:
            ValueError: for a duplicate signature or an inner group without a parent
        """
        signature = signature or message.transaction_id()
        if signature in self._transactions or any(p.signature == signature for p in self._pending):
            raise ValueError(f"Transaction {signature[:8]}... already submitted")

        instructions = message.resolved_instructions()
        inner = []
        for index, group in sorted((inner_instructions or {}).items()):
            if not 0 <= index < len(instructions):
                raise ValueError(f"Inner instructions for missing instruction {index}")
            inner.append((index, tuple(group)))

        self._pending.append(TransactionDetail(
            signature=signature,
            slot=-1,
            instructions=instructions,
            inner_instructions=tuple(inner),
            succeeded=succeeded,
            log_messages=tuple(logs),
        ))
        logger.debug("Transaction %s... from %s... queued", signature[:8], message.fee_payer[:8])
        return signature

    def submit_instructions(self, fee_payer: str, instructions: Sequence[Instruction], **kwargs) -> str:
        """Compile `instructions` against the latest blockhash and submit them."""
        message = TransactionBuilder(fee_payer, self._latest_blockhash).add_instructions(list(instructions)).build()
        return self.submit(message, **kwargs)

    def produce_block(self) -> BlockDetail:
        """Put every pending transaction into a block at the next slot."""
        slot = self._slot + 1
        block_time = self.genesis_time + int((slot - self._start_slot) * self.slot_time)

        transactions = tuple(
            TransactionDetail(
                signature=pending.signature,
                slot=slot,
                instructions=pending.instructions,
                inner_instructions=pending.inner_instructions,
                succeeded=pending.succeeded,
                block_time=block_time,
                log_messages=pending.log_messages,
            )
            for pending in self._pending
        )
        self._pending = []

        block = BlockDetail(
            slot=slot,
            transactions=transactions,
            block_time=block_time,
            blockhash=self._block_hash(slot, transactions),
            parent_slot=self._parent_slot(slot),
        )

        self._blocks[slot] = block
        self._slot = slot
        self._latest_blockhash = block.blockhash
        for tx in transactions:
            self._transactions[tx.signature] = tx
            self.stats.transactions += 1
            if not tx.succeeded:
                self.stats.failed_transactions += 1
        self.stats.blocks_produced += 1

        logger.debug("Block %d produced with %d transactions", slot, len(transactions))
        return block

    def skip_slot(self, count: int = 1) -> None:
        """Advance the clock past `count` slots that never get a block."""
        for _ in range(count):
            self._slot += 1
            self._skipped.add(self._slot)
            self.stats.slots_skipped += 1

    def set_account(self, address: str, owner: str, data: bytes,
                    lamports: int = 0, executable: bool = False) -> ProgramAccount:
        """Create or overwrite an account."""
        if lamports < 0:
            raise ValueError("Lamports cannot be negative")
        account = ProgramAccount(address=address, owner=owner, data=bytes(data),
                                 lamports=lamports, executable=executable)
        self._accounts[address] = account
        return account

    def inject_failure(self, method: str, error: LedgerError, times: int = 1) -> None:
        """
        Make the next `times` calls of `method` raise `error`.

        Args:
            method: LedgerClient method name, e.g. "get_transaction"
            error: Error to raise
            times: Number of consecutive calls that fail
        """
        if not hasattr(LedgerClient, method):
            raise ValueError(f"Unknown ledger method: {method}")
        for _ in range(times):
            self._failures[method].append(error)

    # LedgerClient

    async def get_signatures(self, address: str, *, until: Optional[str] = None,
                             before: Optional[str] = None, limit: int = 1000) -> List[SignatureInfo]:
        self._request("get_signatures")
        if before is not None and before not in self._transactions:
            raise RpcFatalError(f"Signature {before} not found")

        result: List[SignatureInfo] = []
        started = before is None
        for tx in self._newest_first():
            if not started:
                started = tx.signature == before
                continue
            if tx.signature == until or len(result) >= limit:
                break
            if address in _addresses(tx):
                result.append(SignatureInfo(
                    signature=tx.signature,
                    slot=tx.slot,
                    succeeded=tx.succeeded,
                    block_time=tx.block_time,
                    confirmation_status="finalized",
                ))
        return result

    async def get_transaction(self, signature: str) -> TransactionDetail:
        self._request("get_transaction")
        tx = self._transactions.get(signature)
        if tx is None:
            raise RpcTransientError(f"Transaction {signature} not available")
        return tx

    async def get_slot(self) -> int:
        self._request("get_slot")
        return self._slot

    async def get_block(self, slot: int) -> BlockDetail:
        self._request("get_block")
        if slot > self._slot:
            raise RpcTransientError(f"Block {slot} not available yet")
        block = self._blocks.get(slot)
        if block is None:
            raise RpcSkippedItem(f"Slot {slot} was skipped", position=slot)
        return block

    async def get_program_accounts(self, program_id: str) -> List[ProgramAccount]:
        self._request("get_program_accounts")
        return [account for account in self._accounts.values() if account.owner == program_id]

    # Helpers

    def _request(self, method: str) -> None:
        self.stats.requests += 1
        failures = self._failures.get(method)
        if failures:
            self.stats.injected_failures += 1
            raise failures.popleft()

    def _newest_first(self) -> Iterator[TransactionDetail]:
        for slot in sorted(self._blocks, reverse=True):
            yield from reversed(self._blocks[slot].transactions)

    def _parent_slot(self, slot: int) -> int:
        produced = [s for s in self._blocks if s < slot]
        return max(produced) if produced else self._start_slot

    def _block_hash(self, slot: int, transactions: Tuple[TransactionDetail, ...]) -> str:
        content = self._latest_blockhash + str(slot) + "".join(tx.signature for tx in transactions)
        return base58.b58encode(hashlib.sha256(content.encode()).digest()).decode()


def _addresses(tx: TransactionDetail) -> Set[str]:
    """Every address a transaction mentions, inner instructions included."""
    addresses: Set[str] = set()
    instructions = list(tx.instructions)
    for _, group in tx.inner_instructions:
        instructions.extend(group)
    for instruction in instructions:
        addresses.add(instruction.program_id)
        addresses.update(instruction.accounts)
    return addresses
