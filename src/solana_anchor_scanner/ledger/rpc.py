"""
JSON-RPC Ledger Client

LedgerClient backed by a Solana JSON-RPC endpoint, over httpx. Responses are
parsed into the ledger model with raw instruction bytes (base58 in "json"
encoding) and account keys resolved, including v0 loaded addresses.

Failures are classified so the engine never sees an httpx or JSON-RPC error:

    timeouts, transport errors, HTTP 429/5xx        -> RpcTransientError
    RPC codes for "not yet available"/rate limits   -> RpcTransientError
    RPC codes for skipped or pruned slots           -> RpcSkippedItem
    anything else                                   -> RpcFatalError

Based on: https://solana.com/docs/rpc/http
"""

import base64
import binascii
import itertools
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import base58
import httpx

from ..errors import RpcFatalError, RpcSkippedItem, RpcTransientError
from .base import LedgerClient
from .models import BlockDetail, LedgerInstruction, ProgramAccount, SignatureInfo, TransactionDetail

logger = logging.getLogger(__name__)

TRANSIENT_RPC_CODES = frozenset({
    -32004,   # block not available for slot
    -32005,   # node is behind / unhealthy
    -32014,   # block status not yet available
    -32016,   # minimum context slot not reached
    -32603,   # internal error
})
SKIPPED_RPC_CODES = frozenset({
    -32007,   # slot skipped or missing due to ledger jump
    -32009,   # slot skipped or missing in long-term storage
})
COMMITMENTS = ("processed", "confirmed", "finalized")


def classify_rpc_error(code: Optional[int], message: str, position: Any = None) -> Exception:
    """Map a JSON-RPC error object to a ledger error."""
    text = f"RPC error {code}: {message}"
    if code in SKIPPED_RPC_CODES:
        return RpcSkippedItem(text, position=position)
    if code in TRANSIENT_RPC_CODES:
        return RpcTransientError(text)
    return RpcFatalError(text)


class RpcLedger(LedgerClient):
    """
    Ledger client for a Solana JSON-RPC endpoint.

    Example:
        async with RpcLedger("https://api.devnet.solana.com") as ledger:
            latest = await ledger.get_slot()
    """

    def __init__(self, url: str, commitment: str = "confirmed", timeout: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None):
        """
        Args:
            url: JSON-RPC endpoint
            commitment: processed, confirmed or finalized
            timeout: Per-request timeout in seconds
            client: Pre-built client (tests pass one with a MockTransport)
        """
        if commitment not in COMMITMENTS:
            raise ValueError(f"Unknown commitment: {commitment}")
        self.url = url
        self.commitment = commitment
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    @property
    def _detail_commitment(self) -> str:
        # getTransaction and getBlock reject "processed"
        return "confirmed" if self.commitment == "processed" else self.commitment

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def call(self, method: str, params: Sequence[Any] = (), position: Any = None) -> Any:
        """
        Perform one JSON-RPC call and return its `result`.

        Raises:
            RpcTransientError: timeouts, transport errors, 429/5xx, transient RPC codes
            RpcSkippedItem: skipped or pruned slot codes
            RpcFatalError: any other failure
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": list(params)}
        try:
            response = await self._client.post(self.url, json=payload)
        except httpx.TimeoutException as exc:
            raise RpcTransientError(f"{method} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise RpcTransientError(f"{method} transport error: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise RpcTransientError(f"{method} returned HTTP {response.status_code}")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RpcFatalError(f"{method} returned HTTP {response.status_code}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise RpcFatalError(f"{method} returned invalid JSON") from exc

        error = body.get("error")
        if error:
            raise classify_rpc_error(error.get("code"), error.get("message", ""), position)
        return body.get("result")

    async def get_signatures(self, address: str, *, until: Optional[str] = None,
                             before: Optional[str] = None, limit: int = 1000) -> List[SignatureInfo]:
        options: Dict[str, Any] = {"limit": limit, "commitment": self.commitment}
        if until is not None:
            options["until"] = until
        if before is not None:
            options["before"] = before
        result = await self.call("getSignaturesForAddress", [address, options])
        return [SignatureInfo.from_rpc_item(item) for item in result or []]

    async def get_transaction(self, signature: str) -> TransactionDetail:
        result = await self.call("getTransaction", [signature, {
            "encoding": "json",
            "commitment": self._detail_commitment,
            "maxSupportedTransactionVersion": 0,
        }])
        if result is None:
            # Listed but not yet served by this node
            raise RpcTransientError(f"Transaction {signature} not available yet")
        return parse_transaction(result, slot=result.get("slot"), block_time=result.get("blockTime"))

    async def get_slot(self) -> int:
        return int(await self.call("getSlot", [{"commitment": self.commitment}]))

    async def get_block(self, slot: int) -> BlockDetail:
        result = await self.call("getBlock", [slot, {
            "encoding": "json",
            "commitment": self._detail_commitment,
            "maxSupportedTransactionVersion": 0,
            "transactionDetails": "full",
            "rewards": False,
        }], position=slot)
        if result is None:
            raise RpcTransientError(f"Block {slot} not available yet")

        block_time = result.get("blockTime")
        return BlockDetail(
            slot=slot,
            transactions=tuple(
                parse_transaction(item, slot=slot, block_time=block_time)
                for item in result.get("transactions") or []
            ),
            block_time=block_time,
            blockhash=result.get("blockhash"),
            parent_slot=result.get("parentSlot"),
        )

    async def get_program_accounts(self, program_id: str) -> List[ProgramAccount]:
        result = await self.call("getProgramAccounts", [program_id, {
            "encoding": "base64",
            "commitment": self.commitment,
        }])
        return [parse_program_account(item) for item in result or []]


# Parsing

def parse_transaction(item: Dict[str, Any], slot: Optional[int], block_time: Optional[int]) -> TransactionDetail:
    """
    Parse one "json"-encoded transaction (getTransaction result or getBlock entry).

    Raises:
        RpcFatalError: if the structure is not what the RPC documents
    """
    try:
        transaction = item["transaction"]
        message = transaction["message"]
        meta = item.get("meta") or {}
        keys = _account_keys(message, meta)

        instructions = tuple(_instruction(raw, keys) for raw in message.get("instructions", []))
        inner = tuple(
            (int(group["index"]), tuple(_instruction(raw, keys) for raw in group.get("instructions", [])))
            for group in meta.get("innerInstructions") or []
        )
        return TransactionDetail(
            signature=transaction["signatures"][0],
            slot=int(slot if slot is not None else item["slot"]),
            instructions=instructions,
            inner_instructions=inner,
            succeeded=meta.get("err") is None,
            block_time=block_time,
            log_messages=tuple(meta.get("logMessages") or ()),
        )
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise RpcFatalError(f"Malformed transaction in RPC response: {exc!r}") from exc


def parse_program_account(item: Dict[str, Any]) -> ProgramAccount:
    try:
        account = item["account"]
        data = account["data"]
        if isinstance(data, list):
            encoded, encoding = data[0], data[1]
        else:
            encoded, encoding = data, "base58"
        raw = base64.b64decode(encoded) if encoding == "base64" else base58.b58decode(encoded)
        return ProgramAccount(
            address=item["pubkey"],
            owner=account["owner"],
            data=raw,
            lamports=int(account.get("lamports", 0)),
            executable=bool(account.get("executable", False)),
        )
    except (KeyError, IndexError, TypeError, ValueError, binascii.Error) as exc:
        raise RpcFatalError(f"Malformed account in RPC response: {exc!r}") from exc


def _account_keys(message: Dict[str, Any], meta: Dict[str, Any]) -> Tuple[str, ...]:
    # v0 transactions append looked-up addresses after the static keys
    keys = [key if isinstance(key, str) else key["pubkey"] for key in message["accountKeys"]]
    loaded = meta.get("loadedAddresses") or {}
    keys.extend(loaded.get("writable") or [])
    keys.extend(loaded.get("readonly") or [])
    return tuple(keys)


def _instruction(raw: Dict[str, Any], keys: Tuple[str, ...]) -> LedgerInstruction:
    return LedgerInstruction(
        program_id=keys[raw["programIdIndex"]],
        accounts=tuple(keys[i] for i in raw.get("accounts", [])),
        data=base58.b58decode(raw.get("data", "")),
    )
