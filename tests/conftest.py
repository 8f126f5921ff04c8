import hashlib
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import base58
import pytest

from solana_anchor_scanner.core import Decoder, SchemaRegistry
from solana_anchor_scanner.ledger import AccountMeta, Instruction, LedgerInstruction, LocalLedger
from solana_anchor_scanner.ledger.transactions import SYSTEM_PROGRAM_ID

FIXTURES = Path(__file__).parent / "fixtures"

MEMO_PROGRAM_ID = "MemoSq4gqABAXKb96qNsRBfHefqFVbdE6DYqgQk3VZr"


def address_from_seed(seed: bytes) -> str:
    """A stable 32-byte base58 address for fixtures."""
    return base58.b58encode(hashlib.sha256(seed).digest()).decode()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def favorites_registry() -> SchemaRegistry:
    return SchemaRegistry.from_file(FIXTURES / "favorites.json")


@pytest.fixture
def favorites_decoder(favorites_registry) -> Decoder:
    return Decoder(favorites_registry)


@pytest.fixture
def bank_decoder() -> Decoder:
    return Decoder(SchemaRegistry.from_file(FIXTURES / "bank.json"))


@pytest.fixture
def emit_log_decoder() -> Decoder:
    return Decoder(SchemaRegistry.from_file(FIXTURES / "emit_log.json"))


class LedgerScript:
    """Builds Anchor calls and lands them on a LocalLedger."""

    def __init__(self, ledger: LocalLedger, payer: str):
        self.ledger = ledger
        self.payer = payer
        self._nonce = 0

    def call(self, decoder: Decoder, name: str, values: Dict, accounts: Optional[List[str]] = None) -> Instruction:
        data = decoder.encode("instruction", name, values)
        metas = [AccountMeta(self.payer, is_signer=True, is_writable=True)]
        metas += [AccountMeta(address, is_signer=False, is_writable=True) for address in accounts or []]
        return Instruction(decoder.program_id, metas, data)

    def favorites(self, decoder: Decoder, number: int, color: str) -> Instruction:
        pda = address_from_seed(b"favorites:" + self.payer.encode())
        instruction = self.call(decoder, "set_favorites", {"number": number, "color": color}, [pda])
        instruction.accounts.append(AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False))
        return instruction

    def submit(self, *instructions: Instruction, inner: Optional[Dict[int, Sequence[LedgerInstruction]]] = None,
               logs: Sequence[str] = (), succeeded: bool = True) -> str:
        # A trailing memo keeps otherwise identical transactions distinct
        self._nonce += 1
        memo = Instruction(MEMO_PROGRAM_ID, [], self._nonce.to_bytes(8, "little"))
        return self.ledger.submit_instructions(self.payer, list(instructions) + [memo],
                                               inner_instructions=inner, logs=logs, succeeded=succeeded)


@pytest.fixture
def payer() -> str:
    return address_from_seed(b"payer")


@pytest.fixture
def ledger() -> LocalLedger:
    return LocalLedger()


@pytest.fixture
def script(ledger, payer) -> LedgerScript:
    return LedgerScript(ledger, payer)
