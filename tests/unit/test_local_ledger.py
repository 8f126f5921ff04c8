import hashlib

import base58
import pytest

from solana_anchor_scanner.errors import RpcFatalError, RpcSkippedItem, RpcTransientError
from solana_anchor_scanner.ledger import AccountMeta, Instruction, LocalLedger, TransactionBuilder
from solana_anchor_scanner.ledger.local import GENESIS_BLOCKHASH
from solana_anchor_scanner.ledger.transactions import SYSTEM_PROGRAM_ID

PROGRAM = "AfWzQDmP7gzMaiFPmwwQysvVTEuxPvKtDcUA5hfTwiwW"


def address_from_seed(seed):
    return base58.b58encode(hashlib.sha256(seed).digest()).decode()


def _ix(*metas, data=b"\x01"):
    return Instruction(PROGRAM, list(metas), data)


def _message(payer, data=b"\x01", blockhash=GENESIS_BLOCKHASH):
    return TransactionBuilder(payer, blockhash).add_instruction(_ix(data=data)).build()


def test_builder_orders_accounts_signers_first(payer):
    cosigner = address_from_seed(b"cosigner")
    watcher = address_from_seed(b"watcher")
    state = address_from_seed(b"state")

    message = TransactionBuilder(payer, GENESIS_BLOCKHASH).add_instruction(_ix(
        AccountMeta(state, is_signer=False, is_writable=True),
        AccountMeta(watcher, is_signer=True, is_writable=False),
        AccountMeta(cosigner, is_signer=True, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    )).build()

    keys = message.account_keys
    assert keys[:4] == (payer, cosigner, watcher, state)
    assert set(keys[4:]) == {PROGRAM, SYSTEM_PROGRAM_ID}
    assert message.header.num_required_signatures == 3
    assert message.header.num_readonly_signed_accounts == 1
    assert message.header.num_readonly_unsigned_accounts == 2
    assert message.fee_payer == payer

    resolved = message.resolved_instructions()[0]
    assert resolved.program_id == PROGRAM
    assert resolved.accounts == (state, watcher, cosigner, SYSTEM_PROGRAM_ID)


def test_builder_requires_instructions(payer):
    with pytest.raises(ValueError):
        TransactionBuilder(payer, GENESIS_BLOCKHASH).build()


def test_transaction_id_follows_message_content(payer):
    assert _message(payer).transaction_id() == _message(payer).transaction_id()
    assert _message(payer).transaction_id() != _message(payer, data=b"\x02").transaction_id()
    assert _message(payer).transaction_id() != _message(payer, blockhash=address_from_seed(b"h")).transaction_id()


def test_blocks_take_pending_transactions(payer):
    ledger = LocalLedger(start_slot=100)
    message = _message(payer, data=b"a", blockhash=ledger.latest_blockhash)
    signature = ledger.submit(message)
    assert signature == message.transaction_id()

    block = ledger.produce_block()

    assert block.slot == 101
    assert block.parent_slot == 100
    assert [t.signature for t in block.transactions] == [signature]
    assert block.transactions[0].slot == 101
    assert ledger.latest_blockhash == block.blockhash != GENESIS_BLOCKHASH
    assert ledger.produce_block().transactions == ()


def test_submit_instructions_uses_latest_blockhash(ledger, payer):
    ledger.produce_block()
    signature = ledger.submit_instructions(payer, [_ix(data=b"c")])
    assert signature == _message(payer, data=b"c", blockhash=ledger.latest_blockhash).transaction_id()

    named = ledger.submit(_message(payer, data=b"d"), signature="named")
    assert named == "named"
    assert [t.signature for t in ledger.produce_block().transactions] == [signature, "named"]


def test_duplicate_and_orphan_inner_submissions_are_rejected(ledger, payer):
    message = _message(payer)
    ledger.submit(message)
    with pytest.raises(ValueError):
        ledger.submit(message)

    with pytest.raises(ValueError):
        ledger.submit(_message(payer, data=b"b"), inner_instructions={3: [_ix().resolved()]})


@pytest.mark.anyio
async def test_signature_listing_pages_backwards(ledger, script, favorites_decoder):
    signatures = []
    for number in range(5):
        signatures.append(script.submit(script.favorites(favorites_decoder, number, "x")))
        ledger.produce_block()

    newest = await ledger.get_signatures(PROGRAM)
    assert [s.signature for s in newest] == signatures[::-1]
    assert [s.slot for s in newest] == [5, 4, 3, 2, 1]

    page = await ledger.get_signatures(PROGRAM, before=signatures[3], limit=2)
    assert [s.signature for s in page] == [signatures[2], signatures[1]]

    bounded = await ledger.get_signatures(PROGRAM, until=signatures[1])
    assert [s.signature for s in bounded] == signatures[:1:-1]

    assert await ledger.get_signatures(address_from_seed(b"nobody")) == []
    with pytest.raises(RpcFatalError):
        await ledger.get_signatures(PROGRAM, before="unknown")


@pytest.mark.anyio
async def test_listing_includes_inner_only_appearances(ledger, script, payer):
    cpi = _ix(AccountMeta(payer, True, True)).resolved()
    transfer = Instruction(SYSTEM_PROGRAM_ID, [AccountMeta(payer, True, True)], b"\x02")
    signature = script.submit(transfer, inner={0: [cpi]})
    ledger.produce_block()

    listed = await ledger.get_signatures(PROGRAM)
    assert [s.signature for s in listed] == [signature]


@pytest.mark.anyio
async def test_fetching_transactions_and_blocks(ledger, script, favorites_decoder):
    failed = script.submit(script.favorites(favorites_decoder, 1, "x"), succeeded=False, logs=["Program log: hi"])
    ledger.produce_block()
    ledger.skip_slot(2)
    assert ledger.current_slot == 3

    tx = await ledger.get_transaction(failed)
    assert not tx.succeeded
    assert tx.log_messages == ("Program log: hi",)
    assert (await ledger.get_signatures(PROGRAM))[0].succeeded is False

    assert (await ledger.get_block(1)).transactions == (tx,)
    with pytest.raises(RpcSkippedItem) as excinfo:
        await ledger.get_block(2)
    assert excinfo.value.position == 2
    with pytest.raises(RpcTransientError):
        await ledger.get_block(4)
    with pytest.raises(RpcTransientError):
        await ledger.get_transaction("missing")

    assert await ledger.get_slot() == 3
    assert ledger.stats.failed_transactions == 1
    assert ledger.stats.slots_skipped == 2


@pytest.mark.anyio
async def test_injected_failures_are_consumed_in_order(ledger):
    ledger.inject_failure("get_slot", RpcTransientError("busy"), times=2)

    for _ in range(2):
        with pytest.raises(RpcTransientError):
            await ledger.get_slot()
    assert await ledger.get_slot() == 0
    assert ledger.stats.injected_failures == 2

    with pytest.raises(ValueError):
        ledger.inject_failure("get_everything", RpcTransientError("x"))


@pytest.mark.anyio
async def test_program_accounts(ledger, payer):
    ledger.set_account("acc1", PROGRAM, b"\x01\x02", lamports=10)
    ledger.set_account("acc2", SYSTEM_PROGRAM_ID, b"")
    accounts = await ledger.get_program_accounts(PROGRAM)
    assert [(a.address, a.data, a.lamports) for a in accounts] == [("acc1", b"\x01\x02", 10)]

    with pytest.raises(ValueError):
        ledger.set_account("acc3", PROGRAM, b"", lamports=-1)
