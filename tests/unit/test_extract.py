from solana_anchor_scanner.core import InstructionOrigin
from solana_anchor_scanner.ledger import LedgerInstruction, TransactionDetail
from solana_anchor_scanner.scanner import extract_instructions

PROGRAM = "AfWzQDmP7gzMaiFPmwwQysvVTEuxPvKtDcUA5hfTwiwW"
OTHER = "11111111111111111111111111111111"


def _ix(program_id, data):
    return LedgerInstruction(program_id=program_id, accounts=("a", "b"), data=data)


def test_inner_instructions_follow_their_parent():
    tx = TransactionDetail(
        signature="sig",
        slot=10,
        instructions=(_ix(OTHER, b"t0"), _ix(OTHER, b"t1"), _ix(PROGRAM, b"t2")),
        inner_instructions=((1, (_ix(PROGRAM, b"i1a"), _ix(OTHER, b"i1b"))),),
    )

    entries = extract_instructions(tx)

    assert [e.data for e in entries] == [b"t0", b"t1", b"i1a", b"i1b", b"t2"]
    assert [e.position for e in entries] == [0, 1, 2, 3, 4]
    assert [str(e.origin) for e in entries] == ["top_level", "top_level", "inner(1)", "inner(1)", "top_level"]
    assert entries[2].origin == InstructionOrigin.inner(1)
    assert entries[2].is_inner and not entries[4].is_inner
    assert entries[2].accounts == ("a", "b")


def test_split_inner_groups_for_one_parent_are_merged_in_order():
    tx = TransactionDetail(
        signature="sig",
        slot=10,
        instructions=(_ix(OTHER, b"t0"),),
        inner_instructions=((0, (_ix(PROGRAM, b"x"),)), (0, (_ix(PROGRAM, b"y"),))),
    )
    assert [e.data for e in extract_instructions(tx)] == [b"t0", b"x", b"y"]


def test_empty_transaction():
    assert extract_instructions(TransactionDetail(signature="sig", slot=1, instructions=())) == []
