import json

import pytest

from solana_anchor_scanner.core import Namespace, SchemaRegistry, derive
from solana_anchor_scanner.errors import SchemaLoadError


def test_favorites_idl(favorites_registry):
    assert favorites_registry.program_id == "AfWzQDmP7gzMaiFPmwwQysvVTEuxPvKtDcUA5hfTwiwW"
    assert favorites_registry.program_name == "anchor_favorites"

    entry = favorites_registry.get("instruction", "set_favorites")
    assert list(entry.discriminator) == [211, 137, 87, 135, 161, 224, 187, 120]
    assert [f.name for f in entry.fields] == ["number", "color"]
    assert entry.account_names == ("user", "favorites", "system_program")

    account = favorites_registry.get("account", "Favorites")
    assert account.discriminator == derive("account", "Favorites")
    assert [f.name for f in account.fields] == ["number", "color"]


def test_legacy_idl_derives_snake_case_discriminators(fixtures_dir):
    registry = SchemaRegistry.from_file(fixtures_dir / "bank.json")

    assert registry.program_id == "3A7uokk2LFPCMBJmCrn4ahErYicSpvktHEZnCmhVKY4m"
    assert registry.program_name == "bank"
    create = registry.get("instruction", "createUserAccount")
    assert create.discriminator == derive("instruction", "create_user_account")
    assert registry.get("instruction", "deposit").discriminator == derive("instruction", "deposit")
    assert [f.name for f in registry.get("account", "UserAccount").fields] == ["depositAmount"]


def test_events_take_layout_from_types(emit_log_decoder):
    registry = emit_log_decoder.registry
    events = registry.all_discriminators("event")
    assert list(events["MyEvent"]) == [96, 184, 197, 243, 139, 2, 90, 148]
    assert [f.name for f in registry.get("event", "MySecondEvent").fields] == ["value", "message"]


def test_resolve_by_prefix(favorites_registry):
    data = bytes([211, 137, 87, 135, 161, 224, 187, 120, 1, 2, 3])
    assert favorites_registry.resolve("instruction", data).name == "set_favorites"
    assert favorites_registry.resolve("account", data) is None
    assert ("instruction", "set_favorites") in favorites_registry
    assert len(favorites_registry) == 2


def test_get_unknown_name_raises_key_error(favorites_registry):
    with pytest.raises(KeyError):
        favorites_registry.get("instruction", "transfer")


def _idl(**overrides):
    document = {
        "address": "AfWzQDmP7gzMaiFPmwwQysvVTEuxPvKtDcUA5hfTwiwW",
        "instructions": [{"name": "set_favorites", "accounts": [], "args": [{"name": "number", "type": "u64"}]}],
    }
    document.update(overrides)
    return document


def test_wrong_explicit_discriminator_fails_load():
    document = _idl(instructions=[{"name": "set_favorites", "discriminator": [1, 2, 3, 4, 5, 6, 7, 8], "args": []}])
    with pytest.raises(SchemaLoadError):
        SchemaRegistry.from_idl(document)

    registry = SchemaRegistry.from_idl(document, verify_discriminators=False)
    assert registry.get("instruction", "set_favorites").discriminator == bytes([1, 2, 3, 4, 5, 6, 7, 8])


def test_duplicate_discriminators_fail_load():
    same = [1, 2, 3, 4, 5, 6, 7, 8]
    document = _idl(instructions=[
        {"name": "a", "discriminator": same, "args": []},
        {"name": "b", "discriminator": same, "args": []},
    ])
    with pytest.raises(SchemaLoadError):
        SchemaRegistry.from_idl(document, verify_discriminators=False)


def test_discriminator_must_be_eight_bytes():
    document = _idl(instructions=[{"name": "a", "discriminator": [1, 2, 3], "args": []}])
    with pytest.raises(SchemaLoadError):
        SchemaRegistry.from_idl(document)


def test_undefined_type_reference_fails_load():
    document = _idl(instructions=[{"name": "a", "args": [{"name": "p", "type": {"defined": {"name": "Point"}}}]}])
    with pytest.raises(SchemaLoadError, match="Point"):
        SchemaRegistry.from_idl(document)


def test_account_without_layout_fails_load():
    with pytest.raises(SchemaLoadError):
        SchemaRegistry.from_idl(_idl(accounts=[{"name": "Ghost"}]))


def test_malformed_documents_fail_load(tmp_path):
    with pytest.raises(SchemaLoadError):
        SchemaRegistry.from_idl(["not", "a", "document"])
    with pytest.raises(SchemaLoadError):
        SchemaRegistry.from_idl(_idl(instructions=[{"args": []}]))

    broken = tmp_path / "broken.json"
    broken.write_text("{ nope")
    with pytest.raises(SchemaLoadError):
        SchemaRegistry.from_file(broken)
    with pytest.raises(SchemaLoadError):
        SchemaRegistry.from_file(tmp_path / "missing.json")


def test_nested_account_groups_are_flattened(tmp_path):
    document = _idl(instructions=[{
        "name": "swap",
        "accounts": [
            {"name": "user", "signer": True},
            {"name": "pool", "accounts": [{"name": "vault_a"}, {"name": "vault_b"}]},
        ],
        "args": [],
    }])
    path = tmp_path / "swap.json"
    path.write_text(json.dumps(document))

    entry = SchemaRegistry.from_file(path).get(Namespace.INSTRUCTION, "swap")
    assert entry.account_names == ("user", "pool.vault_a", "pool.vault_b")
