import hashlib

import pytest

from solana_anchor_scanner.core.discriminator import (
    DiscriminatorIndex, Namespace, derive, extract_discriminator, format_discriminator, snake_case, verify,
)
from solana_anchor_scanner.errors import SchemaLoadError, TruncatedBuffer


def test_derive_known_instruction_discriminators():
    assert list(derive("instruction", "set_favorites")) == [211, 137, 87, 135, 161, 224, 187, 120]
    assert list(derive(Namespace.INSTRUCTION, "initialize")) == [175, 175, 109, 31, 13, 152, 155, 237]


def test_derive_known_event_discriminators():
    assert list(derive("event", "MyEvent")) == [96, 184, 197, 243, 139, 2, 90, 148]
    assert list(derive("event", "MySecondEvent")) == [48, 215, 165, 169, 66, 156, 9, 164]


@pytest.mark.parametrize("namespace, prefix", [
    ("instruction", "global"),
    ("account", "account"),
    ("event", "event"),
    ("state", "state"),
])
def test_derive_is_sha256_of_prefixed_name(namespace, prefix):
    expected = hashlib.sha256(f"{prefix}:Favorites".encode()).digest()[:8]
    assert derive(namespace, "Favorites") == expected
    assert len(derive(namespace, "Favorites")) == 8


def test_namespace_parse_accepts_names_and_prefixes():
    assert Namespace.parse("instruction") is Namespace.INSTRUCTION
    assert Namespace.parse("global") is Namespace.INSTRUCTION
    assert Namespace.parse("ACCOUNT") is Namespace.ACCOUNT
    assert Namespace.parse(Namespace.EVENT) is Namespace.EVENT
    with pytest.raises(ValueError):
        Namespace.parse("types")


def test_snake_case_handles_legacy_names():
    assert snake_case("setFavorites") == "set_favorites"
    assert snake_case("createUserAccount") == "create_user_account"
    assert snake_case("deposit") == "deposit"


def test_verify_accepts_camel_case_instruction_names():
    assert verify(Namespace.INSTRUCTION, "setFavorites", derive("instruction", "set_favorites"))
    assert not verify(Namespace.ACCOUNT, "setFavorites", derive("instruction", "set_favorites"))


def test_extract_and_format_discriminator():
    data = bytes([211, 137, 87, 135, 161, 224, 187, 120, 42])
    assert extract_discriminator(data) == data[:8]
    assert format_discriminator(data[:8]) == "[211, 137, 87, 135, 161, 224, 187, 120]"

    with pytest.raises(TruncatedBuffer):
        extract_discriminator(data[:7])


def test_index_resolves_exact_prefix_per_namespace():
    index = DiscriminatorIndex()
    disc = derive("instruction", "set_favorites")
    index.add(Namespace.INSTRUCTION, disc, "set_favorites")

    assert index.resolve(Namespace.INSTRUCTION, disc + b"payload") == "set_favorites"
    assert index.resolve(Namespace.ACCOUNT, disc) is None
    assert index.resolve(Namespace.INSTRUCTION, bytes(8)) is None
    assert len(index) == 1


def test_index_rejects_duplicates_and_bad_lengths():
    index = DiscriminatorIndex()
    index.add(Namespace.EVENT, bytes(range(8)), "a")
    index.add(Namespace.ACCOUNT, bytes(range(8)), "same bytes, other namespace")

    with pytest.raises(SchemaLoadError):
        index.add(Namespace.EVENT, bytes(range(8)), "b")
    with pytest.raises(SchemaLoadError):
        index.add(Namespace.EVENT, bytes(7), "short")
