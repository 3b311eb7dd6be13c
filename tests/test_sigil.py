"""Tests for the key authority and key-file helpers."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from reliquary.errors import InvalidKeyError
from reliquary.sigil.eth import (
    KeyAuthority,
    generate_eoa,
    load_authority,
    load_private_key,
    parse_private_key,
    save_private_key,
    verify_signature,
)

# Reference key/address pair from the eth-account documentation
KNOWN_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
KNOWN_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"


class TestParsePrivateKey:
    """Tests for parse_private_key."""

    def test_with_prefix(self) -> None:
        assert parse_private_key(KNOWN_KEY) == bytes.fromhex(KNOWN_KEY[2:])

    def test_without_prefix(self) -> None:
        assert parse_private_key(KNOWN_KEY[2:]) == bytes.fromhex(KNOWN_KEY[2:])

    def test_rejects_non_hex(self) -> None:
        with pytest.raises(InvalidKeyError):
            parse_private_key("0x" + "zz" * 32)

    def test_rejects_wrong_length(self) -> None:
        with pytest.raises(InvalidKeyError):
            parse_private_key("0x" + "ab" * 31)

    def test_invalid_key_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_private_key("nope")


class TestKeyAuthority:
    """Tests for KeyAuthority."""

    def test_known_address(self) -> None:
        authority = KeyAuthority.from_hex(KNOWN_KEY)
        assert authority.address == KNOWN_ADDRESS

    def test_rejects_zero_key(self) -> None:
        with pytest.raises(InvalidKeyError):
            KeyAuthority(b"\x00" * 32)

    def test_rejects_key_above_curve_order(self) -> None:
        with pytest.raises(InvalidKeyError):
            KeyAuthority(b"\xff" * 32)

    def test_rejects_short_key(self) -> None:
        with pytest.raises(InvalidKeyError):
            KeyAuthority(b"\x01" * 16)

    def test_public_key_is_64_bytes(self) -> None:
        authority = KeyAuthority.from_hex(KNOWN_KEY)
        assert authority.public_key.startswith("0x")
        assert len(authority.public_key) == 2 + 128

    def test_sign_is_deterministic(self) -> None:
        authority = KeyAuthority.from_hex(KNOWN_KEY)
        assert authority.sign(b"payload") == authority.sign(b"payload")
        assert len(authority.sign(b"payload")) == 65

    def test_signature_verifies(self) -> None:
        authority = KeyAuthority.generate()
        signature = authority.sign(b"hello")
        assert verify_signature(b"hello", signature, authority.address)
        assert not verify_signature(b"other", signature, authority.address)

    def test_verify_rejects_garbage_signature(self) -> None:
        assert not verify_signature(b"hello", b"\x00" * 10, KNOWN_ADDRESS)

    def test_repr_hides_key(self) -> None:
        authority = KeyAuthority.from_hex(KNOWN_KEY)
        assert KNOWN_KEY[2:] not in repr(authority)


class TestKeyFile:
    """Tests for saving and loading the wallet key."""

    def test_generate_eoa(self) -> None:
        private_key, address = generate_eoa()
        assert private_key.startswith("0x") and len(private_key) == 66
        assert KeyAuthority.from_hex(private_key).address == address

    def test_save_and_load(self, tmp_path: Path) -> None:
        env_path = tmp_path / ".reliquary" / ".env"
        private_key, address = generate_eoa()
        save_private_key(private_key, env_path)

        assert env_path.exists()
        if os.name != "nt":
            assert (env_path.stat().st_mode & 0o777) == 0o600

        with patch.dict(os.environ, {}, clear=True):
            assert load_private_key(env_path) == private_key
            assert load_authority(env_path).address == address

    def test_save_keeps_other_entries(self, tmp_path: Path) -> None:
        env_path = tmp_path / ".env"
        env_path.write_text("RELIQUARY_NETWORK=devnet\n", encoding="utf-8")
        save_private_key(KNOWN_KEY, env_path)
        content = env_path.read_text(encoding="utf-8")
        assert "RELIQUARY_NETWORK=devnet" in content
        assert f"PRIVATE_KEY={KNOWN_KEY}" in content

    def test_save_rejects_bad_key(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidKeyError):
            save_private_key("0x1234", tmp_path / ".env")

    def test_load_adds_prefix(self, tmp_path: Path) -> None:
        with patch.dict(os.environ, {"PRIVATE_KEY": KNOWN_KEY[2:]}, clear=True):
            assert load_private_key(tmp_path / "missing.env") == KNOWN_KEY

    def test_load_missing_raises(self, tmp_path: Path) -> None:
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError, match="PRIVATE_KEY"):
                load_private_key(tmp_path / "missing.env")
