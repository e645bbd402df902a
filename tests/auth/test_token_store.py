from __future__ import annotations

from datetime import datetime, timezone

import keyring
import pytest
from keyring.errors import KeyringError

from photo_mirror.auth import EncryptedFileTokenStore, KeyringTokenStore, build_token_store
from photo_mirror.errors import AuthError
from photo_mirror.schemas import Token
from photo_mirror.utils.crypto import KeyringCipher

TOKEN = Token(
    access_token="access",
    refresh_token="refresh",
    expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
)


def test_keyring_store_round_trip(memory_keyring):
    store = KeyringTokenStore("photo_mirror_test")

    assert store.load() is None
    store.save(TOKEN)

    assert store.load() == TOKEN
    store.clear()
    assert store.load() is None
    store.clear()


def test_keyring_store_rejects_malformed_entry(memory_keyring):
    memory_keyring.set_password("photo_mirror_test", "oauth_token", "not json")

    with pytest.raises(AuthError):
        KeyringTokenStore("photo_mirror_test").load()


def test_keyring_failure_is_an_auth_error(monkeypatch):
    def broken(*args):
        raise KeyringError("no backend")

    monkeypatch.setattr(keyring, "get_password", broken)

    with pytest.raises(AuthError):
        KeyringTokenStore("photo_mirror_test").load()


def test_file_store_encrypts_on_disk(memory_keyring, tmp_path):
    path = tmp_path / "nested" / "tokens.enc"
    store = EncryptedFileTokenStore(path, KeyringCipher("photo_mirror_test", "file_key"))

    store.save(TOKEN)

    assert b"refresh" not in path.read_bytes()
    assert ("photo_mirror_test", "file_key") in memory_keyring.entries
    reopened = EncryptedFileTokenStore(path, KeyringCipher("photo_mirror_test", "file_key"))
    assert reopened.load() == TOKEN

    store.clear()
    assert not path.exists()
    assert store.load() is None


def test_file_store_with_rotated_key_fails_closed(memory_keyring, tmp_path):
    path = tmp_path / "tokens.enc"
    EncryptedFileTokenStore(path, KeyringCipher("photo_mirror_test", "file_key")).save(TOKEN)
    memory_keyring.entries.clear()

    with pytest.raises(AuthError):
        EncryptedFileTokenStore(path, KeyringCipher("photo_mirror_test", "file_key")).load()


def test_cipher_requires_bytes(memory_keyring):
    with pytest.raises(TypeError):
        KeyringCipher("photo_mirror_test", "file_key").encrypt("text")


def test_build_token_store_follows_settings(settings):
    assert isinstance(build_token_store(settings), EncryptedFileTokenStore)
    keyring_settings = settings.model_copy(update={"TOKEN_STORE": "keyring"})
    assert isinstance(build_token_store(keyring_settings), KeyringTokenStore)
