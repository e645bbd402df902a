from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol

import keyring
import pydantic
from keyring.errors import KeyringError, PasswordDeleteError

from ..config import Settings
from ..errors import AuthError
from ..schemas import Token
from ..utils.crypto import KeyringCipher

logger = logging.getLogger("photo_mirror.auth.store")

TOKEN_ENTRY = "oauth_token"
FILE_KEY_NAME = "token_file_key"


class TokenStore(Protocol):
    def load(self) -> Optional[Token]:
        ...

    def save(self, token: Token) -> None:
        ...

    def clear(self) -> None:
        ...


def _decode(raw: str) -> Token:
    try:
        return Token.model_validate_json(raw)
    except pydantic.ValidationError as exc:
        raise AuthError("Stored token is malformed") from exc


class KeyringTokenStore:
    """Keeps the serialized token as a single keyring entry."""

    def __init__(self, service_name: str, entry: str = TOKEN_ENTRY):
        self.service_name = service_name
        self.entry = entry

    def load(self) -> Optional[Token]:
        try:
            raw = keyring.get_password(self.service_name, self.entry)
        except KeyringError as exc:
            logger.error({"event": "auth.store.load_failed", "store": "keyring", "error": str(exc)})
            raise AuthError(f"Keyring unavailable: {exc}") from exc
        return _decode(raw) if raw else None

    def save(self, token: Token) -> None:
        try:
            keyring.set_password(self.service_name, self.entry, token.model_dump_json())
        except KeyringError as exc:
            logger.error({"event": "auth.store.save_failed", "store": "keyring", "error": str(exc)})
            raise AuthError(f"Keyring unavailable: {exc}") from exc
        logger.debug({"event": "auth.store.saved", "store": "keyring"})

    def clear(self) -> None:
        try:
            keyring.delete_password(self.service_name, self.entry)
        except PasswordDeleteError:
            logger.debug({"event": "auth.store.clear_noop", "store": "keyring"})
        except KeyringError as exc:
            raise AuthError(f"Keyring unavailable: {exc}") from exc


class EncryptedFileTokenStore:
    """Writes the token to disk encrypted with a keyring-held Fernet key."""

    def __init__(self, path: Path, cipher: KeyringCipher):
        self.path = Path(path)
        self.cipher = cipher

    def load(self) -> Optional[Token]:
        if not self.path.exists():
            return None
        try:
            encrypted = self.path.read_bytes()
        except OSError as exc:
            raise AuthError(f"Token file unreadable: {exc}") from exc
        token = _decode(self.cipher.decrypt(encrypted).decode("utf-8"))
        logger.debug({"event": "auth.store.loaded", "store": "file"})
        return token

    def save(self, token: Token) -> None:
        encrypted = self.cipher.encrypt(token.model_dump_json().encode("utf-8"))
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_bytes(encrypted)
        except OSError as exc:
            logger.error({"event": "auth.store.save_failed", "store": "file", "error": str(exc)})
            raise AuthError(f"Token file not writable: {exc}") from exc
        logger.debug({"event": "auth.store.saved", "store": "file"})

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def build_token_store(settings: Settings) -> TokenStore:
    if settings.TOKEN_STORE == "file":
        cipher = KeyringCipher(settings.KEYRING_SERVICE, FILE_KEY_NAME)
        return EncryptedFileTokenStore(settings.TOKEN_FILE_PATH, cipher)
    return KeyringTokenStore(settings.KEYRING_SERVICE)
