from __future__ import annotations

import logging

import keyring
from cryptography.fernet import Fernet, InvalidToken
from keyring.errors import KeyringError

from ..errors import AuthError

logger = logging.getLogger("photo_mirror.utils.crypto")


class KeyringCipher:
    """Fernet cipher whose key lives in the system keyring.

    The key is created on first use and cached for the lifetime of the object.
    """

    def __init__(self, service_name: str, key_name: str):
        self.service_name = service_name
        self.key_name = key_name
        self._fernet: Fernet | None = None

    def _load(self) -> Fernet:
        if self._fernet is not None:
            return self._fernet
        try:
            stored = keyring.get_password(self.service_name, self.key_name)
            if stored:
                key = stored.encode("utf-8")
            else:
                key = Fernet.generate_key()
                keyring.set_password(self.service_name, self.key_name, key.decode("utf-8"))
                logger.info({"event": "crypto.keyring.key_created", "key_name": self.key_name})
        except KeyringError as exc:
            logger.error({"event": "crypto.keyring.unavailable", "error": str(exc)})
            raise AuthError(f"Keyring unavailable: {exc}") from exc
        self._fernet = Fernet(key)
        return self._fernet

    def encrypt(self, data: bytes) -> bytes:
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError("data must be bytes or bytearray")
        return self._load().encrypt(bytes(data))

    def decrypt(self, token: bytes) -> bytes:
        try:
            return self._load().decrypt(bytes(token))
        except InvalidToken as exc:
            logger.error({"event": "crypto.decrypt_failed", "key_name": self.key_name})
            raise AuthError("Stored credentials could not be decrypted") from exc
