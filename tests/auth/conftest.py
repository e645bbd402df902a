from __future__ import annotations

from typing import Dict, Tuple

import keyring
import pytest
from keyring.errors import PasswordDeleteError


class _MemoryKeyring:
    """Dictionary-backed replacement for the keyring module functions."""

    def __init__(self) -> None:
        self.entries: Dict[Tuple[str, str], str] = {}

    def get_password(self, service: str, name: str):
        return self.entries.get((service, name))

    def set_password(self, service: str, name: str, value: str) -> None:
        self.entries[(service, name)] = value

    def delete_password(self, service: str, name: str) -> None:
        if (service, name) not in self.entries:
            raise PasswordDeleteError("not found")
        del self.entries[(service, name)]


@pytest.fixture
def memory_keyring(monkeypatch: pytest.MonkeyPatch) -> _MemoryKeyring:
    backend = _MemoryKeyring()
    monkeypatch.setattr(keyring, "get_password", backend.get_password)
    monkeypatch.setattr(keyring, "set_password", backend.set_password)
    monkeypatch.setattr(keyring, "delete_password", backend.delete_password)
    return backend
