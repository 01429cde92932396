"""Credential persistence.

Tokens must survive restarts: a refresh rotates the refresh token, so a
process that forgets the new one can no longer authenticate.
``FileTokenStorage`` keeps the pair in a JSON file written atomically;
``InMemoryTokenStorage`` is for tests and short-lived processes.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol

import aiofiles

from teamleader_client.core.config import Settings
from teamleader_client.models.credentials import CredentialPair

logger = logging.getLogger(__name__)


class TokenStorage(Protocol):
    async def load(self) -> CredentialPair | None: ...

    async def save(self, pair: CredentialPair) -> None: ...

    async def clear(self) -> None: ...


class InMemoryTokenStorage:
    def __init__(self, pair: CredentialPair | None = None) -> None:
        self._pair = pair

    async def load(self) -> CredentialPair | None:
        return self._pair

    async def save(self, pair: CredentialPair) -> None:
        self._pair = pair

    async def clear(self) -> None:
        self._pair = None


class FileTokenStorage:
    """JSON-file token storage.

    Writes go to ``<path>.tmp`` first and are moved into place with
    ``os.replace`` so a crash never leaves a truncated token file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def load(self) -> CredentialPair | None:
        if not self.path.exists():
            return None
        async with aiofiles.open(self.path, encoding="utf-8") as f:
            raw = await f.read()
        try:
            return CredentialPair.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.error("Token file %s is unreadable, ignoring it", self.path)
            return None

    async def save(self, pair: CredentialPair) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(pair.to_dict()))
        os.replace(tmp_path, self.path)

    async def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


def create_token_storage(settings: Settings) -> TokenStorage:
    """File storage when ``TOKEN_STORAGE_PATH`` is set, memory otherwise."""
    if settings.TOKEN_STORAGE_PATH:
        return FileTokenStorage(settings.TOKEN_STORAGE_PATH)
    return InMemoryTokenStorage()
