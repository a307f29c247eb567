from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from lumen.config import Settings
from lumen.crypto.cipher import SecretCipher
from lumen.store.database import LocalStore


@pytest.fixture
def store() -> Iterator[LocalStore]:
    local = LocalStore(":memory:")
    yield local
    local.close()


@pytest.fixture
def cipher() -> SecretCipher:
    return SecretCipher(key=bytes(range(32)))


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        home=tmp_path / "home",
        gemini_api_key=None,
        google_client_id=None,
        google_client_secret=None,
        proactive_enabled=False,
    )
