"""
Configuration partagée pour tous les tests.
- store : stockage local SQLite réel, dans un fichier temporaire par test
- client : API de réception avec la BDD mockée (aucune connexion réelle)
"""

import os

# Base serveur en mémoire : le lifespan de l'API crée ses tables sans toucher au disque
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

from saksham.database import get_db  # noqa: E402
from saksham.main import app  # noqa: E402
from saksham.store.local_store import LocalStore  # noqa: E402


@pytest.fixture
async def store(tmp_path):
    """Stockage local ouvert sur une base SQLite temporaire."""
    local = LocalStore(f"sqlite+aiosqlite:///{tmp_path / 'field.db'}")
    await local.open()
    yield local
    await local.close()


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
