# qrforge/conftest.py
import sys
import pytest
from pathlib import Path

# Add project root to PYTHONPATH
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(scope="session")
def db_url():
    """In-memory SQLite shared across sessions (StaticPool)."""
    return "sqlite://"


@pytest.fixture(scope="function", autouse=True)
def fresh_db(db_url):
    """
    Point the engine at a clean database for every test.
    """
    from qrforge.core.database import init_engine, create_all_tables, drop_all_tables, dispose_engine

    init_engine(db_url)
    create_all_tables()
    yield
    drop_all_tables()
    dispose_engine()


@pytest.fixture
def file_db(fresh_db, tmp_path):
    """
    Swap the in-memory database for a file-backed one.

    Each session gets its own pooled connection, as in production, so
    concurrent writers really contend. fresh_db tears it down.
    """
    from qrforge.core.database import init_engine, create_all_tables

    url = f"sqlite:///{tmp_path / 'qrforge.db'}"
    init_engine(url)
    create_all_tables()
    return url


@pytest.fixture
def admin_key(monkeypatch):
    """Configure a known admin key for admin route tests."""
    from qrforge.core.config import settings

    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    monkeypatch.setattr(settings, "ADMIN_KEY", "test-admin-key")
    return "test-admin-key"


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from qrforge.main import app

    return TestClient(app)
