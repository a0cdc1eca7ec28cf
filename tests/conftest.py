"""Common test fixtures for the Quillnote MCP server."""

import pytest

from quillnote_mcp.config import config
from quillnote_mcp.models.db_models import create_db_engine, init_db
from quillnote_mcp.models.schema import Principal
from quillnote_mcp.observability import metrics
from quillnote_mcp.services.folder_service import FolderService
from quillnote_mcp.services.search_service import SearchService
from quillnote_mcp.services.sharing_service import SharingService
from quillnote_mcp.storage.note_repository import NoteRepository
from quillnote_mcp.storage.sql_store import SqlNoteStore
from quillnote_mcp.storage.user_repository import UserRepository


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "base_dir", tmp_path)
    monkeypatch.setattr(config, "database_path", tmp_path / "db" / "test_quillnote.db")
    monkeypatch.setattr(config, "database_url", None)
    monkeypatch.setattr(config, "log_dir", tmp_path / "logs")
    monkeypatch.setattr(config, "user_id", "owner-1")
    monkeypatch.setattr(config, "user_email", "owner@example.com")
    yield config


@pytest.fixture(autouse=True)
def _reset_metrics(tmp_path, monkeypatch):
    """Keep the global metrics collector isolated per test."""
    monkeypatch.setattr(metrics, "_metrics_file", tmp_path / "metrics.json")
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
async def engine(test_config):
    """A file-backed SQLite engine with the schema created."""
    engine = create_db_engine(test_config.get_db_url())
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def owner():
    return Principal(id="owner-1", email="owner@example.com")


@pytest.fixture
def other():
    return Principal(id="other-2", email="Friend@Example.com")


@pytest.fixture
def stranger():
    return Principal(id="stranger-3", email="stranger@example.com")


@pytest.fixture
def store(engine):
    return SqlNoteStore(engine=engine)


@pytest.fixture
async def note_repository(store):
    """Create a test note repository, draining background touches on teardown."""
    repository = NoteRepository(store)
    yield repository
    await repository.wait_for_pending()


@pytest.fixture
def user_repository(engine):
    return UserRepository(engine=engine)


@pytest.fixture
def folder_service(note_repository):
    return FolderService(note_repository)


@pytest.fixture
def sharing_service(note_repository, user_repository):
    return SharingService(note_repository, user_repository)


@pytest.fixture
def search_service(note_repository):
    return SearchService(note_repository)
