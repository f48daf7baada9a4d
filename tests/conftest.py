"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict

import pytest
import pytest_asyncio

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from message_store import FileStore, MessageRepository, StorageService  # noqa: E402

ACCOUNT = "me@example.com"


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for databases and native store files."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    import os

    for var in list(os.environ):
        if var == "MESSAGE_STORE_CONFIG" or var.startswith("MESSAGE_STORE__"):
            monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def make_message() -> Callable[..., Dict[str, Any]]:
    """Factory for outgoing messages to ``bob@example.com`` by default."""

    def _make(message_id: Any, state: str = "sent", receiver: str = "bob@example.com", **extra: Any) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "id": message_id,
            "sender": {"uri": ACCOUNT},
            "receiver": receiver,
            "state": state,
            "timestamp": datetime(2024, 5, 1, 12, 0, 0, 250000, tzinfo=timezone.utc),
            "content": f"message {message_id}",
        }
        message.update(extra)
        return message

    return _make


@pytest_asyncio.fixture(params=["direct", "bridged"])
async def repository(request: pytest.FixtureRequest, tmp_data_dir: Path):
    """A repository over each backend variant."""
    repo = MessageRepository(StorageService(str(tmp_data_dir)), task_timeout=5.0)
    if request.param == "direct":
        repo.initialize(ACCOUNT)
    else:
        repo.initialize(ACCOUNT, FileStore(str(tmp_data_dir / "native")), use_bridged=True)
    yield repo
    await repo.queue.shutdown()
    repo.close()
