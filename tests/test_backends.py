from __future__ import annotations

from pathlib import Path

import pytest

from message_store import BackendError, BridgedStore, DirectStore, FileStore


@pytest.fixture
def direct(tmp_data_dir: Path):
    store = DirectStore(tmp_data_dir / "messages.sqlite3", account="me@example.com")
    yield store
    store.close()


@pytest.mark.asyncio
async def test_direct_get_missing_is_none(direct: DirectStore):
    assert await direct.get("nobody@example.com") is None


@pytest.mark.asyncio
async def test_direct_set_get_keys_remove(direct: DirectStore):
    assert await direct.set("bob@example.com", ["a", "b"]) == ["a", "b"]
    await direct.set("alice@example.com", ["c"])
    assert await direct.get("bob@example.com") == ["a", "b"]
    assert await direct.keys() == ["alice@example.com", "bob@example.com"]

    await direct.remove("bob@example.com")
    assert await direct.get("bob@example.com") is None
    await direct.clear()
    assert await direct.keys() == []


@pytest.mark.asyncio
async def test_direct_accounts_are_isolated(tmp_data_dir: Path):
    path = tmp_data_dir / "shared.sqlite3"
    mine = DirectStore(path, account="me@example.com")
    theirs = DirectStore(path, account="other@example.com")
    try:
        await mine.set("bob@example.com", ["x"])
        assert await theirs.get("bob@example.com") is None
        await theirs.drop_instance()
        assert await mine.get("bob@example.com") == ["x"]
    finally:
        mine.close()
        theirs.close()


@pytest.mark.asyncio
async def test_direct_accounts_differing_only_in_punctuation_stay_apart(tmp_data_dir: Path):
    path = tmp_data_dir / "shared.sqlite3"
    work = DirectStore(path, account="alice+work@example.com")
    other = DirectStore(path, account="alice_work@example.com")
    try:
        assert work.store_name != other.store_name
        await work.set("bob@example.com", ["secret"])
        assert await other.get("bob@example.com") is None
        assert await other.keys() == []
        await other.clear()
        assert await work.get("bob@example.com") == ["secret"]
    finally:
        work.close()
        other.close()


@pytest.mark.asyncio
async def test_direct_data_survives_reopen(tmp_data_dir: Path):
    path = tmp_data_dir / "reopen.sqlite3"
    first = DirectStore(path, account="me@example.com")
    await first.set("bob@example.com", [{"id": 1}])
    first.close()

    second = DirectStore(path, account="me@example.com")
    try:
        assert await second.get("bob@example.com") == [{"id": 1}]
        assert await second.keys() == ["bob@example.com"]
    finally:
        second.close()


@pytest.mark.asyncio
async def test_direct_closed_store_raises_backend_error(direct: DirectStore):
    direct.close()
    with pytest.raises(BackendError):
        await direct.get("bob@example.com")


@pytest.mark.asyncio
async def test_iterate_short_circuits_with_ordinal(direct: DirectStore):
    for key in ("a", "b", "c"):
        await direct.set(key, [key])
    seen = []

    def visit(value, key, ordinal):
        seen.append((key, ordinal))
        if key == "b":
            return f"stop at {ordinal}"
        return None

    assert await direct.iterate(visit) == "stop at 2"
    assert seen == [("a", 1), ("b", 2)]


@pytest.mark.asyncio
async def test_iterate_visits_everything_when_visitor_continues(direct: DirectStore):
    for key in ("a", "b"):
        await direct.set(key, [key])
    seen = []
    assert await direct.iterate(lambda value, key, ordinal: seen.append(key)) is None
    assert seen == ["a", "b"]


# -----------------------------
# Native file store / bridge
# -----------------------------
def test_file_store_reports_miss_as_empty_mapping(tmp_data_dir: Path):
    store = FileStore(str(tmp_data_dir))
    results = []
    store.get("bob@example.com", {"dataPath": str(tmp_data_dir / "x")}, lambda *args: results.append(args))
    store.keys({"dataPath": str(tmp_data_dir / "x")}, lambda *args: results.append(args))
    assert results == [(None, {}), (None, [])]


@pytest.mark.asyncio
async def test_bridged_initializes_lazily_per_account(tmp_data_dir: Path):
    native = FileStore(str(tmp_data_dir))
    store = BridgedStore(native, account="bob")  # init() never called

    await store.set("carol@example.com", ["m1"])

    assert store.options["dataPath"].endswith("/messages/bob/")
    assert (tmp_data_dir / "messages" / "bob" / "carol@example.com.json").exists()
    assert await store.get("carol@example.com") == ["m1"]


@pytest.mark.asyncio
async def test_bridged_normalizes_misses(tmp_data_dir: Path):
    store = BridgedStore(FileStore(str(tmp_data_dir)))
    store.init("me@example.com")
    assert await store.get("nobody@example.com") is None
    assert await store.keys() is None
    assert await store.iterate(lambda *args: "never") is None


@pytest.mark.asyncio
async def test_bridged_keys_and_clear(tmp_data_dir: Path):
    store = BridgedStore(FileStore(str(tmp_data_dir)))
    store.init("me@example.com")
    await store.set("bob@example.com", ["a"])
    await store.set("alice@example.com", ["b"])
    assert await store.keys() == ["alice@example.com", "bob@example.com"]
    await store.remove("bob@example.com")
    assert await store.keys() == ["alice@example.com"]
    await store.clear()
    assert await store.keys() is None


class _FailingNative:
    def get_data_path(self):
        return "/nonexistent"

    def get(self, key, options, callback):
        callback(OSError("disk unplugged"))

    def keys(self, options, callback):
        raise RuntimeError("bridge crashed")


@pytest.mark.asyncio
async def test_bridged_propagates_callback_errors():
    store = BridgedStore(_FailingNative(), account="me")
    with pytest.raises(BackendError, match="disk unplugged"):
        await store.get("bob@example.com")
    with pytest.raises(BackendError, match="bridge crashed"):
        await store.keys()
