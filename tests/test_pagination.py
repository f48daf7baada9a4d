from __future__ import annotations

from typing import List

import pytest

from message_store import MessageRepository
from message_store.serialization import serialize_message

BOB = "bob@example.com"


async def _seed(repo: MessageRepository, key: str, count: int) -> List[int]:
    log = [serialize_message({"id": i, "receiver": key, "state": "sent"}) for i in range(count)]
    await repo.set(key, log)
    return list(range(count))


@pytest.mark.asyncio
async def test_load_last_messages_returns_most_recent_page(repository: MessageRepository):
    await _seed(repository, BOB, 45)
    await _seed(repository, "carol@example.com", 3)

    last = await repository.load_last_messages()

    assert [m["id"] for m in last[BOB]] == list(range(15, 45))
    assert [m["id"] for m in last["carol@example.com"]] == [0, 1, 2]
    # cursor on the 30th-from-last entry
    assert repository.cursors.get(BOB) == 15
    assert repository.cursors.get("carol@example.com") == 0


@pytest.mark.asyncio
async def test_load_more_walks_backwards_until_oldest(repository: MessageRepository):
    await _seed(repository, BOB, 75)
    await repository.load_last_messages()
    assert repository.cursors.get(BOB) == 45
    assert await repository.has_more(BOB) is True

    page = await repository.load_more_messages(BOB)
    assert [m["id"] for m in page] == list(range(15, 45))
    assert repository.cursors.get(BOB) == 15
    assert await repository.has_more(BOB) is True

    page = await repository.load_more_messages(BOB)
    assert [m["id"] for m in page] == list(range(0, 15))
    assert repository.cursors.get(BOB) == 0
    assert await repository.has_more(BOB) is False

    assert await repository.load_more_messages(BOB) is None
    assert repository.cursors.get(BOB) == 0


@pytest.mark.asyncio
async def test_short_conversation_has_no_more(repository: MessageRepository):
    await _seed(repository, BOB, 10)
    await repository.load_last_messages()
    assert await repository.has_more(BOB) is False
    assert await repository.load_more_messages(BOB) is None


@pytest.mark.asyncio
async def test_without_cursor_nothing_is_paged(repository: MessageRepository):
    await _seed(repository, BOB, 40)
    assert await repository.has_more(BOB) is False
    assert await repository.load_more_messages(BOB) is None


@pytest.mark.asyncio
async def test_has_more_does_not_move_cursor(repository: MessageRepository):
    await _seed(repository, BOB, 45)
    await repository.load_last_messages()
    for _ in range(3):
        assert await repository.has_more(BOB) is True
    assert repository.cursors.get(BOB) == 15


@pytest.mark.asyncio
async def test_custom_page_size(repository: MessageRepository):
    repository.page_size = 5
    await _seed(repository, BOB, 12)

    last = await repository.load_last_messages()
    assert [m["id"] for m in last[BOB]] == [7, 8, 9, 10, 11]
    assert [m["id"] for m in await repository.load_more_messages(BOB)] == [2, 3, 4, 5, 6]
    assert [m["id"] for m in await repository.load_more_messages(BOB)] == [0, 1]
    assert await repository.has_more(BOB) is False


@pytest.mark.asyncio
async def test_removing_cursor_message_keeps_older_history_reachable(repository: MessageRepository):
    await _seed(repository, BOB, 45)
    await repository.load_last_messages()
    assert repository.cursors.get(BOB) == 15

    await repository.remove_message({"id": 15, "receiver": BOB, "state": "sent"})

    assert repository.cursors.get(BOB) == 16
    assert await repository.has_more(BOB) is True
    page = await repository.load_more_messages(BOB)
    assert [m["id"] for m in page] == list(range(0, 15))
    assert await repository.has_more(BOB) is False


@pytest.mark.asyncio
async def test_removing_other_message_leaves_cursor(repository: MessageRepository):
    await _seed(repository, BOB, 45)
    await repository.load_last_messages()

    await repository.remove_message({"id": 3, "receiver": BOB, "state": "sent"})

    assert repository.cursors.get(BOB) == 15
    page = await repository.load_more_messages(BOB)
    assert [m["id"] for m in page] == [0, 1, 2] + list(range(4, 15))


@pytest.mark.asyncio
async def test_removing_newest_cursor_message_drops_cursor(repository: MessageRepository):
    await _seed(repository, BOB, 1)
    await repository.load_last_messages()
    assert repository.cursors.get(BOB) == 0

    await repository.remove_message({"id": 0, "receiver": BOB, "state": "sent"})

    assert BOB not in repository.cursors
    assert await repository.has_more(BOB) is False
