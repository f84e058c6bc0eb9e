"""Tests for the paged-query cursor."""

import pytest

from runtrace.pagination import Page, PageCursor, offset_cursor


def _offset_source(items, calls=None):
    async def fetch(offset, limit):
        if calls is not None:
            calls.append((offset, limit))
        return items[offset : offset + limit]

    return fetch


@pytest.mark.asyncio
@pytest.mark.parametrize("page_size", [1, 5, 11])
async def test_offset_cursor_yields_every_item_once_across_page_sizes(page_size):
    items = list(range(10))

    cursor = offset_cursor(_offset_source(items), page_size=page_size)
    seen = await cursor.to_list()

    assert seen == items
    assert len(set(seen)) == len(items)


@pytest.mark.asyncio
async def test_offset_cursor_stops_on_short_page_and_on_empty_page():
    calls = []
    # Exact multiple of the page size needs one extra, empty, fetch
    await offset_cursor(_offset_source(list(range(6)), calls), page_size=3).to_list()
    assert calls == [(0, 3), (3, 3), (6, 3)]

    calls.clear()
    await offset_cursor(_offset_source(list(range(5)), calls), page_size=3).to_list()
    assert calls == [(0, 3), (3, 3)]


@pytest.mark.asyncio
async def test_empty_result_is_an_empty_sequence():
    cursor = offset_cursor(_offset_source([]), page_size=10)
    assert await cursor.to_list() == []
    assert cursor.pages_fetched == 1


@pytest.mark.asyncio
async def test_cursor_is_lazy_and_only_fetches_at_page_boundaries():
    calls = []
    cursor = offset_cursor(_offset_source(list(range(6)), calls), page_size=2)
    assert calls == []

    first = await cursor.__anext__()
    second = await cursor.__anext__()
    assert (first, second) == (0, 1)
    assert len(calls) == 1

    await cursor.__anext__()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_cursor_is_single_pass_and_fresh_restarts():
    cursor = offset_cursor(_offset_source(list(range(4))), page_size=3)
    assert await cursor.to_list() == [0, 1, 2, 3]
    assert await cursor.to_list() == []

    again = cursor.fresh()
    assert await again.to_list() == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_fetch_error_propagates_without_retracting_yielded_items():
    attempts = {"n": 0}

    async def fetch_page(state):
        attempts["n"] += 1
        if state is None:
            return Page(items=["a", "b"], next_state=1)
        if attempts["n"] == 2:
            raise RuntimeError("page 2 unavailable")
        return Page(items=["c"], next_state=None)

    cursor = PageCursor(fetch_page)
    got = [await cursor.__anext__(), await cursor.__anext__()]
    with pytest.raises(RuntimeError, match="page 2 unavailable"):
        await cursor.__anext__()
    assert got == ["a", "b"]

    # Resuming asks for the failed page again
    assert await cursor.to_list() == ["c"]


@pytest.mark.asyncio
async def test_max_items_caps_the_stream():
    cursor = offset_cursor(_offset_source(list(range(50))), page_size=7, max_items=9)
    assert await cursor.to_list() == list(range(9))


def test_invalid_arguments_rejected():
    with pytest.raises(ValueError):
        offset_cursor(_offset_source([]), page_size=0)
    with pytest.raises(ValueError):
        PageCursor(_offset_source([]), max_items=-1)
