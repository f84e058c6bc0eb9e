"""Lazy iteration over paged list endpoints.

A :class:`PageCursor` wraps a page-fetch coroutine and exposes the items of
every page as a single ``async for`` stream. The cursor only suspends when it
needs the next page; items within a page are handed out without awaiting.
Filtering is the server's job: whatever query the fetcher sends is what the
cursor yields.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Generic, List, Optional, TypeVar

from runtrace.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """One page of results and the state needed to request the next one.

    ``next_state`` of ``None`` marks the last page.
    """

    items: List[T] = field(default_factory=list)
    next_state: Optional[Any] = None


PageFetcher = Callable[[Optional[Any]], Awaitable[Page[T]]]


class PageCursor(Generic[T]):
    """Single-pass async iterator over a paged query.

    Each item is yielded exactly once, in page order and then in-page order.
    A fetch error is raised from ``__anext__``; items already yielded stay
    yielded and the failed page is requested again if iteration resumes.
    Use :meth:`fresh` to run the same query again from the start.
    """

    def __init__(
        self,
        fetch_page: PageFetcher[T],
        *,
        initial_state: Optional[Any] = None,
        max_items: Optional[int] = None,
        description: str = "",
    ) -> None:
        if max_items is not None and max_items < 0:
            raise ValueError("max_items must be >= 0")
        self._fetch_page = fetch_page
        self._initial_state = initial_state
        self._state = initial_state
        self._max_items = max_items
        self._description = description
        self._buffer: Deque[T] = deque()
        self._exhausted = False
        self._yielded = 0
        self.pages_fetched = 0

    def __aiter__(self) -> "PageCursor[T]":
        return self

    async def __anext__(self) -> T:
        if self._max_items is not None and self._yielded >= self._max_items:
            raise StopAsyncIteration
        while not self._buffer:
            if self._exhausted:
                raise StopAsyncIteration
            page = await self._fetch_page(self._state)
            self.pages_fetched += 1
            logger.debug(
                "page_fetched",
                query=self._description,
                page=self.pages_fetched,
                items=len(page.items),
                last=page.next_state is None,
            )
            self._buffer.extend(page.items)
            if page.next_state is None:
                self._exhausted = True
            else:
                self._state = page.next_state
        self._yielded += 1
        return self._buffer.popleft()

    def fresh(self) -> "PageCursor[T]":
        """A new cursor for the same query, positioned at the first item."""
        return PageCursor(
            self._fetch_page,
            initial_state=self._initial_state,
            max_items=self._max_items,
            description=self._description,
        )

    async def to_list(self) -> List[T]:
        """Drain the remaining items into a list."""
        return [item async for item in self]


def offset_cursor(
    fetch: Callable[[int, int], Awaitable[List[T]]],
    *,
    page_size: int = 100,
    offset: int = 0,
    max_items: Optional[int] = None,
    description: str = "",
) -> PageCursor[T]:
    """Build a cursor over an offset/limit endpoint.

    ``fetch(offset, limit)`` returns one page. A page shorter than ``page_size``
    (including an empty one) is the last page; endpoints queried by explicit
    ids may ignore offset and limit, which this rule also covers.
    """
    if page_size < 1:
        raise ValueError("page_size must be >= 1")

    async def fetch_page(state: Optional[int]) -> Page[T]:
        start = offset if state is None else state
        items = await fetch(start, page_size)
        next_state = start + len(items) if len(items) >= page_size else None
        return Page(items=list(items), next_state=next_state)

    return PageCursor(fetch_page, max_items=max_items, description=description)


__all__ = ["Page", "PageFetcher", "PageCursor", "offset_cursor"]
