"""Cursor and page-number pagination over the history feed."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from blinker import Signal
from loguru import logger
from pydantic import ValidationError

from genclient.client import RequestClient
from genclient.envelope import first_of
from genclient.errors import DecodeError, DecodeReason, ErrorKind, Failure, GenClientError
from genclient.models import HistoryItem, Pagination
from genclient.session import SessionTokenManager


class FeedStatus(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(frozen=True)
class PageCursor:
    cursor: str | None = None
    page_number: int = 1
    has_next: bool = False
    has_prev: bool = False
    total_count: int = 0


@dataclass(frozen=True)
class FeedState:
    status: FeedStatus = FeedStatus.IDLE
    items: tuple[Any, ...] = ()
    cursor: PageCursor = field(default_factory=PageCursor)
    error: Failure | None = None
    direction: str | None = None


ItemParser = Callable[[Any], Any]
FeedListener = Callable[[FeedState], None]


def parse_envelope(raw: Any, *, page_number: int) -> tuple[list[Any], PageCursor]:
    """Split a history response into entries and the next `PageCursor`.

    Accepts ``{history: [...], pagination: {...}}`` as well as the
    limit-only shapes (a bare list, or an envelope without ``pagination``).
    """

    if isinstance(raw, list):
        entries: Any = raw
        pagination: Any = None
    elif isinstance(raw, Mapping):
        entries = first_of(raw, "history", "items", default=[])
        pagination = raw.get("pagination")
    else:
        raise DecodeError(DecodeReason.NO_SHAPE_MATCHED, f"unexpected feed payload: {type(raw).__name__}")
    if not isinstance(entries, list):
        raise DecodeError(DecodeReason.NO_SHAPE_MATCHED, "feed payload has no item list")

    if not isinstance(pagination, Mapping):
        return entries, PageCursor(
            cursor=None,
            page_number=page_number,
            has_next=False,
            has_prev=page_number > 1,
            total_count=len(entries),
        )

    try:
        block = Pagination.model_validate(pagination)
    except ValidationError as exc:
        raise DecodeError(DecodeReason.NO_SHAPE_MATCHED, f"malformed pagination block: {exc.error_count()} errors") from exc

    has_next = block.has_next if block.has_next is not None else bool(block.has_more)
    has_prev = block.has_prev if block.has_prev is not None else page_number > 1
    total = block.total_count if block.total_count is not None else block.total
    return entries, PageCursor(
        cursor=block.next_cursor or block.cursor,
        page_number=page_number,
        has_next=has_next,
        has_prev=has_prev,
        total_count=total if total is not None else len(entries),
    )


def _parse_items(entries: list[Any], parse_item: ItemParser) -> tuple[Any, ...]:
    items: list[Any] = []
    for entry in entries:
        try:
            items.append(parse_item(entry))
        except (ValidationError, TypeError, ValueError) as exc:
            logger.warning("feed.item.skipped error={!r}", exc)
    return tuple(items)


class PaginatedFeed:
    """Fetch pages forward by cursor and backward by page number."""

    def __init__(
        self,
        client: RequestClient,
        *,
        path: str = "/history",
        limit: int = 50,
        session: SessionTokenManager | None = None,
        parse_item: ItemParser = HistoryItem.model_validate,
    ) -> None:
        self._client = client
        self._path = path
        self._limit = limit
        self._session = session
        self._parse_item = parse_item
        self._generation = 0
        self._state = FeedState()
        self._changed = Signal(f"genclient.feed.{path}")

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def cursor(self) -> PageCursor:
        return self._state.cursor

    def subscribe(self, listener: FeedListener) -> Callable[[], None]:
        def _receiver(sender: Any, *, state: FeedState) -> None:
            listener(state)

        self._changed.connect(_receiver, weak=False)
        return lambda: self._changed.disconnect(_receiver)

    async def load(self) -> FeedState:
        return await self._fetch(cursor=None, page_number=1, direction=None)

    async def refresh(self) -> FeedState:
        current = self._state.cursor
        if current.page_number == 1:
            return await self.load()
        return await self._fetch(cursor=None, page_number=current.page_number, direction=None)

    async def next_page(self) -> FeedState:
        current = self._state.cursor
        if not current.has_next:
            return self._state
        return await self._fetch(cursor=current.cursor, page_number=current.page_number + 1, direction="next")

    async def prev_page(self) -> FeedState:
        current = self._state.cursor
        if not current.has_prev or current.page_number <= 1:
            return self._state
        return await self._fetch(cursor=None, page_number=current.page_number - 1, direction="prev")

    async def _fetch(self, *, cursor: str | None, page_number: int, direction: str | None) -> FeedState:
        self._generation += 1
        generation = self._generation
        previous = self._state
        self._publish(replace(previous, status=FeedStatus.LOADING, error=None, direction=direction))

        params = {"limit": self._limit, "cursor": cursor, "page": page_number}
        try:
            raw = await self._client.get(self._path, params=params)
            entries, page_cursor = parse_envelope(raw, page_number=page_number)
        except asyncio.CancelledError:
            if generation == self._generation:
                self._publish(previous)
            raise
        except GenClientError as exc:
            return self._fail(generation, exc.to_failure())
        except Exception as exc:
            logger.exception("feed.fetch.error path={} generation={}", self._path, generation)
            return self._fail(generation, Failure(kind=ErrorKind.UNKNOWN, message=str(exc) or type(exc).__name__))

        if generation != self._generation:
            logger.debug("feed.stale path={} generation={}", self._path, generation)
            return self._state

        items = _parse_items(entries, self._parse_item)
        logger.info(
            "feed.loaded path={} page={} items={} has_next={}",
            self._path,
            page_number,
            len(items),
            page_cursor.has_next,
        )
        self._publish(FeedState(status=FeedStatus.LOADED, items=items, cursor=page_cursor, direction=direction))
        return self._state

    def _fail(self, generation: int, failure: Failure) -> FeedState:
        if generation != self._generation:
            return self._state
        logger.info("feed.error path={} kind={}", self._path, failure.kind.value)
        if failure.kind is ErrorKind.UNAUTHORIZED and self._session is not None:
            self._session.expire()
        self._publish(replace(self._state, status=FeedStatus.ERROR, error=failure))
        return self._state

    def _publish(self, state: FeedState) -> None:
        self._state = state
        self._changed.send(self, state=state)
