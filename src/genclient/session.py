"""Bearer token ownership and scheduled refresh."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Protocol

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler
from blinker import Signal
from loguru import logger

REFRESH_JOB_ID = "genclient.session.refresh"

RefreshFn = Callable[[], Awaitable[str | None] | str | None]


class TokenProvider(Protocol):
    """Identity collaborator that hands out bearer tokens."""

    async def get_token(self) -> str | None: ...


class StaticTokenProvider:
    """Token provider returning a fixed token, for scripts and tests without an identity service."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    async def get_token(self) -> str | None:
        return self._token


def _normalize_token(token: str | None) -> str | None:
    if token is None:
        return None
    token = token.strip()
    return token or None


class SessionTokenManager:
    """Single owner of the current bearer token.

    Readers call `auth_header()` at the moment they dispatch a request; the
    value is never meant to be cached across an await. Refresh runs as an
    APScheduler interval job on the running asyncio loop and only while a
    token is held. A failing refresh clears the token and fires
    `auth_refresh_failed` instead of raising.
    """

    def __init__(self, token: str | None = None, *, scheduler: BaseScheduler | None = None) -> None:
        self._token = _normalize_token(token)
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._job: Job | None = None
        self._refresh_fn: RefreshFn | None = None
        self._refresh_epoch = 0
        self.token_changed = Signal("genclient.session.token_changed")
        self.auth_refresh_failed = Signal("genclient.session.auth_refresh_failed")
        self.auth_expired = Signal("genclient.session.auth_expired")

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def signed_in(self) -> bool:
        return self._token is not None

    @property
    def refresh_scheduled(self) -> bool:
        return self._job is not None

    def set_token(self, token: str | None) -> None:
        """Replace the credential; an empty token clears it."""
        token = _normalize_token(token)
        if token == self._token:
            return
        self._token = token
        logger.debug("session.token.changed signed_in={}", self.signed_in)
        self.token_changed.send(self, signed_in=self.signed_in)

    def auth_header(self) -> str | None:
        if self._token is None:
            return None
        return f"Bearer {self._token}"

    def expire(self) -> None:
        """Drop the credential after the backend rejected it."""
        logger.info("session.expired")
        self.set_token(None)
        self.auth_expired.send(self)

    def schedule_refresh(self, interval_seconds: float, refresh_fn: RefreshFn) -> Job:
        """Run `refresh_fn` every `interval_seconds` while signed in."""
        if interval_seconds <= 0:
            raise ValueError("refresh interval must be positive")

        self._remove_job()
        self._refresh_fn = refresh_fn
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler()
        self._job = self._scheduler.add_job(
            self.refresh,
            "interval",
            seconds=interval_seconds,
            id=REFRESH_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("session.refresh.scheduled interval={}s", interval_seconds)
        return self._job

    async def refresh(self, *, force: bool = False) -> bool:
        """Run one refresh tick. Returns True when a fresh token was stored."""
        refresh_fn = self._refresh_fn
        if refresh_fn is None:
            return False
        if not force and not self.signed_in:
            logger.debug("session.refresh.skipped reason=signed_out")
            return False

        self._refresh_epoch += 1
        epoch = self._refresh_epoch
        try:
            result = refresh_fn()
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            if not self._refresh_is_current(epoch, refresh_fn):
                logger.debug("session.refresh.stale epoch={} error={!r}", epoch, exc)
                return False
            # Any provider failure leaves the session signed out.
            logger.warning("session.refresh.failed error={!r}", exc)
            self.set_token(None)
            self.auth_refresh_failed.send(self, error=exc)
            return False

        if not self._refresh_is_current(epoch, refresh_fn):
            logger.debug("session.refresh.stale epoch={} current={}", epoch, self._refresh_epoch)
            return False
        if not result:
            logger.info("session.refresh.empty")
            self.set_token(None)
            return False

        self.set_token(result)
        return True

    def sign_out(self) -> None:
        self.set_token(None)
        self.teardown()

    def teardown(self) -> None:
        """Cancel the scheduled refresh. Safe to call more than once."""
        self._remove_job()
        self._refresh_fn = None
        self._refresh_epoch += 1
        scheduler = self._scheduler
        if scheduler is not None and self._owns_scheduler and scheduler.running:
            scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.debug("session.scheduler.stopped")

    def _refresh_is_current(self, epoch: int, refresh_fn: RefreshFn) -> bool:
        # Only the most recently started tick of the live provider may touch the token.
        return epoch == self._refresh_epoch and self._refresh_fn is refresh_fn

    def _remove_job(self) -> None:
        if self._job is None:
            return
        with suppress(JobLookupError):
            self._job.remove()
        self._job = None
