"""Dashboard runtime: one session, one HTTP client, per-slot controllers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from apscheduler.schedulers.base import BaseScheduler
from loguru import logger

from genclient.api import DashboardApi, resume_payload, strip_think_sections
from genclient.client import RequestClient
from genclient.config import Settings
from genclient.decoder import ArtifactKind
from genclient.errors import ConfigurationError, ErrorKind, Failure, GenClientError
from genclient.feed import PaginatedFeed
from genclient.models import UsageReport
from genclient.mutation import MutationController, TextTransform
from genclient.resources import ResourceLifecycleManager
from genclient.session import SessionTokenManager, TokenProvider

SLOT_ARTICLE = "article"
SLOT_IMAGE = "image"
SLOT_BACKGROUND = "bg-remove"
SLOT_RESUME = "resume"

BASE_URL_ERROR = "api_base_url must be an absolute http(s) URL, got {url!r}"


def _validate_settings(settings: Settings) -> None:
    try:
        url = httpx.URL(settings.api_base_url)
    except httpx.InvalidURL as exc:
        raise ConfigurationError(BASE_URL_ERROR.format(url=settings.api_base_url)) from exc
    if url.scheme not in {"http", "https"} or not url.host:
        raise ConfigurationError(BASE_URL_ERROR.format(url=settings.api_base_url))


@dataclass(frozen=True)
class SlotBinding:
    operation: Callable[[Any], Awaitable[Any]]
    expect: ArtifactKind
    transform: TextTransform | None = None


class DashboardRuntime:
    """Own the session, transport and resources shared by every slot."""

    def __init__(
        self,
        settings: Settings,
        *,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        scheduler: BaseScheduler | None = None,
    ) -> None:
        _validate_settings(settings)
        self.settings = settings
        self.session = SessionTokenManager(settings.token, scheduler=scheduler)
        self.client = RequestClient.from_settings(settings, self.session, transport=transport)
        self.api = DashboardApi(
            self.client,
            max_image_upload_bytes=settings.max_image_upload_bytes,
            max_resume_upload_bytes=settings.max_resume_upload_bytes,
            resume_timeout_seconds=settings.resume_timeout_seconds,
        )
        self.resources = ResourceLifecycleManager()
        self._token_provider = token_provider
        self._controllers: dict[str, MutationController] = {}
        self._closed = False

    async def __aenter__(self) -> DashboardRuntime:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def start(self) -> None:
        """Fetch the first token and keep it fresh while signed in."""
        if self._token_provider is None:
            return
        self.session.schedule_refresh(self.settings.token_refresh_seconds, self._token_provider.get_token)
        await self.session.refresh(force=True)
        logger.info("runtime.started signed_in={}", self.session.signed_in)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for controller in self._controllers.values():
            controller.close()
        self._controllers.clear()
        self.resources.release_all()
        self.session.teardown()
        await self.client.aclose()
        logger.info("runtime.closed")

    def _slot_binding(self, slot_id: str) -> SlotBinding:
        if slot_id == SLOT_ARTICLE:
            return SlotBinding(self.api.generate_article, ArtifactKind.TEXT, strip_think_sections)
        if slot_id == SLOT_IMAGE:
            return SlotBinding(self.api.generate_image, ArtifactKind.BINARY)
        if slot_id == SLOT_BACKGROUND:
            return SlotBinding(self.api.remove_background, ArtifactKind.BINARY)
        if slot_id == SLOT_RESUME:

            async def _analyze(upload: Any) -> Any:
                return resume_payload(await self.api.analyze_resume(upload))

            return SlotBinding(_analyze, ArtifactKind.TEXT)
        raise KeyError(slot_id)

    def mutation(self, slot_id: str) -> MutationController:
        """Return the controller for `slot_id`, creating it on first use."""
        existing = self._controllers.get(slot_id)
        if existing is not None:
            return existing

        binding = self._slot_binding(slot_id)
        controller = MutationController(
            binding.operation,
            slot_id=slot_id,
            expect=binding.expect,
            resources=self.resources,
            session=self.session,
            transform=binding.transform,
            min_length=self.settings.decode_min_length,
            resource_dir=self.settings.resource_dir,
        )
        self._controllers[slot_id] = controller
        return controller

    def discard(self, slot_id: str) -> None:
        """Tear down one slot, releasing everything it owns."""
        controller = self._controllers.pop(slot_id, None)
        if controller is not None:
            controller.close()

    def history_feed(self, *, limit: int | None = None) -> PaginatedFeed:
        return PaginatedFeed(
            self.client,
            path="/history",
            limit=limit or self.settings.history_page_size,
            session=self.session,
        )

    async def usage(self) -> UsageReport | Failure:
        try:
            return await self.api.get_usage()
        except GenClientError as exc:
            failure = exc.to_failure()
            logger.info("runtime.usage.error kind={}", failure.kind.value)
            if failure.kind is ErrorKind.UNAUTHORIZED:
                self.session.expire()
            return failure
