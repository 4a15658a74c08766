from __future__ import annotations

import base64
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from genclient.config import Settings
from genclient.runtime import DashboardRuntime

BASE_URL = "http://backend.test/api"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(32))

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture
def png_base64() -> str:
    return base64.b64encode(PNG_BYTES).decode("ascii")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        api_base_url=BASE_URL,
        token=None,
        resource_dir=tmp_path / "artifacts",
        token_refresh_seconds=60,
    )


@pytest.fixture
def make_runtime(settings: Settings) -> Callable[..., DashboardRuntime]:
    def _make(handler: Handler, *, token: str | None = None) -> DashboardRuntime:
        configured = settings.model_copy(update={"token": token})
        return DashboardRuntime(configured, transport=httpx.MockTransport(handler))

    return _make
