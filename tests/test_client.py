from __future__ import annotations

import json

import httpx
import pytest

from genclient.client import RequestClient
from genclient.config import Settings
from genclient.errors import ErrorKind, RequestError
from genclient.session import SessionTokenManager

BASE_URL = "http://backend.test/api"


def _client(handler, session: SessionTokenManager | None = None, **overrides: object) -> RequestClient:
    settings = Settings(api_base_url=BASE_URL, **overrides)  # type: ignore[arg-type]
    return RequestClient.from_settings(
        settings,
        session or SessionTokenManager(),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_auth_header_is_read_at_send_time() -> None:
    seen: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        return httpx.Response(200, json={"ok": True})

    session = SessionTokenManager()
    client = _client(handler, session)

    await client.get("/history/usage")
    session.set_token("first")
    await client.get("/history/usage")
    session.set_token("second")
    await client.post("/article", json={"title": "x"})
    session.set_token(None)
    await client.get("/history/usage")
    await client.aclose()

    assert seen == [None, "Bearer first", "Bearer second", None]


@pytest.mark.asyncio
async def test_json_text_and_binary_bodies() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/json"):
            return httpx.Response(200, json={"data": {"article": "hi"}})
        if request.url.path.endswith("/text"):
            return httpx.Response(200, text="plain", headers={"content-type": "text/plain"})
        if request.url.path.endswith("/empty"):
            return httpx.Response(204)
        return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})

    client = _client(handler)

    assert await client.get("/json") == {"data": {"article": "hi"}}
    assert await client.get("/text") == "plain"
    assert await client.get("/empty") is None
    assert await client.get("/bin") == b"\x89PNG"
    await client.aclose()


@pytest.mark.parametrize(
    ("status", "body", "kind"),
    [
        (401, {"error": "expired"}, ErrorKind.UNAUTHORIZED),
        (429, {"message": "slow down"}, ErrorKind.RATE_LIMITED),
        (500, {"error": "boom"}, ErrorKind.SERVER_ERROR),
        (503, None, ErrorKind.SERVER_ERROR),
        (400, {"error": "bad"}, ErrorKind.CLIENT_ERROR),
        (404, {"error": "missing"}, ErrorKind.CLIENT_ERROR),
    ],
)
@pytest.mark.asyncio
async def test_status_classification(status: int, body: dict | None, kind: ErrorKind) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if body is None:
            return httpx.Response(status, text="unavailable")
        return httpx.Response(status, json=body)

    client = _client(handler)
    with pytest.raises(RequestError) as exc_info:
        await client.post("/article", json={"title": "x"})
    await client.aclose()

    assert exc_info.value.kind is kind
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_validation_error_carries_field_map() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"error": "Invalid input", "details": {"fieldErrors": {"title": ["Required"], "length": "Bad"}}},
        )

    client = _client(handler)
    with pytest.raises(RequestError) as exc_info:
        await client.post("/article", json={})
    await client.aclose()

    error = exc_info.value
    assert error.kind is ErrorKind.VALIDATION
    assert error.message == "Invalid input"
    assert error.field_errors == {"title": ["Required"], "length": ["Bad"]}
    assert error.to_failure().field_errors == {"title": ["Required"], "length": ["Bad"]}


@pytest.mark.asyncio
async def test_transport_failure_is_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(RequestError) as exc_info:
        await client.post("/article", json={"title": "x"})
    await client.aclose()

    assert exc_info.value.kind is ErrorKind.NETWORK_ERROR
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_timeout_is_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    client = _client(handler)
    with pytest.raises(RequestError) as exc_info:
        await client.post("/article", json={"title": "x"})
    await client.aclose()

    assert exc_info.value.kind is ErrorKind.NETWORK_ERROR


@pytest.mark.asyncio
async def test_idempotent_get_retries_once_on_server_error() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) == 1:
            return httpx.Response(502, json={"error": "bad gateway"})
        return httpx.Response(200, json={"history": []})

    client = _client(handler)
    assert await client.get("/history") == {"history": []}
    await client.aclose()

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_get_retry_is_bounded_to_one() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        raise httpx.ConnectError("down", request=request)

    client = _client(handler)
    with pytest.raises(RequestError):
        await client.get("/history")
    await client.aclose()

    assert len(calls) == 2


@pytest.mark.parametrize("status", [401, 429, 400])
@pytest.mark.asyncio
async def test_get_does_not_retry_non_transient_failures(status: int) -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(status, json={"error": "nope"})

    client = _client(handler)
    with pytest.raises(RequestError):
        await client.get("/history")
    await client.aclose()

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_post_is_never_retried() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(500, json={"error": "boom"})

    client = _client(handler)
    with pytest.raises(RequestError) as exc_info:
        await client.post("/image", json={"prompt": "cat"})
    await client.aclose()

    assert exc_info.value.kind is ErrorKind.SERVER_ERROR
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_timeout_classes_and_override() -> None:
    timeouts: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        timeouts.append(request.extensions["timeout"]["read"])
        return httpx.Response(200, json={})

    client = _client(handler, json_timeout_seconds=12, upload_timeout_seconds=34)
    await client.post("/article", json={"title": "x"})
    await client.post("/bg-remove", files={"image": ("a.png", b"\x89PNG", "image/png")})
    await client.post("/article", json={"title": "x"}, timeout=5)
    await client.aclose()

    assert timeouts == [12, 34, 5]


@pytest.mark.asyncio
async def test_multipart_and_query_params_are_sent() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        request.read()
        if request.url.path.endswith("/bg-remove"):
            captured["content_type"] = request.headers["content-type"]
            captured["body"] = request.content
        else:
            captured["params"] = dict(request.url.params)
        return httpx.Response(200, json={})

    client = _client(handler)
    await client.post("/bg-remove", files={"image": ("cat.png", b"PIXELS", "image/png")})
    await client.get("/history", params={"limit": 10, "cursor": None, "page": 2})
    await client.aclose()

    assert str(captured["content_type"]).startswith("multipart/form-data")
    body = captured["body"]
    assert isinstance(body, bytes)
    assert b'name="image"' in body
    assert b"PIXELS" in body
    assert captured["params"] == {"limit": "10", "page": "2"}


@pytest.mark.asyncio
async def test_json_body_is_encoded() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.read()))
        return httpx.Response(200, json={})

    client = _client(handler)
    await client.post("/article", json={"title": "cat", "length": "medium"})
    await client.aclose()

    assert bodies == [{"title": "cat", "length": "medium"}]


@pytest.mark.parametrize(
    "failure",
    [
        lambda request: httpx.TooManyRedirects("redirect loop", request=request),
        lambda request: httpx.DecodingError("bad gzip stream", request=request),
        lambda request: httpx.InvalidURL("invalid host"),
    ],
)
@pytest.mark.asyncio
async def test_other_httpx_failures_are_network_errors(failure) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise failure(request)

    client = _client(handler)
    with pytest.raises(RequestError) as exc_info:
        await client.post("/article", json={"title": "x"})
    await client.aclose()

    assert exc_info.value.kind is ErrorKind.NETWORK_ERROR
    assert isinstance(exc_info.value.__cause__, httpx.RequestError | httpx.InvalidURL)
