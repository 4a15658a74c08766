"""HTTP request client with send-time auth binding and failure classification."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from genclient.config import Settings
from genclient.envelope import field_of
from genclient.errors import ErrorKind, RequestError
from genclient.session import SessionTokenManager

USER_AGENT = "genclient/0.1"
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK_ERROR, ErrorKind.SERVER_ERROR})

FileField = tuple[str, bytes, str]


@dataclass(frozen=True)
class OutboundRequest:
    """One HTTP call, with headers captured at send time."""

    method: str
    path: str
    json: Any = None
    files: Mapping[str, FileField] | None = None
    params: Mapping[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 0.0

    @property
    def idempotent(self) -> bool:
        return self.method in IDEMPOTENT_METHODS

    @property
    def multipart(self) -> bool:
        return bool(self.files)


def build_async_client(settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Create an `httpx.AsyncClient` with the backend defaults."""

    return httpx.AsyncClient(
        base_url=settings.api_base_url,
        timeout=httpx.Timeout(settings.json_timeout_seconds),
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        transport=transport,
    )


class RequestClient:
    """Issue backend calls and turn every failure into a `RequestError`."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        session: SessionTokenManager,
        *,
        json_timeout_seconds: float = 120.0,
        upload_timeout_seconds: float = 180.0,
    ) -> None:
        self._http = http
        self._session = session
        self.json_timeout_seconds = json_timeout_seconds
        self.upload_timeout_seconds = upload_timeout_seconds

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session: SessionTokenManager,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RequestClient:
        return cls(
            build_async_client(settings, transport=transport),
            session,
            json_timeout_seconds=settings.json_timeout_seconds,
            upload_timeout_seconds=settings.upload_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def get(self, path: str, *, params: Mapping[str, Any] | None = None, timeout: float | None = None) -> Any:
        return await self.request("GET", path, params=params, timeout=timeout)

    async def post(
        self,
        path: str,
        *,
        json: Any = None,
        files: Mapping[str, FileField] | None = None,
        timeout: float | None = None,
    ) -> Any:
        return await self.request("POST", path, json=json, files=files, timeout=timeout)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        files: Mapping[str, FileField] | None = None,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send one call, retrying idempotent reads once on transient failure."""
        method = method.upper()
        if timeout is None:
            timeout = self.upload_timeout_seconds if files else self.json_timeout_seconds
        params = {key: value for key, value in (params or {}).items() if value is not None}

        attempts = 2 if method in IDEMPOTENT_METHODS else 1
        for attempt in range(1, attempts + 1):
            outbound = OutboundRequest(
                method=method,
                path=path,
                json=json,
                files=files,
                params=params or None,
                headers=self._headers(),
                timeout=timeout,
            )
            try:
                return await self._send(outbound)
            except RequestError as exc:
                if attempt < attempts and exc.kind in RETRYABLE_KINDS:
                    logger.warning("request.retry method={} path={} kind={}", method, path, exc.kind.value)
                    continue
                raise
        raise AssertionError("unreachable")

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        auth = self._session.auth_header()
        if auth is not None:
            headers["Authorization"] = auth
        return headers

    async def _send(self, outbound: OutboundRequest) -> Any:
        logger.debug(
            "request.send method={} path={} multipart={} auth={}",
            outbound.method,
            outbound.path,
            outbound.multipart,
            "Authorization" in outbound.headers,
        )
        try:
            response = await self._http.request(
                outbound.method,
                outbound.path,
                json=outbound.json if not outbound.multipart else None,
                files=dict(outbound.files) if outbound.files else None,
                params=outbound.params,
                headers=outbound.headers,
                timeout=outbound.timeout,
            )
        except httpx.TimeoutException as exc:
            raise RequestError(ErrorKind.NETWORK_ERROR, f"request timed out: {exc!s}") from exc
        except httpx.TransportError as exc:
            raise RequestError(ErrorKind.NETWORK_ERROR, f"transport failure: {exc!s}") from exc
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            raise RequestError(ErrorKind.NETWORK_ERROR, f"request failed: {exc!s}") from exc

        if response.is_success:
            return _parse_body(response)
        raise classify_response(response)


def _parse_body(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    content_type = response.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    if content_type == "application/json" or content_type.endswith("+json"):
        try:
            return response.json()
        except ValueError:
            return response.text
    if content_type.startswith("text/"):
        return response.text
    if not content_type:
        try:
            return response.json()
        except ValueError:
            return response.content
    return response.content


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _field_errors(body: Any) -> dict[str, list[str]] | None:
    for raw in (field_of(field_of(body, "details"), "fieldErrors"), field_of(body, "fieldErrors"), field_of(body, "errors")):
        if not isinstance(raw, Mapping) or not raw:
            continue
        errors: dict[str, list[str]] = {}
        for name, messages in raw.items():
            if isinstance(messages, str):
                errors[str(name)] = [messages]
            elif isinstance(messages, list | tuple):
                errors[str(name)] = [str(message) for message in messages]
        if errors:
            return errors
    return None


def _error_message(body: Any, response: httpx.Response) -> str:
    for key in ("error", "message", "detail"):
        value = field_of(body, key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return f"http {response.status_code}: {response.reason_phrase}".strip()


def classify_response(response: httpx.Response) -> RequestError:
    """Map an unsuccessful response onto an `ErrorKind`."""

    status = response.status_code
    body = _error_body(response)
    message = _error_message(body, response)

    if status == 401:
        kind = ErrorKind.UNAUTHORIZED
    elif status == 429:
        kind = ErrorKind.RATE_LIMITED
    elif status >= 500:
        kind = ErrorKind.SERVER_ERROR
    elif status == 400 and (field_errors := _field_errors(body)):
        return RequestError(ErrorKind.VALIDATION, message, status_code=status, field_errors=field_errors)
    else:
        kind = ErrorKind.CLIENT_ERROR
    return RequestError(kind, message, status_code=status)
