"""Endpoint helpers for the dashboard backend."""

from __future__ import annotations

import mimetypes
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from genclient.client import RequestClient
from genclient.errors import DecodeError, DecodeReason, ErrorKind, RequestError, upload_rejected
from genclient.models import ArticleRequest, ImageRequest, ResumeAnalysis, UsageReport

ModelT = TypeVar("ModelT", bound=BaseModel)

THINK_RE = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE)
PDF_MEDIA_TYPE = "application/pdf"


@dataclass(frozen=True)
class Upload:
    """A file prepared for a multipart field."""

    filename: str
    content: bytes
    content_type: str

    @classmethod
    def from_path(cls, path: Path) -> Upload:
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            filename=path.name,
            content=path.read_bytes(),
            content_type=content_type or "application/octet-stream",
        )

    @property
    def size(self) -> int:
        return len(self.content)

    def as_field(self) -> tuple[str, bytes, str]:
        return (self.filename, self.content, self.content_type)


def strip_think_sections(text: str) -> str:
    """Remove model reasoning blocks from generated article HTML."""
    return THINK_RE.sub("", text)


def resume_payload(raw: Any) -> Any:
    """Render structured resume analyses as report text; pass other shapes through."""
    if isinstance(raw, Mapping):
        body = raw.get("data") if isinstance(raw.get("data"), Mapping) else raw
        if "score" in body:
            try:
                return ResumeAnalysis.model_validate(body).render_report()
            except ValidationError as exc:
                raise DecodeError(DecodeReason.NO_SHAPE_MATCHED, "malformed resume analysis") from exc
    return raw


def coerce_request(model: type[ModelT], payload: ModelT | Mapping[str, Any]) -> ModelT:
    """Validate caller input, reporting problems as a field-keyed validation error."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        field_errors: dict[str, list[str]] = {}
        for error in exc.errors():
            name = ".".join(str(part) for part in error["loc"]) or "__root__"
            field_errors.setdefault(name, []).append(error["msg"])
        raise RequestError(ErrorKind.VALIDATION, "invalid request", field_errors=field_errors) from exc


def _check_upload(upload: Upload, *, accept_prefix: str, max_bytes: int, label: str) -> None:
    if not upload.content_type.startswith(accept_prefix):
        raise upload_rejected(f"Please select {label}")
    if upload.size > max_bytes:
        raise upload_rejected(f"File size must be less than {max_bytes // (1024 * 1024)}MB")
    if upload.size == 0:
        raise upload_rejected("File is empty")


class DashboardApi:
    """One coroutine per backend endpoint; payloads are returned raw."""

    def __init__(
        self,
        client: RequestClient,
        *,
        max_image_upload_bytes: int = 10 * 1024 * 1024,
        max_resume_upload_bytes: int = 5 * 1024 * 1024,
        resume_timeout_seconds: float = 120.0,
    ) -> None:
        self._client = client
        self._max_image_upload_bytes = max_image_upload_bytes
        self._max_resume_upload_bytes = max_resume_upload_bytes
        self._resume_timeout_seconds = resume_timeout_seconds

    async def generate_article(self, request: ArticleRequest | Mapping[str, Any]) -> Any:
        article = coerce_request(ArticleRequest, request)
        return await self._client.post("/article", json=article.model_dump())

    async def generate_image(self, request: ImageRequest | Mapping[str, Any]) -> Any:
        image = coerce_request(ImageRequest, request)
        return await self._client.post("/image", json=image.model_dump(exclude_none=True))

    async def remove_background(self, upload: Upload) -> Any:
        _check_upload(upload, accept_prefix="image/", max_bytes=self._max_image_upload_bytes, label="an image file")
        return await self._client.post("/bg-remove", files={"image": upload.as_field()})

    async def analyze_resume(self, upload: Upload) -> Any:
        _check_upload(upload, accept_prefix=PDF_MEDIA_TYPE, max_bytes=self._max_resume_upload_bytes, label="a PDF file")
        return await self._client.post(
            "/resume",
            files={"file": upload.as_field()},
            timeout=self._resume_timeout_seconds,
        )

    async def get_usage(self) -> UsageReport:
        raw = await self._client.get("/history/usage")
        if not isinstance(raw, Mapping):
            raise DecodeError(DecodeReason.NO_SHAPE_MATCHED, "usage payload is not an object")
        try:
            return UsageReport.model_validate(raw)
        except ValidationError as exc:
            raise DecodeError(DecodeReason.NO_SHAPE_MATCHED, f"malformed usage payload: {exc.error_count()} errors") from exc
