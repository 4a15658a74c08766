"""Lifecycle tracking for transient resources derived from artifacts."""

from __future__ import annotations

import mimetypes
import tempfile
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from genclient.decoder import Artifact

Revoke = Callable[[], None]
ResourceFactory = Callable[[], tuple[str, Revoke]]

DEFAULT_OWNER = "default"


@dataclass(eq=False)
class ResourceHandle:
    """A live transient resource; `url` is only valid until release."""

    id: str
    slot_id: str
    owner: str
    url: str
    _revoke: Revoke = field(repr=False)
    released: bool = False


class ResourceLifecycleManager:
    """Keep at most one live resource per slot and release each exactly once."""

    def __init__(self) -> None:
        self._slots: dict[str, ResourceHandle] = {}

    def __enter__(self) -> ResourceLifecycleManager:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release_all()

    def register(self, slot_id: str, factory: ResourceFactory, *, owner: str = DEFAULT_OWNER) -> ResourceHandle:
        """Release the slot's current handle, then create and track a new one."""
        previous = self._slots.pop(slot_id, None)
        if previous is not None:
            self.release(previous)

        url, revoke = factory()
        handle = ResourceHandle(id=uuid.uuid4().hex, slot_id=slot_id, owner=owner, url=url, _revoke=revoke)
        self._slots[slot_id] = handle
        logger.debug("resource.registered slot={} owner={} id={}", slot_id, owner, handle.id)
        return handle

    def release(self, handle: ResourceHandle) -> None:
        if handle.released:
            return
        handle.released = True
        if self._slots.get(handle.slot_id) is handle:
            del self._slots[handle.slot_id]
        try:
            handle._revoke()
        except OSError as exc:
            logger.warning("resource.revoke.failed id={} error={!r}", handle.id, exc)
        logger.debug("resource.released slot={} id={}", handle.slot_id, handle.id)

    def release_slot(self, slot_id: str) -> None:
        handle = self._slots.get(slot_id)
        if handle is not None:
            self.release(handle)

    def release_all(self, owner: str | None = None) -> int:
        """Release every handle, or only those owned by `owner`. Returns the count."""
        handles = [handle for handle in self._slots.values() if owner is None or handle.owner == owner]
        for handle in handles:
            self.release(handle)
        return len(handles)

    def live(self, slot_id: str) -> ResourceHandle | None:
        return self._slots.get(slot_id)

    def live_handles(self) -> list[ResourceHandle]:
        return list(self._slots.values())


def _suffix_for(media_type: str | None) -> str:
    if not media_type:
        return ".bin"
    return mimetypes.guess_extension(media_type) or ".bin"


def temp_file_factory(artifact: Artifact, directory: Path | None = None) -> ResourceFactory:
    """Expose a binary artifact as a temporary file with a `file://` URL."""

    def _create() -> tuple[str, Revoke]:
        if directory is not None:
            directory.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            prefix="genclient-",
            suffix=_suffix_for(artifact.media_type),
            dir=directory,
            delete=False,
        ) as handle:
            handle.write(artifact.data)
        path = Path(handle.name)

        def _revoke() -> None:
            path.unlink(missing_ok=True)

        return path.resolve().as_uri(), _revoke

    return _create
