"""Single-flight state machine for one asynchronous operation slot."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path
from typing import Any, Generic, TypeVar

from blinker import Signal
from loguru import logger

from genclient.decoder import DEFAULT_MIN_LENGTH, Artifact, ArtifactKind, decode_artifact
from genclient.errors import ErrorKind, Failure, GenClientError
from genclient.resources import ResourceHandle, ResourceLifecycleManager, temp_file_factory
from genclient.session import SessionTokenManager

T = TypeVar("T")


class MutationStatus(StrEnum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class MutationState(Generic[T]):
    """Immutable snapshot published to subscribers."""

    status: MutationStatus = MutationStatus.IDLE
    data: T | None = None
    error: Failure | None = None
    generation: int = 0
    resource: ResourceHandle | None = None

    @property
    def is_pending(self) -> bool:
        return self.status is MutationStatus.PENDING


Operation = Callable[[Any], Awaitable[Any]]
TextTransform = Callable[[str], str]
StateListener = Callable[[MutationState[Artifact]], None]


class MutationController:
    """Run an operation, decode its payload and publish state for one slot.

    Each `run()` starts a new generation. A completion is applied only while
    its generation is the newest one and has not been cancelled, so a slow
    earlier call can never overwrite the outcome of a later one.
    """

    def __init__(
        self,
        operation: Operation,
        *,
        slot_id: str,
        expect: ArtifactKind,
        resources: ResourceLifecycleManager,
        session: SessionTokenManager | None = None,
        owner: str | None = None,
        transform: TextTransform | None = None,
        min_length: int = DEFAULT_MIN_LENGTH,
        resource_dir: Path | None = None,
    ) -> None:
        self._operation = operation
        self._slot_id = slot_id
        self._expect = expect
        self._resources = resources
        self._session = session
        self._owner = owner or slot_id
        self._transform = transform
        self._min_length = min_length
        self._resource_dir = resource_dir
        self._generation = 0
        self._cancelled_through = 0
        self._state: MutationState[Artifact] = MutationState()
        self._changed = Signal(f"genclient.mutation.{slot_id}")

    @property
    def slot_id(self) -> str:
        return self._slot_id

    @property
    def state(self) -> MutationState[Artifact]:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        def _receiver(sender: Any, *, state: MutationState[Artifact]) -> None:
            listener(state)

        self._changed.connect(_receiver, weak=False)
        return lambda: self._changed.disconnect(_receiver)

    async def run(self, payload: Any = None) -> MutationState[Artifact]:
        self._generation += 1
        generation = self._generation
        self._publish(MutationState(status=MutationStatus.PENDING, generation=generation))

        try:
            raw = await self._operation(payload)
        except asyncio.CancelledError:
            if self._is_current(generation):
                self._cancelled_through = generation
                self._publish(MutationState(status=MutationStatus.IDLE, generation=generation))
            raise
        except GenClientError as exc:
            return self._fail(generation, exc.to_failure())
        except Exception as exc:
            logger.exception("mutation.operation.error slot={} generation={}", self._slot_id, generation)
            return self._fail(generation, Failure(kind=ErrorKind.UNKNOWN, message=str(exc) or type(exc).__name__))

        if not self._is_current(generation):
            logger.debug("mutation.stale slot={} generation={} current={}", self._slot_id, generation, self._generation)
            return self._state

        try:
            artifact = decode_artifact(raw, self._expect, min_length=self._min_length)
            if self._transform is not None and artifact.kind is ArtifactKind.TEXT:
                artifact = replace(artifact, payload=self._transform(artifact.text))
            resource = self._attach_resource(artifact)
        except GenClientError as exc:
            return self._fail(generation, exc.to_failure())
        except OSError as exc:
            logger.warning("mutation.resource.failed slot={} error={!r}", self._slot_id, exc)
            return self._fail(generation, Failure(kind=ErrorKind.UNKNOWN, message=f"could not store artifact: {exc!s}"))

        logger.info(
            "mutation.success slot={} generation={} kind={} shape={}",
            self._slot_id,
            generation,
            artifact.kind.value,
            artifact.source_shape,
        )
        self._publish(
            MutationState(status=MutationStatus.SUCCESS, data=artifact, generation=generation, resource=resource)
        )
        return self._state

    def cancel(self) -> None:
        """Abandon the current generation; the transport call is left to finish."""
        self._cancelled_through = self._generation
        if self._state.is_pending:
            logger.debug("mutation.cancelled slot={} generation={}", self._slot_id, self._generation)
            self._publish(MutationState(status=MutationStatus.IDLE, generation=self._generation))

    def reset(self) -> None:
        self.cancel()
        self._resources.release_slot(self._slot_id)
        if self._state.status is not MutationStatus.IDLE:
            self._publish(MutationState(status=MutationStatus.IDLE, generation=self._generation))

    def close(self) -> None:
        self.reset()
        self._resources.release_all(self._owner)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and generation > self._cancelled_through

    def _attach_resource(self, artifact: Artifact) -> ResourceHandle | None:
        if artifact.kind is not ArtifactKind.BINARY:
            self._resources.release_slot(self._slot_id)
            return None
        return self._resources.register(
            self._slot_id,
            temp_file_factory(artifact, self._resource_dir),
            owner=self._owner,
        )

    def _fail(self, generation: int, failure: Failure) -> MutationState[Artifact]:
        if not self._is_current(generation):
            logger.debug("mutation.stale slot={} generation={} kind={}", self._slot_id, generation, failure.kind.value)
            return self._state

        logger.info("mutation.error slot={} generation={} kind={}", self._slot_id, generation, failure.kind.value)
        if failure.kind is ErrorKind.UNAUTHORIZED and self._session is not None:
            self._session.expire()
        self._resources.release_slot(self._slot_id)
        self._publish(MutationState(status=MutationStatus.ERROR, error=failure, generation=generation))
        return self._state

    def _publish(self, state: MutationState[Artifact]) -> None:
        self._state = state
        self._changed.send(self, state=state)
