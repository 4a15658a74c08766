from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from genclient.decoder import ArtifactKind
from genclient.errors import DecodeReason, ErrorKind, RequestError
from genclient.mutation import MutationController, MutationState, MutationStatus
from genclient.resources import ResourceLifecycleManager
from genclient.session import SessionTokenManager


class GatedOperation:
    """Operation whose calls resolve only when the test opens their gate."""

    def __init__(self) -> None:
        self.gates: dict[str, asyncio.Event] = {}
        self.results: dict[str, Any] = {}
        self.calls: list[str] = []

    def gate(self, key: str, result: Any) -> asyncio.Event:
        self.gates[key] = asyncio.Event()
        self.results[key] = result
        return self.gates[key]

    async def __call__(self, payload: str) -> Any:
        self.calls.append(payload)
        await self.gates[payload].wait()
        result = self.results[payload]
        if isinstance(result, BaseException):
            raise result
        return result


def _controller(operation: Any, *, expect: ArtifactKind = ArtifactKind.TEXT, **kwargs: Any) -> MutationController:
    kwargs.setdefault("resources", ResourceLifecycleManager())
    return MutationController(operation, slot_id="slot", expect=expect, **kwargs)


@pytest.mark.asyncio
@pytest.mark.parametrize("resolve_order", [("A", "B"), ("B", "A")])
async def test_only_latest_run_is_observed(resolve_order: tuple[str, str]) -> None:
    operation = GatedOperation()
    operation.gate("A", {"data": {"article": "from A"}})
    operation.gate("B", {"data": {"article": "from B"}})
    controller = _controller(operation)
    observed: list[MutationState] = []
    controller.subscribe(observed.append)

    task_a = asyncio.create_task(controller.run("A"))
    await asyncio.sleep(0)
    task_b = asyncio.create_task(controller.run("B"))
    await asyncio.sleep(0)

    for key in resolve_order:
        operation.gates[key].set()
        await asyncio.sleep(0)
    await asyncio.gather(task_a, task_b)

    assert operation.calls == ["A", "B"]
    assert controller.state.status is MutationStatus.SUCCESS
    assert controller.state.data is not None
    assert controller.state.data.text == "from B"
    assert controller.state.generation == 2
    successes = [state for state in observed if state.status is MutationStatus.SUCCESS]
    assert [state.data.text for state in successes] == ["from B"]


@pytest.mark.asyncio
async def test_stale_failure_is_dropped() -> None:
    operation = GatedOperation()
    operation.gate("A", RequestError(ErrorKind.SERVER_ERROR, "boom", status_code=500))
    operation.gate("B", "ok")
    controller = _controller(operation)

    task_a = asyncio.create_task(controller.run("A"))
    await asyncio.sleep(0)
    operation.gates["B"].set()
    await controller.run("B")
    operation.gates["A"].set()
    await task_a

    assert controller.state.status is MutationStatus.SUCCESS
    assert controller.state.error is None


@pytest.mark.asyncio
async def test_request_failure_is_published_verbatim() -> None:
    async def _operation(payload: Any) -> Any:
        raise RequestError(ErrorKind.VALIDATION, "bad title", status_code=400, field_errors={"title": ["Required"]})

    controller = _controller(_operation)
    state = await controller.run({"title": ""})

    assert state.status is MutationStatus.ERROR
    assert state.error is not None
    assert state.error.kind is ErrorKind.VALIDATION
    assert state.error.status_code == 400
    assert state.error.field_errors == {"title": ["Required"]}


@pytest.mark.asyncio
async def test_decode_failure_is_distinct_from_transport_failure() -> None:
    async def _operation(payload: Any) -> Any:
        return {"success": True, "id": 7}

    controller = _controller(_operation, expect=ArtifactKind.BINARY)
    state = await controller.run(None)

    assert state.status is MutationStatus.ERROR
    assert state.error is not None
    assert state.error.kind is ErrorKind.DECODE_ERROR
    assert state.error.reason is DecodeReason.NO_SHAPE_MATCHED


@pytest.mark.asyncio
async def test_invalid_base64_is_decode_error() -> None:
    async def _operation(payload: Any) -> Any:
        return {"image": "this is ~not~ base64"}

    controller = _controller(_operation, expect=ArtifactKind.BINARY)
    state = await controller.run(None)

    assert state.error is not None
    assert state.error.reason is DecodeReason.INVALID_ENCODING


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_unknown() -> None:
    async def _operation(payload: Any) -> Any:
        raise RuntimeError("kaboom")

    controller = _controller(_operation)
    state = await controller.run(None)

    assert state.status is MutationStatus.ERROR
    assert state.error is not None
    assert state.error.kind is ErrorKind.UNKNOWN
    assert state.error.message == "kaboom"


@pytest.mark.asyncio
async def test_unauthorized_expires_session() -> None:
    session = SessionTokenManager("abc123")
    expired: list[object] = []
    session.auth_expired.connect(lambda sender: expired.append(sender), weak=False)

    async def _operation(payload: Any) -> Any:
        raise RequestError(ErrorKind.UNAUTHORIZED, "token expired", status_code=401)

    controller = _controller(_operation, session=session)
    state = await controller.run(None)

    assert state.error is not None
    assert state.error.kind is ErrorKind.UNAUTHORIZED
    assert session.signed_in is False
    assert expired == [session]


@pytest.mark.asyncio
async def test_cancel_suppresses_in_flight_completion() -> None:
    operation = GatedOperation()
    operation.gate("A", "late result")
    controller = _controller(operation)

    task = asyncio.create_task(controller.run("A"))
    await asyncio.sleep(0)
    assert controller.state.is_pending

    controller.cancel()
    assert controller.state.status is MutationStatus.IDLE

    operation.gates["A"].set()
    await task

    assert controller.state.status is MutationStatus.IDLE
    assert controller.state.data is None


@pytest.mark.asyncio
async def test_run_after_cancel_starts_fresh_generation() -> None:
    operation = GatedOperation()
    operation.gate("A", "first")
    operation.gate("B", "second")
    controller = _controller(operation)

    task = asyncio.create_task(controller.run("A"))
    await asyncio.sleep(0)
    controller.cancel()
    operation.gates["A"].set()
    await task

    operation.gates["B"].set()
    state = await controller.run("B")

    assert state.status is MutationStatus.SUCCESS
    assert state.data is not None
    assert state.data.text == "second"


@pytest.mark.asyncio
async def test_task_cancellation_returns_slot_to_idle() -> None:
    operation = GatedOperation()
    operation.gate("A", "never")
    controller = _controller(operation)

    task = asyncio.create_task(controller.run("A"))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert controller.state.status is MutationStatus.IDLE


@pytest.mark.asyncio
async def test_binary_success_registers_one_resource(tmp_path: Path, png_base64: str, png_bytes: bytes) -> None:
    resources = ResourceLifecycleManager()

    async def _operation(payload: Any) -> Any:
        return {"image": png_base64}

    controller = _controller(_operation, expect=ArtifactKind.BINARY, resources=resources, resource_dir=tmp_path)

    first = await controller.run(None)
    assert first.resource is not None
    first_handle = first.resource

    second = await controller.run(None)
    assert second.resource is not None

    assert first_handle.released is True
    assert second.resource.released is False
    assert resources.live_handles() == [second.resource]
    assert second.data is not None
    assert second.data.data == png_bytes


@pytest.mark.asyncio
async def test_error_and_reset_release_slot_resource(tmp_path: Path, png_base64: str) -> None:
    resources = ResourceLifecycleManager()
    responses: list[Any] = [{"image": png_base64}, RequestError(ErrorKind.SERVER_ERROR, "boom", status_code=500)]

    async def _operation(payload: Any) -> Any:
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    controller = _controller(_operation, expect=ArtifactKind.BINARY, resources=resources, resource_dir=tmp_path)

    success = await controller.run(None)
    assert success.resource is not None
    failure = await controller.run(None)

    assert failure.status is MutationStatus.ERROR
    assert success.resource.released is True
    assert resources.live("slot") is None

    controller.reset()
    assert controller.state.status is MutationStatus.IDLE


@pytest.mark.asyncio
async def test_close_releases_owned_resources(tmp_path: Path, png_base64: str) -> None:
    resources = ResourceLifecycleManager()

    async def _operation(payload: Any) -> Any:
        return png_base64

    controller = _controller(
        _operation,
        expect=ArtifactKind.BINARY,
        resources=resources,
        owner="page",
        resource_dir=tmp_path,
    )
    state = await controller.run(None)
    assert state.resource is not None
    assert state.resource.owner == "page"

    controller.close()

    assert resources.live_handles() == []
    assert controller.state.status is MutationStatus.IDLE


@pytest.mark.asyncio
async def test_text_transform_is_applied() -> None:
    async def _operation(payload: Any) -> Any:
        return {"data": {"content": "  padded  "}}

    controller = _controller(_operation, transform=str.strip)
    state = await controller.run(None)

    assert state.data is not None
    assert state.data.text == "padded"
    assert state.data.source_shape == "field:data.content"


@pytest.mark.asyncio
async def test_subscribe_and_unsubscribe() -> None:
    async def _operation(payload: Any) -> Any:
        return "done"

    controller = _controller(_operation)
    seen: list[MutationStatus] = []
    unsubscribe = controller.subscribe(lambda state: seen.append(state.status))

    await controller.run(None)
    unsubscribe()
    await controller.run(None)

    assert seen == [MutationStatus.PENDING, MutationStatus.SUCCESS]
