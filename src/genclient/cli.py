"""Command line entry points for genclient."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from genclient.api import Upload
from genclient.config import get_settings
from genclient.decoder import ArtifactKind
from genclient.errors import ConfigurationError, Failure
from genclient.feed import FeedStatus
from genclient.mutation import MutationState, MutationStatus
from genclient.runtime import SLOT_ARTICLE, SLOT_BACKGROUND, SLOT_IMAGE, SLOT_RESUME, DashboardRuntime

app = typer.Typer(name="genclient", help="Submit AI generation jobs and browse their history.", add_completion=False)
console = Console()

BaseUrlOption = typer.Option(None, "--base-url", help="Backend base URL")
TokenOption = typer.Option(None, "--token", envvar="GENCLIENT_TOKEN", help="Bearer token")
OutputOption = typer.Option(None, "--output", "-o", help="Write the result to this file")


def _build_runtime(base_url: str | None, token: str | None) -> DashboardRuntime:
    overrides: dict[str, Any] = {}
    if base_url:
        overrides["api_base_url"] = base_url
    if token:
        overrides["token"] = token
    try:
        return DashboardRuntime(get_settings(**overrides))
    except ConfigurationError as exc:
        console.print(f"[red]configuration error[/red] {exc}", markup=True, highlight=False)
        raise typer.Exit(2) from exc


def _print_failure(failure: Failure) -> None:
    console.print(f"[red]error[/red] {failure.kind.value}: {failure.message}", markup=True, highlight=False)
    if failure.reason is not None:
        console.print(f"  reason: {failure.reason.value}", highlight=False)
    for field_name, messages in failure.field_errors.items():
        for message in messages:
            console.print(f"  {field_name}: {message}", highlight=False)


def _emit(state: MutationState, output: Path | None) -> None:
    if state.status is not MutationStatus.SUCCESS or state.data is None:
        if state.error is not None:
            _print_failure(state.error)
        raise typer.Exit(1)

    artifact = state.data
    if artifact.kind is ArtifactKind.TEXT:
        if output is None:
            typer.echo(artifact.text)
            return
        output.write_text(artifact.text, encoding="utf-8")
    else:
        if output is None:
            typer.echo(f"{artifact.media_type} ({len(artifact.data)} bytes) decoded from {artifact.source_shape}")
            typer.echo("use --output to save it")
            return
        output.write_bytes(artifact.data)
    typer.echo(f"saved {output}")


async def _run_slot(runtime: DashboardRuntime, slot_id: str, payload: Any) -> MutationState:
    async with runtime:
        return await runtime.mutation(slot_id).run(payload)


@app.command()
def article(
    title: str = typer.Argument(..., help="Article title"),
    length: str = typer.Option("medium", "--length", "-l", help="short, medium or long"),
    output: Path | None = OutputOption,  # noqa: B008
    base_url: str | None = BaseUrlOption,
    token: str | None = TokenOption,
) -> None:
    """Generate an article."""
    runtime = _build_runtime(base_url, token)
    state = asyncio.run(_run_slot(runtime, SLOT_ARTICLE, {"title": title.strip(), "length": length}))
    _emit(state, output)


@app.command()
def image(
    prompt: str = typer.Argument(..., help="Image description"),
    style: str = typer.Option("realistic", "--style", help="Rendering style"),
    size: str = typer.Option("1024x1024", "--size", help="WIDTHxHEIGHT"),
    output: Path | None = OutputOption,  # noqa: B008
    base_url: str | None = BaseUrlOption,
    token: str | None = TokenOption,
) -> None:
    """Generate an image from a prompt."""
    runtime = _build_runtime(base_url, token)
    request = {"prompt": prompt.strip(), "style": style, "size": size}
    state = asyncio.run(_run_slot(runtime, SLOT_IMAGE, request))
    _emit(state, output)


@app.command("remove-bg")
def remove_bg(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Image file"),  # noqa: B008
    output: Path | None = OutputOption,  # noqa: B008
    base_url: str | None = BaseUrlOption,
    token: str | None = TokenOption,
) -> None:
    """Remove the background of an image."""
    runtime = _build_runtime(base_url, token)
    state = asyncio.run(_run_slot(runtime, SLOT_BACKGROUND, Upload.from_path(path)))
    _emit(state, output)


@app.command()
def resume(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Resume PDF"),  # noqa: B008
    output: Path | None = OutputOption,  # noqa: B008
    base_url: str | None = BaseUrlOption,
    token: str | None = TokenOption,
) -> None:
    """Analyze a resume and print the report."""
    runtime = _build_runtime(base_url, token)
    state = asyncio.run(_run_slot(runtime, SLOT_RESUME, Upload.from_path(path)))
    _emit(state, output)


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", help="Items per page"),
    pages: int = typer.Option(1, "--pages", min=1, help="Number of pages to walk forward"),
    base_url: str | None = BaseUrlOption,
    token: str | None = TokenOption,
) -> None:
    """List past generations."""

    async def _walk() -> list[Any]:
        runtime = _build_runtime(base_url, token)
        async with runtime:
            feed = runtime.history_feed(limit=limit)
            state = await feed.load()
            collected = list(state.items)
            for _ in range(pages - 1):
                if state.status is not FeedStatus.LOADED or not state.cursor.has_next:
                    break
                state = await feed.next_page()
                collected.extend(state.items)
            if state.error is not None:
                _print_failure(state.error)
                raise typer.Exit(1)
            return collected

    items = asyncio.run(_walk())
    table = Table("id", "type", "title", "status", "created")
    for item in items:
        created = item.created_at.isoformat(timespec="minutes") if item.created_at else ""
        table.add_row(item.id, item.type, item.title, item.status, created)
    console.print(table)


@app.command()
def usage(
    base_url: str | None = BaseUrlOption,
    token: str | None = TokenOption,
) -> None:
    """Show quota usage per feature."""

    async def _fetch() -> Any:
        runtime = _build_runtime(base_url, token)
        async with runtime:
            return await runtime.usage()

    report = asyncio.run(_fetch())
    if isinstance(report, Failure):
        _print_failure(report)
        raise typer.Exit(1)

    table = Table("feature", "used", "limit", "remaining")
    for item in report.usage:
        table.add_row(item.feature, str(item.used), str(item.limit), str(item.remaining))
    console.print(table)
    plan = "premium" if report.is_premium else "free"
    console.print(f"plan: {plan}  resets: {report.reset_time or '-'}", highlight=False)
