"""Zelara command line entry point."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
from pathlib import Path
from typing import Any

import typer

from zelara.config import Settings, load_settings
from zelara.errors import LinkError, NotConnectedError, ZelaraError
from zelara.link import DeviceLinkingClient
from zelara.logging_utils import configure_logging
from zelara.pairing import PairingInfo, parse_pairing_uri
from zelara.progress import ProgressStore
from zelara.tasks import run_recycling_task

app = typer.Typer(name="zelara", help="Link with a Zelara Desktop and track progress.", add_completion=False)
progress_app = typer.Typer(help="Inspect or change the local progress ledger.")
app.add_typer(progress_app, name="progress")


def _settings(home: Path | None) -> Settings:
    settings = load_settings(home=home)
    configure_logging(settings.log_level, profile="cli")
    return settings


def _build_client(settings: Settings) -> DeviceLinkingClient:
    return DeviceLinkingClient(settings)


def _build_store(settings: Settings) -> ProgressStore:
    return ProgressStore.from_settings(settings)


def _pairing(uri: str, settings: Settings) -> PairingInfo:
    try:
        return parse_pairing_uri(uri, scheme=settings.pairing_scheme)
    except ZelaraError as exc:
        _fail(exc)


def _read_image(path: Path) -> str:
    try:
        return base64.b64encode(path.read_bytes()).decode("ascii")
    except OSError as exc:
        typer.echo(f"error: cannot read {path}: {exc}", err=True)
        raise typer.Exit(1) from exc


def _fail(exc: Exception) -> Any:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(1) from exc


def _echo_json(value: Any) -> None:
    typer.echo(json.dumps(value, ensure_ascii=False, indent=2, default=str))


@app.command()
def pair(uri: str = typer.Argument(..., help="Pairing URI decoded from the Desktop QR code")) -> None:
    """Parse a pairing URI and show the candidates it names."""
    pairing = _pairing(uri, _settings(None))
    for address in pairing.addresses:
        typer.echo(f"candidate {address}:{pairing.port}")


@app.command()
def validate(
    uri: str = typer.Argument(..., help="Pairing URI"),
    image: Path = typer.Argument(..., help="Photo to validate"),  # noqa: B008
    task_id: str | None = typer.Option(None, "--task-id", help="Reuse when retrying one physical task"),
    home: Path | None = typer.Option(None, "--home", help="State directory"),  # noqa: B008
) -> None:
    """Validate a recycling photo on the Desktop and award points."""
    settings = _settings(home)
    pairing = _pairing(uri, settings)
    image_b64 = _read_image(image)
    store = _build_store(settings)

    async def _run() -> Any:
        async with _build_client(settings) as client:
            await client.connect_pairing(pairing)
            return await run_recycling_task(client, store, image_b64, task_id=task_id)

    try:
        outcome = asyncio.run(_run())
    except ZelaraError as exc:
        _fail(exc)
    _echo_json(outcome.validation)
    typer.echo(f"points: {outcome.award.new_total}")
    for module in outcome.award.newly_unlocked:
        typer.echo(f"unlocked: {module}")


@app.command()
def invert(
    uri: str = typer.Argument(..., help="Pairing URI"),
    image: Path = typer.Argument(..., help="Photo to invert"),  # noqa: B008
    output: Path | None = typer.Option(None, "--output", "-o", help="Where to write the inverted image"),  # noqa: B008
) -> None:
    """Run the image inversion round trip test."""
    settings = _settings(None)
    pairing = _pairing(uri, settings)
    image_b64 = _read_image(image)

    async def _run() -> Any:
        async with _build_client(settings) as client:
            await client.connect_pairing(pairing)
            return await client.send_image_inversion_test(image_b64)

    try:
        result = asyncio.run(_run())
    except ZelaraError as exc:
        _fail(exc)

    inverted = result.get("invertedImage") if isinstance(result, dict) else None
    if output is None or not isinstance(inverted, str):
        _echo_json(result)
        return
    try:
        output.write_bytes(base64.b64decode(inverted, validate=True))
    except (binascii.Error, OSError) as exc:
        _fail(exc)
    typer.echo(f"wrote {output}")


@app.command()
def counter(
    uri: str = typer.Argument(..., help="Pairing URI"),
    count: int = typer.Option(10, "--count", "-n", min=1, help="Number of heartbeats"),
    interval: float = typer.Option(1.0, "--interval", min=0.0, help="Seconds between heartbeats"),
) -> None:
    """Send a counter heartbeat to the Desktop."""
    settings = _settings(None)
    pairing = _pairing(uri, settings)

    async def _run() -> int:
        failures = 0
        async with _build_client(settings) as client:
            await client.connect_pairing(pairing)
            for value in range(count):
                try:
                    result = await client.send_counter_update(value)
                except NotConnectedError:
                    raise
                except LinkError as exc:
                    failures += 1
                    typer.echo(f"counter {value}: {exc}", err=True)
                else:
                    typer.echo(f"counter {value}: {json.dumps(result, default=str)}")
                if value + 1 < count:
                    await asyncio.sleep(interval)
        return failures

    try:
        failures = asyncio.run(_run())
    except ZelaraError as exc:
        _fail(exc)
    if failures:
        raise typer.Exit(1)


@progress_app.command("show")
def progress_show(home: Path | None = typer.Option(None, "--home", help="State directory")) -> None:  # noqa: B008
    """Print the progress record and the next unlock."""
    store = _build_store(_settings(home))
    _echo_json(store.load_progress().to_payload())
    next_unlock = store.get_next_unlock_progress()
    if next_unlock is None:
        typer.echo("next unlock: none")
        return
    typer.echo(
        f"next unlock: {next_unlock.module_name} "
        f"{next_unlock.current_points}/{next_unlock.required_points} ({next_unlock.fraction:.0%})"
    )


@progress_app.command("unlock")
def progress_unlock(
    name: str = typer.Argument(..., help="Module to unlock"),
    home: Path | None = typer.Option(None, "--home", help="State directory"),  # noqa: B008
) -> None:
    """Mark a module as unlocked."""
    store = _build_store(_settings(home))
    try:
        record = store.unlock_module(name)
    except ZelaraError as exc:
        _fail(exc)
    typer.echo("unlocked modules: " + ", ".join(sorted(record.unlocked_modules)))


@progress_app.command("reset")
def progress_reset(
    home: Path | None = typer.Option(None, "--home", help="State directory"),  # noqa: B008
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Restore the default progress record."""
    if not yes:
        typer.confirm("Reset all progress?", abort=True)
    store = _build_store(_settings(home))
    try:
        store.reset_progress()
    except ZelaraError as exc:
        _fail(exc)
    typer.echo("progress reset")


if __name__ == "__main__":
    app()
