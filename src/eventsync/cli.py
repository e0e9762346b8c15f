"""CLI for eventsync: inspect and synchronize the local event collection."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import click

from eventsync import __version__
from eventsync.config import ConfigError, EventSyncConfig, load_config
from eventsync.core.lifecycle import LifecycleState
from eventsync.core.logging import configure_logging
from eventsync.core.metrics import init_metrics
from eventsync.core.temporal import format_instant
from eventsync.events.engine import EventSyncEngine
from eventsync.events.gateway import HttpEventGateway, StaticTokenProvider
from eventsync.events.models import Event
from eventsync.storage.cache import JsonFileCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATE_CHOICES = [state.value for state in LifecycleState]


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory containing eventsync.toml",
)
@click.pass_context
def cli(ctx: click.Context, config_dir: Path) -> None:
    """Keep challenge events in sync with the server."""
    ctx.obj = config_dir


@cli.command()
@click.pass_obj
def load(config_dir: Path) -> None:
    """Refresh events from the server (or the cache) and print counts."""
    config = _load_config(config_dir)

    async def _action(engine: EventSyncEngine) -> None:
        await engine.load()
        click.echo(
            f"active: {len(engine.active_events)}  "
            f"upcoming: {len(engine.upcoming_events)}  "
            f"past: {len(engine.past_events)}"
        )

    _run(config, _action)


@cli.command("list")
@click.option(
    "--state",
    type=click.Choice(_STATE_CHOICES),
    default=None,
    help="Only show events in this lifecycle state",
)
@click.pass_obj
def list_cmd(config_dir: Path, state: str | None) -> None:
    """List events, optionally filtered by lifecycle state."""
    config = _load_config(config_dir)

    async def _action(engine: EventSyncEngine) -> list[Event]:
        events = await engine.load()
        if state is None:
            return list(events)
        return [event for event in events if event.lifecycle_state == state]

    events = _run(config, _action)
    if not events:
        click.echo("No events.")
        return

    click.echo(f"{'Id':<12} {'State':<9} {'Start':<21} {'End':<21} {'Title'}")
    click.echo("-" * 80)
    for event in events:
        marker = " (not synced)" if event.is_local_only or event.has_pending_changes else ""
        click.echo(
            f"{event.id!s:<12} {event.lifecycle_state:<9} "
            f"{format_instant(event.start_instant):<21} {format_instant(event.end_instant):<21} "
            f"{event.title}{marker}"
        )


@cli.command()
@click.pass_obj
def reconcile(config_dir: Path) -> None:
    """Send local-only events and pending changes to the server."""
    config = _load_config(config_dir)

    async def _action(engine: EventSyncEngine):
        await engine.load()
        return await engine.reconcile()

    report = _run(config, _action)
    for local_id, remote_id in sorted(report.synced.items()):
        click.echo(f"synced {local_id} -> {remote_id}")
    click.echo(
        f"{len(report.synced)} synced, {len(report.failed)} still local, "
        f"{len(report.pushed)} pushed, {len(report.push_failed)} not pushed"
    )


@cli.command("clear-past")
@click.pass_obj
def clear_past(config_dir: Path) -> None:
    """Delete every past event from the server and the local collection."""
    config = _load_config(config_dir)
    report = _run(config, lambda engine: engine.clear_past_events())

    click.echo(f"Deleted {len(report.deleted)} past event(s)")
    if report.has_failures:
        for failure in report.failed:
            click.echo(f"  {failure.event_id}: {failure.reason}")
        sys.exit(1)


def _load_config(config_dir: Path) -> EventSyncConfig:
    try:
        config = load_config(config_dir)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    _configure_logging(config)
    return config


def _configure_logging(config: EventSyncConfig | None = None) -> None:
    """Apply the [eventsync.logging] settings, or defaults without a config."""
    if config is None:
        configure_logging()
        return
    log_root = Path(config.logging.log_root) if config.logging.log_root else None
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=log_root,
        account=config.account,
    )


def _build_engine(config: EventSyncConfig) -> EventSyncEngine:
    gateway = HttpEventGateway(
        base_url=config.base_url,
        token_provider=StaticTokenProvider(config.token),
        timeout_seconds=config.timeout_seconds,
    )
    cache = JsonFileCache(config.resolved_cache_path())
    return EventSyncEngine(gateway=gateway, cache=cache, cache_key=config.cache_key)


def _run(config: EventSyncConfig, action: Callable[[EventSyncEngine], Awaitable[T]]) -> T:
    init_metrics("eventsync")

    async def _main() -> T:
        engine = _build_engine(config)
        try:
            return await action(engine)
        finally:
            await engine.shutdown()

    return asyncio.run(_main())
