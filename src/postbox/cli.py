"""Postbox command-line interface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, NoReturn

import typer

from . import __version__
from .config import Config, ConfigError, load_config, resolve_config_path
from .dispatcher import DispatchResult, Dispatcher
from .extractor.html import summarise_content
from .inbound import InboundError, read_message
from .lockfile import InstanceLock, LockHeldError
from .logging import configure_logging
from .maildir import ensure_maildir_structure, inbox_new_dir, pending_messages, status_dir
from .mover import MailMover
from .processor import InboundProcessor, build_processor
from .runtime import DaemonRuntime
from .store import Store
from .types import Bounced, Delivered, Failed, OutcomeStatus
from .watcher import MaildirWatcher

app = typer.Typer(help="Route inbound blog mail to posts and comments.")
LOGGER = logging.getLogger(__name__)
INSTANCE_LOCK_NAME = "postbox.lock"


@dataclass
class CLIState:
    """Stores shared CLI options."""

    config_path: Path | None


@app.callback()
def _postbox(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "-c",
            "--config",
            help="Path to Postbox config (env POSTBOX_CONFIG or ~/.config/postbox/config.yaml).",
        ),
    ] = None,
) -> None:
    """Capture global CLI options."""

    resolved = config.expanduser() if config else None
    ctx.obj = CLIState(config_path=resolved)


@app.command()
def process(
    ctx: typer.Context,
    message: Annotated[Path, typer.Argument(..., help="Path to .eml message file.")],
) -> None:
    """Route and process a single RFC822 message."""

    state = _state(ctx)
    config, store = _load_environment(state)
    processor = _build_processor(config, store)
    message_path = message.expanduser()
    try:
        parsed = read_message(message_path)
    except (InboundError, OSError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc

    outcome = processor.process(parsed)
    typer.echo(f"Message: {message_path}")
    typer.echo(f"Message-ID: {parsed.message_id or 'n/a'}")
    typer.echo(f"Outcome: {outcome.status.value}")
    if isinstance(outcome, Delivered):
        typer.echo(f"  record: #{outcome.record_id}")
    elif isinstance(outcome, Bounced):
        typer.echo(f"  reason: {outcome.reason} ({outcome.kind.value})")
    elif isinstance(outcome, Failed):
        typer.echo(f"  error: {outcome.error} ({outcome.kind.value})")
    if outcome.status is not OutcomeStatus.DELIVERED:
        raise typer.Exit(1)


@app.command()
def drain(
    ctx: typer.Context,
    retry_failed: Annotated[
        bool,
        typer.Option("--retry-failed", help="Also reprocess messages filed as failed."),
    ] = False,
) -> None:
    """Process every message waiting in the drop directory."""

    state = _state(ctx)
    config, store = _load_environment(state)
    maildir = _require_maildir(config)
    processor = _build_processor(config, store)
    with _instance_lock(config):
        ensure_maildir_structure(maildir)
        paths = pending_messages(inbox_new_dir(maildir))
        if retry_failed:
            paths += pending_messages(status_dir(maildir, OutcomeStatus.FAILED))
        with Dispatcher(processor, MailMover(maildir), workers=config.workers) as dispatcher:
            results = dispatcher.drain(paths)

    counts = _summarise(results)
    typer.echo(
        f"Processed {len(results)} message(s): "
        f"delivered={counts['delivered']} bounced={counts['bounced']} "
        f"failed={counts['failed']} unreadable={counts['unreadable']}"
    )


@app.command()
def daemon(ctx: typer.Context) -> None:
    """Watch the drop directory and process mail as it arrives."""

    state = _state(ctx)
    config, store = _load_environment(state)
    maildir = _require_maildir(config)
    processor = _build_processor(config, store)
    with _instance_lock(config):
        runtime = DaemonRuntime(
            maildir,
            watcher=MaildirWatcher(maildir),
            dispatcher=Dispatcher(processor, MailMover(maildir), workers=config.workers),
            metrics=processor.metrics,
        )
        runtime.run()


@app.command()
def routes(ctx: typer.Context) -> None:
    """Show the routing table in evaluation order."""

    state = _state(ctx)
    config = _load_config(state.config_path)
    typer.echo("Routes (first match wins):")
    for index, rule in enumerate(config.routes, start=1):
        typer.echo(f"  {index}. {rule.describe()}")


@app.command()
def posts(
    ctx: typer.Context,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Show at most N posts.")] = 20,
) -> None:
    """List stored posts with their comment counts."""

    state = _state(ctx)
    config, store = _load_environment(state)
    records = store.all("posts")
    if not records:
        typer.echo("No posts yet.")
        return
    comments = store.all("comments")
    for record in records[-limit:] if limit > 0 else records:
        comment_count = sum(1 for comment in comments if comment.get("post_id") == record.id)
        preview = summarise_content(str(record.get("content", ""))).text
        typer.echo(f"#{record.id} {record.get('title') or '(no subject)'} by {record.get('author')}")
        typer.echo(f"    comments: {comment_count}  {preview}")


@app.command()
def status(ctx: typer.Context) -> None:
    """Display configuration and store status."""

    state = _state(ctx)
    config, store = _load_environment(state)
    typer.echo("→ Postbox Status")
    typer.echo(f"Version: {__version__}")
    typer.echo(f"Config path: {resolve_config_path(state.config_path)}")
    typer.echo(f"Root dir: {config.root_dir}")
    typer.echo(f"Maildir: {config.maildir or 'not configured'}")
    typer.echo(f"Workers: {config.workers}")
    typer.echo(f"Routes: {len(config.routes)}")
    typer.echo(f"Posts: {store.count('posts')}")
    typer.echo(f"Comments: {store.count('comments')}")
    typer.echo(f"Delivery log: {store.delivery_log_path}")


def _state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise RuntimeError("CLI state missing from context.")
    return state


def _load_environment(state: CLIState) -> tuple[Config, Store]:
    config = _load_config(state.config_path)
    try:
        configure_logging(config.logging, config.root_dir)
    except ConfigError as exc:
        _config_failure(exc)
    store = Store(config.root_dir)
    return config, store


def _load_config(path: Path | None) -> Config:
    try:
        return load_config(path)
    except ConfigError as exc:
        _config_failure(exc)


def _build_processor(config: Config, store: Store) -> InboundProcessor:
    try:
        return build_processor(config, store)
    except ConfigError as exc:
        _config_failure(exc)


def _require_maildir(config: Config) -> Path:
    if config.maildir is None:
        _config_failure(ConfigError("maildir must be configured for this command."))
    return config.maildir


def _instance_lock(config: Config) -> InstanceLock:
    lock = InstanceLock(config.root_dir / INSTANCE_LOCK_NAME)
    try:
        lock.acquire()
    except LockHeldError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc
    return lock


def _config_failure(exc: ConfigError) -> NoReturn:
    typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(2) from exc


def _summarise(results: list[DispatchResult]) -> dict[str, int]:
    counts = {"delivered": 0, "bounced": 0, "failed": 0, "unreadable": 0}
    for result in results:
        if result.outcome is None:
            counts["unreadable"] += 1
        else:
            counts[result.outcome.status.value] += 1
    return counts


def main() -> None:  # pragma: no cover - delegated to Typer
    app()


__all__ = ["app", "main"]
