"""Typer CLI entrypoint for feed-relay."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .commands import CommandRouter, describe_schedule
from .config import ConfigRepository
from .engine import is_valid_feed_url, site_name_for
from .errors import DeliveryError
from .logging_conf import configure_logging, default_log_dir, log_files, tail_log
from .models import ChatType, PushTarget, Subscription, TargetStatus
from .orchestrator import RelayServices, RunSummary, build_services
from .scheduler import APSchedulerAdapter

app = typer.Typer(help="feed-relay command line", no_args_is_help=True, rich_markup_mode=None)
sub_app = typer.Typer(name="sub", help="Manage feed subscriptions", no_args_is_help=True, rich_markup_mode=None)
target_app = typer.Typer(name="target", help="Manage group/channel push targets", no_args_is_help=True, rich_markup_mode=None)
log_app = typer.Typer(name="log", help="Inspect log files", no_args_is_help=True, rich_markup_mode=None)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    services: RelayServices
    scheduler: APSchedulerAdapter
    router: CommandRouter


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    config = repository.load_global_config()
    services = build_services(config, repository.database_path())
    router = CommandRouter(
        services.subscriptions,
        services.registry,
        services.fetcher,
        messenger=services.messenger,
        policy=config.ingestion,
        schedule=config.schedule,
    )
    return AppState(
        repository=repository,
        services=services,
        scheduler=APSchedulerAdapter(),
        router=router,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


# ----------------------------------------------------------------------
# Rendering helpers
# ----------------------------------------------------------------------
def _render_summary(summary: RunSummary) -> Table:
    table = Table(title="Feed check result", box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    labels = {
        "feeds": "Feeds",
        "fetched": "Fetched",
        "cooling_down": "Cooling down",
        "new_items": "New items",
        "private_deliveries": "Private deliveries",
        "target_deliveries": "Target deliveries",
        "failures": "Failures",
        "purged": "Purged records",
    }
    for key, value in summary.as_dict().items():
        table.add_row(labels.get(key, key), str(value))
    return table


def _render_subscriptions(subscriptions: Sequence[Subscription]) -> Table:
    table = Table(title=f"Subscriptions · {len(subscriptions)}", box=box.SIMPLE_HEAD)
    table.add_column("Owner", style="cyan", no_wrap=True)
    table.add_column("Name", style="magenta")
    table.add_column("Feed URL", overflow="fold")
    table.add_column("Since", style="dim")
    for subscription in subscriptions:
        table.add_row(
            subscription.owner_id,
            subscription.display_name,
            subscription.feed_url,
            subscription.created_at,
        )
    return table


def _render_targets(targets: Iterable[PushTarget]) -> Table:
    table = Table(title="Push targets", box=box.SIMPLE_HEAD)
    table.add_column("Owner", style="cyan", no_wrap=True)
    table.add_column("Chat ID", style="magenta", no_wrap=True)
    table.add_column("Type")
    table.add_column("Title", overflow="fold")
    table.add_column("Status")
    for target in targets:
        table.add_row(
            target.owner_id,
            target.chat_id,
            target.chat_type.value,
            target.title or (f"@{target.username}" if target.username else "-"),
            "[green]active[/green]" if target.active else "[yellow]inactive[/yellow]",
        )
    return table


# ----------------------------------------------------------------------
# Top-level commands
# ----------------------------------------------------------------------
app.add_typer(sub_app, name="sub")
app.add_typer(target_app, name="target")
app.add_typer(log_app, name="log")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    ctx.obj = build_state(verbose)


@app.command("check", help="Check every subscribed feed once and deliver new items.")
def check(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    summary = state.services.ingestion.check_feeds()
    console.print(_render_summary(summary))


@app.command("serve", help="Run the periodic check and answer bot commands until interrupted.")
def serve(
    ctx: typer.Context,
    poll: bool = typer.Option(True, "--poll/--no-poll", help="Long-poll the Bot API for commands."),
    run_now: bool = typer.Option(False, "--run-now", help="Run one check immediately on startup."),
) -> None:
    state = _get_state(ctx)
    config = state.services.config
    logger = configure_logging().bind(component="serve")
    state.scheduler.schedule_check(config.schedule, state.services.ingestion.check_feeds)
    state.scheduler.start()
    console.print(f"Checking feeds {describe_schedule(config.schedule)}. Press Ctrl+C to stop.", style="green")
    if run_now:
        console.print(_render_summary(state.services.ingestion.check_feeds()))
    get_updates = getattr(state.services.messenger, "get_updates", None)
    offset: int | None = None
    try:
        while True:
            if not (poll and get_updates):
                time.sleep(1)
                continue
            try:
                updates = get_updates(offset)
            except DeliveryError as exc:
                logger.warning("poll_failed", error=str(exc))
                time.sleep(5)
                continue
            for update in updates:
                offset = int(update["update_id"]) + 1
                state.router.handle_update(update)
    except KeyboardInterrupt:
        console.print("Stopping...", style="yellow")
    finally:
        state.scheduler.shutdown()
        state.services.close()


@app.command("command", help="Run a bot command locally on behalf of an owner.")
def run_command(
    ctx: typer.Context,
    owner: str = typer.Argument(..., help="Owner (user) id."),
    text: str = typer.Argument(..., help='Command text, e.g. "/list".'),
) -> None:
    state = _get_state(ctx)
    reply = state.router.handle_text(owner, text)
    if reply is None:
        console.print("Not a command; commands start with '/'.", style="yellow")
        raise typer.Exit(code=1)
    console.print(reply, markup=False)


@app.command("bind", help="Push a subscribed feed to a group or channel.")
def bind(
    ctx: typer.Context,
    owner: str = typer.Argument(...),
    feed_url: str = typer.Argument(...),
    chat_id: str = typer.Option(..., "--chat", help="Group or channel chat id, e.g. -1001234567890."),
) -> None:
    state = _get_state(ctx)
    services = state.services
    if not services.subscriptions.exists(owner, feed_url):
        console.print(f"Owner {owner} is not subscribed to {feed_url}.", style="red")
        raise typer.Exit(code=1)
    if services.registry.get_target(owner, chat_id) is None:
        console.print(f"Note: {chat_id} is not a registered target; it will still receive items.", style="yellow")
    if services.registry.bind(owner, feed_url, chat_id):
        console.print(f"Bound {feed_url} → {chat_id}.", style="green")
    else:
        console.print("Binding already exists.", style="yellow")


@app.command("unbind", help="Stop pushing a feed to a group or channel.")
def unbind(
    ctx: typer.Context,
    owner: str = typer.Argument(...),
    feed_url: str = typer.Argument(...),
    chat_id: str = typer.Option(..., "--chat", help="Group or channel chat id, e.g. -1001234567890."),
) -> None:
    state = _get_state(ctx)
    if state.services.registry.unbind(owner, feed_url, chat_id):
        console.print(f"Unbound {feed_url} → {chat_id}.", style="green")
    else:
        console.print("No such binding.", style="yellow")


@app.command("failed", help="List feeds whose recorded failures reach the threshold.")
def failed(
    ctx: typer.Context,
    min_count: Optional[int] = typer.Option(None, "--min-count", help="Failure threshold (defaults to config)."),
    owner: Optional[str] = typer.Option(None, "--owner", help="Only feeds of this owner."),
) -> None:
    state = _get_state(ctx)
    threshold = min_count if min_count is not None else state.services.config.ingestion.failure_threshold
    failures = state.services.subscriptions.failures(threshold, owner_id=owner)
    if not failures:
        console.print("No failing feeds.", style="green")
        return
    table = Table(title=f"Failing feeds · {len(failures)}", box=box.SIMPLE_HEAD)
    table.add_column("Feed URL", overflow="fold")
    table.add_column("Failures", justify="right", style="red")
    table.add_column("Last failure", style="dim")
    table.add_column("Error", overflow="fold")
    for failure in failures:
        table.add_row(failure.feed_url, str(failure.failure_count), failure.last_failure, failure.error_message)
    console.print(table)


@app.command("stats", help="Show subscription and delivery statistics.")
def stats(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    table = Table(title="Statistics", box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    for key, value in state.services.subscriptions.stats().items():
        table.add_row(key.replace("_", " "), str(value))
    console.print(table)


@app.command("history", help="Show the most recently recorded items of a feed.")
def history(
    ctx: typer.Context,
    feed_url: str = typer.Argument(...),
    limit: int = typer.Option(10, "--limit"),
) -> None:
    state = _get_state(ctx)
    items = state.services.dedup.recent_items(feed_url, limit=limit)
    if not items:
        console.print("No recorded items.", style="dim")
        return
    table = Table(title=f"{site_name_for(feed_url)} · last {len(items)} items", box=box.SIMPLE_HEAD)
    table.add_column("Published", style="green")
    table.add_column("Title", overflow="fold")
    table.add_column("Link", overflow="fold", style="dim")
    for item in items:
        table.add_row(item.published_at or "-", item.title, item.link)
    console.print(table)


# ----------------------------------------------------------------------
# Subscriptions
# ----------------------------------------------------------------------
@sub_app.command("add", help="Subscribe an owner to a feed.")
def sub_add(
    ctx: typer.Context,
    owner: str = typer.Argument(...),
    feed_url: str = typer.Argument(...),
    name: Optional[str] = typer.Option(None, "--name", help="Display name (defaults to the host)."),
    probe: bool = typer.Option(True, "--probe/--no-probe", help="Fetch the feed before subscribing."),
) -> None:
    state = _get_state(ctx)
    if not is_valid_feed_url(feed_url):
        console.print(f"Invalid URL: {feed_url}", style="red")
        raise typer.Exit(code=1)
    if probe:
        outcome = state.services.fetcher.fetch_result(feed_url)
        if not outcome.items:
            console.print(f"Feed not usable ({outcome.status.value}): {outcome.error or 'no entries'}", style="red")
            raise typer.Exit(code=1)
    if state.services.subscriptions.add(owner, feed_url, name):
        console.print(f"Subscribed {owner} to {name or site_name_for(feed_url)}.", style="green")
    else:
        console.print("Subscription already exists.", style="yellow")


@sub_app.command("list", help="List subscriptions.")
def sub_list(
    ctx: typer.Context,
    owner: Optional[str] = typer.Option(None, "--owner", help="Only this owner's subscriptions."),
) -> None:
    state = _get_state(ctx)
    subscriptions = (
        state.services.subscriptions.for_owner(owner) if owner else state.services.subscriptions.all()
    )
    if not subscriptions:
        console.print("No subscriptions yet. Use `feed-relay sub add` to create one.", style="yellow")
        return
    console.print(_render_subscriptions(subscriptions))


@sub_app.command("remove", help="Remove a subscription and its bindings.")
def sub_remove(
    ctx: typer.Context,
    owner: str = typer.Argument(...),
    feed_url: str = typer.Argument(...),
) -> None:
    state = _get_state(ctx)
    if state.services.subscriptions.remove(owner, feed_url):
        console.print("Subscription removed.", style="green")
    else:
        console.print("No such subscription.", style="red")
        raise typer.Exit(code=1)


# ----------------------------------------------------------------------
# Push targets
# ----------------------------------------------------------------------
@target_app.command("add", help="Register a group or channel as push target.")
def target_add(
    ctx: typer.Context,
    owner: str = typer.Argument(...),
    chat_id: str = typer.Option(..., "--chat", help="Group or channel chat id, e.g. -1001234567890."),
    chat_type: ChatType = typer.Option(ChatType.CHANNEL, "--type", case_sensitive=False),
    title: str = typer.Option("", "--title"),
    username: str = typer.Option("", "--username"),
) -> None:
    state = _get_state(ctx)
    target = PushTarget(owner_id=owner, chat_id=chat_id, chat_type=chat_type, title=title, username=username)
    if state.services.registry.register_target(target):
        console.print(f"Registered push target {chat_id}.", style="green")
    else:
        console.print(f"Updated push target {chat_id}.", style="yellow")


@target_app.command("list", help="List push targets.")
def target_list(ctx: typer.Context, owner: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    targets = state.services.registry.targets_for(owner)
    if not targets:
        console.print("No push targets registered.", style="yellow")
        return
    console.print(_render_targets(targets))


def _set_target_status(ctx: typer.Context, owner: str, chat_id: str, status: TargetStatus) -> None:
    state = _get_state(ctx)
    if not state.services.registry.set_status(owner, chat_id, status):
        console.print(f"No push target {chat_id} for owner {owner}.", style="red")
        raise typer.Exit(code=1)
    console.print(f"Push target {chat_id} is now {status.value}.", style="green")


@target_app.command("enable", help="Resume delivery to a push target.")
def target_enable(
    ctx: typer.Context,
    owner: str = typer.Argument(...),
    chat_id: str = typer.Option(..., "--chat", help="Group or channel chat id, e.g. -1001234567890."),
) -> None:
    _set_target_status(ctx, owner, chat_id, TargetStatus.ACTIVE)


@target_app.command("disable", help="Pause delivery to a push target.")
def target_disable(
    ctx: typer.Context,
    owner: str = typer.Argument(...),
    chat_id: str = typer.Option(..., "--chat", help="Group or channel chat id, e.g. -1001234567890."),
) -> None:
    _set_target_status(ctx, owner, chat_id, TargetStatus.INACTIVE)


@target_app.command("remove", help="Delete a push target and its bindings.")
def target_remove(
    ctx: typer.Context,
    owner: str = typer.Argument(...),
    chat_id: str = typer.Option(..., "--chat", help="Group or channel chat id, e.g. -1001234567890."),
) -> None:
    state = _get_state(ctx)
    if state.services.registry.delete_target(owner, chat_id):
        console.print(f"Push target {chat_id} removed.", style="green")
    else:
        console.print(f"No push target {chat_id} for owner {owner}.", style="red")
        raise typer.Exit(code=1)


# ----------------------------------------------------------------------
# Logs
# ----------------------------------------------------------------------
@log_app.command("list", help="List available log files.")
def log_list() -> None:
    paths = log_files()
    if not paths:
        console.print("No log files yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in paths:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the tail of a log file.")
def log_show(
    name: str = typer.Option("feed_relay.log", "--file", help="Log file name."),
    tail: int = typer.Option(100, "--tail", help="Number of lines."),
) -> None:
    lines = tail_log(default_log_dir() / name, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
