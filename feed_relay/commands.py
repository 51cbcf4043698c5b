"""Text command router for owners talking to the bot."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from .config import IngestionPolicy, ScheduleConfig, ScheduleType
from .engine import BindingRegistry, FeedFetcher, FetchStatus, SubscriptionStore, is_valid_feed_url, site_name_for
from .engine.dispatcher import Messenger
from .errors import DeliveryError
from .logging_conf import component_logger
from .models import ChatType, PushTarget, Subscription, TargetStatus

JOINED_STATUSES = {"member", "administrator", "creator"}
LEFT_STATUSES = {"left", "kicked"}


@dataclass(slots=True)
class CommandContext:
    owner_id: str
    command: str
    args: list[str] = field(default_factory=list)


Handler = Callable[[CommandContext], str]


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split ``/cmd@bot arg1 arg2`` into ``("cmd", ["arg1", "arg2"])``."""

    text = (text or "").strip()
    if not text.startswith("/"):
        return None
    head, *args = text.split()
    command = head[1:].split("@", 1)[0].lower()
    if not command:
        return None
    return command, args


class CommandRouter:
    """Resolve owner commands through a dispatch table built at construction."""

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        registry: BindingRegistry,
        fetcher: FeedFetcher,
        messenger: Messenger | None = None,
        policy: IngestionPolicy | None = None,
        schedule: ScheduleConfig | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.subscriptions = subscriptions
        self.registry = registry
        self.fetcher = fetcher
        self.messenger = messenger
        self.policy = policy or IngestionPolicy()
        self.schedule = schedule or ScheduleConfig()
        self.logger = logger or component_logger("commands")
        self._handlers: dict[str, Handler] = {
            "start": self._start,
            "help": self._help,
            "add": self._add,
            "list": self._list,
            "del": self._delete,
            "failed": self._failed,
            "stats": self._stats,
            "probe": self._probe,
            "targets": self._targets,
            "enable": self._enable,
            "disable": self._disable,
            "rmtarget": self._remove_target,
            "bind": self._bind,
            "unbind": self._unbind,
            "bindings": self._bindings,
        }

    @property
    def commands(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def handle_text(self, owner_id: str, text: str) -> str | None:
        """Return the reply for a command message, ``None`` for plain chatter."""

        parsed = parse_command(text)
        if parsed is None:
            return None
        command, args = parsed
        handler = self._handlers.get(command)
        if handler is None:
            return "Unknown command. Send /help to see what I can do."
        context = CommandContext(owner_id=str(owner_id), command=command, args=args)
        try:
            return handler(context)
        except sqlite3.Error as exc:
            self.logger.error("command_failed", command=command, owner=owner_id, error=str(exc))
            return "Something went wrong while handling that command, please try again later."

    def handle_update(self, update: dict[str, Any]) -> str | None:
        """Process one Bot API update and send the reply, if any, to the owner.

        A failing handler is logged and yields ``None`` so one bad update
        never stops the polling loop.
        """

        try:
            owner_id, reply = self._route_update(update)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("update_failed", update_id=update.get("update_id"), error=str(exc), exc_info=True)
            return None
        if reply and owner_id and self.messenger is not None:
            try:
                self.messenger.send_text(owner_id, reply, link_preview=False)
            except DeliveryError as exc:
                self.logger.warning("reply_failed", owner=owner_id, error=str(exc))
        return reply

    def _route_update(self, update: dict[str, Any]) -> tuple[str | None, str | None]:
        if "my_chat_member" in update:
            return self._on_membership(update["my_chat_member"])
        message = update.get("message") or {}
        sender = message.get("from") or {}
        if "id" not in sender or not message.get("text"):
            return None, None
        owner_id = str(sender["id"])
        return owner_id, self.handle_text(owner_id, message["text"])

    def _on_membership(self, change: dict[str, Any]) -> tuple[str | None, str | None]:
        chat = change.get("chat") or {}
        sender = change.get("from") or {}
        status = (change.get("new_chat_member") or {}).get("status")
        try:
            chat_type = ChatType(chat.get("type"))
        except ValueError:
            return None, None
        chat_id = str(chat.get("id"))
        title = chat.get("title") or ""
        if status in JOINED_STATUSES and "id" in sender:
            owner_id = str(sender["id"])
            target = PushTarget(
                owner_id=owner_id,
                chat_id=chat_id,
                chat_type=chat_type,
                title=title,
                username=chat.get("username") or "",
            )
            created = self.registry.register_target(target)
            self.logger.info("target_registered", owner=owner_id, chat_id=chat_id, created=created)
            return owner_id, (
                f"📢 {title or chat_id} ({chat_type.value}) is now a push target.\n"
                f"Bind feeds to it with /bind <n> {chat_id}"
            )
        if status in LEFT_STATUSES:
            for target in self.registry.targets_by_chat(chat_id):
                self.registry.set_status(target.owner_id, chat_id, TargetStatus.INACTIVE)
                self.logger.info("target_deactivated", owner=target.owner_id, chat_id=chat_id)
            owner_id = str(sender["id"]) if "id" in sender else None
            return owner_id, f"🔕 Removed from {title or chat_id}; its push target is now inactive."
        return None, None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def _start(self, ctx: CommandContext) -> str:
        return (
            "Welcome to feed-relay!\n\n"
            "/add <feed url> - subscribe to a feed\n"
            "/list - show your subscriptions\n"
            "/del <n> - unsubscribe\n"
            "/help - all commands"
        )

    def _help(self, ctx: CommandContext) -> str:
        return "\n".join(
            [
                "📖 Commands:",
                "",
                "🔗 /add <url> [url ...] - subscribe to one or more feeds",
                "📝 /list - show your subscriptions",
                "🗑 /del <n> [n ...] - unsubscribe by list number",
                "🔧 /probe <url> - test whether a feed is reachable",
                "⚠️ /failed - feeds that keep failing",
                "📊 /stats - statistics",
                "📢 /targets - groups and channels you can push to",
                "✅ /enable <chat id> - resume pushing to a target",
                "⏸ /disable <chat id> - pause pushing to a target",
                "❌ /rmtarget <chat id> - forget a target and its bindings",
                "🔀 /bind <n> <chat id> - push feed n to a target",
                "✂️ /unbind <n> <chat id> - stop pushing feed n to a target",
                "🧭 /bindings - show all bindings",
                "❓ /help - this message",
            ]
        )

    def _add(self, ctx: CommandContext) -> str:
        if not ctx.args:
            return "Please give a feed URL, e.g. /add https://example.com/rss.xml"
        added = duplicates = errors = 0
        lines: list[str] = []
        for url in ctx.args:
            if not is_valid_feed_url(url):
                lines.append(f"❌ Invalid URL: {url}")
                errors += 1
                continue
            outcome = self.fetcher.fetch_result(url)
            if outcome.status is FetchStatus.COOLDOWN:
                lines.append(f"⏳ Cooling down: {url}\n   Try again later.")
                errors += 1
                continue
            if not outcome.items:
                reason = outcome.error or "feed has no entries or could not be parsed"
                lines.append(f"⚠️ Unreachable: {url}\n   Error: {reason}")
                errors += 1
                continue
            site_name = site_name_for(url)
            if self.subscriptions.add(ctx.owner_id, url, site_name):
                lines.append(f"✅ Added: {site_name}")
                added += 1
            else:
                lines.append(f"⚠️ Already subscribed: {site_name}")
                duplicates += 1
        header = f"📊 Result:\n✅ Added: {added}\n⚠️ Duplicates: {duplicates}\n❌ Failed: {errors}\n"
        return header + "\n" + "\n".join(lines)

    def _list(self, ctx: CommandContext) -> str:
        subscriptions = self.subscriptions.for_owner(ctx.owner_id)
        if not subscriptions:
            return "You have no subscriptions yet. Use /add to subscribe to a feed."
        lines = [f"📚 Your subscriptions ({len(subscriptions)}):", ""]
        for index, subscription in enumerate(subscriptions, start=1):
            lines.append(f"{index}. {subscription.display_name}\n🔗 {subscription.feed_url}\n")
        lines.append("💡 Use /del <n> to unsubscribe")
        return "\n".join(lines)

    def _delete(self, ctx: CommandContext) -> str:
        if not ctx.args:
            return "Please give the list numbers to remove, e.g. /del 1 or /del 1 3 5"
        subscriptions = self.subscriptions.for_owner(ctx.owner_id)
        if not subscriptions:
            return "You have no subscriptions."
        lines: list[str] = []
        chosen: dict[int, Subscription] = {}
        for raw in ctx.args:
            index = self._parse_index(raw, len(subscriptions))
            if index is None:
                lines.append(f"❌ Invalid number: {raw}")
                continue
            chosen.setdefault(index, subscriptions[index - 1])
        deleted = 0
        for index in sorted(chosen):
            subscription = chosen[index]
            if self.subscriptions.remove(ctx.owner_id, subscription.feed_url):
                lines.append(f"✅ Removed: {subscription.display_name}")
                deleted += 1
            else:
                lines.append(f"❌ Could not remove: {subscription.display_name}")
        return f"🗑 Removed {deleted} subscription(s)\n\n" + "\n".join(lines)

    def _failed(self, ctx: CommandContext) -> str:
        failures = self.subscriptions.failures(self.policy.failure_threshold, owner_id=ctx.owner_id)
        if not failures:
            return "✅ All of your feeds are working."
        lines = [f"⚠️ Failing feeds ({len(failures)}):", ""]
        for index, failure in enumerate(failures, start=1):
            error = failure.error_message or "unknown error"
            if len(error) > 50:
                error = error[:50] + "..."
            lines.append(
                f"{index}. {failure.display_name or site_name_for(failure.feed_url)}\n"
                f"🔗 {failure.feed_url}\n"
                f"❌ {error}\n"
                f"🔄 Failures: {failure.failure_count}\n"
                f"⏰ Last failure: {failure.last_failure}\n"
            )
        lines.append("💡 Check whether the feed is still reachable, or remove it with /del")
        return "\n".join(lines)

    def _stats(self, ctx: CommandContext) -> str:
        own = len(self.subscriptions.for_owner(ctx.owner_id))
        stats = self.subscriptions.stats()
        return (
            "📊 Statistics:\n\n"
            f"👤 Your subscriptions: {own}\n"
            "🌐 Global:\n"
            f"  └ Owners: {stats['owners']}\n"
            f"  └ Subscriptions: {stats['subscriptions']}\n"
            f"  └ Feeds: {stats['feeds']}\n"
            f"  └ Stored items: {stats['items']}\n"
            f"  └ Push targets: {stats['targets']}\n\n"
            f"🔄 Check schedule: {describe_schedule(self.schedule)}\n"
            f"💾 Items kept for: {self.policy.retention_days} days"
        )

    def _probe(self, ctx: CommandContext) -> str:
        if not ctx.args:
            return "Usage: /probe <feed url>"
        url = ctx.args[0]
        if not is_valid_feed_url(url):
            return "❌ Invalid URL"
        outcome = self.fetcher.fetch_result(url)
        lines = [
            "🔍 Probe result:",
            "",
            f"🌐 Site: {site_name_for(url)}",
            f"🔗 URL: {url}",
            "",
        ]
        if outcome.status is FetchStatus.SUCCESS:
            lines.append(f"📡 ✅ Reachable (HTTP {outcome.status_code}, attempt {outcome.attempts})")
            lines.append(f"📄 Latest: {outcome.items[0].title}")
            lines.append("")
            lines.append("💡 This feed can be subscribed.")
        elif outcome.status is FetchStatus.COOLDOWN:
            lines.append("📡 ⏳ Cooling down after recent failures; try again later.")
        elif outcome.status is FetchStatus.EMPTY:
            lines.append(f"📡 ⚠️ Reachable (HTTP {outcome.status_code}) but no entries could be read.")
        else:
            lines.append(f"📡 ❌ Not reachable: {outcome.error}")
            lines.append("")
            lines.append("💡 Check the link or try again later.")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Push targets and bindings
    # ------------------------------------------------------------------
    def _targets(self, ctx: CommandContext) -> str:
        targets = self.registry.targets_for(ctx.owner_id)
        if not targets:
            return "No push targets yet. Add the bot to a group or channel to register one."
        lines = [f"📢 Your push targets ({len(targets)}):", ""]
        for target in targets:
            marker = "✅" if target.active else "⏸"
            name = target.title or (f"@{target.username}" if target.username else target.chat_id)
            lines.append(f"{marker} {name} [{target.chat_type.value}] id: {target.chat_id}")
        return "\n".join(lines)

    def _enable(self, ctx: CommandContext) -> str:
        return self._toggle(ctx, TargetStatus.ACTIVE)

    def _disable(self, ctx: CommandContext) -> str:
        return self._toggle(ctx, TargetStatus.INACTIVE)

    def _toggle(self, ctx: CommandContext, status: TargetStatus) -> str:
        if not ctx.args:
            return f"Usage: /{ctx.command} <chat id>"
        chat_id = ctx.args[0]
        if not self.registry.set_status(ctx.owner_id, chat_id, status):
            return f"❌ No push target {chat_id}. See /targets"
        return f"✅ Push target {chat_id} is now {status.value}."

    def _remove_target(self, ctx: CommandContext) -> str:
        if not ctx.args:
            return "Usage: /rmtarget <chat id>"
        chat_id = ctx.args[0]
        if not self.registry.delete_target(ctx.owner_id, chat_id):
            return f"❌ No push target {chat_id}. See /targets"
        return f"🗑 Push target {chat_id} and its bindings were removed."

    def _bind(self, ctx: CommandContext) -> str:
        resolved = self._resolve_binding_args(ctx)
        if isinstance(resolved, str):
            return resolved
        subscription, chat_id = resolved
        if self.registry.get_target(ctx.owner_id, chat_id) is None:
            return f"❌ No push target {chat_id}. Add the bot to the group or channel first."
        if not self.registry.bind(ctx.owner_id, subscription.feed_url, chat_id):
            return f"⚠️ {subscription.display_name} is already pushed to {chat_id}."
        return f"🔀 {subscription.display_name} will now be pushed to {chat_id}."

    def _unbind(self, ctx: CommandContext) -> str:
        resolved = self._resolve_binding_args(ctx)
        if isinstance(resolved, str):
            return resolved
        subscription, chat_id = resolved
        if not self.registry.unbind(ctx.owner_id, subscription.feed_url, chat_id):
            return f"⚠️ {subscription.display_name} was not bound to {chat_id}."
        return f"✂️ {subscription.display_name} is no longer pushed to {chat_id}."

    def _bindings(self, ctx: CommandContext) -> str:
        bindings = self.registry.bindings_for(ctx.owner_id)
        if not bindings:
            return "No bindings yet. Use /bind <n> <chat id>."
        names = {sub.feed_url: sub.display_name for sub in self.subscriptions.for_owner(ctx.owner_id)}
        lines = ["🧭 Your bindings:", ""]
        for binding in bindings:
            lines.append(f"{names.get(binding.feed_url, binding.feed_url)} → {binding.chat_id}")
        return "\n".join(lines)

    def _resolve_binding_args(self, ctx: CommandContext) -> tuple[Subscription, str] | str:
        if len(ctx.args) < 2:
            return f"Usage: /{ctx.command} <n> <chat id>"
        subscriptions = self.subscriptions.for_owner(ctx.owner_id)
        index = self._parse_index(ctx.args[0], len(subscriptions))
        if index is None:
            return f"❌ Invalid subscription number: {ctx.args[0]}. See /list"
        return subscriptions[index - 1], ctx.args[1]

    @staticmethod
    def _parse_index(raw: str, upper: int) -> int | None:
        try:
            index = int(raw)
        except ValueError:
            return None
        if index < 1 or index > upper:
            return None
        return index


def describe_schedule(schedule: ScheduleConfig) -> str:
    if schedule.type is ScheduleType.CRON:
        return f"cron ({schedule.value})"
    if isinstance(schedule.value, (int, float)):
        seconds = float(schedule.value)
        if seconds % 60 == 0:
            return f"every {int(seconds // 60)} min"
        return f"every {seconds:g} s"
    return f"interval ({schedule.value})"


__all__ = ["CommandContext", "CommandRouter", "describe_schedule", "parse_command"]
