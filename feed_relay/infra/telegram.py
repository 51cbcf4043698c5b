"""Telegram Bot API client used as the messaging backend."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from ..config import MessagingConfig
from ..errors import DeliveryError


class TelegramMessenger:
    """Minimal synchronous Bot API client.

    ``send_text`` raises :class:`DeliveryError` for every failure mode (transport
    error, non-2xx answer, ``ok: false`` payload); callers decide whether to log
    and continue.
    """

    def __init__(
        self,
        config: MessagingConfig,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or structlog.get_logger("feed_relay.telegram").bind(component="telegram")
        self._client = client or httpx.Client(timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def _method_url(self, method: str) -> str:
        return f"{self.config.api_base}/bot{self.config.bot_token}/{method}"

    def _call(self, method: str, payload: dict[str, Any], destination_id: str = "", timeout: float | None = None) -> Any:
        if not self.config.bot_token:
            raise DeliveryError(destination_id, "Bot token is not configured")
        try:
            response = self._client.post(
                self._method_url(method),
                json=payload,
                timeout=timeout or self.config.timeout,
            )
        except httpx.HTTPError as exc:
            raise DeliveryError(destination_id, f"{method} transport error: {exc}") from exc
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("ok", False):
            description = body.get("description") or response.reason_phrase
            raise DeliveryError(
                destination_id,
                f"{method} failed with HTTP {response.status_code}: {description}",
                status_code=response.status_code,
            )
        return body.get("result")

    def send_text(
        self,
        destination_id: str,
        text: str,
        link_preview: bool = True,
        markdown: bool = False,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "chat_id": destination_id,
            "text": text,
            "link_preview_options": {"is_disabled": not link_preview},
        }
        if markdown:
            payload["parse_mode"] = "MarkdownV2"
        result = self._call("sendMessage", payload, destination_id=str(destination_id))
        self.logger.debug("message_sent", destination=str(destination_id))
        return result or {}

    def get_updates(self, offset: int | None = None, timeout: int | None = None) -> list[dict[str, Any]]:
        """Long-poll ``getUpdates``; returns the raw update objects."""

        poll_timeout = self.config.poll_timeout if timeout is None else timeout
        payload: dict[str, Any] = {
            "timeout": poll_timeout,
            "allowed_updates": ["message", "my_chat_member"],
        }
        if offset is not None:
            payload["offset"] = offset
        result = self._call("getUpdates", payload, timeout=poll_timeout + self.config.timeout)
        return list(result or [])


__all__ = ["TelegramMessenger"]
