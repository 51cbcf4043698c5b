"""Shared fixtures: temporary home, SQLite stores, sample feeds and fake messengers."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

import httpx
import pytest

from feed_relay.config import ConfigLocator, ConfigRepository, FetchPolicy, GlobalConfig, IngestionPolicy
from feed_relay.errors import DeliveryError
from feed_relay.infra import SQLiteManager
from feed_relay.orchestrator import RelayServices, build_services


class RecordingMessenger:
    """Messenger double remembering every send; destinations in ``failing`` raise."""

    def __init__(self, failing: Iterable[str] = ()) -> None:
        self.sent: list[dict[str, Any]] = []
        self.failing = set(failing)

    def send_text(self, destination_id: str, text: str, link_preview: bool = True, markdown: bool = False) -> dict:
        if str(destination_id) in self.failing:
            raise DeliveryError(str(destination_id), "chat not found", status_code=400)
        self.sent.append(
            {"destination": str(destination_id), "text": text, "link_preview": link_preview, "markdown": markdown}
        )
        return {"message_id": len(self.sent)}

    def to(self, destination_id: str) -> list[str]:
        return [entry["text"] for entry in self.sent if entry["destination"] == str(destination_id)]


def rss_feed(count: int, prefix: str = "Post", link_base: str = "https://example.com/posts") -> str:
    items = "\n".join(
        f"""
        <item>
          <title>{prefix} {index}</title>
          <link>{link_base}/{index}</link>
          <guid>{link_base}/{index}</guid>
          <description><![CDATA[<p>Body of <b>{prefix.lower()} {index}</b></p>]]></description>
          <pubDate>Tue, 02 Jan 2024 10:{index:02d}:00 GMT</pubDate>
        </item>"""
        for index in range(1, count + 1)
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Example</title>{items}
</channel></rss>"""


def http_response(status: int, text: str = "", url: str = "https://example.com/feed.xml", **kwargs: Any) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("GET", url), text=text, **kwargs)


@pytest.fixture
def rss_payload() -> Callable[..., str]:
    return rss_feed


@pytest.fixture
def relay_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("FEED_RELAY_HOME", str(tmp_path))
    monkeypatch.delenv("FEED_RELAY_BOT_TOKEN", raising=False)
    return tmp_path


@pytest.fixture
def temp_config_repository(relay_home: Path) -> ConfigRepository:
    return ConfigRepository(ConfigLocator(project_root=relay_home))


@pytest.fixture
def sample_global_config(tmp_path: Path) -> GlobalConfig:
    return GlobalConfig(
        database_path=tmp_path / "relay.db",
        fetch=FetchPolicy(backoff_base=0.0, backoff_jitter=0.0),
        ingestion=IngestionPolicy(owner_delay=0.0, item_delay=0.0, batch_pause=0.0),
    )


@pytest.fixture
def storage() -> Iterable[SQLiteManager]:
    manager = SQLiteManager()
    yield manager
    manager.close_all()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "relay.db"


@pytest.fixture
def messenger() -> RecordingMessenger:
    return RecordingMessenger()


@pytest.fixture
def services(sample_global_config: GlobalConfig, storage: SQLiteManager, db_path: Path, messenger: RecordingMessenger) -> Iterable[RelayServices]:
    built = build_services(sample_global_config, db_path, messenger=messenger, storage=storage, sleep=lambda _: None)
    yield built
    built.fetcher.close()


@pytest.fixture
def serve_feeds(monkeypatch: pytest.MonkeyPatch) -> Callable[..., list[str]]:
    """Route a fetcher's HTTP calls to canned payloads keyed by URL; returns the request log."""

    def _install(fetcher, payloads: dict[str, Any]) -> list[str]:
        calls: list[str] = []

        def fake_request(method: str, url: str, **kwargs: Any) -> httpx.Response:
            calls.append(url)
            payload = payloads.get(url)
            if isinstance(payload, Exception):
                raise payload
            if isinstance(payload, httpx.Response):
                return payload
            if payload is None:
                return http_response(404, url=url)
            return http_response(200, text=payload, url=url)

        monkeypatch.setattr(fetcher._client, "request", fake_request)
        return calls

    return _install
