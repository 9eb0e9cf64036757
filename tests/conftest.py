"""Shared pytest fixtures for clientlink tests."""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx
import pytest

from clientlink.config import Settings
from clientlink.linking.arbitrator import AIArbitrator
from clientlink.linking.notifier import EscalationNotifier
from clientlink.linking.state_machine import LinkingStateMachine
from clientlink.models import ClientRecord, LinkableDocument
from clientlink.storage.memory import InMemoryLinkingStore

OWNER = "owner@acme.com"


def build_settings(**overrides: Any) -> Settings:
    """Settings isolated from the developer's .env file."""
    values: dict[str, Any] = {
        "openrouter_api_key": "",
        "telegram_bot_token": "",
        "telegram_chat_id": "",
        "app_base_url": "",
        "log_format": "text",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FixedClock:
    """Clock returning a controllable UTC time."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> None:
        self.now += timedelta(seconds=seconds)


# =========================
# Settings Fixtures
# =========================


@pytest.fixture
def settings() -> Settings:
    """Settings with no AI or Telegram credentials."""
    return build_settings()


@pytest.fixture
def configured_settings() -> Settings:
    """Settings with AI and Telegram credentials."""
    return build_settings(
        openrouter_api_key="test-key",
        openrouter_base_url="https://openrouter.test/api/v1",
        ai_max_retries=0,
        telegram_bot_token="123:abc",
        telegram_chat_id="-1001",
        telegram_api_base="https://telegram.test",
        app_base_url="https://app.example.com/",
    )


# =========================
# Domain Fixtures
# =========================


@pytest.fixture
def clients() -> list[ClientRecord]:
    """A small roster owned by ``OWNER``."""
    return [
        ClientRecord(
            id="client-best",
            owner_email=OWNER,
            business_email="info@beststudio.io",
            business_name="Best Studio",
            contact_first_name="Jane",
            contact_last_name="Doe",
        ),
        ClientRecord(
            id="client-cleaners",
            owner_email=OWNER,
            business_email="hello@bestcleaners.com",
            business_name="Best Cleaners Inc",
            contact_first_name="Carl",
            contact_last_name="Stone",
        ),
        ClientRecord(
            id="client-northwind",
            owner_email=OWNER,
            business_email="ops@northwind.net",
            business_name="Northwind Traders",
        ),
    ]


@pytest.fixture
def make_document() -> Callable[..., LinkableDocument]:
    """Factory for documents owned by ``OWNER``."""

    def _make(
        document_id: str = "doc-1",
        participants: list[str] | None = None,
        title: str = "Weekly sync",
        **overrides: Any,
    ) -> LinkableDocument:
        values: dict[str, Any] = {
            "id": document_id,
            "owner_email": OWNER,
            "title": title,
            "timestamp": datetime(2024, 4, 30, 15, 0, tzinfo=timezone.utc),
            "participant_emails": participants if participants is not None else [],
            "content": "Discussed the spring campaign and next steps.",
        }
        values.update(overrides)
        return LinkableDocument(**values)

    return _make


@pytest.fixture
def store(clients) -> InMemoryLinkingStore:
    return InMemoryLinkingStore(clients=clients)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


# =========================
# HTTP Fixtures
# =========================


def openrouter_reply(payload: dict[str, Any] | str) -> Callable[[httpx.Request], httpx.Response]:
    """MockTransport handler answering every request with one chat completion."""
    content = payload if isinstance(payload, str) else json.dumps(payload)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"choices": [{"message": {"role": "assistant", "content": content}}]},
        )

    return handler


class TelegramRecorder:
    """MockTransport handler that records sendMessage calls."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            return httpx.Response(500, text="boom")
        body = json.loads(request.content)
        self.sent.append(body)
        return httpx.Response(
            200,
            json={"ok": True, "result": {"message_id": len(self.sent)}},
        )


@pytest.fixture
def telegram() -> TelegramRecorder:
    return TelegramRecorder()


@pytest.fixture
def make_machine(store, configured_settings, clock, telegram):
    """Factory for a state machine with mocked AI and Telegram transports."""

    def _make(
        ai_handler: Callable[[httpx.Request], httpx.Response] | None = None,
        settings: Settings | None = None,
        telegram_handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> LinkingStateMachine:
        settings = settings or configured_settings
        arbitrator = AIArbitrator(
            settings=settings,
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(
                    ai_handler or openrouter_reply({"decision": "no_link", "confidence": 0.1, "reason": "unsure"})
                )
            ),
        )
        notifier = EscalationNotifier(
            settings=settings,
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(telegram_handler or telegram)
            ),
        )
        return LinkingStateMachine(store, arbitrator=arbitrator, notifier=notifier, clock=clock)

    return _make


@pytest.fixture
def ai_reply():
    """Builder for OpenRouter MockTransport handlers."""
    return openrouter_reply


@pytest.fixture
def failing_telegram() -> TelegramRecorder:
    return TelegramRecorder(fail=True)


@pytest.fixture
def make_settings():
    """Builder for isolated settings."""
    return build_settings
