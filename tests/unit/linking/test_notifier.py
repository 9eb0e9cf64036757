"""Unit tests for Telegram escalation."""

from datetime import datetime, timezone

import httpx
import pytest

from clientlink.errors import NetworkError
from clientlink.linking.notifier import (
    EscalationNotifier,
    NotificationStatus,
    format_alert,
)
from clientlink.models import AttemptStatus, LinkingAttempt, LinkingStage, LinkingStatus


def make_notifier(settings, handler) -> EscalationNotifier:
    return EscalationNotifier(
        settings=settings,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestFormatAlert:
    """Tests for the alert text."""

    def test_contains_document_details(self, configured_settings, make_document):
        document = make_document(
            participants=["bob@x.com", "amy@y.com"],
            title="Kickoff",
            linking_status=LinkingStatus.NEEDS_HUMAN,
        )

        text = format_alert(document, configured_settings)

        assert "*Document ID:* doc-1" in text
        assert "*Title:* Kickoff" in text
        assert "*Date:* 2024-04-30 15:00 UTC" in text
        assert "*Participants:* bob@x.com, amy@y.com" in text
        assert "*Current Status:* needs_human" in text
        assert "Manual link: https://app.example.com/resolve/doc-1" in text
        assert "reply with `manual`" in text

    def test_preview_is_truncated(self, configured_settings, make_document):
        document = make_document(content="x" * 600)

        text = format_alert(document, configured_settings)

        assert "x" * 500 + "…" in text
        assert "x" * 501 not in text

    def test_without_link_or_participants(self, settings, make_document):
        text = format_alert(make_document(content=None), settings)

        assert "Manual link" not in text
        assert "Preview" not in text
        assert "*Participants:* None listed" in text


class TestNotify:
    """Tests for sending alerts."""

    @pytest.mark.asyncio
    async def test_sends_markdown_message(self, configured_settings, make_document, telegram):
        notifier = make_notifier(configured_settings, telegram)

        outcome = await notifier.notify(make_document())

        assert outcome.sent
        assert outcome.message_id == 1
        assert outcome.reason == "Escalated to Telegram (message 1)."
        payload = telegram.sent[0]
        assert payload["chat_id"] == "-1001"
        assert payload["parse_mode"] == "Markdown"
        assert payload["disable_web_page_preview"] is True

    @pytest.mark.asyncio
    async def test_skipped_when_not_configured(self, settings, make_document, telegram):
        outcome = await make_notifier(settings, telegram).notify(make_document())

        assert outcome.status == NotificationStatus.SKIPPED
        assert outcome.reason == "Telegram bot token or chat ID not configured."
        assert telegram.sent == []

    @pytest.mark.asyncio
    async def test_skipped_when_already_escalated(self, configured_settings, make_document, telegram):
        document = make_document(
            linking_history=[
                LinkingAttempt(
                    stage=LinkingStage.TELEGRAM,
                    status=AttemptStatus.SUCCESS,
                    timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc),
                    reason="Escalated to Telegram (message 9).",
                )
            ]
        )

        outcome = await make_notifier(configured_settings, telegram).notify(document)

        assert outcome.status == NotificationStatus.SKIPPED
        assert outcome.reason == "Telegram notification already sent for this document."
        assert telegram.sent == []

    @pytest.mark.asyncio
    async def test_failed_send(self, configured_settings, make_document, failing_telegram):
        outcome = await make_notifier(configured_settings, failing_telegram).notify(make_document())

        assert outcome.status == NotificationStatus.FAILED
        assert outcome.reason.startswith("Telegram send failed: ")
        assert "500" in outcome.reason


class TestSendText:
    """Tests for the raw sendMessage call."""

    @pytest.mark.asyncio
    async def test_rejects_not_ok_reply(self, configured_settings):
        notifier = make_notifier(
            configured_settings,
            lambda request: httpx.Response(200, json={"ok": False, "description": "chat not found"}),
        )

        with pytest.raises(NetworkError):
            await notifier.send_text("-1001", "hello")

    @pytest.mark.asyncio
    async def test_posts_to_bot_url(self, configured_settings):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 42}})

        message_id = await make_notifier(configured_settings, handler).send_text(5, "hi")

        assert message_id == 42
        assert seen == ["https://telegram.test/bot123:abc/sendMessage"]

    @pytest.mark.asyncio
    async def test_odd_message_id_is_zero(self, configured_settings):
        notifier = make_notifier(
            configured_settings,
            lambda request: httpx.Response(200, json={"ok": True, "result": {"message_id": "abc"}}),
        )

        assert await notifier.send_text(5, "hi") == 0
