"""Tests for the Telegram reply webhook."""

from typing import Any

import httpx

from clientlink.linking.notifier import EscalationNotifier

URL = "/api/v1/telegram/webhook"


def reply_update(text: str, alert_text: str | None = None, chat_id: int = -1001) -> dict[str, Any]:
    message: dict[str, Any] = {"message_id": 7, "chat": {"id": chat_id}, "text": text}
    if alert_text is not None:
        message["reply_to_message"] = {"message_id": 3, "text": alert_text}
    return {"update_id": 1, "message": message}


ALERT = "🤖 Client Linking Assistance Required\n\nDocument ID: doc-escalated\nTitle: Mystery call"


class TestTelegramWebhook:
    """Tests for webhook handling."""

    def test_reply_links_document(self, client, telegram, store):
        response = client.post(URL, json=reply_update("Northwind", ALERT))

        assert response.json() == {"ok": True}
        document = client.get("/api/v1/linking/documents/doc-escalated").json()
        assert document["clientId"] == "client-northwind"
        assert document["linkingStatus"] == "manually_linked"
        assert "Linked *Mystery call* to *Northwind Traders*" in telegram.sent[-1]["text"]
        assert telegram.sent[-1]["chat_id"] == -1001

    def test_message_without_reply_gets_help(self, client, telegram):
        response = client.post(URL, json=reply_update("Northwind"))

        assert response.json() == {"ok": True}
        assert telegram.sent[-1]["text"].startswith("ℹ️ Please reply directly")

    def test_other_chats_are_ignored(self, client, telegram):
        response = client.post(URL, json=reply_update("Northwind", ALERT, chat_id=999))

        assert response.json() == {"ok": True}
        assert telegram.sent == []

    def test_update_without_message(self, client, telegram):
        response = client.post(URL, json={"update_id": 2, "edited_message": {}})

        assert response.json() == {"ok": True}
        assert telegram.sent == []

    def test_reply_send_failure(self, client, machine, failing_telegram):
        machine.notifier = EscalationNotifier(
            settings=machine.notifier.settings,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(failing_telegram)),
        )

        response = client.post(URL, json=reply_update("manual", ALERT))

        assert response.json() == {"ok": False}
