"""Telegram escalation for documents no automated tier could place.

The notifier only sends; recording the attempt is the state machine's job.
"""

from enum import Enum

import httpx
from pydantic import BaseModel

from ..config import Settings, get_settings
from ..errors import NetworkError
from ..logging import get_context_logger
from ..models import LinkableDocument

logger = get_context_logger(__name__)


class NotificationStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


class NotificationOutcome(BaseModel):
    """What happened when an escalation was requested."""

    status: NotificationStatus
    reason: str
    message_id: int | None = None

    @property
    def sent(self) -> bool:
        return self.status == NotificationStatus.SENT


def format_alert(document: LinkableDocument, settings: Settings) -> str:
    """Render the multi-line Markdown alert for ``document``."""
    participants = ", ".join(document.participant_emails) or "None listed"

    content = document.content or ""
    limit = settings.escalation_preview_chars
    preview = f"{content[:limit]}…" if len(content) > limit else content

    manual_link = settings.manual_link(document.id)

    lines = [
        "🤖 *Client Linking Assistance Required*",
        "",
        f"*Document ID:* {document.id}",
        f"*Title:* {document.title}",
        f"*Date:* {document.timestamp.strftime('%Y-%m-%d %H:%M UTC')}",
        f"*Participants:* {participants}",
        f"*Current Status:* {document.linking_status.value}",
        "",
        f"Manual link: {manual_link}" if manual_link else "",
        "Reply to this message with the correct client name or email "
        "(e.g., `Best Cleaners Inc` or `info@acme.com`).",
        "If we should hold off, reply with `manual` and we'll wait for more info.",
        "",
        f"Preview:\n{preview}" if preview else "",
    ]
    return "\n".join(line for line in lines if line)


class EscalationNotifier:
    """Sends one human alert per unresolved document."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or get_settings()
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        return self.settings.has_telegram_credentials

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.telegram_timeout_seconds),
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def notify(self, document: LinkableDocument) -> NotificationOutcome:
        """Alert a human about ``document`` unless already alerted.

        Never raises on delivery problems; they come back as a
        ``failed`` outcome.
        """
        if not self.is_configured:
            return NotificationOutcome(
                status=NotificationStatus.SKIPPED,
                reason="Telegram bot token or chat ID not configured.",
            )

        if document.has_escalated:
            return NotificationOutcome(
                status=NotificationStatus.SKIPPED,
                reason="Telegram notification already sent for this document.",
            )

        try:
            message_id = await self.send_text(
                self.settings.telegram_chat_id,
                format_alert(document, self.settings),
            )
        except NetworkError as e:
            logger.error(
                f"Failed to send escalation for document {document.id}: {e}",
                extra={"document_id": document.id},
            )
            return NotificationOutcome(
                status=NotificationStatus.FAILED,
                reason=f"Telegram send failed: {e}",
            )

        logger.info(
            f"Escalated document {document.id} to Telegram",
            extra={"document_id": document.id, "message_id": message_id},
        )
        return NotificationOutcome(
            status=NotificationStatus.SENT,
            reason=f"Escalated to Telegram (message {message_id}).",
            message_id=message_id,
        )

    async def send_text(self, chat_id: str | int, text: str) -> int:
        """Send a Markdown message and return its Telegram message id.

        Raises:
            NetworkError: On transport failure or a non-ok API reply
        """
        url = (
            f"{self.settings.telegram_api_base.rstrip('/')}"
            f"/bot{self.settings.telegram_bot_token}/sendMessage"
        )
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }

        try:
            response = await self.http_client.post(url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Telegram API error: {e.response.status_code} - {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Telegram request error: {e}") from e
        except ValueError as e:
            raise NetworkError("Telegram returned a non-JSON body") from e

        if not isinstance(data, dict) or not data.get("ok"):
            raise NetworkError(f"Telegram API returned error: {data}")

        result = data.get("result")
        message_id = result.get("message_id") if isinstance(result, dict) else None
        return message_id if isinstance(message_id, int) else 0
