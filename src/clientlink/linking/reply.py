"""Resolve a human's Telegram reply to an escalation alert.

The operator answers an alert with a business name, a contact name or a
business email. The reply is scored against the owner's roster; a single
best client is linked as ``manually_linked``.
"""

import re
from dataclasses import dataclass

from ..config import Settings, get_settings
from ..logging import get_context_logger
from ..models import ClientRecord
from .normalize import normalize_email, normalize_key
from .state_machine import LinkingStateMachine

logger = get_context_logger(__name__)

_DOCUMENT_ID_PATTERNS = (
    re.compile(r"Document ID:\**\s*([A-Za-z0-9\-_]+)", re.IGNORECASE),
    re.compile(r"document[_\s]*id[:\s]*([A-Za-z0-9\-_]+)", re.IGNORECASE),
)

_LEAD_INS = (
    re.compile(r"^link\s+"),
    re.compile(r"^belongs\s+to\s+"),
    re.compile(r"^this\s+is\s+"),
    re.compile(r"^that\s+is\s+"),
    re.compile(r"^its?\s+"),
)

# Score per kind of evidence
_BUSINESS_EXACT = 3.0
_BUSINESS_PARTIAL = 2.0
_CONTACT_EXACT = 2.0
_CONTACT_PARTIAL = 1.5


@dataclass(frozen=True)
class ReplyMatch:
    client: ClientRecord
    confidence: float
    reason: str


@dataclass(frozen=True)
class AmbiguousReply:
    clients: list[ClientRecord]


def extract_document_id(alert_text: str | None) -> str | None:
    """Pull the document id out of the alert a reply points at."""
    if not alert_text:
        return None
    for pattern in _DOCUMENT_ID_PATTERNS:
        found = pattern.search(alert_text)
        if found:
            return found.group(1)
    return None


def _strip_lead_in(text: str) -> str:
    sanitized = text.strip().lower()
    for pattern in _LEAD_INS:
        sanitized = pattern.sub("", sanitized)
    return sanitized.strip()


def match_client_from_reply(
    text: str, clients: list[ClientRecord]
) -> ReplyMatch | AmbiguousReply | None:
    """Score a free-text reply against the roster.

    Args:
        text: The operator's reply
        clients: The document owner's roster

    Returns:
        The single best client, an ``AmbiguousReply`` when several clients
        share the top score, or None
    """
    sanitized = _strip_lead_in(text)
    if not sanitized:
        return None

    if "@" in sanitized:
        email = normalize_email(sanitized)
        for client in clients:
            if client.business_email and normalize_email(client.business_email) == email:
                return ReplyMatch(
                    client=client,
                    confidence=0.95,
                    reason="Matched business email provided in Telegram reply.",
                )

    key = normalize_key(sanitized)
    if not key:
        return None

    # Best score per client, first client in roster order on equal scores
    scored: dict[str, tuple[float, str, ClientRecord]] = {}

    def score(client: ClientRecord, value: float, reason: str) -> None:
        current = scored.get(client.id)
        if current is None or value > current[0]:
            scored[client.id] = (value, reason, client)

    for client in clients:
        business_key = normalize_key(client.business_name or "")
        contact_key = normalize_key(client.contact_name)

        if business_key and business_key == key:
            score(client, _BUSINESS_EXACT, "Exact business name match.")
            continue
        if business_key and (key in business_key or business_key in key):
            score(client, _BUSINESS_PARTIAL, "Partial business name match.")

        if contact_key:
            if contact_key == key:
                score(client, _CONTACT_EXACT, "Exact contact name match.")
            elif key in contact_key or contact_key in key:
                score(client, _CONTACT_PARTIAL, "Partial contact name match.")

    if not scored:
        return None

    top = max(value for value, _, _ in scored.values())
    leaders = [(reason, client) for value, reason, client in scored.values() if value == top]
    if len(leaders) > 1:
        return AmbiguousReply(clients=[client for _, client in leaders])

    reason, client = leaders[0]
    return ReplyMatch(client=client, confidence=min(1.0, 0.5 + top / 4), reason=reason)


class ReplyResolver:
    """Applies operator replies through the linking state machine."""

    def __init__(self, state_machine: LinkingStateMachine, settings: Settings | None = None):
        self.state_machine = state_machine
        self.settings = settings or get_settings()

    @property
    def store(self):
        return self.state_machine.store

    async def handle(self, document_id: str, reply_text: str) -> str:
        """Process one reply and return the chat response text.

        Raises:
            PersistenceError: If recording the outcome fails
        """
        document = await self.store.get_document(document_id)
        if document is None:
            return f"⚠️ Could not find document {document_id}. Please double-check the ID."

        text = (reply_text or "").strip()
        if not text:
            return "I couldn't read that message. Please provide the client name or email."

        manual_link = self.settings.manual_link(document_id)

        if "manual" in text.lower():
            await self.state_machine.record_human_no_match(
                document_id, "Operator requested manual handling via Telegram."
            )
            if manual_link:
                return f"✅ Noted. You can complete the link manually here:\n{manual_link}"
            return "✅ Noted. We'll wait for manual linking in the dashboard."

        clients = await self.store.list_clients(document.owner_email)
        if not clients:
            return "❌ I couldn't find any clients to match against. Please add the client first."

        match = match_client_from_reply(text, clients)

        if match is None:
            await self.state_machine.record_human_no_match(
                document_id, f'Telegram reply "{text}" did not match any client.'
            )
            return (
                f'❌ *No Match Found*\n\nI couldn\'t map "{text}" to any existing client.\n\n'
                "Please reply with:\n"
                "• The exact business name\n"
                "• The business email address\n"
                '• Or reply "manual" to handle it manually'
            )

        if isinstance(match, AmbiguousReply):
            options = "\n".join(
                f"• {client.business_name or client.id}"
                + (f" ({client.business_email})" if client.business_email else "")
                for client in match.clients
            )
            return (
                f"⚠️ I found multiple possible matches:\n{options}\n\n"
                "Please reply with the exact business email to confirm."
            )

        name = match.client.business_name or match.client.id
        await self.state_machine.link_manually(
            document_id,
            match.client.id,
            match.confidence,
            f'Linked to {name} via Telegram reply: "{text}"',
        )
        logger.info(
            f"Document {document_id} manually linked to {match.client.id}",
            extra={"document_id": document_id, "client_id": match.client.id},
        )

        lines = [
            f"✅ *Success!*\n\nLinked *{document.title}* to *{name}*.\n",
            f"📊 Confidence: {match.confidence * 100:.0f}%",
            f"📝 Reason: {match.reason}",
        ]
        if manual_link:
            lines.append(f"\nView document: {manual_link}")
        return "\n".join(lines)
