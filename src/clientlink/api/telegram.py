"""Telegram webhook for operator replies to escalation alerts."""

from typing import Any

from fastapi import APIRouter, Body, Depends

from ..config import Settings, get_settings
from ..errors import NetworkError
from ..linking.reply import ReplyResolver, extract_document_id
from ..linking.state_machine import LinkingStateMachine, get_state_machine
from ..logging import get_context_logger

logger = get_context_logger(__name__)

router = APIRouter(prefix="/telegram")

HELP_TEXT = (
    "ℹ️ Please reply directly to a document notification message to link it "
    "to a client."
)


def get_reply_resolver(
    machine: LinkingStateMachine = Depends(get_state_machine),
    settings: Settings = Depends(get_settings),
) -> ReplyResolver:
    return ReplyResolver(machine, settings=settings)


@router.post("/webhook")
async def telegram_webhook(
    update: dict[str, Any] = Body(...),
    resolver: ReplyResolver = Depends(get_reply_resolver),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Handle one Telegram update.

    Always answers 200 so Telegram does not redeliver; ``ok`` is False when
    the reply could not be sent back.
    """
    notifier = resolver.state_machine.notifier
    if notifier is None or not notifier.is_configured:
        logger.warning("Telegram update received but the bot is not configured")
        return {"ok": False}

    message = update.get("message")
    if not isinstance(message, dict):
        return {"ok": True}

    chat_id = (message.get("chat") or {}).get("id")
    if not isinstance(chat_id, int):
        return {"ok": True}

    if str(chat_id) != str(settings.telegram_chat_id):
        logger.warning(
            f"Ignoring Telegram update from unexpected chat {chat_id}",
            extra={"chat_id": chat_id},
        )
        return {"ok": True}

    replied_to = message.get("reply_to_message") or {}
    alert_text = replied_to.get("text") or replied_to.get("caption") or ""
    document_id = extract_document_id(alert_text)

    if document_id is None:
        reply = HELP_TEXT
    else:
        text = message.get("text") if isinstance(message.get("text"), str) else ""
        reply = await resolver.handle(document_id, text)

    try:
        await notifier.send_text(chat_id, reply)
    except NetworkError as e:
        logger.error(
            f"Failed to answer Telegram reply: {e}",
            extra={"chat_id": chat_id, "document_id": document_id},
        )
        return {"ok": False}

    return {"ok": True}
