"""Model-assisted client arbitration.

Fallback for documents the deterministic tiers could not place. Sends the
document and the owner's roster to an OpenRouter chat-completion endpoint
and accepts a link only when the reply names one of the offered clients
with enough confidence. Every model or network problem becomes a
``no_match`` or ``error`` outcome; nothing escapes to the pipeline.
"""

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import openai
from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..errors import ConfigurationError, NetworkError, ValidationError
from ..logging import get_context_logger
from ..models import AttemptStatus, ClientRecord, DocumentKind, LinkableDocument


class ArbitrationDecision(str, Enum):
    LINK = "link"
    NO_LINK = "no_link"


class ArbitrationReply(BaseModel):
    """A model reply that decoded into the expected shape."""

    decision: ArbitrationDecision
    client_id: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str


@dataclass(frozen=True)
class InvalidReply:
    """A model reply that could not be decoded."""

    reason: str


ParsedReply = ArbitrationReply | InvalidReply


class ArbitrationOutcome(BaseModel):
    """Result of one arbitration call, ready to fold into history."""

    status: AttemptStatus
    client_id: str | None = None
    confidence: float | None = None
    reason: str

    @property
    def linked(self) -> bool:
        return self.status == AttemptStatus.SUCCESS


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object embedded in ``text``.

    Tolerates surrounding prose and markdown code fences.
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def _coerce_confidence(raw: Any) -> float:
    """Clamp a reported confidence to [0, 1]; anything non-finite counts as 0."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return 0.0
    try:
        value = float(raw)
    except (OverflowError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def parse_reply(text: str) -> ParsedReply:
    """Decode a model reply into a tagged result."""
    data = extract_json_object(text)
    if data is None:
        return InvalidReply("reply contained no JSON object")

    decision = (
        ArbitrationDecision.LINK
        if data.get("decision") == "link"
        else ArbitrationDecision.NO_LINK
    )

    client_id = data.get("clientId")
    if not isinstance(client_id, str) or not client_id.strip():
        client_id = None

    confidence = _coerce_confidence(data.get("confidence"))

    reason = data.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        reason = "No reason provided."

    return ArbitrationReply(
        decision=decision,
        client_id=client_id,
        confidence=confidence,
        reason=reason,
    )


class AIArbitrator:
    """Chat-completion arbitrator with candidate-membership validation."""

    SYSTEM_PROMPT = """You link meeting transcripts and form responses with the correct client from a provided list.
- Only choose from the provided clients.
- Evaluate participant emails, domains, content, and context clues.
- Respond with strict JSON matching this schema:
  {"decision":"link|no_link","clientId":null or client id string,"confidence":number between 0 and 1,"reason":"explanation"}
- If unsure, set decision to "no_link"."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the arbitrator.

        Args:
            settings: Settings override (defaults to environment settings)
            http_client: Optional httpx client for the SDK to send through,
                mainly for tests
        """
        self.settings = settings or get_settings()
        self._http_client = http_client
        self._client: openai.AsyncOpenAI | None = None

    @property
    def is_configured(self) -> bool:
        return self.settings.has_ai_credentials

    @property
    def client(self) -> openai.AsyncOpenAI:
        """Get or create the OpenRouter client."""
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self.settings.openrouter_api_key,
                base_url=self.settings.openrouter_base_url,
                timeout=self.settings.ai_timeout_seconds,
                max_retries=self.settings.ai_max_retries,
                http_client=self._http_client,
            )
        return self._client

    async def close(self):
        """Close the OpenRouter client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
        elif self._http_client is not None:
            await self._http_client.aclose()
        self._http_client = None

    def build_messages(
        self,
        owner_email: str,
        document: LinkableDocument,
        clients: list[ClientRecord],
    ) -> list[dict[str, str]]:
        """Build the system and user messages for one arbitration."""
        participants = ", ".join(document.participant_emails) or "None listed"

        sections = [
            f"Owner email: {owner_email}",
            f"Document type: {document.kind.value}",
            f"Title: {document.title}",
            f"Date: {document.timestamp.isoformat()}",
            f"Participants: {participants}",
            "Candidate clients:",
        ]
        for client in clients:
            sections.append(
                f"- ID: {client.id}\n"
                f"  Name: {client.business_name or ''}\n"
                f"  Email: {client.business_email or 'N/A'}\n"
                f"  Contact: {client.contact_name or 'Unknown'}\n"
                f"  Status: {client.status or 'unspecified'}"
            )

        if document.kind == DocumentKind.TRANSCRIPT and document.content:
            excerpt = document.content
            max_chars = self.settings.ai_content_excerpt_chars
            if len(excerpt) > max_chars:
                excerpt = excerpt[:max_chars] + "\n...[truncated]..."
            sections.append(f'Transcript content:\n"""{excerpt}"""')

        return [
            {"role": "system", "content": self.SYSTEM_PROMPT},
            {"role": "user", "content": "\n\n".join(sections)},
        ]

    async def arbitrate(
        self,
        owner_email: str,
        document: LinkableDocument,
        clients: list[ClientRecord],
    ) -> ArbitrationOutcome:
        """Ask the model to pick a client for ``document``.

        Args:
            owner_email: Account owner the roster belongs to
            document: The document to place
            clients: The owner's current roster

        Returns:
            A success, no_match or error outcome

        Raises:
            ValueError: If no document was given
            ConfigurationError: If no API key is configured
        """
        if document is None:
            raise ValueError("arbitrate() requires a document")
        if not self.is_configured:
            raise ConfigurationError("OpenRouter API key is not configured.")

        if not clients:
            return ArbitrationOutcome(
                status=AttemptStatus.NO_MATCH,
                reason="No clients available for matching.",
            )

        log = get_context_logger(__name__, document_id=document.id)
        messages = self.build_messages(owner_email, document, clients)

        try:
            content = await self._complete(messages)
        except NetworkError as e:
            log.warning(f"AI arbitration call failed: {e}")
            return ArbitrationOutcome(
                status=AttemptStatus.ERROR,
                confidence=0.0,
                reason=f"AI invocation failed: {e}",
            )

        parsed = parse_reply(content)
        if isinstance(parsed, InvalidReply):
            log.warning(f"AI reply could not be decoded: {parsed.reason}")
            return ArbitrationOutcome(
                status=AttemptStatus.ERROR,
                confidence=0.0,
                reason=f"AI invocation failed: {parsed.reason}",
            )

        candidate_ids = {client.id for client in clients}
        try:
            self._check_link(parsed, candidate_ids)
        except ValidationError as e:
            log.info(
                f"AI did not produce an acceptable link: {e}",
                extra={"decision": parsed.decision.value, "confidence": parsed.confidence},
            )
            return ArbitrationOutcome(
                status=AttemptStatus.NO_MATCH,
                client_id=parsed.client_id if parsed.client_id in candidate_ids else None,
                confidence=parsed.confidence,
                reason=f"{parsed.reason} ({e})",
            )

        log.info(
            f"AI linked document to client {parsed.client_id}",
            extra={"client_id": parsed.client_id, "confidence": parsed.confidence},
        )
        return ArbitrationOutcome(
            status=AttemptStatus.SUCCESS,
            client_id=parsed.client_id,
            confidence=parsed.confidence,
            reason=parsed.reason,
        )

    def _check_link(self, reply: ArbitrationReply, candidate_ids: set[str]) -> None:
        if reply.decision != ArbitrationDecision.LINK:
            raise ValidationError("model declined to link")
        if reply.client_id is None:
            raise ValidationError("link decision without a clientId")
        if reply.client_id not in candidate_ids:
            raise ValidationError(f"clientId {reply.client_id!r} was not offered as a candidate")
        if reply.confidence < self.settings.ai_min_confidence:
            raise ValidationError(
                f"confidence {reply.confidence:.2f} below {self.settings.ai_min_confidence:.2f}"
            )

    async def _complete(self, messages: list[dict[str, str]]) -> str:
        """Issue one chat completion and return the reply text."""
        try:
            response = await self.client.chat.completions.create(
                model=self.settings.openrouter_model,
                messages=messages,
                temperature=0.1,
            )
        except openai.APITimeoutError as e:
            raise NetworkError(
                f"request timed out after {self.settings.ai_timeout_seconds}s"
            ) from e
        except openai.APIStatusError as e:
            raise NetworkError(
                f"OpenRouter request failed with status {e.status_code}"
            ) from e
        except openai.APIError as e:
            raise NetworkError(f"OpenRouter request error: {e}") from e
        except ValueError as e:
            raise NetworkError("OpenRouter returned a non-JSON body") from e

        choices = response.choices or []
        content = choices[0].message.content if choices and choices[0].message else None
        if not isinstance(content, str) or not content.strip():
            raise NetworkError("AI response missing content.")
        return content
