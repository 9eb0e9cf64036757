"""Pydantic models for documents, clients and linking attempts.

Wire and persisted shapes use camelCase aliases (``clientId``,
``linkingHistory``); Python code uses the snake_case field names.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# Enumerations
# =============================================================================


class DocumentKind(str, Enum):
    """Kinds of interaction records that can be linked to a client."""

    TRANSCRIPT = "transcript"
    FORM_RESPONSE = "form_response"


class LinkingStatus(str, Enum):
    """Linking state of a document."""

    UNLINKED = "unlinked"
    AUTO_LINKED = "auto_linked"
    AI_LINKED = "ai_linked"
    NEEDS_HUMAN = "needs_human"
    MANUALLY_LINKED = "manually_linked"


class LinkingStage(str, Enum):
    """Pipeline stage that produced an attempt."""

    AUTO = "auto"
    AI = "ai"
    TELEGRAM = "telegram"


class AttemptStatus(str, Enum):
    """Outcome of a single linking attempt."""

    SUCCESS = "success"
    NO_MATCH = "no_match"
    ERROR = "error"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Core Models
# =============================================================================


class ClientRecord(_WireModel):
    """A customer record owned by an account owner.

    Created and updated outside the linking pipeline; read-only here.
    """

    id: str
    owner_email: str | None = None
    business_email: str | None = None
    business_name: str | None = None
    contact_first_name: str | None = None
    contact_last_name: str | None = None
    status: str | None = None

    @property
    def contact_name(self) -> str:
        """Contact's full name, or an empty string."""
        parts = [self.contact_first_name, self.contact_last_name]
        return " ".join(p for p in parts if p).strip()


class LinkingAttempt(_WireModel):
    """One immutable entry in a document's linking history."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    stage: LinkingStage
    status: AttemptStatus
    timestamp: datetime
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    client_id: str | None = None
    reason: str = ""


class LinkableDocument(_WireModel):
    """A meeting transcript or form response awaiting a client link."""

    id: str
    owner_email: str
    kind: DocumentKind = DocumentKind.TRANSCRIPT
    title: str = ""
    timestamp: datetime
    participant_emails: list[str] = Field(default_factory=list)
    content: str | None = None

    linking_status: LinkingStatus = LinkingStatus.UNLINKED
    client_id: str | None = None
    last_link_attempt_at: datetime | None = None
    linking_history: list[LinkingAttempt] = Field(default_factory=list)

    @property
    def is_linked(self) -> bool:
        """Check if a client is already attached."""
        return self.client_id is not None

    @property
    def has_escalated(self) -> bool:
        """Check if a human alert was already delivered for this document."""
        return any(
            entry.stage == LinkingStage.TELEGRAM
            and entry.status == AttemptStatus.SUCCESS
            for entry in self.linking_history
        )

    @property
    def latest_attempt(self) -> LinkingAttempt | None:
        """Most recent history entry, if any."""
        return self.linking_history[-1] if self.linking_history else None

    def with_attempt(
        self,
        attempt: LinkingAttempt,
        linking_status: LinkingStatus | None,
        client_id: str | None = None,
    ) -> "LinkableDocument":
        """Return a copy with ``attempt`` appended and the status updated.

        A ``linking_status`` of None keeps the current status.
        ``client_id`` replaces the current link only when given; it is
        never cleared.
        """
        update = {
            "last_link_attempt_at": attempt.timestamp,
            "linking_history": [*self.linking_history, attempt],
        }
        if linking_status is not None:
            update["linking_status"] = linking_status
        if client_id is not None:
            update["client_id"] = client_id
        return self.model_copy(update=update)
