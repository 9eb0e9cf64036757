"""Linking state machine.

Resolution flow for one document:
1. Deterministic tiers → ``auto_linked``
2. AI arbitration → ``ai_linked``
3. Otherwise ``needs_human`` plus a best-effort Telegram alert

Every transition appends exactly one attempt to the document's history and
moves ``last_link_attempt_at`` to that attempt's timestamp. A document that
already has a client short-circuits as ``already_linked`` without touching
its history.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from pydantic import BaseModel

from ..errors import LinkingError, NotFoundError
from ..logging import get_context_logger, log_linking_attempt
from ..models import (
    AttemptStatus,
    LinkableDocument,
    LinkingAttempt,
    LinkingStage,
    LinkingStatus,
)
from ..storage.base import LinkingStore
from .arbitrator import AIArbitrator
from .index import CandidateIndex
from .matcher import DeterministicMatcher
from .notifier import EscalationNotifier, NotificationOutcome, NotificationStatus
from .reconcile import BatchMatch

logger = get_context_logger(__name__)


class ResolutionStatus(str, Enum):
    """Where a document stands after a resolution call."""

    ALREADY_LINKED = "already_linked"
    UNLINKED = "unlinked"
    AUTO_LINKED = "auto_linked"
    AI_LINKED = "ai_linked"
    NEEDS_HUMAN = "needs_human"
    MANUALLY_LINKED = "manually_linked"


class ResolutionOutcome(BaseModel):
    """Result of one state machine operation."""

    document_id: str
    status: ResolutionStatus
    client_id: str | None = None
    confidence: float | None = None
    reason: str = ""
    escalation: NotificationOutcome | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LinkingStateMachine:
    """Runs the tiers for a document and persists every attempt.

    Documents are handled one at a time; callers processing many documents
    await each resolution before starting the next.
    """

    def __init__(
        self,
        store: LinkingStore,
        arbitrator: AIArbitrator | None = None,
        notifier: EscalationNotifier | None = None,
        matcher: DeterministicMatcher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the state machine.

        Args:
            store: Persistence for documents, rosters and history
            arbitrator: AI tier; when None the tier is skipped
            notifier: Escalation channel; when None alerts are skipped
            matcher: Deterministic matcher
            clock: Source of attempt timestamps
        """
        self.store = store
        self.arbitrator = arbitrator
        self.notifier = notifier
        self.matcher = matcher or DeterministicMatcher()
        self._clock = clock

    # =========================
    # Helpers
    # =========================

    async def _load(self, document_id: str) -> LinkableDocument:
        document = await self.store.get_document(document_id)
        if document is None:
            raise NotFoundError(document_id)
        return document

    def _stamp(self, document: LinkableDocument) -> datetime:
        """Timestamp for the next attempt, never earlier than the last one."""
        now = self._clock()
        latest = document.latest_attempt
        if latest is not None and latest.timestamp > now:
            return latest.timestamp
        return now

    async def _record(
        self,
        document: LinkableDocument,
        stage: LinkingStage,
        status: AttemptStatus,
        linking_status: LinkingStatus | None,
        reason: str,
        confidence: float | None = None,
        client_id: str | None = None,
        link: bool = False,
    ) -> LinkableDocument:
        attempt = LinkingAttempt(
            stage=stage,
            status=status,
            timestamp=self._stamp(document),
            confidence=confidence,
            client_id=client_id,
            reason=reason,
        )
        updated = await self.store.record_attempt(
            document.id,
            attempt,
            linking_status,
            client_id=client_id if link else None,
        )
        log_linking_attempt(
            document.id,
            stage.value,
            status.value,
            updated.linking_status.value,
            client_id=client_id,
            confidence=confidence,
        )
        return updated

    @staticmethod
    def _already_linked(document: LinkableDocument) -> ResolutionOutcome:
        return ResolutionOutcome(
            document_id=document.id,
            status=ResolutionStatus.ALREADY_LINKED,
            client_id=document.client_id,
        )

    # =========================
    # Operations
    # =========================

    async def ingest(self, document: LinkableDocument) -> ResolutionOutcome:
        """Store a newly synced document and run the deterministic tier.

        Re-syncing a known document refreshes its content but keeps its
        link, status and history.
        """
        existing = await self.store.get_document(document.id)
        if existing is not None:
            document = document.model_copy(
                update={
                    "linking_status": existing.linking_status,
                    "client_id": existing.client_id,
                    "last_link_attempt_at": existing.last_link_attempt_at,
                    "linking_history": existing.linking_history,
                }
            )
        await self.store.save_document(document)

        if document.is_linked:
            return self._already_linked(document)
        return await self.run_deterministic(document.id)

    async def run_deterministic(self, document_id: str) -> ResolutionOutcome:
        """Run the deterministic tiers for one document."""
        document = await self._load(document_id)
        if document.is_linked:
            return self._already_linked(document)

        clients = await self.store.list_clients(document.owner_email)
        index = CandidateIndex.build(clients)
        match = self.matcher.match(document.owner_email, document.participant_emails, index)

        if match is not None:
            await self._record(
                document,
                LinkingStage.AUTO,
                AttemptStatus.SUCCESS,
                LinkingStatus.AUTO_LINKED,
                match.reason,
                confidence=match.confidence,
                client_id=match.client_id,
                link=True,
            )
            return ResolutionOutcome(
                document_id=document.id,
                status=ResolutionStatus.AUTO_LINKED,
                client_id=match.client_id,
                confidence=match.confidence,
                reason=match.reason,
            )

        reason = (
            "No matching client found for participant emails."
            if document.participant_emails
            else "Document contained no participant emails to evaluate."
        )
        updated = await self._record(
            document,
            LinkingStage.AUTO,
            AttemptStatus.NO_MATCH,
            document.linking_status,
            reason,
        )
        return ResolutionOutcome(
            document_id=document.id,
            status=ResolutionStatus(updated.linking_status.value),
            reason=reason,
        )

    async def run_ai(self, document_id: str) -> ResolutionOutcome:
        """Run the AI tier for a document the deterministic tiers missed."""
        document = await self._load(document_id)
        if document.is_linked:
            return self._already_linked(document)

        clients = await self.store.list_clients(document.owner_email)

        if not clients:
            return await self._needs_human(
                document, AttemptStatus.NO_MATCH, "No clients available for matching."
            )

        if self.arbitrator is None or not self.arbitrator.is_configured:
            logger.warning(
                "AI tier skipped, no OpenRouter API key",
                extra={"document_id": document.id},
            )
            return await self._needs_human(
                document,
                AttemptStatus.NO_MATCH,
                "AI arbitration skipped: OpenRouter API key is not configured.",
            )

        outcome = await self.arbitrator.arbitrate(document.owner_email, document, clients)

        if outcome.linked:
            await self._record(
                document,
                LinkingStage.AI,
                AttemptStatus.SUCCESS,
                LinkingStatus.AI_LINKED,
                outcome.reason,
                confidence=outcome.confidence,
                client_id=outcome.client_id,
                link=True,
            )
            return ResolutionOutcome(
                document_id=document.id,
                status=ResolutionStatus.AI_LINKED,
                client_id=outcome.client_id,
                confidence=outcome.confidence,
                reason=outcome.reason,
            )

        return await self._needs_human(
            document,
            outcome.status,
            outcome.reason,
            confidence=outcome.confidence,
            client_id=outcome.client_id,
        )

    async def _needs_human(
        self,
        document: LinkableDocument,
        status: AttemptStatus,
        reason: str,
        confidence: float | None = None,
        client_id: str | None = None,
    ) -> ResolutionOutcome:
        await self._record(
            document,
            LinkingStage.AI,
            status,
            LinkingStatus.NEEDS_HUMAN,
            reason,
            confidence=confidence,
            client_id=client_id,
        )
        return ResolutionOutcome(
            document_id=document.id,
            status=ResolutionStatus.NEEDS_HUMAN,
            confidence=confidence if confidence is not None else 0.0,
            reason=reason,
        )

    async def escalate(self, document_id: str) -> NotificationOutcome:
        """Send the human alert for a document, at most once.

        The linking status never changes here; only a ``telegram`` attempt
        is appended when a send was actually tried.
        """
        document = await self._load(document_id)

        if self.notifier is None:
            return NotificationOutcome(
                status=NotificationStatus.SKIPPED,
                reason="No escalation channel configured.",
            )
        if not self.notifier.is_configured or document.has_escalated:
            return await self.notifier.notify(document)

        if not await self.store.claim_escalation(document.id):
            logger.info(
                f"Escalation for {document.id} already claimed",
                extra={"document_id": document.id},
            )
            return NotificationOutcome(
                status=NotificationStatus.SKIPPED,
                reason="Escalation already in progress for this document.",
            )

        try:
            outcome = await self.notifier.notify(document)
        except Exception:
            await self.store.release_escalation(document.id)
            raise

        if not outcome.sent:
            await self.store.release_escalation(document.id)
        if outcome.status == NotificationStatus.SKIPPED:
            return outcome

        # The document may have been linked while the alert was in flight
        current = await self._load(document.id)
        await self._record(
            current,
            LinkingStage.TELEGRAM,
            AttemptStatus.SUCCESS if outcome.sent else AttemptStatus.ERROR,
            None,
            outcome.reason,
        )
        return outcome

    async def resolve(self, document_id: str) -> ResolutionOutcome:
        """Run the full pipeline: deterministic, AI, then escalation."""
        outcome = await self.run_deterministic(document_id)
        if outcome.status in (ResolutionStatus.ALREADY_LINKED, ResolutionStatus.AUTO_LINKED):
            return outcome

        outcome = await self.run_ai(document_id)
        if outcome.status == ResolutionStatus.NEEDS_HUMAN:
            outcome.escalation = await self.escalate(document_id)
        return outcome

    async def apply_batch_match(self, match: BatchMatch) -> None:
        """Apply one batch-reconciliation match.

        Raises:
            NotFoundError: If the document vanished
            LinkingError: If the document was linked since the batch ran
        """
        document = await self._load(match.document_id)
        if document.is_linked:
            raise LinkingError(
                f"Document {document.id} is already linked to {document.client_id}"
            )
        await self._record(
            document,
            LinkingStage.AUTO,
            AttemptStatus.SUCCESS,
            LinkingStatus.AUTO_LINKED,
            f"Batch reconciliation: {match.reason}",
            confidence=match.confidence,
            client_id=match.client_id,
            link=True,
        )

    async def link_manually(
        self,
        document_id: str,
        client_id: str,
        confidence: float,
        reason: str,
    ) -> ResolutionOutcome:
        """Attach the client a human picked in reply to an alert."""
        document = await self._load(document_id)
        await self._record(
            document,
            LinkingStage.TELEGRAM,
            AttemptStatus.SUCCESS,
            LinkingStatus.MANUALLY_LINKED,
            reason,
            confidence=confidence,
            client_id=client_id,
            link=True,
        )
        return ResolutionOutcome(
            document_id=document.id,
            status=ResolutionStatus.MANUALLY_LINKED,
            client_id=client_id,
            confidence=confidence,
            reason=reason,
        )

    async def record_human_no_match(self, document_id: str, reason: str) -> None:
        """Record a human reply that did not produce a link."""
        document = await self._load(document_id)
        await self._record(
            document,
            LinkingStage.TELEGRAM,
            AttemptStatus.NO_MATCH,
            None,
            reason,
        )


# Singleton instance
_state_machine: LinkingStateMachine | None = None


def get_state_machine() -> LinkingStateMachine:
    """Get the state machine singleton wired to the SQL store."""
    global _state_machine
    if _state_machine is None:
        from ..storage.sql import SqlLinkingStore

        _state_machine = LinkingStateMachine(
            SqlLinkingStore(),
            arbitrator=AIArbitrator(),
            notifier=EscalationNotifier(),
        )
    return _state_machine


async def close_state_machine() -> None:
    """Close the singleton's HTTP clients."""
    global _state_machine
    if _state_machine is None:
        return
    if _state_machine.arbitrator is not None:
        await _state_machine.arbitrator.close()
    if _state_machine.notifier is not None:
        await _state_machine.notifier.close()
    _state_machine = None
