"""Batch reconciliation of an owner's unlinked documents.

Runs the deterministic tiers (and optionally a title heuristic) over many
documents at once. ``dry_run`` only reports; ``execute`` applies each match
in turn and keeps going past individual failures.
"""

from enum import Enum
from typing import Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..logging import get_context_logger, log_batch_complete
from ..models import LinkableDocument
from .index import CandidateIndex
from .matcher import TIER_CONFIDENCE, DeterministicMatcher, MatchResult, MatchTier, keys_overlap
from .normalize import normalize_key

logger = get_context_logger(__name__)


class ReconcileMode(str, Enum):
    DRY_RUN = "dry_run"
    EXECUTE = "execute"


class MatchingStrategy(str, Enum):
    """Which evidence a batch run may use."""

    PARTICIPANTS_EMAIL = "participants_email"
    TITLE_FUZZY = "title_fuzzy"
    BOTH = "both"

    @property
    def uses_email(self) -> bool:
        return self in (MatchingStrategy.PARTICIPANTS_EMAIL, MatchingStrategy.BOTH)

    @property
    def uses_title(self) -> bool:
        return self in (MatchingStrategy.TITLE_FUZZY, MatchingStrategy.BOTH)


class _BatchModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BatchMatch(_BatchModel):
    """One document the batch run could place."""

    document_id: str
    document_title: str
    client_id: str
    client_name: str | None = None
    reason: str
    confidence: float
    label: str


class UnmatchedDocument(_BatchModel):
    id: str
    title: str


class ExecutionResult(_BatchModel):
    id: str
    success: bool
    error: str | None = None


class ReconciliationSummary(_BatchModel):
    total: int = 0
    matched: int = 0
    unmatched: int = 0
    executed: int = 0


class ReconciliationReport(_BatchModel):
    """Full result of a batch run."""

    dry_run: bool
    matched: list[BatchMatch] = Field(default_factory=list)
    unmatched: list[UnmatchedDocument] = Field(default_factory=list)
    execution_results: list[ExecutionResult] | None = None
    summary: ReconciliationSummary = Field(default_factory=ReconciliationSummary)


BatchApplier = Callable[[BatchMatch], Awaitable[None]]


def match_title(title: str | None, index: CandidateIndex) -> MatchResult | None:
    """First client, in roster order, whose business key overlaps the title key.

    Empty titles and empty business keys never match.
    """
    title_key = normalize_key(title or "")
    if not title_key:
        return None

    for meta in index.metas:
        if meta.business_key and keys_overlap(title_key, meta.business_key):
            return MatchResult(
                client_id=meta.client_id,
                client_name=meta.client.business_name,
                confidence=TIER_CONFIDENCE[MatchTier.TITLE],
                tier=MatchTier.TITLE,
                reason=f'Title fuzzy match: "{title}" ≈ "{meta.client.business_name}"',
            )
    return None


class BatchReconciler:
    """Matches a batch of documents against one owner's roster."""

    def __init__(self, owner_email: str, matcher: DeterministicMatcher | None = None):
        self.owner_email = owner_email
        self.matcher = matcher or DeterministicMatcher()

    def find_match(
        self,
        document: LinkableDocument,
        index: CandidateIndex,
        strategy: MatchingStrategy,
    ) -> MatchResult | None:
        """Best match for one document; email evidence wins over the title."""
        if strategy.uses_email:
            match = self.matcher.match(self.owner_email, document.participant_emails, index)
            if match is not None:
                return match
        if strategy.uses_title:
            return match_title(document.title, index)
        return None

    async def reconcile(
        self,
        documents: list[LinkableDocument],
        index: CandidateIndex,
        mode: ReconcileMode = ReconcileMode.DRY_RUN,
        strategy: MatchingStrategy = MatchingStrategy.BOTH,
        apply: BatchApplier | None = None,
    ) -> ReconciliationReport:
        """Match ``documents`` and, in execute mode, apply the matches.

        Args:
            documents: Unlinked documents of the owner
            index: Candidate index of the owner's roster
            mode: ``dry_run`` reports only; ``execute`` calls ``apply``
            strategy: Evidence to use
            apply: Awaited once per match in execute mode

        Returns:
            Report with matches, unmatched documents and a summary

        Raises:
            ValueError: If execute mode is requested without an applier
        """
        if mode == ReconcileMode.EXECUTE and apply is None:
            raise ValueError("Execute mode requires an apply callback")

        matched: list[BatchMatch] = []
        unmatched: list[UnmatchedDocument] = []

        for document in documents:
            title = document.title or "Untitled"
            result = self.find_match(document, index, strategy)
            if result is None:
                unmatched.append(UnmatchedDocument(id=document.id, title=title))
                continue
            matched.append(
                BatchMatch(
                    document_id=document.id,
                    document_title=title,
                    client_id=result.client_id,
                    client_name=result.client_name,
                    reason=result.reason,
                    confidence=result.confidence,
                    label=result.label,
                )
            )

        report = ReconciliationReport(
            dry_run=mode == ReconcileMode.DRY_RUN,
            matched=matched,
            unmatched=unmatched,
            summary=ReconciliationSummary(
                total=len(documents),
                matched=len(matched),
                unmatched=len(unmatched),
            ),
        )

        if mode == ReconcileMode.EXECUTE:
            results: list[ExecutionResult] = []
            for match in matched:
                try:
                    await apply(match)
                except Exception as e:
                    logger.warning(
                        f"Failed to apply batch match for {match.document_id}: {e}",
                        extra={"document_id": match.document_id},
                    )
                    results.append(
                        ExecutionResult(id=match.document_id, success=False, error=str(e) or "Unknown error")
                    )
                    continue
                results.append(ExecutionResult(id=match.document_id, success=True))
            report.execution_results = results
            report.summary.executed = sum(1 for r in results if r.success)

        log_batch_complete(
            self.owner_email,
            report.dry_run,
            report.summary.total,
            report.summary.matched,
            report.summary.executed,
        )
        return report
