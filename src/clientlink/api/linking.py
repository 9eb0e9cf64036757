"""Client linking API endpoints.

Document ingest, single-document resolution and escalation, and batch
reconciliation of an owner's unlinked documents.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..config import Settings, get_settings
from ..errors import NotFoundError
from ..linking.index import CandidateIndex
from ..linking.notifier import NotificationOutcome
from ..linking.reconcile import (
    BatchReconciler,
    MatchingStrategy,
    ReconcileMode,
    ReconciliationReport,
)
from ..linking.state_machine import (
    LinkingStateMachine,
    ResolutionOutcome,
    get_state_machine,
)
from ..logging import get_context_logger
from ..models import LinkableDocument
from . import ErrorDetail, ValidationError

logger = get_context_logger(__name__)

router = APIRouter(prefix="/linking")


# =========================
# Request Models
# =========================


class BatchLinkRequest(BaseModel):
    """Body of a batch reconciliation request."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    owner_email: str = Field(min_length=3)
    dry_run: bool = True
    limit: int | None = None
    strategy: MatchingStrategy = MatchingStrategy.BOTH


# =========================
# Documents
# =========================


@router.post("/documents", response_model=ResolutionOutcome)
async def ingest_document(
    document: LinkableDocument,
    machine: LinkingStateMachine = Depends(get_state_machine),
) -> ResolutionOutcome:
    """Store a synced document and run deterministic matching on it."""
    return await machine.ingest(document)


@router.get(
    "/documents/{document_id}",
    response_model=LinkableDocument,
    response_model_by_alias=True,
)
async def get_document(
    document_id: str,
    machine: LinkingStateMachine = Depends(get_state_machine),
) -> LinkableDocument:
    """Return a document with its linking history."""
    document = await machine.store.get_document(document_id)
    if document is None:
        raise NotFoundError(document_id)
    return document


@router.post("/documents/{document_id}/resolve", response_model=ResolutionOutcome)
async def resolve_document(
    document_id: str,
    machine: LinkingStateMachine = Depends(get_state_machine),
) -> ResolutionOutcome:
    """Run the full pipeline for one document."""
    return await machine.resolve(document_id)


@router.post("/documents/{document_id}/escalate", response_model=NotificationOutcome)
async def escalate_document(
    document_id: str,
    machine: LinkingStateMachine = Depends(get_state_machine),
) -> NotificationOutcome:
    """Send the human alert for one document, if not sent before."""
    return await machine.escalate(document_id)


# =========================
# Batch Reconciliation
# =========================


@router.post(
    "/batch",
    response_model=ReconciliationReport,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def batch_link(
    request: BatchLinkRequest,
    machine: LinkingStateMachine = Depends(get_state_machine),
    settings: Settings = Depends(get_settings),
) -> ReconciliationReport:
    """Match an owner's unlinked documents and optionally apply the links.

    ``dryRun`` defaults to true; nothing is written in that mode.
    """
    owner_email = request.owner_email.strip()
    if "@" not in owner_email:
        raise ValidationError(
            "ownerEmail must be an email address",
            details=[
                ErrorDetail(code="invalid_email", message="Missing '@'", field="ownerEmail")
            ],
        )
    limit = settings.clamp_batch_limit(request.limit)
    logger.info(
        f"Batch reconciliation requested for {owner_email}",
        extra={"dry_run": request.dry_run, "limit": limit, "strategy": request.strategy.value},
    )

    documents = await machine.store.list_unlinked(owner_email, limit)
    clients = await machine.store.list_clients(owner_email)

    reconciler = BatchReconciler(owner_email, matcher=machine.matcher)
    return await reconciler.reconcile(
        documents,
        CandidateIndex.build(clients),
        mode=ReconcileMode.DRY_RUN if request.dry_run else ReconcileMode.EXECUTE,
        strategy=request.strategy,
        apply=machine.apply_batch_match,
    )
