"""Client linking pipeline.

Provides:
- Key normalization and per-run candidate indexes
- Deterministic participant-email matching
- AI arbitration over the owner's roster
- Telegram escalation and reply handling
- Batch reconciliation of unlinked documents
"""

from .arbitrator import AIArbitrator, ArbitrationOutcome, ArbitrationReply, InvalidReply
from .index import CandidateIndex, CandidateMeta
from .matcher import DeterministicMatcher, MatchResult, MatchTier
from .normalize import domain_key, extract_domain, normalize_email, normalize_key
from .notifier import EscalationNotifier, NotificationOutcome, NotificationStatus
from .reconcile import (
    BatchMatch,
    BatchReconciler,
    MatchingStrategy,
    ReconcileMode,
    ReconciliationReport,
)
from .reply import ReplyResolver, extract_document_id, match_client_from_reply
from .state_machine import (
    LinkingStateMachine,
    ResolutionOutcome,
    ResolutionStatus,
    get_state_machine,
)

__all__ = [
    # Normalization
    "normalize_email",
    "extract_domain",
    "normalize_key",
    "domain_key",
    # Matching
    "CandidateIndex",
    "CandidateMeta",
    "DeterministicMatcher",
    "MatchResult",
    "MatchTier",
    # Arbitration
    "AIArbitrator",
    "ArbitrationOutcome",
    "ArbitrationReply",
    "InvalidReply",
    # Escalation
    "EscalationNotifier",
    "NotificationOutcome",
    "NotificationStatus",
    "ReplyResolver",
    "extract_document_id",
    "match_client_from_reply",
    # Orchestration
    "LinkingStateMachine",
    "ResolutionOutcome",
    "ResolutionStatus",
    "get_state_machine",
    # Batch
    "BatchMatch",
    "BatchReconciler",
    "MatchingStrategy",
    "ReconcileMode",
    "ReconciliationReport",
]
