"""Deterministic participant-email matching.

Tiers, in descending trust:
1. Exact business email: confidence 1.0
2. Unique raw domain: 0.95
3. Unique domain key: 0.85
4. Shared domain key narrowed to one business name: 0.75
5. Business name contains / is contained by the domain key: 0.65

Tiers 1 and 2 end the run at once. Lower tiers are collected across every
participant and the highest confidence wins.
"""

from enum import Enum

from pydantic import BaseModel, Field

from .index import CandidateIndex, CandidateMeta
from .normalize import domain_key, extract_domain, normalize_email


class MatchTier(str, Enum):
    """Which rule produced a match."""

    EXACT_EMAIL = "exact_email"
    DOMAIN = "domain"
    DOMAIN_KEY = "domain_key"
    DOMAIN_KEY_BUSINESS = "domain_key_business"
    BUSINESS_NAME = "business_name"
    TITLE = "title"


TIER_CONFIDENCE: dict[MatchTier, float] = {
    MatchTier.EXACT_EMAIL: 1.0,
    MatchTier.DOMAIN: 0.95,
    MatchTier.DOMAIN_KEY: 0.85,
    MatchTier.DOMAIN_KEY_BUSINESS: 0.75,
    MatchTier.BUSINESS_NAME: 0.65,
    MatchTier.TITLE: 0.6,
}

_TIER_LABEL = {
    MatchTier.EXACT_EMAIL: "high",
    MatchTier.DOMAIN: "high",
    MatchTier.DOMAIN_KEY: "medium",
    MatchTier.DOMAIN_KEY_BUSINESS: "low",
    MatchTier.BUSINESS_NAME: "low",
    MatchTier.TITLE: "medium",
}


class MatchResult(BaseModel):
    """Best client for a document from one resolution attempt."""

    client_id: str
    client_name: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    tier: MatchTier
    reason: str

    @property
    def label(self) -> str:
        """Coarse confidence bucket shown in batch reports."""
        return _TIER_LABEL[self.tier]

    @classmethod
    def for_tier(cls, meta: CandidateMeta, tier: MatchTier, reason: str) -> "MatchResult":
        return cls(
            client_id=meta.client_id,
            client_name=meta.client.business_name,
            confidence=TIER_CONFIDENCE[tier],
            tier=tier,
            reason=reason,
        )


def keys_overlap(a: str, b: str) -> bool:
    """Substring containment in either direction."""
    return a in b or b in a


class DeterministicMatcher:
    """Tiered matcher over participant emails.

    Pure: identical inputs always give the identical result.
    """

    def match(
        self,
        owner_email: str,
        participant_emails: list[str] | None,
        index: CandidateIndex,
    ) -> MatchResult | None:
        """Find the best client for a set of participant emails.

        Args:
            owner_email: Account owner; their own address is never matched
            participant_emails: Raw participant addresses, possibly empty
            index: Candidate index built from the owner's roster

        Returns:
            The best match, or None
        """
        if not participant_emails:
            return None

        owner_normalized = normalize_email(owner_email)
        best: MatchResult | None = None

        def consider(candidate: MatchResult) -> None:
            nonlocal best
            if best is None or candidate.confidence > best.confidence:
                best = candidate

        for participant in participant_emails:
            if not participant:
                continue
            normalized = normalize_email(participant)
            if not normalized or normalized == owner_normalized:
                continue

            email_match = index.by_email.get(normalized)
            if email_match is not None:
                return MatchResult.for_tier(
                    email_match,
                    MatchTier.EXACT_EMAIL,
                    f'Participant email "{participant}" matches client business email.',
                )

            domain = extract_domain(normalized)
            if not domain:
                continue

            domain_matches = index.by_domain.get(domain, [])
            if len(domain_matches) == 1:
                return MatchResult.for_tier(
                    domain_matches[0],
                    MatchTier.DOMAIN,
                    f'Participant domain "{domain}" uniquely matches client email domain.',
                )

            participant_key = domain_key(domain)
            if not participant_key:
                continue

            key_matches = index.by_domain_key.get(participant_key, [])
            if len(key_matches) == 1:
                consider(
                    MatchResult.for_tier(
                        key_matches[0],
                        MatchTier.DOMAIN_KEY,
                        f'Participant domain core "{participant_key}" uniquely aligns with client domain.',
                    )
                )
                continue

            if len(key_matches) > 1:
                narrowed = [
                    meta
                    for meta in key_matches
                    if meta.business_key and keys_overlap(meta.business_key, participant_key)
                ]
                if len(narrowed) == 1:
                    consider(
                        MatchResult.for_tier(
                            narrowed[0],
                            MatchTier.DOMAIN_KEY_BUSINESS,
                            f'Participant domain core "{participant_key}" matches client business name.',
                        )
                    )
                    continue

            # Roster order decides ties: only a strictly better match replaces
            for meta in index.metas:
                if meta.business_key and keys_overlap(meta.business_key, participant_key):
                    consider(
                        MatchResult.for_tier(
                            meta,
                            MatchTier.BUSINESS_NAME,
                            f'Participant domain "{domain}" loosely matches client '
                            f'business name "{meta.client.business_name or ""}".',
                        )
                    )

        return best
