"""Per-run lookup structures over an owner's client roster."""

from dataclasses import dataclass, field

from ..models import ClientRecord
from .normalize import domain_key, extract_domain, normalize_email, normalize_key


@dataclass(frozen=True)
class CandidateMeta:
    """Derived matching keys for one client. Never persisted."""

    client: ClientRecord
    email_normalized: str | None
    domain: str | None
    domain_key: str | None
    business_key: str | None

    @classmethod
    def from_client(cls, client: ClientRecord) -> "CandidateMeta":
        email = client.business_email
        domain = extract_domain(email) if email else None
        business_key = normalize_key(client.business_name) if client.business_name else None
        return cls(
            client=client,
            email_normalized=normalize_email(email) if email else None,
            domain=domain,
            domain_key=domain_key(domain) if domain else None,
            business_key=business_key or None,
        )

    @property
    def client_id(self) -> str:
        return self.client.id


@dataclass
class CandidateIndex:
    """Lookup maps built fresh for every resolution call.

    ``metas`` keeps roster order; the fallback business-name tier relies on
    it to break ties.
    """

    metas: list[CandidateMeta] = field(default_factory=list)
    by_email: dict[str, CandidateMeta] = field(default_factory=dict)
    by_domain: dict[str, list[CandidateMeta]] = field(default_factory=dict)
    by_domain_key: dict[str, list[CandidateMeta]] = field(default_factory=dict)

    @classmethod
    def build(cls, clients: list[ClientRecord]) -> "CandidateIndex":
        """Build the index from a roster.

        Duplicate business emails resolve to the last client in the roster.
        """
        index = cls()
        for client in clients:
            meta = CandidateMeta.from_client(client)
            index.metas.append(meta)
            if meta.email_normalized:
                index.by_email[meta.email_normalized] = meta
            if meta.domain:
                index.by_domain.setdefault(meta.domain, []).append(meta)
            if meta.domain_key:
                index.by_domain_key.setdefault(meta.domain_key, []).append(meta)
        return index

    def __len__(self) -> int:
        return len(self.metas)

    @property
    def is_empty(self) -> bool:
        return not self.metas

    @property
    def clients(self) -> list[ClientRecord]:
        return [meta.client for meta in self.metas]

    def get(self, client_id: str) -> CandidateMeta | None:
        """Find a candidate by client id."""
        for meta in self.metas:
            if meta.client_id == client_id:
                return meta
        return None
