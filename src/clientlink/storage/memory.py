"""In-process store used by tests and local tooling."""

import asyncio

from ..errors import NotFoundError
from ..models import ClientRecord, LinkableDocument, LinkingAttempt, LinkingStatus
from .base import LinkingStore


class InMemoryLinkingStore(LinkingStore):
    """Dictionary-backed ``LinkingStore``.

    Clients keep insertion order, which is the roster order the matcher
    sees.
    """

    def __init__(
        self,
        clients: list[ClientRecord] | None = None,
        documents: list[LinkableDocument] | None = None,
    ):
        self._clients: dict[str, ClientRecord] = {}
        self._documents: dict[str, LinkableDocument] = {}
        self._claims: set[str] = set()
        self._lock = asyncio.Lock()

        for client in clients or []:
            self._clients[client.id] = client
        for document in documents or []:
            self._documents[document.id] = document

    async def get_document(self, document_id: str) -> LinkableDocument | None:
        return self._documents.get(document_id)

    async def save_document(self, document: LinkableDocument) -> LinkableDocument:
        self._documents[document.id] = document
        return document

    async def list_unlinked(
        self, owner_email: str, limit: int
    ) -> list[LinkableDocument]:
        unlinked = [
            doc
            for doc in self._documents.values()
            if doc.owner_email == owner_email and doc.client_id is None
        ]
        unlinked.sort(key=lambda doc: doc.timestamp, reverse=True)
        return unlinked[:limit]

    async def list_clients(self, owner_email: str) -> list[ClientRecord]:
        return [
            client
            for client in self._clients.values()
            if client.owner_email in (None, owner_email)
        ]

    async def save_client(self, client: ClientRecord) -> ClientRecord:
        self._clients[client.id] = client
        return client

    async def record_attempt(
        self,
        document_id: str,
        attempt: LinkingAttempt,
        linking_status: LinkingStatus | None,
        client_id: str | None = None,
    ) -> LinkableDocument:
        async with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                raise NotFoundError(document_id)
            updated = document.with_attempt(attempt, linking_status, client_id)
            self._documents[document_id] = updated
            return updated

    async def claim_escalation(self, document_id: str) -> bool:
        async with self._lock:
            if document_id in self._claims:
                return False
            self._claims.add(document_id)
            return True

    async def release_escalation(self, document_id: str) -> None:
        async with self._lock:
            self._claims.discard(document_id)
