"""Read/write contract the linking pipeline needs from persistence."""

from abc import ABC, abstractmethod

from ..models import ClientRecord, LinkableDocument, LinkingAttempt, LinkingStatus


class LinkingStore(ABC):
    """Abstract store for documents, client rosters and linking history.

    Implementations must append attempts atomically with the status change
    and raise ``PersistenceError`` when a write cannot be completed.
    """

    @abstractmethod
    async def get_document(self, document_id: str) -> LinkableDocument | None:
        """Load a document, or None if unknown."""
        ...

    @abstractmethod
    async def save_document(self, document: LinkableDocument) -> LinkableDocument:
        """Insert or fully replace a document."""
        ...

    @abstractmethod
    async def list_unlinked(
        self, owner_email: str, limit: int
    ) -> list[LinkableDocument]:
        """Documents of ``owner_email`` without a client, newest first."""
        ...

    @abstractmethod
    async def list_clients(self, owner_email: str) -> list[ClientRecord]:
        """The owner's full roster in a stable order. Never cached."""
        ...

    @abstractmethod
    async def save_client(self, client: ClientRecord) -> ClientRecord:
        """Insert or replace a client record."""
        ...

    @abstractmethod
    async def record_attempt(
        self,
        document_id: str,
        attempt: LinkingAttempt,
        linking_status: LinkingStatus | None,
        client_id: str | None = None,
    ) -> LinkableDocument:
        """Append ``attempt`` and move the document to ``linking_status``.

        A ``linking_status`` of None keeps whatever status is stored at
        write time. Sets ``last_link_attempt_at`` to the attempt timestamp. When
        ``client_id`` is given it replaces the current link; it is never
        cleared.

        Raises:
            NotFoundError: If the document does not exist
            PersistenceError: If the write fails
        """
        ...

    @abstractmethod
    async def claim_escalation(self, document_id: str) -> bool:
        """Atomically claim the right to send this document's alert.

        Returns False when another caller already holds the claim.
        """
        ...

    @abstractmethod
    async def release_escalation(self, document_id: str) -> None:
        """Give up a claim after a failed send so a later retry can run."""
        ...
