"""SQLAlchemy-backed linking store.

History is stored as a JSON array on the document row and rewritten in the
same transaction as the status change.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, String, Text, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base, get_session_factory
from ..errors import NotFoundError, PersistenceError
from ..logging import get_context_logger
from ..models import (
    ClientRecord,
    DocumentKind,
    LinkableDocument,
    LinkingAttempt,
    LinkingStatus,
)
from .base import LinkingStore

logger = get_context_logger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; treat naive values as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# =========================
# ORM Models
# =========================


class ClientRow(Base):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_email: Mapped[str | None] = mapped_column(String(320), index=True)
    business_email: Mapped[str | None] = mapped_column(String(320), index=True)
    business_name: Mapped[str | None] = mapped_column(String(500))
    contact_first_name: Mapped[str | None] = mapped_column(String(200))
    contact_last_name: Mapped[str | None] = mapped_column(String(200))
    status: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def to_model(self) -> ClientRecord:
        return ClientRecord(
            id=self.id,
            owner_email=self.owner_email,
            business_email=self.business_email,
            business_name=self.business_name,
            contact_first_name=self.contact_first_name,
            contact_last_name=self.contact_last_name,
            status=self.status,
        )


class DocumentRow(Base):
    __tablename__ = "linkable_documents"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    owner_email: Mapped[str] = mapped_column(String(320), index=True)
    kind: Mapped[str] = mapped_column(String(32), default=DocumentKind.TRANSCRIPT.value)
    title: Mapped[str] = mapped_column(String(1000), default="")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    participant_emails: Mapped[list[str]] = mapped_column(JSON, default=list)
    content: Mapped[str | None] = mapped_column(Text)

    linking_status: Mapped[str] = mapped_column(
        String(32), default=LinkingStatus.UNLINKED.value, index=True
    )
    client_id: Mapped[str | None] = mapped_column(String(64), index=True)
    last_link_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    linking_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    escalation_claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def to_model(self) -> LinkableDocument:
        return LinkableDocument(
            id=self.id,
            owner_email=self.owner_email,
            kind=DocumentKind(self.kind),
            title=self.title,
            timestamp=_as_utc(self.timestamp),
            participant_emails=list(self.participant_emails or []),
            content=self.content,
            linking_status=LinkingStatus(self.linking_status),
            client_id=self.client_id,
            last_link_attempt_at=_as_utc(self.last_link_attempt_at),
            linking_history=[
                LinkingAttempt.model_validate(entry)
                for entry in self.linking_history or []
            ],
        )

    def apply(self, document: LinkableDocument) -> None:
        self.owner_email = document.owner_email
        self.kind = document.kind.value
        self.title = document.title
        self.timestamp = document.timestamp
        self.participant_emails = list(document.participant_emails)
        self.content = document.content
        self.linking_status = document.linking_status.value
        self.client_id = document.client_id
        self.last_link_attempt_at = document.last_link_attempt_at
        self.linking_history = [_dump_attempt(a) for a in document.linking_history]


def _dump_attempt(attempt: LinkingAttempt) -> dict[str, Any]:
    return attempt.model_dump(mode="json", by_alias=True, exclude_none=True)


# =========================
# Store
# =========================


class SqlLinkingStore(LinkingStore):
    """``LinkingStore`` over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory or get_session_factory()

    async def get_document(self, document_id: str) -> LinkableDocument | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(DocumentRow, document_id)
                return row.to_model() if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load document {document_id}: {e}") from e

    async def save_document(self, document: LinkableDocument) -> LinkableDocument:
        try:
            async with self._session_factory() as session:
                row = await session.get(DocumentRow, document.id)
                if row is None:
                    row = DocumentRow(id=document.id)
                    session.add(row)
                row.apply(document)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save document {document.id}: {e}") from e
        return document

    async def list_unlinked(
        self, owner_email: str, limit: int
    ) -> list[LinkableDocument]:
        stmt = (
            select(DocumentRow)
            .where(DocumentRow.owner_email == owner_email)
            .where(DocumentRow.client_id.is_(None))
            .order_by(DocumentRow.timestamp.desc())
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.scalars(stmt)).all()
                return [row.to_model() for row in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list unlinked documents: {e}") from e

    async def list_clients(self, owner_email: str) -> list[ClientRecord]:
        stmt = (
            select(ClientRow)
            .where(or_(ClientRow.owner_email == owner_email, ClientRow.owner_email.is_(None)))
            .order_by(ClientRow.created_at, ClientRow.id)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.scalars(stmt)).all()
                return [row.to_model() for row in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load clients for {owner_email}: {e}") from e

    async def save_client(self, client: ClientRecord) -> ClientRecord:
        try:
            async with self._session_factory() as session:
                row = await session.get(ClientRow, client.id)
                if row is None:
                    row = ClientRow(id=client.id)
                    session.add(row)
                row.owner_email = client.owner_email
                row.business_email = client.business_email
                row.business_name = client.business_name
                row.contact_first_name = client.contact_first_name
                row.contact_last_name = client.contact_last_name
                row.status = client.status
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save client {client.id}: {e}") from e
        return client

    async def record_attempt(
        self,
        document_id: str,
        attempt: LinkingAttempt,
        linking_status: LinkingStatus | None,
        client_id: str | None = None,
    ) -> LinkableDocument:
        try:
            async with self._session_factory() as session:
                row = await session.get(DocumentRow, document_id, with_for_update=True)
                if row is None:
                    raise NotFoundError(document_id)
                row.linking_history = [*(row.linking_history or []), _dump_attempt(attempt)]
                if linking_status is not None:
                    row.linking_status = linking_status.value
                row.last_link_attempt_at = attempt.timestamp
                if client_id is not None:
                    row.client_id = client_id
                await session.commit()
                return row.to_model()
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to record linking attempt for {document_id}: {e}",
                extra={"document_id": document_id},
            )
            raise PersistenceError(
                f"Failed to record linking attempt for {document_id}: {e}"
            ) from e

    async def claim_escalation(self, document_id: str) -> bool:
        stmt = (
            update(DocumentRow)
            .where(DocumentRow.id == document_id)
            .where(DocumentRow.escalation_claimed_at.is_(None))
            .values(escalation_claimed_at=datetime.now(timezone.utc))
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to claim escalation for {document_id}: {e}") from e

    async def release_escalation(self, document_id: str) -> None:
        stmt = (
            update(DocumentRow)
            .where(DocumentRow.id == document_id)
            .values(escalation_claimed_at=None)
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to release escalation for {document_id}: {e}") from e
