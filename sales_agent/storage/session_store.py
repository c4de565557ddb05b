"""
Session store adapter: sessions, transcripts, product exposure and customer memory.

Every public method runs in its own transaction. Database failures are
re-raised as PersistenceError and never swallowed, because a turn cannot
be trusted once its transcript stops being durable.

Expired sessions are purged on access: messages first, then product
exposure history, then the session row, so foreign keys are respected.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sales_agent.config import settings
from sales_agent.schemas.conversation_schema import ChatMessage, Role, ToolCall
from sales_agent.schemas.session_schema import CustomerMemoryRecord, ProductExposure, SessionInfo
from sales_agent.storage.models import (
    AgentMessage,
    AgentSession,
    CustomerMemory,
    SessionProductHistory,
    utcnow,
)
from sales_agent.utils import normalize_phone, phone_from_session_id

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when the backing database rejects or fails an operation."""


class SessionStore:
    """Async persistence for everything the orchestrator remembers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
        session_ttl_days: int = settings.orchestrator.session_ttl_days,
        blocked_ttl_days: int = settings.orchestrator.blocked_session_ttl_days,
        memory_ttl_days: int = settings.orchestrator.memory_ttl_days,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._session_ttl = timedelta(days=session_ttl_days)
        self._blocked_ttl = timedelta(days=blocked_ttl_days)
        self._memory_ttl = timedelta(days=memory_ttl_days)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    yield db
        except SQLAlchemyError as exc:
            raise PersistenceError(f"{type(exc).__name__}: {exc}") from exc

    # ------------------------------------------------------------------ #
    #  Sessions
    # ------------------------------------------------------------------ #

    async def get_or_create_session(
        self,
        session_id: str,
        customer_phone: Optional[str] = None,
        remote_jid: Optional[str] = None,
    ) -> SessionInfo:
        """
        Resolve the session for an inbound turn.

        Order: load by id (purging it if expired), then reuse an active
        session bound to the same remote_jid when no phone is given, then
        create. Phone and remote_jid are only ever filled in, never replaced.
        """
        now = self._clock()
        phone = normalize_phone(customer_phone) if customer_phone else None
        phone = phone or None

        async with self._transaction() as db:
            row = await db.get(AgentSession, session_id)
            if row is not None and row.expires_at <= now:
                logger.info("Session %s expired at %s, purging", session_id, row.expires_at)
                await self._purge(db, session_id)
                row = None

        if row is None and phone is None and remote_jid:
            existing = await self._find_active_by_remote_jid(remote_jid, now)
            if existing is not None:
                logger.info("Reusing session %s for remote id %s", existing.id, remote_jid)
                return existing

        async with self._transaction() as db:
            row = await db.get(AgentSession, session_id)
            if row is None:
                row = AgentSession(
                    id=session_id,
                    customer_phone=phone or phone_from_session_id(session_id),
                    remote_jid=remote_jid,
                    is_blocked=False,
                    expires_at=now + self._session_ttl,
                    created_at=now,
                )
                db.add(row)
                logger.info("Created session %s (phone=%s)", session_id, row.customer_phone)
            else:
                if phone and not row.customer_phone:
                    row.customer_phone = phone
                if remote_jid and not row.remote_jid:
                    row.remote_jid = remote_jid
            await db.flush()
            return SessionInfo.model_validate(row)

    async def _find_active_by_remote_jid(
        self, remote_jid: str, now: datetime
    ) -> Optional[SessionInfo]:
        async with self._transaction() as db:
            result = await db.execute(
                select(AgentSession)
                .where(AgentSession.remote_jid == remote_jid, AgentSession.expires_at > now)
                .order_by(AgentSession.created_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return SessionInfo.model_validate(row) if row is not None else None

    async def _purge(self, db: AsyncSession, session_id: str) -> None:
        await db.execute(delete(AgentMessage).where(AgentMessage.session_id == session_id))
        await db.execute(
            delete(SessionProductHistory).where(SessionProductHistory.session_id == session_id)
        )
        await db.execute(delete(AgentSession).where(AgentSession.id == session_id))

    async def clear_session(self, session_id: str) -> None:
        """Delete a session and everything that depends on it."""
        async with self._transaction() as db:
            await self._purge(db, session_id)
        logger.info("Session %s cleared", session_id)

    async def block_session(self, session_id: str) -> bool:
        """Hand the session to a human: the agent stops answering until unblocked."""
        async with self._transaction() as db:
            result = await db.execute(
                update(AgentSession)
                .where(AgentSession.id == session_id)
                .values(is_blocked=True, expires_at=self._clock() + self._blocked_ttl)
            )
            updated = result.rowcount
        if updated == 0:
            logger.warning("Cannot block unknown session %s", session_id)
            return False
        logger.info("Session %s blocked", session_id)
        return True

    async def unblock_session(self, session_id: str) -> bool:
        async with self._transaction() as db:
            result = await db.execute(
                update(AgentSession).where(AgentSession.id == session_id).values(is_blocked=False)
            )
            updated = result.rowcount
        return updated > 0

    # ------------------------------------------------------------------ #
    #  Transcript
    # ------------------------------------------------------------------ #

    async def append_message(self, session_id: str, message: ChatMessage) -> None:
        async with self._transaction() as db:
            db.add(AgentMessage(
                session_id=session_id,
                role=message.role.value,
                content=message.content,
                tool_call_id=message.tool_call_id,
                tool_calls=[call.to_openai() for call in message.tool_calls] or None,
                name=message.name,
                created_at=message.created_at or self._clock(),
            ))

    async def get_history(self, session_id: str) -> list[ChatMessage]:
        """Return the full transcript in creation order."""
        async with self._transaction() as db:
            result = await db.execute(
                select(AgentMessage)
                .where(AgentMessage.session_id == session_id)
                .order_by(AgentMessage.created_at, AgentMessage.id)
            )
            rows = result.scalars().all()
        return [
            ChatMessage(
                role=Role(row.role),
                content=row.content or "",
                tool_call_id=row.tool_call_id,
                tool_calls=[ToolCall.from_openai(call) for call in row.tool_calls or []],
                name=row.name,
                created_at=row.created_at,
            )
            for row in rows
        ]

    # ------------------------------------------------------------------ #
    #  Product exposure
    # ------------------------------------------------------------------ #

    async def record_product_sent(self, session_id: str, product_id: str) -> None:
        """Count one more exposure of a product; safe under duplicate inserts."""
        now = self._clock()
        try:
            async with self._transaction() as db:
                if await self._bump_exposure(db, session_id, product_id, now):
                    return
                db.add(SessionProductHistory(
                    session_id=session_id, product_id=product_id, sent_count=1, last_sent_at=now,
                ))
        except PersistenceError as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            # A concurrent insert won; the row exists now.
            async with self._transaction() as db:
                await self._bump_exposure(db, session_id, product_id, now)

    @staticmethod
    async def _bump_exposure(
        db: AsyncSession, session_id: str, product_id: str, now: datetime
    ) -> bool:
        result = await db.execute(
            update(SessionProductHistory)
            .where(
                SessionProductHistory.session_id == session_id,
                SessionProductHistory.product_id == product_id,
            )
            .values(sent_count=SessionProductHistory.sent_count + 1, last_sent_at=now)
        )
        return result.rowcount > 0

    async def get_product_exposure(self, session_id: str) -> list[ProductExposure]:
        async with self._transaction() as db:
            result = await db.execute(
                select(SessionProductHistory)
                .where(SessionProductHistory.session_id == session_id)
                .order_by(SessionProductHistory.id)
            )
            return [ProductExposure.model_validate(row) for row in result.scalars().all()]

    async def get_sent_product_ids(self, session_id: str) -> list[str]:
        return [record.product_id for record in await self.get_product_exposure(session_id)]

    # ------------------------------------------------------------------ #
    #  Customer memory
    # ------------------------------------------------------------------ #

    async def get_customer_memory(self, customer_phone: str) -> Optional[CustomerMemoryRecord]:
        phone = normalize_phone(customer_phone)
        async with self._transaction() as db:
            row = await db.get(CustomerMemory, phone)
            if row is None:
                return None
            if row.expires_at <= self._clock():
                logger.info("Customer memory for %s expired, deleting", phone)
                await db.delete(row)
                return None
            return CustomerMemoryRecord.model_validate(row)

    async def save_customer_memory(self, customer_phone: str, summary: str) -> CustomerMemoryRecord:
        """Create or overwrite the summary for a customer and restart its expiry."""
        phone = normalize_phone(customer_phone)
        now = self._clock()
        async with self._transaction() as db:
            row = await db.get(CustomerMemory, phone)
            if row is None:
                row = CustomerMemory(customer_phone=phone)
                db.add(row)
            row.summary = summary
            row.expires_at = now + self._memory_ttl
            row.updated_at = now
            await db.flush()
            logger.info("Customer memory saved for %s", phone)
            return CustomerMemoryRecord.model_validate(row)
