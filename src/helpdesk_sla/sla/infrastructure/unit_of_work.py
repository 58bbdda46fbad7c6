"""
SLA Unit of Work
=================

Bundles the SLA repositories over one SQLAlchemy session so a ticket
write and its outbox events commit together. The change-log sink sits
outside the transaction and is written only after a successful commit.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk_sla.sla.application.services import IChangeLogSink, ISLAUnitOfWork
from helpdesk_sla.sla.infrastructure.repositories import (
    SQLAlchemySLAEventOutbox,
    SQLAlchemySLARuleRepository,
    SQLAlchemyTicketRepository,
)


class SQLAlchemySLAUnitOfWork(ISLAUnitOfWork):
    """
    Unit of work over an async session.

    Usage:
        async with SQLAlchemySLAUnitOfWork(session_maker, change_log) as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
            ...
            await uow.commit()
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        change_log: IChangeLogSink
    ):
        self._session_maker = session_maker
        self._session: Optional[AsyncSession] = None
        self.change_log = change_log

    async def __aenter__(self) -> "SQLAlchemySLAUnitOfWork":
        self._session = self._session_maker()
        self.tickets = SQLAlchemyTicketRepository(self._session)
        self.rules = SQLAlchemySLARuleRepository(self._session)
        self.events = SQLAlchemySLAEventOutbox(self._session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.rollback()
        finally:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("Unit of work is not active")
        return self._session

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


class SQLAlchemySLAUnitOfWorkFactory:
    """Callable handed to services that need a fresh unit of work per operation."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        change_log: IChangeLogSink
    ):
        self._session_maker = session_maker
        self._change_log = change_log

    def __call__(self) -> SQLAlchemySLAUnitOfWork:
        return SQLAlchemySLAUnitOfWork(self._session_maker, self._change_log)
