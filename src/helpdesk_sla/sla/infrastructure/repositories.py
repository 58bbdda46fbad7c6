"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. All repositories share the session of the
unit of work that created them and only flush; committing is the unit of
work's job.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_sla.config import OPEN_SLA_STATUSES
from helpdesk_sla.core import ConcurrencyException, RepositoryException
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application.services import (
    ISLAEventSink,
    ISLARuleRepository,
    ITicketRepository,
)
from helpdesk_sla.sla.domain import (
    BreachBehavior,
    BusinessHoursConfig,
    RuleConditions,
    SLAEvent,
    SLARule,
    Ticket,
)
from helpdesk_sla.sla.infrastructure.models import SLAEventModel, SLARuleModel, TicketModel

logger = get_logger(__name__)


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of the ticket repository.

    Writes are conditional on the row version: ``UPDATE ... WHERE id = ?
    AND version = ?``. A miss raises ConcurrencyException.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: TicketModel) -> Ticket:
        return Ticket(
            id=model.id,
            status=model.status,
            creation_time=model.created_at,
            priority=model.priority,
            category=model.category,
            owning_team_id=model.owning_team_id,
            sla_rule_id=model.sla_rule_id,
            sla_due_at=model.sla_due_at,
            sla_breached_at=model.sla_breached_at,
            sla_status=model.sla_status,
            sla_extension_count=model.sla_extension_count,
            sla_started_at=model.sla_started_at,
            snoozed_at=model.snoozed_at,
            snoozed_until=model.snoozed_until,
            unsnoozed_at=model.unsnoozed_at,
            version=model.version,
        )

    async def get_by_id(self, ticket_id: UUID) -> Optional[Ticket]:
        """Get ticket by ID."""
        stmt = select(TicketModel).where(TicketModel.id == ticket_id)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def add(self, ticket: Ticket) -> Ticket:
        """Insert a ticket row (used by the ticket lifecycle and fixtures)."""
        model = TicketModel(
            id=ticket.id,
            status=ticket.status,
            created_at=ticket.creation_time,
            priority=ticket.priority,
            category=ticket.category,
            owning_team_id=ticket.owning_team_id,
            sla_rule_id=ticket.sla_rule_id,
            sla_due_at=ticket.sla_due_at,
            sla_breached_at=ticket.sla_breached_at,
            sla_status=ticket.sla_status,
            sla_extension_count=ticket.sla_extension_count,
            sla_started_at=ticket.sla_started_at,
            snoozed_at=ticket.snoozed_at,
            snoozed_until=ticket.snoozed_until,
            unsnoozed_at=ticket.unsnoozed_at,
            version=ticket.version,
        )
        self._session.add(model)
        await self._session.flush()
        return ticket

    async def save(self, ticket: Ticket) -> Ticket:
        """Persist SLA and snooze fields and bump the version."""
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket.id, TicketModel.version == ticket.version)
            .values(
                sla_rule_id=ticket.sla_rule_id,
                sla_due_at=ticket.sla_due_at,
                sla_breached_at=ticket.sla_breached_at,
                sla_status=ticket.sla_status,
                sla_extension_count=ticket.sla_extension_count,
                sla_started_at=ticket.sla_started_at,
                snoozed_at=ticket.snoozed_at,
                snoozed_until=ticket.snoozed_until,
                unsnoozed_at=ticket.unsnoozed_at,
                version=ticket.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            raise ConcurrencyException("Ticket", ticket.id, ticket.version)

        ticket.version += 1
        return ticket

    async def list_ids_for_breach_scan(
        self,
        after_id: Optional[UUID],
        limit: int
    ) -> List[UUID]:
        """Keyset page of open-SLA ticket IDs."""
        stmt = select(TicketModel.id).where(
            TicketModel.sla_status.in_(OPEN_SLA_STATUSES),
            TicketModel.sla_due_at.is_not(None),
        )
        if after_id is not None:
            stmt = stmt.where(TicketModel.id > after_id)
        stmt = stmt.order_by(TicketModel.id).limit(limit)

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_ids_for_unsnooze(
        self,
        expired_by: datetime,
        after_id: Optional[UUID],
        limit: int
    ) -> List[UUID]:
        """Keyset page of IDs whose snooze ended at or before ``expired_by``."""
        stmt = select(TicketModel.id).where(
            TicketModel.snoozed_until.is_not(None),
            TicketModel.snoozed_until <= expired_by,
        )
        if after_id is not None:
            stmt = stmt.where(TicketModel.id > after_id)
        stmt = stmt.order_by(TicketModel.id).limit(limit)

        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class SQLAlchemySLARuleRepository(ISLARuleRepository):
    """
    SQLAlchemy implementation of the SLA rule repository.

    Declaration order is creation time, then ID.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: SLARuleModel) -> SLARule:
        # Conditions stay raw so the matcher can skip a malformed rule
        try:
            conditions = RuleConditions.from_raw(model.conditions)
        except ValueError:
            conditions = model.conditions

        try:
            breach_behavior = BreachBehavior.model_validate(model.breach_behavior or {})
        except ValueError:
            logger.warning(
                "Invalid breach behaviour on SLA rule, using defaults",
                extra={"rule_id": str(model.id)}
            )
            breach_behavior = BreachBehavior()

        try:
            calendar = BusinessHoursConfig.from_raw(model.business_hours_config)
        except ValueError:
            logger.warning(
                "Invalid business hours on SLA rule, using calendar time",
                extra={"rule_id": str(model.id)}
            )
            calendar = None

        return SLARule(
            id=model.id,
            name=model.name,
            description=model.description,
            conditions=conditions,
            target_resolution_minutes=model.target_resolution_minutes,
            target_close_minutes=model.target_close_minutes,
            business_hours_enabled=model.business_hours_enabled,
            business_hours_config=calendar,
            breach_behavior=breach_behavior,
            is_active=model.is_active,
            priority=model.priority,
            created_at=model.created_at,
        )

    def _ordered(self):
        return select(SLARuleModel).order_by(
            SLARuleModel.priority, SLARuleModel.created_at, SLARuleModel.id
        )

    async def active_rules(self) -> List[SLARule]:
        stmt = self._ordered().where(SLARuleModel.is_active.is_(True))
        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def list_all(self) -> List[SLARule]:
        result = await self._session.execute(self._ordered())
        return [self._to_domain(m) for m in result.scalars().all()]

    async def get_by_id(self, rule_id: UUID) -> Optional[SLARule]:
        """Get rule by ID."""
        model = await self._session.get(SLARuleModel, rule_id)
        return self._to_domain(model) if model else None

    async def create(self, rule: SLARule) -> SLARule:
        """Create new rule."""
        conditions = rule.conditions
        if isinstance(conditions, RuleConditions):
            conditions = conditions.constraints()

        model = SLARuleModel(
            id=rule.id,
            name=rule.name,
            description=rule.description,
            conditions=conditions,
            target_resolution_minutes=rule.target_resolution_minutes,
            target_close_minutes=rule.target_close_minutes,
            business_hours_enabled=rule.business_hours_enabled,
            business_hours_config=(
                rule.business_hours_config.model_dump(mode="json")
                if rule.business_hours_config else None
            ),
            breach_behavior=rule.breach_behavior.model_dump(mode="json"),
            is_active=rule.is_active,
            priority=rule.priority,
        )
        if rule.created_at is not None:
            model.created_at = rule.created_at

        self._session.add(model)
        await self._session.flush()

        rule.created_at = model.created_at
        return rule

    async def set_priorities(self, priorities: Dict[UUID, int]) -> None:
        for rule_id, priority in priorities.items():
            model = await self._session.get(SLARuleModel, rule_id)
            if model is None:
                raise RepositoryException(f"SLA rule {rule_id} not found")
            model.priority = priority
        await self._session.flush()


class SQLAlchemySLAEventOutbox(ISLAEventSink):
    """
    Event sink that writes to the ``sla_events`` outbox table.

    Events become visible to the notification relay only when the
    surrounding transaction commits.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _append(self, event: SLAEvent) -> None:
        self._session.add(SLAEventModel(
            id=event.id,
            ticket_id=event.ticket_id,
            sla_rule_id=event.sla_rule_id,
            event_type=event.event_type,
            sla_status=event.sla_status,
            due_at=event.due_at,
            occurred_at=event.occurred_at,
            dispatched=event.dispatched,
            dispatched_at=event.dispatched_at,
        ))
        await self._session.flush()

    async def on_sla_approaching(self, event: SLAEvent) -> None:
        await self._append(event)

    async def on_sla_breached(self, event: SLAEvent) -> None:
        await self._append(event)

    async def get_pending(self, limit: int = 100) -> List[SLAEvent]:
        """Undispatched events, oldest first."""
        stmt = (
            select(SLAEventModel)
            .where(SLAEventModel.dispatched.is_(False))
            .order_by(SLAEventModel.occurred_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [
            SLAEvent(
                id=model.id,
                ticket_id=model.ticket_id,
                sla_rule_id=model.sla_rule_id,
                event_type=model.event_type,
                sla_status=model.sla_status,
                due_at=model.due_at,
                occurred_at=model.occurred_at,
                dispatched=model.dispatched,
                dispatched_at=model.dispatched_at,
            )
            for model in result.scalars().all()
        ]

    async def mark_dispatched(self, event_id: UUID, dispatched_at: datetime) -> None:
        """Mark an outbox event as delivered."""
        model = await self._session.get(SLAEventModel, event_id)
        if model is None:
            raise RepositoryException(f"SLA event {event_id} not found")

        model.dispatched = True
        model.dispatched_at = dispatched_at
        await self._session.flush()
