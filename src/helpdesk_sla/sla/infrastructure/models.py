"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk_sla.infrastructure.database import Base
from helpdesk_sla.config import TicketStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketModel(Base):
    """
    Database model for the SLA view of a ticket.

    Maps to the 'tickets' table. ``version`` guards SLA writes against
    concurrent modification.
    """
    __tablename__ = "tickets"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Matchable attributes
    priority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    owning_team_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # SLA tracking
    sla_rule_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    sla_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_breached_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    sla_extension_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sla_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Snooze markers
    snoozed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    snoozed_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    unsnoozed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_tickets_sla_scan", "sla_status", "id"),
    )


class SLARuleModel(Base):
    """
    Database model for SLA rules.

    Maps to the 'sla_rules' table. Conditions, business hours and breach
    behaviour are stored as JSON documents.
    """
    __tablename__ = "sla_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    conditions: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    target_resolution_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    target_close_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    business_hours_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    business_hours_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    breach_behavior: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SLAEventModel(Base):
    """
    Outbox of SLA events awaiting delivery to the notification subsystem.

    Maps to the 'sla_events' table. Rows are written in the same transaction
    as the ticket transition that produced them.
    """
    __tablename__ = "sla_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    sla_rule_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    sla_status: Mapped[str] = mapped_column(String(50), nullable=False)
    due_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Delivery tracking
    dispatched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
