"""
SLA Domain Entities
====================

Pure Python domain entities for the SLA deadline engine.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional
from uuid import UUID, uuid4

from helpdesk_sla.config import SLAStatus, FINISHED_STATUSES
from helpdesk_sla.core import ClosedTicketSLAException
from helpdesk_sla.sla.domain.value_objects import (
    BreachBehavior,
    BusinessHoursCalculator,
    BusinessHoursConfig,
)


@dataclass(frozen=True)
class Actor:
    """The staff member (or system job) performing an SLA operation."""
    id: str
    roles: FrozenSet[str] = frozenset()


SYSTEM_ACTOR = Actor(id="system", roles=frozenset({"system"}))


@dataclass
class SLARule:
    """
    Configuration defining a service level expectation.

    Rules are evaluated in ``priority`` order (lower first); the first rule
    whose conditions match a ticket wins. ``conditions`` is normally a
    ``RuleConditions`` but may still hold the raw stored value; the matcher
    parses it and skips the rule if it is malformed.
    """
    id: UUID
    name: str
    target_resolution_minutes: int
    conditions: Any = None
    description: Optional[str] = None
    target_close_minutes: Optional[int] = None
    business_hours_enabled: bool = False
    business_hours_config: Optional[BusinessHoursConfig] = None
    breach_behavior: BreachBehavior = field(default_factory=BreachBehavior)
    is_active: bool = True
    priority: int = 0
    created_at: Optional[datetime] = None

    @property
    def calendar(self) -> Optional[BusinessHoursConfig]:
        """Business hours used for due dates; None means calendar time."""
        if not self.business_hours_enabled:
            return None
        return self.business_hours_config

    @property
    def resolution_time_label(self) -> str:
        return BusinessHoursCalculator.format_duration(self.target_resolution_minutes)


@dataclass(frozen=True)
class SLASnapshot:
    """The SLA fields of a ticket at one point in time."""
    sla_rule_id: Optional[UUID]
    sla_due_at: Optional[datetime]
    sla_status: Optional[str]
    sla_breached_at: Optional[datetime]
    sla_extension_count: int


@dataclass
class Ticket:
    """
    Ticket entity as seen by the SLA engine.

    Only the attributes the engine reads or writes are modelled. Snooze
    markers are owned by the ticket lifecycle and only read here.
    """

    # Core attributes
    id: UUID
    status: str
    creation_time: datetime

    # Matchable attributes
    priority: Optional[str] = None
    category: Optional[str] = None
    owning_team_id: Optional[str] = None

    # SLA tracking
    sla_rule_id: Optional[UUID] = None
    sla_due_at: Optional[datetime] = None
    sla_breached_at: Optional[datetime] = None
    sla_status: Optional[str] = None
    sla_extension_count: int = 0
    sla_started_at: Optional[datetime] = None

    # Snooze lifecycle markers
    snoozed_at: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    unsnoozed_at: Optional[datetime] = None

    # Optimistic concurrency
    version: int = 1

    def __post_init__(self):
        """Validate ticket on initialization."""
        if self.sla_extension_count < 0:
            raise ValueError("sla_extension_count cannot be negative")

    @property
    def is_finished(self) -> bool:
        """Resolved or closed: SLA fields are frozen."""
        return self.status in FINISHED_STATUSES

    @property
    def is_snoozed(self) -> bool:
        return self.snoozed_until is not None

    @property
    def has_open_sla(self) -> bool:
        return self.sla_due_at is not None and self.sla_status in (
            SLAStatus.ON_TRACK, SLAStatus.APPROACHING_BREACH
        )

    @property
    def clock_started_at(self) -> datetime:
        return self.sla_started_at or self.creation_time

    def ensure_sla_mutable(self, action: str = "modify SLA on") -> None:
        """Raise if the ticket's SLA fields may no longer change."""
        if self.is_finished:
            raise ClosedTicketSLAException(self.id, action)

    def assign_rule(self, rule: SLARule, due_at: datetime, started_at: datetime) -> None:
        self.sla_rule_id = rule.id
        self.sla_due_at = due_at
        self.sla_started_at = started_at
        if self.sla_status is None:
            self.sla_status = SLAStatus.ON_TRACK

    def clear_rule(self) -> None:
        """No rule applies any more; a completed status is kept."""
        self.sla_rule_id = None
        self.sla_due_at = None
        self.sla_started_at = None
        if self.sla_status != SLAStatus.COMPLETED:
            self.sla_status = None

    def sla_snapshot(self) -> SLASnapshot:
        return SLASnapshot(
            sla_rule_id=self.sla_rule_id,
            sla_due_at=self.sla_due_at,
            sla_status=self.sla_status,
            sla_breached_at=self.sla_breached_at,
            sla_extension_count=self.sla_extension_count,
        )

    def mark_snoozed(self, snoozed_at: datetime, until: datetime) -> None:
        self.snoozed_at = snoozed_at
        self.snoozed_until = until

    def mark_unsnoozed(self, timestamp: datetime) -> None:
        self.snoozed_at = None
        self.snoozed_until = None
        self.unsnoozed_at = timestamp


@dataclass
class SLAEvent:
    """
    Domain event handed to the notification subsystem.

    Raised when a ticket enters APPROACHING_BREACH or BREACHED.
    """
    ticket_id: UUID
    event_type: str
    sla_status: str
    due_at: datetime
    occurred_at: datetime
    sla_rule_id: Optional[UUID] = None
    id: UUID = field(default_factory=uuid4)

    # Delivery tracking
    dispatched: bool = False
    dispatched_at: Optional[datetime] = None


@dataclass(frozen=True)
class SLATransition:
    """A compliance status change produced by the state machine."""
    ticket_id: UUID
    from_status: Optional[str]
    to_status: str
    occurred_at: datetime
    event: Optional[SLAEvent] = None


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@dataclass
class SLAChangeLogEntry:
    """
    Before/after record of an SLA mutation for the audit trail.

    ``field_changes`` maps field name to ``{"old": ..., "new": ...}`` with
    values rendered as strings (empty string for None).
    """
    ticket_id: UUID
    message: str
    field_changes: Dict[str, Dict[str, str]] = field(default_factory=dict)
    actor_id: Optional[str] = None
    recorded_at: Optional[datetime] = None

    @classmethod
    def between(
        cls,
        ticket_id: UUID,
        before: SLASnapshot,
        after: SLASnapshot,
        message: str,
        actor_id: Optional[str] = None,
        recorded_at: Optional[datetime] = None
    ) -> "SLAChangeLogEntry":
        changes = {}
        for name in SLASnapshot.__dataclass_fields__:
            old, new = getattr(before, name), getattr(after, name)
            if old != new:
                changes[name] = {"old": _format_value(old), "new": _format_value(new)}
        return cls(
            ticket_id=ticket_id,
            message=message,
            field_changes=changes,
            actor_id=actor_id,
            recorded_at=recorded_at,
        )

    @property
    def has_changes(self) -> bool:
        return bool(self.field_changes)
