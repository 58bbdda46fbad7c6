"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID, uuid4

from pydantic import AwareDatetime, BaseModel, Field, field_validator

from helpdesk_sla.config import SLA_STATUS_LABELS
from helpdesk_sla.sla.domain import (
    BreachBehavior,
    BusinessHoursConfig,
    RuleConditions,
    SLARule,
    Ticket,
)


# ========== Type Aliases for Literals ==========
TicketStatusStr = Literal["open", "in_progress", "pending_customer", "pending_vendor", "resolved", "closed"]
SLAStatusStr = Literal["on_track", "approaching_breach", "breached", "completed"]
SLAFieldStr = Literal["priority", "category", "owning_team_id"]


# ========== Request DTOs ==========

class ExtendSLARequest(BaseModel):
    """Request model for a manual SLA extension."""
    hours: int = Field(..., description="Hours to push the due date forward")


class RefreshSLARequest(BaseModel):
    """Request model for an operator refresh."""
    restart_from_now: bool = Field(
        default=True,
        description="Restart the clock at the current time instead of the creation time"
    )


class TicketFieldEditRequest(BaseModel):
    """Notification that SLA-relevant ticket fields were edited."""
    changed_fields: List[SLAFieldStr] = Field(..., min_length=1)


class SnoozeRequest(BaseModel):
    """Request model for snoozing a ticket."""
    until: AwareDatetime = Field(..., description="When the snooze ends, with a UTC offset")


class SLARuleCreateDTO(BaseModel):
    """DTO for creating an SLA rule."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    target_resolution_minutes: int = Field(..., gt=0, description="Resolution budget in minutes")
    target_close_minutes: Optional[int] = Field(None, gt=0)
    business_hours_enabled: bool = False
    business_hours_config: Optional[BusinessHoursConfig] = None
    breach_behavior: BreachBehavior = Field(default_factory=BreachBehavior)
    is_active: bool = True
    priority: int = Field(default=0, ge=0, description="Lower values are evaluated first")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()

    def to_domain(self) -> SLARule:
        return SLARule(
            id=uuid4(),
            name=self.name,
            description=self.description,
            conditions=self.conditions,
            target_resolution_minutes=self.target_resolution_minutes,
            target_close_minutes=self.target_close_minutes,
            business_hours_enabled=self.business_hours_enabled,
            business_hours_config=self.business_hours_config,
            breach_behavior=self.breach_behavior,
            is_active=self.is_active,
            priority=self.priority,
        )


class ReorderRulesRequest(BaseModel):
    """New evaluation order; the first ID gets priority 1."""
    ordered_rule_ids: List[UUID] = Field(..., min_length=1)


# ========== Response DTOs ==========

class TicketSLAResponse(BaseModel):
    """Response model for a ticket's SLA fields."""
    ticket_id: UUID
    status: TicketStatusStr
    priority: Optional[str] = None
    category: Optional[str] = None
    owning_team_id: Optional[str] = None

    sla_rule_id: Optional[UUID] = None
    sla_status: Optional[SLAStatusStr] = None
    sla_status_label: Optional[str] = None
    sla_due_at: Optional[datetime] = None
    sla_breached_at: Optional[datetime] = None
    sla_started_at: Optional[datetime] = None
    sla_extension_count: int = 0
    remaining_seconds: Optional[float] = Field(
        None, description="Seconds until the due date (negative once overdue)"
    )
    is_snoozed: bool = False

    @classmethod
    def from_domain(cls, ticket: Ticket, now: Optional[datetime] = None) -> "TicketSLAResponse":
        remaining = None
        if ticket.sla_due_at is not None and now is not None:
            remaining = (ticket.sla_due_at - now).total_seconds()
        return cls(
            ticket_id=ticket.id,
            status=ticket.status,
            priority=ticket.priority,
            category=ticket.category,
            owning_team_id=ticket.owning_team_id,
            sla_rule_id=ticket.sla_rule_id,
            sla_status=ticket.sla_status,
            sla_status_label=SLA_STATUS_LABELS.get(ticket.sla_status) if ticket.sla_status else None,
            sla_due_at=ticket.sla_due_at,
            sla_breached_at=ticket.sla_breached_at,
            sla_started_at=ticket.sla_started_at,
            sla_extension_count=ticket.sla_extension_count,
            remaining_seconds=remaining,
            is_snoozed=ticket.is_snoozed,
        )


class SLARuleResponse(BaseModel):
    """Response model for an SLA rule."""
    id: UUID
    name: str
    description: Optional[str] = None
    conditions: dict = Field(default_factory=dict)
    target_resolution_minutes: int
    resolution_time_label: str
    target_close_minutes: Optional[int] = None
    business_hours_enabled: bool
    business_hours_config: Optional[BusinessHoursConfig] = None
    breach_behavior: BreachBehavior
    is_active: bool
    priority: int
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, rule: SLARule) -> "SLARuleResponse":
        conditions = rule.conditions
        if isinstance(conditions, RuleConditions):
            conditions = conditions.constraints()
        elif not isinstance(conditions, dict):
            conditions = {}
        return cls(
            id=rule.id,
            name=rule.name,
            description=rule.description,
            conditions=conditions,
            target_resolution_minutes=rule.target_resolution_minutes,
            resolution_time_label=rule.resolution_time_label,
            target_close_minutes=rule.target_close_minutes,
            business_hours_enabled=rule.business_hours_enabled,
            business_hours_config=rule.business_hours_config,
            breach_behavior=rule.breach_behavior,
            is_active=rule.is_active,
            priority=rule.priority,
            created_at=rule.created_at,
        )


class ScanSummaryResponse(BaseModel):
    """Counters of one breach sweep."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    batches: int
    tickets_scanned: int
    approaching: int
    breached: int
    completed: int
    conflicts: int
    failed: int
    stopped: bool
    skipped: bool


class UnsnoozeSummaryResponse(BaseModel):
    """Counters of one snooze expiry sweep."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    batches: int
    tickets_scanned: int
    unsnoozed: int
    conflicts: int
    failed: int
    stopped: bool
    skipped: bool
