"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories, clock, sinks),
  not concrete implementations

Every ticket operation runs inside one unit of work: read, mutate, write
with a version check, hand over events, commit. The change-log entry is
recorded only once the commit has succeeded.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from helpdesk_sla.config import SLAStatus, SLAEventType, SLA_STATUS_LABELS
from helpdesk_sla.core import (
    DomainException,
    ExtensionLimitExceededException,
    ResourceNotFoundException,
    ValidationException,
)
from helpdesk_sla.sla.domain import (
    Actor,
    SYSTEM_ACTOR,
    BusinessHoursCalculator,
    ComplianceStateMachine,
    OrganizationSLASettings,
    RuleMatcher,
    SLAChangeLogEntry,
    SLAEvent,
    SLARule,
    Ticket,
)


# ========== Collaborator Interfaces (Dependency Inversion) ==========

class IClock(ABC):
    """Source of the current instant."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time."""


class ISLARuleRepository(ABC):
    """Interface for SLA rule data access."""

    @abstractmethod
    async def active_rules(self) -> List[SLARule]:
        """Active rules ordered by priority, then declaration order."""

    @abstractmethod
    async def list_all(self) -> List[SLARule]:
        """All rules, active or not, in evaluation order."""

    @abstractmethod
    async def get_by_id(self, rule_id: UUID) -> Optional[SLARule]:
        """Get rule by ID."""

    @abstractmethod
    async def create(self, rule: SLARule) -> SLARule:
        """Create new rule."""

    @abstractmethod
    async def set_priorities(self, priorities: Dict[UUID, int]) -> None:
        """Overwrite the priority of each listed rule."""


class ITicketRepository(ABC):
    """Interface for reading and writing a ticket's SLA fields."""

    @abstractmethod
    async def get_by_id(self, ticket_id: UUID) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def save(self, ticket: Ticket) -> Ticket:
        """
        Persist SLA and snooze fields.

        Raises:
            ConcurrencyException: If the stored version differs from
                ``ticket.version``
        """

    @abstractmethod
    async def list_ids_for_breach_scan(
        self,
        after_id: Optional[UUID],
        limit: int
    ) -> List[UUID]:
        """IDs of tickets with an open compliance state and a due date, ordered by ID."""

    @abstractmethod
    async def list_ids_for_unsnooze(
        self,
        expired_by: datetime,
        after_id: Optional[UUID],
        limit: int
    ) -> List[UUID]:
        """IDs of snoozed tickets whose snooze ended at or before ``expired_by``, ordered by ID."""


class ISLAEventSink(ABC):
    """Receives events for the notification subsystem."""

    @abstractmethod
    async def on_sla_approaching(self, event: SLAEvent) -> None:
        """Ticket entered APPROACHING_BREACH."""

    @abstractmethod
    async def on_sla_breached(self, event: SLAEvent) -> None:
        """Ticket entered BREACHED."""


class IChangeLogSink(ABC):
    """Receives before/after descriptions of SLA mutations."""

    @abstractmethod
    async def record(self, entry: SLAChangeLogEntry) -> None:
        """Record a change-log entry."""


class IOrganizationSettingsProvider(ABC):
    """Interface for organisation SLA settings access."""

    @abstractmethod
    def get_settings(self) -> OrganizationSLASettings:
        """Get current organisation settings."""


class IPermissionChecker(ABC):
    """Capability lookup for actors."""

    @abstractmethod
    def has_manage_tickets_capability(self, actor: Actor) -> bool:
        """Whether ``actor`` may manage tickets without extension caps."""


class ISLAUnitOfWork(ABC):
    """
    One transaction over the SLA repositories and sinks.

    Leaving the context without ``commit()`` rolls back.
    """

    tickets: ITicketRepository
    rules: ISLARuleRepository
    events: ISLAEventSink
    change_log: IChangeLogSink

    @abstractmethod
    async def commit(self) -> None:
        """Commit the transaction."""

    @abstractmethod
    async def rollback(self) -> None:
        """Roll back the transaction."""

    async def __aenter__(self) -> "ISLAUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.rollback()


UnitOfWorkFactory = Callable[[], ISLAUnitOfWork]


async def publish_event(sink: ISLAEventSink, event: SLAEvent) -> None:
    """Route an event to the matching sink method."""
    if event.event_type == SLAEventType.BREACHED:
        await sink.on_sla_breached(event)
    elif event.event_type == SLAEventType.APPROACHING:
        await sink.on_sla_approaching(event)
    else:
        raise ValueError(f"Unknown SLA event type: {event.event_type}")


def _format_due(value: Optional[datetime]) -> str:
    return value.strftime("%b %d, %Y %H:%M") if value else "None"


def _status_label(value: Optional[str]) -> str:
    return SLA_STATUS_LABELS.get(value, "None") if value else "None"


# ========== Engine Services ==========

class DueDateEngine:
    """
    Assigns the applicable rule and due date to a ticket.

    Combines RuleMatcher (which rule) with BusinessHoursCalculator (when
    due). Breach marks and extension counts are left to the state machine
    and the extension guard.
    """

    def __init__(
        self,
        rule_repository: ISLARuleRepository,
        clock: IClock,
        state_machine: Optional[ComplianceStateMachine] = None
    ):
        self._rules = rule_repository
        self._clock = clock
        self._state_machine = state_machine or ComplianceStateMachine()

    @staticmethod
    def compute_due(rule: SLARule, start: datetime) -> datetime:
        return BusinessHoursCalculator.calculate_due(
            start, rule.target_resolution_minutes, rule.calendar
        )

    async def match(self, ticket: Ticket) -> Optional[SLARule]:
        rules = await self._rules.active_rules()
        return RuleMatcher.match(ticket, rules)

    async def evaluate_and_assign(
        self,
        ticket: Ticket,
        start_from: Optional[datetime] = None
    ) -> Optional[SLARule]:
        """
        Match a rule and compute the due date.

        Args:
            ticket: Ticket to update in place
            start_from: Clock start; defaults to the ticket's creation time

        Returns:
            The assigned rule, or None when no rule matched (rule, due date
            and non-completed status are then cleared)
        """
        ticket.ensure_sla_mutable("assign SLA to")
        rule = await self.match(ticket)
        self._apply(ticket, rule, start_from or ticket.creation_time)
        return rule

    async def reevaluate_after_edit(self, ticket: Ticket) -> Optional[SLARule]:
        """
        Re-match after a priority, category or team edit.

        When the same rule still applies the due date is left untouched so
        unrelated edits never restart the clock.
        """
        ticket.ensure_sla_mutable()
        rule = await self.match(ticket)
        if rule is not None and rule.id == ticket.sla_rule_id and ticket.sla_due_at is not None:
            return rule
        self._apply(ticket, rule, ticket.creation_time)
        return rule

    async def refresh(self, ticket: Ticket, restart_from_now: bool = True) -> Optional[SLARule]:
        """
        Operator-triggered re-evaluation.

        With ``restart_from_now`` the clock starts at the current instant,
        the status returns to ON_TRACK and any breach mark is cleared.
        Otherwise the due date is recomputed from the creation time.
        """
        ticket.ensure_sla_mutable("refresh SLA on")
        rule = await self.match(ticket)

        if rule is not None and restart_from_now:
            now = self._clock.now()
            self._apply(ticket, rule, now)
            self._state_machine.reset_to_on_track(ticket, now)
        else:
            self._apply(ticket, rule, ticket.creation_time)
        return rule

    def _apply(self, ticket: Ticket, rule: Optional[SLARule], start: datetime) -> None:
        if rule is None:
            ticket.clear_rule()
            return
        ticket.assign_rule(rule, self.compute_due(rule, start), start)


class ExtensionGuard:
    """
    Validates and applies manual due-date extensions.

    Actors with the manage-tickets capability are unlimited; everyone else
    is capped by the organisation's extension count and per-extension hours.
    Every check runs before the ticket is touched.
    """

    def __init__(
        self,
        clock: IClock,
        settings_provider: IOrganizationSettingsProvider,
        permission_checker: IPermissionChecker,
        state_machine: Optional[ComplianceStateMachine] = None
    ):
        self._clock = clock
        self._settings_provider = settings_provider
        self._permissions = permission_checker
        self._state_machine = state_machine or ComplianceStateMachine()

    def extend(self, ticket: Ticket, hours: int, actor: Actor) -> datetime:
        """
        Push the due date ``hours`` forward.

        Returns:
            The new due date

        Raises:
            ClosedTicketSLAException: Ticket is resolved or closed
            ValidationException: ``hours`` is not positive
            ExtensionLimitExceededException: Count or hours cap exceeded
            DomainException: No due date to extend, or the result is not in
                the future
        """
        ticket.ensure_sla_mutable("extend SLA on")

        if hours <= 0:
            raise ValidationException("Extension hours must be greater than zero.")

        if ticket.sla_due_at is None:
            raise DomainException(
                "Ticket has no SLA due date to extend.",
                {"ticket_id": str(ticket.id)}
            )

        if not self._permissions.has_manage_tickets_capability(actor):
            self._check_limits(ticket, hours, self._settings_provider.get_settings())

        now = self._clock.now()
        new_due_at = ticket.sla_due_at + timedelta(hours=hours)
        if new_due_at <= now:
            raise DomainException("Extension would result in a due date in the past.")

        ticket.sla_due_at = new_due_at
        ticket.sla_extension_count += 1

        if ticket.sla_status in (SLAStatus.BREACHED, SLAStatus.APPROACHING_BREACH):
            self._state_machine.reset_to_on_track(ticket, now)
        elif ticket.sla_status is None:
            ticket.sla_status = SLAStatus.ON_TRACK

        return new_due_at

    @staticmethod
    def _check_limits(ticket: Ticket, hours: int, settings: OrganizationSLASettings) -> None:
        if ticket.sla_extension_count >= settings.max_extensions:
            raise ExtensionLimitExceededException(
                f"Maximum extensions ({settings.max_extensions}) reached. "
                "Contact a manager to extend further.",
                limit=settings.max_extensions,
                requested=ticket.sla_extension_count + 1
            )
        if hours > settings.max_extension_hours:
            raise ExtensionLimitExceededException(
                f"Extension cannot exceed {settings.max_extension_hours} hours. "
                f"You requested {hours} hours.",
                limit=settings.max_extension_hours,
                requested=hours
            )


class SnoozeClockAdjuster:
    """
    Pauses the SLA clock for the time a ticket spent snoozed.

    Pure forward shift of the due date: no rule re-match, no status change.
    """

    def __init__(self, settings_provider: IOrganizationSettingsProvider):
        self._settings_provider = settings_provider

    def adjust_on_unsnooze(self, ticket: Ticket, unsnoozed_at: datetime) -> Optional[timedelta]:
        """
        Shift the due date by ``unsnoozed_at - snoozed_at``.

        Returns:
            The applied shift, or None when nothing was shifted
        """
        if not self._settings_provider.get_settings().pause_sla_on_snooze:
            return None
        if ticket.sla_due_at is None or ticket.snoozed_at is None or ticket.is_finished:
            return None

        duration = unsnoozed_at - ticket.snoozed_at
        if duration <= timedelta(0):
            return None

        ticket.sla_due_at = ticket.sla_due_at + duration
        return duration

    def unsnooze(self, ticket: Ticket, unsnoozed_at: datetime) -> Optional[timedelta]:
        """Apply the pause shift, then clear the snooze markers."""
        shift = self.adjust_on_unsnooze(ticket, unsnoozed_at)
        ticket.mark_unsnoozed(unsnoozed_at)
        return shift


# ========== Use-Case Services ==========

TicketOperation = Callable[[ISLAUnitOfWork, Ticket], Awaitable[Tuple[str, Iterable[SLAEvent]]]]


class SLATicketService:
    """
    Ticket-editing use cases that touch SLA state.

    Each call is one atomic read-modify-write of a single ticket.
    """

    SLA_RELEVANT_FIELDS = frozenset({"priority", "category", "owning_team_id"})

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        clock: IClock,
        settings_provider: IOrganizationSettingsProvider,
        permission_checker: IPermissionChecker
    ):
        self._uow_factory = uow_factory
        self._clock = clock
        self._settings_provider = settings_provider
        self._permission_checker = permission_checker

    def _state_machine(self) -> ComplianceStateMachine:
        return ComplianceStateMachine(self._settings_provider.get_settings().approaching_breach)

    def _engine(self, uow: ISLAUnitOfWork) -> DueDateEngine:
        return DueDateEngine(uow.rules, self._clock, self._state_machine())

    async def get_ticket(self, ticket_id: UUID) -> Ticket:
        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", str(ticket_id))
        return ticket

    async def assign_on_create(self, ticket_id: UUID, actor: Actor = SYSTEM_ACTOR) -> Ticket:
        """Populate SLA fields for a newly created ticket."""

        async def operation(uow: ISLAUnitOfWork, ticket: Ticket):
            rule = await self._engine(uow).evaluate_and_assign(ticket)
            return (f"SLA rule {rule.name} applied" if rule else "No SLA rule applies"), ()

        return await self._mutate(ticket_id, actor, operation)

    async def handle_field_edit(
        self,
        ticket_id: UUID,
        changed_fields: Iterable[str],
        actor: Actor = SYSTEM_ACTOR
    ) -> Ticket:
        """Re-evaluate after an edit; edits to other fields are ignored."""
        relevant = sorted(self.SLA_RELEVANT_FIELDS.intersection(changed_fields))
        if not relevant:
            return await self.get_ticket(ticket_id)

        async def operation(uow: ISLAUnitOfWork, ticket: Ticket):
            await self._engine(uow).reevaluate_after_edit(ticket)
            return f"SLA re-evaluated after {', '.join(relevant)} change", ()

        return await self._mutate(ticket_id, actor, operation)

    async def refresh(
        self,
        ticket_id: UUID,
        restart_from_now: bool = True,
        actor: Actor = SYSTEM_ACTOR
    ) -> Ticket:
        """Operator refresh; always leaves a change-log entry."""

        async def operation(uow: ISLAUnitOfWork, ticket: Ticket):
            old_rule_id = ticket.sla_rule_id
            old_due_at = ticket.sla_due_at
            old_status = ticket.sla_status

            rule = await self._engine(uow).refresh(ticket, restart_from_now)

            parts = []
            if old_rule_id != ticket.sla_rule_id:
                old_rule = await uow.rules.get_by_id(old_rule_id) if old_rule_id else None
                old_name = (old_rule.name if old_rule else "Unknown") if old_rule_id else "None"
                new_name = rule.name if rule else "None"
                parts.append(f"SLA rule changed from {old_name} to {new_name}")
            if old_due_at != ticket.sla_due_at:
                parts.append(
                    f"SLA due date changed from {_format_due(old_due_at)} to {_format_due(ticket.sla_due_at)}"
                )
            if old_status != ticket.sla_status:
                parts.append(
                    f"SLA status changed from {_status_label(old_status)} to {_status_label(ticket.sla_status)}"
                )

            message = "SLA restarted from current time" if restart_from_now else "SLA re-evaluated"
            if parts:
                message += ": " + "; ".join(parts)
            return message, ()

        return await self._mutate(ticket_id, actor, operation, always_log=True)

    async def extend(self, ticket_id: UUID, hours: int, actor: Actor) -> Ticket:
        """Manual extension through the ExtensionGuard."""
        guard = ExtensionGuard(
            self._clock, self._settings_provider, self._permission_checker, self._state_machine()
        )

        async def operation(uow: ISLAUnitOfWork, ticket: Ticket):
            old_due_at = ticket.sla_due_at
            guard.extend(ticket, hours, actor)
            plural = "s" if hours != 1 else ""
            return (
                f"Extended SLA by {hours} hour{plural}. Due date changed from "
                f"{_format_due(old_due_at)} to {_format_due(ticket.sla_due_at)}."
            ), ()

        return await self._mutate(ticket_id, actor, operation)

    async def complete(self, ticket_id: UUID, actor: Actor = SYSTEM_ACTOR) -> Ticket:
        """Called once the ticket has been resolved or closed."""

        async def operation(uow: ISLAUnitOfWork, ticket: Ticket):
            if not ticket.is_finished:
                raise DomainException(
                    "Cannot complete SLA on an open ticket.",
                    {"ticket_id": str(ticket.id), "status": ticket.status}
                )
            self._state_machine().complete(ticket, self._clock.now())
            return "SLA completed", ()

        return await self._mutate(ticket_id, actor, operation)

    async def reopen(self, ticket_id: UUID, actor: Actor = SYSTEM_ACTOR) -> Ticket:
        """Called once a resolved/closed ticket has been reopened."""

        async def operation(uow: ISLAUnitOfWork, ticket: Ticket):
            ticket.ensure_sla_mutable("reopen SLA on")
            self._state_machine().reopen(ticket, self._clock.now())
            return "SLA resumed after reopen", ()

        return await self._mutate(ticket_id, actor, operation)

    async def snooze_ticket(self, ticket_id: UUID, until: datetime, actor: Actor) -> Ticket:
        """Record snooze markers; the due date only moves on unsnooze."""
        now = self._clock.now()
        if until <= now:
            raise ValidationException("Snooze end must be in the future.")

        async def operation(uow: ISLAUnitOfWork, ticket: Ticket):
            ticket.mark_snoozed(now, until)
            return "Ticket snoozed", ()

        return await self._mutate(ticket_id, actor, operation)

    async def unsnooze_ticket(self, ticket_id: UUID, actor: Actor = SYSTEM_ACTOR) -> Ticket:
        """Clear snooze markers and pause the SLA clock for the snoozed span."""
        adjuster = SnoozeClockAdjuster(self._settings_provider)

        async def operation(uow: ISLAUnitOfWork, ticket: Ticket):
            if not ticket.is_snoozed:
                raise DomainException("Ticket is not snoozed.", {"ticket_id": str(ticket.id)})
            shift = adjuster.unsnooze(ticket, self._clock.now())
            if shift is None:
                return "Ticket unsnoozed", ()
            return f"Ticket unsnoozed; SLA paused for {shift}", ()

        return await self._mutate(ticket_id, actor, operation)

    async def _mutate(
        self,
        ticket_id: UUID,
        actor: Actor,
        operation: TicketOperation,
        always_log: bool = False
    ) -> Ticket:
        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
            if ticket is None:
                raise ResourceNotFoundException("Ticket", str(ticket_id))

            before = ticket.sla_snapshot()
            message, events = await operation(uow, ticket)
            await uow.tickets.save(ticket)

            for event in events:
                await publish_event(uow.events, event)

            entry = SLAChangeLogEntry.between(
                ticket.id, before, ticket.sla_snapshot(), message,
                actor_id=actor.id, recorded_at=self._clock.now()
            )
            await uow.commit()

        if entry.has_changes or always_log:
            await uow.change_log.record(entry)
        return ticket


class SLARuleService:
    """Administration of the rule set: listing, creation and reordering."""

    def __init__(self, uow_factory: UnitOfWorkFactory):
        self._uow_factory = uow_factory

    async def list_rules(self) -> List[SLARule]:
        async with self._uow_factory() as uow:
            return await uow.rules.list_all()

    async def create_rule(self, rule: SLARule) -> SLARule:
        async with self._uow_factory() as uow:
            created = await uow.rules.create(rule)
            await uow.commit()
        return created

    async def reorder_rules(self, ordered_rule_ids: List[UUID]) -> List[SLARule]:
        """
        Give each rule ``priority = position + 1``.

        Raises:
            ValidationException: Empty or duplicated ID list
            ResourceNotFoundException: Any ID does not exist
        """
        if not ordered_rule_ids:
            raise ValidationException("At least one rule ID is required.")
        if len(set(ordered_rule_ids)) != len(ordered_rule_ids):
            raise ValidationException("Rule IDs must not repeat.")

        async with self._uow_factory() as uow:
            for rule_id in ordered_rule_ids:
                if await uow.rules.get_by_id(rule_id) is None:
                    raise ResourceNotFoundException("SlaRule", str(rule_id))

            await uow.rules.set_priorities(
                {rule_id: position + 1 for position, rule_id in enumerate(ordered_rule_ids)}
            )
            await uow.commit()
            return await uow.rules.list_all()
