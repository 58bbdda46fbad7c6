"""Shared fixtures: a fixed clock and an in-memory unit of work."""

import inspect
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
from uuid import UUID, uuid4

import pytest

from helpdesk_sla.config import OPEN_SLA_STATUSES, SLAEventType, TicketStatus
from helpdesk_sla.core import ConcurrencyException
from helpdesk_sla.sla.application import (
    BreachScanner,
    IChangeLogSink,
    IClock,
    IOrganizationSettingsProvider,
    ISLAEventSink,
    ISLARuleRepository,
    ISLAUnitOfWork,
    ITicketRepository,
    SLARuleService,
    SLATicketService,
    SnoozeExpirySweeper,
)
from helpdesk_sla.sla.domain import (
    Actor,
    BusinessHoursConfig,
    OrganizationSLASettings,
    RuleConditions,
    SLAChangeLogEntry,
    SLAEvent,
    SLARule,
    Ticket,
)
from helpdesk_sla.sla.infrastructure import RoleBasedPermissionChecker

# Monday
T0 = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

AGENT = Actor(id="agent-1", roles=frozenset({"agent"}))
MANAGER = Actor(id="manager-1", roles=frozenset({"ticket_manager"}))


class FakeClock(IClock):
    def __init__(self, now: datetime = T0):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class StaticSettingsProvider(IOrganizationSettingsProvider):
    def __init__(self, settings: Optional[OrganizationSLASettings] = None):
        self.settings = settings or OrganizationSLASettings()

    def get_settings(self) -> OrganizationSLASettings:
        return self.settings


class InMemoryStore:
    """Committed state shared by all in-memory units of work."""

    def __init__(self):
        self.tickets: Dict[UUID, Ticket] = {}
        self.rules: List[SLARule] = []
        self.events: List[SLAEvent] = []
        self.change_log: List[SLAChangeLogEntry] = []
        self.commits = 0
        # Called with the ticket ID after each ticket read; may be async
        self.on_get: Optional[Callable] = None
        # Raised by the next commit instead of applying staged writes
        self.fail_commit: Optional[Exception] = None

    def add_ticket(self, ticket: Ticket) -> Ticket:
        self.tickets[ticket.id] = replace(ticket)
        return ticket

    def add_rule(self, rule: SLARule) -> SLARule:
        self.rules.append(rule)
        return rule

    def ticket(self, ticket_id: UUID) -> Ticket:
        return replace(self.tickets[ticket_id])


class InMemoryTicketRepository(ITicketRepository):
    def __init__(self, store: InMemoryStore, staged: Dict[UUID, Ticket]):
        self._store = store
        self._staged = staged

    def _current(self, ticket_id: UUID) -> Optional[Ticket]:
        return self._staged.get(ticket_id) or self._store.tickets.get(ticket_id)

    async def get_by_id(self, ticket_id: UUID) -> Optional[Ticket]:
        current = self._current(ticket_id)
        ticket = replace(current) if current else None
        if self._store.on_get is not None:
            result = self._store.on_get(ticket_id)
            if inspect.isawaitable(result):
                await result
        return ticket

    async def save(self, ticket: Ticket) -> Ticket:
        current = self._current(ticket.id)
        if current is None or current.version != ticket.version:
            raise ConcurrencyException("Ticket", ticket.id, ticket.version)
        ticket.version += 1
        self._staged[ticket.id] = replace(ticket)
        return ticket

    async def list_ids_for_breach_scan(self, after_id: Optional[UUID], limit: int) -> List[UUID]:
        ids = sorted(
            t.id for t in self._store.tickets.values()
            if t.sla_status in OPEN_SLA_STATUSES and t.sla_due_at is not None
            and (after_id is None or t.id > after_id)
        )
        return ids[:limit]

    async def list_ids_for_unsnooze(
        self,
        expired_by: datetime,
        after_id: Optional[UUID],
        limit: int
    ) -> List[UUID]:
        ids = sorted(
            t.id for t in self._store.tickets.values()
            if t.snoozed_until is not None and t.snoozed_until <= expired_by
            and (after_id is None or t.id > after_id)
        )
        return ids[:limit]


class InMemoryRuleRepository(ISLARuleRepository):
    def __init__(
        self,
        store: InMemoryStore,
        staged_rules: Optional[List[SLARule]] = None,
        staged_priorities: Optional[Dict[UUID, int]] = None
    ):
        self._store = store
        self._staged_rules = staged_rules if staged_rules is not None else []
        self._staged_priorities = staged_priorities if staged_priorities is not None else {}

    def _all(self) -> List[SLARule]:
        rules = []
        for rule in self._store.rules + self._staged_rules:
            copy = replace(rule)
            if rule.id in self._staged_priorities:
                copy.priority = self._staged_priorities[rule.id]
            rules.append(copy)
        return sorted(rules, key=lambda r: r.priority)

    async def active_rules(self) -> List[SLARule]:
        return [r for r in self._all() if r.is_active]

    async def list_all(self) -> List[SLARule]:
        return self._all()

    async def get_by_id(self, rule_id: UUID) -> Optional[SLARule]:
        return next((r for r in self._all() if r.id == rule_id), None)

    async def create(self, rule: SLARule) -> SLARule:
        rule.created_at = rule.created_at or T0
        self._staged_rules.append(rule)
        return rule

    async def set_priorities(self, priorities: Dict[UUID, int]) -> None:
        self._staged_priorities.update(priorities)


class RecordingEventSink(ISLAEventSink):
    def __init__(self, staged: List[SLAEvent]):
        self._staged = staged

    async def on_sla_approaching(self, event: SLAEvent) -> None:
        assert event.event_type == SLAEventType.APPROACHING
        self._staged.append(event)

    async def on_sla_breached(self, event: SLAEvent) -> None:
        assert event.event_type == SLAEventType.BREACHED
        self._staged.append(event)


class RecordingChangeLogSink(IChangeLogSink):
    def __init__(self, entries: List[SLAChangeLogEntry]):
        self._entries = entries

    async def record(self, entry: SLAChangeLogEntry) -> None:
        self._entries.append(entry)


class InMemoryUnitOfWork(ISLAUnitOfWork):
    """
    Stages writes and applies them to the store on commit.

    The change log is written straight to the store, like the
    non-transactional sink used in production.
    """

    def __init__(self, store: InMemoryStore):
        self._store = store
        self._tickets: Dict[UUID, Ticket] = {}
        self._rules: List[SLARule] = []
        self._priorities: Dict[UUID, int] = {}
        self._events: List[SLAEvent] = []
        self.tickets = InMemoryTicketRepository(store, self._tickets)
        self.rules = InMemoryRuleRepository(store, self._rules, self._priorities)
        self.events = RecordingEventSink(self._events)
        self.change_log = RecordingChangeLogSink(store.change_log)

    async def commit(self) -> None:
        if self._store.fail_commit is not None:
            raise self._store.fail_commit
        self._store.tickets.update(self._tickets)
        self._store.rules.extend(self._rules)
        for rule in self._store.rules:
            if rule.id in self._priorities:
                rule.priority = self._priorities[rule.id]
        self._store.events.extend(self._events)
        self._store.commits += 1
        await self.rollback()

    async def rollback(self) -> None:
        self._tickets.clear()
        self._rules.clear()
        self._priorities.clear()
        self._events.clear()


def make_rule(
    name: str = "Default",
    minutes: int = 240,
    priority: int = 0,
    conditions=None,
    business_hours: Optional[BusinessHoursConfig] = None,
    is_active: bool = True,
) -> SLARule:
    if isinstance(conditions, dict):
        conditions = RuleConditions.from_raw(conditions)
    return SLARule(
        id=uuid4(),
        name=name,
        target_resolution_minutes=minutes,
        conditions=conditions,
        business_hours_enabled=business_hours is not None,
        business_hours_config=business_hours,
        is_active=is_active,
        priority=priority,
    )


def make_ticket(**overrides) -> Ticket:
    values = {
        "id": uuid4(),
        "status": TicketStatus.OPEN,
        "creation_time": T0,
        "priority": "medium",
    }
    values.update(overrides)
    return Ticket(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def org_settings() -> StaticSettingsProvider:
    return StaticSettingsProvider()


@pytest.fixture
def permissions() -> RoleBasedPermissionChecker:
    return RoleBasedPermissionChecker(["admin", "ticket_manager"])


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def uow_factory(store):
    return lambda: InMemoryUnitOfWork(store)


@pytest.fixture
def ticket_service(uow_factory, clock, org_settings, permissions) -> SLATicketService:
    return SLATicketService(uow_factory, clock, org_settings, permissions)


@pytest.fixture
def rule_service(uow_factory) -> SLARuleService:
    return SLARuleService(uow_factory)


@pytest.fixture
def scanner(uow_factory, clock, org_settings) -> BreachScanner:
    return BreachScanner(uow_factory, clock, org_settings, batch_size=100)


@pytest.fixture
def unsnooze_sweeper(uow_factory, clock, org_settings) -> SnoozeExpirySweeper:
    return SnoozeExpirySweeper(uow_factory, clock, org_settings, batch_size=100)
