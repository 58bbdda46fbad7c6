"""Repository and unit-of-work tests against a SQLite file database.

SQLite drops tzinfo, so every datetime here is naive UTC.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from conftest import (
    T0,
    FakeClock,
    RecordingChangeLogSink,
    StaticSettingsProvider,
    make_rule,
    make_ticket,
)

from helpdesk_sla.config import SLAEventType, SLAStatus
from helpdesk_sla.core import ConcurrencyException
from helpdesk_sla.infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)
from helpdesk_sla.sla.application import BreachScanner, SLATicketService, SnoozeExpirySweeper
from helpdesk_sla.sla.domain import (
    BusinessHoursConfig,
    OrganizationSLASettings,
    RuleMatcher,
    SLAEvent,
)
from helpdesk_sla.sla.infrastructure import (
    RoleBasedPermissionChecker,
    SQLAlchemySLAUnitOfWorkFactory,
)
from helpdesk_sla.sla.infrastructure.models import SLARuleModel

NOW = T0.replace(tzinfo=None)


@pytest.fixture
async def session_maker(tmp_path):
    init_database(f"sqlite+aiosqlite:///{tmp_path}/sla.db")
    await create_tables()
    yield get_session_maker()
    await close_database()


@pytest.fixture
def change_log():
    return []


@pytest.fixture
def factory(session_maker, change_log):
    return SQLAlchemySLAUnitOfWorkFactory(session_maker, RecordingChangeLogSink(change_log))


def naive_ticket(**overrides):
    values = dict(creation_time=NOW)
    values.update(overrides)
    return make_ticket(**values)


async def insert(factory, *tickets):
    async with factory() as uow:
        for ticket in tickets:
            await uow.tickets.add(ticket)
        await uow.commit()


async def test_ticket_round_trip_and_version_bump(factory):
    ticket = naive_ticket(category="billing", sla_due_at=NOW + timedelta(hours=4), sla_status=SLAStatus.ON_TRACK)
    await insert(factory, ticket)

    async with factory() as uow:
        loaded = await uow.tickets.get_by_id(ticket.id)
        assert loaded.category == "billing"
        assert loaded.sla_due_at == NOW + timedelta(hours=4)
        assert loaded.version == 1

        loaded.sla_extension_count = 1
        await uow.tickets.save(loaded)
        assert loaded.version == 2
        await uow.commit()

    async with factory() as uow:
        stored = await uow.tickets.get_by_id(ticket.id)
    assert stored.sla_extension_count == 1
    assert stored.version == 2


async def test_stale_write_is_rejected(factory):
    ticket = naive_ticket()
    await insert(factory, ticket)

    async with factory() as uow:
        first = await uow.tickets.get_by_id(ticket.id)
    async with factory() as uow:
        second = await uow.tickets.get_by_id(ticket.id)

    async with factory() as uow:
        await uow.tickets.save(first)
        await uow.commit()

    async with factory() as uow:
        with pytest.raises(ConcurrencyException):
            await uow.tickets.save(second)


async def test_unknown_ticket(factory):
    async with factory() as uow:
        assert await uow.tickets.get_by_id(uuid4()) is None


async def test_breach_scan_keyset_pages(factory):
    open_tickets = [
        naive_ticket(sla_due_at=NOW, sla_status=status)
        for status in (SLAStatus.ON_TRACK, SLAStatus.APPROACHING_BREACH, SLAStatus.ON_TRACK)
    ]
    closed = [
        naive_ticket(sla_due_at=NOW, sla_status=SLAStatus.BREACHED),
        naive_ticket(sla_due_at=NOW, sla_status=SLAStatus.COMPLETED),
        naive_ticket(),
    ]
    await insert(factory, *open_tickets, *closed)
    expected = sorted(t.id for t in open_tickets)

    async with factory() as uow:
        first = await uow.tickets.list_ids_for_breach_scan(None, 2)
        rest = await uow.tickets.list_ids_for_breach_scan(first[-1], 2)

    assert first == expected[:2]
    assert rest == expected[2:]


async def test_unsnooze_scan_finds_expired_snoozes(factory):
    expired = [
        naive_ticket(snoozed_at=NOW - timedelta(hours=2), snoozed_until=NOW - timedelta(minutes=m))
        for m in (0, 5, 30)
    ]
    later = naive_ticket(snoozed_at=NOW, snoozed_until=NOW + timedelta(minutes=1))
    await insert(factory, *expired, later, naive_ticket())
    expected = sorted(t.id for t in expired)

    async with factory() as uow:
        first = await uow.tickets.list_ids_for_unsnooze(NOW, None, 2)
        rest = await uow.tickets.list_ids_for_unsnooze(NOW, first[-1], 2)

    assert first == expected[:2]
    assert rest == expected[2:]


async def test_rules_in_evaluation_order(factory):
    calendar = BusinessHoursConfig(start_time="09:00", end_time="17:00", timezone="Europe/London")
    late = make_rule("Late", priority=5)
    early = make_rule("Early", priority=1, conditions={"priority": "high"}, business_hours=calendar)
    inactive = make_rule("Inactive", priority=0, is_active=False)
    late.created_at = NOW
    early.created_at = NOW + timedelta(minutes=1)
    inactive.created_at = NOW

    async with factory() as uow:
        for rule in (late, early, inactive):
            await uow.rules.create(rule)
        await uow.commit()

    async with factory() as uow:
        all_rules = await uow.rules.list_all()
        active = await uow.rules.active_rules()
        loaded = await uow.rules.get_by_id(early.id)

    assert [r.name for r in all_rules] == ["Inactive", "Early", "Late"]
    assert [r.name for r in active] == ["Early", "Late"]
    assert loaded.conditions.constraints() == {"priority": "high"}
    assert loaded.calendar == calendar


async def test_malformed_conditions_are_kept_raw(factory, session_maker):
    async with session_maker() as session:
        session.add(SLARuleModel(
            id=uuid4(), name="Broken", conditions=["not", "a", "mapping"],
            target_resolution_minutes=60, priority=0, created_at=NOW,
        ))
        await session.commit()
    fallback = make_rule("Fallback", priority=1)
    fallback.created_at = NOW

    async with factory() as uow:
        await uow.rules.create(fallback)
        await uow.commit()

    async with factory() as uow:
        rules = await uow.rules.active_rules()

    assert rules[0].conditions == ["not", "a", "mapping"]
    assert RuleMatcher.match(naive_ticket(), rules).name == "Fallback"


async def test_set_priorities(factory):
    first, second = make_rule("First", priority=1), make_rule("Second", priority=2)
    async with factory() as uow:
        await uow.rules.create(first)
        await uow.rules.create(second)
        await uow.commit()

    async with factory() as uow:
        await uow.rules.set_priorities({second.id: 1, first.id: 2})
        await uow.commit()

    async with factory() as uow:
        assert [r.name for r in await uow.rules.list_all()] == ["Second", "First"]


async def test_outbox_pending_and_dispatched(factory):
    events = [
        SLAEvent(
            ticket_id=uuid4(),
            event_type=SLAEventType.BREACHED,
            sla_status=SLAStatus.BREACHED,
            due_at=NOW,
            occurred_at=NOW + timedelta(minutes=i),
        )
        for i in range(2)
    ]
    async with factory() as uow:
        for event in events:
            await uow.events.on_sla_breached(event)
        await uow.commit()

    async with factory() as uow:
        pending = await uow.events.get_pending()
        assert [e.id for e in pending] == [e.id for e in events]
        await uow.events.mark_dispatched(events[0].id, NOW)
        await uow.commit()

    async with factory() as uow:
        assert [e.id for e in await uow.events.get_pending()] == [events[1].id]


async def test_unit_of_work_rolls_back_without_commit(factory):
    ticket = naive_ticket()
    await insert(factory, ticket)

    async with factory() as uow:
        loaded = await uow.tickets.get_by_id(ticket.id)
        loaded.sla_extension_count = 5
        await uow.tickets.save(loaded)

    async with factory() as uow:
        stored = await uow.tickets.get_by_id(ticket.id)
    assert stored.sla_extension_count == 0
    assert stored.version == 1


async def test_scanner_writes_outbox_rows(factory):
    ticket = naive_ticket(
        sla_due_at=NOW - timedelta(minutes=5),
        sla_started_at=NOW - timedelta(hours=4),
        sla_status=SLAStatus.ON_TRACK,
    )
    await insert(factory, ticket)
    scanner = BreachScanner(factory, FakeClock(NOW), StaticSettingsProvider())

    summary = await scanner.sweep()

    assert summary.breached == 1
    async with factory() as uow:
        stored = await uow.tickets.get_by_id(ticket.id)
        pending = await uow.events.get_pending()
    assert stored.sla_status == SLAStatus.BREACHED
    assert stored.sla_breached_at == NOW
    assert [(e.ticket_id, e.event_type) for e in pending] == [(ticket.id, SLAEventType.BREACHED)]


async def test_ticket_service_over_sqlalchemy(factory, change_log):
    async with factory() as uow:
        await uow.rules.create(make_rule("Standard", minutes=240))
        await uow.commit()
    ticket = naive_ticket()
    await insert(factory, ticket)
    service = SLATicketService(
        factory, FakeClock(NOW), StaticSettingsProvider(), RoleBasedPermissionChecker(["admin"])
    )

    await service.assign_on_create(ticket.id)

    stored = await service.get_ticket(ticket.id)
    assert stored.sla_due_at == NOW + timedelta(hours=4)
    assert stored.sla_status == SLAStatus.ON_TRACK
    assert change_log[-1].message == "SLA rule Standard applied"


async def test_unsnooze_sweeper_over_sqlalchemy(factory, change_log):
    ticket = naive_ticket(
        sla_due_at=NOW + timedelta(hours=4),
        sla_status=SLAStatus.ON_TRACK,
        snoozed_at=NOW - timedelta(hours=1),
        snoozed_until=NOW,
    )
    await insert(factory, ticket)
    settings = StaticSettingsProvider(OrganizationSLASettings(pause_sla_on_snooze=True))
    sweeper = SnoozeExpirySweeper(factory, FakeClock(NOW), settings)

    summary = await sweeper.sweep()

    assert summary.unsnoozed == 1
    async with factory() as uow:
        stored = await uow.tickets.get_by_id(ticket.id)
    assert stored.snoozed_until is None
    assert stored.unsnoozed_at == NOW
    assert stored.sla_due_at == NOW + timedelta(hours=5)
    assert stored.version == 2
    assert change_log[-1].message == "Snooze expired; ticket unsnoozed; SLA paused for 1:00:00"
