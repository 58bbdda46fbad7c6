from datetime import timedelta

import pytest
from conftest import T0, make_ticket

from helpdesk_sla.config import SLAEventType, SLAStatus, TicketStatus
from helpdesk_sla.sla.domain import ApproachingBreachPolicy, ComplianceStateMachine


@pytest.fixture
def machine():
    return ComplianceStateMachine()


@pytest.fixture
def ticket():
    return make_ticket(
        sla_due_at=T0 + timedelta(minutes=100),
        sla_started_at=T0,
        sla_status=SLAStatus.ON_TRACK,
    )


def test_nothing_happens_early(machine, ticket):
    assert machine.evaluate(ticket, T0 + timedelta(minutes=10)) is None
    assert ticket.sla_status == SLAStatus.ON_TRACK


def test_on_track_to_approaching(machine, ticket):
    transition = machine.evaluate(ticket, T0 + timedelta(minutes=80))

    assert transition.from_status == SLAStatus.ON_TRACK
    assert transition.to_status == SLAStatus.APPROACHING_BREACH
    assert transition.event.event_type == SLAEventType.APPROACHING
    assert transition.event.ticket_id == ticket.id
    assert ticket.sla_breached_at is None

    # already approaching: no second event
    assert machine.evaluate(ticket, T0 + timedelta(minutes=90)) is None


def test_breach_is_recorded_once(machine, ticket):
    machine.evaluate(ticket, T0 + timedelta(minutes=80))
    breached_at = T0 + timedelta(minutes=100)

    transition = machine.evaluate(ticket, breached_at)
    assert transition.to_status == SLAStatus.BREACHED
    assert transition.event.event_type == SLAEventType.BREACHED
    assert ticket.sla_breached_at == breached_at

    assert machine.evaluate(ticket, T0 + timedelta(minutes=300)) is None
    assert ticket.sla_breached_at == breached_at


def test_missed_window_goes_straight_to_breached(machine, ticket):
    transition = machine.evaluate(ticket, T0 + timedelta(minutes=150))

    assert transition.from_status == SLAStatus.ON_TRACK
    assert transition.to_status == SLAStatus.BREACHED


def test_lead_time_policy():
    machine = ComplianceStateMachine(ApproachingBreachPolicy(lead_minutes=10))
    ticket = make_ticket(sla_due_at=T0 + timedelta(minutes=100), sla_status=SLAStatus.ON_TRACK)

    assert machine.evaluate(ticket, T0 + timedelta(minutes=80)) is None
    assert machine.evaluate(ticket, T0 + timedelta(minutes=90)).to_status == SLAStatus.APPROACHING_BREACH


def test_resolved_ticket_completes_silently(machine, ticket):
    ticket.status = TicketStatus.RESOLVED

    transition = machine.evaluate(ticket, T0 + timedelta(minutes=500))
    assert transition.to_status == SLAStatus.COMPLETED
    assert transition.event is None
    assert ticket.sla_breached_at is None


def test_breach_stays_visible_after_close(machine, ticket):
    machine.evaluate(ticket, T0 + timedelta(minutes=120))
    ticket.status = TicketStatus.CLOSED

    assert machine.evaluate(ticket, T0 + timedelta(minutes=130)) is None
    assert machine.complete(ticket, T0 + timedelta(minutes=130)) is None
    assert ticket.sla_status == SLAStatus.BREACHED


def test_ticket_without_due_date_is_ignored(machine):
    ticket = make_ticket()
    assert machine.evaluate(ticket, T0 + timedelta(days=30)) is None
    assert ticket.sla_status is None


def test_reopen_resumes_completed_clock(machine, ticket):
    machine.complete(ticket, T0)
    assert ticket.sla_status == SLAStatus.COMPLETED

    transition = machine.reopen(ticket, T0 + timedelta(minutes=5))
    assert transition.to_status == SLAStatus.ON_TRACK


def test_reset_to_on_track_clears_breach(machine, ticket):
    machine.evaluate(ticket, T0 + timedelta(minutes=120))

    transition = machine.reset_to_on_track(ticket, T0 + timedelta(minutes=121))
    assert transition.from_status == SLAStatus.BREACHED
    assert ticket.sla_status == SLAStatus.ON_TRACK
    assert ticket.sla_breached_at is None
