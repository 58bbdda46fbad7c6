"""
SLA Compliance State Machine
=============================

Derives and transitions a ticket's compliance status:

    ON_TRACK -> APPROACHING_BREACH -> BREACHED
    ON_TRACK | APPROACHING_BREACH  -> COMPLETED (resolved while not breached)

The automatic path only moves forward. BREACHED and COMPLETED are sinks for
the scanner; extension, refresh and reopen are the manual ways out. This is
the only place that sets ``sla_breached_at``.
"""

import logging
from datetime import datetime
from typing import Optional

from helpdesk_sla.config import SLAStatus, SLAEventType
from helpdesk_sla.sla.domain.entities import SLAEvent, SLATransition, Ticket
from helpdesk_sla.sla.domain.value_objects import ApproachingBreachPolicy

logger = logging.getLogger(__name__)


class ComplianceStateMachine:
    """
    Compliance transitions for a single ticket.

    Methods mutate the ticket in place and return the transition they made,
    or None when nothing changed. Transitions into APPROACHING_BREACH and
    BREACHED carry an ``SLAEvent`` for the caller to deliver.
    """

    def __init__(self, policy: Optional[ApproachingBreachPolicy] = None):
        self._policy = policy or ApproachingBreachPolicy()

    @property
    def policy(self) -> ApproachingBreachPolicy:
        return self._policy

    def evaluate(self, ticket: Ticket, now: datetime) -> Optional[SLATransition]:
        """
        Advance the ticket's status for the current instant.

        Args:
            ticket: Ticket to evaluate (mutated in place)
            now: Current time from the injected clock

        Returns:
            The transition made, or None
        """
        if ticket.sla_due_at is None or ticket.sla_status is None:
            return None

        if ticket.is_finished:
            return self.complete(ticket, now)

        if ticket.sla_status not in (SLAStatus.ON_TRACK, SLAStatus.APPROACHING_BREACH):
            return None

        if now >= ticket.sla_due_at:
            return self._breach(ticket, now)

        if ticket.sla_status == SLAStatus.ON_TRACK and self._policy.is_approaching(
            ticket.clock_started_at, ticket.sla_due_at, now
        ):
            return self._transition(ticket, SLAStatus.APPROACHING_BREACH, now, SLAEventType.APPROACHING)

        return None

    def complete(self, ticket: Ticket, now: datetime) -> Optional[SLATransition]:
        """Ticket resolved or closed: a breach that already happened stays visible."""
        if ticket.sla_status in (None, SLAStatus.BREACHED, SLAStatus.COMPLETED):
            return None
        return self._transition(ticket, SLAStatus.COMPLETED, now)

    def reopen(self, ticket: Ticket, now: datetime) -> Optional[SLATransition]:
        """A reopened ticket resumes its clock; breached tickets stay breached."""
        if ticket.sla_status != SLAStatus.COMPLETED or ticket.sla_due_at is None:
            return None
        return self._transition(ticket, SLAStatus.ON_TRACK, now)

    def reset_to_on_track(self, ticket: Ticket, now: datetime) -> Optional[SLATransition]:
        """Manual reset after an extension or clock restart; clears the breach mark."""
        ticket.sla_breached_at = None
        if ticket.sla_status == SLAStatus.ON_TRACK:
            return None
        return self._transition(ticket, SLAStatus.ON_TRACK, now)

    def _breach(self, ticket: Ticket, now: datetime) -> SLATransition:
        ticket.sla_breached_at = now
        return self._transition(ticket, SLAStatus.BREACHED, now, SLAEventType.BREACHED)

    def _transition(
        self,
        ticket: Ticket,
        to_status: str,
        now: datetime,
        event_type: Optional[str] = None
    ) -> SLATransition:
        from_status = ticket.sla_status
        ticket.sla_status = to_status

        event = None
        if event_type is not None:
            event = SLAEvent(
                ticket_id=ticket.id,
                event_type=event_type,
                sla_status=to_status,
                due_at=ticket.sla_due_at,
                occurred_at=now,
                sla_rule_id=ticket.sla_rule_id,
            )

        logger.debug(
            "SLA status transition",
            extra={"ticket_id": str(ticket.id), "from_status": from_status, "to_status": to_status}
        )
        return SLATransition(
            ticket_id=ticket.id,
            from_status=from_status,
            to_status=to_status,
            occurred_at=now,
            event=event,
        )
