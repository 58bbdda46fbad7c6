"""
SLA Background Sweeps
======================

Periodic sweeps over tickets:

- BreachScanner advances compliance status for every ticket with an open
  SLA and hands APPROACHING/BREACHED events to the event sink.
- SnoozeExpirySweeper unsnoozes tickets whose snooze has ended.

Both walk candidates in keyset-paginated batches (ordered by ticket ID)
and process each ticket in its own unit of work, so one failing or
conflicting ticket never aborts the rest of the batch. Overlapping runs of
the same sweep are skipped rather than queued.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from helpdesk_sla.config import SLAStatus
from helpdesk_sla.core import ConcurrencyException
from helpdesk_sla.shared.infrastructure.logging import get_logger, log_latency
from helpdesk_sla.sla.application.services import (
    IClock,
    IOrganizationSettingsProvider,
    ISLAUnitOfWork,
    SnoozeClockAdjuster,
    UnitOfWorkFactory,
    publish_event,
)
from helpdesk_sla.sla.domain import (
    SYSTEM_ACTOR,
    ComplianceStateMachine,
    SLAChangeLogEntry,
    SLATransition,
)

logger = get_logger(__name__)


# ========== Summaries ==========

@dataclass
class SweepSummary:
    """Counters shared by every sweep."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    batches: int = 0
    tickets_scanned: int = 0
    conflicts: int = 0
    failed: int = 0
    stopped: bool = False
    skipped: bool = False
    failed_ticket_ids: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "batches": self.batches,
            "tickets_scanned": self.tickets_scanned,
            "conflicts": self.conflicts,
            "failed": self.failed,
            "stopped": self.stopped,
            "skipped": self.skipped,
        }


@dataclass
class ScanSummary(SweepSummary):
    """Counters for one breach sweep."""
    approaching: int = 0
    breached: int = 0
    completed: int = 0

    @property
    def transitions(self) -> int:
        return self.approaching + self.breached + self.completed

    def record(self, transition: SLATransition) -> None:
        if transition.to_status == SLAStatus.APPROACHING_BREACH:
            self.approaching += 1
        elif transition.to_status == SLAStatus.BREACHED:
            self.breached += 1
        elif transition.to_status == SLAStatus.COMPLETED:
            self.completed += 1

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            approaching=self.approaching,
            breached=self.breached,
            completed=self.completed,
        )
        return data


@dataclass
class UnsnoozeSummary(SweepSummary):
    """Counters for one snooze expiry sweep."""
    unsnoozed: int = 0

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["unsnoozed"] = self.unsnoozed
        return data


# ========== Sweeps ==========

class TicketSweep(ABC):
    """
    Single-flight walk over ticket IDs.

    Subclasses supply the candidate page query and the per-ticket step.

    Args:
        uow_factory: Creates one unit of work per batch read and per ticket
        clock: Injected time source; ``now`` is read per ticket
        batch_size: Tickets fetched per page
    """

    description = "Ticket sweep"
    operation = "ticket_sweep"
    failure_message = "Failed to process ticket"
    summary_class = SweepSummary

    def __init__(self, uow_factory: UnitOfWorkFactory, clock: IClock, batch_size: int = 100):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._uow_factory = uow_factory
        self._clock = clock
        self._batch_size = batch_size
        self._lock = asyncio.Lock()
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def request_stop(self) -> None:
        """Ask a running sweep to stop after the current ticket."""
        self._stop_requested = True

    async def wait_until_idle(self) -> None:
        """Return once no sweep is running."""
        async with self._lock:
            pass

    async def sweep(self):
        """
        Run one sweep over all candidate tickets.

        Returns:
            The sweep's summary; ``skipped`` is set when another run of this
            sweep was in progress
        """
        if self._lock.locked():
            logger.warning(f"{self.description} already running, skipping trigger")
            return self.summary_class(started_at=self._clock.now(), skipped=True)

        async with self._lock:
            self._stop_requested = False
            self._begin()
            summary = self.summary_class(started_at=self._clock.now())

            with log_latency(logger, self.operation, batch_size=self._batch_size):
                after_id: Optional[UUID] = None
                while not self._stop_requested:
                    async with self._uow_factory() as uow:
                        batch = await self._next_batch(uow, after_id)
                    if not batch:
                        break

                    summary.batches += 1
                    for ticket_id in batch:
                        if self._stop_requested:
                            break
                        await self._process_safely(ticket_id, summary)

                    after_id = batch[-1]
                    if len(batch) < self._batch_size:
                        break

            summary.stopped = self._stop_requested
            summary.finished_at = self._clock.now()

        logger.info(f"{self.description} finished", extra=summary.to_dict())
        return summary

    def _begin(self) -> None:
        """Hook run once per sweep before the first batch."""

    @abstractmethod
    async def _next_batch(self, uow: ISLAUnitOfWork, after_id: Optional[UUID]) -> List[UUID]:
        """Next page of candidate IDs after ``after_id``."""

    @abstractmethod
    async def _process(self, ticket_id: UUID, summary) -> None:
        """Handle one ticket inside its own unit of work."""

    async def _process_safely(self, ticket_id: UUID, summary: SweepSummary) -> None:
        summary.tickets_scanned += 1
        try:
            await self._process(ticket_id, summary)
        except ConcurrencyException as e:
            # Ticket was edited concurrently; the next sweep re-reads it
            summary.conflicts += 1
            logger.info(
                "Skipping ticket modified during sweep",
                extra={"ticket_id": str(ticket_id), "operation": self.operation, "error": e.message}
            )
        except Exception as e:
            summary.failed += 1
            summary.failed_ticket_ids.append(ticket_id)
            logger.error(
                self.failure_message,
                extra={"ticket_id": str(ticket_id), "operation": self.operation, "error": str(e)},
                exc_info=True
            )


class BreachScanner(TicketSweep):
    """
    Background compliance sweep.

    Args:
        uow_factory: Creates one unit of work per batch read and per ticket
        clock: Injected time source; ``now`` is read per ticket
        settings_provider: Supplies the approaching-breach policy
        batch_size: Tickets fetched per page
    """

    description = "SLA breach sweep"
    operation = "sla_breach_sweep"
    failure_message = "Failed to evaluate ticket SLA"
    summary_class = ScanSummary

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        clock: IClock,
        settings_provider: IOrganizationSettingsProvider,
        batch_size: int = 100
    ):
        super().__init__(uow_factory, clock, batch_size)
        self._settings_provider = settings_provider
        self._machine = ComplianceStateMachine()

    def _begin(self) -> None:
        self._machine = ComplianceStateMachine(
            self._settings_provider.get_settings().approaching_breach
        )

    async def _next_batch(self, uow: ISLAUnitOfWork, after_id: Optional[UUID]) -> List[UUID]:
        return await uow.tickets.list_ids_for_breach_scan(after_id, self._batch_size)

    async def _process(self, ticket_id: UUID, summary: ScanSummary) -> None:
        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
            if ticket is None:
                return

            transition = self._machine.evaluate(ticket, self._clock.now())
            if transition is None:
                return

            await uow.tickets.save(ticket)
            if transition.event is not None:
                await publish_event(uow.events, transition.event)
            await uow.commit()

        summary.record(transition)
        logger.info(
            "Ticket SLA status changed",
            extra={
                "ticket_id": str(ticket_id),
                "from_status": transition.from_status,
                "to_status": transition.to_status,
            }
        )


class SnoozeExpirySweeper(TicketSweep):
    """
    Background auto-unsnooze.

    Clears the snooze markers of every ticket whose snooze has ended. When
    the organisation pauses the SLA during snoozes, the due date moves
    forward by the snoozed span, exactly as for an operator unsnooze.
    Change-log entries are attributed to the system actor.
    """

    description = "Snooze expiry sweep"
    operation = "sla_unsnooze_sweep"
    failure_message = "Failed to unsnooze ticket"
    summary_class = UnsnoozeSummary

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        clock: IClock,
        settings_provider: IOrganizationSettingsProvider,
        batch_size: int = 100
    ):
        super().__init__(uow_factory, clock, batch_size)
        self._adjuster = SnoozeClockAdjuster(settings_provider)

    async def _next_batch(self, uow: ISLAUnitOfWork, after_id: Optional[UUID]) -> List[UUID]:
        return await uow.tickets.list_ids_for_unsnooze(self._clock.now(), after_id, self._batch_size)

    async def _process(self, ticket_id: UUID, summary: UnsnoozeSummary) -> None:
        now = self._clock.now()
        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
            # Unsnoozed or snoozed again since the page was read
            if ticket is None or ticket.snoozed_until is None or ticket.snoozed_until > now:
                return

            before = ticket.sla_snapshot()
            snoozed_for = now - ticket.snoozed_at if ticket.snoozed_at else None
            shift = self._adjuster.unsnooze(ticket, now)
            await uow.tickets.save(ticket)
            await uow.commit()

        message = "Snooze expired; ticket unsnoozed"
        if shift is not None:
            message += f"; SLA paused for {shift}"
        await uow.change_log.record(SLAChangeLogEntry.between(
            ticket.id, before, ticket.sla_snapshot(), message,
            actor_id=SYSTEM_ACTOR.id, recorded_at=now
        ))

        summary.unsnoozed += 1
        logger.info(
            "Ticket unsnoozed after snooze expired",
            extra={
                "ticket_id": str(ticket_id),
                "snoozed_for": str(snoozed_for) if snoozed_for else None,
                "sla_shift": str(shift) if shift else None,
            }
        )
