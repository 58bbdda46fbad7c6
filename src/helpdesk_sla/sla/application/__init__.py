"""
SLA Application Layer
======================

Application layer for the SLA deadline engine.

Contains:
- Services: DueDateEngine, ExtensionGuard, SnoozeClockAdjuster and the
  use-case services that run them inside a unit of work
- Scanner: Periodic breach and snooze expiry sweeps
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and collaborator interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk_sla.sla.application.dto import (
    ExtendSLARequest,
    RefreshSLARequest,
    TicketFieldEditRequest,
    SnoozeRequest,
    SLARuleCreateDTO,
    ReorderRulesRequest,
    TicketSLAResponse,
    SLARuleResponse,
    ScanSummaryResponse,
    UnsnoozeSummaryResponse,
)
from helpdesk_sla.sla.application.services import (
    IClock,
    ISLARuleRepository,
    ITicketRepository,
    ISLAEventSink,
    IChangeLogSink,
    IOrganizationSettingsProvider,
    IPermissionChecker,
    ISLAUnitOfWork,
    UnitOfWorkFactory,
    publish_event,
    DueDateEngine,
    ExtensionGuard,
    SnoozeClockAdjuster,
    SLATicketService,
    SLARuleService,
)
from helpdesk_sla.sla.application.scanner import (
    TicketSweep,
    BreachScanner,
    SnoozeExpirySweeper,
    SweepSummary,
    ScanSummary,
    UnsnoozeSummary,
)

__all__ = [
    # DTOs
    "ExtendSLARequest",
    "RefreshSLARequest",
    "TicketFieldEditRequest",
    "SnoozeRequest",
    "SLARuleCreateDTO",
    "ReorderRulesRequest",
    "TicketSLAResponse",
    "SLARuleResponse",
    "ScanSummaryResponse",
    "UnsnoozeSummaryResponse",
    # Collaborator Interfaces
    "IClock",
    "ISLARuleRepository",
    "ITicketRepository",
    "ISLAEventSink",
    "IChangeLogSink",
    "IOrganizationSettingsProvider",
    "IPermissionChecker",
    "ISLAUnitOfWork",
    "UnitOfWorkFactory",
    "publish_event",
    # Services
    "DueDateEngine",
    "ExtensionGuard",
    "SnoozeClockAdjuster",
    "SLATicketService",
    "SLARuleService",
    "TicketSweep",
    "BreachScanner",
    "SnoozeExpirySweeper",
    "SweepSummary",
    "ScanSummary",
    "UnsnoozeSummary",
]
