"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and event outbox
- Unit of Work: One transaction over the repositories
- External: Clock, settings hot reload, permissions, change log, scheduler
"""

from helpdesk_sla.sla.infrastructure.models import TicketModel, SLARuleModel, SLAEventModel
from helpdesk_sla.sla.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemySLARuleRepository,
    SQLAlchemySLAEventOutbox,
)
from helpdesk_sla.sla.infrastructure.unit_of_work import (
    SQLAlchemySLAUnitOfWork,
    SQLAlchemySLAUnitOfWorkFactory,
)
from helpdesk_sla.sla.infrastructure.external import (
    SystemClock,
    SLAConfigManager,
    RoleBasedPermissionChecker,
    LoggingChangeLogSink,
    SLAScheduler,
)

__all__ = [
    "TicketModel",
    "SLARuleModel",
    "SLAEventModel",
    "SQLAlchemyTicketRepository",
    "SQLAlchemySLARuleRepository",
    "SQLAlchemySLAEventOutbox",
    "SQLAlchemySLAUnitOfWork",
    "SQLAlchemySLAUnitOfWorkFactory",
    "SystemClock",
    "SLAConfigManager",
    "RoleBasedPermissionChecker",
    "LoggingChangeLogSink",
    "SLAScheduler",
]
