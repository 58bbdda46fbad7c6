"""
Helpdesk SLA - Main Application
================================

SLA deadline engine for a help-desk ticketing system.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Use-case services, background sweeps and DTOs
- Domain: Entities, value objects, rule matching, compliance state machine
- Infrastructure: Database, YAML settings, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from helpdesk_sla.config import settings
from helpdesk_sla.infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)
from helpdesk_sla.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    register_exception_handlers,
)
from helpdesk_sla.shared.infrastructure.logging import get_logger, setup_logging
from helpdesk_sla.sla.application import (
    BreachScanner,
    IClock,
    IOrganizationSettingsProvider,
    IPermissionChecker,
    SLARuleService,
    SLATicketService,
    SnoozeExpirySweeper,
    UnitOfWorkFactory,
)
from helpdesk_sla.sla.infrastructure import (
    LoggingChangeLogSink,
    RoleBasedPermissionChecker,
    SLAConfigManager,
    SLAScheduler,
    SQLAlchemySLAUnitOfWorkFactory,
    SystemClock,
)
from helpdesk_sla.sla.interfaces import sla_router

logger = get_logger(__name__)


def wire_sla_services(
    app: FastAPI,
    uow_factory: UnitOfWorkFactory,
    clock: IClock,
    settings_provider: IOrganizationSettingsProvider,
    permission_checker: IPermissionChecker,
    batch_size: int = 100
) -> None:
    """Store the SLA services in app state for dependency injection."""
    app.state.clock = clock
    app.state.sla_ticket_service = SLATicketService(
        uow_factory, clock, settings_provider, permission_checker
    )
    app.state.sla_rule_service = SLARuleService(uow_factory)
    app.state.breach_scanner = BreachScanner(
        uow_factory, clock, settings_provider, batch_size=batch_size
    )
    app.state.unsnooze_sweeper = SnoozeExpirySweeper(
        uow_factory, clock, settings_provider, batch_size=batch_size
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load organisation SLA settings and watch the file
    4. Wire services
    5. Start the breach and snooze expiry schedules

    SHUTDOWN:
    1. Signal the sweeps and stop the scheduler
    2. Stop config watcher
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()
    if settings.environment in ("development", "test"):
        await create_tables()

    config_manager = SLAConfigManager()
    config_manager.load(settings.sla_config_path)
    config_manager.start_watching()

    app.state.settings = settings
    wire_sla_services(
        app,
        SQLAlchemySLAUnitOfWorkFactory(get_session_maker(), LoggingChangeLogSink()),
        SystemClock(),
        config_manager,
        RoleBasedPermissionChecker(settings.sla_manager_roles),
        batch_size=settings.sla_scan_batch_size,
    )

    scanner: BreachScanner = app.state.breach_scanner
    sweeper: SnoozeExpirySweeper = app.state.unsnooze_sweeper
    scheduler = None
    if settings.sla_scan_interval_seconds > 0 or settings.sla_unsnooze_interval_seconds > 0:
        scheduler = SLAScheduler(
            interval_seconds=settings.sla_scan_interval_seconds,
            unsnooze_interval_seconds=settings.sla_unsnooze_interval_seconds,
        )
        await scheduler.start(scanner.sweep, sweeper.sweep)
    else:
        logger.info("SLA scheduler disabled")
    app.state.sla_scheduler = scheduler

    logger.info("SLA service started")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA service")

    scanner.request_stop()
    sweeper.request_stop()
    if scheduler:
        await scheduler.stop()
    await scanner.wait_until_idle()
    await sweeper.wait_until_idle()

    config_manager.stop_watching()
    await close_database()

    logger.info("SLA service shutdown complete")


app = FastAPI(
    title="Helpdesk SLA API",
    description="""
    ## SLA Deadline Engine

    Decides which service-level rule applies to a ticket, computes a
    business-hours-aware due date and tracks compliance over the ticket's
    lifetime.

    **Ticket SLA**
    - `GET /sla/tickets/{id}` - Current SLA state
    - `POST /sla/tickets/{id}/extend` - Manual extension (capped for non-managers)
    - `POST /sla/tickets/{id}/refresh` - Re-match rules, optionally restarting the clock
    - `POST /sla/tickets/{id}/snooze` and `/unsnooze` - Optional SLA pause while snoozed

    **Background Sweeps**
    - `POST /sla/scan` - Run a breach sweep now (also scheduled)
    - `POST /sla/unsnooze-sweep` - Unsnooze tickets whose snooze has ended (also scheduled)

    **Rules**
    - `GET /sla/rules`, `POST /sla/rules`, `PUT /sla/rules/order`
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
register_exception_handlers(app)

# === Include Module Routers ===
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports scheduler and sweep state.
    """
    scheduler = getattr(request.app.state, "sla_scheduler", None)
    scanner = getattr(request.app.state, "breach_scanner", None)
    sweeper = getattr(request.app.state, "unsnooze_sweeper", None)
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": {
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
            "breach_sweep": "in_progress" if scanner and scanner.is_running else "idle",
            "unsnooze_sweep": "in_progress" if sweeper and sweeper.is_running else "idle",
        }
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk_sla.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
