"""
SLA Controllers (API Routes)
=============================

FastAPI routes for the SLA deadline engine.

Controllers are thin - they delegate to application services. Services
are wired at startup and read from ``app.state``. The acting user is taken
from the ``X-Actor-Id`` and ``X-Actor-Roles`` headers set by the gateway.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request, status

from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application import (
    BreachScanner,
    ExtendSLARequest,
    IClock,
    RefreshSLARequest,
    ReorderRulesRequest,
    ScanSummaryResponse,
    SLARuleCreateDTO,
    SLARuleResponse,
    SLARuleService,
    SLATicketService,
    SnoozeExpirySweeper,
    SnoozeRequest,
    TicketFieldEditRequest,
    TicketSLAResponse,
    UnsnoozeSummaryResponse,
)
from helpdesk_sla.sla.domain import Actor, Ticket

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA"])


# ========== Example payloads for Swagger ==========

TICKET_SLA_RESPONSE_EXAMPLE = {
    "ticket_id": "123e4567-e89b-12d3-a456-426614174000",
    "status": "open",
    "priority": "high",
    "category": "billing",
    "owning_team_id": "team-emea",
    "sla_rule_id": "5b0e3c1e-4a55-4a3c-9f57-0f3a4c2d1b10",
    "sla_status": "on_track",
    "sla_status_label": "On Track",
    "sla_due_at": "2024-01-15T18:00:00Z",
    "sla_breached_at": None,
    "sla_started_at": "2024-01-15T10:00:00Z",
    "sla_extension_count": 0,
    "remaining_seconds": 14400.0,
    "is_snoozed": False
}


# ========== Dependencies ==========

def get_ticket_service(request: Request) -> SLATicketService:
    return request.app.state.sla_ticket_service


def get_rule_service(request: Request) -> SLARuleService:
    return request.app.state.sla_rule_service


def get_scanner(request: Request) -> BreachScanner:
    return request.app.state.breach_scanner


def get_unsnooze_sweeper(request: Request) -> SnoozeExpirySweeper:
    return request.app.state.unsnooze_sweeper


def get_clock(request: Request) -> IClock:
    return request.app.state.clock


def get_actor(
    x_actor_id: str = Header(..., min_length=1, description="ID of the acting staff member"),
    x_actor_roles: Optional[str] = Header(None, description="Comma-separated roles")
) -> Actor:
    roles = frozenset(
        role.strip() for role in (x_actor_roles or "").split(",") if role.strip()
    )
    return Actor(id=x_actor_id, roles=roles)


def _respond(ticket: Ticket, clock: IClock) -> TicketSLAResponse:
    return TicketSLAResponse.from_domain(ticket, clock.now())


# ========== Ticket SLA Routes ==========

@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketSLAResponse,
    summary="Get ticket SLA status",
    responses={
        200: {"content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}},
        404: {"description": "Ticket not found"}
    }
)
async def get_ticket_sla(
    ticket_id: UUID,
    service: SLATicketService = Depends(get_ticket_service),
    clock: IClock = Depends(get_clock)
):
    return _respond(await service.get_ticket(ticket_id), clock)


@router.post(
    "/tickets/{ticket_id}/assign",
    response_model=TicketSLAResponse,
    summary="Assign SLA to a newly created ticket"
)
async def assign_ticket_sla(
    ticket_id: UUID,
    actor: Actor = Depends(get_actor),
    service: SLATicketService = Depends(get_ticket_service),
    clock: IClock = Depends(get_clock)
):
    return _respond(await service.assign_on_create(ticket_id, actor), clock)


@router.post(
    "/tickets/{ticket_id}/field-edits",
    response_model=TicketSLAResponse,
    summary="Re-evaluate SLA after priority, category or team edits",
    description="""
    Called by the ticket lifecycle after an edit. If the same rule still
    applies the due date is kept; otherwise the new rule's due date is
    computed from the ticket's creation time.
    """
)
async def ticket_fields_edited(
    ticket_id: UUID,
    body: TicketFieldEditRequest,
    actor: Actor = Depends(get_actor),
    service: SLATicketService = Depends(get_ticket_service),
    clock: IClock = Depends(get_clock)
):
    return _respond(await service.handle_field_edit(ticket_id, body.changed_fields, actor), clock)


@router.post(
    "/tickets/{ticket_id}/extend",
    response_model=TicketSLAResponse,
    summary="Extend the SLA due date",
    description="""
    Push the due date forward by whole hours.

    Actors without a manager role are limited by the organisation's
    `max_extensions` and `max_extension_hours`. A breached or approaching
    SLA returns to `on_track`.
    """,
    responses={
        403: {"description": "Extension limit reached"},
        409: {"description": "Ticket is closed or resolved, or was modified concurrently"},
        422: {"description": "Invalid extension"}
    }
)
async def extend_ticket_sla(
    ticket_id: UUID,
    body: ExtendSLARequest,
    actor: Actor = Depends(get_actor),
    service: SLATicketService = Depends(get_ticket_service),
    clock: IClock = Depends(get_clock)
):
    ticket = await service.extend(ticket_id, body.hours, actor)
    logger.info(
        "SLA extended",
        extra={"ticket_id": str(ticket_id), "hours": body.hours, "actor_id": actor.id}
    )
    return _respond(ticket, clock)


@router.post(
    "/tickets/{ticket_id}/refresh",
    response_model=TicketSLAResponse,
    summary="Refresh the SLA",
    description="""
    Re-match the rule set. With `restart_from_now` (default) the clock
    restarts at the current time and any breach is cleared.
    """
)
async def refresh_ticket_sla(
    ticket_id: UUID,
    body: RefreshSLARequest = RefreshSLARequest(),
    actor: Actor = Depends(get_actor),
    service: SLATicketService = Depends(get_ticket_service),
    clock: IClock = Depends(get_clock)
):
    return _respond(await service.refresh(ticket_id, body.restart_from_now, actor), clock)


@router.post("/tickets/{ticket_id}/complete", response_model=TicketSLAResponse, summary="Mark SLA completed")
async def complete_ticket_sla(
    ticket_id: UUID,
    actor: Actor = Depends(get_actor),
    service: SLATicketService = Depends(get_ticket_service),
    clock: IClock = Depends(get_clock)
):
    return _respond(await service.complete(ticket_id, actor), clock)


@router.post("/tickets/{ticket_id}/reopen", response_model=TicketSLAResponse, summary="Resume SLA after reopen")
async def reopen_ticket_sla(
    ticket_id: UUID,
    actor: Actor = Depends(get_actor),
    service: SLATicketService = Depends(get_ticket_service),
    clock: IClock = Depends(get_clock)
):
    return _respond(await service.reopen(ticket_id, actor), clock)


@router.post("/tickets/{ticket_id}/snooze", response_model=TicketSLAResponse, summary="Snooze a ticket")
async def snooze_ticket(
    ticket_id: UUID,
    body: SnoozeRequest,
    actor: Actor = Depends(get_actor),
    service: SLATicketService = Depends(get_ticket_service),
    clock: IClock = Depends(get_clock)
):
    return _respond(await service.snooze_ticket(ticket_id, body.until, actor), clock)


@router.post(
    "/tickets/{ticket_id}/unsnooze",
    response_model=TicketSLAResponse,
    summary="Unsnooze a ticket",
    description="When `pause_sla_on_snooze` is enabled the due date moves forward by the snoozed time."
)
async def unsnooze_ticket(
    ticket_id: UUID,
    actor: Actor = Depends(get_actor),
    service: SLATicketService = Depends(get_ticket_service),
    clock: IClock = Depends(get_clock)
):
    return _respond(await service.unsnooze_ticket(ticket_id, actor), clock)


# ========== Background Sweeps ==========

@router.post(
    "/scan",
    response_model=ScanSummaryResponse,
    summary="Run a breach sweep now",
    description="Skipped (`skipped: true`) when a scheduled sweep is already running."
)
async def run_breach_sweep(scanner: BreachScanner = Depends(get_scanner)):
    summary = await scanner.sweep()
    return ScanSummaryResponse(**summary.to_dict())


@router.post(
    "/unsnooze-sweep",
    response_model=UnsnoozeSummaryResponse,
    summary="Unsnooze tickets whose snooze has ended",
    description="Skipped (`skipped: true`) when a scheduled run is already in progress."
)
async def run_unsnooze_sweep(sweeper: SnoozeExpirySweeper = Depends(get_unsnooze_sweeper)):
    summary = await sweeper.sweep()
    return UnsnoozeSummaryResponse(**summary.to_dict())


# ========== Rule Administration ==========

@router.get("/rules", response_model=List[SLARuleResponse], summary="List SLA rules in evaluation order")
async def list_rules(service: SLARuleService = Depends(get_rule_service)):
    return [SLARuleResponse.from_domain(rule) for rule in await service.list_rules()]


@router.post(
    "/rules",
    response_model=SLARuleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an SLA rule"
)
async def create_rule(
    body: SLARuleCreateDTO,
    service: SLARuleService = Depends(get_rule_service)
):
    rule = await service.create_rule(body.to_domain())
    logger.info("SLA rule created", extra={"rule_id": str(rule.id), "rule_name": rule.name})
    return SLARuleResponse.from_domain(rule)


@router.put(
    "/rules/order",
    response_model=List[SLARuleResponse],
    summary="Reorder SLA rules",
    description="The first ID gets priority 1, the second priority 2, and so on.",
    responses={404: {"description": "Unknown rule ID"}}
)
async def reorder_rules(
    body: ReorderRulesRequest,
    service: SLARuleService = Depends(get_rule_service)
):
    rules = await service.reorder_rules(body.ordered_rule_ids)
    return [SLARuleResponse.from_domain(rule) for rule in rules]


# Export router for inclusion in main app
sla_router = router
