"""
SLA Domain Layer
================

Domain layer for the SLA deadline engine.

Contains:
- Entities: Core business objects with identity (Ticket, SLARule, SLAEvent)
- Value Objects: Immutable objects defined by attributes (RuleConditions,
  BusinessHoursConfig, ApproachingBreachPolicy)
- Domain Services: Stateless business logic (RuleMatcher,
  BusinessHoursCalculator, ComplianceStateMachine)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk_sla.sla.domain.entities import (
    Actor,
    SYSTEM_ACTOR,
    SLARule,
    SLASnapshot,
    Ticket,
    SLAEvent,
    SLATransition,
    SLAChangeLogEntry,
)
from helpdesk_sla.sla.domain.value_objects import (
    RuleConditions,
    BusinessHoursConfig,
    BreachBehavior,
    ApproachingBreachPolicy,
    OrganizationSLASettings,
    BusinessHoursCalculator,
)
from helpdesk_sla.sla.domain.rule_matcher import RuleMatcher
from helpdesk_sla.sla.domain.compliance import ComplianceStateMachine

__all__ = [
    # Entities
    "Actor",
    "SYSTEM_ACTOR",
    "SLARule",
    "SLASnapshot",
    "Ticket",
    "SLAEvent",
    "SLATransition",
    "SLAChangeLogEntry",
    # Value Objects
    "RuleConditions",
    "BusinessHoursConfig",
    "BreachBehavior",
    "ApproachingBreachPolicy",
    "OrganizationSLASettings",
    # Domain Services
    "BusinessHoursCalculator",
    "RuleMatcher",
    "ComplianceStateMachine",
]
