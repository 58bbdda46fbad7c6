"""
SLA Rule Matching
==================

Selects the single SLA rule that applies to a ticket.

First match wins: rules are tried in ascending ``priority`` and, within the
same priority, in the order they were declared. Matching is a pure function
of the ticket's attributes and the rule set.
"""

import logging
from typing import Iterable, List, Optional

from helpdesk_sla.sla.domain.entities import SLARule, Ticket
from helpdesk_sla.sla.domain.value_objects import RuleConditions

logger = logging.getLogger(__name__)


class RuleMatcher:
    """
    Stateless rule selection.

    A rule whose stored conditions cannot be parsed is skipped with a
    warning; it never aborts the match for the remaining rules.
    """

    @staticmethod
    def order_rules(rules: Iterable[SLARule]) -> List[SLARule]:
        """Active rules by priority; ``sorted`` is stable so ties keep declaration order."""
        return sorted((r for r in rules if r.is_active), key=lambda r: r.priority)

    @staticmethod
    def parse_conditions(rule: SLARule) -> Optional[RuleConditions]:
        """Typed conditions of ``rule``, or None if they are malformed."""
        try:
            return RuleConditions.from_raw(rule.conditions)
        except ValueError as e:
            logger.warning(
                "Skipping SLA rule with malformed conditions",
                extra={"rule_id": str(rule.id), "rule_name": rule.name, "error": str(e)}
            )
            return None

    @staticmethod
    def conditions_match(ticket: Ticket, conditions: RuleConditions) -> bool:
        for field_name, expected in conditions.constraints().items():
            actual = getattr(ticket, field_name, None)
            if actual is None:
                return False
            if str(actual).casefold() != expected.casefold():
                return False
        return True

    @classmethod
    def match(cls, ticket: Ticket, rules: Iterable[SLARule]) -> Optional[SLARule]:
        """
        Find the applicable rule for a ticket.

        Args:
            ticket: Ticket whose priority/category/team/status are matched
            rules: Candidate rules in declaration order

        Returns:
            The first matching active rule, or None
        """
        for rule in cls.order_rules(rules):
            conditions = cls.parse_conditions(rule)
            if conditions is None:
                continue
            if cls.conditions_match(ticket, conditions):
                return rule
        return None
