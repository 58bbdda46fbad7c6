"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional, Any


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ConcurrencyException(RepositoryException):
    """Raised when a row changed between read and write (stale version)."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Any,
        expected_version: int,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.expected_version = expected_version
        super().__init__(
            f"{resource_type} '{resource_id}' was modified concurrently "
            f"(expected version {expected_version})",
            details
        )


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ClosedTicketSLAException(DomainException):
    """Raised on any attempt to change SLA fields of a resolved/closed ticket."""

    def __init__(self, ticket_id: Any, action: str = "modify SLA on"):
        self.ticket_id = ticket_id
        super().__init__(
            f"Cannot {action} closed or resolved tickets.",
            {"ticket_id": str(ticket_id)}
        )


class ExtensionLimitExceededException(DomainException):
    """Raised when a non-manager exceeds the configured extension caps."""

    def __init__(self, message: str, limit: int, requested: int):
        self.limit = limit
        self.requested = requested
        super().__init__(message, {"limit": limit, "requested": requested})
