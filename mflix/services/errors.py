"""Error taxonomy shared by the compilers, the repository and the services."""

from __future__ import annotations

from typing import Any


class MflixError(Exception):
    """Base exception for movie data-access failures."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(MflixError):
    """Raised when client input is malformed, missing or contradictory."""

    code = "VALIDATION_ERROR"


class InvalidIdentifierError(ValidationError):
    """Raised when a value cannot be parsed into an ObjectId."""

    def __init__(self, value: Any = None, message: str = "Invalid movie ID format") -> None:
        super().__init__(message, details={"value": str(value)} if value is not None else None)
        self.value = value


class EmptyUpdateError(ValidationError):
    """Raised when an update carries no present field."""

    def __init__(self, message: str = "No update data provided") -> None:
        super().__init__(message)


class UnsupportedOperatorError(ValidationError):
    """Raised when a filter uses a comparison operator outside the supported set."""

    def __init__(self, field: str, operator: str) -> None:
        super().__init__(
            f"Unsupported operator '{operator}' for field '{field}'",
            details={"field": field, "operator": operator},
        )
        self.field = field
        self.operator = operator


class NotFoundError(MflixError):
    """Raised when an identifier-scoped operation matches no document."""

    code = "RESOURCE_NOT_FOUND"


class DatabaseOperationError(MflixError):
    """Raised when the document store fails unexpectedly."""

    code = "DATABASE_ERROR"
