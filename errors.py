"""Error kinds raised by the circulation core.

Every error carries a human readable message; the HTTP layer maps the
class to a status code and never needs to inspect the text.
"""

from typing import List, Optional


class LibraryError(Exception):
    """Base class for all domain errors."""


class NotFoundError(LibraryError):
    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class InvalidStateTransitionError(LibraryError):
    pass


class InvalidOperationError(LibraryError):
    pass


class AlreadyReturnedError(InvalidOperationError):
    def __init__(self, message: str = "Book already returned") -> None:
        super().__init__(message)


class FineAlreadyPaidError(InvalidOperationError):
    def __init__(self, message: str = "Fine already paid") -> None:
        super().__init__(message)


class ValidationFailedError(LibraryError):
    """Aggregated borrowing-rule violations."""

    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Validation failed")


class ConflictError(LibraryError):
    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)
