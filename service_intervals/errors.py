"""Exceptions raised by the service interval engine.

Storage failures are not wrapped: ``sqlalchemy.exc.SQLAlchemyError`` reaches
the caller as-is.
"""

from typing import List, Tuple


class ServiceIntervalError(Exception):
    """Base class for engine errors."""


class NotFoundError(ServiceIntervalError):
    """Record is absent or belongs to another account."""

    def __init__(self, message: str = "Service interval not found"):
        super().__init__(message)


class ValidationFailedError(ServiceIntervalError):
    """Input rejected. Carries (field, message) pairs."""

    def __init__(self, errors: List[Tuple[str, str]]):
        self.errors = errors
        super().__init__("; ".join(f"{field}: {message}" for field, message in errors))

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationFailedError":
        return cls([(field, message)])

    def messages_for(self, field: str) -> List[str]:
        return [message for f, message in self.errors if f == field]


class ConfigError(ServiceIntervalError):
    """Configuration file or environment is invalid."""
