"""Exception types raised by the resolution and citation engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


class EngineError(Exception):
    """Base class for engine errors.

    Carries the failing *operation* name and the record/edge *ids* involved so
    callers can log or display the failure without re-deriving context.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        ids: Iterable[str] = (),
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.ids = tuple(ids)

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.ids:
            parts.append(f"ids={','.join(self.ids)}")
        return " | ".join(parts)


class ValidationError(EngineError):
    """Input is missing a required field or is malformed."""


class NotFoundError(EngineError):
    """A referenced record or edge does not exist."""


class StoreTransientError(EngineError):
    """The record store is temporarily unavailable."""


class BusinessRuleError(EngineError):
    """The operation would break an engine rule, e.g. a self-citation."""


class DuplicateEdgeError(BusinessRuleError):
    """The store already holds an edge for this ordered pair."""


@dataclass
class ItemError:
    """One failed item inside a batch operation."""

    index: int
    item_id: str | None
    message: str
