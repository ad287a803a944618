"""
Per-branch outcomes for launch tree walks.

Each create step returns an Ok or an Err instead of pushing into a shared error
list; the walk folds the outcomes into a BranchReport at the end.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    entity: str
    error: str
    kind: str = ""

    @property
    def ok(self) -> bool:
        return False

    def as_dict(self) -> dict:
        d = {"entity": self.entity, "error": self.error}
        if self.kind:
            d["type"] = self.kind
        return d


Outcome = Union[Ok[T], Err]


def attempt(entity: str, fn: Callable[[], T], *, kind: str = "") -> "Outcome[T]":
    """Run fn and capture any exception as an Err scoped to `entity`."""
    try:
        return Ok(fn())
    except Exception as e:  # scoped failure: recorded, not re-raised
        logger.warning("Failed to create %s %r: %s", kind or "entity", entity, e)
        return Err(entity=entity, error=str(e), kind=kind)


@dataclass
class BranchReport:
    """Fold of branch outcomes: successes in creation order, plus the errors."""

    created: List[Any] = field(default_factory=list)
    errors: List[Err] = field(default_factory=list)

    def add(self, outcome: "Outcome[Any]") -> bool:
        if isinstance(outcome, Ok):
            self.created.append(outcome.value)
            return True
        self.errors.append(outcome)
        return False

    def merge(self, other: "BranchReport") -> "BranchReport":
        self.created.extend(other.created)
        self.errors.extend(other.errors)
        return self
