"""
Aggregate results and guarded queries.

Every slice query runs through a QueryGuard: a failing query is logged,
its session rolled back, and a fallback value substituted. The slice
then reports success=False instead of raising.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, TypeVar

from sqlalchemy.orm import Session


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class AggregateResult:
    """Outcome of one aggregation fetcher."""
    success: bool
    data: Any = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data: Any) -> "AggregateResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, message: str, data: Any = None) -> "AggregateResult":
        return cls(success=False, data=data, message=message)

    def to_dict(self) -> dict:
        result = {"success": self.success, "data": self.data}
        if self.message:
            result["message"] = self.message
        return result

    @classmethod
    def from_dict(cls, payload: dict) -> "AggregateResult":
        return cls(
            success=bool(payload.get("success")),
            data=payload.get("data"),
            message=payload.get("message"),
        )


@dataclass
class QueryGuard:
    """
    Runs queries against one session, substituting fallbacks on failure.

    Usage:
        guard = QueryGuard(db)
        total = guard.run(lambda: db.query(...).scalar(), 0, "Failed to sum totals")
        if guard.failures:
            ...
    """
    db: Session
    failures: List[str] = field(default_factory=list)

    def run(self, query_fn: Callable[[], T], fallback: T, message: str) -> T:
        try:
            return query_fn()
        except Exception as e:
            logger.error(f"{message}: {e}")
            self.failures.append(message)
            try:
                self.db.rollback()
            except Exception as rollback_error:
                logger.warning(f"Rollback after failed query also failed: {rollback_error}")
            return fallback

    @property
    def ok(self) -> bool:
        return not self.failures

    def result(self, data: Any) -> AggregateResult:
        """Wrap data, marking the result failed if any query fell back."""
        if self.failures:
            return AggregateResult(
                success=False, data=data, message="; ".join(self.failures)
            )
        return AggregateResult.ok(data)
