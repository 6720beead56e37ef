from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class Issue:
    code: str
    message: str
    site_id: str | None = None
    job_type: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "site_id": self.site_id,
            "job_type": self.job_type,
        }


@dataclass(slots=True)
class ResultAccumulator(Generic[T]):
    """Partial successes of a multi-step pass plus what went wrong along the way.

    Warnings are continuable (one site failed, the pass went on); errors mean the
    pass itself could not complete.
    """

    items: list[T] = field(default_factory=list)
    warnings: list[Issue] = field(default_factory=list)
    errors: list[Issue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add(self, item: T) -> None:
        self.items.append(item)

    def warn(self, code: str, message: str, *, site_id: str | None = None, job_type: str | None = None) -> None:
        self.warnings.append(Issue(code=code, message=message, site_id=site_id, job_type=job_type))

    def fail(self, code: str, message: str, *, site_id: str | None = None, job_type: str | None = None) -> None:
        self.errors.append(Issue(code=code, message=message, site_id=site_id, job_type=job_type))

    def merge(self, other: ResultAccumulator[T]) -> None:
        self.items.extend(other.items)
        self.warnings.extend(other.warnings)
        self.errors.extend(other.errors)

    def summary(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "items": len(self.items),
            "warnings": [issue.as_dict() for issue in self.warnings],
            "errors": [issue.as_dict() for issue in self.errors],
        }
