"""
Result type returned by the approval engine and workflow maintenance services.

The engine never signals business outcomes through HTTP-ish integers; the
blueprint translates ``ApprovalOutcome`` into a status code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ApprovalOutcome(str, Enum):
    OK = "ok"
    DUPLICATE_SKIPPED = "duplicate_skipped"
    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"


@dataclass
class ApprovalResult:
    outcome: ApprovalOutcome
    message: str = ""
    item_detail_id: int | None = None
    changed: bool = False
    data: dict = field(default_factory=dict)
    details: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome in (ApprovalOutcome.OK, ApprovalOutcome.DUPLICATE_SKIPPED)

    @classmethod
    def success(cls, message="", **kwargs) -> "ApprovalResult":
        return cls(ApprovalOutcome.OK, message, **kwargs)

    @classmethod
    def duplicate(cls, message, **kwargs) -> "ApprovalResult":
        return cls(ApprovalOutcome.DUPLICATE_SKIPPED, message, **kwargs)

    @classmethod
    def not_found(cls, message, **kwargs) -> "ApprovalResult":
        return cls(ApprovalOutcome.NOT_FOUND, message, **kwargs)

    @classmethod
    def invalid(cls, message, **kwargs) -> "ApprovalResult":
        return cls(ApprovalOutcome.VALIDATION_FAILED, message, **kwargs)

    def to_dict(self) -> dict:
        body = {
            "outcome": self.outcome.value,
            "message": self.message,
            "item_detail_id": self.item_detail_id,
            "changed": self.changed,
        }
        body.update(self.data)
        return body
