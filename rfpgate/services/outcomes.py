"""
Typed results for access decisions and lifecycle operations.

Expected failures (denied, conflict, invalid, not found) are values, not
exceptions. Only database/infrastructure errors propagate.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class DenyReason(str, Enum):
    RFP_NOT_PUBLISHED = "rfp_not_published"
    NO_QUALIFYING_NDA = "no_qualifying_nda"
    RFP_ACCESS_PENDING = "rfp_access_pending"
    RFP_ACCESS_REJECTED = "rfp_access_rejected"
    RFP_ACCESS_REQUIRED = "rfp_access_required"
    NOT_COMPANY_ADMIN = "not_company_admin"
    INSUFFICIENT_ROLE = "insufficient_role"
    AUTHENTICATION_REQUIRED = "authentication_required"
    DECISION_UNAVAILABLE = "decision_unavailable"


class RecordNotFound(Exception):
    """An RFP, document or NDA id that does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: Optional[str] = None
    rule: Optional[str] = None
    # Surfaced on RFP denials so the caller can prompt the right next step.
    access_request_status: Optional[str] = None

    @classmethod
    def allow(cls, rule: str, access_request_status: Optional[str] = None) -> "AccessDecision":
        return cls(allowed=True, rule=rule, access_request_status=access_request_status)

    @classmethod
    def deny(
        cls,
        reason: DenyReason,
        rule: Optional[str] = None,
        access_request_status: Optional[str] = None,
    ) -> "AccessDecision":
        return cls(
            allowed=False,
            reason=reason.value,
            rule=rule,
            access_request_status=access_request_status,
        )

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "rule": self.rule,
            "access_request_status": self.access_request_status,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AccessDecision":
        return cls(
            allowed=bool(data["allowed"]),
            reason=data.get("reason"),
            rule=data.get("rule"),
            access_request_status=data.get("access_request_status"),
        )


class OutcomeKind(str, Enum):
    OK = "ok"
    DENIED = "denied"
    CONFLICT = "conflict"
    INVALID = "invalid"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    value: Any = None
    reason: Optional[str] = None
    message: Optional[str] = None
    field: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.OK

    @classmethod
    def success(cls, value: Any = None) -> "Outcome":
        return cls(kind=OutcomeKind.OK, value=value)

    @classmethod
    def denied(cls, reason: DenyReason, message: Optional[str] = None) -> "Outcome":
        return cls(kind=OutcomeKind.DENIED, reason=reason.value, message=message)

    @classmethod
    def conflict(cls, reason: str, message: str) -> "Outcome":
        return cls(kind=OutcomeKind.CONFLICT, reason=reason, message=message)

    @classmethod
    def invalid(cls, field: str, message: str, reason: str = "validation_error") -> "Outcome":
        return cls(kind=OutcomeKind.INVALID, reason=reason, field=field, message=message)

    @classmethod
    def not_found(cls, entity: str, entity_id: Any) -> "Outcome":
        return cls(kind=OutcomeKind.NOT_FOUND, reason="not_found", message=f"{entity} {entity_id} not found")
