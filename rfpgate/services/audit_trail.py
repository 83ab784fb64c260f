"""
NDA audit trail: append inside the caller's transaction, read for admins.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from rfpgate.core.logging import audit_logger
from rfpgate.core.rbac import Actor
from rfpgate.db.models import NDAAuditEntry, IndividualNDA, CompanyNDA
from rfpgate.db.stores import AuditTrailStore
from rfpgate.services.outcomes import Outcome, DenyReason


class AuditAction(str, Enum):
    SIGNED = "signed"
    COUNTERSIGNED = "countersigned"
    REJECTED = "rejected"


class NDAKind(str, Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"


def append_entry(
    db: Session,
    kind: NDAKind,
    nda_id: int,
    action: AuditAction,
    actor: Actor,
    metadata: Optional[Dict[str, Any]] = None,
    rfp_id: Optional[int] = None,
) -> NDAAuditEntry:
    """Add one audit row. Does not commit."""
    details = dict(metadata or {})
    details.setdefault("actor_id", actor.user_id)
    details.setdefault("actor_role", actor.role)
    details.setdefault("timestamp", datetime.now(timezone.utc).isoformat())

    store = AuditTrailStore(db)
    if kind == NDAKind.COMPANY:
        entry = store.append(action.value, actor.user_id, details, company_nda_id=nda_id)
    else:
        entry = store.append(action.value, actor.user_id, details, nda_id=nda_id)

    audit_logger.log(
        action=f"nda_{action.value}",
        user_id=actor.user_id,
        company_id=actor.company_id,
        rfp_id=rfp_id,
        entity_type=f"{kind.value}_nda",
        entity_id=nda_id,
        details=details,
    )
    return entry


def list_entries(db: Session, actor: Actor, kind: NDAKind, nda_id: int) -> Outcome:
    """Audit entries for one NDA, oldest first. Admin only."""
    if not actor.is_authenticated:
        return Outcome.denied(DenyReason.AUTHENTICATION_REQUIRED)
    if not actor.is_admin:
        return Outcome.denied(DenyReason.INSUFFICIENT_ROLE, "Only admins can view the NDA audit trail")

    model = CompanyNDA if kind == NDAKind.COMPANY else IndividualNDA
    if db.query(model.id).filter(model.id == nda_id).first() is None:
        return Outcome.not_found(f"{kind.value}_nda", nda_id)

    store = AuditTrailStore(db)
    if kind == NDAKind.COMPANY:
        return Outcome.success(store.list_for_nda(company_nda_id=nda_id))
    return Outcome.success(store.list_for_nda(nda_id=nda_id))
