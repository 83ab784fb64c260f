"""
Access decision API routes.

Decision checks answer 200 for both Allow and Deny; only unknown ids are errors.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from rfpgate.db.session import get_db
from rfpgate.core.rbac import Actor, get_actor, require_actor
from rfpgate.api.outcomes import raise_not_found, raise_denied
from rfpgate.services.access_engine import AccessDecisionEngine
from rfpgate.services.decision_cache import DecisionCache, get_decision_cache
from rfpgate.services.outcomes import AccessDecision, DenyReason, RecordNotFound

router = APIRouter(prefix="/api/access", tags=["Access"])


# ============= SCHEMAS =============

class AccessDecisionResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    rule: Optional[str] = None
    access_request_status: Optional[str] = None


class DocumentAccessItem(BaseModel):
    document_id: int
    title: str
    requires_nda: bool
    decision: AccessDecisionResponse


def _response(decision: AccessDecision) -> AccessDecisionResponse:
    return AccessDecisionResponse(**decision.to_dict())


# ============= ROUTES =============

@router.get("/rfps/{rfp_id}", response_model=AccessDecisionResponse)
async def check_rfp_access(
    rfp_id: int,
    actor: Actor = Depends(get_actor),
    cache: DecisionCache = Depends(get_decision_cache),
    db: Session = Depends(get_db),
):
    """Can the caller see this RFP?"""
    engine = AccessDecisionEngine(db)
    try:
        decision = cache.get_or_evaluate("rfp", rfp_id, actor, lambda: engine.can_access_rfp(actor, rfp_id))
    except RecordNotFound as e:
        raise_not_found(e)
    return _response(decision)


@router.get("/documents/{document_id}", response_model=AccessDecisionResponse)
async def check_document_access(
    document_id: int,
    actor: Actor = Depends(get_actor),
    cache: DecisionCache = Depends(get_decision_cache),
    db: Session = Depends(get_db),
):
    """Can the caller open this document?"""
    engine = AccessDecisionEngine(db)
    try:
        decision = cache.get_or_evaluate(
            "document", document_id, actor,
            lambda: engine.can_access_document(actor, document_id),
        )
    except RecordNotFound as e:
        raise_not_found(e)
    return _response(decision)


@router.get("/rfps/{rfp_id}/documents", response_model=List[DocumentAccessItem])
async def list_document_access(
    rfp_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Every document of the RFP with the caller's decision for each."""
    engine = AccessDecisionEngine(db)
    try:
        # Draft RFPs do not even reveal their document list.
        rfp_decision = engine.can_access_rfp(actor, rfp_id)
        if rfp_decision.reason == DenyReason.RFP_NOT_PUBLISHED.value:
            raise_denied(rfp_decision.reason, "RFP is not published")
        items = engine.list_documents(actor, rfp_id)
    except RecordNotFound as e:
        raise_not_found(e)

    return [
        DocumentAccessItem(
            document_id=document.id,
            title=document.title,
            requires_nda=document.requires_nda,
            decision=_response(decision),
        )
        for document, decision in items
    ]


@router.get("/documents/{document_id}/explain")
async def explain_document_access(
    document_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    """Every predicate behind a document decision (admin only)."""
    if not actor.is_admin:
        raise_denied(DenyReason.INSUFFICIENT_ROLE.value, "Only admins can explain access decisions")
    try:
        return AccessDecisionEngine(db).explain_document_access(actor, document_id)
    except RecordNotFound as e:
        raise_not_found(e)
