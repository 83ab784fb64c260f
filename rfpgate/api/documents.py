"""
Document download API routes.
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from rfpgate.db.session import get_db
from rfpgate.db.models import Document
from rfpgate.core.logging import audit_logger
from rfpgate.core.rbac import Actor, get_actor
from rfpgate.api.outcomes import raise_not_found, raise_denied
from rfpgate.services.access_engine import AccessDecisionEngine
from rfpgate.services.outcomes import RecordNotFound
from rfpgate.services.storage import issue_signed_url

router = APIRouter(prefix="/api/documents", tags=["Documents"])


class SignedURLResponse(BaseModel):
    document_id: int
    url: str
    expires_at: datetime


@router.get("/{document_id}/download", response_model=SignedURLResponse)
async def download_document(
    document_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Issue a short-lived signed URL once the caller is allowed to open the document."""
    try:
        decision = AccessDecisionEngine(db).can_access_document(actor, document_id)
    except RecordNotFound as e:
        raise_not_found(e)

    if not decision.allowed:
        raise_denied(decision.reason, "You do not have access to this document")

    document = db.query(Document).filter(Document.id == document_id).first()
    signed = issue_signed_url(document, user_id=actor.user_id)
    audit_logger.log(
        action="document_download_issued",
        user_id=actor.user_id,
        company_id=actor.company_id,
        rfp_id=document.rfp_id,
        entity_type="document",
        entity_id=document.id,
        details={"rule": decision.rule},
    )
    return SignedURLResponse(document_id=document.id, url=signed["url"], expires_at=signed["expires_at"])
