"""
RFP access request API routes.
"""
from typing import List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from rfpgate.db.session import get_db
from rfpgate.core.rbac import Actor, require_actor
from rfpgate.api.outcomes import unwrap
from rfpgate.services.access_requests import AccessRequestWorkflow
from rfpgate.services.notifications import NotificationDispatcher, get_notification_dispatcher

router = APIRouter(prefix="/api/rfp-access", tags=["RFP Access"])


# ============= SCHEMAS =============

class AccessRequestResponse(BaseModel):
    id: int
    rfp_id: int
    user_id: int
    status: str
    decided_by: Optional[int] = None
    decided_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AccessRequestStatusResponse(BaseModel):
    rfp_id: int
    status: Optional[str] = None


# ============= ROUTES =============

@router.post("/rfps/{rfp_id}", response_model=AccessRequestResponse, status_code=status.HTTP_201_CREATED)
async def request_rfp_access(
    rfp_id: int,
    actor: Actor = Depends(require_actor),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    """Ask to see a confidential RFP (client reviewers only)."""
    record = unwrap(AccessRequestWorkflow(db, notifier).request_access(actor, rfp_id))
    return AccessRequestResponse.model_validate(record)


@router.get("/rfps/{rfp_id}/me", response_model=AccessRequestStatusResponse)
async def get_my_request_status(
    rfp_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    """The caller's own request status, or null when none exists."""
    return AccessRequestStatusResponse(
        rfp_id=rfp_id,
        status=AccessRequestWorkflow(db).get_request_status(actor, rfp_id),
    )


@router.get("/rfps/{rfp_id}", response_model=List[AccessRequestResponse])
async def list_access_requests(
    rfp_id: int,
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by request status"),
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    """All access requests for an RFP (admin only)."""
    records = unwrap(AccessRequestWorkflow(db).list_requests(actor, rfp_id, status_filter))
    return [AccessRequestResponse.model_validate(r) for r in records]


@router.post("/{request_id}/approve", response_model=AccessRequestResponse)
async def approve_access_request(
    request_id: int,
    actor: Actor = Depends(require_actor),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    """Approve a pending request (admin only)."""
    record = unwrap(AccessRequestWorkflow(db, notifier).approve(actor, request_id))
    return AccessRequestResponse.model_validate(record)


@router.post("/{request_id}/reject", response_model=AccessRequestResponse)
async def reject_access_request(
    request_id: int,
    actor: Actor = Depends(require_actor),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    """Reject a pending request (admin only)."""
    record = unwrap(AccessRequestWorkflow(db, notifier).reject(actor, request_id))
    return AccessRequestResponse.model_validate(record)
