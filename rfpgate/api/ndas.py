"""
NDA API routes: signing, countersigning, rejection, status and audit trail.
"""
from dataclasses import asdict
from typing import List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from rfpgate.db.session import get_db
from rfpgate.core.rbac import Actor, get_actor, require_actor
from rfpgate.api.outcomes import unwrap, client_context
from rfpgate.services.audit_trail import NDAKind, list_entries
from rfpgate.services.nda_lifecycle import NDALifecycleManager, SignatureMeta
from rfpgate.services.notifications import NotificationDispatcher, get_notification_dispatcher

router = APIRouter(prefix="/api/ndas", tags=["NDAs"])


# ============= SCHEMAS =============

class SignNDARequest(BaseModel):
    full_name: str
    title: Optional[str] = None
    company: Optional[str] = None
    signature_data: dict = Field(default_factory=dict)


class CountersignRequest(BaseModel):
    countersigner_name: str
    countersigner_title: Optional[str] = None
    signature_data: dict = Field(default_factory=dict)


class RejectRequest(BaseModel):
    reason: str


class NDAResponse(BaseModel):
    id: int
    kind: NDAKind
    rfp_id: int
    status: str
    user_id: Optional[int] = None
    company_id: Optional[int] = None
    signed_by: Optional[int] = None
    full_name: str
    title: Optional[str] = None
    company: Optional[str] = None
    signed_at: Optional[datetime] = None
    countersigned_at: Optional[datetime] = None
    countersigner_name: Optional[str] = None
    countersigner_title: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejection_date: Optional[datetime] = None


class NDAPartyStatusResponse(BaseModel):
    exists: bool
    nda_id: Optional[int] = None
    status: Optional[str] = None
    full_name: Optional[str] = None
    title: Optional[str] = None
    company: Optional[str] = None
    signed_at: Optional[datetime] = None
    countersigned_at: Optional[datetime] = None
    countersigner_name: Optional[str] = None
    countersigner_title: Optional[str] = None
    has_bidder_signature: bool = False
    has_client_signature: bool = False
    rejected: bool = False
    rejection_reason: Optional[str] = None
    rejection_date: Optional[datetime] = None
    is_complete: bool = False


class NDAStatusResponse(BaseModel):
    rfp_id: int
    individual: NDAPartyStatusResponse
    company: NDAPartyStatusResponse
    grants_document_access: bool


class NDAListResponse(BaseModel):
    individual: List[NDAResponse]
    company: List[NDAResponse]


class AuditEntryResponse(BaseModel):
    id: int
    action: str
    metadata: Optional[dict] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


def _nda_response(kind: NDAKind, record) -> NDAResponse:
    return NDAResponse(
        id=record.id,
        kind=kind,
        rfp_id=record.rfp_id,
        status=record.status,
        user_id=getattr(record, "user_id", None),
        company_id=getattr(record, "company_id", None),
        signed_by=getattr(record, "signed_by", None),
        full_name=record.full_name,
        title=record.title,
        company=getattr(record, "company", None),
        signed_at=record.signed_at,
        countersigned_at=record.countersigned_at,
        countersigner_name=record.countersigner_name,
        countersigner_title=record.countersigner_title,
        rejection_reason=record.rejection_reason,
        rejection_date=record.rejection_date,
    )


def _signature(request: Request, body: SignNDARequest) -> SignatureMeta:
    ctx = client_context(request)
    return SignatureMeta(
        full_name=body.full_name,
        title=body.title,
        company=body.company,
        signature_data=body.signature_data,
        ip_address=ctx["ip_address"],
        user_agent=ctx["user_agent"],
    )


# ============= ROUTES =============

@router.post("/rfps/{rfp_id}/sign", response_model=NDAResponse)
async def sign_nda(
    rfp_id: int,
    body: SignNDARequest,
    request: Request,
    actor: Actor = Depends(require_actor),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    """Sign the caller's individual NDA. Re-signing refreshes the signature."""
    manager = NDALifecycleManager(db, notifier)
    record = unwrap(manager.sign(actor, rfp_id, _signature(request, body)))
    return _nda_response(NDAKind.INDIVIDUAL, record)


@router.post("/rfps/{rfp_id}/company-sign", response_model=NDAResponse)
async def sign_company_nda(
    rfp_id: int,
    body: SignNDARequest,
    request: Request,
    actor: Actor = Depends(require_actor),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    """Sign on behalf of the caller's company (company admins only)."""
    manager = NDALifecycleManager(db, notifier)
    record = unwrap(manager.sign_company(actor, rfp_id, _signature(request, body)))
    return _nda_response(NDAKind.COMPANY, record)


@router.get("/rfps/{rfp_id}/status", response_model=NDAStatusResponse)
async def get_nda_status(
    rfp_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Individual and company NDA state for the caller."""
    view = unwrap(NDALifecycleManager(db).get_status(actor, rfp_id))
    return NDAStatusResponse(
        rfp_id=view.rfp_id,
        individual=NDAPartyStatusResponse(**asdict(view.individual)),
        company=NDAPartyStatusResponse(**asdict(view.company)),
        grants_document_access=view.grants_document_access,
    )


@router.get("/rfps/{rfp_id}", response_model=NDAListResponse)
async def list_rfp_ndas(
    rfp_id: int,
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by NDA status"),
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    """All NDAs for an RFP (admins and client reviewers)."""
    ndas = unwrap(NDALifecycleManager(db).list_ndas(actor, rfp_id, status_filter))
    return NDAListResponse(
        individual=[_nda_response(NDAKind.INDIVIDUAL, r) for r in ndas[NDAKind.INDIVIDUAL.value]],
        company=[_nda_response(NDAKind.COMPANY, r) for r in ndas[NDAKind.COMPANY.value]],
    )


@router.post("/{kind}/{nda_id}/countersign", response_model=NDAResponse)
async def countersign_nda(
    kind: NDAKind,
    nda_id: int,
    body: CountersignRequest,
    request: Request,
    actor: Actor = Depends(require_actor),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    """Countersign a signed NDA, approving it."""
    manager = NDALifecycleManager(db, notifier)
    record = unwrap(manager.countersign(
        actor, kind, nda_id,
        countersigner_name=body.countersigner_name,
        countersigner_title=body.countersigner_title,
        signature_data=body.signature_data,
        client_context=client_context(request),
    ))
    return _nda_response(kind, record)


@router.post("/{kind}/{nda_id}/reject", response_model=NDAResponse)
async def reject_nda(
    kind: NDAKind,
    nda_id: int,
    body: RejectRequest,
    request: Request,
    actor: Actor = Depends(require_actor),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    """Reject a signed NDA. A reason is required."""
    manager = NDALifecycleManager(db, notifier)
    record = unwrap(manager.reject(actor, kind, nda_id, body.reason, client_context=client_context(request)))
    return _nda_response(kind, record)


@router.get("/{kind}/{nda_id}/audit", response_model=List[AuditEntryResponse])
async def get_nda_audit_trail(
    kind: NDAKind,
    nda_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    """Audit entries for one NDA, oldest first (admin only)."""
    entries = unwrap(list_entries(db, actor, kind, nda_id))
    return [
        AuditEntryResponse(
            id=e.id,
            action=e.action,
            metadata=e.details,
            created_by=e.created_by,
            created_at=e.created_at,
        )
        for e in entries
    ]
