"""
Access Decision Engine.

Decides whether an actor may see an RFP or one of its documents. The rules
are ordered OR-branches evaluated by two pure functions over immutable
snapshots; ``AccessDecisionEngine`` only loads those snapshots (one full-row
read per record) and never writes.

Document rules, first match wins:
1. admin                                              -> allow
2. draft RFP, actor neither owner nor admin           -> deny rfp_not_published
3. no NDA required, public non-draft RFP              -> allow (anonymous too)
4. no NDA required, actor may see the RFP             -> allow
5. individual NDA signed or approved                  -> allow
6. company NDA approved for the actor's company       -> allow
7.                                                    -> deny no_qualifying_nda
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rfpgate.core.logging import get_logger
from rfpgate.core.rbac import Actor
from rfpgate.db.models import (
    RFP, Document, RFPStatus, RFPVisibility, NDAStatus, AccessRequestStatus, UserRole,
)
from rfpgate.db.stores import IndividualNDAStore, CompanyNDAStore, AccessRequestStore
from rfpgate.services.outcomes import AccessDecision, DenyReason, RecordNotFound

logger = get_logger(__name__)

# Individual NDA statuses that unlock NDA-gated documents.
INDIVIDUAL_NDA_ACCESS_STATUSES = frozenset({NDAStatus.SIGNED.value, NDAStatus.APPROVED.value})


# ============= SNAPSHOTS =============

@dataclass(frozen=True)
class RFPSnapshot:
    id: int
    visibility: str
    status: str
    client_id: Optional[int]

    @classmethod
    def of(cls, rfp: RFP) -> "RFPSnapshot":
        return cls(id=rfp.id, visibility=rfp.visibility, status=rfp.status, client_id=rfp.client_id)

    @property
    def is_draft(self) -> bool:
        return self.status == RFPStatus.DRAFT.value

    @property
    def is_public(self) -> bool:
        return self.visibility == RFPVisibility.PUBLIC.value


@dataclass(frozen=True)
class DocumentSnapshot:
    id: int
    rfp_id: int
    title: str
    requires_nda: bool

    @classmethod
    def of(cls, document: Document) -> "DocumentSnapshot":
        return cls(
            id=document.id,
            rfp_id=document.rfp_id,
            title=document.title,
            requires_nda=bool(document.requires_nda),
        )


@dataclass(frozen=True)
class NDASnapshot:
    id: int
    status: str

    @classmethod
    def of(cls, record) -> Optional["NDASnapshot"]:
        if record is None:
            return None
        return cls(id=record.id, status=record.status)


@dataclass(frozen=True)
class AccessRequestSnapshot:
    id: int
    status: str

    @classmethod
    def of(cls, record) -> Optional["AccessRequestSnapshot"]:
        if record is None:
            return None
        return cls(id=record.id, status=record.status)


def _is_owner(actor: Actor, rfp: RFPSnapshot) -> bool:
    return actor.is_authenticated and rfp.client_id is not None and actor.user_id == rfp.client_id


# ============= RULES =============

def evaluate_rfp_access(
    actor: Actor,
    rfp: RFPSnapshot,
    access_request: Optional[AccessRequestSnapshot] = None,
) -> AccessDecision:
    """Whether the actor may see the RFP record and its metadata."""
    request_status = access_request.status if access_request else None

    if rfp.is_draft and not (actor.is_admin or _is_owner(actor, rfp)):
        return AccessDecision.deny(DenyReason.RFP_NOT_PUBLISHED, rule="draft")

    if rfp.is_public:
        return AccessDecision.allow("public_rfp")

    if actor.is_admin:
        return AccessDecision.allow("admin")

    if _is_owner(actor, rfp):
        return AccessDecision.allow("owner")

    if (
        actor.role == UserRole.CLIENT_REVIEWER.value
        and request_status == AccessRequestStatus.APPROVED.value
    ):
        return AccessDecision.allow("access_request_approved", access_request_status=request_status)

    if request_status == AccessRequestStatus.PENDING.value:
        reason = DenyReason.RFP_ACCESS_PENDING
    elif request_status == AccessRequestStatus.REJECTED.value:
        reason = DenyReason.RFP_ACCESS_REJECTED
    else:
        reason = DenyReason.RFP_ACCESS_REQUIRED
    return AccessDecision.deny(reason, rule="confidential_rfp", access_request_status=request_status)


def evaluate_document_access(
    actor: Actor,
    rfp: RFPSnapshot,
    document: DocumentSnapshot,
    individual_nda: Optional[NDASnapshot] = None,
    company_nda: Optional[NDASnapshot] = None,
    access_request: Optional[AccessRequestSnapshot] = None,
) -> AccessDecision:
    """Whether the actor may open the document's content."""
    if actor.is_admin:
        return AccessDecision.allow("admin")

    if rfp.is_draft and not _is_owner(actor, rfp):
        return AccessDecision.deny(DenyReason.RFP_NOT_PUBLISHED, rule="draft")

    if not document.requires_nda:
        if rfp.is_public and not rfp.is_draft:
            return AccessDecision.allow("public_document")
        if evaluate_rfp_access(actor, rfp, access_request).allowed:
            return AccessDecision.allow("rfp_access")

    if individual_nda is not None and individual_nda.status in INDIVIDUAL_NDA_ACCESS_STATUSES:
        return AccessDecision.allow("individual_nda")

    if company_nda is not None and company_nda.status == NDAStatus.APPROVED.value:
        return AccessDecision.allow("company_nda")

    return AccessDecision.deny(DenyReason.NO_QUALIFYING_NDA, rule="nda_required")


# ============= ENGINE =============

class AccessDecisionEngine:
    """Loads snapshots from the stores and applies the rules. Read-only."""

    def __init__(self, db: Session):
        self.db = db
        self.individual_ndas = IndividualNDAStore(db)
        self.company_ndas = CompanyNDAStore(db)
        self.access_requests = AccessRequestStore(db)

    # ----- loaders -----

    def _load_rfp(self, rfp_id: int) -> RFPSnapshot:
        rfp = self.db.query(RFP).filter(RFP.id == rfp_id).first()
        if rfp is None:
            raise RecordNotFound("rfp", rfp_id)
        return RFPSnapshot.of(rfp)

    def _load_document(self, document_id: int) -> DocumentSnapshot:
        document = self.db.query(Document).filter(Document.id == document_id).first()
        if document is None:
            raise RecordNotFound("document", document_id)
        return DocumentSnapshot.of(document)

    def _load_access_request(self, actor: Actor, rfp_id: int) -> Optional[AccessRequestSnapshot]:
        if not actor.is_authenticated:
            return None
        return AccessRequestSnapshot.of(self.access_requests.get_by_key(rfp_id, actor.user_id))

    def _load_ndas(self, actor: Actor, rfp_id: int) -> Tuple[Optional[NDASnapshot], Optional[NDASnapshot]]:
        if not actor.is_authenticated:
            return None, None
        individual = NDASnapshot.of(self.individual_ndas.get_by_key(rfp_id, actor.user_id))
        company = NDASnapshot.of(self.company_ndas.get_by_key(rfp_id, actor.company_id))
        return individual, company

    # ----- decisions -----

    def can_access_rfp(self, actor: Actor, rfp_id: int) -> AccessDecision:
        rfp = self._load_rfp(rfp_id)
        return evaluate_rfp_access(actor, rfp, self._load_access_request(actor, rfp.id))

    def can_access_document(self, actor: Actor, document_id: int) -> AccessDecision:
        document = self._load_document(document_id)
        rfp = self._load_rfp(document.rfp_id)
        return self._decide_document(actor, rfp, document)

    def _decide_document(self, actor: Actor, rfp: RFPSnapshot, document: DocumentSnapshot) -> AccessDecision:
        # Short-circuit before touching NDA tables where the answer is already known.
        if actor.is_admin:
            return evaluate_document_access(actor, rfp, document)
        individual, company = self._load_ndas(actor, rfp.id)
        access_request = self._load_access_request(actor, rfp.id)
        return evaluate_document_access(actor, rfp, document, individual, company, access_request)

    def list_documents(self, actor: Actor, rfp_id: int) -> List[Tuple[DocumentSnapshot, AccessDecision]]:
        """
        Every document of an RFP with its decision.

        A lookup failure for one document degrades that item to a Deny
        instead of failing the whole listing.
        """
        rfp = self._load_rfp(rfp_id)
        documents = [
            DocumentSnapshot.of(d)
            for d in self.db.query(Document).filter(Document.rfp_id == rfp.id).order_by(Document.id).all()
        ]

        results = []
        for document in documents:
            try:
                decision = self._decide_document(actor, rfp, document)
            except SQLAlchemyError as e:
                logger.error(
                    f"Access decision failed for document {document.id}: {e}",
                    exc_info=True,
                    extra={"user_id": actor.user_id, "rfp_id": rfp.id, "entity_id": document.id},
                )
                self.db.rollback()
                decision = AccessDecision.deny(DenyReason.DECISION_UNAVAILABLE, rule="lookup_failed")
            results.append((document, decision))
        return results

    def explain_document_access(self, actor: Actor, document_id: int) -> Dict[str, Any]:
        """Every predicate the document rules look at, plus the final decision."""
        document = self._load_document(document_id)
        rfp = self._load_rfp(document.rfp_id)
        individual, company = self._load_ndas(actor, rfp.id)
        access_request = self._load_access_request(actor, rfp.id)
        decision = evaluate_document_access(actor, rfp, document, individual, company, access_request)
        rfp_decision = evaluate_rfp_access(actor, rfp, access_request)

        return {
            "document_id": document.id,
            "document_title": document.title,
            "requires_nda": document.requires_nda,
            "rfp_id": rfp.id,
            "rfp_visibility": rfp.visibility,
            "rfp_status": rfp.status,
            "actor_user_id": actor.user_id,
            "actor_role": actor.role,
            "actor_company_id": actor.company_id,
            "actor_is_owner": _is_owner(actor, rfp),
            "rfp_access": rfp_decision.to_dict(),
            "access_request_status": access_request.status if access_request else None,
            "individual_nda_status": individual.status if individual else None,
            "company_nda_status": company.status if company else None,
            "decision": decision.to_dict(),
        }
