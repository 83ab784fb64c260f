"""
NDA Lifecycle Manager.

Individual and company NDAs share one state machine:

    (no record) --sign--> signed --countersign--> approved
                                 \\--reject-----> rejected

``approved`` and ``rejected`` are terminal. Signing is an idempotent upsert on
the natural key; countersign and reject are compare-and-set on ``signed`` so
exactly one of two racing reviewers wins and the other gets a conflict.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rfpgate.core.config import settings
from rfpgate.core.logging import get_logger, audit_logger
from rfpgate.core.rbac import Actor
from rfpgate.db.models import (
    RFP, Company, RFPStatus, NDAStatus, NDA_TERMINAL_STATUSES, utcnow,
)
from rfpgate.db.stores import IndividualNDAStore, CompanyNDAStore
from rfpgate.services.access_engine import INDIVIDUAL_NDA_ACCESS_STATUSES
from rfpgate.services.audit_trail import AuditAction, NDAKind, append_entry
from rfpgate.services.notifications import (
    NotificationDispatcher, NotificationMessage, NotificationType,
    dispatch_all, admin_user_ids, company_member_ids,
)
from rfpgate.services.outcomes import Outcome, DenyReason

logger = get_logger(__name__)


@dataclass
class SignatureMeta:
    """What the signer submits with an NDA signature."""
    full_name: str
    title: Optional[str] = None
    company: Optional[str] = None
    signature_data: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class NDAPartyStatus:
    """Display projection of one NDA record (or its absence)."""
    exists: bool
    nda_id: Optional[int] = None
    status: Optional[str] = None
    full_name: Optional[str] = None
    title: Optional[str] = None
    company: Optional[str] = None
    signed_at: Optional[Any] = None
    countersigned_at: Optional[Any] = None
    countersigner_name: Optional[str] = None
    countersigner_title: Optional[str] = None
    has_bidder_signature: bool = False
    has_client_signature: bool = False
    rejected: bool = False
    rejection_reason: Optional[str] = None
    rejection_date: Optional[Any] = None
    is_complete: bool = False

    @classmethod
    def missing(cls) -> "NDAPartyStatus":
        return cls(exists=False)

    @classmethod
    def of(cls, record, company_name: Optional[str] = None) -> "NDAPartyStatus":
        if record is None:
            return cls.missing()
        return cls(
            exists=True,
            nda_id=record.id,
            status=record.status,
            full_name=record.full_name,
            title=record.title,
            company=getattr(record, "company", None) if company_name is None else company_name,
            signed_at=record.signed_at,
            countersigned_at=record.countersigned_at,
            countersigner_name=record.countersigner_name,
            countersigner_title=record.countersigner_title,
            has_bidder_signature=bool(record.signature_data),
            has_client_signature=bool(record.countersignature_data),
            rejected=record.status == NDAStatus.REJECTED.value,
            rejection_reason=record.rejection_reason,
            rejection_date=record.rejection_date,
            is_complete=record.status == NDAStatus.APPROVED.value,
        )


@dataclass(frozen=True)
class NDAStatusView:
    rfp_id: int
    individual: NDAPartyStatus
    company: NDAPartyStatus

    @property
    def grants_document_access(self) -> bool:
        return (
            self.individual.status in INDIVIDUAL_NDA_ACCESS_STATUSES
            or self.company.status == NDAStatus.APPROVED.value
        )


class NDALifecycleManager:
    """Sign, countersign and reject individual and company NDAs."""

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationDispatcher] = None,
        audit_initial_signature: Optional[bool] = None,
    ):
        self.db = db
        self.notifier = notifier
        if audit_initial_signature is None:
            audit_initial_signature = settings.AUDIT_INITIAL_SIGNATURE
        self.audit_initial_signature = audit_initial_signature

    def _store(self, kind: NDAKind):
        if kind == NDAKind.COMPANY:
            return CompanyNDAStore(self.db)
        return IndividualNDAStore(self.db)

    # ============= SIGN =============

    def sign(self, actor: Actor, rfp_id: int, signature: SignatureMeta) -> Outcome:
        """Sign an individual NDA for ``rfp_id`` (idempotent while ``signed``)."""
        return self._sign(NDAKind.INDIVIDUAL, actor, rfp_id, signature)

    def sign_company(self, actor: Actor, rfp_id: int, signature: SignatureMeta) -> Outcome:
        """Sign on behalf of the actor's company. Company admins only."""
        return self._sign(NDAKind.COMPANY, actor, rfp_id, signature)

    def _sign(self, kind: NDAKind, actor: Actor, rfp_id: int, signature: SignatureMeta) -> Outcome:
        if not actor.is_authenticated:
            return Outcome.denied(DenyReason.AUTHENTICATION_REQUIRED)

        rfp = self.db.query(RFP).filter(RFP.id == rfp_id).first()
        if rfp is None:
            return Outcome.not_found("rfp", rfp_id)
        rfp_title = rfp.title
        if rfp.status == RFPStatus.DRAFT.value and not (actor.is_admin or actor.user_id == rfp.client_id):
            return Outcome.denied(DenyReason.RFP_NOT_PUBLISHED)

        if kind == NDAKind.COMPANY and not actor.is_company_admin:
            return Outcome.denied(
                DenyReason.NOT_COMPANY_ADMIN,
                "Only company admins can sign NDAs on behalf of the company",
            )

        if not (signature.full_name or "").strip():
            return Outcome.invalid("full_name", "Full name is required to sign an NDA")

        store = self._store(kind)
        party_id = actor.company_id if kind == NDAKind.COMPANY else actor.user_id
        values = self._signature_values(kind, actor, signature)

        created = False
        existing = store.get_by_key(rfp_id, party_id)
        if existing is None:
            try:
                record = store.insert(
                    rfp_id=rfp_id,
                    status=NDAStatus.SIGNED.value,
                    **{store.party_column: party_id},
                    **values,
                )
                if self.audit_initial_signature:
                    append_entry(
                        self.db, kind, record.id, AuditAction.SIGNED, actor,
                        metadata={
                            "full_name": signature.full_name,
                            "title": signature.title,
                            "company": signature.company,
                            "ip_address": signature.ip_address,
                            "user_agent": signature.user_agent,
                        },
                        rfp_id=rfp_id,
                    )
                self.db.commit()
                created = True
                nda_id = record.id
            except IntegrityError:
                # Lost an insert race on the natural key: fall through to the upsert path.
                self.db.rollback()
                existing = store.get_by_key(rfp_id, party_id)
                if existing is None:
                    raise

        if not created:
            if existing.status != NDAStatus.SIGNED.value:
                return self._not_signable(kind, existing.id, existing.status)
            nda_id = existing.id
            if not store.compare_and_set(nda_id, NDAStatus.SIGNED.value, values):
                self.db.rollback()
                current = store.get(nda_id)
                return self._not_signable(kind, nda_id, current.status if current else None)
            self.db.commit()

        record = store.get(nda_id)
        audit_logger.log(
            action=f"{kind.value}_nda_signed",
            user_id=actor.user_id,
            company_id=actor.company_id,
            rfp_id=rfp_id,
            entity_type=f"{kind.value}_nda",
            entity_id=nda_id,
            details={"full_name": signature.full_name, "created": created},
        )

        if created and kind == NDAKind.COMPANY:
            company_name = self._company_name(actor.company_id)
            dispatch_all(self.notifier, [
                NotificationMessage(
                    user_id=admin_id,
                    title="New Company NDA Signature",
                    message=(
                        f'A new NDA has been signed for "{rfp_title}" by '
                        f'{signature.full_name} on behalf of {company_name}'
                    ),
                    type=NotificationType.NDA_SIGNED,
                    reference_id=rfp_id,
                )
                for admin_id in admin_user_ids(self.db)
            ])

        return Outcome.success(record)

    @staticmethod
    def _signature_values(kind: NDAKind, actor: Actor, signature: SignatureMeta) -> Dict[str, Any]:
        values = {
            "full_name": signature.full_name.strip(),
            "title": signature.title,
            "signature_data": dict(signature.signature_data or {}),
            "signed_at": utcnow(),
            "ip_address": signature.ip_address,
            "user_agent": signature.user_agent,
        }
        if kind == NDAKind.COMPANY:
            values["signed_by"] = actor.user_id
        else:
            values["company"] = signature.company
        return values

    # ============= COUNTERSIGN / REJECT =============

    def countersign(
        self,
        actor: Actor,
        kind: NDAKind,
        nda_id: int,
        countersigner_name: str,
        countersigner_title: Optional[str] = None,
        signature_data: Optional[Dict[str, Any]] = None,
        client_context: Optional[Dict[str, Any]] = None,
    ) -> Outcome:
        """Move a ``signed`` NDA to ``approved``."""
        denied = self._check_reviewer(actor)
        if denied:
            return denied
        if not (countersigner_name or "").strip():
            return Outcome.invalid("countersigner_name", "Countersigner name is required")

        store = self._store(kind)
        if store.get(nda_id) is None:
            return Outcome.not_found(f"{kind.value}_nda", nda_id)

        now = utcnow()
        changed = store.compare_and_set(nda_id, NDAStatus.SIGNED.value, {
            "status": NDAStatus.APPROVED.value,
            "countersigned_by": actor.user_id,
            "countersigned_at": now,
            "countersigner_name": countersigner_name.strip(),
            "countersigner_title": countersigner_title,
            "countersignature_data": dict(signature_data or {}),
        })
        if not changed:
            self.db.rollback()
            current = store.get(nda_id)
            return self._not_signable(kind, nda_id, current.status if current else None)

        record = store.get(nda_id)
        metadata = {
            "countersigner_name": countersigner_name.strip(),
            "countersigner_title": countersigner_title,
        }
        metadata.update(client_context or {})
        append_entry(
            self.db, kind, nda_id, AuditAction.COUNTERSIGNED, actor,
            metadata=metadata, rfp_id=record.rfp_id,
        )
        self.db.commit()

        record = store.get(nda_id)
        dispatch_all(self.notifier, self._decision_messages(kind, record, approved=True))
        return Outcome.success(record)

    def reject(
        self,
        actor: Actor,
        kind: NDAKind,
        nda_id: int,
        reason: str,
        client_context: Optional[Dict[str, Any]] = None,
    ) -> Outcome:
        """Move a ``signed`` NDA to ``rejected``. A reason is mandatory."""
        denied = self._check_reviewer(actor)
        if denied:
            return denied
        if not (reason or "").strip():
            return Outcome.invalid("reason", "A rejection reason is required")

        store = self._store(kind)
        if store.get(nda_id) is None:
            return Outcome.not_found(f"{kind.value}_nda", nda_id)

        changed = store.compare_and_set(nda_id, NDAStatus.SIGNED.value, {
            "status": NDAStatus.REJECTED.value,
            "rejection_reason": reason.strip(),
            "rejection_date": utcnow(),
            "rejected_by": actor.user_id,
        })
        if not changed:
            self.db.rollback()
            current = store.get(nda_id)
            return self._not_signable(kind, nda_id, current.status if current else None)

        record = store.get(nda_id)
        metadata = {"rejection_reason": reason.strip()}
        metadata.update(client_context or {})
        append_entry(
            self.db, kind, nda_id, AuditAction.REJECTED, actor,
            metadata=metadata, rfp_id=record.rfp_id,
        )
        self.db.commit()

        record = store.get(nda_id)
        dispatch_all(self.notifier, self._decision_messages(kind, record, approved=False))
        return Outcome.success(record)

    # ============= READS =============

    def get_status(self, actor: Actor, rfp_id: int) -> Outcome:
        """
        Combined individual/company NDA state for the actor on one RFP.

        Anonymous callers and actors who have signed nothing get a view whose
        parts report ``exists=False``.
        """
        if self.db.query(RFP.id).filter(RFP.id == rfp_id).first() is None:
            return Outcome.not_found("rfp", rfp_id)

        individual = NDAPartyStatus.missing()
        company = NDAPartyStatus.missing()
        if actor.is_authenticated:
            individual = NDAPartyStatus.of(IndividualNDAStore(self.db).get_by_key(rfp_id, actor.user_id))
            company_record = CompanyNDAStore(self.db).get_by_key(rfp_id, actor.company_id)
            if company_record is not None:
                company = NDAPartyStatus.of(company_record, self._company_name(company_record.company_id))

        return Outcome.success(NDAStatusView(rfp_id=rfp_id, individual=individual, company=company))

    def list_ndas(self, actor: Actor, rfp_id: int, status: Optional[str] = None) -> Outcome:
        """Every NDA on an RFP, for reviewers."""
        denied = self._check_reviewer(actor)
        if denied:
            return denied
        if self.db.query(RFP.id).filter(RFP.id == rfp_id).first() is None:
            return Outcome.not_found("rfp", rfp_id)

        return Outcome.success({
            NDAKind.INDIVIDUAL.value: IndividualNDAStore(self.db).list_for_rfp(rfp_id, status),
            NDAKind.COMPANY.value: CompanyNDAStore(self.db).list_for_rfp(rfp_id, status),
        })

    # ============= HELPERS =============

    @staticmethod
    def _check_reviewer(actor: Actor) -> Optional[Outcome]:
        if not actor.is_authenticated:
            return Outcome.denied(DenyReason.AUTHENTICATION_REQUIRED)
        if not actor.is_reviewer:
            return Outcome.denied(
                DenyReason.INSUFFICIENT_ROLE,
                "Only admins and client reviewers can countersign or reject NDAs",
            )
        return None

    @staticmethod
    def _not_signable(kind: NDAKind, nda_id: int, status: Optional[str]) -> Outcome:
        logger.info(f"{kind.value} NDA {nda_id} not in signable state (status={status})")
        if status in NDA_TERMINAL_STATUSES:
            message = f"NDA {nda_id} is already {status}"
        else:
            message = f"NDA {nda_id} is not in signable state"
        return Outcome.conflict("nda_not_signable", message)

    def _company_name(self, company_id: Optional[int]) -> Optional[str]:
        if company_id is None:
            return None
        row = self.db.query(Company.name).filter(Company.id == company_id).first()
        return row[0] if row else None

    def _decision_messages(self, kind: NDAKind, record, approved: bool) -> List[NotificationMessage]:
        row = self.db.query(RFP.title).filter(RFP.id == record.rfp_id).first()
        rfp_title = row[0] if row else ""
        notification_type = NotificationType.NDA_APPROVED if approved else NotificationType.NDA_REJECTED

        if kind == NDAKind.COMPANY:
            company_name = self._company_name(record.company_id)
            if approved:
                title = "Company NDA Approved"
                message = f'The NDA for "{rfp_title}" signed on behalf of {company_name} has been approved'
            else:
                title = "Company NDA Rejected"
                message = (
                    f'The NDA for "{rfp_title}" signed on behalf of {company_name} has been rejected. '
                    f'Reason: {record.rejection_reason}'
                )
            recipients = company_member_ids(self.db, record.company_id)
        else:
            if approved:
                title = "NDA Approved"
                message = f'Your NDA for "{rfp_title}" has been approved and countersigned.'
            else:
                title = "NDA Rejected"
                message = f'Your NDA for "{rfp_title}" has been rejected. Reason: {record.rejection_reason}'
            recipients = [record.user_id]

        return [
            NotificationMessage(
                user_id=user_id,
                title=title,
                message=message,
                type=notification_type,
                reference_id=record.rfp_id,
            )
            for user_id in recipients
        ]
