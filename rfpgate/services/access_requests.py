"""
RFP access requests.

A client reviewer asks to see a confidential RFP; a platform admin approves or
rejects. Decisions are compare-and-set on ``pending``.
"""
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rfpgate.core.logging import get_logger, audit_logger
from rfpgate.core.rbac import Actor
from rfpgate.db.models import RFP, User, RFPStatus, RFPVisibility, AccessRequestStatus, UserRole, utcnow
from rfpgate.db.stores import AccessRequestStore
from rfpgate.services.notifications import (
    NotificationDispatcher, NotificationMessage, NotificationType,
    dispatch_all, admin_user_ids,
)
from rfpgate.services.outcomes import Outcome, DenyReason

logger = get_logger(__name__)


class AccessRequestWorkflow:

    def __init__(self, db: Session, notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.notifier = notifier
        self.store = AccessRequestStore(db)

    def request_access(self, actor: Actor, rfp_id: int) -> Outcome:
        if not actor.is_authenticated:
            return Outcome.denied(DenyReason.AUTHENTICATION_REQUIRED)
        if actor.role != UserRole.CLIENT_REVIEWER.value:
            return Outcome.denied(
                DenyReason.INSUFFICIENT_ROLE,
                "Only client reviewers can request access to confidential RFPs",
            )

        rfp = self.db.query(RFP).filter(RFP.id == rfp_id).first()
        if rfp is None:
            return Outcome.not_found("rfp", rfp_id)
        rfp_title = rfp.title
        if rfp.status == RFPStatus.DRAFT.value:
            return Outcome.denied(DenyReason.RFP_NOT_PUBLISHED)
        if rfp.visibility != RFPVisibility.CONFIDENTIAL.value:
            return Outcome.invalid(
                "rfp_id",
                "Access requests are only needed for confidential RFPs",
                reason="rfp_not_confidential",
            )

        if self.store.get_by_key(rfp_id, actor.user_id) is not None:
            return self._duplicate(rfp_id)

        try:
            record = self.store.insert(
                rfp_id=rfp_id,
                user_id=actor.user_id,
                status=AccessRequestStatus.PENDING.value,
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return self._duplicate(rfp_id)

        audit_logger.log(
            action="rfp_access_requested",
            user_id=actor.user_id,
            rfp_id=rfp_id,
            entity_type="rfp_access_request",
            entity_id=record.id,
        )

        requester = self.db.query(User).filter(User.id == actor.user_id).first()
        requester_name = (requester.full_name or requester.email) if requester else f"User {actor.user_id}"
        dispatch_all(self.notifier, [
            NotificationMessage(
                user_id=admin_id,
                title="New RFP Access Request",
                message=f'{requester_name} has requested access to "{rfp_title}"',
                type=NotificationType.ACCESS_REQUEST,
                reference_id=rfp_id,
            )
            for admin_id in admin_user_ids(self.db)
        ])
        return Outcome.success(record)

    def approve(self, actor: Actor, request_id: int) -> Outcome:
        return self._decide(actor, request_id, AccessRequestStatus.APPROVED)

    def reject(self, actor: Actor, request_id: int) -> Outcome:
        return self._decide(actor, request_id, AccessRequestStatus.REJECTED)

    def _decide(self, actor: Actor, request_id: int, decision: AccessRequestStatus) -> Outcome:
        denied = self._check_admin(actor)
        if denied:
            return denied
        if self.store.get(request_id) is None:
            return Outcome.not_found("rfp_access_request", request_id)

        changed = self.store.compare_and_set(request_id, AccessRequestStatus.PENDING.value, {
            "status": decision.value,
            "decided_by": actor.user_id,
            "decided_at": utcnow(),
        })
        if not changed:
            self.db.rollback()
            current = self.store.get(request_id)
            return Outcome.conflict(
                "access_request_decided",
                f"Access request {request_id} is already {current.status if current else 'decided'}",
            )
        self.db.commit()

        record = self.store.get(request_id)
        audit_logger.log(
            action=f"rfp_access_{decision.value}",
            user_id=actor.user_id,
            rfp_id=record.rfp_id,
            entity_type="rfp_access_request",
            entity_id=record.id,
            details={"requester_id": record.user_id},
        )

        if decision == AccessRequestStatus.APPROVED:
            row = self.db.query(RFP.title).filter(RFP.id == record.rfp_id).first()
            dispatch_all(self.notifier, [
                NotificationMessage(
                    user_id=record.user_id,
                    title="RFP Access Granted",
                    message=f'Your request to access "{row[0] if row else ""}" has been approved',
                    type=NotificationType.ACCESS_GRANTED,
                    reference_id=record.rfp_id,
                )
            ])
        return Outcome.success(record)

    def get_request_status(self, actor: Actor, rfp_id: int) -> Optional[str]:
        """The actor's own request status for the RFP, or None."""
        record = self.store.get_by_key(rfp_id, actor.user_id)
        return record.status if record else None

    def list_requests(self, actor: Actor, rfp_id: int, status: Optional[str] = None) -> Outcome:
        denied = self._check_admin(actor)
        if denied:
            return denied
        if self.db.query(RFP.id).filter(RFP.id == rfp_id).first() is None:
            return Outcome.not_found("rfp", rfp_id)
        return Outcome.success(self.store.list_for_rfp(rfp_id, status))

    @staticmethod
    def _check_admin(actor: Actor) -> Optional[Outcome]:
        if not actor.is_authenticated:
            return Outcome.denied(DenyReason.AUTHENTICATION_REQUIRED)
        if not actor.is_admin:
            return Outcome.denied(DenyReason.INSUFFICIENT_ROLE, "Only admins can manage RFP access requests")
        return None

    @staticmethod
    def _duplicate(rfp_id: int) -> Outcome:
        return Outcome.conflict(
            "access_request_exists",
            f"An access request for RFP {rfp_id} already exists",
        )
