"""
Notification dispatch.

Lifecycle operations hand messages to a dispatcher after their transaction
commits. Delivery is fire-and-forget: a failure is logged and never undoes
the state change that triggered it.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from rfpgate.core.config import settings
from rfpgate.core.logging import get_logger
from rfpgate.db.models import User, UserRole

logger = get_logger(__name__)


class NotificationType:
    NDA_SIGNED = "nda_signed"
    NDA_APPROVED = "nda_approved"
    NDA_REJECTED = "nda_rejected"
    ACCESS_REQUEST = "access_request"
    ACCESS_GRANTED = "access_granted"


@dataclass(frozen=True)
class NotificationMessage:
    user_id: int
    title: str
    message: str
    type: str
    reference_id: Optional[int] = None

    def to_payload(self) -> dict:
        return asdict(self)


class NotificationDispatcher(ABC):
    """Outbound "send notification" capability."""

    @abstractmethod
    def notify(
        self,
        user_id: int,
        title: str,
        message: str,
        type: str,
        reference_id: Optional[int] = None,
    ) -> None:
        pass


class QueueNotificationDispatcher(NotificationDispatcher):
    """Enqueue delivery on RQ; the worker persists the notification row."""

    def __init__(self, queue_name: Optional[str] = None):
        self.queue_name = queue_name or settings.NOTIFICATION_QUEUE

    def notify(self, user_id, title, message, type, reference_id=None) -> None:
        from rfpgate.workers.jobs import get_queue, deliver_notification_job

        payload = NotificationMessage(user_id, title, message, type, reference_id).to_payload()
        get_queue(self.queue_name).enqueue(deliver_notification_job, payload)
        logger.debug(f"Enqueued {type} notification for user {user_id}")


class LogNotificationDispatcher(NotificationDispatcher):
    """Development backend: notifications only go to the log."""

    def notify(self, user_id, title, message, type, reference_id=None) -> None:
        logger.info(
            f"Notification ({type}) for user {user_id}: {title} - {message}",
            extra={"user_id": user_id, "action": type, "entity_id": reference_id},
        )


def get_notification_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency; overridden in tests."""
    if settings.NOTIFICATION_BACKEND == "log":
        return LogNotificationDispatcher()
    return QueueNotificationDispatcher()


def dispatch_all(dispatcher: Optional[NotificationDispatcher], messages: Iterable[NotificationMessage]) -> int:
    """Send every message, logging failures. Returns how many were handed off."""
    if dispatcher is None:
        return 0

    sent = 0
    for msg in messages:
        try:
            dispatcher.notify(msg.user_id, msg.title, msg.message, msg.type, msg.reference_id)
            sent += 1
        except Exception as e:
            logger.warning(
                f"Notification dispatch failed for user {msg.user_id} ({msg.type}): {e}",
                exc_info=True,
                extra={"user_id": msg.user_id, "action": msg.type},
            )
    return sent


# ============= RECIPIENTS =============

def admin_user_ids(db: Session) -> List[int]:
    rows = db.query(User.id).filter(
        User.role == UserRole.ADMIN.value,
        User.is_active == True,  # noqa: E712
    ).all()
    return [r[0] for r in rows]


def company_member_ids(db: Session, company_id: int) -> List[int]:
    rows = db.query(User.id).filter(
        User.company_id == company_id,
        User.is_active == True,  # noqa: E712
    ).all()
    return [r[0] for r in rows]
