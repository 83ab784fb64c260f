"""
Background job definitions.
"""
from redis import Redis
from rq import Queue

from rfpgate.core.config import settings
from rfpgate.core.logging import get_logger

logger = get_logger(__name__)


def get_queue(name: str = "default") -> Queue:
    """Get RQ queue."""
    redis_conn = Redis.from_url(settings.REDIS_URL)
    return Queue(name, connection=redis_conn)


# ============= JOB FUNCTIONS =============

def deliver_notification_job(payload: dict) -> int:
    """Persist an in-app notification. Returns the notification id."""
    from rfpgate.db.session import get_db_context
    from rfpgate.db.models import Notification

    logger.info(
        f"Delivering {payload.get('type')} notification to user {payload.get('user_id')}",
        extra={"user_id": payload.get("user_id"), "action": payload.get("type")},
    )

    with get_db_context() as db:
        notification = Notification(
            user_id=payload["user_id"],
            title=payload["title"],
            message=payload["message"],
            type=payload["type"],
            reference_id=payload.get("reference_id"),
        )
        db.add(notification)
        db.flush()
        return notification.id
