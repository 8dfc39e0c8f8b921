"""Celery app and tasks for replaying audit records that could not be written inline."""

from datetime import datetime

from celery import Celery
from dyncrud.core.config import settings

celery_app = Celery(
    "dyncrud",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    # A request thread is waiting on .delay(); fail fast when the broker is down
    task_publish_retry=False,
    broker_connection_timeout=2,
)


@celery_app.task(bind=True, name="replay_audit_record", max_retries=10)
def replay_audit_record(self, entry: dict) -> int:
    """Write an audit record whose inline write failed or timed out.

    Retries with exponential backoff until the audit store accepts it.
    """
    from dyncrud.db.session import AuditSessionLocal
    from dyncrud.services.audit_service import persist_audit_entry

    entry = dict(entry)
    created_at = entry.get("created_at")
    if isinstance(created_at, str):
        entry["created_at"] = datetime.fromisoformat(created_at)

    try:
        return persist_audit_entry(AuditSessionLocal, entry)
    except Exception as e:
        raise self.retry(exc=e, countdown=min(2 ** self.request.retries * 5, 600))
