"""Operational alerting for audit and ledger write failures.

These failures never change what the API caller sees, so they have to be loud
somewhere else: a CRITICAL log line, a JSON alert on the Redis alert channel,
and (for CRUD audit records) a Celery replay task that retries the write.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from kombu.exceptions import OperationalError as BrokerError

from dyncrud.core.config import settings
from dyncrud.services.cache_service import cache_service

logger = logging.getLogger("dyncrud.audit")


def raise_alert(kind: str, payload: Dict[str, Any], error: BaseException) -> None:
    """Log and publish an operational alert."""
    logger.critical("%s: %s (%s)", kind, error, payload)
    cache_service.publish_json(settings.ALERT_CHANNEL, {
        "kind": kind,
        "error": type(error).__name__,
        "message": str(error),
        "payload": payload,
        "raised_at": datetime.now(timezone.utc).isoformat(),
    })


def escalate_audit_failure(entry: Dict[str, Any], error: BaseException, replay: bool = True) -> None:
    """Escalate a failed CRUD audit write and queue it for replay."""
    raise_alert("audit_write_failure", entry, error)
    if not replay:
        return
    from dyncrud.tasks.celery_app import replay_audit_record

    try:
        replay_audit_record.delay(entry)
    except BrokerError:
        logger.critical("Audit replay could not be queued; record exists only in this log: %s", entry)


def escalate_ledger_failure(entry: Dict[str, Any], error: BaseException) -> None:
    raise_alert("ledger_write_failure", entry, error)
