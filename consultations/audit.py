"""
审计事件出口。

emit() 只负责把事件丢给 Celery，真正的记录在 tasks.record_audit_event 里做。
审计是旁路：broker 不可用时只记 warning，绝不阻塞问诊流程。
"""

import logging

from django.utils import timezone

logger = logging.getLogger(__name__)


def emit(event: str, **fields) -> None:
    from .tasks import record_audit_event

    payload = {'event': event, 'occurred_at': timezone.now().isoformat(), **fields}
    try:
        record_audit_event.delay(payload)
    except Exception as exc:
        logger.warning("Failed to enqueue audit event %s: %s", event, exc)
