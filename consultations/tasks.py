import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('consultations.audit')


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,    # 初始重试延迟（秒），指数退避会乘以 2^retry_count
    acks_late=True,           # 任务执行完才 ack，防止 worker 崩溃时事件丢失
    reject_on_worker_lost=True,
)
def record_audit_event(self, payload: dict):
    """
    把一条审计事件写进 consultations.audit（JSON 格式）。

    重试策略：
      - 最多重试 3 次
      - 指数退避：5s → 10s → 20s
      - 超出次数后记 error，事件丢弃
    """
    try:
        audit_logger.info(payload.get('event', 'unknown'), extra={'audit': payload})
    except Exception as exc:
        if self.request.retries < self.max_retries:
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.warning(
                "[Celery][audit] event=%s 写入失败，%ds 后重试 (第 %d 次): %s",
                payload.get('event'), countdown, self.request.retries + 1, exc,
            )
            raise self.retry(exc=exc, countdown=countdown)
        logger.error("[Celery][audit] event=%s 已达最大重试次数，丢弃", payload.get('event'))


@shared_task
def expire_idle_consultations() -> int:
    """
    定期任务（celery beat）：把长时间没有进展的活跃问诊标记为 EXPIRED。

    只处理还没开始的问诊（PAYMENT_CONFIRMED / DOCTOR_ASSIGNED），
    IN_PROGRESS 的由医生手动结束。返回本次过期的条数。
    """
    from .exceptions import BlockError
    from .lifecycle import SYSTEM_ACTOR
    from .models import Consultation, ConsultationStatus
    from .repository import update_status

    max_idle = getattr(settings, 'CONSULTATION_MAX_IDLE_HOURS', 24)
    cutoff = timezone.now() - timedelta(hours=max_idle)

    stale_ids = list(
        Consultation.objects.filter(
            is_active=True,
            status__in=[ConsultationStatus.PAYMENT_CONFIRMED, ConsultationStatus.DOCTOR_ASSIGNED],
            updated_at__lt=cutoff,
        ).values_list('id', flat=True)
    )

    expired = 0
    for consultation_id in stale_ids:
        try:
            update_status(
                consultation_id,
                ConsultationStatus.EXPIRED,
                actor=SYSTEM_ACTOR,
                reason=f'No activity for {max_idle} hours',
            )
            expired += 1
        except BlockError as exc:
            # 期间被人改了状态（比如刚开始问诊），跳过
            logger.info("[Celery][expire] consultation %s skipped: %s", consultation_id, exc.code)

    logger.info("[Celery][expire] %d/%d idle consultations expired", expired, len(stale_ids))
    return expired
