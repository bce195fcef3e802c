"""
Consultation 状态机。

主线：
  DRAFT → PAYMENT_PENDING → PAYMENT_CONFIRMED → DOCTOR_ASSIGNED → IN_PROGRESS → COMPLETED
旁路（COMPLETED 之前任一状态都可进入）：
  CANCELLED / EXPIRED / REFUNDED

规则：
  - 不能跳过主线上的前置状态
  - COMPLETED / CANCELLED / REFUNDED 是终态，任何修改都拒绝
  - EXPIRED 之后只允许退款
  - 每次跳转都追加一条 status_history，只追加不修改

这里只做纯内存的校验和修改，不碰数据库；落库和加锁在 repository.py。
"""

from django.utils import timezone

from .exceptions import ConsultationClosed, InvalidStatusTransition
from .models import ConsultationStatus as S

SYSTEM_ACTOR = 'system'

MAIN_LINE = [
    S.DRAFT,
    S.PAYMENT_PENDING,
    S.PAYMENT_CONFIRMED,
    S.DOCTOR_ASSIGNED,
    S.IN_PROGRESS,
    S.COMPLETED,
]

SIDE_BRANCHES = {S.CANCELLED, S.EXPIRED, S.REFUNDED}
TERMINAL = {S.COMPLETED, S.CANCELLED, S.REFUNDED}
CLOSING = {S.COMPLETED, S.CANCELLED, S.EXPIRED, S.REFUNDED}


def _allowed_targets(current: str) -> set[str]:
    if current in TERMINAL:
        return set()
    if current == S.EXPIRED:
        return {S.REFUNDED}
    nxt = MAIN_LINE[MAIN_LINE.index(current) + 1]
    return {nxt} | SIDE_BRANCHES


def check_transition(current: str, target: str) -> None:
    """
    Raises:
        ConsultationClosed:      current 是终态
        InvalidStatusTransition: 跳过前置状态 / 回退 / 未知状态
    """
    if current in TERMINAL:
        raise ConsultationClosed(
            message=f"Consultation is {current} and can no longer be modified",
            detail={'current_status': current, 'requested_status': target},
        )
    if target not in _allowed_targets(current):
        raise InvalidStatusTransition(
            message=f"Cannot move consultation from {current} to {target}",
            detail={
                'current_status': current,
                'requested_status': target,
                'allowed': sorted(str(s) for s in _allowed_targets(current)),
            },
        )


def history_entry(status: str, actor: str, reason: str) -> dict:
    return {
        'status': str(status),
        'changed_at': timezone.now().isoformat(),
        'changed_by': actor,
        'reason': reason,
    }


def apply_transition(consultation, target: str, actor: str, reason: str = '') -> list[str]:
    """
    校验并修改 consultation（不 save）。返回被修改的字段名，给 save(update_fields=...) 用。
    """
    check_transition(consultation.status, target)

    now = timezone.now()
    consultation.status = target
    consultation.status_history = [*consultation.status_history, history_entry(target, actor, reason)]
    changed = ['status', 'status_history', 'updated_at']

    if target == S.IN_PROGRESS:
        consultation.consultation_start_time = now
        changed.append('consultation_start_time')

    if target in CLOSING:
        if consultation.is_active:
            consultation.is_active = False
            changed.append('is_active')
        if consultation.consultation_end_time is None:
            consultation.consultation_end_time = now
            changed.append('consultation_end_time')

    return changed
