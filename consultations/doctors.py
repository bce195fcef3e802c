"""
值班医生解析 + 班次管理。

resolve_doctor() 是纯函数：给定小时、候选班次和 fallback，返回医生 id。
current_doctor() 在外面包一层缓存：
  key = 班次表版本号 + 诊所本地日期 + 小时
  每次写班次表都把版本号 +1，旧缓存自然失效，不需要逐个删除。
"""

import logging
from datetime import datetime

from django.conf import settings
from django.core.cache import cache
from django.db.models import Q
from django.utils import timezone

from .exceptions import DoctorUnavailable, NotFoundError, ValidationError
from .models import DoctorShift

logger = logging.getLogger(__name__)

SHIFT_VERSION_KEY = 'doctor_shift:version'
CACHE_KEY_PREFIX = 'doctor_shift:current'

# 夜班不建班次，由 FALLBACK_DOCTOR_ID 兜底
DEFAULT_SHIFTS = [
    {'shift_type': 'morning', 'start_hour': 7, 'end_hour': 16},
    {'shift_type': 'evening', 'start_hour': 16, 'end_hour': 0},
]


def resolve_doctor(hour: int, shifts, fallback: str | None) -> str:
    """
    Args:
        hour:     0-23，诊所本地时间
        shifts:   已过滤为 active 且在有效期内的班次
        fallback: 没有班次覆盖该小时时使用的医生 id

    多个班次同时覆盖时取 updated_at 最新的一个。

    Raises:
        DoctorUnavailable: 没有覆盖的班次，且没有配置 fallback
    """
    # doctor_id 为空的班次当作没有覆盖
    matches = [s for s in shifts if s.doctor_id and s.covers_hour(hour)]
    if matches:
        return max(matches, key=lambda s: s.updated_at).doctor_id
    if fallback:
        return fallback

    logger.error("No doctor shift covers hour %d and FALLBACK_DOCTOR_ID is not configured", hour)
    raise DoctorUnavailable(detail={'hour': hour})


def _active_shifts(at: datetime):
    return list(
        DoctorShift.objects.filter(status='active')
        .filter(Q(effective_from__isnull=True) | Q(effective_from__lte=at))
        .filter(Q(effective_to__isnull=True) | Q(effective_to__gt=at))
    )


def _shift_version() -> int:
    version = cache.get(SHIFT_VERSION_KEY)
    if version is None:
        cache.add(SHIFT_VERSION_KEY, 1, timeout=None)
        version = cache.get(SHIFT_VERSION_KEY, 1)
    return version


def bump_shift_version() -> None:
    try:
        cache.incr(SHIFT_VERSION_KEY)
    except ValueError:
        # key 不存在（缓存被清空过）
        cache.add(SHIFT_VERSION_KEY, 2, timeout=None)


def current_doctor(at: datetime | None = None, force_refresh: bool = False) -> str:
    """当前（或 at 时刻）负责的医生 id。"""
    local = timezone.localtime(at or timezone.now())
    cache_key = f"{CACHE_KEY_PREFIX}:v{_shift_version()}:{local.date().isoformat()}:{local.hour}"

    if not force_refresh:
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

    doctor_id = resolve_doctor(
        local.hour,
        _active_shifts(local),
        getattr(settings, 'FALLBACK_DOCTOR_ID', '') or None,
    )
    cache.set(cache_key, doctor_id, timeout=getattr(settings, 'DOCTOR_CACHE_TTL_SECONDS', 1800))
    return doctor_id


# ── 班次管理 ────────────────────────────────────────────────────────────────

def _validate_hours(start_hour, end_hour) -> None:
    errors = []
    for field, value in (('start_hour', start_hour), ('end_hour', end_hour)):
        if not isinstance(value, int) or not 0 <= value <= 23:
            errors.append({'field': field, 'message': 'Hour must be an integer between 0 and 23.'})
    if not errors and start_hour == end_hour:
        errors.append({'field': 'end_hour', 'message': 'end_hour must differ from start_hour.'})
    if errors:
        raise ValidationError(detail={'errors': errors})


def upsert_shift(shift_type: str, doctor_id: str, start_hour: int, end_hour: int, actor: str, **extra) -> DoctorShift:
    """按 shift_type 创建或更新班次。extra 可带 status / effective_from / effective_to / notes。"""
    if not (doctor_id or '').strip():
        raise ValidationError(detail={'errors': [{'field': 'doctor_id', 'message': 'A doctor id is required.'}]})
    _validate_hours(start_hour, end_hour)

    values = {'doctor_id': doctor_id, 'start_hour': start_hour, 'end_hour': end_hour, 'updated_by': actor, **extra}
    shift, created = DoctorShift.objects.update_or_create(
        shift_type=shift_type,
        defaults=values,
        create_defaults={**values, 'created_by': actor},
    )
    logger.info("Shift %s %s by %s: doctor=%s %02d-%02d",
                shift_type, 'created' if created else 'updated', actor, doctor_id, start_hour, end_hour)
    return shift


def list_shifts():
    return DoctorShift.objects.order_by('start_hour')


def set_shift_status(shift_type: str, status: str, actor: str) -> DoctorShift:
    try:
        shift = DoctorShift.objects.get(shift_type=shift_type)
    except DoctorShift.DoesNotExist:
        raise NotFoundError(code='SHIFT_NOT_FOUND', message=f"Shift {shift_type!r} not found")

    shift.status = status
    shift.updated_by = actor
    shift.save(update_fields=['status', 'updated_by', 'updated_at'])
    logger.info("Shift %s set to %s by %s", shift_type, status, actor)
    return shift


def seed_default_shifts(actor: str, doctor_id: str) -> list[DoctorShift]:
    """第一次部署时建默认的早班 / 晚班，已存在的班次不动。"""
    if not (doctor_id or '').strip():
        raise ValidationError(detail={'errors': [{'field': 'doctorId', 'message': 'A doctor id is required.'}]})

    seeded = []
    for template in DEFAULT_SHIFTS:
        shift, created = DoctorShift.objects.get_or_create(
            shift_type=template['shift_type'],
            defaults={**template, 'doctor_id': doctor_id, 'created_by': actor, 'updated_by': actor},
        )
        if created:
            seeded.append(shift)
    return seeded
