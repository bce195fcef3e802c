"""
Consultation / PaymentRecord 的持久化操作。

两条唯一性都交给数据库保证，应用层只负责把 IntegrityError 翻译成业务异常：
  - session_id 唯一             → 同一个 session 只会建一条 consultation（重放直接返回已有的）
  - patient_id 条件唯一（is_active=True）→ 并发创建时输家收到 ActiveConsultationExists
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from . import audit
from .exceptions import ActiveConsultationExists, BlockError, ConsultationClosed, ConsultationNotFound
from .lifecycle import SYSTEM_ACTOR, apply_transition, history_entry
from .models import Consultation, ConsultationStatus, PaymentRecord

logger = logging.getLogger(__name__)

DIAGNOSIS_EDITABLE = {ConsultationStatus.DOCTOR_ASSIGNED, ConsultationStatus.IN_PROGRESS}


# ── Consultation ────────────────────────────────────────────────────────────

def get_consultation(consultation_id) -> Consultation:
    try:
        return Consultation.objects.get(id=consultation_id)
    except (Consultation.DoesNotExist, DjangoValidationError):
        raise ConsultationNotFound(detail={'consultation_id': str(consultation_id)})


def find_by_session(session_id: str) -> Consultation | None:
    return Consultation.objects.filter(session_id=session_id).first()


def find_by_clinical_session(clinical_session_id: str) -> Consultation | None:
    return Consultation.objects.filter(clinical_session_id=clinical_session_id).first()


def find_active_for_patient(patient_id: str) -> Consultation | None:
    return Consultation.objects.filter(patient_id=patient_id, is_active=True).first()


def create_consultation(
    *,
    session_id: str,
    clinical_session_id: str,
    patient_id: str,
    doctor_id: str,
    consultation_type: str,
    payment_info: dict,
    initial_symptoms: dict,
    ai_diagnosis: dict,
    detailed_symptoms: dict,
) -> tuple[Consultation, bool]:
    """
    付款已确认的前提下创建 consultation 并分配医生。返回 (consultation, created)。

    session_id 已有记录时直接返回 (existing, False)，不会重复创建。

    Raises:
        ActiveConsultationExists: 该患者已有活跃问诊
    """
    existing = find_by_session(session_id)
    if existing is not None:
        return existing, False

    consultation = Consultation(
        session_id=session_id,
        clinical_session_id=clinical_session_id,
        patient_id=patient_id,
        consultation_type=consultation_type,
        status=ConsultationStatus.PAYMENT_CONFIRMED,
        status_history=[history_entry(ConsultationStatus.PAYMENT_CONFIRMED, SYSTEM_ACTOR, 'Payment verified')],
        payment_info=payment_info,
        initial_symptoms=initial_symptoms,
        ai_diagnosis=ai_diagnosis,
        detailed_symptoms=detailed_symptoms,
        is_active=True,
    )
    consultation.doctor_id = doctor_id
    apply_transition(consultation, ConsultationStatus.DOCTOR_ASSIGNED, SYSTEM_ACTOR, 'Assigned by shift schedule')

    try:
        with transaction.atomic():
            consultation.save(force_insert=True)
    except IntegrityError:
        # 并发重放：另一个请求已经为这个 session 建好了
        existing = find_by_session(session_id)
        if existing is not None:
            return existing, False
        logger.info("Active consultation conflict for patient %s (session %s)", patient_id, session_id)
        active = find_active_for_patient(patient_id)
        raise ActiveConsultationExists(
            detail={'active_consultation_id': str(active.id) if active else None},
        )

    logger.info("Consultation %s created for patient %s, doctor %s", consultation.id, patient_id, doctor_id)
    return consultation, True


def _locked(consultation_id) -> Consultation:
    """必须在 transaction.atomic() 里调用。"""
    try:
        return Consultation.objects.select_for_update().get(id=consultation_id)
    except (Consultation.DoesNotExist, DjangoValidationError):
        raise ConsultationNotFound(detail={'consultation_id': str(consultation_id)})


def update_status(consultation_id, new_status: str, actor: str, reason: str = '', before_save=None) -> Consultation:
    """
    行锁内校验并执行状态跳转。被拒绝的跳转会发审计事件后原样抛出。

    before_save(consultation) 在校验通过之后、save 之前调用，此时仍持有行锁；
    它抛出的异常会回滚整个事务。

    Raises:
        ConsultationNotFound / ConsultationClosed / InvalidStatusTransition
    """
    with transaction.atomic():
        consultation = _locked(consultation_id)
        previous = consultation.status
        try:
            changed = apply_transition(consultation, new_status, actor, reason)
        except BlockError as exc:
            audit.emit(
                'status_transition_rejected',
                consultation_id=str(consultation.id),
                from_status=previous,
                to_status=str(new_status),
                actor=actor,
                reason=exc.message,
            )
            raise
        if before_save is not None:
            before_save(consultation)
        consultation.save(update_fields=changed)

    logger.info("Consultation %s: %s → %s by %s", consultation.id, previous, new_status, actor)
    audit.emit(
        'status_changed',
        consultation_id=str(consultation.id),
        from_status=previous,
        to_status=str(new_status),
        actor=actor,
        reason=reason,
    )
    return consultation


def update_doctor_diagnosis(consultation_id, build) -> Consultation:
    """
    行锁内用 build(consultation) 的返回值替换 doctor_diagnosis。

    只有 DOCTOR_ASSIGNED / IN_PROGRESS 的问诊可以修订诊断。

    Raises:
        ConsultationNotFound / ConsultationClosed
    """
    with transaction.atomic():
        consultation = _locked(consultation_id)
        if consultation.status not in DIAGNOSIS_EDITABLE:
            raise ConsultationClosed(
                message=f"Diagnosis cannot be modified while consultation is {consultation.status}",
                detail={'current_status': consultation.status},
            )
        consultation.doctor_diagnosis = build(consultation)
        consultation.save(update_fields=['doctor_diagnosis', 'updated_at'])
    return consultation


def list_for_patient(patient_id: str, limit: int, offset: int, doctor_id: str | None = None):
    """按创建时间倒序分页。doctor_id 不为空时只返回分配给该医生的。返回 (consultations, total)。"""
    queryset = Consultation.objects.filter(patient_id=patient_id)
    if doctor_id is not None:
        queryset = queryset.filter(doctor_id=doctor_id)
    return list(queryset.order_by('-created_at')[offset:offset + limit]), queryset.count()


# ── PaymentRecord ───────────────────────────────────────────────────────────

def get_payment_record(session_id: str, payment_id: str) -> PaymentRecord | None:
    return PaymentRecord.objects.filter(session_id=session_id, payment_id=payment_id).first()


def record_payment(*, session_id: str, payment_id: str, patient_id: str, order: dict, result) -> PaymentRecord:
    """
    按 (session_id, payment_id) 写入支付结果，重复调用只会有一条记录。

    已经是 completed 的记录不会被后来的结果覆盖。
    """
    defaults = {
        'patient_id': patient_id,
        'gateway_order_id': order['order_id'],
        'provider': order.get('provider', ''),
        'status': result.status if result.status in ('completed', 'failed') else 'pending',
        'amount': order['amount'] // 100,
        'currency': order['currency'],
        'gateway_transaction_id': result.transaction_id,
        'failure_reason': result.failure_reason,
        'result': {
            'status': result.status,
            'transaction_id': result.transaction_id,
            'method': result.method,
            'failure_reason': result.failure_reason,
        },
    }

    try:
        with transaction.atomic():
            record, created = PaymentRecord.objects.get_or_create(
                session_id=session_id, payment_id=payment_id, defaults=defaults,
            )
    except IntegrityError:
        record, created = PaymentRecord.objects.get(session_id=session_id, payment_id=payment_id), False

    if not created and record.status != 'completed' and defaults['status'] != record.status:
        for field, value in defaults.items():
            setattr(record, field, value)
        record.save()
    return record


def mark_payment_refunded(session_id: str, transaction_id: str) -> None:
    PaymentRecord.objects.filter(
        session_id=session_id, gateway_transaction_id=transaction_id, status='completed',
    ).update(status='refunded')
