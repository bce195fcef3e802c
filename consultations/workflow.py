"""
问诊流程编排。

  SYMPTOMS_COLLECTED --select_consultation--> CONSULTATION_TYPE_SELECTED
    --create_order--> PAYMENT_PENDING
    --confirm_payment (幂等)--> PAYMENT_CONFIRMED
    --issue_clinical_session--> CLINICAL_SESSION_ISSUED
    --collect_detailed_symptoms--> Consultation 落库，session 销毁

规则：
  - 每次阶段变化先写进 session store，再做有副作用的调用（网关 / 落库）
  - 阶段推进一律走 compare_and_swap；CAS 输了就重新读 session，按重放处理
  - 付款确认绝不创建 consultation，只签发 clinical session
  - 只有 session 的创建者（patient_id）能读写它
"""

import logging
import uuid
from dataclasses import dataclass

from django.conf import settings
from django.utils import timezone

from . import audit, doctors, repository
from .diagnosis import diagnose
from .exceptions import (
    ConsultationClosed,
    PaymentVerificationFailed,
    PermissionDenied,
    PhaseMismatch,
    SessionNotFound,
    SessionOwnershipError,
    ValidationError,
)
from .intake import get_adapter
from .models import ConsultationStatus, ConsultationType
from .payments import OrderHandle, ProviderToken, get_payment_provider
from .sessions import (
    ClinicalSessionIssued,
    PaymentConfirmed,
    PaymentPending,
    Phase,
    SymptomsCollected,
    clinical_session_key,
    get_session_store,
    require_phase,
    session_from_dict,
    session_key,
)
from .sessions.types import expiry_after, seconds_until

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('consultations.security')

CURRENCY = 'INR'


def _session_ttl() -> int:
    return getattr(settings, 'SESSION_TTL_SECONDS', 3600)


def _clinical_ttl() -> int:
    return getattr(settings, 'CLINICAL_SESSION_TTL_SECONDS', 86400)


def price_for(consultation_type: str) -> int:
    """问诊价格（卢比，整数）。"""
    pricing = getattr(settings, 'CONSULTATION_PRICING', {})
    if consultation_type not in pricing:
        raise ValidationError(
            message=f"Unknown consultation type: {consultation_type!r}",
            detail={'allowed': list(pricing.keys())},
        )
    return int(pricing[consultation_type])


# ── session 读写 ────────────────────────────────────────────────────────────

def load_session(session_id: str, patient_id: str) -> SymptomsCollected:
    """
    Raises:
        SessionNotFound:       不存在或已过期（永远不会在这里新建 session）
        SessionOwnershipError: 不是这个患者的 session
    """
    session = session_from_dict(get_session_store().get(session_key(session_id)))
    if session.patient_id != patient_id:
        security_logger.warning(
            "Session ownership mismatch",
            extra={'session_id': session_id, 'owner': session.patient_id, 'caller': patient_id},
        )
        raise SessionOwnershipError(detail={'session_id': session_id})
    return session


def _advance(current: SymptomsCollected, new: SymptomsCollected, expected_fields: dict | None = None) -> bool:
    """CAS current.phase → new。ttl 跟着 new.expires_at 走。"""
    return get_session_store().compare_and_swap(
        session_key(current.session_id),
        current.phase,
        new.to_dict(),
        seconds_until(new.expires_at),
        expected_fields=expected_fields,
    )


# ── 1. 症状采集 ─────────────────────────────────────────────────────────────

def collect_symptoms(patient_id: str, raw_body, source: str = 'basic') -> SymptomsCollected:
    intake = get_adapter(source, raw_body).process()
    result = diagnose(intake)

    session = SymptomsCollected(
        session_id=uuid.uuid4().hex,
        patient_id=patient_id,
        expires_at=expiry_after(_session_ttl()),
        symptoms=intake.to_dict(),
        diagnosis=result.to_dict(),
        severity=result.severity,
        recommended_type=result.recommended_type,
    )
    get_session_store().put(session_key(session.session_id), session.to_dict(), _session_ttl())

    logger.info("Session %s created for patient %s (severity=%s, provider=%s)",
                session.session_id, patient_id, result.severity, result.provider)
    audit.emit(
        'session_created',
        session_id=session.session_id,
        patient_id=patient_id,
        severity=result.severity,
        diagnosis_fallback=result.is_fallback,
    )
    return session


# ── 2. 选择问诊类型 + 下单 ──────────────────────────────────────────────────

def _order_claim_timeout() -> int:
    return getattr(settings, 'ORDER_CLAIM_TIMEOUT_SECONDS', 60)


def select_consultation(patient_id: str, session_id: str, consultation_type: str) -> PaymentPending:
    """
    同一类型重复选择时直接返回已有订单；已下单后换类型是 PhaseMismatch。

    create_order 不是幂等的，所以下单前先用 CAS 写入 order_claim，
    同一时刻只有持有 claim 的请求会调用网关。其他请求看到 claim 还在有效期内，
    直接 ORDER_IN_PROGRESS，不碰网关。
    网关下单失败时释放 claim，session 停在 CONSULTATION_TYPE_SELECTED，可以重试。
    """
    if consultation_type not in ConsultationType.values:
        raise ValidationError(
            message=f"Unknown consultation type: {consultation_type!r}",
            detail={'allowed': list(ConsultationType.values)},
        )

    session = load_session(session_id, patient_id)

    if session.phase == Phase.PAYMENT_PENDING:
        return _existing_order(session, consultation_type)
    require_phase(session, Phase.SYMPTOMS_COLLECTED, Phase.CONSULTATION_TYPE_SELECTED)

    expected = None
    if session.phase == Phase.CONSULTATION_TYPE_SELECTED:
        if session.claim_is_live(_order_claim_timeout()):
            raise _order_in_progress(session)
        # 没人持有，或者持有者超时没回来：只有 claim 没被别人换掉时才能接手
        expected = {'order_claim': session.order_claim}

    amount = price_for(consultation_type)
    claim = uuid.uuid4().hex
    selected = session.select_type(consultation_type, amount, CURRENCY, order_claim=claim)
    if not _advance(session, selected, expected):
        return _after_lost_claim(session_id, patient_id, consultation_type)

    try:
        order = get_payment_provider().create_order(
            session_id,
            amount * 100,
            CURRENCY,
            {'patient_id': patient_id, 'consultation_type': consultation_type},
        )
    except Exception:
        _advance(selected, selected.release_claim(), {'order_claim': claim})
        raise

    pending = selected.attach_order(order.to_dict())
    if not _advance(selected, pending, {'order_claim': claim}):
        # 只有 claim 超时被别人接手才会走到这里，这张订单作废
        logger.warning("Order %s for session %s superseded by another request", order.order_id, session_id)
        return _after_lost_claim(session_id, patient_id, consultation_type)

    audit.emit(
        'payment_order_created',
        session_id=session_id,
        patient_id=patient_id,
        consultation_type=consultation_type,
        amount=amount,
        order_id=order.order_id,
    )
    return pending


def _order_in_progress(session) -> PhaseMismatch:
    return PhaseMismatch(
        message='A payment order is already being created for this session',
        code='ORDER_IN_PROGRESS',
        detail={'session_id': session.session_id, 'selected_type': session.consultation_type},
    )


def _after_lost_claim(session_id: str, patient_id: str, consultation_type: str) -> PaymentPending:
    """CAS 输给了并发请求：对方已经下单就按重放返回，还在下单就 ORDER_IN_PROGRESS。"""
    current = load_session(session_id, patient_id)
    if current.phase == Phase.CONSULTATION_TYPE_SELECTED:
        raise _order_in_progress(current)
    return _existing_order(current, consultation_type)


def _existing_order(session: SymptomsCollected, consultation_type: str) -> PaymentPending:
    require_phase(session, Phase.PAYMENT_PENDING)
    if session.consultation_type != consultation_type:
        raise PhaseMismatch(
            message=f"A payment order for {session.consultation_type} already exists for this session",
            detail={'selected_type': session.consultation_type, 'requested_type': consultation_type},
        )
    return session


# ── 3. 确认付款（幂等）──────────────────────────────────────────────────────

def confirm_payment(patient_id: str, session_id: str, payment_id: str, signature: str | None = None) -> ClinicalSessionIssued:
    """
    重放（session 已经 >= PAYMENT_CONFIRMED）直接返回原结果，不再找网关验证，
    clinical_session_id 保持不变。consultation 建好后 session 已经销毁，
    这时从 PaymentRecord + Consultation 还原原结果。

    Raises:
        PaymentVerificationFailed: 网关拒绝（session 留在 PAYMENT_PENDING，可以重新支付）
        PaymentSignatureInvalid:   签名不符
        GatewayUnavailable:        网关重试耗尽
    """
    try:
        session = load_session(session_id, patient_id)
    except SessionNotFound:
        replay = _replay_from_records(session_id, payment_id, patient_id)
        if replay is None:
            raise
        return replay

    if session.is_at_least(Phase.PAYMENT_CONFIRMED):
        logger.info("confirm_payment replay for session %s", session_id)
        return _issue_clinical_session(session)

    require_phase(session, Phase.PAYMENT_PENDING)

    previous = repository.get_payment_record(session_id, payment_id)
    if previous is not None and previous.status == 'failed':
        raise PaymentVerificationFailed(detail={'payment_id': payment_id, 'reason': previous.failure_reason})

    order = OrderHandle.from_dict(session.order)
    token = ProviderToken(payment_id=payment_id, signature=signature)
    try:
        result = get_payment_provider().verify(order, token)
    except PaymentVerificationFailed as exc:
        audit.emit('payment_failed', session_id=session_id, patient_id=patient_id,
                   payment_id=payment_id, reason=exc.code)
        raise

    repository.record_payment(
        session_id=session_id, payment_id=payment_id, patient_id=patient_id,
        order=session.order, result=result,
    )

    if not result.succeeded:
        logger.info("Payment %s for session %s not completed: %s", payment_id, session_id, result.failure_reason)
        audit.emit('payment_failed', session_id=session_id, patient_id=patient_id,
                   payment_id=payment_id, reason=result.failure_reason)
        raise PaymentVerificationFailed(detail={'payment_id': payment_id, 'reason': result.failure_reason})

    confirmed = session.confirm(
        payment={
            'payment_id': payment_id,
            'transaction_id': result.transaction_id,
            'status': result.status,
            'confirmed_at': timezone.now().isoformat(),
        },
        clinical_session_id=uuid.uuid4().hex,
        expires_at=expiry_after(_clinical_ttl()),
    )

    if not _advance(session, confirmed):
        # 并发确认：另一个请求先推进了，以它写下的结果为准
        current = load_session(session_id, patient_id)
        if not current.is_at_least(Phase.PAYMENT_CONFIRMED):
            raise PhaseMismatch(detail={'current_phase': current.phase})
        logger.info("confirm_payment lost CAS for session %s, treating as replay", session_id)
        return _issue_clinical_session(current)

    audit.emit(
        'payment_confirmed',
        session_id=session_id,
        patient_id=patient_id,
        payment_id=payment_id,
        transaction_id=result.transaction_id,
        clinical_session_id=confirmed.clinical_session_id,
    )
    return _issue_clinical_session(confirmed)


@dataclass(frozen=True)
class ConfirmedPayment:
    """session 已销毁后的 confirm_payment 重放结果。"""

    session_id: str
    clinical_session_id: str
    consultation_id: str
    expires_at: str | None = None


def _replay_from_records(session_id: str, payment_id: str, patient_id: str) -> ConfirmedPayment | None:
    consultation = repository.find_by_session(session_id)
    if consultation is None or (consultation.payment_info or {}).get('payment_id') != payment_id:
        return None
    record = repository.get_payment_record(session_id, payment_id)
    if record is None or record.status not in ('completed', 'refunded'):
        return None
    if consultation.patient_id != patient_id:
        raise SessionOwnershipError(detail={'session_id': session_id})

    logger.info("confirm_payment replay for session %s served from consultation %s", session_id, consultation.id)
    return ConfirmedPayment(
        session_id=session_id,
        clinical_session_id=consultation.clinical_session_id,
        consultation_id=str(consultation.id),
    )


def _issue_clinical_session(session: PaymentConfirmed) -> ClinicalSessionIssued:
    """PAYMENT_CONFIRMED → CLINICAL_SESSION_ISSUED，并写 clinical_session_id 索引。可重复调用。"""
    store = get_session_store()

    if session.phase == Phase.PAYMENT_CONFIRMED:
        issued = session.issue()
        if _advance(session, issued):
            session = issued
        else:
            session = session_from_dict(store.get(session_key(session.session_id)))

    store.put(
        clinical_session_key(session.clinical_session_id),
        session.session_id,
        seconds_until(session.expires_at),
    )
    return session


# ── 4. 详细症状 → 创建 consultation ─────────────────────────────────────────

def collect_detailed_symptoms(patient_id: str, clinical_session_id: str, detailed_symptoms: dict):
    """
    唯一创建 consultation 的地方。重放时返回已经建好的那条。

    Raises:
        SessionNotFound / SessionOwnershipError / PhaseMismatch
        DoctorUnavailable:        没有值班医生且没有 fallback
        ActiveConsultationExists: 该患者已有活跃问诊（session 保留，关闭旧问诊后可重试）
    """
    existing = repository.find_by_clinical_session(clinical_session_id)
    if existing is not None:
        if existing.patient_id != patient_id:
            raise SessionOwnershipError(detail={'clinical_session_id': clinical_session_id})
        return existing

    store = get_session_store()
    try:
        session_id = store.get(clinical_session_key(clinical_session_id))
    except SessionNotFound:
        raise SessionNotFound(
            message='Clinical session not found or expired. Please restart the consultation flow.',
            detail={'clinical_session_id': clinical_session_id},
        )

    session = load_session(session_id, patient_id)
    require_phase(session, Phase.CLINICAL_SESSION_ISSUED)

    doctor_id = doctors.current_doctor()

    consultation, created = repository.create_consultation(
        session_id=session.session_id,
        clinical_session_id=session.clinical_session_id,
        patient_id=patient_id,
        doctor_id=doctor_id,
        consultation_type=session.consultation_type,
        payment_info={
            'payment_id': session.payment['payment_id'],
            'transaction_id': session.payment['transaction_id'],
            'order_id': session.order['order_id'],
            'provider': session.order.get('provider', ''),
            'amount': session.amount,
            'currency': session.currency,
            'confirmed_at': session.payment['confirmed_at'],
        },
        initial_symptoms=session.symptoms,
        ai_diagnosis=session.diagnosis,
        detailed_symptoms=detailed_symptoms,
    )

    if created:
        store.delete(session_key(session.session_id))
        store.delete(clinical_session_key(clinical_session_id))
        audit.emit(
            'consultation_created',
            consultation_id=str(consultation.id),
            session_id=session.session_id,
            patient_id=patient_id,
            doctor_id=doctor_id,
        )
    return consultation


# ── consultation 之后的操作 ─────────────────────────────────────────────────

def cancel_consultation(consultation_id, actor: str, reason: str = ''):
    return repository.update_status(consultation_id, ConsultationStatus.CANCELLED, actor, reason or 'Cancelled')


def refund_consultation(consultation_id, actor: str, reason: str = ''):
    """
    在 consultation 行锁内完成：校验状态 → 网关退款 → 标记 PaymentRecord → 落 REFUNDED。

    网关调用期间行一直锁着，并发的取消 / 状态更新要等退款提交后再校验，
    只会看到 REFUNDED。网关失败时整个事务回滚，状态和支付记录都不变。

    Raises:
        ConsultationClosed / InvalidStatusTransition: 当前状态不能退款（不会调用网关）
        GatewayUnavailable: 网关重试耗尽（状态不变）
    """
    refunds = []

    def issue_refund(consultation):
        payment = consultation.payment_info or {}
        if not payment.get('transaction_id'):
            raise ConsultationClosed(
                message='Consultation has no captured payment to refund',
                code='NOTHING_TO_REFUND',
            )
        refund = get_payment_provider().refund(payment['transaction_id'], int(payment['amount']) * 100, reason)
        logger.info("Refund %s issued for consultation %s (%s)", refund.refund_id, consultation.id, refund.status)
        repository.mark_payment_refunded(consultation.session_id, payment['transaction_id'])
        refunds.append(refund)

    consultation = repository.update_status(
        consultation_id, ConsultationStatus.REFUNDED, actor, reason or 'Refunded', before_save=issue_refund,
    )
    audit.emit('payment_refunded', consultation_id=str(consultation.id), refund_id=refunds[0].refund_id,
               amount=consultation.payment_info['amount'], actor=actor)
    return consultation


# ── 医生修订诊断 ────────────────────────────────────────────────────────────

DIAGNOSIS_FIELDS = (
    'diagnosis', 'confidence', 'investigations', 'treatments', 'advice', 'clinical_reasoning', 'warning_signs',
)
_MODIFICATION_FIELDS = (
    'modified_at', 'modified_by', 'modification_type', 'modification_notes', 'changes_from_ai', 'is_initial_copy',
)


def modify_diagnosis(consultation_id, doctor_id: str, changes: dict, notes: str = ''):
    """
    只有被分配的医生能修订。没带任何诊断字段时把 AI 预诊断原样复制一份（initial_copy）；
    否则在已有的医生诊断（还没有就用 AI 预诊断）上覆盖传入的字段。

    Raises:
        PermissionDenied:  不是分配给这个医生的问诊
        ValidationError:   问诊没有 AI 预诊断
        ConsultationClosed: 问诊不在 DOCTOR_ASSIGNED / IN_PROGRESS
    """
    changes = {k: v for k, v in changes.items() if k in DIAGNOSIS_FIELDS}

    def build(consultation):
        if consultation.doctor_id != doctor_id:
            raise PermissionDenied(detail={'consultation_id': str(consultation.id)})
        original = consultation.ai_diagnosis
        if not original:
            raise ValidationError(message='AI diagnosis not found for this consultation')

        previous = consultation.doctor_diagnosis or {}
        if changes:
            base = {k: v for k, v in (previous or original).items() if k not in _MODIFICATION_FIELDS}
            revised = {**base, **changes}
        else:
            revised = dict(original)

        changed_from_ai = sorted(k for k in revised if revised[k] != original.get(k))
        if not changes:
            modification_type = 'initial_copy'
        elif changed_from_ai:
            modification_type = 'enhanced'
        else:
            modification_type = 'no_changes'

        return {
            **revised,
            'modified_at': timezone.now().isoformat(),
            'modified_by': doctor_id,
            'modification_type': modification_type,
            'modification_notes': notes or previous.get('modification_notes', '')
            or ('Initial copy of AI diagnosis' if not changes else ''),
            'changes_from_ai': changed_from_ai,
            'is_initial_copy': not changes,
        }

    consultation = repository.update_doctor_diagnosis(consultation_id, build)
    logger.info("Diagnosis for consultation %s modified by %s (%s)",
                consultation.id, doctor_id, consultation.doctor_diagnosis['modification_type'])
    audit.emit(
        'diagnosis_modified',
        consultation_id=str(consultation.id),
        actor=doctor_id,
        modification_type=consultation.doctor_diagnosis['modification_type'],
        changes_from_ai=consultation.doctor_diagnosis['changes_from_ai'],
    )
    return consultation
