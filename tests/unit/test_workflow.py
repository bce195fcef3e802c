"""
Unit tests for 问诊流程编排（workflow.py）。

session 存在 LocMemCache，网关是 mock，诊断是本地规则。
覆盖：
  - 完整流程：症状 → 选类型 → 确认付款 → 详细症状 → consultation
  - 幂等：重复确认付款返回同一个 clinical_session_id，不建 consultation
  - 乱序调用 / 非本人 / session 过期
  - CAS 竞争失败按重放处理；并发选类型只有一个请求下单
  - 退款（行锁内调用网关）
  - 医生修订诊断
"""
from unittest.mock import patch

import pytest
from django.db import transaction

from consultations import workflow
from consultations.exceptions import (
    ActiveConsultationExists,
    ConsultationClosed,
    DoctorUnavailable,
    GatewayUnavailable,
    InvalidStatusTransition,
    PaymentVerificationFailed,
    PermissionDenied,
    PhaseMismatch,
    SessionNotFound,
    SessionOwnershipError,
    ValidationError,
)
from consultations.models import Consultation, ConsultationStatus, PaymentRecord
from consultations.payments.providers import MockPaymentProvider
from consultations.sessions import Phase, SessionStore, clinical_session_key, get_session_store, session_key
from consultations.sessions.types import expiry_after
from tests.conftest import ConsultationFactory, DoctorShiftFactory, PaymentRecordFactory

PATIENT = 'patient-001'


@pytest.fixture
def collected(basic_symptoms_payload):
    return workflow.collect_symptoms(PATIENT, basic_symptoms_payload)


@pytest.fixture
def pending(collected):
    return workflow.select_consultation(PATIENT, collected.session_id, 'video')


@pytest.fixture
def issued(pending):
    return workflow.confirm_payment(PATIENT, pending.session_id, 'pay_test_001')


def _stored_phase(session_id):
    return get_session_store().get(session_key(session_id))['phase']


def _paid_session(symptoms_payload, payment_id):
    session = workflow.collect_symptoms(PATIENT, symptoms_payload)
    workflow.select_consultation(PATIENT, session.session_id, 'video')
    return workflow.confirm_payment(PATIENT, session.session_id, payment_id)


# ===================================================================
# 1. 症状采集
# ===================================================================

class TestCollectSymptoms:

    def test_severe_symptoms_recommend_video(self, collected):
        assert collected.phase == Phase.SYMPTOMS_COLLECTED
        assert collected.severity == 'high'
        assert collected.recommended_type == 'video'
        assert collected.patient_id == PATIENT
        assert collected.diagnosis['is_fallback'] is True

    def test_session_written_with_ttl(self, collected, settings):
        stored = get_session_store().get(session_key(collected.session_id))
        assert stored['phase'] == Phase.SYMPTOMS_COLLECTED
        assert stored['symptoms']['patient_age'] == 34
        assert 'raw_payload' not in stored['symptoms']

    def test_structured_source(self, structured_symptoms_payload):
        session = workflow.collect_symptoms(PATIENT, structured_symptoms_payload, source='structured')
        assert session.severity == 'medium'
        assert session.recommended_type == 'chat'
        assert session.symptoms['medical_history']['allergies'] == ['penicillin']

    def test_invalid_input_creates_no_session(self, basic_symptoms_payload):
        basic_symptoms_payload['patient_age'] = 8
        with patch.object(SessionStore, 'put') as mock_put:
            with pytest.raises(ValidationError):
                workflow.collect_symptoms(PATIENT, basic_symptoms_payload)
        mock_put.assert_not_called()

    def test_audit_event_emitted(self, basic_symptoms_payload):
        with patch('consultations.workflow.audit.emit') as mock_emit:
            session = workflow.collect_symptoms(PATIENT, basic_symptoms_payload)
        mock_emit.assert_called_once()
        assert mock_emit.call_args.args[0] == 'session_created'
        assert mock_emit.call_args.kwargs['session_id'] == session.session_id


# ===================================================================
# 2. 选类型 + 下单
# ===================================================================

class TestSelectConsultation:

    def test_video_costs_499(self, pending):
        assert pending.phase == Phase.PAYMENT_PENDING
        assert pending.consultation_type == 'video'
        assert pending.amount == 499
        assert pending.currency == 'INR'
        assert pending.order['amount'] == 49900
        assert pending.order['provider'] == 'mock'
        assert _stored_phase(pending.session_id) == Phase.PAYMENT_PENDING

    def test_same_type_again_returns_same_order(self, pending):
        again = workflow.select_consultation(PATIENT, pending.session_id, 'video')
        assert again.order['order_id'] == pending.order['order_id']

    def test_other_type_after_order_rejected(self, pending):
        with pytest.raises(PhaseMismatch) as exc_info:
            workflow.select_consultation(PATIENT, pending.session_id, 'chat')
        assert exc_info.value.detail['selected_type'] == 'video'

    def test_unknown_type_rejected(self, collected):
        with pytest.raises(ValidationError):
            workflow.select_consultation(PATIENT, collected.session_id, 'house-call')

    def test_unknown_session(self):
        with pytest.raises(SessionNotFound):
            workflow.select_consultation(PATIENT, 'does-not-exist', 'video')

    def test_other_patient_rejected(self, collected):
        with pytest.raises(SessionOwnershipError):
            workflow.select_consultation('patient-999', collected.session_id, 'video')
        assert _stored_phase(collected.session_id) == Phase.SYMPTOMS_COLLECTED

    def test_gateway_failure_leaves_session_retryable(self, collected):
        with patch('consultations.payments.providers.MockPaymentProvider.create_order',
                   side_effect=GatewayUnavailable()):
            with pytest.raises(GatewayUnavailable):
                workflow.select_consultation(PATIENT, collected.session_id, 'video')

        assert _stored_phase(collected.session_id) == Phase.CONSULTATION_TYPE_SELECTED
        assert get_session_store().get(session_key(collected.session_id))['order_claim'] == ''

        retried = workflow.select_consultation(PATIENT, collected.session_id, 'chat')
        assert retried.phase == Phase.PAYMENT_PENDING
        assert retried.amount == 299

    def test_resubmit_while_order_in_flight_does_not_call_gateway_again(self, collected):
        """第一个请求还在网关下单时，同一 session 的第二个请求不能再下一单。"""
        real_create = MockPaymentProvider.create_order
        resubmits = []

        def create_while_resubmitted(provider, *args):
            with pytest.raises(PhaseMismatch) as exc_info:
                workflow.select_consultation(PATIENT, collected.session_id, 'video')
            resubmits.append(exc_info.value.code)
            return real_create(provider, *args)

        with patch.object(MockPaymentProvider, 'create_order', autospec=True,
                          side_effect=create_while_resubmitted) as mock_create:
            pending = workflow.select_consultation(PATIENT, collected.session_id, 'video')

        assert mock_create.call_count == 1
        assert resubmits == ['ORDER_IN_PROGRESS']
        assert pending.phase == Phase.PAYMENT_PENDING

        with patch.object(MockPaymentProvider, 'create_order') as mock_again:
            again = workflow.select_consultation(PATIENT, collected.session_id, 'video')
        mock_again.assert_not_called()
        assert again.order['order_id'] == pending.order['order_id']

    def test_stale_order_claim_can_be_taken_over(self, collected, settings):
        settings.ORDER_CLAIM_TIMEOUT_SECONDS = 60
        abandoned = collected.select_type('video', 499, 'INR', order_claim='crashed-request')
        abandoned.claimed_at = expiry_after(-120)
        get_session_store().put(session_key(collected.session_id), abandoned.to_dict(), 600)

        pending = workflow.select_consultation(PATIENT, collected.session_id, 'video')
        assert pending.phase == Phase.PAYMENT_PENDING
        assert pending.order_claim != 'crashed-request'

    def test_live_order_claim_blocks_other_requests(self, collected):
        in_flight = collected.select_type('video', 499, 'INR', order_claim='other-request')
        get_session_store().put(session_key(collected.session_id), in_flight.to_dict(), 600)

        with patch.object(MockPaymentProvider, 'create_order') as mock_create:
            with pytest.raises(PhaseMismatch) as exc_info:
                workflow.select_consultation(PATIENT, collected.session_id, 'chat')
        mock_create.assert_not_called()
        assert exc_info.value.code == 'ORDER_IN_PROGRESS'


# ===================================================================
# 3. 确认付款
# ===================================================================

@pytest.mark.django_db
class TestConfirmPayment:

    def test_issues_clinical_session(self, issued):
        assert issued.phase == Phase.CLINICAL_SESSION_ISSUED
        assert issued.clinical_session_id
        assert issued.payment['transaction_id'].startswith('mock_txn_')
        assert get_session_store().get(clinical_session_key(issued.clinical_session_id)) == issued.session_id

    def test_records_payment(self, issued):
        record = PaymentRecord.objects.get(session_id=issued.session_id, payment_id='pay_test_001')
        assert record.status == 'completed'
        assert record.amount == 499

    def test_does_not_create_consultation(self, issued):
        assert Consultation.objects.count() == 0

    def test_replay_returns_same_clinical_session(self, pending):
        first = workflow.confirm_payment(PATIENT, pending.session_id, 'pay_test_001')

        with patch('consultations.payments.providers.MockPaymentProvider.verify') as mock_verify:
            second = workflow.confirm_payment(PATIENT, pending.session_id, 'pay_test_001')

        mock_verify.assert_not_called()
        assert second.clinical_session_id == first.clinical_session_id
        assert Consultation.objects.count() == 0
        assert PaymentRecord.objects.count() == 1

    def test_declined_payment_keeps_session_pending(self, pending):
        with pytest.raises(PaymentVerificationFailed):
            workflow.confirm_payment(PATIENT, pending.session_id, 'fail_card_declined')

        assert _stored_phase(pending.session_id) == Phase.PAYMENT_PENDING
        assert PaymentRecord.objects.get().status == 'failed'

    def test_declined_payment_replay_skips_gateway(self, pending):
        with pytest.raises(PaymentVerificationFailed):
            workflow.confirm_payment(PATIENT, pending.session_id, 'fail_card_declined')

        with patch('consultations.payments.providers.MockPaymentProvider.verify') as mock_verify:
            with pytest.raises(PaymentVerificationFailed):
                workflow.confirm_payment(PATIENT, pending.session_id, 'fail_card_declined')
        mock_verify.assert_not_called()

    def test_new_payment_after_decline_succeeds(self, pending):
        with pytest.raises(PaymentVerificationFailed):
            workflow.confirm_payment(PATIENT, pending.session_id, 'fail_card_declined')

        issued = workflow.confirm_payment(PATIENT, pending.session_id, 'pay_second_try')
        assert issued.phase == Phase.CLINICAL_SESSION_ISSUED

    def test_before_order_is_phase_mismatch(self, collected):
        with pytest.raises(PhaseMismatch):
            workflow.confirm_payment(PATIENT, collected.session_id, 'pay_test_001')

    def test_other_patient_rejected(self, pending):
        with pytest.raises(SessionOwnershipError):
            workflow.confirm_payment('patient-999', pending.session_id, 'pay_test_001')

    def test_lost_cas_is_treated_as_replay(self, pending):
        """另一个请求抢先确认：本请求 CAS 失败后读到对方的结果并原样返回。"""
        winner = pending.confirm(
            payment={'payment_id': 'pay_test_001', 'transaction_id': 'mock_txn_winner',
                     'status': 'completed', 'confirmed_at': '2026-01-01T00:00:00+00:00'},
            clinical_session_id='clinical-winner',
            expires_at=pending.expires_at,
        )
        store = get_session_store()
        real_cas = store.__class__.compare_and_swap

        def lose_first(self, key, expected_phase, new_value, ttl, **kwargs):
            if expected_phase == Phase.PAYMENT_PENDING:
                # 模拟对方在 verify 和 CAS 之间写入
                self.put(key, winner.to_dict(), 600)
                return False
            return real_cas(self, key, expected_phase, new_value, ttl, **kwargs)

        with patch.object(store.__class__, 'compare_and_swap', lose_first):
            result = workflow.confirm_payment(PATIENT, pending.session_id, 'pay_test_001')

        assert result.clinical_session_id == 'clinical-winner'
        assert result.phase == Phase.CLINICAL_SESSION_ISSUED


# ===================================================================
# 4. 详细症状 → consultation
# ===================================================================

@pytest.mark.django_db
class TestCollectDetailedSymptoms:

    def test_creates_consultation_and_destroys_session(self, issued, detailed_symptoms_payload):
        DoctorShiftFactory(start_hour=0, end_hour=23)

        consultation = workflow.collect_detailed_symptoms(PATIENT, issued.clinical_session_id, detailed_symptoms_payload)

        assert consultation.status == ConsultationStatus.DOCTOR_ASSIGNED
        assert consultation.patient_id == PATIENT
        assert consultation.consultation_type == 'video'
        assert consultation.payment_info['amount'] == 499
        assert consultation.payment_info['transaction_id'] == issued.payment['transaction_id']
        assert consultation.detailed_symptoms == detailed_symptoms_payload
        assert consultation.initial_symptoms['symptoms'] == ['headache', 'fever']

        with pytest.raises(SessionNotFound):
            get_session_store().get(session_key(issued.session_id))
        with pytest.raises(SessionNotFound):
            get_session_store().get(clinical_session_key(issued.clinical_session_id))

    def test_falls_back_when_no_shift_covers(self, issued, detailed_symptoms_payload):
        consultation = workflow.collect_detailed_symptoms(PATIENT, issued.clinical_session_id, detailed_symptoms_payload)
        assert consultation.doctor_id == 'doctor-fallback'

    def test_replay_returns_same_consultation(self, issued, detailed_symptoms_payload):
        first = workflow.collect_detailed_symptoms(PATIENT, issued.clinical_session_id, detailed_symptoms_payload)
        second = workflow.collect_detailed_symptoms(PATIENT, issued.clinical_session_id, detailed_symptoms_payload)

        assert second.id == first.id
        assert Consultation.objects.count() == 1

    def test_no_doctor_keeps_session(self, issued, detailed_symptoms_payload, settings):
        settings.FALLBACK_DOCTOR_ID = ''
        with pytest.raises(DoctorUnavailable):
            workflow.collect_detailed_symptoms(PATIENT, issued.clinical_session_id, detailed_symptoms_payload)

        assert Consultation.objects.count() == 0
        assert _stored_phase(issued.session_id) == Phase.CLINICAL_SESSION_ISSUED

    def test_active_consultation_conflict_keeps_session(self, issued, detailed_symptoms_payload):
        ConsultationFactory(patient_id=PATIENT)

        with pytest.raises(ActiveConsultationExists):
            workflow.collect_detailed_symptoms(PATIENT, issued.clinical_session_id, detailed_symptoms_payload)

        assert _stored_phase(issued.session_id) == Phase.CLINICAL_SESSION_ISSUED

    def test_unknown_clinical_session(self, detailed_symptoms_payload):
        with pytest.raises(SessionNotFound) as exc_info:
            workflow.collect_detailed_symptoms(PATIENT, 'nope', detailed_symptoms_payload)
        assert 'Clinical session' in exc_info.value.message

    def test_other_patient_rejected(self, issued, detailed_symptoms_payload):
        with pytest.raises(SessionOwnershipError):
            workflow.collect_detailed_symptoms('patient-999', issued.clinical_session_id, detailed_symptoms_payload)
        assert Consultation.objects.count() == 0

    def test_confirm_payment_replay_after_consultation_created(self, issued, detailed_symptoms_payload):
        """session 已经销毁，重放从 PaymentRecord + Consultation 还原原结果。"""
        consultation = workflow.collect_detailed_symptoms(PATIENT, issued.clinical_session_id, detailed_symptoms_payload)

        with patch.object(MockPaymentProvider, 'verify') as mock_verify:
            replay = workflow.confirm_payment(PATIENT, issued.session_id, 'pay_test_001')

        mock_verify.assert_not_called()
        assert replay.clinical_session_id == issued.clinical_session_id
        assert replay.consultation_id == str(consultation.id)
        again = workflow.collect_detailed_symptoms(PATIENT, replay.clinical_session_id, detailed_symptoms_payload)
        assert again.id == consultation.id

    def test_confirm_payment_replay_with_unknown_payment_id(self, issued, detailed_symptoms_payload):
        workflow.collect_detailed_symptoms(PATIENT, issued.clinical_session_id, detailed_symptoms_payload)
        with pytest.raises(SessionNotFound):
            workflow.confirm_payment(PATIENT, issued.session_id, 'pay_someone_else')

    def test_confirm_payment_replay_by_other_patient(self, issued, detailed_symptoms_payload):
        workflow.collect_detailed_symptoms(PATIENT, issued.clinical_session_id, detailed_symptoms_payload)
        with pytest.raises(SessionOwnershipError):
            workflow.confirm_payment('patient-999', issued.session_id, 'pay_test_001')

    def test_two_paid_sessions_yield_one_active_consultation(self, basic_symptoms_payload, detailed_symptoms_payload):
        """
        同一患者两个都已付款的 clinical session 抢着建问诊：没有应用层预检查，
        输家直接撞上数据库的条件唯一约束，拿到 ActiveConsultationExists。
        """
        first, second = (_paid_session(basic_symptoms_payload, f'pay_race_{n}') for n in (1, 2))

        winner = workflow.collect_detailed_symptoms(PATIENT, first.clinical_session_id, detailed_symptoms_payload)
        with pytest.raises(ActiveConsultationExists) as exc_info:
            workflow.collect_detailed_symptoms(PATIENT, second.clinical_session_id, detailed_symptoms_payload)

        assert exc_info.value.detail['active_consultation_id'] == str(winner.id)
        assert Consultation.objects.filter(patient_id=PATIENT, is_active=True).count() == 1
        assert _stored_phase(second.session_id) == Phase.CLINICAL_SESSION_ISSUED

        workflow.cancel_consultation(winner.id, actor=PATIENT)
        retried = workflow.collect_detailed_symptoms(PATIENT, second.clinical_session_id, detailed_symptoms_payload)
        assert retried.is_active
        assert retried.session_id == second.session_id


# ===================================================================
# 5. 取消 / 退款
# ===================================================================

@pytest.mark.django_db
class TestCancelAndRefund:

    def test_cancel(self):
        c = ConsultationFactory()
        cancelled = workflow.cancel_consultation(c.id, actor=c.patient_id)
        assert cancelled.status == ConsultationStatus.CANCELLED
        assert not cancelled.is_active

    def test_refund_calls_gateway_then_persists(self):
        c = ConsultationFactory()
        with patch('consultations.payments.providers.MockPaymentProvider.refund',
                   wraps=workflow.get_payment_provider().refund) as mock_refund:
            refunded = workflow.refund_consultation(c.id, actor='admin-001', reason='Doctor no-show')

        assert refunded.status == ConsultationStatus.REFUNDED
        assert not refunded.is_active
        assert mock_refund.call_args.args[:2] == ('mock_txn_0001', 49900)

    def test_refund_of_completed_consultation_skips_gateway(self):
        c = ConsultationFactory(status=ConsultationStatus.COMPLETED, is_active=False)
        with patch('consultations.payments.providers.MockPaymentProvider.refund') as mock_refund:
            with pytest.raises(ConsultationClosed):
                workflow.refund_consultation(c.id, actor='admin-001')
        mock_refund.assert_not_called()

    def test_refund_after_expiry_allowed(self):
        c = ConsultationFactory(status=ConsultationStatus.EXPIRED, is_active=False)
        assert workflow.refund_consultation(c.id, actor='admin-001').status == ConsultationStatus.REFUNDED

    def test_refund_without_transaction(self):
        c = ConsultationFactory(payment_info={})
        with pytest.raises(ConsultationClosed) as exc_info:
            workflow.refund_consultation(c.id, actor='admin-001')
        assert exc_info.value.code == 'NOTHING_TO_REFUND'

    def test_gateway_failure_keeps_status(self):
        c = ConsultationFactory()
        with patch('consultations.payments.providers.MockPaymentProvider.refund', side_effect=GatewayUnavailable()):
            with pytest.raises(GatewayUnavailable):
                workflow.refund_consultation(c.id, actor='admin-001')

        c.refresh_from_db()
        assert c.status == ConsultationStatus.DOCTOR_ASSIGNED

    def test_refund_marks_payment_record_refunded(self):
        c = ConsultationFactory()
        record = PaymentRecordFactory(session_id=c.session_id, payment_id='pay_test_001')

        workflow.refund_consultation(c.id, actor='admin-001')

        record.refresh_from_db()
        assert record.status == 'refunded'

    def test_gateway_refund_runs_while_row_is_locked(self):
        """网关退款必须发生在行锁之内，并发的取消要等退款提交后才能校验状态。"""
        c = ConsultationFactory()
        calls = []
        real_locked = workflow.repository._locked
        real_refund = MockPaymentProvider.refund

        def locked(consultation_id):
            calls.append('lock')
            return real_locked(consultation_id)

        def refund(provider, *args):
            calls.append('gateway')
            assert transaction.get_connection().in_atomic_block
            return real_refund(provider, *args)

        with patch.object(workflow.repository, '_locked', side_effect=locked), \
                patch.object(MockPaymentProvider, 'refund', autospec=True, side_effect=refund):
            refunded = workflow.refund_consultation(c.id, actor='admin-001')

        assert calls == ['lock', 'gateway']
        assert refunded.status == ConsultationStatus.REFUNDED

    def test_gateway_failure_rolls_back_payment_record(self):
        c = ConsultationFactory()
        record = PaymentRecordFactory(session_id=c.session_id, payment_id='pay_test_001')

        with patch.object(MockPaymentProvider, 'refund', side_effect=GatewayUnavailable()):
            with pytest.raises(GatewayUnavailable):
                workflow.refund_consultation(c.id, actor='admin-001')

        record.refresh_from_db()
        assert record.status == 'completed'

    def test_cancel_that_lands_first_blocks_refund_before_gateway(self):
        c = ConsultationFactory()
        record = PaymentRecordFactory(session_id=c.session_id, payment_id='pay_test_001')
        workflow.cancel_consultation(c.id, actor=c.patient_id)

        with patch.object(MockPaymentProvider, 'refund') as mock_refund:
            with pytest.raises(ConsultationClosed):
                workflow.refund_consultation(c.id, actor='admin-001')

        mock_refund.assert_not_called()
        record.refresh_from_db()
        assert record.status == 'completed'
        c.refresh_from_db()
        assert c.status == ConsultationStatus.CANCELLED

    def test_cancel_after_completion_rejected(self):
        c = ConsultationFactory(status=ConsultationStatus.IN_PROGRESS)
        workflow.repository.update_status(c.id, ConsultationStatus.COMPLETED, actor='doctor-morning')
        with pytest.raises(ConsultationClosed):
            workflow.cancel_consultation(c.id, actor=c.patient_id)

    def test_skip_to_completed_rejected(self):
        c = ConsultationFactory()
        with pytest.raises(InvalidStatusTransition):
            workflow.repository.update_status(c.id, ConsultationStatus.COMPLETED, actor='doctor-morning')


# ===================================================================
# 6. 医生修订诊断
# ===================================================================

@pytest.mark.django_db
class TestModifyDiagnosis:

    def test_empty_request_copies_ai_diagnosis(self):
        c = ConsultationFactory()
        updated = workflow.modify_diagnosis(c.id, 'doctor-morning', {})

        diagnosis = updated.doctor_diagnosis
        assert diagnosis['diagnosis'] == 'Tension headache'
        assert diagnosis['modification_type'] == 'initial_copy'
        assert diagnosis['is_initial_copy'] is True
        assert diagnosis['modified_by'] == 'doctor-morning'
        assert diagnosis['changes_from_ai'] == []
        assert updated.ai_diagnosis == {'diagnosis': 'Tension headache', 'confidence': 0.7}

    def test_changes_are_merged_over_ai_diagnosis(self):
        c = ConsultationFactory()
        updated = workflow.modify_diagnosis(
            c.id, 'doctor-morning', {'diagnosis': 'Migraine', 'advice': ['Rest in a dark room']}, notes='Photophobia',
        )

        diagnosis = updated.doctor_diagnosis
        assert diagnosis['diagnosis'] == 'Migraine'
        assert diagnosis['confidence'] == 0.7
        assert diagnosis['modification_type'] == 'enhanced'
        assert diagnosis['changes_from_ai'] == ['advice', 'diagnosis']
        assert diagnosis['modification_notes'] == 'Photophobia'

    def test_second_edit_builds_on_doctor_diagnosis(self):
        c = ConsultationFactory()
        workflow.modify_diagnosis(c.id, 'doctor-morning', {'diagnosis': 'Migraine'})
        updated = workflow.modify_diagnosis(c.id, 'doctor-morning', {'warning_signs': ['Sudden worst headache']})

        assert updated.doctor_diagnosis['diagnosis'] == 'Migraine'
        assert updated.doctor_diagnosis['warning_signs'] == ['Sudden worst headache']
        assert updated.doctor_diagnosis['changes_from_ai'] == ['diagnosis', 'warning_signs']

    def test_unchanged_values_are_no_changes(self):
        c = ConsultationFactory()
        updated = workflow.modify_diagnosis(c.id, 'doctor-morning', {'diagnosis': 'Tension headache'})
        assert updated.doctor_diagnosis['modification_type'] == 'no_changes'

    def test_unknown_fields_ignored(self):
        c = ConsultationFactory()
        updated = workflow.modify_diagnosis(c.id, 'doctor-morning', {'is_fallback': True, 'modified_by': 'x'})
        assert updated.doctor_diagnosis['modified_by'] == 'doctor-morning'
        assert 'is_fallback' not in updated.doctor_diagnosis

    def test_other_doctor_rejected(self):
        c = ConsultationFactory()
        with pytest.raises(PermissionDenied):
            workflow.modify_diagnosis(c.id, 'doctor-evening', {'diagnosis': 'Migraine'})
        c.refresh_from_db()
        assert c.doctor_diagnosis is None

    def test_closed_consultation_rejected(self):
        c = ConsultationFactory(status=ConsultationStatus.CANCELLED, is_active=False)
        with pytest.raises(ConsultationClosed):
            workflow.modify_diagnosis(c.id, 'doctor-morning', {'diagnosis': 'Migraine'})

    def test_without_ai_diagnosis_rejected(self):
        c = ConsultationFactory(ai_diagnosis=None)
        with pytest.raises(ValidationError):
            workflow.modify_diagnosis(c.id, 'doctor-morning', {})

    def test_audit_event_records_actor(self):
        c = ConsultationFactory()
        with patch('consultations.workflow.audit.emit') as mock_emit:
            workflow.modify_diagnosis(c.id, 'doctor-morning', {'diagnosis': 'Migraine'})

        mock_emit.assert_called_once()
        assert mock_emit.call_args.args[0] == 'diagnosis_modified'
        assert mock_emit.call_args.kwargs['actor'] == 'doctor-morning'
        assert mock_emit.call_args.kwargs['modification_type'] == 'enhanced'
