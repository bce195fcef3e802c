"""
请求校验 + 响应格式化。

- XxxRequest:     DRF Serializer，只校验请求体的形状，业务规则在 workflow 里
- serialize_xxx:  session / ORM 对象 → JSON-able dict，只做输出格式化

症状采集请求体走 consultations/intake/ adapter，不在这里。
"""

from rest_framework import serializers

from .models import ConsultationStatus, ConsultationType, DoctorShift


# ── 请求 ────────────────────────────────────────────────────────────────────

class SelectConsultationRequest(serializers.Serializer):
    sessionId = serializers.CharField()
    selectedConsultationType = serializers.ChoiceField(choices=ConsultationType.choices)


class ConfirmPaymentRequest(serializers.Serializer):
    sessionId = serializers.CharField()
    paymentId = serializers.CharField()
    signature = serializers.CharField(required=False, allow_blank=True, default=None)


class PrimaryComplaintSerializer(serializers.Serializer):
    main_symptom = serializers.CharField()
    duration = serializers.CharField()
    severity = serializers.ChoiceField(choices=['mild', 'moderate', 'severe'])
    onset = serializers.CharField(required=False, allow_blank=True)
    progression = serializers.CharField(required=False, allow_blank=True)


class DetailedSymptomsRequest(serializers.Serializer):
    clinicalSessionId = serializers.CharField()
    primary_complaint = PrimaryComplaintSerializer()
    symptom_specific_details = serializers.DictField(required=False)
    reproductive_history = serializers.DictField(required=False)
    associated_symptoms = serializers.DictField(required=False)
    medical_context = serializers.DictField(required=False)
    lifestyle_factors = serializers.DictField(required=False)
    patient_concerns = serializers.CharField(required=False, allow_blank=True)


class StatusUpdateRequest(serializers.Serializer):
    status = serializers.ChoiceField(choices=ConsultationStatus.choices)
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class ReasonRequest(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class DoctorShiftRequest(serializers.Serializer):
    shift_type = serializers.ChoiceField(choices=DoctorShift.SHIFT_TYPE_CHOICES)
    doctor_id = serializers.CharField(max_length=64)
    start_hour = serializers.IntegerField()
    end_hour = serializers.IntegerField()
    status = serializers.ChoiceField(choices=DoctorShift.STATUS_CHOICES, required=False)
    effective_from = serializers.DateTimeField(required=False, allow_null=True)
    effective_to = serializers.DateTimeField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class DiagnosisUpdateRequest(serializers.Serializer):
    """医生修订诊断。字段全部可选，一个都不带表示先把 AI 预诊断复制过来。"""

    diagnosis = serializers.CharField(required=False)
    confidence = serializers.FloatField(required=False, min_value=0, max_value=1)
    investigations = serializers.ListField(child=serializers.DictField(), required=False)
    treatments = serializers.ListField(child=serializers.DictField(), required=False)
    advice = serializers.ListField(child=serializers.CharField(), required=False)
    clinical_reasoning = serializers.CharField(required=False, allow_blank=True)
    warning_signs = serializers.ListField(child=serializers.CharField(), required=False)
    modification_notes = serializers.CharField(required=False, allow_blank=True, default='')


class PatientConsultationsQuery(serializers.Serializer):
    limit = serializers.IntegerField(required=False, default=10, min_value=1, max_value=100)
    offset = serializers.IntegerField(required=False, default=0, min_value=0)


class ShiftStatusRequest(serializers.Serializer):
    status = serializers.ChoiceField(choices=DoctorShift.STATUS_CHOICES)


# ── 响应 ────────────────────────────────────────────────────────────────────

def serialize_symptoms_collected(session, pricing: dict):
    diagnosis = session.diagnosis
    return {
        'sessionId': session.session_id,
        'diagnosis': {
            'diagnosis': diagnosis['diagnosis'],
            'confidence': diagnosis['confidence'],
            'investigations': diagnosis['investigations'],
            'treatments': diagnosis['treatments'],
            'advice': diagnosis['advice'],
            'isFallback': diagnosis['is_fallback'],
        },
        'severity': session.severity,
        'recommendedConsultationType': session.recommended_type,
        'pricing': {
            'amount': pricing[session.recommended_type],
            'currency': 'INR',
            'options': pricing,
        },
        'expiresAt': session.expires_at,
    }


def serialize_payment_details(session):
    order = session.order
    return {
        'sessionId': session.session_id,
        'consultationType': session.consultation_type,
        'paymentDetails': {
            'paymentId': order['order_id'],
            'paymentUrl': order['payment_url'],
            'amount': session.amount,
            'currency': session.currency,
            'expiresAt': order['expires_at'],
            'provider': order['provider'],
        },
    }


def serialize_payment_confirmation(session):
    response = {
        'paymentStatus': 'confirmed',
        'clinicalSessionId': session.clinical_session_id,
        'nextStep': 'collect_detailed_symptoms',
        'expiresAt': session.expires_at,
    }
    # consultation 已经建好（session 已销毁后的重放）
    if getattr(session, 'consultation_id', None):
        response['consultationId'] = session.consultation_id
    return response


def serialize_consultation_created(consultation):
    return {
        'consultationId': str(consultation.id),
        'assignedDoctor': consultation.doctor_id,
        'consultationStatus': consultation.status,
        'consultationType': consultation.consultation_type,
    }


def serialize_consultation_detail(consultation, include_medical=False):
    """include_medical=True 时带上解密后的症状和 AI 诊断（医生 / 管理员才会传 True）。"""
    response = {
        'consultationId': str(consultation.id),
        'patientId': consultation.patient_id,
        'doctorId': consultation.doctor_id,
        'consultationType': consultation.consultation_type,
        'status': consultation.status,
        'isActive': consultation.is_active,
        'statusHistory': consultation.status_history,
        'paymentInfo': consultation.payment_info,
        'consultationStartTime': consultation.consultation_start_time.isoformat() if consultation.consultation_start_time else None,
        'consultationEndTime': consultation.consultation_end_time.isoformat() if consultation.consultation_end_time else None,
        'createdAt': consultation.created_at.isoformat(),
        'updatedAt': consultation.updated_at.isoformat(),
    }
    if include_medical:
        response['initialSymptoms'] = consultation.initial_symptoms
        response['aiDiagnosis'] = consultation.ai_diagnosis
        response['doctorDiagnosis'] = consultation.doctor_diagnosis
        response['detailedSymptoms'] = consultation.detailed_symptoms
    return response


def serialize_consultation_summary(consultation):
    """列表用，不带任何医疗字段。"""
    return {
        'consultationId': str(consultation.id),
        'doctorId': consultation.doctor_id,
        'consultationType': consultation.consultation_type,
        'status': consultation.status,
        'isActive': consultation.is_active,
        'hasDoctorDiagnosis': bool(consultation.doctor_diagnosis),
        'createdAt': consultation.created_at.isoformat(),
    }


def serialize_shift(shift):
    return {
        'shiftType': shift.shift_type,
        'doctorId': shift.doctor_id,
        'startHour': shift.start_hour,
        'endHour': shift.end_hour,
        'status': shift.status,
        'effectiveFrom': shift.effective_from.isoformat() if shift.effective_from else None,
        'effectiveTo': shift.effective_to.isoformat() if shift.effective_to else None,
        'notes': shift.notes,
        'updatedBy': shift.updated_by,
        'updatedAt': shift.updated_at.isoformat(),
    }
