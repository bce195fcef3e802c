"""
HTTP 层。

View 只做三件事：校验请求形状 → 调 workflow / doctors → 格式化响应。
业务异常直接往外抛，由 exception_handler.unified_exception_handler 统一转成 JSON。
"""

from django.conf import settings
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from . import doctors, repository, workflow
from .auth import IsAdmin, IsDoctor, IsDoctorOrAdmin, IsPatient
from .exceptions import PermissionDenied
from .serializers import (
    ConfirmPaymentRequest,
    DetailedSymptomsRequest,
    DiagnosisUpdateRequest,
    DoctorShiftRequest,
    PatientConsultationsQuery,
    ReasonRequest,
    SelectConsultationRequest,
    ShiftStatusRequest,
    StatusUpdateRequest,
    serialize_consultation_created,
    serialize_consultation_detail,
    serialize_consultation_summary,
    serialize_payment_confirmation,
    serialize_payment_details,
    serialize_shift,
    serialize_symptoms_collected,
)


def _validated(serializer_cls, data):
    serializer = serializer_cls(data=data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


# ── 患者流程 ────────────────────────────────────────────────────────────────

class SymptomCollectView(APIView):
    """POST /api/symptoms/collect"""

    permission_classes = [IsPatient]
    source = 'basic'

    def post(self, request):
        session = workflow.collect_symptoms(request.user.id, request.data, source=self.source)
        body = serialize_symptoms_collected(session, settings.CONSULTATION_PRICING)
        return Response(body, status=status.HTTP_201_CREATED)


class StructuredSymptomCollectView(SymptomCollectView):
    """POST /api/symptoms/collect-structured"""

    source = 'structured'


class SelectConsultationView(APIView):
    """POST /api/select-consultation"""

    permission_classes = [IsPatient]

    def post(self, request):
        data = _validated(SelectConsultationRequest, request.data)
        session = workflow.select_consultation(
            request.user.id, data['sessionId'], data['selectedConsultationType'],
        )
        return Response(serialize_payment_details(session))


class ConfirmPaymentView(APIView):
    """POST /api/confirm-payment — 幂等，重放返回同一个 clinicalSessionId"""

    permission_classes = [IsPatient]

    def post(self, request):
        data = _validated(ConfirmPaymentRequest, request.data)
        session = workflow.confirm_payment(
            request.user.id, data['sessionId'], data['paymentId'], data.get('signature') or None,
        )
        return Response(serialize_payment_confirmation(session))


class DetailedSymptomsView(APIView):
    """POST /api/symptoms/collect_detailed_symptoms — 唯一创建 consultation 的入口"""

    permission_classes = [IsPatient]

    def post(self, request):
        data = _validated(DetailedSymptomsRequest, request.data)
        clinical_session_id = data.pop('clinicalSessionId')
        consultation = workflow.collect_detailed_symptoms(request.user.id, clinical_session_id, dict(data))
        return Response(serialize_consultation_created(consultation), status=status.HTTP_201_CREATED)


# ── Consultation ────────────────────────────────────────────────────────────

def _check_access(user, consultation):
    if user.role == 'admin':
        return
    if user.role == 'patient' and consultation.patient_id == user.id:
        return
    if user.role == 'doctor' and consultation.doctor_id == user.id:
        return
    raise PermissionDenied(detail={'consultation_id': str(consultation.id)})


class ConsultationDetailView(APIView):
    """GET /api/consultations/<id>"""

    permission_classes = [IsAuthenticated]

    def get(self, request, consultation_id):
        consultation = repository.get_consultation(consultation_id)
        _check_access(request.user, consultation)
        include_medical = request.user.role in ('doctor', 'admin')
        return Response(serialize_consultation_detail(consultation, include_medical=include_medical))


class ConsultationStatusView(APIView):
    """PATCH /api/consultations/<id>/status"""

    permission_classes = [IsDoctorOrAdmin]

    def patch(self, request, consultation_id):
        data = _validated(StatusUpdateRequest, request.data)
        _check_access(request.user, repository.get_consultation(consultation_id))
        consultation = repository.update_status(
            consultation_id, data['status'], actor=request.user.id, reason=data['reason'],
        )
        return Response(serialize_consultation_detail(consultation))


class ConsultationCancelView(APIView):
    """POST /api/consultations/<id>/cancel"""

    permission_classes = [IsAuthenticated]

    def post(self, request, consultation_id):
        data = _validated(ReasonRequest, request.data)
        _check_access(request.user, repository.get_consultation(consultation_id))
        consultation = workflow.cancel_consultation(consultation_id, request.user.id, data['reason'])
        return Response(serialize_consultation_detail(consultation))


class ConsultationRefundView(APIView):
    """POST /api/consultations/<id>/refund"""

    permission_classes = [IsAdmin]

    def post(self, request, consultation_id):
        data = _validated(ReasonRequest, request.data)
        consultation = workflow.refund_consultation(consultation_id, request.user.id, data['reason'])
        return Response(serialize_consultation_detail(consultation))


class ConsultationDiagnosisView(APIView):
    """PATCH /api/consultations/<id>/diagnosis  只有被分配的医生能修订"""

    permission_classes = [IsDoctor]

    def patch(self, request, consultation_id):
        data = dict(_validated(DiagnosisUpdateRequest, request.data))
        notes = data.pop('modification_notes')
        _check_access(request.user, repository.get_consultation(consultation_id))
        consultation = workflow.modify_diagnosis(consultation_id, request.user.id, data, notes)
        return Response(serialize_consultation_detail(consultation, include_medical=True))


class PatientConsultationListView(APIView):
    """
    GET /api/consultations/patient/<patient_id>?limit=&offset=

    患者只能查自己的；医生只看到分配给自己的；管理员全部可见。
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, patient_id):
        query = _validated(PatientConsultationsQuery, request.query_params)
        user = request.user
        if user.role == 'patient' and user.id != patient_id:
            raise PermissionDenied(detail={'patient_id': patient_id})

        consultations, total = repository.list_for_patient(
            patient_id,
            query['limit'],
            query['offset'],
            doctor_id=user.id if user.role == 'doctor' else None,
        )
        return Response({
            'consultations': [serialize_consultation_summary(c) for c in consultations],
            'total': total,
            'limit': query['limit'],
            'offset': query['offset'],
        })


# ── 值班医生 / 班次管理 ─────────────────────────────────────────────────────

class CurrentDoctorView(APIView):
    """GET /api/doctor-shifts/current-doctor"""

    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response({'activeDoctorId': doctors.current_doctor()})


class DoctorShiftListView(APIView):
    """GET / POST /api/doctor-shifts"""

    def get_permissions(self):
        if self.request.method == 'POST':
            return [IsAdmin()]
        return [IsDoctorOrAdmin()]

    def get(self, request):
        return Response({'shifts': [serialize_shift(s) for s in doctors.list_shifts()]})

    def post(self, request):
        data = _validated(DoctorShiftRequest, request.data)
        shift = doctors.upsert_shift(
            data.pop('shift_type'),
            data.pop('doctor_id'),
            data.pop('start_hour'),
            data.pop('end_hour'),
            actor=request.user.id,
            **data,
        )
        return Response(serialize_shift(shift), status=status.HTTP_201_CREATED)


class DoctorShiftStatusView(APIView):
    """PATCH /api/doctor-shifts/<shift_type>/status"""

    permission_classes = [IsAdmin]

    def patch(self, request, shift_type):
        data = _validated(ShiftStatusRequest, request.data)
        shift = doctors.set_shift_status(shift_type, data['status'], actor=request.user.id)
        return Response(serialize_shift(shift))


class DoctorShiftSeedView(APIView):
    """POST /api/doctor-shifts/seed-defaults {doctorId}"""

    permission_classes = [IsAdmin]

    def post(self, request):
        doctor_id = request.data.get('doctorId') or settings.FALLBACK_DOCTOR_ID
        seeded = doctors.seed_default_shifts(actor=request.user.id, doctor_id=doctor_id)
        return Response({'seeded': [serialize_shift(s) for s in seeded]})


class DoctorShiftRefreshView(APIView):
    """POST /api/doctor-shifts/force-refresh — 跳过缓存重新解析"""

    permission_classes = [IsAdmin]

    def post(self, request):
        return Response({'activeDoctorId': doctors.current_doctor(force_refresh=True)})
