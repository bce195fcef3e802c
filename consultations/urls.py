from django.urls import path

from .views import (
    ConfirmPaymentView,
    ConsultationCancelView,
    ConsultationDetailView,
    ConsultationDiagnosisView,
    ConsultationRefundView,
    ConsultationStatusView,
    CurrentDoctorView,
    DetailedSymptomsView,
    DoctorShiftListView,
    DoctorShiftRefreshView,
    DoctorShiftSeedView,
    DoctorShiftStatusView,
    PatientConsultationListView,
    SelectConsultationView,
    StructuredSymptomCollectView,
    SymptomCollectView,
)

urlpatterns = [
    path('symptoms/collect', SymptomCollectView.as_view(), name='symptoms-collect'),
    path('symptoms/collect-structured', StructuredSymptomCollectView.as_view(), name='symptoms-collect-structured'),
    path('symptoms/collect_detailed_symptoms', DetailedSymptomsView.as_view(), name='symptoms-detailed'),
    path('select-consultation', SelectConsultationView.as_view(), name='select-consultation'),
    path('confirm-payment', ConfirmPaymentView.as_view(), name='confirm-payment'),
    path('consultations/patient/<str:patient_id>', PatientConsultationListView.as_view(), name='patient-consultations'),
    path('consultations/<uuid:consultation_id>', ConsultationDetailView.as_view(), name='consultation-detail'),
    path('consultations/<uuid:consultation_id>/status', ConsultationStatusView.as_view(), name='consultation-status'),
    path('consultations/<uuid:consultation_id>/cancel', ConsultationCancelView.as_view(), name='consultation-cancel'),
    path('consultations/<uuid:consultation_id>/refund', ConsultationRefundView.as_view(), name='consultation-refund'),
    path('consultations/<uuid:consultation_id>/diagnosis', ConsultationDiagnosisView.as_view(), name='consultation-diagnosis'),
    path('doctor-shifts', DoctorShiftListView.as_view(), name='doctor-shifts'),
    path('doctor-shifts/current-doctor', CurrentDoctorView.as_view(), name='current-doctor'),
    path('doctor-shifts/force-refresh', DoctorShiftRefreshView.as_view(), name='doctor-shifts-refresh'),
    path('doctor-shifts/seed-defaults', DoctorShiftSeedView.as_view(), name='doctor-shifts-seed'),
    path('doctor-shifts/<str:shift_type>/status', DoctorShiftStatusView.as_view(), name='doctor-shift-status'),
]
