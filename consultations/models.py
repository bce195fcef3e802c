import uuid

from django.db import models
from django.db.models import Q

from .encryption import EncryptedJSONField


class ConsultationType(models.TextChoices):
    CHAT = 'chat', 'Chat'
    VIDEO = 'video', 'Video'
    EMERGENCY = 'emergency', 'Emergency'


class ConsultationStatus(models.TextChoices):
    DRAFT = 'draft', 'Draft'
    PAYMENT_PENDING = 'payment_pending', 'Payment pending'
    PAYMENT_CONFIRMED = 'payment_confirmed', 'Payment confirmed'
    DOCTOR_ASSIGNED = 'doctor_assigned', 'Doctor assigned'
    IN_PROGRESS = 'in_progress', 'In progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'
    EXPIRED = 'expired', 'Expired'
    REFUNDED = 'refunded', 'Refunded'


class Consultation(models.Model):
    """
    持久化的问诊记录。

    只在详细症状提交那一步创建，每个 session 至多一条（session_id 唯一），
    每个患者同时至多一条 is_active=True（条件唯一约束）。
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient_id = models.CharField(max_length=64, db_index=True)
    doctor_id = models.CharField(max_length=64, blank=True, null=True)
    session_id = models.CharField(max_length=64, unique=True)
    clinical_session_id = models.CharField(max_length=64, unique=True)
    consultation_type = models.CharField(max_length=20, choices=ConsultationType.choices)
    status = models.CharField(max_length=30, choices=ConsultationStatus.choices, default=ConsultationStatus.DRAFT)
    status_history = models.JSONField(default=list, blank=True)
    payment_info = models.JSONField(default=dict, blank=True)
    initial_symptoms = EncryptedJSONField(blank=True, null=True)
    ai_diagnosis = EncryptedJSONField(blank=True, null=True)
    # 医生在 AI 预诊断基础上修订后的诊断，第一次修订时从 ai_diagnosis 复制
    doctor_diagnosis = EncryptedJSONField(blank=True, null=True)
    detailed_symptoms = EncryptedJSONField(blank=True, null=True)
    is_active = models.BooleanField(default=True)
    consultation_start_time = models.DateTimeField(blank=True, null=True)
    consultation_end_time = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'consultations'
        constraints = [
            models.UniqueConstraint(
                fields=['patient_id'],
                condition=Q(is_active=True),
                name='one_active_consultation_per_patient',
            ),
        ]


class PaymentRecord(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
        ('refunded', 'Refunded'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    session_id = models.CharField(max_length=64)
    payment_id = models.CharField(max_length=128)
    patient_id = models.CharField(max_length=64, db_index=True)
    gateway_order_id = models.CharField(max_length=128)
    provider = models.CharField(max_length=20)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    amount = models.PositiveIntegerField()
    currency = models.CharField(max_length=3, default='INR')
    gateway_transaction_id = models.CharField(max_length=128, blank=True, null=True)
    failure_reason = models.TextField(blank=True, null=True)
    result = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'payment_records'
        constraints = [
            models.UniqueConstraint(fields=['session_id', 'payment_id'], name='unique_payment_per_session'),
        ]


class DoctorShift(models.Model):
    SHIFT_TYPE_CHOICES = [
        ('morning', 'Morning'),
        ('evening', 'Evening'),
        ('night', 'Night'),
    ]
    STATUS_CHOICES = [
        ('active', 'Active'),
        ('inactive', 'Inactive'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    shift_type = models.CharField(max_length=20, choices=SHIFT_TYPE_CHOICES, unique=True)
    doctor_id = models.CharField(max_length=64)
    start_hour = models.PositiveSmallIntegerField()
    end_hour = models.PositiveSmallIntegerField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    effective_from = models.DateTimeField(blank=True, null=True)
    effective_to = models.DateTimeField(blank=True, null=True)
    notes = models.TextField(blank=True, default='')
    created_by = models.CharField(max_length=64, blank=True, default='')
    updated_by = models.CharField(max_length=64, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'doctor_shifts'

    def covers_hour(self, hour: int) -> bool:
        # 窗口左闭右开 [start, end)；end < start 表示跨午夜（16 → 0 即 16:00-24:00）
        if self.start_hour < self.end_hour:
            return self.start_hour <= hour < self.end_hour
        return hour >= self.start_hour or hour < self.end_hour
