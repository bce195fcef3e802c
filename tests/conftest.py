"""
Shared fixtures for all tests.

factory-boy factories live here so both unit/ and integration/ can import them.
"""
import uuid

import factory
import pytest
from django.core.cache import cache
from django.test import Client

from consultations.auth import issue_token
from consultations.models import Consultation, ConsultationStatus, DoctorShift, PaymentRecord
from consultations.payments import get_payment_provider


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class ConsultationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Consultation

    patient_id = factory.Sequence(lambda n: f'patient-{n}')
    doctor_id = 'doctor-morning'
    session_id = factory.LazyFunction(lambda: uuid.uuid4().hex)
    clinical_session_id = factory.LazyFunction(lambda: uuid.uuid4().hex)
    consultation_type = 'video'
    status = ConsultationStatus.DOCTOR_ASSIGNED
    status_history = factory.LazyFunction(list)
    payment_info = factory.LazyFunction(lambda: {
        'payment_id': 'pay_test_001',
        'transaction_id': 'mock_txn_0001',
        'order_id': 'mock_order_0001',
        'provider': 'mock',
        'amount': 499,
        'currency': 'INR',
    })
    initial_symptoms = factory.LazyFunction(lambda: {'symptoms': ['headache'], 'severity_level': 'severe'})
    ai_diagnosis = factory.LazyFunction(lambda: {'diagnosis': 'Tension headache', 'confidence': 0.7})
    detailed_symptoms = factory.LazyFunction(lambda: {'primary_complaint': {'main_symptom': 'headache'}})
    is_active = True


class PaymentRecordFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PaymentRecord

    session_id = factory.LazyFunction(lambda: uuid.uuid4().hex)
    payment_id = factory.Sequence(lambda n: f'pay_{n:06d}')
    patient_id = 'patient-001'
    gateway_order_id = 'mock_order_0001'
    provider = 'mock'
    status = 'completed'
    amount = 499
    currency = 'INR'
    gateway_transaction_id = 'mock_txn_0001'


class DoctorShiftFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = DoctorShift
        django_get_or_create = ('shift_type',)

    shift_type = 'morning'
    doctor_id = 'doctor-morning'
    start_hour = 7
    end_hour = 16
    status = 'active'


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_caches():
    """每个测试前后清空 cache（session / 值班医生缓存）和网关单例。"""
    cache.clear()
    get_payment_provider.cache_clear()
    yield
    cache.clear()
    get_payment_provider.cache_clear()


def auth_headers(user_id, role):
    return {'HTTP_AUTHORIZATION': f'Bearer {issue_token(user_id, role)}'}


@pytest.fixture
def api_client():
    """Django test client for integration tests."""
    return Client()


@pytest.fixture
def patient_id():
    return 'patient-001'


@pytest.fixture
def patient_headers(patient_id):
    return auth_headers(patient_id, 'patient')


@pytest.fixture
def doctor_headers():
    return auth_headers('doctor-morning', 'doctor')


@pytest.fixture
def admin_headers():
    return auth_headers('admin-001', 'admin')


@pytest.fixture
def basic_symptoms_payload():
    """POST /api/symptoms/collect 的最小合法请求体。"""
    return {
        'symptoms': ['headache', 'fever'],
        'patient_age': 34,
        'severity_level': 'severe',
        'duration': '3 days',
    }


@pytest.fixture
def structured_symptoms_payload():
    return {
        'primarySymptom': ['pelvic pain'],
        'patientAge': 29,
        'severity': 'moderate',
        'duration': '1 week',
        'additionalSymptoms': ['nausea'],
        'triggers': ['exercise'],
        'previousTreatments': ['ibuprofen'],
        'medicalHistory': {
            'allergies': ['penicillin'],
            'currentMedications': [],
            'chronicConditions': ['asthma'],
            'previousSurgeries': [],
            'familyHistory': [],
        },
    }


@pytest.fixture
def detailed_symptoms_payload():
    return {
        'primary_complaint': {
            'main_symptom': 'headache',
            'duration': '3 days',
            'severity': 'severe',
            'onset': 'sudden',
        },
        'associated_symptoms': {'nausea': True},
        'patient_concerns': 'Worried it is a migraine',
    }
