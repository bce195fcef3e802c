from .base import assess_severity, recommend_type, triage
from .factory import diagnose, get_diagnosis_service
from .types import DiagnosisResult
