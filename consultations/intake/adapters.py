"""
具体 Adapter 实现。

已注册格式：
  basic       — BasicSymptomAdapter       (snake_case 平铺，POST /symptoms/collect)
  structured  — StructuredSymptomAdapter  (camelCase + medicalHistory 对象，POST /symptoms/collect-structured)
"""

from ..exceptions import ValidationError
from .base import BaseIntakeAdapter, as_age, as_str_list
from .types import MedicalHistory, SymptomIntake


# ── BasicSymptomAdapter ────────────────────────────────────────────────────
#
# 外部格式示例：
# {
#   "symptoms":        ["headache", "fever"],
#   "patient_age":     34,
#   "severity_level":  "severe",
#   "duration":        "3 days",
#   "medical_history": ["asthma"],
#   "additional_notes": "worse at night"
# }

class BasicSymptomAdapter(BaseIntakeAdapter):
    source = "basic"

    def transform(self) -> SymptomIntake:
        raw = self._parsed
        return SymptomIntake(
            source=self.source,
            raw_payload=raw,
            symptoms=as_str_list(raw.get("symptoms")),
            patient_age=as_age(raw.get("patient_age")),
            severity_level=str(raw.get("severity_level") or raw.get("severity") or "").strip().lower(),
            duration=str(raw.get("duration") or "").strip(),
            medical_history=MedicalHistory(chronic_conditions=as_str_list(raw.get("medical_history"))),
            additional_notes=str(raw.get("additional_notes") or "").strip(),
        )


# ── StructuredSymptomAdapter ───────────────────────────────────────────────
#
# 外部格式示例：
# {
#   "primarySymptom":     ["pelvic pain"],
#   "duration":           "1 week",
#   "severity":           "moderate",
#   "patientAge":         29,
#   "additionalSymptoms": ["nausea"],
#   "triggers":           ["exercise"],
#   "previousTreatments": ["ibuprofen"],
#   "medicalHistory": {
#     "allergies": [], "currentMedications": [], "chronicConditions": [],
#     "previousSurgeries": [], "familyHistory": []
#   }
# }

class StructuredSymptomAdapter(BaseIntakeAdapter):
    source = "structured"

    def transform(self) -> SymptomIntake:
        raw = self._parsed
        history = raw.get("medicalHistory")
        if not isinstance(history, dict):
            history = {}

        return SymptomIntake(
            source=self.source,
            raw_payload=raw,
            symptoms=as_str_list(raw.get("primarySymptom")),
            patient_age=as_age(raw.get("patientAge")),
            severity_level=str(raw.get("severity") or "").strip().lower(),
            duration=str(raw.get("duration") or "").strip(),
            additional_symptoms=as_str_list(raw.get("additionalSymptoms")),
            triggers=as_str_list(raw.get("triggers")),
            previous_treatments=as_str_list(raw.get("previousTreatments")),
            medical_history=MedicalHistory(
                allergies=as_str_list(history.get("allergies")),
                current_medications=as_str_list(history.get("currentMedications")),
                chronic_conditions=as_str_list(history.get("chronicConditions")),
                previous_surgeries=as_str_list(history.get("previousSurgeries")),
                family_history=as_str_list(history.get("familyHistory")),
            ),
            additional_notes=str(raw.get("additionalNotes") or "").strip(),
        )

    def validate(self, intake: SymptomIntake) -> None:
        super().validate(intake)
        if not isinstance(self._parsed.get("medicalHistory"), dict):
            raise ValidationError(
                message="Request validation failed.",
                detail={"errors": [{"field": "medicalHistory", "message": "medicalHistory object is required."}]},
            )
