"""
SymptomIntake dataclass — 诊断和 workflow 唯一认识的症状格式。

所有 Adapter 的 transform() 必须返回这个结构。
业务层只消费这个结构，永远不碰客户端原始请求体。
"""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class MedicalHistory:
    allergies: list[str] = field(default_factory=list)
    current_medications: list[str] = field(default_factory=list)
    chronic_conditions: list[str] = field(default_factory=list)
    previous_surgeries: list[str] = field(default_factory=list)
    family_history: list[str] = field(default_factory=list)

    def flatten(self) -> list[str]:
        return [
            *self.chronic_conditions,
            *self.previous_surgeries,
            *(f"allergy: {a}" for a in self.allergies),
            *(f"medication: {m}" for m in self.current_medications),
            *(f"family: {f}" for f in self.family_history),
        ]


@dataclass
class SymptomIntake:
    """
    标准症状输入。

    severity_level  患者自评：mild / moderate / severe
    raw_payload     保存原始请求体，用于排查问题，不参与业务逻辑，也不写入 session。
    source          标识输入格式（"basic" / "structured"）。
    """

    symptoms: list[str]
    severity_level: str
    duration: str
    patient_age: int | None = None
    additional_symptoms: list[str] = field(default_factory=list)
    triggers: list[str] = field(default_factory=list)
    previous_treatments: list[str] = field(default_factory=list)
    medical_history: MedicalHistory = field(default_factory=MedicalHistory)
    additional_notes: str = ""
    source: str = ""
    raw_payload: Any = field(default=None, repr=False)

    @property
    def all_symptoms(self) -> list[str]:
        return [*self.symptoms, *self.additional_symptoms]

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop('raw_payload')
        return data
