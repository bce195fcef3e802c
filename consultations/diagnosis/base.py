"""
BaseDiagnosisService — 所有 AI 预诊断实现的抽象基类。

诊断算法本身是外部协作方的事，这里只约定输入输出：
  输入  SymptomIntake
  输出  DiagnosisResult

严重程度和推荐问诊类型由本地分诊规则统一给出（triage()），
不同 provider 的结果因此可以直接比较。
"""

from abc import ABC, abstractmethod

from ..intake.types import SymptomIntake
from .types import DiagnosisResult

# 患者自评 → 系统严重程度
SEVERITY_MAP = {
    "mild": "low",
    "moderate": "medium",
    "severe": "high",
}

EMERGENCY_SYMPTOMS = (
    "chest pain",
    "difficulty breathing",
    "severe abdominal pain",
    "loss of consciousness",
    "severe bleeding",
    "stroke symptoms",
)

HIGH_SEVERITY_SYMPTOMS = (
    "high fever",
    "severe headache",
    "persistent vomiting",
    "severe pain",
)


def _mentions(symptoms: list[str], keywords) -> bool:
    lowered = [s.lower() for s in symptoms]
    return any(k in s for k in keywords for s in lowered)


def assess_severity(intake: SymptomIntake) -> str:
    if _mentions(intake.all_symptoms, EMERGENCY_SYMPTOMS):
        return "critical"
    if _mentions(intake.all_symptoms, HIGH_SEVERITY_SYMPTOMS):
        return "high"
    return SEVERITY_MAP.get(intake.severity_level, "low")


def recommend_type(severity: str) -> str:
    if severity == "critical":
        return "emergency"
    if severity == "high":
        return "video"
    return "chat"


def triage(intake: SymptomIntake) -> tuple[str, str]:
    """返回 (severity, recommended_type)。"""
    severity = assess_severity(intake)
    return severity, recommend_type(severity)


class BaseDiagnosisService(ABC):

    name: str = ""

    @abstractmethod
    def diagnose(self, intake: SymptomIntake) -> DiagnosisResult:
        """
        Raises:
            Exception: 服务不可达 / 超时 / 返回无法解析，由 factory.diagnose() 降级到本地规则
        """
