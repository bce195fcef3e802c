"""
诊断层的标准响应结构。

所有 DiagnosisService 实现的 diagnose() 都返回这个对象。
workflow 只认识这个格式，不知道背后是诊断 agent、哪家 LLM 还是本地规则。
"""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class DiagnosisResult:
    diagnosis: str
    severity: str                      # low | medium | high | critical
    recommended_type: str              # chat | video | emergency
    confidence: float = 0.0
    investigations: list[dict] = field(default_factory=list)
    treatments: list[dict] = field(default_factory=list)
    advice: list[str] = field(default_factory=list)
    provider: str = ""
    is_fallback: bool = False
    raw: Any = field(default=None, repr=False)

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop('raw')
        return data
