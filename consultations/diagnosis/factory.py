"""
工厂函数：根据 settings.AI_DIAGNOSIS_PROVIDER 返回对应的 DiagnosisService。

换诊断来源只需改环境变量，workflow 零改动。
"""

import logging

from django.conf import settings

from ..intake.types import SymptomIntake
from .base import BaseDiagnosisService
from .types import DiagnosisResult

logger = logging.getLogger(__name__)


def _build_registry() -> dict[str, type[BaseDiagnosisService]]:
    # 延迟导入，避免在 Django 启动前触发 SDK import
    from .services import (
        AgentDiagnosisService,
        ClaudeDiagnosisService,
        LocalDiagnosisService,
        OpenAIDiagnosisService,
    )

    return {
        "agent":     AgentDiagnosisService,
        "anthropic": ClaudeDiagnosisService,
        "openai":    OpenAIDiagnosisService,
        "local":     LocalDiagnosisService,
    }


def get_diagnosis_service() -> BaseDiagnosisService:
    """
    Raises:
        ValueError: AI_DIAGNOSIS_PROVIDER 未知
    """
    provider = getattr(settings, "AI_DIAGNOSIS_PROVIDER", "local")
    registry = _build_registry()
    service_cls = registry.get(provider)

    if service_cls is None:
        raise ValueError(
            f"Unknown AI_DIAGNOSIS_PROVIDER: {provider!r}. "
            f"Known providers: {list(registry.keys())}"
        )

    return service_cls()


def diagnose(intake: SymptomIntake) -> DiagnosisResult:
    """
    调用配置的诊断来源；不可达、超时或返回无法解析时降级到本地规则。

    降级结果带 is_fallback=True，前端据此提示"初步评估"。
    """
    from .services import LocalDiagnosisService

    service = get_diagnosis_service()
    if isinstance(service, LocalDiagnosisService):
        return service.diagnose(intake)

    try:
        return service.diagnose(intake)
    except Exception as exc:
        logger.warning("Diagnosis provider %s failed, using local fallback: %s", service.name, exc)
        return LocalDiagnosisService().diagnose(intake)
