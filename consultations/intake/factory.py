"""
工厂函数：根据输入格式名返回对应 Adapter。

新增格式只需：
  1. 在 adapters.py 新建 Adapter 类
  2. 在此处 _build_registry() 加一行
"""

from ..exceptions import ValidationError
from .base import BaseIntakeAdapter


def _build_registry() -> dict[str, type[BaseIntakeAdapter]]:
    # 延迟导入，避免循环依赖
    from .adapters import BasicSymptomAdapter, StructuredSymptomAdapter

    return {
        "basic":      BasicSymptomAdapter,
        "structured": StructuredSymptomAdapter,
    }


def get_adapter(source: str, raw_body) -> BaseIntakeAdapter:
    """
    Raises:
        ValidationError: 未知的 source
    """
    registry = _build_registry()
    adapter_cls = registry.get(source)

    if adapter_cls is None:
        raise ValidationError(
            message=f"Unknown symptom format: {source!r}.",
            code="UNKNOWN_SOURCE",
            detail={"known_sources": list(registry.keys())},
        )

    return adapter_cls(raw_body=raw_body)
