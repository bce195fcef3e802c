"""
工厂函数：根据 settings.PAYMENT_PROVIDER 返回对应的 PaymentProvider 实例。

新增网关只需：
  1. 在 providers.py 新建 XxxProvider(BasePaymentProvider) 类
  2. 在此处 _build_registry() 加一行
  不需要修改 workflow.py 或任何业务代码。

进程启动时（ConsultationsConfig.ready）解析一次，之后复用同一个实例。
"""

from functools import lru_cache

from django.conf import settings

from .base import BasePaymentProvider


def _build_registry() -> dict[str, type[BasePaymentProvider]]:
    # 延迟导入，避免在 Django 启动前触发 requests 等依赖
    from .providers import MockPaymentProvider, RazorpayProvider

    return {
        "mock":     MockPaymentProvider,
        "razorpay": RazorpayProvider,
    }


@lru_cache(maxsize=1)
def get_payment_provider() -> BasePaymentProvider:
    """
    Raises:
        ValueError: PAYMENT_PROVIDER 未知，或所选网关缺少凭证
    """
    provider = getattr(settings, "PAYMENT_PROVIDER", "mock")
    registry = _build_registry()
    provider_cls = registry.get(provider)

    if provider_cls is None:
        raise ValueError(
            f"Unknown PAYMENT_PROVIDER: {provider!r}. "
            f"Known providers: {list(registry.keys())}"
        )

    return provider_cls()
