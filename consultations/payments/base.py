"""
BasePaymentProvider — 所有支付网关实现的抽象基类。

每个新网关只需：
1. 继承 BasePaymentProvider
2. 实现 create_order() / verify() / refund()
3. 在 factory.py 的 _build_registry() 注册一行

workflow.py 完全不知道背后用哪家网关。
"""

from abc import ABC, abstractmethod

from .types import OrderHandle, PaymentResult, ProviderToken, RefundResult


class BasePaymentProvider(ABC):

    # 与 factory 注册键一致，写进 PaymentRecord.provider
    name: str = ""

    @abstractmethod
    def create_order(self, session_id: str, amount: int, currency: str, metadata: dict) -> OrderHandle:
        """
        在网关侧创建订单。不重试：重复下单比失败更糟。

        Raises:
            GatewayUnavailable: 网络错误 / 超时
        """

    @abstractmethod
    def verify(self, order: OrderHandle, token: ProviderToken) -> PaymentResult:
        """
        向网关确认这笔支付。网络瞬时错误在内部重试。

        Returns:
            PaymentResult；status != "completed" 表示网关拒绝了这笔支付

        Raises:
            PaymentSignatureInvalid: 签名不符，不重试
            GatewayUnavailable:      重试耗尽
        """

    @abstractmethod
    def refund(self, transaction_id: str, amount: int, reason: str) -> RefundResult:
        """
        Raises:
            GatewayUnavailable: 重试耗尽
        """
