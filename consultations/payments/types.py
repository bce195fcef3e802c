"""
支付层的标准数据结构。

所有 PaymentProvider 实现都只返回这几个对象。
业务层（workflow.py）只认识这个格式，不知道背后是 mock 还是 Razorpay。

金额一律是最小货币单位（INR 的 paise）。
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class OrderHandle:
    order_id: str              # 网关侧的 order id
    amount: int                # paise
    currency: str
    provider: str
    status: str = 'created'
    payment_url: str = ''
    expires_at: str = ''       # ISO 8601
    raw: Any = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {
            'order_id': self.order_id,
            'amount': self.amount,
            'currency': self.currency,
            'provider': self.provider,
            'status': self.status,
            'payment_url': self.payment_url,
            'expires_at': self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'OrderHandle':
        return cls(**{k: data[k] for k in (
            'order_id', 'amount', 'currency', 'provider', 'status', 'payment_url', 'expires_at',
        ) if k in data})


@dataclass
class ProviderToken:
    """客户端完成支付后带回来的凭证。"""

    payment_id: str
    signature: str | None = None


@dataclass
class PaymentResult:
    status: str                # completed | failed | pending
    payment_id: str
    order_id: str
    transaction_id: str | None = None
    amount: int | None = None
    currency: str | None = None
    method: str | None = None
    failure_reason: str | None = None
    raw: Any = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.status == 'completed'


@dataclass
class RefundResult:
    refund_id: str
    payment_id: str
    amount: int
    currency: str
    status: str                # pending | processed | failed
    reason: str = ''
    raw: Any = field(default=None, repr=False)
