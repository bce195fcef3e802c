from .base import BasePaymentProvider
from .factory import get_payment_provider
from .types import OrderHandle, PaymentResult, ProviderToken, RefundResult
