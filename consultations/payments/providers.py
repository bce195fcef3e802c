"""
具体支付网关实现。

新增网关：在此文件添加一个类，然后在 factory.py 注册即可。

已注册网关：
  mock      — MockPaymentProvider   (确定性，本地开发和测试用)
  razorpay  — RazorpayProvider      (Razorpay REST API，requests 直连)
"""

import hashlib
import hmac
import logging
import time
import uuid
from datetime import timedelta

import requests
from django.conf import settings
from django.utils import timezone

from ..exceptions import GatewayUnavailable, PaymentSignatureInvalid, PaymentVerificationFailed
from .base import BasePaymentProvider
from .types import OrderHandle, PaymentResult, ProviderToken, RefundResult

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('consultations.security')


def _order_expiry() -> str:
    minutes = getattr(settings, 'PAYMENT_ORDER_TTL_MINUTES', 15)
    return (timezone.now() + timedelta(minutes=minutes)).isoformat()


# ── MockPaymentProvider ────────────────────────────────────────────────────
#
# 不发任何网络请求。
# 默认所有支付都成功；payment_id 以 "fail" 开头时模拟网关拒绝，
# 方便端到端测试失败分支。

class MockPaymentProvider(BasePaymentProvider):

    name = "mock"
    FAILURE_PREFIX = "fail"

    def create_order(self, session_id: str, amount: int, currency: str, metadata: dict) -> OrderHandle:
        order_id = f"mock_order_{uuid.uuid4().hex[:16]}"
        logger.info("Created mock order %s for session %s (%d %s)", order_id, session_id, amount, currency)
        return OrderHandle(
            order_id=order_id,
            amount=amount,
            currency=currency,
            provider=self.name,
            payment_url=f"/mock-payment/{order_id}",
            expires_at=_order_expiry(),
            raw={'mock': True, 'session_id': session_id, 'metadata': metadata},
        )

    def verify(self, order: OrderHandle, token: ProviderToken) -> PaymentResult:
        if token.payment_id.startswith(self.FAILURE_PREFIX):
            logger.info("Mock payment %s declined on instruction", token.payment_id)
            return PaymentResult(
                status='failed',
                payment_id=token.payment_id,
                order_id=order.order_id,
                amount=order.amount,
                currency=order.currency,
                failure_reason='Payment declined by mock gateway',
            )

        return PaymentResult(
            status='completed',
            payment_id=token.payment_id,
            order_id=order.order_id,
            # 同一个 payment_id 永远得到同一个 transaction id
            transaction_id=f"mock_txn_{hashlib.sha256(token.payment_id.encode()).hexdigest()[:16]}",
            amount=order.amount,
            currency=order.currency,
            method='card',
        )

    def refund(self, transaction_id: str, amount: int, reason: str) -> RefundResult:
        return RefundResult(
            refund_id=f"mock_refund_{uuid.uuid4().hex[:16]}",
            payment_id=transaction_id,
            amount=amount,
            currency='INR',
            status='processed',
            reason=reason,
        )


# ── RazorpayProvider ───────────────────────────────────────────────────────
#
# 直接调 Razorpay REST API（Basic Auth: key_id / key_secret）。
# 环境变量：RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET / RAZORPAY_API_URL
#
# 签名：HMAC-SHA256(key_secret, "<order_id>|<payment_id>")，先验签再信结果。
# verify / refund 遇到网络错误或 5xx 指数退避重试，最多 3 次；create_order 不重试。

_PAYMENT_STATUS_MAP = {
    'captured': 'completed',
    'authorized': 'pending',
    'created': 'pending',
    'failed': 'failed',
    'refunded': 'refunded',
}

_REFUND_STATUS_MAP = {
    'processed': 'processed',
    'pending': 'pending',
    'failed': 'failed',
}


class _RetryableGatewayError(Exception):
    pass


class RazorpayProvider(BasePaymentProvider):

    name = "razorpay"
    DEFAULT_API_URL = "https://api.razorpay.com/v1"
    MAX_ATTEMPTS = 3
    BACKOFF_BASE_SECONDS = 0.5

    def __init__(self):
        self.key_id = getattr(settings, 'RAZORPAY_KEY_ID', '')
        self.key_secret = getattr(settings, 'RAZORPAY_KEY_SECRET', '')
        if not self.key_id or not self.key_secret:
            raise ValueError("RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET are not set")
        self.api_url = (getattr(settings, 'RAZORPAY_API_URL', '') or self.DEFAULT_API_URL).rstrip('/')
        self.timeout = getattr(settings, 'PAYMENT_HTTP_TIMEOUT_SECONDS', 10)
        self.http = requests.Session()
        self.http.auth = (self.key_id, self.key_secret)

    # ── 签名 ──────────────────────────────────────────────────────────────

    def expected_signature(self, order_id: str, payment_id: str) -> str:
        message = f"{order_id}|{payment_id}".encode()
        return hmac.new(self.key_secret.encode(), message, hashlib.sha256).hexdigest()

    def signature_matches(self, order_id: str, payment_id: str, signature: str | None) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(self.expected_signature(order_id, payment_id), signature)

    # ── HTTP ──────────────────────────────────────────────────────────────

    def _request(self, method: str, path: str, **kwargs) -> dict:
        """单次请求。网络错误和 5xx 抛 _RetryableGatewayError，4xx 抛 PaymentVerificationFailed。"""
        try:
            response = self.http.request(method, f"{self.api_url}{path}", timeout=self.timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise _RetryableGatewayError(str(exc)) from exc

        if response.status_code >= 500:
            raise _RetryableGatewayError(f"Razorpay returned {response.status_code}")
        if response.status_code >= 400:
            try:
                description = response.json().get('error', {}).get('description', '')
            except ValueError:
                description = response.text
            raise PaymentVerificationFailed(
                message=f"Razorpay rejected the request: {description or response.status_code}",
                code='GATEWAY_REJECTED',
                detail={'status_code': response.status_code},
            )
        return response.json()

    def _with_retry(self, operation: str, method: str, path: str, **kwargs) -> dict:
        for attempt in range(self.MAX_ATTEMPTS):
            try:
                return self._request(method, path, **kwargs)
            except _RetryableGatewayError as exc:
                if attempt + 1 >= self.MAX_ATTEMPTS:
                    logger.error("Razorpay %s failed after %d attempts: %s", operation, self.MAX_ATTEMPTS, exc)
                    raise GatewayUnavailable(detail={'operation': operation, 'attempts': self.MAX_ATTEMPTS}) from exc
                # 指数退避：0.5s → 1s → 2s
                delay = self.BACKOFF_BASE_SECONDS * (2 ** attempt)
                logger.warning(
                    "Razorpay %s attempt %d/%d failed (%s), retrying in %.1fs",
                    operation, attempt + 1, self.MAX_ATTEMPTS, exc, delay,
                )
                time.sleep(delay)

    # ── 接口实现 ──────────────────────────────────────────────────────────

    def create_order(self, session_id: str, amount: int, currency: str, metadata: dict) -> OrderHandle:
        payload = {
            'amount': amount,
            'currency': currency,
            'receipt': session_id[:40],
            'notes': {k: str(v) for k, v in metadata.items()},
        }
        try:
            data = self._request('POST', '/orders', json=payload)
        except _RetryableGatewayError as exc:
            logger.error("Razorpay create_order failed for session %s: %s", session_id, exc)
            raise GatewayUnavailable(detail={'operation': 'create_order'}) from exc

        logger.info("Razorpay order %s created for session %s", data['id'], session_id)
        return OrderHandle(
            order_id=data['id'],
            amount=int(data['amount']),
            currency=data['currency'],
            provider=self.name,
            status=data.get('status', 'created'),
            expires_at=_order_expiry(),
            raw=data,
        )

    def verify(self, order: OrderHandle, token: ProviderToken) -> PaymentResult:
        if not self.signature_matches(order.order_id, token.payment_id, token.signature):
            security_logger.warning(
                "Payment signature mismatch",
                extra={'order_id': order.order_id, 'payment_id': token.payment_id, 'provider': self.name},
            )
            raise PaymentSignatureInvalid(detail={'payment_id': token.payment_id})

        data = self._with_retry('verify', 'GET', f"/payments/{token.payment_id}")
        status = _PAYMENT_STATUS_MAP.get(data.get('status'), 'pending')
        failure_reason = data.get('error_description')

        if data.get('order_id') != order.order_id:
            status, failure_reason = 'failed', 'Payment does not belong to this order'
        elif int(data.get('amount', 0)) != order.amount:
            status, failure_reason = 'failed', 'Paid amount does not match the order amount'

        return PaymentResult(
            status=status,
            payment_id=token.payment_id,
            order_id=order.order_id,
            transaction_id=data.get('id'),
            amount=int(data.get('amount', 0)),
            currency=data.get('currency'),
            method=data.get('method'),
            failure_reason=failure_reason if status != 'completed' else None,
            raw=data,
        )

    def refund(self, transaction_id: str, amount: int, reason: str) -> RefundResult:
        data = self._with_retry(
            'refund', 'POST', f"/payments/{transaction_id}/refund",
            json={'amount': amount, 'notes': {'reason': reason}},
        )
        return RefundResult(
            refund_id=data['id'],
            payment_id=data.get('payment_id', transaction_id),
            amount=int(data.get('amount', amount)),
            currency=data.get('currency', 'INR'),
            status=_REFUND_STATUS_MAP.get(data.get('status'), 'pending'),
            reason=reason,
            raw=data,
        )
