"""
问诊 session 的各阶段结构。

session 是按 phase 区分的联合类型：每个阶段一个 dataclass，
只携带该阶段合法的字段。后一阶段继承前一阶段，再加上本阶段新增的字段，
所以"PAYMENT_PENDING 却没有 order"这种状态在类型上就表达不出来。

阶段只能单向前进：
  SYMPTOMS_COLLECTED → CONSULTATION_TYPE_SELECTED → PAYMENT_PENDING
    → PAYMENT_CONFIRMED → CLINICAL_SESSION_ISSUED

存进 cache 的是 to_dict() 的结果（纯 JSON），读回时用 session_from_dict() 还原。
"""

from dataclasses import asdict, dataclass, fields
from datetime import datetime, timedelta
from typing import Any, ClassVar

from django.utils import timezone

from ..exceptions import PhaseMismatch


class Phase:
    SYMPTOMS_COLLECTED = 'SYMPTOMS_COLLECTED'
    CONSULTATION_TYPE_SELECTED = 'CONSULTATION_TYPE_SELECTED'
    PAYMENT_PENDING = 'PAYMENT_PENDING'
    PAYMENT_CONFIRMED = 'PAYMENT_CONFIRMED'
    CLINICAL_SESSION_ISSUED = 'CLINICAL_SESSION_ISSUED'

    ORDER = [
        SYMPTOMS_COLLECTED,
        CONSULTATION_TYPE_SELECTED,
        PAYMENT_PENDING,
        PAYMENT_CONFIRMED,
        CLINICAL_SESSION_ISSUED,
    ]

    @classmethod
    def rank(cls, phase: str) -> int:
        return cls.ORDER.index(phase)


def expiry_after(seconds: int) -> str:
    return (timezone.now() + timedelta(seconds=seconds)).isoformat()


def seconds_until(expires_at: str) -> int:
    """距离过期还有多少秒；已过期返回 0。"""
    remaining = datetime.fromisoformat(expires_at) - timezone.now()
    return max(int(remaining.total_seconds()), 0)


@dataclass
class SymptomsCollected:
    phase: ClassVar[str] = Phase.SYMPTOMS_COLLECTED

    session_id: str
    patient_id: str
    expires_at: str
    symptoms: dict
    diagnosis: dict
    severity: str
    recommended_type: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data['phase'] = self.phase
        return data

    def is_at_least(self, phase: str) -> bool:
        return Phase.rank(self.phase) >= Phase.rank(phase)

    def select_type(self, consultation_type: str, amount: int, currency: str,
                    order_claim: str = '') -> 'ConsultationTypeSelected':
        # 只带症状阶段的字段，重新选择类型时不会和旧的 consultation_type 冲突
        base = {f.name: getattr(self, f.name) for f in fields(SymptomsCollected)}
        return ConsultationTypeSelected(
            **base,
            consultation_type=consultation_type,
            amount=amount,
            currency=currency,
            order_claim=order_claim,
            claimed_at=timezone.now().isoformat() if order_claim else '',
        )

    def _carry(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ConsultationTypeSelected(SymptomsCollected):
    phase: ClassVar[str] = Phase.CONSULTATION_TYPE_SELECTED

    consultation_type: str
    amount: int
    currency: str
    # 正在向网关下单的请求持有的 token；空串表示没有人在下单
    order_claim: str
    claimed_at: str

    def attach_order(self, order: dict) -> 'PaymentPending':
        return PaymentPending(**self._carry(), order=order)

    def release_claim(self) -> 'ConsultationTypeSelected':
        return ConsultationTypeSelected(**{**self._carry(), 'order_claim': '', 'claimed_at': ''})

    def claim_is_live(self, timeout_seconds: int) -> bool:
        """有请求正在下单，且没有超过 timeout_seconds（超时视为持有者已经挂了）。"""
        if not self.order_claim:
            return False
        age = timezone.now() - datetime.fromisoformat(self.claimed_at)
        return age.total_seconds() < timeout_seconds


@dataclass
class PaymentPending(ConsultationTypeSelected):
    phase: ClassVar[str] = Phase.PAYMENT_PENDING

    # order: {order_id, payment_url, amount, currency, expires_at, provider}
    order: dict

    def confirm(self, payment: dict, clinical_session_id: str, expires_at: str) -> 'PaymentConfirmed':
        carried = self._carry()
        carried['expires_at'] = expires_at
        return PaymentConfirmed(**carried, payment=payment, clinical_session_id=clinical_session_id)


@dataclass
class PaymentConfirmed(PaymentPending):
    phase: ClassVar[str] = Phase.PAYMENT_CONFIRMED

    # payment: {payment_id, transaction_id, status, confirmed_at}
    payment: dict
    clinical_session_id: str

    def issue(self) -> 'ClinicalSessionIssued':
        return ClinicalSessionIssued(**self._carry(), issued_at=timezone.now().isoformat())


@dataclass
class ClinicalSessionIssued(PaymentConfirmed):
    phase: ClassVar[str] = Phase.CLINICAL_SESSION_ISSUED

    issued_at: str


Session = SymptomsCollected

_BY_PHASE: dict[str, type[SymptomsCollected]] = {
    cls.phase: cls
    for cls in (SymptomsCollected, ConsultationTypeSelected, PaymentPending, PaymentConfirmed, ClinicalSessionIssued)
}


def session_from_dict(data: dict) -> SymptomsCollected:
    phase = data.get('phase')
    cls = _BY_PHASE.get(phase)
    if cls is None:
        raise ValueError(f"Unknown session phase: {phase!r}")
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in names})


def require_phase(session: SymptomsCollected, *allowed: str) -> None:
    """session 不在 allowed 任一阶段时抛 PhaseMismatch。"""
    if session.phase not in allowed:
        raise PhaseMismatch(
            message=f"Session is in phase {session.phase}, expected one of {list(allowed)}",
            detail={'current_phase': session.phase, 'expected_phases': list(allowed)},
        )
