"""
统一异常体系。

所有业务异常继承 BaseAppException，包含：
- type:        错误类型标识（validation_error / not_found / block / payment_error / unavailable）
- code:        稳定的业务错误码（SESSION_NOT_FOUND / PHASE_MISMATCH / ...）
- message:     人类可读的描述
- detail:      可选的附加信息（dict / list / None）
- http_status: HTTP 状态码

Service / workflow 层只需 raise，exception_handler 统一捕获并格式化响应。
网关的瞬时错误在 payments 组件内部重试，其余错误原样向上传播。
"""


class BaseAppException(Exception):
    """所有业务异常的基类。"""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500
    default_message = 'Unexpected error'

    def __init__(self, message=None, code=None, detail=None, http_status=None):
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(self.message)


class ValidationError(BaseAppException):
    """输入验证失败。intake adapter / view 层抛出，400。"""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400
    default_message = 'Request validation failed'


class PermissionDenied(BaseAppException):
    """调用者身份不允许该操作，403。"""

    type = 'forbidden'
    code = 'PERMISSION_DENIED'
    http_status = 403
    default_message = 'You do not have permission to perform this action'


class SessionOwnershipError(PermissionDenied):
    """session 只能由创建它的 patient 读写。"""

    code = 'SESSION_OWNERSHIP_MISMATCH'
    default_message = 'Session does not belong to this patient'


# ── 404 ─────────────────────────────────────────────────────────────────────

class NotFoundError(BaseAppException):
    type = 'not_found'
    code = 'NOT_FOUND'
    http_status = 404
    default_message = 'Resource not found'


class SessionNotFound(NotFoundError):
    """
    session 不存在或已过期（TTL 到期）。

    不是服务端错误：用户需要从症状采集重新开始。
    """

    code = 'SESSION_NOT_FOUND'
    default_message = 'Session not found or expired. Please restart the consultation flow.'


class ConsultationNotFound(NotFoundError):
    code = 'CONSULTATION_NOT_FOUND'
    default_message = 'Consultation not found'


# ── 409 ─────────────────────────────────────────────────────────────────────

class BlockError(BaseAppException):
    """业务规则阻止操作，409。"""

    type = 'block'
    code = 'BUSINESS_BLOCK'
    http_status = 409
    default_message = 'Operation blocked by business rules'


class PhaseMismatch(BlockError):
    """session 阶段与请求的流转不匹配（乱序调用）。"""

    code = 'PHASE_MISMATCH'
    default_message = 'Session is not in the expected phase for this step'


class ActiveConsultationExists(BlockError):
    """同一患者已有 is_active=True 的问诊。并发创建时的输家也会收到它。"""

    code = 'ACTIVE_CONSULTATION_EXISTS'
    default_message = 'Patient already has an active consultation'


class InvalidStatusTransition(BlockError):
    """状态机不允许的跳转（跳过必需的前置状态）。"""

    code = 'INVALID_STATUS_TRANSITION'
    default_message = 'Status transition is not allowed'


class ConsultationClosed(BlockError):
    """COMPLETED / CANCELLED / REFUNDED 是终态，不接受任何修改。"""

    code = 'CONSULTATION_CLOSED'
    default_message = 'Consultation is closed and can no longer be modified'


# ── 支付 ────────────────────────────────────────────────────────────────────

class PaymentVerificationFailed(BaseAppException):
    """网关拒绝了这笔支付。不会创建 consultation。"""

    type = 'payment_error'
    code = 'PAYMENT_VERIFICATION_FAILED'
    http_status = 402
    default_message = 'Payment verification failed'


class PaymentSignatureInvalid(PaymentVerificationFailed):
    """回调签名不匹配。硬失败，不重试，记安全日志。"""

    code = 'PAYMENT_SIGNATURE_INVALID'
    default_message = 'Payment signature is invalid'


# ── 503 ─────────────────────────────────────────────────────────────────────

class ServiceUnavailable(BaseAppException):
    type = 'unavailable'
    code = 'SERVICE_UNAVAILABLE'
    http_status = 503
    default_message = 'Service temporarily unavailable'


class GatewayUnavailable(ServiceUnavailable):
    """网关超时 / 网络错误，重试耗尽后抛出。"""

    code = 'GATEWAY_UNAVAILABLE'
    default_message = 'Payment gateway is unavailable. Please try again later.'


class DoctorUnavailable(ServiceUnavailable):
    """没有匹配的班次且未配置 fallback 医生。属于配置错误，绝不静默分配 null。"""

    code = 'DOCTOR_UNAVAILABLE'
    default_message = 'No doctor is available for assignment'
