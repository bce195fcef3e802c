from django.apps import AppConfig


class ConsultationsConfig(AppConfig):
    name = 'consultations'
    default_auto_field = 'django.db.models.BigAutoField'

    def ready(self):
        from . import signals  # noqa: F401
        from .payments import get_payment_provider

        # 支付网关在启动时选定；配置错误直接启动失败
        get_payment_provider()
