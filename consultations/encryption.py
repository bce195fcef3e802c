"""
医疗数据字段加密。

加密本身是外部协作方的职责，这里只提供边界：
  - FieldEncryptor:      Fernet 加解密
  - EncryptedJSONField:  落库前加密、读出后解密，对业务代码透明

业务层拿到的永远是 dict / list，数据库里存的是 Fernet token。
"""

import base64
import json
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

security_logger = logging.getLogger('consultations.security')

_KDF_SALT = b'consultations.field-encryption'


class FieldEncryptor:

    def __init__(self, key: str):
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, value) -> str:
        payload = json.dumps(value, cls=DjangoJSONEncoder)
        return self._fernet.encrypt(payload.encode()).decode()

    def decrypt(self, token: str):
        return json.loads(self._fernet.decrypt(token.encode()).decode())


def _derive_key_from_secret(secret: str) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=_KDF_SALT, iterations=100_000)
    return base64.urlsafe_b64encode(kdf.derive(secret.encode()))


@lru_cache(maxsize=1)
def get_field_encryptor() -> FieldEncryptor:
    """
    读取 settings.FIELD_ENCRYPTION_KEY（Fernet key）。

    未配置时从 SECRET_KEY 派生一个 key —— 仅用于开发环境。
    """
    key = getattr(settings, 'FIELD_ENCRYPTION_KEY', '')
    if not key:
        security_logger.warning("FIELD_ENCRYPTION_KEY not set, deriving key from SECRET_KEY - not suitable for production")
        key = _derive_key_from_secret(settings.SECRET_KEY)
    return FieldEncryptor(key)


class EncryptedJSONField(models.TextField):
    """
    存 JSON 的加密字段。

    DB 列类型是 text；读写时经过 FieldEncryptor。
    不支持按内容查询（密文不可检索）。
    """

    description = 'JSON value encrypted at rest'

    def from_db_value(self, value, expression, connection):
        if value is None:
            return value
        try:
            return get_field_encryptor().decrypt(value)
        except InvalidToken:
            security_logger.error("Failed to decrypt %s: invalid token or wrong key", self.name)
            raise

    def to_python(self, value):
        if value is None or isinstance(value, (dict, list)):
            return value
        try:
            return get_field_encryptor().decrypt(value)
        except InvalidToken:
            return json.loads(value)

    def get_prep_value(self, value):
        if value is None:
            return value
        return get_field_encryptor().encrypt(value)

    def value_to_string(self, obj):
        return json.dumps(self.value_from_object(obj), cls=DjangoJSONEncoder)
