"""
认证边界。

签发 token 是认证服务的事，这里只校验：
  Authorization: Bearer <token>
token 是 django.core.signing 签过名的 {"sub": <user id>, "role": "patient" | "doctor" | "admin"}。
"""

import logging
from dataclasses import dataclass

from django.conf import settings
from django.core import signing
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.permissions import BasePermission

security_logger = logging.getLogger('consultations.security')

TOKEN_SALT = 'consultations.auth'
ROLES = ('patient', 'doctor', 'admin')


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    role: str

    is_authenticated = True
    is_anonymous = False

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'


def issue_token(user_id: str, role: str) -> str:
    """开发和测试用；生产环境的 token 由认证服务签发。"""
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role!r}")
    return signing.dumps({'sub': str(user_id), 'role': role}, salt=TOKEN_SALT)


class BearerTokenAuthentication(BaseAuthentication):
    keyword = b'bearer'

    def authenticate(self, request):
        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword:
            return None
        if len(auth) != 2:
            raise AuthenticationFailed('Invalid bearer header.')

        try:
            claims = signing.loads(
                auth[1].decode(),
                salt=TOKEN_SALT,
                max_age=getattr(settings, 'AUTH_TOKEN_MAX_AGE_SECONDS', None),
            )
        except signing.SignatureExpired:
            raise AuthenticationFailed('Token has expired.')
        except (signing.BadSignature, UnicodeDecodeError):
            security_logger.warning("Rejected bearer token with bad signature", extra={'path': request.path})
            raise AuthenticationFailed('Invalid token.')

        if not claims.get('sub') or claims.get('role') not in ROLES:
            raise AuthenticationFailed('Invalid token claims.')

        return AuthenticatedUser(id=claims['sub'], role=claims['role']), auth[1]

    def authenticate_header(self, request):
        return 'Bearer'


class HasRole(BasePermission):
    roles: tuple[str, ...] = ()

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and getattr(user, 'role', None) in self.roles)


class IsPatient(HasRole):
    roles = ('patient',)


class IsDoctor(HasRole):
    roles = ('doctor',)


class IsDoctorOrAdmin(HasRole):
    roles = ('doctor', 'admin')


class IsAdmin(HasRole):
    roles = ('admin',)
