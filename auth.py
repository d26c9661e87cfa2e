import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from models import Role
from tokens import Claims, TokenCodec, TokenExpired, TokenInvalid

logger = logging.getLogger(__name__)

REFRESHED_TOKEN_MESSAGE = (
    "Access token has been refreshed. "
    "Remember to copy the new one in the headers of subsequent calls"
)


class AuthType(str, Enum):
    simple = "Simple"
    user = "User"
    admin = "Admin"
    group = "Group"


@dataclass(frozen=True)
class Scope:
    auth_type: AuthType
    username: Optional[str] = None
    group: Optional[str] = None
    admin_override: bool = False

    @classmethod
    def simple(cls) -> "Scope":
        return cls(AuthType.simple)

    @classmethod
    def user(cls, username: str, *, admin_override: bool = False) -> "Scope":
        return cls(AuthType.user, username=username, admin_override=admin_override)

    @classmethod
    def admin(cls) -> "Scope":
        return cls(AuthType.admin)

    @classmethod
    def group_members(cls, name: str, *, admin_override: bool = False) -> "Scope":
        return cls(AuthType.group, group=name, admin_override=admin_override)


@dataclass(frozen=True)
class AuthResult:
    authorized: bool
    reason: Optional[str] = None
    claims: Optional[Claims] = None
    renewed_access_token: Optional[str] = None
    session_expired: bool = False


MembershipCheck = Callable[[str, str], bool]


class CredentialVerifier:
    """Checks an access/refresh pair against a scope and renews expired access.

    The renewed token is only handed back in the result; delivering it to the
    client is the caller's job.
    """

    def __init__(
        self, codec: TokenCodec, is_member: Optional[MembershipCheck] = None
    ) -> None:
        self.codec = codec
        self.is_member = is_member

    def scope_allows(self, scope: Scope, claims: Claims) -> bool:
        if scope.admin_override and claims.role == Role.admin.value:
            return True
        if scope.auth_type == AuthType.simple:
            return True
        if scope.auth_type == AuthType.user:
            return scope.username is not None and claims.username == scope.username
        if scope.auth_type == AuthType.admin:
            return claims.role == Role.admin.value
        if scope.auth_type == AuthType.group:
            if scope.group is None or self.is_member is None:
                return False
            return self.is_member(scope.group, claims.email)
        return False

    def verify(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str],
        scope: Scope,
    ) -> AuthResult:
        if not access_token or not refresh_token:
            return AuthResult(False, "Unauthorized")

        access_expired = False
        try:
            access = self.codec.decode_access(access_token)
        except TokenExpired as exc:
            access = exc.claims
            access_expired = True
        except TokenInvalid:
            return AuthResult(False, "Unauthorized")

        try:
            refresh = self.codec.decode_refresh(refresh_token)
        except TokenExpired:
            return AuthResult(False, "Perform login again", session_expired=True)
        except TokenInvalid:
            return AuthResult(False, "Unauthorized")

        if not access.same_subject(refresh):
            return AuthResult(False, "Unauthorized")
        if not self.scope_allows(scope, refresh):
            return AuthResult(False, "Unauthorized")

        if not access_expired:
            return AuthResult(True, claims=access)

        renewed = self.codec.issue_access(refresh)
        logger.info(f"access_token_renewed: username={refresh.username}")
        return AuthResult(True, claims=refresh, renewed_access_token=renewed)
