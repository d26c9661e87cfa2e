from dataclasses import dataclass
from typing import Optional

from itsdangerous import (
    BadData,
    BadSignature,
    SignatureExpired,
    URLSafeTimedSerializer,
)

from config import get_settings

CLAIM_FIELDS = ("username", "email", "role")


class TokenExpired(Exception):
    def __init__(self, message: str, claims: "Claims") -> None:
        super().__init__(message)
        self.claims = claims


class TokenInvalid(Exception):
    pass


@dataclass(frozen=True)
class Claims:
    id: Optional[int]
    username: str
    email: str
    role: str

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
        }

    def same_subject(self, other: "Claims") -> bool:
        return (
            self.username == other.username
            and self.email == other.email
            and self.role == other.role
        )


class TokenCodec:
    """Signs access and refresh credentials with one key.

    Each kind has its own salt, so a refresh token never passes as an access
    token, and its own maximum age in seconds.
    """

    def __init__(
        self,
        secret: str,
        access_max_age: int,
        refresh_max_age: int,
    ) -> None:
        self._access = URLSafeTimedSerializer(secret, salt="access-token")
        self._refresh = URLSafeTimedSerializer(secret, salt="refresh-token")
        self.access_max_age = access_max_age
        self.refresh_max_age = refresh_max_age

    def issue_access(self, claims: Claims) -> str:
        return self._access.dumps(claims.as_dict())

    def issue_refresh(self, claims: Claims) -> str:
        return self._refresh.dumps(claims.as_dict())

    def decode_access(self, token: str) -> Claims:
        return self._decode(self._access, token, self.access_max_age)

    def decode_refresh(self, token: str) -> Claims:
        return self._decode(self._refresh, token, self.refresh_max_age)

    def _decode(
        self, serializer: URLSafeTimedSerializer, token: str, max_age: int
    ) -> Claims:
        try:
            data = serializer.loads(token, max_age=max_age)
        except SignatureExpired as exc:
            # the signature is authentic, only the age is past max_age
            try:
                payload = serializer.load_payload(exc.payload)
            except BadData as bad:
                raise TokenInvalid(str(bad)) from bad
            raise TokenExpired(str(exc), self._claims(payload)) from exc
        except BadSignature as exc:
            raise TokenInvalid(str(exc)) from exc
        return self._claims(data)

    @staticmethod
    def _claims(data: object) -> Claims:
        if not isinstance(data, dict) or any(not data.get(f) for f in CLAIM_FIELDS):
            raise TokenInvalid("Token is missing information")
        return Claims(
            id=data.get("id"),
            username=str(data["username"]),
            email=str(data["email"]),
            role=str(data["role"]),
        )


def get_token_codec() -> TokenCodec:
    settings = get_settings()
    return TokenCodec(
        settings.access_key,
        access_max_age=settings.access_token_max_age,
        refresh_max_age=settings.refresh_token_max_age,
    )
