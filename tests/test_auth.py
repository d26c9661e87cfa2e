import pytest

from auth import CredentialVerifier, Scope
from tokens import Claims, TokenCodec, TokenExpired, TokenInvalid

SECRET = "test-secret"

MARIO = Claims(id=1, username="mario", email="mario@example.com", role="Regular")
ADMIN = Claims(id=2, username="admin", email="admin@example.com", role="Admin")

GROUPS = {"family": {"mario@example.com"}}


def is_member(name: str, email: str) -> bool:
    return email in GROUPS.get(name, set())


def codec(access_max_age: int = 3600, refresh_max_age: int = 7200) -> TokenCodec:
    return TokenCodec(
        SECRET, access_max_age=access_max_age, refresh_max_age=refresh_max_age
    )


def pair(claims: Claims) -> tuple[str, str]:
    issuer = codec()
    return issuer.issue_access(claims), issuer.issue_refresh(claims)


def test_codec_round_trips_claims() -> None:
    access, refresh = pair(MARIO)

    assert codec().decode_access(access) == MARIO
    assert codec().decode_refresh(refresh) == MARIO


def test_refresh_token_is_not_accepted_as_access_token() -> None:
    _, refresh = pair(MARIO)

    with pytest.raises(TokenInvalid):
        codec().decode_access(refresh)


def test_expired_token_still_exposes_its_claims() -> None:
    access, _ = pair(MARIO)

    with pytest.raises(TokenExpired) as info:
        codec(access_max_age=-1).decode_access(access)
    assert info.value.claims == MARIO


def test_token_without_required_claims_is_invalid() -> None:
    partial = Claims(id=3, username="", email="x@example.com", role="Regular")
    access, _ = pair(partial)

    with pytest.raises(TokenInvalid):
        codec().decode_access(access)


@pytest.mark.parametrize(
    "scope, claims, allowed",
    [
        (Scope.simple(), MARIO, True),
        (Scope.user("mario"), MARIO, True),
        (Scope.user("luigi"), MARIO, False),
        (Scope.user("luigi"), ADMIN, False),
        (Scope.user("luigi", admin_override=True), ADMIN, True),
        (Scope.admin(), MARIO, False),
        (Scope.admin(), ADMIN, True),
        (Scope.group_members("family"), MARIO, True),
        (Scope.group_members("family"), ADMIN, False),
        (Scope.group_members("family", admin_override=True), ADMIN, True),
        (Scope.group_members("unknown"), MARIO, False),
    ],
)
def test_scope_checks(scope, claims, allowed) -> None:
    verifier = CredentialVerifier(codec(), is_member=is_member)
    access, refresh = pair(claims)

    result = verifier.verify(access, refresh, scope)

    assert result.authorized is allowed
    assert result.renewed_access_token is None
    if not allowed:
        assert result.reason == "Unauthorized"


def test_missing_cookies_are_unauthorized() -> None:
    verifier = CredentialVerifier(codec())
    access, _ = pair(MARIO)

    assert verifier.verify(access, None, Scope.simple()).reason == "Unauthorized"
    assert verifier.verify("", "", Scope.simple()).reason == "Unauthorized"


def test_tampered_token_is_unauthorized() -> None:
    verifier = CredentialVerifier(codec())
    access, refresh = pair(MARIO)

    result = verifier.verify(access + "x", refresh, Scope.simple())

    assert not result.authorized
    assert not result.session_expired


def test_mismatched_pair_is_unauthorized() -> None:
    verifier = CredentialVerifier(codec())
    access, _ = pair(MARIO)
    _, admin_refresh = pair(ADMIN)

    assert not verifier.verify(access, admin_refresh, Scope.simple()).authorized


def test_expired_access_is_renewed_from_refresh() -> None:
    verifier = CredentialVerifier(codec(access_max_age=-1), is_member=is_member)
    access, refresh = pair(MARIO)

    result = verifier.verify(access, refresh, Scope.user("mario"))

    assert result.authorized
    assert result.renewed_access_token
    assert codec().decode_access(result.renewed_access_token) == MARIO


def test_renewal_still_enforces_scope() -> None:
    verifier = CredentialVerifier(codec(access_max_age=-1), is_member=is_member)
    access, refresh = pair(MARIO)

    result = verifier.verify(access, refresh, Scope.admin())

    assert not result.authorized
    assert result.renewed_access_token is None
    assert result.reason == "Unauthorized"


def test_both_expired_requires_login_again() -> None:
    verifier = CredentialVerifier(codec(access_max_age=-1, refresh_max_age=-1))
    access, refresh = pair(MARIO)

    result = verifier.verify(access, refresh, Scope.simple())

    assert not result.authorized
    assert result.session_expired
    assert result.reason == "Perform login again"
