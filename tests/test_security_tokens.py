from datetime import timedelta

import pytest

from kore.core.exceptions import TokenExpiredError, TokenInvalidError, ValidationError
from kore.core.security import TokenIssuer, get_password_hash, verify_password


@pytest.fixture
def issuer(test_settings):
    return TokenIssuer(test_settings)


CLAIMS = {"sub": "7", "email": "alice@example.com", "role": "user"}


def test_access_token_round_trip(issuer):
    token = issuer.issue_access_token(CLAIMS)
    payload = issuer.verify_access_token(token)
    assert payload["sub"] == "7"
    assert payload["email"] == "alice@example.com"
    assert payload["role"] == "user"
    assert payload["typ"] == "access"


def test_access_token_rejects_refresh_token(issuer):
    refresh = issuer.issue_refresh_token(CLAIMS, family_id="family-1")
    with pytest.raises(TokenInvalidError):
        issuer.verify_access_token(refresh)
    assert issuer.decode_access_token(refresh) is None


def test_refresh_token_rejects_access_token(issuer):
    access = issuer.issue_access_token(CLAIMS)
    with pytest.raises(TokenInvalidError):
        issuer.verify_refresh_token(access)


def test_refresh_token_contains_family(issuer):
    token = issuer.issue_refresh_token(CLAIMS, family_id="fam-xyz")
    payload = issuer.verify_refresh_token(token)
    assert payload["typ"] == "refresh"
    assert payload["fam"] == "fam-xyz"
    assert payload["jti"]


def test_tokens_for_same_claims_are_distinct(issuer):
    first = issuer.issue_refresh_token(CLAIMS, family_id="fam")
    second = issuer.issue_refresh_token(CLAIMS, family_id="fam")
    assert first != second


def test_expired_access_token_raises_expired(issuer):
    token = issuer.issue_access_token(CLAIMS, expires_delta=timedelta(seconds=-5))
    with pytest.raises(TokenExpiredError):
        issuer.verify_access_token(token)
    assert issuer.decode_access_token(token) is None


def test_token_signed_with_other_secret_is_invalid(issuer, test_settings):
    foreign = TokenIssuer(
        test_settings.model_copy(update={"JWT_REFRESH_SECRET": "another-refresh-secret-abcdef0123456789abc"})
    )
    token = foreign.issue_refresh_token(CLAIMS, family_id="fam")
    with pytest.raises(TokenInvalidError):
        issuer.verify_refresh_token(token)


def test_garbage_token_is_invalid(issuer):
    with pytest.raises(TokenInvalidError):
        issuer.verify_access_token("not-a-jwt")


def test_password_hash_round_trip():
    hashed = get_password_hash("Passw0rd!", rounds=4)
    assert hashed != "Passw0rd!"
    assert verify_password("Passw0rd!", hashed)
    assert not verify_password("passw0rd!", hashed)


def test_password_hashes_are_salted():
    assert get_password_hash("Passw0rd!", rounds=4) != get_password_hash("Passw0rd!", rounds=4)


def test_verify_password_tolerates_bad_hash():
    assert verify_password("Passw0rd!", "not-a-bcrypt-hash") is False
    assert verify_password("Passw0rd!", "") is False


def test_password_hash_rejects_more_than_72_bytes():
    with pytest.raises(ValidationError) as excinfo:
        get_password_hash("Aa1" + "x" * 77, rounds=4)
    assert excinfo.value.status_code == 422

    # 38 characters, 73 bytes
    with pytest.raises(ValidationError):
        get_password_hash("Aa1" + "é" * 35, rounds=4)


def test_password_hash_accepts_exactly_72_bytes():
    password = "Aa1" + "x" * 69
    assert verify_password(password, get_password_hash(password, rounds=4))


def test_verify_password_rejects_overlong_candidate():
    hashed = get_password_hash("Passw0rd!", rounds=4)
    assert verify_password("Passw0rd!" + "x" * 80, hashed) is False
