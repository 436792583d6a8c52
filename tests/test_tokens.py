import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from jose import jwt

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.backend.core.config import Settings
from app.backend.core.results import Err, Ok
from app.backend.core.tokens import TokenCodec, TokenError

ACCESS_SECRET = "access-secret-for-tests"
REFRESH_SECRET = "refresh-secret-for-tests"


def make_codec(clock=None) -> TokenCodec:
    kwargs = {}
    if clock is not None:
        kwargs["clock"] = clock
    return TokenCodec(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=10),
        **kwargs,
    )


def test_access_token_round_trip_carries_subject_and_claims():
    codec = make_codec()
    issued = codec.issue_access_token("user-1", {"username": "alice", "sub": "spoofed"})

    result = codec.verify_access_token(issued.token)

    assert isinstance(result, Ok)
    assert result.value["sub"] == "user-1"
    assert result.value["username"] == "alice"
    assert result.value["typ"] == "access"
    assert issued.expires_at - issued.issued_at == timedelta(minutes=15)


def test_refresh_token_has_subject_iat_and_expiry():
    codec = make_codec()
    issued = codec.issue_refresh_token("user-1")

    result = codec.verify_refresh_token(issued.token)

    assert isinstance(result, Ok)
    claims = result.value
    assert claims["sub"] == "user-1"
    assert claims["jti"] == issued.jti
    assert claims["exp"] - claims["iat"] == int(timedelta(days=10).total_seconds())


def test_refresh_tokens_are_unique_within_the_same_second():
    fixed = datetime(2026, 1, 1, tzinfo=timezone.utc)
    codec = make_codec(clock=lambda: fixed)

    first = codec.issue_refresh_token("user-1")
    second = codec.issue_refresh_token("user-1")

    assert first.token != second.token


def test_refresh_token_fails_signature_under_access_secret():
    codec = make_codec()
    issued = codec.issue_refresh_token("user-1")

    result = codec.parse_and_verify(issued.token, ACCESS_SECRET)

    assert result == Err(TokenError.BAD_SIGNATURE)


def test_forged_token_with_other_secret_is_bad_signature():
    codec = make_codec()
    forged = jwt.encode(
        {"sub": "user-1", "typ": "refresh", "iat": 1, "exp": 4102444800},
        "attacker-secret",
        algorithm="HS256",
    )

    assert codec.verify_refresh_token(forged) == Err(TokenError.BAD_SIGNATURE)


def test_tampered_payload_is_bad_signature():
    codec = make_codec()
    token = codec.issue_access_token("user-1").token
    header, _, signature = token.split(".")
    other_payload = codec.issue_access_token("user-2").token.split(".")[1]

    result = codec.verify_access_token(f"{header}.{other_payload}.{signature}")

    assert result == Err(TokenError.BAD_SIGNATURE)


@pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c", "eyJhbGciOiJIUzI1NiJ9..", None])
def test_garbage_is_malformed(garbage):
    codec = make_codec()

    assert codec.parse_and_verify(garbage, ACCESS_SECRET) == Err(TokenError.MALFORMED)


def test_wrong_token_type_is_malformed():
    codec = make_codec()
    access = codec.issue_access_token("user-1").token

    # same secret, wrong class of token
    assert codec.parse_and_verify(access, ACCESS_SECRET, "refresh") == Err(TokenError.MALFORMED)


def test_missing_subject_is_malformed():
    codec = make_codec()
    token = jwt.encode({"typ": "access", "exp": 4102444800}, ACCESS_SECRET, algorithm="HS256")

    assert codec.verify_access_token(token) == Err(TokenError.MALFORMED)


def test_expired_token_reports_expired():
    past = datetime.now(tz=timezone.utc) - timedelta(days=30)
    issuing = make_codec(clock=lambda: past)
    token = issuing.issue_refresh_token("user-1").token

    assert make_codec().verify_refresh_token(token) == Err(TokenError.EXPIRED)


def test_expired_token_reports_expired_even_with_bad_signature():
    token = jwt.encode({"sub": "user-1", "typ": "access", "exp": 1000}, "other", algorithm="HS256")

    assert make_codec().verify_access_token(token) == Err(TokenError.EXPIRED)


def test_access_token_expires_after_ttl():
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    now = {"t": start}
    codec = make_codec(clock=lambda: now["t"])
    token = codec.issue_access_token("user-1").token

    now["t"] = start + timedelta(minutes=14)
    assert isinstance(codec.verify_access_token(token), Ok)

    now["t"] = start + timedelta(minutes=15)
    assert codec.verify_access_token(token) == Err(TokenError.EXPIRED)


def test_secrets_must_differ():
    with pytest.raises(ValueError):
        TokenCodec(
            access_secret="same",
            refresh_secret="same",
            access_ttl=timedelta(minutes=1),
            refresh_ttl=timedelta(days=1),
        )


def test_from_settings_uses_configured_ttls():
    settings = Settings(
        JWT_SECRET_KEY="a-secret",
        JWT_REFRESH_SECRET="r-secret",
        ACCESS_TOKEN_EXPIRE_MINUTES=5,
        REFRESH_TOKEN_EXPIRE_DAYS=2,
    )

    codec = TokenCodec.from_settings(settings)

    assert codec.access_ttl == timedelta(minutes=5)
    assert codec.refresh_ttl == timedelta(days=2)
    assert codec.access_secret == "a-secret"
    assert codec.refresh_secret == "r-secret"
