from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from jose import jws, jwt, JWTError
from jose.exceptions import JWSError

from app.backend.core.config import Settings
from app.backend.core.results import Err, Ok, Result

ACCESS_TYPE = "access"
REFRESH_TYPE = "refresh"

# claims the caller may not override on an access token
_RESERVED = frozenset({"sub", "typ", "iat", "exp", "jti"})


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class TokenError(str, Enum):
    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"


@dataclass(frozen=True)
class AccessToken:
    token: str
    subject_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshToken:
    token: str
    subject_id: str
    jti: str
    issued_at: datetime
    expires_at: datetime


class TokenCodec:
    """
    Signs and parses the two token classes.
    - access: short TTL, stateless
    - refresh: long TTL, separate secret, random jti so every token is unique
    """

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            algorithm=settings.jwt_algorithm,
        )

    def _now(self) -> datetime:
        # iat/exp are whole seconds on the wire
        return self._clock().replace(microsecond=0)

    def _make_jwt(self, payload: Dict[str, Any], secret: str, iat: datetime, exp: datetime) -> str:
        to_encode = payload.copy()
        to_encode["iat"] = int(iat.timestamp())
        to_encode["exp"] = int(exp.timestamp())
        return jwt.encode(to_encode, secret, algorithm=self.algorithm)

    # ---- Access Token ----
    def issue_access_token(self, subject_id: str, claims: Optional[Dict[str, Any]] = None) -> AccessToken:
        payload: Dict[str, Any] = {
            k: v for k, v in (claims or {}).items() if k not in _RESERVED
        }
        payload.update({"sub": str(subject_id), "typ": ACCESS_TYPE})
        iat = self._now()
        exp = iat + self.access_ttl
        token = self._make_jwt(payload, self.access_secret, iat, exp)
        return AccessToken(token=token, subject_id=str(subject_id), issued_at=iat, expires_at=exp)

    # ---- Refresh Token ----
    def issue_refresh_token(self, subject_id: str) -> RefreshToken:
        jti = str(uuid4())
        payload = {"sub": str(subject_id), "typ": REFRESH_TYPE, "jti": jti}
        iat = self._now()
        exp = iat + self.refresh_ttl
        token = self._make_jwt(payload, self.refresh_secret, iat, exp)
        return RefreshToken(
            token=token, subject_id=str(subject_id), jti=jti, issued_at=iat, expires_at=exp
        )

    # ---- Parsing ----
    def parse_and_verify(
        self,
        token: str,
        expected_secret: str,
        expected_type: Optional[str] = None,
    ) -> Result[Dict[str, Any], TokenError]:
        """
        Structure first, then expiry, then signature.
        An expired token reports EXPIRED whatever its signature.
        """
        if not isinstance(token, str) or not token:
            return Err(TokenError.MALFORMED)
        try:
            jwt.get_unverified_header(token)
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return Err(TokenError.MALFORMED)

        exp = claims.get("exp")
        if not claims.get("sub") or not isinstance(exp, int) or isinstance(exp, bool):
            return Err(TokenError.MALFORMED)
        if expected_type is not None and claims.get("typ") != expected_type:
            return Err(TokenError.MALFORMED)

        if exp <= int(self._clock().timestamp()):
            return Err(TokenError.EXPIRED)

        # the token already decoded cleanly, so any failure here is the signature
        try:
            jws.verify(token, expected_secret, algorithms=[self.algorithm])
        except JWSError:
            return Err(TokenError.BAD_SIGNATURE)

        return Ok(claims)

    def verify_access_token(self, token: str) -> Result[Dict[str, Any], TokenError]:
        return self.parse_and_verify(token, self.access_secret, ACCESS_TYPE)

    def verify_refresh_token(self, token: str) -> Result[Dict[str, Any], TokenError]:
        result = self.parse_and_verify(token, self.refresh_secret, REFRESH_TYPE)
        if isinstance(result, Ok) and "iat" not in result.value:
            return Err(TokenError.MALFORMED)
        return result


# ---- 쿠키 ----
def set_refresh_cookie(response, token: str, *, name: str, secure: bool, max_age: int) -> None:
    # 개발에서 http라면 .env에서 SECURE_COOKIE=false 설정 필요
    response.set_cookie(
        key=name,
        value=token,
        httponly=True,
        secure=secure,
        max_age=max_age,
        path="/",
    )


def clear_refresh_cookie(response, *, name: str) -> None:
    response.delete_cookie(
        key=name,
        path="/",
    )
