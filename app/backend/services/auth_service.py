from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from starlette.concurrency import run_in_threadpool

from app.backend.core.config import Settings
from app.backend.core.passwords import hash_password, needs_rehash, verify_password
from app.backend.core.results import AuthError, AuthErrorCode, Err, Ok, Result, fail
from app.backend.core.tokens import TokenCodec, TokenError
from app.backend.models.user import User
from app.backend.schemas.auth import PublicAccount
from app.backend.services.directory import (
    DirectoryError,
    DirectoryErrorKind,
    UserDirectory,
    call_with_timeout,
)
from app.backend.services.media_store import MediaStore
from app.backend.services.session_store import SessionStore

log = logging.getLogger(__name__)

_TOKEN_ERROR_MESSAGES = {
    TokenError.MALFORMED: "Refresh token is malformed",
    TokenError.BAD_SIGNATURE: "Refresh token signature is invalid",
    TokenError.EXPIRED: "Refresh token expired",
}

# checked when the identifier is unknown; both rejection paths run one argon2 verify
_DUMMY_HASH = hash_password("vidtube-unknown-account")


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True)
class LoginResult:
    tokens: TokenPair
    account: PublicAccount


def _blank(*values: Optional[str]) -> bool:
    return any(v is None or not str(v).strip() for v in values)


def _directory_failure(exc: DirectoryError) -> Err[AuthError]:
    if exc.kind is DirectoryErrorKind.NOT_FOUND:
        return fail(AuthErrorCode.DIRECTORY_NOT_FOUND, "Account not found")
    if exc.kind is DirectoryErrorKind.CONFLICT:
        return fail(AuthErrorCode.ACCOUNT_EXISTS, "User with email or username already exists")
    return fail(AuthErrorCode.DIRECTORY_UNAVAILABLE, "User directory unavailable, retry later")


class AuthService:
    """
    Login / refresh / logout / change-password / register.

    Single-slot sessions: the account's refresh_token column holds the only
    refresh token that will be accepted. Login overwrites it, refresh rotates
    it, logout clears it.
    """

    def __init__(
        self,
        directory: UserDirectory,
        codec: TokenCodec,
        *,
        media: Optional[MediaStore] = None,
        directory_timeout: Optional[float] = None,
        rotation_cas: bool = False,
        revoke_on_password_change: bool = False,
    ) -> None:
        self.directory = directory
        self.codec = codec
        self.media = media
        self.timeout = directory_timeout
        self.sessions = SessionStore(directory, timeout=directory_timeout)
        self.rotation_cas = rotation_cas
        self.revoke_on_password_change = revoke_on_password_change

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        directory: UserDirectory,
        media: Optional[MediaStore] = None,
        codec: Optional[TokenCodec] = None,
    ) -> "AuthService":
        return cls(
            directory,
            codec or TokenCodec.from_settings(settings),
            media=media,
            directory_timeout=settings.directory_timeout_seconds,
            rotation_cas=settings.refresh_rotation_cas,
            revoke_on_password_change=settings.revoke_session_on_password_change,
        )

    async def _lookup(self, subject_id: str) -> Optional[User]:
        return await call_with_timeout(self.directory.get_by_id(subject_id), self.timeout)

    def _mint(self, user: User) -> tuple[TokenPair, str]:
        access = self.codec.issue_access_token(
            str(user.user_id),
            {"username": user.username, "email": user.email, "full_name": user.full_name},
        )
        refresh = self.codec.issue_refresh_token(str(user.user_id))
        pair = TokenPair(
            access_token=access.token,
            refresh_token=refresh.token,
            expires_in=int(self.codec.access_ttl.total_seconds()),
        )
        return pair, refresh.token

    # ──────────────────────────────────────────────────────────────────────
    # Login
    # ──────────────────────────────────────────────────────────────────────
    async def login(
        self,
        *,
        password: Optional[str],
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Result[LoginResult, AuthError]:
        if _blank(password) or (_blank(username) and _blank(email)):
            return fail(AuthErrorCode.VALIDATION_ERROR, "username or email and password are required")

        try:
            user = await call_with_timeout(
                self.directory.find_by_username_or_email(
                    username=username.strip().lower() if username else None,
                    email=email.strip() if email else None,
                ),
                self.timeout,
            )
            # unknown account and wrong password look the same to the caller
            if user is None:
                await run_in_threadpool(verify_password, password, _DUMMY_HASH)
                log.info("login rejected: unknown identifier")
                return fail(AuthErrorCode.INVALID_CREDENTIALS, "Invalid user credentials")

            valid = await run_in_threadpool(verify_password, password, user.password_hash)
            if not valid:
                log.info("login rejected for user_id=%s", user.user_id)
                return fail(AuthErrorCode.INVALID_CREDENTIALS, "Invalid user credentials")

            if needs_rehash(user.password_hash):
                new_hash = await run_in_threadpool(hash_password, password)
                await call_with_timeout(
                    self.directory.set_password_hash(str(user.user_id), new_hash), self.timeout
                )

            pair, refresh_value = self._mint(user)
            # replaces whatever session was there before (single-session takeover)
            await self.sessions.replace_refresh_credential(str(user.user_id), refresh_value)
        except DirectoryError as exc:
            log.warning("login failed on directory: %s", exc.kind.value)
            return _directory_failure(exc)

        log.info("login ok user_id=%s", user.user_id)
        return Ok(LoginResult(tokens=pair, account=PublicAccount.from_user(user)))

    # ──────────────────────────────────────────────────────────────────────
    # Refresh (rotation)
    # ──────────────────────────────────────────────────────────────────────
    async def refresh(self, presented: Optional[str]) -> Result[TokenPair, AuthError]:
        """
        Verify the presented RT, check it is the stored one, rotate.
        - codec failure / unknown subject -> invalid_refresh_token
        - valid but not the stored value -> refresh_token_reused
        """
        if _blank(presented):
            return fail(AuthErrorCode.VALIDATION_ERROR, "refresh token is required")

        parsed = self.codec.verify_refresh_token(presented)
        if isinstance(parsed, Err):
            return fail(AuthErrorCode.INVALID_REFRESH_TOKEN, _TOKEN_ERROR_MESSAGES[parsed.error])
        subject_id = parsed.value["sub"]

        try:
            user = await self._lookup(subject_id)
            if user is None:
                return fail(AuthErrorCode.INVALID_REFRESH_TOKEN, "Invalid refresh token")

            current = await self.sessions.get_current_refresh_credential(subject_id)
            if not current or not secrets.compare_digest(current.encode(), presented.encode()):
                log.warning(
                    "refresh token reuse detected user_id=%s jti=%s",
                    subject_id,
                    parsed.value.get("jti"),
                )
                return fail(AuthErrorCode.REFRESH_TOKEN_REUSED, "Refresh token is expired or used")

            pair, refresh_value = self._mint(user)
            if self.rotation_cas:
                swapped = await self.sessions.replace_refresh_credential(
                    subject_id, refresh_value, expected=presented
                )
                if not swapped:
                    log.warning("refresh rotation lost race user_id=%s", subject_id)
                    return fail(AuthErrorCode.REFRESH_TOKEN_REUSED, "Refresh token is expired or used")
            else:
                await self.sessions.replace_refresh_credential(subject_id, refresh_value)
        except DirectoryError as exc:
            log.warning("refresh failed on directory: %s", exc.kind.value)
            return _directory_failure(exc)

        return Ok(pair)

    # ──────────────────────────────────────────────────────────────────────
    # Logout
    # ──────────────────────────────────────────────────────────────────────
    async def logout(self, subject_id: str) -> Result[None, AuthError]:
        try:
            await self.sessions.clear_refresh_credential(subject_id)
        except DirectoryError as exc:
            return _directory_failure(exc)
        log.info("logout user_id=%s", subject_id)
        return Ok(None)

    # ──────────────────────────────────────────────────────────────────────
    # Change password
    # ──────────────────────────────────────────────────────────────────────
    async def change_password(
        self, subject_id: str, old_password: Optional[str], new_password: Optional[str]
    ) -> Result[None, AuthError]:
        if _blank(old_password, new_password):
            return fail(AuthErrorCode.VALIDATION_ERROR, "old and new password are required")

        try:
            user = await self._lookup(subject_id)
            if user is None:
                return fail(AuthErrorCode.DIRECTORY_NOT_FOUND, "Account not found")

            valid = await run_in_threadpool(verify_password, old_password, user.password_hash)
            if not valid:
                return fail(AuthErrorCode.INVALID_CREDENTIALS, "Invalid old password")

            new_hash = await run_in_threadpool(hash_password, new_password)
            await call_with_timeout(
                self.directory.set_password_hash(subject_id, new_hash), self.timeout
            )
            # the outstanding refresh token survives unless configured otherwise
            if self.revoke_on_password_change:
                await self.sessions.clear_refresh_credential(subject_id)
        except DirectoryError as exc:
            return _directory_failure(exc)

        log.info("password changed user_id=%s", subject_id)
        return Ok(None)

    # ──────────────────────────────────────────────────────────────────────
    # Register
    # ──────────────────────────────────────────────────────────────────────
    async def register(
        self,
        *,
        full_name: Optional[str],
        email: Optional[str],
        username: Optional[str],
        password: Optional[str],
        avatar_path: Optional[str],
        cover_image_path: Optional[str] = None,
    ) -> Result[PublicAccount, AuthError]:
        if _blank(full_name, email, username, password):
            return fail(AuthErrorCode.VALIDATION_ERROR, "All fields are required")
        username = username.strip().lower()
        email = email.strip()

        try:
            existing = await call_with_timeout(
                self.directory.find_by_username_or_email(username=username, email=email),
                self.timeout,
            )
            if existing is not None:
                return fail(AuthErrorCode.ACCOUNT_EXISTS, "User with email or username already exists")

            if not avatar_path or self.media is None:
                return fail(AuthErrorCode.VALIDATION_ERROR, "Avatar file is required")
            avatar_url = await self.media.upload(avatar_path)
            if not avatar_url:
                return fail(AuthErrorCode.VALIDATION_ERROR, "Avatar file is required")
            cover_url = await self.media.upload(cover_image_path) if cover_image_path else None

            password_hash = await run_in_threadpool(hash_password, password)
            try:
                user = await call_with_timeout(
                    self.directory.create(
                        User(
                            username=username,
                            email=email,
                            full_name=full_name.strip(),
                            avatar=avatar_url,
                            cover_image=cover_url or "",
                            password_hash=password_hash,
                        )
                    ),
                    self.timeout,
                )
            except DirectoryError:
                # account was not created; drop the files stored for it
                for url in (avatar_url, cover_url):
                    if url:
                        await self.media.remove(url)
                raise
        except DirectoryError as exc:
            return _directory_failure(exc)

        log.info("registered user_id=%s", user.user_id)
        return Ok(PublicAccount.from_user(user))
