from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse

from app.backend.core.config import Settings, get_settings
from app.backend.core.results import AuthError, AuthErrorCode, Err
from app.backend.core.tokens import clear_refresh_cookie, set_refresh_cookie
from app.backend.dependencies.auth import get_auth_service, get_current_user
from app.backend.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    PublicAccount,
    RefreshRequest,
    TokenPairResponse,
)
from app.backend.services.auth_service import AuthService, TokenPair

auth_router = APIRouter(prefix="/auth", tags=["auth"])

# ──────────────────────────────────────────────────────────────────────────────
# 에러 코드 → HTTP 상태
# ──────────────────────────────────────────────────────────────────────────────
ERROR_STATUS = {
    AuthErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.INVALID_REFRESH_TOKEN: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.REFRESH_TOKEN_REUSED: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.ACCOUNT_EXISTS: status.HTTP_409_CONFLICT,
    AuthErrorCode.DIRECTORY_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthErrorCode.DIRECTORY_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(err: AuthError) -> HTTPException:
    return HTTPException(status_code=ERROR_STATUS[err.code], detail=err.as_dict())


# ──────────────────────────────────────────────────────────────────────────────
# 내부 헬퍼
# ──────────────────────────────────────────────────────────────────────────────
def _set_session_cookies(response: Response, pair: TokenPair, settings: Settings) -> None:
    set_refresh_cookie(
        response,
        pair.refresh_token,
        name=settings.refresh_cookie_name,
        secure=settings.secure_cookie,
        max_age=int(settings.refresh_token_ttl.total_seconds()),
    )
    if settings.set_access_cookie:
        response.set_cookie(
            key="access_token",
            value=pair.access_token,
            httponly=True,
            secure=settings.secure_cookie,
            max_age=pair.expires_in,
            path="/",
        )


def _save_upload(upload: Optional[UploadFile]) -> Optional[str]:
    """Spool an upload to a temp file; the media store removes it after use."""
    if upload is None or not upload.filename:
        return None
    fd, path = tempfile.mkstemp(suffix=Path(upload.filename).suffix)
    with os.fdopen(fd, "wb") as out:
        shutil.copyfileobj(upload.file, out)
    return path


def _discard(*paths: Optional[str]) -> None:
    for p in paths:
        if p and os.path.exists(p):
            os.remove(p)


# ──────────────────────────────────────────────────────────────────────────────
# Register
# ──────────────────────────────────────────────────────────────────────────────
@auth_router.post("/register", response_model=PublicAccount, status_code=status.HTTP_201_CREATED)
async def register(
    full_name: str = Form(""),
    email: str = Form(""),
    username: str = Form(""),
    password: str = Form(""),
    avatar: Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None),
    service: AuthService = Depends(get_auth_service),
):
    avatar_path = _save_upload(avatar)
    cover_path = _save_upload(cover_image)
    try:
        result = await service.register(
            full_name=full_name,
            email=email,
            username=username,
            password=password,
            avatar_path=avatar_path,
            cover_image_path=cover_path,
        )
    finally:
        _discard(avatar_path, cover_path)

    if isinstance(result, Err):
        raise _http_error(result.error)
    return result.value


# ──────────────────────────────────────────────────────────────────────────────
# Login
# ──────────────────────────────────────────────────────────────────────────────
@auth_router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    result = await service.login(username=body.username, email=body.email, password=body.password)
    if isinstance(result, Err):
        raise _http_error(result.error)

    pair = result.value.tokens
    _set_session_cookies(response, pair, settings)
    return LoginResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
        user=result.value.account,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Refresh Token rotation
# ──────────────────────────────────────────────────────────────────────────────
@auth_router.post("/refresh", response_model=TokenPairResponse)
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    """
    Cookie first, then JSON body.
    Any failure clears the refresh cookie.
    """
    presented = request.cookies.get(settings.refresh_cookie_name) or (
        body.refresh_token if body else None
    )
    result = await service.refresh(presented)
    if isinstance(result, Err):
        failed = JSONResponse(
            status_code=ERROR_STATUS[result.error.code],
            content={"detail": result.error.as_dict()},
        )
        clear_refresh_cookie(failed, name=settings.refresh_cookie_name)
        return failed

    pair = result.value
    _set_session_cookies(response, pair, settings)
    return TokenPairResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Logout
# ──────────────────────────────────────────────────────────────────────────────
@auth_router.post("/logout")
async def logout(
    response: Response,
    user_id: str = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    result = await service.logout(user_id)
    if isinstance(result, Err):
        raise _http_error(result.error)

    clear_refresh_cookie(response, name=settings.refresh_cookie_name)
    response.delete_cookie("access_token", path="/")
    return {"ok": True}


# ──────────────────────────────────────────────────────────────────────────────
# Change password
# ──────────────────────────────────────────────────────────────────────────────
@auth_router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    user_id: str = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    result = await service.change_password(user_id, body.old_password, body.new_password)
    if isinstance(result, Err):
        raise _http_error(result.error)
    return {"ok": True}
