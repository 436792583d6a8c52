from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.backend.core.config import Settings, get_settings
from app.backend.core.results import Err
from app.backend.core.tokens import TokenCodec
from app.backend.services.auth_service import AuthService
from app.backend.services.directory import SqlUserDirectory, UserDirectory
from app.backend.services.media_store import LocalMediaStore, MediaStore
from app.db.session import get_engine

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


@lru_cache
def get_token_codec() -> TokenCodec:
    return TokenCodec.from_settings(get_settings())


@lru_cache
def get_directory() -> UserDirectory:
    return SqlUserDirectory(get_engine())


@lru_cache
def get_media_store() -> MediaStore:
    settings = get_settings()
    return LocalMediaStore(settings.media_root, settings.media_base_url)


def get_auth_service(
    directory: UserDirectory = Depends(get_directory),
    media: MediaStore = Depends(get_media_store),
    codec: TokenCodec = Depends(get_token_codec),
    settings: Settings = Depends(get_settings),
) -> AuthService:
    return AuthService.from_settings(settings, directory, media, codec=codec)


def _extract_jwt(request: Request, token: str | None) -> str | None:
    return token or request.cookies.get("access_token")


def get_current_user(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    codec: TokenCodec = Depends(get_token_codec),
) -> str:
    """Strict auth dependency; returns the subject id or raises 401."""
    jwt_token = _extract_jwt(request, token)
    if not jwt_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized request",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = codec.verify_access_token(jwt_token)
    if isinstance(result, Err):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid access token ({result.error.value})",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return result.value["sub"]
