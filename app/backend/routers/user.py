from fastapi import APIRouter, Depends, HTTPException

from app.backend.core.config import Settings, get_settings
from app.backend.dependencies.auth import get_current_user, get_directory
from app.backend.schemas.auth import PublicAccount
from app.backend.services.directory import (
    DirectoryError,
    DirectoryErrorKind,
    UserDirectory,
    call_with_timeout,
)

user_router = APIRouter(prefix="/users", tags=["users"])


@user_router.get("/me", response_model=PublicAccount)
async def get_me(
    user_id: str = Depends(get_current_user),
    directory: UserDirectory = Depends(get_directory),
    settings: Settings = Depends(get_settings),
):
    try:
        user = await call_with_timeout(
            directory.get_by_id(user_id), settings.directory_timeout_seconds
        )
    except DirectoryError as exc:
        if exc.kind is DirectoryErrorKind.UNAVAILABLE:
            raise HTTPException(status_code=503, detail="User directory unavailable")
        raise HTTPException(status_code=404, detail="User not found")
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return PublicAccount.from_user(user)
