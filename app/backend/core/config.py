# app/backend/core/config.py
from datetime import timedelta
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # 기본 앱 설정
    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_allow_origins: str = Field(
        "http://localhost:3000,http://localhost:5173", alias="CORS_ALLOW_ORIGINS"
    )

    # JWT: access / refresh use different secrets
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_secret: str = Field("dev-access-secret-change-me", alias="JWT_SECRET_KEY")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    refresh_token_secret: str = Field("dev_refresh_secret_change_me", alias="JWT_REFRESH_SECRET")
    refresh_token_expire_days: int = Field(10, alias="REFRESH_TOKEN_EXPIRE_DAYS")

    # Session policy
    refresh_rotation_cas: bool = Field(False, alias="REFRESH_ROTATION_CAS")
    revoke_session_on_password_change: bool = Field(
        False, alias="REVOKE_SESSION_ON_PASSWORD_CHANGE"
    )
    directory_timeout_seconds: float = Field(5.0, alias="DIRECTORY_TIMEOUT_SECONDS")

    # Cookies (transport only)
    refresh_cookie_name: str = Field("refresh_token", alias="REFRESH_COOKIE_NAME")
    secure_cookie: bool = Field(True, alias="SECURE_COOKIE")
    set_access_cookie: bool = Field(False, alias="AUTH_SET_COOKIE_ON_POST")

    # Local media store
    media_root: str = Field("media", alias="MEDIA_ROOT")
    media_base_url: str = Field("/media", alias="MEDIA_BASE_URL")

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.access_token_expire_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.refresh_token_expire_days)

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
