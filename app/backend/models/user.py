from sqlmodel import SQLModel, Field
from uuid import UUID, uuid4
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """
    계정 레코드.
    - refresh_token: 현재 유효한 단 하나의 RT 원문 (없으면 NULL, 로그아웃/회전 시에만 변경)
    - password_hash: argon2 해시, 응답/로그에 절대 노출 금지
    """
    __tablename__ = "users"

    user_id: UUID = Field(default_factory=uuid4, primary_key=True)
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    full_name: str
    avatar: str
    cover_image: str = ""
    password_hash: str
    refresh_token: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
