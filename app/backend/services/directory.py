"""
User Directory: account lookup and persistence.

SqlUserDirectory runs the blocking SQLModel session work in the threadpool so
callers can await it. Infrastructure failures surface as DirectoryError.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Optional, Protocol, TypeVar
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select
from starlette.concurrency import run_in_threadpool

from app.backend.models.user import User

log = logging.getLogger(__name__)

T = TypeVar("T")


class DirectoryErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    CONFLICT = "conflict"


class DirectoryError(Exception):
    def __init__(self, kind: DirectoryErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value


class UserDirectory(Protocol):
    async def get_by_id(self, user_id: str) -> Optional[User]:
        ...

    async def find_by_username_or_email(
        self, *, username: Optional[str] = None, email: Optional[str] = None
    ) -> Optional[User]:
        ...

    async def create(self, user: User) -> User:
        ...

    async def set_password_hash(self, user_id: str, password_hash: str) -> None:
        ...

    async def set_refresh_token(self, user_id: str, value: Optional[str]) -> None:
        ...

    async def swap_refresh_token(self, user_id: str, expected: Optional[str], value: Optional[str]) -> bool:
        ...


async def call_with_timeout(awaitable: Awaitable[T], timeout: Optional[float]) -> T:
    """Await a directory call; running past `timeout` counts as UNAVAILABLE."""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        log.warning("directory call timed out after %.2fs", timeout)
        raise DirectoryError(DirectoryErrorKind.UNAVAILABLE, "directory call timed out") from exc


def parse_user_id(user_id: str | UUID) -> Optional[UUID]:
    if isinstance(user_id, UUID):
        return user_id
    try:
        return UUID(str(user_id))
    except (TypeError, ValueError):
        return None


class SqlUserDirectory:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    async def _run(self, fn, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except DirectoryError:
            raise
        except IntegrityError as exc:
            raise DirectoryError(DirectoryErrorKind.CONFLICT, "unique constraint violated") from exc
        except SQLAlchemyError as exc:
            log.error("directory database error: %s", exc.__class__.__name__)
            raise DirectoryError(DirectoryErrorKind.UNAVAILABLE, "directory unavailable") from exc

    # ---- reads ----
    def _get_by_id(self, uid: UUID) -> Optional[User]:
        with Session(self._engine) as s:
            return s.get(User, uid)

    async def get_by_id(self, user_id: str) -> Optional[User]:
        uid = parse_user_id(user_id)
        if uid is None:
            return None
        return await self._run(self._get_by_id, uid)

    def _find(self, username: Optional[str], email: Optional[str]) -> Optional[User]:
        conds = []
        if username:
            conds.append(User.username == username)
        if email:
            conds.append(User.email == email)
        if not conds:
            return None
        with Session(self._engine) as s:
            return s.exec(select(User).where(or_(*conds))).first()

    async def find_by_username_or_email(
        self, *, username: Optional[str] = None, email: Optional[str] = None
    ) -> Optional[User]:
        return await self._run(self._find, username, email)

    # ---- writes ----
    def _create(self, user: User) -> User:
        with Session(self._engine) as s:
            s.add(user)
            s.commit()
            s.refresh(user)
            return user

    async def create(self, user: User) -> User:
        return await self._run(self._create, user)

    def _update_field(self, uid: UUID, field: str, value) -> None:
        with Session(self._engine) as s:
            user = s.get(User, uid)
            if user is None:
                raise DirectoryError(DirectoryErrorKind.NOT_FOUND, "user not found")
            setattr(user, field, value)
            user.updated_at = datetime.now(timezone.utc)
            s.add(user)
            s.commit()

    async def set_password_hash(self, user_id: str, password_hash: str) -> None:
        uid = self._require_id(user_id)
        await self._run(self._update_field, uid, "password_hash", password_hash)

    async def set_refresh_token(self, user_id: str, value: Optional[str]) -> None:
        uid = self._require_id(user_id)
        await self._run(self._update_field, uid, "refresh_token", value)

    def _swap(self, uid: UUID, expected: Optional[str], value: Optional[str]) -> bool:
        current = User.refresh_token.is_(None) if expected is None else User.refresh_token == expected
        stmt = (
            update(User)
            .where(User.user_id == uid, current)
            .values(refresh_token=value, updated_at=datetime.now(timezone.utc))
        )
        with Session(self._engine) as s:
            result = s.execute(stmt)
            s.commit()
            if result.rowcount == 1:
                return True
            if s.get(User, uid) is None:
                raise DirectoryError(DirectoryErrorKind.NOT_FOUND, "user not found")
            return False

    async def swap_refresh_token(self, user_id: str, expected: Optional[str], value: Optional[str]) -> bool:
        uid = self._require_id(user_id)
        return await self._run(self._swap, uid, expected, value)

    @staticmethod
    def _require_id(user_id: str) -> UUID:
        uid = parse_user_id(user_id)
        if uid is None:
            raise DirectoryError(DirectoryErrorKind.NOT_FOUND, "user not found")
        return uid
