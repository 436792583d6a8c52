from __future__ import annotations

from typing import Optional

from app.backend.services.directory import UserDirectory, call_with_timeout

_UNSET = object()


class SessionStore:
    """
    The refresh-credential slot of the User Directory.
    One optional value per account; replace is last-writer-wins unless
    `expected` is given, in which case it is a compare-and-swap.
    """

    def __init__(self, directory: UserDirectory, timeout: Optional[float] = None) -> None:
        self.directory = directory
        self.timeout = timeout

    async def get_current_refresh_credential(self, subject_id: str) -> Optional[str]:
        user = await call_with_timeout(self.directory.get_by_id(subject_id), self.timeout)
        if user is None:
            return None
        return user.refresh_token or None

    async def replace_refresh_credential(self, subject_id: str, new_value: str, expected=_UNSET) -> bool:
        if expected is _UNSET:
            await call_with_timeout(
                self.directory.set_refresh_token(subject_id, new_value), self.timeout
            )
            return True
        return await call_with_timeout(
            self.directory.swap_refresh_token(subject_id, expected, new_value), self.timeout
        )

    async def clear_refresh_credential(self, subject_id: str) -> None:
        await call_with_timeout(self.directory.set_refresh_token(subject_id, None), self.timeout)
