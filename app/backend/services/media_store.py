from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Optional, Protocol
from uuid import uuid4

from starlette.concurrency import run_in_threadpool

log = logging.getLogger(__name__)


class MediaStore(Protocol):
    async def upload(self, local_path: Optional[str]) -> Optional[str]:
        """Return a public URL for the file, or None when the upload fails."""
        ...

    async def remove(self, url: str) -> None:
        ...


class LocalMediaStore:
    """
    Copies uploaded files under MEDIA_ROOT and serves them from MEDIA_BASE_URL.
    The source file is removed whether or not the copy succeeds.
    """

    def __init__(self, root: str | Path, base_url: str = "/media") -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _store(self, local_path: str) -> str:
        src = Path(local_path)
        self.root.mkdir(parents=True, exist_ok=True)
        name = f"{uuid4().hex}{src.suffix.lower()}"
        shutil.copyfile(src, self.root / name)
        return f"{self.base_url}/{name}"

    async def upload(self, local_path: Optional[str]) -> Optional[str]:
        if not local_path:
            return None
        try:
            return await run_in_threadpool(self._store, local_path)
        except OSError as exc:
            log.warning("media upload failed for %s: %s", os.path.basename(local_path), exc)
            return None
        finally:
            try:
                os.remove(local_path)
            except OSError:
                pass

    def _delete(self, url: str) -> None:
        name = url.rsplit("/", 1)[-1]
        path = self.root / name
        if path.is_file():
            path.unlink()

    async def remove(self, url: str) -> None:
        try:
            await run_in_threadpool(self._delete, url)
        except OSError as exc:
            log.warning("media remove failed for %s: %s", url, exc)
