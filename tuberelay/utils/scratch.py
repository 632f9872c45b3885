"""
Request-scoped temporary files used while merging video and audio.
"""
from __future__ import annotations

import os
import tempfile
import uuid
from pathlib import Path

from tuberelay.utils.logger import logger


class ScopedStore:
    """A temporary file that is deleted by release(), at most once."""

    def __init__(self, path: Path, role: str):
        self.path = path
        self.role = role
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def size(self) -> int:
        try:
            return self.path.stat().st_size
        except FileNotFoundError:
            return 0

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to delete temporary {self.role} file {self.path}: {e}")

    def __repr__(self) -> str:
        return f"ScopedStore(role={self.role!r}, path={str(self.path)!r})"


class StoreScope:
    """Creates scoped stores for one request and releases all of them together."""

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)
        self.token = uuid.uuid4().hex[:12]
        self.stores: list[ScopedStore] = []

    def create(self, role: str, suffix: str = "") -> ScopedStore:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        if suffix and not suffix.startswith("."):
            suffix = "." + suffix
        fd, path = tempfile.mkstemp(prefix=f"{role}-{self.token}-", suffix=suffix, dir=str(self.base_dir))
        os.close(fd)
        store = ScopedStore(Path(path), role)
        self.stores.append(store)
        return store

    def release_all(self) -> None:
        pending = [s for s in self.stores if not s.released]
        if not pending:
            return
        for store in pending:
            store.release()
        logger.info(f"Temporary files cleaned up ({len(pending)})")
