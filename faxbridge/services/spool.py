"""
Filesystem operations with dialer-compatible semantics.

The dialer picks up anything that appears in its watch directory, so a
descriptor must appear there in one step (rename), already owned by the
dialer's user. This process is the only writer into that directory and the
only reader/deleter of the inbound directory; no locking beyond rename.
"""

import asyncio
import errno
import os
import shutil
import uuid
from pathlib import Path
from typing import Callable, Iterable, TypeVar

import structlog

from faxbridge.core.exceptions import SpoolError

T = TypeVar('T')

logger = structlog.get_logger(__name__)

_RETRYABLE_ERRNOS = {errno.ENOSPC, errno.EBUSY, errno.EAGAIN, errno.EINTR}


class SpoolGateway:
    def __init__(
        self,
        directories: Iterable[Path],
        uid: int | None = None,
        gid: int | None = None,
        quarantine_dir: Path | None = None
    ):
        self.directories = [Path(d) for d in directories]
        self.uid = uid
        self.gid = gid
        self.quarantine_dir = quarantine_dir

    async def _call(self, operation: str, path: Path, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except OSError as e:
            raise SpoolError(
                operation,
                str(path),
                e.strerror or str(e),
                retryable=e.errno in _RETRYABLE_ERRNOS,
            ) from e

    async def ensure_directories(self) -> None:
        """Create every spool directory (recursively) if missing."""
        for directory in self.directories:
            await self._call("mkdir", directory, lambda d=directory: d.mkdir(parents=True, exist_ok=True))
        logger.debug("spool_directories_ready", directories=[str(d) for d in self.directories])

    async def write_bytes(self, path: Path, data: bytes) -> Path:
        await self._call("write", path, lambda: path.write_bytes(data))
        return path

    async def write_text(self, path: Path, text: str) -> Path:
        await self._call("write", path, lambda: path.write_text(text, encoding="utf-8"))
        return path

    async def read_bytes(self, path: Path) -> bytes:
        return await self._call("read", path, path.read_bytes)

    async def remove(self, path: Path) -> None:
        await self._call("unlink", path, path.unlink)

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(path.is_file)

    async def list_sidecars(self, directory: Path, extension: str = ".json") -> list[Path]:
        """Metadata files in directory, oldest name first."""

        def scan() -> list[Path]:
            return sorted(
                p for p in directory.iterdir()
                if p.is_file() and p.suffix.lower() == extension and not p.name.startswith(".")
            )

        return await self._call("list", directory, scan)

    async def set_owner(self, path: Path) -> None:
        """chown to the dialer's user/group; no-op when neither is configured."""
        if self.uid is None and self.gid is None:
            return
        uid = -1 if self.uid is None else self.uid
        gid = -1 if self.gid is None else self.gid
        await self._call("chown", path, lambda: os.chown(path, uid, gid))

    async def hand_off(self, path: Path, watch_dir: Path) -> Path:
        """
        Move path into watch_dir under its basename.

        A plain rename is atomic. Across filesystems the file is copied to a
        hidden name inside watch_dir, renamed into place, then the source is
        removed, so the watcher still never sees a half-written file. Once the
        target is in place the dialer owns it: failing to remove the source
        is only logged.
        """
        target = Path(watch_dir) / path.name

        def move() -> None:
            try:
                os.rename(path, target)
                return
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise
            staging = target.with_name(f".{target.name}.{uuid.uuid4().hex}")
            try:
                shutil.copy2(path, staging)
                if self.uid is not None or self.gid is not None:
                    os.chown(
                        staging,
                        -1 if self.uid is None else self.uid,
                        -1 if self.gid is None else self.gid,
                    )
                os.rename(staging, target)
            except OSError:
                staging.unlink(missing_ok=True)
                raise
            try:
                path.unlink()
            except OSError as e:
                logger.warning("spool_handoff_source_not_removed", source=str(path), error=e.strerror or str(e))

        await self._call("rename", path, move)
        logger.info("spool_handoff", source=str(path), target=str(target))
        return target

    async def quarantine(self, *paths: Path) -> list[Path]:
        """
        Move bad artifacts aside so they are not picked up again.

        Missing paths are ignored. A name already taken in the quarantine
        directory gets a unique suffix instead of being overwritten.
        """
        if self.quarantine_dir is None:
            return []

        def move_all() -> list[Path]:
            moved = []
            for path in paths:
                if not path.exists():
                    continue
                target = self.quarantine_dir / path.name
                if target.exists():
                    target = target.with_name(f"{path.stem}.{uuid.uuid4().hex[:8]}{path.suffix}")
                shutil.move(str(path), str(target))
                moved.append(target)
            return moved

        moved = await self._call("quarantine", paths[0] if paths else self.quarantine_dir, move_all)
        for target in moved:
            logger.warning("spool_quarantined", target=str(target))
        return moved
