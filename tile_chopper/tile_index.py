from __future__ import annotations
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union
import fcntl
import logging
import os
import struct
import threading

from .errors import TileIndexError

logger = logging.getLogger(__name__)

_COUNTER = struct.Struct("<q")


class PersistentTileIndex:
    """Per-directory counter used to give every fragment file a unique suffix.

    The counter lives in ``<directory>/<file_name>`` as one little-endian
    int64 and survives across runs. Every read-increment-write happens while
    holding an exclusive ``flock`` on ``<directory>/.<lock_name>.lock``, so
    independent build processes writing into the same tree never hand out the
    same number. The lock file is deleted after each use; a process that
    opened it just before the deletion can still race a newcomer that creates
    a fresh one.
    """

    def __init__(self, file_name: str = "chop.idx", lock_name: str = "tile_chopper_index"):
        self.file_name = file_name
        self.lock_name = lock_name
        self._local = threading.Lock()

    def counter_path(self, directory: Union[str, Path]) -> Path:
        return Path(directory) / self.file_name

    def lock_path(self, directory: Union[str, Path]) -> Path:
        return Path(directory) / f".{self.lock_name}.lock"

    def generate_index(self, directory: Union[str, Path]) -> int:
        path = self.counter_path(directory)
        with self._local, self._named_lock(Path(directory)):
            try:
                fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
            except OSError as e:
                raise TileIndexError(f"cannot open index file {path} for writing: {e}") from e

            with os.fdopen(fd, "r+b") as fp:
                raw = fp.read(_COUNTER.size)
                index = _COUNTER.unpack(raw)[0] if len(raw) == _COUNTER.size else 0
                index += 1
                fp.seek(0)
                fp.write(_COUNTER.pack(index))
                fp.truncate()
                fp.flush()
                os.fsync(fp.fileno())

        logger.debug("generate_index(%s) -> %d", directory, index)
        return index

    def current(self, directory: Union[str, Path]) -> int:
        """Last value handed out for ``directory`` (0 if none yet), without locking."""
        path = self.counter_path(directory)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return 0
        return _COUNTER.unpack(raw[:_COUNTER.size])[0] if len(raw) >= _COUNTER.size else 0

    @contextmanager
    def _named_lock(self, directory: Path) -> Iterator[None]:
        lock_path = self.lock_path(directory)
        try:
            fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise TileIndexError(f"cannot create lock {lock_path}: {e}") from e

        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
            except OSError as e:
                raise TileIndexError(f"cannot acquire lock {lock_path}: {e}") from e
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

        try:
            lock_path.unlink()
        except FileNotFoundError:
            pass
