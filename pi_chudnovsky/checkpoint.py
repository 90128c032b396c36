"""
Checkpoint persistence.

- CheckpointStore: atomic save (temp file + fsync + os.replace), validated
  load, discard.
- CheckpointScheduler: decides when a save is due and keeps at most one save
  in flight; a request arriving while one is pending is dropped.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional, Union

from .errors import CheckpointIOError, CheckpointNotFoundError, CorruptCheckpointError
from .models import Checkpoint
from .serialization import decode_checkpoint, encode_checkpoint

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

# Builds the checkpoint to write, or None when there is nothing new to save.
SnapshotBuilder = Callable[[], Optional[Checkpoint]]


class CheckpointStore:
    """One checkpoint file on local disk."""

    def __init__(self, path: PathLike) -> None:
        self.path = Path(path)

    def save(self, checkpoint: Checkpoint) -> None:
        """
        Write `checkpoint` atomically.

        The document goes to a temporary file in the destination directory,
        is fsynced, then renamed over the destination; a crash at any point
        leaves either the old file or the new one. Raises CheckpointIOError.
        """
        checkpoint.validate()
        data = encode_checkpoint(checkpoint)
        directory = self.path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
            )
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise CheckpointIOError(f"cannot write checkpoint {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("could not remove temporary file %s", tmp_name)

        logger.debug(
            "checkpoint saved: %d terms",
            checkpoint.completed_terms,
            extra={"checkpoint_path": self.path, "completed_terms": checkpoint.completed_terms},
        )

    def load(self, path: Optional[PathLike] = None) -> Checkpoint:
        """Read and validate a checkpoint (this store's path by default)."""
        target = Path(path) if path is not None else self.path
        try:
            data = target.read_bytes()
        except FileNotFoundError as exc:
            raise CheckpointNotFoundError(f"no checkpoint at {target}") from exc
        except OSError as exc:
            raise CorruptCheckpointError(f"cannot read checkpoint {target}: {exc}") from exc
        return decode_checkpoint(data)

    def exists(self) -> bool:
        return self.path.exists()

    def discard(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        logger.debug("checkpoint discarded", extra={"checkpoint_path": self.path})


class CheckpointScheduler:
    """
    Save cadence and single-flight control.

    A save is due when `interval_seconds` of wall-clock time passed since the
    last request, or when `every_merges` merges completed since then (if
    set). Saves run on a dedicated single-thread executor so worker threads
    never wait on disk.
    """

    def __init__(
        self,
        store: CheckpointStore,
        interval_seconds: float = 30.0,
        every_merges: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.interval_seconds = interval_seconds
        self.every_merges = every_merges
        self._clock = clock
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="checkpoint")
        self._pending: Optional[Future] = None
        self._last_time = clock()
        self._last_merges = 0
        self.saved = 0
        self.dropped = 0
        self.failed = 0

    def _due(self, merges: int) -> bool:
        if self._clock() - self._last_time >= self.interval_seconds:
            return True
        return self.every_merges is not None and merges - self._last_merges >= self.every_merges

    def tick(self, merges: int, snapshot: Callable[[], SnapshotBuilder]) -> bool:
        """
        Request a save if one is due. `snapshot` is called on the calling
        thread to capture state; the builder it returns runs on the save
        thread. Returns True when a save was started.
        """
        with self._lock:
            if not self._due(merges):
                return False
            if self._pending is not None and not self._pending.done():
                self.dropped += 1
                logger.debug("checkpoint save still in flight, request dropped")
                return False
            self._last_time = self._clock()
            self._last_merges = merges
            self._pending = self._executor.submit(self._write, snapshot())
            return True

    def _write(self, build: SnapshotBuilder) -> bool:
        checkpoint = build()
        if checkpoint is None:
            return False
        try:
            self.store.save(checkpoint)
        except CheckpointIOError as exc:
            self.failed += 1
            logger.warning("checkpoint save failed, will retry at next tick: %s", exc)
            return False
        self.saved += 1
        return True

    def wait(self) -> None:
        """Block until the in-flight save (if any) finished."""
        with self._lock:
            pending = self._pending
        if pending is not None:
            pending.result()

    def flush(self, build: SnapshotBuilder) -> bool:
        """Wait for the pending save, then save synchronously. Returns success."""
        self.wait()
        with self._lock:
            return self._write(build)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
