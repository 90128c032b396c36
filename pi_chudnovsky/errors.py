"""
Exception taxonomy for the π engine.

Every error raised on purpose by the package derives from
PiChudnovskyError, and additionally from the builtin exception a caller
would naturally catch (ValueError, OverflowError, OSError, ...).
"""

from __future__ import annotations

from typing import Optional


class PiChudnovskyError(Exception):
    """Base class for all package errors."""


class InvalidArgumentError(PiChudnovskyError, ValueError):
    """Rejected input, raised before any computation starts."""


class LimbCeilingExceeded(PiChudnovskyError, OverflowError):
    """An intermediate value grew past the configured limb ceiling."""

    def __init__(self, limbs: int, ceiling: int) -> None:
        super().__init__(
            f"intermediate value needs {limbs} limbs, ceiling is {ceiling}"
        )
        self.limbs = limbs
        self.ceiling = ceiling


class CheckpointNotFoundError(PiChudnovskyError, FileNotFoundError):
    """No checkpoint file at the requested path."""


class CorruptCheckpointError(PiChudnovskyError):
    """A checkpoint exists but cannot be trusted."""


class UnsupportedSchemaVersionError(CorruptCheckpointError):
    """A checkpoint written with a schema version this build does not know."""

    def __init__(self, version: object) -> None:
        super().__init__(f"unsupported checkpoint schema version: {version!r}")
        self.version = version


class CheckpointIOError(PiChudnovskyError, OSError):
    """Writing a checkpoint failed. The previous file is untouched."""


class TaskFailure(PiChudnovskyError):
    """A worker task failed while evaluating or merging a term range."""

    def __init__(self, start: int, end: int, cause: Optional[BaseException] = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"task for terms [{start}, {end}) failed{detail}")
        self.start = start
        self.end = end
