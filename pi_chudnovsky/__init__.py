"""
High-precision π calculator using Chudnovsky + binary splitting.

- gmpy2 (GMP) big integers, integer-only arithmetic end to end.
- Parallel reduction of the binary-splitting tree on a thread pool.
- Resumable runs through atomic on-disk checkpoints.
"""

from __future__ import annotations

import sys

from .arena import Arena, Limbs, from_limbs, limb_count, to_limbs
from .checkpoint import CheckpointScheduler, CheckpointStore
from .config import EngineConfig, get_settings
from .digits import DigitExtractor, DigitStream
from .engine import CancellationToken, ComputationResult, PiEngine, Status, compute_pi_digits
from .errors import (
    CheckpointIOError,
    CheckpointNotFoundError,
    CorruptCheckpointError,
    InvalidArgumentError,
    LimbCeilingExceeded,
    PiChudnovskyError,
    TaskFailure,
    UnsupportedSchemaVersionError,
)
from .models import SCHEMA_VERSION, Checkpoint
from .progress import NullProgressSink, ProgressEvent, ProgressSink, QueueProgressSink
from .reducer import Prefix, Reducer, TaskGraph
from .series import IDENTITY, ChudnovskySeries, SeriesEvaluator, Triple, term_count
from .verify import first_mismatch, normalize_digits, verify_prefix

# Allow large int-to-string conversions (Python 3.11+ safety limit)
if hasattr(sys, "set_int_max_str_digits"):
    sys.set_int_max_str_digits(0)

__version__ = "1.0.0"

__all__ = [
    "Arena",
    "CancellationToken",
    "Checkpoint",
    "CheckpointIOError",
    "CheckpointNotFoundError",
    "CheckpointScheduler",
    "CheckpointStore",
    "ChudnovskySeries",
    "ComputationResult",
    "CorruptCheckpointError",
    "DigitExtractor",
    "DigitStream",
    "EngineConfig",
    "IDENTITY",
    "InvalidArgumentError",
    "LimbCeilingExceeded",
    "Limbs",
    "NullProgressSink",
    "PiChudnovskyError",
    "PiEngine",
    "Prefix",
    "ProgressEvent",
    "ProgressSink",
    "QueueProgressSink",
    "Reducer",
    "SCHEMA_VERSION",
    "SeriesEvaluator",
    "Status",
    "TaskFailure",
    "TaskGraph",
    "Triple",
    "UnsupportedSchemaVersionError",
    "compute_pi_digits",
    "first_mismatch",
    "from_limbs",
    "get_settings",
    "limb_count",
    "normalize_digits",
    "term_count",
    "to_limbs",
    "verify_prefix",
]
