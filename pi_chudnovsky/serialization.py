"""
JSON encoding of checkpoints.

The wire record is a pydantic model; big integers travel as decimal
strings. The schema version is read before full validation so that a
checkpoint from another format generation is reported as such instead of as
a pile of field errors.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import List

from gmpy2 import mpz
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import CorruptCheckpointError, UnsupportedSchemaVersionError
from .models import SCHEMA_VERSION, Checkpoint
from .series import Triple

_BIG_INT = r"^-?[0-9]+$"


class RangeRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: int = Field(ge=0)
    end: int = Field(ge=0)


class CheckpointRecord(BaseModel):
    """Version 1 checkpoint document."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int
    target_digit_count: int = Field(ge=1)
    completed_ranges: List[RangeRecord] = Field(default_factory=list)
    partial_p: str = Field(pattern=_BIG_INT)
    partial_q: str = Field(pattern=_BIG_INT)
    partial_t: str = Field(pattern=_BIG_INT)
    saved_at: datetime
    digest: str


def _digest(target: int, ranges, p: str, q: str, t: str) -> str:
    h = hashlib.sha256()
    h.update(f"{target}|".encode())
    h.update(",".join(f"{a}:{b}" for a, b in ranges).encode())
    for part in (p, q, t):
        h.update(b"|")
        h.update(part.encode())
    return h.hexdigest()


def encode_checkpoint(checkpoint: Checkpoint) -> bytes:
    p, q, t = (str(v) for v in checkpoint.partial)
    record = CheckpointRecord(
        schema_version=checkpoint.schema_version,
        target_digit_count=checkpoint.target_digit_count,
        completed_ranges=[RangeRecord(start=a, end=b) for a, b in checkpoint.completed_ranges],
        partial_p=p,
        partial_q=q,
        partial_t=t,
        saved_at=checkpoint.saved_at,
        digest=_digest(checkpoint.target_digit_count, checkpoint.completed_ranges, p, q, t),
    )
    return record.model_dump_json().encode("utf-8")


def decode_checkpoint(data: bytes) -> Checkpoint:
    """Parse and validate a checkpoint document. Raises CorruptCheckpointError."""
    try:
        raw = json.loads(data)
    except (UnicodeDecodeError, ValueError) as exc:
        raise CorruptCheckpointError(f"checkpoint is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise CorruptCheckpointError("checkpoint document is not an object")

    version = raw.get("schema_version")
    if version != SCHEMA_VERSION:
        raise UnsupportedSchemaVersionError(version)

    try:
        record = CheckpointRecord.model_validate(raw)
    except ValidationError as exc:
        raise CorruptCheckpointError(f"checkpoint schema violation: {exc}") from exc

    ranges = tuple((r.start, r.end) for r in record.completed_ranges)
    expected = _digest(
        record.target_digit_count, ranges, record.partial_p, record.partial_q, record.partial_t
    )
    if expected != record.digest:
        raise CorruptCheckpointError("checkpoint digest mismatch")

    checkpoint = Checkpoint(
        target_digit_count=record.target_digit_count,
        completed_ranges=ranges,
        partial=Triple(mpz(record.partial_p), mpz(record.partial_q), mpz(record.partial_t)),
        saved_at=record.saved_at,
        schema_version=record.schema_version,
    )
    checkpoint.validate()
    return checkpoint
