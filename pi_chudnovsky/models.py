"""Checkpoint contract: completed prefix of the term range plus its merged triple."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Tuple

from .errors import CorruptCheckpointError
from .series import IDENTITY, Triple

SCHEMA_VERSION = 1

TermRange = Tuple[int, int]


def validate_ranges(ranges: Tuple[TermRange, ...]) -> None:
    """Ranges must be non-empty, start at 0 and follow each other without gap or overlap."""
    expected_start = 0
    for index, (start, end) in enumerate(ranges):
        if end <= start:
            raise CorruptCheckpointError(
                f"range #{index} [{start}, {end}) is empty or inverted"
            )
        if start < expected_start:
            raise CorruptCheckpointError(
                f"range #{index} [{start}, {end}) overlaps the previous range"
            )
        if start > expected_start:
            if index == 0:
                raise CorruptCheckpointError(
                    f"completed ranges start at {start}, not 0"
                )
            raise CorruptCheckpointError(
                f"gap before range #{index}: terms [{expected_start}, {start}) missing"
            )
        expected_start = end


@dataclass(frozen=True)
class Checkpoint:
    """Immutable snapshot of in-progress recursion state."""

    target_digit_count: int
    completed_ranges: Tuple[TermRange, ...]
    partial: Triple
    saved_at: datetime
    schema_version: int = SCHEMA_VERSION

    @classmethod
    def create(
        cls, target_digit_count: int, completed_ranges, partial: Triple
    ) -> "Checkpoint":
        return cls(
            target_digit_count=target_digit_count,
            completed_ranges=tuple((int(a), int(b)) for a, b in completed_ranges),
            partial=partial,
            saved_at=datetime.now(timezone.utc),
        )

    @property
    def completed_terms(self) -> int:
        if not self.completed_ranges:
            return 0
        return self.completed_ranges[-1][1]

    def validate(self) -> None:
        if self.target_digit_count < 1:
            raise CorruptCheckpointError(
                f"target digit count must be positive, got {self.target_digit_count}"
            )
        validate_ranges(self.completed_ranges)
        if not self.completed_ranges and self.partial != IDENTITY:
            raise CorruptCheckpointError("no completed ranges but a non-identity triple")
        if self.partial.Q == 0:
            raise CorruptCheckpointError("partial Q is zero")
