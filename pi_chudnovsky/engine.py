"""
π engine: term count, checkpoint restore policy, reduction, digit extraction.

Typical use:

    engine = PiEngine(EngineConfig(workers=4), progress=sink,
                      store=CheckpointStore("pi.ckpt"))
    result = engine.compute(1_000_000)
    if result.completed:
        for group in result.stream:
            out.write(group)
        engine.store.discard()
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .arena import Arena
from .checkpoint import CheckpointScheduler, CheckpointStore
from .config import EngineConfig
from .digits import DigitExtractor, DigitStream
from .errors import (
    CheckpointIOError,
    CheckpointNotFoundError,
    CorruptCheckpointError,
    InvalidArgumentError,
    LimbCeilingExceeded,
    TaskFailure,
)
from .models import Checkpoint
from .progress import NullProgressSink, ProgressSink
from .reducer import EMPTY_PREFIX, Prefix, Reducer
from .series import SeriesEvaluator, Triple, term_count

logger = logging.getLogger(__name__)


class Status(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class ComputationResult:
    status: Status
    digits: int
    terms: int
    elapsed: float
    stream: Optional[DigitStream] = None
    resumed_from: int = 0
    checkpoint_saved: bool = False

    @property
    def completed(self) -> bool:
        return self.status is Status.COMPLETED


class CancellationToken:
    """Set once, observed by the dispatcher at every scheduling decision."""

    def __init__(self) -> None:
        self.event = threading.Event()

    def cancel(self) -> None:
        self.event.set()

    @property
    def cancelled(self) -> bool:
        return self.event.is_set()


class PiEngine:
    """
    Computes digits of π for one configuration.

    The engine holds no global state; the worker pool it creates lives for
    the duration of one compute() call. Cancellation is sticky: once
    cancel() was called, further compute() calls return CANCELLED right
    away.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        progress: Optional[ProgressSink] = None,
        store: Optional[CheckpointStore] = None,
        token: Optional[CancellationToken] = None,
    ) -> None:
        self.config = config if config is not None else EngineConfig()
        self.progress = progress if progress is not None else NullProgressSink()
        self.store = store
        self.token = token if token is not None else CancellationToken()
        self.arena = Arena.from_config(self.config)
        self.evaluator = SeriesEvaluator(self.arena)
        self.extractor = DigitExtractor(
            self.arena,
            group_size=self.config.digit_group_size,
            sqrt_margin=self.config.sqrt_margin,
        )

    def cancel(self) -> None:
        logger.info("cancellation requested")
        self.token.cancel()

    def validate_digits(self, digits: int) -> None:
        if isinstance(digits, bool) or not isinstance(digits, int):
            raise InvalidArgumentError(f"digit count must be an integer, got {digits!r}")
        if digits < 1:
            raise InvalidArgumentError(f"digit count must be positive, got {digits}")
        if digits > self.config.max_digits:
            raise InvalidArgumentError(
                f"digit count {digits} exceeds the ceiling of {self.config.max_digits}"
            )

    def terms_for(self, digits: int) -> int:
        return term_count(digits + self.config.guard_digits, self.config.guard_terms)

    # =========================
    # Checkpoint restore
    # =========================

    def _restore(self, digits: int, terms: int, resume: bool, require_resume: bool) -> Prefix:
        if self.store is None or not resume:
            if require_resume:
                raise InvalidArgumentError("resume required but no checkpoint store configured")
            return EMPTY_PREFIX

        try:
            checkpoint = self.store.load()
            if checkpoint.target_digit_count != digits:
                raise CorruptCheckpointError(
                    f"checkpoint targets {checkpoint.target_digit_count} digits, "
                    f"this run targets {digits}"
                )
            if checkpoint.completed_terms > terms:
                raise CorruptCheckpointError(
                    f"checkpoint covers {checkpoint.completed_terms} terms, "
                    f"this run needs only {terms}"
                )
        except CheckpointNotFoundError:
            if require_resume:
                raise
            logger.info(
                "no checkpoint found, starting from term 0",
                extra={"checkpoint_path": self.store.path},
            )
            return EMPTY_PREFIX
        except CorruptCheckpointError as exc:
            if require_resume:
                raise
            logger.warning(
                "discarding unusable checkpoint, restarting from term 0: %s",
                exc,
                extra={"checkpoint_path": self.store.path},
            )
            self.store.discard()
            return EMPTY_PREFIX

        logger.info(
            "resuming from term %d of %d",
            checkpoint.completed_terms,
            terms,
            extra={"checkpoint_path": self.store.path, "completed_terms": checkpoint.completed_terms},
        )
        return Prefix.from_checkpoint(checkpoint)

    def _save_final(self, digits: int, terms: int, triple: Triple) -> bool:
        checkpoint = Checkpoint.create(digits, ((0, terms),), triple)
        try:
            self.store.save(checkpoint)
        except CheckpointIOError as exc:
            logger.warning("final checkpoint save failed: %s", exc)
            return False
        return True

    # =========================
    # Computation
    # =========================

    def compute(
        self, digits: int, *, resume: bool = True, require_resume: bool = False
    ) -> ComputationResult:
        """
        Compute `digits` decimals of π.

        With a store configured, a matching checkpoint is resumed; an
        unusable one is deleted and the computation restarts from term 0,
        unless `require_resume` is set, in which case the file is kept and
        the load error is raised. Raises InvalidArgumentError, LimbCeilingExceeded,
        TaskFailure.
        """
        self.validate_digits(digits)
        cfg = self.config
        work_digits = digits + cfg.guard_digits
        terms = self.terms_for(digits)
        started = time.monotonic()

        prefix = self._restore(digits, terms, resume, require_resume)

        scheduler = None
        if self.store is not None:
            scheduler = CheckpointScheduler(
                self.store,
                interval_seconds=cfg.checkpoint_interval_seconds,
                every_merges=cfg.checkpoint_every_merges,
            )

        reducer = Reducer(
            self.evaluator,
            terms,
            target_digits=digits,
            prefix=prefix,
            workers=cfg.workers,
            max_in_flight=cfg.max_in_flight,
            leaf_terms=cfg.leaf_terms,
            progress=self.progress,
            scheduler=scheduler,
            cancel=self.token.event,
            started_at=started,
        )

        logger.info(
            "computing %d digits (%d terms, %d workers)",
            digits,
            terms,
            cfg.workers,
            extra={"digits": digits, "terms": terms, "workers": cfg.workers},
        )

        try:
            try:
                triple = reducer.run()
            except LimbCeilingExceeded:
                logger.error("limb ceiling exceeded, aborting; last checkpoint left as is")
                raise
            except TaskFailure:
                logger.error("computation aborted by a failed task")
                raise

            if triple is None:
                saved = False
                if scheduler is not None:
                    saved = scheduler.flush(reducer.capture())
                return ComputationResult(
                    status=Status.CANCELLED,
                    digits=digits,
                    terms=terms,
                    elapsed=time.monotonic() - started,
                    resumed_from=prefix.end,
                    checkpoint_saved=saved,
                )

            saved = False
            if scheduler is not None:
                scheduler.wait()
                saved = self._save_final(digits, terms, triple)
        finally:
            if scheduler is not None:
                scheduler.close()

        stream = self.extractor.extract(triple, work_digits, keep=digits)
        elapsed = time.monotonic() - started
        logger.info("computed %d digits in %.3f s", digits, elapsed, extra={"digits": digits})
        return ComputationResult(
            status=Status.COMPLETED,
            digits=digits,
            terms=terms,
            elapsed=elapsed,
            stream=stream,
            resumed_from=prefix.end,
            checkpoint_saved=saved,
        )


def compute_pi_digits(digits: int, workers: Optional[int] = None) -> str:
    """
    Compute π to `digits` decimal places as a string "3.<digits>".

    Convenience wrapper: no checkpoints, no progress.
    """
    config = EngineConfig() if workers is None else EngineConfig(workers=workers)
    result = PiEngine(config).compute(digits)
    return result.stream.read_all()
