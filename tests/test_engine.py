"""
End-to-end tests for PiEngine.

Checks:
1. Known answer and reference prefix
2. Pool size does not change the digits
3. Resume after cancellation reproduces an uninterrupted run
4. Corrupt / mismatched checkpoints trigger a restart (or fail on demand)
5. Argument validation and overflow handling
"""

from datetime import datetime, timezone

import pytest

from pi_chudnovsky.checkpoint import CheckpointStore
from pi_chudnovsky.config import EngineConfig
from pi_chudnovsky.engine import CancellationToken, PiEngine, Status, compute_pi_digits
from pi_chudnovsky.errors import (
    CheckpointNotFoundError,
    CorruptCheckpointError,
    InvalidArgumentError,
    LimbCeilingExceeded,
)
from pi_chudnovsky.models import Checkpoint
from pi_chudnovsky.serialization import encode_checkpoint


class _CancelAfter:
    def __init__(self, token, count):
        self.token = token
        self.count = count
        self.calls = 0

    def on_progress(self, completed_terms, total_terms, elapsed):
        self.calls += 1
        if self.calls == self.count:
            self.token.cancel()


def _digits(engine, n, **kwargs):
    result = engine.compute(n, **kwargs)
    assert result.status is Status.COMPLETED
    return result.stream.read_all()


# =============================================================================
# RESULTS
# =============================================================================


class TestKnownAnswers:
    def test_fifty_digits(self, small_config, pi_50) -> None:
        assert _digits(PiEngine(small_config), 50) == pi_50

    def test_two_hundred_digits(self, small_config, pi_200) -> None:
        assert _digits(PiEngine(small_config), 200) == pi_200

    def test_single_digit(self, small_config) -> None:
        assert _digits(PiEngine(small_config), 1) == "3.1"

    def test_convenience_wrapper(self, pi_50) -> None:
        assert compute_pi_digits(50, workers=1) == pi_50

    def test_guard_digits_disabled(self, pi_200) -> None:
        config = EngineConfig(workers=1, guard_digits=0)
        assert _digits(PiEngine(config), 200) == pi_200


class TestParallelism:
    def test_pool_sizes_agree(self, small_config, pi_200) -> None:
        outputs = set()
        for workers in (1, 2, 8):
            config = small_config.model_copy(update={"workers": workers})
            outputs.add(_digits(PiEngine(config), 1500))
        assert len(outputs) == 1
        assert outputs.pop().startswith(pi_200)

    def test_karatsuba_and_newton_agree(self, small_config) -> None:
        eager = small_config.model_copy(update={"karatsuba_threshold": 2, "newton_threshold": 2})
        assert _digits(PiEngine(eager), 800) == _digits(PiEngine(small_config), 800)


# =============================================================================
# CHECKPOINTS
# =============================================================================


class TestResume:
    def test_resume_matches_uninterrupted_run(self, small_config, checkpoint_path) -> None:
        config = small_config.model_copy(update={"checkpoint_every_merges": 1, "workers": 1})
        store = CheckpointStore(checkpoint_path)

        token = CancellationToken()
        first = PiEngine(config, progress=_CancelAfter(token, 12), store=store, token=token)
        cancelled = first.compute(1000)
        assert cancelled.status is Status.CANCELLED
        assert cancelled.stream is None
        saved = store.load()
        assert 0 < saved.completed_terms < cancelled.terms

        resumed = PiEngine(config, store=store).compute(1000)
        assert resumed.resumed_from == saved.completed_terms
        assert resumed.stream.read_all() == _digits(PiEngine(config), 1000)

    def test_cancel_leaves_no_partial_file(self, small_config, checkpoint_path) -> None:
        store = CheckpointStore(checkpoint_path)
        token = CancellationToken()
        token.cancel()
        result = PiEngine(small_config, store=store, token=token).compute(500)
        assert result.status is Status.CANCELLED
        assert not result.checkpoint_saved
        assert list(checkpoint_path.parent.iterdir()) == []

    def test_cancel_keeps_loadable_checkpoint(self, small_config, checkpoint_path) -> None:
        config = small_config.model_copy(update={"checkpoint_every_merges": 1, "workers": 1})
        store = CheckpointStore(checkpoint_path)
        token = CancellationToken()
        engine = PiEngine(config, progress=_CancelAfter(token, 8), store=store, token=token)
        result = engine.compute(600)
        assert result.status is Status.CANCELLED
        assert result.checkpoint_saved
        checkpoint = store.load()
        assert checkpoint.target_digit_count == 600
        assert 0 < checkpoint.completed_terms < result.terms
        assert [p.name for p in checkpoint_path.parent.iterdir()] == [checkpoint_path.name]

    def test_completion_saves_full_checkpoint(self, small_config, checkpoint_path) -> None:
        store = CheckpointStore(checkpoint_path)
        result = PiEngine(small_config, store=store).compute(100)
        assert result.checkpoint_saved
        checkpoint = store.load()
        assert checkpoint.completed_ranges == ((0, result.terms),)

        # A finished checkpoint resumes straight to extraction.
        again = PiEngine(small_config, store=store).compute(100)
        assert again.resumed_from == result.terms
        assert again.stream.read_all() == result.stream.read_all()


class TestCorruptCheckpoints:
    def _plant_overlapping(self, path, evaluator, digits):
        bad = Checkpoint(
            target_digit_count=digits,
            completed_ranges=((0, 10), (5, 15)),
            partial=evaluator.evaluate(0, 15),
            saved_at=datetime.now(timezone.utc),
        )
        path.write_bytes(encode_checkpoint(bad))

    def test_overlap_restarts_from_zero(self, small_config, checkpoint_path, evaluator, pi_200, caplog) -> None:
        self._plant_overlapping(checkpoint_path, evaluator, 200)
        result = PiEngine(small_config, store=CheckpointStore(checkpoint_path)).compute(200)
        assert result.resumed_from == 0
        assert result.stream.read_all() == pi_200
        assert "restarting from term 0" in caplog.text

    def test_overlap_fails_when_resume_required(self, small_config, checkpoint_path, evaluator) -> None:
        self._plant_overlapping(checkpoint_path, evaluator, 200)
        engine = PiEngine(small_config, store=CheckpointStore(checkpoint_path))
        with pytest.raises(CorruptCheckpointError):
            engine.compute(200, require_resume=True)
        assert checkpoint_path.exists()

    def test_unusable_file_removed_even_if_cancelled(self, small_config, checkpoint_path) -> None:
        checkpoint_path.write_bytes(b"garbage")
        token = CancellationToken()
        token.cancel()
        result = PiEngine(small_config, store=CheckpointStore(checkpoint_path), token=token).compute(300)
        assert result.status is Status.CANCELLED
        assert not result.checkpoint_saved
        assert list(checkpoint_path.parent.iterdir()) == []

    def test_other_target_restarts(self, small_config, checkpoint_path, evaluator, pi_50) -> None:
        store = CheckpointStore(checkpoint_path)
        store.save(Checkpoint.create(999, [(0, 4)], evaluator.evaluate(0, 4)))
        result = PiEngine(small_config, store=store).compute(50)
        assert result.resumed_from == 0
        assert result.stream.read_all() == pi_50

    def test_missing_checkpoint_when_resume_required(self, small_config, checkpoint_path) -> None:
        engine = PiEngine(small_config, store=CheckpointStore(checkpoint_path))
        with pytest.raises(CheckpointNotFoundError):
            engine.compute(50, require_resume=True)

    def test_resume_required_without_store(self, small_config) -> None:
        with pytest.raises(InvalidArgumentError):
            PiEngine(small_config).compute(50, require_resume=True)


# =============================================================================
# ERRORS
# =============================================================================


class TestErrors:
    @pytest.mark.parametrize("digits", [0, -1, True, 2.5, "50"])
    def test_invalid_digit_counts(self, small_config, digits) -> None:
        with pytest.raises(InvalidArgumentError):
            PiEngine(small_config).compute(digits)

    def test_digit_ceiling(self, small_config) -> None:
        config = small_config.model_copy(update={"max_digits": 100})
        with pytest.raises(InvalidArgumentError):
            PiEngine(config).compute(101)

    def test_overflow_keeps_previous_checkpoint(self, small_config, checkpoint_path, evaluator) -> None:
        store = CheckpointStore(checkpoint_path)
        store.save(Checkpoint.create(400, [(0, 3)], evaluator.evaluate(0, 3)))
        before = checkpoint_path.read_bytes()

        config = small_config.model_copy(update={"max_limbs": 2})
        with pytest.raises(LimbCeilingExceeded):
            PiEngine(config, store=store).compute(400)
        assert checkpoint_path.read_bytes() == before
