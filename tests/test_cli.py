"""Tests for the command-line front end."""

import logging

import pytest

from pi_chudnovsky.cli import (
    EXIT_CHECKPOINT_CORRUPT,
    EXIT_INVALID_ARGUMENT,
    EXIT_OK,
    EXIT_OVERFLOW,
    EXIT_VERIFY_FAILED,
    main,
    parse_digit_spec,
)
from pi_chudnovsky.config import get_settings
from pi_chudnovsky.errors import InvalidArgumentError


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch):
    """Fresh settings per test; undo the handlers main() attaches to the root logger."""
    monkeypatch.delenv("PI_CHUDNOVSKY_MAX_LIMBS", raising=False)
    get_settings.cache_clear()
    handlers = list(logging.root.handlers)
    level = logging.root.level
    yield
    logging.root.handlers[:] = handlers
    logging.root.setLevel(level)
    get_settings.cache_clear()


def _digit_line(out: str) -> str:
    return [line for line in out.splitlines() if line.startswith("3.")][-1]


class TestParseDigitSpec:
    @pytest.mark.parametrize(
        "spec,expected",
        [
            ("123", 123),
            ("1K", 1_000),
            ("1k", 1_000),
            ("10M", 10_000_000),
            ("2g", 2_000_000_000),
            ("132876K", 132_876_000),
            ("1e6", 1_000_000),
            ("3E7", 30_000_000),
            ("  42  ", 42),
            ("5 K", 5_000),
        ],
    )
    def test_valid(self, spec, expected) -> None:
        assert parse_digit_spec(spec) == expected

    @pytest.mark.parametrize("spec", ["", "   ", "K", "abc", "1.5K", "1e", "e5", "1e-3", "0", "-5", "0K"])
    def test_invalid(self, spec) -> None:
        with pytest.raises(InvalidArgumentError):
            parse_digit_spec(spec)


class TestMain:
    def test_prints_digits(self, capsys, pi_50) -> None:
        assert main(["50", "--no-progress"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "Calculating π to 50 digits" in out
        assert "Time:" in out
        assert _digit_line(out) == pi_50

    def test_digits_flag_with_suffix(self, capsys, pi_200) -> None:
        assert main(["-d", "1e2", "--no-progress", "--workers", "2"]) == EXIT_OK
        assert _digit_line(capsys.readouterr().out) == pi_200[:102]

    def test_progress_goes_to_stderr(self, capsys, pi_50) -> None:
        assert main(["50"]) == EXIT_OK
        captured = capsys.readouterr()
        assert "terms" in captured.err
        assert _digit_line(captured.out) == pi_50

    def test_output_file(self, tmp_path, pi_50) -> None:
        out = tmp_path / "pi.txt"
        assert main(["50", "--no-progress", "-o", str(out)]) == EXIT_OK
        assert out.read_text(encoding="utf-8") == pi_50 + "\n"

    def test_checkpoint_discarded_after_output(self, tmp_path) -> None:
        ckpt = tmp_path / "pi.ckpt"
        assert main(["80", "--no-progress", "--checkpoint", str(ckpt)]) == EXIT_OK
        assert not ckpt.exists()

    def test_json_logs(self, capsys) -> None:
        assert main(["20", "--no-progress", "--log-format", "json", "--log-level", "info"]) == EXIT_OK
        assert '"message": "computing 20 digits' in capsys.readouterr().err


class TestExitCodes:
    def test_invalid_spec(self, capsys) -> None:
        assert main(["lots"]) == EXIT_INVALID_ARGUMENT

    def test_invalid_worker_count(self, capsys) -> None:
        assert main(["50", "--workers", "0", "--no-progress"]) == EXIT_INVALID_ARGUMENT

    def test_digits_over_ceiling(self, capsys) -> None:
        assert main(["2G", "--no-progress"]) == EXIT_INVALID_ARGUMENT
        assert "exceeds" in capsys.readouterr().err

    def test_verify_match(self, tmp_path, capsys, pi_200) -> None:
        ref = tmp_path / "ref.txt"
        ref.write_text(pi_200[:60] + "\n" + pi_200[60:] + "\n", encoding="utf-8")
        assert main(["50", "--no-progress", "--verify", str(ref)]) == EXIT_OK
        assert "Verified 51 digits" in capsys.readouterr().out

    def test_verify_digits_only_reference(self, tmp_path, capsys, pi_200) -> None:
        ref = tmp_path / "ref.txt"
        ref.write_text(pi_200.replace(".", ""), encoding="utf-8")
        assert main(["50", "--no-progress", "--verify", str(ref)]) == EXIT_OK
        assert "Verified 51 digits" in capsys.readouterr().out

    def test_verify_mismatch(self, tmp_path, capsys) -> None:
        ref = tmp_path / "ref.txt"
        ref.write_text("3.1415926536", encoding="utf-8")
        assert main(["50", "--no-progress", "--verify", str(ref)]) == EXIT_VERIFY_FAILED
        assert "digit 10" in capsys.readouterr().err

    def test_missing_reference_file(self, tmp_path, capsys) -> None:
        missing = tmp_path / "nope.txt"
        assert main(["50", "--no-progress", "--verify", str(missing)]) == EXIT_INVALID_ARGUMENT

    def test_corrupt_checkpoint_with_resume_or_fail(self, tmp_path, capsys) -> None:
        ckpt = tmp_path / "pi.ckpt"
        ckpt.write_bytes(b"{ definitely not a checkpoint")
        argv = ["50", "--no-progress", "--checkpoint", str(ckpt), "--resume-or-fail"]
        assert main(argv) == EXIT_CHECKPOINT_CORRUPT
        assert ckpt.read_bytes() == b"{ definitely not a checkpoint"

    def test_missing_checkpoint_with_resume_or_fail(self, tmp_path, capsys) -> None:
        argv = ["50", "--no-progress", "--checkpoint", str(tmp_path / "pi.ckpt"), "--resume-or-fail"]
        assert main(argv) == EXIT_CHECKPOINT_CORRUPT

    def test_corrupt_checkpoint_restarts_by_default(self, tmp_path, capsys, pi_50) -> None:
        ckpt = tmp_path / "pi.ckpt"
        ckpt.write_bytes(b"garbage")
        assert main(["50", "--no-progress", "--checkpoint", str(ckpt)]) == EXIT_OK
        assert _digit_line(capsys.readouterr().out) == pi_50

    def test_overflow(self, monkeypatch, capsys) -> None:
        monkeypatch.setenv("PI_CHUDNOVSKY_MAX_LIMBS", "1")
        get_settings.cache_clear()
        assert main(["500", "--no-progress"]) == EXIT_OVERFLOW
