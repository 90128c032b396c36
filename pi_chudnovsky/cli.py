"""
Command-line front end.

Usage examples:
  pi-chudnovsky                         -> default (100000 digits)
  pi-chudnovsky 12345
  pi-chudnovsky --calculate 1K
  pi-chudnovsky --digits 10M --checkpoint pi.ckpt --workers 8
  pi-chudnovsky 1e6 --verify pi-reference.txt

Exit codes: 0 success, 1 invalid argument, 2 checkpoint corrupt,
3 overflow ceiling exceeded, 4 verification mismatch, 5 task failure,
130 cancelled.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional, TextIO

from pydantic import ValidationError

from .checkpoint import CheckpointStore
from .config import EngineConfig, get_settings
from .engine import PiEngine
from .errors import (
    CheckpointNotFoundError,
    CorruptCheckpointError,
    InvalidArgumentError,
    LimbCeilingExceeded,
    TaskFailure,
)
from .log import setup_logging
from .progress import QueueProgressSink
from .verify import first_mismatch, load_reference, normalize_digits, verify_prefix

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVALID_ARGUMENT = 1
EXIT_CHECKPOINT_CORRUPT = 2
EXIT_OVERFLOW = 3
EXIT_VERIFY_FAILED = 4
EXIT_TASK_FAILED = 5
EXIT_CANCELLED = 130

DEFAULT_DIGITS = 100_000


# =========================
# Digit specification parser
# =========================


def parse_digit_spec(spec: str) -> int:
    """
    Parse a digit specification like:
      "123", "1K", "10M", "2g", "132876K", "1e6", "3E7"

    Suffixes (case-insensitive):
      K = 1_000 (10^3)
      M = 1_000_000 (10^6)
      G = 1_000_000_000 (10^9)
      T = 1_000_000_000_000 (10^12)

    Scientific notation:
      "<int>e<int>", e.g. "1e6".

    Raises InvalidArgumentError on invalid input.
    """
    s = spec.strip()
    if not s:
        raise InvalidArgumentError("Empty digits specification")

    try:
        # 1) Scientific notation: "<int>e<int>" or "<int>E<int>"
        mantissa_str, sep, exp_str = s.lower().partition("e")
        if sep:
            if not mantissa_str or not exp_str:
                raise InvalidArgumentError(f"Invalid scientific notation: {spec!r}")
            exp = int(exp_str)
            if exp < 0:
                raise InvalidArgumentError(f"Negative exponent not supported in {spec!r}")
            value = int(mantissa_str) * (10 ** exp)
        else:
            # 2) Suffix-based notation: K, M, G, T
            multipliers = {"k": 10 ** 3, "m": 10 ** 6, "g": 10 ** 9, "t": 10 ** 12}
            multiplier = multipliers.get(s[-1].lower(), 1)
            if multiplier != 1:
                s = s[:-1].strip()
                if not s:
                    raise InvalidArgumentError(f"Missing number before suffix in {spec!r}")
            value = int(s) * multiplier
    except ValueError as e:
        if isinstance(e, InvalidArgumentError):
            raise
        raise InvalidArgumentError(f"Invalid digits specification {spec!r}") from e

    if value <= 0:
        raise InvalidArgumentError(f"Digits must be positive: {spec!r}")
    return value


def _digit_spec(value: str) -> int:
    try:
        return parse_digit_spec(value)
    except InvalidArgumentError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pi-chudnovsky",
        description="Compute digits of π (Chudnovsky + binary splitting, gmpy2).",
    )
    parser.add_argument("spec", nargs="?", type=_digit_spec, help="number of digits, e.g. 1K, 10M, 1e6")
    parser.add_argument("-d", "--digits", "-c", "--calculate", dest="digits", type=_digit_spec)
    parser.add_argument("--checkpoint", metavar="PATH", help="checkpoint file for resumable runs")
    parser.add_argument("--workers", type=int, help="worker threads (default: CPU count)")
    parser.add_argument("--verify", metavar="REFERENCE_FILE", help="compare against reference digits")
    parser.add_argument(
        "--resume-or-fail",
        action="store_true",
        help="fail instead of restarting when the checkpoint is missing or unusable",
    )
    parser.add_argument("--output", "-o", metavar="FILE", help="write digits to FILE instead of stdout")
    parser.add_argument("--no-progress", action="store_true", help="do not render progress")
    parser.add_argument("--log-level", help="logging level (default from settings)")
    parser.add_argument("--log-format", choices=("text", "json"))
    return parser


# =========================
# Progress rendering
# =========================


class ProgressRenderer(threading.Thread):
    """Drains a QueueProgressSink and redraws one status line on stderr."""

    def __init__(self, sink: QueueProgressSink, out: Optional[TextIO] = None) -> None:
        super().__init__(name="progress-renderer", daemon=True)
        self.sink = sink
        self.out = out if out is not None else sys.stderr
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.is_set():
            if self.sink.get(timeout=0.2) is None:
                continue
            self.sink.drain()
            self._draw()

    def _draw(self) -> None:
        event = self.sink.latest
        if event is None:
            return
        self.out.write(
            f"\r{event.fraction * 100:6.2f}%  "
            f"{event.completed_terms}/{event.total_terms} terms  {event.elapsed:.1f} s"
        )
        self.out.flush()

    def stop(self) -> None:
        self._stop_event.set()
        self.join()
        self._draw()
        self.out.write("\n")
        self.out.flush()


# =========================
# Main
# =========================


def _build_config(args: argparse.Namespace) -> EngineConfig:
    updates = {}
    if args.workers is not None:
        updates["workers"] = args.workers
    if args.log_level is not None:
        updates["log_level"] = args.log_level
    if args.log_format is not None:
        updates["log_format"] = args.log_format
    # model_copy(update=...) would skip validation.
    return EngineConfig.model_validate({**get_settings().model_dump(), **updates})


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_OK if e.code == 0 else EXIT_INVALID_ARGUMENT

    try:
        config = _build_config(args)
    except ValidationError as e:
        sys.stderr.write(f"Error: invalid configuration: {e}\n")
        return EXIT_INVALID_ARGUMENT

    setup_logging(config.log_level, config.log_format)

    digits = args.digits or args.spec or DEFAULT_DIGITS
    store = CheckpointStore(args.checkpoint) if args.checkpoint else None
    sink = QueueProgressSink()
    engine = PiEngine(config, progress=sink, store=store)

    reference = None
    if args.verify:
        try:
            reference = load_reference(args.verify)
        except OSError as e:
            sys.stderr.write(f"Error: cannot read reference file: {e}\n")
            return EXIT_INVALID_ARGUMENT

    renderer = None
    if not args.no_progress:
        renderer = ProgressRenderer(sink)
        renderer.start()

    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: engine.cancel())

    print(f"Calculating π to {digits} digits (gmpy2, Chudnovsky, {config.workers} workers)...")
    try:
        result = engine.compute(digits, require_resume=args.resume_or_fail)
    except InvalidArgumentError as e:
        sys.stderr.write(f"Error: {e}\n")
        return EXIT_INVALID_ARGUMENT
    except (CorruptCheckpointError, CheckpointNotFoundError) as e:
        sys.stderr.write(f"Error: checkpoint unusable: {e}\n")
        return EXIT_CHECKPOINT_CORRUPT
    except LimbCeilingExceeded as e:
        sys.stderr.write(f"Error: {e}\n")
        return EXIT_OVERFLOW
    except TaskFailure as e:
        sys.stderr.write(f"Error: {e}\n")
        return EXIT_TASK_FAILED
    finally:
        if renderer is not None:
            renderer.stop()
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    if not result.completed:
        saved = "checkpoint saved" if result.checkpoint_saved else "no new checkpoint"
        sys.stderr.write(f"Cancelled after {result.elapsed:.1f} s ({saved}).\n")
        return EXIT_CANCELLED

    print(f"Time: {result.elapsed:.4f} s")

    out = open(args.output, "w", encoding="utf-8") if args.output else sys.stdout
    collected = [] if reference is not None else None
    try:
        head = f"{result.stream.integer_part}."
        out.write(head)
        if collected is not None:
            collected.append(head)
        for group in result.stream:
            out.write(group)
            if collected is not None:
                collected.append(group)
        out.write("\n")
    finally:
        if out is not sys.stdout:
            out.close()

    if store is not None:
        store.discard()

    if collected is not None:
        digits_text = "".join(collected)
        if not verify_prefix(digits_text, reference):
            index = first_mismatch(digits_text, reference)
            sys.stderr.write(f"Verification FAILED at digit {index}\n")
            return EXIT_VERIFY_FAILED
        checked = min(len(normalize_digits(digits_text)), len(normalize_digits(reference)))
        print(f"Verified {checked} digits against reference.")

    return EXIT_OK


def run() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    run()
