"""Shared fixtures: small engine configuration and reference digits."""

import pytest

from pi_chudnovsky.arena import Arena
from pi_chudnovsky.config import EngineConfig
from pi_chudnovsky.series import SeriesEvaluator

PI_50 = "3.14159265358979323846264338327950288419716939937510"

PI_200 = (
    "3."
    "1415926535897932384626433832795028841971693993751058209749445923078164062862089986280348253421170679"
    "8214808651328230664709384460955058223172535940812848111745028410270193852110555964462294895493038196"
)


@pytest.fixture
def pi_50():
    return PI_50


@pytest.fixture
def pi_200():
    return PI_200


@pytest.fixture
def small_config():
    """Tiny leaves and groups so a few hundred digits exercise the whole tree."""
    return EngineConfig(
        workers=2,
        leaf_terms=2,
        digit_group_size=16,
        checkpoint_interval_seconds=3600.0,
    )


@pytest.fixture
def arena():
    return Arena()


@pytest.fixture
def evaluator(arena):
    return SeriesEvaluator(arena)


@pytest.fixture
def checkpoint_path(tmp_path):
    return tmp_path / "pi.ckpt"
