"""
Chudnovsky series and binary splitting.

For a term range [a, b) the evaluator produces P(a, b), Q(a, b), T(a, b)
such that the partial sum over [a, b) is T(a, b) / Q(a, b), and over the
full range [0, N):

  π = (Q(0, N) * 426880 * sqrt(10005)) / T(0, N)

Everything here is integer arithmetic through the Arena, so results are
bit-identical on any hardware and for any evaluation order of the merges.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Optional

from gmpy2 import mpz

from .arena import Arena

# Chudnovsky constants
A = 13591409
B = 545140134
C = 640320
C3_OVER_24 = C ** 3 // 24  # 10939058860032000

# log10(C^3 / 1728): decimal digits gained per term.
DIGITS_PER_TERM = 14.181647462

DEFAULT_GUARD_TERMS = 5


class Triple(NamedTuple):
    """Exact contribution of a term range. Never mutated after creation."""

    P: mpz
    Q: mpz
    T: mpz


IDENTITY = Triple(mpz(1), mpz(1), mpz(0))


def term_count(digits: int, guard_terms: int = DEFAULT_GUARD_TERMS) -> int:
    """Number of series terms needed for `digits` decimal digits."""
    if digits < 1:
        raise ValueError("digits must be positive")
    if guard_terms < 0:
        raise ValueError("guard_terms must be >= 0")
    return math.ceil(digits / DIGITS_PER_TERM) + guard_terms


class ChudnovskySeries:
    """Closed-form integer coefficients of the Chudnovsky series."""

    name = "chudnovsky"

    def term(self, k: int) -> Triple:
        if k == 0:
            return Triple(mpz(1), mpz(1), mpz(A))

        k = mpz(k)

        # P_k = (6k - 5)(2k - 1)(6k - 1)
        P = (6 * k - 5) * (2 * k - 1) * (6 * k - 1)

        # Q_k = k^3 * C^3 / 24
        Q = k * k * k * C3_OVER_24

        # T_k = (-1)^k * (13591409 + 545140134 k) * P_k
        val = A + B * k
        if k % 2 == 1:
            val = -val
        T = val * P

        return Triple(P, Q, T)


class SeriesEvaluator:
    """Binary splitting over a series, using Arena arithmetic."""

    def __init__(self, arena: Arena, series: Optional[ChudnovskySeries] = None) -> None:
        self.arena = arena
        self.series = series if series is not None else ChudnovskySeries()

    def base_case(self, a: int) -> Triple:
        P, Q, T = self.series.term(a)
        for value in (P, Q, T):
            self.arena.check(value)
        return Triple(P, Q, T)

    def merge(self, left: Triple, right: Triple) -> Triple:
        """
        Combine [a, m) and [m, b) into [a, b):

          P = P1 * P2
          Q = Q1 * Q2
          T = T1 * Q2 + P1 * T2
        """
        P1, Q1, T1 = left
        P2, Q2, T2 = right
        mul = self.arena.multiply
        return Triple(
            mul(P1, P2),
            mul(Q1, Q2),
            self.arena.add(mul(T1, Q2), mul(P1, T2)),
        )

    def evaluate(self, a: int, b: int) -> Triple:
        """P, Q, T for [a, b), splitting at the midpoint."""
        if a > b:
            raise ValueError(f"invalid term range [{a}, {b})")
        if a == b:
            return IDENTITY
        if b - a == 1:
            return self.base_case(a)
        m = (a + b) // 2
        return self.merge(self.evaluate(a, m), self.evaluate(m, b))
