"""
Digit extraction.

From the final (P, Q, T) over [0, N):

  π = (Q * 426880 * sqrt(10005)) / T

sqrt(10005) is taken as S / 10^p with S = isqrt(10005 * 10^(2p)), so

  floor(π * 10^d) = floor((Q * 426880 * S) / (T * 10^(p - d)))

is a single exact integer division. Its decimal expansion is then emitted
lazily, one fixed-size group at a time, by splitting the integer top-down at
powers of ten.
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Tuple

import gmpy2
from gmpy2 import mpz

from .arena import Arena
from .series import Triple

DEFAULT_GROUP_SIZE = 1000
DEFAULT_SQRT_MARGIN = 10


class DigitStream:
    """
    Lazy, finite, single-pass sequence of digit groups after the decimal point.

    Iterating yields strings of `group_size` digits (the last one may be
    shorter). The stream cannot be restarted: once consumed it yields
    nothing, and the digits have to be re-derived from the source triple.
    """

    def __init__(self, integer_part: str, groups: Iterator[str], digit_count: int) -> None:
        self.integer_part = integer_part
        self.digit_count = digit_count
        self._groups = groups
        self.consumed = 0

    def __iter__(self) -> "DigitStream":
        return self

    def __next__(self) -> str:
        group = next(self._groups)
        self.consumed += len(group)
        return group

    def read_all(self) -> str:
        """Drain the stream into "3.<digits>"."""
        return f"{self.integer_part}." + "".join(self)


def _pow10(n: int, cache: Dict[int, mpz]) -> mpz:
    power = cache.get(n)
    if power is None:
        power = mpz(10) ** n
        cache[n] = power
    return power


class DigitExtractor:
    """
    Turns a final triple into digits. Holds no per-computation state:
    powers of ten are cached only for the lifetime of one stream.
    """

    def __init__(
        self,
        arena: Arena,
        group_size: int = DEFAULT_GROUP_SIZE,
        sqrt_margin: int = DEFAULT_SQRT_MARGIN,
    ) -> None:
        if group_size < 1:
            raise ValueError("group_size must be >= 1")
        self.arena = arena
        self.group_size = group_size
        self.sqrt_margin = sqrt_margin

    def scaled_pi(self, triple: Triple, digits: int) -> mpz:
        """floor(π * 10^digits) from the final triple."""
        _P, Q, T = triple
        if T == 0:
            raise ValueError("T is zero; triple does not start at term 0")
        p = digits + self.sqrt_margin

        # S = floor(sqrt(10005) * 10^p) exactly
        S = gmpy2.isqrt(10005 * mpz(10) ** (2 * p))

        mul = self.arena.multiply
        num = mul(mul(Q, 426880), S)
        den = mul(T, mpz(10) ** (p - digits))
        return self.arena.divide(num, den)

    def extract(self, triple: Triple, digits: int, keep: Optional[int] = None) -> DigitStream:
        """
        Compute `digits` decimals and stream the first `keep` of them
        (all by default). Trailing digits beyond `keep` are guard digits:
        they absorb the truncation error and are never emitted.
        """
        if digits < 1:
            raise ValueError("digits must be positive")
        keep = digits if keep is None else keep
        if not 1 <= keep <= digits:
            raise ValueError("keep must be between 1 and digits")

        scaled = self.scaled_pi(triple, digits)
        powers: Dict[int, mpz] = {}
        if keep < digits:
            scaled = self.arena.divide(scaled, _pow10(digits - keep, powers))
        integer_part, fraction = self.arena.divmod(scaled, _pow10(keep, powers))
        return DigitStream(gmpy2.digits(integer_part), self._groups(fraction, keep, powers), keep)

    def _groups(self, value: mpz, width: int, powers: Dict[int, mpz]) -> Iterator[str]:
        """
        Yield the `width`-digit zero-padded expansion of `value` in groups,
        most significant first. Each split hands the high part a whole
        number of groups so every group but the last is full-sized.
        """
        g = self.group_size
        stack: List[Tuple[mpz, int]] = [(value, width)]
        while stack:
            v, w = stack.pop()
            if w <= g:
                yield gmpy2.digits(v).zfill(w)
                continue
            groups = -(-w // g)
            high_width = (groups // 2) * g
            low_width = w - high_width
            high, low = self.arena.divmod(v, _pow10(low_width, powers))
            stack.append((low, low_width))
            stack.append((high, high_width))
