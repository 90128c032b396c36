"""
Big-integer arithmetic kernel.

- Values are gmpy2.mpz (GMP under the hood), viewed as a sign plus a
  little-endian sequence of 64-bit limbs.
- Multiplication switches from schoolbook to Karatsuba above a limb
  threshold; division switches from long division to a Newton-Raphson
  reciprocal above another one.
- Every result is checked against a limb ceiling so a runaway computation
  fails with LimbCeilingExceeded instead of exhausting memory.

All operations are pure: operands are never modified (mpz values are
immutable anyway), a new value is returned.
"""

from __future__ import annotations

import struct
from typing import NamedTuple, Sequence, Tuple, Union

import gmpy2
from gmpy2 import mpz

from .errors import LimbCeilingExceeded

LIMB_BITS = 64
LIMB_MASK = (1 << LIMB_BITS) - 1

# Newton iteration seed: leading bits of the divisor taken as one limb.
_SEED_BITS = 64

IntLike = Union[int, "mpz"]


class Limbs(NamedTuple):
    """Sign (-1, 0 or 1) and little-endian 64-bit magnitude limbs."""

    sign: int
    limbs: Tuple[int, ...]


def limb_count(x: IntLike) -> int:
    """Number of 64-bit limbs needed for |x| (0 for zero)."""
    return (mpz(x).bit_length() + LIMB_BITS - 1) // LIMB_BITS


def _magnitude_limbs(x: mpz) -> Tuple[int, ...]:
    n = limb_count(x)
    if n == 0:
        return ()
    raw = int(abs(x)).to_bytes(n * 8, "little")
    return struct.unpack(f"<{n}Q", raw)


def _join_limbs(limbs: Sequence[int]) -> mpz:
    if not limbs:
        return mpz(0)
    raw = struct.pack(f"<{len(limbs)}Q", *limbs)
    return mpz(int.from_bytes(raw, "little"))


def to_limbs(x: IntLike) -> Limbs:
    x = mpz(x)
    return Limbs(int(gmpy2.sign(x)), _magnitude_limbs(x))


def from_limbs(value: Limbs) -> mpz:
    sign, limbs = value
    if sign not in (-1, 0, 1):
        raise ValueError(f"sign must be -1, 0 or 1, got {sign}")
    for limb in limbs:
        if not 0 <= limb <= LIMB_MASK:
            raise ValueError(f"limb out of range: {limb}")
    mag = _join_limbs(limbs)
    if sign == 0 and mag != 0:
        raise ValueError("sign 0 with non-zero limbs")
    return -mag if sign < 0 else mag


class Arena:
    """
    Exact arithmetic over signed integers with algorithm selection by size.

    karatsuba_threshold: operands with fewer limbs than this (either one)
                         use schoolbook multiplication.
    newton_threshold:    divisors with at least this many limbs use a
                         Newton-Raphson reciprocal.
    max_limbs:           hard ceiling on the limb count of any result.
    """

    def __init__(
        self,
        karatsuba_threshold: int = 32,
        newton_threshold: int = 64,
        max_limbs: int = 1 << 26,
    ) -> None:
        if karatsuba_threshold < 2:
            raise ValueError("karatsuba_threshold must be >= 2")
        if newton_threshold < 2:
            raise ValueError("newton_threshold must be >= 2")
        if max_limbs < 1:
            raise ValueError("max_limbs must be >= 1")
        self.karatsuba_threshold = karatsuba_threshold
        self.newton_threshold = newton_threshold
        self.max_limbs = max_limbs

    @classmethod
    def from_config(cls, config) -> "Arena":
        return cls(
            karatsuba_threshold=config.karatsuba_threshold,
            newton_threshold=config.newton_threshold,
            max_limbs=config.max_limbs,
        )

    def check(self, x: mpz) -> mpz:
        n = limb_count(x)
        if n > self.max_limbs:
            raise LimbCeilingExceeded(n, self.max_limbs)
        return x

    # =========================
    # Additive operations
    # =========================

    def add(self, a: IntLike, b: IntLike) -> mpz:
        return self.check(mpz(a) + mpz(b))

    def subtract(self, a: IntLike, b: IntLike) -> mpz:
        return self.check(mpz(a) - mpz(b))

    def negate(self, a: IntLike) -> mpz:
        return -mpz(a)

    # =========================
    # Multiplication
    # =========================

    def multiply(self, a: IntLike, b: IntLike) -> mpz:
        a = mpz(a)
        b = mpz(b)
        # Cheap pre-check: the product needs at least (la + lb - 1) limbs.
        la, lb = limb_count(a), limb_count(b)
        if la and lb and la + lb - 1 > self.max_limbs:
            raise LimbCeilingExceeded(la + lb - 1, self.max_limbs)
        product = self._multiply_magnitudes(abs(a), abs(b))
        if (a < 0) != (b < 0):
            product = -product
        return self.check(product)

    def _multiply_magnitudes(self, x: mpz, y: mpz) -> mpz:
        lx, ly = limb_count(x), limb_count(y)
        if min(lx, ly) < self.karatsuba_threshold:
            return self._schoolbook(x, y)
        return self._karatsuba(x, y, max(lx, ly))

    @staticmethod
    def _schoolbook(x: mpz, y: mpz) -> mpz:
        """Row-wise product: x times each limb of the shorter operand."""
        if x.bit_length() < y.bit_length():
            x, y = y, x
        acc = mpz(0)
        for i, limb in enumerate(_magnitude_limbs(y)):
            if limb:
                acc += (x * limb) << (i * LIMB_BITS)
        return acc

    def _karatsuba(self, x: mpz, y: mpz, n: int) -> mpz:
        """
        Karatsuba on limb boundaries:

          x = x1 * B + x0, y = y1 * B + y0, B = 2^(64 * floor(n/2))
          x*y = z2 * B^2 + (z1 - z2 - z0) * B + z0
          z2 = x1*y1, z0 = x0*y0, z1 = (x1 + x0)(y1 + y0)
        """
        shift = (n // 2) * LIMB_BITS
        mask = (mpz(1) << shift) - 1
        x1, x0 = x >> shift, x & mask
        y1, y0 = y >> shift, y & mask

        z2 = self._multiply_magnitudes(x1, y1)
        z0 = self._multiply_magnitudes(x0, y0)
        z1 = self._multiply_magnitudes(x1 + x0, y1 + y0) - z2 - z0

        return (z2 << (2 * shift)) + (z1 << shift) + z0

    # =========================
    # Division
    # =========================

    def divmod(self, a: IntLike, b: IntLike) -> Tuple[mpz, mpz]:
        """
        Truncating division: q = trunc(a / b), r = a - q*b.

        r has the sign of a (or is zero), |r| < |b|.
        """
        a = mpz(a)
        b = mpz(b)
        if b == 0:
            raise ZeroDivisionError("division by zero")

        mag_a, mag_b = abs(a), abs(b)
        lb = limb_count(mag_b)
        if mag_a < mag_b:
            q, r = mpz(0), mag_a
        elif lb == 1:
            q, r = self._short_divmod(mag_a, int(mag_b))
        elif lb < self.newton_threshold:
            q, r = gmpy2.t_divmod(mag_a, mag_b)
        else:
            q, r = self._newton_divmod(mag_a, mag_b)

        if (a < 0) != (b < 0):
            q = -q
        if a < 0:
            r = -r
        return self.check(q), r

    def divide(self, a: IntLike, b: IntLike) -> mpz:
        return self.divmod(a, b)[0]

    def remainder(self, a: IntLike, b: IntLike) -> mpz:
        return self.divmod(a, b)[1]

    @staticmethod
    def _short_divmod(a: mpz, d: int) -> Tuple[mpz, mpz]:
        """Long division of a by a single-limb divisor, most significant limb first."""
        limbs = _magnitude_limbs(a)
        out = [0] * len(limbs)
        rem = 0
        for i in range(len(limbs) - 1, -1, -1):
            out[i], rem = divmod((rem << LIMB_BITS) | limbs[i], d)
        return _join_limbs(out), mpz(rem)

    def _newton_divmod(self, a: mpz, b: mpz) -> Tuple[mpz, mpz]:
        k = a.bit_length() + 1
        x = self.reciprocal(b, k)
        q = self.multiply(a, x) >> k
        r = a - self.multiply(q, b)

        # x = floor(2^k / b) and a < 2^k leave q at most one short.
        while r < 0:
            q -= 1
            r += b
        while r >= b:
            q += 1
            r -= b
        return q, r

    def reciprocal(self, b: IntLike, k: int) -> mpz:
        """
        floor(2^k / b) for b > 0, by Newton-Raphson on the fixed-point
        reciprocal:

          x <- x + x * (2^k - b*x) / 2^k

        seeded from the leading 64 bits of b. The result is corrected with
        the residual e = 2^k - b*x until 0 <= e < b.
        """
        b = mpz(b)
        if b <= 0:
            raise ValueError("reciprocal needs a positive divisor")
        m = b.bit_length()
        one = mpz(1) << k
        if k <= m + _SEED_BITS:
            return one // b

        if m > _SEED_BITS:
            top = b >> (m - _SEED_BITS)
        else:
            top = b << (_SEED_BITS - m)
        seed = (mpz(1) << (2 * _SEED_BITS)) // top
        x = seed << (k - m - _SEED_BITS)

        # The seed carries ~62 good bits; each step doubles that.
        good, wanted = _SEED_BITS - 2, k - m + 4
        while good < wanted:
            e = one - self.multiply(b, x)
            x = x + (self.multiply(x, e) >> k)
            good *= 2

        e = one - self.multiply(b, x)
        while e < 0:
            x -= 1
            e += b
        while e >= b:
            x += 1
            e -= b
        return x
