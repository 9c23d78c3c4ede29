"""
Galois Field GF(2^m) Arithmetic

Reed-Solomon codes operate over finite fields (Galois fields). The
simulator supports GF(2^m) for 3 <= m <= 16; the default link codec
uses GF(2^8) with primitive polynomial p(x) = x^8 + x^4 + x^3 + x^2 + 1.

In GF(2^m):
- Addition is XOR
- Multiplication uses the primitive polynomial for reduction
- Each non-zero element can be represented as α^i for generator α = 2

The field has 2^m elements: {0, 1, α, α^2, ..., α^(2^m - 2)}
where α^(2^m - 1) = 1 (cyclic).
"""

from typing import Optional

import numpy as np

from .errors import InvalidParameterError


# Default primitive polynomials, indexed by symbol size m
PRIMITIVE_POLYNOMIALS = {
    3: 0x0B,      # x^3 + x + 1
    4: 0x13,      # x^4 + x + 1
    5: 0x25,      # x^5 + x^2 + 1
    6: 0x43,      # x^6 + x + 1
    7: 0x89,      # x^7 + x^3 + 1
    8: 0x11D,     # x^8 + x^4 + x^3 + x^2 + 1
    9: 0x211,     # x^9 + x^4 + 1
    10: 0x409,    # x^10 + x^3 + 1
    11: 0x805,    # x^11 + x^2 + 1
    12: 0x1053,   # x^12 + x^6 + x^4 + x + 1
    13: 0x201B,   # x^13 + x^4 + x^3 + x + 1
    14: 0x4443,   # x^14 + x^10 + x^6 + x + 1
    15: 0x8003,   # x^15 + x + 1
    16: 0x1100B,  # x^16 + x^12 + x^3 + x + 1
}

MIN_SYMBOL_SIZE = 3
MAX_SYMBOL_SIZE = 16


class GaloisField:
    """
    Galois Field GF(2^m) with table-driven arithmetic.

    The primitive element α = 0x02 generates all non-zero elements.

    Attributes:
        m: Symbol size in bits
        size: Number of field elements (2^m)
        order: Multiplicative group order (2^m - 1)
        exp_table: α^i, duplicated so exp[log a + log b] needs no modulo
        log_table: log_α(x) (log[0] is undefined and stored as 0)
        inv_table: Multiplicative inverses (inv[0] = 0)

    Example:
        >>> gf = GaloisField(8)
        >>> product = gf.multiply(0x53, 0xCA)
        >>> assert gf.multiply(product, gf.inverse(0xCA)) == 0x53
    """

    PRIMITIVE = 0x02

    def __init__(self, m: int = 8, primitive_poly: Optional[int] = None):
        """
        Initialize lookup tables.

        Args:
            m: Symbol size in bits (3..16)
            primitive_poly: Field polynomial including the x^m term;
                            defaults to PRIMITIVE_POLYNOMIALS[m]

        Raises:
            InvalidParameterError: If m is out of range or the polynomial
                                   is not a primitive polynomial of degree m
        """
        if not MIN_SYMBOL_SIZE <= m <= MAX_SYMBOL_SIZE:
            raise InvalidParameterError(
                f"Symbol size must be in [{MIN_SYMBOL_SIZE}, {MAX_SYMBOL_SIZE}], got {m}")

        if primitive_poly is None:
            primitive_poly = PRIMITIVE_POLYNOMIALS[m]

        if primitive_poly.bit_length() - 1 != m:
            raise InvalidParameterError(
                f"Primitive polynomial 0x{primitive_poly:X} does not have degree {m}")

        self.m = m
        self.size = 1 << m
        self.order = self.size - 1
        self.primitive_poly = primitive_poly

        self.exp_table, self.log_table, self.inv_table = self._build_tables()

    def _build_tables(self):
        """
        Build exponent, logarithm and inverse tables.

        exp_table[i] = α^i mod p(x), for 0 <= i < 2*(2^m - 1)
        log_table[n] = i where α^i = n
        inv_table[n] = α^(order - log n)
        """
        exp_table = np.zeros(2 * self.size, dtype=np.int64)
        log_table = np.zeros(self.size, dtype=np.int64)

        x = 1
        for i in range(self.order):
            if i > 0 and x == 1:
                raise InvalidParameterError(
                    f"Polynomial 0x{self.primitive_poly:X} is not primitive "
                    f"(α has order {i})")
            exp_table[i] = x
            exp_table[i + self.order] = x
            log_table[x] = i

            # Multiply by α and reduce
            x <<= 1
            if x & self.size:
                x ^= self.primitive_poly

        if x != 1:
            raise InvalidParameterError(
                f"Polynomial 0x{self.primitive_poly:X} is not primitive")

        log_table[0] = 0

        inv_table = np.zeros(self.size, dtype=np.int64)
        nonzero = np.arange(1, self.size)
        inv_table[1:] = exp_table[self.order - log_table[nonzero]]

        return exp_table, log_table, inv_table

    # ------------------------------------------------------------------
    # Scalar arithmetic
    # ------------------------------------------------------------------

    def add(self, a: int, b: int) -> int:
        """Addition in GF(2^m) is XOR."""
        return a ^ b

    # Subtraction is same as addition in GF(2^m)
    subtract = add

    def multiply(self, a: int, b: int) -> int:
        """a * b = exp(log(a) + log(b))."""
        if a == 0 or b == 0:
            return 0
        return int(self.exp_table[self.log_table[a] + self.log_table[b]])

    def multiply_slow(self, a: int, b: int) -> int:
        """Carry-less multiply with reduction (reference for table checks)."""
        result = 0
        while b:
            if b & 1:
                result ^= a
            a <<= 1
            if a & self.size:
                a ^= self.primitive_poly
            b >>= 1
        return result

    def divide(self, a: int, b: int) -> int:
        """a / b = exp(log(a) - log(b)); 0 when either operand is 0."""
        if a == 0 or b == 0:
            return 0
        return int(self.exp_table[self.log_table[a] - self.log_table[b] + self.order])

    def inverse(self, a: int) -> int:
        """Multiplicative inverse, exp(order - log(a)); inverse(0) is 0."""
        return int(self.inv_table[a])

    def power(self, a: int, n: int) -> int:
        """a^n; 0^n is 0 for every n (including n = 0)."""
        if a == 0:
            return 0
        return int(self.exp_table[(int(self.log_table[a]) * n) % self.order])

    def exp(self, i: int) -> int:
        """α^i for any integer i."""
        return int(self.exp_table[i % self.order])

    def log(self, a: int) -> int:
        """
        Discrete logarithm base α.

        Raises:
            ValueError: If a is zero
        """
        if a == 0:
            raise ValueError("log(0) is undefined")
        return int(self.log_table[a])

    # ------------------------------------------------------------------
    # Vectorised arithmetic
    # ------------------------------------------------------------------

    def multiply_array(self, a, b) -> np.ndarray:
        """Element-wise product of two arrays (or array and scalar)."""
        a = np.asarray(a, dtype=np.int64)
        b = np.asarray(b, dtype=np.int64)
        result = self.exp_table[self.log_table[a] + self.log_table[b]]
        return np.where((a == 0) | (b == 0), 0, result)

    def scale(self, poly: np.ndarray, c: int) -> np.ndarray:
        """Multiply every coefficient by scalar c."""
        if c == 0:
            return np.zeros_like(poly)
        return self.multiply_array(poly, c)

    # ------------------------------------------------------------------
    # Polynomials (coefficient i multiplies x^i)
    # ------------------------------------------------------------------

    def poly_multiply(self, p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
        """Product of two polynomials, low degree first."""
        result = np.zeros(len(p1) + len(p2) - 1, dtype=np.int64)
        for i, c1 in enumerate(p1):
            if c1:
                result[i:i + len(p2)] ^= self.scale(np.asarray(p2, dtype=np.int64), int(c1))
        return result

    def poly_eval(self, poly: np.ndarray, x: int) -> int:
        """Evaluate a low-degree-first polynomial at x (Horner)."""
        result = 0
        for coef in reversed(poly):
            result = self.multiply(result, x) ^ int(coef)
        return result

    def __repr__(self) -> str:
        return f"GaloisField(m={self.m}, poly=0x{self.primitive_poly:X})"
