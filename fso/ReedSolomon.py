"""
Reed-Solomon RS(n,k) Codec

Systematic Reed-Solomon codes over GF(2^m). The link simulator uses
RS(255,223,t=16) over GF(2^8) by default, or a shortened single
codeword RS(n, packet_size) when a packet fits in one codeword.

Properties:
- Input: k symbols (bytes for m = 8)
- Output: n symbols (k data + n-k parity)
- Correction capability: t = (n-k)/2 symbol errors
- Generator polynomial: g(x) = (x-α^fcr)(x-α^(fcr+1))...(x-α^(fcr+n-k-1))

Codeword layout: array position p holds the coefficient of x^(n-1-p).
The k data symbols therefore occupy the first k positions (the high
degree terms of d(x)·x^(n-k)) and the remainder of the division by
g(x) fills the last n-k positions.

Decoding:
1. Syndromes S_i = r(α^(fcr+i)), i = 0..2t-1
2. Berlekamp-Massey -> error locator Λ(x)
3. Chien search: Λ(α^-j) = 0 -> error at degree j
4. Forney: e_j = X_j^(1-fcr) Ω(X_j^-1) / Λ'(X_j^-1)
5. Correct, then re-verify the syndromes
"""

from typing import Optional, Tuple, Union

import numpy as np

from .GaloisField import GaloisField
from .errors import InvalidParameterError
from .log import LogLevel, get_logger


Symbols = Union[bytes, bytearray, np.ndarray, list]


class ReedSolomon:
    """
    Reed-Solomon RS(n,k) encoder/decoder.

    Attributes:
        n: Codeword length in symbols
        k: Message length in symbols
        t: Error correction capability
        fcr: First consecutive root exponent
        gf: Underlying GaloisField

    Example:
        >>> rs = ReedSolomon(255, 223)
        >>> encoded = rs.encode(message_223_bytes)
        >>> assert len(encoded) == 255
        >>> decoded, errors = rs.decode(encoded)
    """

    def __init__(self, n: int = 255, k: int = 223, symbol_size: int = 8,
                 primitive_poly: Optional[int] = None, fcr: int = 1,
                 use_fast: bool = True, log_level: LogLevel = LogLevel.WARN):
        """
        Initialize Reed-Solomon codec.

        Args:
            n: Codeword length (<= 2^m - 1)
            k: Message length (0 < k < n)
            symbol_size: Bits per symbol m (3..16)
            primitive_poly: Field polynomial (default for m when None)
            fcr: First consecutive root exponent (>= 0)
            use_fast: Shift-register encoder (True) or explicit long
                      division (False)
            log_level: Instance log level

        Raises:
            InvalidParameterError: On any invalid parameter
        """
        self.log = get_logger("ReedSolomon", log_level)
        self.gf = GaloisField(symbol_size, primitive_poly)

        if n > self.gf.order:
            raise InvalidParameterError(
                f"Codeword length {n} exceeds 2^{symbol_size} - 1 = {self.gf.order}")
        if not 0 < k < n:
            raise InvalidParameterError(f"Need n > k > 0, got n={n}, k={k}")
        if fcr < 0:
            raise InvalidParameterError(f"First consecutive root must be >= 0, got {fcr}")

        self.n = n
        self.k = k
        self.parity = n - k
        self.t = self.parity // 2
        self.fcr = fcr
        self.use_fast = use_fast

        # Generator polynomial, low degree first and high degree first
        self.generator = self._build_generator()
        self._generator_hf = self.generator[::-1].copy()

        # Exponent of α multiplying r_p in syndrome i: (n-1-p)*(fcr+i)
        degrees = np.arange(n - 1, -1, -1, dtype=np.int64)
        roots = np.arange(self.fcr, self.fcr + self.parity, dtype=np.int64)
        self._syndrome_exponents = np.outer(roots, degrees) % self.gf.order

        self.log.debug("RS(%d,%d) over GF(2^%d), t=%d, fcr=%d",
                       n, k, symbol_size, self.t, fcr)

    def _build_generator(self) -> np.ndarray:
        """
        Build generator polynomial.

        g(x) = ∏_{i=0}^{n-k-1} (x - α^(fcr+i))

        Returns:
            Generator coefficients (low degree first, monic)
        """
        g = np.array([1], dtype=np.int64)
        for i in range(self.parity):
            root = self.gf.exp(self.fcr + i)
            g = self.gf.poly_multiply(g, np.array([root, 1], dtype=np.int64))
        return g

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def _to_symbols(self, data: Symbols, length: int, what: str) -> np.ndarray:
        if isinstance(data, (bytes, bytearray)):
            symbols = np.frombuffer(bytes(data), dtype=np.uint8).astype(np.int64)
        else:
            symbols = np.asarray(data, dtype=np.int64).ravel()

        if len(symbols) != length:
            raise InvalidParameterError(f"{what} must be {length} symbols, got {len(symbols)}")
        if len(symbols) and (symbols.min() < 0 or symbols.max() >= self.gf.size):
            raise InvalidParameterError(f"{what} contains symbols outside GF(2^{self.gf.m})")
        return symbols

    def _from_symbols(self, symbols: np.ndarray):
        if self.gf.m <= 8:
            return symbols.astype(np.uint8).tobytes()
        return symbols.astype(np.int64)

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, message: Symbols):
        """
        Encode message systematically.

        Args:
            message: k symbols

        Returns:
            n-symbol codeword (bytes for m <= 8, int array otherwise)
        """
        message = self._to_symbols(message, self.k, "Message")

        if self.use_fast:
            parity = self._encode_fast(message)
        else:
            parity = self._encode_slow(message)

        return self._from_symbols(np.concatenate([message, parity]))

    def _encode_fast(self, message: np.ndarray) -> np.ndarray:
        """
        Shift-register division by g(x).

        Returns:
            Parity symbols
        """
        taps = self._generator_hf[1:]
        reg = np.zeros(self.parity, dtype=np.int64)

        for symbol in message:
            feedback = int(symbol) ^ int(reg[0])
            reg[:-1] = reg[1:]
            reg[-1] = 0
            if feedback:
                reg ^= self.gf.scale(taps, feedback)

        return reg

    def _encode_slow(self, message: np.ndarray) -> np.ndarray:
        """
        Explicit long division of d(x)·x^(n-k) by g(x).

        The working buffer spans all n positions, so the feedback written
        at step i reaches index i + (n-k) <= n - 1.

        Returns:
            Parity symbols
        """
        work = np.zeros(self.n, dtype=np.int64)
        work[:self.k] = message

        for i in range(self.k):
            coef = int(work[i])
            if coef:
                work[i:i + self.parity + 1] ^= self.gf.scale(self._generator_hf, coef)

        return work[self.k:]

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, received: Symbols) -> Tuple[object, int]:
        """
        Decode a received codeword.

        Args:
            received: n symbols

        Returns:
            Tuple of (k data symbols, errors corrected). The error count
            is -1 when the codeword is uncorrectable; the data is then
            the received systematic part unchanged.
        """
        r = self._to_symbols(received, self.n, "Codeword").copy()

        syndromes = self._calculate_syndromes(r)
        if not syndromes.any():
            return self._from_symbols(r[:self.k]), 0

        locator = self._berlekamp_massey(syndromes)
        num_errors = len(locator) - 1
        if num_errors > self.t:
            self.log.debug("BM found %d errors > t=%d", num_errors, self.t)
            return self._from_symbols(r[:self.k]), -1

        positions = self._chien_search(locator)
        if len(positions) != num_errors:
            self.log.debug("Chien found %d roots for degree-%d locator",
                           len(positions), num_errors)
            return self._from_symbols(r[:self.k]), -1

        magnitudes = self._forney_algorithm(syndromes, locator, positions)
        if magnitudes is None:
            return self._from_symbols(r[:self.k]), -1

        corrected = r.copy()
        for pos, mag in zip(positions, magnitudes):
            corrected[pos] ^= mag

        if self._calculate_syndromes(corrected).any():
            self.log.debug("Residual syndrome after correction")
            return self._from_symbols(r[:self.k]), -1

        return self._from_symbols(corrected[:self.k]), num_errors

    def _calculate_syndromes(self, r: np.ndarray) -> np.ndarray:
        """
        Calculate syndromes S_i = Σ_p r_p · α^((n-1-p)(fcr+i)).

        Returns:
            Array of 2t syndromes
        """
        gf = self.gf
        nonzero = r != 0
        if not nonzero.any():
            return np.zeros(self.parity, dtype=np.int64)

        logs = gf.log_table[r[nonzero]]
        terms = gf.exp_table[(self._syndrome_exponents[:, nonzero] + logs) % gf.order]
        return np.bitwise_xor.reduce(terms, axis=1)

    def _berlekamp_massey(self, syndromes: np.ndarray) -> np.ndarray:
        """
        Berlekamp-Massey algorithm for the error locator polynomial.

        Returns:
            Λ(x) coefficients, low degree first, trimmed to degree L
        """
        gf = self.gf
        size = self.parity + 1

        C = np.zeros(size, dtype=np.int64)
        B = np.zeros(size, dtype=np.int64)
        C[0] = 1
        B[0] = 1
        L = 0
        m = 1
        b = 1

        for r in range(self.parity):
            # Discrepancy
            d = int(syndromes[r])
            for i in range(1, L + 1):
                d ^= gf.multiply(int(C[i]), int(syndromes[r - i]))

            if d == 0:
                m += 1
                continue

            coef = gf.divide(d, b)
            update = np.zeros(size, dtype=np.int64)
            update[m:] = gf.scale(B[:size - m], coef)

            if 2 * L <= r:
                T = C.copy()
                C ^= update
                L = r + 1 - L
                B = T
                b = d
                m = 1
            else:
                C ^= update
                m += 1

        return C[:L + 1]

    def _chien_search(self, locator: np.ndarray) -> list:
        """
        Find roots of Λ(x) among α^-j, j = 0..n-1.

        Returns:
            Error positions (array indices n-1-j)
        """
        gf = self.gf
        degree = len(locator) - 1
        if degree == 0:
            return []

        j = np.arange(self.n, dtype=np.int64)
        powers = np.arange(degree + 1, dtype=np.int64)
        coeff_nz = locator != 0
        logs = gf.log_table[locator[coeff_nz]]

        # Λ_k · (α^-j)^k for every j and non-zero coefficient k
        exponents = (logs[None, :] - np.outer(j, powers[coeff_nz])) % gf.order
        values = np.bitwise_xor.reduce(gf.exp_table[exponents], axis=1)

        roots = np.flatnonzero(values == 0)
        return [self.n - 1 - int(root) for root in roots]

    def _forney_algorithm(self, syndromes: np.ndarray, locator: np.ndarray,
                          positions: list) -> Optional[list]:
        """
        Calculate error magnitudes.

        Ω(x) = S(x)·Λ(x) mod x^2t
        e_j = X_j^(1-fcr) · Ω(X_j^-1) / Λ'(X_j^-1)

        Returns:
            Magnitudes in the order of `positions`, or None if Λ' vanishes
        """
        gf = self.gf
        omega = gf.poly_multiply(syndromes, locator)[:self.parity]

        # Formal derivative: only odd powers survive in characteristic 2
        derivative = np.zeros(max(len(locator) - 1, 1), dtype=np.int64)
        for i in range(1, len(locator), 2):
            derivative[i - 1] = locator[i]

        magnitudes = []
        for pos in positions:
            degree = self.n - 1 - pos
            x_inv = gf.exp(-degree)
            numerator = gf.poly_eval(omega, x_inv)
            denominator = gf.poly_eval(derivative, x_inv)
            if denominator == 0:
                self.log.debug("Λ'(X^-1) = 0 at position %d", pos)
                return None
            magnitude = gf.divide(numerator, denominator)
            magnitude = gf.multiply(magnitude, gf.exp(degree * (1 - self.fcr)))
            magnitudes.append(magnitude)

        return magnitudes

    def check(self, codeword: Symbols) -> bool:
        """Return True when every syndrome of the codeword is zero."""
        r = self._to_symbols(codeword, self.n, "Codeword")
        return not self._calculate_syndromes(r).any()
