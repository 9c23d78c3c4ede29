"""
Regular LDPC Codes with Sum-Product Decoding

Low-density parity-check codes defined by a sparse parity-check matrix
H (m x n, m = n - k). Every valid codeword c satisfies H·c = 0 (mod 2).

Construction:
- (d_v, d_c) chosen from the code rate: 1/2 -> (3,6), 2/3 -> (4,12),
  3/4 -> (5,20), 5/6 -> (6,36); the graph must balance, n·d_v = m·d_c
- Cyclic-shift edge placement: variable v, edge d goes to check
  (v·d_v + d + d·ceil(m/d_v)) mod m, probing linearly past collisions
- Systematic generator G = [I | P] from GF(2) Gauss-Jordan elimination
  of the parity columns; columns are swapped where a parity column has
  no pivot, and H is permuted to match

Decoding is log-domain belief propagation over the Tanner graph:

    check:    m_c->v = ∏ sign(m_v'->c) · φ^-1( Σ φ(|m_v'->c|) ),  v' ≠ v
    variable: m_v->c = L_ch(v) + Σ m_c'->v,                        c' ≠ c
    φ(x) = -log tanh(x/2)

Messages live in flat edge arrays ordered by check node (the CSR order
of H), and the extrinsic sums are computed as total minus own.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from .SparseMatrix import SparseMatrix
from .errors import InvalidParameterError
from .log import LogLevel, get_logger


MAX_CODE_LENGTH = 8192
DEFAULT_MAX_ITERATIONS = 100
DEFAULT_CONVERGENCE_THRESHOLD = 1e-6
HARD_DECISION_LLR = 10.0

# Rate -> (variable degree, check degree), d_c = d_v / (1 - rate)
DEGREE_DISTRIBUTIONS = {
    (1, 2): (3, 6),
    (2, 3): (4, 12),
    (3, 4): (5, 20),
    (5, 6): (6, 36),
}

# Rate -> ((n, k) short, (n, k) long)
LDPC_STANDARD_PARAMS = {
    (1, 2): ((1024, 512), (2048, 1024)),
    (2, 3): ((1536, 1024), (3072, 2048)),
    (3, 4): ((2048, 1536), (4096, 3072)),
    (5, 6): ((3072, 2560), (6144, 5120)),
}

_RATE_TOLERANCE = 0.01

_log = get_logger("LDPC")


def _match_rate(rate: float) -> Optional[Tuple[int, int]]:
    for key in DEGREE_DISTRIBUTIONS:
        if abs(rate - key[0] / key[1]) < _RATE_TOLERANCE:
            return key
    return None


def degrees_for_rate(rate: float) -> Tuple[int, int]:
    """(d_v, d_c) for a code rate; unsupported rates fall back to (3, 6)."""
    key = _match_rate(rate)
    if key is None:
        _log.warning("Unsupported LDPC rate %.3f, using (3,6) degrees", rate)
        return DEGREE_DISTRIBUTIONS[(1, 2)]
    return DEGREE_DISTRIBUTIONS[key]


def nearest_standard_rate(rate: float) -> float:
    """Supported code rate closest to rate (ties go to the lower rate)."""
    key = min(DEGREE_DISTRIBUTIONS, key=lambda r: (abs(rate - r[0] / r[1]), r[0] / r[1]))
    return key[0] / key[1]


def ldpc_standard_params(rate: float, long: bool = False) -> Tuple[int, int]:
    """
    Standard (n, k) for a code rate.

    Unknown rates get the rate-1/2 short code (n = 1024).
    """
    key = _match_rate(rate)
    if key is None:
        _log.warning("No standard LDPC code for rate %.3f, using (1024, 512)", rate)
        key = (1, 2)
    short, lng = LDPC_STANDARD_PARAMS[key]
    return lng if long else short


def hard_to_llr(bits: np.ndarray, magnitude: float = HARD_DECISION_LLR) -> np.ndarray:
    """Bit 0 -> +magnitude, bit 1 -> -magnitude."""
    bits = np.asarray(bits, dtype=np.float64)
    return magnitude * (1.0 - 2.0 * bits)


def llr_to_hard(llr: np.ndarray) -> np.ndarray:
    return (np.asarray(llr) < 0).astype(np.uint8)


def phi(x: np.ndarray) -> np.ndarray:
    """
    φ(x) = -log(tanh(x/2)) with guarded regions.

    x < 1e-10 -> 10, x > 10 -> exp(-x), tanh underflow -> 10.
    """
    x = np.asarray(x, dtype=np.float64)
    mid = np.clip(x, 1e-10, 10.0)
    t = np.tanh(mid / 2.0)
    with np.errstate(divide='ignore'):
        value = np.where(t <= 1e-10, 10.0, -np.log(np.maximum(t, 1e-300)))
    value = np.where(x > 10.0, np.exp(-np.minimum(x, 700.0)), value)
    return np.where(x < 1e-10, 10.0, value)


def phi_inverse(s: np.ndarray) -> np.ndarray:
    """
    φ^-1(s) = 2·atanh(exp(-s)) with guarded regions.

    s < 1e-10 -> 10, s > 10 -> exp(-s), atanh saturation -> 10.
    """
    s = np.asarray(s, dtype=np.float64)
    e = np.exp(-np.clip(s, 1e-10, 10.0))
    saturated = e >= 1.0 - 1e-10
    value = np.where(saturated, 10.0, 2.0 * np.arctanh(np.where(saturated, 0.0, e)))
    value = np.where(s > 10.0, np.exp(-np.minimum(s, 700.0)), value)
    return np.where(s < 1e-10, 10.0, value)


@dataclass
class LDPCResult:
    """Outcome of one LDPC decode."""
    data: np.ndarray              # k information bits
    codeword: np.ndarray          # n hard-decision bits
    converged: bool = False
    iterations: int = 0
    errors_corrected: int = 0
    syndrome_weight: int = 0


class LDPCCode:
    """
    Regular LDPC code with systematic encoder and sum-product decoder.

    Attributes:
        n, k, m: Code length, information bits, parity checks
        H: Parity-check matrix (SparseMatrix, m x n)
        G: Generator matrix (SparseMatrix, k x n), G = [I | P]
        var_deg, chk_deg: Node degrees
        var_to_check, check_to_var: Adjacency lists
        column_permutation: Original H column index of each position

    Example:
        >>> code = LDPCCode(1024, 512)
        >>> codeword = code.encode(info_bits)
        >>> result = code.decode(codeword)
        >>> assert result.converged and result.iterations == 1
    """

    def __init__(self, n: int, k: int,
                 max_iterations: int = DEFAULT_MAX_ITERATIONS,
                 convergence_threshold: float = DEFAULT_CONVERGENCE_THRESHOLD,
                 log_level: LogLevel = LogLevel.WARN):
        self.log = get_logger("LDPC", log_level)

        if not 0 < k < n:
            raise InvalidParameterError(f"Need n > k > 0, got n={n}, k={k}")
        if n > MAX_CODE_LENGTH:
            raise InvalidParameterError(f"Code length {n} exceeds {MAX_CODE_LENGTH}")
        if max_iterations <= 0:
            raise InvalidParameterError(f"max_iterations must be positive, got {max_iterations}")

        self.n = n
        self.k = k
        self.m = n - k
        self.max_iterations = max_iterations
        self.convergence_threshold = convergence_threshold

        self.dv, self.dc = degrees_for_rate(k / n)
        if n * self.dv != self.m * self.dc:
            raise InvalidParameterError(
                f"Unbalanced Tanner graph: n*dv = {n * self.dv} != m*dc = {self.m * self.dc}")

        self.H = self._construct_parity_check()
        self.column_permutation = np.arange(n)
        self._build_tanner_graph()

        self._parity_packed, self.G = self._construct_generator()

        self.log.info("LDPC(%d,%d) built: dv=%d, dc=%d, H nnz=%d, G nnz=%d",
                      n, k, self.dv, self.dc, self.H.nnz, self.G.nnz)

    @property
    def rate(self) -> float:
        return self.k / self.n

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _construct_parity_check(self) -> SparseMatrix:
        """Cyclic-shift placement of d_v edges per variable node."""
        m = self.m
        shift = math.ceil(m / self.dv)
        H = SparseMatrix(m, self.n, self.n * self.dv)

        for v in range(self.n):
            for d in range(self.dv):
                check = ((v * self.dv + d) % m + d * shift) % m
                tries = 0
                while H.has(check, v):
                    check = (check + 1) % m
                    tries += 1
                    if tries >= m:
                        raise InvalidParameterError(
                            f"Cannot place {self.dv} edges for variable {v} in {m} checks")
                H.set(check, v, 1)

        H.to_csr()
        return H

    def _build_tanner_graph(self) -> None:
        """Degrees, adjacency lists and flat edge arrays from H's CSR form."""
        H = self.H
        H.to_csr()

        self.chk_deg = H.row_degrees()
        self.var_deg = H.col_degrees()

        self.edge_check = np.repeat(np.arange(self.m), self.chk_deg)
        self.edge_var = H.col_indices.copy()

        self.check_to_var: List[np.ndarray] = [H.row(c) for c in range(self.m)]

        order = np.argsort(self.edge_var, kind='stable')
        var_ptr = np.zeros(self.n + 1, dtype=np.int64)
        np.cumsum(self.var_deg, out=var_ptr[1:])
        checks_by_var = self.edge_check[order]
        self.var_to_check: List[np.ndarray] = [
            checks_by_var[var_ptr[v]:var_ptr[v + 1]] for v in range(self.n)
        ]

    def _construct_generator(self) -> Tuple[np.ndarray, SparseMatrix]:
        """
        GF(2) Gauss-Jordan on the parity columns k..n-1.

        Rows are kept bit-packed. A parity column without a pivot is
        swapped with an information column that has one; if none exists
        (H is rank deficient) the parity bit is free and fixed to 0.

        Returns:
            (packed parity block P, generator SparseMatrix)
        """
        n, k, m = self.n, self.k, self.m
        A = np.packbits(self.H.to_dense(), axis=1)
        perm = np.arange(n)

        def column(c: int) -> np.ndarray:
            return (A[:, c >> 3] >> (7 - (c & 7))) & 1

        def set_column(c: int, bits: np.ndarray) -> None:
            mask = np.uint8(1 << (7 - (c & 7)))
            A[:, c >> 3] = np.where(bits.astype(bool), A[:, c >> 3] | mask,
                                    A[:, c >> 3] & ~mask)

        pivot_row_of: Dict[int, int] = {}
        pivot_row = 0
        # Once the information columns are zero below pivot_row they stay zero
        info_exhausted = False

        for col in range(k, n):
            if pivot_row >= m:
                break

            candidates = np.flatnonzero(column(col)[pivot_row:])
            if len(candidates) == 0:
                if info_exhausted:
                    continue
                # Swap in an information column with a usable pivot
                below = np.unpackbits(A[pivot_row:], axis=1)[:, :k]
                usable = np.flatnonzero(below.any(axis=0))
                if len(usable) == 0:
                    info_exhausted = True
                    continue
                info = int(usable[0])
                a, b = column(col).copy(), column(info).copy()
                set_column(col, b)
                set_column(info, a)
                perm[[col, info]] = perm[[info, col]]
                candidates = np.flatnonzero(column(col)[pivot_row:])

            r = pivot_row + int(candidates[0])
            if r != pivot_row:
                A[[pivot_row, r]] = A[[r, pivot_row]]

            hits = np.flatnonzero(column(col))
            hits = hits[hits != pivot_row]
            if len(hits):
                A[hits] ^= A[pivot_row]

            pivot_row_of[col] = pivot_row
            pivot_row += 1

        rank = pivot_row
        if rank < m:
            self.log.info("H has rank %d < m=%d; %d parity bits fixed to 0",
                          rank, m, m - rank)

        if not np.array_equal(perm, np.arange(n)):
            self._apply_permutation(perm)

        # P[i, j] = coefficient of info bit i in the equation of parity bit j
        dense = np.unpackbits(A, axis=1)[:, :n]
        P = np.zeros((k, m), dtype=np.uint8)
        for col, row in pivot_row_of.items():
            P[:, col - k] = dense[row, :k]

        G_dense = np.concatenate([np.eye(k, dtype=np.uint8), P], axis=1)
        G = SparseMatrix.from_dense(G_dense, capacity=int(G_dense.sum()))

        return np.packbits(P, axis=1), G

    def _apply_permutation(self, perm: np.ndarray) -> None:
        """Reorder H's columns so position j holds original column perm[j]."""
        inverse = np.empty_like(perm)
        inverse[perm] = np.arange(len(perm))

        rows, cols, vals = self.H.coo()
        H = SparseMatrix(self.m, self.n, self.H.capacity)
        for r, c, v in zip(rows, cols, vals):
            H.set(int(r), int(inverse[c]), int(v))
        H.to_csr()

        self.H = H
        self.column_permutation = perm
        self._build_tanner_graph()

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, info_bits: np.ndarray) -> np.ndarray:
        """
        Systematic encode: c = [u | u·P].

        Args:
            info_bits: k bits

        Returns:
            n-bit codeword
        """
        u = np.asarray(info_bits, dtype=np.uint8).ravel()
        if len(u) != self.k:
            raise InvalidParameterError(f"Need {self.k} information bits, got {len(u)}")
        if u.max(initial=0) > 1:
            raise InvalidParameterError("Information bits must be 0 or 1")

        ones = np.flatnonzero(u)
        if len(ones):
            parity_packed = np.bitwise_xor.reduce(self._parity_packed[ones], axis=0)
            parity = np.unpackbits(parity_packed)[:self.m]
        else:
            parity = np.zeros(self.m, dtype=np.uint8)

        return np.concatenate([u, parity]).astype(np.uint8)

    def syndrome(self, codeword: np.ndarray) -> np.ndarray:
        """H·c (mod 2)."""
        return self.H.multiply_vector_gf2(codeword)

    def is_codeword(self, codeword: np.ndarray) -> bool:
        return not self.syndrome(codeword).any()

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, received: np.ndarray,
               max_iterations: Optional[int] = None) -> LDPCResult:
        """
        Sum-product decode.

        Args:
            received: n hard bits (integer array) or n channel LLRs
                      (float array, positive favours 0)
            max_iterations: Override of the configured cap

        Returns:
            LDPCResult with the last hard decision; `converged` is False
            when the cap was reached with a non-zero syndrome

        Raises:
            InvalidParameterError: On a length mismatch or a cap below 1
        """
        received = np.asarray(received)
        if len(received) != self.n:
            raise InvalidParameterError(f"Need {self.n} values, got {len(received)}")

        if np.issubdtype(received.dtype, np.floating):
            channel_llr = received.astype(np.float64)
        else:
            channel_llr = hard_to_llr(received)

        received_hard = llr_to_hard(channel_llr)
        limit = self.max_iterations if max_iterations is None else max_iterations
        if limit <= 0:
            raise InvalidParameterError(f"max_iterations must be positive, got {limit}")

        edge_check = self.edge_check
        edge_var = self.edge_var
        m, n = self.m, self.n

        v2c = channel_llr[edge_var].copy()
        c2v = np.zeros(len(edge_var), dtype=np.float64)
        hard = received_hard
        syndrome = self.syndrome(hard)
        iterations = 0
        converged = False

        for iteration in range(limit):
            # Check node update
            magnitudes = phi(np.abs(v2c))
            total_phi = np.bincount(edge_check, weights=magnitudes, minlength=m)
            extrinsic_phi = np.maximum(total_phi[edge_check] - magnitudes, 0.0)

            negative = (v2c < 0).astype(np.int64)
            total_neg = np.bincount(edge_check, weights=negative, minlength=m).astype(np.int64)
            sign = np.where((total_neg[edge_check] - negative) % 2 == 1, -1.0, 1.0)
            c2v = sign * phi_inverse(extrinsic_phi)

            # Variable node update and posterior
            posterior = channel_llr + np.bincount(edge_var, weights=c2v, minlength=n)
            v2c = posterior[edge_var] - c2v

            hard = llr_to_hard(posterior)
            syndrome = self.syndrome(hard)
            iterations = iteration + 1

            if not syndrome.any():
                converged = True
                break

        errors_corrected = int(np.count_nonzero(hard[:self.k] != received_hard[:self.k]))
        if not converged:
            self.log.info("LDPC decode did not converge after %d iterations "
                          "(syndrome weight %d)", iterations, int(syndrome.sum()))

        return LDPCResult(
            data=hard[:self.k].copy(),
            codeword=hard,
            converged=converged,
            iterations=iterations,
            errors_corrected=errors_corrected,
            syndrome_weight=int(syndrome.sum()),
        )
