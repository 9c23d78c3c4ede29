"""
Sparse Binary Matrices for LDPC Codes

Two synchronised representations:
- COO: unordered (row, col, value) triplets, used while building
- CSR: row_ptr / col_indices / values, used for message passing

The number of stored elements is bounded by a fixed capacity chosen at
construction. Inserting beyond it raises ResourceExhaustedError rather
than silently dropping entries.
"""

from typing import Dict, Tuple

import numpy as np
from scipy import sparse

from .errors import InvalidParameterError, ResourceExhaustedError


class SparseMatrix:
    """
    Sparse matrix over GF(2) (values are stored as small integers).

    Attributes:
        rows, cols: Matrix shape
        capacity: Maximum number of stored non-zeros
        row_ptr, col_indices, values: CSR arrays (valid after to_csr())

    Example:
        >>> H = SparseMatrix(3, 6, capacity=12)
        >>> H.set(0, 1)
        >>> H.to_csr()
        >>> syndrome = H.multiply_vector_gf2(codeword)
    """

    def __init__(self, rows: int, cols: int, capacity: int):
        if rows <= 0 or cols <= 0:
            raise InvalidParameterError(f"Invalid matrix shape {rows}x{cols}")
        if capacity <= 0:
            raise InvalidParameterError(f"Capacity must be positive, got {capacity}")

        self.rows = rows
        self.cols = cols
        self.capacity = capacity

        # COO storage
        self._coo_rows = np.zeros(capacity, dtype=np.int64)
        self._coo_cols = np.zeros(capacity, dtype=np.int64)
        self._coo_values = np.zeros(capacity, dtype=np.uint8)
        self._index: Dict[Tuple[int, int], int] = {}
        self.nnz = 0

        # CSR storage
        self.row_ptr = np.zeros(rows + 1, dtype=np.int64)
        self.col_indices = np.zeros(0, dtype=np.int64)
        self.values = np.zeros(0, dtype=np.uint8)
        self.csr_valid = False

    @property
    def shape(self) -> Tuple[int, int]:
        return self.rows, self.cols

    def _check_bounds(self, row: int, col: int) -> None:
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise InvalidParameterError(
                f"Index ({row}, {col}) outside {self.rows}x{self.cols} matrix")

    def set(self, row: int, col: int, value: int = 1) -> None:
        """
        Store value at (row, col), overwriting an existing entry.

        Raises:
            InvalidParameterError: If the index is out of range
            ResourceExhaustedError: If a new entry would exceed capacity
        """
        self._check_bounds(row, col)
        key = (row, col)
        slot = self._index.get(key)

        if slot is None:
            if self.nnz >= self.capacity:
                raise ResourceExhaustedError(
                    f"Sparse matrix capacity {self.capacity} exhausted")
            slot = self.nnz
            self._coo_rows[slot] = row
            self._coo_cols[slot] = col
            self._index[key] = slot
            self.nnz += 1

        self._coo_values[slot] = value
        self.csr_valid = False

    def get(self, row: int, col: int) -> int:
        self._check_bounds(row, col)
        slot = self._index.get((row, col))
        return 0 if slot is None else int(self._coo_values[slot])

    def has(self, row: int, col: int) -> bool:
        return (row, col) in self._index

    def to_csr(self) -> None:
        """Sort entries by (row, col) and build the CSR arrays."""
        rows = self._coo_rows[:self.nnz]
        cols = self._coo_cols[:self.nnz]
        vals = self._coo_values[:self.nnz]

        order = np.lexsort((cols, rows))
        rows, cols, vals = rows[order], cols[order], vals[order]

        # Keep COO in the same order so both views agree element by element
        self._coo_rows[:self.nnz] = rows
        self._coo_cols[:self.nnz] = cols
        self._coo_values[:self.nnz] = vals
        self._index = {(int(r), int(c)): i for i, (r, c) in enumerate(zip(rows, cols))}

        self.row_ptr = np.zeros(self.rows + 1, dtype=np.int64)
        np.cumsum(np.bincount(rows, minlength=self.rows), out=self.row_ptr[1:])
        self.col_indices = cols.copy()
        self.values = vals.copy()
        self.csr_valid = True

    def _require_csr(self) -> None:
        if not self.csr_valid:
            self.to_csr()

    def row(self, r: int) -> np.ndarray:
        """Column indices of non-zeros in row r."""
        self._require_csr()
        return self.col_indices[self.row_ptr[r]:self.row_ptr[r + 1]]

    def row_degrees(self) -> np.ndarray:
        self._require_csr()
        return np.diff(self.row_ptr)

    def col_degrees(self) -> np.ndarray:
        self._require_csr()
        return np.bincount(self.col_indices, minlength=self.cols)

    def coo(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(rows, cols, values) views of the stored triplets."""
        return (self._coo_rows[:self.nnz], self._coo_cols[:self.nnz],
                self._coo_values[:self.nnz])

    def multiply_vector_gf2(self, vector: np.ndarray) -> np.ndarray:
        """Compute (M · v) mod 2 for a binary vector v."""
        self._require_csr()
        vector = np.asarray(vector, dtype=np.int64)
        if len(vector) != self.cols:
            raise InvalidParameterError(
                f"Vector length {len(vector)} does not match {self.cols} columns")

        products = vector[self.col_indices] * self.values
        row_ids = np.repeat(np.arange(self.rows), np.diff(self.row_ptr))
        sums = np.bincount(row_ids, weights=products, minlength=self.rows)
        return (sums.astype(np.int64) % 2).astype(np.uint8)

    def to_dense(self) -> np.ndarray:
        dense = np.zeros((self.rows, self.cols), dtype=np.uint8)
        rows, cols, vals = self.coo()
        dense[rows, cols] = vals
        return dense

    @classmethod
    def from_dense(cls, dense: np.ndarray, capacity: int = None) -> "SparseMatrix":
        """Build from a dense 0/1 array; capacity defaults to its nnz."""
        dense = np.asarray(dense)
        rows, cols = np.nonzero(dense)
        if capacity is None:
            capacity = max(len(rows), 1)
        if len(rows) > capacity:
            raise ResourceExhaustedError(
                f"{len(rows)} non-zeros exceed capacity {capacity}")

        matrix = cls(dense.shape[0], dense.shape[1], capacity)
        count = len(rows)
        matrix._coo_rows[:count] = rows
        matrix._coo_cols[:count] = cols
        matrix._coo_values[:count] = dense[rows, cols]
        matrix.nnz = count
        matrix.to_csr()
        return matrix

    def to_scipy(self) -> sparse.csr_matrix:
        """Export as a scipy.sparse CSR matrix."""
        self._require_csr()
        return sparse.csr_matrix(
            (self.values.astype(np.uint8), self.col_indices, self.row_ptr),
            shape=(self.rows, self.cols))

    def __repr__(self) -> str:
        return f"SparseMatrix({self.rows}x{self.cols}, nnz={self.nnz}/{self.capacity})"
