"""
Block Interleaver

Spreads burst errors (deep fades last many symbols on an optical link)
across several FEC codewords so each codeword sees only a few errors.

Data is written row by row into a depth x block_size matrix and read
column by column:

    write:  row 0 = x[0 .. B-1], row 1 = x[B .. 2B-1], ...
    read:   x[0], x[B], x[2B], ..., x[1], x[B+1], ...

Input is processed in chunks of B*D bytes. Bytes after the last full
chunk pass through unpermuted, so deinterleave(interleave(x)) == x for
any length.
"""

from typing import Union

import numpy as np

from .errors import InvalidParameterError, NotInitializedError


class BlockInterleaver:
    """
    Row-in / column-out block interleaver.

    Attributes:
        block_size: Bytes per row (B), typically one codeword
        depth: Number of rows (D)

    Example:
        >>> interleaver = BlockInterleaver(block_size=255, depth=5)
        >>> interleaved = interleaver.interleave(codewords)
        >>> original = interleaver.deinterleave(interleaved)
    """

    def __init__(self, block_size: int, depth: int):
        if block_size < 1 or depth < 1:
            raise InvalidParameterError(
                f"Block size and depth must be >= 1, got {block_size}, {depth}")
        self.block_size = block_size
        self.depth = depth
        self._active = True

    @property
    def chunk_size(self) -> int:
        return self.block_size * self.depth

    def _check(self) -> None:
        if not self._active:
            raise NotInitializedError("Interleaver used after free()")

    def _permute(self, data: Union[bytes, bytearray, np.ndarray], inverse: bool) -> bytes:
        self._check()
        buf = np.frombuffer(bytes(data), dtype=np.uint8)
        chunk = self.chunk_size
        full = (len(buf) // chunk) * chunk

        if full == 0:
            return buf.tobytes()

        blocks = buf[:full].reshape(-1, self.depth, self.block_size)
        if inverse:
            # Interleaved chunk is the transposed matrix read row-wise
            out = blocks.reshape(-1, self.block_size, self.depth).transpose(0, 2, 1)
        else:
            out = blocks.transpose(0, 2, 1)

        return out.reshape(-1).tobytes() + buf[full:].tobytes()

    def interleave(self, data: Union[bytes, bytearray, np.ndarray]) -> bytes:
        """Interleave data (same length out)."""
        return self._permute(data, inverse=False)

    def deinterleave(self, data: Union[bytes, bytearray, np.ndarray]) -> bytes:
        """Exact inverse of interleave()."""
        return self._permute(data, inverse=True)

    def free(self) -> None:
        self._active = False
