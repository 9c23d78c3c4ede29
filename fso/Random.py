"""
Reproducible Random Number Generation

Each channel, tracker and simulator owns a RandomGenerator so that
runs are reproducible without any process-wide state.

Uniform deviates come from the classic ANSI C linear congruential
generator:

    seed <- seed * 1103515245 + 12345   (mod 2^32)
    r     = (seed / 65536) mod 32768
    u     = r / 32768

Gaussian deviates use the polar Box-Muller method with a one-sample
cache (the "spare").

The array methods jump the LCG ahead with cumulative products of the
multiplier, so gaussian_array(n) returns exactly the values n
successive gaussian() calls would have produced.
"""

import threading
import time
from typing import Optional

import numpy as np


LCG_MULTIPLIER = 1103515245
LCG_INCREMENT = 12345
LCG_MASK = 0xFFFFFFFF
RAND_MAX = 32768


def _time_seed(stream_id: int = 0) -> int:
    """Wall-clock seed perturbed by thread and stream so parallel users diverge."""
    seed = time.time_ns() ^ (threading.get_ident() * 2654435761) ^ (stream_id * 40503)
    seed &= LCG_MASK
    return seed or 1


class RandomGenerator:
    """
    LCG + Box-Muller random source.

    Attributes:
        seed: Current 32-bit LCG state
        initial_seed: Seed after seed-0 substitution (for logging/reruns)

    Example:
        >>> rng = RandomGenerator(42)
        >>> x = rng.gaussian(0.0, 1.0)
        >>> noise = rng.gaussian_array(1000, 0.0, 0.1)
    """

    def __init__(self, seed: int = 0, stream_id: int = 0):
        """
        Args:
            seed: Initial seed; 0 selects a wall-clock derived seed
            stream_id: Perturbation used when synthesising a seed
        """
        if seed == 0:
            seed = _time_seed(stream_id)
        self.initial_seed = int(seed) & LCG_MASK
        self.seed = self.initial_seed
        self._spare = 0.0
        self._has_spare = False

    def derive(self, instance_id: int) -> "RandomGenerator":
        """Child generator seeded with initial_seed XOR instance_id."""
        child_seed = (self.initial_seed ^ int(instance_id)) & LCG_MASK
        return RandomGenerator(child_seed or 1)

    # ------------------------------------------------------------------
    # Scalar draws
    # ------------------------------------------------------------------

    def _next(self) -> int:
        self.seed = (self.seed * LCG_MULTIPLIER + LCG_INCREMENT) & LCG_MASK
        return (self.seed >> 16) % RAND_MAX

    def uniform(self) -> float:
        """Uniform deviate in [0, 1)."""
        return self._next() / RAND_MAX

    def randint(self, low: int, high: int) -> int:
        """Integer in [low, high] inclusive."""
        if high < low:
            raise ValueError(f"Empty range [{low}, {high}]")
        return low + self._next() % (high - low + 1)

    def gaussian(self, mean: float = 0.0, std: float = 1.0) -> float:
        """Normal deviate N(mean, std^2) via polar Box-Muller."""
        if self._has_spare:
            self._has_spare = False
            return mean + std * self._spare

        while True:
            u = 2.0 * self.uniform() - 1.0
            v = 2.0 * self.uniform() - 1.0
            s = u * u + v * v
            if 0.0 < s < 1.0:
                break

        factor = np.sqrt(-2.0 * np.log(s) / s)
        self._spare = v * factor
        self._has_spare = True
        return mean + std * u * factor

    # ------------------------------------------------------------------
    # Vectorised draws
    # ------------------------------------------------------------------

    def _raw_states(self, count: int) -> np.ndarray:
        """
        Next `count` LCG states without advancing the generator.

        state_i = a^i * seed + c * (1 + a + ... + a^(i-1))  (mod 2^32)
        uint32 arithmetic wraps, giving the modulus for free.
        """
        with np.errstate(over='ignore'):
            powers = np.cumprod(np.full(count, LCG_MULTIPLIER, dtype=np.uint32), dtype=np.uint32)
            geometric = np.empty(count, dtype=np.uint32)
            geometric[0] = 1
            if count > 1:
                geometric[1:] = powers[:-1]
            geometric = np.cumsum(geometric, dtype=np.uint32)
            states = powers * np.uint32(self.seed) + geometric * np.uint32(LCG_INCREMENT)
        return states

    def _raw_array(self, count: int) -> np.ndarray:
        if count <= 0:
            return np.zeros(0, dtype=np.int64)
        states = self._raw_states(count)
        self.seed = int(states[-1])
        return ((states >> 16) % RAND_MAX).astype(np.int64)

    def uniform_array(self, count: int) -> np.ndarray:
        """`count` uniform deviates, identical to repeated uniform() calls."""
        return self._raw_array(count) / RAND_MAX

    def randint_array(self, low: int, high: int, count: int) -> np.ndarray:
        """`count` integers in [low, high]."""
        if high < low:
            raise ValueError(f"Empty range [{low}, {high}]")
        return low + self._raw_array(count) % (high - low + 1)

    def random_bytes(self, count: int) -> bytes:
        """Random payload bytes."""
        return self.randint_array(0, 255, count).astype(np.uint8).tobytes()

    def gaussian_array(self, count: int, mean: float = 0.0, std: float = 1.0) -> np.ndarray:
        """`count` normal deviates, identical to repeated gaussian() calls."""
        out = np.empty(count, dtype=np.float64)
        filled = 0

        if count > 0 and self._has_spare:
            out[0] = self._spare
            self._has_spare = False
            filled = 1

        while filled < count:
            needed_pairs = (count - filled + 1) // 2
            # Polar method accepts pi/4 of the pairs; overshoot a little
            batch = int(needed_pairs * 1.35) + 8
            states = self._raw_states(2 * batch)
            draws = ((states >> 16) % RAND_MAX) / RAND_MAX
            u = 2.0 * draws[0::2] - 1.0
            v = 2.0 * draws[1::2] - 1.0
            s = u * u + v * v
            accepted = (s > 0.0) & (s < 1.0)
            accepted_idx = np.flatnonzero(accepted)

            if len(accepted_idx) >= needed_pairs:
                last_pair = accepted_idx[needed_pairs - 1]
                self.seed = int(states[2 * last_pair + 1])
                accepted_idx = accepted_idx[:needed_pairs]
            else:
                self.seed = int(states[-1])

            s_ok = s[accepted_idx]
            factor = np.sqrt(-2.0 * np.log(s_ok) / s_ok)
            pairs = np.empty(2 * len(accepted_idx), dtype=np.float64)
            pairs[0::2] = u[accepted_idx] * factor
            pairs[1::2] = v[accepted_idx] * factor

            take = min(len(pairs), count - filled)
            out[filled:filled + take] = pairs[:take]
            filled += take

            if take < len(pairs):
                # Odd count: the unused second value becomes the spare
                self._spare = pairs[take]
                self._has_spare = True

        return mean + std * out


_thread_state = threading.local()


def thread_rng(seed: Optional[int] = None) -> RandomGenerator:
    """
    Per-thread default generator.

    Passing a seed re-seeds the calling thread's generator.
    """
    rng = getattr(_thread_state, 'rng', None)
    if rng is None or seed is not None:
        stream = threading.get_ident() & 0xFFFF
        rng = RandomGenerator(seed or 0, stream_id=stream)
        _thread_state.rng = rng
    return rng
