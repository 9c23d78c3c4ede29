"""
Forward Error Correction Facade

A single codec object over the concrete codes. The codec state is a
tagged variant, RSState or LDPCState, so dispatch covers every code
type explicitly.

Units:
- Reed-Solomon: k and n count symbols (bytes for the usual m = 8)
- LDPC: k and n count bytes; the code works on 8k information bits
  and 8n code bits, packed MSB first
- NONE: identity, k == n
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np

from .LDPC import (LDPCCode, DEFAULT_CONVERGENCE_THRESHOLD,
                   DEFAULT_MAX_ITERATIONS)
from .ReedSolomon import ReedSolomon
from .errors import InvalidParameterError, NotInitializedError, UnsupportedError
from .log import LogLevel, get_logger


class FECType(Enum):
    NONE = "none"
    REED_SOLOMON = "rs"
    LDPC = "ldpc"

    @classmethod
    def parse(cls, value: Union[str, "FECType"]) -> "FECType":
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        aliases = {'reed_solomon': 'rs', 'reed-solomon': 'rs', 'off': 'none'}
        name = aliases.get(name, name)
        for member in cls:
            if member.value == name:
                return member
        raise UnsupportedError(f"Unknown FEC type: {value!r}")


@dataclass
class RSConfig:
    """Reed-Solomon parameters. `first_root` is an alias of `fcr`."""
    symbol_size: int = 8
    num_roots: Optional[int] = None
    first_root: Optional[int] = None
    primitive_poly: Optional[int] = None
    fcr: int = 1


@dataclass
class LDPCConfig:
    """LDPC decoder parameters."""
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    convergence_threshold: float = DEFAULT_CONVERGENCE_THRESHOLD


@dataclass
class FECStats:
    """Per-codeword decode statistics."""
    errors_detected: int = 0
    errors_corrected: int = 0
    uncorrectable: bool = False
    iterations: int = 0


@dataclass
class RSState:
    codec: ReedSolomon


@dataclass
class LDPCState:
    code: LDPCCode


@dataclass
class NoFECState:
    length: int


FECState = Union[RSState, LDPCState, NoFECState]


class FECCodec:
    """
    FEC codec facade.

    Example:
        >>> codec = FECCodec(FECType.REED_SOLOMON, 223, 255)
        >>> codeword = codec.encode(data)
        >>> decoded, stats = codec.decode(codeword)
        >>> codec.free()
    """

    def __init__(self, fec_type: Union[FECType, str], k: int, n: int,
                 config: Union[RSConfig, LDPCConfig, None] = None,
                 log_level: LogLevel = LogLevel.WARN):
        """
        Args:
            fec_type: Code family
            k: Data length (symbols for RS, bytes for LDPC/NONE)
            n: Codeword length
            config: RSConfig or LDPCConfig matching fec_type

        Raises:
            InvalidParameterError: Invalid lengths or config values
            UnsupportedError: Config variant does not match fec_type
        """
        self.fec_type = FECType.parse(fec_type)
        self.log = get_logger("FEC", log_level)
        self.k = k
        self.n = n
        self._state: Optional[FECState] = self._init_state(config, log_level)

    def _init_state(self, config, log_level) -> FECState:
        k, n = self.k, self.n

        if self.fec_type is FECType.REED_SOLOMON:
            if config is None:
                config = RSConfig()
            if not isinstance(config, RSConfig):
                raise UnsupportedError("Reed-Solomon codec needs an RSConfig")
            if config.num_roots is not None and config.num_roots != n - k:
                raise InvalidParameterError(
                    f"num_roots={config.num_roots} does not match n-k={n - k}")
            if config.first_root is not None and config.first_root != config.fcr:
                raise InvalidParameterError(
                    f"first_root={config.first_root} conflicts with fcr={config.fcr}")
            codec = ReedSolomon(n, k, symbol_size=config.symbol_size,
                                primitive_poly=config.primitive_poly, fcr=config.fcr,
                                log_level=log_level)
            return RSState(codec)

        if self.fec_type is FECType.LDPC:
            if config is None:
                config = LDPCConfig()
            if not isinstance(config, LDPCConfig):
                raise UnsupportedError("LDPC codec needs an LDPCConfig")
            code = LDPCCode(8 * n, 8 * k, max_iterations=config.max_iterations,
                            convergence_threshold=config.convergence_threshold,
                            log_level=log_level)
            return LDPCState(code)

        if k != n or k <= 0:
            raise InvalidParameterError(f"Uncoded link needs k == n > 0, got k={k}, n={n}")
        return NoFECState(n)

    @property
    def state(self) -> FECState:
        if self._state is None:
            raise NotInitializedError("FEC codec used after free()")
        return self._state

    @property
    def rate(self) -> float:
        return self.k / self.n

    def encode(self, data: bytes) -> bytes:
        """Encode k data units into an n-unit codeword."""
        state = self.state
        data = bytes(data)
        if len(data) != self.k:
            raise InvalidParameterError(f"Expected {self.k} bytes, got {len(data)}")

        if isinstance(state, RSState):
            return state.codec.encode(data)
        if isinstance(state, LDPCState):
            bits = np.unpackbits(np.frombuffer(data, dtype=np.uint8))
            return np.packbits(state.code.encode(bits)).tobytes()
        return data

    def decode(self, received: bytes) -> Tuple[bytes, FECStats]:
        """
        Decode an n-unit codeword.

        Returns:
            (k data units, FECStats). Uncorrectable codewords return the
            best-effort data with stats.uncorrectable set.
        """
        state = self.state
        received = bytes(received)
        if len(received) != self.n:
            raise InvalidParameterError(f"Expected {self.n} bytes, got {len(received)}")

        if isinstance(state, RSState):
            data, errors = state.codec.decode(received)
            if errors < 0:
                return data, FECStats(errors_detected=1, uncorrectable=True, iterations=1)
            return data, FECStats(errors_detected=errors, errors_corrected=errors,
                                  iterations=1)

        if isinstance(state, LDPCState):
            bits = np.unpackbits(np.frombuffer(received, dtype=np.uint8))
            result = state.code.decode(bits)
            stats = FECStats(
                errors_detected=result.errors_corrected + result.syndrome_weight,
                errors_corrected=result.errors_corrected,
                uncorrectable=not result.converged,
                iterations=result.iterations,
            )
            return np.packbits(result.data).tobytes(), stats

        return received, FECStats()

    def free(self) -> None:
        """Release codec tables; later calls raise NotInitializedError."""
        self._state = None

    def __enter__(self) -> "FECCodec":
        return self

    def __exit__(self, *exc) -> None:
        self.free()
