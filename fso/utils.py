"""
Numeric helpers: decibel conversions, signal power, complex helpers
and theoretical error-rate references.
"""

import math
from typing import Union

import numpy as np
from scipy import special

from .errors import InvalidParameterError, UnsupportedError
from .log import get_logger

_log = get_logger("utils")

ArrayLike = Union[np.ndarray, list, tuple]


# ----------------------------------------------------------------------
# Decibels
# ----------------------------------------------------------------------

def linear_to_db(x: float) -> float:
    """10*log10(x); non-positive input yields -inf and a warning."""
    if x <= 0:
        _log.warning("linear_to_db: non-positive input %g, returning -inf", x)
        return -math.inf
    return 10.0 * math.log10(x)


def db_to_linear(db: float) -> float:
    return 10.0 ** (db / 10.0)


def watts_to_dbm(watts: float) -> float:
    return linear_to_db(watts) + 30.0


def dbm_to_watts(dbm: float) -> float:
    return db_to_linear(dbm - 30.0)


def amplitude_to_db(amplitude: float) -> float:
    """20*log10(amplitude)."""
    if amplitude <= 0:
        _log.warning("amplitude_to_db: non-positive input %g, returning -inf", amplitude)
        return -math.inf
    return 20.0 * math.log10(amplitude)


def db_to_amplitude(db: float) -> float:
    return 10.0 ** (db / 20.0)


# ----------------------------------------------------------------------
# Signal power
# ----------------------------------------------------------------------

def signal_power(samples: ArrayLike) -> float:
    """
    Mean power of a real or complex signal.

    Real: mean of squares. Complex: mean of |z|^2.

    Raises:
        InvalidParameterError: If the signal is empty
    """
    samples = np.asarray(samples)
    if samples.size == 0:
        raise InvalidParameterError("signal_power: empty signal")
    if np.iscomplexobj(samples):
        return float(np.mean(np.abs(samples) ** 2))
    return float(np.mean(samples.astype(np.float64) ** 2))


# ----------------------------------------------------------------------
# Complex helpers
# ----------------------------------------------------------------------

def complex_from_polar(magnitude, phase):
    return magnitude * np.exp(1j * np.asarray(phase))


def complex_phase(z):
    return np.angle(z)


def complex_magnitude(z):
    return np.abs(z)


def wrap_phase(phase: float) -> float:
    """Wrap a phase into [-pi, pi]."""
    while phase > math.pi:
        phase -= 2.0 * math.pi
    while phase < -math.pi:
        phase += 2.0 * math.pi
    return phase


# ----------------------------------------------------------------------
# Bits
# ----------------------------------------------------------------------

def bytes_to_bits(data) -> np.ndarray:
    """Unpack bytes MSB first."""
    return np.unpackbits(np.frombuffer(bytes(data), dtype=np.uint8))


def bits_to_bytes(bits: np.ndarray) -> bytes:
    """Pack bits MSB first (zero-padded to a byte boundary)."""
    return np.packbits(np.asarray(bits, dtype=np.uint8)).tobytes()


def count_bit_errors(a: bytes, b: bytes) -> int:
    """Hamming distance between two equal-length byte strings."""
    x = np.frombuffer(bytes(a), dtype=np.uint8) ^ np.frombuffer(bytes(b), dtype=np.uint8)
    return int(np.unpackbits(x).sum())


# ----------------------------------------------------------------------
# Reference error rates
# ----------------------------------------------------------------------

def q_function(x):
    """Gaussian tail probability Q(x) = 0.5*erfc(x/sqrt(2))."""
    return 0.5 * special.erfc(np.asarray(x) / np.sqrt(2.0))


def theoretical_ber(modulation: str, snr_db: float, ppm_order: int = 4) -> float:
    """
    Uncoded BER for the simulator's detectors in AWGN.

    SNR is average signal power over noise power per sample.

    Args:
        modulation: 'ook', 'ppm' or 'dpsk'
        snr_db: Signal-to-noise ratio in dB
        ppm_order: Slots per PPM symbol

    Returns:
        Bit error probability
    """
    snr = db_to_linear(snr_db)
    kind = modulation.lower()

    if kind == 'ook':
        # Levels 0 and A with A^2/2 = P, threshold A/2
        return float(q_function(np.sqrt(snr / 2.0)))
    if kind == 'dpsk':
        return float(0.5 * np.exp(-snr))
    if kind == 'ppm':
        # Pulse amplitude A with A^2/M = P; pairwise slot error, union bound
        amplitude_sq = snr * ppm_order
        pairwise = q_function(np.sqrt(amplitude_sq / 2.0))
        symbol_error = min(1.0, (ppm_order - 1) * float(pairwise))
        return symbol_error * (ppm_order / 2.0) / (ppm_order - 1)

    raise UnsupportedError(f"Unknown modulation: {modulation}")
