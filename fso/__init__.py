"""
PyFSO - Free-Space Optical Link Simulator

Monte-Carlo simulation of an optical wireless link, from payload bytes
through forward error correction, optical modulation and a turbulent
atmospheric channel back to decoded bytes, with optional beam tracking.

Modules:
    Numeric primitives:
        - Random: LCG / Box-Muller random source with derived streams
        - utils: dB conversions, signal power, bit helpers, reference BER

    Channel Coding (FEC):
        - GaloisField: GF(2^m) arithmetic
        - ReedSolomon: Systematic RS(n, k) codec
        - SparseMatrix: COO/CSR matrices over GF(2)
        - LDPC: Regular LDPC code with sum-product decoding
        - FEC: Codec facade over RS, LDPC and uncoded
        - Interleaver: Block interleaver

    Optical Layer:
        - Modulation: OOK, M-PPM and DPSK
        - Channel: Turbulence, weather attenuation and link budget
        - BeamTracker: Signal map, gradient ascent, PID, scanning

    Simulation:
        - config: Parameters, validation and preset scenarios
        - Simulator: Per-packet transmit/receive pipeline
        - results: Packet records, time series and metrics
        - report: Rich console output
"""

__version__ = "0.1.0"
__author__ = "PyFSO Contributors"

# Import main classes for convenience
from .errors import (ErrorCode, FSOError, InvalidParameterError, ResourceExhaustedError,
                     NotInitializedError, ConvergenceError, UnsupportedError,
                     FSOIOError, status_of)
from .log import LogLevel, get_logger, setup_logging
from .Random import RandomGenerator

from .GaloisField import GaloisField
from .ReedSolomon import ReedSolomon
from .SparseMatrix import SparseMatrix
from .LDPC import LDPCCode, LDPCResult
from .FEC import FECCodec, FECType, FECStats, RSConfig, LDPCConfig
from .Interleaver import BlockInterleaver

from .Modulation import Modulator, ModulationType
from .Channel import ChannelModel, WeatherCondition, LinkBudget
from .BeamTracker import (BeamTracker, GaussianBeamSource, PIDController, SignalMap,
                          TrackerMode, TrackerStatus)

from .config import SimConfig, get_preset, list_presets
from .results import PacketStats, SimResults, TimeSeriesPoint
from .Simulator import PacketCoder, Simulator, run_simulation

__all__ = [
    # Errors and logging
    'ErrorCode', 'FSOError', 'InvalidParameterError', 'ResourceExhaustedError',
    'NotInitializedError', 'ConvergenceError', 'UnsupportedError', 'FSOIOError',
    'status_of', 'LogLevel', 'get_logger', 'setup_logging',

    # Numeric primitives
    'RandomGenerator',

    # Channel Coding
    'GaloisField', 'ReedSolomon', 'SparseMatrix', 'LDPCCode', 'LDPCResult',
    'FECCodec', 'FECType', 'FECStats', 'RSConfig', 'LDPCConfig', 'BlockInterleaver',

    # Optical Layer
    'Modulator', 'ModulationType', 'ChannelModel', 'WeatherCondition', 'LinkBudget',
    'BeamTracker', 'GaussianBeamSource', 'PIDController', 'SignalMap',
    'TrackerMode', 'TrackerStatus',

    # Simulation
    'SimConfig', 'get_preset', 'list_presets', 'PacketStats', 'SimResults',
    'TimeSeriesPoint', 'PacketCoder', 'Simulator', 'run_simulation',
]
