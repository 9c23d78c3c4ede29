"""
FSO Link Simulator

Monte-Carlo driver for the complete optical link:

    payload → FEC encode → interleave → modulate → channel + AWGN →
    demodulate → deinterleave → FEC decode → bit compare

One pass through the chain per packet. Packets are spaced
simulation_time / num_packets apart, which is the time step of the
correlated channel fading and of the beam tracker.

With tracking enabled, the platform pointing drifts and jitters; the
tracker measures the received beam, seeks the peak by gradient ascent
and rescans when the signal drops below its threshold. The residual
pointing error scales the received power.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .BeamTracker import BeamTracker, GaussianBeamSource
from .Channel import ChannelModel
from .FEC import FECCodec, FECStats, FECType
from .Interleaver import BlockInterleaver
from .LDPC import ldpc_standard_params, nearest_standard_rate
from .Modulation import Modulator
from .Random import RandomGenerator
from .config import SimConfig
from .errors import FSOError, InvalidParameterError
from .log import LogLevel, get_logger
from .results import PacketStats, SimResults, TimeSeriesPoint
from .utils import count_bit_errors, signal_power


RS_MAX_LENGTH = 255
SNR_FLOOR = 1e-30

# Tracking model
BEAM_WIDTH = 1e-3                   # 1/e² half-width of the received beam (rad)
MEASUREMENT_NOISE = 0.05
DRIFT_SCALE = 1e10                  # drift rate = Cn² · scale (rad/s)
ELEVATION_DRIFT_RATIO = 0.7
JITTER_STD = 0.002                  # rad/√s
MAX_MISALIGNMENT = 0.01             # rad
REACQUIRE_RANGE = 0.02              # rad
REACQUIRE_RESOLUTION = BEAM_WIDTH / 2.0   # rad, no coarser than the beam σ
MIN_POINTING_GAIN = 0.01

# Stream ids for derived random generators
_CHANNEL_STREAM = 1
_NOISE_STREAM = 2
_TRACKING_STREAM = 3
_SENSOR_STREAM = 4


class PacketCoder:
    """
    Splits packets into FEC codewords and reassembles them.

    Reed-Solomon uses one shortened RS(n, packet_size) codeword when
    n = floor(packet_size / rate) fits in GF(256); longer packets are cut
    into RS(255, round(255·rate)) blocks. LDPC uses the short standard
    code at the nearest supported rate, e.g. (1024, 512) on 64-byte
    blocks for rate 1/2. The last block is zero-padded and the padding
    dropped after decoding.

    Example:
        >>> coder = PacketCoder(FECType.REED_SOLOMON, 1024, 0.8)
        >>> coded = coder.encode(payload)        # 6 x 255 bytes
        >>> data, stats = coder.decode(coded)
    """

    def __init__(self, fec_type: FECType, packet_size: int, code_rate: float,
                 log_level: LogLevel = LogLevel.WARN):
        self.log = get_logger("PacketCoder", log_level)
        self.fec_type = FECType.parse(fec_type)
        self.packet_size = packet_size

        k, n = self._layout(packet_size, code_rate)
        self.block_data = k
        self.block_code = n
        self.blocks = -(-packet_size // k)
        self.codec = FECCodec(self.fec_type, k, n, log_level=log_level)

        self.log.info("%s layout: %d block(s) of (%d, %d) bytes",
                      self.fec_type.name, self.blocks, n, k)

    def _layout(self, packet_size: int, code_rate: float) -> Tuple[int, int]:
        if self.fec_type is FECType.NONE:
            return packet_size, packet_size

        if self.fec_type is FECType.LDPC:
            rate = nearest_standard_rate(code_rate)
            n_bits, k_bits = ldpc_standard_params(rate)
            if abs(code_rate - rate) > 0.01:
                self.log.warning("No LDPC code at rate %.3f; using (%d, %d), rate %.3f",
                                 code_rate, n_bits, k_bits, rate)
            return k_bits // 8, n_bits // 8

        n = int(packet_size / code_rate)
        if packet_size < n <= RS_MAX_LENGTH:
            return packet_size, n
        k = min(max(int(round(RS_MAX_LENGTH * code_rate)), 1), RS_MAX_LENGTH - 2)
        return k, RS_MAX_LENGTH

    @property
    def encoded_size(self) -> int:
        return self.blocks * self.block_code

    def encode(self, payload: bytes) -> bytes:
        if len(payload) != self.packet_size:
            raise InvalidParameterError(
                f"Expected {self.packet_size}-byte packet, got {len(payload)}")
        padded = bytes(payload) + bytes(self.blocks * self.block_data - len(payload))
        k = self.block_data
        return b''.join(self.codec.encode(padded[i * k:(i + 1) * k])
                        for i in range(self.blocks))

    def decode(self, received: bytes) -> Tuple[bytes, FECStats]:
        """Decode every block; stats are summed, uncorrectable if any block is."""
        if len(received) != self.encoded_size:
            raise InvalidParameterError(
                f"Expected {self.encoded_size} coded bytes, got {len(received)}")
        n = self.block_code
        total = FECStats()
        parts = []
        for i in range(self.blocks):
            data, stats = self.codec.decode(received[i * n:(i + 1) * n])
            parts.append(data)
            total.errors_detected += stats.errors_detected
            total.errors_corrected += stats.errors_corrected
            total.uncorrectable = total.uncorrectable or stats.uncorrectable
            total.iterations = max(total.iterations, stats.iterations)
        return b''.join(parts)[:self.packet_size], total

    def free(self) -> None:
        self.codec.free()


@dataclass
class PointingState:
    """Platform misalignment driving the tracking model (rad)."""
    azimuth: float = 0.0
    elevation: float = 0.0


class TrackingModel:
    """
    Pointing disturbance plus the beam tracker that compensates it.

    The received beam is a Gaussian of 1/e² half-width BEAM_WIDTH
    centred at -misalignment in tracker coordinates, scaled by the
    current channel fade and observed with additive sensor noise.
    """

    def __init__(self, config: SimConfig, rng: RandomGenerator, log_level: LogLevel):
        self.log = get_logger("Tracking", log_level)
        self.cn2 = config.environment.cn2
        self.rng = rng.derive(_TRACKING_STREAM)
        self.misalignment = PointingState()

        self.tracker = BeamTracker(0.0, 0.0, 21, 21, 0.01, 0.01, log_level=log_level)
        self.tracker.configure_pid(1.0, 0.1, 0.05, config.system.tracking_update_rate, 0.01)
        self.tracker.set_threshold(0.3)
        # Gradient of exp(-2r²/w²) peaks near 1/w, so steps scale with w²
        self.tracker.configure_gradient(step=1e-7, step_min=1e-8,
                                        step_max=0.4 * BEAM_WIDTH ** 2)

        self.source = GaussianBeamSource(width=BEAM_WIDTH / 2.0,
                                         noise_std=MEASUREMENT_NOISE,
                                         rng=rng.derive(_SENSOR_STREAM))
        self.updates = 0

    def _drift(self, dt: float) -> None:
        rate = self.cn2 * DRIFT_SCALE
        jitter = JITTER_STD * math.sqrt(dt)
        m = self.misalignment
        m.azimuth += rate * dt + self.rng.gaussian(0.0, jitter)
        m.elevation += ELEVATION_DRIFT_RATIO * rate * dt + self.rng.gaussian(0.0, jitter)
        m.azimuth = min(max(m.azimuth, -MAX_MISALIGNMENT), MAX_MISALIGNMENT)
        m.elevation = min(max(m.elevation, -MAX_MISALIGNMENT), MAX_MISALIGNMENT)

    def pointing_error(self) -> float:
        return math.hypot(self.tracker.azimuth + self.misalignment.azimuth,
                          self.tracker.elevation + self.misalignment.elevation)

    def pointing_gain(self) -> float:
        r = self.pointing_error()
        return max(math.exp(-2.0 * r * r / BEAM_WIDTH ** 2), MIN_POINTING_GAIN)

    def step(self, dt: float, fade: float) -> float:
        """
        Advance one packet interval.

        Returns:
            Strength measured at the tracker's pointing before it moved
        """
        self._drift(dt)
        self.source.peak_az = -self.misalignment.azimuth
        self.source.peak_el = -self.misalignment.elevation
        self.source.gain = fade

        tracker = self.tracker
        strength = self.source.measure(tracker.azimuth, tracker.elevation)

        if tracker.check_misalignment(strength) and not tracker.reacquisition_mode:
            tracker.reacquire(self.source, REACQUIRE_RANGE, REACQUIRE_RANGE,
                              REACQUIRE_RESOLUTION)
        else:
            tracker.update(strength)
            self.updates += 1

        self.log.debug("Misalignment (%.5f, %.5f), strength %.3f, mode %s",
                       self.misalignment.azimuth, self.misalignment.elevation,
                       strength, tracker.mode.value)
        return strength

    def free(self) -> None:
        self.tracker.free()


def build_channel(config: SimConfig, rng: Optional[RandomGenerator] = None,
                  log_level: LogLevel = LogLevel.WARN) -> ChannelModel:
    """Channel model with every environment and optics parameter applied."""
    link, env = config.link, config.environment
    channel = ChannelModel(link.distance, link.wavelength, env.weather, env.cn2,
                           env.correlation_time,
                           rng=rng.derive(_CHANNEL_STREAM) if rng is not None else None,
                           seed=config.control.seed, log_level=log_level)
    channel.set_atmospheric(env.temperature, env.humidity)
    channel.set_weather(visibility=env.visibility, rainfall_rate=env.rainfall_rate,
                        snowfall_rate=env.snowfall_rate)
    channel.set_beam(link.beam_divergence)
    return channel


def expected_received_power(config: SimConfig) -> float:
    """Received power without fading, noise or pointing loss (W)."""
    channel = build_channel(config, RandomGenerator(1), LogLevel.OFF)
    return (config.link.transmit_power * channel.coupling_gain(config.link.receiver_aperture)
            / 10 ** (channel.total_loss_db / 10.0))


class Simulator:
    """
    End-to-end packet simulation for one configuration.

    Example:
        >>> sim = Simulator(get_preset('clear'))
        >>> results = sim.run()
        >>> results.avg_ber
    """

    def __init__(self, config: SimConfig):
        """
        Raises:
            InvalidParameterError: If the configuration is invalid
        """
        config.validate()
        self.config = config
        level = config.control.log_level
        self.log_level = level
        self.log = get_logger("Simulator", level)
        self.rng = RandomGenerator(config.control.seed)
        self.noise_rng = self.rng.derive(_NOISE_STREAM)

        system, control = config.system, config.control

        self.coder = PacketCoder(system.fec, control.packet_size, system.code_rate, level)
        self.modulator = Modulator(system.modulation, control.sample_rate,
                                   ppm_order=system.ppm_order, log_level=level)
        self.interleaver = self._make_interleaver() if system.use_interleaver else None
        self.channel = build_channel(config, self.rng, level)
        self.tracking = (TrackingModel(config, self.rng, level)
                         if system.enable_tracking else None)

        self.aperture_gain = self.channel.coupling_gain(config.link.receiver_aperture)
        self.dt = config.packet_interval

    def _make_interleaver(self) -> Optional[BlockInterleaver]:
        depth = min(self.config.system.interleaver_depth, self.coder.blocks)
        try:
            return BlockInterleaver(self.coder.block_code, depth)
        except FSOError as exc:
            self.log.warning("Interleaver disabled: %s", exc)
            return None

    # ------------------------------------------------------------------
    # Per-packet stages
    # ------------------------------------------------------------------

    def _interleave(self, data: bytes, inverse: bool) -> bytes:
        if self.interleaver is None:
            return data
        try:
            if inverse:
                return self.interleaver.deinterleave(data)
            return self.interleaver.interleave(data)
        except FSOError as exc:
            self.log.warning("Interleaver failed, passing packet through: %s", exc)
            return data

    def _received_power(self) -> Tuple[float, float]:
        """(received power, tracker strength) for the next packet."""
        power = self.channel.apply_effects(self.config.link.transmit_power, 0.0, self.dt)
        power *= self.aperture_gain

        strength = 0.0
        if self.tracking is not None:
            strength = self.tracking.step(self.dt, self.channel.current_fade)
            power *= self.tracking.pointing_gain()
        return power, strength

    def _add_noise(self, samples: np.ndarray, rx_power: float) -> Tuple[np.ndarray, float]:
        """
        Scale to rx_power, add AWGN of variance noise_floor, scale back.

        Returns:
            (noisy samples at unit amplitude, applied amplitude)
        """
        noise_floor = self.config.control.noise_floor
        amplitude = math.sqrt(max(rx_power, SNR_FLOOR) / max(signal_power(samples), SNR_FLOOR))
        if noise_floor <= 0.0:
            return samples, amplitude

        n = len(samples)
        if np.iscomplexobj(samples):
            std = math.sqrt(noise_floor / 2.0)
            noise = (self.noise_rng.gaussian_array(n, 0.0, std)
                     + 1j * self.noise_rng.gaussian_array(n, 0.0, std))
        else:
            noise = self.noise_rng.gaussian_array(n, 0.0, math.sqrt(noise_floor))

        return (samples * amplitude + noise) / amplitude, amplitude

    def _snr_db(self, rx_power: float) -> float:
        noise_floor = max(self.config.control.noise_floor, SNR_FLOOR)
        return 10.0 * math.log10(max(rx_power / noise_floor, SNR_FLOOR))

    def run_packet(self, packet_id: int, results: SimResults) -> PacketStats:
        control = self.config.control
        total_bits = control.packet_size * 8

        payload = self.rng.random_bytes(control.packet_size)
        coded = self.coder.encode(payload)
        tx = self._interleave(coded, inverse=False)

        rx_power, strength = self._received_power()
        snr_db = self._snr_db(rx_power)

        try:
            samples = self.modulator.modulate(tx)
            noisy, _ = self._add_noise(samples, rx_power)
            rx = self.modulator.demodulate(noisy, len(tx), snr_db=snr_db)
        except FSOError as exc:
            self.log.error("Modulation failed for packet %d: %s", packet_id, exc)
            stats = PacketStats(packet_id, total_bits, 0, total_bits, 1.0, snr_db,
                                rx_power, 0, True)
        else:
            decoded, fec = self.coder.decode(self._interleave(rx, inverse=True))
            bit_errors = count_bit_errors(payload, decoded)
            stats = PacketStats(packet_id, total_bits, len(decoded) * 8, bit_errors,
                                bit_errors / total_bits, snr_db, rx_power,
                                fec.errors_corrected, fec.uncorrectable)
            if fec.uncorrectable:
                self.log.debug("Packet %d uncorrectable (%d bit errors)", packet_id, bit_errors)

        results.add_packet(stats)

        point = TimeSeriesPoint(
            timestamp=packet_id * self.dt,
            ber=stats.ber,
            snr_db=snr_db,
            received_power=rx_power,
            throughput=(total_bits - stats.bit_errors) / self.dt,
            signal_strength=strength if self.tracking else self.channel.current_fade,
        )
        if self.tracking is not None:
            point.beam_azimuth = self.tracking.tracker.azimuth
            point.beam_elevation = self.tracking.tracker.elevation
        results.add_point(point)
        return stats

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> SimResults:
        control = self.config.control
        results = SimResults(tracking_enabled=self.tracking is not None)
        results.start()

        self.log.info("Simulating %d packets of %d bytes (%s, %s, seed=%d)",
                      control.num_packets, control.packet_size,
                      self.config.system.modulation.value, self.config.system.fec.name,
                      self.rng.initial_seed)

        progress_every = max(control.num_packets // 10, 1)
        for packet_id in range(control.num_packets):
            self.run_packet(packet_id, results)
            if (packet_id + 1) % progress_every == 0:
                self.log.info("Processed %d/%d packets", packet_id + 1, control.num_packets)

        if self.tracking is not None:
            tracker = self.tracking.tracker
            results.tracking_updates = self.tracking.updates
            results.reacquisitions = tracker.reacquisition_count
            results.reacquisition_attempts = tracker.reacquisition_attempts

        results.stop()
        results.calculate_metrics()
        self.log.info("Simulation completed: %d packets, BER=%.3e, SNR=%.2f dB",
                      results.total_packets, results.avg_ber, results.avg_snr)
        return results

    def close(self) -> None:
        """Release codec, modulator, interleaver and tracker state."""
        self.coder.free()
        self.modulator.free()
        if self.interleaver is not None:
            self.interleaver.free()
        if self.tracking is not None:
            self.tracking.free()

    def __enter__(self) -> "Simulator":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def run_simulation(config: SimConfig) -> SimResults:
    """Validate config, run every packet and release all resources."""
    with Simulator(config) as sim:
        return sim.run()
