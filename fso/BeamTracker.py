"""
Beam Pointing and Tracking

Keeps a narrow optical beam on the remote terminal:

- SignalMap: received strength sampled on a regular (azimuth, elevation)
  grid, read back with bilinear interpolation.
- Gradient ascent with momentum and adaptive step on the map:

      v <- β·v + α·∇S(θ)
      θ <- θ + v

  α grows by `adapt_factor` while the measured strength improves and
  shrinks otherwise, within [step_min, step_max].
- PID position control towards an explicit target.
- Raster scan, peak search, misalignment detection, reacquisition and
  two-stage (coarse + fine) calibration.

Mode transitions:

    TRACKING --strength < threshold--> MISALIGNED --reacquire()--> REACQUIRING
    REACQUIRING --peak >= threshold--> TRACKING
    REACQUIRING --peak <  threshold--> MISALIGNED

All angles are in radians; strengths are normalised to [0, 1].
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, Tuple, Union

import numpy as np

from .Random import RandomGenerator
from .errors import ConvergenceError, InvalidParameterError, NotInitializedError
from .log import LogLevel, get_logger


class SignalSource(Protocol):
    """Anything that can report received strength at a pointing angle."""

    def measure(self, azimuth: float, elevation: float) -> float:
        ...


MeasureFn = Callable[[float, float], float]
Source = Union[SignalSource, MeasureFn]


def _measure_fn(source: Source) -> MeasureFn:
    measure = getattr(source, 'measure', None)
    if measure is not None:
        return measure
    if callable(source):
        return source
    raise InvalidParameterError("Signal source must be callable or provide measure(az, el)")


class GaussianBeamSource:
    """
    Simulated far-field beam: S = gain · peak · exp(-r² / 2σ²) + noise,
    clamped to [0, 1], where r is the angular distance to the peak.

    A beam of 1/e² half-width w corresponds to width = w/2.

    Example:
        >>> source = GaussianBeamSource(0.02, -0.01, width=0.05)
        >>> tracker.scan(source, 0.2, 0.2, 0.005)
    """

    def __init__(self, peak_az: float = 0.0, peak_el: float = 0.0,
                 width: float = 0.05, peak: float = 1.0, noise_std: float = 0.0,
                 rng: Optional[RandomGenerator] = None):
        if width <= 0.0:
            raise InvalidParameterError(f"Beam width must be positive, got {width}")
        self.peak_az = peak_az
        self.peak_el = peak_el
        self.width = width
        self.peak = peak
        self.noise_std = noise_std
        self.gain = 1.0
        self.rng = rng if rng is not None else RandomGenerator(1)

    def ideal(self, azimuth: float, elevation: float) -> float:
        """Noise-free strength without the gain factor."""
        r2 = (azimuth - self.peak_az) ** 2 + (elevation - self.peak_el) ** 2
        return self.peak * math.exp(-r2 / (2.0 * self.width ** 2))

    def measure(self, azimuth: float, elevation: float) -> float:
        value = self.gain * self.ideal(azimuth, elevation)
        if self.noise_std > 0.0:
            value += self.rng.gaussian(0.0, self.noise_std)
        return min(max(value, 0.0), 1.0)

    def __call__(self, azimuth: float, elevation: float) -> float:
        return self.measure(azimuth, elevation)


# ----------------------------------------------------------------------
# Signal map
# ----------------------------------------------------------------------

class SignalMap:
    """
    Strength samples on a regular grid centred on (center_az, center_el).

    data[el_index, az_index] holds the sample at
    (az_min + az_index·az_res, el_min + el_index·el_res).
    """

    def __init__(self, az_samples: int, el_samples: int,
                 az_range: float, el_range: float,
                 center_az: float = 0.0, center_el: float = 0.0):
        if az_samples < 2 or el_samples < 2:
            raise InvalidParameterError(
                f"Map dimensions too small: {az_samples}x{el_samples}")
        if az_range <= 0.0 or el_range <= 0.0:
            raise InvalidParameterError(
                f"Invalid map range: az={az_range}, el={el_range}")

        self.az_samples = az_samples
        self.el_samples = el_samples
        self.az_min = center_az - az_range / 2.0
        self.az_max = center_az + az_range / 2.0
        self.el_min = center_el - el_range / 2.0
        self.el_max = center_el + el_range / 2.0
        self.az_resolution = az_range / (az_samples - 1)
        self.el_resolution = el_range / (el_samples - 1)
        self.data = np.zeros((el_samples, az_samples), dtype=np.float64)

        # Absorbs rounding in grid coordinates computed by callers
        self._tol = 1e-9 * min(self.az_resolution, self.el_resolution)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.el_samples, self.az_samples

    def contains(self, azimuth: float, elevation: float) -> bool:
        return (self.az_min - self._tol <= azimuth <= self.az_max + self._tol
                and self.el_min - self._tol <= elevation <= self.el_max + self._tol)

    def index_of(self, azimuth: float, elevation: float) -> Tuple[int, int]:
        """Nearest grid point as (el_index, az_index)."""
        az_idx = int(round((azimuth - self.az_min) / self.az_resolution))
        el_idx = int(round((elevation - self.el_min) / self.el_resolution))
        az_idx = min(max(az_idx, 0), self.az_samples - 1)
        el_idx = min(max(el_idx, 0), self.el_samples - 1)
        return el_idx, az_idx

    def angles_of(self, el_idx: int, az_idx: int) -> Tuple[float, float]:
        return (self.az_min + az_idx * self.az_resolution,
                self.el_min + el_idx * self.el_resolution)

    def set(self, azimuth: float, elevation: float, strength: float) -> None:
        """
        Store strength at the nearest grid point.

        Raises:
            InvalidParameterError: If the angle lies outside the map
        """
        if not self.contains(azimuth, elevation):
            raise InvalidParameterError(
                f"Angle out of map bounds: az={azimuth:.4f}, el={elevation:.4f}")
        self.data[self.index_of(azimuth, elevation)] = strength

    def lookup(self, azimuth: float, elevation: float) -> Optional[float]:
        """Bilinear interpolation, or None outside the map."""
        if not self.contains(azimuth, elevation):
            return None

        az_f = (azimuth - self.az_min) / self.az_resolution
        el_f = (elevation - self.el_min) / self.el_resolution
        az0 = int(math.floor(az_f))
        el0 = int(math.floor(el_f))
        az_frac = az_f - az0
        el_frac = el_f - el0

        az1 = min(max(az0 + 1, 0), self.az_samples - 1)
        el1 = min(max(el0 + 1, 0), self.el_samples - 1)
        az0 = min(max(az0, 0), self.az_samples - 1)
        el0 = min(max(el0, 0), self.el_samples - 1)

        d = self.data
        v0 = d[el0, az0] * (1.0 - az_frac) + d[el0, az1] * az_frac
        v1 = d[el1, az0] * (1.0 - az_frac) + d[el1, az1] * az_frac
        return float(v0 * (1.0 - el_frac) + v1 * el_frac)

    def get(self, azimuth: float, elevation: float) -> float:
        """Bilinear interpolation; 0.0 (and an error log) outside the map."""
        value = self.lookup(azimuth, elevation)
        if value is None:
            get_logger("SignalMap").error(
                "Query out of map bounds: az=%.4f, el=%.4f", azimuth, elevation)
            return 0.0
        return value

    def peak(self) -> Tuple[float, float, float]:
        """(azimuth, elevation, strength) of the largest sample (first on ties)."""
        flat = int(np.argmax(self.data))
        el_idx, az_idx = divmod(flat, self.az_samples)
        az, el = self.angles_of(el_idx, az_idx)
        return az, el, float(self.data[el_idx, az_idx])

    def clear(self) -> None:
        self.data.fill(0.0)


# ----------------------------------------------------------------------
# PID controller
# ----------------------------------------------------------------------

class PIDController:
    """
    Two-axis PID controller with integral anti-windup.

    output = kp·e + ki·∫e dt + kd·de/dt,  dt = 1/update_rate
    """

    def __init__(self, kp: float = 1.0, ki: float = 0.1, kd: float = 0.05,
                 update_rate: float = 100.0, integral_limit: float = 1.0):
        self.configure(kp, ki, kd, update_rate, integral_limit)

    def configure(self, kp: float, ki: float, kd: float,
                  update_rate: float, integral_limit: float) -> None:
        if update_rate <= 0.0:
            raise InvalidParameterError(f"Invalid PID update rate: {update_rate} Hz")
        if integral_limit < 0.0:
            raise InvalidParameterError(f"Integral limit must be >= 0, got {integral_limit}")
        self.kp = kp
        self.ki = ki
        self.kd = kd
        self.update_rate = update_rate
        self.dt = 1.0 / update_rate
        self.integral_limit = integral_limit
        self.reset()

    def reset(self) -> None:
        self.integral = np.zeros(2)
        self.prev_error = np.zeros(2)

    def update(self, error_az: float, error_el: float) -> Tuple[float, float]:
        error = np.array([error_az, error_el], dtype=np.float64)

        self.integral = np.clip(self.integral + error * self.dt,
                                -self.integral_limit, self.integral_limit)
        derivative = (error - self.prev_error) / self.dt
        output = self.kp * error + self.ki * self.integral + self.kd * derivative

        self.prev_error = error
        return float(output[0]), float(output[1])


# ----------------------------------------------------------------------
# Tracker
# ----------------------------------------------------------------------

class TrackerMode(Enum):
    TRACKING = "tracking"
    MISALIGNED = "misaligned"
    REACQUIRING = "reacquiring"


@dataclass
class TrackerStatus:
    aligned: bool
    converged: bool
    reacquiring: bool
    mode: TrackerMode
    azimuth: float
    elevation: float
    signal_strength: float


class BeamTracker:
    """
    Beam tracker with an embedded signal map and PID controller.

    Attributes:
        azimuth, elevation: Current pointing (rad)
        signal_strength: Last measured strength
        signal_threshold: Strength below which the link is misaligned
        update_count: Gradient/PID updates performed
        scan_count: Raster scans performed
        reacquisition_count: Successful reacquisitions
        reacquisition_attempts: All reacquisitions started

    Example:
        >>> tracker = BeamTracker(0.0, 0.0, 21, 21, 0.01, 0.01)
        >>> tracker.calibrate(source, 0.01, 0.01, 0.001, 0.0002)
        >>> for _ in range(100):
        ...     tracker.update(source.measure(tracker.azimuth, tracker.elevation))
    """

    def __init__(self, initial_az: float = 0.0, initial_el: float = 0.0,
                 map_az_samples: int = 21, map_el_samples: int = 21,
                 map_az_range: float = 0.01, map_el_range: float = 0.01,
                 log_level: LogLevel = LogLevel.WARN):
        """
        Args:
            initial_az, initial_el: Starting pointing (also the map centre)
            map_az_samples, map_el_samples: Grid size, each >= 2
            map_az_range, map_el_range: Full angular extent of the map

        Raises:
            InvalidParameterError: If the map is too small or has no extent
        """
        self.log = get_logger("BeamTracker", log_level)
        self._map: Optional[SignalMap] = SignalMap(
            map_az_samples, map_el_samples, map_az_range, map_el_range,
            initial_az, initial_el)
        self._pid: Optional[PIDController] = PIDController()

        self.azimuth = float(initial_az)
        self.elevation = float(initial_el)
        self.signal_strength = 0.0

        self.step_size = 0.001
        self.step_min = 1e-4
        self.step_max = 0.004
        self.adapt_factor = 1.1
        self.momentum = 0.5
        self.velocity = np.zeros(2)
        self.gradient_delta: Optional[float] = None

        self.convergence_count = 0
        self.convergence_iters = 10
        self.convergence_epsilon = 1e-4

        self.signal_threshold = 0.1
        self.misaligned = False
        self.reacquisition_mode = False

        self.update_count = 0
        self.scan_count = 0
        self.reacquisition_count = 0
        self.reacquisition_attempts = 0

        self.log.info("Beam tracker at az=%.4f, el=%.4f, map %dx%d",
                      initial_az, initial_el, map_az_samples, map_el_samples)

    # ------------------------------------------------------------------
    # Owned state
    # ------------------------------------------------------------------

    @property
    def map(self) -> SignalMap:
        if self._map is None:
            raise NotInitializedError("Beam tracker used after free()")
        return self._map

    @property
    def pid(self) -> PIDController:
        if self._pid is None:
            raise NotInitializedError("PID controller not initialized")
        return self._pid

    @property
    def mode(self) -> TrackerMode:
        if self.reacquisition_mode:
            return TrackerMode.REACQUIRING
        if self.misaligned:
            return TrackerMode.MISALIGNED
        return TrackerMode.TRACKING

    def free(self) -> None:
        self._map = None
        self._pid = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure_gradient(self, step: Optional[float] = None,
                           step_min: Optional[float] = None,
                           step_max: Optional[float] = None,
                           adapt_factor: Optional[float] = None,
                           momentum: Optional[float] = None,
                           epsilon: Optional[float] = None,
                           threshold_iters: Optional[int] = None,
                           delta: Optional[float] = None) -> None:
        """Override gradient-ascent parameters; None keeps the current value."""
        step_min = self.step_min if step_min is None else step_min
        step_max = self.step_max if step_max is None else step_max
        step = self.step_size if step is None else step
        adapt_factor = self.adapt_factor if adapt_factor is None else adapt_factor
        momentum = self.momentum if momentum is None else momentum

        if not 0.0 < step_min <= step_max:
            raise InvalidParameterError(f"Need 0 < step_min <= step_max, got {step_min}, {step_max}")
        if adapt_factor < 1.0:
            raise InvalidParameterError(f"Adapt factor must be >= 1, got {adapt_factor}")
        if not 0.0 <= momentum < 1.0:
            raise InvalidParameterError(f"Momentum must be in [0, 1), got {momentum}")
        if delta is not None and delta <= 0.0:
            raise InvalidParameterError(f"Gradient delta must be positive, got {delta}")

        self.step_min = step_min
        self.step_max = step_max
        self.step_size = min(max(step, step_min), step_max)
        self.adapt_factor = adapt_factor
        self.momentum = momentum
        if epsilon is not None:
            self.convergence_epsilon = epsilon
        if threshold_iters is not None:
            self.convergence_iters = threshold_iters
        if delta is not None:
            self.gradient_delta = delta

    def configure_pid(self, kp: float, ki: float, kd: float,
                      update_rate: float, integral_limit: float) -> None:
        """Set PID gains and rate; the controller state is reset."""
        if self._pid is None:
            self._pid = PIDController(kp, ki, kd, update_rate, integral_limit)
        else:
            self._pid.configure(kp, ki, kd, update_rate, integral_limit)
        self.log.info("Configured PID: Kp=%.3f, Ki=%.3f, Kd=%.3f, rate=%.1f Hz",
                      kp, ki, kd, update_rate)

    def reset_pid(self) -> None:
        self.pid.reset()

    def set_threshold(self, threshold: float) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise InvalidParameterError(f"Invalid threshold: {threshold} (must be 0.0-1.0)")
        self.signal_threshold = threshold

    # ------------------------------------------------------------------
    # Map access
    # ------------------------------------------------------------------

    def update_map(self, azimuth: float, elevation: float, strength: float) -> bool:
        """Record a measurement; False (with a warning) outside the map."""
        if strength < 0.0:
            raise InvalidParameterError(f"Invalid signal strength: {strength:.3f}")
        try:
            self.map.set(azimuth, elevation, strength)
        except InvalidParameterError:
            self.log.warning("Angle out of map bounds: az=%.4f, el=%.4f", azimuth, elevation)
            return False
        return True

    def find_peak(self) -> Tuple[float, float, float]:
        """(azimuth, elevation, strength) of the map maximum."""
        return self.map.peak()

    # ------------------------------------------------------------------
    # Gradient ascent
    # ------------------------------------------------------------------

    def estimate_gradient(self, delta: Optional[float] = None) -> Tuple[float, float]:
        """
        Central-difference gradient of the map at the current pointing.

        Neighbours outside the map fall back to the centre value.
        """
        m = self.map
        if delta is None:
            delta = self.gradient_delta or 0.5 * min(m.az_resolution, m.el_resolution)
        if delta <= 0.0:
            raise InvalidParameterError(f"Invalid delta angle: {delta}")

        az, el = self.azimuth, self.elevation
        center = m.lookup(az, el)
        if center is None:
            center = self.signal_strength

        def sample(a: float, e: float) -> float:
            value = m.lookup(a, e)
            return center if value is None else value

        grad_az = (sample(az + delta, el) - sample(az - delta, el)) / (2.0 * delta)
        grad_el = (sample(az, el + delta) - sample(az, el - delta)) / (2.0 * delta)
        return grad_az, grad_el

    def _adapt_step(self, improvement: float) -> None:
        if improvement > 0.0:
            self.step_size = min(self.step_size * self.adapt_factor, self.step_max)
        else:
            self.step_size = max(self.step_size / self.adapt_factor, self.step_min)

    def update(self, measured_strength: float) -> None:
        """
        One gradient-ascent step from a strength measured at the current
        pointing.
        """
        if measured_strength < 0.0:
            raise InvalidParameterError(f"Invalid signal strength: {measured_strength:.3f}")

        previous = self.signal_strength
        self.signal_strength = measured_strength
        self.update_map(self.azimuth, self.elevation, measured_strength)
        self._adapt_step(measured_strength - previous)
        self.update_count += 1

        grad = np.array(self.estimate_gradient())
        if np.hypot(*grad) < 1e-6:
            # Flat map: treat as a stationary point
            self.convergence_count += 1
            return

        self.velocity = self.momentum * self.velocity + self.step_size * grad
        self.azimuth += float(self.velocity[0])
        self.elevation += float(self.velocity[1])

        if np.hypot(*self.velocity) < self.convergence_epsilon:
            self.convergence_count += 1
        else:
            self.convergence_count = 0

        self.log.debug("Update: pos=(%.6f, %.6f), grad=(%.4f, %.4f), step=%.5f, strength=%.3f",
                       self.azimuth, self.elevation, grad[0], grad[1],
                       self.step_size, measured_strength)

    def is_converged(self) -> bool:
        return self.convergence_count >= self.convergence_iters

    # ------------------------------------------------------------------
    # PID control
    # ------------------------------------------------------------------

    def pid_update(self, target_az: float, target_el: float, measured_strength: float) -> None:
        """Move towards (target_az, target_el) by one PID step."""
        if measured_strength < 0.0:
            raise InvalidParameterError(f"Invalid signal strength: {measured_strength:.3f}")
        pid = self.pid

        self.signal_strength = measured_strength
        self.update_map(self.azimuth, self.elevation, measured_strength)

        control_az, control_el = pid.update(target_az - self.azimuth,
                                            target_el - self.elevation)
        self.azimuth += control_az
        self.elevation += control_el

        if math.hypot(control_az, control_el) < self.convergence_epsilon:
            self.convergence_count += 1
        else:
            self.convergence_count = 0
        self.update_count += 1

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(self, source: Source, az_range: float, el_range: float,
             resolution: float) -> Tuple[float, float, float]:
        """
        Raster scan centred on the current pointing.

        The map is cleared first; points inside it are recorded. The
        tracker then points at the strongest measured position.

        Returns:
            (azimuth, elevation, strength) of the best point
        """
        if az_range <= 0.0 or el_range <= 0.0:
            raise InvalidParameterError(f"Invalid scan range: az={az_range}, el={el_range}")
        if resolution <= 0.0:
            raise InvalidParameterError(f"Invalid scan resolution: {resolution}")
        measure = _measure_fn(source)
        m = self.map

        az_points = int(math.ceil(az_range / resolution - 1e-9)) + 1
        el_points = int(math.ceil(el_range / resolution - 1e-9)) + 1
        az_min = self.azimuth - az_range / 2.0
        el_min = self.elevation - el_range / 2.0

        self.log.info("Scan %dx%d points at %.5f rad around (%.4f, %.4f)",
                      az_points, el_points, resolution, self.azimuth, self.elevation)

        m.clear()
        best = (self.azimuth, self.elevation, -math.inf)
        stored = 0
        for i in range(el_points):
            el = el_min + i * resolution
            for j in range(az_points):
                az = az_min + j * resolution
                strength = float(measure(az, el))
                if m.contains(az, el):
                    m.set(az, el, strength)
                    stored += 1
                if strength > best[2]:
                    best = (az, el, strength)

        self.scan_count += 1
        self.azimuth, self.elevation, self.signal_strength = best
        self.log.info("Scan #%d complete: %d points stored, peak %.3f at (%.4f, %.4f)",
                      self.scan_count, stored, best[2], best[0], best[1])
        return best

    def check_misalignment(self, measured_strength: float) -> bool:
        """Record strength and return True when it is below the threshold."""
        if measured_strength < 0.0:
            raise InvalidParameterError(f"Invalid signal strength: {measured_strength:.3f}")
        self.signal_strength = measured_strength

        misaligned = measured_strength < self.signal_threshold
        if misaligned and not self.misaligned:
            self.log.warning("Misalignment detected: strength=%.3f < threshold=%.3f",
                             measured_strength, self.signal_threshold)
        elif not misaligned and self.misaligned:
            self.log.info("Alignment restored: strength=%.3f", measured_strength)
        self.misaligned = misaligned
        return misaligned

    def reacquire(self, source: Source, az_range: float, el_range: float,
                  resolution: float) -> bool:
        """
        Search a wide window for the beam.

        On failure the pointing returns to where the search started.

        Returns:
            True if the peak found is at or above the threshold
        """
        start = (self.azimuth, self.elevation)
        self.reacquisition_mode = True
        self.reacquisition_attempts += 1
        if self._pid is not None:
            self._pid.reset()
        self.convergence_count = 0
        self.velocity = np.zeros(2)

        try:
            _, _, peak = self.scan(source, az_range, el_range, resolution)
        finally:
            self.reacquisition_mode = False

        if peak < self.signal_threshold:
            self.misaligned = True
            self.azimuth, self.elevation = start
            self.log.warning("Reacquisition failed: peak %.3f < threshold %.3f",
                             peak, self.signal_threshold)
            return False

        self.misaligned = False
        self.reacquisition_count += 1
        self.log.info("Reacquired at az=%.4f, el=%.4f, strength=%.3f",
                      self.azimuth, self.elevation, peak)
        return True

    def calibrate(self, source: Source, az_range: float, el_range: float,
                  coarse_resolution: float, fine_resolution: float) -> bool:
        """
        Coarse scan over the full window, then a fine scan of
        ±2 coarse steps around the coarse peak.

        Returns:
            True once the tracker is aligned on the calibrated peak

        Raises:
            InvalidParameterError: If a resolution is not positive
            ConvergenceError: If the final strength is below the threshold
        """
        if coarse_resolution <= 0.0 or fine_resolution <= 0.0:
            raise InvalidParameterError(
                f"Invalid resolution: coarse={coarse_resolution}, fine={fine_resolution}")
        if fine_resolution >= coarse_resolution:
            self.log.warning("Fine resolution (%.6f) should be smaller than coarse (%.6f)",
                             fine_resolution, coarse_resolution)

        self.scan(source, az_range, el_range, coarse_resolution)
        fine_range = 4.0 * coarse_resolution
        self.scan(source, fine_range, fine_range, fine_resolution)

        if self.signal_strength < self.signal_threshold:
            self.log.warning("Calibration signal weak: %.3f < threshold %.3f",
                             self.signal_strength, self.signal_threshold)
            raise ConvergenceError(
                f"Calibration peak {self.signal_strength:.3f} below threshold "
                f"{self.signal_threshold:.3f}")

        self.convergence_count = 0
        self.misaligned = False
        self.reacquisition_mode = False
        self.velocity = np.zeros(2)
        if self._pid is not None:
            self._pid.reset()
        return True

    def get_status(self) -> TrackerStatus:
        return TrackerStatus(
            aligned=not self.misaligned,
            converged=self.is_converged(),
            reacquiring=self.reacquisition_mode,
            mode=self.mode,
            azimuth=self.azimuth,
            elevation=self.elevation,
            signal_strength=self.signal_strength,
        )
