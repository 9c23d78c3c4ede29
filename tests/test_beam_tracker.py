"""
Tests for beam pointing and tracking.
"""

import math

import pytest
import numpy as np

from fso.BeamTracker import (BeamTracker, GaussianBeamSource, PIDController,
                             SignalMap, TrackerMode)
from fso.Random import RandomGenerator
from fso.errors import (ConvergenceError, ErrorCode, InvalidParameterError,
                        NotInitializedError, status_of)


class TestGaussianBeamSource:
    """Test the simulated far-field source."""

    def test_peak_and_falloff(self):
        source = GaussianBeamSource(0.01, -0.02, width=0.05)

        assert source.measure(0.01, -0.02) == pytest.approx(1.0)
        assert source.measure(0.06, -0.02) == pytest.approx(math.exp(-0.5))
        assert source(0.01, 0.03) == pytest.approx(math.exp(-0.5))

    def test_gain(self):
        source = GaussianBeamSource()
        source.gain = 0.25
        assert source.measure(0.0, 0.0) == pytest.approx(0.25)

    def test_noise_clamped(self):
        source = GaussianBeamSource(noise_std=0.5, rng=RandomGenerator(3))
        values = [source.measure(0.0, 0.0) for _ in range(200)]

        assert min(values) >= 0.0
        assert max(values) <= 1.0
        assert len(set(values)) > 1

    def test_invalid_width(self):
        with pytest.raises(InvalidParameterError):
            GaussianBeamSource(width=0.0)


class TestSignalMap:
    """Test the gridded signal map."""

    def test_grid(self):
        m = SignalMap(5, 3, 0.4, 0.2)

        assert m.shape == (3, 5)
        assert m.az_resolution == pytest.approx(0.1)
        assert m.el_resolution == pytest.approx(0.1)
        assert m.angles_of(0, 0) == pytest.approx((-0.2, -0.1))

    def test_set_nearest(self):
        m = SignalMap(5, 5, 0.4, 0.4)
        m.set(0.09, -0.01, 0.7)

        assert m.data[m.index_of(0.1, 0.0)] == 0.7

    def test_bilinear(self):
        m = SignalMap(3, 3, 2.0, 2.0)
        m.set(0.0, 0.0, 1.0)
        m.set(1.0, 0.0, 0.5)

        assert m.get(0.5, 0.0) == pytest.approx(0.75)
        assert m.get(0.0, 0.5) == pytest.approx(0.5)
        assert m.get(1.0, 1.0) == 0.0

    def test_out_of_bounds(self):
        m = SignalMap(3, 3, 0.2, 0.2)

        assert m.lookup(0.5, 0.0) is None
        assert m.get(0.5, 0.0) == 0.0
        with pytest.raises(InvalidParameterError):
            m.set(0.0, -0.5, 1.0)

    def test_peak_first_on_ties(self):
        m = SignalMap(3, 3, 2.0, 2.0)
        m.set(-1.0, 0.0, 0.9)
        m.set(1.0, 0.0, 0.9)

        az, el, strength = m.peak()
        assert (az, el, strength) == pytest.approx((-1.0, 0.0, 0.9))

    def test_invalid(self):
        with pytest.raises(InvalidParameterError):
            SignalMap(1, 5, 0.1, 0.1)
        with pytest.raises(InvalidParameterError):
            SignalMap(5, 5, 0.0, 0.1)


class TestPIDController:
    """Test the two-axis PID controller."""

    def test_proportional(self):
        pid = PIDController(kp=2.0, ki=0.0, kd=0.0)
        assert pid.update(0.1, -0.2) == pytest.approx((0.2, -0.4))

    def test_integral_anti_windup(self):
        pid = PIDController(kp=0.0, ki=1.0, kd=0.0, update_rate=1.0, integral_limit=0.5)
        for _ in range(10):
            out_az, _ = pid.update(1.0, 0.0)
        assert out_az == pytest.approx(0.5)

    def test_derivative(self):
        pid = PIDController(kp=0.0, ki=0.0, kd=1.0, update_rate=10.0)
        assert pid.update(0.1, 0.0)[0] == pytest.approx(1.0)
        assert pid.update(0.1, 0.0)[0] == pytest.approx(0.0)

    def test_reset(self):
        pid = PIDController()
        pid.update(1.0, 1.0)
        pid.reset()

        np.testing.assert_array_equal(pid.integral, [0, 0])
        np.testing.assert_array_equal(pid.prev_error, [0, 0])

    def test_invalid(self):
        with pytest.raises(InvalidParameterError):
            PIDController(update_rate=0.0)
        with pytest.raises(InvalidParameterError):
            PIDController(integral_limit=-1.0)


class TestBeamTracker:
    """Test gradient tracking, PID control and reacquisition."""

    def test_gradient_convergence(self):
        """Gradient ascent from 0.09 rad off reaches the peak within 50 updates."""
        peak_az, peak_el = 0.03, -0.02
        source = GaussianBeamSource(peak_az, peak_el, width=0.05)
        tracker = BeamTracker(0.0, 0.0, 201, 201, 0.4, 0.4)
        tracker.scan(source, 0.4, 0.4, 0.002)

        tracker.azimuth = peak_az + 0.07
        tracker.elevation = peak_el - 0.06
        tracker.signal_strength = 0.0

        for _ in range(50):
            tracker.update(source.measure(tracker.azimuth, tracker.elevation))

        error = math.hypot(tracker.azimuth - peak_az, tracker.elevation - peak_el)
        assert error < 0.01

    def test_pid_zero_steady_state(self):
        """Constant target with a unit-gain plant settles within 0.01 rad."""
        tracker = BeamTracker(0.0, 0.0, 21, 21, 0.4, 0.4)
        tracker.configure_pid(0.5, 0.1, 0.001, 100.0, 1.0)

        for _ in range(60):
            tracker.pid_update(0.05, -0.03, 0.5)

        error = math.hypot(tracker.azimuth - 0.05, tracker.elevation + 0.03)
        assert error < 0.01
        assert tracker.update_count == 60

    def test_scan_points_at_peak(self):
        source = GaussianBeamSource(0.004, -0.002, width=0.005)
        tracker = BeamTracker(0.0, 0.0, 21, 21, 0.01, 0.01)

        az, el, strength = tracker.scan(source, 0.01, 0.01, 0.0005)

        assert (az, el) == pytest.approx((0.004, -0.002), abs=1e-6)
        assert strength == pytest.approx(1.0)
        assert (tracker.azimuth, tracker.elevation) == (az, el)
        assert tracker.scan_count == 1
        assert tracker.find_peak()[2] == pytest.approx(1.0)

    def test_scan_accepts_callable(self):
        tracker = BeamTracker()
        best = tracker.scan(lambda az, el: 0.5 - abs(az - 0.002), 0.01, 0.01, 0.001)
        assert best[0] == pytest.approx(0.002)

    def test_scan_invalid(self):
        tracker = BeamTracker()
        source = GaussianBeamSource()
        with pytest.raises(InvalidParameterError):
            tracker.scan(source, 0.0, 0.01, 0.001)
        with pytest.raises(InvalidParameterError):
            tracker.scan(source, 0.01, 0.01, 0.0)
        with pytest.raises(InvalidParameterError):
            tracker.scan(object(), 0.01, 0.01, 0.001)

    def test_misalignment(self):
        tracker = BeamTracker()
        tracker.set_threshold(0.3)

        assert tracker.check_misalignment(0.1)
        assert tracker.mode is TrackerMode.MISALIGNED
        assert not tracker.get_status().aligned

        assert not tracker.check_misalignment(0.8)
        assert tracker.mode is TrackerMode.TRACKING

    def test_reacquire_success(self):
        source = GaussianBeamSource(0.006, 0.004, width=0.004)
        tracker = BeamTracker()
        tracker.set_threshold(0.3)
        tracker.check_misalignment(0.0)

        assert tracker.reacquire(source, 0.02, 0.02, 0.002)
        assert tracker.mode is TrackerMode.TRACKING
        assert tracker.reacquisition_count == 1
        assert tracker.reacquisition_attempts == 1
        assert tracker.signal_strength >= 0.3

    def test_reacquire_failure(self):
        source = GaussianBeamSource(peak=0.05)
        tracker = BeamTracker()

        assert not tracker.reacquire(source, 0.02, 0.02, 0.002)
        assert tracker.mode is TrackerMode.MISALIGNED
        assert (tracker.azimuth, tracker.elevation) == (0.0, 0.0)
        assert tracker.reacquisition_count == 0
        assert tracker.reacquisition_attempts == 1

    def test_calibrate(self):
        source = GaussianBeamSource(0.0031, -0.0022, width=0.003)
        tracker = BeamTracker()

        assert tracker.calibrate(source, 0.01, 0.01, 0.001, 0.0002)
        error = math.hypot(tracker.azimuth - 0.0031, tracker.elevation + 0.0022)
        assert error < 0.0003
        assert tracker.scan_count == 2

    def test_calibrate_weak_signal(self):
        """A peak below threshold fails calibration with a convergence error."""
        source = GaussianBeamSource(0.002, 0.0, width=0.003, peak=0.1)
        tracker = BeamTracker()
        tracker.set_threshold(0.3)

        with pytest.raises(ConvergenceError):
            tracker.calibrate(source, 0.01, 0.01, 0.001, 0.0002)
        assert status_of(ConvergenceError("x")) is ErrorCode.CONVERGENCE

    def test_update_map_out_of_bounds(self):
        tracker = BeamTracker()
        assert tracker.update_map(0.0, 0.0, 0.5)
        assert not tracker.update_map(1.0, 0.0, 0.5)
        with pytest.raises(InvalidParameterError):
            tracker.update_map(0.0, 0.0, -0.1)

    def test_flat_map_counts_towards_convergence(self):
        tracker = BeamTracker()
        tracker.configure_gradient(threshold_iters=3)
        for _ in range(3):
            tracker.update(0.0)
        assert tracker.is_converged()

    def test_configure_gradient(self):
        tracker = BeamTracker()
        tracker.configure_gradient(step=1.0, step_min=1e-8, step_max=0.01)
        assert tracker.step_size == 0.01

        with pytest.raises(InvalidParameterError):
            tracker.configure_gradient(step_min=0.1, step_max=0.01)
        with pytest.raises(InvalidParameterError):
            tracker.configure_gradient(momentum=1.0)
        with pytest.raises(InvalidParameterError):
            tracker.configure_gradient(adapt_factor=0.5)

    def test_invalid_threshold(self):
        with pytest.raises(InvalidParameterError):
            BeamTracker().set_threshold(1.5)

    def test_use_after_free(self):
        tracker = BeamTracker()
        tracker.free()
        with pytest.raises(NotInitializedError):
            tracker.find_peak()
        with pytest.raises(NotInitializedError):
            tracker.reset_pid()
