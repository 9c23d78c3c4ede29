"""
Tests for random generation, numeric helpers, errors and logging.
"""

import logging
import math

import pytest
import numpy as np

from fso.Random import RandomGenerator, thread_rng
from fso.utils import (linear_to_db, db_to_linear, watts_to_dbm, dbm_to_watts,
                       amplitude_to_db, db_to_amplitude, signal_power,
                       complex_from_polar, wrap_phase, bytes_to_bits, bits_to_bytes,
                       count_bit_errors, q_function, theoretical_ber)
from fso.errors import (ErrorCode, FSOError, InvalidParameterError, ResourceExhaustedError,
                        NotInitializedError, UnsupportedError, FSOIOError, status_of)
from fso.log import LogLevel, get_logger, parse_level


class TestRandomGenerator:
    """Test the LCG / Box-Muller generator."""

    def test_reproducible(self):
        a, b = RandomGenerator(42), RandomGenerator(42)
        assert [a.uniform() for _ in range(20)] == [b.uniform() for _ in range(20)]
        assert [a.gaussian() for _ in range(20)] == [b.gaussian() for _ in range(20)]

    def test_first_lcg_value(self):
        """seed=1 gives the classic rand() sequence."""
        rng = RandomGenerator(1)
        assert rng.randint(0, 32767) == 16838
        assert rng.randint(0, 32767) == 5758

    def test_zero_seed_uses_clock(self):
        rng = RandomGenerator(0)
        assert rng.initial_seed != 0

    def test_uniform_range(self):
        rng = RandomGenerator(5)
        values = [rng.uniform() for _ in range(1000)]
        assert min(values) >= 0.0
        assert max(values) < 1.0

    def test_randint(self):
        rng = RandomGenerator(5)
        values = {rng.randint(3, 6) for _ in range(200)}
        assert values == {3, 4, 5, 6}
        with pytest.raises(ValueError):
            rng.randint(5, 4)

    def test_gaussian_moments(self):
        rng = RandomGenerator(123)
        samples = np.array([rng.gaussian(2.0, 0.5) for _ in range(20000)])

        assert np.mean(samples) == pytest.approx(2.0, abs=0.02)
        assert np.std(samples) == pytest.approx(0.5, abs=0.02)

    def test_uniform_array_matches_scalar(self):
        a, b = RandomGenerator(77), RandomGenerator(77)
        expected = [a.uniform() for _ in range(100)]

        np.testing.assert_array_equal(b.uniform_array(100), expected)
        assert a.seed == b.seed

    def test_gaussian_array_matches_scalar(self):
        """Odd-length arrays leave the same spare as scalar draws."""
        a, b = RandomGenerator(99), RandomGenerator(99)
        expected = [a.gaussian(1.0, 2.0) for _ in range(101)]
        expected_next = a.gaussian(1.0, 2.0)

        np.testing.assert_allclose(b.gaussian_array(101, 1.0, 2.0), expected, rtol=1e-12)
        assert b.gaussian(1.0, 2.0) == pytest.approx(expected_next, rel=1e-12)

    def test_random_bytes(self):
        data = RandomGenerator(8).random_bytes(64)
        assert len(data) == 64
        assert data == RandomGenerator(8).random_bytes(64)

    def test_derive(self):
        parent = RandomGenerator(0x1234)
        child = parent.derive(3)

        assert child.initial_seed == 0x1234 ^ 3
        assert parent.derive(0x1234).initial_seed == 1
        assert parent.derive(1).uniform() != parent.derive(2).uniform()

    def test_thread_rng(self):
        rng = thread_rng(17)
        assert rng.initial_seed == 17
        assert thread_rng() is rng


class TestUtils:
    """Test numeric helpers."""

    def test_db_conversions(self):
        assert linear_to_db(100.0) == pytest.approx(20.0)
        assert db_to_linear(-30.0) == pytest.approx(1e-3)
        assert watts_to_dbm(1e-3) == pytest.approx(0.0)
        assert dbm_to_watts(30.0) == pytest.approx(1.0)
        assert amplitude_to_db(10.0) == pytest.approx(20.0)
        assert db_to_amplitude(-20.0) == pytest.approx(0.1)

    def test_non_positive_db(self):
        assert linear_to_db(0.0) == -math.inf
        assert amplitude_to_db(-1.0) == -math.inf

    def test_signal_power(self):
        assert signal_power([1.0, -1.0, 1.0, -1.0]) == pytest.approx(1.0)
        assert signal_power(np.array([1j, 1.0, -1j, -1.0])) == pytest.approx(1.0)
        assert signal_power([0.0, 2.0]) == pytest.approx(2.0)
        with pytest.raises(InvalidParameterError):
            signal_power([])

    def test_complex_helpers(self):
        z = complex_from_polar(2.0, math.pi / 2)
        assert z == pytest.approx(2j)

    def test_wrap_phase(self):
        assert wrap_phase(3 * math.pi) == pytest.approx(math.pi)
        assert wrap_phase(-2.5 * math.pi) == pytest.approx(-0.5 * math.pi)
        assert wrap_phase(0.3) == 0.3

    def test_bits(self):
        bits = bytes_to_bits(b"\xa5")
        np.testing.assert_array_equal(bits, [1, 0, 1, 0, 0, 1, 0, 1])
        assert bits_to_bytes(bits) == b"\xa5"

    def test_count_bit_errors(self):
        assert count_bit_errors(b"\x00\xff", b"\x01\xff") == 1
        assert count_bit_errors(b"\x00\x00", b"\xff\xff") == 16

    def test_q_function(self):
        assert q_function(0.0) == pytest.approx(0.5)
        assert q_function(3.0) == pytest.approx(1.3499e-3, rel=1e-3)

    @pytest.mark.parametrize("modulation", ["ook", "ppm", "dpsk"])
    def test_theoretical_ber_decreasing(self, modulation):
        values = [theoretical_ber(modulation, snr) for snr in (0, 5, 10, 15)]
        assert all(b < a for a, b in zip(values, values[1:]))
        assert all(0.0 <= v <= 0.5 for v in values)

    def test_theoretical_ber_unknown(self):
        with pytest.raises(UnsupportedError):
            theoretical_ber("qam", 10.0)


class TestErrors:
    """Test the error taxonomy."""

    def test_codes(self):
        assert status_of(None) is ErrorCode.SUCCESS
        assert status_of(InvalidParameterError("x")) is ErrorCode.INVALID_PARAM
        assert status_of(ResourceExhaustedError("x")) is ErrorCode.MEMORY
        assert status_of(NotInitializedError("x")) is ErrorCode.NOT_INITIALIZED
        assert status_of(UnsupportedError("x")) is ErrorCode.UNSUPPORTED
        assert status_of(FSOIOError("x")) is ErrorCode.IO

    def test_builtin_fallback(self):
        assert status_of(MemoryError()) is ErrorCode.MEMORY
        assert status_of(FileNotFoundError()) is ErrorCode.IO
        assert status_of(KeyError()) is ErrorCode.INVALID_PARAM

    def test_builtin_bases(self):
        """Errors can be caught as the matching builtin."""
        with pytest.raises(ValueError):
            raise InvalidParameterError("bad")
        with pytest.raises(OSError):
            raise FSOIOError("io")
        assert issubclass(UnsupportedError, FSOError)


class TestLogging:
    """Test per-instance log levels."""

    def test_parse_level(self):
        assert parse_level("warning") is LogLevel.WARN
        assert parse_level("Debug") is LogLevel.DEBUG
        assert parse_level(3) is LogLevel.INFO
        with pytest.raises(ValueError):
            parse_level("verbose")

    def test_instance_threshold(self, caplog):
        caplog.set_level(logging.DEBUG, logger="fso.test_threshold")
        log = get_logger("test_threshold", LogLevel.INFO)

        log.debug("hidden")
        log.info("shown")

        messages = [r.getMessage() for r in caplog.records]
        assert messages == ["shown"]
        assert caplog.records[0].name == "fso.test_threshold"

    def test_off(self, caplog):
        caplog.set_level(logging.DEBUG, logger="fso.test_off")
        log = get_logger("test_off", LogLevel.OFF)

        log.error("hidden")
        assert caplog.records == []

    def test_independent_instances(self, caplog):
        caplog.set_level(logging.DEBUG, logger="fso.shared")
        quiet = get_logger("shared", LogLevel.ERROR)
        verbose = get_logger("shared", LogLevel.DEBUG)

        quiet.warning("from quiet")
        verbose.warning("from verbose")

        assert [r.getMessage() for r in caplog.records] == ["from verbose"]

    def test_set_level(self):
        log = get_logger("test_set_level", LogLevel.ERROR)
        log.set_level("debug")
        assert log.instance_level is LogLevel.DEBUG
