"""
End-to-end tests for the packet simulator and command line.
"""

import csv
import json
import math

import pytest

from fso.Simulator import (PacketCoder, Simulator, TrackingModel, build_channel,
                           expected_received_power, run_simulation,
                           MIN_POINTING_GAIN, MAX_MISALIGNMENT)
from fso.__main__ import main
from fso.config import SimConfig, get_preset
from fso.FEC import FECType
from fso.Modulation import ModulationType
from fso.Random import RandomGenerator
from fso.errors import InvalidParameterError, NotInitializedError
from fso.log import LogLevel


def quick_config(name='clear', packets=5, size=256, seed=7):
    config = get_preset(name)
    config.control.num_packets = packets
    config.control.packet_size = size
    config.control.seed = seed
    return config


class TestPacketCoder:
    """Test packet-to-codeword layout."""

    def test_single_shortened_rs(self):
        coder = PacketCoder(FECType.REED_SOLOMON, 100, 0.5)

        assert (coder.block_data, coder.block_code, coder.blocks) == (100, 200, 1)
        assert coder.encoded_size == 200

    def test_rs_blocks(self):
        coder = PacketCoder(FECType.REED_SOLOMON, 1024, 0.8)

        assert (coder.block_data, coder.block_code) == (204, 255)
        assert coder.blocks == 6
        assert coder.encoded_size == 1530

    def test_rs_223(self):
        coder = PacketCoder(FECType.REED_SOLOMON, 1024, 223 / 255)
        assert (coder.block_data, coder.block_code, coder.blocks) == (223, 255, 5)

    def test_rate_one(self):
        """Rate 1.0 still leaves room for two parity symbols."""
        coder = PacketCoder(FECType.REED_SOLOMON, 100, 1.0)
        assert (coder.block_data, coder.block_code) == (253, 255)

        payload = bytes(range(100))
        assert coder.decode(coder.encode(payload))[0] == payload

    def test_ldpc_layout(self):
        coder = PacketCoder(FECType.LDPC, 1024, 0.5)

        assert (coder.block_data, coder.block_code, coder.blocks) == (64, 128, 16)
        assert coder.encoded_size == 2048

    def test_ldpc_nearest_rate(self):
        """LDPC picks the standard code nearest the requested rate."""
        coder = PacketCoder(FECType.LDPC, 1024, 0.8)
        assert (coder.block_data, coder.block_code, coder.blocks) == (320, 384, 4)

        coder = PacketCoder(FECType.LDPC, 256, 2 / 3)
        assert (coder.block_data, coder.block_code, coder.blocks) == (128, 192, 2)

        payload = RandomGenerator(9).random_bytes(256)
        assert coder.decode(coder.encode(payload))[0] == payload

    def test_none_is_identity(self):
        coder = PacketCoder(FECType.NONE, 64, 0.5)
        payload = bytes(range(64))

        assert coder.encode(payload) == payload
        assert coder.encoded_size == 64

    def test_roundtrip_with_errors(self):
        coder = PacketCoder(FECType.REED_SOLOMON, 1024, 0.8)
        payload = RandomGenerator(3).random_bytes(1024)

        coded = bytearray(coder.encode(payload))
        for pos in (0, 300, 301, 1529):
            coded[pos] ^= 0x42
        data, stats = coder.decode(bytes(coded))

        assert data == payload
        assert stats.errors_corrected == 4
        assert not stats.uncorrectable

    def test_one_bad_block_flags_packet(self):
        coder = PacketCoder(FECType.REED_SOLOMON, 1024, 0.8)
        coded = bytearray(coder.encode(bytes(1024)))
        for i in range(60):
            coded[255 + 4 * i] ^= 0xFF

        _, stats = coder.decode(bytes(coded))
        assert stats.uncorrectable

    def test_ldpc_roundtrip(self):
        coder = PacketCoder(FECType.LDPC, 200, 0.5)
        payload = RandomGenerator(4).random_bytes(200)

        data, stats = coder.decode(coder.encode(payload))
        assert data == payload
        assert stats.iterations <= 1

    def test_wrong_lengths(self):
        coder = PacketCoder(FECType.REED_SOLOMON, 100, 0.5)
        with pytest.raises(InvalidParameterError):
            coder.encode(bytes(99))
        with pytest.raises(InvalidParameterError):
            coder.decode(bytes(100))


class TestTrackingModel:
    """Test the pointing disturbance model."""

    def test_pointing_gain(self):
        model = TrackingModel(get_preset('high_turbulence'), RandomGenerator(5), LogLevel.OFF)

        assert model.pointing_gain() == pytest.approx(1.0)
        model.misalignment.azimuth = 0.01
        assert model.pointing_gain() == MIN_POINTING_GAIN

    def test_misalignment_clamped(self):
        model = TrackingModel(get_preset('high_turbulence'), RandomGenerator(5), LogLevel.OFF)
        for _ in range(200):
            model._drift(1.0)

        assert abs(model.misalignment.azimuth) <= MAX_MISALIGNMENT
        assert abs(model.misalignment.elevation) <= MAX_MISALIGNMENT

    def test_step_strength_range(self):
        model = TrackingModel(get_preset('high_turbulence'), RandomGenerator(6), LogLevel.OFF)
        for _ in range(20):
            strength = model.step(0.01, 1.0)
            assert 0.0 <= strength <= 1.0

    def test_reacquire_between_grid_points(self):
        """A beam between scan points is still found and the pointing follows it."""
        model = TrackingModel(get_preset('high_turbulence'), RandomGenerator(5), LogLevel.OFF)
        model.misalignment.azimuth = 0.0037
        model.misalignment.elevation = -0.0061

        strength = model.step(0.0, 1.0)

        assert strength < 0.3
        assert model.tracker.reacquisition_attempts == 1
        assert model.tracker.reacquisition_count == 1
        assert model.updates == 0
        assert model.pointing_error() < 1e-3
        assert model.pointing_gain() > 0.1


class TestSimulator:
    """Test the per-packet pipeline."""

    def test_invalid_config(self):
        config = SimConfig()
        config.link.distance = 5.0
        with pytest.raises(InvalidParameterError):
            Simulator(config)

    def test_expected_power_matches_budget(self):
        config = get_preset('rainy')
        channel = build_channel(config, RandomGenerator(1), LogLevel.OFF)
        budget = channel.link_budget(config.link.transmit_power, config.link.receiver_aperture)

        assert expected_received_power(config) == pytest.approx(budget.rx_power, rel=1e-9)

    def test_channel_parameters_applied(self):
        config = get_preset('rainy')
        channel = build_channel(config)

        assert channel.rainfall_rate == 25.0
        assert channel.humidity == 0.95
        assert channel.beam_divergence == config.link.beam_divergence

    def test_interleaver_depth(self):
        with Simulator(quick_config(size=1024)) as sim:
            assert sim.interleaver.block_size == 255
            assert sim.interleaver.depth == sim.coder.blocks

        config = quick_config()
        config.system.use_interleaver = False
        with Simulator(config) as sim:
            assert sim.interleaver is None

    def test_deterministic(self):
        """Same non-zero seed, same packets."""
        def run():
            config = quick_config(packets=10)
            config.control.noise_floor = expected_received_power(config) / 10 ** 0.9
            return run_simulation(config)

        a, b = run(), run()
        assert a.packets == b.packets
        assert [p.snr_db for p in a.history] == [p.snr_db for p in b.history]
        assert a.total_bit_errors > 0

    def test_noise_free(self):
        config = quick_config()
        config.control.noise_floor = 0.0

        results = run_simulation(config)
        assert results.total_bit_errors == 0
        assert math.isfinite(results.avg_snr)

    @pytest.mark.parametrize("modulation,fec", [
        (ModulationType.DPSK, FECType.LDPC),
        (ModulationType.PPM, FECType.NONE),
        (ModulationType.OOK, FECType.LDPC),
    ])
    def test_combinations(self, modulation, fec):
        config = quick_config(size=128)
        config.system.modulation = modulation
        config.system.fec = fec
        config.system.code_rate = 0.5

        results = run_simulation(config)

        assert results.total_packets == 5
        assert results.avg_ber == 0.0
        assert results.packet_loss_rate == 0.0

    def test_time_series(self):
        results = run_simulation(quick_config(packets=4))

        assert len(results.history) == 4
        timestamps = [p.timestamp for p in results.history]
        assert timestamps == pytest.approx([0.0, 0.25, 0.5, 0.75])
        for p in results.history:
            assert p.throughput == pytest.approx(256 * 8 / 0.25)
            assert p.signal_strength > 0.0

    def test_close(self):
        sim = Simulator(quick_config())
        sim.close()
        with pytest.raises(NotInitializedError):
            sim.run()


class TestScenarios:
    """End-to-end scenarios."""

    def test_clear_link(self):
        """Clear 1 km, OOK + RS(255, 223): error free."""
        config = get_preset('clear')
        config.control.seed = 0
        config.control.num_packets = 100
        config.control.packet_size = 1024
        config.system.modulation = ModulationType.OOK
        config.system.fec = FECType.REED_SOLOMON
        config.system.code_rate = 223 / 255
        config.system.enable_tracking = False

        results = run_simulation(config)

        assert results.total_packets == 100
        assert results.min_snr >= 20.0
        assert results.avg_ber < 1e-5
        assert results.packet_loss_rate == 0.0

    def test_fog(self):
        """Fog 500 m at 200 m visibility: degraded but usable."""
        config = get_preset('foggy')
        config.control.seed = 0
        config.control.num_packets = 100
        config.control.packet_size = 1024
        # Noise floor about 8 dB below the fog-attenuated received power
        config.control.noise_floor = expected_received_power(config) / 10 ** 0.8

        results = run_simulation(config)

        assert results.avg_snr >= 0.0
        assert math.isfinite(results.avg_ber)
        assert results.avg_ber > 1e-4

    def test_rain_ppm(self):
        """Rain 800 m, 4-PPM + RS: lengths survive the modem."""
        config = get_preset('rainy')
        config.control.num_packets = 20
        config.system.modulation = ModulationType.PPM
        config.system.ppm_order = 4

        with Simulator(config) as sim:
            coded = sim.coder.encode(bytes(config.control.packet_size))
            samples = sim.modulator.modulate(coded)
            assert len(sim.modulator.demodulate(samples, len(coded))) == len(coded)

            results = sim.run()

        assert all(p.bits_received == config.control.packet_size * 8 for p in results.packets)
        assert results.packet_loss_rate >= 0.0

    def test_high_turbulence_tracking(self):
        """Strong turbulence with tracking triggers reacquisition."""
        config = get_preset('high_turbulence')
        config.control.seed = 0
        assert config.environment.cn2 == 1e-13
        assert config.environment.correlation_time == 5e-4
        assert config.system.enable_tracking

        results = run_simulation(config)

        assert results.tracking_enabled
        assert results.reacquisitions >= 1
        assert results.reacquisition_attempts >= results.reacquisitions
        assert results.total_packets == config.control.num_packets
        assert results.tracking_updates + results.reacquisition_attempts == results.total_packets


class TestCLI:
    """Test the command line interface."""

    def test_no_command(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_scenarios(self, capsys):
        assert main(['scenarios']) == 0
        assert 'foggy' in capsys.readouterr().out

    def test_config_save(self, tmp_path):
        path = tmp_path / "rainy.json"

        assert main(['config', 'rainy', '--save', str(path)]) == 0
        assert SimConfig.load(path) == get_preset('rainy')

    def test_run_with_csv(self, tmp_path):
        series = tmp_path / "series.csv"
        packets = tmp_path / "packets.csv"

        code = main(['run', 'clear', '-n', '3', '--seed', '5', '--modulation', 'ppm',
                     '--no-tracking', '--log-level', 'ERROR', '-q',
                     '--csv', str(series), '--packets-csv', str(packets)])

        assert code == 0
        with open(series, newline='') as f:
            assert len(list(csv.reader(f))) == 4
        with open(packets, newline='') as f:
            assert len(list(csv.DictReader(f))) == 3

    def test_run_from_config(self, tmp_path, capsys):
        path = tmp_path / "link.json"
        path.write_text(json.dumps({
            'control': {'num_packets': 2, 'packet_size': 64, 'seed': 3},
            'system': {'fec': 'none'},
        }))

        assert main(['run', '-c', str(path)]) == 0
        assert "Overall" in capsys.readouterr().out

    def test_run_missing_config(self, tmp_path, capsys):
        assert main(['run', '-c', str(tmp_path / "absent.json")]) == 1
        assert "Error" in capsys.readouterr().err

    def test_run_invalid_override(self, capsys):
        assert main(['run', 'clear', '-n', '0']) == 1
        assert "num_packets" in capsys.readouterr().err

    def test_info(self, capsys):
        assert main(['info', 'long_range']) == 0
        out = capsys.readouterr().out
        assert "Rytov variance" in out
        assert "Link margin" in out
