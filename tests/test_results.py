"""
Tests for result aggregation, CSV export and console reports.
"""

import csv
import io
import math
import threading

import pytest
from rich.console import Console

from fso.results import (SimResults, PacketStats, TimeSeriesPoint,
                         PACKET_CSV_FIELDS, SERIES_CSV_FIELDS, TRACKING_CSV_FIELDS)
from fso.report import print_config, print_scenarios, print_link_budget
from fso.config import SimConfig
from fso.Channel import ChannelModel
from fso.errors import FSOIOError


def packet(pid, errors=0, uncorrectable=False, corrected=0):
    bits = 8192
    return PacketStats(packet_id=pid, bits_transmitted=bits, bits_received=bits,
                       bit_errors=errors, ber=errors / bits, snr_db=20.0 + pid,
                       received_power=1e-6, fec_corrected_errors=corrected,
                       fec_uncorrectable=uncorrectable)


def point(t, ber=0.0, snr=20.0, az=0.0, el=0.0):
    return TimeSeriesPoint(timestamp=t, ber=ber, snr_db=snr, received_power=1e-6,
                           throughput=8.192e6, beam_azimuth=az, beam_elevation=el,
                           signal_strength=0.9)


def make_console():
    return Console(file=io.StringIO(), width=120, color_system=None)


@pytest.fixture
def results():
    r = SimResults()
    r.add_packet(packet(0))
    r.add_packet(packet(1, errors=10, corrected=40))
    r.add_packet(packet(2, errors=200, uncorrectable=True))
    r.add_packet(packet(3))
    for i, (ber, snr) in enumerate([(0.0, 22.0), (1e-3, 18.0), (2e-2, 9.0), (0.0, 23.0)]):
        r.add_point(point(i * 0.01, ber, snr))
    r.calculate_metrics()
    return r


class TestSimResults:
    """Test counters and derived metrics."""

    def test_counters(self, results):
        assert results.total_packets == 4
        assert results.packets_received == 3
        assert results.packets_lost == 1
        assert results.total_bits == 4 * 8192
        assert results.total_bit_errors == 210
        assert results.fec_corrected_errors == 40

    def test_metrics(self, results):
        assert results.packet_loss_rate == pytest.approx(0.25)
        assert results.avg_ber == pytest.approx(210 / (4 * 8192))
        assert results.avg_snr == pytest.approx(18.0)
        assert (results.min_snr, results.max_snr) == (9.0, 23.0)
        assert (results.min_ber, results.max_ber) == (0.0, 2e-2)
        assert results.avg_throughput == pytest.approx(8.192e6)
        assert results.simulation_duration == pytest.approx(0.03)

    def test_correction_rate(self, results):
        assert results.correction_rate == pytest.approx(40 / 210)
        assert SimResults().correction_rate == 0.0

    def test_empty(self):
        """No packets leaves the initial values."""
        r = SimResults()
        r.calculate_metrics()

        assert r.packet_loss_rate == 0.0
        assert r.min_snr == math.inf
        assert r.max_ber == -math.inf

    def test_tracking_averages(self):
        r = SimResults(tracking_enabled=True)
        r.add_packet(packet(0))
        r.add_point(point(0.0, az=0.002, el=-0.001))
        r.add_point(point(0.01, az=0.004, el=-0.003))
        r.tracking_updates = 2
        r.calculate_metrics()

        assert r.avg_beam_azimuth == pytest.approx(0.003)
        assert r.avg_beam_elevation == pytest.approx(-0.002)
        assert r.to_dict()['tracking_updates'] == 2

    def test_to_dict(self, results):
        values = results.to_dict()

        assert values['packets_lost'] == 1
        assert values['avg_snr'] == pytest.approx(18.0)
        assert 'reacquisitions' not in values

    def test_packets_as_dicts(self, results):
        rows = results.packets_as_dicts()
        assert rows[2]['fec_uncorrectable'] is True
        assert set(rows[0]) == set(PACKET_CSV_FIELDS)

    def test_timer(self):
        r = SimResults()
        r.start()
        r.stop()
        assert r.wall_time >= 0.0

    def test_concurrent_appends(self):
        r = SimResults()

        def worker(base):
            for i in range(250):
                r.add_packet(packet(base + i, errors=1))

        threads = [threading.Thread(target=worker, args=(k * 1000,)) for k in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert r.total_packets == 1000
        assert r.total_bit_errors == 1000
        assert len(r.packets) == 1000


class TestExport:
    """Test CSV output."""

    def test_series_csv(self, results, tmp_path):
        path = tmp_path / "series.csv"
        results.export_csv(path)

        with open(path, newline='') as f:
            rows = list(csv.reader(f))

        assert tuple(rows[0]) == SERIES_CSV_FIELDS
        assert len(rows) == 5
        assert float(rows[2][1]) == pytest.approx(1e-3)
        assert float(rows[3][2]) == pytest.approx(9.0)

    def test_series_csv_tracking_columns(self, tmp_path):
        r = SimResults(tracking_enabled=True)
        r.add_point(point(0.0, az=0.001))
        path = tmp_path / "series.csv"
        r.export_csv(path)

        with open(path, newline='') as f:
            header, row = list(csv.reader(f))

        assert tuple(header) == SERIES_CSV_FIELDS + TRACKING_CSV_FIELDS
        assert float(row[5]) == pytest.approx(0.001)

    def test_packets_csv(self, results, tmp_path):
        path = tmp_path / "packets.csv"
        results.export_packets_csv(path)

        with open(path, newline='') as f:
            rows = list(csv.DictReader(f))

        assert len(rows) == 4
        assert rows[2]['fec_uncorrectable'] == '1'
        assert int(rows[1]['bit_errors']) == 10

    def test_unwritable(self, results, tmp_path):
        with pytest.raises(FSOIOError):
            results.export_csv(tmp_path / "missing" / "series.csv")


class TestReport:
    """Test rich console output."""

    def test_results_panels(self, results):
        console = make_console()
        results.print_summary(console)
        text = console.file.getvalue()

        for title in ("Overall", "Bit errors", "FEC", "Signal quality", "Timing"):
            assert title in text
        assert "Beam tracking" not in text
        assert "25.00%" in text

    def test_tracking_panel(self):
        r = SimResults(tracking_enabled=True)
        r.add_packet(packet(0))
        r.add_point(point(0.0))
        r.reacquisitions, r.reacquisition_attempts = 2, 3
        r.calculate_metrics()

        console = make_console()
        r.print_summary(console)
        text = console.file.getvalue()

        assert "Beam tracking" in text
        assert "2 / 3 attempts" in text

    def test_empty_results_render(self):
        console = make_console()
        SimResults().print_summary(console)
        assert "n/a" in console.file.getvalue()

    def test_config_and_scenarios(self):
        console = make_console()
        print_config(SimConfig(), console)
        print_scenarios(console)
        text = console.file.getvalue()

        assert "Environment" in text
        assert "high_turbulence" in text

    def test_link_budget(self):
        channel = ChannelModel(1000.0, 1550e-9, seed=1)
        budget = channel.link_budget(1e-3, 0.1)

        console = make_console()
        print_link_budget(budget, 1e-9, console)
        text = console.file.getvalue()

        assert "Link budget" in text
        assert "Link margin:" in text
