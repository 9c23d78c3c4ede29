"""
Simulation Results

Per-packet records, a time series sampled once per packet, and the
aggregate link metrics derived from them. Appends are guarded by a lock
so packets decoded on worker threads can be recorded directly.
"""

import csv
import math
import threading
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import List, Optional, Union

from .errors import FSOIOError
from .log import get_logger


@dataclass
class PacketStats:
    """Outcome of one packet."""
    packet_id: int
    bits_transmitted: int
    bits_received: int
    bit_errors: int
    ber: float
    snr_db: float
    received_power: float
    fec_corrected_errors: int = 0
    fec_uncorrectable: bool = False


@dataclass
class TimeSeriesPoint:
    """Link state at one simulated instant."""
    timestamp: float
    ber: float
    snr_db: float
    received_power: float
    throughput: float
    beam_azimuth: float = 0.0
    beam_elevation: float = 0.0
    signal_strength: float = 0.0


PACKET_CSV_FIELDS = ('packet_id', 'bits_transmitted', 'bits_received', 'bit_errors',
                     'ber', 'snr_db', 'received_power', 'fec_corrected_errors',
                     'fec_uncorrectable')
SERIES_CSV_FIELDS = ('timestamp', 'ber', 'snr_db', 'received_power', 'throughput')
TRACKING_CSV_FIELDS = ('beam_azimuth', 'beam_elevation', 'signal_strength')


class SimResults:
    """
    Accumulated simulation output.

    Counters are updated on every add_packet(); averages and extremes
    are filled in by calculate_metrics().

    Example:
        >>> results = SimResults()
        >>> results.add_packet(stats)
        >>> results.add_point(point)
        >>> results.calculate_metrics()
        >>> results.export_csv('series.csv')
    """

    def __init__(self, tracking_enabled: bool = False):
        self._lock = threading.Lock()
        self.log = get_logger("SimResults")
        self.tracking_enabled = tracking_enabled

        self.packets: List[PacketStats] = []
        self.history: List[TimeSeriesPoint] = []

        # Counters
        self.total_packets = 0
        self.packets_received = 0
        self.packets_lost = 0
        self.total_bits = 0
        self.total_bit_errors = 0
        self.fec_corrected_errors = 0

        # Derived metrics
        self.avg_ber = 0.0
        self.avg_snr = 0.0
        self.avg_throughput = 0.0
        self.packet_loss_rate = 0.0
        self.min_snr = math.inf
        self.max_snr = -math.inf
        self.min_ber = math.inf
        self.max_ber = -math.inf

        # Tracking
        self.avg_beam_azimuth = 0.0
        self.avg_beam_elevation = 0.0
        self.tracking_updates = 0
        self.reacquisitions = 0
        self.reacquisition_attempts = 0

        # Timing
        self.simulation_duration = 0.0
        self.wall_time = 0.0
        self._start: Optional[float] = None

    def start(self) -> None:
        """Start the wall-clock timer."""
        self._start = time.perf_counter()

    def stop(self) -> None:
        if self._start is not None:
            self.wall_time = time.perf_counter() - self._start

    def add_packet(self, stats: PacketStats) -> None:
        with self._lock:
            self.packets.append(stats)
            self.total_packets += 1
            self.total_bits += stats.bits_transmitted
            self.total_bit_errors += stats.bit_errors
            self.fec_corrected_errors += stats.fec_corrected_errors
            if stats.fec_uncorrectable:
                self.packets_lost += 1
            else:
                self.packets_received += 1

    def add_point(self, point: TimeSeriesPoint) -> None:
        with self._lock:
            self.history.append(point)

    def calculate_metrics(self) -> None:
        """Derive loss rate, BER, SNR and throughput statistics."""
        if self.total_packets == 0:
            self.log.warning("No packets to calculate metrics from")
            return

        self.packet_loss_rate = self.packets_lost / self.total_packets
        if self.total_bits > 0:
            self.avg_ber = self.total_bit_errors / self.total_bits

        if self.history:
            snr = [p.snr_db for p in self.history]
            ber = [p.ber for p in self.history]
            count = len(self.history)

            self.avg_snr = sum(snr) / count
            self.min_snr, self.max_snr = min(snr), max(snr)
            self.min_ber, self.max_ber = min(ber), max(ber)
            self.avg_throughput = sum(p.throughput for p in self.history) / count

            if self.tracking_enabled:
                self.avg_beam_azimuth = sum(p.beam_azimuth for p in self.history) / count
                self.avg_beam_elevation = sum(p.beam_elevation for p in self.history) / count

            self.simulation_duration = self.history[-1].timestamp - self.history[0].timestamp

        self.log.info("Metrics: BER=%.3e, SNR=%.2f dB, PLR=%.3f",
                      self.avg_ber, self.avg_snr, self.packet_loss_rate)

    @property
    def correction_rate(self) -> float:
        """Corrected errors as a fraction of residual bit errors."""
        if self.total_bit_errors == 0:
            return 0.0
        return self.fec_corrected_errors / self.total_bit_errors

    def to_dict(self) -> dict:
        """Aggregate metrics (no per-packet data)."""
        out = {
            'total_packets': self.total_packets,
            'packets_received': self.packets_received,
            'packets_lost': self.packets_lost,
            'packet_loss_rate': self.packet_loss_rate,
            'total_bits': self.total_bits,
            'total_bit_errors': self.total_bit_errors,
            'avg_ber': self.avg_ber,
            'min_ber': self.min_ber,
            'max_ber': self.max_ber,
            'fec_corrected_errors': self.fec_corrected_errors,
            'avg_snr': self.avg_snr,
            'min_snr': self.min_snr,
            'max_snr': self.max_snr,
            'avg_throughput': self.avg_throughput,
            'simulation_duration': self.simulation_duration,
            'wall_time': self.wall_time,
        }
        if self.tracking_enabled:
            out.update({
                'avg_beam_azimuth': self.avg_beam_azimuth,
                'avg_beam_elevation': self.avg_beam_elevation,
                'tracking_updates': self.tracking_updates,
                'reacquisitions': self.reacquisitions,
                'reacquisition_attempts': self.reacquisition_attempts,
            })
        return out

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def _write_csv(self, path: Union[str, Path], header, rows) -> None:
        try:
            with open(path, 'w', newline='') as f:
                writer = csv.writer(f)
                writer.writerow(header)
                writer.writerows(rows)
        except OSError as exc:
            raise FSOIOError(f"Failed to write {path}: {exc}") from exc

    def export_csv(self, path: Union[str, Path]) -> None:
        """Write the time series (beam columns only when tracking)."""
        header = SERIES_CSV_FIELDS + (TRACKING_CSV_FIELDS if self.tracking_enabled else ())
        rows = []
        for p in self.history:
            row = [f"{p.timestamp:.6f}", f"{p.ber:.6e}", f"{p.snr_db:.3f}",
                   f"{p.received_power:.6e}", f"{p.throughput:.3e}"]
            if self.tracking_enabled:
                row += [f"{p.beam_azimuth:.6f}", f"{p.beam_elevation:.6f}",
                        f"{p.signal_strength:.6f}"]
            rows.append(row)
        self._write_csv(path, header, rows)
        self.log.info("Exported %d time-series points to %s", len(rows), path)

    def export_packets_csv(self, path: Union[str, Path]) -> None:
        rows = []
        for s in self.packets:
            rows.append([s.packet_id, s.bits_transmitted, s.bits_received, s.bit_errors,
                         f"{s.ber:.6e}", f"{s.snr_db:.3f}", f"{s.received_power:.6e}",
                         s.fec_corrected_errors, int(s.fec_uncorrectable)])
        self._write_csv(path, PACKET_CSV_FIELDS, rows)
        self.log.info("Exported %d packet records to %s", len(rows), path)

    def packets_as_dicts(self) -> List[dict]:
        return [asdict(s) for s in self.packets]

    def print_summary(self, console=None) -> None:
        """Render the aggregate metrics to the console."""
        from .report import print_results
        print_results(self, console)
