"""
Console Reports

Rich tables and panels for configurations, preset scenarios, link
budgets and simulation results. Used by the command line interface;
nothing here is needed to run a simulation.
"""

import math
from typing import Optional, TYPE_CHECKING

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.style import Style

from .config import SimConfig, list_presets

if TYPE_CHECKING:
    from .Channel import LinkBudget
    from .results import SimResults


THEME = {
    'title': Style(color="bright_cyan", bold=True),
    'label': Style(color="bright_white"),
    'value': Style(color="green"),
    'value_warn': Style(color="yellow"),
    'value_error': Style(color="red"),
    'dim': Style(color="bright_black"),
    'accent': Style(color="cyan"),
}


def _kv_table() -> Table:
    table = Table(box=None, show_header=False, padding=(0, 1))
    table.add_column("Label", style=THEME['label'])
    table.add_column("Value", style=THEME['value'])
    return table


def _panel(body, title: str) -> Panel:
    return Panel(body, title=f"[bold]{title}[/]", title_align="left",
                 border_style=THEME['accent'])


def _fmt_ber(ber: float) -> str:
    if not math.isfinite(ber):
        return "n/a"
    return f"{ber:.3e}"


def _fmt_db(value: float) -> str:
    if not math.isfinite(value):
        return "n/a"
    return f"{value:.2f} dB"


def _ber_style(ber: float) -> Style:
    if ber < 1e-6:
        return THEME['value']
    if ber < 1e-3:
        return THEME['value_warn']
    return THEME['value_error']


def _snr_style(snr_db: float) -> Style:
    if snr_db >= 20.0:
        return THEME['value']
    if snr_db >= 10.0:
        return THEME['value_warn']
    return THEME['value_error']


def print_config(config: SimConfig, console: Optional[Console] = None) -> None:
    """One panel per configuration section."""
    console = console or Console()
    panels = []
    for section, values in config.to_dict().items():
        table = _kv_table()
        for key, value in values.items():
            table.add_row(f"{key}:", str(value))
        panels.append(_panel(table, section.capitalize()))
    console.print(Group(*panels))


def print_scenarios(console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Preset scenarios", title_style=THEME['title'])
    table.add_column("Name", style=THEME['accent'])
    table.add_column("Description")
    for name, description in list_presets():
        table.add_row(name, description)
    console.print(table)


def print_link_budget(budget: "LinkBudget", sensitivity: Optional[float] = None,
                      console: Optional[Console] = None) -> None:
    """
    Static link budget, optionally with the margin over the receiver
    sensitivity (W).
    """
    console = console or Console()
    table = _kv_table()
    table.add_row("Tx power:", f"{budget.tx_power_dbm:.2f} dBm")
    table.add_row("Free-space path loss:", f"{budget.path_loss_db:.2f} dB")
    table.add_row("Tx telescope gain:", f"{budget.tx_gain_db:.2f} dB")
    table.add_row("Rx telescope gain:", f"{budget.rx_gain_db:.2f} dB")
    table.add_row("Geometric coupling:", f"{budget.coupling_db:.2f} dB")
    table.add_row("Weather attenuation:", f"{budget.attenuation_db:.2f} dB")
    table.add_row("Absorption:", f"{budget.absorption_db:.2f} dB")
    table.add_row("Rx power:", f"{budget.rx_power_dbm:.2f} dBm ({budget.rx_power:.3e} W)")

    if sensitivity is not None:
        margin = budget.rx_power_dbm - (10.0 * math.log10(sensitivity) + 30.0)
        style = THEME['value'] if margin >= 0 else THEME['value_error']
        table.add_row("Link margin:", Text(f"{margin:.2f} dB", style=style))

    console.print(_panel(table, "Link budget"))


def print_results(results: "SimResults", console: Optional[Console] = None) -> None:
    """Summary panels in the order overall, errors, FEC, signal, tracking, timing."""
    console = console or Console()
    panels = []

    overall = _kv_table()
    overall.add_row("Total packets:", f"{results.total_packets:,}")
    overall.add_row("Received:", f"{results.packets_received:,}")
    lost_style = THEME['value'] if results.packets_lost == 0 else THEME['value_error']
    overall.add_row("Lost:", Text(f"{results.packets_lost:,}", style=lost_style))
    overall.add_row("Packet loss rate:", f"{results.packet_loss_rate * 100:.2f}%")
    panels.append(_panel(overall, "Overall"))

    errors = _kv_table()
    errors.add_row("Total bits:", f"{results.total_bits:,}")
    errors.add_row("Bit errors:", f"{results.total_bit_errors:,}")
    errors.add_row("Average BER:", Text(_fmt_ber(results.avg_ber),
                                        style=_ber_style(results.avg_ber)))
    errors.add_row("Min BER:", _fmt_ber(results.min_ber))
    errors.add_row("Max BER:", _fmt_ber(results.max_ber))
    panels.append(_panel(errors, "Bit errors"))

    fec = _kv_table()
    fec.add_row("Corrected errors:", f"{results.fec_corrected_errors:,}")
    fec.add_row("Correction rate:", f"{results.correction_rate * 100:.2f}%")
    panels.append(_panel(fec, "FEC"))

    signal = _kv_table()
    signal.add_row("Average SNR:", Text(_fmt_db(results.avg_snr),
                                        style=_snr_style(results.avg_snr)))
    signal.add_row("Min SNR:", _fmt_db(results.min_snr))
    signal.add_row("Max SNR:", _fmt_db(results.max_snr))
    signal.add_row("Throughput:", f"{results.avg_throughput / 1e6:.3f} Mbps")
    panels.append(_panel(signal, "Signal quality"))

    if results.tracking_enabled:
        tracking = _kv_table()
        tracking.add_row("Avg azimuth:", f"{results.avg_beam_azimuth * 1e3:.3f} mrad")
        tracking.add_row("Avg elevation:", f"{results.avg_beam_elevation * 1e3:.3f} mrad")
        tracking.add_row("Updates:", f"{results.tracking_updates:,}")
        tracking.add_row("Reacquisitions:",
                         f"{results.reacquisitions:,} / {results.reacquisition_attempts:,} attempts")
        panels.append(_panel(tracking, "Beam tracking"))

    timing = _kv_table()
    timing.add_row("Simulated duration:", f"{results.simulation_duration:.4f} s")
    timing.add_row("Wall time:", f"{results.wall_time:.3f} s")
    panels.append(_panel(timing, "Timing"))

    console.print(Group(*panels))
