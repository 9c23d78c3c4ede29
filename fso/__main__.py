"""
FSO Link Simulator Command Line Interface

Usage:
    python -m fso run [scenario]            # Simulate a preset scenario
    python -m fso run -c link.json          # Simulate a saved configuration
    python -m fso scenarios                 # List preset scenarios
    python -m fso config [scenario]         # Show a configuration
    python -m fso info [scenario]           # Show the static link budget

Examples:
    # Foggy link with 4-PPM and a time-series CSV
    python -m fso run foggy --modulation ppm --csv foggy.csv

    # Strong turbulence with tracking, reproducible
    python -m fso run high_turbulence --seed 42 -n 200

    # Save a preset as a starting point for a custom link
    python -m fso config rainy --save rainy.json
"""

import argparse
import sys
from typing import Optional

from rich.console import Console

from . import __version__
from .config import PRESETS, SimConfig, get_preset
from .errors import FSOError
from .log import LogLevel, setup_logging


def _load_config(args: argparse.Namespace) -> SimConfig:
    if getattr(args, 'config', None):
        return SimConfig.load(args.config)
    if args.scenario:
        return get_preset(args.scenario)
    return SimConfig()


def cmd_run(args: argparse.Namespace) -> int:
    """Run a simulation and print the summary."""
    from .Simulator import run_simulation

    console = Console(stderr=args.quiet)
    try:
        config = _load_config(args)
        if args.packets is not None:
            config.control.num_packets = args.packets
        if args.seed is not None:
            config.control.seed = args.seed
        if args.modulation:
            config.set('system.modulation', args.modulation)
        if args.fec:
            config.set('system.fec', args.fec)
        if args.tracking is not None:
            config.system.enable_tracking = args.tracking
        if args.log_level:
            config.set('control.log_level', args.log_level)
    except FSOError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.control.log_level)

    try:
        results = run_simulation(config)
    except FSOError as e:
        print(f"Simulation failed: {e}", file=sys.stderr)
        return 1

    if not args.quiet:
        results.print_summary(console)

    try:
        if args.csv:
            results.export_csv(args.csv)
            console.print(f"Time series written to {args.csv}")
        if args.packets_csv:
            results.export_packets_csv(args.packets_csv)
            console.print(f"Packet records written to {args.packets_csv}")
    except FSOError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


def cmd_scenarios(args: argparse.Namespace) -> int:
    """List preset scenarios."""
    from .report import print_scenarios
    print_scenarios(Console())
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Print or save a configuration."""
    from .report import print_config

    try:
        config = _load_config(args)
        config.validate()
        if args.save:
            config.save(args.save, title=f"FSO link: {args.scenario or 'default'}")
            print(f"Configuration saved to {args.save}")
            return 0
    except FSOError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print_config(config, Console())
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    """Show the static link budget for a configuration."""
    from .Simulator import build_channel
    from .report import print_link_budget

    try:
        config = _load_config(args)
        config.validate()
        channel = build_channel(config, log_level=LogLevel.OFF)
        budget = channel.link_budget(config.link.transmit_power, config.link.receiver_aperture)
    except FSOError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    console = Console()
    console.print(f"{channel!r}")
    console.print(f"Rytov variance: {channel.rytov_variance:.4f}, "
                  f"scintillation index: {channel.scintillation_index:.4f}")
    print_link_budget(budget, config.link.receiver_sensitivity, console)
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog='fso',
        description='PyFSO - Free-space optical link simulator',
    )
    parser.add_argument('--version', action='version',
                        version=f'PyFSO {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Commands')
    scenarios = sorted(PRESETS)

    # Run command
    run_parser = subparsers.add_parser('run', help='Run a simulation')
    run_parser.add_argument('scenario', nargs='?', choices=scenarios,
                            help='Preset scenario (default: built-in defaults)')
    run_parser.add_argument('-c', '--config', help='Configuration file')
    run_parser.add_argument('-n', '--packets', type=int, help='Number of packets')
    run_parser.add_argument('--seed', type=int, help='Random seed (0 = wall clock)')
    run_parser.add_argument('--modulation', choices=['ook', 'ppm', 'dpsk'],
                            help='Modulation scheme')
    run_parser.add_argument('--fec', choices=['none', 'rs', 'ldpc'], help='FEC code')
    run_parser.add_argument('--tracking', dest='tracking', action='store_true', default=None,
                            help='Enable beam tracking')
    run_parser.add_argument('--no-tracking', dest='tracking', action='store_false',
                            help='Disable beam tracking')
    run_parser.add_argument('--log-level', choices=[lvl.name for lvl in LogLevel],
                            help='Log level')
    run_parser.add_argument('--csv', help='Write the time series to a CSV file')
    run_parser.add_argument('--packets-csv', help='Write per-packet records to a CSV file')
    run_parser.add_argument('-q', '--quiet', action='store_true',
                            help='Do not print the summary')

    # Scenarios command
    subparsers.add_parser('scenarios', help='List preset scenarios')

    # Config command
    config_parser = subparsers.add_parser('config', help='Show or save a configuration')
    config_parser.add_argument('scenario', nargs='?', choices=scenarios,
                               help='Preset scenario')
    config_parser.add_argument('-c', '--config', help='Configuration file')
    config_parser.add_argument('--save', help='Write the configuration to a file')

    # Info command
    info_parser = subparsers.add_parser('info', help='Show the link budget')
    info_parser.add_argument('scenario', nargs='?', choices=scenarios,
                             help='Preset scenario')
    info_parser.add_argument('-c', '--config', help='Configuration file')

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        'run': cmd_run,
        'scenarios': cmd_scenarios,
        'config': cmd_config,
        'info': cmd_info,
    }

    return commands[args.command](args)


if __name__ == '__main__':
    sys.exit(main())
