#!/usr/bin/env python3
"""
pps-watch: PPS signal quality monitor

Main entry point. For each PPS device given on the command line this:
1. Opens the device and checks it can capture the selected edge
2. Enables that edge (and optional offset compensation)
3. Fetches pulses until SIGINT/SIGTERM/SIGQUIT
4. Prints one line per pulse beyond the margin, then a final report

Usage:
    # Watch the clear edge, no margin
    pps-watch /dev/pps0
    
    # Watch the assert edge, flag pulses 500 ns or more off the second
    pps-watch -a -m 500 /dev/pps0
    
    # Several sources at once, settings from a file
    pps-watch --config /etc/pps-watch.toml /dev/pps0 /dev/pps1
    
    # Dry run without hardware
    pps-watch --simulate -m 2000 sim0

Exit status:
    0  stopped by signal
    1  configuration or fetch error
    2  invalid arguments
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml

# Set up logging before imports that use it
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('pps-watch')

from . import __version__
from .engine.acquisition import (
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    AcquisitionLoop,
    WatchConfig,
    run_sources,
)
from .errors import PPSError, PPSFetchError
from .interfaces.pps_api import CaptureEdge
from .interfaces.watch_report import WatchReport
from .output.report_writer import ReportWriter
from .source.base import PPSSource
from .source.pps_device import PPSDevice
from .source.simulated import SimulatedPPSSource

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT)

DEFAULT_CONFIG: Dict[str, Any] = {
    'watch': {
        'edge': CaptureEdge.CLEAR.value,
        'margin': 0,
        'timeout': DEFAULT_FETCH_TIMEOUT,
        'poll_interval': DEFAULT_POLL_INTERVAL,
        'offset_ns': 0,
        'status_every': 0,
        'report_file': '',
    },
    'simulate': {
        'jitter_ns': 1000.0,
        'bias_ns': 0.0,
        'pulse_width_ns': 0,
        'dropout_probability': 0.0,
        'period': 1.0,
        'seed': None,
    },
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from TOML file, filled in with defaults.
    
    Raises:
        FileNotFoundError: config_path given but missing
        toml.TomlDecodeError: invalid TOML
    """
    config = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}
    
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"config file not found: {config_path}")
        with open(path, 'r') as f:
            loaded = toml.load(f)
        for section, values in loaded.items():
            if isinstance(values, dict):
                config.setdefault(section, {}).update(values)
            else:
                config[section] = values
    
    return config


def non_negative_int(value: str) -> int:
    """argparse type: integer >= 0, any base prefix accepted (0x, 0o)."""
    try:
        number = int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer value: {value!r}")
    if number < 0:
        raise argparse.ArgumentTypeError("negative margin not supported")
    return number


def integer(value: str) -> int:
    try:
        return int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer value: {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pps-watch',
        description='pps-watch: monitor PPS timestamps and report signal quality',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Clear edge, report only
    pps-watch /dev/pps0
    
    # Assert edge with a 500 ns margin
    pps-watch --assert --margin 500 /dev/pps0
    
    # Simulated source
    pps-watch --simulate --margin 2000 sim0
        """
    )
    
    parser.add_argument(
        'devices',
        nargs='+',
        metavar='ppsdev',
        help='PPS device path (e.g. /dev/pps0); several may be given'
    )
    
    edge = parser.add_mutually_exclusive_group()
    edge.add_argument(
        '--assert', '-a',
        dest='edge',
        action='store_const',
        const=CaptureEdge.ASSERT.value,
        help='Capture the assert (rising) edge'
    )
    edge.add_argument(
        '--clear', '-c',
        dest='edge',
        action='store_const',
        const=CaptureEdge.CLEAR.value,
        help='Capture the clear (falling) edge (default)'
    )
    
    parser.add_argument(
        '--margin', '-m',
        type=non_negative_int,
        help='Report pulses with |offset| >= MARGIN ns (default: 0 = off)'
    )
    parser.add_argument(
        '--offset',
        type=integer,
        dest='offset_ns',
        help='Offset compensation for the captured edge, in ns'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        help=f'Seconds to wait for each pulse (default: {DEFAULT_FETCH_TIMEOUT:g})'
    )
    parser.add_argument(
        '--poll-interval',
        type=float,
        help=f'Polling period for sources that cannot wait (default: {DEFAULT_POLL_INTERVAL:g})'
    )
    parser.add_argument(
        '--config',
        help='Path to TOML configuration file'
    )
    parser.add_argument(
        '--report-file',
        help='Write JSON reports to this file'
    )
    parser.add_argument(
        '--status-every',
        type=non_negative_int,
        help='Also rewrite the report file every N events'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print the final report as JSON'
    )
    parser.add_argument(
        '--simulate',
        action='store_true',
        help='Use simulated sources; device arguments become labels'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    
    return parser


def build_watch_config(config: Dict[str, Any], args: argparse.Namespace) -> WatchConfig:
    """
    Merge file settings and command-line overrides.
    
    Raises:
        ValueError: invalid edge or out-of-range value
    """
    watch = config.get('watch', {})
    
    def pick(arg_value, key, kind):
        if arg_value is not None:
            return arg_value
        value = watch.get(key, DEFAULT_CONFIG['watch'][key])
        return _checked_config_value(key, value, kind)
    
    return WatchConfig(
        edge=CaptureEdge(pick(args.edge, 'edge', str)),
        margin=pick(args.margin, 'margin', int),
        timeout=pick(args.timeout, 'timeout', float),
        poll_interval=pick(args.poll_interval, 'poll_interval', float),
        offset_ns=pick(args.offset_ns, 'offset_ns', int),
        status_every=pick(args.status_every, 'status_every', int),
    )


def _checked_config_value(key: str, value: Any, kind: type) -> Any:
    """
    Validate a [watch] value read from TOML.
    
    Integers must be TOML integers (no floats, no booleans); floats also
    accept integers.
    
    Raises:
        ValueError: value has the wrong type
    """
    if isinstance(value, bool):
        raise ValueError(f"watch.{key}: expected {kind.__name__}, got boolean {value!r}")
    if kind is float and isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, kind):
        raise ValueError(f"watch.{key}: expected {kind.__name__}, got {value!r}")
    return value


def create_source(device: str, config: Dict[str, Any], simulate: bool) -> PPSSource:
    if not simulate:
        return PPSDevice(device)
    
    sim = config.get('simulate', {})
    return SimulatedPPSSource(
        device,
        jitter_ns=float(sim.get('jitter_ns', 1000.0)),
        bias_ns=float(sim.get('bias_ns', 0.0)),
        pulse_width_ns=int(sim.get('pulse_width_ns', 0)),
        dropout_probability=float(sim.get('dropout_probability', 0.0)),
        period=float(sim.get('period', 1.0)),
        seed=sim.get('seed'),
    )


def print_report(report: WatchReport, as_json: bool, header: bool) -> None:
    if header:
        print(f"\nsource {report.device}")
    if as_json:
        print(report.to_json())
    else:
        print(report.format_text())
    sys.stdout.flush()


def install_signal_handlers(cancel: threading.Event) -> Dict[int, Any]:
    """Route shutdown signals to the cancel token. Returns previous handlers."""
    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        cancel.set()
    
    previous = {}
    for signum in SHUTDOWN_SIGNALS:
        previous[signum] = signal.signal(signum, _signal_handler)
    return previous


def restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    
    try:
        config = load_config(args.config)
        watch_config = build_watch_config(config, args)
    except (OSError, ValueError, toml.TomlDecodeError) as e:
        parser.print_usage(sys.stderr)
        print(f"pps-watch: error: {e}", file=sys.stderr)
        return 2
    
    duplicates = sorted({d for d in args.devices if args.devices.count(d) > 1})
    if duplicates:
        parser.print_usage(sys.stderr)
        print(f"pps-watch: error: device given more than once: {', '.join(duplicates)}",
              file=sys.stderr)
        return 2

    report_file = args.report_file or config.get('watch', {}).get('report_file')
    try:
        report_writer = ReportWriter(report_file) if report_file else None
    except OSError as e:
        print(f"pps-watch: error: cannot use report file {report_file}: {e.strerror or e}",
              file=sys.stderr)
        return 1

    cancel = threading.Event()
    loops = [
        AcquisitionLoop(
            create_source(device, config, args.simulate),
            watch_config,
            cancel=cancel,
            report_writer=report_writer,
        )
        for device in args.devices
    ]
    
    previous_handlers = install_signal_handlers(cancel)
    try:
        results = run_sources(loops, cancel)
    finally:
        restore_signal_handlers(previous_handlers)
    
    exit_code = 0
    multiple = len(loops) > 1
    
    for device, result in results.items():
        if isinstance(result, WatchReport):
            print_report(result, args.json, multiple)
            continue
        
        exit_code = 1
        if isinstance(result, PPSError):
            logger.error(f"{result.device}: {result.message}")
        else:
            logger.error(f"{device}: {result}")
        if isinstance(result, PPSFetchError) and result.report is not None:
            print_report(result.report, args.json, multiple)
    
    return exit_code


if __name__ == '__main__':
    sys.exit(main())
