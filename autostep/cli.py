#!/usr/bin/env python3
"""
Command line tools for the Autostep controller.

Entry points:
    autostep-params   --port /dev/ttyACM0
    autostep-sinusoid --port /dev/ttyACM0 --amplitude 90 --period 1 --phase 90
"""

import argparse
import logging
from typing import List, Optional

from .autostep import Autostep
from .data_types import SinusoidParams
from .tools import log_exceptions


def _base_parser(description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument('--port', '-p', default='/dev/ttyACM0',
                        help='Serial port (default: /dev/ttyACM0)')
    parser.add_argument('--baudrate', '-b', type=int, default=115200,
                        help='Baudrate (default: 115200)')
    parser.add_argument('--gear-ratio', '-g', type=float, default=1.0,
                        help='Gear ratio (default: 1.0)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Log every line sent and received')
    return parser


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


@log_exceptions
def run_params_cli(argv: Optional[List[str]] = None) -> None:
    """Entry point for `autostep-params`."""
    args = _base_parser("Print Autostep parameters").parse_args(argv)
    _setup_logging(args.verbose)

    with Autostep(args.port, baudrate=args.baudrate, gear_ratio=args.gear_ratio) as stepper:
        stepper.print_params()


@log_exceptions
def run_sinusoid_cli(argv: Optional[List[str]] = None) -> None:
    """Entry point for `autostep-sinusoid`."""
    parser = _base_parser("Run a sinusoidal motion and print its samples")
    parser.add_argument('--amplitude', type=float, default=90.0,
                        help='Amplitude in degrees (default: 90)')
    parser.add_argument('--period', type=float, default=1.0,
                        help='Period in seconds (default: 1)')
    parser.add_argument('--phase', type=float, default=90.0,
                        help='Phase in degrees (default: 90)')
    parser.add_argument('--offset', type=float, default=0.0,
                        help='Offset in degrees (default: 0)')
    parser.add_argument('--num-cycle', type=int, default=2,
                        help='Number of cycles (default: 2)')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    params = SinusoidParams(
        amplitude=args.amplitude,
        period=args.period,
        phase=args.phase,
        offset=args.offset,
        num_cycle=args.num_cycle,
    )

    with Autostep(args.port, baudrate=args.baudrate, gear_ratio=args.gear_ratio) as stepper:
        stepper.move_to_sinusoid_start(params)
        stepper.busy_wait()

        reply = stepper.sinusoid(params, print)
        print(reply)
        stepper.busy_wait()


if __name__ == '__main__':
    run_sinusoid_cli()
