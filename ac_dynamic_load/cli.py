"""Command-line interface for ac-dynamic-load."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import BenchApp
from .config import load_config, write_default_config
from .controller import BenchController
from .core import BenchError, ConfigurationMissingError
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ac-dynamic-load", description="AC charging test bench controller"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Poll the CDS unit and the current sink")

    init_parser = subparsers.add_parser(
        "init-config", help="Write a configuration file with factory addresses"
    )
    init_parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing file"
    )

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    subparsers.add_parser("cp-state", help="Read the control pilot state once")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "init-config":
        path = write_default_config(args.config, force=args.force)
        print(f"Configuration written to {path!s}")
        return 0

    try:
        config = load_config(args.config)
    except ConfigurationMissingError as exc:
        LOGGER.error("%s (run 'ac-dynamic-load init-config' to create one)", exc)
        return 2

    if args.command == "start":
        BenchApp.start(config)
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "cp-state":
        configure_logging(config.logging.level)
        controller = BenchController(config)
        try:
            state = asyncio.run(controller.read_cp_state())
        except BenchError as exc:
            LOGGER.error("Reading CP state failed: %s", exc)
            return 1
        print(state.value)
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
