"""Command-line interface for geotemp-link."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import GeoTempApp
from .config import ConfigurationError, load_config

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="geotemp-link",
        description="Share position and temperature readings over MQTT",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "start", help="Join the shared topic and render incoming reports"
    )

    share_parser = subparsers.add_parser(
        "share", help="Publish a single status report and exit"
    )
    share_parser.add_argument(
        "--temperature",
        type=int,
        default=None,
        help="Temperature to report (default: simulated reading)",
    )

    send_parser = subparsers.add_parser(
        "send", help="Publish a text message under the topic prefix and exit"
    )
    send_parser.add_argument("topic", help="Topic segment appended to the prefix")
    send_parser.add_argument("message", help="Message text")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    if args.command == "start":
        return GeoTempApp.start(config)

    if args.command in ("share", "send"):
        app = GeoTempApp(config)
        app.configure_logging()
        if args.command == "share":
            sent = asyncio.run(app.share(args.temperature))
        else:
            sent = asyncio.run(app.send(args.topic, args.message))
        return 0 if sent else 1

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                if key == "password" and value:
                    value = "***"
                print(f"{key} = {value}")
            print()
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
