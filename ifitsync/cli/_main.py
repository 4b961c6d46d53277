from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from ._discovery import scan_devices
from ._run import run_bridge

LOGGER = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the ifitsync bridge."""
    parser = argparse.ArgumentParser(
        prog="ifitsync",
        description="Bridge iFit BLE equipment to MQTT",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ifitsync scan                                  # List all iFit devices
  ifitsync scan --code 1a2b                      # Find specific device by BLE code

  ifitsync run --config settings.json            # Run the bridge
  ifitsync run --code 1a2b --activation CODE     # Settings from the command line
  ifitsync run --code 1a2b --imperial --mqtt-host localhost

Control:
  Publish JSON such as {"kph": 8.0, "incline": 2} to <base topic>/control.
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute", required=True)

    scan_parser = subparsers.add_parser(
        "scan", help="Scan for iFit devices (optionally filter by BLE code)"
    )
    scan_parser.add_argument("--code", help="4-character BLE code to filter by (optional)")
    scan_parser.add_argument(
        "--timeout", type=float, default=10.0, help="Scan timeout in seconds (default: 10.0)"
    )
    scan_parser.set_defaults(func=scan_devices)

    run_parser = subparsers.add_parser("run", help="Run the BLE to MQTT bridge")
    run_parser.add_argument("--config", help="JSON settings file")
    run_parser.add_argument("--code", help="4-character BLE code shown on the equipment")
    run_parser.add_argument("--activation", help="Activation code (hex)")
    run_parser.add_argument(
        "--imperial", action="store_true", help="Publish speed in mi/h instead of km/h"
    )
    run_parser.add_argument("--interval", type=float, help="Poll interval in seconds")
    run_parser.add_argument("--mqtt-host", help="MQTT broker hostname")
    run_parser.add_argument("--mqtt-port", type=int, help="MQTT broker port")
    run_parser.set_defaults(func=run_bridge)

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the ifitsync CLI."""
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)
    except Exception as e:
        LOGGER.error("Error: %s", e, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
