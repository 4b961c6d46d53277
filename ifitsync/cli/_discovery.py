"""Scanning command for the ifitsync CLI."""

from __future__ import annotations

import argparse
import logging
import sys

from bleak.exc import BleakError

from ..client import find_all_ifit_devices

LOGGER = logging.getLogger(__name__)


async def scan_devices(args: argparse.Namespace) -> None:
    """List iFit devices in range, optionally only the one showing ``--code``."""
    print(f"Scanning for iFit devices (timeout: {args.timeout}s)...")
    try:
        devices = await find_all_ifit_devices(timeout=args.timeout)
    except BleakError as e:
        print(f"\n✗ Error during scan: {e}")
        sys.exit(1)

    if args.code:
        devices = [device for device in devices if device.code == args.code.lower()]

    if not devices:
        print("\n✗ No iFit devices found")
        sys.exit(1)

    print(f"\n✓ Found {len(devices)} iFit device(s):\n")
    for i, device in enumerate(devices, 1):
        print(f"{i}. {device.name or 'Unknown Device'}")
        print(f"   Address: {device.address}")
        print(f"   BLE Code: {device.code}")
        print()
