"""Bridge daemon command for the ifitsync CLI."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from ..client import BleTransport
from ..config import Settings
from ..engine import EquipmentSession
from ..mqtt import MqttPublisher

LOGGER = logging.getLogger(__name__)


def load_settings(args: argparse.Namespace) -> Settings:
    """Read the settings file, if any, and apply command-line overrides."""
    settings = Settings.load(args.config) if args.config else Settings()
    data: dict[str, Any] = settings.model_dump()
    overrides = {
        "ble_code": args.code,
        "activation_code": args.activation,
        "poll_interval": args.interval,
    }
    data.update({key: value for key, value in overrides.items() if value is not None})
    if args.imperial:
        data["metric"] = False
    if args.mqtt_host:
        data["mqtt"]["hostname"] = args.mqtt_host
    if args.mqtt_port:
        data["mqtt"]["port"] = args.mqtt_port
    return Settings.model_validate(data)


async def run_bridge(args: argparse.Namespace) -> None:
    """Run the equipment session and MQTT publisher until interrupted."""
    try:
        settings = load_settings(args)
    except (OSError, ValidationError) as e:
        raise SystemExit(f"✗ Invalid configuration: {e}") from e

    publisher = MqttPublisher(settings.mqtt)
    transport = BleTransport(scan_window=settings.scan_timeout)
    session = EquipmentSession(transport, publisher, settings)
    publisher.set_control_handler(session.submit_control_request)
    session.add_change_listener(lambda changes: LOGGER.debug("Changes: %s", changes))

    await publisher.start()
    try:
        await session.connect(
            on_disconnected=lambda: LOGGER.info("Equipment disconnected, waiting for it again")
        )
        if settings.ble_code:
            print(f"Waiting for iFit equipment with code '{settings.ble_code}' (Ctrl+C to stop)")
        else:
            print("Waiting for any iFit equipment (Ctrl+C to stop)")
        await asyncio.Event().wait()
    finally:
        await session.close()
        await publisher.stop()
