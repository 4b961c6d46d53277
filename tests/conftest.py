"""Shared fixtures and fakes for pytest."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import pytest
import pytest_asyncio

from ifitsync.client.protocol import (
    BOUND_READS,
    CHARACTERISTICS,
    EquipmentInformation,
    Mode,
    PulseReading,
    PulseSource,
    SportsEquipment,
    WriteValue,
)
from ifitsync.config import Settings
from ifitsync.engine import EquipmentCapabilities, EquipmentSession, IOResult, SessionState

BASE_TOPIC = "devices/ifitsync"


@dataclass
class FakePeer:
    address: str = "AA:BB:CC:DD:EE:FF"
    name: str | None = "I_TL"
    code: str = "1a2b"


class RecordingPublisher:
    """Publisher that remembers everything it was asked to publish."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str, bool]] = []

    def publish(self, topic: str, value: str, *, retain: bool = False) -> None:
        self.messages.append((topic, value, retain))

    def topics(self) -> list[str]:
        return [topic.removeprefix(f"{BASE_TOPIC}/") for topic, _, _ in self.messages]

    def values(self, topic: str) -> list[str]:
        return [value for t, value, _ in self.messages if t == f"{BASE_TOPIC}/{topic}"]

    def clear(self) -> None:
        self.messages.clear()


class FakeTransport:
    """Scriptable transport: results are plain attributes, poll results are consumed in order."""

    def __init__(self, peers: Iterable[FakePeer] | None = None) -> None:
        self.peers = list(peers) if peers is not None else [FakePeer()]
        self.connect_error: Exception | None = None
        self.identity: IOResult[EquipmentInformation] = IOResult.ok(
            EquipmentInformation(
                equipment=SportsEquipment.TREADMILL,
                characteristics={c.id: c for c in CHARACTERISTICS.values()},
            )
        )
        self.supported: IOResult[list[int]] = IOResult.ok([65, 66, 70])
        self.enable_result: IOResult[None] = IOResult.ok()
        self.bounds: IOResult[dict[str, Any]] = IOResult.ok(bounds_values())
        self.poll_results: list[IOResult[dict[str, Any]]] = []
        self.poll_errors: list[Exception] = []
        self.identity_errors: list[Exception] = []
        self.gate: asyncio.Event | None = None
        self.poll_calls: list[list[WriteValue] | None] = []
        self.enable_codes: list[str | None] = []
        self.disconnect_calls = 0
        self.links: list[object] = []
        self._callbacks: list[Callable[[], None]] = []

    async def scan(self, matcher: Callable[[bytes], bool]):
        for peer in self.peers:
            yield peer

    async def connect(self, peer: FakePeer) -> object:
        if self.connect_error is not None:
            raise self.connect_error
        link = object()
        self.links.append(link)
        return link

    def on_disconnect(self, link: object, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def drop(self) -> None:
        """Simulate the peer going away."""
        for callback in list(self._callbacks):
            callback()

    async def disconnect(self, link: object) -> None:
        self.disconnect_calls += 1
        self.drop()

    async def fetch_equipment_information(self, link: object) -> IOResult[EquipmentInformation]:
        if self.identity_errors:
            raise self.identity_errors.pop(0)
        return self.identity

    async def fetch_supported_capabilities(
        self, link: object, info: EquipmentInformation
    ) -> IOResult[list[int]]:
        return self.supported

    async def enable(
        self, link: object, info: EquipmentInformation, activation_code: str | None
    ) -> IOResult[None]:
        self.enable_codes.append(activation_code)
        return self.enable_result

    async def read_write(
        self, link: object, writes: Iterable[WriteValue] | None, reads: Iterable[str]
    ) -> IOResult[dict[str, Any]]:
        if tuple(reads) == BOUND_READS:
            return self.bounds
        self.poll_calls.append(list(writes) if writes is not None else None)
        if self.gate is not None:
            await self.gate.wait()
        if self.poll_errors:
            raise self.poll_errors.pop(0)
        if self.poll_results:
            return self.poll_results.pop(0)
        return IOResult.transient("no scripted result")


def bounds_values(
    *, min_kph: float = 1.0, max_kph: float = 20.0, metric: bool = True
) -> dict[str, Any]:
    return {
        "MaxIncline": 15.0,
        "MinIncline": -3.0,
        "MaxKph": max_kph,
        "MinKph": min_kph,
        "MaxPulse": 220,
        "Metric": metric,
    }


def poll_values(
    *,
    mode: Mode = Mode.RUNNING,
    kph: float = 10.0,
    incline: float = 2.0,
    pulse: int = 0,
    source: PulseSource = PulseSource.NO,
) -> dict[str, Any]:
    return {
        "CurrentKph": kph,
        "CurrentIncline": incline,
        "Pulse": PulseReading(pulse, source),
        "Mode": mode,
        "PausedTime": 5,
        "TotalTime": 120,
        "MaxKph": 20.0,
        "MinKph": 1.0,
        "Calories": 12.5,
        "CurrentDistance": 350,
        "CurrentCalories": 12.5,
    }


def make_capabilities(
    *, min_kph: float = 1.0, max_kph: float = 20.0, metric: bool = True
) -> EquipmentCapabilities:
    return EquipmentCapabilities(
        equipment=SportsEquipment.TREADMILL,
        uses_metric_units=metric,
        min_kph=min_kph,
        max_kph=max_kph,
        min_incline=-3.0,
        max_incline=15.0,
        max_pulse=220,
    )


async def wait_until(condition: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


async def wait_for_state(session: EquipmentSession, state: SessionState) -> None:
    try:
        await wait_until(lambda: session.state is state)
    except AssertionError:
        raise AssertionError(f"session never reached {state}, still {session.state}") from None


@pytest.fixture
def settings() -> Settings:
    # Long poll interval: tests drive poll cycles by hand.
    return Settings(
        ble_code="1a2b",
        activation_code="0011223344556677",
        poll_interval=3600,
        startup_delay=0,
        reconnect_delay=2.0,
        reconnect_max_delay=5.0,
    )


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest_asyncio.fixture
async def polling_session(transport, publisher, settings):
    """A session that went through bootstrap and is waiting in POLLING."""
    session = EquipmentSession(transport, publisher, settings)
    task = asyncio.create_task(session.run_once())
    await wait_for_state(session, SessionState.POLLING)
    publisher.clear()
    try:
        yield session
    finally:
        await session.close()
        await asyncio.wait_for(task, timeout=1.0)
