from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from dataclasses import replace
from typing import Any, Protocol, TypeVar

from ..client.protocol import (
    BOUND_READS,
    POLL_READS,
    EquipmentInformation,
    Mode,
    WriteValue,
    advertisement_suffix,
    is_ifit_advertisement,
)
from .._tasks import schedule_task
from ..config import Settings
from ..errors import BootstrapStepFailed, TransportUnavailable
from ._arbiter import ControlArbiter
from ._models import (
    ControlRequest,
    EquipmentCapabilities,
    IOResult,
    IOStatus,
    SessionState,
    SessionStatus,
    TelemetrySnapshot,
)
from ._telemetry import Publisher, TelemetryPublisher

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

AdvertisementMatcher = Callable[[bytes], bool]
ChangeListener = Callable[[dict[str, Any]], None]


class Peer(Protocol):
    """A discovered advertisement that matched the session's matcher."""

    address: str
    name: str | None
    code: str


class Transport(Protocol):
    """Wireless link to the equipment, as seen by the session engine."""

    def scan(self, matcher: AdvertisementMatcher) -> AsyncIterator[Peer]: ...

    async def connect(self, peer: Peer) -> Any: ...

    def on_disconnect(self, link: Any, callback: Callable[[], None]) -> None: ...

    async def disconnect(self, link: Any) -> None: ...

    async def fetch_equipment_information(self, link: Any) -> IOResult[EquipmentInformation]: ...

    async def fetch_supported_capabilities(
        self, link: Any, info: EquipmentInformation
    ) -> IOResult[list[int]]: ...

    async def enable(
        self, link: Any, info: EquipmentInformation, activation_code: str | None
    ) -> IOResult[None]: ...

    async def read_write(
        self, link: Any, writes: Iterable[WriteValue] | None, reads: Iterable[str]
    ) -> IOResult[dict[str, Any]]: ...


def advertisement_matcher(ble_code: str | None) -> AdvertisementMatcher:
    """Match iFit manufacturer data, restricted to ``ble_code`` when one is configured."""
    if ble_code is None:
        return is_ifit_advertisement
    suffix = advertisement_suffix(ble_code)
    return lambda manufacturer_data: manufacturer_data.endswith(suffix)


class EquipmentSession:
    """Connection lifecycle, bootstrap and poll loop for one piece of iFit equipment.

    All state lives on the instance and is only touched from the event loop:
    the poll cycle, control requests and disconnect notifications never run
    concurrently with each other.
    """

    def __init__(
        self,
        transport: Transport,
        publisher: Publisher,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._transport = transport
        self._telemetry = TelemetryPublisher(
            publisher,
            base_topic=self._settings.mqtt.base_topic,
            metric=self._settings.metric,
            speed_offset=self._settings.speed_offset,
            speed_multiplier=self._settings.speed_multiplier,
        )
        self._arbiter = ControlArbiter()
        self._matcher = advertisement_matcher(self._settings.ble_code)
        self._state = SessionState.DISCONNECTED
        self._connected = False
        self._mode = Mode.IDLE
        self._link: Any = None
        self._capabilities: EquipmentCapabilities | None = None
        self._disconnected_hook: Callable[[], None] | None = None
        self._change_listeners: list[ChangeListener] = []
        self._session_task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._link_lost = asyncio.Event()
        self._cycle_in_flight = False
        self._failures = 0
        self._closing = False

    @property
    def current(self) -> SessionStatus:
        """Return a snapshot of the session status."""
        return SessionStatus(connected=self._connected, mode=self._mode, state=self._state)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def capabilities(self) -> EquipmentCapabilities | None:
        return self._capabilities

    @property
    def pending_control(self) -> list[WriteValue] | None:
        return self._arbiter.mailbox.pending

    @property
    def telemetry(self) -> TelemetryPublisher:
        return self._telemetry

    def add_change_listener(self, listener: ChangeListener) -> None:
        """Register a callback receiving the changes record of every poll cycle."""
        self._change_listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        with contextlib.suppress(ValueError):
            self._change_listeners.remove(listener)

    async def connect(self, on_disconnected: Callable[[], None] | None = None) -> None:
        """Start discovering and managing the equipment in the background.

        Returns as soon as the session task is scheduled; progress is visible
        through ``state`` and the published status topic.

        Args:
            on_disconnected: Called after every teardown of an established link,
                before the session starts discovering again
        """
        self._disconnected_hook = on_disconnected
        if self._session_task and not self._session_task.done():
            LOGGER.warning("Session already running")
            return
        self._closing = False
        self._session_task = schedule_task(self._run(), "equipment session")

    async def disconnect(self) -> None:
        """Drop the current link. The session resumes discovery afterwards."""
        link = self._link
        if link is not None:
            await self._transport.disconnect(link)

    async def close(self) -> None:
        """Stop the session for good and release the link."""
        self._closing = True
        link = self._link
        if link is not None:
            self._teardown(link)
            await self._transport.disconnect(link)
        if self._session_task and not self._session_task.done():
            self._session_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._session_task
        self._session_task = None
        self._set_state(SessionState.DISCONNECTED)

    def submit_control_request(
        self, request: ControlRequest | Mapping[str, Any]
    ) -> list[WriteValue] | None:
        """Queue a speed/incline change for the next poll cycle.

        Ignored unless the session is polling and the equipment is active. A
        newer request replaces one that has not been sent yet.

        Args:
            request: A ``ControlRequest`` or a mapping with ``kph``, ``mph``,
                ``incline`` or ``zwiftIncline``

        Returns:
            The writes queued for the next cycle, or None if the request was ignored

        Raises:
            pydantic.ValidationError: If a mapping does not validate as a request
        """
        return self._arbiter.submit(
            request,
            self._capabilities,
            self._mode,
            polling=self._state is SessionState.POLLING,
        )

    async def _run(self) -> None:
        await asyncio.sleep(self._settings.startup_delay)
        while not self._closing:
            try:
                delay = await self.run_once()
            except Exception:
                LOGGER.exception("Session attempt failed")
                await self._abandon_link()
                delay = self._next_delay()
            if self._closing:
                break
            LOGGER.info("Resuming discovery in %.1fs", delay)
            await asyncio.sleep(delay)

    async def run_once(self) -> float:
        """Discover, connect, bootstrap and poll until the link is lost.

        Returns the delay to wait before the next discovery attempt.
        """
        self._set_state(SessionState.DISCOVERING)
        peer = await self._discover()
        if peer is None:
            self._set_state(SessionState.DISCONNECTED)
            return self._next_delay()

        LOGGER.info("Found fitness equipment with code %s and name %s", peer.code, peer.name)
        self._telemetry.publish_device(self._settings.ble_device_name or peer.name, peer.code)

        self._set_state(SessionState.CONNECTING)
        try:
            link = await self._transport.connect(peer)
        except TransportUnavailable as e:
            LOGGER.warning("Could not connect to fitness equipment: %s", e)
            self._telemetry.publish_status(False)
            self._set_state(SessionState.DISCONNECTED)
            return self._next_delay()

        self._link = link
        self._link_lost.clear()
        self._transport.on_disconnect(link, lambda: self._handle_disconnect(link))

        self._set_state(SessionState.BOOTSTRAPPING)
        try:
            capabilities = await self._bootstrap(link)
        except BootstrapStepFailed as e:
            LOGGER.warning("%s", e)
            self._teardown(link)
            await self._transport.disconnect(link)
            return self._next_delay()

        if link is not self._link:
            # Dropped while the last bootstrap step was completing.
            return self._next_delay()

        self._start_polling(capabilities)
        await self._link_lost.wait()
        return self._settings.reconnect_delay

    async def _discover(self) -> Peer | None:
        try:
            async with contextlib.aclosing(self._transport.scan(self._matcher)) as peers:  # type: ignore[type-var]
                async for peer in peers:
                    return peer
        except TransportUnavailable as e:
            LOGGER.warning("Scan failed: %s", e)
        return None

    async def _bootstrap(self, link: Any) -> EquipmentCapabilities:
        """Identity, supported capabilities, enable, bounds. Any failure aborts the session."""
        info = _expect(
            "equipment information", await self._transport.fetch_equipment_information(link)
        )
        if info is None:
            raise BootstrapStepFailed("equipment information", "empty response")
        capabilities = EquipmentCapabilities.from_information(info)
        self._telemetry.publish("equipment-type", info.equipment_label)

        supported = _expect(
            "supported capabilities",
            await self._transport.fetch_supported_capabilities(link, info),
        )
        capabilities = replace(capabilities, supported_capabilities=tuple(supported or ()))
        self._telemetry.publish_mode(self._mode)

        _expect(
            "enable",
            await self._transport.enable(link, info, self._settings.activation_code),
        )

        bounds = _expect(
            "capability bounds", await self._transport.read_write(link, None, BOUND_READS)
        )
        return replace(capabilities, **capabilities.bounds_from_values(bounds or {}))

    def _start_polling(self, capabilities: EquipmentCapabilities) -> None:
        self._capabilities = capabilities
        self._failures = 0
        self._connected = True
        LOGGER.info(
            "Connected: speed %.1f-%.1f, incline %.1f-%.1f, metric=%s",
            capabilities.min_kph,
            capabilities.max_kph,
            capabilities.min_incline,
            capabilities.max_incline,
            capabilities.uses_metric_units,
        )
        self._telemetry.publish_status(True)
        self._telemetry.publish_capabilities(capabilities)
        self._set_state(SessionState.POLLING)
        self._poll_task = schedule_task(self._poll_loop(), "poll loop")

    async def _poll_loop(self) -> None:
        """Poll at a fixed rate; ticks missed while a cycle overran are dropped."""
        loop = asyncio.get_running_loop()
        interval = self._settings.poll_interval
        next_tick = loop.time()
        while True:
            next_tick = max(next_tick + interval, loop.time())
            await asyncio.sleep(next_tick - loop.time())
            try:
                keep_polling = await self.poll_once()
            except Exception:
                LOGGER.exception("Poll cycle failed")
                continue
            if not keep_polling:
                LOGGER.debug("Poll loop stopped")
                return

    async def poll_once(self) -> bool:
        """Run one poll cycle.

        Returns False when polling should stop because the link is gone.
        """
        link = self._link
        if self._state is not SessionState.POLLING or link is None:
            return False
        if self._cycle_in_flight:
            LOGGER.warning("Previous poll cycle still pending, skipping this one")
            return True

        self._cycle_in_flight = True
        try:
            writes = self._arbiter.mailbox.take()
            result = await self._transport.read_write(link, writes, POLL_READS)
        finally:
            self._cycle_in_flight = False

        if result.status is IOStatus.DISCONNECTED:
            # The transport's disconnect notification performs the teardown.
            LOGGER.info("Link lost during poll cycle: %s", result.error)
            return False
        if result.status is IOStatus.TRANSIENT:
            LOGGER.warning("Failed to read current values: %s", result.error)
            return True
        if link is not self._link or self._capabilities is None:
            return False

        self._process_values(result.value or {}, self._capabilities)
        return True

    def _process_values(
        self, values: Mapping[str, Any], capabilities: EquipmentCapabilities
    ) -> None:
        snapshot = TelemetrySnapshot.from_values(values)
        self._mode = snapshot.mode
        cycle = self._telemetry.build(snapshot, capabilities.uses_metric_units)
        LOGGER.debug("Poll cycle: %s -> %d events", snapshot, len(cycle.events))
        self._telemetry.emit(cycle.events)
        for listener in list(self._change_listeners):
            try:
                listener(dict(cycle.changes))
            except Exception:
                LOGGER.exception("Change listener failed")

    async def _abandon_link(self) -> None:
        link = self._link
        if link is None:
            self._set_state(SessionState.DISCONNECTED)
            return
        self._teardown(link)
        try:
            await self._transport.disconnect(link)
        except Exception:
            LOGGER.exception("Disconnect after failed attempt failed")

    def _handle_disconnect(self, link: Any) -> None:
        if link is not self._link:
            return
        LOGGER.info("Disconnected from fitness equipment")
        self._teardown(link)

    def _teardown(self, link: Any) -> None:
        """Forget everything about ``link``. Safe to call more than once."""
        if link is not self._link:
            return
        self._link = None
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        self._arbiter.mailbox.clear()
        self._telemetry.tracker.reset()
        self._cycle_in_flight = False
        self._connected = False
        self._mode = Mode.IDLE
        self._capabilities = None
        self._set_state(SessionState.DISCONNECTED)
        self._telemetry.publish_status(False)

        if self._disconnected_hook is not None:
            try:
                self._disconnected_hook()
            except Exception:
                LOGGER.exception("Disconnect hook failed")
        self._link_lost.set()

    def _next_delay(self) -> float:
        """Capped exponential backoff over consecutive failed attempts."""
        self._failures += 1
        delay = self._settings.reconnect_delay * 2 ** (self._failures - 1)
        return min(delay, self._settings.reconnect_max_delay)

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            LOGGER.debug("Session state %s -> %s", self._state.value, state.value)
            self._state = state


def _expect(step: str, result: IOResult[T]) -> T | None:
    if not result.is_ok:
        raise BootstrapStepFailed(step, result.error or result.status.value)
    return result.value
