from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import aiomqtt
from pydantic import ValidationError

from .._tasks import schedule_task
from ..config import MqttSettings
from ..engine._models import ControlRequest

LOGGER = logging.getLogger(__name__)

ControlHandler = Callable[[ControlRequest], Any]


@dataclass(frozen=True)
class QueuedPublish:
    """A message waiting for the broker connection."""

    topic: str
    payload: str
    retain: bool = False


def parse_control_payload(payload: bytes | bytearray | str) -> ControlRequest:
    """Decode a JSON control message such as ``{"mph": 3.5, "incline": 2}``.

    Raises:
        pydantic.ValidationError: If the payload is not a JSON object or fails validation
    """
    return ControlRequest.model_validate_json(payload)


class MqttPublisher:
    """Publisher capability backed by an MQTT broker.

    ``publish`` only enqueues; a background task owns the broker connection,
    drains the queue and reconnects after failures. When a control handler
    is set, JSON messages on the control topic are forwarded to it.
    """

    def __init__(self, settings: MqttSettings) -> None:
        self._settings = settings
        self._queue: asyncio.Queue[QueuedPublish] = asyncio.Queue(maxsize=settings.queue_size)
        self._retry: QueuedPublish | None = None
        self._control_handler: ControlHandler | None = None
        self._task: asyncio.Task[None] | None = None
        self.dropped_messages = 0

    @property
    def status_topic(self) -> str:
        return f"{self._settings.base_topic}/status"

    def set_control_handler(self, handler: ControlHandler | None) -> None:
        self._control_handler = handler

    def publish(self, topic: str, value: str, *, retain: bool = False) -> None:
        try:
            self._queue.put_nowait(QueuedPublish(topic, value, retain))
        except asyncio.QueueFull:
            self.dropped_messages += 1
            LOGGER.warning("MQTT queue full, dropping %s=%s", topic, value)

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = schedule_task(self.run(), "mqtt publisher")

    async def stop(self, timeout: float = 2.0) -> None:
        """Flush queued messages for up to ``timeout`` seconds, then disconnect."""
        if self._task:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._queue.join(), timeout)
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def run(self) -> None:
        """Keep a broker connection alive until cancelled."""
        will = aiomqtt.Will(self.status_topic, "offline", retain=True)
        while True:
            try:
                async with aiomqtt.Client(
                    hostname=self._settings.hostname,
                    port=self._settings.port,
                    identifier=self._settings.client_id,
                    username=self._settings.username,
                    password=self._settings.password,
                    will=will,
                ) as client:
                    LOGGER.info(
                        "MQTT connected to %s:%d", self._settings.hostname, self._settings.port
                    )
                    await self._serve(client)
            except aiomqtt.MqttError as e:
                LOGGER.warning(
                    "MQTT connection lost: %s, reconnecting in %.0fs",
                    e,
                    self._settings.reconnect_delay,
                )
                await asyncio.sleep(self._settings.reconnect_delay)
            except Exception:
                LOGGER.exception(
                    "MQTT publisher failed, restarting in %.0fs", self._settings.reconnect_delay
                )
                await asyncio.sleep(self._settings.reconnect_delay)

    async def _serve(self, client: aiomqtt.Client) -> None:
        tasks = [asyncio.create_task(self._drain(client))]
        if self._control_handler is not None:
            tasks.append(asyncio.create_task(self._listen(client)))
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                task.result()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _drain(self, client: aiomqtt.Client) -> None:
        while True:
            message = self._retry or await self._queue.get()
            # Kept until the broker accepted it, so a reconnect resends it.
            self._retry = message
            await client.publish(message.topic, message.payload, retain=message.retain)
            self._retry = None
            self._queue.task_done()

    async def _listen(self, client: aiomqtt.Client) -> None:
        topic = self._settings.resolved_control_topic
        await client.subscribe(topic)
        LOGGER.info("Listening for control requests on %s", topic)
        async for message in client.messages:
            self.dispatch_control(message.payload)

    def dispatch_control(self, payload: Any) -> None:
        """Hand one control message to the handler; invalid payloads are logged and dropped."""
        if self._control_handler is None:
            return
        try:
            request = parse_control_payload(payload)
        except ValidationError as e:
            LOGGER.warning("Ignoring invalid control request %r: %s", payload, e)
            return
        self._control_handler(request)
