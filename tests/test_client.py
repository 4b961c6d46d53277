"""Tests for the BLE link's disconnect handling."""

import asyncio
from unittest.mock import patch

import pytest

from ifitsync.client import IFitLink


@pytest.fixture
def bleak_client():
    with patch("ifitsync.client._client.BleakClient") as client_cls:
        yield client_cls


@pytest.mark.unit
@pytest.mark.asyncio
async def test_disconnect_fails_pending_request_and_runs_callbacks(bleak_client):
    link = IFitLink("AA:BB:CC:DD:EE:FF")
    calls = []
    link.add_disconnect_callback(lambda: calls.append("first"))
    link.add_disconnect_callback(lambda: calls.append("second"))
    link._response_future = asyncio.get_running_loop().create_future()

    on_disconnected = bleak_client.call_args.kwargs["disconnected_callback"]
    on_disconnected(bleak_client.return_value)

    assert calls == ["first", "second"]
    with pytest.raises(ConnectionError):
        await link._response_future


@pytest.mark.unit
@pytest.mark.asyncio
async def test_disconnect_without_pending_request(bleak_client):
    link = IFitLink("AA:BB:CC:DD:EE:FF")
    calls = []
    link.add_disconnect_callback(lambda: calls.append(True))

    bleak_client.call_args.kwargs["disconnected_callback"](bleak_client.return_value)

    assert calls == [True]
