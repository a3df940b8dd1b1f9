from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from chartsync.config import ChartSyncConfig
from chartsync.device import DeviceClient, normalize_cluster_url
from chartsync.models import DeviceCommand
from chartsync.safety import CommandValidationError


class Recorder:
    def __init__(self, status=200, body=None):
        self.status = status
        self.body = body if body is not None else {}
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(self.status, json=self.body)


def _device(tmp_path, clock, recorder, token="tok-123", cluster="ca"):
    cfg = ChartSyncConfig(data_dir=tmp_path, device_token=token, device_cluster=cluster,
                          http_retries=0)
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return DeviceClient(cfg, client=client, clock=clock)


@pytest.mark.parametrize("raw, expected", [
    ("ca", "https://ca-central-1.autoblowapi.com"),
    ("us-east-1", "https://us-east-1.autoblowapi.com"),
    ("cluster.example.com", "https://cluster.example.com"),
    ("https://custom.host/", "https://custom.host"),
    ("  'usw2' ", "https://us-west-2.autoblowapi.com"),
    ("", ""),
])
def test_normalize_cluster_url(raw, expected):
    assert normalize_cluster_url(raw) == expected


def test_send_puts_command_with_token(tmp_path, clock):
    rec = Recorder()
    device = _device(tmp_path, clock, rec)

    assert asyncio.run(device.send(DeviceCommand(60, 30, 70)))
    request = rec.requests[0]
    assert request.method == "PUT"
    assert str(request.url) == "https://ca-central-1.autoblowapi.com/autoblow/oscillate"
    assert request.headers["x-device-token"] == "tok-123"
    assert json.loads(request.content) == {"speed": 60, "minY": 30, "maxY": 70}
    assert device.last_command == DeviceCommand(60, 30, 70)


def test_stop_command_uses_stop_route(tmp_path, clock):
    rec = Recorder()
    device = _device(tmp_path, clock, rec)
    assert asyncio.run(device.send(DeviceCommand.stop()))
    assert rec.requests[0].url.path == "/autoblow/oscillate/stop"


def test_unconfigured_device_skips(tmp_path, clock):
    rec = Recorder()
    device = _device(tmp_path, clock, rec, token="")
    assert not device.configured
    assert asyncio.run(device.send(DeviceCommand(60, 30, 70))) is False
    assert asyncio.run(device.stop()) is False
    assert asyncio.run(device.get_state()) is None
    assert not rec.requests


def test_invalid_command_never_sent(tmp_path, clock):
    rec = Recorder()
    device = _device(tmp_path, clock, rec)
    with pytest.raises(CommandValidationError):
        asyncio.run(device.send(DeviceCommand(60, 70, 30)))
    assert not rec.requests


def test_cooldown_skips_back_to_back_commands_but_not_stop(tmp_path, clock):
    rec = Recorder()
    device = _device(tmp_path, clock, rec)

    async def run():
        first = await device.send(DeviceCommand(60, 30, 70))
        clock.advance(10)
        second = await device.send(DeviceCommand(70, 30, 70))
        stopped = await device.send(DeviceCommand.stop())
        clock.advance(60)
        third = await device.send(DeviceCommand(50, 40, 60))
        return first, second, stopped, third

    assert asyncio.run(run()) == (True, False, True, True)
    assert len(rec.requests) == 3


def test_http_failure_returns_false(tmp_path, clock):
    device = _device(tmp_path, clock, Recorder(status=500))
    assert asyncio.run(device.send(DeviceCommand(60, 30, 70))) is False


def test_failed_send_does_not_start_cooldown(tmp_path, clock):
    rec = Recorder(status=503)
    device = _device(tmp_path, clock, rec)

    async def run():
        failed = await device.send(DeviceCommand(60, 30, 70))
        rec.status = 200
        clock.advance(5)
        retried = await device.send(DeviceCommand(60, 30, 70))
        return failed, retried

    assert asyncio.run(run()) == (False, True)
    assert len(rec.requests) == 2
    assert device.last_command_at == clock.now


def test_get_state(tmp_path, clock):
    rec = Recorder(body={"operationalMode": "OSCILLATOR_PLAYING"})
    device = _device(tmp_path, clock, rec)
    assert asyncio.run(device.get_state()) == {"operationalMode": "OSCILLATOR_PLAYING"}
    assert rec.requests[0].method == "GET"
    assert rec.requests[0].url.path == "/autoblow/state"
