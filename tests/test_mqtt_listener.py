from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import paho.mqtt.client as mqtt
import pytest

from pydonegeon._mqtt import MqttChangeListener
from pydonegeon.config import DonegeonConfig

_OK = SimpleNamespace(is_failure=False)
_REFUSED = SimpleNamespace(is_failure=True)


class _FakeClient:
    """Stands in for ``paho.mqtt.client.Client``; records every call."""

    instances: list[_FakeClient] = []

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.on_connect: Any = None
        self.on_message: Any = None
        self.on_disconnect: Any = None
        _FakeClient.instances.append(self)

    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))

    def names(self) -> list[str]:
        return [name for name, _, _ in self.calls]

    def enable_logger(self, logger: Any) -> None:
        self._record("enable_logger", logger)

    def username_pw_set(self, username: str, password: str | None = None) -> None:
        self._record("username_pw_set", username, password)

    def tls_set(self) -> None:
        self._record("tls_set")

    def reconnect_delay_set(self, min_delay: int = 1, max_delay: int = 120) -> None:
        self._record("reconnect_delay_set", min_delay=min_delay, max_delay=max_delay)

    def connect_async(self, host: str, port: int, keepalive: int = 60) -> None:
        self._record("connect_async", host, port, keepalive=keepalive)

    def loop_start(self) -> None:
        self._record("loop_start")

    def loop_stop(self) -> None:
        self._record("loop_stop")

    def disconnect(self) -> None:
        self._record("disconnect")

    def subscribe(self, topic: str, qos: int = 0) -> None:
        self._record("subscribe", topic, qos=qos)

    def connect(self, ok: bool = True) -> None:
        self.on_connect(self, None, None, _OK if ok else _REFUSED, None)

    def deliver(self, payload: bytes, topic: str = "donegeon/sync") -> None:
        self.on_message(self, None, SimpleNamespace(payload=payload, topic=topic))


@pytest.fixture
def fake_client(monkeypatch: pytest.MonkeyPatch) -> type[_FakeClient]:
    _FakeClient.instances = []
    monkeypatch.setattr(mqtt, "Client", _FakeClient)
    return _FakeClient


def _config(**kwargs: Any) -> DonegeonConfig:
    return DonegeonConfig(push_transport="mqtt", mqtt_host="broker.test", **kwargs)


@pytest.mark.asyncio
async def test_start_configures_client_once(fake_client: type[_FakeClient]) -> None:
    listener = MqttChangeListener(
        config=_config(mqtt_username="guild", mqtt_password="secret", mqtt_tls=True, mqtt_port=8883),
        on_signal=lambda: None,
        client_id="pydonegeon-test",
    )

    listener.start()
    listener.start()

    assert len(fake_client.instances) == 1
    client = fake_client.instances[0]
    assert client.kwargs["client_id"] == "pydonegeon-test"
    assert ("username_pw_set", ("guild", "secret"), {}) in client.calls
    assert "tls_set" in client.names()
    assert ("reconnect_delay_set", (), {"min_delay": 1, "max_delay": 60}) in client.calls
    assert ("connect_async", ("broker.test", 8883), {"keepalive": 60}) in client.calls
    assert client.names().count("loop_start") == 1
    assert "subscribe" not in client.names()
    assert listener.is_running is True

    await listener.stop()


@pytest.mark.asyncio
async def test_sync_message_reaches_callback_on_loop(fake_client: type[_FakeClient]) -> None:
    signals: list[int] = []
    listener = MqttChangeListener(config=_config(), on_signal=lambda: signals.append(1))
    listener.start()
    client = fake_client.instances[0]

    client.connect()
    client.deliver(b"sync")
    client.deliver(b"")
    assert signals == []

    await asyncio.sleep(0)

    assert signals == [1, 1]
    assert ("subscribe", ("donegeon/sync",), {"qos": 1}) in client.calls

    await listener.stop()


@pytest.mark.asyncio
async def test_other_payloads_are_ignored(fake_client: type[_FakeClient]) -> None:
    signals: list[int] = []
    listener = MqttChangeListener(config=_config(), on_signal=lambda: signals.append(1))
    listener.start()
    client = fake_client.instances[0]

    client.connect()
    client.deliver(b'{"quests": []}')
    client.deliver(b"refresh")
    await asyncio.sleep(0)

    assert signals == []

    await listener.stop()


@pytest.mark.asyncio
async def test_reconnect_requests_catch_up_sync(fake_client: type[_FakeClient]) -> None:
    signals: list[int] = []
    listener = MqttChangeListener(config=_config(), on_signal=lambda: signals.append(1))
    listener.start()
    client = fake_client.instances[0]

    client.connect(ok=False)
    client.connect()
    await asyncio.sleep(0)

    assert signals == []
    assert client.names().count("subscribe") == 1

    client.connect(ok=False)
    await asyncio.sleep(0)
    assert signals == []

    client.connect()
    await asyncio.sleep(0)

    assert signals == [1]
    assert client.names().count("subscribe") == 2

    await listener.stop()


@pytest.mark.asyncio
async def test_stop_disconnects_and_silences_late_messages(fake_client: type[_FakeClient]) -> None:
    signals: list[int] = []
    listener = MqttChangeListener(config=_config(), on_signal=lambda: signals.append(1))
    listener.start()
    client = fake_client.instances[0]
    client.connect()

    await listener.stop()
    client.deliver(b"sync")
    await asyncio.sleep(0)

    assert signals == []
    assert listener.is_running is False
    assert client.names()[-2:] == ["disconnect", "loop_stop"]

    await listener.stop()
    assert client.names().count("loop_stop") == 1


@pytest.mark.asyncio
async def test_callback_errors_do_not_escape(fake_client: type[_FakeClient]) -> None:
    calls: list[int] = []

    def explode() -> None:
        calls.append(1)
        raise RuntimeError("boom")

    listener = MqttChangeListener(config=_config(), on_signal=explode)
    listener.start()
    client = fake_client.instances[0]

    client.connect()
    client.deliver(b"sync")
    client.deliver(b"sync")
    await asyncio.sleep(0)

    assert calls == [1, 1]
    assert listener.is_running is True

    await listener.stop()
