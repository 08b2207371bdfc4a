"""Change notification listener over MQTT.

Alternative to the SSE push channel for deployments that bridge the
server's change signal onto a broker. The paho network loop runs in its own
thread and reconnects on its own; parsed signals are handed to the asyncio
loop and never touch the store from the paho thread.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable
from typing import Any, cast

import paho.mqtt.client as mqtt

from pydonegeon._constants import SIGNAL_SYNC
from pydonegeon.config import DonegeonConfig
from pydonegeon.exceptions import DonegeonConfigError

_logger = logging.getLogger(__name__)


def is_sync_signal(payload: bytes) -> bool:
    """An empty payload or the literal ``sync`` both mean "pull again"."""
    text = payload.decode("utf-8", errors="replace").strip()
    return text in ("", SIGNAL_SYNC)


class MqttChangeListener:
    """Threaded paho-mqtt runtime that turns topic messages into sync signals."""

    def __init__(
        self,
        *,
        config: DonegeonConfig,
        on_signal: Callable[[], None],
        loop: asyncio.AbstractEventLoop | None = None,
        client_id: str | None = None,
    ) -> None:
        if not config.mqtt_host:
            raise DonegeonConfigError("MQTT push transport requires mqtt_host")
        self._config = config
        self._on_signal = on_signal
        self._loop = loop
        self._client_id = client_id or f"pydonegeon-{secrets.token_hex(6)}"
        self._client: mqtt.Client | None = None
        self._running = False
        self._connections = 0

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def start(self) -> None:
        """Connect (asynchronously, retrying in the background) and subscribe."""
        if self._running:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        config = self._config
        _logger.debug(
            "MQTT listener start requested host=%s port=%s topic=%s client_id=%s",
            config.mqtt_host,
            config.mqtt_port,
            config.mqtt_topic,
            self._client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(_logger)
        if config.mqtt_username:
            client.username_pw_set(config.mqtt_username, config.mqtt_password)
        if config.mqtt_tls:
            client.tls_set()
        client.reconnect_delay_set(
            min_delay=max(1, int(config.push_reconnect_initial)),
            max_delay=max(1, int(config.push_reconnect_max)),
        )

        topic = config.mqtt_topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                _logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._connections += 1
            _logger.debug("MQTT connected reason=%s; subscribing topic=%s", reason_code, topic)
            c.subscribe(topic, qos=1)
            if self._connections > 1:
                # Signals published while we were away are lost; catch up.
                loop.call_soon_threadsafe(self._signal)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            if not is_sync_signal(msg.payload):
                _logger.debug("Ignoring MQTT payload on topic=%s", msg.topic)
                return
            _logger.debug("Received MQTT sync signal topic=%s", msg.topic)
            loop.call_soon_threadsafe(self._signal)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                _logger.warning("MQTT disconnected: %s; paho will reconnect", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect_async(config.mqtt_host, config.mqtt_port, keepalive=config.mqtt_keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        _logger.debug("MQTT network loop started")

    async def stop(self) -> None:
        """Disconnect and join the paho thread without blocking the loop."""
        loop = self._loop or asyncio.get_running_loop()
        await loop.run_in_executor(None, self._stop_blocking)

    def _stop_blocking(self) -> None:
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                _logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            _logger.debug("MQTT network loop stopped")

    def _signal(self) -> None:
        if not self._running:
            return
        try:
            self._on_signal()
        except Exception:
            _logger.debug("push signal callback failed", exc_info=True)
