"""Client configuration for pydonegeon."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pydonegeon._constants import BASE_URL, EVENTS_ENDPOINT, STATUS_ENDPOINT, SYNC_ENDPOINT
from pydonegeon.exceptions import DonegeonConfigError

PUSH_TRANSPORTS: frozenset[str] = frozenset({"sse", "mqtt", "none"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class DonegeonConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Server base URL, without a trailing slash.
    sync_endpoint : str
        Path of the pull endpoint (Initial and Delta Pull).
    events_endpoint : str
        Path of the server-sent-events push channel.
    status_endpoint : str
        Path of the capability probe.
    request_timeout : float
        Total timeout in seconds for a single Pull or probe request.
    probe_enabled : bool
        Run the best-effort capability probe after the first Initial Pull.
    probe_flag : str
        Key in the status response that carries the AI capability flag.
    push_transport : str
        ``"sse"`` (default), ``"mqtt"`` or ``"none"``.
    push_reconnect_initial : float
        First reconnect delay in seconds after a push connection failure.
    push_reconnect_max : float
        Upper bound for the exponential reconnect delay.
    mqtt_host : str or None
        Broker host for the MQTT push transport.
    mqtt_port : int
        Broker port.
    mqtt_topic : str
        Topic on which the server publishes change signals.
    mqtt_username : str or None
        Broker username, if the broker requires authentication.
    mqtt_password : str or None
        Broker password.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_tls : bool
        Connect to the broker over TLS.
    poll_interval : float
        Seconds between fallback pulls. ``0`` disables the timer.
    """

    base_url: str = BASE_URL
    sync_endpoint: str = SYNC_ENDPOINT
    events_endpoint: str = EVENTS_ENDPOINT
    status_endpoint: str = STATUS_ENDPOINT
    request_timeout: float = 30.0
    probe_enabled: bool = True
    probe_flag: str = "geminiConnected"
    push_transport: str = "sse"
    push_reconnect_initial: float = 1.0
    push_reconnect_max: float = 60.0
    mqtt_host: str | None = None
    mqtt_port: int = 1883
    mqtt_topic: str = "donegeon/sync"
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_keepalive: int = 60
    mqtt_tls: bool = False
    poll_interval: float = 0.0

    def __post_init__(self) -> None:
        if self.push_transport not in PUSH_TRANSPORTS:
            raise DonegeonConfigError(
                f"push_transport must be one of {sorted(PUSH_TRANSPORTS)}, got {self.push_transport!r}"
            )
        if self.push_transport == "mqtt" and not self.mqtt_host:
            raise DonegeonConfigError("push_transport='mqtt' requires mqtt_host")
        if self.push_reconnect_initial <= 0 or self.push_reconnect_max < self.push_reconnect_initial:
            raise DonegeonConfigError("push reconnect delays must satisfy 0 < initial <= max")
        if self.poll_interval < 0:
            raise DonegeonConfigError("poll_interval must not be negative")

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"

    @classmethod
    def from_env(cls, **overrides: Any) -> DonegeonConfig:
        """Create configuration from environment variables.

        Reads optional ``DONEGEON_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        DonegeonConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "DONEGEON_BASE_URL": "base_url",
            "DONEGEON_SYNC_ENDPOINT": "sync_endpoint",
            "DONEGEON_EVENTS_ENDPOINT": "events_endpoint",
            "DONEGEON_STATUS_ENDPOINT": "status_endpoint",
            "DONEGEON_PROBE_FLAG": "probe_flag",
            "DONEGEON_PUSH_TRANSPORT": "push_transport",
            "DONEGEON_MQTT_HOST": "mqtt_host",
            "DONEGEON_MQTT_TOPIC": "mqtt_topic",
            "DONEGEON_MQTT_USERNAME": "mqtt_username",
            "DONEGEON_MQTT_PASSWORD": "mqtt_password",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "DONEGEON_REQUEST_TIMEOUT": "request_timeout",
            "DONEGEON_PUSH_RECONNECT_INITIAL": "push_reconnect_initial",
            "DONEGEON_PUSH_RECONNECT_MAX": "push_reconnect_max",
            "DONEGEON_POLL_INTERVAL": "poll_interval",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        _ENV_INT_MAP = {
            "DONEGEON_MQTT_PORT": "mqtt_port",
            "DONEGEON_MQTT_KEEPALIVE": "mqtt_keepalive",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = int(val)

        if "probe_enabled" not in overrides:
            config_kwargs["probe_enabled"] = _env_bool(env.get("DONEGEON_PROBE_ENABLED"), True)

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("DONEGEON_MQTT_TLS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
