from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, TextIO, Tuple
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from .channels import ChannelSetting
from .config import OUTPUT_TYPES, BridgeConfig, MqttConfig
from .errors import PublishError
from .sources import Reading

logger = logging.getLogger(__name__)

PER_CHANNEL_TOPIC = "ads1115/channel/%d"
TLS_SCHEMES = frozenset({"ssl", "tls", "mqtts"})


class Sink(Protocol):
    name: str

    def publish(self, readings: Sequence[Reading]) -> None:
        ...

    def close(self) -> None:
        ...


def format_timestamp(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    text = ts.isoformat(timespec="seconds")
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


class ConsoleSink:
    name = "console"

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream

    def publish(self, readings: Sequence[Reading]) -> None:
        stream = self._stream or sys.stdout
        try:
            for r in readings:
                stream.write(
                    f"{format_timestamp(r.timestamp)} channel={r.channel} raw={r.raw} value={r.value:.6f}\n"
                )
            stream.flush()
        except (OSError, ValueError) as exc:
            raise PublishError(f"console write failed: {exc}") from exc

    def close(self) -> None:
        pass


def parse_server(server: str) -> Tuple[str, str, int]:
    """'tcp://broker:1883' -> ('tcp', 'broker', 1883)."""
    if "://" not in server:
        server = "tcp://" + server
    parts = urlsplit(server)
    scheme = parts.scheme.lower()
    default_port = 8883 if scheme in TLS_SCHEMES else 1883
    host = parts.hostname or "localhost"
    return scheme, host, parts.port or default_port


def format_state_topic(base: str, channel: int) -> str:
    if not base:
        return PER_CHANNEL_TOPIC % channel
    return base.replace("%d", str(channel))


def discovery_name(cfg: MqttConfig, channel: Optional[int] = None) -> str:
    name = cfg.discovery_name or f"ADS1115 {cfg.client_id}"
    if channel is not None:
        name = f"{name} ch{channel}"
    return name


def discovery_unique_id(cfg: MqttConfig, channel: Optional[int] = None) -> str:
    uid = cfg.discovery_unique_id or cfg.client_id
    if uid and channel is not None:
        uid = f"{uid}_{channel}"
    return uid


def discovery_payload(name: str, state_topic: str, unique_id: str) -> Dict[str, Any]:
    """Home Assistant MQTT discovery config for a voltage sensor."""
    payload: Dict[str, Any] = {
        "name": name,
        "state_topic": state_topic,
        "unit_of_measurement": "V",
        "device_class": "voltage",
        "state_class": "measurement",
        "value_template": "{{ value_json.voltage }}",
        "json_attributes_topic": state_topic,
    }
    if unique_id:
        payload["unique_id"] = unique_id
    return payload


def discovery_messages(cfg: MqttConfig, channels: Sequence[ChannelSetting]) -> List[Tuple[str, Dict[str, Any]]]:
    if not cfg.discovery_topic:
        return []
    if "%d" not in cfg.discovery_topic:
        payload = discovery_payload(discovery_name(cfg), cfg.state_topic, discovery_unique_id(cfg))
        return [(cfg.discovery_topic, payload)]
    messages = []
    for setting in channels:
        if not setting.enabled:
            continue
        payload = discovery_payload(
            discovery_name(cfg, setting.channel),
            format_state_topic(cfg.state_topic, setting.channel),
            discovery_unique_id(cfg, setting.channel),
        )
        messages.append((cfg.discovery_topic.replace("%d", str(setting.channel)), payload))
    return messages


class MqttSink:
    """Publishes each averaged reading as JSON {"voltage", "raw"} to its state topic."""

    name = "mqtt"

    def __init__(
        self,
        cfg: MqttConfig,
        channels: Sequence[ChannelSetting] = (),
        connect_timeout: float = 5.0,
        publish_timeout: float = 2.0,
    ) -> None:
        self.cfg = cfg
        self.publish_timeout = publish_timeout
        self._connected = threading.Event()
        scheme, host, port = parse_server(cfg.server)
        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=cfg.client_id,
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        if cfg.username:
            self._client.username_pw_set(cfg.username, cfg.password or None)
        if scheme in TLS_SCHEMES:
            self._client.tls_set()
        logger.info("Connecting to MQTT broker %s:%d as %s", host, port, cfg.client_id)
        try:
            self._client.connect(host, port, keepalive=60)
        except OSError as exc:
            raise PublishError(f"mqtt connect {cfg.server}: {exc}") from exc
        self._client.loop_start()
        if not self._connected.wait(connect_timeout):
            self._client.disconnect()
            self._client.loop_stop()
            raise PublishError(f"mqtt connect {cfg.server}: no CONNACK within {connect_timeout:.1f}s")
        for topic, payload in discovery_messages(cfg, channels):
            try:
                self._send(topic, json.dumps(payload), retain=True)
            except PublishError as exc:
                logger.warning("MQTT discovery publish to %s failed: %s", topic, exc)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code == 0:
            logger.info("Connected to MQTT broker")
            self._connected.set()
        else:
            logger.error("MQTT connection refused: %s", reason_code)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self._connected.clear()
        logger.warning("Disconnected from MQTT broker (%s)", reason_code)

    def _send(self, topic: str, payload: str, retain: bool = False) -> None:
        info = self._client.publish(topic, payload, qos=0, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"publish to {topic} failed (rc={info.rc})")
        try:
            info.wait_for_publish(timeout=self.publish_timeout)
        except (RuntimeError, ValueError) as exc:
            raise PublishError(f"publish to {topic} failed: {exc}") from exc
        if not info.is_published():
            raise PublishError(f"publish to {topic} timed out")

    def publish(self, readings: Sequence[Reading]) -> None:
        for r in readings:
            topic = format_state_topic(self.cfg.state_topic, r.channel)
            self._send(topic, json.dumps({"voltage": r.value, "raw": r.raw}))

    def close(self) -> None:
        self._client.disconnect()
        self._client.loop_stop()


def build_sinks(cfg: BridgeConfig) -> List[Tuple[Sink, Optional[int]]]:
    """Instantiate configured outputs, returning each with its configured interval (None = default)."""
    sinks: List[Tuple[Sink, Optional[int]]] = []
    for output in cfg.outputs:
        if output.type not in OUTPUT_TYPES:
            logger.warning("Unknown output '%s', ignoring", output.type)
            continue
        try:
            if output.type == "console":
                sink: Sink = ConsoleSink()
            else:
                sink = MqttSink(output.mqtt or MqttConfig(), cfg.channels)
        except PublishError:
            for built, _ in sinks:
                built.close()
            raise
        sinks.append((sink, output.interval_ms))
    if not sinks:
        raise ValueError("no outputs configured")
    return sinks
