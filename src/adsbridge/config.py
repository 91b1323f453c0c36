from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .channels import ChannelSetting
from .codec import ALLOWED_SAMPLE_RATES, DEFAULT_SAMPLE_RATE

DEFAULT_I2C_BUS = "2"
DEFAULT_I2C_ADDRESS = 0x48
DEFAULT_MQTT_SERVER = "tcp://localhost:1883"
DEFAULT_MQTT_CLIENT_ID = "ads1115-client"
DEFAULT_STATE_TOPIC = "ads1115"

OUTPUT_TYPES = ("console", "mqtt")


@dataclass
class I2CConfig:
    bus: str = DEFAULT_I2C_BUS
    address: int = DEFAULT_I2C_ADDRESS


@dataclass
class MqttConfig:
    server: str = DEFAULT_MQTT_SERVER
    username: str = ""
    password: str = ""
    client_id: str = DEFAULT_MQTT_CLIENT_ID
    state_topic: str = DEFAULT_STATE_TOPIC
    discovery_topic: str = ""
    discovery_name: str = ""
    discovery_unique_id: str = ""

    @staticmethod
    def from_mapping(data: Mapping[str, Any]) -> "MqttConfig":
        return MqttConfig(
            server=str(data.get("server") or DEFAULT_MQTT_SERVER),
            username=str(data.get("username") or ""),
            password=str(data.get("password") or ""),
            client_id=str(data.get("client_id") or DEFAULT_MQTT_CLIENT_ID),
            # "topic" is the key older config files used
            state_topic=str(data.get("state_topic") or data.get("topic") or DEFAULT_STATE_TOPIC),
            discovery_topic=str(data.get("discovery_topic") or ""),
            discovery_name=str(data.get("discovery_name") or ""),
            discovery_unique_id=str(data.get("discovery_unique_id") or ""),
        )


@dataclass
class OutputConfig:
    type: str
    interval_ms: Optional[int] = None
    mqtt: Optional[MqttConfig] = None

    @staticmethod
    def from_mapping(data: Mapping[str, Any]) -> "OutputConfig":
        if "type" not in data:
            raise ValueError("Each output requires a 'type'")
        interval = data.get("interval_ms")
        mqtt_data = data.get("mqtt")
        return OutputConfig(
            type=str(data["type"]).strip().lower(),
            interval_ms=int(interval) if interval else None,
            mqtt=MqttConfig.from_mapping(mqtt_data) if isinstance(mqtt_data, dict) else None,
        )


def _default_channels() -> List[ChannelSetting]:
    return [ChannelSetting(channel=ch) for ch in range(4)]


def _default_outputs() -> List[OutputConfig]:
    return [OutputConfig(type="console")]


@dataclass
class BridgeConfig:
    i2c: I2CConfig = field(default_factory=I2CConfig)
    sample_rate: int = DEFAULT_SAMPLE_RATE
    sensor_type: str = "real"
    channels: List[ChannelSetting] = field(default_factory=_default_channels)
    outputs: List[OutputConfig] = field(default_factory=_default_outputs)

    def validate(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        for setting in self.channels:
            if setting.channel < 0:
                raise ValueError(f"channel ids must be non-negative, got {setting.channel}")
            if setting.sample_rate is not None and setting.sample_rate not in ALLOWED_SAMPLE_RATES:
                raise ValueError(
                    f"channel {setting.channel} sample_rate {setting.sample_rate} "
                    f"not in {list(ALLOWED_SAMPLE_RATES)}"
                )
        for output in self.outputs:
            if output.interval_ms is not None and output.interval_ms < 0:
                raise ValueError(f"output {output.type} interval_ms must be >= 0, got {output.interval_ms}")


def channel_from_mapping(data: Any) -> ChannelSetting:
    # bare integers are the older "channels": [0, 1] form
    if isinstance(data, int) and not isinstance(data, bool):
        return ChannelSetting(channel=data)
    if not isinstance(data, dict) or "channel" not in data:
        raise ValueError(f"Invalid channel entry: {data!r}")
    rate = data.get("sample_rate")
    return ChannelSetting(
        channel=int(data["channel"]),
        enabled=bool(data.get("enabled", True)),
        calibration_scale=float(data.get("calibration_scale", 1.0)),
        calibration_offset=float(data.get("calibration_offset", 0.0)),
        sample_rate=int(rate) if rate else None,
    )


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> BridgeConfig:
    """
    Build the bridge configuration from an optional JSON file plus overrides.

    Overrides use dotted `key=value` pairs, e.g.:
        ["sample_rate=250", "i2c.address=0x49", "sensor_type=simulation"]
    Values missing from both fall back to the defaults on BridgeConfig.
    """
    data: Dict[str, Any] = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    i2c_data = merged.get("i2c") or {}
    channels_data = merged.get("channels")
    outputs_data = merged.get("outputs")
    cfg = BridgeConfig(
        i2c=I2CConfig(
            bus=str(i2c_data.get("bus", DEFAULT_I2C_BUS)),
            address=parse_int_or_hex(i2c_data.get("address", DEFAULT_I2C_ADDRESS)),
        ),
        sample_rate=int(merged.get("sample_rate", DEFAULT_SAMPLE_RATE)),
        sensor_type=str(merged.get("sensor_type") or "real"),
        channels=(
            [channel_from_mapping(item) for item in channels_data]
            if channels_data is not None
            else _default_channels()
        ),
        outputs=(
            [OutputConfig.from_mapping(item) for item in outputs_data]
            if outputs_data is not None
            else _default_outputs()
        ),
    )
    cfg.validate()
    return cfg


def config_to_dict(cfg: BridgeConfig) -> Dict[str, Any]:
    """Plain-data view of the configuration with secrets masked, for logging."""
    data = asdict(cfg)
    for output in data["outputs"]:
        mqtt = output.get("mqtt")
        if mqtt and mqtt.get("password"):
            mqtt["password"] = "***"
    return data


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    return key, _coerce_value(raw_value.strip())


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if (raw.startswith("[") and raw.endswith("]")) or (raw.startswith("{") and raw.endswith("}")):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value


def parse_int_or_hex(value: Any) -> int:
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return int(text[2:], 16)
    return int(text)


def parse_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _parse_key_map(value: str, convert) -> Dict[int, Any]:
    result: Dict[int, Any] = {}
    for part in parse_csv(value):
        if "=" not in part:
            raise ValueError(f"Invalid entry '{part}', expected channel=value")
        key, raw = part.split("=", 1)
        try:
            channel = int(key.strip())
            result[channel] = convert(raw.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid entry '{part}': {exc}") from exc
    return result


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in {"true", "1", "yes", "on"}:
        return True
    if lowered in {"false", "0", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def parse_key_float_map(value: str) -> Dict[int, float]:
    """'0=1.23,1=0.98' -> {0: 1.23, 1: 0.98}"""
    return _parse_key_map(value, float)


def parse_key_int_map(value: str) -> Dict[int, int]:
    return _parse_key_map(value, int)


def parse_key_bool_map(value: str) -> Dict[int, bool]:
    return _parse_key_map(value, _parse_bool)


def apply_channel_maps(
    cfg: BridgeConfig,
    *,
    enabled: Optional[Mapping[int, bool]] = None,
    scales: Optional[Mapping[int, float]] = None,
    offsets: Optional[Mapping[int, float]] = None,
    rates: Optional[Mapping[int, int]] = None,
) -> None:
    """Patch per-channel settings in place; unknown channels are appended."""
    updates: Dict[int, Dict[str, Any]] = {}
    for key, values in (
        ("enabled", enabled),
        ("calibration_scale", scales),
        ("calibration_offset", offsets),
        ("sample_rate", rates),
    ):
        for channel, value in (values or {}).items():
            updates.setdefault(channel, {})[key] = value
    if not updates:
        return
    channels = list(cfg.channels)
    for channel, changes in updates.items():
        positions = [i for i, setting in enumerate(channels) if setting.channel == channel]
        if positions:
            for i in positions:
                channels[i] = replace(channels[i], **changes)
        else:
            channels.append(ChannelSetting(channel=channel, **changes))
    cfg.channels = channels
    cfg.validate()


def select_channels(cfg: BridgeConfig, channel_ids: Sequence[int]) -> None:
    """Enable exactly `channel_ids`, keeping calibration for channels already configured."""
    known = {setting.channel: setting for setting in cfg.channels}
    selected = [replace(known.get(ch, ChannelSetting(channel=ch)), enabled=True) for ch in channel_ids]
    rest = [replace(setting, enabled=False) for setting in cfg.channels if setting.channel not in channel_ids]
    cfg.channels = selected + rest


def apply_output_options(
    cfg: BridgeConfig,
    *,
    outputs: Optional[Sequence[str]] = None,
    intervals: Optional[Mapping[str, int]] = None,
    mqtt_fields: Optional[Mapping[str, str]] = None,
) -> None:
    """
    Apply CLI output flags.

    `outputs` replaces the configured list, `intervals` is keyed by output type,
    and non-empty `mqtt_fields` apply to every MQTT output (one is added if none exists).
    """
    if outputs:
        cfg.outputs = [OutputConfig(type=name.lower()) for name in outputs]
    for output in cfg.outputs:
        if intervals and output.type in intervals:
            output.interval_ms = intervals[output.type]
    fields = {key: value for key, value in (mqtt_fields or {}).items() if value}
    if not fields:
        return
    mqtt_outputs = [output for output in cfg.outputs if output.type == "mqtt"]
    if not mqtt_outputs:
        created = OutputConfig(type="mqtt")
        cfg.outputs.append(created)
        mqtt_outputs = [created]
    for output in mqtt_outputs:
        output.mqtt = replace(output.mqtt or MqttConfig(), **fields)
