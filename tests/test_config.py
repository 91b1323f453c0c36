from __future__ import annotations

import json
from pathlib import Path

import pytest

from adsbridge.channels import ChannelSetting
from adsbridge.config import (
    BridgeConfig,
    MqttConfig,
    OutputConfig,
    apply_channel_maps,
    apply_output_options,
    config_to_dict,
    load_config,
    parse_int_or_hex,
    parse_key_bool_map,
    parse_key_float_map,
    parse_key_int_map,
    select_channels,
)


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_config_defaults() -> None:
    cfg = load_config()
    assert cfg.i2c.bus == "2"
    assert cfg.i2c.address == 0x48
    assert cfg.sample_rate == 128
    assert cfg.sensor_type == "real"
    assert [c.channel for c in cfg.channels] == [0, 1, 2, 3]
    assert all(c.enabled for c in cfg.channels)
    assert [o.type for o in cfg.outputs] == ["console"]
    assert cfg.outputs[0].interval_ms is None


def test_load_config_json(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        {
            "i2c": {"bus": "2", "address": 72},
            "sample_rate": 128,
            "outputs": [{"type": "console"}],
            "sensor_type": "real",
            "channels": [
                {"channel": 0, "enabled": True, "calibration_scale": 1.0, "calibration_offset": 0.12},
                {"channel": 1, "enabled": False, "calibration_scale": 0.98, "calibration_offset": -0.05},
            ],
        },
    )
    cfg = load_config(path)
    assert cfg.i2c.address == 72
    assert cfg.channels[0] == ChannelSetting(channel=0, enabled=True, calibration_offset=0.12)
    assert cfg.channels[1].enabled is False
    assert cfg.channels[1].calibration_scale == 0.98
    assert cfg.outputs == [OutputConfig(type="console")]


def test_load_config_mqtt_output(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        {
            "outputs": [
                {"type": "MQTT", "interval_ms": 5000, "mqtt": {"server": "tcp://broker:1883", "topic": "ads/%d"}},
            ]
        },
    )
    cfg = load_config(path)
    output = cfg.outputs[0]
    assert output.type == "mqtt"
    assert output.interval_ms == 5000
    assert output.mqtt == MqttConfig(server="tcp://broker:1883", state_topic="ads/%d")


def test_load_config_overrides(tmp_path: Path) -> None:
    path = _write(tmp_path, {"sample_rate": 128, "i2c": {"bus": "1"}})
    cfg = load_config(path, overrides=["sample_rate=250", "i2c.address=0x49", "sensor_type=simulation"])
    assert cfg.sample_rate == 250
    assert cfg.i2c.bus == "1"
    assert cfg.i2c.address == 0x49
    assert cfg.sensor_type == "simulation"


def test_load_config_legacy_integer_channels(tmp_path: Path) -> None:
    cfg = load_config(_write(tmp_path, {"channels": [0, 2]}))
    assert cfg.channels == [ChannelSetting(channel=0), ChannelSetting(channel=2)]


@pytest.mark.parametrize(
    "data",
    [
        {"sample_rate": 0},
        {"channels": [{"channel": 0, "sample_rate": 100}]},
        {"channels": [{"enabled": True}]},
        {"outputs": [{"interval_ms": 10}]},
        {"outputs": [{"type": "console", "interval_ms": -5}]},
    ],
)
def test_load_config_rejects_invalid(tmp_path: Path, data: dict) -> None:
    with pytest.raises(ValueError):
        load_config(_write(tmp_path, data))


def test_load_config_rejects_malformed_override() -> None:
    with pytest.raises(ValueError):
        load_config(overrides=["sample_rate"])


def test_parse_int_or_hex() -> None:
    assert parse_int_or_hex("0x48") == 72
    assert parse_int_or_hex("72") == 72
    assert parse_int_or_hex(0x49) == 0x49


def test_parse_key_float_map() -> None:
    assert parse_key_float_map("") == {}
    assert parse_key_float_map("0=1.23,1=0.98") == {0: 1.23, 1: 0.98}
    assert parse_key_float_map(" 0 = 1 , 2 = -0.5") == {0: 1.0, 2: -0.5}
    with pytest.raises(ValueError):
        parse_key_float_map("bad")


def test_parse_key_int_map() -> None:
    assert parse_key_int_map("") == {}
    assert parse_key_int_map("0=128,1=250") == {0: 128, 1: 250}
    assert parse_key_int_map("0=8, 2=16") == {0: 8, 2: 16}
    with pytest.raises(ValueError):
        parse_key_int_map("bad")


def test_parse_key_bool_map() -> None:
    assert parse_key_bool_map("") == {}
    assert parse_key_bool_map("0=true,1=false") == {0: True, 1: False}
    assert parse_key_bool_map("0=true, 2=true") == {0: True, 2: True}
    with pytest.raises(ValueError):
        parse_key_bool_map("bad")
    with pytest.raises(ValueError):
        parse_key_bool_map("0=maybe")


def test_apply_channel_maps_updates_and_appends() -> None:
    cfg = BridgeConfig(channels=[ChannelSetting(channel=0), ChannelSetting(channel=1)])
    apply_channel_maps(
        cfg,
        enabled={1: False},
        scales={0: 1.02},
        offsets={3: 0.5},
        rates={0: 250},
    )
    assert cfg.channels == [
        ChannelSetting(channel=0, calibration_scale=1.02, sample_rate=250),
        ChannelSetting(channel=1, enabled=False),
        ChannelSetting(channel=3, calibration_offset=0.5),
    ]


def test_apply_channel_maps_rejects_unsupported_rate() -> None:
    cfg = BridgeConfig()
    with pytest.raises(ValueError):
        apply_channel_maps(cfg, rates={0: 100})


def test_select_channels_keeps_calibration() -> None:
    cfg = BridgeConfig(channels=[ChannelSetting(channel=0, calibration_scale=2.0), ChannelSetting(channel=1)])
    select_channels(cfg, [1, 0])
    assert cfg.channels == [
        ChannelSetting(channel=1),
        ChannelSetting(channel=0, calibration_scale=2.0),
    ]
    select_channels(cfg, [2])
    assert [(c.channel, c.enabled) for c in cfg.channels] == [(2, True), (1, False), (0, False)]


def test_apply_output_options() -> None:
    cfg = BridgeConfig()
    apply_output_options(
        cfg,
        outputs=["console", "mqtt"],
        intervals={"mqtt": 5000},
        mqtt_fields={"server": "tcp://broker:1883", "username": "", "state_topic": "ads/%d"},
    )
    assert [o.type for o in cfg.outputs] == ["console", "mqtt"]
    assert cfg.outputs[0].interval_ms is None
    assert cfg.outputs[1].interval_ms == 5000
    assert cfg.outputs[1].mqtt == MqttConfig(server="tcp://broker:1883", state_topic="ads/%d")


def test_apply_output_options_creates_mqtt_output() -> None:
    cfg = BridgeConfig()
    apply_output_options(cfg, mqtt_fields={"client_id": "bench"})
    assert [o.type for o in cfg.outputs] == ["console", "mqtt"]
    assert cfg.outputs[1].mqtt is not None
    assert cfg.outputs[1].mqtt.client_id == "bench"


def test_config_to_dict_masks_password() -> None:
    cfg = BridgeConfig(outputs=[OutputConfig(type="mqtt", mqtt=MqttConfig(password="secret"))])
    data = config_to_dict(cfg)
    assert data["outputs"][0]["mqtt"]["password"] == "***"
    assert cfg.outputs[0].mqtt is not None
    assert cfg.outputs[0].mqtt.password == "secret"
