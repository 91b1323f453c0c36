"""Command line interface for the ADS1115 bridge."""
from __future__ import annotations

import json
import logging
import signal
from pathlib import Path
from typing import List, Optional

import typer

from . import __version__
from .channels import compute_sensor_interval
from .codec import config_word, encode_config
from .config import (
    BridgeConfig,
    apply_channel_maps,
    apply_output_options,
    config_to_dict,
    load_config,
    parse_csv,
    parse_int_or_hex,
    parse_key_bool_map,
    parse_key_float_map,
    parse_key_int_map,
    select_channels,
)
from .errors import BridgeError
from .logging_config import configure_logging
from .runner import BridgeHost

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="Sample an ADS1115 and publish averaged readings.")


def _build_config(
    config_path: Optional[Path],
    override: Optional[List[str]],
    i2c_bus: Optional[str] = None,
    i2c_address: Optional[str] = None,
    sample_rate: Optional[int] = None,
    sensor_type: Optional[str] = None,
    channels: Optional[str] = None,
    enabled: Optional[str] = None,
    calibration: Optional[str] = None,
    calibration_offset: Optional[str] = None,
    sample_rates: Optional[str] = None,
    outputs: Optional[str] = None,
    output_intervals: Optional[str] = None,
    mqtt_server: Optional[str] = None,
    mqtt_user: Optional[str] = None,
    mqtt_pass: Optional[str] = None,
    mqtt_client_id: Optional[str] = None,
    mqtt_topic: Optional[str] = None,
) -> BridgeConfig:
    try:
        cfg = load_config(config_path, override or None)
        if i2c_bus:
            cfg.i2c.bus = i2c_bus
        if i2c_address:
            cfg.i2c.address = parse_int_or_hex(i2c_address)
        if sample_rate is not None:
            cfg.sample_rate = sample_rate
        if sensor_type:
            cfg.sensor_type = sensor_type
        if channels:
            select_channels(cfg, [int(item) for item in parse_csv(channels)])
        apply_channel_maps(
            cfg,
            enabled=parse_key_bool_map(enabled or ""),
            scales=parse_key_float_map(calibration or ""),
            offsets=parse_key_float_map(calibration_offset or ""),
            rates=parse_key_int_map(sample_rates or ""),
        )
        intervals = {}
        for item in parse_csv(output_intervals or ""):
            name, _, value = item.partition("=")
            intervals[name.strip().lower()] = int(value)
        apply_output_options(
            cfg,
            outputs=parse_csv(outputs or ""),
            intervals=intervals,
            mqtt_fields={
                "server": mqtt_server or "",
                "username": mqtt_user or "",
                "password": mqtt_pass or "",
                "client_id": mqtt_client_id or "",
                "state_topic": mqtt_topic or "",
            },
        )
        cfg.validate()
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    return cfg


CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to JSON config file.")
SET_OPTION = typer.Option(None, "--set", help="Override config keys, e.g. --set sample_rate=250 --set i2c.address=0x49")


@app.command()
def run(
    config_path: Optional[Path] = CONFIG_OPTION,
    override: Optional[List[str]] = SET_OPTION,
    i2c_bus: Optional[str] = typer.Option(None, "--i2c-bus", help="I2C bus, e.g. '2' for /dev/i2c-2."),
    i2c_address: Optional[str] = typer.Option(None, "--i2c-address", help="I2C address (decimal or 0x hex)."),
    sample_rate: Optional[int] = typer.Option(None, "--sample-rate", help="Global ADS1115 sample rate (SPS)."),
    sensor_type: Optional[str] = typer.Option(None, "--sensor-type", help="real|simulation"),
    channels: Optional[str] = typer.Option(None, "--channels", help="Enabled channels, e.g. 0,1,2,3"),
    enabled: Optional[str] = typer.Option(None, "--enabled", help="Per-channel enable map, e.g. 0=true,1=false"),
    calibration: Optional[str] = typer.Option(None, "--calibration", help="Per-channel scale, e.g. 0=1.02,1=0.98"),
    calibration_offset: Optional[str] = typer.Option(
        None, "--calibration-offset", help="Per-channel offset, e.g. 0=0.12"
    ),
    sample_rates: Optional[str] = typer.Option(None, "--sample-rates", help="Per-channel rate, e.g. 0=250,1=860"),
    outputs: Optional[str] = typer.Option(None, "--outputs", help="Comma-separated outputs (console,mqtt)."),
    output_intervals: Optional[str] = typer.Option(
        None, "--output-intervals", help="Per-output publish interval in ms, e.g. console=1000,mqtt=5000"
    ),
    mqtt_server: Optional[str] = typer.Option(None, "--mqtt-server", help="MQTT server (tcp://host:port)."),
    mqtt_user: Optional[str] = typer.Option(None, "--mqtt-user", help="MQTT username."),
    mqtt_pass: Optional[str] = typer.Option(None, "--mqtt-pass", help="MQTT password."),
    mqtt_client_id: Optional[str] = typer.Option(None, "--mqtt-client-id", help="MQTT client id."),
    mqtt_topic: Optional[str] = typer.Option(None, "--mqtt-topic", help="MQTT state topic; %d expands to the channel."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (default INFO)."),
) -> None:
    """Sample the ADC and publish averaged readings until interrupted."""

    configure_logging(log_level)
    cfg = _build_config(
        config_path, override, i2c_bus, i2c_address, sample_rate, sensor_type, channels, enabled,
        calibration, calibration_offset, sample_rates, outputs, output_intervals,
        mqtt_server, mqtt_user, mqtt_pass, mqtt_client_id, mqtt_topic,
    )
    try:
        host = BridgeHost(cfg)
    except (BridgeError, ValueError) as exc:
        typer.echo(f"startup failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    def _on_sigterm(signum, frame) -> None:
        logger.info("Received signal %d", signum)
        host.stop_event.set()

    previous = signal.signal(signal.SIGTERM, _on_sigterm)
    try:
        host.run()
    finally:
        signal.signal(signal.SIGTERM, previous)


@app.command("show-config")
def show_config(
    config_path: Optional[Path] = CONFIG_OPTION,
    override: Optional[List[str]] = SET_OPTION,
) -> None:
    """Print the effective configuration and the derived sampling interval."""

    cfg = _build_config(config_path, override)
    interval = compute_sensor_interval(cfg.sample_rate, cfg.channels)
    data = config_to_dict(cfg)
    data["sensor_interval_ms"] = interval
    for output in data["outputs"]:
        output["effective_interval_ms"] = output["interval_ms"] or interval
    typer.echo(json.dumps(data, indent=2))


@app.command()
def encode(
    channel: int = typer.Option(..., "--channel", help="Single-ended input 0-3."),
    rate: int = typer.Option(128, "--rate", help="Sample rate (SPS)."),
) -> None:
    """Show the config register written for a single-shot conversion."""

    try:
        msb, lsb = encode_config(channel, rate)
    except BridgeError as exc:
        raise typer.BadParameter(str(exc), param_hint="--channel") from exc
    typer.echo(f"config=0x{config_word(channel, rate):04X} msb=0x{msb:02X} lsb=0x{lsb:02X}")


@app.command()
def version() -> None:
    """Print the package version."""

    typer.echo(__version__)


def run_app() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run_app()
