from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from .codec import DEFAULT_SAMPLE_RATE, SETTLING_OVERHEAD_MS, encode_config


@dataclass(frozen=True)
class ChannelSetting:
    channel: int
    enabled: bool = True
    calibration_scale: float = 1.0
    calibration_offset: float = 0.0
    sample_rate: Optional[int] = None


@dataclass(frozen=True)
class ResolvedChannels:
    """Enabled channels in configuration order plus per-channel lookup tables."""

    channels: Tuple[int, ...] = ()
    scales: Dict[int, float] = field(default_factory=dict)
    offsets: Dict[int, float] = field(default_factory=dict)
    sample_rates: Dict[int, int] = field(default_factory=dict)

    def scale_for(self, channel: int) -> float:
        return self.scales.get(channel, 1.0)

    def offset_for(self, channel: int) -> float:
        return self.offsets.get(channel, 0.0)

    def rate_for(self, channel: int, default: int) -> int:
        return effective_sample_rate(self.sample_rates.get(channel), default)


def resolve_channels(settings: Iterable[ChannelSetting]) -> ResolvedChannels:
    """
    Derive the ordered enabled channel list and calibration tables.

    Disabled channels still get table entries so they can be referenced later.
    Later duplicates overwrite earlier table entries.
    """
    enabled = []
    scales: Dict[int, float] = {}
    offsets: Dict[int, float] = {}
    rates: Dict[int, int] = {}
    for setting in settings:
        scales[setting.channel] = setting.calibration_scale
        offsets[setting.channel] = setting.calibration_offset
        if setting.sample_rate:
            rates[setting.channel] = setting.sample_rate
        if setting.enabled:
            enabled.append(setting.channel)
    return ResolvedChannels(
        channels=tuple(enabled),
        scales=scales,
        offsets=offsets,
        sample_rates=rates,
    )


def validate_channels(resolved: ResolvedChannels, sample_rate: int = DEFAULT_SAMPLE_RATE) -> None:
    for channel in resolved.channels:
        encode_config(channel, resolved.rate_for(channel, sample_rate))


def effective_sample_rate(override: Optional[int], default: int) -> int:
    rate = override or default
    if rate <= 0:
        rate = DEFAULT_SAMPLE_RATE
    return rate


def compute_sensor_interval(sample_rate: int, settings: Iterable[ChannelSetting]) -> int:
    """
    Milliseconds needed for one sequential single-shot conversion per enabled channel.

    Falls back to a single-channel estimate at the global rate when nothing is enabled.
    """
    total = 0.0
    enabled = 0
    for setting in settings:
        if not setting.enabled:
            continue
        enabled += 1
        rate = effective_sample_rate(setting.sample_rate, sample_rate)
        total += 1000.0 / rate + SETTLING_OVERHEAD_MS
    if enabled == 0:
        rate = effective_sample_rate(None, sample_rate)
        total = 1000.0 / rate + SETTLING_OVERHEAD_MS
    return int(total + 0.5)
