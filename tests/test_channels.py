from __future__ import annotations

import pytest

from adsbridge.channels import (
    ChannelSetting,
    compute_sensor_interval,
    effective_sample_rate,
    resolve_channels,
    validate_channels,
)
from adsbridge.errors import InvalidChannelError


def test_compute_sensor_interval() -> None:
    assert compute_sensor_interval(128, []) == 10

    one = [ChannelSetting(channel=0)]
    assert compute_sensor_interval(128, one) == 10

    two = [ChannelSetting(channel=0), ChannelSetting(channel=1)]
    assert compute_sensor_interval(128, two) == 20

    mixed = [ChannelSetting(channel=0, sample_rate=128), ChannelSetting(channel=1, sample_rate=250)]
    assert compute_sensor_interval(128, mixed) == 16


def test_compute_sensor_interval_ignores_disabled_channels() -> None:
    settings = [ChannelSetting(channel=0), ChannelSetting(channel=1, enabled=False, sample_rate=8)]
    assert compute_sensor_interval(128, settings) == 10


def test_compute_sensor_interval_non_positive_rate_falls_back_to_128() -> None:
    assert compute_sensor_interval(0, []) == 10
    assert compute_sensor_interval(-5, [ChannelSetting(channel=0)]) == 10


def test_effective_sample_rate() -> None:
    assert effective_sample_rate(250, 128) == 250
    assert effective_sample_rate(None, 64) == 64
    assert effective_sample_rate(None, 0) == 128


def test_resolve_channels_order_and_tables() -> None:
    resolved = resolve_channels(
        [
            ChannelSetting(channel=2, calibration_scale=2.0),
            ChannelSetting(channel=0, enabled=False, calibration_offset=-0.05, sample_rate=860),
            ChannelSetting(channel=1, calibration_offset=0.12, sample_rate=250),
        ]
    )
    assert resolved.channels == (2, 1)
    assert resolved.scale_for(2) == 2.0
    # disabled channels keep their calibration
    assert resolved.offset_for(0) == -0.05
    assert resolved.sample_rates == {0: 860, 1: 250}
    assert resolved.rate_for(1, 128) == 250
    assert resolved.rate_for(2, 64) == 64


def test_resolve_channels_defaults_for_unknown_channels() -> None:
    resolved = resolve_channels([])
    assert resolved.channels == ()
    assert resolved.scale_for(3) == 1.0
    assert resolved.offset_for(3) == 0.0
    assert resolved.rate_for(3, 128) == 128


def test_resolve_channels_later_duplicate_wins() -> None:
    resolved = resolve_channels(
        [ChannelSetting(channel=0, calibration_scale=1.5), ChannelSetting(channel=0, calibration_scale=0.5)]
    )
    assert resolved.scale_for(0) == 0.5


def test_validate_channels_rejects_out_of_range() -> None:
    validate_channels(resolve_channels([ChannelSetting(channel=3)]))
    with pytest.raises(InvalidChannelError):
        validate_channels(resolve_channels([ChannelSetting(channel=0), ChannelSetting(channel=7)]))
    # disabled out-of-range channels are never sampled
    validate_channels(resolve_channels([ChannelSetting(channel=7, enabled=False)]))
