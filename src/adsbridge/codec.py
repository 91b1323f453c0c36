from __future__ import annotations

import math
from types import MappingProxyType
from typing import Mapping, Tuple

from .errors import InvalidChannelError

POINTER_CONVERSION = 0x00
POINTER_CONFIG = 0x01

FULL_SCALE_VOLTS = 4.096
DEFAULT_SAMPLE_RATE = 128
SETTLING_OVERHEAD_MS = 2

CONFIG_OS_SINGLE = 0x8000
CONFIG_PGA_4_096V = 0x1
CONFIG_MODE_SINGLE = 0x0100
CONFIG_COMP_DISABLE = 0x0003

# Single-ended AINx against GND.
MUX_CODES: Mapping[int, int] = MappingProxyType({0: 0x4, 1: 0x5, 2: 0x6, 3: 0x7})

DATA_RATE_CODES: Mapping[int, int] = MappingProxyType(
    {
        8: 0x0,
        16: 0x1,
        32: 0x2,
        64: 0x3,
        128: 0x4,
        250: 0x5,
        475: 0x6,
        860: 0x7,
    }
)

ALLOWED_SAMPLE_RATES = tuple(sorted(DATA_RATE_CODES))


def config_word(channel: int, sample_rate: int) -> int:
    try:
        mux = MUX_CODES[channel]
    except KeyError:
        raise InvalidChannelError(channel) from None
    data_rate = DATA_RATE_CODES.get(sample_rate, DATA_RATE_CODES[DEFAULT_SAMPLE_RATE])
    word = CONFIG_OS_SINGLE
    word |= mux << 12
    word |= CONFIG_PGA_4_096V << 9
    word |= CONFIG_MODE_SINGLE
    word |= data_rate << 5
    word |= CONFIG_COMP_DISABLE
    return word


def encode_config(channel: int, sample_rate: int) -> Tuple[int, int]:
    """
    Build the config register for a single-shot conversion on `channel`.

    Returns the big-endian (msb, lsb) pair written after the config pointer.
    Unknown sample rates use the 128 SPS data-rate code.
    """
    word = config_word(channel, sample_rate)
    return (word >> 8) & 0xFF, word & 0xFF


def decode_result(data: bytes) -> int:
    if len(data) != 2:
        raise ValueError(f"Conversion result must be 2 bytes, got {len(data)}")
    return int.from_bytes(bytes(data), "big", signed=True)


def to_physical_value(
    raw: int,
    full_scale: float = FULL_SCALE_VOLTS,
    scale: float = 1.0,
    offset: float = 0.0,
) -> float:
    return raw / 32768.0 * full_scale * scale + offset


def conversion_delay_ms(sample_rate: int) -> int:
    return math.ceil(1000.0 / sample_rate) + SETTLING_OVERHEAD_MS
