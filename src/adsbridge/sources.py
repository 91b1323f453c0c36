from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, List, Optional, Protocol, Union

import numpy as np
from smbus2 import SMBus, i2c_msg

from .channels import ResolvedChannels
from .codec import (
    DEFAULT_SAMPLE_RATE,
    FULL_SCALE_VOLTS,
    POINTER_CONFIG,
    POINTER_CONVERSION,
    conversion_delay_ms,
    decode_result,
    encode_config,
    to_physical_value,
)
from .errors import BusError

if TYPE_CHECKING:
    from .config import BridgeConfig

logger = logging.getLogger(__name__)

SIMULATED_RAW_MAX = 32767
SIMULATION_TYPES = frozenset({"simulation", "sim", "fake"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Reading:
    channel: int
    raw: int
    value: float
    timestamp: datetime


class SensorSource(Protocol):
    def sample(self) -> List[Reading]:
        ...

    def shutdown(self) -> None:
        ...


class Transport(Protocol):
    def transact(self, write: bytes, read_length: int) -> bytes:
        ...

    def close(self) -> None:
        ...


class SMBusTransport:
    """Raw I2C access to one device address through smbus2."""

    def __init__(self, bus: Union[int, str], address: int):
        self.address = address
        try:
            self._bus = SMBus(parse_bus(bus))
        except OSError as exc:
            raise BusError(f"open i2c bus {bus}: {exc}") from exc

    def transact(self, write: bytes, read_length: int) -> bytes:
        messages = [i2c_msg.write(self.address, list(write))]
        read = None
        if read_length > 0:
            read = i2c_msg.read(self.address, read_length)
            messages.append(read)
        try:
            self._bus.i2c_rdwr(*messages)
        except OSError as exc:
            raise BusError(f"i2c transaction at {self.address:#04x} failed: {exc}") from exc
        if read is None:
            return b""
        return bytes(list(read))

    def close(self) -> None:
        self._bus.close()


def parse_bus(bus: Union[int, str]) -> Union[int, str]:
    """'2' -> 2 (/dev/i2c-2); anything non-numeric is passed through as a device path."""
    if isinstance(bus, int):
        return bus
    text = str(bus).strip()
    if text.isdigit():
        return int(text)
    return text


class Ads1115Source:
    """
    Hardware source: one single-shot conversion per enabled channel, sequentially.

    A failed transaction aborts the whole batch with BusError.
    """

    def __init__(
        self,
        transport: Transport,
        resolved: ResolvedChannels,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        full_scale: float = FULL_SCALE_VOLTS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.transport = transport
        self.resolved = resolved
        self.sample_rate = sample_rate
        self.full_scale = full_scale
        self._sleep = sleep
        self._clock = clock
        self._closed = False
        self._close_lock = threading.Lock()

    def sample(self) -> List[Reading]:
        readings: List[Reading] = []
        for channel in self.resolved.channels:
            rate = self.resolved.rate_for(channel, self.sample_rate)
            msb, lsb = encode_config(channel, rate)
            try:
                self.transport.transact(bytes([POINTER_CONFIG, msb, lsb]), 0)
            except BusError as exc:
                raise BusError(f"write config for channel {channel}: {exc}") from exc
            self._sleep(conversion_delay_ms(rate) / 1000.0)
            try:
                data = self.transport.transact(bytes([POINTER_CONVERSION]), 2)
            except BusError as exc:
                raise BusError(f"read conversion for channel {channel}: {exc}") from exc
            try:
                raw = decode_result(data)
            except ValueError as exc:
                raise BusError(f"read conversion for channel {channel}: {exc}") from exc
            value = to_physical_value(
                raw,
                self.full_scale,
                self.resolved.scale_for(channel),
                self.resolved.offset_for(channel),
            )
            readings.append(Reading(channel=channel, raw=raw, value=value, timestamp=self._clock()))
        return readings

    def shutdown(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.transport.close()


class SimulatedSource:
    """Pseudo-random in-range readings for running the pipeline without hardware."""

    def __init__(
        self,
        resolved: ResolvedChannels,
        full_scale: float = FULL_SCALE_VOLTS,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.resolved = resolved
        self.full_scale = full_scale
        self._rng = rng if rng is not None else np.random.default_rng()
        self._clock = clock
        self._lock = threading.Lock()

    def sample(self) -> List[Reading]:
        with self._lock:
            now = self._clock()
            raws = self._rng.integers(0, SIMULATED_RAW_MAX, size=len(self.resolved.channels))
        readings = []
        for channel, raw in zip(self.resolved.channels, raws):
            value = to_physical_value(
                int(raw),
                self.full_scale,
                self.resolved.scale_for(channel),
                self.resolved.offset_for(channel),
            )
            readings.append(Reading(channel=channel, raw=int(raw), value=value, timestamp=now))
        return readings

    def shutdown(self) -> None:
        pass


def build_source(config: "BridgeConfig", resolved: ResolvedChannels) -> SensorSource:
    sensor_type = config.sensor_type.strip().lower()
    if sensor_type in SIMULATION_TYPES:
        logger.info("Using simulated sensor for channels %s", list(resolved.channels))
        return SimulatedSource(resolved)
    transport = SMBusTransport(config.i2c.bus, config.i2c.address)
    logger.info(
        "Using ADS1115 on bus %s at %#04x for channels %s",
        config.i2c.bus,
        config.i2c.address,
        list(resolved.channels),
    )
    return Ads1115Source(transport, resolved, sample_rate=config.sample_rate)
