"""Per-sink running averages between publishes."""
from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, cast

from .sources import Reading


def round_half_away(value: float) -> int:
    """Round to nearest integer, ties away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


@dataclass
class ChannelAccumulator:
    total: float = 0.0
    raw_total: int = 0
    count: int = 0
    latest: Optional[datetime] = None

    def add(self, reading: Reading) -> None:
        self.total += reading.value
        self.raw_total += reading.raw
        self.count += 1
        if self.latest is None or reading.timestamp > self.latest:
            self.latest = reading.timestamp

    def average(self, channel: int) -> Reading:
        if self.count == 0:
            raise ValueError(f"No samples accumulated for channel {channel}")
        return Reading(
            channel=channel,
            raw=round_half_away(self.raw_total / self.count),
            value=self.total / self.count,
            timestamp=cast(datetime, self.latest),
        )


class SinkState:
    """
    Accumulators for one output.

    The sampling thread absorbs every batch; the output's publisher drains at
    its own interval. Each state has its own lock, so outputs never contend
    with each other.
    """

    def __init__(self, interval_ms: int, name: str = ""):
        self.interval_ms = interval_ms
        self.name = name
        self._lock = threading.Lock()
        self._accumulators: Dict[int, ChannelAccumulator] = {}

    def absorb(self, readings: Iterable[Reading]) -> None:
        with self._lock:
            for reading in readings:
                acc = self._accumulators.get(reading.channel)
                if acc is None:
                    acc = ChannelAccumulator()
                    self._accumulators[reading.channel] = acc
                acc.add(reading)

    def drain(self) -> List[Reading]:
        """Average and clear; an empty list means there is nothing to publish."""
        with self._lock:
            snapshot: List[Reading] = []
            for channel in list(self._accumulators):
                acc = self._accumulators.pop(channel)
                if acc.count == 0:
                    continue
                snapshot.append(acc.average(channel))
            return snapshot

    def pending(self) -> Dict[int, int]:
        with self._lock:
            return {channel: acc.count for channel, acc in self._accumulators.items()}
