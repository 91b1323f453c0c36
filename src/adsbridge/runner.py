from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from . import __version__
from .aggregation import SinkState
from .channels import ResolvedChannels, compute_sensor_interval, resolve_channels, validate_channels
from .config import BridgeConfig, config_to_dict
from .errors import BusError, PublishError
from .sinks import Sink, build_sinks
from .sources import SensorSource, build_source

logger = logging.getLogger(__name__)


class PeriodicThread(threading.Thread):
    """
    Runs `tick()` every `interval_ms` until the shared stop event is set.

    Deadlines advance by whole periods; ticks missed while a slow tick was
    running are skipped rather than replayed.
    """

    def __init__(self, name: str, interval_ms: int, stop_event: threading.Event) -> None:
        super().__init__(name=name, daemon=True)
        self.interval_ms = max(int(interval_ms), 1)
        self._stop_event = stop_event
        self._ticks = 0
        self.last_exception: Optional[Exception] = None

    def run(self) -> None:
        period = self.interval_ms / 1000.0
        next_tick = time.monotonic() + period
        while not self._stop_event.wait(max(next_tick - time.monotonic(), 0.0)):
            self._ticks += 1
            self.tick()
            next_tick += period
            now = time.monotonic()
            if next_tick <= now:
                missed = int((now - next_tick) // period) + 1
                next_tick += missed * period

    def tick(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        self._stop_event.set()


class SamplingThread(PeriodicThread):
    """Single producer: one source batch per tick, absorbed into every sink state."""

    def __init__(
        self,
        source: SensorSource,
        states: Sequence[SinkState],
        interval_ms: int,
        stop_event: threading.Event,
    ) -> None:
        super().__init__("sampler", interval_ms, stop_event)
        self.source = source
        self.states = list(states)
        self._samples = 0
        self._errors = 0

    def tick(self) -> None:
        try:
            readings = self.source.sample()
        except BusError as exc:
            self._errors += 1
            self.last_exception = exc
            logger.warning("Sensor read failed: %s", exc)
            return
        except Exception as exc:
            self._errors += 1
            self.last_exception = exc
            logger.exception("Unexpected error while sampling")
            return
        for state in self.states:
            state.absorb(readings)
        self._samples += 1

    def stats(self) -> Dict[str, int]:
        return {"ticks": self._ticks, "samples": self._samples, "read_errors": self._errors}


class PublisherThread(PeriodicThread):
    """Drains one sink's averages at its own interval and hands them to the sink."""

    def __init__(
        self,
        sink: Sink,
        state: SinkState,
        stop_event: threading.Event,
    ) -> None:
        super().__init__(f"publish-{state.name or sink.name}", state.interval_ms, stop_event)
        self.sink = sink
        self.state = state
        self._published = 0
        self._empty = 0
        self._errors = 0

    def tick(self) -> None:
        snapshot = self.state.drain()
        if not snapshot:
            self._empty += 1
            return
        try:
            self.sink.publish(snapshot)
        except PublishError as exc:
            self._errors += 1
            self.last_exception = exc
            logger.warning(
                "Publish failed, dropping snapshot: %s",
                exc,
                extra={"sink": self.state.name, "count": len(snapshot)},
            )
            return
        except Exception as exc:
            self._errors += 1
            self.last_exception = exc
            logger.exception("Unexpected error while publishing", extra={"sink": self.state.name})
            return
        self._published += 1

    def stats(self) -> Dict[str, int]:
        return {
            "ticks": self._ticks,
            "published": self._published,
            "empty": self._empty,
            "publish_errors": self._errors,
        }


@dataclass
class OutputEntry:
    sink: Sink
    state: SinkState


class BridgeHost:
    """Owns the sensor source, the per-output states, and the worker threads."""

    def __init__(
        self,
        config: BridgeConfig,
        source_factory: Callable[[BridgeConfig, ResolvedChannels], SensorSource] = build_source,
        sinks_factory: Callable[[BridgeConfig], List] = build_sinks,
    ) -> None:
        self.config = config
        self.resolved = resolve_channels(config.channels)
        validate_channels(self.resolved, config.sample_rate)
        self.sensor_interval_ms = compute_sensor_interval(config.sample_rate, config.channels)
        self.outputs: List[OutputEntry] = []
        seen: Dict[str, int] = {}
        for sink, interval_ms in sinks_factory(config):
            seen[sink.name] = seen.get(sink.name, 0) + 1
            name = sink.name if seen[sink.name] == 1 else f"{sink.name}-{seen[sink.name]}"
            state = SinkState(interval_ms or self.sensor_interval_ms, name=name)
            self.outputs.append(OutputEntry(sink=sink, state=state))
        try:
            self.source = source_factory(config, self.resolved)
        except Exception:
            self._close_sinks()
            raise
        self._stop_event = threading.Event()
        self._sampler: Optional[SamplingThread] = None
        self._publishers: List[PublisherThread] = []
        self._stopped = False

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def start(self) -> None:
        self._sampler = SamplingThread(
            self.source,
            [entry.state for entry in self.outputs],
            self.sensor_interval_ms,
            self._stop_event,
        )
        self._publishers = [
            PublisherThread(entry.sink, entry.state, self._stop_event) for entry in self.outputs
        ]
        self._sampler.start()
        for publisher in self._publishers:
            publisher.start()
        logger.info(
            "started; version=%s sensor_type=%s sample_rate=%d sensor_interval=%dms outputs=%s",
            __version__,
            self.config.sensor_type,
            self.config.sample_rate,
            self.sensor_interval_ms,
            ", ".join(f"{entry.state.name}@{entry.state.interval_ms}ms" for entry in self.outputs),
        )
        logger.info("config:\n%s", json.dumps(config_to_dict(self.config), indent=2))

    def run(self) -> None:
        self.start()
        try:
            while not self._stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Stopping (Ctrl+C)")
        finally:
            self.stop()

    def stop(self, timeout: float = 5.0) -> None:
        if self._stopped:
            return
        self._stopped = True
        logger.info("shutting down")
        self._stop_event.set()
        threads: List[PeriodicThread] = list(self._publishers)
        if self._sampler is not None:
            threads.insert(0, self._sampler)
        for thread in threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Thread %s did not stop within %.1fs", thread.name, timeout)
        for entry in self.outputs:
            pending = entry.state.pending()
            if pending:
                logger.info(
                    "Discarding unpublished samples for channels %s",
                    sorted(pending),
                    extra={"sink": entry.state.name, "count": sum(pending.values())},
                )
        self._close_sinks()
        try:
            self.source.shutdown()
        except Exception:
            logger.exception("Error while shutting down sensor")
        for name, values in self.stats().items():
            logger.info("final stats %s: %s", name, " ".join(f"{k}={v}" for k, v in values.items()))

    def _close_sinks(self) -> None:
        for entry in self.outputs:
            try:
                entry.sink.close()
            except Exception:
                logger.exception("Error while closing output", extra={"sink": entry.state.name})

    def stats(self) -> Dict[str, Dict[str, int]]:
        stats: Dict[str, Dict[str, int]] = {}
        if self._sampler is not None:
            stats["sampler"] = self._sampler.stats()
        for publisher in self._publishers:
            stats[publisher.state.name] = publisher.stats()
        return stats
