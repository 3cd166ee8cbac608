"""
Profiling Engine

Aggregates named wall-clock timers and GPU event timings for a processing
run.

## CPU timers

``start_timer(name)`` pushes a ``time.perf_counter_ns`` stamp on a per-name
stack and ``stop_timer(name)`` pops it, so nested timers with the same name
are matched innermost first. Each stop updates a TimingMetric aggregate
(total, count, min, max, average).

## GPU events

A compute event exposes four device timestamps in nanoseconds:

    queued  -> host enqueued the command
    submit  -> command handed to the device
    start   -> execution began
    end     -> execution finished

GPUEventMetrics derives the four phase durations from them:

    queue_time     = submit - queued
    wait_time      = start - submit
    execution_time = end - start
    total_time     = end - queued
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

_NS_PER_MS = 1e6


@dataclass
class TimingMetric:
    """Running aggregate of one named timing."""

    name: str
    total_time_ms: float = 0.0
    call_count: int = 0
    min_time_ms: float = float("inf")
    max_time_ms: float = 0.0

    @property
    def avg_time_ms(self) -> float:
        if self.call_count == 0:
            return 0.0
        return self.total_time_ms / self.call_count

    def update(self, time_ms: float) -> None:
        self.total_time_ms += time_ms
        self.call_count += 1
        self.min_time_ms = min(self.min_time_ms, time_ms)
        self.max_time_ms = max(self.max_time_ms, time_ms)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "time_ms": self.total_time_ms,
            "call_count": self.call_count,
            "min_time_ms": self.min_time_ms if self.call_count else 0.0,
            "max_time_ms": self.max_time_ms,
            "avg_time_ms": self.avg_time_ms,
        }


@dataclass(frozen=True)
class GPUEventMetrics:
    """Four raw event timestamps and the phase durations derived from them."""

    event_name: str
    time_queued_ns: int = 0
    time_submit_ns: int = 0
    time_start_ns: int = 0
    time_end_ns: int = 0

    @classmethod
    def from_timestamps(
        cls,
        event_name: str,
        queued: int,
        submit: int,
        start: int,
        end: int,
    ) -> "GPUEventMetrics":
        return cls(event_name, int(queued), int(submit), int(start), int(end))

    @property
    def queue_time_ns(self) -> int:
        return self.time_submit_ns - self.time_queued_ns

    @property
    def wait_time_ns(self) -> int:
        return self.time_start_ns - self.time_submit_ns

    @property
    def execution_time_ns(self) -> int:
        return self.time_end_ns - self.time_start_ns

    @property
    def total_time_ns(self) -> int:
        return self.time_end_ns - self.time_queued_ns

    @property
    def queue_time_ms(self) -> float:
        return self.queue_time_ns / _NS_PER_MS

    @property
    def wait_time_ms(self) -> float:
        return self.wait_time_ns / _NS_PER_MS

    @property
    def execution_time_ms(self) -> float:
        return self.execution_time_ns / _NS_PER_MS

    @property
    def total_time_ms(self) -> float:
        return self.total_time_ns / _NS_PER_MS

    def to_dict(self) -> dict:
        return {
            "event_name": self.event_name,
            "queue_time_ms": self.queue_time_ms,
            "wait_time_ms": self.wait_time_ms,
            "execution_time_ms": self.execution_time_ms,
            "total_time_ms": self.total_time_ms,
        }


@dataclass
class SystemInfo:
    """Description of the compute device a run executed on."""

    backend: str = ""
    platform_name: str = ""
    platform_version: str = ""
    device_name: str = ""
    device_vendor: str = ""
    device_version: str = ""
    driver_version: str = ""
    compute_units: int = 0
    global_memory_bytes: int = 0
    max_work_group_size: int = 0

    @property
    def global_memory_mb(self) -> float:
        return self.global_memory_bytes / (1024 * 1024)

    def to_dict(self) -> dict:
        return {
            "backend": self.backend,
            "platform_name": self.platform_name,
            "platform_version": self.platform_version,
            "device_name": self.device_name,
            "device_vendor": self.device_vendor,
            "device_version": self.device_version,
            "driver_version": self.driver_version,
            "compute_units": self.compute_units,
            "global_memory_mb": self.global_memory_mb,
            "max_work_group_size": self.max_work_group_size,
        }


@dataclass
class DetailedGPUProfiling:
    """Per-event GPU timings of one processing call plus its device."""

    system_info: SystemInfo = field(default_factory=SystemInfo)
    gpu_events: List[GPUEventMetrics] = field(default_factory=list)

    @property
    def total_gpu_time_ms(self) -> float:
        return sum(event.total_time_ms for event in self.gpu_events)

    def to_dict(self) -> dict:
        return {
            "system_info": self.system_info.to_dict(),
            "gpu_events": [event.to_dict() for event in self.gpu_events],
            "total_gpu_time_ms": self.total_gpu_time_ms,
        }


def calculate_event_metrics(
    event_name: str,
    queued: int,
    submit: int,
    start: int,
    end: int,
) -> GPUEventMetrics:
    """Build GPUEventMetrics from raw nanosecond timestamps."""
    return GPUEventMetrics.from_timestamps(event_name, queued, submit, start, end)


class ProfilingEngine:
    """Collects CPU timer aggregates and GPU event metrics.

    Args:
        enabled: When False every recording call is a no-op.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._metrics: Dict[str, TimingMetric] = {}
        self._active: Dict[str, List[int]] = {}
        self._gpu_events: List[GPUEventMetrics] = []

    # ------------------------------------------------------------------ #
    #  CPU timers
    # ------------------------------------------------------------------ #

    def start_timer(self, name: str) -> None:
        if not self.enabled:
            return
        self._active.setdefault(name, []).append(time.perf_counter_ns())

    def stop_timer(self, name: str) -> Optional[float]:
        """Stop the innermost running timer called ``name``.

        Returns:
            Elapsed time in milliseconds, or None if no such timer was
            running (a warning is logged).
        """
        if not self.enabled:
            return None
        stamps = self._active.get(name)
        if not stamps:
            logger.warning("Timer '%s' was stopped without being started", name)
            return None
        elapsed_ms = (time.perf_counter_ns() - stamps.pop()) / _NS_PER_MS
        if not stamps:
            del self._active[name]
        self._metric(name).update(elapsed_ms)
        return elapsed_ms

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Time the enclosed block under ``name``."""
        self.start_timer(name)
        try:
            yield
        finally:
            self.stop_timer(name)

    # ------------------------------------------------------------------ #
    #  GPU events
    # ------------------------------------------------------------------ #

    def record_gpu_event(self, name: str, time_ms: float) -> None:
        """Add a device-measured duration to the ``name`` aggregate."""
        if not self.enabled:
            return
        self._metric(name).update(time_ms)

    def record_event_metrics(self, metrics: GPUEventMetrics) -> None:
        """Store a full event breakdown and aggregate its execution time."""
        if not self.enabled:
            return
        self._gpu_events.append(metrics)
        self._metric(metrics.event_name).update(metrics.execution_time_ms)

    # ------------------------------------------------------------------ #
    #  Queries
    # ------------------------------------------------------------------ #

    def get_metric(self, name: str) -> TimingMetric:
        """Return the aggregate for ``name``, or an empty one if unknown."""
        return self._metrics.get(name, TimingMetric(name))

    @property
    def metrics(self) -> List[TimingMetric]:
        return list(self._metrics.values())

    @property
    def gpu_events(self) -> List[GPUEventMetrics]:
        return list(self._gpu_events)

    @property
    def total_time_ms(self) -> float:
        return sum(metric.total_time_ms for metric in self._metrics.values())

    @property
    def total_gpu_time_ms(self) -> float:
        return sum(event.total_time_ms for event in self._gpu_events)

    def reset(self) -> None:
        self._metrics.clear()
        self._active.clear()
        self._gpu_events.clear()

    def format_report(self) -> str:
        """Tabular text summary of every aggregate and GPU event."""
        lines = [
            "=== Profiling Report ===",
            f"  {'Metric':<28}{'Total ms':>12}{'Calls':>8}{'Min ms':>12}{'Max ms':>12}{'Avg ms':>12}",
        ]
        for metric in self._metrics.values():
            row = metric.to_dict()
            lines.append(
                f"  {metric.name:<28}{row['time_ms']:>12.4f}{row['call_count']:>8d}"
                f"{row['min_time_ms']:>12.4f}{row['max_time_ms']:>12.4f}{row['avg_time_ms']:>12.4f}"
            )
        lines.append(f"  Total time       : {self.total_time_ms:.4f} ms")

        if self._gpu_events:
            lines.append("  --- GPU events ---")
            for event in self._gpu_events:
                lines.append(
                    f"  {event.event_name:<28} queue {event.queue_time_ms:.4f}  "
                    f"wait {event.wait_time_ms:.4f}  exec {event.execution_time_ms:.4f}  "
                    f"total {event.total_time_ms:.4f} ms"
                )
            lines.append(f"  Total GPU time   : {self.total_gpu_time_ms:.4f} ms")
        return "\n".join(lines)

    def _metric(self, name: str) -> TimingMetric:
        metric = self._metrics.get(name)
        if metric is None:
            metric = self._metrics[name] = TimingMetric(name)
        return metric
