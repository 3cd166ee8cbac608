"""
Profiling Report Writers

JSON and Markdown output for a processing run:

    - save_profiling_json: CPU/GPU timer aggregates from a ProfilingEngine
    - save_gpu_profiling_json: per-event GPU breakdown plus device info
    - save_gpu_profiling_markdown: the same breakdown as a readable report
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Optional

from fractional_delay.profiling import DetailedGPUProfiling, ProfilingEngine


def _prepare(path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def save_profiling_json(engine: ProfilingEngine, path: str | Path) -> Path:
    """Write every timer aggregate and the overall total.

    Schema::

        {"metrics": [{"name", "time_ms", "call_count", "min_time_ms",
                      "max_time_ms", "avg_time_ms"}, ...],
         "total_time_ms": float}

    Returns:
        The written path.
    """
    path = _prepare(path)
    report = {
        "metrics": [metric.to_dict() for metric in engine.metrics],
        "total_time_ms": engine.total_time_ms,
    }
    with open(path, "w") as fp:
        json.dump(report, fp, indent=4)
    return path


def save_gpu_profiling_json(profiling: DetailedGPUProfiling, path: str | Path) -> Path:
    """Write device info, per-event phase durations and the GPU total."""
    path = _prepare(path)
    with open(path, "w") as fp:
        json.dump(profiling.to_dict(), fp, indent=4)
    return path


def save_gpu_profiling_markdown(
    profiling: DetailedGPUProfiling,
    path: str | Path,
    signal_params: Optional[dict] = None,
) -> Path:
    """Write a Markdown report with system info, signal parameters and a
    table of GPU events."""
    path = _prepare(path)
    info = profiling.system_info

    lines = [
        "# GPU Fractional Delay Profiling Report",
        "",
        f"Generated: {time.strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "## System Information",
        "",
        f"- **Backend:** {info.backend}",
        f"- **Platform:** {info.platform_name} {info.platform_version}".rstrip(),
        f"- **Device:** {info.device_name}",
        f"- **Vendor:** {info.device_vendor}",
        f"- **Device version:** {info.device_version}",
        f"- **Driver version:** {info.driver_version}",
        f"- **Compute units:** {info.compute_units}",
        f"- **Global memory:** {info.global_memory_mb:.0f} MB",
        f"- **Max work-group size:** {info.max_work_group_size}",
        "",
    ]

    if signal_params:
        lines += ["## Signal Parameters", ""]
        lines += [f"- **{key}:** {value}" for key, value in signal_params.items()]
        lines.append("")

    lines += [
        "## GPU Events",
        "",
        "| Event | Queue (ms) | Wait (ms) | Execution (ms) | Total (ms) |",
        "|---|---:|---:|---:|---:|",
    ]
    for event in profiling.gpu_events:
        lines.append(
            f"| {event.event_name} | {event.queue_time_ms:.4f} | {event.wait_time_ms:.4f} "
            f"| {event.execution_time_ms:.4f} | {event.total_time_ms:.4f} |"
        )
    lines += [
        "",
        f"**Total GPU time:** {profiling.total_gpu_time_ms:.4f} ms",
        "",
    ]

    path.write_text("\n".join(lines))
    return path
