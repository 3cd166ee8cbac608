"""
GPU Fractional Delay Processing

FractionalDelayGPU drives one backend through the full device round trip
for a SignalBuffer:

    1. H2D: upload the flat complex64 samples
    2. Kernel: per-beam fractional delay, in place on the device
    3. D2H: download the delayed samples into the output buffer

Each step is a profiled DeviceOperation; its GPUEventMetrics are recorded
under ``H2D_Transfer``, ``FractionalDelay_Kernel`` and ``D2H_Transfer``.
The device buffer lives in a ``device_buffer`` scope, so it is released
whether the run succeeds, fails a step, or raises.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from fractional_delay.gpu_backend.base import BackendError, GPUBackend
from fractional_delay.lagrange_matrix import LagrangeMatrix
from fractional_delay.profiling import DetailedGPUProfiling, ProfilingEngine
from fractional_delay.signal_buffer import SignalBuffer

logger = logging.getLogger(__name__)

H2D_EVENT = "H2D_Transfer"
KERNEL_EVENT = "FractionalDelay_Kernel"
D2H_EVENT = "D2H_Transfer"


class FractionalDelayGPU:
    """Fractional delay of a SignalBuffer on a GPU backend.

    Args:
        backend: Backend to run on. Initialized here if it is not already.
        matrix: Lagrange coefficient table, uploaded once at construction.
        profiler: Optional engine receiving timers and GPU event metrics.

    Raises:
        BackendError: If the backend cannot be initialized or the table
            cannot be uploaded.
    """

    def __init__(
        self,
        backend: GPUBackend,
        matrix: LagrangeMatrix,
        profiler: Optional[ProfilingEngine] = None,
    ) -> None:
        self.backend = backend
        self.matrix = matrix
        self.profiler = profiler if profiler is not None else ProfilingEngine()
        self.last_profiling = DetailedGPUProfiling()

        if not backend.is_initialized:
            backend.initialize()
        if not backend.upload_lagrange_matrix(matrix):
            raise BackendError(f"Failed to upload the Lagrange matrix to {backend.device_name}")

    def process(
        self,
        signal: SignalBuffer,
        delays: Sequence[float],
        output: Optional[SignalBuffer] = None,
    ) -> bool:
        """Delay every beam of ``signal`` on the device.

        Args:
            signal: Input signal. Left untouched unless it is also ``output``.
            delays: One delay in samples per beam.
            output: Destination buffer; resized if needed. Defaults to
                ``signal`` (in place).

        Returns:
            True on success. False if the input is invalid or any transfer
            or dispatch step failed; ``output`` is then unspecified.
        """
        if not signal.is_valid():
            logger.error("Invalid input buffer: %r", signal)
            return False
        if len(delays) != signal.num_beams:
            logger.error("Got %d delays for %d beams", len(delays), signal.num_beams)
            return False

        if output is None:
            output = signal
        elif output.shape != signal.shape:
            output.resize(signal.num_beams, signal.num_samples)

        profiling = DetailedGPUProfiling(system_info=self.backend.system_info())
        self.last_profiling = profiling

        self.profiler.start_timer("GPU_Total")
        try:
            with self.backend.device_buffer(signal.memory_size_bytes) as device_buffer:
                upload = self.backend.copy_host_to_device_profiled(device_buffer, signal.data)
                if not self._finish(upload, H2D_EVENT, profiling):
                    return False

                kernel = self.backend.execute_fractional_delay_profiled(
                    device_buffer, delays, signal.num_beams, signal.num_samples
                )
                if not self._finish(kernel, KERNEL_EVENT, profiling):
                    return False

                download = self.backend.copy_device_to_host_profiled(output.data, device_buffer)
                if not self._finish(download, D2H_EVENT, profiling):
                    return False
        finally:
            self.profiler.stop_timer("GPU_Total")

        logger.debug(
            "GPU fractional delay done: %d beams x %d samples, %.3f ms device time",
            signal.num_beams, signal.num_samples, profiling.total_gpu_time_ms,
        )
        return True

    def process_array(self, samples: np.ndarray, delays: Sequence[float]) -> Optional[np.ndarray]:
        """Convenience wrapper for a (num_beams, num_samples) array."""
        buffer = SignalBuffer.from_array(samples)
        if not self.process(buffer, delays):
            return None
        return buffer.beams.copy()

    def _finish(self, operation, event_name: str, profiling: DetailedGPUProfiling) -> bool:
        if operation is None:
            logger.error("%s could not be enqueued", event_name)
            return False
        if not self.backend.complete(operation):
            return False
        metrics = operation.event_metrics(event_name)
        profiling.gpu_events.append(metrics)
        self.profiler.record_event_metrics(metrics)
        return True
