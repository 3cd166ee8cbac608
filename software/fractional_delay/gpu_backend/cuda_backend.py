"""
CUDA Backend

CuPy implementation of the GPU backend. The kernel is built with NVRTC
through ``cupy.RawModule``; the queue is a non-blocking ``cupy.cuda.Stream``
and device buffers are raw byte arrays from the CuPy memory pool.

CUDA events only measure device execution, so the four timestamps are
assembled as follows:

    queued  = host clock before the enqueue call
    submit  = host clock after the enqueue call returned
    start   = submit
    end     = start + elapsed time between CUDA events around the command

The wait phase is therefore always reported as zero on this backend.

Install with:
    pip install cupy-cuda12x
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import numpy as np

try:
    import cupy as cp

    HAS_CUDA = True
except ImportError:
    HAS_CUDA = False

from fractional_delay.gpu_backend.base import (
    BackendError,
    DeviceOperation,
    GPUBackend,
    KernelCompilationError,
)
from fractional_delay.gpu_backend.kernels import CUDA_KERNEL_SOURCE, KERNEL_NAME
from fractional_delay.gpu_backend.resource_manager import ComputeRuntime, DeviceHandles
from fractional_delay.profiling import SystemInfo

logger = logging.getLogger(__name__)


class CudaRuntime(ComputeRuntime):
    """Device selection and NVRTC builds through CuPy."""

    name = "CUDA"

    def open(self, device_preference: str = "gpu") -> DeviceHandles:
        if not HAS_CUDA:
            raise BackendError("CuPy is not installed. Install with: pip install cupy-cuda12x")

        preference = str(device_preference).lower()
        if preference.isdigit():
            index = int(preference)
        elif preference in ("gpu", "default", "all"):
            index = 0
        else:
            raise BackendError(f"CUDA backend cannot open a '{device_preference}' device")

        try:
            count = cp.cuda.runtime.getDeviceCount()
        except cp.cuda.runtime.CUDARuntimeError as exc:
            raise BackendError(f"CUDA runtime unavailable: {exc}") from exc
        if index >= count:
            raise BackendError(f"CUDA device {index} requested, {count} available")

        try:
            device = cp.cuda.Device(index)
            with device:
                stream = cp.cuda.Stream(non_blocking=True)
            props = cp.cuda.runtime.getDeviceProperties(index)
        except cp.cuda.runtime.CUDARuntimeError as exc:
            raise BackendError(f"Failed to open CUDA device {index}: {exc}") from exc

        return DeviceHandles(
            device=device,
            context=device,
            queue=stream,
            device_name=props["name"].decode(),
            memory_size=int(props["totalGlobalMem"]),
        )

    def compile(self, handles: DeviceHandles, source: str) -> Any:
        with handles.device:
            module = cp.RawModule(code=source)
            try:
                module.compile()
            except cp.cuda.compiler.CompileException as exc:
                raise KernelCompilationError("CUDA program build failed", str(exc)) from exc
        return module

    def close(self, handles: DeviceHandles) -> None:
        handles.queue.synchronize()

    def describe(self, handles: DeviceHandles) -> SystemInfo:
        device = handles.device
        props = cp.cuda.runtime.getDeviceProperties(device.id)
        return SystemInfo(
            backend=self.name,
            platform_name="NVIDIA CUDA",
            platform_version=str(cp.cuda.runtime.runtimeGetVersion()),
            device_name=handles.device_name,
            device_vendor="NVIDIA",
            device_version=f"sm_{device.compute_capability}",
            driver_version=str(cp.cuda.runtime.driverGetVersion()),
            compute_units=int(props["multiProcessorCount"]),
            global_memory_bytes=int(props["totalGlobalMem"]),
            max_work_group_size=int(props["maxThreadsPerBlock"]),
        )


class CudaOperation(DeviceOperation):
    """A command bracketed by two CUDA events on the backend stream."""

    def __init__(
        self,
        name: str,
        queued_ns: int,
        submit_ns: int,
        start_event: Any,
        end_event: Any,
        keep_alive: Any = None,
    ) -> None:
        super().__init__(name)
        self._queued_ns = queued_ns
        self._submit_ns = submit_ns
        self._start_event = start_event
        self._end_event = end_event
        self._keep_alive = keep_alive

    def _wait(self) -> None:
        self._end_event.synchronize()
        self._keep_alive = None

    def _timestamps(self):
        elapsed_ms = cp.cuda.get_elapsed_time(self._start_event, self._end_event)
        start = self._submit_ns
        return (self._queued_ns, self._submit_ns, start, start + int(elapsed_ms * 1e6))


class CudaBackend(GPUBackend):
    """GPU backend on CuPy."""

    name = "CUDA"
    kernel_source = CUDA_KERNEL_SOURCE
    _native_errors = (
        (
            cp.cuda.runtime.CUDARuntimeError,
            cp.cuda.driver.CUDADriverError,
            cp.cuda.memory.OutOfMemoryError,
        )
        if HAS_CUDA
        else ()
    )

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._kernel = None
        self._block_size = 1

    def _create_runtime(self) -> CudaRuntime:
        if not HAS_CUDA:
            raise BackendError("CuPy is not installed. Install with: pip install cupy-cuda12x")
        return CudaRuntime()

    def _bind_program(self, program: Any) -> None:
        self._kernel = program.get_function(KERNEL_NAME)
        self._block_size = max(1, min(self._work_group_size, self._kernel.max_threads_per_block))

    def cleanup(self) -> None:
        super().cleanup()
        self._kernel = None
        if self._manager.is_initialized:
            with self._manager.device:
                cp.get_default_memory_pool().free_all_blocks()

    def _timed(
        self,
        name: str,
        enqueue: Callable[[Any], None],
        keep_alive: Any = None,
    ) -> CudaOperation:
        stream = self._manager.queue
        start_event = cp.cuda.Event()
        end_event = cp.cuda.Event()

        queued_ns = time.perf_counter_ns()
        with self._manager.device, stream:
            start_event.record(stream)
            enqueue(stream)
            end_event.record(stream)
        submit_ns = time.perf_counter_ns()

        return CudaOperation(name, queued_ns, submit_ns, start_event, end_event, keep_alive)

    def _allocate(self, size_bytes: int) -> Any:
        with self._manager.device:
            return cp.empty(size_bytes, dtype=cp.uint8)

    def _release(self, handle: Any) -> None:
        # Commands still queued on the stream may read the allocation
        self._manager.queue.synchronize()
        memory = handle.data.mem
        if isinstance(memory, cp.cuda.memory.PooledMemory):
            memory.free()

    def _enqueue_write(self, handle: Any, host: np.ndarray) -> CudaOperation:
        raw = host.view(np.uint8).reshape(-1)
        return self._timed(
            "H2D_Transfer",
            lambda stream: handle[:raw.size].set(raw, stream=stream),
            keep_alive=host,
        )

    def _enqueue_read(self, host: np.ndarray, handle: Any) -> CudaOperation:
        raw = host.view(np.uint8).reshape(-1)
        return self._timed(
            "D2H_Transfer",
            lambda stream: handle[:raw.size].get(stream=stream, out=raw),
            keep_alive=host,
        )

    def _enqueue_copy(self, dst: Any, src: Any, size_bytes: int) -> CudaOperation:
        return self._timed(
            "D2D_Copy",
            lambda stream: cp.copyto(dst[:size_bytes], src[:size_bytes]),
        )

    def _enqueue_kernel(
        self,
        input_handle: Any,
        output_handle: Any,
        lagrange_handle: Any,
        params_handle: Any,
        num_beams: int,
        num_samples: int,
    ) -> CudaOperation:
        total = num_beams * num_samples
        block_size = self._block_size
        grid_size = (total + block_size - 1) // block_size

        def launch(stream: Any) -> None:
            self._kernel(
                (grid_size,),
                (block_size,),
                (
                    input_handle,
                    output_handle,
                    lagrange_handle,
                    params_handle,
                    np.uint32(num_beams),
                    np.uint32(num_samples),
                ),
            )

        return self._timed("FractionalDelay_Kernel", launch)
