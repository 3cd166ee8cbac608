"""
OpenCL Backend

PyOpenCL implementation of the GPU backend. Works with any OpenCL 1.2
platform (AMD, NVIDIA, Intel, or PoCL on the CPU). The command queue is
created with profiling enabled, so every enqueue returns an event carrying
the four native timestamps (queued, submit, start, end).

Install with:
    pip install pyopencl
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

try:
    import pyopencl as cl

    HAS_OPENCL = True
except ImportError:
    HAS_OPENCL = False

from fractional_delay.gpu_backend.base import (
    BackendError,
    DeviceOperation,
    GPUBackend,
    KernelCompilationError,
)
from fractional_delay.gpu_backend.kernels import KERNEL_NAME, OPENCL_KERNEL_SOURCE
from fractional_delay.gpu_backend.resource_manager import ComputeRuntime, DeviceHandles
from fractional_delay.profiling import SystemInfo

logger = logging.getLogger(__name__)

# Device preference -> cl.device_type attribute
_DEVICE_TYPES = {
    "gpu": "GPU",
    "cpu": "CPU",
    "accelerator": "ACCELERATOR",
    "default": "DEFAULT",
    "all": "ALL",
}


class OpenCLRuntime(ComputeRuntime):
    """Platform/device discovery and program builds through PyOpenCL."""

    name = "OpenCL"

    def open(self, device_preference: str = "gpu") -> DeviceHandles:
        if not HAS_OPENCL:
            raise BackendError("pyopencl is not installed. Install with: pip install pyopencl")

        type_name = _DEVICE_TYPES.get(str(device_preference).lower())
        if type_name is None:
            raise BackendError(
                f"Unknown OpenCL device preference '{device_preference}', "
                f"expected one of {sorted(_DEVICE_TYPES)}"
            )
        device_type = getattr(cl.device_type, type_name)

        try:
            platforms = cl.get_platforms()
        except cl.Error as exc:
            raise BackendError(f"No OpenCL platform available: {exc}") from exc

        device = None
        for platform in platforms:
            try:
                devices = platform.get_devices(device_type=device_type)
            except cl.Error:
                continue
            if devices:
                device = devices[0]
                break
        if device is None:
            raise BackendError(
                f"No OpenCL {type_name} device found on {len(platforms)} platform(s)"
            )

        try:
            context = cl.Context(devices=[device])
            queue = cl.CommandQueue(
                context,
                device,
                properties=cl.command_queue_properties.PROFILING_ENABLE,
            )
        except cl.Error as exc:
            raise BackendError(f"Failed to create OpenCL context on {device.name}: {exc}") from exc

        return DeviceHandles(
            device=device,
            context=context,
            queue=queue,
            device_name=device.name.strip(),
            memory_size=int(device.global_mem_size),
        )

    def compile(self, handles: DeviceHandles, source: str) -> Any:
        program = cl.Program(handles.context, source)
        try:
            return program.build(devices=[handles.device])
        except cl.Error as exc:
            try:
                build_log = program.get_build_info(handles.device, cl.program_build_info.LOG)
            except cl.Error:
                build_log = str(exc)
            raise KernelCompilationError("OpenCL program build failed", build_log) from exc

    def close(self, handles: DeviceHandles) -> None:
        handles.queue.finish()

    def describe(self, handles: DeviceHandles) -> SystemInfo:
        device = handles.device
        return SystemInfo(
            backend=self.name,
            platform_name=device.platform.name.strip(),
            platform_version=device.platform.version,
            device_name=device.name.strip(),
            device_vendor=device.vendor.strip(),
            device_version=device.version,
            driver_version=device.driver_version,
            compute_units=int(device.max_compute_units),
            global_memory_bytes=int(device.global_mem_size),
            max_work_group_size=int(device.max_work_group_size),
        )


class OpenCLOperation(DeviceOperation):
    """Wraps a ``cl.Event`` from a profiling-enabled queue.

    ``keep_alive`` pins the host array of a non-blocking copy until the
    event completes.
    """

    def __init__(self, name: str, event: Any, keep_alive: Any = None) -> None:
        super().__init__(name)
        self._event = event
        self._keep_alive = keep_alive

    def _wait(self) -> None:
        self._event.wait()
        self._keep_alive = None

    def _timestamps(self):
        profile = self._event.profile
        return (profile.queued, profile.submit, profile.start, profile.end)


class OpenCLBackend(GPUBackend):
    """GPU backend on PyOpenCL."""

    name = "OpenCL"
    kernel_source = OPENCL_KERNEL_SOURCE
    _native_errors = (cl.Error,) if HAS_OPENCL else ()

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._kernel = None
        self._local_size = 1

    def _create_runtime(self) -> OpenCLRuntime:
        if not HAS_OPENCL:
            raise BackendError("pyopencl is not installed. Install with: pip install pyopencl")
        return OpenCLRuntime()

    def _bind_program(self, program: Any) -> None:
        self._kernel = cl.Kernel(program, KERNEL_NAME)
        max_size = self._kernel.get_work_group_info(
            cl.kernel_work_group_info.WORK_GROUP_SIZE, self._manager.device
        )
        self._local_size = max(1, min(self._work_group_size, int(max_size)))

    def cleanup(self) -> None:
        super().cleanup()
        self._kernel = None

    def _allocate(self, size_bytes: int) -> Any:
        return cl.Buffer(self._manager.context, cl.mem_flags.READ_WRITE, size=size_bytes)

    def _release(self, handle: Any) -> None:
        handle.release()

    def _enqueue_write(self, handle: Any, host: np.ndarray) -> OpenCLOperation:
        event = cl.enqueue_copy(self._manager.queue, handle, host, is_blocking=False)
        return OpenCLOperation("H2D_Transfer", event, keep_alive=host)

    def _enqueue_read(self, host: np.ndarray, handle: Any) -> OpenCLOperation:
        event = cl.enqueue_copy(self._manager.queue, host, handle, is_blocking=False)
        return OpenCLOperation("D2H_Transfer", event, keep_alive=host)

    def _enqueue_copy(self, dst: Any, src: Any, size_bytes: int) -> OpenCLOperation:
        event = cl.enqueue_copy(self._manager.queue, dst, src, byte_count=size_bytes)
        return OpenCLOperation("D2D_Copy", event)

    def _enqueue_kernel(
        self,
        input_handle: Any,
        output_handle: Any,
        lagrange_handle: Any,
        params_handle: Any,
        num_beams: int,
        num_samples: int,
    ) -> OpenCLOperation:
        total = num_beams * num_samples
        local_size = self._local_size
        global_size = ((total + local_size - 1) // local_size) * local_size

        self._kernel.set_args(
            input_handle,
            output_handle,
            lagrange_handle,
            params_handle,
            np.uint32(num_beams),
            np.uint32(num_samples),
        )
        event = cl.enqueue_nd_range_kernel(
            self._manager.queue, self._kernel, (global_size,), (local_size,)
        )
        return OpenCLOperation("FractionalDelay_Kernel", event)
