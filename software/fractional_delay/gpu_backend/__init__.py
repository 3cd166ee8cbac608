"""
GPU Backends for Fractional Delay

Compute variants behind one GPUBackend interface, with the shared device,
context, queue and program cache held by ComputeResourceManager.

    - OpenCLBackend: PyOpenCL, native four-timestamp event profiling
    - CudaBackend: CuPy RawModule kernels on a CUDA stream
"""

from fractional_delay.gpu_backend.base import (
    BackendError,
    DeviceBuffer,
    DeviceOperation,
    GPUBackend,
    KernelCompilationError,
)
from fractional_delay.gpu_backend.resource_manager import (
    ComputeResourceManager,
    ComputeRuntime,
    DeviceHandles,
)
from fractional_delay.gpu_backend.opencl_backend import OpenCLBackend, OpenCLRuntime
from fractional_delay.gpu_backend.cuda_backend import CudaBackend, CudaRuntime
from fractional_delay.gpu_backend.factory import available_backends, create_backend

__all__ = [
    "BackendError",
    "KernelCompilationError",
    "DeviceBuffer",
    "DeviceOperation",
    "GPUBackend",
    "ComputeResourceManager",
    "ComputeRuntime",
    "DeviceHandles",
    "OpenCLBackend",
    "OpenCLRuntime",
    "CudaBackend",
    "CudaRuntime",
    "available_backends",
    "create_backend",
]
