"""
GPU Backend Interface

GPUBackend is the capability interface every compute variant implements.
The public methods hold the validation, error translation and logging; a
variant only supplies the native hooks (allocate, enqueue a copy, enqueue
the kernel, ...).

Error model:
    - Setup problems (library missing, no device, build failure) raise
      BackendError / KernelCompilationError.
    - Data-path problems (a failed transfer or dispatch) are logged and
      reported as ``False`` or ``None``. Caller-owned buffers are never
      freed on those paths.

All commands go to the manager's single in-order queue, so an
H2D -> kernel -> D2H sequence needs no explicit synchronisation between
its steps. Profiled calls return a DeviceOperation that must be waited on
before its timestamps are read.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from fractional_delay.delay_config import MAX_BEAMS
from fractional_delay.lagrange_matrix import LagrangeMatrix, pack_delay_parameters
from fractional_delay.profiling import GPUEventMetrics, SystemInfo

if TYPE_CHECKING:
    from fractional_delay.gpu_backend.resource_manager import (
        ComputeResourceManager,
        ComputeRuntime,
    )

logger = logging.getLogger(__name__)

COMPLEX_SAMPLE_BYTES = np.dtype(np.complex64).itemsize


class BackendError(RuntimeError):
    """A compute device, context, queue or program could not be set up."""


class KernelCompilationError(BackendError):
    """Kernel source failed to build. ``build_log`` holds the compiler output."""

    def __init__(self, message: str, build_log: str = "") -> None:
        super().__init__(f"{message}\n{build_log}" if build_log else message)
        self.build_log = build_log


class DeviceBuffer:
    """Exclusively owned device allocation.

    Released by ``GPUBackend.free_device_memory``; afterwards ``handle`` is
    None and the buffer can no longer be used.
    """

    def __init__(self, handle: Any, size_bytes: int, backend_name: str) -> None:
        self.handle = handle
        self.size_bytes = size_bytes
        self.backend_name = backend_name

    @property
    def released(self) -> bool:
        return self.handle is None

    def __repr__(self) -> str:
        state = "released" if self.released else f"{self.size_bytes} bytes"
        return f"DeviceBuffer({self.backend_name}, {state})"


class DeviceOperation(ABC):
    """Handle to an enqueued, possibly still running, device command.

    Operations chained with ``then`` are waited on together; the timestamps
    always describe the first one.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._done = False
        self._followers: List[DeviceOperation] = []

    @abstractmethod
    def _wait(self) -> None:
        """Block until the native command completes."""

    @abstractmethod
    def _timestamps(self) -> Tuple[int, int, int, int]:
        """(queued, submit, start, end) in nanoseconds."""

    def then(self, follower: "DeviceOperation") -> "DeviceOperation":
        self._followers.append(follower)
        return self

    @property
    def done(self) -> bool:
        return self._done

    def wait(self) -> None:
        if self._done:
            return
        self._wait()
        for follower in self._followers:
            follower.wait()
        self._done = True

    def timestamps(self) -> Tuple[int, int, int, int]:
        self.wait()
        return self._timestamps()

    def event_metrics(self, event_name: Optional[str] = None) -> GPUEventMetrics:
        """Wait for completion and return the four-phase timing breakdown."""
        return GPUEventMetrics.from_timestamps(event_name or self.name, *self.timestamps())


class GPUBackend(ABC):
    """Base class for the compute variants.

    Args:
        manager: Resource manager owning the device, context, queue and
            program cache. Defaults to the process-wide instance.
        device_preference: Device class to open when the manager is not yet
            initialized ("gpu", "cpu", "all", ...).
        work_group_size: Upper bound on the work-group / block size.
    """

    name = "abstract"
    kernel_source = ""
    # Native exception types translated into False / None returns
    _native_errors: Tuple[type, ...] = ()

    def __init__(
        self,
        manager: Optional["ComputeResourceManager"] = None,
        device_preference: str = "gpu",
        work_group_size: int = 256,
    ) -> None:
        from fractional_delay.gpu_backend.resource_manager import ComputeResourceManager

        self._manager = manager if manager is not None else ComputeResourceManager.instance()
        self._device_preference = device_preference
        self._work_group_size = work_group_size
        self._initialized = False
        self._program: Any = None
        self._lagrange_buffer: Optional[DeviceBuffer] = None
        self._params_buffer: Optional[DeviceBuffer] = None
        self._scratch_buffer: Optional[DeviceBuffer] = None

    # ------------------------------------------------------------------ #
    #  Native hooks
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _create_runtime(self) -> "ComputeRuntime":
        """Return the runtime strategy; raise BackendError if unavailable."""

    @abstractmethod
    def _bind_program(self, program: Any) -> None:
        """Extract kernel objects from a compiled program."""

    @abstractmethod
    def _allocate(self, size_bytes: int) -> Any:
        ...

    @abstractmethod
    def _release(self, handle: Any) -> None:
        ...

    @abstractmethod
    def _enqueue_write(self, handle: Any, host: np.ndarray) -> DeviceOperation:
        ...

    @abstractmethod
    def _enqueue_read(self, host: np.ndarray, handle: Any) -> DeviceOperation:
        ...

    @abstractmethod
    def _enqueue_copy(self, dst: Any, src: Any, size_bytes: int) -> DeviceOperation:
        ...

    @abstractmethod
    def _enqueue_kernel(
        self,
        input_handle: Any,
        output_handle: Any,
        lagrange_handle: Any,
        params_handle: Any,
        num_beams: int,
        num_samples: int,
    ) -> DeviceOperation:
        ...

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #

    def initialize(self) -> None:
        """Open the device through the manager and build the kernel.

        Raises:
            BackendError: If the compute library or a device is missing, or
                the manager is already bound to another runtime.
            KernelCompilationError: If the kernel fails to build.
        """
        if self._initialized:
            return

        runtime = self._create_runtime()
        if not self._manager.is_initialized:
            self._manager.initialize(runtime, self._device_preference)
        elif self._manager.runtime_name != runtime.name:
            raise BackendError(
                f"Resource manager is bound to {self._manager.runtime_name}, "
                f"cannot host the {self.name} backend"
            )

        self._program = self._manager.get_or_compile_program(self.kernel_source)
        self._bind_program(self._program)
        self._initialized = True
        logger.info("%s backend ready on %s", self.name, self.device_name)

    def cleanup(self) -> None:
        """Release backend-owned device memory. The manager keeps the
        context, queue and cached programs."""
        for attr in ("_lagrange_buffer", "_params_buffer", "_scratch_buffer"):
            buffer = getattr(self, attr)
            if buffer is not None:
                self.free_device_memory(buffer)
                setattr(self, attr, None)
        self._program = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def manager(self) -> "ComputeResourceManager":
        return self._manager

    def __enter__(self) -> "GPUBackend":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    # ------------------------------------------------------------------ #
    #  Introspection
    # ------------------------------------------------------------------ #

    @property
    def backend_name(self) -> str:
        return self.name

    @property
    def device_name(self) -> str:
        return self._manager.device_name if self._manager.is_initialized else ""

    @property
    def device_memory_size(self) -> int:
        return self._manager.device_memory_size if self._manager.is_initialized else 0

    def system_info(self) -> SystemInfo:
        if not self._manager.is_initialized:
            return SystemInfo(backend=self.name)
        return self._manager.device_info()

    # ------------------------------------------------------------------ #
    #  Memory
    # ------------------------------------------------------------------ #

    def allocate_device_memory(self, size_bytes: int) -> DeviceBuffer:
        """Allocate ``size_bytes`` of device memory.

        Raises:
            BackendError: If the backend is not initialized, the size is not
                positive, or the device refuses the allocation.
        """
        if not self._initialized:
            raise BackendError(f"{self.name} backend is not initialized")
        if size_bytes <= 0:
            raise BackendError(f"Invalid allocation size: {size_bytes}")
        try:
            handle = self._allocate(size_bytes)
        except self._native_errors as exc:
            raise BackendError(f"Failed to allocate {size_bytes} bytes: {exc}") from exc
        return DeviceBuffer(handle, size_bytes, self.name)

    def free_device_memory(self, buffer: Optional[DeviceBuffer]) -> None:
        """Release a device buffer. Releasing twice is a no-op."""
        if buffer is None or buffer.released:
            return
        try:
            self._release(buffer.handle)
        except self._native_errors as exc:
            logger.error("Failed to release %r: %s", buffer, exc)
        finally:
            buffer.handle = None

    @contextmanager
    def device_buffer(self, size_bytes: int) -> Iterator[DeviceBuffer]:
        """Allocate a buffer that is released on every exit path."""
        buffer = self.allocate_device_memory(size_bytes)
        try:
            yield buffer
        finally:
            self.free_device_memory(buffer)

    # ------------------------------------------------------------------ #
    #  Transfers
    # ------------------------------------------------------------------ #

    def copy_host_to_device(self, dst: DeviceBuffer, src: np.ndarray) -> bool:
        return self.complete(self.copy_host_to_device_profiled(dst, src))

    def copy_host_to_device_profiled(
        self, dst: DeviceBuffer, src: np.ndarray
    ) -> Optional[DeviceOperation]:
        """Enqueue a host-to-device copy of ``src`` into ``dst``."""
        host = np.ascontiguousarray(src)
        if not self._check_transfer(dst, host.nbytes):
            return None
        try:
            return self._enqueue_write(dst.handle, host)
        except self._native_errors as exc:
            logger.error("Host-to-device copy of %d bytes failed: %s", host.nbytes, exc)
            return None

    def copy_device_to_host(self, dst: np.ndarray, src: DeviceBuffer) -> bool:
        return self.complete(self.copy_device_to_host_profiled(dst, src))

    def copy_device_to_host_profiled(
        self, dst: np.ndarray, src: DeviceBuffer
    ) -> Optional[DeviceOperation]:
        """Enqueue a device-to-host copy filling all of ``dst``."""
        if not (dst.flags.c_contiguous and dst.flags.writeable):
            logger.error("Device-to-host destination must be a writable C-contiguous array")
            return None
        if not self._check_transfer(src, dst.nbytes):
            return None
        try:
            return self._enqueue_read(dst, src.handle)
        except self._native_errors as exc:
            logger.error("Device-to-host copy of %d bytes failed: %s", dst.nbytes, exc)
            return None

    # ------------------------------------------------------------------ #
    #  Fractional delay
    # ------------------------------------------------------------------ #

    def upload_lagrange_matrix(self, matrix: LagrangeMatrix) -> bool:
        """Copy the coefficient table to the device. Must precede execution."""
        if not self._initialized:
            logger.error("%s backend is not initialized", self.name)
            return False
        table = np.array(matrix.data, dtype=np.float32, order="C")
        try:
            if self._lagrange_buffer is None:
                self._lagrange_buffer = self.allocate_device_memory(table.nbytes)
            if self._params_buffer is None:
                self._params_buffer = self.allocate_device_memory(
                    MAX_BEAMS * 2 * np.dtype(np.int32).itemsize
                )
            self._enqueue_write(self._lagrange_buffer.handle, table).wait()
        except (BackendError, *self._native_errors) as exc:
            logger.error("Lagrange matrix upload failed: %s", exc)
            return False
        return True

    def execute_fractional_delay(
        self,
        buffer: DeviceBuffer,
        delays: Sequence[float],
        num_beams: int,
        num_samples: int,
    ) -> bool:
        return self.complete(
            self.execute_fractional_delay_profiled(buffer, delays, num_beams, num_samples)
        )

    def execute_fractional_delay_profiled(
        self,
        buffer: DeviceBuffer,
        delays: Sequence[float],
        num_beams: int,
        num_samples: int,
    ) -> Optional[DeviceOperation]:
        """Delay every beam held in ``buffer`` in place.

        The kernel writes a scratch buffer which is then copied back over
        ``buffer`` on the same queue. The returned operation times the
        kernel; waiting on it also waits for the copy back.

        Returns:
            The kernel operation, or None if the table was never uploaded,
            the arguments do not match the buffer, or dispatch failed.
        """
        if not self._initialized:
            logger.error("%s backend is not initialized", self.name)
            return None
        if self._lagrange_buffer is None or self._params_buffer is None:
            logger.error("Lagrange matrix has not been uploaded")
            return None
        if len(delays) != num_beams:
            logger.error("Got %d delays for %d beams", len(delays), num_beams)
            return None
        if not 0 < num_beams <= MAX_BEAMS or num_samples <= 0:
            logger.error("Invalid dimensions: %d beams x %d samples", num_beams, num_samples)
            return None
        size_bytes = num_beams * num_samples * COMPLEX_SAMPLE_BYTES
        if not self._check_transfer(buffer, size_bytes):
            return None

        try:
            params = pack_delay_parameters(delays, num_samples)
        except (OverflowError, ValueError) as exc:
            logger.error("Cannot convert delays to kernel parameters: %s", exc)
            return None

        try:
            scratch = self._ensure_scratch(size_bytes)
            self._enqueue_write(self._params_buffer.handle, params).wait()
            kernel_op = self._enqueue_kernel(
                buffer.handle,
                scratch.handle,
                self._lagrange_buffer.handle,
                self._params_buffer.handle,
                num_beams,
                num_samples,
            )
            kernel_op.then(self._enqueue_copy(buffer.handle, scratch.handle, size_bytes))
        except (BackendError, *self._native_errors) as exc:
            logger.error("Fractional delay dispatch failed: %s", exc)
            return None
        return kernel_op

    # ------------------------------------------------------------------ #
    #  Internals
    # ------------------------------------------------------------------ #

    def _ensure_scratch(self, size_bytes: int) -> DeviceBuffer:
        scratch = self._scratch_buffer
        if scratch is None or scratch.size_bytes < size_bytes:
            self.free_device_memory(scratch)
            self._scratch_buffer = None
            self._scratch_buffer = self.allocate_device_memory(size_bytes)
        return self._scratch_buffer

    def _check_transfer(self, buffer: DeviceBuffer, size_bytes: int) -> bool:
        if not self._initialized:
            logger.error("%s backend is not initialized", self.name)
            return False
        if buffer.released:
            logger.error("Device buffer has already been released")
            return False
        if size_bytes <= 0 or size_bytes > buffer.size_bytes:
            logger.error(
                "Transfer of %d bytes does not fit %d-byte device buffer",
                size_bytes, buffer.size_bytes,
            )
            return False
        return True

    def complete(self, operation: Optional[DeviceOperation]) -> bool:
        if operation is None:
            return False
        try:
            operation.wait()
        except self._native_errors as exc:
            logger.error("%s operation failed: %s", operation.name, exc)
            return False
        return True

    def __repr__(self) -> str:
        state = self.device_name if self._initialized else "uninitialized"
        return f"{type(self).__name__}({state})"
