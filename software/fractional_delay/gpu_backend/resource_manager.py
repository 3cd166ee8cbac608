"""
Compute Resource Manager

Owns the process-wide compute objects: one device, one context, one
in-order command queue, and a cache of compiled programs keyed by the
SHA-256 of their source text.

The manager is an ordinary object; ``ComputeResourceManager.instance()``
returns the lazily created process-wide one, and backends accept any
instance through their constructor. The native calls go through a
ComputeRuntime strategy (OpenCL or CUDA), which is also the seam tests use
to substitute a fake runtime.

Thread safety:
    - instance creation is double-checked under a class lock,
    - cache lookup and insertion happen under the cache lock while
      compilation runs outside it; if two threads compile the same source
      concurrently the second result is released and the first kept.
"""

from __future__ import annotations

import atexit
import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from fractional_delay.gpu_backend.base import BackendError
from fractional_delay.profiling import SystemInfo

logger = logging.getLogger(__name__)


@dataclass
class DeviceHandles:
    """Native objects opened by a ComputeRuntime."""

    device: Any
    context: Any
    queue: Any
    device_name: str = ""
    memory_size: int = 0


class ComputeRuntime(ABC):
    """Strategy wrapping one compute API."""

    name = "abstract"

    @abstractmethod
    def open(self, device_preference: str) -> DeviceHandles:
        """Select a device and create its context and queue.

        Raises:
            BackendError: If no matching device exists.
        """

    @abstractmethod
    def compile(self, handles: DeviceHandles, source: str) -> Any:
        """Build a program from source.

        Raises:
            KernelCompilationError: With the build log on failure.
        """

    @abstractmethod
    def describe(self, handles: DeviceHandles) -> SystemInfo:
        ...

    def release_program(self, program: Any) -> None:
        pass

    def close(self, handles: DeviceHandles) -> None:
        pass


class ComputeResourceManager:
    """Process-wide device, context, queue and program cache."""

    _instance: Optional["ComputeResourceManager"] = None
    _instance_lock = threading.Lock()

    def __init__(self) -> None:
        self._state_lock = threading.Lock()
        self._cache_lock = threading.Lock()
        self._runtime: Optional[ComputeRuntime] = None
        self._handles: Optional[DeviceHandles] = None
        self._device_preference = ""
        self._programs: Dict[str, Any] = {}
        self._compile_count = 0
        self._cache_hits = 0

    @classmethod
    def instance(cls) -> "ComputeResourceManager":
        """Return the process-wide manager, creating it on first use."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    manager = cls()
                    atexit.register(manager.shutdown)
                    cls._instance = manager
        return cls._instance

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #

    def initialize(self, runtime: ComputeRuntime, device_preference: str = "gpu") -> None:
        """Open the device, context and queue once.

        Later calls log a warning and leave the existing objects in place.

        Raises:
            BackendError: If the runtime cannot open a device.
        """
        with self._state_lock:
            if self._handles is not None:
                logger.warning(
                    "Compute resources already initialized on %s (%s); ignoring",
                    self._handles.device_name, self._runtime.name,
                )
                return
            handles = runtime.open(device_preference)
            self._runtime = runtime
            self._handles = handles
            self._device_preference = device_preference
        logger.info("Opened %s device: %s", runtime.name, handles.device_name)

    def shutdown(self) -> None:
        """Release cached programs, then the queue and context. Idempotent."""
        with self._state_lock:
            if self._handles is None:
                return
            runtime, handles = self._runtime, self._handles
            try:
                self.clear_program_cache()
                runtime.close(handles)
            finally:
                self._handles = None
                self._runtime = None
        logger.info("Released %s compute resources", runtime.name)

    cleanup = shutdown

    # ------------------------------------------------------------------ #
    #  Accessors
    # ------------------------------------------------------------------ #

    @property
    def is_initialized(self) -> bool:
        return self._handles is not None

    @property
    def runtime_name(self) -> str:
        return self._runtime.name if self._runtime is not None else ""

    @property
    def device(self) -> Any:
        return self._require()[0].device

    @property
    def context(self) -> Any:
        return self._require()[0].context

    @property
    def queue(self) -> Any:
        return self._require()[0].queue

    @property
    def device_name(self) -> str:
        return self._handles.device_name if self._handles is not None else ""

    @property
    def device_memory_size(self) -> int:
        return self._handles.memory_size if self._handles is not None else 0

    def device_info(self) -> SystemInfo:
        handles, runtime = self._require()
        return runtime.describe(handles)

    # ------------------------------------------------------------------ #
    #  Program cache
    # ------------------------------------------------------------------ #

    @staticmethod
    def source_key(source: str) -> str:
        return hashlib.sha256(source.encode("utf-8")).hexdigest()

    def get_or_compile_program(self, source: str) -> Any:
        """Return the cached program for ``source``, building it on a miss.

        Raises:
            BackendError: If the manager is not initialized.
            KernelCompilationError: If the build fails.
        """
        handles, runtime = self._require()
        key = self.source_key(source)

        with self._cache_lock:
            program = self._programs.get(key)
            if program is not None:
                self._cache_hits += 1
                logger.debug("Program cache hit for %s", key[:12])
                return program

        logger.debug("Compiling program %s", key[:12])
        program = runtime.compile(handles, source)

        with self._cache_lock:
            self._compile_count += 1
            existing = self._programs.get(key)
            if existing is None:
                self._programs[key] = program
                return program
            self._cache_hits += 1

        runtime.release_program(program)
        return existing

    def clear_program_cache(self) -> None:
        with self._cache_lock:
            programs = list(self._programs.values())
            self._programs.clear()
        if self._runtime is not None:
            for program in programs:
                self._runtime.release_program(program)

    @property
    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._programs)

    @property
    def compile_count(self) -> int:
        return self._compile_count

    def cache_statistics(self) -> dict:
        with self._cache_lock:
            return {
                "cached_programs": len(self._programs),
                "compile_count": self._compile_count,
                "cache_hits": self._cache_hits,
            }

    def _require(self) -> Tuple[DeviceHandles, ComputeRuntime]:
        handles, runtime = self._handles, self._runtime
        if handles is None or runtime is None:
            raise BackendError("Compute resources are not initialized")
        return handles, runtime

    def __repr__(self) -> str:
        if self._handles is None:
            return "ComputeResourceManager(uninitialized)"
        return (
            f"ComputeResourceManager({self._runtime.name}: {self._handles.device_name}, "
            f"programs={len(self._programs)})"
        )
