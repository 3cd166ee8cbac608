"""
Backend selection.

``create_backend("auto")`` tries OpenCL first, then CUDA, and returns the
first variant that initializes; explicit kinds only try that variant.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type

from fractional_delay.gpu_backend.base import BackendError, GPUBackend
from fractional_delay.gpu_backend.cuda_backend import HAS_CUDA, CudaBackend
from fractional_delay.gpu_backend.opencl_backend import HAS_OPENCL, OpenCLBackend
from fractional_delay.gpu_backend.resource_manager import ComputeResourceManager

logger = logging.getLogger(__name__)

BACKENDS: Dict[str, Type[GPUBackend]] = {
    "opencl": OpenCLBackend,
    "cuda": CudaBackend,
}

AUTO_ORDER = ("opencl", "cuda")


def available_backends() -> List[str]:
    """Backend kinds whose Python library is importable."""
    installed = {"opencl": HAS_OPENCL, "cuda": HAS_CUDA}
    return [kind for kind in AUTO_ORDER if installed[kind]]


def create_backend(
    kind: str = "auto",
    manager: Optional[ComputeResourceManager] = None,
    device_preference: str = "gpu",
    work_group_size: int = 256,
) -> GPUBackend:
    """Create and initialize a GPU backend.

    Args:
        kind: "auto", "opencl" or "cuda".
        manager: Resource manager to bind to. Defaults to the process-wide one.
        device_preference: Device class passed to the runtime.
        work_group_size: Upper bound on the work-group size.

    Returns:
        An initialized backend.

    Raises:
        ValueError: If ``kind`` is unknown.
        BackendError: If no requested backend could be initialized.
    """
    kind = kind.lower()
    if kind == "auto":
        candidates = AUTO_ORDER
    elif kind in BACKENDS:
        candidates = (kind,)
    else:
        raise ValueError(f"Unknown backend '{kind}', expected 'auto' or one of {sorted(BACKENDS)}")

    errors = []
    for candidate in candidates:
        backend = BACKENDS[candidate](
            manager=manager,
            device_preference=device_preference,
            work_group_size=work_group_size,
        )
        try:
            backend.initialize()
        except BackendError as exc:
            logger.info("%s backend unavailable: %s", backend.name, exc)
            errors.append(f"{backend.name}: {exc}")
            continue
        return backend

    raise BackendError("No GPU backend could be initialized (" + "; ".join(errors) + ")")
