"""
CPU / GPU Result Comparison

Element-wise comparison of two SignalBuffers of identical shape. All
metrics are reported together; a shape mismatch or an invalid buffer is a
failed comparison, never an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Tuple

import numpy as np

from fractional_delay.signal_buffer import SignalBuffer

logger = logging.getLogger(__name__)

# Reference magnitudes at or below this are excluded from the relative error
RELATIVE_EPSILON = 1e-10


@dataclass(frozen=True)
class ComparisonMetrics:
    """Difference statistics between a reference and a test buffer."""

    max_diff_real: float = 0.0
    max_diff_imag: float = 0.0
    max_diff_magnitude: float = 0.0
    avg_diff_magnitude: float = 0.0
    max_relative_error: float = 0.0
    errors_above_tolerance: int = 0
    total_points: int = 0

    @property
    def within_tolerance(self) -> bool:
        return self.errors_above_tolerance == 0

    @property
    def error_rate(self) -> float:
        if self.total_points == 0:
            return 0.0
        return self.errors_above_tolerance / self.total_points

    def to_dict(self) -> dict:
        return asdict(self)

    def summary(self) -> str:
        lines = [
            "=== Comparison Metrics ===",
            f"  Points compared  : {self.total_points}",
            f"  Max |diff| real  : {self.max_diff_real:.3e}",
            f"  Max |diff| imag  : {self.max_diff_imag:.3e}",
            f"  Max |diff|       : {self.max_diff_magnitude:.3e}",
            f"  Mean |diff|      : {self.avg_diff_magnitude:.3e}",
            f"  Max rel. error   : {self.max_relative_error:.3e}",
            f"  Above tolerance  : {self.errors_above_tolerance} ({self.error_rate * 100:.4f} %)",
        ]
        return "\n".join(lines)


def compare_results(
    reference: SignalBuffer,
    test: SignalBuffer,
    tolerance: float,
) -> Tuple[bool, ComparisonMetrics]:
    """Compare a test buffer against a reference buffer.

    Args:
        reference: Trusted result (normally the CPU path).
        test: Result under test (normally the GPU path).
        tolerance: Difference magnitude above which a point counts as an
            error.

    Returns:
        ``(ok, metrics)``. ``ok`` is False with empty metrics when either
        buffer is invalid or the shapes differ; otherwise True, and the
        caller judges ``metrics.within_tolerance``.
    """
    if not reference.is_valid() or not test.is_valid():
        logger.error("Cannot compare invalid buffers: %r vs %r", reference, test)
        return False, ComparisonMetrics()
    if reference.shape != test.shape:
        logger.error(
            "Buffer shape mismatch: reference %s vs test %s", reference.shape, test.shape
        )
        return False, ComparisonMetrics()

    ref = reference.data
    diff = test.data.astype(np.complex128) - ref.astype(np.complex128)
    diff_magnitude = np.abs(diff)
    ref_magnitude = np.abs(ref.astype(np.complex128))

    significant = ref_magnitude > RELATIVE_EPSILON
    if np.any(significant):
        max_relative_error = float(
            np.max(diff_magnitude[significant] / ref_magnitude[significant])
        )
    else:
        max_relative_error = 0.0

    metrics = ComparisonMetrics(
        max_diff_real=float(np.max(np.abs(diff.real))),
        max_diff_imag=float(np.max(np.abs(diff.imag))),
        max_diff_magnitude=float(np.max(diff_magnitude)),
        avg_diff_magnitude=float(np.mean(diff_magnitude)),
        max_relative_error=max_relative_error,
        errors_above_tolerance=int(np.count_nonzero(diff_magnitude > tolerance)),
        total_points=int(diff.size),
    )
    return True, metrics


class Validator:
    """Thin wrapper that compares CPU and GPU results and logs the outcome.

    Args:
        verbose: Log the full metric summary at INFO level.
    """

    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose
        self.last_metrics = ComparisonMetrics()

    def validate(
        self,
        cpu_result: SignalBuffer,
        gpu_result: SignalBuffer,
        tolerance: float,
    ) -> Tuple[bool, ComparisonMetrics]:
        """Return ``(passed, metrics)``; passed requires a valid comparison
        with no point above ``tolerance``."""
        ok, metrics = compare_results(cpu_result, gpu_result, tolerance)
        self.last_metrics = metrics
        passed = ok and metrics.within_tolerance

        if self.verbose:
            logger.info("%s", metrics.summary())
        if ok and not passed:
            logger.warning(
                "%d of %d points exceed tolerance %g (max |diff| %.3e)",
                metrics.errors_above_tolerance, metrics.total_points,
                tolerance, metrics.max_diff_magnitude,
            )
        return passed, metrics
