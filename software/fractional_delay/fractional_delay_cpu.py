"""
CPU Reference Fractional Delay

NumPy implementation of the 5-tap Lagrange fractional delay. It is the
golden reference the GPU kernels are validated against, so it follows the
kernel arithmetic exactly: float32 weights, complex64 accumulation, taps
summed in order 0..4.

For output sample ``n`` of a beam with decomposed delay (D, row):

    idx_i = reflect(n - D - 2 + i),  i = 0..4
    out[n] = sum_i w[row][i] * in[idx_i]    (taps with idx_i outside [0, N) skipped)

where ``reflect`` mirrors a negative index about 0 and then an index past
the end about N - 1. The two steps are applied once each, in that order;
an index that is still out of range after both contributes nothing.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from fractional_delay.lagrange_matrix import NUM_TAPS, LagrangeMatrix, decompose_delay
from fractional_delay.signal_buffer import SignalBuffer

logger = logging.getLogger(__name__)


def reflect_index(idx: int, num_samples: int) -> int:
    """Apply the boundary reflection to a single tap index.

    The result may still lie outside [0, num_samples); callers must check.

    >>> reflect_index(-3, 100), reflect_index(100, 100)
    (3, 98)
    """
    if idx < 0:
        idx = -idx
    if idx >= num_samples:
        idx = 2 * num_samples - idx - 2
    return idx


def _reflect_indices(idx: np.ndarray, num_samples: int) -> np.ndarray:
    idx = np.where(idx < 0, -idx, idx)
    return np.where(idx >= num_samples, 2 * num_samples - idx - 2, idx)


def apply_fractional_delay(
    samples: np.ndarray,
    delay: float,
    matrix: LagrangeMatrix,
) -> np.ndarray:
    """Delay one beam by a real number of samples.

    Args:
        samples: 1-D complex beam samples.
        delay: Delay in samples. Positive values move the signal later.
        matrix: Lagrange coefficient table.

    Returns:
        New complex64 array of the same length.

    Raises:
        ValueError: If ``samples`` is not one-dimensional.
    """
    samples = np.asarray(samples, dtype=np.complex64)
    if samples.ndim != 1:
        raise ValueError(f"Expected a 1-D beam, got shape {samples.shape}")

    num_samples = samples.size
    param = decompose_delay(delay)
    weights = matrix.row(param.lagrange_row)

    base = np.arange(num_samples, dtype=np.int64) - param.delay_integer - 2
    output = np.zeros(num_samples, dtype=np.complex64)
    zero = np.complex64(0)

    for i in range(NUM_TAPS):
        idx = _reflect_indices(base + i, num_samples)
        valid = (idx >= 0) & (idx < num_samples)
        taps = np.where(valid, samples[np.clip(idx, 0, num_samples - 1)], zero)
        output += weights[i] * taps

    return output


def fractional_delay_cpu(
    buffer: SignalBuffer,
    delays: Sequence[float],
    matrix: LagrangeMatrix,
) -> None:
    """Apply per-beam fractional delays to a SignalBuffer in place.

    Each beam is computed into a temporary and then copied back, so no
    output sample ever reads an already-updated input.

    Args:
        buffer: Signal to delay. Modified in place.
        delays: One delay in samples per beam.
        matrix: Lagrange coefficient table.

    Raises:
        ValueError: If the buffer is empty or the delay count does not
            match the beam count.
    """
    if not buffer.is_allocated():
        raise ValueError("Cannot delay an empty SignalBuffer")
    if len(delays) != buffer.num_beams:
        raise ValueError(
            f"Got {len(delays)} delays for {buffer.num_beams} beams"
        )

    logger.debug(
        "CPU fractional delay: %d beams x %d samples",
        buffer.num_beams, buffer.num_samples,
    )
    for beam_index, delay in enumerate(delays):
        beam = buffer.beam(beam_index)
        beam[:] = apply_fractional_delay(beam, delay, matrix)
