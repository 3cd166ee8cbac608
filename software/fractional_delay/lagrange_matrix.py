"""
Lagrange Interpolation Coefficient Table

The fractional part of every delay is quantised to one of 48 sub-sample
positions. Each position owns a row of five Lagrange weights applied to the
taps at offsets -2, -1, 0, +1, +2 around the integer-delayed sample.

## Delay decomposition

A delay ``d`` (in samples, any sign) is split on the host into

    delay_integer = floor(d)
    delay_fraction = d - delay_integer          in [0, 1)
    lagrange_row = min(int(delay_fraction * 48), 47)

The arithmetic runs in float32 so the CPU reference and both GPU kernels
consume identical (delay_integer, lagrange_row) pairs.

## Default table

Row ``r`` interpolates at ``t = -r / 48`` relative to the centre tap:

    L_i(t) = prod_{j != i} (t - m_j) / (m_i - m_j),   m = [-2, -1, 0, 1, 2]

so row 0 is the identity [0, 0, 1, 0, 0].
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np


NUM_ROWS = 48
NUM_TAPS = 5

# Tap offsets relative to the integer-delayed sample
_TAP_OFFSETS = np.arange(NUM_TAPS) - NUM_TAPS // 2


@dataclass(frozen=True)
class DelayParameter:
    """Host-side decomposition of one beam delay.

    Attributes:
        delay_integer: floor of the delay in samples (may be negative).
        delay_fraction: Remaining fraction in [0, 1).
        lagrange_row: Coefficient table row in [0, 47].
    """

    delay_integer: int
    delay_fraction: float
    lagrange_row: int


def get_row_index(fraction: float) -> int:
    """Map a fractional delay to its coefficient row.

    The fraction is wrapped into [0, 1) first, so negative inputs select the
    row of their positive complement.

    Args:
        fraction: Fractional delay in samples.

    Returns:
        Row index in [0, 47].
    """
    fraction = math.fmod(float(fraction), 1.0)
    if fraction < 0.0:
        fraction += 1.0
    row = int(fraction * NUM_ROWS)
    return min(max(row, 0), NUM_ROWS - 1)


def decompose_delay(delay: float) -> DelayParameter:
    """Split a delay into integer part, fraction and coefficient row.

    >>> decompose_delay(-0.3).delay_integer
    -1
    """
    delay = np.float32(delay)
    delay_integer = int(np.floor(delay))
    fraction = np.float32(delay - np.float32(delay_integer))
    if fraction < 0:
        fraction = np.float32(fraction + np.float32(1.0))
        delay_integer -= 1
    return DelayParameter(
        delay_integer=delay_integer,
        delay_fraction=float(fraction),
        lagrange_row=get_row_index(fraction),
    )


def pack_delay_parameters(
    delays: Sequence[float],
    num_samples: Optional[int] = None,
) -> np.ndarray:
    """Decompose per-beam delays into an int32 (num_beams, 2) array.

    Column 0 holds delay_integer and column 1 lagrange_row, matching the
    ``int2`` layout read by the GPU kernels.

    With ``num_samples`` given, delay_integer is clamped to
    ``±(3 * num_samples + NUM_TAPS)``. Past that bound every tap lands
    outside the beam even after reflection, so the output (all zeros) is
    the same as for the unclamped delay.

    Raises:
        ValueError: If a delay is NaN.
        OverflowError: If a delay is infinite, or does not fit int32 and
            ``num_samples`` is not given.
    """
    limit = None if num_samples is None else 3 * num_samples + NUM_TAPS
    params = np.empty((len(delays), 2), dtype=np.int32)
    for beam, delay in enumerate(delays):
        decomposed = decompose_delay(delay)
        delay_integer = decomposed.delay_integer
        if limit is not None:
            delay_integer = min(max(delay_integer, -limit), limit)
        params[beam, 0] = delay_integer
        params[beam, 1] = decomposed.lagrange_row
    return params


def lagrange_weights(t: float) -> np.ndarray:
    """Five-point Lagrange basis evaluated at offset ``t`` from the centre tap."""
    weights = np.ones(NUM_TAPS, dtype=np.float64)
    for i, m_i in enumerate(_TAP_OFFSETS):
        for m_j in _TAP_OFFSETS:
            if m_j != m_i:
                weights[i] *= (t - m_j) / (m_i - m_j)
    return weights


class LagrangeMatrix:
    """Immutable 48 x 5 table of float32 interpolation weights.

    Args:
        data: Array-like of shape (48, 5).

    Raises:
        ValueError: If the shape is not (48, 5) or values are not numeric.
    """

    def __init__(self, data: Sequence[Sequence[float]] | np.ndarray) -> None:
        try:
            table = np.array(data, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Lagrange table must be numeric: {exc}") from exc
        if table.shape != (NUM_ROWS, NUM_TAPS):
            raise ValueError(
                f"Lagrange table must have shape ({NUM_ROWS}, {NUM_TAPS}), got {table.shape}"
            )
        table.setflags(write=False)
        self._data = table

    @classmethod
    def default(cls) -> "LagrangeMatrix":
        """Build the table analytically from the Lagrange basis polynomials."""
        rows = [lagrange_weights(-row / NUM_ROWS) for row in range(NUM_ROWS)]
        return cls(np.vstack(rows))

    @classmethod
    def from_json(cls, filepath: str | Path) -> "LagrangeMatrix":
        """Load a table stored as a JSON array of 48 arrays of 5 numbers.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the JSON is malformed or has the wrong row or
                column count.
        """
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"Lagrange matrix file not found: {filepath}")
        with open(filepath, "r") as fp:
            try:
                rows = json.load(fp)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in {filepath}: {exc}") from exc

        if not isinstance(rows, list) or len(rows) != NUM_ROWS:
            count = len(rows) if isinstance(rows, list) else "no"
            raise ValueError(f"Expected {NUM_ROWS} rows in {filepath}, found {count}")
        for index, row in enumerate(rows):
            if not isinstance(row, list) or len(row) != NUM_TAPS:
                raise ValueError(
                    f"Row {index} in {filepath} must hold {NUM_TAPS} coefficients"
                )
        return cls(rows)

    def to_json(self, filepath: str | Path) -> None:
        """Write the table as a JSON array of arrays."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, "w") as fp:
            json.dump(self._data.tolist(), fp, indent=2)

    @property
    def data(self) -> np.ndarray:
        """Read-only (48, 5) float32 view of the table."""
        return self._data

    @property
    def shape(self) -> tuple:
        return self._data.shape

    def row(self, index: int) -> np.ndarray:
        if not 0 <= index < NUM_ROWS:
            raise IndexError(f"Row {index} out of range [0, {NUM_ROWS})")
        return self._data[index]

    def coefficient(self, row: int, col: int) -> float:
        """Single weight lookup.

        Raises:
            IndexError: If ``row`` or ``col`` is outside the table.
        """
        if not (0 <= row < NUM_ROWS and 0 <= col < NUM_TAPS):
            raise IndexError(f"Coefficient ({row}, {col}) outside {NUM_ROWS}x{NUM_TAPS} table")
        return float(self._data[row, col])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LagrangeMatrix):
            return NotImplemented
        return bool(np.array_equal(self._data, other._data))

    __hash__ = None

    def __repr__(self) -> str:
        return f"LagrangeMatrix({NUM_ROWS}x{NUM_TAPS})"
