"""
Multi-Beam Signal Buffer

SignalBuffer owns a two-dimensional complex signal of ``num_beams`` beams by
``num_samples`` samples, stored as one contiguous complex64 array in
beam-major order. The flat layout is what the GPU backends upload verbatim.

Binary file format (little-endian):
    uint32 num_beams
    uint32 num_samples
    num_beams * num_samples pairs of float32 (real, imag), beam-major

HDF5 files hold a single ``signal`` dataset of shape (num_beams, num_samples)
with the dimensions repeated as attributes.
"""

from __future__ import annotations

import struct
from pathlib import Path
from typing import Optional

import numpy as np

try:
    import h5py

    HAS_H5PY = True
except ImportError:
    HAS_H5PY = False

from fractional_delay.delay_config import MAX_BEAMS, MAX_SAMPLES, MIN_BEAMS, MIN_SAMPLES


_HEADER = struct.Struct("<II")


class SignalBuffer:
    """Contiguous complex64 storage for a multi-beam signal.

    Args:
        num_beams: Number of beams. 0 creates an empty buffer.
        num_samples: Samples per beam. 0 creates an empty buffer.

    Raises:
        ValueError: If a dimension is negative.
    """

    def __init__(self, num_beams: int = 0, num_samples: int = 0) -> None:
        self._num_beams = 0
        self._num_samples = 0
        self._data = np.zeros(0, dtype=np.complex64)
        self.resize(num_beams, num_samples)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "SignalBuffer":
        """Create a buffer holding a copy of a (num_beams, num_samples) array."""
        array = np.asarray(array)
        if array.ndim != 2:
            raise ValueError(f"Expected a 2-D array, got shape {array.shape}")
        buffer = cls(*array.shape)
        buffer.beams[:] = array.astype(np.complex64, copy=False)
        return buffer

    # ------------------------------------------------------------------ #
    #  Shape and storage
    # ------------------------------------------------------------------ #

    @property
    def num_beams(self) -> int:
        return self._num_beams

    @property
    def num_samples(self) -> int:
        return self._num_samples

    @property
    def shape(self) -> tuple:
        return (self._num_beams, self._num_samples)

    @property
    def data(self) -> np.ndarray:
        """Flat complex64 storage of length num_beams * num_samples."""
        return self._data

    @property
    def beams(self) -> np.ndarray:
        """(num_beams, num_samples) view onto the flat storage."""
        return self._data.reshape(self._num_beams, self._num_samples)

    @property
    def total_size(self) -> int:
        return self._num_beams * self._num_samples

    @property
    def memory_size_bytes(self) -> int:
        return self._data.nbytes

    def beam(self, index: int) -> np.ndarray:
        """Return a writable view of one beam.

        Raises:
            IndexError: If ``index`` is not in [0, num_beams).
        """
        if not 0 <= index < self._num_beams:
            raise IndexError(f"Beam index {index} out of range [0, {self._num_beams})")
        start = index * self._num_samples
        return self._data[start:start + self._num_samples]

    def resize(self, num_beams: int, num_samples: int) -> None:
        """Re-allocate zeroed storage for the new dimensions."""
        if num_beams < 0 or num_samples < 0:
            raise ValueError(
                f"Buffer dimensions must be non-negative, got ({num_beams}, {num_samples})"
            )
        self._num_beams = int(num_beams)
        self._num_samples = int(num_samples)
        self._data = np.zeros(self._num_beams * self._num_samples, dtype=np.complex64)

    def clear(self) -> None:
        """Zero every sample, keeping the dimensions."""
        self._data.fill(0)

    def copy(self) -> "SignalBuffer":
        """Return a deep copy with independent storage."""
        duplicate = SignalBuffer()
        duplicate._num_beams = self._num_beams
        duplicate._num_samples = self._num_samples
        duplicate._data = self._data.copy()
        return duplicate

    def is_allocated(self) -> bool:
        return self._data.size > 0

    def is_valid(self) -> bool:
        """True if the dimensions are within limits and storage matches them."""
        return (
            MIN_BEAMS <= self._num_beams <= MAX_BEAMS
            and MIN_SAMPLES <= self._num_samples <= MAX_SAMPLES
            and self._data.size == self._num_beams * self._num_samples
            and self._data.dtype == np.complex64
        )

    # ------------------------------------------------------------------ #
    #  In-place signal operations
    # ------------------------------------------------------------------ #

    def conjugate(self) -> None:
        """Complex-conjugate every sample in place."""
        np.conjugate(self._data, out=self._data)

    def heterodyne(self, reference: np.ndarray) -> None:
        """Mix every beam with the conjugate of a reference signal in place.

        For an LFM reference this is dechirping (stretch processing): each
        beam is multiplied sample-by-sample with ``conj(reference)``.

        Args:
            reference: Complex reference of length num_samples.

        Raises:
            ValueError: If the reference length differs from num_samples.
        """
        reference = np.asarray(reference)
        if reference.shape != (self._num_samples,):
            raise ValueError(
                f"Reference length {reference.shape} does not match "
                f"num_samples ({self._num_samples})"
            )
        beams = self.beams
        beams *= np.conj(reference).astype(np.complex64)

    # ------------------------------------------------------------------ #
    #  Binary file I/O
    # ------------------------------------------------------------------ #

    def save(self, filepath: str | Path) -> None:
        """Write the buffer in the little-endian binary format.

        Args:
            filepath: Output file path. Parent directories are created.
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        interleaved = self._data.view(np.float32).astype("<f4", copy=False)
        with open(filepath, "wb") as fp:
            fp.write(_HEADER.pack(self._num_beams, self._num_samples))
            fp.write(interleaved.tobytes())

    @classmethod
    def load(cls, filepath: str | Path) -> "SignalBuffer":
        """Read a buffer written by ``save``.

        Args:
            filepath: Path to the binary file.

        Returns:
            A new SignalBuffer.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the header dimensions are out of range or the
                payload is shorter than the header announces.
        """
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"Signal file not found: {filepath}")

        raw_bytes = filepath.read_bytes()
        if len(raw_bytes) < _HEADER.size:
            raise ValueError(f"File too short for a signal header: {filepath}")
        num_beams, num_samples = _HEADER.unpack_from(raw_bytes)
        _check_dimensions(num_beams, num_samples)

        expected = num_beams * num_samples * 2
        payload = np.frombuffer(raw_bytes, dtype="<f4", offset=_HEADER.size)
        if payload.size < expected:
            raise ValueError(
                f"Signal payload holds {payload.size // 2} samples, "
                f"header announces {num_beams * num_samples}"
            )

        buffer = cls()
        buffer._num_beams = num_beams
        buffer._num_samples = num_samples
        buffer._data = payload[:expected].astype(np.float32).view(np.complex64).copy()
        return buffer

    # ------------------------------------------------------------------ #
    #  HDF5 I/O
    # ------------------------------------------------------------------ #

    def save_hdf5(self, filepath: str | Path, metadata: Optional[dict] = None) -> None:
        """Write the buffer to an HDF5 file.

        Args:
            filepath: Output .h5 path. Parent directories are created.
            metadata: Optional key-value pairs stored as file attributes.

        Raises:
            ImportError: If h5py is not installed.
        """
        if not HAS_H5PY:
            raise ImportError("h5py is required to save HDF5 files. Install with: pip install h5py")

        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with h5py.File(filepath, "w") as hf:
            dset = hf.create_dataset(
                "signal",
                data=self.beams,
                compression="gzip",
                compression_opts=4,
            )
            dset.attrs["num_beams"] = self._num_beams
            dset.attrs["num_samples"] = self._num_samples
            if metadata:
                for key, value in metadata.items():
                    hf.attrs[key] = value

    @classmethod
    def load_hdf5(cls, filepath: str | Path) -> "SignalBuffer":
        """Read a buffer written by ``save_hdf5``.

        Raises:
            ImportError: If h5py is not installed.
            FileNotFoundError: If the file does not exist.
            ValueError: If the dataset is missing or has invalid dimensions.
        """
        if not HAS_H5PY:
            raise ImportError("h5py is required to load HDF5 files. Install with: pip install h5py")

        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"HDF5 file not found: {filepath}")

        with h5py.File(filepath, "r") as hf:
            if "signal" not in hf:
                raise ValueError(f"No 'signal' dataset in {filepath}")
            array = hf["signal"][()]

        if array.ndim != 2:
            raise ValueError(f"Expected a 2-D signal dataset, got shape {array.shape}")
        _check_dimensions(*array.shape)
        return cls.from_array(array)

    def __repr__(self) -> str:
        return f"SignalBuffer(beams={self._num_beams}, samples={self._num_samples})"


def _check_dimensions(num_beams: int, num_samples: int) -> None:
    if not MIN_BEAMS <= num_beams <= MAX_BEAMS:
        raise ValueError(f"num_beams {num_beams} outside [{MIN_BEAMS}, {MAX_BEAMS}]")
    if not MIN_SAMPLES <= num_samples <= MAX_SAMPLES:
        raise ValueError(f"num_samples {num_samples} outside [{MIN_SAMPLES}, {MAX_SAMPLES}]")
