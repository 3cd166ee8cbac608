"""
Delay Run Configuration

Defines the DelayConfig dataclass holding the parameters of one
fractional-delay validation run: the LFM test signal, the beam layout and
the CPU/GPU agreement tolerance.

The default configuration targets:
    - LFM sweep: 100 Hz to 500 Hz
    - Sample rate: 500 kHz
    - Duration: 10 ms (5000 samples per beam)
    - 32 beams with a linear 0.125 sample delay step
"""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from pathlib import Path

import numpy as np


# Speed of light in m/s
C = 299_792_458.0

# SignalBuffer dimension limits
MIN_BEAMS = 1
MAX_BEAMS = 256
MIN_SAMPLES = 100
MAX_SAMPLES = 1_300_000


@dataclass
class DelayConfig:
    """Configuration parameters for a fractional-delay run.

    Attributes:
        f_start: LFM start frequency in Hz. Default 100 Hz.
        f_stop: LFM stop frequency in Hz. Default 500 Hz.
        sample_rate: Sampling rate in Hz. Default 500 kHz.
        duration: Signal duration per beam in seconds. Default 10 ms.
        num_beams: Number of beams (antenna elements). Default 32.
        steering_angle: Beam steering angle in degrees. Default 30.
        tolerance: Maximum allowed CPU/GPU difference magnitude. Default 1e-5.
        delay_step: Delay increment between consecutive beams in samples.
            Default 0.125.

    Raises:
        ValueError: If any parameter is out of range (see ``validate``).
    """

    f_start: float = 100.0
    f_stop: float = 500.0
    sample_rate: float = 500_000.0
    duration: float = 0.01
    num_beams: int = 32
    steering_angle: float = 30.0
    tolerance: float = 1e-5
    delay_step: float = 0.125

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check the parameters and raise ValueError on the first problem."""
        if self.f_start <= 0:
            raise ValueError(f"f_start must be positive, got {self.f_start}")
        if self.f_stop <= self.f_start:
            raise ValueError(
                f"f_stop ({self.f_stop}) must be greater than f_start ({self.f_start})"
            )
        if self.sample_rate <= 2.0 * self.f_stop:
            raise ValueError(
                f"sample_rate ({self.sample_rate}) must exceed the Nyquist rate "
                f"2 * f_stop ({2.0 * self.f_stop})"
            )
        if self.duration <= 0:
            raise ValueError(f"duration must be positive, got {self.duration}")
        if not MIN_BEAMS <= self.num_beams <= MAX_BEAMS:
            raise ValueError(
                f"num_beams must be in [{MIN_BEAMS}, {MAX_BEAMS}], got {self.num_beams}"
            )
        if not MIN_SAMPLES <= self.num_samples <= MAX_SAMPLES:
            raise ValueError(
                f"duration * sample_rate gives {self.num_samples} samples, "
                f"expected [{MIN_SAMPLES}, {MAX_SAMPLES}]"
            )
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")

    # ------------------------------------------------------------------ #
    #  Derived properties
    # ------------------------------------------------------------------ #

    @property
    def num_samples(self) -> int:
        """Samples per beam: int(duration * sample_rate)."""
        return int(self.duration * self.sample_rate)

    @property
    def chirp_rate(self) -> float:
        """LFM sweep rate in Hz/s.

        k = (f_stop - f_start) / duration
        """
        return (self.f_stop - self.f_start) / self.duration

    @property
    def center_frequency(self) -> float:
        """Sweep center frequency in Hz."""
        return 0.5 * (self.f_start + self.f_stop)

    @property
    def wavelength(self) -> float:
        """Wavelength at the center frequency in meters.

        lambda = c / f_center
        """
        return C / self.center_frequency

    @property
    def element_spacing(self) -> float:
        """Half-wavelength array element spacing in meters."""
        return self.wavelength / 2.0

    @property
    def time_axis(self) -> np.ndarray:
        """Sample time axis in seconds."""
        return np.arange(self.num_samples) / self.sample_rate

    # ------------------------------------------------------------------ #
    #  Serialisation
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict:
        """Serialize configuration to a plain dictionary."""
        return asdict(self)

    def to_json(self, path: str | Path) -> None:
        """Save configuration to a JSON file.

        Args:
            path: Output file path.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as fp:
            json.dump(self.to_dict(), fp, indent=4)

    @classmethod
    def from_file(cls, path: str | Path) -> "DelayConfig":
        """Load a run configuration from a JSON file.

        Args:
            path: Path to the JSON configuration file.

        Returns:
            A validated DelayConfig.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If a key is unknown or a value is out of range.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        with open(path, "r") as fp:
            data = json.load(fp)
        try:
            return cls(**data)
        except TypeError as exc:
            raise ValueError(f"Invalid configuration keys in {path}: {exc}") from exc

    @classmethod
    def default(cls) -> "DelayConfig":
        """Return the default validation run configuration."""
        return cls()

    # ------------------------------------------------------------------ #
    #  Display
    # ------------------------------------------------------------------ #

    def summary(self) -> str:
        """Return a human-readable summary of the run configuration."""
        lines = [
            "=== Fractional Delay Configuration ===",
            f"  LFM sweep        : {self.f_start:.1f} - {self.f_stop:.1f} Hz",
            f"  Sample rate      : {self.sample_rate / 1e3:.1f} kHz",
            f"  Duration         : {self.duration * 1e3:.2f} ms",
            f"  Beams            : {self.num_beams}",
            f"  Samples / beam   : {self.num_samples}",
            f"  Steering angle   : {self.steering_angle:.1f} deg",
            f"  Delay step       : {self.delay_step} samples",
            f"  Tolerance        : {self.tolerance:g}",
            f"  --- Derived ---",
            f"  Chirp rate       : {self.chirp_rate:.1f} Hz/s",
            f"  Center frequency : {self.center_frequency:.1f} Hz",
            f"  Wavelength       : {self.wavelength / 1e3:.1f} km",
        ]
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"DelayConfig(f={self.f_start:g}-{self.f_stop:g}Hz, "
            f"fs={self.sample_rate / 1e3:g}kHz, beams={self.num_beams}, "
            f"samples={self.num_samples})"
        )
