"""
LFM Test Signal Generator

Synthesises multi-beam complex linear-frequency-modulated (LFM) test signals
for the fractional-delay validation runs.

The complex chirp is assembled from two ``scipy.signal.chirp`` calls, the
cosine and the -90 degree shifted (sine) component:

    phi(t) = 2 * pi * (f_start * t + 0.5 * k * t^2),   k = (f_stop - f_start) / T
    s(t)   = cos(phi(t)) + j * sin(phi(t))

Variants:
    BASIC        identical chirp on every beam
    PHASE_OFFSET beam b rotated by 2 * pi * b / num_beams
    DELAY        beam b evaluated at t - delay_b / fs, zero before onset
    BEAMFORMING  half-wavelength array steering phase for steering_angle
    WINDOWED     chirp tapered by a Hamming window
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.signal import chirp, windows

from fractional_delay.delay_config import C, DelayConfig
from fractional_delay.signal_buffer import SignalBuffer


class LFMVariant(enum.Enum):
    BASIC = "basic"
    PHASE_OFFSET = "phase_offset"
    DELAY = "delay"
    BEAMFORMING = "beamforming"
    WINDOWED = "windowed"


@dataclass
class GeneratorStatistics:
    """Figures from the most recent ``generate`` call."""

    generation_time_ms: float = 0.0
    peak_amplitude: float = 0.0
    rms: float = 0.0
    variant: str = ""


def linear_delays(num_beams: int, step: float = 0.125) -> np.ndarray:
    """Per-beam delays ``b * step`` in samples."""
    return np.arange(num_beams, dtype=np.float64) * step


def steering_delays(
    num_beams: int,
    steering_angle_deg: float,
    element_spacing_m: float,
    sample_rate: float,
) -> np.ndarray:
    """Per-element arrival delays in samples for a plane wave.

    tau_b = b * d * sin(theta) / c,   delay_b = tau_b * fs
    """
    theta = np.deg2rad(steering_angle_deg)
    tau = np.arange(num_beams) * element_spacing_m * np.sin(theta) / C
    return tau * sample_rate


class LFMSignalGenerator:
    """Generate LFM test signals described by a DelayConfig.

    Args:
        config: Run configuration (sweep, sample rate, beams, steering).
    """

    def __init__(self, config: DelayConfig) -> None:
        self.config = config
        self.statistics = GeneratorStatistics()

    def complex_chirp(self, t: np.ndarray) -> np.ndarray:
        """Complex LFM evaluated at times ``t`` (seconds)."""
        cfg = self.config
        real = chirp(t, f0=cfg.f_start, t1=cfg.duration, f1=cfg.f_stop, method="linear")
        imag = chirp(t, f0=cfg.f_start, t1=cfg.duration, f1=cfg.f_stop, method="linear", phi=-90)
        return real + 1j * imag

    def generate_beam(
        self,
        beam_index: int,
        variant: LFMVariant = LFMVariant.BASIC,
        delay: float = 0.0,
    ) -> np.ndarray:
        """Generate one beam.

        Args:
            beam_index: Beam position in the array.
            variant: Signal variant.
            delay: Delay in samples, used by the DELAY variant only.

        Returns:
            complex64 array of num_samples samples.
        """
        cfg = self.config
        n = cfg.num_samples
        t = cfg.time_axis

        if variant is LFMVariant.DELAY:
            t_delayed = t - delay / cfg.sample_rate
            signal = np.where(t_delayed >= 0.0, self.complex_chirp(t_delayed), 0.0)
        else:
            signal = self.complex_chirp(t)

        if variant is LFMVariant.PHASE_OFFSET:
            signal = signal * np.exp(1j * 2.0 * np.pi * beam_index / cfg.num_beams)
        elif variant is LFMVariant.BEAMFORMING:
            # Half-wavelength spacing: 2 * pi * (lambda / 2) * sin(theta) / lambda
            phase = np.pi * beam_index * np.sin(np.deg2rad(cfg.steering_angle))
            signal = signal * np.exp(-1j * phase)
        elif variant is LFMVariant.WINDOWED:
            signal = signal * windows.hamming(n)

        return signal.astype(np.complex64)

    def generate(
        self,
        variant: LFMVariant = LFMVariant.BASIC,
        delays: Optional[Sequence[float]] = None,
    ) -> SignalBuffer:
        """Generate every beam into a new SignalBuffer.

        Args:
            variant: Signal variant.
            delays: Per-beam delays in samples for the DELAY variant.
                Defaults to ``linear_delays(num_beams, delay_step)``.

        Raises:
            ValueError: If ``delays`` does not have one entry per beam.
        """
        cfg = self.config
        if delays is None:
            delays = linear_delays(cfg.num_beams, cfg.delay_step)
        if len(delays) != cfg.num_beams:
            raise ValueError(f"Got {len(delays)} delays for {cfg.num_beams} beams")

        t0 = time.perf_counter()
        buffer = SignalBuffer(cfg.num_beams, cfg.num_samples)
        for beam_index in range(cfg.num_beams):
            buffer.beam(beam_index)[:] = self.generate_beam(
                beam_index, variant, delay=float(delays[beam_index])
            )
        elapsed_ms = (time.perf_counter() - t0) * 1e3

        magnitude = np.abs(buffer.data)
        self.statistics = GeneratorStatistics(
            generation_time_ms=elapsed_ms,
            peak_amplitude=float(magnitude.max()),
            rms=float(np.sqrt(np.mean(magnitude ** 2))),
            variant=variant.value,
        )
        return buffer
