"""
Fractional Delay - Multi-Beam Lagrange Delay Correction

This package shifts every beam of a multi-beam complex signal by a real,
possibly negative, number of samples using 5-point Lagrange interpolation
from a 48-row coefficient table, on a NumPy reference path and on an
OpenCL or CUDA GPU path, and verifies that the two agree.

Main components:
    - SignalBuffer: Contiguous complex64 multi-beam storage with file I/O
    - LagrangeMatrix: 48 x 5 interpolation table and delay decomposition
    - fractional_delay_cpu: NumPy reference implementation
    - FractionalDelayGPU: H2D -> kernel -> D2H on a GPU backend
    - ComputeResourceManager: Shared device, queue and program cache
    - ProfilingEngine: CPU timers and GPU event metrics
    - compare_results / Validator: CPU vs GPU agreement metrics
    - LFMSignalGenerator: Chirp test signals
    - DelayConfig: Run configuration

Typical usage:
    from fractional_delay import (
        DelayConfig,
        FractionalDelayGPU,
        LagrangeMatrix,
        LFMSignalGenerator,
        create_backend,
        fractional_delay_cpu,
    )

    config = DelayConfig.default()
    signal = LFMSignalGenerator(config).generate()
    matrix = LagrangeMatrix.default()
    delays = [0.125 * b for b in range(config.num_beams)]

    cpu = signal.copy()
    fractional_delay_cpu(cpu, delays, matrix)

    gpu = FractionalDelayGPU(create_backend("auto"), matrix)
    gpu.process(signal, delays)
"""

from fractional_delay.delay_config import DelayConfig
from fractional_delay.signal_buffer import SignalBuffer
from fractional_delay.lagrange_matrix import (
    DelayParameter,
    LagrangeMatrix,
    decompose_delay,
    get_row_index,
)
from fractional_delay.fractional_delay_cpu import (
    apply_fractional_delay,
    fractional_delay_cpu,
    reflect_index,
)
from fractional_delay.profiling import GPUEventMetrics, ProfilingEngine, TimingMetric
from fractional_delay.result_comparator import ComparisonMetrics, Validator, compare_results
from fractional_delay.signal_generator import LFMSignalGenerator, LFMVariant
from fractional_delay.gpu_backend import BackendError, ComputeResourceManager, create_backend
from fractional_delay.fractional_delay_gpu import FractionalDelayGPU

__version__ = "0.1.0"
__author__ = "Fractional Delay Project"

__all__ = [
    "DelayConfig",
    "SignalBuffer",
    "DelayParameter",
    "LagrangeMatrix",
    "decompose_delay",
    "get_row_index",
    "apply_fractional_delay",
    "fractional_delay_cpu",
    "reflect_index",
    "GPUEventMetrics",
    "ProfilingEngine",
    "TimingMetric",
    "ComparisonMetrics",
    "Validator",
    "compare_results",
    "LFMSignalGenerator",
    "LFMVariant",
    "BackendError",
    "ComputeResourceManager",
    "create_backend",
    "FractionalDelayGPU",
]
