from __future__ import annotations

import numpy as np
import pytest

from fakes import FakeRuntime, NumpyBackend

from fractional_delay.delay_config import DelayConfig
from fractional_delay.gpu_backend import BackendError, ComputeResourceManager, create_backend
from fractional_delay.lagrange_matrix import LagrangeMatrix
from fractional_delay.signal_buffer import SignalBuffer


@pytest.fixture
def matrix() -> LagrangeMatrix:
    return LagrangeMatrix.default()


@pytest.fixture
def small_config() -> DelayConfig:
    # 1000 samples per beam, 8 beams
    return DelayConfig(duration=0.002, num_beams=8)


@pytest.fixture
def random_signal() -> SignalBuffer:
    rng = np.random.default_rng(1234)
    samples = rng.standard_normal((8, 1024)) + 1j * rng.standard_normal((8, 1024))
    return SignalBuffer.from_array(samples)


@pytest.fixture
def manager():
    manager = ComputeResourceManager()
    yield manager
    manager.shutdown()


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def numpy_backend(manager, fake_runtime):
    backend = NumpyBackend(manager=manager, runtime=fake_runtime)
    backend.initialize()
    yield backend
    backend.cleanup()


@pytest.fixture
def hardware_backend():
    """A real OpenCL or CUDA backend on any device class; skips if none opens."""
    manager = ComputeResourceManager()
    try:
        backend = create_backend("auto", manager=manager, device_preference="all")
    except BackendError as exc:
        manager.shutdown()
        pytest.skip(f"no OpenCL / CUDA device: {exc}")
    yield backend
    backend.cleanup()
    manager.shutdown()
