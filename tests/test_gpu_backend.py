import numpy as np
import pytest

from fakes import FakeRuntime, NumpyBackend

from fractional_delay.fractional_delay_cpu import fractional_delay_cpu
from fractional_delay.fractional_delay_gpu import (
    D2H_EVENT,
    H2D_EVENT,
    KERNEL_EVENT,
    FractionalDelayGPU,
)
from fractional_delay.gpu_backend import BackendError, available_backends, create_backend
from fractional_delay.profiling import ProfilingEngine
from fractional_delay.signal_buffer import SignalBuffer


class OtherRuntime(FakeRuntime):
    name = "Other"


def _delays(num_beams):
    return [k / 8 for k in range(num_beams)]


# ---------------------------------------------------------------------------- #
#  Backend memory and transfers
# ---------------------------------------------------------------------------- #

def test_initialize_compiles_through_manager(numpy_backend, fake_runtime):
    assert numpy_backend.is_initialized
    assert numpy_backend.device_name == "Fake Device"
    assert numpy_backend.bound_program.source == NumpyBackend.kernel_source
    assert fake_runtime.compile_count == 1


def test_second_backend_reuses_cached_program(manager, numpy_backend, fake_runtime):
    other = NumpyBackend(manager=manager, runtime=fake_runtime)
    other.initialize()
    assert other.bound_program is numpy_backend.bound_program
    assert fake_runtime.compile_count == 1
    other.cleanup()


def test_allocate_before_initialize_raises(manager):
    backend = NumpyBackend(manager=manager)
    with pytest.raises(BackendError):
        backend.allocate_device_memory(64)


def test_allocate_rejects_non_positive_size(numpy_backend):
    with pytest.raises(BackendError):
        numpy_backend.allocate_device_memory(0)


def test_allocate_and_free(numpy_backend):
    buffer = numpy_backend.allocate_device_memory(128)
    assert buffer.size_bytes == 128
    assert numpy_backend.live_allocations == 1

    numpy_backend.free_device_memory(buffer)
    assert buffer.released
    assert numpy_backend.live_allocations == 0

    numpy_backend.free_device_memory(buffer)
    assert numpy_backend.live_allocations == 0


def test_device_buffer_released_on_exception(numpy_backend):
    with pytest.raises(RuntimeError):
        with numpy_backend.device_buffer(64) as buffer:
            raise RuntimeError("boom")
    assert buffer.released
    assert numpy_backend.live_allocations == 0


def test_copy_round_trip(numpy_backend, random_signal):
    host = random_signal.data
    result = np.zeros_like(host)
    with numpy_backend.device_buffer(host.nbytes) as buffer:
        assert numpy_backend.copy_host_to_device(buffer, host)
        assert numpy_backend.copy_device_to_host(result, buffer)
    np.testing.assert_array_equal(result, host)


def test_copy_rejects_oversized_transfer(numpy_backend):
    host = np.zeros(16, dtype=np.complex64)
    with numpy_backend.device_buffer(64) as buffer:
        assert not numpy_backend.copy_host_to_device(buffer, host)
        assert not numpy_backend.copy_device_to_host(host, buffer)


def test_copy_to_released_buffer_fails(numpy_backend):
    buffer = numpy_backend.allocate_device_memory(64)
    numpy_backend.free_device_memory(buffer)
    assert not numpy_backend.copy_host_to_device(buffer, np.zeros(8, dtype=np.complex64))


def test_failed_write_returns_false(manager, fake_runtime):
    backend = NumpyBackend(manager=manager, runtime=fake_runtime, fail_on=("write",))
    backend.initialize()
    with backend.device_buffer(64) as buffer:
        assert not backend.copy_host_to_device(buffer, np.zeros(8, dtype=np.complex64))
    backend.cleanup()


# ---------------------------------------------------------------------------- #
#  Fractional delay dispatch
# ---------------------------------------------------------------------------- #

def test_execute_before_upload_fails(numpy_backend):
    with numpy_backend.device_buffer(8 * 100) as buffer:
        assert not numpy_backend.execute_fractional_delay(buffer, [0.5], 1, 100)
    assert numpy_backend.kernel_launches == 0


def test_execute_rejects_bad_arguments(numpy_backend, matrix):
    assert numpy_backend.upload_lagrange_matrix(matrix)
    with numpy_backend.device_buffer(8 * 2 * 100) as buffer:
        assert not numpy_backend.execute_fractional_delay(buffer, [0.5], 2, 100)
        assert not numpy_backend.execute_fractional_delay(buffer, [0.5] * 2, 2, 200)
        assert not numpy_backend.execute_fractional_delay(buffer, [], 0, 100)
    assert numpy_backend.kernel_launches == 0


def test_execute_matches_cpu(numpy_backend, matrix, random_signal):
    delays = _delays(random_signal.num_beams)
    expected = random_signal.copy()
    fractional_delay_cpu(expected, delays, matrix)

    assert numpy_backend.upload_lagrange_matrix(matrix)
    result = np.zeros_like(random_signal.data)
    with numpy_backend.device_buffer(random_signal.memory_size_bytes) as buffer:
        assert numpy_backend.copy_host_to_device(buffer, random_signal.data)
        assert numpy_backend.execute_fractional_delay(
            buffer, delays, random_signal.num_beams, random_signal.num_samples
        )
        assert numpy_backend.copy_device_to_host(result, buffer)

    np.testing.assert_allclose(result, expected.data, atol=1e-5)


@pytest.mark.parametrize("delay", [3.0e9, -3.0e9, 3 * 1024.0, -(2 * 1024.0 + 1)])
def test_delays_past_the_beam_give_zeros_like_cpu(numpy_backend, matrix, random_signal, delay):
    delays = [delay] * random_signal.num_beams
    expected = random_signal.copy()
    fractional_delay_cpu(expected, delays, matrix)
    assert not np.any(expected.data)

    processor = FractionalDelayGPU(numpy_backend, matrix)
    output = SignalBuffer()
    assert processor.process(random_signal, delays, output=output)
    np.testing.assert_array_equal(output.data, expected.data)


@pytest.mark.parametrize("delay", [float("nan"), float("inf")])
def test_non_finite_delay_fails_without_raising(numpy_backend, matrix, random_signal, delay):
    processor = FractionalDelayGPU(numpy_backend, matrix)
    delays = [0.0] * (random_signal.num_beams - 1) + [delay]
    assert not processor.process(random_signal, delays)
    assert numpy_backend.kernel_launches == 0
    # Lagrange table and delay parameters; the signal buffer was released
    assert numpy_backend.live_allocations == 2


def test_cleanup_frees_backend_buffers(numpy_backend, matrix, random_signal):
    assert numpy_backend.upload_lagrange_matrix(matrix)
    with numpy_backend.device_buffer(random_signal.memory_size_bytes) as buffer:
        numpy_backend.copy_host_to_device(buffer, random_signal.data)
        numpy_backend.execute_fractional_delay(
            buffer, _delays(8), random_signal.num_beams, random_signal.num_samples
        )
    # Lagrange table, delay parameters and scratch
    assert numpy_backend.live_allocations == 3
    numpy_backend.cleanup()
    assert numpy_backend.live_allocations == 0
    assert not numpy_backend.is_initialized


def test_manager_bound_to_other_runtime(manager):
    manager.initialize(OtherRuntime())
    backend = NumpyBackend(manager=manager)
    with pytest.raises(BackendError, match="Other"):
        backend.initialize()


# ---------------------------------------------------------------------------- #
#  FractionalDelayGPU
# ---------------------------------------------------------------------------- #

def test_gpu_pipeline_matches_cpu(numpy_backend, matrix, random_signal):
    delays = _delays(random_signal.num_beams)
    expected = random_signal.copy()
    fractional_delay_cpu(expected, delays, matrix)

    processor = FractionalDelayGPU(numpy_backend, matrix)
    output = SignalBuffer()
    assert processor.process(random_signal, delays, output=output)

    assert output.shape == random_signal.shape
    np.testing.assert_allclose(output.data, expected.data, atol=1e-5)
    assert not np.array_equal(output.data, random_signal.data)


def test_gpu_pipeline_records_events(numpy_backend, matrix, random_signal):
    profiler = ProfilingEngine()
    processor = FractionalDelayGPU(numpy_backend, matrix, profiler)
    assert processor.process(random_signal, _delays(random_signal.num_beams))

    events = processor.last_profiling.gpu_events
    assert [event.event_name for event in events] == [H2D_EVENT, KERNEL_EVENT, D2H_EVENT]
    for event in events:
        assert event.queue_time_ms == pytest.approx(0.0001)
        assert event.wait_time_ms == pytest.approx(0.0002)
        assert event.execution_time_ms == pytest.approx(0.001)
        assert event.total_time_ms == pytest.approx(0.0013)

    assert processor.last_profiling.system_info.backend == "Fake"
    assert profiler.get_metric(KERNEL_EVENT).call_count == 1
    assert profiler.get_metric("GPU_Total").call_count == 1


def test_gpu_pipeline_failure_releases_signal_buffer(manager, fake_runtime, matrix, random_signal):
    backend = NumpyBackend(manager=manager, runtime=fake_runtime, fail_on=("read",))
    processor = FractionalDelayGPU(backend, matrix)

    assert not processor.process(random_signal, _delays(random_signal.num_beams))
    assert backend.live_allocations == 3
    backend.cleanup()
    assert backend.live_allocations == 0


def test_gpu_pipeline_rejects_delay_mismatch(numpy_backend, matrix, random_signal):
    processor = FractionalDelayGPU(numpy_backend, matrix)
    assert not processor.process(random_signal, [0.0])
    assert numpy_backend.kernel_launches == 0


def test_process_array(numpy_backend, matrix, random_signal):
    processor = FractionalDelayGPU(numpy_backend, matrix)
    result = processor.process_array(random_signal.beams, [0.0] * random_signal.num_beams)
    np.testing.assert_allclose(result, random_signal.beams, atol=1e-6)


# ---------------------------------------------------------------------------- #
#  Factory
# ---------------------------------------------------------------------------- #

def test_available_backends_in_auto_order():
    installed = available_backends()
    assert set(installed) <= {"opencl", "cuda"}
    assert installed == [kind for kind in ("opencl", "cuda") if kind in installed]


def test_unknown_backend_kind(manager):
    with pytest.raises(ValueError):
        create_backend("vulkan", manager=manager)


@pytest.mark.parametrize("kind", ["auto", "opencl", "cuda"])
def test_create_backend_on_foreign_manager_fails(manager, fake_runtime, kind):
    manager.initialize(fake_runtime)
    with pytest.raises(BackendError):
        create_backend(kind, manager=manager)
