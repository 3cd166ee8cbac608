import struct

import numpy as np
import pytest

from fractional_delay.signal_buffer import SignalBuffer


def test_empty_buffer():
    buffer = SignalBuffer()
    assert buffer.shape == (0, 0)
    assert not buffer.is_allocated()
    assert not buffer.is_valid()
    assert buffer.total_size == 0


def test_allocation_and_layout():
    buffer = SignalBuffer(4, 200)
    assert buffer.data.dtype == np.complex64
    assert buffer.data.size == buffer.total_size == 800
    assert buffer.memory_size_bytes == 800 * 8
    assert buffer.is_valid()

    buffer.beam(2)[:] = 1 + 2j
    # beam-major: beam 2 occupies samples 400..599 of the flat storage
    assert np.all(buffer.data[400:600] == 1 + 2j)
    assert not np.any(buffer.data[:400])
    assert np.shares_memory(buffer.beams, buffer.data)


def test_negative_dimensions_rejected():
    with pytest.raises(ValueError):
        SignalBuffer(-1, 100)


@pytest.mark.parametrize("beams, samples", [(0, 100), (257, 100), (1, 99), (1, 1_300_001)])
def test_out_of_range_dimensions_are_invalid(beams, samples):
    buffer = SignalBuffer()
    buffer._num_beams, buffer._num_samples = beams, samples
    assert not buffer.is_valid()


def test_limits_are_valid():
    assert SignalBuffer(1, 100).is_valid()
    assert SignalBuffer(256, 100).is_valid()


def test_beam_index_checked():
    buffer = SignalBuffer(2, 100)
    with pytest.raises(IndexError):
        buffer.beam(2)
    with pytest.raises(IndexError):
        buffer.beam(-1)


def test_resize_and_clear(random_signal):
    buffer = random_signal.copy()
    buffer.clear()
    assert buffer.shape == (8, 1024)
    assert not np.any(buffer.data)

    buffer.resize(2, 300)
    assert buffer.shape == (2, 300)
    assert buffer.data.size == 600


def test_copy_is_independent(random_signal):
    duplicate = random_signal.copy()
    duplicate.beam(0)[0] = 99.0
    assert random_signal.beam(0)[0] != 99.0
    assert not np.shares_memory(duplicate.data, random_signal.data)


def test_from_array_requires_2d():
    with pytest.raises(ValueError):
        SignalBuffer.from_array(np.zeros(100))


def test_conjugate(random_signal):
    buffer = random_signal.copy()
    buffer.conjugate()
    np.testing.assert_array_equal(buffer.data, np.conj(random_signal.data))


def test_heterodyne_with_own_reference_gives_power(random_signal):
    buffer = SignalBuffer.from_array(np.tile(random_signal.beam(0), (3, 1)))
    reference = random_signal.beam(0).copy()
    buffer.heterodyne(reference)
    np.testing.assert_allclose(buffer.beam(1).real, np.abs(reference) ** 2, rtol=1e-5)
    np.testing.assert_allclose(buffer.beam(1).imag, 0.0, atol=1e-5)


def test_heterodyne_rejects_wrong_length(random_signal):
    with pytest.raises(ValueError):
        random_signal.heterodyne(np.ones(10))


def test_binary_round_trip(tmp_path, random_signal):
    path = tmp_path / "signal.bin"
    random_signal.save(path)
    loaded = SignalBuffer.load(path)
    assert loaded.shape == random_signal.shape
    np.testing.assert_array_equal(loaded.data, random_signal.data)


def test_binary_layout(tmp_path):
    buffer = SignalBuffer(1, 100)
    buffer.beam(0)[0] = 1.5 - 2.0j
    path = tmp_path / "layout.bin"
    buffer.save(path)

    raw = path.read_bytes()
    assert len(raw) == 8 + 100 * 8
    assert struct.unpack("<II", raw[:8]) == (1, 100)
    assert struct.unpack("<ff", raw[8:16]) == (1.5, -2.0)


@pytest.mark.parametrize("beams, samples", [(0, 100), (300, 100), (1, 50)])
def test_load_rejects_invalid_header(tmp_path, beams, samples):
    path = tmp_path / "bad.bin"
    path.write_bytes(struct.pack("<II", beams, samples) + b"\x00" * (8 * beams * samples))
    with pytest.raises(ValueError):
        SignalBuffer.load(path)


def test_load_rejects_truncated_payload(tmp_path):
    path = tmp_path / "short.bin"
    path.write_bytes(struct.pack("<II", 2, 100) + b"\x00" * (8 * 150))
    with pytest.raises(ValueError):
        SignalBuffer.load(path)


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        SignalBuffer.load(tmp_path / "missing.bin")


def test_hdf5_round_trip(tmp_path, random_signal):
    pytest.importorskip("h5py")
    path = tmp_path / "signal.h5"
    random_signal.save_hdf5(path, metadata={"source": "test"})
    loaded = SignalBuffer.load_hdf5(path)
    np.testing.assert_array_equal(loaded.data, random_signal.data)
