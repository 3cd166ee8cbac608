import logging

import numpy as np
import pytest

from fractional_delay.result_comparator import ComparisonMetrics, Validator, compare_results
from fractional_delay.signal_buffer import SignalBuffer


def test_identical_buffers(random_signal):
    ok, metrics = compare_results(random_signal, random_signal.copy(), 1e-5)
    assert ok
    assert metrics.total_points == 8 * 1024
    assert metrics.max_diff_magnitude == 0.0
    assert metrics.avg_diff_magnitude == 0.0
    assert metrics.errors_above_tolerance == 0
    assert metrics.within_tolerance


def test_shape_mismatch_fails_without_metrics(random_signal):
    other = SignalBuffer(8, 1000)
    ok, metrics = compare_results(random_signal, other, 1e-5)
    assert not ok
    assert metrics == ComparisonMetrics()


def test_invalid_buffer_fails(random_signal):
    ok, _ = compare_results(random_signal, SignalBuffer(), 1e-5)
    assert not ok


def test_difference_metrics():
    reference = SignalBuffer.from_array(np.ones((2, 100)))
    test = reference.copy()
    test.beam(0)[5] += 3e-3 + 4e-3j
    test.beam(1)[7] += 1e-6

    ok, metrics = compare_results(reference, test, 1e-5)
    assert ok
    assert metrics.max_diff_real == pytest.approx(3e-3, rel=1e-4)
    assert metrics.max_diff_imag == pytest.approx(4e-3, rel=1e-4)
    assert metrics.max_diff_magnitude == pytest.approx(5e-3, rel=1e-4)
    assert metrics.avg_diff_magnitude == pytest.approx((5e-3 + 1e-6) / 200, rel=1e-3)
    assert metrics.max_relative_error == pytest.approx(5e-3, rel=1e-3)
    assert metrics.errors_above_tolerance == 1
    assert not metrics.within_tolerance
    assert metrics.error_rate == pytest.approx(1 / 200)


def test_relative_error_skips_zero_reference():
    reference = SignalBuffer(1, 100)
    test = reference.copy()
    test.beam(0)[0] = 1e-3

    ok, metrics = compare_results(reference, test, 1e-5)
    assert ok
    assert metrics.max_relative_error == 0.0
    assert metrics.errors_above_tolerance == 1


def test_validator_pass_and_fail(random_signal, caplog):
    validator = Validator()
    passed, _ = validator.validate(random_signal, random_signal.copy(), 1e-5)
    assert passed

    perturbed = random_signal.copy()
    perturbed.beam(3)[10] += 1.0
    with caplog.at_level(logging.WARNING):
        passed, metrics = validator.validate(random_signal, perturbed, 1e-5)
    assert not passed
    assert metrics.errors_above_tolerance == 1
    assert validator.last_metrics is metrics
    assert "exceed tolerance" in caplog.text


def test_metrics_to_dict():
    metrics = ComparisonMetrics(max_diff_magnitude=1.0, total_points=4)
    data = metrics.to_dict()
    assert data["max_diff_magnitude"] == 1.0
    assert data["total_points"] == 4
    assert "Points compared" in metrics.summary()
