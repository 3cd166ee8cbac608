import json

import pytest

from fractional_delay.delay_config import DelayConfig


def test_defaults_are_valid():
    config = DelayConfig.default()
    assert config.num_samples == 5000
    assert config.center_frequency == 300.0
    assert config.chirp_rate == pytest.approx(40_000.0)
    assert config.element_spacing == pytest.approx(config.wavelength / 2)
    assert config.time_axis.shape == (5000,)


@pytest.mark.parametrize(
    "overrides",
    [
        {"f_start": 0.0},
        {"f_start": -10.0},
        {"f_stop": 100.0},
        {"f_stop": 50.0},
        {"sample_rate": 1000.0},
        {"duration": 0.0},
        {"num_beams": 0},
        {"num_beams": 257},
        {"duration": 1e-4},
        {"duration": 3.0},
        {"tolerance": 0.0},
    ],
)
def test_invalid_parameters_rejected(overrides):
    with pytest.raises(ValueError):
        DelayConfig(**overrides)


def test_nyquist_boundary():
    with pytest.raises(ValueError, match="Nyquist"):
        DelayConfig(f_stop=500.0, sample_rate=1000.0, duration=1.0)
    assert DelayConfig(f_stop=500.0, sample_rate=1001.0, duration=1.0).num_samples == 1001


def test_json_round_trip(tmp_path):
    config = DelayConfig(num_beams=16, delay_step=0.25)
    path = tmp_path / "nested" / "config.json"
    config.to_json(path)
    assert DelayConfig.from_file(path) == config


def test_from_file_rejects_unknown_keys(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"num_beams": 4, "gain": 2.0}))
    with pytest.raises(ValueError):
        DelayConfig.from_file(path)


def test_from_file_validates_values(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"num_beams": 1000}))
    with pytest.raises(ValueError):
        DelayConfig.from_file(path)


def test_summary_mentions_beams():
    assert "Beams" in DelayConfig().summary()
