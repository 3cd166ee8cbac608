import json

import numpy as np
import pytest

from fakes import NumpyBackend

from fractional_delay import gpu_backend
from fractional_delay.main import main, parse_args, run
from fractional_delay.signal_buffer import SignalBuffer

SMALL_RUN = ["--cpu-only", "--duration", "0.002", "--num-beams", "4"]


def test_cpu_only_run(tmp_path, capsys):
    args = parse_args(SMALL_RUN + ["--no-reports"])
    assert run(args) == 0
    out = capsys.readouterr().out
    assert "4 beams x 1000 samples" in out
    assert "CPU fractional delay" in out


def test_output_file_is_loadable(tmp_path):
    output = tmp_path / "delayed.bin"
    assert run(parse_args(SMALL_RUN + ["--no-reports", "--output", str(output)])) == 0

    result = SignalBuffer.load(output)
    assert result.shape == (4, 1000)
    assert np.all(np.isfinite(result.data))


def test_input_file_round_trip(tmp_path):
    rng = np.random.default_rng(7)
    source = SignalBuffer.from_array(rng.standard_normal((2, 200)) + 0j)
    source_path = tmp_path / "input.bin"
    source.save(source_path)
    output = tmp_path / "out.bin"

    args = parse_args(
        ["--cpu-only", "--no-reports", "--input", str(source_path),
         "--delay-step", "0.0", "--output", str(output)]
    )
    assert run(args) == 0
    np.testing.assert_array_equal(SignalBuffer.load(output).data, source.data)


def test_reports_written(tmp_path):
    report_dir = tmp_path / "reports"
    assert run(parse_args(SMALL_RUN + ["--report-dir", str(report_dir)])) == 0

    report = json.loads((report_dir / "profiling.json").read_text())
    names = {metric["name"] for metric in report["metrics"]}
    assert {"Signal_Generation", "CPU_FractionalDelay"} <= names


def test_invalid_configuration_fails(capsys):
    assert run(parse_args(["--cpu-only", "--no-reports", "--num-beams", "0"])) == 1
    assert "Invalid configuration" in capsys.readouterr().out


def test_missing_input_fails(tmp_path):
    args = parse_args(["--cpu-only", "--no-reports", "--input", str(tmp_path / "none.bin")])
    assert run(args) == 1


def test_config_file(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"duration": 0.002, "num_beams": 2}))
    args = parse_args(["--cpu-only", "--no-reports", "--config", str(config_path)])
    assert run(args) == 0


def test_main_exits_with_status():
    with pytest.raises(SystemExit) as excinfo:
        main(["--cpu-only", "--no-reports", "--sample-rate", "100"])
    assert excinfo.value.code == 1


# ---------------------------------------------------------------------------- #
#  GPU path through a host-memory backend
# ---------------------------------------------------------------------------- #

@pytest.fixture
def patch_backend(monkeypatch, manager):
    """Make the CLI build NumpyBackend instances bound to a private manager."""
    created = []

    def install(**backend_kwargs):
        def fake_create_backend(kind="auto", device_preference="gpu", **_):
            backend = NumpyBackend(manager=manager, **backend_kwargs)
            backend.initialize()
            created.append(backend)
            return backend

        monkeypatch.setattr(gpu_backend, "create_backend", fake_create_backend)
        return created

    return install


def test_gpu_run_validates_and_writes_reports(tmp_path, capsys, patch_backend):
    created = patch_backend()
    report_dir = tmp_path / "reports"
    args = parse_args(["--duration", "0.002", "--num-beams", "4", "--report-dir", str(report_dir)])

    assert run(args) == 0
    out = capsys.readouterr().out
    assert "Using Fake on Fake Device" in out
    assert "Result: PASS" in out
    assert (report_dir / "gpu_profiling.json").exists()
    assert "FractionalDelay_Kernel" in (report_dir / "gpu_profiling.md").read_text()

    (backend,) = created
    assert not backend.is_initialized
    assert backend.live_allocations == 0


def test_gpu_allocation_failure_falls_back_to_cpu(tmp_path, capsys, patch_backend):
    # the 4 x 1000 sample signal needs 32000 bytes
    created = patch_backend(max_allocation=16 * 1024)
    output = tmp_path / "delayed.bin"
    args = parse_args(
        ["--duration", "0.002", "--num-beams", "4", "--no-reports", "--output", str(output)]
    )

    assert run(args) == 0
    out = capsys.readouterr().out
    assert "Continuing with CPU-only validation" in out
    assert "CPU / GPU comparison" not in out
    assert SignalBuffer.load(output).shape == (4, 1000)

    (backend,) = created
    assert backend.live_allocations == 0


def test_gpu_processing_failure_releases_backend(capsys, patch_backend):
    created = patch_backend(fail_on=("kernel",))
    args = parse_args(["--duration", "0.002", "--num-beams", "4", "--no-reports", "--strict"])

    assert run(args) == 0
    assert "GPU processing failed" in capsys.readouterr().out
    assert created[0].live_allocations == 0


def test_steering_delays_beyond_signal_warn(capsys):
    args = parse_args(SMALL_RUN + ["--no-reports", "--delay-mode", "steering"])
    assert run(args) == 0
    # roughly 417 samples per beam: beam 3 needs 1250 of 1000 samples
    assert "Warning: 1 beam delay(s) reach the 1000-sample signal length" in capsys.readouterr().out
