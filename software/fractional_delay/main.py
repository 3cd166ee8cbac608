"""
Fractional Delay - Main Entry Point

Command-line driver for the CPU/GPU fractional-delay validation run: it
generates (or loads) a multi-beam LFM signal, delays every beam on the CPU
reference path and on a GPU backend, compares the two and writes profiling
reports.

Default run (generated signal, auto-selected backend):
    python -m fractional_delay.main

OpenCL on the CPU device, loading a saved signal:
    python -m fractional_delay.main --backend opencl --device cpu --input signal.bin

Usage:
    python -m fractional_delay.main --help
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

import numpy as np


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="fractional_delay",
        description=(
            "Multi-beam fractional delay - CPU / GPU validation\n\n"
            "Delays every beam of an LFM test signal with 5-point Lagrange\n"
            "interpolation on the CPU and on a GPU backend, then compares them."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # -- Signal --
    signal_group = parser.add_argument_group("Signal")
    signal_group.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to a run configuration JSON file. Command-line values are ignored if given.",
    )
    signal_group.add_argument("--f-start", type=float, default=100.0, help="LFM start frequency in Hz (default: 100).")
    signal_group.add_argument("--f-stop", type=float, default=500.0, help="LFM stop frequency in Hz (default: 500).")
    signal_group.add_argument(
        "--sample-rate", type=float, default=500_000.0, help="Sample rate in Hz (default: 500000)."
    )
    signal_group.add_argument(
        "--duration", type=float, default=0.01, help="Signal duration in seconds (default: 0.01)."
    )
    signal_group.add_argument("--num-beams", type=int, default=32, help="Number of beams (default: 32).")
    signal_group.add_argument(
        "--steering-angle", type=float, default=30.0, help="Steering angle in degrees (default: 30)."
    )
    signal_group.add_argument(
        "--variant",
        type=str,
        default="basic",
        choices=["basic", "phase_offset", "delay", "beamforming", "windowed"],
        help="LFM signal variant to generate (default: basic).",
    )

    # -- Input / Output --
    io_group = parser.add_argument_group("Input / Output")
    io_group.add_argument(
        "--input", "-i",
        type=str,
        default=None,
        help="Load the input signal from a binary .bin or HDF5 .h5 file instead of generating it.",
    )
    io_group.add_argument(
        "--lagrange",
        type=str,
        default=None,
        help="Lagrange coefficient JSON file (48 x 5). Uses the analytic table if not specified.",
    )
    io_group.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Save the GPU (or CPU, if no GPU ran) delayed signal to a .bin or .h5 file.",
    )
    io_group.add_argument(
        "--report-dir",
        type=str,
        default="Results/Profiler",
        help="Directory for JSON / Markdown profiling reports (default: Results/Profiler).",
    )
    io_group.add_argument(
        "--no-reports",
        action="store_true",
        default=False,
        help="Skip writing profiling reports.",
    )

    # -- Processing --
    proc_group = parser.add_argument_group("Processing")
    proc_group.add_argument(
        "--backend",
        type=str,
        default="auto",
        choices=["auto", "opencl", "cuda"],
        help="GPU backend (default: auto, OpenCL first then CUDA).",
    )
    proc_group.add_argument(
        "--device",
        type=str,
        default="gpu",
        help="Device class or CUDA index to open: gpu, cpu, all, 0, 1, ... (default: gpu).",
    )
    proc_group.add_argument(
        "--delay-mode",
        type=str,
        default="linear",
        choices=["linear", "steering"],
        help=(
            "Per-beam delays: linear step or plane-wave steering (default: linear). "
            "Steering uses half-wavelength spacing at the LFM centre frequency, about "
            "417 samples per beam with the default signal, so later beams can exceed "
            "the signal length."
        ),
    )
    proc_group.add_argument(
        "--delay-step",
        type=float,
        default=0.125,
        help="Delay increment between beams in samples for linear mode (default: 0.125).",
    )
    proc_group.add_argument(
        "--tolerance",
        type=float,
        default=1e-5,
        help="Maximum allowed CPU/GPU difference magnitude (default: 1e-5).",
    )
    proc_group.add_argument(
        "--cpu-only",
        action="store_true",
        default=False,
        help="Run only the CPU reference path.",
    )
    proc_group.add_argument(
        "--strict",
        action="store_true",
        default=False,
        help="Exit with status 1 if the GPU result exceeds the tolerance.",
    )

    # -- Display --
    display_group = parser.add_argument_group("Display")
    display_group.add_argument(
        "--show",
        action="store_true",
        default=False,
        help="Plot the last beam before and after the delay using matplotlib.",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Enable verbose output.",
    )

    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    """Run the CPU / GPU validation pipeline.

    Steps:
        1. Build the run configuration
        2. Generate or load the input signal
        3. Load the Lagrange coefficient table
        4. Compute per-beam delays
        5. CPU reference delay
        6. GPU delay
        7. Compare CPU and GPU results
        8. Save results and reports

    Args:
        args: Parsed command-line arguments.

    Returns:
        Process exit status.
    """
    from fractional_delay.delay_config import DelayConfig
    from fractional_delay.fractional_delay_cpu import fractional_delay_cpu
    from fractional_delay.lagrange_matrix import LagrangeMatrix
    from fractional_delay.profiling import ProfilingEngine
    from fractional_delay.result_comparator import Validator
    from fractional_delay.signal_buffer import SignalBuffer
    from fractional_delay.signal_generator import (
        LFMSignalGenerator,
        LFMVariant,
        linear_delays,
        steering_delays,
    )

    profiler = ProfilingEngine()

    # ---------------------------------------------------------------- #
    # Step 1: Configuration
    # ---------------------------------------------------------------- #
    try:
        if args.config is not None:
            config = DelayConfig.from_file(args.config)
            print(f"Loaded config from: {args.config}")
        else:
            config = DelayConfig(
                f_start=args.f_start,
                f_stop=args.f_stop,
                sample_rate=args.sample_rate,
                duration=args.duration,
                num_beams=args.num_beams,
                steering_angle=args.steering_angle,
                tolerance=args.tolerance,
                delay_step=args.delay_step,
            )
    except (ValueError, FileNotFoundError) as exc:
        print(f"Error: Invalid configuration: {exc}")
        return 1

    if args.verbose:
        print(config.summary())

    # ---------------------------------------------------------------- #
    # Step 2: Input signal
    # ---------------------------------------------------------------- #
    if args.input is not None:
        input_path = Path(args.input)
        try:
            if input_path.suffix in (".h5", ".hdf5"):
                print(f"Loading HDF5 signal: {input_path}")
                signal = SignalBuffer.load_hdf5(input_path)
            elif input_path.suffix == ".bin":
                print(f"Loading binary signal: {input_path}")
                signal = SignalBuffer.load(input_path)
            else:
                print(f"Error: Unsupported input format: {input_path.suffix}")
                return 1
        except (ValueError, FileNotFoundError, ImportError) as exc:
            print(f"Error: Could not load {input_path}: {exc}")
            return 1
    else:
        print(f"\n--- Generating LFM signal ({args.variant}) ---")
        generator = LFMSignalGenerator(config)
        with profiler.timer("Signal_Generation"):
            signal = generator.generate(LFMVariant(args.variant))
        stats = generator.statistics
        print(f"  Generated in {stats.generation_time_ms:.1f} ms, "
              f"peak {stats.peak_amplitude:.3f}, RMS {stats.rms:.3f}")

    print(f"Signal: {signal.num_beams} beams x {signal.num_samples} samples "
          f"({signal.memory_size_bytes / 1e6:.2f} MB)")

    # ---------------------------------------------------------------- #
    # Step 3: Lagrange coefficients
    # ---------------------------------------------------------------- #
    try:
        if args.lagrange is not None:
            matrix = LagrangeMatrix.from_json(args.lagrange)
            print(f"Loaded Lagrange matrix from: {args.lagrange}")
        else:
            matrix = LagrangeMatrix.default()
    except (ValueError, FileNotFoundError) as exc:
        print(f"Error: {exc}")
        return 1

    # ---------------------------------------------------------------- #
    # Step 4: Per-beam delays
    # ---------------------------------------------------------------- #
    if args.delay_mode == "steering":
        delays = steering_delays(
            signal.num_beams, config.steering_angle, config.element_spacing, config.sample_rate
        )
    else:
        delays = linear_delays(signal.num_beams, config.delay_step)
    print(f"Delays: {delays[0]:.3f} .. {delays[-1]:.3f} samples")

    too_long = int(np.count_nonzero(np.abs(delays) >= signal.num_samples))
    if too_long:
        print(f"Warning: {too_long} beam delay(s) reach the {signal.num_samples}-sample "
              f"signal length; those beams hold only edge reflections or zeros.")

    # ---------------------------------------------------------------- #
    # Step 5: CPU reference
    # ---------------------------------------------------------------- #
    print("\n--- CPU fractional delay ---")
    cpu_result = signal.copy()
    t0 = time.time()
    with profiler.timer("CPU_FractionalDelay"):
        fractional_delay_cpu(cpu_result, delays, matrix)
    print(f"CPU fractional delay: {time.time() - t0:.3f} s")

    # ---------------------------------------------------------------- #
    # Step 6: GPU
    # ---------------------------------------------------------------- #
    gpu_result = None
    gpu_processor = None
    if not args.cpu_only:
        print("\n--- GPU fractional delay ---")
        from fractional_delay.fractional_delay_gpu import FractionalDelayGPU
        from fractional_delay.gpu_backend import BackendError, available_backends, create_backend

        installed = available_backends()
        if args.verbose:
            print(f"Installed GPU libraries: {', '.join(installed) or 'none'}")

        backend = None
        try:
            backend = create_backend(args.backend, device_preference=args.device)
            print(f"Using {backend.backend_name} on {backend.device_name} "
                  f"({backend.device_memory_size / (1024 * 1024):.0f} MB)")
            gpu_processor = FractionalDelayGPU(backend, matrix, profiler)

            gpu_result = SignalBuffer()
            if gpu_processor.process(signal, delays, output=gpu_result):
                print(f"GPU device time: {gpu_processor.last_profiling.total_gpu_time_ms:.3f} ms")
            else:
                print("Error: GPU processing failed. Continuing with CPU-only validation.")
                gpu_result = None
        except BackendError as exc:
            print(f"GPU unavailable ({exc}). Continuing with CPU-only validation.")
            gpu_result = None
        finally:
            if backend is not None:
                backend.cleanup()

    # ---------------------------------------------------------------- #
    # Step 7: Compare
    # ---------------------------------------------------------------- #
    passed = True
    if gpu_result is not None:
        print("\n--- CPU / GPU comparison ---")
        validator = Validator(verbose=args.verbose)
        passed, metrics = validator.validate(cpu_result, gpu_result, config.tolerance)
        print(metrics.summary())
        print(f"Result: {'PASS' if passed else 'FAIL'} (tolerance {config.tolerance:g})")

    # ---------------------------------------------------------------- #
    # Step 8: Save results and reports
    # ---------------------------------------------------------------- #
    final = gpu_result if gpu_result is not None else cpu_result
    if args.output is not None:
        output_path = Path(args.output)
        print(f"\nSaving delayed signal to: {output_path}")
        try:
            if output_path.suffix in (".h5", ".hdf5"):
                final.save_hdf5(output_path, metadata={
                    "processing_date": time.strftime("%Y-%m-%d %H:%M:%S"),
                    "delay_mode": args.delay_mode,
                    "source": "gpu" if gpu_result is not None else "cpu",
                })
            else:
                final.save(output_path)
        except ImportError as exc:
            print(f"Error: {exc}")
            return 1

    if not args.no_reports:
        from fractional_delay.reporting import (
            save_gpu_profiling_json,
            save_gpu_profiling_markdown,
            save_profiling_json,
        )

        report_dir = Path(args.report_dir)
        written = [save_profiling_json(profiler, report_dir / "profiling.json")]
        if gpu_processor is not None and gpu_result is not None:
            signal_params = {
                "Beams": signal.num_beams,
                "Samples per beam": signal.num_samples,
                "Sample rate": f"{config.sample_rate:g} Hz",
                "LFM sweep": f"{config.f_start:g} - {config.f_stop:g} Hz",
                "Delay mode": args.delay_mode,
            }
            written.append(save_gpu_profiling_json(
                gpu_processor.last_profiling, report_dir / "gpu_profiling.json"
            ))
            written.append(save_gpu_profiling_markdown(
                gpu_processor.last_profiling, report_dir / "gpu_profiling.md", signal_params
            ))
        for path in written:
            print(f"Report written: {path}")

    if args.verbose:
        print()
        print(profiler.format_report())

    # ---------------------------------------------------------------- #
    # Step 9: Display
    # ---------------------------------------------------------------- #
    if args.show:
        display_beams(signal, cpu_result, gpu_result, config.sample_rate)

    if args.strict and not passed:
        return 1
    return 0


def display_beams(signal, cpu_result, gpu_result, sample_rate: float) -> None:
    """Plot the real part of the last beam before and after the delay.

    Args:
        signal: Input SignalBuffer.
        cpu_result: CPU-delayed SignalBuffer.
        gpu_result: GPU-delayed SignalBuffer, or None.
        sample_rate: Sample rate in Hz, for the time axis.
    """
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        print("matplotlib is required for display. Install with: pip install matplotlib")
        return

    beam = signal.num_beams - 1
    t_ms = np.arange(signal.num_samples) / sample_rate * 1e3
    fig, (ax_sig, ax_diff) = plt.subplots(2, 1, figsize=(10, 7), sharex=True)

    ax_sig.plot(t_ms, signal.beam(beam).real, label="input", linewidth=0.8)
    ax_sig.plot(t_ms, cpu_result.beam(beam).real, label="CPU delayed", linewidth=0.8)
    if gpu_result is not None:
        ax_sig.plot(t_ms, gpu_result.beam(beam).real, "--", label="GPU delayed", linewidth=0.8)
        ax_diff.plot(t_ms, np.abs(gpu_result.beam(beam) - cpu_result.beam(beam)))
    ax_sig.set_ylabel("Real part")
    ax_sig.set_title(f"Beam {beam}")
    ax_sig.legend(loc="upper right")
    ax_sig.grid(True, alpha=0.3)

    ax_diff.set_xlabel("Time (ms)")
    ax_diff.set_ylabel("|GPU - CPU|")
    ax_diff.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.show()


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(run(args))


if __name__ == "__main__":
    main()
