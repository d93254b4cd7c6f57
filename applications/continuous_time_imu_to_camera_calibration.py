"""
Continuous-time IMU-to-camera calibration.

Reads a static target reconstruction (corners and initial camera poses), the
raw IMU telemetry, IMU bias offsets, an initial IMU-to-camera rotation and
time offset, and the spline/weighting parameters. Jointly refines a split
B-spline IMU trajectory together with the camera-to-IMU transform, gravity,
and IMU biases (optionally the time offset and camera intrinsics), then
prints the result and optionally writes it as JSON.

Usage:
    ctcalib-calibrate reconstruction.json telemetry.json imu_bias.json \\
        extrinsic_init.json spline_weighting.json --output result.json
"""

import argparse
import sys
from pathlib import Path

import matplotlib
import numpy as np

matplotlib.use("Agg")
from tqdm import tqdm

from ctcalib.calibration import KNOT_SEEDING_MODES, CalibrationConfig, run_calibration
from ctcalib.eval import (
    plot_corner_residuals,
    plot_cost_history,
    plot_imu_residuals,
    residual_stats,
    save_figure,
)
from ctcalib.io import (
    load_extrinsic_init,
    load_imu_bias,
    load_reconstruction,
    load_spline_weighting,
    load_telemetry,
    write_result,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Continuous-time IMU-to-camera calibration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Calibrate with default settings
  python %(prog)s recon.json telemetry.json bias.json init.json weighting.json

  # Also estimate the time offset and write the result
  python %(prog)s recon.json telemetry.json bias.json init.json weighting.json \\
      --estimate-time-offset --output result.json

  # Rolling-shutter camera, 200 Hz IMU reduced to 100 Hz, residual plots
  python %(prog)s recon.json telemetry.json bias.json init.json weighting.json \\
      --rolling-shutter 0.03 --imu-subsample 2 --plot figs/

Knot seeding modes: """ + ", ".join(KNOT_SEEDING_MODES),
    )

    inputs = parser.add_argument_group("Inputs")
    inputs.add_argument("reconstruction", type=str, help="Target reconstruction JSON")
    inputs.add_argument("telemetry", type=str, help="IMU telemetry JSON")
    inputs.add_argument("imu_bias", type=str, help="IMU bias offsets JSON")
    inputs.add_argument("extrinsic_init", type=str, help="Initial IMU-to-camera rotation and time offset JSON")
    inputs.add_argument("spline_weighting", type=str, help="Knot spacing and residual weights JSON")

    solver = parser.add_argument_group("Solver")
    solver.add_argument("--max-iterations", type=int, default=50, help="LM iteration cap (default: 50)")
    solver.add_argument("--order", type=int, default=5, help="Spline order (default: 5)")
    solver.add_argument(
        "--knot-seeding",
        type=str,
        choices=KNOT_SEEDING_MODES,
        default="first_pose",
        help="Initial knot values (default: first_pose)",
    )

    data = parser.add_argument_group("Data Selection")
    data.add_argument("--imu-subsample", type=int, default=1, help="Use every n-th IMU sample (default: 1)")
    data.add_argument("--max-duration", type=float, default=None, help="Process at most this many seconds")
    data.add_argument(
        "--rolling-shutter",
        type=float,
        default=0.0,
        help="Rolling-shutter readout time in seconds (default: 0, global shutter)",
    )

    estimate = parser.add_argument_group("Estimated Quantities")
    estimate.add_argument("--estimate-time-offset", action="store_true", help="Refine the IMU-to-camera time offset")
    estimate.add_argument(
        "--max-time-offset",
        type=float,
        default=0.05,
        help="Expected bound on the time offset change in seconds (default: 0.05)",
    )
    estimate.add_argument("--estimate-intrinsics", action="store_true", help="Refine the camera intrinsics")
    estimate.add_argument("--fix-translation", action="store_true", help="Keep the camera-to-IMU translation fixed")

    output = parser.add_argument_group("Output")
    output.add_argument("--output", type=str, default=None, help="Write the result JSON to this path")
    output.add_argument("--plot", type=str, default=None, help="Save residual figures to this directory")
    output.add_argument("--quiet", action="store_true", help="Disable progress bars")
    return parser


def main(argv=None) -> int:
    """Main entry point with CLI argument parsing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    print("=" * 70)
    print("Continuous-Time IMU-to-Camera Calibration")
    print("=" * 70)

    print("\nLoading inputs...")
    reconstruction = load_reconstruction(args.reconstruction)
    telemetry = load_telemetry(args.telemetry)
    bias = load_imu_bias(args.imu_bias)
    q_imu_to_camera, time_offset_s = load_extrinsic_init(args.extrinsic_init)
    weighting = load_spline_weighting(args.spline_weighting)
    print(f"  Frames        : {len(reconstruction.corners)} ({len(reconstruction.poses)} with poses)")
    print(f"  Target points : {len(reconstruction.target_points)}")
    print(f"  Accelerometer : {len(telemetry.accelerometer)} samples")
    print(f"  Gyroscope     : {len(telemetry.gyroscope)} samples")

    try:
        config = CalibrationConfig.from_weighting(
            weighting,
            order=args.order,
            max_iterations=args.max_iterations,
            imu_subsample=args.imu_subsample,
            max_duration_s=args.max_duration,
            rolling_shutter_readout_s=args.rolling_shutter,
            knot_seeding=args.knot_seeding,
            estimate_time_offset=args.estimate_time_offset,
            max_time_offset_s=args.max_time_offset,
            estimate_intrinsics=args.estimate_intrinsics,
            fix_extrinsic_translation=args.fix_translation,
        )
    except ValueError as exc:
        parser.error(str(exc))

    print("\nConfiguration:")
    print(f"  Knot spacing  : SO3 {config.dt_so3_s:.3f} s, R3 {config.dt_r3_s:.3f} s, order {config.order}")
    print(f"  Weights       : gyro {config.gyro_weight:.3g}, accel {config.accel_weight:.3g}, "
          f"corner {config.corner_weight:.3g}")
    print(f"  Time offset   : {time_offset_s * 1e3:.3f} ms "
          f"({'estimated' if config.estimate_time_offset else 'fixed'})")

    with tqdm(desc="Optimizing", unit="iter", disable=args.quiet) as bar:

        def on_iteration(iteration: int, cost: float, mu: float) -> None:
            bar.update(1)
            bar.set_postfix(cost=f"{cost:.4e}", mu=f"{mu:.1e}")

        result, problem = run_calibration(
            reconstruction,
            telemetry,
            bias,
            q_imu_to_camera,
            time_offset_s,
            config,
            progress=not args.quiet,
            callback=on_iteration,
        )

    state = result.state
    counters = result.counters
    print("\n" + "=" * 70)
    print("Calibration Result")
    print("=" * 70)
    print(f"  {result.summary.report()}")
    print(f"  Frames / corners : {counters['num_frames']} / {counters['num_corners']}")
    print(f"  Gyro / accel     : {counters['num_gyro']} / {counters['num_accel']}")
    print(f"  Knots SO3 / R3   : {counters['num_knots_so3']} / {counters['num_knots_r3']}")
    print(f"  Duration         : {counters['duration_s']:.2f} s")
    print(f"  q_i_c [w,x,y,z]  : {state.q_i_c}")
    print(f"  t_i_c (m)        : {state.t_i_c}")
    print(f"  Gravity (m/s²)   : {state.gravity} (|g| = {np.linalg.norm(state.gravity):.4f})")
    print(f"  Accel bias       : {state.accel_bias}")
    print(f"  Gyro bias        : {state.gyro_bias}")
    print(f"  Time offset      : {state.time_offset_s * 1e3:.3f} ms")
    print(f"  Mean reprojection: {result.mean_reprojection_error:.4f} px")

    if args.output:
        path = write_result(result, args.output)
        print(f"\nSaved result: {path}")

    if args.plot:
        residuals = problem.residuals()
        for name, stats in residual_stats(residuals).items():
            print(f"  {name:<8} rmse {stats['rmse']:.4g}, p95 {stats['p95']:.4g}, max {stats['max']:.4g}")
        out_dir = Path(args.plot)
        for name, fig in (
            ("corner_residuals", plot_corner_residuals(residuals["corners"])),
            ("imu_residuals", plot_imu_residuals(residuals)),
            ("cost_history", plot_cost_history(result.summary)),
        ):
            for path in save_figure(fig, out_dir, name):
                print(f"Saved figure: {path}")

    print("")
    return 0


if __name__ == "__main__":
    sys.exit(main())
