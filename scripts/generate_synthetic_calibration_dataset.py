"""Generate a synthetic camera-IMU calibration dataset.

Creates a complete input file set for the calibration application with:
    - A planar chessboard observed by a moving camera (noisy corners)
    - Noisy initial per-frame camera poses
    - Accelerometer and gyroscope streams with constant biases and white noise
    - A perturbed initial IMU-to-camera rotation
    - Ground truth for evaluating the calibration

Saves to: data/sim/camera_imu_calibration/
"""

import argparse
import json
from pathlib import Path

import numpy as np

from ctcalib.calibration.types import SplineWeighting
from ctcalib.io import (
    write_extrinsic_init,
    write_imu_bias,
    write_reconstruction,
    write_spline_weighting,
    write_telemetry,
)
from ctcalib.sim import SyntheticRigConfig, generate_synthetic_dataset


# ============================================================================
# PRESET CONFIGURATIONS
# ============================================================================

PRESETS = {
    'baseline': {
        'description': 'Global-shutter camera, 6 s of moderate motion, nominal noise',
        'duration': 6.0,
        'pixel_noise': 0.5,
        'accel_noise': 0.02,
        'gyro_noise': 0.001,
        'time_offset': 0.0,
        'rolling_shutter': 0.0,
    },
    'rolling_shutter': {
        'description': 'Rolling-shutter camera with a 30 ms readout',
        'duration': 6.0,
        'pixel_noise': 0.5,
        'accel_noise': 0.02,
        'gyro_noise': 0.001,
        'time_offset': 0.0,
        'rolling_shutter': 0.03,
    },
    'time_offset': {
        'description': 'IMU clock lagging the camera clock by 8 ms',
        'duration': 8.0,
        'pixel_noise': 0.5,
        'accel_noise': 0.02,
        'gyro_noise': 0.001,
        'time_offset': 0.008,
        'rolling_shutter': 0.0,
    },
    'noisy': {
        'description': 'Low-cost sensors: 1 px corners, 5x IMU noise',
        'duration': 10.0,
        'pixel_noise': 1.0,
        'accel_noise': 0.1,
        'gyro_noise': 0.005,
        'time_offset': 0.0,
        'rolling_shutter': 0.0,
    },
}


# ============================================================================
# DATA GENERATION FUNCTIONS
# ============================================================================

def generate_dataset(
    output_dir: str = "data/sim/camera_imu_calibration",
    seed: int = 42,
    duration: float = 6.0,
    camera_rate: float = 30.0,
    imu_rate: float = 200.0,
    knot_dt: float = 0.1,
    pixel_noise: float = 0.5,
    accel_noise: float = 0.02,
    gyro_noise: float = 0.001,
    time_offset: float = 0.0,
    rolling_shutter: float = 0.0,
    extrinsic_error_deg: float = 2.0,
) -> None:
    """Generate and save a synthetic calibration dataset.

    Args:
        output_dir: Output directory path.
        seed: Random seed for reproducibility.
        duration: Recording duration (seconds).
        camera_rate: Frame rate (Hz).
        imu_rate: IMU sample rate (Hz).
        knot_dt: Knot spacing of the ground-truth trajectory (seconds).
        pixel_noise: Corner noise std (px).
        accel_noise: Accelerometer noise std (m/s²).
        gyro_noise: Gyroscope noise std (rad/s).
        time_offset: True offset added to IMU timestamps (seconds).
        rolling_shutter: Readout time (seconds), 0 for a global shutter.
        extrinsic_error_deg: Rotation error of the initial extrinsic (deg).
    """
    rng = np.random.default_rng(seed)

    print(f"\n{'='*70}")
    print("Generating Synthetic Camera-IMU Calibration Dataset")
    print(f"{'='*70}")

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    # 1. Simulate the rig
    print("\n1. Simulating camera and IMU...")
    print(f"   Duration: {duration} s")
    print(f"   Camera: {camera_rate} Hz, IMU: {imu_rate} Hz")

    config = SyntheticRigConfig(
        duration_s=duration,
        camera_rate_hz=camera_rate,
        imu_rate_hz=imu_rate,
        dt_knot_s=knot_dt,
        pixel_noise_std=pixel_noise,
        accel_noise_std=accel_noise,
        gyro_noise_std=gyro_noise,
        time_offset_s=time_offset,
        rolling_shutter_readout_s=rolling_shutter,
        extrinsic_init_error_deg=extrinsic_error_deg,
    )
    dataset = generate_synthetic_dataset(config, rng)
    recon = dataset.reconstruction
    n_corners = sum(len(c) for c in recon.corners.values())
    print(f"   Generated {len(recon.corners)} frames, {n_corners} corners")
    print(f"   Generated {len(dataset.telemetry.accelerometer)} IMU samples")

    # 2. Save calibration inputs
    print("\n2. Saving calibration inputs...")
    write_reconstruction(recon, output_path / "reconstruction.json")
    write_telemetry(dataset.telemetry, output_path / "telemetry.json")
    write_imu_bias(dataset.bias, output_path / "imu_bias.json")
    # The calibration starts from the nominal offset; the true one is in truth.json
    write_extrinsic_init(dataset.q_imu_to_camera, 0.0, output_path / "extrinsic_init.json")
    write_spline_weighting(
        SplineWeighting(
            dt_so3=knot_dt,
            dt_r3=knot_dt,
            var_so3=1.0 / gyro_noise**2,
            var_r3=1.0 / accel_noise**2,
            var_corner=1.0 / pixel_noise**2,
        ),
        output_path / "spline_weighting.json",
    )
    for name in ("reconstruction", "telemetry", "imu_bias", "extrinsic_init", "spline_weighting"):
        print(f"   Saved: {name}.json")

    # 3. Save ground truth and configuration
    print("\n3. Saving ground truth...")
    truth = {
        "dataset_info": {
            "description": "Synthetic camera-IMU calibration recording",
            "seed": seed,
            "duration_sec": duration,
            "num_frames": len(recon.corners),
            "num_imu_samples": len(dataset.telemetry.accelerometer),
        },
        "truth": dataset.truth.to_dict(),
        "sensor": {
            "camera_rate_hz": camera_rate,
            "imu_rate_hz": imu_rate,
            "pixel_noise_std": pixel_noise,
            "accel_noise_std": accel_noise,
            "gyro_noise_std": gyro_noise,
            "rolling_shutter_readout_s": rolling_shutter,
        },
        "coordinate_frame": {
            "description": "Target frame: board plane z = 0, gravity along +y",
            "units": "meters, seconds",
        },
    }
    with open(output_path / "truth.json", "w") as f:
        json.dump(truth, f, indent=2)
    print("   Saved: truth.json")

    # Summary
    print(f"\n{'='*70}")
    print("Dataset generation complete!")
    print(f"{'='*70}")
    print(f"Output directory: {output_path.absolute()}")
    print("\nRun the calibration with:")
    print(f"  ctcalib-calibrate {output_path}/reconstruction.json {output_path}/telemetry.json \\")
    print(f"      {output_path}/imu_bias.json {output_path}/extrinsic_init.json \\")
    print(f"      {output_path}/spline_weighting.json --knot-seeding frame_poses"
          + (" --estimate-time-offset" if time_offset else "")
          + (f" --rolling-shutter {rolling_shutter}" if rolling_shutter else ""))
    print("\n")


# ============================================================================
# COMMAND-LINE INTERFACE
# ============================================================================

def main():
    """Main entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="Generate a synthetic camera-IMU calibration dataset",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate with default parameters
  python %(prog)s

  # Use a preset configuration
  python %(prog)s --preset rolling_shutter

  # Custom parameters
  python %(prog)s --duration 10 --pixel-noise 1.0 --time-offset 0.005

Available presets: """ + ", ".join(PRESETS.keys())
    )

    parser.add_argument(
        '--preset',
        type=str,
        choices=PRESETS.keys(),
        help='Use preset configuration (overrides individual parameters)'
    )
    parser.add_argument(
        '--output',
        type=str,
        default='data/sim/camera_imu_calibration',
        help='Output directory (default: data/sim/camera_imu_calibration)'
    )
    parser.add_argument(
        '--seed',
        type=int,
        default=42,
        help='Random seed for reproducibility (default: 42)'
    )

    traj_group = parser.add_argument_group('Trajectory Parameters')
    traj_group.add_argument('--duration', type=float, default=6.0,
                            help='Recording duration in seconds (default: 6.0)')
    traj_group.add_argument('--knot-dt', type=float, default=0.1,
                            help='Ground-truth knot spacing in seconds (default: 0.1)')

    sensor_group = parser.add_argument_group('Sensor Parameters')
    sensor_group.add_argument('--camera-rate', type=float, default=30.0,
                              help='Camera frame rate in Hz (default: 30.0)')
    sensor_group.add_argument('--imu-rate', type=float, default=200.0,
                              help='IMU sample rate in Hz (default: 200.0)')
    sensor_group.add_argument('--pixel-noise', type=float, default=0.5,
                              help='Corner noise std in px (default: 0.5)')
    sensor_group.add_argument('--accel-noise', type=float, default=0.02,
                              help='Accelerometer noise std in m/s² (default: 0.02)')
    sensor_group.add_argument('--gyro-noise', type=float, default=0.001,
                              help='Gyroscope noise std in rad/s (default: 0.001)')
    sensor_group.add_argument('--time-offset', type=float, default=0.0,
                              help='True IMU-to-camera time offset in seconds (default: 0.0)')
    sensor_group.add_argument('--rolling-shutter', type=float, default=0.0,
                              help='Readout time in seconds, 0 for global shutter (default: 0.0)')
    sensor_group.add_argument('--extrinsic-error-deg', type=float, default=2.0,
                              help='Rotation error of the initial extrinsic in degrees (default: 2.0)')

    args = parser.parse_args()

    if args.preset:
        preset_config = PRESETS[args.preset]
        print(f"\nUsing preset: '{args.preset}'")
        print(f"Description: {preset_config['description']}")
        for key, value in preset_config.items():
            if key != 'description':
                setattr(args, key, value)

    if args.duration <= 0:
        parser.error("Duration must be positive")
    if min(args.pixel_noise, args.accel_noise, args.gyro_noise) <= 0:
        parser.error("Noise levels must be positive (they define the residual weights)")

    generate_dataset(
        output_dir=args.output,
        seed=args.seed,
        duration=args.duration,
        camera_rate=args.camera_rate,
        imu_rate=args.imu_rate,
        knot_dt=args.knot_dt,
        pixel_noise=args.pixel_noise,
        accel_noise=args.accel_noise,
        gyro_noise=args.gyro_noise,
        time_offset=args.time_offset,
        rolling_shutter=args.rolling_shutter,
        extrinsic_error_deg=args.extrinsic_error_deg,
    )


if __name__ == "__main__":
    main()
