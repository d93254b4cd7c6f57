"""
Visualization utilities for camera-IMU calibration.

All functions return matplotlib Figure objects for flexible display/saving.
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np

from ctcalib.estimators.factor_graph import SolverSummary


def plot_corner_residuals(
    residuals: np.ndarray,
    title: str = "Corner Reprojection Residuals",
) -> plt.Figure:
    """
    Scatter plot and histogram of corner residuals.

    Args:
        residuals: Pixel residuals, shape (M, 2)
        title: Plot title

    Returns:
        fig: Matplotlib figure
    """
    residuals = np.asarray(residuals, dtype=np.float64).reshape(-1, 2)
    fig, (ax_scatter, ax_hist) = plt.subplots(1, 2, figsize=(12, 5))

    ax_scatter.scatter(residuals[:, 0], residuals[:, 1], s=4, alpha=0.4, color="blue")
    ax_scatter.set_xlabel("u residual (px)", fontsize=11)
    ax_scatter.set_ylabel("v residual (px)", fontsize=11)
    ax_scatter.set_aspect("equal", adjustable="datalim")
    ax_scatter.grid(True, alpha=0.3)

    ax_hist.hist(np.linalg.norm(residuals, axis=1), bins=40, color="blue", alpha=0.6, edgecolor="black")
    ax_hist.set_xlabel("Reprojection error (px)", fontsize=11)
    ax_hist.set_ylabel("Count", fontsize=11)
    ax_hist.grid(True, alpha=0.3, axis="y")

    fig.suptitle(title, fontsize=14, fontweight="bold")
    plt.tight_layout()
    return fig


def plot_imu_residuals(
    residuals: Dict[str, np.ndarray],
    title: str = "Inertial Residuals",
) -> plt.Figure:
    """
    Gyroscope and accelerometer residuals over time.

    Args:
        residuals: Output of CalibrationProblem.residuals()
        title: Plot title

    Returns:
        fig: Matplotlib figure
    """
    fig, axes = plt.subplots(2, 1, figsize=(12, 8), sharex=True)
    colors = ["red", "green", "blue"]
    units = {"gyro": "rad/s", "accel": "m/s²"}

    t_ref = None
    for name in ("gyro", "accel"):
        t_ns = residuals.get(f"{name}_t_ns")
        if t_ns is not None and len(t_ns):
            t_ref = t_ns[0] if t_ref is None else min(t_ref, t_ns[0])

    for ax, name in zip(axes, ("gyro", "accel")):
        r = residuals.get(name, np.zeros((0, 3)))
        t_ns = residuals.get(f"{name}_t_ns", np.zeros(0, dtype=np.int64))
        t = (np.asarray(t_ns) - (t_ref or 0)) * 1e-9
        for axis, color in enumerate(colors):
            ax.plot(t, r[:, axis], color=color, linewidth=0.8, label="xyz"[axis])
        ax.set_ylabel(f"{name} residual ({units[name]})", fontsize=11)
        ax.legend(fontsize=9, loc="upper right")
        ax.grid(True, alpha=0.3)
        ax.axhline(y=0, color="k", linestyle="--", linewidth=0.8, alpha=0.5)

    axes[-1].set_xlabel("Time (s)", fontsize=11)
    fig.suptitle(title, fontsize=14, fontweight="bold")
    plt.tight_layout()
    return fig


def plot_cost_history(summary: SolverSummary, title: Optional[str] = None) -> plt.Figure:
    """Solver cost per accepted iteration (log scale)."""
    fig, ax = plt.subplots(figsize=(8, 5))
    history = np.asarray(summary.cost_history, dtype=np.float64)
    ax.semilogy(np.arange(len(history)), np.maximum(history, np.finfo(float).tiny), "o-", color="blue")
    ax.set_xlabel("Iteration", fontsize=11)
    ax.set_ylabel("Cost", fontsize=11)
    ax.set_title(title or f"Cost History ({summary.termination_reason})", fontsize=13, fontweight="bold")
    ax.grid(True, alpha=0.3, which="both")
    plt.tight_layout()
    return fig


def save_figure(
    fig: plt.Figure,
    out_dir: Union[str, Path],
    name: str,
    formats: Tuple[str, ...] = ("png",),
) -> List[Path]:
    """
    Save figure in multiple formats.

    Args:
        fig: Matplotlib figure to save
        out_dir: Output directory
        name: Base filename (without extension)
        formats: Tuple of format extensions

    Returns:
        paths: List of saved file paths
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for fmt in formats:
        filepath = out_dir / f"{name}.{fmt}"
        fig.savefig(filepath, dpi=150, bbox_inches="tight")
        paths.append(filepath)
    return paths
