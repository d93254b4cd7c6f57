"""
Evaluation and Visualization Module.

Modules:
    metrics: Residual statistics and errors against ground truth
    plots: Residual and convergence figures
"""

from .metrics import (
    compare_calibration,
    compute_error_stats,
    compute_rmse,
    residual_stats,
    rotation_error_deg,
)
from .plots import (
    plot_corner_residuals,
    plot_cost_history,
    plot_imu_residuals,
    save_figure,
)

__all__ = [
    # Metrics
    "compare_calibration",
    "compute_error_stats",
    "compute_rmse",
    "residual_stats",
    "rotation_error_deg",
    # Plots
    "plot_corner_residuals",
    "plot_cost_history",
    "plot_imu_residuals",
    "save_figure",
]
