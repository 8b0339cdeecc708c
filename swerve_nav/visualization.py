"""
Visualization utilities for recorded swerve runs.

This module loads the CSV files written by DataCollector and plots:
- The field view: true path, pose estimate, vision observations, planned
  trajectory and fiducial tags
- Localization error over time, with vision corrections applied
- Commanded versus measured chassis velocity
"""

import csv
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.axes import Axes
from matplotlib.colors import LinearSegmentedColormap
from matplotlib.figure import Figure
from matplotlib.patches import Rectangle

from .vision import FieldLayout

# Plot colors
COLOR_ORANGE = "#f74823"
COLOR_BLUE = "#2374f7"
COLOR_CREAM = "#fffdee"
COLOR_TAUPE = "#686a5f"
COLOR_YELLOW_ORANGE = "#ffa726"
COLOR_DARK_BLUE = "#0d1b2a"

TIME_CMAP = LinearSegmentedColormap.from_list("swerve_time", [COLOR_ORANGE, COLOR_BLUE])
"""Colormap transitioning from orange (start) to blue (end)."""


def load_csv_to_dict(csv_path: Path) -> Dict[str, np.ndarray]:
    """Load CSV file into dictionary of numpy arrays.

    Automatically converts numeric values to floats. Non-numeric values
    become NaN.

    Args:
        csv_path: Path to CSV file.

    Returns:
        Dictionary mapping column names to numpy arrays.

    Raises:
        FileNotFoundError: If the CSV file does not exist.

    Example:
        >>> data = load_csv_to_dict(Path("state_data.csv"))
        >>> print(data['x_est'].shape)
        (500,)
    """
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    with open(csv_path, newline="") as f:
        reader = csv.DictReader(f)
        data: Dict[str, List[float]] = {key: [] for key in reader.fieldnames or []}
        for row in reader:
            for key, value in row.items():
                try:
                    data[key].append(float(value))
                except (ValueError, TypeError):
                    # Non-numeric or empty values become NaN
                    data[key].append(np.nan)

    # Convert lists to numpy arrays
    return {key: np.array(values) for key, values in data.items()}


def load_run_data(run_dir: Path) -> Dict[str, Dict[str, np.ndarray]]:
    """Load all CSV data from a run directory.

    Missing files are skipped; the state file is required.

    Args:
        run_dir: Path to the run directory containing CSV files.

    Returns:
        Dictionary containing data dicts for 'state' and, when present,
        'truth', 'reference', 'vision', 'controller', 'estimator',
        'tracking' and 'trajectory' (the first planned trajectory).

    Raises:
        FileNotFoundError: If state_data.csv is missing.
    """
    data = {"state": load_csv_to_dict(run_dir / "state_data.csv")}

    optional_files = {
        "truth": "truth_data.csv",
        "reference": "reference_data.csv",
        "vision": "vision_data.csv",
        "controller": "controller_data.csv",
        "estimator": "estimator_diagnostics.csv",
        "tracking": "tracking_metrics.csv",
    }
    for key, filename in optional_files.items():
        csv_path = run_dir / filename
        if csv_path.exists():
            data[key] = load_csv_to_dict(csv_path)

    trajectories = sorted(run_dir.glob("trajectory_*.csv"))
    if trajectories:
        data["trajectory"] = load_csv_to_dict(trajectories[0])

    return data


def _style_dark(ax: Axes, title: str, xlabel: str, ylabel: str) -> None:
    ax.set_facecolor(COLOR_DARK_BLUE)
    for spine in ax.spines.values():
        spine.set_color(COLOR_CREAM)
    ax.tick_params(colors=COLOR_CREAM, which="both")
    ax.set_xlabel(xlabel, color=COLOR_CREAM)
    ax.set_ylabel(ylabel, color=COLOR_CREAM)
    ax.set_title(title, color=COLOR_CREAM)
    ax.grid(True, alpha=0.2, color=COLOR_CREAM)


def _legend(ax: Axes) -> None:
    handles, _ = ax.get_legend_handles_labels()
    if not handles:
        return
    legend = ax.legend(facecolor=COLOR_DARK_BLUE, edgecolor=COLOR_CREAM)
    plt.setp(legend.get_texts(), color=COLOR_CREAM)


def plot_field_trajectory(
    data: Dict[str, Dict[str, np.ndarray]],
    layout: Optional[FieldLayout] = None,
    title: str = "Field View",
    save_path: Optional[Path] = None,
) -> Figure:
    """Plot the run on the field: truth, estimate, vision and plan.

    Args:
        data: Output of load_run_data().
        layout: Field layout for the tag markers and boundary. Defaults to
            the built-in layout.
        title: Plot title.
        save_path: Optional path to save the figure.

    Returns:
        Matplotlib figure object.
    """
    layout = layout if layout is not None else FieldLayout()
    fig, ax = plt.subplots(figsize=(12, 7), facecolor=COLOR_DARK_BLUE)

    ax.add_patch(
        Rectangle(
            (0.0, 0.0),
            layout.field_length,
            layout.field_width,
            fill=False,
            edgecolor=COLOR_TAUPE,
            linewidth=2.0,
        )
    )
    tag_x = [pose.x for pose in layout.tags.values()]
    tag_y = [pose.y for pose in layout.tags.values()]
    ax.scatter(tag_x, tag_y, marker="s", s=40, color=COLOR_TAUPE, label="Tags", zorder=2)

    if "trajectory" in data:
        planned = data["trajectory"]
        ax.plot(
            planned["x"],
            planned["y"],
            "--",
            color=COLOR_YELLOW_ORANGE,
            linewidth=2.0,
            alpha=0.9,
            label="Planned Trajectory",
            zorder=3,
        )

    if "truth" in data:
        truth = data["truth"]
        ax.plot(truth["x_true"], truth["y_true"], "-", color=COLOR_CREAM, linewidth=1.5, label="True Pose", zorder=4)

    state = data["state"]
    x = state["x_est"]
    y = state["y_est"]
    timestamps = state["timestamp"]
    valid_mask = ~(np.isnan(x) | np.isnan(y))
    x, y, timestamps = x[valid_mask], y[valid_mask], timestamps[valid_mask]

    if len(timestamps) > 0:
        scatter = ax.scatter(
            x,
            y,
            c=timestamps - timestamps[0],
            cmap=TIME_CMAP,
            s=8,
            alpha=0.8,
            label="Estimate",
            zorder=5,
        )
        colorbar = plt.colorbar(scatter, ax=ax, label="Time (s)")
        colorbar.ax.yaxis.label.set_color(COLOR_CREAM)
        colorbar.ax.tick_params(colors=COLOR_CREAM)

        # Mark start and end points
        ax.plot(x[0], y[0], "o", color=COLOR_BLUE, markersize=8, label="Start", zorder=6, markeredgecolor="black")
        ax.plot(x[-1], y[-1], "o", color=COLOR_ORANGE, markersize=8, label="End", zorder=6, markeredgecolor="black")

    if "vision" in data and len(data["vision"]["x"]) > 0:
        vision = data["vision"]
        ax.scatter(vision["x"], vision["y"], marker="x", s=15, color=COLOR_BLUE, alpha=0.5, label="Vision", zorder=4)

    _style_dark(ax, title, "X Position (m)", "Y Position (m)")
    ax.set_xlim(-0.5, layout.field_length + 0.5)
    ax.set_ylim(-0.5, layout.field_width + 0.5)
    ax.set_aspect("equal")
    _legend(ax)
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")

    return fig


def plot_localization_error(
    data: Dict[str, Dict[str, np.ndarray]],
    title: str = "Localization",
    save_path: Optional[Path] = None,
) -> Figure:
    """Plot estimate-versus-truth error and vision corrections over time.

    Args:
        data: Output of load_run_data(); needs 'tracking'.
        title: Plot title prefix.
        save_path: Optional path to save the figure.

    Returns:
        Matplotlib figure object.
    """
    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 8), facecolor=COLOR_DARK_BLUE)

    tracking = data["tracking"]
    t = tracking["timestamp"] - tracking["timestamp"][0] if len(tracking["timestamp"]) else tracking["timestamp"]
    ax1.plot(t, tracking["error_l2"] * 1000.0, color=COLOR_ORANGE, label="L2 error")
    ax1.plot(t, tracking["avg_sample_error_mm"], "--", color=COLOR_YELLOW_ORANGE, label="Running mean")
    _style_dark(ax1, f"{title} - Position Error", "Time (s)", "Error (mm)")
    _legend(ax1)

    if "estimator" in data:
        estimator = data["estimator"]
        te = estimator["timestamp"] - estimator["timestamp"][0] if len(estimator["timestamp"]) else estimator["timestamp"]
        ax2.plot(te, estimator["vision_applied"], color=COLOR_BLUE, label="Applied")
        ax2.plot(te, estimator["vision_dropped"], color=COLOR_ORANGE, label="Dropped")
    _style_dark(ax2, f"{title} - Vision Observations", "Time (s)", "Count")
    _legend(ax2)

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")

    return fig


def plot_velocity_tracking(
    data: Dict[str, Dict[str, np.ndarray]],
    title: str = "Chassis Velocity",
    save_path: Optional[Path] = None,
) -> Figure:
    """Plot commanded against measured field-relative velocity.

    Args:
        data: Output of load_run_data(); needs 'controller'.
        title: Plot title prefix.
        save_path: Optional path to save the figure.

    Returns:
        Matplotlib figure object.
    """
    fig, axes = plt.subplots(3, 1, figsize=(12, 9), facecolor=COLOR_DARK_BLUE, sharex=True)

    controller = data["controller"]
    state = data["state"]
    t0 = state["timestamp"][0] if len(state["timestamp"]) else 0.0

    channels = [
        ("cmd_vx", "v_x", "vx (m/s)"),
        ("cmd_vy", "v_y", "vy (m/s)"),
        ("cmd_omega", "omega", "omega (rad/s)"),
    ]
    for ax, (cmd_key, meas_key, label) in zip(axes, channels):
        ax.plot(controller["timestamp"] - t0, controller[cmd_key], color=COLOR_ORANGE, label="Commanded")
        ax.plot(state["timestamp"] - t0, state[meas_key], color=COLOR_BLUE, alpha=0.8, label="Measured")
        _style_dark(ax, f"{title} - {label.split()[0]}", "", label)
        _legend(ax)
    axes[-1].set_xlabel("Time (s)", color=COLOR_CREAM)

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")

    return fig


def plot_run_summary(
    run_dir: Path,
    save_plots: bool = False,
    show_plots: bool = True,
    layout: Optional[FieldLayout] = None,
) -> Dict[str, Figure]:
    """Generate summary plots for a complete run.

    Args:
        run_dir: Directory written by DataCollector.
        save_plots: If True, save plots to run directory.
        show_plots: If True, display plots interactively.
        layout: Field layout drawn under the field view.

    Returns:
        Figures keyed by plot name.

    Raises:
        FileNotFoundError: If state_data.csv is not found.
    """
    data = load_run_data(run_dir)
    run_name = run_dir.name

    figures = {
        "field": plot_field_trajectory(
            data,
            layout=layout,
            title=f"Field View - {run_name}",
            save_path=run_dir / "field_view.png" if save_plots else None,
        )
    }
    if "tracking" in data:
        figures["localization"] = plot_localization_error(
            data,
            title=f"Localization - {run_name}",
            save_path=run_dir / "localization_error.png" if save_plots else None,
        )
    if "controller" in data:
        figures["velocity"] = plot_velocity_tracking(
            data,
            title=f"Chassis Velocity - {run_name}",
            save_path=run_dir / "velocity_tracking.png" if save_plots else None,
        )

    if show_plots:
        plt.show()
    else:
        for fig in figures.values():
            plt.close(fig)

    return figures
