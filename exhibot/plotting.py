"""Plotting utilities for simulation runs and scenario comparisons."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np

try:
    import matplotlib.pyplot as plt
    import matplotlib.patches as mpatches
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False

from .models import FirmwareState, RunMetrics, TickRecord
from .world import World

STATE_COLORS = {
    FirmwareState.WANDER.value: "#1f77b4",
    FirmwareState.SCAN.value: "#ff7f0e",
    FirmwareState.VERIFY.value: "#9467bd",
    FirmwareState.APPROACH.value: "#2ca02c",
    FirmwareState.DEPOSIT.value: "#e377c2",
    FirmwareState.ESCAPE.value: "#d62728",
}
KIND_COLORS = {"leg": "#444444", "bag": "#8c564b", "pedestal": "#bbbbbb"}


def _finish(output_path: Optional[str], label: str) -> None:
    plt.tight_layout()
    if output_path:
        plt.savefig(output_path, dpi=150, bbox_inches="tight")
        print(f"Saved {label} to: {output_path}")
        plt.close()
    else:
        plt.show()


def _warn() -> None:
    print("Warning: matplotlib not available. Install with: pip install matplotlib")


def plot_trajectory(
    world: World,
    record: List[TickRecord],
    output_path: Optional[str] = None,
    figsize: tuple = (7, 12),
) -> None:
    """
    Plot the robot path over the world, coloured by firmware state.

    Args:
        world: World the run used (props are drawn at their final positions)
        record: Per-tick records from `simulate(..., record=...)`
        output_path: Path to save figure (if None, displays interactively)
    """
    if not HAS_MATPLOTLIB:
        _warn()
        return

    fig, ax = plt.subplots(figsize=figsize)
    for seg in world.walls:
        ax.plot([seg.ax, seg.bx], [seg.ay, seg.by], color="black", linewidth=2)
    for c in world.circles:
        ax.add_patch(mpatches.Circle(
            (c.x, c.y), c.radius, color=KIND_COLORS.get(c.kind, "gray"), alpha=0.3 if c.hidden else 0.8,
        ))

    if record:
        xs = np.array([r.x for r in record])
        ys = np.array([r.y for r in record])
        states = np.array([r.state for r in record])
        for state, color in STATE_COLORS.items():
            mask = states == state
            if mask.any():
                ax.scatter(xs[mask], ys[mask], s=2, color=color, label=state)
        ax.plot(xs[0], ys[0], marker="o", color="black", markersize=6)

    ax.set_xlim(-0.5, world.width + 0.5)
    ax.set_ylim(-0.5, world.height + 0.5)
    ax.set_aspect("equal")
    ax.set_xlabel("x (m)", fontweight="bold")
    ax.set_ylabel("y (m)", fontweight="bold")
    ax.set_title("Robot Trajectory by State", fontweight="bold")
    ax.legend(loc="upper right", markerscale=4)
    ax.grid(alpha=0.3)
    _finish(output_path, "trajectory plot")


def plot_state_timeline(
    record: List[TickRecord],
    output_path: Optional[str] = None,
    figsize: tuple = (14, 5),
) -> None:
    """State over time (top) and the front/side readings (bottom)."""
    if not HAS_MATPLOTLIB:
        _warn()
        return

    states = list(STATE_COLORS)
    t = np.array([r.t for r in record])
    idx = np.array([states.index(r.state) for r in record])

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=figsize, sharex=True)
    ax1.step(t, idx, where="post", color="black", linewidth=1)
    ax1.set_yticks(range(len(states)))
    ax1.set_yticklabels(states)
    ax1.set_title("Firmware State Timeline", fontweight="bold")
    ax1.grid(axis="x", alpha=0.3)

    channels = list(record[0].readings) if record else []
    for name in channels:
        d = np.array([np.nan if r.readings.get(name) is None else r.readings[name] for r in record], dtype=float)
        ax2.plot(t, d, linewidth=0.8, label=name)
    ax2.set_xlabel("Time (s)", fontweight="bold")
    ax2.set_ylabel("Distance (mm)", fontweight="bold")
    ax2.legend(loc="upper right")
    ax2.grid(alpha=0.3)
    _finish(output_path, "state timeline")


def plot_comparison(
    results: Dict[str, RunMetrics],
    output_path: Optional[str] = None,
    figsize: tuple = (14, 10),
) -> None:
    """
    Compare runs across scenarios.

    Args:
        results: Dict mapping scenario name -> RunMetrics
        output_path: Path to save figure (if None, displays interactively)
        figsize: Figure size (width, height)
    """
    if not HAS_MATPLOTLIB:
        _warn()
        return

    names = sorted(results.keys())
    x = np.arange(len(names))

    fig, axes = plt.subplots(2, 2, figsize=figsize)
    fig.suptitle("Exhibition Robot Scenario Comparison", fontsize=16, fontweight="bold")

    # Plot 1: time share per state (stacked)
    ax1 = axes[0, 0]
    bottom = np.zeros(len(names))
    for state, color in STATE_COLORS.items():
        vals = np.array([getattr(results[n], f"time_{state.lower()}") for n in names])
        ax1.bar(x, vals, bottom=bottom, color=color, label=state, alpha=0.8)
        bottom += vals
    ax1.set_ylabel("Time (s)", fontweight="bold")
    ax1.set_title("Time in Each State", fontweight="bold")
    ax1.legend(fontsize=8)

    # Plot 2: scan verdicts
    ax2 = axes[0, 1]
    width = 0.2
    verdicts = [("walls", "#d62728"), ("local_objects", "#2ca02c"), ("empty_scans", "#1f77b4"), ("unknown_scans", "#7f7f7f")]
    for i, (field_name, color) in enumerate(verdicts):
        vals = [getattr(results[n], field_name) for n in names]
        ax2.bar(x + (i - 1.5) * width, vals, width, label=field_name, color=color, alpha=0.8)
    ax2.set_ylabel("Scans", fontweight="bold")
    ax2.set_title("Scan Verdicts", fontweight="bold")
    ax2.legend(fontsize=8)

    # Plot 3: escapes by reason
    ax3 = axes[1, 0]
    width = 0.25
    reasons = [("escapes_wall", "#d62728"), ("escapes_deposit", "#e377c2"), ("escapes_default", "#ff7f0e")]
    for i, (field_name, color) in enumerate(reasons):
        vals = [getattr(results[n], field_name) for n in names]
        ax3.bar(x + (i - 1) * width, vals, width, label=field_name.replace("escapes_", ""), color=color, alpha=0.8)
    ax3.set_ylabel("Escapes", fontweight="bold")
    ax3.set_title("Escapes by Reason", fontweight="bold")
    ax3.legend(fontsize=8)

    # Plot 4: deposits
    ax4 = axes[1, 1]
    deposits = [results[n].deposits for n in names]
    bars = ax4.bar(x, deposits, color="#2ca02c", alpha=0.8)
    ax4.set_ylabel("Deposits", fontweight="bold")
    ax4.set_title("Deposits per Run", fontweight="bold")
    for bar in bars:
        height = bar.get_height()
        if height > 0:
            ax4.text(bar.get_x() + bar.get_width() / 2., height, f"{int(height)}",
                     ha="center", va="bottom", fontweight="bold")

    for ax in axes.flat:
        ax.set_xticks(x)
        ax.set_xticklabels(names, rotation=45, ha="right")
        ax.set_xlabel("Scenario", fontweight="bold")
        ax.grid(axis="y", alpha=0.3)

    _finish(output_path, "comparison plot")


def plot_sweep_bands(
    values: Sequence[float],
    series: Dict[str, np.ndarray],
    xlabel: str,
    output_path: Optional[str] = None,
    figsize: tuple = (10, 6),
) -> None:
    """
    Mean +/- std bands over a parameter sweep.

    Args:
        values: Swept parameter values (x axis)
        series: label -> array of shape (len(values), trials)
    """
    if not HAS_MATPLOTLIB:
        _warn()
        return

    fig, ax = plt.subplots(figsize=figsize)
    x = np.asarray(values, dtype=float)
    for label, data in series.items():
        data = np.asarray(data, dtype=float)
        mean = data.mean(axis=1)
        std = data.std(axis=1)
        line, = ax.plot(x, mean, marker="o", label=label)
        ax.fill_between(x, mean - std, mean + std, alpha=0.2, color=line.get_color())
    ax.set_xlabel(xlabel, fontweight="bold")
    ax.set_ylabel("Count per run", fontweight="bold")
    ax.set_title(f"Firmware Outcomes vs {xlabel}", fontweight="bold")
    ax.legend()
    ax.grid(alpha=0.3)
    _finish(output_path, "sweep plot")
