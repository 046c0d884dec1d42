#!/usr/bin/env python3
"""
Experiment: vary sensor noise (or dropout) and measure firmware outcomes.

For each value, run several seeded trials in the gallery world and plot
mean +/- std of scans, local-object locks, wall verdicts and deposits.
"""

from __future__ import annotations

import argparse
import os
import statistics
from dataclasses import replace
from typing import Dict, List

import numpy as np

from exhibot import models, plotting, simulation, world

SWEEPS = {
    "noise": ("noise_sigma_mm", [0.0, 10.0, 20.0, 40.0, 60.0, 80.0], "Sensor Noise Sigma (mm)"),
    "dropout": ("dropout_prob", [0.0, 0.02, 0.05, 0.1, 0.2, 0.3], "Sensor Dropout Probability"),
}
OUTCOMES = ["scans", "local_objects", "walls", "deposits"]


def run_trials(config: models.FirmwareConfig, n_trials: int, duration: float, seed: int) -> List[models.RunMetrics]:
    """Run n seeded trials; trial i uses seed + i * 1000."""
    results = []
    for i in range(n_trials):
        sim_params = models.SimParams(duration_s=duration, seed=seed + i * 1000)
        w = world.default_world(max_range_m=config.sensor.max_range_m)
        results.append(simulation.simulate(w, config, sim_params, scenario=f"trial{i}"))
    return results


def main() -> None:
    """Run the sweep experiment."""
    ap = argparse.ArgumentParser(description="Sensor noise / dropout sweep")
    ap.add_argument("--param", choices=sorted(SWEEPS), default="noise")
    ap.add_argument("--trials", type=int, default=10)
    ap.add_argument("--duration", type=float, default=120.0)
    ap.add_argument("--seed", type=int, default=42)
    ap.add_argument("--output-dir", type=str, default="results")
    args = ap.parse_args()

    field_name, values, label = SWEEPS[args.param]
    os.makedirs(args.output_dir, exist_ok=True)

    print("=" * 80)
    print(f"{args.param.upper()} SWEEP EXPERIMENT")
    print("=" * 80)
    print(f"Testing {field_name} over {values}")
    print(f"Running {args.trials} trials for each value")
    print("=" * 80)
    print()

    series: Dict[str, np.ndarray] = {k: np.zeros((len(values), args.trials)) for k in OUTCOMES}
    base = models.FirmwareConfig()
    for i, v in enumerate(values):
        print(f"Testing {field_name} = {v}...", end=" ", flush=True)
        config = replace(base, sensor=replace(base.sensor, **{field_name: v}))
        trials = run_trials(config, args.trials, args.duration, args.seed)
        for k in OUTCOMES:
            series[k][i, :] = [getattr(m, k) for m in trials]
        locks = [m.local_objects for m in trials]
        print(f"Done (locks: {statistics.mean(locks):.2f} +/- "
              f"{statistics.stdev(locks) if len(locks) > 1 else 0.0:.2f})")

    print()
    print(f"{'Value':>10} | " + " | ".join(f"{k:>18}" for k in OUTCOMES))
    print("-" * (13 + 21 * len(OUTCOMES)))
    for i, v in enumerate(values):
        cells = [f"{series[k][i].mean():>9.2f} {series[k][i].std():>8.2f}" for k in OUTCOMES]
        print(f"{v:>10.3f} | " + " | ".join(cells))

    out = os.path.join(args.output_dir, f"sweep_{args.param}.png")
    plotting.plot_sweep_bands(values, series, label, output_path=out)

    print()
    print("=" * 80)
    print("EXPERIMENT COMPLETE")
    print("=" * 80)


if __name__ == "__main__":
    main()
