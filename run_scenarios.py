#!/usr/bin/env python3
"""
Run the firmware across several world scenarios and generate comparison plots.

This script:
1. Generates world layout files for each scenario
2. Runs a closed-loop simulation in each world
3. Generates comparison plots and a summary CSV
"""

from __future__ import annotations

import argparse
import math
import os
from typing import Dict

from exhibot import io, models, plotting, simulation


def main() -> None:
    """Run scenario simulations and generate plots."""
    parser = argparse.ArgumentParser(
        description="Run the firmware across multiple worlds and generate plots"
    )
    parser.add_argument("--data-dir", type=str, default="data",
                        help="Directory for world files (default: data)")
    parser.add_argument("--output-dir", type=str, default="results",
                        help="Directory for output plots (default: results)")
    parser.add_argument("--config", type=str, default="", help="JSON config overrides.")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--duration", type=float, default=180.0)
    parser.add_argument("--alive", action="store_true", help="Drift legs and move bags in every world.")
    parser.add_argument("--no-plots", action="store_true")

    args = parser.parse_args()

    os.makedirs(args.data_dir, exist_ok=True)
    os.makedirs(args.output_dir, exist_ok=True)

    print("=" * 70)
    print("Exhibition Robot Scenario Comparison")
    print("=" * 70)

    scenarios = {
        "gallery": ("gallery.csv", io.generate_gallery_world),
        "empty": ("empty_room.csv", io.generate_empty_room),
        "crowded": ("crowded.csv", io.generate_crowded_world),
        "corridor": ("corridor.csv", io.generate_corridor_world),
    }

    print("\n1. Generating world files...")
    world_paths = {}
    for name, (filename, generator) in scenarios.items():
        path = os.path.join(args.data_dir, filename)
        generator(path)
        world_paths[name] = path

    print("\n2. Running simulations...")
    config = models.FirmwareConfig()
    if args.config:
        config = io.load_config_json(args.config, config)

    results: Dict[str, models.RunMetrics] = {}
    for name, path in world_paths.items():
        w = io.load_world_csv(path, max_range_m=config.sensor.max_range_m)
        sim_params = models.SimParams(
            duration_s=args.duration,
            seed=args.seed,
            start_x=w.width / 2.0,
            start_y=1.0,
            start_heading=math.pi / 2,
            alive_world=args.alive,
        )
        metrics = simulation.simulate(w, config, sim_params, scenario=name)
        results[name] = metrics

        print(f"  {name:10s}: scans={metrics.scans:3d} "
              f"(wall={metrics.walls} local={metrics.local_objects}) "
              f"deposits={metrics.deposits} escapes={metrics.escapes_wall + metrics.escapes_deposit + metrics.escapes_default} "
              f"contact={metrics.contact_ticks}")
        if metrics.scans > 0:
            pct = metrics.local_objects / metrics.scans * 100
            print(f"      -> {pct:.1f}% of scans locked a local object")

    if not args.no_plots:
        print("\n3. Generating plots...")
        plotting.plot_comparison(results, output_path=os.path.join(args.output_dir, "comparison.png"))

    summary_csv = os.path.join(args.output_dir, "summary.csv")
    io.write_metrics_csv(summary_csv, list(results.values()))
    print(f"  Saved summary CSV: {summary_csv}")

    print("\n" + "=" * 70)
    print("Comparison complete!")
    print(f"Results saved to: {args.output_dir}/")
    print("=" * 70)


if __name__ == "__main__":
    main()
