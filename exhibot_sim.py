#!/usr/bin/env python3
"""
Exhibition robot firmware simulator - main entry point.

Runs the behaviour engine in closed loop against a room full of visitors
and props, using only simulated noisy distance sensors.
"""

from __future__ import annotations

import argparse
import math
from dataclasses import replace
from typing import List

from exhibot import events, io, models, plotting, simulation, world


def print_summary(metrics: models.RunMetrics) -> None:
    """Print summary of simulation metrics."""
    label = metrics.scenario or "run"
    print(f"\n=== Results [{label}] seed={metrics.seed} duration={metrics.duration_s:.1f}s ===")
    print(f"steps: {metrics.steps}")
    print(f"time_wander:   {metrics.time_wander:.2f}s")
    print(f"time_scan:     {metrics.time_scan:.2f}s")
    print(f"time_verify:   {metrics.time_verify:.2f}s")
    print(f"time_approach: {metrics.time_approach:.2f}s")
    print(f"time_deposit:  {metrics.time_deposit:.2f}s")
    print(f"time_escape:   {metrics.time_escape:.2f}s")
    print(f"scans: {metrics.scans} (wall={metrics.walls} local={metrics.local_objects} "
          f"none={metrics.empty_scans} unknown={metrics.unknown_scans})")
    print(f"deposits: {metrics.deposits} payload_left: {metrics.payload_left}")
    print(f"escapes: wall={metrics.escapes_wall} deposit={metrics.escapes_deposit} default={metrics.escapes_default}")
    print(f"contact_ticks: {metrics.contact_ticks}")
    print(f"faults: {metrics.faults}")
    print(f"distance: {metrics.distance_m:.2f} m")


def parse_str_list(s: str) -> List[str]:
    """Parse comma-separated string into list."""
    return [p.strip() for p in s.split(",") if p.strip() != ""]


def main() -> None:
    """Main entry point for CLI."""
    ap = argparse.ArgumentParser(
        description="Exhibition Robot Firmware Simulator - closed-loop behaviour engine runs"
    )
    ap.add_argument("--world", type=str, default="", help="World layout CSV (default: built-in gallery).")
    ap.add_argument("--config", type=str, default="", help="JSON config overrides.")
    ap.add_argument("--dump-config", type=str, default="", help="Write the effective config as JSON and exit.")

    ap.add_argument("--seed", type=int, default=42)
    ap.add_argument("--duration", type=float, default=120.0, help="Simulated seconds.")
    ap.add_argument("--dt", type=float, default=1.0 / 30.0)
    ap.add_argument("--start", type=str, default="5,3,90", help="Start pose x,y,heading_deg.")
    ap.add_argument("--alive", action="store_true", help="Drift some legs and let bags move.")

    # Tuning knobs
    ap.add_argument("--noise-sigma", type=float, default=None, help="Sensor noise sigma (mm).")
    ap.add_argument("--dropout", type=float, default=None, help="Sensor dropout probability.")
    ap.add_argument("--detect-mm", type=float, default=None)
    ap.add_argument("--no-verify", action="store_true", help="Go straight from a locked scan to approach.")

    ap.add_argument("--export-debug", type=str, default="", help="Write per-tick debug CSV.")
    ap.add_argument("--events", type=str, default="", help="Write firmware events CSV.")
    ap.add_argument("--print-events", type=str, default="",
                    help="Echo events of these kinds to stdout (e.g. transition,classification).")
    ap.add_argument("--out-csv", type=str, default="", help="Write metrics CSV.")
    ap.add_argument("--plot", type=str, default="", help="Save trajectory plot to this path.")
    ap.add_argument("--timeline", type=str, default="", help="Save state timeline plot to this path.")

    ap.add_argument("--generate-world", type=str, default="", help="Generate the gallery world CSV and exit.")

    args = ap.parse_args()

    if args.generate_world:
        io.generate_gallery_world(args.generate_world)
        return

    config = models.FirmwareConfig()
    if args.config:
        config = io.load_config_json(args.config, config)
    sensor_kw = {}
    if args.noise_sigma is not None:
        sensor_kw["noise_sigma_mm"] = args.noise_sigma
    if args.dropout is not None:
        sensor_kw["dropout_prob"] = args.dropout
    if sensor_kw:
        config = replace(config, sensor=replace(config.sensor, **sensor_kw))
    behavior_kw = {}
    if args.detect_mm is not None:
        behavior_kw["detect_mm"] = args.detect_mm
    if args.no_verify:
        behavior_kw["verify_s"] = 0.0
    if behavior_kw:
        config = replace(config, behavior=replace(config.behavior, **behavior_kw))

    if args.dump_config:
        io.write_config_json(args.dump_config, config)
        print(f"Wrote config: {args.dump_config}")
        return

    try:
        sx, sy, sh = (float(v) for v in parse_str_list(args.start))
    except ValueError:
        raise SystemExit("Error: --start must be x,y,heading_deg")

    if args.world:
        w = io.load_world_csv(args.world, max_range_m=config.sensor.max_range_m)
    else:
        w = world.default_world(max_range_m=config.sensor.max_range_m)

    sim_params = models.SimParams(
        dt=args.dt,
        duration_s=args.duration,
        seed=args.seed,
        start_x=sx,
        start_y=sy,
        start_heading=math.radians(sh),
        alive_world=args.alive,
    )

    sinks = []
    if args.print_events:
        sinks.append(events.PrintSink(parse_str_list(args.print_events)))
    csv_sink = io.CsvEventSink(args.events) if args.events else None
    if csv_sink is not None:
        sinks.append(csv_sink)

    record: List[models.TickRecord] = []
    try:
        metrics = simulation.simulate(
            world=w,
            config=config,
            sim_params=sim_params,
            scenario=args.world or "gallery",
            export_debug_csv=(args.export_debug or None),
            sink=events.FanoutSink(sinks) if sinks else None,
            record=record,
        )
    finally:
        if csv_sink is not None:
            csv_sink.close()

    print_summary(metrics)
    if args.export_debug:
        print(f"\nWrote debug CSV: {args.export_debug}")
    if args.events:
        print(f"Wrote events CSV: {args.events}")
    if args.out_csv:
        io.write_metrics_csv(args.out_csv, [metrics])
        print(f"Wrote metrics CSV: {args.out_csv}")
    if args.plot:
        plotting.plot_trajectory(w, record, output_path=args.plot)
    if args.timeline:
        plotting.plot_state_timeline(record, output_path=args.timeline)


if __name__ == "__main__":
    main()
