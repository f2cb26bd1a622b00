#!/usr/bin/env python3
"""
Scent coverage CLI.

Commands:
- polygon:  compute and summarize one coverage polygon
- simulate: run the engine against simulated rovers and print coverage
- serve:    serve the HTTP API over a live simulated feed

Usage:
    python -m scentcover.cli polygon --lat -36.85 --lon 174.76 --wind-dir 270 --wind-speed 3
    python -m scentcover.cli simulate --rovers 3 --steps 200
    python -m scentcover.cli serve --rovers 2 --port 8000
"""
import argparse
import sys
import time

from .config import get_settings


def show_polygon(lat: float, lon: float, wind_dir: float, wind_speed: float) -> None:
    """Print the polygon for one position and wind vector."""
    from .geometry.calculator import (
        compute_polygon,
        fan_half_angle,
        max_scent_distance,
        polygon_to_text,
    )

    settings = get_settings()
    polygon = compute_polygon(lat, lon, wind_dir, wind_speed, settings.polygon_config())

    print("\n" + "=" * 60)
    print("COVERAGE POLYGON")
    print("=" * 60)
    print(f"Position:     {lat:.6f}, {lon:.6f}")
    print(f"Wind:         {wind_speed:.1f} m/s from {wind_dir:.0f}°")
    print(f"Max distance: {max_scent_distance(wind_speed):.0f} m")
    print(f"Half-angle:   {fan_half_angle(wind_speed):.1f}°")
    print(f"Area:         {polygon.area_m2:.0f} m² ({polygon.area_m2 / 10000:.2f} ha)")
    print(f"Vertices:     {polygon.vertex_count}")
    print(f"Kind:         {polygon.kind.value}")
    print(f"\n{polygon_to_text(polygon.geometry)}")
    print("=" * 60 + "\n")


def simulate(rovers: int, steps: int, seed: int) -> None:
    """Feed simulated measurements through the full engine and report."""
    from .feeds.simulator import SimulatedRoverFeed
    from .geometry.calculator import describe_coverage
    from .service import CoverageService

    settings = get_settings()
    settings.configure_logging()

    feed = SimulatedRoverFeed(rover_count=rovers, seed=seed)
    feed.generate(steps)

    service = CoverageService(feed, settings=settings)
    started = time.perf_counter()
    service.start()
    service.stop(timeout=max(settings.shutdown_timeout_seconds, 30.0))
    elapsed = time.perf_counter() - started

    coverage = service.get_global_coverage()
    status = service.get_status()

    print("\n" + "=" * 60)
    print(f"SIMULATION: {rovers} rover(s), {steps} steps, {elapsed:.2f}s")
    print("=" * 60)
    for source_id in coverage.source_ids:
        source = service.get_source_coverage(source_id)
        if source is not None:
            print(describe_coverage(source))
            print("-" * 60)
    print(describe_coverage(coverage))
    print(f"  Dropped: {status.dropped_total}")
    print("=" * 60 + "\n")


def serve(rovers: int, seed: int, host: str, port: int, interval: float) -> None:
    """Serve the HTTP API over a real-time simulated feed."""
    import uvicorn

    from .api import create_app
    from .feeds.simulator import SimulatedRoverFeed
    from .service import CoverageService

    settings = get_settings()
    settings.configure_logging()

    feed = SimulatedRoverFeed(rover_count=rovers, seed=seed, interval_seconds=interval)
    service = CoverageService(feed, settings=settings)
    service.start()
    feed.start()
    try:
        uvicorn.run(create_app(service), host=host, port=port,
                    log_level=settings.log_level.lower())
    finally:
        feed.stop()
        service.stop()


def main():
    settings = get_settings()

    parser = argparse.ArgumentParser(
        description="Scent coverage CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  One polygon, 3 m/s wind from the west:
    python -m scentcover.cli polygon --lat -36.85 --lon 174.76 --wind-dir 270 --wind-speed 3

  Three rovers, 200 steps each:
    python -m scentcover.cli simulate --rovers 3 --steps 200 --seed 7

  HTTP API on port 8000:
    python -m scentcover.cli serve --rovers 2
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # polygon
    polygon_parser = subparsers.add_parser("polygon", help="Compute one coverage polygon")
    polygon_parser.add_argument("--lat", type=float, required=True, help="Latitude (degrees)")
    polygon_parser.add_argument("--lon", type=float, required=True, help="Longitude (degrees)")
    polygon_parser.add_argument("--wind-dir", type=float, required=True,
                                help="Direction the wind blows from (degrees)")
    polygon_parser.add_argument("--wind-speed", type=float, required=True, help="Wind speed (m/s)")

    # simulate
    sim_parser = subparsers.add_parser("simulate", help="Run the engine on simulated rovers")
    sim_parser.add_argument("--rovers", type=int, default=2, help="Number of rovers (default: 2)")
    sim_parser.add_argument("--steps", type=int, default=100, help="Steps per rover (default: 100)")
    sim_parser.add_argument("--seed", type=int, default=None, help="RNG seed")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP API over simulated rovers")
    serve_parser.add_argument("--rovers", type=int, default=2, help="Number of rovers (default: 2)")
    serve_parser.add_argument("--seed", type=int, default=None, help="RNG seed")
    serve_parser.add_argument("--host", default=settings.api_host, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=settings.api_port, help="Port")
    serve_parser.add_argument("--interval", type=float, default=2.0,
                              help="Seconds between measurements per rover (default: 2)")

    args = parser.parse_args()

    if args.command == "polygon":
        show_polygon(args.lat, args.lon, args.wind_dir, args.wind_speed)
    elif args.command == "simulate":
        simulate(args.rovers, args.steps, args.seed)
    elif args.command == "serve":
        serve(args.rovers, args.seed, args.host, args.port, args.interval)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
