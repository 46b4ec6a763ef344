#!/usr/bin/env python3
"""
Command line entry point for the habitat suitability pipeline.

Examples:
  # Full run: clip, feature table, collinearity, models, projections, change
  python main.py run --config config/pipeline.yaml

  # Clip one raster (or a directory of rasters) to a country boundary
  python main.py clip --raster data/wc2.1_bio.tif --boundary data/india.shp --out data/clipped/current

  # Only build the presence / pseudo-absence feature table
  python main.py build-table --rasters data/clipped/current --occurrences data/occurrences.csv \\
      --out outputs/feature_table.csv

  # Download presence records from GBIF for a polygon
  python main.py fetch-occurrences --species "Dalbergia sissoo" --polygon data/india.wkt \\
      --out data/occurrences.csv
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from habitat_sdm.errors import SDMError


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="habitat_sdm",
        description="Species distribution modeling under current and future climate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = ap.add_subparsers(dest="command", required=True)

    # --- run ---
    run = sub.add_parser("run", help="Run the full pipeline from a YAML config")
    run.add_argument("--config", type=Path, required=True, help="Pipeline YAML config")
    run.add_argument("--plots", action="store_true", help="Also write PNG figures (overrides make_plots)")
    run.add_argument("--quiet", action="store_true", help="Disable progress bars")

    # --- clip ---
    clip = sub.add_parser("clip", help="Clip rasters to a boundary polygon")
    clip.add_argument("--raster", type=Path, required=True, help="Raster file or directory of .tif files")
    clip.add_argument("--boundary", type=Path, required=True, help="Boundary vector file (shp, gpkg, geojson)")
    clip.add_argument("--out", type=Path, required=True, help="Output directory")
    clip.add_argument("--crs-policy", choices=["reproject", "fail"], default="reproject",
                      help="What to do when boundary and raster CRS differ (default: reproject)")
    clip.add_argument("--band-names", nargs="+", help="Names for the bands of a multi-band raster")

    # --- build-table ---
    table = sub.add_parser("build-table", help="Build the presence / pseudo-absence feature table")
    table.add_argument("--rasters", type=Path, required=True, help="Baseline raster file or directory")
    table.add_argument("--occurrences", type=Path, required=True, help="Occurrence CSV")
    table.add_argument("--out", type=Path, required=True, help="Output CSV")
    table.add_argument("--seed", type=int, default=1)
    table.add_argument("--absence-ratio", type=float, default=2.0,
                       help="Pseudo-absences per presence (default: 2)")
    table.add_argument("--n-absences", type=int, help="Exact number of pseudo-absences")
    table.add_argument("--band-names", nargs="+", help="Names for the bands of a multi-band raster")

    # --- fetch-occurrences ---
    fetch = sub.add_parser("fetch-occurrences", help="Download presence records from GBIF")
    fetch.add_argument("--species", required=True, help="Scientific name")
    fetch.add_argument("--polygon", type=Path, required=True, help="File holding a WKT polygon")
    fetch.add_argument("--out", type=Path, required=True, help="Output CSV")
    fetch.add_argument("--max-points", type=int, default=2000)

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_run(args: argparse.Namespace) -> int:
    from habitat_sdm.config import load_config
    from habitat_sdm.pipeline import SDMPipeline

    config = load_config(args.config)
    if args.plots:
        config.make_plots = True
    if args.quiet:
        config.quiet = True
    SDMPipeline(config).run()
    return 0


def _handle_clip(args: argparse.Namespace) -> int:
    from habitat_sdm.raster_clipper import RasterClipper

    clipper = RasterClipper(args.boundary, crs_policy=args.crs_policy)
    if args.raster.is_dir():
        written = clipper.clip_directory(args.raster, str(args.out))
    else:
        written = clipper.clip(args.raster, str(args.out), band_names=args.band_names)
    print(f"Wrote {len(written)} clipped raster(s) to {args.out}")
    return 0


def _handle_build_table(args: argparse.Namespace) -> int:
    from habitat_sdm.features_extractor import build_feature_table, save_feature_table
    from habitat_sdm.presence_dataloader import Presence_dataloader
    from habitat_sdm.raster_stack import load_raster_stack

    stack = load_raster_stack(args.rasters, band_names=args.band_names)
    occurrences = Presence_dataloader().load_occurrences(args.occurrences)
    table = build_feature_table(
        stack,
        occurrences,
        n_absences=args.n_absences,
        absence_ratio=args.absence_ratio,
        seed=args.seed,
    )
    save_feature_table(table, str(args.out))
    return 0


def _handle_fetch_occurrences(args: argparse.Namespace) -> int:
    from habitat_sdm.presence_dataloader import Presence_dataloader

    polygon_wkt = args.polygon.read_text(encoding="utf-8").strip()
    df = Presence_dataloader().fetch_gbif_occurrences(
        args.species, polygon_wkt, str(args.out), maxp=args.max_points
    )
    print(f"{len(df)} occurrences written to {args.out}")
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    handlers = {
        "run": _handle_run,
        "clip": _handle_clip,
        "build-table": _handle_build_table,
        "fetch-occurrences": _handle_fetch_occurrences,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    try:
        return handler(args)
    except SDMError as e:
        print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
