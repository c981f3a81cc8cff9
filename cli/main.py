"""CLI entry point for climate, hydrology, and biome generation."""

from __future__ import annotations

import argparse
from datetime import datetime, timezone
import logging
from pathlib import Path
import platform
import shutil
import tempfile
import time

import numpy as np
import scipy

from worldclimate.config import PipelineConfig, SemanticParams
from worldclimate.errors import WorldGenError
from worldclimate.foundation import TerrainFoundation
from worldclimate.io import (
    lakes_payload,
    move_tree_contents,
    read_height_npy,
    resolve_output_dir,
    rivers_payload,
    safe_clean_output_dir,
    write_field_npy,
    write_json,
)
from worldclimate.pipeline import generate_world


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deterministic climate, river, and biome generator")
    parser.add_argument("--input", required=True, help="Heightmap .npy produced by the terrain generator")
    parser.add_argument("--seed", type=int, required=True, help="Integer generation seed")
    parser.add_argument("--out", default="out", help="Output root directory")
    parser.add_argument(
        "--sea-level",
        type=float,
        default=None,
        help="Sea level in heightmap units (default: median elevation)",
    )
    parser.add_argument("--river-density", type=float, default=0.5, help="Semantic river density in [0, 1]")
    parser.add_argument("--river-meandering", type=float, default=0.5, help="Semantic meandering in [0, 1]")
    parser.add_argument("--valley-depth", type=float, default=0.5, help="Semantic valley depth in [0, 1]")
    parser.add_argument("--erosion-speed", type=float, default=0.5, help="Semantic erosion speed in [0, 1]")
    parser.add_argument("--time-budget", type=float, default=None, help="Abort after this many seconds")
    parser.add_argument("--overwrite", action="store_true", help="Overwrite files in existing output directory")
    parser.add_argument(
        "--json",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Write metadata, river, and lake JSON files",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging verbosity",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s - %(levelname)s - %(message)s")

    try:
        height = read_height_npy(args.input)
    except (OSError, ValueError) as exc:
        parser.error(f"cannot read heightmap {args.input}: {exc}")

    config = PipelineConfig(
        semantic=SemanticParams(
            river_density=args.river_density,
            river_meandering=args.river_meandering,
            valley_depth=args.valley_depth,
            erosion_speed=args.erosion_speed,
        ),
        time_budget_seconds=args.time_budget,
    )

    generation_start = time.perf_counter()
    try:
        foundation = TerrainFoundation.from_heightmap(height, sea_level=args.sea_level)
        result = generate_world(foundation, args.seed, config)
    except WorldGenError as exc:
        parser.error(str(exc))
    generation_seconds = time.perf_counter() - generation_start

    h, w = foundation.shape
    out_dir = resolve_output_dir(args.out, str(args.seed), w, h, overwrite=args.overwrite)
    field_outputs: dict[str, np.ndarray] = {
        "height_carved.npy": result.height,
        "temperature.npy": result.temperature.temperature,
        "precipitation_base.npy": result.precipitation_base,
        "precipitation_rain_shadow.npy": result.precipitation_rain_shadow,
        "precipitation_final.npy": result.precipitation_final,
        "discharge.npy": result.erosion.flow.discharge,
        "momentum_x.npy": result.erosion.flow.momentum_x,
        "momentum_y.npy": result.erosion.flow.momentum_y,
        "water_class.npy": result.water.classification,
        "irrigation.npy": result.irrigation,
        "humidity.npy": result.humidity.humidity,
        "humidity_band.npy": result.humidity.bands,
        "biome.npy": result.biomes,
    }

    stage_dir = Path(tempfile.mkdtemp(prefix=".staging-", dir=str(out_dir.parent)))
    try:
        for name, values in field_outputs.items():
            write_field_npy(stage_dir / name, values)
        if args.json:
            write_json(stage_dir / "rivers.json", rivers_payload(result.water.rivers))
            write_json(stage_dir / "lakes.json", lakes_payload(result.water.lakes))
            timestamp = datetime.now(timezone.utc).isoformat()
            deterministic_meta = {
                "seed": args.seed,
                "width": w,
                "height": h,
                "thresholds": {
                    "sea": foundation.thresholds.sea,
                    "hill": foundation.thresholds.hill,
                    "mountain": foundation.thresholds.mountain,
                    "peak": foundation.thresholds.peak,
                },
                "axial_tilt": result.axial_tilt,
                "distance_to_sun": result.distance_to_sun,
                "precipitation_thresholds": {
                    "low": result.precipitation_thresholds.low,
                    "medium": result.precipitation_thresholds.medium,
                    "high": result.precipitation_thresholds.high,
                },
                "humidity_quantiles": list(result.humidity.quantiles.thresholds),
                "config": config.to_dict(),
                "erosion_params": result.erosion_params.to_dict(),
                "erosion": {
                    "particles_spawned": result.erosion.particles_spawned,
                    "terminations": result.erosion.terminations,
                },
                "metrics": result.metrics.to_dict(),
            }
            meta = {
                **deterministic_meta,
                "generated_at_utc": timestamp,
                "input_path": str(args.input),
                "generation_seconds": generation_seconds,
                "stage_seconds": result.stage_seconds,
                "python_version": platform.python_version(),
                "numpy_version": np.__version__,
                "scipy_version": scipy.__version__,
            }
            write_json(stage_dir / "deterministic_meta.json", deterministic_meta)
            write_json(stage_dir / "meta.json", meta)

        safe_clean_output_dir(
            out_dir,
            out_root=Path(args.out),
            project_root=Path.cwd(),
        )
        move_tree_contents(stage_dir, out_dir)
    finally:
        shutil.rmtree(stage_dir, ignore_errors=True)

    metrics = result.metrics
    print(f"Generated world: {out_dir}")
    print(
        f"Land fraction {metrics.land_fraction:.3f}; "
        f"mean land temperature {metrics.mean_land_temperature:.3f}; "
        f"mean land precipitation {metrics.mean_land_precipitation:.3f}"
    )
    print(
        "Hydrology: "
        f"rivers={metrics.river_count} (to ocean {metrics.rivers_to_ocean}), "
        f"total length={metrics.total_river_length:.1f}, "
        f"lakes={metrics.lake_count} (area {metrics.lake_area_total})"
    )
    print(
        "Erosion: "
        f"particles={result.erosion.particles_spawned}, "
        f"max depth={metrics.max_erosion_depth:.3f}, "
        f"max deposition={metrics.max_deposition_height:.3f}"
    )
    print(f"Biomes present: {len(metrics.biome_counts)}")
    print(f"Generation time: {generation_seconds:.3f} s ({w}x{h})")
    file_count = sum(1 for child in out_dir.iterdir() if child.is_file())
    print(f"Output files: {file_count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
