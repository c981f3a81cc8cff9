"""Output serialization for generated world fields."""

from __future__ import annotations

import json
from pathlib import Path
import shutil
from typing import Any

import numpy as np

from worldclimate.hydrology import Lake, River


def resolve_output_dir(
    out_root: str | Path,
    seed_label: str,
    width: int,
    height: int,
    *,
    overwrite: bool,
) -> Path:
    """Create and return the output directory for one generation run."""

    target = Path(out_root) / seed_label / f"{width}x{height}"
    if target.exists() and any(target.iterdir()) and not overwrite:
        raise FileExistsError(
            f"Output directory already exists and is not empty: {target}. Use --overwrite to replace files."
        )
    target.mkdir(parents=True, exist_ok=True)
    return target


def safe_clean_output_dir(target: Path, *, out_root: Path, project_root: Path) -> None:
    """Delete all children of target directory with strict path-safety guards."""

    out_root_r = out_root.resolve()
    project_root_r = project_root.resolve()
    target_r = target.resolve()
    target_r.relative_to(out_root_r)
    out_root_r.relative_to(project_root_r)

    if not target_r.exists():
        target_r.mkdir(parents=True, exist_ok=True)
        return

    for child in target_r.iterdir():
        if child.is_symlink() or child.is_file():
            child.unlink()
        elif child.is_dir():
            shutil.rmtree(child)


def move_tree_contents(src_dir: Path, dst_dir: Path) -> None:
    """Move all files from src_dir into dst_dir."""

    for child in src_dir.iterdir():
        shutil.move(str(child), str(dst_dir / child.name))


def read_height_npy(path: str | Path) -> np.ndarray:
    height = np.load(Path(path), allow_pickle=False)
    if height.ndim != 2:
        raise ValueError(f"heightmap must be 2D, got shape {height.shape}")
    return height.astype(np.float32)


def write_field_npy(path: str | Path, values: np.ndarray) -> None:
    np.save(Path(path), np.ascontiguousarray(values), allow_pickle=False)


def rivers_payload(rivers: tuple[River, ...]) -> list[dict[str, Any]]:
    return [
        {
            "length": river.length,
            "mean_discharge": river.mean_discharge,
            "terminus": river.terminus,
            "lake_id": river.lake_id,
            "path": [list(cell) for cell in river.path],
        }
        for river in rivers
    ]


def lakes_payload(lakes: tuple[Lake, ...]) -> list[dict[str, Any]]:
    return [
        {
            "lake_id": lake.lake_id,
            "area": lake.area,
            "mean_discharge": lake.mean_discharge,
            "outlet": list(lake.outlet) if lake.outlet is not None else None,
            "cells": [list(cell) for cell in lake.cells],
        }
        for lake in lakes
    ]


def write_json(path: str | Path, payload: Any) -> None:
    text = json.dumps(payload, indent=2, sort_keys=True)
    Path(path).write_text(text + "\n", encoding="utf-8")
