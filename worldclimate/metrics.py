"""Summary metrics for a generated world."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import numpy as np

from worldclimate.biomes import BiomeCategory, BiomeType, biome_category
from worldclimate.hydrology import WaterClass, WaterFeatures


@dataclass(frozen=True)
class WorldMetrics:
    land_fraction: float
    mean_land_temperature: float
    mean_land_precipitation: float
    river_count: int
    rivers_to_ocean: int
    total_river_length: float
    longest_river_length: float
    lake_count: int
    lake_area_total: int
    largest_lake_area: int
    water_class_counts: dict[str, int]
    max_erosion_depth: float
    max_deposition_height: float
    biome_counts: dict[str, int]
    category_counts: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_world_metrics(
    *,
    ocean_mask: np.ndarray,
    temperature: np.ndarray,
    precipitation: np.ndarray,
    height_delta: np.ndarray,
    water: WaterFeatures,
    biomes: np.ndarray,
) -> WorldMetrics:
    land = ~ocean_mask
    total = int(ocean_mask.size)
    land_cells = int(land.sum())

    lengths = [river.length for river in water.rivers]
    lake_areas = [lake.area for lake in water.lakes]
    class_counts = np.bincount(water.classification.ravel(), minlength=len(WaterClass))
    biome_counts = np.bincount(biomes.ravel(), minlength=len(BiomeType))

    category_counts = {category.name.lower(): 0 for category in BiomeCategory}
    for biome in BiomeType:
        category_counts[biome_category(biome).name.lower()] += int(biome_counts[biome])

    return WorldMetrics(
        land_fraction=float(land_cells / total) if total else 0.0,
        mean_land_temperature=float(np.mean(temperature[land])) if land_cells else 0.0,
        mean_land_precipitation=float(np.mean(precipitation[land])) if land_cells else 0.0,
        river_count=len(water.rivers),
        rivers_to_ocean=sum(1 for river in water.rivers if river.reached_ocean),
        total_river_length=float(sum(lengths)),
        longest_river_length=float(max(lengths, default=0.0)),
        lake_count=len(water.lakes),
        lake_area_total=int(sum(lake_areas)),
        largest_lake_area=int(max(lake_areas, default=0)),
        water_class_counts={wc.name.lower(): int(class_counts[wc]) for wc in WaterClass},
        max_erosion_depth=float(max(-float(np.min(height_delta)), 0.0)) if height_delta.size else 0.0,
        max_deposition_height=float(max(float(np.max(height_delta)), 0.0)) if height_delta.size else 0.0,
        biome_counts={b.name.lower(): int(biome_counts[b]) for b in BiomeType if biome_counts[b]},
        category_counts=category_counts,
    )
