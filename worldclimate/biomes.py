"""Holdridge-style biome classification from temperature and humidity bands."""

from __future__ import annotations

from enum import IntEnum

import numpy as np
from scipy.ndimage import convolve

from worldclimate.config import BiomeConfig
from worldclimate.errors import NumericalDivergence
from worldclimate.fields import freeze, require_finite
from worldclimate.foundation import ElevationThresholds


_STAGE = "biome"


class TemperatureBand(IntEnum):
    POLAR = 0
    SUBPOLAR = 1
    BOREAL = 2
    COOL_TEMPERATE = 3
    WARM_TEMPERATE = 4
    TROPICAL = 5


class BiomeType(IntEnum):
    OCEAN = 0
    SHALLOW_WATER = 1
    GLACIER = 2

    POLAR_DESERT = 3
    POLAR_BARRENS = 4
    POLAR_ICE = 5

    SUBPOLAR_COLD_DESERT = 6
    SUBPOLAR_FELLFIELD = 7
    SUBPOLAR_DRY_TUNDRA = 8
    SUBPOLAR_SHRUB_TUNDRA = 9
    SUBPOLAR_MOIST_TUNDRA = 10
    SUBPOLAR_WET_TUNDRA = 11
    SUBPOLAR_RAIN_TUNDRA = 12
    SUBPOLAR_MIRE = 13

    BOREAL_DESERT = 14
    BOREAL_COLD_STEPPE = 15
    BOREAL_DRY_SCRUB = 16
    BOREAL_WOODLAND = 17
    BOREAL_MOIST_FOREST = 18
    BOREAL_WET_FOREST = 19
    BOREAL_RAIN_FOREST = 20
    BOREAL_BOG = 21

    COOL_TEMPERATE_DESERT = 22
    COOL_TEMPERATE_DESERT_SCRUB = 23
    COOL_TEMPERATE_STEPPE = 24
    COOL_TEMPERATE_SHRUBLAND = 25
    COOL_TEMPERATE_WOODLAND = 26
    COOL_TEMPERATE_MOIST_FOREST = 27
    COOL_TEMPERATE_WET_FOREST = 28
    COOL_TEMPERATE_RAIN_FOREST = 29

    WARM_TEMPERATE_DESERT = 30
    WARM_TEMPERATE_DESERT_SCRUB = 31
    WARM_TEMPERATE_THORN_SCRUB = 32
    WARM_TEMPERATE_DRY_FOREST = 33
    WARM_TEMPERATE_WOODLAND = 34
    WARM_TEMPERATE_MOIST_FOREST = 35
    WARM_TEMPERATE_WET_FOREST = 36
    WARM_TEMPERATE_RAIN_FOREST = 37

    TROPICAL_DESERT = 38
    TROPICAL_DESERT_SCRUB = 39
    TROPICAL_THORN_WOODLAND = 40
    TROPICAL_VERY_DRY_FOREST = 41
    TROPICAL_DRY_FOREST = 42
    TROPICAL_MOIST_FOREST = 43
    TROPICAL_WET_FOREST = 44
    TROPICAL_RAIN_FOREST = 45


class BiomeCategory(IntEnum):
    WATER = 0
    ICE = 1
    TUNDRA = 2
    DESERT = 3
    GRASSLAND = 4
    SHRUBLAND = 5
    WOODLAND = 6
    FOREST = 7
    RAIN_FOREST = 8
    WETLAND = 9


_B = BiomeType

# Rows: TemperatureBand. Columns: humidity bands, super-arid to super-humid.
BIOME_TABLE = np.array(
    [
        [_B.POLAR_DESERT, _B.POLAR_DESERT, _B.POLAR_DESERT, _B.POLAR_BARRENS,
         _B.POLAR_BARRENS, _B.POLAR_ICE, _B.POLAR_ICE, _B.POLAR_ICE],
        [_B.SUBPOLAR_COLD_DESERT, _B.SUBPOLAR_FELLFIELD, _B.SUBPOLAR_DRY_TUNDRA, _B.SUBPOLAR_SHRUB_TUNDRA,
         _B.SUBPOLAR_MOIST_TUNDRA, _B.SUBPOLAR_WET_TUNDRA, _B.SUBPOLAR_RAIN_TUNDRA, _B.SUBPOLAR_MIRE],
        [_B.BOREAL_DESERT, _B.BOREAL_COLD_STEPPE, _B.BOREAL_DRY_SCRUB, _B.BOREAL_WOODLAND,
         _B.BOREAL_MOIST_FOREST, _B.BOREAL_WET_FOREST, _B.BOREAL_RAIN_FOREST, _B.BOREAL_BOG],
        [_B.COOL_TEMPERATE_DESERT, _B.COOL_TEMPERATE_DESERT_SCRUB, _B.COOL_TEMPERATE_STEPPE,
         _B.COOL_TEMPERATE_SHRUBLAND, _B.COOL_TEMPERATE_WOODLAND, _B.COOL_TEMPERATE_MOIST_FOREST,
         _B.COOL_TEMPERATE_WET_FOREST, _B.COOL_TEMPERATE_RAIN_FOREST],
        [_B.WARM_TEMPERATE_DESERT, _B.WARM_TEMPERATE_DESERT_SCRUB, _B.WARM_TEMPERATE_THORN_SCRUB,
         _B.WARM_TEMPERATE_DRY_FOREST, _B.WARM_TEMPERATE_WOODLAND, _B.WARM_TEMPERATE_MOIST_FOREST,
         _B.WARM_TEMPERATE_WET_FOREST, _B.WARM_TEMPERATE_RAIN_FOREST],
        [_B.TROPICAL_DESERT, _B.TROPICAL_DESERT_SCRUB, _B.TROPICAL_THORN_WOODLAND,
         _B.TROPICAL_VERY_DRY_FOREST, _B.TROPICAL_DRY_FOREST, _B.TROPICAL_MOIST_FOREST,
         _B.TROPICAL_WET_FOREST, _B.TROPICAL_RAIN_FOREST],
    ],
    dtype=np.uint8,
)
BIOME_TABLE.setflags(write=False)

_C = BiomeCategory
BIOME_CATEGORY: dict[BiomeType, BiomeCategory] = {
    _B.OCEAN: _C.WATER,
    _B.SHALLOW_WATER: _C.WATER,
    _B.GLACIER: _C.ICE,
    _B.POLAR_DESERT: _C.DESERT,
    _B.POLAR_BARRENS: _C.TUNDRA,
    _B.POLAR_ICE: _C.ICE,
    _B.SUBPOLAR_COLD_DESERT: _C.DESERT,
    _B.SUBPOLAR_FELLFIELD: _C.TUNDRA,
    _B.SUBPOLAR_DRY_TUNDRA: _C.TUNDRA,
    _B.SUBPOLAR_SHRUB_TUNDRA: _C.TUNDRA,
    _B.SUBPOLAR_MOIST_TUNDRA: _C.TUNDRA,
    _B.SUBPOLAR_WET_TUNDRA: _C.TUNDRA,
    _B.SUBPOLAR_RAIN_TUNDRA: _C.TUNDRA,
    _B.SUBPOLAR_MIRE: _C.WETLAND,
    _B.BOREAL_DESERT: _C.DESERT,
    _B.BOREAL_COLD_STEPPE: _C.GRASSLAND,
    _B.BOREAL_DRY_SCRUB: _C.SHRUBLAND,
    _B.BOREAL_WOODLAND: _C.WOODLAND,
    _B.BOREAL_MOIST_FOREST: _C.FOREST,
    _B.BOREAL_WET_FOREST: _C.FOREST,
    _B.BOREAL_RAIN_FOREST: _C.RAIN_FOREST,
    _B.BOREAL_BOG: _C.WETLAND,
    _B.COOL_TEMPERATE_DESERT: _C.DESERT,
    _B.COOL_TEMPERATE_DESERT_SCRUB: _C.SHRUBLAND,
    _B.COOL_TEMPERATE_STEPPE: _C.GRASSLAND,
    _B.COOL_TEMPERATE_SHRUBLAND: _C.SHRUBLAND,
    _B.COOL_TEMPERATE_WOODLAND: _C.WOODLAND,
    _B.COOL_TEMPERATE_MOIST_FOREST: _C.FOREST,
    _B.COOL_TEMPERATE_WET_FOREST: _C.FOREST,
    _B.COOL_TEMPERATE_RAIN_FOREST: _C.RAIN_FOREST,
    _B.WARM_TEMPERATE_DESERT: _C.DESERT,
    _B.WARM_TEMPERATE_DESERT_SCRUB: _C.SHRUBLAND,
    _B.WARM_TEMPERATE_THORN_SCRUB: _C.SHRUBLAND,
    _B.WARM_TEMPERATE_DRY_FOREST: _C.FOREST,
    _B.WARM_TEMPERATE_WOODLAND: _C.WOODLAND,
    _B.WARM_TEMPERATE_MOIST_FOREST: _C.FOREST,
    _B.WARM_TEMPERATE_WET_FOREST: _C.FOREST,
    _B.WARM_TEMPERATE_RAIN_FOREST: _C.RAIN_FOREST,
    _B.TROPICAL_DESERT: _C.DESERT,
    _B.TROPICAL_DESERT_SCRUB: _C.SHRUBLAND,
    _B.TROPICAL_THORN_WOODLAND: _C.WOODLAND,
    _B.TROPICAL_VERY_DRY_FOREST: _C.FOREST,
    _B.TROPICAL_DRY_FOREST: _C.FOREST,
    _B.TROPICAL_MOIST_FOREST: _C.FOREST,
    _B.TROPICAL_WET_FOREST: _C.FOREST,
    _B.TROPICAL_RAIN_FOREST: _C.RAIN_FOREST,
}


def biome_category(biome: BiomeType | int) -> BiomeCategory:
    return BIOME_CATEGORY[BiomeType(int(biome))]


def temperature_bands(temperature: np.ndarray, cfg: BiomeConfig) -> np.ndarray:
    edges = np.asarray(cfg.temperature_edges, dtype=np.float64)
    return np.searchsorted(edges, temperature.astype(np.float64), side="right").astype(np.uint8)


def smooth_biomes(biomes: np.ndarray, editable: np.ndarray, *, votes: int) -> np.ndarray:
    """One 3x3 majority pass; only `editable` cells change, and only to a table biome.

    Neighbours outside `editable` do not vote, so ocean and ice never spread.
    """

    out = biomes.copy()
    best_count = np.zeros(biomes.shape, dtype=np.int32)
    best_id = biomes.copy()
    window = np.ones((3, 3), dtype=np.int32)
    for biome_id in np.unique(biomes[editable]):
        members = (editable & (biomes == biome_id)).astype(np.int32)
        count = convolve(members, window, mode="constant", cval=0)
        better = count > best_count
        best_count[better] = count[better]
        best_id[better] = biome_id
    change = editable & (best_count >= votes)
    out[change] = best_id[change]
    return out


def classify_biomes(
    temperature: np.ndarray,
    humidity_bands: np.ndarray,
    height: np.ndarray,
    ocean_mask: np.ndarray,
    thresholds: ElevationThresholds,
    cfg: BiomeConfig,
) -> np.ndarray:
    """Assign exactly one BiomeType to every cell."""

    require_finite("temperature", temperature, stage=_STAGE)
    if humidity_bands.size and int(humidity_bands.max()) >= BIOME_TABLE.shape[1]:
        raise NumericalDivergence(f"humidity band {int(humidity_bands.max())} outside the biome table", stage=_STAGE)

    t_bands = temperature_bands(temperature, cfg)
    biomes = BIOME_TABLE[t_bands, humidity_bands].astype(np.uint8)

    land = ~ocean_mask
    t = temperature.astype(np.float64)
    glacier = land & (
        (t < cfg.glacier_temperature)
        | ((height >= thresholds.peak) & (t < cfg.peak_glacier_temperature))
    )
    table_cells = land & ~glacier

    for _ in range(cfg.smoothing_passes):
        biomes = smooth_biomes(biomes, table_cells, votes=cfg.majority_votes)

    biomes[glacier] = BiomeType.GLACIER
    if np.any(ocean_mask):
        depth = thresholds.sea - height.astype(np.float64)
        max_depth = float(np.max(depth[ocean_mask]))
        shallow = ocean_mask & (depth <= cfg.shallow_depth_fraction * max_depth)
        biomes[ocean_mask] = BiomeType.OCEAN
        biomes[shallow] = BiomeType.SHALLOW_WATER

    _check_totality(biomes, ocean_mask)
    return freeze(biomes)


def _check_totality(biomes: np.ndarray, ocean_mask: np.ndarray) -> None:
    water = np.isin(biomes, (BiomeType.OCEAN, BiomeType.SHALLOW_WATER))
    if np.any(water != ocean_mask):
        raise NumericalDivergence("water biomes do not match the ocean mask", stage=_STAGE)
    if int(biomes.max(initial=0)) >= len(BiomeType):
        raise NumericalDivergence("biome map holds values outside the catalog", stage=_STAGE)
