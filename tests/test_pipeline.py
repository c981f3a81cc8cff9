from __future__ import annotations

import hashlib

import numpy as np
import pytest

from worldclimate.biomes import BiomeType
from worldclimate.config import ErosionConfig, PipelineConfig, RainShadowConfig, SemanticParams
from worldclimate.errors import ConfigurationError, GenerationCancelled, ResourceExhaustion
from worldclimate.foundation import TerrainFoundation
from worldclimate.hydrology import WaterClass
from worldclimate.pipeline import generate_world


STAGES = (
    "temperature",
    "base_precipitation",
    "orographic",
    "coastal_moisture",
    "erosion",
    "water_features",
    "irrigation",
    "humidity",
    "biome",
)


def _hash(arr: np.ndarray) -> str:
    return hashlib.sha256(arr.tobytes()).hexdigest()


def _island(size: int = 48) -> np.ndarray:
    yy, xx = np.mgrid[0:size, 0:size].astype(np.float64)
    c = (size - 1) / 2.0
    r = np.hypot(yy - c, xx - c) / (size / 2.0)
    height = 1.0 - 1.6 * r + 0.05 * np.sin(xx * 0.7) * np.cos(yy * 0.5)
    return height.astype(np.float32)


def _foundation() -> TerrainFoundation:
    return TerrainFoundation.from_heightmap(_island(), sea_level=0.0)


def test_same_seed_same_world() -> None:
    foundation = _foundation()
    a = generate_world(foundation, 7)
    b = generate_world(foundation, 7)

    assert _hash(a.biomes) == _hash(b.biomes)
    assert _hash(a.humidity.humidity) == _hash(b.humidity.humidity)
    assert _hash(a.height) == _hash(b.height)
    assert _hash(a.erosion.flow.discharge) == _hash(b.erosion.flow.discharge)
    assert a.water.rivers == b.water.rivers
    assert a.axial_tilt == b.axial_tilt


def test_different_seeds_differ() -> None:
    foundation = _foundation()
    a = generate_world(foundation, 7)
    b = generate_world(foundation, 8)

    assert _hash(a.temperature.temperature) != _hash(b.temperature.temperature)


def test_fields_have_grid_shape_range_and_are_read_only() -> None:
    foundation = _foundation()
    result = generate_world(foundation, 3)
    ocean = foundation.ocean_mask

    assert result.shape == (48, 48)
    fields = (
        result.temperature.temperature,
        result.precipitation_base,
        result.precipitation_rain_shadow,
        result.precipitation_final,
        result.distance_to_ocean,
        result.height,
        result.erosion.flow.discharge,
        result.water.classification,
        result.irrigation,
        result.humidity.humidity,
        result.humidity.bands,
        result.biomes,
    )
    for values in fields:
        assert values.shape == (48, 48)
        assert not values.flags.writeable

    assert 0.0 <= float(result.temperature.temperature.min()) <= float(result.temperature.temperature.max()) <= 1.0
    assert float(result.precipitation_base.max()) <= 1.0
    assert float(result.precipitation_final.min()) >= 0.0
    assert float(result.precipitation_final.max()) <= 1.8 + 1e-6
    assert int(result.humidity.bands.max()) <= 7
    assert int(result.biomes.max()) < len(BiomeType)
    assert np.all(result.water.classification[ocean] == WaterClass.DRY)
    assert np.all(np.isin(result.biomes[ocean], (BiomeType.OCEAN, BiomeType.SHALLOW_WATER)))
    assert not np.isin(result.biomes[~ocean], (BiomeType.OCEAN, BiomeType.SHALLOW_WATER)).any()
    assert float(result.height[ocean].max()) < foundation.thresholds.sea
    assert set(result.stage_seconds) == set(STAGES)


def test_metrics_agree_with_fields() -> None:
    foundation = _foundation()
    result = generate_world(foundation, 5)
    metrics = result.metrics

    assert metrics.river_count == len(result.water.rivers)
    assert metrics.lake_count == len(result.water.lakes)
    assert metrics.land_fraction == pytest.approx(float(np.mean(~foundation.ocean_mask)))
    assert sum(metrics.biome_counts.values()) == 48 * 48
    assert sum(metrics.category_counts.values()) == 48 * 48
    assert sum(metrics.water_class_counts.values()) == 48 * 48
    assert metrics.to_dict()["river_count"] == metrics.river_count


def test_ridge_shadows_leeward_side() -> None:
    height = np.full((32, 32), 0.5, dtype=np.float32)
    height[:, 12] = 1.0
    foundation = TerrainFoundation.from_heightmap(height, sea_level=-1.0)
    config = PipelineConfig(rain_shadow=RainShadowConfig(fixed_wind_x=1.0))
    result = generate_world(foundation, 2, config)

    assert not foundation.ocean_mask.any()
    assert np.allclose(result.rain_shadow.blocking[:, 13:], 0.05)
    assert np.allclose(result.rain_shadow.blocking[:, :13], 0.0)
    assert np.allclose(result.precipitation_rain_shadow[:, 13:], result.precipitation_base[:, 13:] * 0.95, atol=1e-6)
    assert np.array_equal(result.precipitation_final, result.precipitation_rain_shadow)
    assert np.all(result.distance_to_ocean == -1)


def test_cancel_before_first_stage() -> None:
    with pytest.raises(GenerationCancelled) as info:
        generate_world(_foundation(), 7, should_cancel=lambda: True)
    assert info.value.stage == "temperature"
    assert info.value.seed == 7


def test_cancel_during_erosion() -> None:
    calls = []

    def cancel_after_six() -> bool:
        calls.append(1)
        return len(calls) >= 7

    with pytest.raises(GenerationCancelled) as info:
        generate_world(_foundation(), 7, should_cancel=cancel_after_six)
    assert info.value.stage == "erosion"
    assert "erosion_params" in info.value.parameters


def test_invalid_config_reports_seed() -> None:
    config = PipelineConfig(semantic=SemanticParams(river_density=1.5))
    with pytest.raises(ConfigurationError) as info:
        generate_world(_foundation(), 9, config)
    assert info.value.seed == 9
    assert info.value.stage == "configuration"
    assert info.value.parameters["semantic"]["river_density"] == 1.5


def test_time_budget_exceeded() -> None:
    with pytest.raises(ResourceExhaustion):
        generate_world(_foundation(), 7, PipelineConfig(time_budget_seconds=1e-9))


def test_particle_budget_exceeded() -> None:
    config = PipelineConfig(erosion=ErosionConfig(max_particle_steps=1))
    with pytest.raises(ResourceExhaustion) as info:
        generate_world(_foundation(), 7, config)
    assert info.value.stage == "erosion"
    assert info.value.seed == 7
