from __future__ import annotations

import dataclasses
import math

import pytest

from worldclimate.config import (
    ErosionConfig,
    MapContext,
    MoistureConfig,
    PipelineConfig,
    PrecipitationConfig,
    SemanticParams,
    WaterConfig,
    derive_erosion_params,
    validate_config,
)
from worldclimate.errors import ConfigurationError


def _params(width: int, height: int, land_cells: int, roughness: float = 2.0, **semantic):
    context = MapContext(width=width, height=height, average_roughness=roughness)
    return derive_erosion_params(SemanticParams(**semantic), context, land_cells, ErosionConfig())


def test_derived_erosion_constants_default_knobs() -> None:
    p = _params(32, 32, 400)

    assert p.particle_count == 50
    assert p.max_age == 48
    assert p.gravity == pytest.approx(0.5)
    assert p.momentum_transfer == pytest.approx(1.0)
    assert p.entrainment == pytest.approx(10.5)
    assert p.deposition_rate == pytest.approx(0.325)
    assert p.particles_per_batch == pytest.approx(50 / 32)


def test_age_limit_has_a_floor_on_small_grids() -> None:
    assert _params(16, 16, 100).max_age == 32


def test_particle_density_independent_of_grid_size() -> None:
    small = _params(32, 32, 400)
    large = _params(64, 64, 1600)

    assert small.particle_count / 400 == pytest.approx(large.particle_count / 1600)
    assert large.max_age == 96


def test_semantic_extremes_map_to_range_ends() -> None:
    low = _params(32, 32, 400, river_density=0.0, river_meandering=0.0, valley_depth=0.0, erosion_speed=0.0)
    high = _params(32, 32, 400, river_density=1.0, river_meandering=1.0, valley_depth=1.0, erosion_speed=1.0)

    assert low.particle_count == 0
    assert high.particle_count == 100
    assert low.momentum_transfer == 0.0 and high.momentum_transfer == pytest.approx(2.0)
    assert low.entrainment == pytest.approx(1.0) and high.entrainment == pytest.approx(20.0)
    assert low.deposition_rate == pytest.approx(0.05) and high.deposition_rate == pytest.approx(0.6)
    assert high.gravity == pytest.approx(3 * low.gravity)


def test_default_config_is_valid() -> None:
    validate_config(PipelineConfig())


def test_semantic_out_of_range_rejected() -> None:
    cfg = PipelineConfig(semantic=SemanticParams(river_density=1.5))
    with pytest.raises(ConfigurationError, match="river_density") as info:
        validate_config(cfg)
    assert info.value.stage == "configuration"
    assert isinstance(info.value, ValueError)


def test_non_finite_value_rejected() -> None:
    cfg = PipelineConfig(erosion=ErosionConfig(drag=math.nan))
    with pytest.raises(ConfigurationError, match="finite"):
        validate_config(cfg)


def test_misordered_thresholds_rejected() -> None:
    with pytest.raises(ConfigurationError):
        validate_config(PipelineConfig(water=WaterConfig(stream_threshold=0.6)))
    with pytest.raises(ConfigurationError):
        validate_config(PipelineConfig(precipitation=PrecipitationConfig(low_percentile=80.0)))
    with pytest.raises(ConfigurationError):
        validate_config(PipelineConfig(moisture=MoistureConfig(band_fractions=(0.1, 0.2, 0.3))))


def test_irrigation_must_dominate_precipitation() -> None:
    cfg = PipelineConfig(moisture=MoistureConfig(irrigation_weight=1.0, precipitation_weight=1.0))
    with pytest.raises(ConfigurationError, match="irrigation_weight"):
        validate_config(cfg)


def test_config_to_dict_round_trips_nested_values() -> None:
    cfg = PipelineConfig(semantic=SemanticParams(valley_depth=0.9), time_budget_seconds=12.0)
    data = cfg.to_dict()

    assert data["semantic"]["valley_depth"] == 0.9
    assert data["time_budget_seconds"] == 12.0
    assert data["moisture"]["band_fractions"] == MoistureConfig().band_fractions
    assert dataclasses.is_dataclass(cfg)
