"""Ordered climate, hydrology, and biome pipeline over a terrain foundation."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Callable

import numpy as np

from worldclimate.biomes import classify_biomes
from worldclimate.climate import (
    PrecipitationThresholds,
    RainShadowResult,
    TemperatureResult,
    apply_coastal_moisture,
    apply_rain_shadow,
    compute_base_precipitation,
    compute_temperature,
)
from worldclimate.config import ErosionParams, MapContext, PipelineConfig, derive_erosion_params, validate_config
from worldclimate.erosion import ErosionResult, run_erosion
from worldclimate.errors import GenerationCancelled, ResourceExhaustion, WorldGenError
from worldclimate.fields import require_range, require_shape
from worldclimate.foundation import ElevationThresholds, TerrainFoundation
from worldclimate.hydrology import WaterFeatures, extract_water_features
from worldclimate.metrics import WorldMetrics, compute_world_metrics
from worldclimate.moisture import HumidityResult, compute_humidity, compute_irrigation
from worldclimate.rng import RngStream


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorldResult:
    """Every field of one run; only ever built once all stages succeeded."""

    seed: int
    config: PipelineConfig
    thresholds: ElevationThresholds
    temperature: TemperatureResult
    precipitation_base: np.ndarray
    precipitation_thresholds: PrecipitationThresholds
    rain_shadow: RainShadowResult
    precipitation_final: np.ndarray
    distance_to_ocean: np.ndarray
    erosion: ErosionResult
    water: WaterFeatures
    irrigation: np.ndarray
    humidity: HumidityResult
    biomes: np.ndarray
    metrics: WorldMetrics
    stage_seconds: dict[str, float]

    @property
    def shape(self) -> tuple[int, int]:
        return self.biomes.shape

    @property
    def axial_tilt(self) -> float:
        return self.temperature.axial_tilt

    @property
    def distance_to_sun(self) -> float:
        return self.temperature.distance_to_sun

    @property
    def precipitation_rain_shadow(self) -> np.ndarray:
        return self.rain_shadow.precipitation

    @property
    def height(self) -> np.ndarray:
        return self.erosion.height

    @property
    def erosion_params(self) -> ErosionParams:
        return self.erosion.params


def build_map_context(foundation: TerrainFoundation) -> MapContext:
    """Grid size plus the mean elevation gradient over land."""

    h, w = foundation.shape
    land = foundation.land_mask
    if h > 1 and w > 1:
        gy, gx = np.gradient(foundation.height.astype(np.float64))
    else:
        gy = gx = np.zeros(foundation.shape, dtype=np.float64)
    slope = np.hypot(gx, gy)
    roughness = float(np.mean(slope[land])) if np.any(land) else 0.0
    return MapContext(width=w, height=h, average_roughness=max(roughness, 1e-3))


class _Run:
    """Cancellation, deadline, timing, and error context for one generation."""

    def __init__(
        self,
        seed: int,
        config: PipelineConfig,
        should_cancel: Callable[[], bool] | None,
    ) -> None:
        self.seed = seed
        self.should_cancel = should_cancel
        self.parameters: dict[str, Any] = config.to_dict()
        self.deadline = None
        if config.time_budget_seconds is not None:
            self.deadline = time.perf_counter() + config.time_budget_seconds
        self.stage_seconds: dict[str, float] = {}

    def checkpoint(self, stage: str) -> None:
        if self.should_cancel is not None and self.should_cancel():
            raise GenerationCancelled("generation cancelled", stage=stage, seed=self.seed, parameters=self.parameters)
        if self.deadline is not None and time.perf_counter() > self.deadline:
            raise ResourceExhaustion("time budget exceeded", stage=stage, seed=self.seed, parameters=self.parameters)

    def stage(
        self,
        name: str,
        fn: Callable[..., Any],
        *args: Any,
        check: Callable[[Any], None] | None = None,
        **kwargs: Any,
    ) -> Any:
        self.checkpoint(name)
        start = time.perf_counter()
        try:
            result = fn(*args, **kwargs)
            if check is not None:
                check(result)
        except WorldGenError as exc:
            exc.with_context(stage=name, seed=self.seed, parameters=self.parameters)
            logger.error("Stage %s failed: %s", name, exc)
            raise
        elapsed = time.perf_counter() - start
        self.stage_seconds[name] = elapsed
        logger.info("Stage %s finished in %.3f s", name, elapsed)
        return result


def generate_world(
    foundation: TerrainFoundation,
    seed: int,
    config: PipelineConfig | None = None,
    *,
    should_cancel: Callable[[], bool] | None = None,
) -> WorldResult:
    """Run every stage in order and return the finished world.

    Any failure propagates as a WorldGenError carrying the stage, seed, and
    effective parameters; no partially built result is ever returned.
    """

    config = config or PipelineConfig()
    try:
        validate_config(config)
    except WorldGenError as exc:
        exc.with_context(seed=seed, parameters=config.to_dict())
        raise

    run = _Run(seed, config, should_cancel)
    rng = RngStream(seed)
    height = foundation.height
    ocean = foundation.ocean_mask
    thresholds = foundation.thresholds
    shape = foundation.shape
    logger.info("Generating world %dx%d with seed %d", shape[1], shape[0], seed)

    temperature = run.stage(
        "temperature",
        compute_temperature,
        height,
        thresholds,
        config.temperature,
        rng.fork("temperature"),
        check=lambda r: _check_field("temperature", r.temperature, shape, 0.0, 1.0, "temperature"),
    )

    base = run.stage(
        "base_precipitation",
        compute_base_precipitation,
        temperature.temperature,
        config.precipitation,
        rng.fork("precipitation"),
        check=lambda r: _check_field("base precipitation", r.precipitation, shape, 0.0, 1.0, "base_precipitation"),
    )

    shadow = run.stage(
        "orographic",
        apply_rain_shadow,
        base.precipitation,
        height,
        thresholds,
        config.rain_shadow,
    )
    coastal = run.stage(
        "coastal_moisture",
        apply_coastal_moisture,
        shadow.precipitation,
        height,
        ocean,
        thresholds,
        config.coastal,
        check=lambda r: _check_field(
            "final precipitation", r.precipitation, shape, 0.0, 1.0 + config.coastal.max_bonus, "coastal_moisture"
        ),
    )

    context = build_map_context(foundation)
    params = derive_erosion_params(config.semantic, context, int(np.count_nonzero(~ocean)), config.erosion)
    run.parameters["erosion_params"] = params.to_dict()
    erosion = run.stage(
        "erosion",
        run_erosion,
        height,
        ocean,
        coastal.precipitation,
        params,
        rng.fork("erosion"),
        sea_level=thresholds.sea,
        discharge_scale=config.water.discharge_scale,
        max_particle_steps=config.erosion.max_particle_steps,
        checkpoint=lambda: run.checkpoint("erosion"),
    )
    water = run.stage(
        "water_features",
        extract_water_features,
        erosion.flow,
        ocean,
        config.water,
        max_speed=params.max_speed,
    )

    irrigation = run.stage(
        "irrigation",
        compute_irrigation,
        water.normalized_discharge,
        water.classification,
        ocean,
        config.moisture,
    )
    humidity = run.stage(
        "humidity",
        compute_humidity,
        coastal.precipitation,
        irrigation,
        ocean,
        config.moisture,
    )
    biomes = run.stage(
        "biome",
        classify_biomes,
        temperature.temperature,
        humidity.bands,
        erosion.height,
        ocean,
        thresholds,
        config.biome,
    )
    metrics = compute_world_metrics(
        ocean_mask=ocean,
        temperature=temperature.temperature,
        precipitation=coastal.precipitation,
        height_delta=erosion.height_delta,
        water=water,
        biomes=biomes,
    )
    run.checkpoint("finalize")
    logger.info(
        "World ready: %d rivers, %d lakes, %d biomes present",
        metrics.river_count,
        metrics.lake_count,
        len(metrics.biome_counts),
    )

    return WorldResult(
        seed=seed,
        config=config,
        thresholds=thresholds,
        temperature=temperature,
        precipitation_base=base.precipitation,
        precipitation_thresholds=base.thresholds,
        rain_shadow=shadow,
        precipitation_final=coastal.precipitation,
        distance_to_ocean=coastal.distance_to_ocean,
        erosion=erosion,
        water=water,
        irrigation=irrigation,
        humidity=humidity,
        biomes=biomes,
        metrics=metrics,
        stage_seconds=dict(run.stage_seconds),
    )


def _check_field(name: str, values: np.ndarray, shape: tuple[int, int], lo: float, hi: float, stage: str) -> None:
    require_shape(name, values, shape, stage=stage)
    require_range(name, values, lo, hi, stage=stage)
