"""Configuration models for climate, hydrology, and biome generation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, is_dataclass
import math
from typing import Any

from worldclimate.errors import ConfigurationError


@dataclass(frozen=True)
class TemperatureConfig:
    """Latitude, noise, and altitude terms of the temperature field.

    `axial_tilt` and `distance_to_sun` are per-world scalars. Leaving them as
    None samples them from the world seed with a half-width-at-half-maximum
    Gaussian around the listed means.
    """

    axial_tilt: float | None = None
    distance_to_sun: float | None = None
    axial_tilt_hwhm: float = 0.07
    axial_tilt_limit: float = 0.5
    distance_to_sun_hwhm: float = 0.12
    min_distance_to_sun: float = 0.1
    latitude_weight: float = 12.0
    noise_weight: float = 1.0
    noise_base_res: int = 8
    noise_octaves: int = 8
    # Cooling reaches zero at (peak - mountain) * span above the mountain line,
    # but the factor is floored at `min_cooling_factor`.
    cooling_span_factor: float = 2.0
    min_cooling_factor: float = 0.033


@dataclass(frozen=True)
class PrecipitationConfig:
    """Base precipitation noise reshaped by temperature."""

    gamma: float = 2.0
    bonus: float = 0.2
    noise_base_res: int = 3
    noise_octaves: int = 6
    low_percentile: float = 30.0
    medium_percentile: float = 70.0
    high_percentile: float = 95.0


@dataclass(frozen=True)
class RainShadowConfig:
    """Orographic blocking traced upwind along prevailing winds."""

    max_steps: int = 20
    block_per_cell: float = 0.05
    max_reduction: float = 0.8
    # Barrier height as a fraction of (peak - sea) from the input thresholds.
    barrier_fraction: float = 0.05
    # Overrides the latitude bands with one wind for the whole grid (+1 = eastward).
    fixed_wind_x: float | None = None


@dataclass(frozen=True)
class CoastalConfig:
    """Exponential moisture bonus by 4-connected distance to ocean."""

    max_bonus: float = 0.8
    decay_range: float = 30.0
    # 1.0 removes the whole bonus at the peak threshold.
    elevation_resistance: float = 1.0


@dataclass(frozen=True)
class SemanticParams:
    """Normalized knobs that are mapped to physical erosion constants."""

    river_density: float = 0.5
    river_meandering: float = 0.5
    valley_depth: float = 0.5
    erosion_speed: float = 0.5


@dataclass(frozen=True)
class ErosionConfig:
    """Ranges and fixed constants for the particle erosion simulation."""

    particles_per_land_cell: float = 0.25
    batch_count: int = 32
    age_per_grid_cell: float = 1.5
    min_age: int = 32
    gravity_reference: float = 1.0
    momentum_min: float = 0.0
    momentum_max: float = 2.0
    entrainment_min: float = 1.0
    entrainment_max: float = 20.0
    deposition_min: float = 0.05
    deposition_max: float = 0.6
    evaporation_rate: float = 0.02
    initial_volume: float = 1.0
    min_volume: float = 0.05
    drag: float = 0.1
    max_speed: float = 1.0
    stagnation_speed: float = 1e-3
    smoothing_rate: float = 0.1
    # None clamps carving at the lowest input elevation.
    height_floor: float | None = None
    max_particle_steps: int = 50_000_000


@dataclass(frozen=True)
class WaterConfig:
    """Normalized discharge thresholds for water classification."""

    discharge_scale: float = 5.0
    creek_threshold: float = 0.25
    stream_threshold: float = 0.40
    river_threshold: float = 0.55
    lake_threshold: float = 0.55
    # |momentum| / (discharge * max_speed) below this pools into a lake.
    lake_max_coherence: float = 0.2
    min_river_cells: int = 2


@dataclass(frozen=True)
class MoistureConfig:
    """Irrigation kernel, humidity weights, and quantile band fractions."""

    irrigation_radius: int = 10
    precipitation_weight: float = 1.0
    irrigation_weight: float = 3.0
    band_fractions: tuple[float, ...] = (0.059, 0.222, 0.493, 0.764, 0.927, 0.986, 0.998)


@dataclass(frozen=True)
class BiomeConfig:
    """Temperature band edges, ice overrides, and border smoothing."""

    temperature_edges: tuple[float, ...] = (0.10, 0.25, 0.40, 0.55, 0.75)
    glacier_temperature: float = 0.05
    peak_glacier_temperature: float = 0.25
    shallow_depth_fraction: float = 0.2
    smoothing_passes: int = 1
    majority_votes: int = 5


@dataclass(frozen=True)
class PipelineConfig:
    """Primary generation configuration."""

    semantic: SemanticParams = field(default_factory=SemanticParams)
    temperature: TemperatureConfig = field(default_factory=TemperatureConfig)
    precipitation: PrecipitationConfig = field(default_factory=PrecipitationConfig)
    rain_shadow: RainShadowConfig = field(default_factory=RainShadowConfig)
    coastal: CoastalConfig = field(default_factory=CoastalConfig)
    erosion: ErosionConfig = field(default_factory=ErosionConfig)
    water: WaterConfig = field(default_factory=WaterConfig)
    moisture: MoistureConfig = field(default_factory=MoistureConfig)
    biome: BiomeConfig = field(default_factory=BiomeConfig)
    time_budget_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MapContext:
    """Grid size and terrain roughness used to scale erosion constants."""

    width: int
    height: int
    average_roughness: float


@dataclass(frozen=True)
class ErosionParams:
    """Effective physical constants of one erosion run.

    gravity: acceleration along -grad(h), divided by particle volume.
    momentum_transfer: pull toward the accumulated momentum direction of a cell.
    entrainment: extra carrying capacity per unit of normalized discharge.
    deposition_rate: fraction of the capacity deficit exchanged per step.
    evaporation_rate: fraction of volume and sediment lost per step.
    drag: fraction of velocity lost per step.
    max_speed: velocity magnitude cap, in cells per step.
    smoothing_rate: weight of each batch when blended into the flow fields.
    """

    particle_count: int
    batch_count: int
    max_age: int
    gravity: float
    momentum_transfer: float
    entrainment: float
    deposition_rate: float
    evaporation_rate: float
    drag: float
    max_speed: float
    initial_volume: float
    min_volume: float
    stagnation_speed: float
    smoothing_rate: float
    height_floor: float | None

    @property
    def particles_per_batch(self) -> float:
        return max(self.particle_count / max(self.batch_count, 1), 1.0)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _lerp(a: float, b: float, t: float) -> float:
    return (1.0 - t) * a + t * b


def derive_erosion_params(
    semantic: SemanticParams,
    context: MapContext,
    land_cells: int,
    cfg: ErosionConfig,
) -> ErosionParams:
    """Map semantic knobs and map context to physical erosion constants.

    Particle count scales with land area and the age limit with grid length,
    so one setting yields comparable channel density at every grid size.
    Gravity is divided by the mean land gradient so raw elevation units
    do not change how hard particles accelerate.
    """

    roughness = max(float(context.average_roughness), 1e-3)
    particle_count = int(round(semantic.river_density * cfg.particles_per_land_cell * max(land_cells, 0)))
    max_age = max(int(cfg.min_age), int(round(cfg.age_per_grid_cell * math.sqrt(context.width * context.height))))
    return ErosionParams(
        particle_count=particle_count,
        batch_count=int(cfg.batch_count),
        max_age=max_age,
        gravity=cfg.gravity_reference * (0.5 + semantic.erosion_speed) / roughness,
        momentum_transfer=_lerp(cfg.momentum_min, cfg.momentum_max, semantic.river_meandering),
        entrainment=_lerp(cfg.entrainment_min, cfg.entrainment_max, semantic.valley_depth),
        deposition_rate=_lerp(cfg.deposition_min, cfg.deposition_max, semantic.erosion_speed),
        evaporation_rate=cfg.evaporation_rate,
        drag=cfg.drag,
        max_speed=cfg.max_speed,
        initial_volume=cfg.initial_volume,
        min_volume=cfg.min_volume,
        stagnation_speed=cfg.stagnation_speed,
        smoothing_rate=cfg.smoothing_rate,
        height_floor=cfg.height_floor,
    )


def _iter_numbers(prefix: str, obj: Any):
    for f in fields(obj):
        value = getattr(obj, f.name)
        name = f"{prefix}.{f.name}" if prefix else f.name
        if is_dataclass(value):
            yield from _iter_numbers(name, value)
        elif isinstance(value, tuple):
            for i, item in enumerate(value):
                yield f"{name}[{i}]", item
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            yield name, value


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigurationError(message, stage="configuration")


def validate_config(config: PipelineConfig) -> None:
    """Reject non-finite values, out-of-range knobs, and misordered thresholds."""

    for name, value in _iter_numbers("", config):
        _require(math.isfinite(value), f"{name} must be finite, got {value!r}")

    s = config.semantic
    for name in ("river_density", "river_meandering", "valley_depth", "erosion_speed"):
        value = getattr(s, name)
        _require(0.0 <= value <= 1.0, f"semantic.{name} must be in [0, 1], got {value}")

    t = config.temperature
    _require(t.noise_base_res >= 1 and t.noise_octaves >= 1, "temperature noise resolution and octaves must be >= 1")
    _require(t.distance_to_sun is None or t.distance_to_sun > 0.0, "temperature.distance_to_sun must be positive")
    _require(t.min_distance_to_sun > 0.0, "temperature.min_distance_to_sun must be positive")
    _require(0.0 < t.min_cooling_factor <= 1.0, "temperature.min_cooling_factor must be in (0, 1]")
    _require(t.cooling_span_factor > 0.0, "temperature.cooling_span_factor must be positive")

    p = config.precipitation
    _require(p.gamma > 0.0, "precipitation.gamma must be positive")
    _require(0.0 < p.bonus < 1.0, "precipitation.bonus must be in (0, 1)")
    _require(p.noise_base_res >= 1 and p.noise_octaves >= 1, "precipitation noise resolution and octaves must be >= 1")
    _require(
        0.0 <= p.low_percentile <= p.medium_percentile <= p.high_percentile <= 100.0,
        "precipitation percentiles must be ordered within [0, 100]",
    )

    r = config.rain_shadow
    _require(r.max_steps >= 0, "rain_shadow.max_steps must be >= 0")
    _require(r.block_per_cell >= 0.0, "rain_shadow.block_per_cell must be >= 0")
    _require(0.0 <= r.max_reduction < 1.0, "rain_shadow.max_reduction must be in [0, 1)")
    _require(r.barrier_fraction >= 0.0, "rain_shadow.barrier_fraction must be >= 0")
    _require(r.fixed_wind_x is None or -1.0 <= r.fixed_wind_x <= 1.0, "rain_shadow.fixed_wind_x must be in [-1, 1]")

    c = config.coastal
    _require(c.max_bonus >= 0.0, "coastal.max_bonus must be >= 0")
    _require(c.decay_range > 0.0, "coastal.decay_range must be positive")
    _require(c.elevation_resistance >= 0.0, "coastal.elevation_resistance must be >= 0")

    e = config.erosion
    _require(e.particles_per_land_cell >= 0.0, "erosion.particles_per_land_cell must be >= 0")
    _require(e.batch_count >= 1, "erosion.batch_count must be >= 1")
    _require(e.min_age >= 1, "erosion.min_age must be >= 1")
    _require(e.initial_volume > e.min_volume > 0.0, "erosion volumes must satisfy initial > min > 0")
    _require(0.0 <= e.evaporation_rate < 1.0, "erosion.evaporation_rate must be in [0, 1)")
    _require(0.0 <= e.drag < 1.0, "erosion.drag must be in [0, 1)")
    _require(e.max_speed > 0.0, "erosion.max_speed must be positive")
    _require(0.0 < e.smoothing_rate <= 1.0, "erosion.smoothing_rate must be in (0, 1]")
    _require(e.max_particle_steps >= 1, "erosion.max_particle_steps must be >= 1")
    for lo, hi in (
        ("momentum_min", "momentum_max"),
        ("entrainment_min", "entrainment_max"),
        ("deposition_min", "deposition_max"),
    ):
        _require(0.0 <= getattr(e, lo) <= getattr(e, hi), f"erosion.{lo} must be >= 0 and <= erosion.{hi}")
    _require(e.deposition_max <= 1.0, "erosion.deposition_max must be <= 1")

    w = config.water
    _require(w.discharge_scale > 0.0, "water.discharge_scale must be positive")
    _require(
        0.0 < w.creek_threshold <= w.stream_threshold <= w.river_threshold <= w.lake_threshold <= 1.0,
        "water thresholds must satisfy 0 < creek <= stream <= river <= lake <= 1",
    )
    _require(w.lake_max_coherence >= 0.0, "water.lake_max_coherence must be >= 0")
    _require(w.min_river_cells >= 2, "water.min_river_cells must be >= 2")

    m = config.moisture
    _require(m.irrigation_radius >= 0, "moisture.irrigation_radius must be >= 0")
    _require(m.precipitation_weight >= 0.0, "moisture.precipitation_weight must be >= 0")
    _require(m.irrigation_weight > m.precipitation_weight, "moisture.irrigation_weight must exceed precipitation_weight")
    _require(len(m.band_fractions) == 7, "moisture.band_fractions must hold 7 values")
    _require(
        all(0.0 < a < b < 1.0 for a, b in zip(m.band_fractions, m.band_fractions[1:])),
        "moisture.band_fractions must be strictly ascending within (0, 1)",
    )

    b = config.biome
    _require(len(b.temperature_edges) == 5, "biome.temperature_edges must hold 5 values")
    _require(
        all(a < c for a, c in zip(b.temperature_edges, b.temperature_edges[1:])),
        "biome.temperature_edges must be strictly ascending",
    )
    _require(0.0 <= b.shallow_depth_fraction <= 1.0, "biome.shallow_depth_fraction must be in [0, 1]")
    _require(b.smoothing_passes >= 0, "biome.smoothing_passes must be >= 0")
    _require(1 <= b.majority_votes <= 9, "biome.majority_votes must be in [1, 9]")

    _require(
        config.time_budget_seconds is None or config.time_budget_seconds > 0.0,
        "time_budget_seconds must be positive",
    )
