"""Temperature and precipitation stages."""

from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np

from worldclimate.config import CoastalConfig, PrecipitationConfig, RainShadowConfig, TemperatureConfig
from worldclimate.fields import freeze, normalize01, quantile_lower, require_finite, taxicab_distance_to
from worldclimate.foundation import ElevationThresholds
from worldclimate.noise import fbm_noise
from worldclimate.rng import RngStream, gaussian_hwhm


logger = logging.getLogger(__name__)

# Absolute latitude in degrees -> horizontal wind, blended across band edges.
_WIND_BAND_EDGES = np.array([25.0, 30.0, 35.0, 55.0, 60.0, 65.0], dtype=np.float64)
_WIND_BAND_VALUES = np.array([-1.0, 0.0, 1.0, 1.0, 0.0, -1.0], dtype=np.float64)


@dataclass(frozen=True)
class TemperatureResult:
    temperature: np.ndarray
    latitude_factor: np.ndarray
    with_noise: np.ndarray
    with_distance: np.ndarray
    axial_tilt: float
    distance_to_sun: float


@dataclass(frozen=True)
class PrecipitationThresholds:
    low: float
    medium: float
    high: float


@dataclass(frozen=True)
class BasePrecipitationResult:
    precipitation: np.ndarray
    thresholds: PrecipitationThresholds


@dataclass(frozen=True)
class RainShadowResult:
    precipitation: np.ndarray
    blocking: np.ndarray
    wind_x: np.ndarray


@dataclass(frozen=True)
class CoastalResult:
    precipitation: np.ndarray
    distance_to_ocean: np.ndarray


def sample_planet_scalars(cfg: TemperatureConfig, rng: RngStream) -> tuple[float, float]:
    """Return (axial_tilt, squared distance_to_sun) for one world.

    Explicit config values win; missing ones are drawn from the stream.
    """

    gen = rng.generator()
    tilt = gaussian_hwhm(gen, 0.0, cfg.axial_tilt_hwhm)
    distance = gaussian_hwhm(gen, 1.0, cfg.distance_to_sun_hwhm)
    if cfg.axial_tilt is not None:
        tilt = cfg.axial_tilt
    if cfg.distance_to_sun is not None:
        distance = cfg.distance_to_sun
    tilt = float(np.clip(tilt, -cfg.axial_tilt_limit, cfg.axial_tilt_limit))
    distance = max(float(distance), cfg.min_distance_to_sun)
    return tilt, distance * distance


def latitude_factor(height: int, axial_tilt: float) -> np.ndarray:
    """Per-row triangle peaking at the tilt-shifted equator, zero half a map away."""

    y_scaled = np.arange(height, dtype=np.float64) / float(height) - 0.5
    return np.interp(
        y_scaled,
        [axial_tilt - 0.5, axial_tilt, axial_tilt + 0.5],
        [0.0, 1.0, 0.0],
        left=0.0,
        right=0.0,
    ).astype(np.float32)


def altitude_cooling(height: np.ndarray, thresholds: ElevationThresholds, cfg: TemperatureConfig) -> np.ndarray:
    """Multiplicative cooling above the mountain line, floored above zero."""

    span = max((thresholds.peak - thresholds.mountain) * cfg.cooling_span_factor, 1e-6)
    above = np.clip(height.astype(np.float64) - thresholds.mountain, 0.0, None)
    factor = np.maximum(1.0 - above / span, cfg.min_cooling_factor)
    return factor.astype(np.float32)


def compute_temperature(
    height: np.ndarray,
    thresholds: ElevationThresholds,
    cfg: TemperatureConfig,
    rng: RngStream,
) -> TemperatureResult:
    """Latitude + noise, divided by distance to sun, cooled above mountains."""

    h, w = height.shape
    tilt, distance_sq = sample_planet_scalars(cfg, rng.fork("planet"))

    lat = np.broadcast_to(latitude_factor(h, tilt)[:, None], (h, w)).astype(np.float32)
    noise = fbm_noise(
        w,
        h,
        rng.fork("noise").generator(),
        base_res=cfg.noise_base_res,
        octaves=cfg.noise_octaves,
    )
    with_noise = (lat * cfg.latitude_weight + noise * cfg.noise_weight) / (cfg.latitude_weight + cfg.noise_weight)
    with_distance = with_noise / distance_sq
    cooled = with_distance * altitude_cooling(height, thresholds, cfg)
    temperature = np.clip(cooled, 0.0, 1.0).astype(np.float32)
    require_finite("temperature", temperature, stage="temperature")

    logger.debug(
        "Temperature: tilt=%.4f, distance_sq=%.4f, mean=%.3f", tilt, distance_sq, float(temperature.mean())
    )
    return TemperatureResult(
        temperature=freeze(temperature),
        latitude_factor=freeze(lat),
        with_noise=freeze(with_noise.astype(np.float32)),
        with_distance=freeze(with_distance.astype(np.float32)),
        axial_tilt=tilt,
        distance_to_sun=distance_sq,
    )


def compute_base_precipitation(
    temperature: np.ndarray,
    cfg: PrecipitationConfig,
    rng: RngStream,
) -> BasePrecipitationResult:
    """Noise in [0, 1] shaped by t^gamma * (1 - bonus) + bonus, then stretched to [0, 1]."""

    h, w = temperature.shape
    noise = fbm_noise(
        w,
        h,
        rng.generator(),
        base_res=cfg.noise_base_res,
        octaves=cfg.noise_octaves,
    )
    base = np.clip((noise + 1.0) * 0.5, 0.0, 1.0)
    t = np.clip(temperature.astype(np.float32), 0.0, 1.0)
    curve = np.power(t, cfg.gamma) * (1.0 - cfg.bonus) + cfg.bonus
    precipitation = normalize01(base * curve)

    low, medium, high = (
        float(v)
        for v in quantile_lower(
            precipitation,
            [cfg.low_percentile / 100.0, cfg.medium_percentile / 100.0, cfg.high_percentile / 100.0],
        )
    )
    return BasePrecipitationResult(
        precipitation=freeze(precipitation),
        thresholds=PrecipitationThresholds(low=low, medium=medium, high=high),
    )


def prevailing_wind_x(normalized_latitude: np.ndarray | float) -> np.ndarray:
    """Horizontal wind per latitude in [0, 1] (0.5 = equator); +1 blows east.

    Trade winds and polar easterlies blow west, westerlies blow east, and
    each band edge blends linearly over 5 degrees.
    """

    abs_lat = np.abs((np.asarray(normalized_latitude, dtype=np.float64) - 0.5) * 180.0)
    return np.interp(abs_lat, _WIND_BAND_EDGES, _WIND_BAND_VALUES).astype(np.float32)


def wind_band_name(normalized_latitude: float) -> str:
    abs_lat = abs((float(normalized_latitude) - 0.5) * 180.0)
    if abs_lat > 60.0:
        return "Polar Easterlies"
    if abs_lat > 30.0:
        return "Westerlies"
    return "Trade Winds"


def row_wind_x(height: int, cfg: RainShadowConfig) -> np.ndarray:
    if cfg.fixed_wind_x is not None:
        return np.full(height, cfg.fixed_wind_x, dtype=np.float32)
    if height == 1:
        return prevailing_wind_x(np.array([0.5]))
    return prevailing_wind_x(np.arange(height, dtype=np.float64) / float(height - 1))


def apply_rain_shadow(
    precipitation: np.ndarray,
    height: np.ndarray,
    thresholds: ElevationThresholds,
    cfg: RainShadowConfig,
) -> RainShadowResult:
    """Reduce precipitation leeward of barriers found by tracing upwind.

    The barrier height comes from the fixed per-world thresholds, so raising
    any upwind cell can only add blocking at a leeward cell.
    """

    h, w = height.shape
    wind_x = row_wind_x(h, cfg)
    barrier = cfg.barrier_fraction * max(thresholds.relief, 0.0)
    elev = height.astype(np.float64)
    limit = elev + barrier

    xs = np.arange(w, dtype=np.int64)[None, :]
    rows = np.arange(h, dtype=np.int64)[:, None]
    blocking = np.zeros((h, w), dtype=np.float64)
    for step in range(1, cfg.max_steps + 1):
        # Truncation toward zero; once a trace leaves the grid it stays out.
        offset = np.trunc(wind_x.astype(np.float64) * step).astype(np.int64)[:, None]
        upwind_x = xs - offset
        inside = (upwind_x >= 0) & (upwind_x < w)
        upwind_h = elev[rows, np.clip(upwind_x, 0, w - 1)]
        blocking += np.where(inside & (upwind_h > limit), cfg.block_per_cell, 0.0)

    blocking = np.minimum(blocking, cfg.max_reduction)
    shadowed = (precipitation.astype(np.float64) * (1.0 - blocking)).astype(np.float32)
    logger.debug("Rain shadow: barrier=%.4g, shadowed cells=%d", barrier, int(np.count_nonzero(blocking)))
    return RainShadowResult(
        precipitation=freeze(shadowed),
        blocking=freeze(blocking.astype(np.float32)),
        wind_x=freeze(wind_x),
    )


def apply_coastal_moisture(
    precipitation: np.ndarray,
    height: np.ndarray,
    ocean_mask: np.ndarray,
    thresholds: ElevationThresholds,
    cfg: CoastalConfig,
) -> CoastalResult:
    """Boost land precipitation by exp(-d / decay) of the BFS distance to ocean."""

    distance = taxicab_distance_to(ocean_mask)
    result = precipitation.astype(np.float64)
    if np.any(ocean_mask):
        bonus = cfg.max_bonus * np.exp(-distance.astype(np.float64) / cfg.decay_range)
        relief = max(thresholds.relief, 1e-6)
        rise = np.clip(height.astype(np.float64) - thresholds.sea, 0.0, None) / relief
        elevation_factor = 1.0 - np.minimum(1.0, cfg.elevation_resistance * rise)
        land = ~ocean_mask
        result[land] = result[land] * (1.0 + bonus[land] * elevation_factor[land])
    else:
        logger.debug("Coastal moisture: no ocean cells, precipitation unchanged")
    return CoastalResult(
        precipitation=freeze(result.astype(np.float32)),
        distance_to_ocean=freeze(distance),
    )
