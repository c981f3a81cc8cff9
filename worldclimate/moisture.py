"""Irrigation from surface water and banded humidity."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

import numpy as np
from scipy.ndimage import convolve

from worldclimate.config import MoistureConfig
from worldclimate.fields import freeze, quantile_lower, require_finite
from worldclimate.hydrology import WaterClass


class HumidityBand(IntEnum):
    SUPERARID = 0
    PERARID = 1
    ARID = 2
    SEMIARID = 3
    SUBHUMID = 4
    HUMID = 5
    PERHUMID = 6
    SUPERHUMID = 7


@dataclass(frozen=True)
class HumidityQuantiles:
    """Seven ascending humidity cut points measured over land cells."""

    thresholds: tuple[float, ...]
    fractions: tuple[float, ...]

    def classify(self, humidity: np.ndarray) -> np.ndarray:
        edges = np.asarray(self.thresholds, dtype=np.float64)
        return np.searchsorted(edges, np.asarray(humidity, dtype=np.float64), side="right").astype(np.uint8)


@dataclass(frozen=True)
class HumidityResult:
    humidity: np.ndarray
    quantiles: HumidityQuantiles
    bands: np.ndarray


def irrigation_kernel(radius: int) -> np.ndarray:
    """Weights 1 / (log(d + 1) + 1) inside a Euclidean disc of `radius`."""

    r = int(radius)
    yy, xx = np.mgrid[-r : r + 1, -r : r + 1]
    d = np.hypot(yy, xx)
    kernel = 1.0 / (np.log(d + 1.0) + 1.0)
    kernel[d > r] = 0.0
    return kernel.astype(np.float64)


def compute_irrigation(
    normalized_discharge: np.ndarray,
    classes: np.ndarray,
    ocean_mask: np.ndarray,
    cfg: MoistureConfig,
) -> np.ndarray:
    """Sum nearby water discharge onto land cells, nearer water weighing more."""

    water = np.where(classes >= WaterClass.CREEK, normalized_discharge.astype(np.float64), 0.0)
    irrigation = convolve(water, irrigation_kernel(cfg.irrigation_radius), mode="constant", cval=0.0)
    irrigation[ocean_mask] = 0.0
    irrigation = np.clip(irrigation, 0.0, None).astype(np.float32)
    require_finite("irrigation", irrigation, stage="irrigation")
    return freeze(irrigation)


def compute_humidity(
    precipitation: np.ndarray,
    irrigation: np.ndarray,
    ocean_mask: np.ndarray,
    cfg: MoistureConfig,
) -> HumidityResult:
    """Irrigation-dominant humidity with per-world quantile bands.

    Weights are applied without renormalizing, so any cell with positive
    irrigation is strictly more humid than its precipitation alone.
    """

    humidity = (
        precipitation.astype(np.float64) * cfg.precipitation_weight
        + irrigation.astype(np.float64) * cfg.irrigation_weight
    ).astype(np.float32)
    require_finite("humidity", humidity, stage="humidity")

    land_values = humidity[~ocean_mask]
    thresholds = tuple(float(v) for v in quantile_lower(land_values, cfg.band_fractions))
    quantiles = HumidityQuantiles(thresholds=thresholds, fractions=tuple(cfg.band_fractions))
    return HumidityResult(
        humidity=freeze(humidity),
        quantiles=quantiles,
        bands=freeze(quantiles.classify(humidity)),
    )
