"""Terrain foundation input contract: heightmap, ocean mask, and elevation thresholds."""

from __future__ import annotations

from dataclasses import dataclass
import math

import numpy as np

from worldclimate.errors import UpstreamContractViolation
from worldclimate.fields import border_connected, freeze, quantile_lower


_STAGE = "foundation"


@dataclass(frozen=True)
class ElevationThresholds:
    """Per-world elevation breakpoints in raw heightmap units."""

    sea: float
    hill: float
    mountain: float
    peak: float

    def __post_init__(self) -> None:
        values = (self.sea, self.hill, self.mountain, self.peak)
        if not all(math.isfinite(v) for v in values):
            raise UpstreamContractViolation(f"elevation thresholds must be finite: {values}", stage=_STAGE)
        if not (self.sea <= self.hill <= self.mountain <= self.peak):
            raise UpstreamContractViolation(
                f"elevation thresholds must satisfy sea <= hill <= mountain <= peak: {values}",
                stage=_STAGE,
            )

    @property
    def relief(self) -> float:
        return self.peak - self.sea

    @classmethod
    def from_heightmap(
        cls,
        height: np.ndarray,
        *,
        sea_level: float | None = None,
        hill_fraction: float = 0.70,
        mountain_fraction: float = 0.85,
        peak_fraction: float = 0.95,
    ) -> "ElevationThresholds":
        """Derive thresholds the way the terrain generator does.

        Sea level defaults to the median cell; hill, mountain, and peak are
        quantiles of the cells above sea level.
        """

        values = np.asarray(height, dtype=np.float64)
        sea = float(quantile_lower(values, [0.5])[0]) if sea_level is None else float(sea_level)
        land = values[values > sea]
        if land.size == 0:
            return cls(sea=sea, hill=sea, mountain=sea, peak=sea)
        hill, mountain, peak = (float(v) for v in quantile_lower(land, [hill_fraction, mountain_fraction, peak_fraction]))
        return cls(sea=sea, hill=hill, mountain=mountain, peak=peak)


def derive_ocean_mask(height: np.ndarray, sea_level: float) -> np.ndarray:
    """Cells below sea level that connect to the grid border; inland basins stay land."""

    return border_connected(np.asarray(height) < sea_level)


@dataclass(frozen=True)
class TerrainFoundation:
    """Immutable input bundle produced by the upstream terrain generator."""

    height: np.ndarray
    ocean_mask: np.ndarray
    thresholds: ElevationThresholds

    def __post_init__(self) -> None:
        height = np.asarray(self.height, dtype=np.float32)
        ocean = np.asarray(self.ocean_mask)
        if height.ndim != 2 or height.size == 0:
            raise UpstreamContractViolation(f"heightmap must be a non-empty 2D grid, got shape {height.shape}", stage=_STAGE)
        if ocean.shape != height.shape:
            raise UpstreamContractViolation(
                f"ocean mask shape {ocean.shape} does not match heightmap shape {height.shape}",
                stage=_STAGE,
            )
        if ocean.dtype != np.bool_:
            raise UpstreamContractViolation(f"ocean mask must be boolean, got {ocean.dtype}", stage=_STAGE)
        if not np.all(np.isfinite(height)):
            raise UpstreamContractViolation("heightmap contains non-finite values", stage=_STAGE)

        above = ocean & (height >= self.thresholds.sea)
        if np.any(above):
            raise UpstreamContractViolation(
                f"{int(above.sum())} ocean cells are at or above sea level {self.thresholds.sea}",
                stage=_STAGE,
            )
        detached = ocean & ~border_connected(ocean)
        if np.any(detached):
            raise UpstreamContractViolation(
                f"{int(detached.sum())} ocean cells are not connected to the grid border",
                stage=_STAGE,
            )

        object.__setattr__(self, "height", freeze(height))
        object.__setattr__(self, "ocean_mask", freeze(ocean))

    @property
    def shape(self) -> tuple[int, int]:
        return self.height.shape

    @property
    def land_mask(self) -> np.ndarray:
        return ~self.ocean_mask

    @classmethod
    def from_heightmap(cls, height: np.ndarray, *, sea_level: float | None = None) -> "TerrainFoundation":
        """Build a foundation from a bare heightmap, deriving mask and thresholds."""

        height = np.asarray(height, dtype=np.float32)
        thresholds = ElevationThresholds.from_heightmap(height, sea_level=sea_level)
        return cls(
            height=height,
            ocean_mask=derive_ocean_mask(height, thresholds.sea),
            thresholds=thresholds,
        )
