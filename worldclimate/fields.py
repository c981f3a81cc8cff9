"""Shared grid utilities: distances, quantiles, shifts, and read-only snapshots."""

from __future__ import annotations

import numpy as np
from scipy.ndimage import distance_transform_cdt, label

from worldclimate.errors import NumericalDivergence, UpstreamContractViolation


DIRECTIONS_8 = np.array(
    [(-1, 0), (1, 0), (0, 1), (0, -1), (-1, 1), (-1, -1), (1, 1), (1, -1)],
    dtype=np.int32,
)
STEP_LENGTHS_8 = np.array([1.0, 1.0, 1.0, 1.0, np.sqrt(2.0), np.sqrt(2.0), np.sqrt(2.0), np.sqrt(2.0)], dtype=np.float32)

FOUR_CONNECTED = np.array([[0, 1, 0], [1, 1, 1], [0, 1, 0]], dtype=bool)
EIGHT_CONNECTED = np.ones((3, 3), dtype=bool)


def freeze(values: np.ndarray) -> np.ndarray:
    """Return a contiguous read-only copy."""

    out = np.array(values, copy=True, order="C")
    out.setflags(write=False)
    return out


def normalize01(values: np.ndarray) -> np.ndarray:
    """Min-max rescale into [0, 1]; a constant field maps to zeros."""

    vmin = float(np.min(values))
    vmax = float(np.max(values))
    scale = vmax - vmin
    if scale <= 1e-12:
        return np.zeros_like(values, dtype=np.float32)
    return np.clip((values - vmin) / scale, 0.0, 1.0).astype(np.float32)


def quantile_lower(values: np.ndarray, fractions) -> np.ndarray:
    """Quantiles picked as sorted[floor(p * (n - 1))]; empty input gives zeros."""

    flat = np.asarray(values, dtype=np.float64).ravel()
    fractions = np.asarray(fractions, dtype=np.float64)
    if flat.size == 0:
        return np.zeros(fractions.shape, dtype=np.float64)
    return np.quantile(flat, fractions, method="lower")


def taxicab_distance_to(mask: np.ndarray) -> np.ndarray:
    """4-connected BFS distance from every cell to the nearest True cell.

    Returns int32 with 0 on the mask. A grid without any True cell yields -1
    everywhere.
    """

    mask = np.asarray(mask, dtype=bool)
    if not np.any(mask):
        return np.full(mask.shape, -1, dtype=np.int32)
    return distance_transform_cdt(~mask, metric="taxicab").astype(np.int32)


def border_connected(mask: np.ndarray) -> np.ndarray:
    """Keep only the 4-connected components of `mask` that touch the grid edge."""

    labels, count = label(mask, structure=FOUR_CONNECTED)
    if count == 0:
        return np.zeros(mask.shape, dtype=bool)
    edge = np.concatenate((labels[0, :], labels[-1, :], labels[:, 0], labels[:, -1]))
    keep = np.unique(edge[edge > 0])
    return np.isin(labels, keep)


def shift_field(values: np.ndarray, dy: int, dx: int, *, fill) -> np.ndarray:
    """Shift a grid so out[y, x] = values[y - dy, x - dx], padding with `fill`."""

    out = np.full(values.shape, fill, dtype=values.dtype)
    h, w = values.shape

    y_src0 = max(0, -dy)
    y_src1 = h - max(0, dy)
    x_src0 = max(0, -dx)
    x_src1 = w - max(0, dx)

    y_dst0 = max(0, dy)
    y_dst1 = h - max(0, -dy)
    x_dst0 = max(0, dx)
    x_dst1 = w - max(0, -dx)

    if y_src1 > y_src0 and x_src1 > x_src0:
        out[y_dst0:y_dst1, x_dst0:x_dst1] = values[y_src0:y_src1, x_src0:x_src1]
    return out


def require_shape(name: str, values: np.ndarray, shape: tuple[int, int], *, stage: str) -> None:
    if values.shape != shape:
        raise UpstreamContractViolation(
            f"{name} has shape {values.shape}, expected {shape}",
            stage=stage,
        )


def require_finite(name: str, values: np.ndarray, *, stage: str) -> None:
    if not np.all(np.isfinite(values)):
        bad = int(np.count_nonzero(~np.isfinite(values)))
        raise NumericalDivergence(f"{name} contains {bad} non-finite values", stage=stage)


def require_range(name: str, values: np.ndarray, lo: float, hi: float, *, stage: str) -> None:
    require_finite(name, values, stage=stage)
    if values.size and (float(np.min(values)) < lo - 1e-6 or float(np.max(values)) > hi + 1e-6):
        raise NumericalDivergence(
            f"{name} escaped [{lo}, {hi}]: min={float(np.min(values)):.6g}, max={float(np.max(values)):.6g}",
            stage=stage,
        )
