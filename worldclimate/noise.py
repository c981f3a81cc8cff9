"""Gradient noise and fractal sums for temperature and precipitation fields."""

from __future__ import annotations

import numpy as np


_SQRT2 = float(np.sqrt(2.0))


def _fade(t: np.ndarray) -> np.ndarray:
    return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)


def _cell_coords(count: int, res: int) -> tuple[np.ndarray, np.ndarray]:
    # Sample at cell centres so no row or column sits exactly on the lattice.
    pos = (np.arange(count, dtype=np.float64) + 0.5) * (res / float(count))
    base = np.minimum(np.floor(pos).astype(np.int64), res - 1)
    return base, pos - base


def gradient_noise_2d(
    width: int,
    height: int,
    rng: np.random.Generator,
    *,
    res_x: int,
    res_y: int,
) -> np.ndarray:
    """Perlin-style noise in [-1, 1] over a res_x by res_y lattice of random unit gradients."""

    if width <= 0 or height <= 0:
        raise ValueError("width and height must be positive")
    if res_x < 1 or res_y < 1:
        raise ValueError("res_x and res_y must be >= 1")

    angles = rng.uniform(0.0, 2.0 * np.pi, size=(res_y + 1, res_x + 1))
    grad_x = np.cos(angles)
    grad_y = np.sin(angles)

    x0, fx = _cell_coords(width, res_x)
    y0, fy = _cell_coords(height, res_y)
    fx = fx[None, :]
    fy = fy[:, None]

    def corner(dy: int, dx: int) -> np.ndarray:
        iy = (y0 + dy)[:, None]
        ix = (x0 + dx)[None, :]
        return grad_x[iy, ix] * (fx - dx) + grad_y[iy, ix] * (fy - dy)

    u = _fade(fx)
    v = _fade(fy)
    top = corner(0, 0) + u * (corner(0, 1) - corner(0, 0))
    bottom = corner(1, 0) + u * (corner(1, 1) - corner(1, 0))
    value = (top + v * (bottom - top)) * _SQRT2
    return np.clip(value, -1.0, 1.0).astype(np.float32)


def fbm_noise(
    width: int,
    height: int,
    rng: np.random.Generator,
    *,
    base_res: int = 2,
    octaves: int = 5,
    lacunarity: float = 2.0,
    gain: float = 0.5,
) -> np.ndarray:
    """Fractal sum of gradient noise octaves, normalized back into [-1, 1].

    `base_res` is the lattice count along the vertical axis for the first
    octave; the horizontal count follows the grid aspect ratio. Octaves finer
    than one lattice cell per grid cell are clamped to the grid size.
    """

    amplitudes = gain ** np.arange(octaves, dtype=np.float64)
    total = float(amplitudes.sum())
    field = np.zeros((height, width), dtype=np.float64)
    if total == 0.0:
        return field.astype(np.float32)

    aspect = width / max(height, 1)
    for octave, amplitude in enumerate(amplitudes):
        res_y = min(max(1, int(round(base_res * lacunarity**octave))), height)
        res_x = min(max(1, int(round(res_y * aspect))), width)
        field += amplitude * gradient_noise_2d(width, height, rng, res_x=res_x, res_y=res_y)
    return (field / total).astype(np.float32)
