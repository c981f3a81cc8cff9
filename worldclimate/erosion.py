"""Precipitation-weighted particle erosion with momentum feedback.

Particles are spawned on land in proportion to final precipitation and
simulated in a fixed number of deterministic batches. Within a batch all live
particles advance one step at a time in lockstep; their contributions are
reduced into the flow arena with `np.add.at`, which applies updates in index
order, so a seed always yields the same fields. Between batches the arena
blends the batch accumulation into its persistent discharge and momentum
fields, which then steer the next batch toward existing channels.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
import logging
from typing import Callable

import numpy as np
from scipy.special import erf

from worldclimate.config import ErosionParams
from worldclimate.errors import NumericalDivergence, ResourceExhaustion
from worldclimate.fields import freeze, require_finite
from worldclimate.rng import RngStream


logger = logging.getLogger(__name__)

_STAGE = "erosion"


class ParticleState(IntEnum):
    SPAWNED = 0
    FLOWING = 1
    TERMINATED = 2


class Termination(IntEnum):
    NONE = 0
    AGE = 1
    EVAPORATED = 2
    LEFT_GRID = 3
    REACHED_OCEAN = 4
    STAGNATED = 5


@dataclass(frozen=True)
class FlowFields:
    """Frozen discharge and momentum snapshot."""

    discharge: np.ndarray
    momentum_x: np.ndarray
    momentum_y: np.ndarray
    particles_per_batch: float

    @property
    def momentum_magnitude(self) -> np.ndarray:
        return np.hypot(self.momentum_x, self.momentum_y).astype(np.float32)


class FlowArena:
    """Sole owner of the mutable discharge and momentum accumulators."""

    def __init__(self, shape: tuple[int, int], particles_per_batch: float = 1.0) -> None:
        self.shape = shape
        self.particles_per_batch = float(particles_per_batch)
        self._discharge = np.zeros(shape, dtype=np.float64)
        self._momentum_x = np.zeros(shape, dtype=np.float64)
        self._momentum_y = np.zeros(shape, dtype=np.float64)
        self._batch_discharge = np.zeros(shape, dtype=np.float64)
        self._batch_momentum_x = np.zeros(shape, dtype=np.float64)
        self._batch_momentum_y = np.zeros(shape, dtype=np.float64)
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _require_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("flow arena is frozen; simulation has ended")

    def begin_batch(self) -> None:
        self._require_mutable()
        self._batch_discharge.fill(0.0)
        self._batch_momentum_x.fill(0.0)
        self._batch_momentum_y.fill(0.0)

    def accumulate(
        self,
        ys: np.ndarray,
        xs: np.ndarray,
        volume: np.ndarray,
        momentum_x: np.ndarray,
        momentum_y: np.ndarray,
    ) -> None:
        self._require_mutable()
        np.add.at(self._batch_discharge, (ys, xs), volume)
        np.add.at(self._batch_momentum_x, (ys, xs), momentum_x)
        np.add.at(self._batch_momentum_y, (ys, xs), momentum_y)

    def blend(self, rate: float) -> None:
        """field = (1 - rate) * field + rate * batch accumulation."""

        self._require_mutable()
        keep = 1.0 - rate
        self._discharge *= keep
        self._discharge += rate * self._batch_discharge
        self._momentum_x *= keep
        self._momentum_x += rate * self._batch_momentum_x
        self._momentum_y *= keep
        self._momentum_y += rate * self._batch_momentum_y

    def sample(self, ys: np.ndarray, xs: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        return self._discharge[ys, xs], self._momentum_x[ys, xs], self._momentum_y[ys, xs]

    def freeze(self) -> FlowFields:
        self._require_mutable()
        self._frozen = True
        for name, values in (
            ("discharge", self._discharge),
            ("momentum_x", self._momentum_x),
            ("momentum_y", self._momentum_y),
        ):
            require_finite(name, values, stage=_STAGE)
        return FlowFields(
            discharge=freeze(self._discharge.astype(np.float32)),
            momentum_x=freeze(self._momentum_x.astype(np.float32)),
            momentum_y=freeze(self._momentum_y.astype(np.float32)),
            particles_per_batch=self.particles_per_batch,
        )


@dataclass
class ParticleBatch:
    y: np.ndarray
    x: np.ndarray
    vel_x: np.ndarray
    vel_y: np.ndarray
    volume: np.ndarray
    sediment: np.ndarray
    age: np.ndarray
    state: np.ndarray
    termination: np.ndarray

    @classmethod
    def spawn(cls, flat_cells: np.ndarray, width: int, initial_volume: float) -> "ParticleBatch":
        n = int(flat_cells.size)
        return cls(
            y=(flat_cells // width).astype(np.int64),
            x=(flat_cells % width).astype(np.int64),
            vel_x=np.zeros(n, dtype=np.float64),
            vel_y=np.zeros(n, dtype=np.float64),
            volume=np.full(n, initial_volume, dtype=np.float64),
            sediment=np.zeros(n, dtype=np.float64),
            age=np.zeros(n, dtype=np.int32),
            state=np.full(n, ParticleState.SPAWNED, dtype=np.int8),
            termination=np.full(n, Termination.NONE, dtype=np.int8),
        )

    def live_indices(self) -> np.ndarray:
        return np.flatnonzero(self.state != ParticleState.TERMINATED)


@dataclass(frozen=True)
class ErosionResult:
    height: np.ndarray
    height_delta: np.ndarray
    flow: FlowFields
    params: ErosionParams
    particles_spawned: int
    terminations: dict[str, int]


def normalize_discharge(discharge: np.ndarray, particles_per_batch: float, scale: float) -> np.ndarray:
    """Map raw discharge into [0, 1) with erf(scale * sqrt(D / particles_per_batch))."""

    ratio = np.clip(np.asarray(discharge, dtype=np.float64), 0.0, None) / max(float(particles_per_batch), 1.0)
    return erf(scale * np.sqrt(ratio)).astype(np.float32)


def _gradient_at(h: np.ndarray, y: np.ndarray, x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    gh, gw = h.shape
    xp = np.minimum(x + 1, gw - 1)
    xm = np.maximum(x - 1, 0)
    yp = np.minimum(y + 1, gh - 1)
    ym = np.maximum(y - 1, 0)
    span_x = (xp - xm).astype(np.float64)
    span_y = (yp - ym).astype(np.float64)
    gx = np.where(span_x > 0, (h[y, xp] - h[y, xm]) / np.maximum(span_x, 1.0), 0.0)
    gy = np.where(span_y > 0, (h[yp, x] - h[ym, x]) / np.maximum(span_y, 1.0), 0.0)
    return gx, gy


def _room_below_neighbours(h: np.ndarray, y: np.ndarray, x: np.ndarray) -> np.ndarray:
    gh, gw = h.shape
    highest = np.maximum.reduce(
        [
            h[np.maximum(y - 1, 0), x],
            h[np.minimum(y + 1, gh - 1), x],
            h[y, np.maximum(x - 1, 0)],
            h[y, np.minimum(x + 1, gw - 1)],
        ]
    )
    return np.maximum(highest - h[y, x], 0.0)


def _share_cell_budget(flat: np.ndarray, requested: np.ndarray, budget: np.ndarray, size: int) -> np.ndarray:
    """Scale requests so the ones sharing a cell sum to at most that cell's budget.

    A cell's budget is the smallest budget among its positive requests; every
    request on an over-subscribed cell is scaled by the same factor.
    """

    shared = np.zeros_like(requested)
    active = requested > 0.0
    if not np.any(active):
        return shared
    cells = flat[active]
    wanted = requested[active]
    total = np.bincount(cells, weights=wanted, minlength=size)
    cell_budget = np.full(size, np.inf)
    np.minimum.at(cell_budget, cells, np.maximum(budget[active], 0.0))
    shared[active] = wanted * np.minimum(1.0, cell_budget[cells] / total[cells])
    return shared


def _spawn_cells(
    precipitation: np.ndarray,
    land_mask: np.ndarray,
    count: int,
    gen: np.random.Generator,
) -> np.ndarray:
    """Draw land cells with probability proportional to precipitation."""

    land_idx = np.flatnonzero(land_mask.ravel())
    if count <= 0 or land_idx.size == 0:
        return np.zeros(0, dtype=np.int64)
    weights = np.clip(precipitation.ravel()[land_idx].astype(np.float64), 0.0, None)
    total = float(weights.sum())
    if total <= 0.0:
        logger.warning("Erosion: no precipitation on land, no particles spawned")
        return np.zeros(0, dtype=np.int64)
    return gen.choice(land_idx, size=int(count), replace=True, p=weights / total).astype(np.int64)


def run_erosion(
    height: np.ndarray,
    ocean_mask: np.ndarray,
    precipitation: np.ndarray,
    params: ErosionParams,
    rng: RngStream,
    *,
    sea_level: float,
    discharge_scale: float = 5.0,
    max_particle_steps: int | None = None,
    checkpoint: Callable[[], None] | None = None,
) -> ErosionResult:
    """Carve the heightmap with particles and return frozen flow fields.

    `checkpoint` is called before every batch and may raise to stop the run.
    """

    require_finite("height", height, stage=_STAGE)
    require_finite("precipitation", precipitation, stage=_STAGE)

    budget = params.particle_count * params.max_age
    if max_particle_steps is not None and budget > max_particle_steps:
        raise ResourceExhaustion(
            f"erosion needs up to {budget} particle steps, budget is {max_particle_steps}",
            stage=_STAGE,
        )

    h = height.astype(np.float64, copy=True)
    gh, gw = h.shape
    land_mask = ~ocean_mask
    floor = float(h.min()) if params.height_floor is None else float(params.height_floor)
    # Ocean cells stay strictly below sea level however much sediment arrives.
    ocean_ceiling = float(np.nextafter(np.float32(sea_level), np.float32(-np.inf)))

    cells = _spawn_cells(precipitation, land_mask, params.particle_count, rng.generator())
    batch_count = max(int(params.batch_count), 1)
    arena = FlowArena((gh, gw), params.particles_per_batch)
    terminations = np.zeros(len(Termination), dtype=np.int64)

    logger.info(
        "Erosion: %d particles in %d batches, max_age=%d, gravity=%.4g",
        cells.size,
        batch_count,
        params.max_age,
        params.gravity,
    )
    for batch_index, batch_cells in enumerate(np.array_split(cells, batch_count)):
        if checkpoint is not None:
            checkpoint()
        arena.begin_batch()
        if batch_cells.size:
            batch = ParticleBatch.spawn(batch_cells, gw, params.initial_volume)
            for _ in range(params.max_age):
                live = batch.live_indices()
                if live.size == 0:
                    break
                _advance(batch, live, h, arena, ocean_mask, params, floor, ocean_ceiling, discharge_scale)
            np.add.at(terminations, batch.termination.astype(np.int64), 1)
        arena.blend(params.smoothing_rate)
        logger.debug("Erosion batch %d/%d: %d particles", batch_index + 1, batch_count, batch_cells.size)

    require_finite("carved height", h, stage=_STAGE)
    flow = arena.freeze()
    carved = h.astype(np.float32)
    return ErosionResult(
        height=freeze(carved),
        height_delta=freeze(carved - height.astype(np.float32)),
        flow=flow,
        params=params,
        particles_spawned=int(cells.size),
        terminations={t.name.lower(): int(terminations[t]) for t in Termination if t != Termination.NONE},
    )


def _advance(
    batch: ParticleBatch,
    idx: np.ndarray,
    h: np.ndarray,
    arena: FlowArena,
    ocean_mask: np.ndarray,
    params: ErosionParams,
    floor: float,
    ocean_ceiling: float,
    discharge_scale: float,
) -> None:
    """Advance the live particles `idx` by one step."""

    gh, gw = h.shape
    y = batch.y[idx]
    x = batch.x[idx]
    vol = batch.volume[idx]
    sed = batch.sediment[idx]
    batch.state[idx] = ParticleState.FLOWING

    # Gravity along the downhill gradient, heavier particles accelerate less.
    gx, gy = _gradient_at(h, y, x)
    vx = batch.vel_x[idx] - params.gravity * gx / vol
    vy = batch.vel_y[idx] - params.gravity * gy / vol

    # Pull toward the prevailing channel direction when already heading that way.
    discharge, mx, my = arena.sample(y, x)
    speed = np.hypot(vx, vy)
    m_mag = np.hypot(mx, my)
    both = (speed > 0.0) & (m_mag > 0.0)
    align = np.zeros_like(speed)
    align[both] = (vx[both] * mx[both] + vy[both] * my[both]) / (speed[both] * m_mag[both])
    pull = params.momentum_transfer * np.maximum(align, 0.0) / (vol + discharge)
    vx = (vx + pull * mx) * (1.0 - params.drag)
    vy = (vy + pull * my) * (1.0 - params.drag)

    speed = np.hypot(vx, vy)
    too_fast = speed > params.max_speed
    if np.any(too_fast):
        shrink = params.max_speed / speed[too_fast]
        vx[too_fast] *= shrink
        vy[too_fast] *= shrink
        speed[too_fast] = params.max_speed
    if not (np.all(np.isfinite(vx)) and np.all(np.isfinite(vy))):
        raise NumericalDivergence(
            f"{int(np.count_nonzero(~np.isfinite(vx) | ~np.isfinite(vy)))} particles have non-finite velocity",
            stage=_STAGE,
        )

    stagnant = speed < params.stagnation_speed
    safe_speed = np.where(stagnant, 1.0, speed)
    step_x = np.where(stagnant, 0, np.rint(vx / safe_speed)).astype(np.int64)
    step_y = np.where(stagnant, 0, np.rint(vy / safe_speed)).astype(np.int64)
    ny = y + step_y
    nx = x + step_x
    left = (ny < 0) | (ny >= gh) | (nx < 0) | (nx >= gw)
    inside = ~left
    nyc = np.clip(ny, 0, gh - 1)
    nxc = np.clip(nx, 0, gw - 1)

    # Pooled particles add volume without direction.
    acc_vx = np.where(stagnant, 0.0, vx)
    acc_vy = np.where(stagnant, 0.0, vy)
    arena.accumulate(nyc[inside], nxc[inside], vol[inside], (vol * acc_vx)[inside], (vol * acc_vy)[inside])

    # Exchange sediment with the cell being left. Particles sharing a cell
    # split that cell's erosion and deposition budgets for the step.
    moved = inside & ~stagnant
    h_old = h[y, x]
    drop = np.where(moved, h_old - h[nyc, nxc], 0.0)
    d_norm = normalize_discharge(arena.sample(nyc, nxc)[0], arena.particles_per_batch, discharge_scale)
    capacity = np.maximum(vol * (1.0 + params.entrainment * d_norm) * drop, 0.0)
    deficit = capacity - sed
    cutting = moved & (drop > 0.0) & (deficit > 0.0)
    erode_request = np.where(cutting, np.minimum(params.deposition_rate * deficit, drop), 0.0)
    erode_budget = np.where(cutting, np.minimum(drop, np.maximum(h_old - floor, 0.0)), 0.0)
    uphill = moved & (drop < 0.0)
    deposit_request = np.where(
        uphill,
        np.minimum(sed, -drop),
        np.where(inside & (deficit < 0.0), params.deposition_rate * -deficit, 0.0),
    )
    deposit_request = np.minimum(deposit_request, sed)
    flat = y * gw + x
    erode = _share_cell_budget(flat, erode_request, erode_budget, h.size)
    deposit = _share_cell_budget(flat, deposit_request, _room_below_neighbours(h, y, x), h.size)
    exchange = (erode > 0.0) | (deposit > 0.0)
    if np.any(exchange):
        ey = y[exchange]
        ex = x[exchange]
        np.add.at(h, (ey, ex), (deposit - erode)[exchange])
        h[ey, ex] = np.maximum(h[ey, ex], floor)
    sed = sed + erode - deposit

    keep_vol = 1.0 - params.evaporation_rate
    vol = vol * keep_vol
    sed = sed * keep_vol
    if np.any(vol < 0.0) or np.any(sed < 0.0):
        raise NumericalDivergence("particle volume or sediment became negative", stage=_STAGE)

    age = batch.age[idx] + 1
    y = np.where(moved, nyc, y)
    x = np.where(moved, nxc, x)
    reached_ocean = moved & ocean_mask[nyc, nxc]
    termination = np.select(
        [left, reached_ocean, stagnant, vol < params.min_volume, age >= params.max_age],
        [Termination.LEFT_GRID, Termination.REACHED_OCEAN, Termination.STAGNATED, Termination.EVAPORATED, Termination.AGE],
        default=Termination.NONE,
    ).astype(np.int8)
    done = termination != Termination.NONE

    # Sediment leaving the grid is lost; the ocean takes what fits below sea
    # level and land takes what fits below the highest neighbour.
    settle = done & ~left & (sed > 0.0)
    if np.any(settle):
        sy = y[settle]
        sx = x[settle]
        into_ocean = reached_ocean[settle]
        room = np.where(
            into_ocean,
            np.maximum(ocean_ceiling - h[sy, sx], 0.0),
            _room_below_neighbours(h, sy, sx),
        )
        amount = _share_cell_budget(sy * gw + sx, sed[settle], room, h.size)
        np.add.at(h, (sy, sx), amount)
    sed = np.where(done, 0.0, sed)

    ocean_cells = ocean_mask[y, x]
    if np.any(ocean_cells):
        oy = y[ocean_cells]
        ox = x[ocean_cells]
        h[oy, ox] = np.minimum(h[oy, ox], ocean_ceiling)

    batch.y[idx] = y
    batch.x[idx] = x
    batch.vel_x[idx] = vx
    batch.vel_y[idx] = vy
    batch.volume[idx] = vol
    batch.sediment[idx] = sed
    batch.age[idx] = age
    batch.termination[idx] = termination
    batch.state[idx] = np.where(done, ParticleState.TERMINATED, ParticleState.FLOWING).astype(np.int8)
