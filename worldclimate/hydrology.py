"""Water classification, river tracing, and lake extraction from frozen flow fields."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
import logging

import numpy as np
from scipy.ndimage import binary_dilation, find_objects, label

from worldclimate.config import WaterConfig
from worldclimate.erosion import FlowFields, normalize_discharge
from worldclimate.fields import DIRECTIONS_8, EIGHT_CONNECTED, FOUR_CONNECTED, STEP_LENGTHS_8, freeze, shift_field


logger = logging.getLogger(__name__)

_SQRT2 = float(np.sqrt(2.0))


class WaterClass(IntEnum):
    DRY = 0
    CREEK = 1
    STREAM = 2
    RIVER = 3
    LAKE = 4


@dataclass(frozen=True)
class River:
    """Ordered (y, x) cells from source to an ocean or lake cell."""

    path: tuple[tuple[int, int], ...]
    length: float
    mean_discharge: float
    terminus: str
    lake_id: int | None = None

    @property
    def reached_ocean(self) -> bool:
        return self.terminus == "ocean"


@dataclass(frozen=True)
class Lake:
    lake_id: int
    cells: tuple[tuple[int, int], ...]
    area: int
    outlet: tuple[int, int] | None
    mean_discharge: float


@dataclass(frozen=True)
class WaterFeatures:
    classification: np.ndarray
    normalized_discharge: np.ndarray
    lake_ids: np.ndarray
    downstream: np.ndarray
    rivers: tuple[River, ...]
    lakes: tuple[Lake, ...]


def classify_water(
    flow: FlowFields,
    ocean_mask: np.ndarray,
    cfg: WaterConfig,
    *,
    max_speed: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Classify land cells by normalized discharge; pooled high discharge is a lake.

    A cell whose net momentum is small relative to its discharge has water
    arriving from many directions and leaving in none, so it is a lake even
    when its discharge would qualify as a river. Ocean cells stay DRY.
    """

    d_norm = normalize_discharge(flow.discharge, flow.particles_per_batch, cfg.discharge_scale)
    discharge = flow.discharge.astype(np.float64)
    coherence = np.zeros(discharge.shape, dtype=np.float64)
    wet = discharge > 0.0
    coherence[wet] = flow.momentum_magnitude[wet] / (discharge[wet] * max(max_speed, 1e-12))

    classes = np.select(
        [
            (d_norm >= cfg.lake_threshold) & (coherence < cfg.lake_max_coherence),
            d_norm >= cfg.river_threshold,
            d_norm >= cfg.stream_threshold,
            d_norm >= cfg.creek_threshold,
        ],
        [WaterClass.LAKE, WaterClass.RIVER, WaterClass.STREAM, WaterClass.CREEK],
        default=WaterClass.DRY,
    ).astype(np.uint8)
    classes[ocean_mask] = WaterClass.DRY
    return classes, d_norm


def downstream_cells(classes: np.ndarray, flow: FlowFields, ocean_mask: np.ndarray) -> np.ndarray:
    """Flat index of the neighbour each flowing water cell drains into, or -1.

    The neighbour must be water or ocean and lie within 90 degrees of the
    cell's momentum; among those the best aligned one wins.
    """

    gh, gw = classes.shape
    mx = flow.momentum_x.astype(np.float64)
    my = flow.momentum_y.astype(np.float64)
    m_mag = np.hypot(mx, my)
    flowing = (classes >= WaterClass.CREEK) & (classes != WaterClass.LAKE) & (m_mag > 0.0)
    receiver = (classes >= WaterClass.CREEK) | ocean_mask
    flat = np.arange(gh * gw, dtype=np.int64).reshape(gh, gw)

    best_score = np.zeros((gh, gw), dtype=np.float64)
    best = np.full((gh, gw), -1, dtype=np.int64)
    safe_mag = np.where(m_mag > 0.0, m_mag, 1.0)
    for (dy, dx), step in zip(DIRECTIONS_8, STEP_LENGTHS_8):
        dy = int(dy)
        dx = int(dx)
        # Neighbour values at (y + dy, x + dx).
        nb_receiver = shift_field(receiver, -dy, -dx, fill=False)
        nb_flat = shift_field(flat, -dy, -dx, fill=-1)
        score = (mx * dx + my * dy) / (safe_mag * float(step))
        take = flowing & nb_receiver & (score > best_score)
        best_score[take] = score[take]
        best[take] = nb_flat[take]
    return best.ravel()


def extract_lakes(
    classes: np.ndarray,
    d_norm: np.ndarray,
    downstream: np.ndarray,
) -> tuple[np.ndarray, tuple[Lake, ...]]:
    """4-connected components of LAKE cells.

    The outlet is the highest-discharge water cell bordering the lake that
    does not itself drain into it; lakes without one have no outlet.
    """

    lake_mask = classes == WaterClass.LAKE
    labels, count = label(lake_mask, structure=FOUR_CONNECTED)
    lake_ids = (labels - 1).astype(np.int32)
    gh, gw = classes.shape
    outflow = (classes >= WaterClass.CREEK) & ~lake_mask
    drains_to = downstream.reshape(gh, gw)
    drains_to_lake = np.zeros((gh, gw), dtype=bool)
    has_target = drains_to >= 0
    drains_to_lake[has_target] = lake_mask.ravel()[drains_to[has_target]]
    outflow &= ~drains_to_lake

    lakes: list[Lake] = []
    for lake_index, sl in enumerate(find_objects(labels)):
        if sl is None:
            continue
        y0 = max(sl[0].start - 1, 0)
        y1 = min(sl[0].stop + 1, gh)
        x0 = max(sl[1].start - 1, 0)
        x1 = min(sl[1].stop + 1, gw)
        window = labels[y0:y1, x0:x1] == lake_index + 1
        ring = binary_dilation(window, structure=EIGHT_CONNECTED) & ~window & outflow[y0:y1, x0:x1]

        outlet = None
        if np.any(ring):
            ring_dn = np.where(ring, d_norm[y0:y1, x0:x1], -1.0)
            oy, ox = np.unravel_index(int(np.argmax(ring_dn)), ring_dn.shape)
            outlet = (int(oy + y0), int(ox + x0))

        ys, xs = np.nonzero(window)
        cells = tuple((int(y + y0), int(x + x0)) for y, x in zip(ys, xs))
        lakes.append(
            Lake(
                lake_id=lake_index,
                cells=cells,
                area=len(cells),
                outlet=outlet,
                mean_discharge=float(np.mean(d_norm[y0:y1, x0:x1][window])),
            )
        )
    return lake_ids, tuple(lakes)


def _path_length(path: list[int], width: int) -> float:
    length = 0.0
    for a, b in zip(path, path[1:]):
        diagonal = (a // width != b // width) and (a % width != b % width)
        length += _SQRT2 if diagonal else 1.0
    return length


def trace_rivers(
    classes: np.ndarray,
    d_norm: np.ndarray,
    downstream: np.ndarray,
    ocean_mask: np.ndarray,
    lake_ids: np.ndarray,
    cfg: WaterConfig,
) -> tuple[River, ...]:
    """Follow momentum from every river source to an ocean cell or a lake.

    Sources are RIVER cells that no other RIVER cell drains into. They are
    traced in order of decreasing discharge; a trace that meets an earlier
    river continues along that river's remaining path. Traces that stop on
    dry land or loop back on themselves are discarded.
    """

    gh, gw = classes.shape
    cls_flat = classes.ravel()
    ocean_flat = ocean_mask.ravel()
    dn_flat = d_norm.ravel()
    lake_flat = lake_ids.ravel()

    river_cells = np.flatnonzero(cls_flat == WaterClass.RIVER)
    fed_by_river = np.zeros(gh * gw, dtype=bool)
    targets = downstream[river_cells]
    fed_by_river[targets[targets >= 0]] = True
    sources = river_cells[~fed_by_river[river_cells] & (downstream[river_cells] >= 0)]
    sources = sources[np.argsort(-dn_flat[sources], kind="stable")]

    owner = np.full(gh * gw, -1, dtype=np.int64)
    position = np.zeros(gh * gw, dtype=np.int64)
    paths: list[list[int]] = []
    rivers: list[River] = []

    for src in sources:
        src = int(src)
        if owner[src] >= 0:
            continue
        path = [src]
        seen = {src}
        terminus = None
        lake_id = None
        current = src
        while True:
            nxt = int(downstream[current])
            if nxt < 0:
                break
            if ocean_flat[nxt]:
                path.append(nxt)
                terminus = "ocean"
                break
            if cls_flat[nxt] == WaterClass.LAKE:
                path.append(nxt)
                terminus = "lake"
                lake_id = int(lake_flat[nxt])
                break
            if owner[nxt] >= 0:
                joined = rivers[owner[nxt]]
                path.extend(paths[owner[nxt]][position[nxt]:])
                terminus = joined.terminus
                lake_id = joined.lake_id
                break
            if nxt in seen:
                break
            path.append(nxt)
            seen.add(nxt)
            current = nxt

        if terminus is None or len(path) < cfg.min_river_cells:
            continue

        river_index = len(rivers)
        for i, cell in enumerate(path):
            if owner[cell] < 0 and not ocean_flat[cell] and cls_flat[cell] != WaterClass.LAKE:
                owner[cell] = river_index
                position[cell] = i
        land_cells = [c for c in path if not ocean_flat[c]]
        paths.append(path)
        rivers.append(
            River(
                path=tuple((c // gw, c % gw) for c in path),
                length=_path_length(path, gw),
                mean_discharge=float(np.mean(dn_flat[land_cells])) if land_cells else 0.0,
                terminus=terminus,
                lake_id=lake_id,
            )
        )
    return tuple(rivers)


def extract_water_features(
    flow: FlowFields,
    ocean_mask: np.ndarray,
    cfg: WaterConfig,
    *,
    max_speed: float,
) -> WaterFeatures:
    classes, d_norm = classify_water(flow, ocean_mask, cfg, max_speed=max_speed)
    downstream = downstream_cells(classes, flow, ocean_mask)
    lake_ids, lakes = extract_lakes(classes, d_norm, downstream)
    rivers = trace_rivers(classes, d_norm, downstream, ocean_mask, lake_ids, cfg)
    logger.info(
        "Water features: %d rivers (%d to ocean), %d lakes",
        len(rivers),
        sum(r.reached_ocean for r in rivers),
        len(lakes),
    )
    return WaterFeatures(
        classification=freeze(classes),
        normalized_discharge=freeze(d_norm),
        lake_ids=freeze(lake_ids),
        downstream=freeze(downstream.reshape(classes.shape)),
        rivers=rivers,
        lakes=lakes,
    )
