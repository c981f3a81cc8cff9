from __future__ import annotations

import numpy as np

from worldclimate.config import ErosionConfig, SemanticParams, WaterConfig, derive_erosion_params
from worldclimate.erosion import FlowFields, run_erosion
from worldclimate.foundation import ElevationThresholds, TerrainFoundation
from worldclimate.hydrology import WaterClass, classify_water, extract_water_features
from worldclimate.pipeline import build_map_context
from worldclimate.rng import RngStream


def _flow(discharge, mx, my=None) -> FlowFields:
    discharge = np.asarray(discharge, dtype=np.float32)
    mx = np.asarray(mx, dtype=np.float32)
    my = np.zeros_like(mx) if my is None else np.asarray(my, dtype=np.float32)
    return FlowFields(discharge=discharge, momentum_x=mx, momentum_y=my, particles_per_batch=1.0)


def _features(flow: FlowFields, ocean: np.ndarray):
    return extract_water_features(flow, ocean, WaterConfig(), max_speed=1.0)


def _assert_adjacent(path) -> None:
    for (y0, x0), (y1, x1) in zip(path, path[1:]):
        assert max(abs(y1 - y0), abs(x1 - x0)) == 1


def test_classification_thresholds_and_lake_rule() -> None:
    flow = _flow(
        [[0.0, 0.0036, 0.0081, 1.0, 1.0, 1.0]],
        [[0.0, 0.0036, 0.0081, 1.0, 0.0, 1.0]],
    )
    ocean = np.array([[False, False, False, False, False, True]])
    classes, d_norm = classify_water(flow, ocean, WaterConfig(), max_speed=1.0)

    assert classes.tolist() == [
        [WaterClass.DRY, WaterClass.CREEK, WaterClass.STREAM, WaterClass.RIVER, WaterClass.LAKE, WaterClass.DRY]
    ]
    assert float(d_norm[0, 3]) > 0.99


def test_straight_river_reaches_ocean() -> None:
    discharge = np.zeros((5, 8))
    mx = np.zeros((5, 8))
    discharge[2, 1:7] = 1.0
    mx[2, 1:7] = 1.0
    ocean = np.zeros((5, 8), dtype=bool)
    ocean[:, 7] = True
    water = _features(_flow(discharge, mx), ocean)

    assert len(water.rivers) == 1
    river = water.rivers[0]
    assert river.path == tuple((2, x) for x in range(1, 8))
    assert river.terminus == "ocean"
    assert river.reached_ocean
    assert river.length == 6.0
    assert river.mean_discharge > 0.99
    assert water.lakes == ()
    assert int(water.downstream[2, 1]) == 2 * 8 + 2
    assert int(water.downstream[0, 0]) == -1
    assert not water.classification.flags.writeable


def test_river_into_lake_and_lake_outlet() -> None:
    discharge = np.zeros((5, 12))
    mx = np.zeros((5, 12))
    discharge[2, 1:11] = 1.0
    mx[2, 1:4] = 1.0
    mx[2, 6:11] = 1.0
    ocean = np.zeros((5, 12), dtype=bool)
    ocean[:, 11] = True
    water = _features(_flow(discharge, mx), ocean)

    assert len(water.lakes) == 1
    lake = water.lakes[0]
    assert lake.cells == ((2, 4), (2, 5))
    assert lake.area == 2
    assert lake.outlet == (2, 6)
    assert int(water.lake_ids[2, 4]) == 0
    assert int(water.lake_ids[0, 0]) == -1

    by_terminus = {river.terminus: river for river in water.rivers}
    assert set(by_terminus) == {"lake", "ocean"}
    inflow = by_terminus["lake"]
    assert inflow.path == ((2, 1), (2, 2), (2, 3), (2, 4))
    assert inflow.lake_id == 0
    outflow = by_terminus["ocean"]
    assert outflow.path[0] == (2, 6)
    assert outflow.path[-1] == (2, 11)


def test_tributary_merges_into_main_stem() -> None:
    discharge = np.zeros((7, 7))
    mx = np.zeros((7, 7))
    my = np.zeros((7, 7))
    discharge[0:6, 3] = 1.0
    my[0:6, 3] = 1.0
    discharge[1, 0:3] = 1.0
    mx[1, 0:3] = 1.0
    ocean = np.zeros((7, 7), dtype=bool)
    ocean[6, :] = True
    water = _features(_flow(discharge, mx, my), ocean)

    assert len(water.rivers) == 2
    main, tributary = water.rivers
    assert main.path == tuple((y, 3) for y in range(7))
    assert tributary.path[:3] == ((1, 0), (1, 1), (1, 2))
    assert tributary.path[3:] == main.path[1:]
    assert len(tributary.path) == 9
    assert tributary.terminus == "ocean"
    _assert_adjacent(tributary.path)


def test_trace_without_outlet_is_discarded() -> None:
    discharge = np.zeros((5, 5))
    mx = np.zeros((5, 5))
    discharge[2, :] = 1.0
    mx[2, :] = 1.0
    water = _features(_flow(discharge, mx), np.zeros((5, 5), dtype=bool))

    assert water.rivers == ()
    assert int((water.classification == WaterClass.RIVER).sum()) == 5


def _valley(size: int = 32) -> TerrainFoundation:
    yy, xx = np.mgrid[0:size, 0:size].astype(np.float64)
    height = 1.0 + 0.5 * (xx - 2.0) + 0.8 * np.abs(yy - size // 2)
    height[:, :2] = -1.0
    return TerrainFoundation(
        height=height.astype(np.float32),
        ocean_mask=xx < 2,
        thresholds=ElevationThresholds.from_heightmap(height, sea_level=0.0),
    )


def _simulate(foundation: TerrainFoundation, semantic: SemanticParams, precipitation=None):
    if precipitation is None:
        precipitation = np.ones(foundation.shape, dtype=np.float32)
    params = derive_erosion_params(
        semantic,
        build_map_context(foundation),
        int(foundation.land_mask.sum()),
        ErosionConfig(),
    )
    erosion = run_erosion(
        foundation.height,
        foundation.ocean_mask,
        precipitation,
        params,
        RngStream(17),
        sea_level=foundation.thresholds.sea,
    )
    water = extract_water_features(erosion.flow, foundation.ocean_mask, WaterConfig(), max_speed=params.max_speed)
    return water, erosion


def test_simulated_valley_drains_to_ocean() -> None:
    foundation = _valley()
    water, _ = _simulate(foundation, SemanticParams(river_density=1.0, valley_depth=0.0, erosion_speed=0.0))

    assert any(river.reached_ocean for river in water.rivers)
    for river in water.rivers:
        _assert_adjacent(river.path)
        y, x = river.path[-1]
        if river.terminus == "ocean":
            assert foundation.ocean_mask[y, x]
        else:
            assert water.classification[y, x] == WaterClass.LAKE
    assert np.all(water.classification[foundation.ocean_mask] == WaterClass.DRY)


def test_no_particles_no_rivers() -> None:
    water, _ = _simulate(_valley(), SemanticParams(river_density=0.0))

    assert water.rivers == ()
    assert water.lakes == ()
    assert np.all(water.classification == WaterClass.DRY)


def test_wet_upland_source_carves_a_river_to_the_ocean() -> None:
    foundation = _valley()
    precipitation = np.zeros(foundation.shape, dtype=np.float32)
    precipitation[14:18, 26:30] = 1.0
    water, erosion = _simulate(foundation, SemanticParams(river_density=1.0), precipitation)

    assert any(river.reached_ocean for river in water.rivers)
    delta = erosion.height_delta.astype(np.float64)
    assert float(delta[delta > 0.0].sum()) <= float(-delta[delta < 0.0].sum()) + 1e-3
    assert float(erosion.height.max()) <= float(foundation.height.max()) + 1e-5
