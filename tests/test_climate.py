from __future__ import annotations

import numpy as np
import pytest

from worldclimate.climate import (
    altitude_cooling,
    apply_coastal_moisture,
    apply_rain_shadow,
    compute_base_precipitation,
    compute_temperature,
    latitude_factor,
    prevailing_wind_x,
    wind_band_name,
)
from worldclimate.config import CoastalConfig, PrecipitationConfig, RainShadowConfig, TemperatureConfig
from worldclimate.foundation import ElevationThresholds
from worldclimate.rng import RngStream


def _thresholds() -> ElevationThresholds:
    return ElevationThresholds(sea=0.0, hill=0.25, mountain=0.5, peak=1.0)


def _fixed_planet(**kwargs) -> TemperatureConfig:
    return TemperatureConfig(axial_tilt=0.0, distance_to_sun=1.0, **kwargs)


def test_latitude_factor_triangle() -> None:
    lat = latitude_factor(10, 0.0)

    assert lat[0] == pytest.approx(0.0)
    assert lat[5] == pytest.approx(1.0)
    assert lat[7] == pytest.approx(0.6, abs=1e-6)
    assert lat[3] == pytest.approx(lat[7], abs=1e-6)


def test_latitude_factor_follows_tilt() -> None:
    lat = latitude_factor(20, 0.1)
    assert int(np.argmax(lat)) == 12


def test_altitude_cooling_span_and_floor() -> None:
    thresholds = ElevationThresholds(sea=0.0, hill=1.0, mountain=2.0, peak=4.0)
    cooling = altitude_cooling(np.array([[1.0, 2.0, 4.0, 100.0]]), thresholds, TemperatureConfig())

    assert cooling[0, 0] == pytest.approx(1.0)
    assert cooling[0, 1] == pytest.approx(1.0)
    assert cooling[0, 2] == pytest.approx(0.5)
    assert cooling[0, 3] == pytest.approx(0.033)


def test_temperature_range_and_read_only() -> None:
    height = np.zeros((32, 32), dtype=np.float32)
    result = compute_temperature(height, _thresholds(), TemperatureConfig(), RngStream(11))

    assert result.temperature.shape == (32, 32)
    assert float(result.temperature.min()) >= 0.0
    assert float(result.temperature.max()) <= 1.0
    assert not result.temperature.flags.writeable
    with pytest.raises(ValueError):
        result.temperature[0, 0] = 0.5


def test_explicit_planet_scalars_win() -> None:
    height = np.zeros((16, 16), dtype=np.float32)
    result = compute_temperature(height, _thresholds(), TemperatureConfig(axial_tilt=0.1, distance_to_sun=1.2), RngStream(1))

    assert result.axial_tilt == pytest.approx(0.1)
    assert result.distance_to_sun == pytest.approx(1.44)


def test_sampled_planet_scalars_are_seeded() -> None:
    height = np.zeros((16, 16), dtype=np.float32)
    a = compute_temperature(height, _thresholds(), TemperatureConfig(), RngStream(21))
    b = compute_temperature(height, _thresholds(), TemperatureConfig(), RngStream(21))

    assert a.axial_tilt == b.axial_tilt
    assert a.distance_to_sun == b.distance_to_sun
    assert np.array_equal(a.temperature, b.temperature)
    assert abs(a.axial_tilt) <= 0.5


def test_peak_at_equator_is_colder_but_not_frozen() -> None:
    height = np.zeros((32, 32), dtype=np.float32)
    height[16, 16] = 1.0
    result = compute_temperature(height, _thresholds(), _fixed_planet(), RngStream(3))

    warm = float(result.with_distance[16, 16])
    assert float(result.temperature[16, 16]) == pytest.approx(warm * 0.5, rel=1e-5)
    assert 0.0 < float(result.temperature[16, 16]) < warm


def test_base_precipitation_stretched_with_ordered_thresholds() -> None:
    height = np.zeros((32, 32), dtype=np.float32)
    temperature = compute_temperature(height, _thresholds(), _fixed_planet(), RngStream(4)).temperature
    base = compute_base_precipitation(temperature, PrecipitationConfig(), RngStream(5))

    assert float(base.precipitation.min()) == pytest.approx(0.0)
    assert float(base.precipitation.max()) == pytest.approx(1.0)
    t = base.thresholds
    assert 0.0 <= t.low <= t.medium <= t.high <= 1.0


def test_prevailing_wind_bands() -> None:
    assert float(prevailing_wind_x(0.5)) == pytest.approx(-1.0)
    assert float(prevailing_wind_x(0.75)) == pytest.approx(1.0)
    assert float(prevailing_wind_x(0.25)) == pytest.approx(1.0)
    assert float(prevailing_wind_x(0.0)) == pytest.approx(-1.0)
    assert float(prevailing_wind_x(0.5 + 27.5 / 180.0)) == pytest.approx(-0.5, abs=1e-5)

    assert wind_band_name(0.5) == "Trade Winds"
    assert wind_band_name(0.75) == "Westerlies"
    assert wind_band_name(0.95) == "Polar Easterlies"


def test_rain_shadow_leeward_of_ridge() -> None:
    height = np.zeros((16, 16), dtype=np.float32)
    height[:, 8] = 1.0
    precipitation = np.ones((16, 16), dtype=np.float32)
    result = apply_rain_shadow(precipitation, height, _thresholds(), RainShadowConfig(fixed_wind_x=1.0))

    assert np.allclose(result.precipitation[:, 9:], 0.95)
    assert np.allclose(result.precipitation[:, :9], 1.0)
    assert np.allclose(result.blocking[:, 9:], 0.05)


def test_rain_shadow_reduction_is_capped() -> None:
    height = np.zeros((4, 45), dtype=np.float32)
    height[:, :30] = 1.0
    precipitation = np.ones((4, 45), dtype=np.float32)
    result = apply_rain_shadow(precipitation, height, _thresholds(), RainShadowConfig(fixed_wind_x=1.0))

    assert np.allclose(result.blocking[:, 30], 0.8)
    assert np.allclose(result.precipitation[:, 30], 0.2)
    assert float(result.blocking.max()) <= 0.8 + 1e-6


def test_raising_terrain_never_reduces_blocking_elsewhere() -> None:
    rng = np.random.default_rng(1)
    height = rng.uniform(0.0, 1.0, size=(16, 16)).astype(np.float32)
    precipitation = np.ones((16, 16), dtype=np.float32)
    cfg = RainShadowConfig()
    before = apply_rain_shadow(precipitation, height, _thresholds(), cfg)

    raised = height.copy()
    raised[8, 8] += 0.5
    after = apply_rain_shadow(precipitation, raised, _thresholds(), cfg)

    others = np.ones((16, 16), dtype=bool)
    others[8, 8] = False
    assert np.all(after.blocking[others] >= before.blocking[others])
    assert np.all(after.precipitation[others] <= before.precipitation[others])


def test_coastal_bonus_decays_inland() -> None:
    height = np.zeros((8, 16), dtype=np.float32)
    height[:, :2] = -1.0
    ocean = np.zeros((8, 16), dtype=bool)
    ocean[:, :2] = True
    precipitation = np.full((8, 16), 0.5, dtype=np.float32)
    result = apply_coastal_moisture(precipitation, height, ocean, _thresholds(), CoastalConfig())

    row = result.precipitation[3, 2:]
    assert np.all(np.diff(row) < 0.0)
    assert float(row[0]) == pytest.approx(0.5 * (1.0 + 0.8 * np.exp(-1.0 / 30.0)), rel=1e-5)
    assert np.allclose(result.precipitation[ocean], 0.5)
    assert int(result.distance_to_ocean[3, 2]) == 1
    assert int(result.distance_to_ocean[3, 0]) == 0


def test_coastal_bonus_removed_at_peak_height() -> None:
    height = np.zeros((8, 16), dtype=np.float32)
    height[:, :2] = -1.0
    height[3, 8] = 1.0
    ocean = np.zeros((8, 16), dtype=bool)
    ocean[:, :2] = True
    precipitation = np.full((8, 16), 0.5, dtype=np.float32)
    result = apply_coastal_moisture(precipitation, height, ocean, _thresholds(), CoastalConfig())

    assert float(result.precipitation[3, 8]) == pytest.approx(0.5)
    assert float(result.precipitation[4, 8]) > 0.5


def test_coastal_without_ocean_is_identity() -> None:
    height = np.zeros((8, 8), dtype=np.float32)
    ocean = np.zeros((8, 8), dtype=bool)
    precipitation = np.linspace(0.0, 1.0, 64, dtype=np.float32).reshape(8, 8)
    result = apply_coastal_moisture(precipitation, height, ocean, _thresholds(), CoastalConfig())

    assert np.array_equal(result.precipitation, precipitation)
    assert np.all(result.distance_to_ocean == -1)
