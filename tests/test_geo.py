import pytest

from store_locator.geo import distance_km, haversine_km, in_distance_range, range_bounds_km


def test_distance_to_self_is_zero():
    a = {"lat": 34.09, "lng": -118.4}
    assert distance_km(a, a) == 0.0


def test_distance_is_symmetric():
    a = {"lat": 34.09, "lng": -118.4}
    b = {"lat": 34.05, "lng": -118.25}
    assert distance_km(a, b) == pytest.approx(distance_km(b, a))


def test_haversine_known_distance():
    # One degree of latitude on a 6371 km sphere.
    assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.195, abs=1e-3)


def test_first_range_keeps_everything_inside_base_radius():
    assert in_distance_range(4.9, 1, 5000)
    assert in_distance_range(0.0, 1, 5000)
    assert not in_distance_range(5.1, 1, 5000)
    assert not in_distance_range(5.0, 1, 5000)


def test_second_range_is_an_annulus():
    assert not in_distance_range(4.9, 2, 5000)
    assert in_distance_range(5.0, 2, 5000)
    assert in_distance_range(7.0, 2, 5000)
    assert not in_distance_range(10.1, 2, 5000)


def test_range_bounds_scale_with_base_radius():
    assert range_bounds_km(1, 5000) == (0.0, 5.0)
    assert range_bounds_km(3, 2000) == (4.0, 6.0)
