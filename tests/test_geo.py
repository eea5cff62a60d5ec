import unittest

from hunt.errors import InvalidCoordinates, ValidationFailed
from hunt.models.payload import GeoLocation
from hunt.services.geo import (
    distance,
    is_within_bounding_box,
    is_within_radius,
    validate_coordinates,
    validate_waypoint_location,
)
from tests.support import BRIDGE, SQUARE, waypoint

LONDON = GeoLocation(lat=51.5074, lon=-0.1278)
NEW_YORK = GeoLocation(lat=40.7128, lon=-74.0060)


class DistanceTests(unittest.TestCase):
    def test_zero_for_same_point(self):
        self.assertEqual(distance(LONDON, LONDON), 0.0)

    def test_symmetric(self):
        self.assertAlmostEqual(distance(LONDON, NEW_YORK), distance(NEW_YORK, LONDON), delta=1e-6)

    def test_london_to_new_york(self):
        self.assertAlmostEqual(distance(LONDON, NEW_YORK) / 1000, 5570, delta=50)

    def test_small_offset(self):
        nearby = GeoLocation(lat=LONDON.lat + 0.0001, lon=LONDON.lon)
        meters = distance(LONDON, nearby)
        self.assertGreater(meters, 10)
        self.assertLess(meters, 15)

    def test_invalid_coordinates(self):
        for lat, lon in [(91, 0), (-90.5, 0), (0, 180.1), (0, -181)]:
            with self.assertRaises(InvalidCoordinates):
                distance(GeoLocation(lat=lat, lon=lon), LONDON)

    def test_invalid_coordinates_are_validation_failures(self):
        with self.assertRaises(ValidationFailed):
            validate_coordinates(GeoLocation(lat=100, lon=0))

    def test_poles_and_antimeridian_are_valid(self):
        validate_coordinates(GeoLocation(lat=90, lon=180))
        validate_coordinates(GeoLocation(lat=-90, lon=-180))


class RadiusTests(unittest.TestCase):
    def test_boundary_is_inside(self):
        nearby = GeoLocation(lat=LONDON.lat + 0.0003, lon=LONDON.lon)
        radius = distance(LONDON, nearby)
        self.assertTrue(is_within_radius(LONDON, nearby, radius))
        self.assertFalse(is_within_radius(LONDON, nearby, radius - 0.01))

    def test_bounding_box_precheck(self):
        nearby = GeoLocation(lat=LONDON.lat + 0.0002, lon=LONDON.lon + 0.0002)
        self.assertTrue(is_within_bounding_box(LONDON, nearby, 50))
        self.assertFalse(is_within_bounding_box(LONDON, NEW_YORK, 50))

    def test_waypoint_location_check(self):
        target = waypoint(1, BRIDGE, radius=50)

        check = validate_waypoint_location(target, BRIDGE)
        self.assertTrue(check.is_valid)
        self.assertEqual(check.max_distance_meters, 50)

        check = validate_waypoint_location(target, SQUARE)
        self.assertFalse(check.is_valid)
        self.assertGreater(check.distance_meters, 700)


if __name__ == "__main__":
    unittest.main()
