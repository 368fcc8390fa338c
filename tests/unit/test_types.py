"""
Unit tests for cache record types and their JSON shape
"""

import json
import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.types import (
    Coordinate,
    CourseSatelliteCache,
    Hole,
    LargeSatelliteImageMetadata,
    SatelliteImageMetadata,
    satellite_file_name,
)


class TestCoordinate:
    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            Coordinate(91.0, 0.0)
        with pytest.raises(ValueError):
            Coordinate(0.0, -181.0)

    def test_is_hashable_value(self):
        assert Coordinate(1.0, 2.0) == Coordinate(1.0, 2.0)
        assert len({Coordinate(1.0, 2.0), Coordinate(1.0, 2.0)}) == 1


class TestLargeSatelliteImageMetadata:
    def test_meters_per_pixel(self):
        """2 km across 2000 px is one meter per pixel"""
        meta = LargeSatelliteImageMetadata(center=Coordinate(40.0, -75.0))
        assert meta.meters_per_pixel == pytest.approx(1.0)
        assert meta.image_size == (2000, 2000)

    def test_meters_per_pixel_uses_width(self):
        meta = LargeSatelliteImageMetadata(Coordinate(0.0, 0.0), radius_m=200.0, pixel_width=400, pixel_height=400)
        assert meta.meters_per_pixel == pytest.approx(1.0)

    def test_camel_case_keys(self):
        meta = LargeSatelliteImageMetadata(center=Coordinate(40.0, -75.0))
        assert set(meta.to_dict()) == {"centerLat", "centerLon", "radiusMeters", "pixelWidth", "pixelHeight"}


class TestSatelliteImageMetadata:
    def test_default_file_name(self):
        meta = SatelliteImageMetadata(course_id="abc", hole_number=7, center=Coordinate(40.0, -75.0))
        assert meta.file_name == "abc_hole_7.jpg"
        assert meta.file_name == satellite_file_name("abc", 7)

    def test_from_dict(self):
        d = {"courseId": "abc", "holeNumber": 3, "centerLat": 40.1, "centerLon": -75.2, "fileName": "abc_hole_3.jpg"}
        meta = SatelliteImageMetadata.from_dict(d)
        assert meta.hole_number == 3
        assert meta.center == Coordinate(40.1, -75.2)
        assert meta.to_dict() == d

    def test_from_dict_missing_key(self):
        with pytest.raises(KeyError):
            SatelliteImageMetadata.from_dict({"courseId": "abc", "centerLat": 1.0, "centerLon": 1.0})


class TestCourseSatelliteCache:
    def _img(self, n, lat=40.0):
        return SatelliteImageMetadata(course_id="c1", hole_number=n, center=Coordinate(lat, -75.0))

    def test_upsert_image_replaces_same_hole(self):
        cache = CourseSatelliteCache(course_id="c1")
        cache.upsert_image(self._img(1))
        cache.upsert_image(self._img(2))
        cache.upsert_image(self._img(1, lat=41.0))
        assert [i.hole_number for i in cache.images] == [1, 2]
        assert cache.image_for(1).center.lat == 41.0

    def test_image_for_missing(self):
        assert CourseSatelliteCache(course_id="c1").image_for(4) is None

    def test_json_shape(self):
        cache = CourseSatelliteCache(
            course_id="c1",
            course_name="Pine Valley",
            large_image=LargeSatelliteImageMetadata(center=Coordinate(40.0, -75.0)),
            images=[self._img(1)],
        )
        raw = json.loads(json.dumps(cache.to_dict()))
        assert set(raw) == {"courseId", "courseName", "largeImage", "images", "lastUpdated"}
        assert raw["lastUpdated"].endswith("Z")
        back = CourseSatelliteCache.from_dict(raw)
        assert back.course_name == "Pine Valley"
        assert back.large_image.center == Coordinate(40.0, -75.0)
        assert back.images[0].file_name == "c1_hole_1.jpg"

    def test_absent_large_image_is_null(self):
        assert CourseSatelliteCache(course_id="c1").to_dict()["largeImage"] is None


class TestHole:
    def test_from_dict(self):
        hole = Hole.from_dict({"number": "1", "latitude": 40.0, "longitude": -75.0})
        assert hole.number == 1
        assert hole.coordinate == Coordinate(40.0, -75.0)

    def test_from_dict_ignores_extra_keys(self):
        hole = Hole.from_dict({"number": 2, "latitude": 40.0, "longitude": -75.0, "par": 4})
        assert hole == Hole(number=2, latitude=40.0, longitude=-75.0)
