from __future__ import annotations

from typing import Tuple
import math

from common.types import Coordinate


# Flat-earth scale used for every cached image. Valid over a few kilometers only.
METERS_PER_DEGREE_LAT = 111000.0


def meters_per_degree_lon(lat: float) -> float:
    """Longitude scale at `lat` (degrees). Degenerates at the poles; not guarded."""
    return METERS_PER_DEGREE_LAT * math.cos(math.radians(lat))


# -------------------------
# Pixel/Geo helpers for cached images
# -------------------------
def pixel_to_coordinate(
    pixel_x: float,
    pixel_y: float,
    image_center: Coordinate,
    image_size: Tuple[int, int],
    meters_per_pixel: float,
) -> Coordinate:
    """
    Convert an absolute pixel position in a center-referenced image to lat/lon.

    image_size is (width, height). Pixel Y increases downward, so north is -Y.
    The same meters_per_pixel applies to both axes (square pixels, no projection).
    """
    width, height = image_size
    meters_east = (pixel_x - width / 2.0) * meters_per_pixel
    meters_north = -(pixel_y - height / 2.0) * meters_per_pixel

    d_lat = meters_north / METERS_PER_DEGREE_LAT
    d_lon = meters_east / meters_per_degree_lon(image_center.lat)
    return Coordinate(image_center.lat + d_lat, image_center.lon + d_lon)


def coordinate_to_pixel_offset(
    point: Coordinate,
    image_center: Coordinate,
    meters_per_pixel: float,
) -> Tuple[float, float]:
    """
    Pixel offset (dx, dy) of `point` from the image center.

    dx grows east, dy grows south. Inverse of pixel_to_coordinate once the
    half image size is added back (see coordinate_to_pixel).
    """
    meters_north = (point.lat - image_center.lat) * METERS_PER_DEGREE_LAT
    meters_east = (point.lon - image_center.lon) * meters_per_degree_lon(image_center.lat)
    return meters_east / meters_per_pixel, -meters_north / meters_per_pixel


def coordinate_to_pixel(
    point: Coordinate,
    image_center: Coordinate,
    image_size: Tuple[int, int],
    meters_per_pixel: float,
) -> Tuple[float, float]:
    """Absolute pixel position (x, y) of `point` within the image."""
    dx, dy = coordinate_to_pixel_offset(point, image_center, meters_per_pixel)
    width, height = image_size
    return dx + width / 2.0, dy + height / 2.0


# -------------------------
# Great-circle distance
# -------------------------
def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine great-circle distance on a spherical earth (meters)."""
    R = 6371008.8  # mean Earth radius (m)
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dphi = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2.0) ** 2
    return 2 * R * math.asin(math.sqrt(a))


def distance_m(a: Coordinate, b: Coordinate) -> float:
    return haversine_m(a.lat, a.lon, b.lat, b.lon)

