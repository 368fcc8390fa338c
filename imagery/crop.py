from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np

from cache.store import CacheStore
from common.errors import CropBoundsError, NotFoundError
from common.geo import coordinate_to_pixel, distance_m, pixel_to_coordinate
from common.logging_setup import get_logger
from common.types import CROP_PIXELS, JPEG_QUALITY, Coordinate, Hole, SatelliteImageMetadata
from common.utils import clamp, kb
from imagery.codec import decode_image, encode_jpeg


log = get_logger(__name__)

# Interpolation weights from the reference point toward the pin. The asymmetry
# matches the companion display.
LAT_BLEND = 0.45
LON_BLEND = 0.50

Rect = Tuple[int, int, int, int]  # x, y, w, h


def crop_center(hole_location: Coordinate, reference: Optional[Coordinate] = None) -> Coordinate:
    """Crop center: the hole itself, or 45%/50% of the way from `reference` toward it."""
    if reference is None:
        return hole_location
    lat = reference.lat + (hole_location.lat - reference.lat) * LAT_BLEND
    lon = reference.lon + (hole_location.lon - reference.lon) * LON_BLEND
    return Coordinate(lat, lon)


def crop_rect(center_px: Tuple[float, float], image_size: Tuple[int, int], crop_size: Tuple[int, int]) -> Rect:
    """
    Crop window of `crop_size` centered on `center_px`, clamped so it stays
    inside `image_size`. Origin ends up in [0, image - crop] on both axes,
    which is always (0, 0) when crop and image are the same size.
    """
    px, py = center_px
    iw, ih = image_size
    cw, ch = crop_size
    if not (math.isfinite(px) and math.isfinite(py)):
        raise CropBoundsError(f"Non-finite crop center: ({px}, {py})")
    if cw <= 0 or ch <= 0 or cw > iw or ch > ih:
        raise CropBoundsError(f"Crop {cw}x{ch} does not fit image {iw}x{ih}")

    x = clamp(px - cw / 2.0, 0.0, float(iw - cw))
    y = clamp(py - ch / 2.0, 0.0, float(ih - ch))
    # Whole pixels; rounding stays inside [0, image - crop] because both ends are integers.
    return int(round(x)), int(round(y)), int(cw), int(ch)


class CropEngine:
    """Cuts one window per hole out of the course's cached large image."""

    def __init__(
        self,
        store: CacheStore,
        crop_size: Tuple[int, int] = (CROP_PIXELS, CROP_PIXELS),
        jpeg_quality: int = JPEG_QUALITY,
    ):
        self.store = store
        self.crop_size = (int(crop_size[0]), int(crop_size[1]))
        self.jpeg_quality = int(jpeg_quality)

    def crop_for_hole(
        self,
        course_id: str,
        hole: Hole,
        user_location: Optional[Coordinate] = None,
    ) -> SatelliteImageMetadata:
        """
        Crop, encode, store and index the window for `hole`.

        Raises NotFoundError, DecodeError, CropBoundsError, EncodeError or
        CacheIOError; nothing is retried here.
        """
        cache = self.store.get(course_id)
        large = cache.large_image if cache else None
        if large is None:
            raise NotFoundError(f"No large satellite image cached for course {course_id}")
        data = self.store.read_large_image(course_id)
        if data is None:
            raise NotFoundError(f"Large satellite image file missing for course {course_id}")

        img = decode_image(data)

        target = crop_center(hole.coordinate, user_location)
        if user_location is not None:
            log.debug("Cropping between reference point and hole %d", hole.number)
        else:
            log.debug("Cropping at hole %d coordinate", hole.number)

        center_px = coordinate_to_pixel(target, large.center, large.image_size, large.meters_per_pixel)
        x, y, w, h = crop_rect(center_px, large.image_size, self.crop_size)
        if y + h > img.shape[0] or x + w > img.shape[1]:
            raise CropBoundsError(
                f"Crop ({x},{y},{w},{h}) exceeds decoded image {img.shape[1]}x{img.shape[0]}"
            )

        # Center of the window actually written, not the requested point.
        actual = pixel_to_coordinate(
            x + w / 2.0, y + h / 2.0, large.center, large.image_size, large.meters_per_pixel
        )

        crop = np.ascontiguousarray(img[y : y + h, x : x + w])
        jpeg = encode_jpeg(crop, self.jpeg_quality)

        metadata = SatelliteImageMetadata(course_id=course_id, hole_number=hole.number, center=actual)
        self.store.save_image(metadata, jpeg)

        log.info(
            "Cropped and saved hole image",
            extra={"extra": {
                "course_id": course_id,
                "hole": hole.number,
                "rect": [x, y, w, h],
                "clamp_shift_m": round(distance_m(target, actual), 1),
                "kb": kb(len(jpeg)),
            }},
        )
        return metadata
