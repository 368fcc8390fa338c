from __future__ import annotations

"""
Satellite imagery providers for course acquisition.

A provider renders one square region (center + span in meters) into an image of
a requested pixel size. AcquisitionService only depends on ImageryProvider, so
tests substitute a fake.

WorldImageryProvider uses the ArcGIS REST "export" operation of the World Imagery
map service. The region is requested in Web Mercator (EPSG:3857) so that a ground
square stays square in the output image.

Usage:
    provider = WorldImageryProvider()
    snap = provider.snapshot(SnapshotRequest(center=Coordinate(40.0, -75.0)))
    if snap:
        # snap.image -> BGR uint8 array (height, width, 3)
        # snap.meta['bbox_3857'] -> [xmin, ymin, xmax, ymax]
        pass
"""

import math
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode

import numpy as np
import requests

from common.errors import DecodeError, ProviderError
from common.logging_setup import get_logger
from common.types import LARGE_IMAGE_PIXELS, LARGE_IMAGE_RADIUS_M, Coordinate
from imagery.codec import decode_image


log = get_logger(__name__)

DEFAULT_EXPORT_URL = "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/export"

_MERC_R = 6378137.0  # spherical Web Mercator radius (m)


@dataclass
class SnapshotRequest:
    """
    Region to render. `span_m` is the side of the square in meters.
    Satellite-only: points of interest and building overlays are never drawn.
    """
    center: Coordinate
    span_m: float = LARGE_IMAGE_RADIUS_M * 2.0
    width: int = LARGE_IMAGE_PIXELS
    height: int = LARGE_IMAGE_PIXELS
    map_type: str = "satellite"
    show_buildings: bool = False
    show_points_of_interest: bool = False


@dataclass
class Snapshot:
    image: np.ndarray
    meta: Dict = field(default_factory=dict)


class ImageryProvider(ABC):
    """Capability interface: acquire one rendered region."""

    @abstractmethod
    def snapshot(self, request: SnapshotRequest) -> Optional[Snapshot]:
        """
        Blocking render of `request`.

        Returns None when the provider answered without a usable image.
        Raises ProviderError on network/upstream failures.
        """


class WorldImageryProvider(ImageryProvider):
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            base_url: MapServer export endpoint (falls back to env WORLD_IMAGERY_URL)
            timeout: request timeout in seconds
            session: optional requests.Session for connection reuse
        """
        self.base_url = base_url or os.getenv("WORLD_IMAGERY_URL") or DEFAULT_EXPORT_URL
        self.timeout = float(timeout)
        self.session = session or requests.Session()

    # ----------------------------
    # Public API
    # ----------------------------
    def build_url(self, request: SnapshotRequest) -> str:
        """Construct the export URL for `request` (no request performed)."""
        bbox = self.mercator_bbox(request.center, request.span_m)
        params = {
            "bbox": ",".join(f"{v:.3f}" for v in bbox),
            "bboxSR": 3857,
            "imageSR": 3857,
            "size": f"{int(request.width)},{int(request.height)}",
            "format": "jpg",
            "transparent": "false",
            "f": "image",
        }
        return f"{self.base_url}?{urlencode(params)}"

    def snapshot(self, request: SnapshotRequest) -> Optional[Snapshot]:
        url = self.build_url(request)
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderError(f"World Imagery request failed: {e}") from e

        if r.status_code != 200:
            raise ProviderError(f"World Imagery returned HTTP {r.status_code}: {r.text[:200]}")
        ctype = r.headers.get("Content-Type", "")
        if "json" in ctype or "html" in ctype:
            # The export endpoint reports errors as a 200 with a JSON/HTML body
            raise ProviderError(f"World Imagery error body: {r.text[:200]}")
        if not r.content:
            log.warning("World Imagery returned an empty body")
            return None

        try:
            img = decode_image(r.content)
        except DecodeError:
            log.warning("World Imagery body was not an image (%d bytes)", len(r.content))
            return None

        meta = {
            "bbox_3857": list(self.mercator_bbox(request.center, request.span_m)),
            "size": f"{img.shape[1]}x{img.shape[0]}",
            "center_lat": request.center.lat,
            "center_lon": request.center.lon,
            "span_m": float(request.span_m),
            "source": "world_imagery",
        }
        return Snapshot(image=img, meta=meta)

    # ----------------------------
    # Geo helpers (spherical Web Mercator)
    # ----------------------------
    @staticmethod
    def _lon_to_x(lon: float) -> float:
        return _MERC_R * math.radians(lon)

    @staticmethod
    def _lat_to_y(lat: float) -> float:
        return _MERC_R * math.log(math.tan(math.pi / 4.0 + math.radians(lat) / 2.0))

    @classmethod
    def mercator_bbox(cls, center: Coordinate, span_m: float) -> Tuple[float, float, float, float]:
        """
        [xmin, ymin, xmax, ymax] in EPSG:3857 covering `span_m` of ground on each side.
        Mercator units stretch by 1/cos(lat), so the half-span is scaled accordingly.
        """
        half = (span_m / 2.0) / math.cos(math.radians(center.lat))
        cx = cls._lon_to_x(center.lon)
        cy = cls._lat_to_y(center.lat)
        return (cx - half, cy - half, cx + half, cy + half)
