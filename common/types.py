from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple, Any, Dict, List
from datetime import datetime, timezone


IsoTime = str

# Fixed acquisition geometry: 2 km square rendered at 2000x2000 px.
LARGE_IMAGE_RADIUS_M = 1000.0
LARGE_IMAGE_PIXELS = 2000
CROP_PIXELS = 2000
JPEG_QUALITY = 85

LARGE_IMAGE_FILE_NAME = "large_satellite.jpg"
INDEX_FILE_NAME = "satelliteCache.json"


def now_iso() -> IsoTime:
    """UTC timestamp in RFC3339/ISO-8601 with 'Z' suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def satellite_file_name(course_id: str, hole_number: int) -> str:
    """Stable crop file name; regenerating a hole overwrites the same file."""
    return f"{course_id}_hole_{int(hole_number)}.jpg"


@dataclass(slots=True, frozen=True)
class Coordinate:
    """WGS84 latitude/longitude in degrees."""
    lat: float
    lon: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.lat <= 90.0) or not (-180.0 <= self.lon <= 180.0):
            raise ValueError("lat/lon out of range")

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.lat, "longitude": self.lon}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Coordinate":
        return cls(float(d["latitude"]), float(d["longitude"]))


@dataclass(slots=True)
class Hole:
    """
    Hole entity as exposed by the course record store.

    Attributes:
        number: hole number (1-based).
        latitude, longitude: pin location (degrees).
    """
    number: int
    latitude: float
    longitude: float

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Hole":
        return cls(
            number=int(d["number"]),
            latitude=float(d["latitude"]),
            longitude=float(d["longitude"]),
        )


@dataclass(slots=True)
class LargeSatelliteImageMetadata:
    """
    The wide-area image cached once per course.

    The image is square and the same scale is used on both axes.
    """
    center: Coordinate
    radius_m: float = LARGE_IMAGE_RADIUS_M
    pixel_width: int = LARGE_IMAGE_PIXELS
    pixel_height: int = LARGE_IMAGE_PIXELS

    @property
    def meters_per_pixel(self) -> float:
        return (self.radius_m * 2.0) / self.pixel_width

    @property
    def image_size(self) -> Tuple[int, int]:
        return (self.pixel_width, self.pixel_height)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "centerLat": self.center.lat,
            "centerLon": self.center.lon,
            "radiusMeters": self.radius_m,
            "pixelWidth": self.pixel_width,
            "pixelHeight": self.pixel_height,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LargeSatelliteImageMetadata":
        return cls(
            center=Coordinate(float(d["centerLat"]), float(d["centerLon"])),
            radius_m=float(d.get("radiusMeters", LARGE_IMAGE_RADIUS_M)),
            pixel_width=int(d.get("pixelWidth", LARGE_IMAGE_PIXELS)),
            pixel_height=int(d.get("pixelHeight", LARGE_IMAGE_PIXELS)),
        )


@dataclass(slots=True)
class SatelliteImageMetadata:
    """
    One cropped image per (course, hole).

    `center` is the actual center of the stored crop, which differs from the
    requested point whenever the crop window was clamped.
    """
    course_id: str
    hole_number: int
    center: Coordinate
    file_name: str = ""

    def __post_init__(self) -> None:
        self.hole_number = int(self.hole_number)
        if not self.file_name:
            self.file_name = satellite_file_name(self.course_id, self.hole_number)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "courseId": self.course_id,
            "holeNumber": self.hole_number,
            "centerLat": self.center.lat,
            "centerLon": self.center.lon,
            "fileName": self.file_name,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SatelliteImageMetadata":
        return cls(
            course_id=str(d["courseId"]),
            hole_number=int(d["holeNumber"]),
            center=Coordinate(float(d["centerLat"]), float(d["centerLon"])),
            file_name=str(d.get("fileName") or ""),
        )


@dataclass(slots=True)
class CourseSatelliteCache:
    """Index record: everything cached for one course."""
    course_id: str
    course_name: str = ""
    large_image: Optional[LargeSatelliteImageMetadata] = None
    images: List[SatelliteImageMetadata] = field(default_factory=list)
    last_updated: IsoTime = field(default_factory=now_iso)

    def image_for(self, hole_number: int) -> Optional[SatelliteImageMetadata]:
        for img in self.images:
            if img.hole_number == int(hole_number):
                return img
        return None

    def upsert_image(self, image: SatelliteImageMetadata) -> None:
        """Replace the entry with the same hole number, else append."""
        for i, existing in enumerate(self.images):
            if existing.hole_number == image.hole_number:
                self.images[i] = image
                return
        self.images.append(image)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "courseId": self.course_id,
            "courseName": self.course_name,
            "largeImage": None if self.large_image is None else self.large_image.to_dict(),
            "images": [img.to_dict() for img in self.images],
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CourseSatelliteCache":
        large = d.get("largeImage")
        return cls(
            course_id=str(d["courseId"]),
            course_name=str(d.get("courseName") or ""),
            large_image=None if not large else LargeSatelliteImageMetadata.from_dict(large),
            images=[SatelliteImageMetadata.from_dict(x) for x in d.get("images", [])],
            last_updated=str(d.get("lastUpdated") or now_iso()),
        )
