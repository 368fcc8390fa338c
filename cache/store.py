from __future__ import annotations

import json
import shutil
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from common.errors import CacheIOError, NotFoundError
from common.logging_setup import get_logger
from common.types import (
    INDEX_FILE_NAME,
    LARGE_IMAGE_FILE_NAME,
    CourseSatelliteCache,
    LargeSatelliteImageMetadata,
    SatelliteImageMetadata,
    now_iso,
)
from common.utils import atomic_write_bytes, kb


log = get_logger(__name__)


def valid_path_name(name: str) -> bool:
    """True if `name` is a single path component that stays inside its parent."""
    return bool(name) and name not in (".", "..") and "/" not in name and "\\" not in name and "\0" not in name


class CacheStore:
    """
    On-disk satellite cache: one JSON index plus one directory per course.

        root/
          ├─ satelliteCache.json          (list of CourseSatelliteCache records)
          └─ {courseId}/
              ├─ large_satellite.jpg
              └─ {courseId}_hole_{n}.jpg  (one per cropped hole)

    The index is read, mutated and rewritten in full on every change. All
    read-modify-write cycles hold one lock, so concurrent downloads and crops
    in the same process cannot lose each other's updates.
    """
    def __init__(self, root: str = "data/satellite_cache"):
        self.root = Path(root)
        self.index_path = self.root / INDEX_FILE_NAME
        self._lock = threading.RLock()

    # -------- index API --------

    def all(self) -> List[CourseSatelliteCache]:
        with self._lock:
            return self._load()

    def get(self, course_id: str) -> Optional[CourseSatelliteCache]:
        """Linear scan by id; the index holds one record per course."""
        with self._lock:
            for rec in self._load():
                if rec.course_id == course_id:
                    return rec
        return None

    def upsert(
        self,
        course_id: str,
        large_image: Optional[LargeSatelliteImageMetadata] = None,
        new_images: Optional[Iterable[SatelliteImageMetadata]] = None,
    ) -> CourseSatelliteCache:
        """
        Merge into the course record, creating it (with an empty name) if absent.

        `large_image` replaces the stored one when given; each new image replaces
        the entry with the same hole number or is appended. lastUpdated is always
        refreshed.
        """
        with self._lock:
            records = self._load()
            rec = self._find(records, course_id)
            if rec is None:
                rec = CourseSatelliteCache(course_id=course_id, course_name="")
                records.append(rec)
            if large_image is not None:
                rec.large_image = large_image
            for img in new_images or ():
                rec.upsert_image(img)
            rec.last_updated = now_iso()
            self._save(records)
            return rec

    def set_course_name(self, course_id: str, course_name: str) -> CourseSatelliteCache:
        with self._lock:
            records = self._load()
            rec = self._find(records, course_id)
            if rec is None:
                rec = CourseSatelliteCache(course_id=course_id)
                records.append(rec)
            rec.course_name = course_name
            rec.last_updated = now_iso()
            self._save(records)
            return rec

    def delete(self, course_id: str) -> None:
        """
        Remove the course directory (best-effort) and its index record.
        Deleting a course that has no cache is a no-op.
        """
        with self._lock:
            shutil.rmtree(self.course_dir(course_id), ignore_errors=True)
            records = self._load()
            kept = [r for r in records if r.course_id != course_id]
            if len(kept) != len(records):
                self._save(kept)
                log.info("Deleted satellite cache", extra={"extra": {"course_id": course_id}})

    def stats(self) -> Dict[str, int]:
        records = self.all()
        return {
            "courses": len(records),
            "large_images": sum(1 for r in records if r.large_image is not None),
            "hole_images": sum(len(r.images) for r in records),
        }

    # -------- file API --------

    def course_dir(self, course_id: str) -> Path:
        course_id = str(course_id)
        if not valid_path_name(course_id):
            raise NotFoundError(f"Invalid course id {course_id!r}")
        return self.root / course_id

    def large_image_path(self, course_id: str) -> Path:
        return self.course_dir(course_id) / LARGE_IMAGE_FILE_NAME

    def image_path(self, course_id: str, file_name: str) -> Path:
        if not valid_path_name(file_name):
            raise NotFoundError(f"Invalid image file name {file_name!r}")
        return self.course_dir(course_id) / file_name

    def write_large_image(self, course_id: str, data: bytes) -> Path:
        path = self.large_image_path(course_id)
        self._write_file(path, data)
        log.info(
            "Saved large satellite image",
            extra={"extra": {"course_id": course_id, "kb": kb(len(data))}},
        )
        return path

    def read_large_image(self, course_id: str) -> Optional[bytes]:
        return self._read_file(self.large_image_path(course_id))

    def write_image(self, course_id: str, file_name: str, data: bytes) -> Path:
        path = self.image_path(course_id, file_name)
        self._write_file(path, data)
        return path

    def get_image_data(self, course_id: str, hole_number: int) -> Optional[bytes]:
        """Bytes of a hole's crop, or None if the entry or its file is missing."""
        rec = self.get(course_id)
        meta = rec.image_for(hole_number) if rec else None
        if meta is None:
            return None
        return self._read_file(self.image_path(course_id, meta.file_name))

    def save_image(self, metadata: SatelliteImageMetadata, data: bytes) -> CourseSatelliteCache:
        """Write a crop and upsert its metadata in one step."""
        self.write_image(metadata.course_id, metadata.file_name, data)
        return self.upsert(metadata.course_id, new_images=[metadata])

    # -------- internals --------

    @staticmethod
    def _find(records: List[CourseSatelliteCache], course_id: str) -> Optional[CourseSatelliteCache]:
        for r in records:
            if r.course_id == course_id:
                return r
        return None

    def _load(self) -> List[CourseSatelliteCache]:
        if not self.index_path.exists():
            return []
        try:
            raw = json.loads(self.index_path.read_text())
            return [CourseSatelliteCache.from_dict(d) for d in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("Unreadable satellite index, treating as empty: %s", e)
            return []

    def _save(self, records: List[CourseSatelliteCache]) -> None:
        data = json.dumps([r.to_dict() for r in records], indent=2).encode("utf-8")
        try:
            atomic_write_bytes(self.index_path, data)
        except OSError as e:
            raise CacheIOError(f"Failed to write satellite index {self.index_path}: {e}") from e

    @staticmethod
    def _write_file(path: Path, data: bytes) -> None:
        try:
            atomic_write_bytes(path, data)
        except OSError as e:
            raise CacheIOError(f"Failed to write {path}: {e}") from e

    @staticmethod
    def _read_file(path: Path) -> Optional[bytes]:
        try:
            with path.open("rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            log.warning("Failed to read %s: %s", path, e)
            return None
