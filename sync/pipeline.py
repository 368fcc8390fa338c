from __future__ import annotations

"""
Course-level satellite flows.

prepare_for_round():
  1) holes known and every hole cropped  -> transfer cached crops
  2) holes known but cache incomplete    -> download (centroid), crop + transfer each hole
  3) no holes yet                        -> download around the user, wait for holes

handle_new_hole():
  no large image -> download around the hole, then crop + transfer it
  hole cropped   -> skip
  otherwise      -> crop + transfer it

These calls block until the work is done; run them off the request thread.
"""

from enum import Enum
from typing import Iterable, List, Optional, Sequence

from cache.store import CacheStore
from common.errors import SatelliteCacheError
from common.logging_setup import get_logger
from common.types import Coordinate, Hole
from imagery.acquisition import AcquisitionService
from imagery.crop import CropEngine
from transfer.orchestrator import TransferOrchestrator


log = get_logger(__name__)


class SyncOutcome(str, Enum):
    TRANSFERRED_CACHED = "transferred_cached"
    DOWNLOADED = "downloaded"
    AWAITING_HOLES = "awaiting_holes"
    NO_LOCATION = "no_location"
    SKIPPED = "skipped"
    CROPPED = "cropped"
    FAILED = "failed"


def course_centroid(holes: Iterable[Hole]) -> Optional[Coordinate]:
    pts = [h.coordinate for h in holes]
    if not pts:
        return None
    return Coordinate(
        sum(p.lat for p in pts) / len(pts),
        sum(p.lon for p in pts) / len(pts),
    )


class CourseSatelliteSync:
    def __init__(
        self,
        store: CacheStore,
        acquisition: AcquisitionService,
        crop_engine: CropEngine,
        orchestrator: TransferOrchestrator,
    ):
        self.store = store
        self.acquisition = acquisition
        self.crop_engine = crop_engine
        self.orchestrator = orchestrator

    def prepare_for_round(
        self,
        course_id: str,
        course_name: str,
        holes: Sequence[Hole],
        user_location: Optional[Coordinate] = None,
    ) -> SyncOutcome:
        self.store.set_course_name(course_id, course_name)
        cache = self.store.get(course_id)

        if holes and cache is not None and self._all_cropped(cache, holes):
            log.info("All %d holes already cached, transferring", len(holes))
            self.orchestrator.transfer_all(course_id)
            return SyncOutcome.TRANSFERRED_CACHED

        if holes:
            center = course_centroid(holes)
            log.info(
                "Course has %d holes but incomplete cache, downloading",
                len(holes),
                extra={"extra": {"course_id": course_id, "lat": center.lat, "lon": center.lon}},
            )
            if not self._download(center, course_id):
                return SyncOutcome.FAILED
            self.crop_and_transfer_all(course_id, holes)
            return SyncOutcome.DOWNLOADED

        if user_location is None:
            log.warning("Cannot download satellite: no user location yet; will download when a hole is added")
            return SyncOutcome.NO_LOCATION

        log.info(
            "Downloading satellite centered on user location (course has no holes yet)",
            extra={"extra": {"course_id": course_id, "lat": user_location.lat, "lon": user_location.lon}},
        )
        if not self._download(user_location, course_id):
            return SyncOutcome.FAILED
        return SyncOutcome.AWAITING_HOLES

    def handle_new_hole(
        self,
        course_id: str,
        hole: Hole,
        user_location: Optional[Coordinate] = None,
    ) -> SyncOutcome:
        log.info("New hole detected: #%d at (%f, %f)", hole.number, hole.latitude, hole.longitude)
        cache = self.store.get(course_id)

        if cache is None or cache.large_image is None:
            log.info("No large satellite image yet; downloading centered on hole #%d", hole.number)
            if not self._download(hole.coordinate, course_id):
                return SyncOutcome.FAILED
            return SyncOutcome.CROPPED if self._crop_and_transfer(course_id, hole) else SyncOutcome.FAILED

        if cache.image_for(hole.number) is not None:
            log.info("Hole %d already has satellite crop, skipping", hole.number)
            return SyncOutcome.SKIPPED

        ok = self._crop_and_transfer(course_id, hole, user_location)
        return SyncOutcome.CROPPED if ok else SyncOutcome.FAILED

    def crop_and_transfer_all(self, course_id: str, holes: Sequence[Hole]) -> int:
        """Crop and transfer every hole in order, continuing past failures."""
        transferred = 0
        for hole in holes:
            if self._crop_and_transfer(course_id, hole):
                transferred += 1
        log.info(
            "Finished cropping and transferring hole images",
            extra={"extra": {"course_id": course_id, "transferred": transferred, "holes": len(holes)}},
        )
        return transferred

    # -------- internals --------

    @staticmethod
    def _all_cropped(cache, holes: Sequence[Hole]) -> bool:
        cropped = {img.hole_number for img in cache.images}
        return all(h.number in cropped for h in holes)

    def _download(self, center: Coordinate, course_id: str) -> bool:
        try:
            self.acquisition.download_large_image(center, course_id).result()
        except SatelliteCacheError as e:
            log.error("Download failed: %s", e, extra={"extra": {"course_id": course_id}})
            return False
        return True

    def _crop_and_transfer(self, course_id: str, hole: Hole, user_location: Optional[Coordinate] = None) -> bool:
        try:
            self.crop_engine.crop_for_hole(course_id, hole, user_location)
        except SatelliteCacheError as e:
            log.error("Failed to crop hole %d: %s", hole.number, e, extra={"extra": {"course_id": course_id}})
            return False
        if self.orchestrator.transfer_one(course_id, hole.number):
            log.info("Transferred satellite for hole %d", hole.number)
            return True
        log.warning("Failed to transfer satellite for hole %d", hole.number)
        return False


def parse_holes(items: List[dict]) -> List[Hole]:
    return [Hole.from_dict(d) for d in items]
