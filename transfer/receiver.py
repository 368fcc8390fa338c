from __future__ import annotations

import json
from typing import Any, List, Mapping, Optional, Union

import numpy as np

from cache.store import CacheStore, valid_path_name
from common.errors import DecodeError, NotFoundError
from common.logging_setup import get_logger
from common.types import SatelliteImageMetadata, satellite_file_name
from common.utils import kb
from imagery.codec import decode_image
from transfer.orchestrator import METADATA_KEY


log = get_logger(__name__)


class CompanionReceiver:
    """
    Companion-side cache fed by files arriving over the messaging channel.

    Uses the same on-disk layout as the phone side, minus the large image.
    """

    def __init__(self, store: CacheStore):
        self.store = store

    def handle_file(self, data: bytes, metadata: Mapping[str, Any]) -> Optional[SatelliteImageMetadata]:
        """
        Store a received crop. Returns the decoded metadata, or None if the
        metadata could not be decoded or names a path outside the course
        directory (nothing is written in either case).
        """
        raw: Union[str, bytes, None] = metadata.get(METADATA_KEY) if metadata else None
        try:
            if raw is None:
                raise ValueError("missing metadata key")
            meta = SatelliteImageMetadata.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            log.error("Failed to decode satellite metadata: %s", e, extra={"extra": {"raw": str(raw)[:200]}})
            return None

        course_id = str(meta.course_id)
        if not valid_path_name(course_id) or meta.file_name != satellite_file_name(course_id, meta.hole_number):
            log.error(
                "Rejected satellite image with unsafe file name",
                extra={"extra": {"course_id": course_id, "file_name": str(meta.file_name)[:200]}},
            )
            return None

        try:
            self.store.save_image(meta, data)
        except NotFoundError as e:
            log.error("Failed to store received image: %s", e)
            return None
        log.info(
            "Saved received image for hole %d: %dKB",
            meta.hole_number,
            kb(len(data)),
            extra={"extra": {"course_id": meta.course_id}},
        )
        return meta

    def has_cached_images(self, course_id: str) -> bool:
        return self.store.get(course_id) is not None

    def available_courses(self) -> List[str]:
        return [r.course_id for r in self.store.all()]

    def get_metadata(self, course_id: str, hole_number: int) -> Optional[SatelliteImageMetadata]:
        cache = self.store.get(course_id)
        return cache.image_for(hole_number) if cache else None

    def get_image(self, course_id: str, hole_number: int) -> Optional[np.ndarray]:
        data = self.store.get_image_data(course_id, hole_number)
        if data is None:
            return None
        try:
            return decode_image(data)
        except DecodeError:
            log.warning("Stored image for hole %d is unreadable", hole_number)
            return None

    def delete_course(self, course_id: str) -> None:
        self.store.delete(course_id)
