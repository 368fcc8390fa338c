from __future__ import annotations

"""
Large-image acquisition for a course.

download_large_image() returns a Future that resolves exactly once with the
stored LargeSatelliteImageMetadata or with a typed SatelliteCacheError.

Threads:
  - provider work runs on a worker pool (the provider's scheduling context)
  - download state (in progress / progress 0..1) is only ever written on the
    UiDispatcher's single thread, so readers never see a half-applied update
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import numpy as np

from cache.store import CacheStore
from common.errors import CacheIOError, EmptyResultError, ProviderError, SatelliteCacheError
from common.logging_setup import get_logger
from common.types import (
    JPEG_QUALITY,
    LARGE_IMAGE_PIXELS,
    LARGE_IMAGE_RADIUS_M,
    Coordinate,
    LargeSatelliteImageMetadata,
)
from common.utils import kb
from imagery.codec import encode_jpeg
from imagery.provider import ImageryProvider, SnapshotRequest


log = get_logger(__name__)


class UiDispatcher:
    """Single-threaded sink for UI-visible state mutations (FIFO)."""

    def __init__(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ui-dispatch")

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        return self._executor.submit(fn, *args, **kwargs)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every update queued so far has been applied."""
        self._executor.submit(lambda: None).result(timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


@dataclass
class DownloadState:
    """Per-course download flags. Mutated on the UiDispatcher thread only."""
    is_downloading: Dict[str, bool] = field(default_factory=dict)
    download_progress: Dict[str, float] = field(default_factory=dict)

    def snapshot(self, course_id: str) -> Dict:
        return {
            "course_id": course_id,
            "is_downloading": self.is_downloading.get(course_id, False),
            "progress": self.download_progress.get(course_id),
        }


class AcquisitionService:
    def __init__(
        self,
        provider: ImageryProvider,
        store: CacheStore,
        *,
        dispatcher: Optional[UiDispatcher] = None,
        radius_m: float = LARGE_IMAGE_RADIUS_M,
        pixel_size: int = LARGE_IMAGE_PIXELS,
        jpeg_quality: int = JPEG_QUALITY,
        workers: int = 2,
    ):
        self.provider = provider
        self.store = store
        self.dispatcher = dispatcher or UiDispatcher()
        self.radius_m = float(radius_m)
        self.pixel_size = int(pixel_size)
        self.jpeg_quality = int(jpeg_quality)
        self.state = DownloadState()
        self._workers = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="satellite-acquire")

    # -------- public API --------

    def download_large_image(self, center: Coordinate, course_id: str) -> Future:
        """
        Acquire, encode and persist the course's large image.

        The returned future yields LargeSatelliteImageMetadata, or raises
        ProviderError / EmptyResultError / EncodeError / CacheIOError.
        """
        log.info(
            "Starting large image download",
            extra={"extra": {
                "course_id": course_id,
                "lat": center.lat,
                "lon": center.lon,
                "pixels": self.pixel_size,
                "radius_m": self.radius_m,
            }},
        )
        self.dispatcher.submit(self._mark_started, course_id)
        return self._workers.submit(self._acquire, center, course_id)

    def progress(self, course_id: str) -> Dict:
        """Read download state on the dispatcher thread."""
        return self.dispatcher.submit(self.state.snapshot, course_id).result()

    def shutdown(self) -> None:
        self._workers.shutdown(wait=True)
        self.dispatcher.shutdown()

    # -------- internals --------

    def _acquire(self, center: Coordinate, course_id: str) -> LargeSatelliteImageMetadata:
        metadata = LargeSatelliteImageMetadata(
            center=center,
            radius_m=self.radius_m,
            pixel_width=self.pixel_size,
            pixel_height=self.pixel_size,
        )
        request = SnapshotRequest(
            center=center,
            span_m=self.radius_m * 2.0,
            width=self.pixel_size,
            height=self.pixel_size,
        )
        ok = False
        try:
            try:
                snap = self.provider.snapshot(request)
            except SatelliteCacheError:
                raise
            except Exception as e:
                raise ProviderError(f"Imagery provider failed: {e}") from e
            if snap is None or not isinstance(snap.image, np.ndarray):
                raise EmptyResultError("No snapshot returned")
            img = snap.image
            if img.size and img.shape[:2] != (self.pixel_size, self.pixel_size):
                raise ProviderError(
                    f"Provider returned {img.shape[1]}x{img.shape[0]} px, expected {self.pixel_size}x{self.pixel_size}"
                )

            jpeg = encode_jpeg(img, self.jpeg_quality)
            try:
                self.store.write_large_image(course_id, jpeg)
                self.store.upsert(course_id, large_image=metadata)
            except CacheIOError:
                raise
            except OSError as e:
                raise CacheIOError(f"Failed to store large image: {e}") from e

            log.info(
                "Large image cached",
                extra={"extra": {"course_id": course_id, "kb": kb(len(jpeg)), "mpp": metadata.meters_per_pixel}},
            )
            ok = True
            return metadata
        except SatelliteCacheError as e:
            log.error(
                "Large image download failed: %s",
                e,
                extra={"extra": {"course_id": course_id, "error": type(e).__name__}},
            )
            raise
        except Exception:
            log.exception("Large image download failed unexpectedly", extra={"extra": {"course_id": course_id}})
            raise
        finally:
            # the flag must clear whatever was raised
            self.dispatcher.submit(self._mark_finished, course_id, ok).result()

    def _mark_started(self, course_id: str) -> None:
        self.state.is_downloading[course_id] = True
        self.state.download_progress[course_id] = 0.0

    def _mark_finished(self, course_id: str, ok: bool) -> None:
        self.state.is_downloading[course_id] = False
        if ok:
            self.state.download_progress[course_id] = 1.0
