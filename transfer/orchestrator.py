from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Optional

from cache.store import CacheStore
from common.errors import ChannelError
from common.logging_setup import get_logger
from common.types import SatelliteImageMetadata
from common.utils import kb
from transfer.channel import ActivationState, MessagingChannel


log = get_logger(__name__)

# Key under which the JSON-encoded SatelliteImageMetadata travels with each file.
METADATA_KEY = "metadata"


class TransferOrchestrator:
    """
    Pushes cached hole crops to the companion device, one at a time.

    transfer_all is best-effort: a failed item is logged and the next one is
    attempted; the overall result only says whether the course was found.
    Concurrent calls for the same course should be serialized by the caller.
    Each handoff copies the crop to its own spool file, removed again once the
    channel has taken it.
    """

    def __init__(self, store: CacheStore, channel: MessagingChannel, spool_dir: Optional[str] = None):
        self.store = store
        self.channel = channel
        self.spool_dir = Path(spool_dir) if spool_dir else Path(tempfile.gettempdir()) / "satellite_transfer"

    def transfer_all(self, course_id: str) -> bool:
        cache = self.store.get(course_id)
        if cache is None:
            log.warning("No cached images found for course", extra={"extra": {"course_id": course_id}})
            return False

        log.info(
            "Starting transfer of %d images",
            len(cache.images),
            extra={"extra": {"course_id": course_id}},
        )
        sent = 0
        for meta in cache.images:  # stored order, not hole order
            data = self.store.get_image_data(course_id, meta.hole_number)
            if data is None:
                log.error(
                    "Failed to get image data for hole %d",
                    meta.hole_number,
                    extra={"extra": {"course_id": course_id}},
                )
                continue
            if self._transfer_single(meta, data):
                sent += 1
                log.info("Transferred hole %d: %dKB", meta.hole_number, kb(len(data)))
            else:
                log.error("Failed to transfer hole %d", meta.hole_number)

        log.info(
            "Transfer pass finished",
            extra={"extra": {"course_id": course_id, "sent": sent, "total": len(cache.images)}},
        )
        return True

    def transfer_one(self, course_id: str, hole_number: int) -> bool:
        data = self.store.get_image_data(course_id, hole_number)
        cache = self.store.get(course_id)
        meta = cache.image_for(hole_number) if cache else None
        if data is None or meta is None:
            log.warning("No image data for hole %d", hole_number, extra={"extra": {"course_id": course_id}})
            return False
        return self._transfer_single(meta, data)

    def _transfer_single(self, meta: SatelliteImageMetadata, data: bytes) -> bool:
        if self.channel.activation_state != ActivationState.ACTIVATED:
            log.error("Messaging channel not activated")
            return False

        spool = None
        try:
            payload = {METADATA_KEY: json.dumps(meta.to_dict())}
            spool = self._spool(meta, data)
            xfer = self.channel.transfer_file(spool, payload)
        except (OSError, ChannelError) as e:
            log.error(
                "Handoff to messaging channel failed: %s",
                e,
                extra={"extra": {"course_id": meta.course_id, "hole": meta.hole_number}},
            )
            return False
        finally:
            if spool is not None:
                spool.unlink(missing_ok=True)

        log.info(
            "Queued file transfer",
            extra={"extra": {
                "file": meta.file_name,
                "transfer_id": getattr(xfer, "transfer_id", None),
                "outstanding": len(self.channel.outstanding_file_transfers),
            }},
        )
        return True

    def _spool(self, meta: SatelliteImageMetadata, data: bytes) -> Path:
        """Write `data` to a fresh spool file; each handoff gets its own path."""
        self.spool_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="xfer_", suffix=f"_{meta.file_name}", dir=self.spool_dir)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except OSError:
            os.unlink(name)
            raise
        return Path(name)
