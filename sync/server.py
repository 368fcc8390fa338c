from __future__ import annotations

import json
from typing import Any, Dict, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from cache.store import CacheStore
from common.config import load_config
from common.errors import EmptyResultError, NotFoundError, ProviderError, SatelliteCacheError
from common.logging_setup import get_logger, setup_logging
from common.types import Coordinate, Hole
from imagery.acquisition import AcquisitionService
from imagery.crop import CropEngine
from imagery.provider import ImageryProvider, WorldImageryProvider
from transfer.channel import METADATA_HEADER, HttpRelayChannel, MessagingChannel
from transfer.orchestrator import TransferOrchestrator
from transfer.receiver import CompanionReceiver


log = get_logger(__name__)


def _status_for(e: SatelliteCacheError) -> int:
    if isinstance(e, NotFoundError):
        return 404
    if isinstance(e, (ProviderError, EmptyResultError)):
        return 502
    return 500


def _coordinate(lat: float, lon: float) -> Coordinate:
    try:
        return Coordinate(lat, lon)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def create_app(
    P: Optional[Dict[str, Any]] = None,
    *,
    provider: Optional[ImageryProvider] = None,
    channel: Optional[MessagingChannel] = None,
    companion_store: Optional[CacheStore] = None,
) -> FastAPI:
    """Build the service graph once and expose it over HTTP."""
    P = P or load_config()
    setup_logging(P.get("logging", {}).get("level"))

    acq_cfg = P.get("acquisition", {})
    crop_cfg = P.get("crop", {})
    prov_cfg = P.get("provider", {})
    chan_cfg = P.get("channel", {})

    # Instances
    store = CacheStore(P["cache"]["root"])
    provider = provider or WorldImageryProvider(
        base_url=prov_cfg.get("base_url"), timeout=float(prov_cfg.get("timeout_s", 30.0))
    )
    channel = channel or HttpRelayChannel(
        chan_cfg["base_url"],
        timeout=float(chan_cfg.get("timeout_s", 10.0)),
        max_retries=int(chan_cfg.get("max_retries", 3)),
        retry_backoff_s=float(chan_cfg.get("retry_backoff_s", 2.0)),
    )
    acquisition = AcquisitionService(
        provider,
        store,
        radius_m=float(acq_cfg.get("radius_m", 1000.0)),
        pixel_size=int(acq_cfg.get("pixel_size", 2000)),
        jpeg_quality=int(acq_cfg.get("jpeg_quality", 85)),
        workers=int(acq_cfg.get("workers", 2)),
    )
    crop_engine = CropEngine(
        store,
        crop_size=(int(crop_cfg.get("width", 2000)), int(crop_cfg.get("height", 2000))),
        jpeg_quality=int(crop_cfg.get("jpeg_quality", 85)),
    )
    orchestrator = TransferOrchestrator(store, channel)
    receiver = CompanionReceiver(companion_store or CacheStore(f"{P['cache']['root']}_companion"))

    app = FastAPI(title="Course Satellite Cache API", version="1.0.0")
    app.state.store = store
    app.state.acquisition = acquisition
    app.state.crop_engine = crop_engine
    app.state.orchestrator = orchestrator
    app.state.receiver = receiver

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SatelliteCacheError)
    async def _cache_error(_: Request, e: SatelliteCacheError):
        return JSONResponse({"error": type(e).__name__, "detail": str(e)}, status_code=_status_for(e))

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "cache": store.stats(),
            "channel": {
                "activation_state": channel.activation_state.value,
                "reachable": channel.is_reachable,
                "outstanding": len(channel.outstanding_file_transfers),
            },
        }

    @app.get("/courses/{course_id}")
    def get_course(course_id: str):
        rec = store.get(course_id)
        if rec is None:
            raise HTTPException(status_code=404, detail="course_not_cached")
        return rec.to_dict()

    @app.delete("/courses/{course_id}")
    def delete_course(course_id: str):
        store.delete(course_id)
        return {"deleted": course_id}

    @app.post("/courses/{course_id}/download", status_code=202)
    def download(course_id: str, lat: float = Query(...), lon: float = Query(...)):
        # Outcome is logged by the service; progress is polled via /progress.
        acquisition.download_large_image(_coordinate(lat, lon), course_id)
        return {"course_id": course_id, "status": "started"}

    @app.get("/courses/{course_id}/progress")
    def progress(course_id: str):
        return acquisition.progress(course_id)

    @app.post("/courses/{course_id}/holes/{hole_number}/crop")
    def crop(
        course_id: str,
        hole_number: int,
        lat: float = Query(...),
        lon: float = Query(...),
        ref_lat: Optional[float] = Query(None),
        ref_lon: Optional[float] = Query(None),
    ):
        _coordinate(lat, lon)
        ref = _coordinate(ref_lat, ref_lon) if ref_lat is not None and ref_lon is not None else None
        meta = crop_engine.crop_for_hole(course_id, Hole(number=hole_number, latitude=lat, longitude=lon), ref)
        return meta.to_dict()

    @app.get("/courses/{course_id}/holes/{hole_number}/image")
    def hole_image(course_id: str, hole_number: int):
        rec = store.get(course_id)
        meta = rec.image_for(hole_number) if rec else None
        data = store.get_image_data(course_id, hole_number)
        if meta is None or data is None:
            raise HTTPException(status_code=404, detail="hole_image_not_found")
        headers = {METADATA_HEADER: json.dumps(meta.to_dict()), "Cache-Control": "no-store"}
        return Response(content=data, media_type="image/jpeg", headers=headers)

    @app.post("/courses/{course_id}/transfer", status_code=202)
    def transfer_course(course_id: str, background: BackgroundTasks):
        if store.get(course_id) is None:
            raise HTTPException(status_code=404, detail="course_not_cached")
        background.add_task(orchestrator.transfer_all, course_id)
        return {"course_id": course_id, "status": "queued"}

    @app.post("/courses/{course_id}/holes/{hole_number}/transfer")
    def transfer_hole(course_id: str, hole_number: int):
        ok = orchestrator.transfer_one(course_id, hole_number)
        if not ok:
            return JSONResponse({"course_id": course_id, "hole": hole_number, "queued": False}, status_code=409)
        return {"course_id": course_id, "hole": hole_number, "queued": True}

    # -------- companion side --------

    @app.post("/companion/files")
    async def companion_files(request: Request):
        raw = request.headers.get(METADATA_HEADER)
        try:
            metadata = json.loads(raw) if raw else {}
        except ValueError:
            metadata = {}
        if not isinstance(metadata, dict):
            metadata = {}
        body = await request.body()
        meta = receiver.handle_file(body, metadata)
        if meta is None:
            raise HTTPException(status_code=400, detail="bad_metadata")
        return {"stored": meta.file_name}

    return app


P = load_config()
app = create_app(P)


# -------- local dev entrypoint --------
if __name__ == "__main__":
    uvicorn.run(app, host=P["server"]["host"], port=int(P["server"]["port"]))
