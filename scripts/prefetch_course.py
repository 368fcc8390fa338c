#!/usr/bin/env python3
"""
Prefetch a course's satellite imagery and push the hole crops to the companion.

Downloads one 2 km x 2 km image around the course (hole centroid, or --center),
crops one window per hole and, unless --no-transfer is given, queues every crop
on the companion relay.

Holes file: JSON list of {"number", "latitude", "longitude"}.

Examples:
  python scripts/prefetch_course.py --course-id 3f1c... --holes data/course_holes.json --name "Pine Valley"
  python scripts/prefetch_course.py --course-id 3f1c... --holes holes.json --center 40.0,-75.0 --no-transfer
"""
from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path

# Add the project root to the path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cache.store import CacheStore
from common.config import load_config
from common.errors import SatelliteCacheError
from common.logging_setup import get_logger, setup_logging, start_round_log, stop_round_log
from common.types import Coordinate
from imagery.acquisition import AcquisitionService
from imagery.crop import CropEngine
from imagery.provider import WorldImageryProvider
from sync.pipeline import CourseSatelliteSync, course_centroid, parse_holes
from transfer.channel import HttpRelayChannel
from transfer.orchestrator import TransferOrchestrator


log = get_logger("sync.prefetch")


def parse_center(s: str) -> Coordinate:
    parts = s.replace(" ", "").split(",")
    if len(parts) != 2:
        raise argparse.ArgumentTypeError("Center must be LAT,LON")
    return Coordinate(float(parts[0]), float(parts[1]))


def main() -> None:
    ap = argparse.ArgumentParser(description="Prefetch course satellite imagery")
    ap.add_argument("--course-id", required=True, help="Course identifier (cache directory name)")
    ap.add_argument("--holes", required=True, help="JSON file with the course's holes")
    ap.add_argument("--name", default="", help="Course display name")
    ap.add_argument("--center", type=parse_center, default=None, help="Override image center LAT,LON")
    ap.add_argument("--config", default=None, help="YAML config (default config/params.yaml)")
    ap.add_argument("--no-transfer", action="store_true", help="Download and crop only")
    args = ap.parse_args()

    P = load_config(args.config)
    setup_logging(P["logging"]["level"])

    holes = parse_holes(json.loads(Path(args.holes).read_text()))
    chan_cfg = P["channel"]

    store = CacheStore(P["cache"]["root"])
    acquisition = AcquisitionService(
        WorldImageryProvider(base_url=P["provider"]["base_url"], timeout=float(P["provider"]["timeout_s"])),
        store,
        radius_m=float(P["acquisition"]["radius_m"]),
        pixel_size=int(P["acquisition"]["pixel_size"]),
        jpeg_quality=int(P["acquisition"]["jpeg_quality"]),
    )
    crop_engine = CropEngine(
        store,
        crop_size=(int(P["crop"]["width"]), int(P["crop"]["height"])),
        jpeg_quality=int(P["crop"]["jpeg_quality"]),
    )
    channel = HttpRelayChannel(
        chan_cfg["base_url"],
        timeout=float(chan_cfg["timeout_s"]),
        max_retries=int(chan_cfg["max_retries"]),
        retry_backoff_s=float(chan_cfg["retry_backoff_s"]),
    )
    orchestrator = TransferOrchestrator(store, channel)
    sync = CourseSatelliteSync(store, acquisition, crop_engine, orchestrator)

    start_round_log(P["logging"]["round_log_dir"], f"prefetch-{int(time.time())}", args.name or args.course_id)
    t0 = time.perf_counter()
    try:
        if args.no_transfer or args.center is not None:
            center = args.center or course_centroid(holes)
            if center is None:
                raise SystemExit("No holes and no --center given; nothing to download.")
            store.set_course_name(args.course_id, args.name)
            try:
                acquisition.download_large_image(center, args.course_id).result()
            except SatelliteCacheError as e:
                raise SystemExit(f"Download failed: {e}")
            cropped = 0
            for hole in holes:
                try:
                    crop_engine.crop_for_hole(args.course_id, hole)
                    cropped += 1
                except SatelliteCacheError as e:
                    print(f"  Hole {hole.number}: crop failed ({type(e).__name__}: {e})")
            if not args.no_transfer:
                orchestrator.transfer_all(args.course_id)
            print(f"  Cropped {cropped}/{len(holes)} holes")
        else:
            outcome = sync.prepare_for_round(args.course_id, args.name, holes)
            print(f"  Outcome: {outcome.value}")
        # Let the relay drain before exiting
        while channel.outstanding_file_transfers:
            time.sleep(0.2)
        log.info("Prefetch finished", extra={"extra": {"course_id": args.course_id}})
    finally:
        acquisition.shutdown()
        channel.close(timeout=5.0)
        stop_round_log()

    rec = store.get(args.course_id)
    print(f"\n  Summary for {args.course_id}:")
    print(f"    Large image: {'yes' if rec and rec.large_image else 'no'}")
    print(f"    Hole crops: {len(rec.images) if rec else 0}")
    print(f"    Elapsed: {time.perf_counter() - t0:.1f}s")


if __name__ == "__main__":
    main()
