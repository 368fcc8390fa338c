from __future__ import annotations

import logging
import os
import sys
import json
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from common.utils import atomic_write_bytes


# Loggers that feed the per-round satellite log.
SATELLITE_LOGGERS = ("imagery", "cache", "transfer", "sync")

ROUND_LOG_METADATA = "satellite_logs_metadata.json"

_BANNER = "=" * 55


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON log formatter:
      { "t": 169, "lvl": "INFO", "name": "mod", "msg": "text", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        # Include extra dict if present
        if hasattr(record, "extra") and isinstance(record.extra, dict):  # type: ignore[attr-defined]
            payload["extra"] = record.extra  # type: ignore[attr-defined]
        # Include exception info if exists
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure root logger once with JSON formatting.
    Level precedence:
      - explicit `level` arg
      - env LOG_LEVEL (e.g., DEBUG/INFO/WARN/ERROR)
      - default INFO
    """
    root = logging.getLogger()
    if getattr(root, "_satcache_configured", False):  # idempotent
        return

    lvl_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    lvl = getattr(logging, lvl_name, None)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(lvl)
    root._satcache_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Get a module logger; ensures root is configured."""
    setup_logging()
    return logging.getLogger(name)


# -------------------------
# Per-round satellite log
# -------------------------
class RoundLogHandler(logging.FileHandler):
    """Plain-text `[HH:MM:SS] message` lines appended to one round's log file."""

    def __init__(self, path: Path) -> None:
        super().__init__(str(path), mode="a", encoding="utf-8")
        self.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", datefmt="%H:%M:%S"))


_active_round_handler: Optional[RoundLogHandler] = None


def _load_round_index(log_dir: Path) -> List[Dict]:
    p = log_dir / ROUND_LOG_METADATA
    if not p.exists():
        return []
    try:
        return list(json.loads(p.read_text()))
    except (OSError, ValueError):
        logging.getLogger(__name__).warning("Unreadable round log index, starting fresh: %s", p)
        return []


def _save_round_index(log_dir: Path, entries: List[Dict]) -> None:
    atomic_write_bytes(log_dir / ROUND_LOG_METADATA, json.dumps(entries, indent=2).encode("utf-8"))


def start_round_log(log_dir: str | Path, round_id: str, course_name: str) -> Path:
    """
    Start a new satellite log file for a round and route the project loggers to it.

    Any previously active round log is detached first.
    """
    global _active_round_handler
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    file_name = f"satellite_log_{int(time.time() * 1000)}.txt"
    path = log_dir / file_name
    header = (
        f"{_BANNER}\n"
        "SATELLITE IMAGERY LOG\n"
        f"{_BANNER}\n"
        f"Round Started: {datetime.now(timezone.utc).isoformat(timespec='seconds')}\n"
        f"Course: {course_name}\n"
        f"Round ID: {round_id}\n"
        f"{_BANNER}\n\n"
    )
    path.write_text(header, encoding="utf-8")

    stop_round_log()
    handler = RoundLogHandler(path)
    for name in SATELLITE_LOGGERS:
        logging.getLogger(name).addHandler(handler)
    _active_round_handler = handler

    entries = _load_round_index(log_dir)
    entries.append(
        {
            "id": str(uuid.uuid4()),
            "date": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "roundId": str(round_id),
            "courseName": course_name,
            "fileName": file_name,
        }
    )
    _save_round_index(log_dir, entries)

    logging.getLogger("sync").info("Satellite log started for round on %s", course_name)
    return path


def stop_round_log() -> None:
    global _active_round_handler
    handler = _active_round_handler
    if handler is None:
        return
    for name in SATELLITE_LOGGERS:
        logging.getLogger(name).removeHandler(handler)
    handler.close()
    _active_round_handler = None


def list_round_logs(log_dir: str | Path) -> List[Dict]:
    return _load_round_index(Path(log_dir))


def delete_round_logs(log_dir: str | Path, ids: Iterable[str]) -> int:
    """Delete round log files by record id. Returns how many records were removed."""
    log_dir = Path(log_dir)
    doomed = set(ids)
    keep: List[Dict] = []
    removed = 0
    for entry in _load_round_index(log_dir):
        if entry.get("id") in doomed:
            try:
                (log_dir / entry["fileName"]).unlink()
            except FileNotFoundError:
                pass
            removed += 1
        else:
            keep.append(entry)
    if removed:
        _save_round_index(log_dir, keep)
    return removed
