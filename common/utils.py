from __future__ import annotations

from pathlib import Path
from typing import Union
import os
import tempfile


def clamp(v: float, lo: float, hi: float) -> float:
    return float(min(hi, max(lo, v)))


def kb(n_bytes: int) -> int:
    return int(n_bytes) // 1024


def atomic_write_bytes(path: Union[str, Path], data: bytes) -> None:
    """
    Write `data` to `path` via a sibling temp file and os.replace().

    Readers see either the old file or the new one, never a torn write.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
