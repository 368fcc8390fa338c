from __future__ import annotations

import cv2
import numpy as np

from common.errors import DecodeError, EncodeError


def decode_image(data: bytes) -> np.ndarray:
    """Decode JPEG/PNG bytes into a BGR uint8 array."""
    if not data:
        raise DecodeError("No image bytes to decode")
    arr = np.frombuffer(data, dtype=np.uint8)
    try:
        bgr = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    except cv2.error as e:
        raise DecodeError(f"Failed to decode image: {e}") from e
    if bgr is None:
        raise DecodeError("Failed to decode image bytes")
    return bgr


def encode_jpeg(img: np.ndarray, quality: int = 85) -> bytes:
    """Lossy JPEG encoding of a BGR (or gray) uint8 image."""
    if img is None or img.size == 0:
        raise EncodeError("Cannot encode an empty image")
    try:
        ok, buf = cv2.imencode(".jpg", img, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    except cv2.error as e:
        raise EncodeError(f"Failed to convert to JPEG: {e}") from e
    if not ok:
        raise EncodeError("Failed to convert to JPEG")
    return buf.tobytes()
