from __future__ import annotations
import base64
import binascii
from typing import Optional

import cv2
import numpy as np


def letterbox(frame_bgr: np.ndarray, size: int = 512) -> np.ndarray:
    """Fit the frame inside a black size x size square, keeping aspect."""
    h, w = frame_bgr.shape[:2]
    if h == 0 or w == 0:
        raise ValueError("Frame has no dimensions")
    scale = size / float(max(h, w))
    new_w, new_h = max(1, int(round(w * scale))), max(1, int(round(h * scale)))
    resized = cv2.resize(frame_bgr, (new_w, new_h), interpolation=cv2.INTER_AREA)
    canvas = np.zeros((size, size, 3), dtype=np.uint8)
    x0, y0 = (size - new_w) // 2, (size - new_h) // 2
    canvas[y0:y0 + new_h, x0:x0 + new_w] = resized
    return canvas


def encode_frame(frame_bgr: Optional[np.ndarray], size: int = 512, quality: float = 0.7) -> Optional[str]:
    """Encode a camera frame as a JPEG data URL for the vision providers."""
    if frame_bgr is None or frame_bgr.size == 0:
        return None
    square = letterbox(frame_bgr, size)
    ok, buf = cv2.imencode(".jpg", square, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality * 100)])
    if not ok:
        return None
    return "data:image/jpeg;base64," + base64.b64encode(buf.tobytes()).decode("ascii")


def decode_data_url(data_url: str) -> Optional[np.ndarray]:
    """Inverse of encode_frame for frames pushed by the browser. None if unreadable."""
    if not data_url or "," not in data_url:
        return None
    try:
        raw = base64.b64decode(data_url.split(",", 1)[1])
    except binascii.Error:
        return None
    # "data:," is what a 0x0 canvas gives before the video is ready
    if not raw:
        return None
    arr = np.frombuffer(raw, dtype=np.uint8)
    try:
        return cv2.imdecode(arr, cv2.IMREAD_COLOR)
    except cv2.error:
        return None
