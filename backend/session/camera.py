"""
Latest-frame camera holder.

The surrounding application pushes JPEG frames (e.g. via the control
server); the session pulls the most recent one when it attaches camera
context to a user turn.
"""

from __future__ import annotations

import threading


class LatestFrameCamera:
    """Thread-safe single-slot frame store implementing capture_frame()."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame: bytes | None = None

    def set_frame(self, jpeg_bytes: bytes | None) -> None:
        with self._lock:
            self._frame = jpeg_bytes or None

    def capture_frame(self) -> bytes | None:
        with self._lock:
            return self._frame
