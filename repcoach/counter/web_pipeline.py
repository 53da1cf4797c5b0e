# repcoach/counter/web_pipeline.py
from __future__ import annotations
import logging
from typing import Any, Callable, Mapping, Optional

from repcoach.counter.angles import AngleFrame, JointAngles, MissingJointError
from repcoach.counter.detector import PhaseDetector

logger = logging.getLogger(__name__)


class WebAnglePipeline:
    """
    A minimal 'pipeline' that consumes pre-computed joint angles from the browser.
    No camera, no threads. Just call push_frame(payload).
    """
    def __init__(
        self,
        detector: PhaseDetector,
        on_missing: Optional[Callable[[str], None]] = None,
    ):
        self.detector = detector
        self.on_missing = on_missing
        self._running = True

    def stop(self):
        self._running = False

    def push_frame(self, payload: Mapping[str, Any]) -> bool:
        """
        Feed one {"ts": ms, "angles": {...}, "vis": bool} sample ("timestamp"
        is accepted in place of "ts"). Returns False when the frame was skipped.
        """
        if not self._running:
            return False
        # client marks frames where landmarks weren't confidently visible
        if payload.get("vis") is False:
            self._missing("landmarks not visible")
            return False
        try:
            angles = JointAngles.from_dict(payload.get("angles") or {})
            ts = int(payload["ts"] if "ts" in payload else payload["timestamp"])
        except (MissingJointError, KeyError, TypeError, ValueError) as e:
            self._missing(str(e))
            return False
        self.detector.process_frame(AngleFrame(timestamp=ts, angles=angles))
        return True

    def _missing(self, reason: str):
        logger.debug("frame skipped: %s", reason)
        if self.on_missing:
            self.on_missing(reason)
