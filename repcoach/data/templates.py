"""
JSON-file store for recorded exercise templates (one ThresholdData per
exercise id). Templates must round-trip exactly: the derived thresholds
depend on every timestamp and angle value.
"""

from __future__ import annotations
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from repcoach.counter.angles import ThresholdData

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = Path(os.getenv("REPCOACH_TEMPLATES", "./templates.json"))


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class TemplateStore:
    def __init__(self, path: Path = DEFAULT_STORE_PATH):
        self.path = Path(path)
        self.templates: Dict[str, dict] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text())
        except json.JSONDecodeError:
            logger.warning("template store %s is corrupt; starting empty", self.path)
            return
        self.templates = dict(raw.get("templates", {}))

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"templates": self.templates}, indent=2))

    # ---- API ----

    def put(self, exercise_id: str, template: ThresholdData) -> None:
        if not template.frames:
            raise ValueError("Refusing to store an empty template.")
        self.templates[exercise_id] = {
            "recorded_at": _timestamp(),
            "data": template.to_dict(),
        }
        self._save()

    def get(self, exercise_id: str) -> Optional[ThresholdData]:
        entry = self.templates.get(exercise_id)
        if not entry:
            return None
        return ThresholdData.from_dict(entry["data"])

    def delete(self, exercise_id: str) -> bool:
        if self.templates.pop(exercise_id, None) is None:
            return False
        self._save()
        return True

    def exercise_ids(self) -> List[str]:
        return list(self.templates.keys())
