"""
Calibration persistence.

A store is an explicit object handed to whoever needs it, so several equipment
profiles (or test harnesses) can coexist, each with its own file.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from .calibration import CalibrationData

log = logging.getLogger(__name__)


class CalibrationStore:
    """Loads and saves one equipment profile's CalibrationData as JSON."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[CalibrationData]:
        """Stored calibration, or None when nothing has been saved yet."""
        if not self.path.exists():
            return None
        data = json.loads(self.path.read_text(encoding="utf-8"))
        return CalibrationData.from_dict(data)

    def load_or_default(self) -> CalibrationData:
        return self.load() or CalibrationData.default()

    def save(self, data: CalibrationData) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        log.info(f"Calibration saved to {self.path} ({data.quality.value})")

    def reset(self) -> None:
        if self.path.exists():
            self.path.unlink()
            log.info(f"Calibration removed: {self.path}")
