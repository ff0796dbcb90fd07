from pathlib import Path

from .config import settings

DATA_DIR = Path(settings.data_dir)
DATA_DIR.mkdir(parents=True, exist_ok=True)

CALIBRATION_DIR = DATA_DIR / "calibration"
CALIBRATION_DIR.mkdir(exist_ok=True)

REFERENCES_DIR = DATA_DIR / "references"
REFERENCES_DIR.mkdir(exist_ok=True)

AUDIT_DIR = DATA_DIR / "audit"
AUDIT_DIR.mkdir(exist_ok=True)

CALIBRATION_FILE = CALIBRATION_DIR / "calibration.json"


def reference_path(session_id: str, base: Path = REFERENCES_DIR) -> Path:
    """JSON file holding the reference landmark set of one tracking session."""
    return base / f"{session_id}.json"
