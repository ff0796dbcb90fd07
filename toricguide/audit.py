import json, time, uuid
from pathlib import Path

from .storage import AUDIT_DIR


def write_audit(name: str, payload: dict, directory: Path = AUDIT_DIR) -> Path:
    ts = time.strftime("%Y%m%d-%H%M%S")
    directory.mkdir(parents=True, exist_ok=True)
    p = directory / f"{ts}-{uuid.uuid4().hex[:8]}-{name}.json"
    p.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
    return p
