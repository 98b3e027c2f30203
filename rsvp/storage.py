"""JSON file persistence shared by the tenant registry, guest directory and follow-up queue."""

from __future__ import annotations

import json
import os
import tempfile
from typing import Any

from rsvp.runtime import get_logger

log = get_logger("storage")


def load_json(path: str, default: Any) -> Any:
    """Read ``path``; a missing, empty or corrupt file yields ``default``."""
    if not path or not os.path.exists(path):
        return default
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
        if not raw.strip():
            return default
        data = json.loads(raw)
    except Exception as e:
        log.error(f"❌ Could not load {path}: {e}")
        return default
    if not isinstance(data, type(default)):
        log.warning(f"⚠️ Unexpected JSON shape in {path}; using default")
        return default
    return data


def save_json(path: str, data: Any) -> bool:
    """Write ``data`` atomically (temp file + rename). Returns False on failure."""
    try:
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
        return True
    except Exception as e:
        log.warning(f"Could not persist {path}: {e}")
        return False
