import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


def atomic_write_json(path: Path, data: Any, indent: int = 2) -> Path:
    """Write JSON to a temp file in the same directory and replace the target."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=indent, ensure_ascii=False, default=str)
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise
    return path


def read_json(path: Path) -> Optional[Any]:
    """Read a JSON file, returning None when it is missing or corrupt."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable JSON file {path}: {e}")
        return None
