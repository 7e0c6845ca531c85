"""JSON file helpers shared by the run state and run manifest writers."""

import json
import os
import tempfile
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def elapsed_seconds(started_at: Optional[str], finished_at: str) -> Optional[float]:
    if not started_at:
        return None
    return (datetime.fromisoformat(finished_at) - datetime.fromisoformat(started_at)).total_seconds()


def write_json_atomic(path: str, payload: Any, prefix: str):
    """Replace ``path`` with ``payload`` so a crash never leaves half a file.

    Raises OSError when the file cannot be written.
    """
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(prefix=prefix, suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
            json.dump(payload, file_obj, indent=2, sort_keys=True)
            file_obj.write("\n")
        os.replace(temp_path, path)
    finally:
        if os.path.exists(temp_path):
            with suppress(OSError):
                os.remove(temp_path)
