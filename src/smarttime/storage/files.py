"""Small file helpers shared by the storage repositories."""

from __future__ import annotations

import json
import os
import secrets
import string
import tempfile
import time
from pathlib import Path
from typing import Any

_BASE36 = string.digits + string.ascii_lowercase


def epoch_millis() -> int:
    return time.time_ns() // 1_000_000


def random_suffix(length: int = 6) -> str:
    """Lower-case base36 suffix used to disambiguate same-millisecond files."""
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def write_json(path: Path, data: Any) -> None:
    """Write *data* as indented JSON, replacing *path* atomically.

    The document is written to a temporary sibling first and renamed into
    place, so readers never observe a half-written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise
