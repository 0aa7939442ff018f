"""Atomic JSON persistence shared by the change cache and the response cache."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def dump_json(data: Any) -> str:
    """Serialize with stable key order so equal data gives equal bytes."""
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON to ``path`` via a temp file and rename.

    Readers see either the previous file or the complete new one.

    Raises:
        OSError: If the directory cannot be created or the file written
        TypeError: If ``data`` is not JSON serializable
    """
    payload = dump_json(data)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def read_json(path: Path) -> Any:
    """Read a JSON document; errors propagate to the caller."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
