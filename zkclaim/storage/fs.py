"""
Small filesystem helpers shared by the VK cache and the receipt store.

- Atomic JSON writes via a temp file in the destination directory + os.replace,
  so a concurrent reader sees either the previous document or the new one.
- Concurrent writers of the same path resolve last-writer-wins.
"""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator


@contextmanager
def _temp_under(path: Path) -> Iterator[Path]:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("wb", delete=False, dir=path.parent, prefix=f".{path.name}.") as tf:
        tmp_path = Path(tf.name)
    try:
        yield tmp_path
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


def _finalize_write(tmp: Path, final_path: Path) -> None:
    final_path.parent.mkdir(parents=True, exist_ok=True)
    os.replace(tmp, final_path)
    os.chmod(final_path, 0o644)


def write_json_atomic(path: Path, data: Any) -> Path:
    """Serialize ``data`` as pretty JSON and move it into ``path`` atomically."""
    path = Path(path)
    with _temp_under(path) as tmp:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        _finalize_write(tmp, path)
    return path


def read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


__all__ = ["write_json_atomic", "read_json"]
