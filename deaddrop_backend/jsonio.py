from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

TEMP_PREFIX = "."
TEMP_SUFFIX = ".tmp"


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def dump_json(value: Any) -> str:
    return json.dumps(value, indent=2)


def _write_temp(directory: Path, value: Any) -> str:
    """Write value to a fresh temp file in directory and return its path.

    The temp file is removed again if the write fails.
    """
    text = dump_json(value)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=directory,
        prefix=TEMP_PREFIX,
        suffix=TEMP_SUFFIX,
        delete=False,
    ) as f:
        try:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        except BaseException:
            f.close()
            os.unlink(f.name)
            raise
    return f.name


def write_json_atomic(path: Path, value: Any) -> None:
    """Write value to a unique sibling temp file, then rename it over path."""
    tmp = _write_temp(path.parent, value)
    try:
        os.replace(tmp, path)
    except BaseException:
        os.unlink(tmp)
        raise


def create_json_exclusive(path: Path, value: Any) -> None:
    """Create path holding value; FileExistsError if the name is taken.

    The content is fully written before the name appears, so readers never
    see a partial file.
    """
    tmp = _write_temp(path.parent, value)
    try:
        os.link(tmp, path)
    finally:
        os.unlink(tmp)
