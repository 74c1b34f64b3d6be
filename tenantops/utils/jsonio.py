from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .fs import atomic_write_text


def read_json(path: Path) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def write_json(path: Path, data: Any) -> None:
    """Pretty-printed, key-order-preserving JSON with a trailing newline."""
    atomic_write_text(Path(path), json.dumps(data, indent=2, ensure_ascii=False) + "\n")
