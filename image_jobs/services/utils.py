from __future__ import annotations

import math
import re
from pathlib import Path
from typing import Iterable


_filename_strip_re = re.compile(r"[^A-Za-z0-9._-]+")


def secure_filename(filename: str) -> str:
    """Return a filename safe for storing on disk."""
    name = Path(filename).name
    if not name:
        return "file"
    name = _filename_strip_re.sub("_", name)
    return name or "file"


def unique_filename(existing: Iterable[str], desired: str) -> str:
    base = Path(desired)
    stem = base.stem
    suffix = base.suffix
    candidate = desired
    counter = 1
    existing_set = set(existing)
    while candidate in existing_set:
        candidate = f"{stem}_{counter}{suffix}"
        counter += 1
    return candidate


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compression_ratio(original_size: int, compressed_size: int) -> int:
    """Whole-percent size reduction; negative when the output grew."""
    if original_size <= 0:
        return 0
    return round_half_up((1 - compressed_size / original_size) * 100)


def format_size(num_bytes: int) -> str:
    units = ["Bytes", "KB", "MB", "GB"]
    if num_bytes <= 0:
        return "0 Bytes"
    exponent = 0
    while num_bytes >= 1024 ** (exponent + 1) and exponent < len(units) - 1:
        exponent += 1
    value = round(num_bytes / 1024**exponent, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[exponent]}"
