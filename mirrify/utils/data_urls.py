"""Helpers for base64 data URLs and human-readable sizes."""

import base64
import binascii
import math
import re

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(;[\w=-]+)*;base64,", re.IGNORECASE)


def decode_data_url(value: str, default_mime: str = "application/octet-stream") -> tuple[bytes, str]:
    """Decode a base64 data URL (or raw base64) into ``(bytes, mime_type)``.

    Raises:
        ValueError: if the payload is not valid base64
    """
    mime = default_mime
    match = _DATA_URL_RE.match(value)
    if match:
        mime = match.group("mime") or default_mime
        value = value[match.end():]
    elif value.startswith("data:"):
        _, value = value.split(",", 1)
    try:
        return base64.b64decode(value, validate=True), mime
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def encode_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def format_file_size(num_bytes: int) -> str:
    """Format a byte count for logs, e.g. ``1.5 MB``."""
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(num_bytes, 1024))), len(units) - 1)
    value = round(num_bytes / 1024 ** i, 2)
    return f"{value:g} {units[i]}"


def compression_ratio(original: int, compressed: int) -> float:
    """Percentage saved, one decimal place."""
    if original <= 0:
        return 0.0
    return round((original - compressed) / original * 100, 1)
