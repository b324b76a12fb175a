"""Pillow-based image inspection, planning and encoding."""

from .metadata import read_metadata
from .planner import fit_within, plan_dimensions
from .processor import process_image, resize_and_encode

__all__ = [
    "read_metadata",
    "plan_dimensions",
    "fit_within",
    "process_image",
    "resize_and_encode",
]
