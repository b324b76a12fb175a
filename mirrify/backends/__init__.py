"""Encoder backends tried in priority order by the normalizer."""

from .base import EncoderBackend
from .cloud import CloudCompressionBackend
from .local import LocalCanvasBackend
from .native import NativeResizeBackend, RemoteResizeBackend

__all__ = [
    "EncoderBackend",
    "NativeResizeBackend",
    "RemoteResizeBackend",
    "CloudCompressionBackend",
    "LocalCanvasBackend",
]
