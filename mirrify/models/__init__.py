"""Data models for the try-on backend."""

from .image import (
    BackendUsed,
    ImageAsset,
    ImageMetadata,
    NormalizationRequest,
    NormalizationResult,
    TierAttempt,
)
from .prediction import PredictionRequest, PredictionResponse
from .session import SlotRole, SlotState, UploadSession, UploadSlot

__all__ = [
    "BackendUsed",
    "ImageAsset",
    "ImageMetadata",
    "NormalizationRequest",
    "NormalizationResult",
    "TierAttempt",
    "PredictionRequest",
    "PredictionResponse",
    "SlotRole",
    "SlotState",
    "UploadSession",
    "UploadSlot",
]
