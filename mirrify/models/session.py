"""Upload session state: per-image slots and the submission gate."""

import asyncio
import base64
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, computed_field

from ..errors import SessionError, UnsupportedFormat
from .image import BackendUsed, ImageAsset, NormalizationRequest, NormalizationResult
from .prediction import EncodedImage, ImageRef, PredictionInstance, PredictionRequest

if TYPE_CHECKING:
    from ..pipeline import ImageNormalizer

logger = logging.getLogger(__name__)


class SlotRole(str, Enum):
    SUBJECT = "subject"
    GARMENT = "garment"


class SlotState(str, Enum):
    QUEUED = "queued"
    NORMALIZING = "normalizing"
    READY = "ready"
    FAILED = "failed"  # passthrough: still usable with the original asset


class UploadSlot(BaseModel):
    """One uploaded image and its normalization progress."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:9])
    role: SlotRole
    state: SlotState = SlotState.QUEUED
    original: ImageAsset
    asset: ImageAsset | None = None
    result: NormalizationResult | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    @computed_field
    @property
    def usable(self) -> bool:
        return self.state in (SlotState.READY, SlotState.FAILED)

    @property
    def payload_asset(self) -> ImageAsset:
        """The asset to send upstream: normalized if available, else the original."""
        return self.asset or self.original

    def apply_result(self, result: NormalizationResult) -> None:
        self.result = result
        self.asset = result.asset
        if result.backend_used is BackendUsed.PASSTHROUGH:
            self.state = SlotState.FAILED
        else:
            self.state = SlotState.READY


class UploadSession:
    """Tracks uploaded images and assembles the outbound prediction request.

    Role policy (single subject, bounded garments) lives here; the normalizer
    is role-agnostic.
    """

    def __init__(
        self,
        normalizer: "ImageNormalizer",
        request: NormalizationRequest | None = None,
        single_subject: bool = True,
        max_garments: int | None = 5,
    ):
        self.normalizer = normalizer
        self.request = request or NormalizationRequest()
        self.single_subject = single_subject
        self.max_garments = max_garments
        self._slots: dict[str, UploadSlot] = {}

    @property
    def slots(self) -> list[UploadSlot]:
        return list(self._slots.values())

    def slots_for(self, role: SlotRole) -> list[UploadSlot]:
        return [s for s in self._slots.values() if s.role is role]

    def get(self, slot_id: str) -> UploadSlot:
        try:
            return self._slots[slot_id]
        except KeyError:
            raise SessionError(f"Unknown upload slot: {slot_id}") from None

    def add(self, role: SlotRole, data: bytes, filename: str, mime_type: str) -> UploadSlot:
        """Create a queued slot for a user-selected file.

        Raises:
            UnsupportedFormat: if the file is not an image
            SessionError: if the role's slot limit is reached
        """
        if not mime_type.startswith("image/"):
            raise UnsupportedFormat(f"{filename} is not an image ({mime_type})")
        # Reject unparseable bytes before they enter the pipeline.
        # Imported here: mirrify.imaging loads mirrify.models on import.
        from ..imaging import read_metadata
        read_metadata(data)

        if role is SlotRole.SUBJECT and self.single_subject and self.slots_for(SlotRole.SUBJECT):
            raise SessionError("Only one person image is allowed. Remove it to upload a new one.")
        if (
            role is SlotRole.GARMENT
            and self.max_garments is not None
            and len(self.slots_for(SlotRole.GARMENT)) >= self.max_garments
        ):
            raise SessionError(f"Maximum of {self.max_garments} product images reached.")

        slot = UploadSlot(role=role, original=ImageAsset(data=data, mime_type=mime_type, filename=filename))
        self._slots[slot.id] = slot
        return slot

    def remove(self, slot_id: str) -> None:
        if self._slots.pop(slot_id, None) is None:
            raise SessionError(f"Unknown upload slot: {slot_id}")

    def clear(self) -> None:
        self._slots.clear()

    async def normalize_slot(self, slot: UploadSlot) -> UploadSlot:
        slot.state = SlotState.NORMALIZING
        try:
            result = await self.normalizer.normalize(slot.original, self.request)
        except Exception:
            # Never leave a slot stuck in NORMALIZING; it falls back to the original
            logger.exception("Normalizing slot %s failed", slot.id)
            slot.state = SlotState.FAILED
            raise
        # The slot may have been removed while normalizing; its result is discarded
        if slot.id in self._slots:
            slot.apply_result(result)
        return slot

    async def normalize_pending(self) -> list[UploadSlot]:
        """Normalize every queued slot concurrently."""
        pending = [s for s in self._slots.values() if s.state is SlotState.QUEUED]
        return list(await asyncio.gather(*(self.normalize_slot(s) for s in pending)))

    @property
    def can_submit(self) -> bool:
        return (
            bool(self.slots_for(SlotRole.SUBJECT))
            and bool(self.slots_for(SlotRole.GARMENT))
            and all(s.usable for s in self._slots.values())
        )

    def build_prediction_request(self, parameters: dict[str, Any] | None = None) -> PredictionRequest:
        """Assemble the try-on request from normalized slots.

        Raises:
            SessionError: if a person or product image is missing, or any slot is
                still being normalized
        """
        subjects = self.slots_for(SlotRole.SUBJECT)
        garments = self.slots_for(SlotRole.GARMENT)
        if not subjects:
            raise SessionError("Please upload at least one person image")
        if not garments:
            raise SessionError("Please upload at least one product image")
        busy = [s.id for s in self._slots.values() if not s.usable]
        if busy:
            raise SessionError(f"Images still processing: {', '.join(busy)}")

        def ref(slot: UploadSlot) -> ImageRef:
            encoded = base64.b64encode(slot.payload_asset.data).decode("utf-8")
            return ImageRef(image=EncodedImage(bytes_base64_encoded=encoded))

        return PredictionRequest(
            instances=[
                PredictionInstance(
                    person_image=ref(subjects[0]),
                    product_images=[ref(g) for g in garments],
                )
            ],
            parameters=parameters or None,
        )
