"""Image asset and normalization models."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ImageAsset(BaseModel):
    """Raw image bytes as captured from user input. Never mutated."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    mime_type: str = "image/jpeg"
    filename: str = "image"

    @computed_field
    @property
    def byte_size(self) -> int:
        return len(self.data)

    def replace_data(self, data: bytes, mime_type: str | None = None) -> "ImageAsset":
        """Return a new asset with the same filename and different bytes."""
        return ImageAsset(data=data, mime_type=mime_type or self.mime_type, filename=self.filename)


class ImageMetadata(BaseModel):
    """Intrinsic image properties read from the header."""

    width: int = Field(ge=0)
    height: int = Field(ge=0)
    density: int = 72
    format: str
    byte_size: int = Field(ge=0)
    channels: int = 3
    has_alpha: bool = False

    @property
    def dimensions(self) -> str:
        return f"{self.width}x{self.height}"


class NormalizationRequest(BaseModel):
    """Caller-specified output constraints."""

    model_config = ConfigDict(frozen=True)

    max_dimension: int = Field(default=1024, gt=0)
    quality: int = Field(default=90, ge=1, le=100)
    output_format: Literal["jpeg", "png", "webp"] = "jpeg"
    preserve_metadata: bool = True
    dpi: int | None = Field(default=None, gt=0, description="Density override for the native backend")


class BackendUsed(str, Enum):
    """Which tier produced a normalization result."""
    NATIVE = "native"
    CLOUD = "cloud"
    LOCAL = "local"
    PASSTHROUGH = "passthrough"


class TierAttempt(BaseModel):
    """Outcome of one backend attempt."""

    backend: BackendUsed
    succeeded: bool
    error: str | None = None


class NormalizationResult(BaseModel):
    """Output of the fallback orchestrator."""

    asset: ImageAsset
    metadata: ImageMetadata
    backend_used: BackendUsed
    attempts: list[TierAttempt] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when every backend failed and the original bytes were passed through."""
        return self.backend_used is BackendUsed.PASSTHROUGH
