"""Vertex AI virtual try-on request/response models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EncodedImage(_WireModel):
    bytes_base64_encoded: str = Field(alias="bytesBase64Encoded")


class ImageRef(_WireModel):
    image: EncodedImage


class PredictionInstance(_WireModel):
    person_image: ImageRef = Field(alias="personImage")
    product_images: list[ImageRef] = Field(alias="productImages")


class PredictionRequest(_WireModel):
    """Body of a :predict call."""

    instances: list[PredictionInstance]
    parameters: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Prediction(_WireModel):
    bytes_base64_encoded: str = Field(alias="bytesBase64Encoded")
    mime_type: str | None = Field(default=None, alias="mimeType")


class PredictionResponse(_WireModel):
    """Body returned by a :predict call."""

    predictions: list[Prediction] = Field(default_factory=list)

    @property
    def first_image(self) -> str | None:
        return self.predictions[0].bytes_base64_encoded if self.predictions else None
