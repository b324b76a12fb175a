"""Configuration management for the try-on backend."""

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class NormalizationConfig(BaseModel):
    """Image normalization defaults and backend settings."""
    max_dimension: int = 1024
    quality: int = Field(default=90, ge=1, le=100)
    output_format: Literal["jpeg", "png", "webp"] = "jpeg"
    preserve_metadata: bool = True
    pre_shrink_threshold_bytes: int | None = 5 * 1024 * 1024  # None disables
    native_timeout: float = 30.0
    native_endpoint: str | None = None  # remote /api/process-image, else in-process
    max_image_pixels: int | None = 0x3FFF * 0x3FFF  # None removes the limit

    class Config:
        frozen = True


class CompressionConfig(BaseModel):
    """Cloud compression endpoint settings."""
    endpoint: str | None = None  # defaults to this server's /api/compress-image
    timeout: float = 30.0

    class Config:
        frozen = True


class VertexConfig(BaseModel):
    """Vertex AI virtual try-on model settings."""
    location: str = "us-central1"
    model: str = "virtual-try-on-preview-08-04"
    timeout: float = 300.0  # 5 min for generation

    class Config:
        frozen = True

    def predict_url(self, project_id: str) -> str:
        return (
            f"https://{self.location}-aiplatform.googleapis.com/v1/projects/{project_id}"
            f"/locations/{self.location}/publishers/google/models/{self.model}:predict"
        )


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:3002",
    "https://gant.eg",
    "http://gant.eg",
    "https://www.creativespaces.tech",
    "https://creativespaces.tech",
]


class ServerConfig(BaseSettings):
    """Main backend configuration."""

    port: int = 3001
    log_level: str = "INFO"

    # CORS
    frontend_url: str | None = None
    cors_allowed_origins: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    cors_origin_regex: str = r"https://[a-zA-Z0-9-]+\.(myshopify|pages\.shopify)\.com"

    # Uploads and proxies
    max_upload_bytes: int = 50 * 1024 * 1024
    proxy_image_timeout: float = 10.0
    proxy_csv_timeout: float = 30.0

    # Sub-configs
    normalization: NormalizationConfig = Field(default_factory=NormalizationConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    vertex: VertexConfig = Field(default_factory=VertexConfig)

    # Credentials (loaded from .env)
    tinypng_api_key: str | None = None
    google_application_credentials: str | None = None  # JSON string or key file path
    google_project_id: str = "tryandfit"

    class Config:
        env_file = ".env"
        env_prefix = ""
        env_nested_delimiter = "__"
        extra = "ignore"
        frozen = True

    @property
    def allowed_origins(self) -> list[str]:
        origins = list(self.cors_allowed_origins)
        if self.frontend_url and self.frontend_url not in origins:
            origins.append(self.frontend_url)
        return origins

    @property
    def compression_endpoint(self) -> str:
        return self.compression.endpoint or f"http://127.0.0.1:{self.port}/api/compress-image"


def load_config() -> ServerConfig:
    """Load configuration from environment and defaults."""
    return ServerConfig()
