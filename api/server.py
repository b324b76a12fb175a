"""FastAPI relay for the Mirrify virtual try-on front end.

Serves:
- image normalization (resize/re-encode with tiered fallback)
- TinyPNG compression for the cloud tier
- CORS-safe image and CSV proxies
- the Vertex AI try-on prediction relay
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.background import BackgroundTask

from mirrify import __version__
from mirrify.config import ServerConfig, load_config
from mirrify.errors import (
    AuthError,
    CompressionError,
    EncodeError,
    PredictionError,
    UnsupportedFormat,
)
from mirrify.imaging import process_image, read_metadata
from mirrify.models import ImageAsset
from mirrify.pipeline import ImageNormalizer, build_normalizer, default_request
from mirrify.services import GoogleTokenProvider, TinyPNGClient, VertexTryOnClient
from mirrify.utils.data_urls import compression_ratio, decode_data_url, encode_data_url

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("jpeg", "png", "webp")


# Services are created on first use
_config: ServerConfig | None = None
_normalizer: ImageNormalizer | None = None
_tinypng: TinyPNGClient | None = None
_token_provider: GoogleTokenProvider | None = None
_vertex: VertexTryOnClient | None = None
_http_client: httpx.AsyncClient | None = None


def get_config() -> ServerConfig:
    """Get or load the configuration (reads .env via pydantic-settings)."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_normalizer() -> ImageNormalizer:
    global _normalizer
    if _normalizer is None:
        _normalizer = build_normalizer(get_config())
    return _normalizer


def get_tinypng() -> TinyPNGClient | None:
    """TinyPNG client, or None when no API key is configured."""
    global _tinypng
    config = get_config()
    if _tinypng is None and config.tinypng_api_key:
        _tinypng = TinyPNGClient(config.tinypng_api_key)
    return _tinypng


def get_token_provider() -> GoogleTokenProvider:
    global _token_provider
    if _token_provider is None:
        _token_provider = GoogleTokenProvider(get_config().google_application_credentials)
    return _token_provider


def get_vertex() -> VertexTryOnClient:
    global _vertex
    if _vertex is None:
        config = get_config()
        _vertex = VertexTryOnClient(config.vertex, config.google_project_id, get_token_provider())
    return _vertex


def get_http_client() -> httpx.AsyncClient:
    """Shared client for the image/CSV proxies."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(follow_redirects=True)
    return _http_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    for service in (_normalizer, _tinypng, _vertex):
        if service is not None:
            await service.close()
    if _http_client is not None:
        await _http_client.aclose()


app = FastAPI(
    title="Mirrify API",
    description="Virtual try-on relay with image normalization",
    version=__version__,
    lifespan=lifespan,
)

_cors_config = get_config()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_config.allowed_origins,
    allow_origin_regex=_cors_config.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Accept", "Origin"],
    expose_headers=[
        "Content-Length", "Content-Type", "X-Dimensions", "X-DPI",
        "X-Original-Size", "X-Processed-Size", "X-Backend-Used",
    ],
    max_age=86400,  # 24 hours
)


class CompressRequest(BaseModel):
    """Request body for TinyPNG compression."""
    model_config = ConfigDict(populate_by_name=True)

    image_data: str | None = Field(default=None, alias="imageData")  # base64 data URL
    max_dimension: int = Field(default=1024, gt=0, alias="maxDimension")


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def _read_upload(image: UploadFile | None) -> ImageAsset:
    if image is None:
        raise HTTPException(status_code=400, detail="No image file provided")
    data = await image.read()
    if len(data) > get_config().max_upload_bytes:
        raise HTTPException(status_code=413, detail="Image exceeds upload limit")
    return ImageAsset(
        data=data,
        mime_type=image.content_type or "application/octet-stream",
        filename=image.filename or "image",
    )


def _check_format(output_format: str) -> str:
    output_format = output_format.lower()
    if output_format == "jpg":
        output_format = "jpeg"
    if output_format not in OUTPUT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported format: {output_format}")
    return output_format


@app.get("/")
async def root():
    """Service info for debugging."""
    return {
        "status": "OK",
        "message": "Backend server is running",
        "version": __version__,
        "endpoints": {
            "health": "/api/health",
            "auth": "/api/auth/token",
            "tryOn": "/api/try-on",
            "processImage": "/api/process-image",
            "normalize": "/api/normalize",
            "imageMetadata": "/api/image-metadata",
            "compressImage": "/api/compress-image",
            "proxyImage": "/api/proxy-image",
            "proxyCsv": "/api/proxy-csv",
        },
    }


@app.get("/api/health")
async def health():
    return {"status": "OK", "message": "Server is running"}


@app.get("/api/auth/token")
async def auth_token():
    """Issue a cloud access token."""
    try:
        token = await get_token_provider().get_access_token()
    except AuthError as e:
        logger.error("Error getting access token: %s", e)
        return JSONResponse(status_code=500, content={"error": "Failed to get access token"})
    return {"accessToken": token}


@app.post("/api/process-image")
async def process_image_endpoint(
    image: UploadFile | None = File(default=None),
    max_dimension: int = Form(default=1024, alias="maxDimension", gt=0),
    quality: int = Form(default=90, ge=1, le=100),
    output_format: str = Form(default="jpeg", alias="format"),
    preserve_metadata: str = Form(default="true", alias="preserveMetadata"),
    dpi: int | None = Form(default=None, gt=0),
):
    """Resize on the smaller side and re-encode, preserving density.

    Returns the encoded image with size, dimension and DPI headers.
    """
    asset = await _read_upload(image)
    output_format = _check_format(output_format)

    logger.info(
        "Processing image: size=%d maxDimension=%d quality=%d format=%s preserveMetadata=%s",
        asset.byte_size, max_dimension, quality, output_format, preserve_metadata,
    )
    try:
        processed = await asyncio.to_thread(
            process_image,
            asset.data,
            max_dimension=max_dimension,
            quality=quality,
            output_format=output_format,
            preserve_metadata=preserve_metadata.lower() == "true",
            dpi=dpi,
        )
        metadata = read_metadata(processed)
    except UnsupportedFormat as e:
        raise HTTPException(status_code=415, detail=str(e))
    except EncodeError as e:
        logger.error("Error processing image: %s", e)
        raise HTTPException(status_code=500, detail="Failed to process image")

    logger.info(
        "Processing successful: %d -> %d bytes (%.1f%%), %s",
        asset.byte_size, len(processed),
        compression_ratio(asset.byte_size, len(processed)), metadata.dimensions,
    )
    return Response(
        content=processed,
        media_type=f"image/{output_format}",
        headers={
            "X-Original-Size": str(asset.byte_size),
            "X-Processed-Size": str(len(processed)),
            "X-Dimensions": metadata.dimensions,
            "X-DPI": str(metadata.density),
        },
    )


@app.post("/api/image-metadata")
async def image_metadata(image: UploadFile | None = File(default=None)):
    asset = await _read_upload(image)
    try:
        metadata = read_metadata(asset.data)
    except UnsupportedFormat as e:
        raise HTTPException(status_code=415, detail=str(e))
    return {
        "width": metadata.width,
        "height": metadata.height,
        "density": metadata.density,
        "format": metadata.format,
        "size": metadata.byte_size,
        "channels": metadata.channels,
        "hasAlpha": metadata.has_alpha,
    }


@app.post("/api/normalize")
async def normalize_endpoint(
    image: UploadFile | None = File(default=None),
    max_dimension: int | None = Form(default=None, alias="maxDimension", gt=0),
    quality: int | None = Form(default=None, ge=1, le=100),
    output_format: str | None = Form(default=None, alias="format"),
    preserve_metadata: str | None = Form(default=None, alias="preserveMetadata"),
    dpi: int | None = Form(default=None, gt=0),
):
    """Run the tiered normalizer. Only non-image uploads fail."""
    asset = await _read_upload(image)
    defaults = default_request(get_config())
    request = defaults.model_copy(update={
        "max_dimension": max_dimension or defaults.max_dimension,
        "quality": quality or defaults.quality,
        "output_format": _check_format(output_format) if output_format else defaults.output_format,
        "preserve_metadata": (
            preserve_metadata.lower() == "true" if preserve_metadata is not None else defaults.preserve_metadata
        ),
        "dpi": dpi,
    })
    try:
        result = await get_normalizer().normalize(asset, request)
    except UnsupportedFormat as e:
        raise HTTPException(status_code=415, detail=str(e))

    return Response(
        content=result.asset.data,
        media_type=result.asset.mime_type,
        headers={
            "X-Backend-Used": result.backend_used.value,
            "X-Original-Size": str(asset.byte_size),
            "X-Processed-Size": str(result.metadata.byte_size),
            "X-Dimensions": result.metadata.dimensions,
            "X-DPI": str(result.metadata.density),
        },
    )


@app.post("/api/compress-image")
async def compress_image(request: CompressRequest):
    """Compress with TinyPNG. Any failure tells the caller to fall back."""
    if not request.image_data:
        return JSONResponse(status_code=400, content={"error": "Image data is required"})

    tinypng = get_tinypng()
    if tinypng is None:
        return JSONResponse(
            status_code=400,
            content={"error": "TinyPNG API key not configured", "fallback": True},
        )

    try:
        data, _ = decode_data_url(request.image_data)
        result = await tinypng.compress(data, request.max_dimension)
    except (ValueError, UnsupportedFormat, CompressionError) as e:
        logger.error("Error compressing image with TinyPNG: %s", e)
        return JSONResponse(
            status_code=500,
            content={"error": "TinyPNG compression failed", "fallback": True, "details": str(e)},
        )

    return {
        "success": True,
        "compressedImage": encode_data_url(result.data, result.mime_type),
        "originalSize": result.original_size,
        "compressedSize": result.compressed_size,
        "compressionRatio": f"{result.compression_ratio:.1f}",
        "originalDimensions": result.original_dimensions.model_dump(),
        "processedDimensions": result.processed_dimensions.model_dump(),
        "wasResized": result.was_resized,
    }


@app.get("/api/proxy-image")
async def proxy_image(url: str | None = None):
    """Stream a remote image with permissive CORS headers."""
    if not url:
        return JSONResponse(status_code=400, content={"error": "Image URL is required"})

    client = get_http_client()
    try:
        upstream = await client.send(
            client.build_request("GET", url, timeout=get_config().proxy_image_timeout),
            stream=True,
        )
    except httpx.HTTPError as e:
        logger.error("Error proxying image: %s", e)
        return JSONResponse(status_code=500, content={"error": "Failed to load image"})
    if upstream.is_error:
        await upstream.aclose()
        logger.error("Error proxying image: upstream returned %d", upstream.status_code)
        return JSONResponse(status_code=500, content={"error": "Failed to load image"})

    return StreamingResponse(
        upstream.aiter_bytes(),
        media_type=upstream.headers.get("content-type", "image/jpeg"),
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET",
            "Access-Control-Allow-Headers": "Content-Type",
            "Cache-Control": "public, max-age=3600",  # 1 hour
        },
        background=BackgroundTask(upstream.aclose),
    )


@app.get("/api/proxy-csv")
async def proxy_csv(url: str | None = None):
    """Fetch a remote CSV (e.g. a published Google Sheet) with permissive CORS headers."""
    if not url:
        return JSONResponse(status_code=400, content={"error": "CSV URL is required"})

    try:
        upstream = await get_http_client().get(url, timeout=get_config().proxy_csv_timeout)
        upstream.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("Error proxying CSV: %s", e)
        return JSONResponse(status_code=500, content={"error": "Failed to load CSV"})

    return Response(
        content=upstream.text,
        media_type="text/csv; charset=utf-8",
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET",
            "Access-Control-Allow-Headers": "Content-Type",
            "Cache-Control": "public, max-age=300",  # 5 minutes
        },
    )


@app.post("/api/try-on")
async def try_on(request: Request):
    """Forward a prediction body to the Vertex AI try-on model."""
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Request body must be JSON"})

    try:
        return await get_vertex().predict(payload)
    except AuthError as e:
        logger.error("Error getting access token: %s", e)
        return JSONResponse(status_code=500, content={"error": "Failed to get access token"})
    except PredictionError as e:
        logger.error("Error calling try-on API: %s", e)
        return JSONResponse(status_code=e.status_code, content={"error": str(e)})


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=config.port)
