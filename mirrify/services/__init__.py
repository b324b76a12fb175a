"""External service clients."""

from .auth import GoogleTokenProvider, TokenProvider
from .tinypng_client import CompressionResult, TinyPNGClient
from .vertex_client import VertexTryOnClient

__all__ = [
    "TokenProvider",
    "GoogleTokenProvider",
    "TinyPNGClient",
    "CompressionResult",
    "VertexTryOnClient",
]
