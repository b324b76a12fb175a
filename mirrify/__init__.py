"""Mirrify virtual try-on backend: image normalization and Vertex AI relay."""

__version__ = "1.0.0"
