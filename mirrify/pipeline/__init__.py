"""Normalization pipeline."""

from .normalizer import ImageNormalizer, build_normalizer, default_request

__all__ = ["ImageNormalizer", "build_normalizer", "default_request"]
