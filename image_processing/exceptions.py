"""Custom exceptions for the image transform primitives."""

from __future__ import annotations


class ImageProcessingError(Exception):
    """Base exception for all image processing related errors."""


class UnsupportedImageTypeError(ImageProcessingError):
    """Raised when an image type or target format is not supported."""


class InvalidParameterError(ImageProcessingError):
    """Raised when operation parameters are malformed or out of range."""
