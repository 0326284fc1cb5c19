"""Public API for the image transform package."""

from .exceptions import ImageProcessingError, InvalidParameterError, UnsupportedImageTypeError
from .params import (
    CompressParams,
    ConvertParams,
    CropParams,
    Operation,
    OperationParams,
    ResizeParams,
    params_from_dict,
    params_to_dict,
)
from .service import OUTPUT_PREFIX, ImageTransformService, ProcessedImage
from . import utils

__all__ = [
    "CompressParams",
    "ConvertParams",
    "CropParams",
    "ImageProcessingError",
    "ImageTransformService",
    "InvalidParameterError",
    "OUTPUT_PREFIX",
    "Operation",
    "OperationParams",
    "ProcessedImage",
    "ResizeParams",
    "UnsupportedImageTypeError",
    "params_from_dict",
    "params_to_dict",
    "utils",
]
