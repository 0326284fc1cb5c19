"""Validated parameter sets for the four image operations."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from .exceptions import InvalidParameterError, UnsupportedImageTypeError
from .utils import supported_formats


class Operation(str, Enum):
    COMPRESS = "compress"
    RESIZE = "resize"
    CONVERT = "convert"
    CROP = "crop"

    @classmethod
    def parse(cls, value: str) -> "Operation":
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            allowed = ", ".join(item.value for item in cls)
            raise InvalidParameterError(f"Unknown operation '{value}'. Allowed: {allowed}") from exc


RESIZE_FIT_MODES = ("cover", "contain", "fill", "inside", "outside")


@dataclass(frozen=True)
class CompressParams:
    quality: int = 80

    def __post_init__(self) -> None:
        if not 1 <= self.quality <= 100:
            raise InvalidParameterError("Quality must be between 1 and 100")


@dataclass(frozen=True)
class ResizeParams:
    width: Optional[int] = None
    height: Optional[int] = None
    fit: str = "cover"

    def __post_init__(self) -> None:
        if not self.width and not self.height:
            raise InvalidParameterError("At least one dimension (width or height) is required")
        for name, value in (("width", self.width), ("height", self.height)):
            if value is not None and value < 1:
                raise InvalidParameterError(f"{name.capitalize()} must be a positive integer")
        if self.fit not in RESIZE_FIT_MODES:
            raise InvalidParameterError(f"Invalid fit '{self.fit}'. Allowed: {', '.join(RESIZE_FIT_MODES)}")


@dataclass(frozen=True)
class ConvertParams:
    format: str = "jpeg"

    def __post_init__(self) -> None:
        normalized = self.format.strip().lower()
        formats = supported_formats()
        if normalized not in formats:
            raise UnsupportedImageTypeError(
                f"Unsupported target format '{self.format}'. Allowed: {', '.join(sorted(formats))}"
            )
        object.__setattr__(self, "format", normalized)


@dataclass(frozen=True)
class CropParams:
    left: int
    top: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.left < 0 or self.top < 0:
            raise InvalidParameterError("Crop coordinates (left, top) must not be negative")
        if self.width < 1 or self.height < 1:
            raise InvalidParameterError("Crop width and height must be positive")


OperationParams = Union[CompressParams, ResizeParams, ConvertParams, CropParams]

_PARAM_TYPES = {
    Operation.COMPRESS: CompressParams,
    Operation.RESIZE: ResizeParams,
    Operation.CONVERT: ConvertParams,
    Operation.CROP: CropParams,
}


def params_to_dict(params: OperationParams) -> dict[str, Any]:
    return asdict(params)


def params_from_dict(operation: Operation, data: Mapping[str, Any]) -> OperationParams:
    """Rebuild (and re-validate) a parameter set from its serialized form."""

    param_type = _PARAM_TYPES[operation]
    try:
        return param_type(**dict(data))
    except TypeError as exc:
        raise InvalidParameterError(f"Invalid parameters for {operation.value}: {exc}") from exc
