"""Image transform service wrapping Pillow for compress/resize/convert/crop."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from .exceptions import ImageProcessingError, InvalidParameterError
from .params import (
    CompressParams,
    ConvertParams,
    CropParams,
    Operation,
    OperationParams,
    ResizeParams,
)
from .utils import FORMAT_TABLE, ensure_rgb, mime_for_format

logger = logging.getLogger(__name__)

# Output files carry this prefix so the retention cleanup can recognise them.
OUTPUT_PREFIX = "tool-"

_OUTPUT_LABELS = {
    Operation.COMPRESS: "compressed",
    Operation.RESIZE: "resized",
    Operation.CONVERT: "converted",
    Operation.CROP: "cropped",
}

_ALPHA_FORMATS = {"PNG", "WEBP", "TIFF", "GIF", "AVIF"}


@dataclass(slots=True)
class ProcessedImage:
    """Output file produced by a single transform."""

    path: Path
    mime: str
    width: int
    height: int
    size: int


class ImageTransformService:
    """Applies one operation to an image file and writes the result to ``output_dir``."""

    def __init__(self, output_dir: str | Path):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def apply(self, operation: Operation, source: str | Path, params: OperationParams) -> ProcessedImage:
        handlers = {
            Operation.COMPRESS: self.compress,
            Operation.RESIZE: self.resize,
            Operation.CONVERT: self.convert,
            Operation.CROP: self.crop,
        }
        return handlers[operation](Path(source), params)  # type: ignore[arg-type]

    def compress(self, source: Path, params: CompressParams) -> ProcessedImage:
        with self._open(source) as image:
            pil_format = (image.format or "JPEG").upper()
            if pil_format == "JPEG":
                output = self._output_path(Operation.COMPRESS, source.suffix or ".jpg")
                ensure_rgb(image).save(output, format="JPEG", quality=params.quality, optimize=True)
            elif pil_format == "PNG":
                output = self._output_path(Operation.COMPRESS, source.suffix or ".png")
                image.save(output, format="PNG", optimize=True, compress_level=9)
            elif pil_format == "WEBP":
                output = self._output_path(Operation.COMPRESS, source.suffix or ".webp")
                image.save(output, format="WEBP", quality=params.quality)
            else:
                # Anything else is re-encoded as JPEG.
                pil_format = "JPEG"
                output = self._output_path(Operation.COMPRESS, ".jpg")
                ensure_rgb(image).save(output, format="JPEG", quality=params.quality, optimize=True)
            return self._describe(output, mime_for_format(pil_format))

    def resize(self, source: Path, params: ResizeParams) -> ProcessedImage:
        with self._open(source) as image:
            pil_format = image.format
            resized = self._resize_image(image, params)
            output = self._output_path(Operation.RESIZE, source.suffix or ".png")
            self._save_like_source(resized, output, pil_format)
            return self._describe(output, mime_for_format(pil_format))

    def convert(self, source: Path, params: ConvertParams) -> ProcessedImage:
        pil_format, extension, mime = FORMAT_TABLE[params.format]
        with self._open(source) as image:
            output = self._output_path(Operation.CONVERT, extension)
            target = image if pil_format in _ALPHA_FORMATS else ensure_rgb(image)
            if pil_format == "GIF" and target.mode not in {"P", "L"}:
                target = target.convert("P", palette=Image.Palette.ADAPTIVE)
            target.save(output, format=pil_format)
            return self._describe(output, mime)

    def crop(self, source: Path, params: CropParams) -> ProcessedImage:
        with self._open(source) as image:
            pil_format = image.format
            image_width, image_height = image.size
            if params.left >= image_width or params.top >= image_height:
                raise InvalidParameterError(
                    f"Crop origin ({params.left}, {params.top}) lies outside the image ({image_width}x{image_height})"
                )
            # Clamp the extent so the rectangle stays inside the image.
            width = max(1, min(params.width, image_width - params.left))
            height = max(1, min(params.height, image_height - params.top))
            if (width, height) != (params.width, params.height):
                logger.debug(
                    "Adjusted crop area from %sx%s to %sx%s to fit within %sx%s",
                    params.width,
                    params.height,
                    width,
                    height,
                    image_width,
                    image_height,
                )
            cropped = image.crop((params.left, params.top, params.left + width, params.top + height))
            output = self._output_path(Operation.CROP, source.suffix or ".png")
            self._save_like_source(cropped, output, pil_format)
            return self._describe(output, mime_for_format(pil_format))

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------

    @staticmethod
    def _open(source: Path) -> Image.Image:
        try:
            image = Image.open(source)
            image.load()
        except FileNotFoundError as exc:
            raise ImageProcessingError(f"Input file not found: {source.name}") from exc
        except (UnidentifiedImageError, OSError) as exc:
            raise ImageProcessingError(f"Could not read image '{source.name}': {exc}") from exc
        return image

    def _output_path(self, operation: Operation, extension: str) -> Path:
        return self.output_dir / f"{OUTPUT_PREFIX}{_OUTPUT_LABELS[operation]}-{uuid.uuid4()}{extension.lower()}"

    @staticmethod
    def _resize_image(image: Image.Image, params: ResizeParams) -> Image.Image:
        source_width, source_height = image.size
        if not params.width or not params.height:
            # A single dimension keeps the aspect ratio whatever the fit mode.
            if params.width:
                ratio = params.width / source_width
            else:
                ratio = params.height / source_height  # type: ignore[operator]
            size = (max(1, round(source_width * ratio)), max(1, round(source_height * ratio)))
            return image.resize(size, Image.Resampling.LANCZOS)

        target = (params.width, params.height)
        if params.fit == "fill":
            return image.resize(target, Image.Resampling.LANCZOS)
        if params.fit == "cover":
            return ImageOps.fit(image, target, Image.Resampling.LANCZOS)
        if params.fit == "inside":
            return ImageOps.contain(image, target, Image.Resampling.LANCZOS)
        if params.fit == "outside":
            ratio = max(params.width / source_width, params.height / source_height)
            size = (max(1, round(source_width * ratio)), max(1, round(source_height * ratio)))
            return image.resize(size, Image.Resampling.LANCZOS)
        # contain: letterbox into the exact target size
        padded = image.convert("RGBA")
        return ImageOps.pad(padded, target, Image.Resampling.LANCZOS, color=(0, 0, 0, 0))

    @staticmethod
    def _save_like_source(image: Image.Image, output: Path, pil_format: Optional[str]) -> None:
        pil_format = (pil_format or "PNG").upper()
        if pil_format not in _ALPHA_FORMATS:
            image = ensure_rgb(image)
        elif pil_format == "GIF" and image.mode not in {"P", "L"}:
            image = image.convert("P", palette=Image.Palette.ADAPTIVE)
        try:
            image.save(output, format=pil_format)
        except (KeyError, OSError) as exc:
            raise ImageProcessingError(f"Could not write {pil_format} output: {exc}") from exc

    @staticmethod
    def _describe(output: Path, mime: str) -> ProcessedImage:
        with Image.open(output) as written:
            width, height = written.size
        return ProcessedImage(path=output, mime=mime, width=width, height=height, size=output.stat().st_size)
