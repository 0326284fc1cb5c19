"""Utility helpers for the image transform primitives."""

from __future__ import annotations

from pathlib import Path

from PIL import Image

from .exceptions import InvalidParameterError, UnsupportedImageTypeError

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".tif", ".tiff", ".bmp", ".heic", ".heif"}

ALLOWED_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/tiff",
    "image/bmp",
    "image/heic",
    "image/heif",
}

MIN_DIMENSION = 10
MAX_DIMENSION = 8000

# Pillow format name, file extension and mime type for each target format.
FORMAT_TABLE = {
    "jpeg": ("JPEG", ".jpeg", "image/jpeg"),
    "jpg": ("JPEG", ".jpg", "image/jpeg"),
    "png": ("PNG", ".png", "image/png"),
    "webp": ("WEBP", ".webp", "image/webp"),
    "tiff": ("TIFF", ".tiff", "image/tiff"),
    "gif": ("GIF", ".gif", "image/gif"),
    "avif": ("AVIF", ".avif", "image/avif"),
}


def supported_formats() -> set[str]:
    """Return the target formats the installed Pillow build can encode."""

    Image.init()
    return {name for name, (pil_format, _, _) in FORMAT_TABLE.items() if pil_format in Image.SAVE}


def validate_mime_type(content_type: str | None) -> str:
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime not in ALLOWED_MIME_TYPES:
        allowed = ", ".join(sorted(ALLOWED_MIME_TYPES))
        raise UnsupportedImageTypeError(f"Invalid file type. Allowed types: {allowed}")
    return mime


def validate_dimensions(path: str | Path) -> tuple[int, int]:
    """Open the image header and check its dimensions against the upload limits."""

    try:
        with Image.open(path) as image:
            width, height = image.size
    except (OSError, ValueError) as exc:
        raise UnsupportedImageTypeError("Invalid image file. Could not process dimensions.") from exc

    if width > MAX_DIMENSION or height > MAX_DIMENSION:
        raise InvalidParameterError(
            f"Image dimensions too large. Maximum allowed: {MAX_DIMENSION}x{MAX_DIMENSION}"
        )
    if width < MIN_DIMENSION or height < MIN_DIMENSION:
        raise InvalidParameterError(
            f"Image dimensions too small. Minimum allowed: {MIN_DIMENSION}x{MIN_DIMENSION}"
        )
    return width, height


def mime_for_format(pil_format: str | None) -> str:
    if not pil_format:
        return "application/octet-stream"
    return Image.MIME.get(pil_format.upper(), f"image/{pil_format.lower()}")


def ensure_rgb(image: Image.Image) -> Image.Image:
    """Flatten an image onto a white background when the target has no alpha."""

    if image.mode == "RGB":
        return image
    if image.mode in {"RGBA", "LA"} or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")
