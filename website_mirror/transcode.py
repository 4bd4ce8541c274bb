"""JPEG/PNG to WebP conversion for mirrored images."""

import io
import logging
from dataclasses import dataclass
from typing import Optional

from filetype import guess
from PIL import Image, UnidentifiedImageError

from .errors import ConversionFailure

log = logging.getLogger(__name__)

DEFAULT_QUALITY = 80
CONVERTIBLE_FORMATS = {"jpg", "png"}
TARGET_FORMAT = "webp"


@dataclass
class Conversion:
    """Outcome of :func:`convert`; ``converted`` is False for pass-through."""

    data: bytes
    output_format: Optional[str]
    converted: bool
    has_alpha: bool = False


@dataclass
class ConversionRecord:
    original_path: str
    converted_path: str
    output_format: str
    has_alpha: bool


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def _has_alpha(img: Image.Image) -> bool:
    if img.mode in ("RGBA", "LA", "PA"):
        return True
    return img.mode == "P" and "transparency" in img.info


def _encode(data: bytes, quality: int) -> Conversion:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            alpha = _has_alpha(img)
            img = img.convert("RGBA" if alpha else "RGB")
            out = io.BytesIO()
            if alpha:
                img.save(out, format="WEBP", quality=quality, alpha_quality=100, method=4)
            else:
                img.save(out, format="WEBP", quality=quality, method=4)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ConversionFailure(str(e)) from e
    return Conversion(
        data=out.getvalue(), output_format=TARGET_FORMAT, converted=True, has_alpha=alpha
    )


def convert(
    data: bytes, source_format: Optional[str] = None, quality: int = DEFAULT_QUALITY
) -> Conversion:
    fmt = (source_format or detect_image_format(data) or "").lower()
    if fmt == "jpeg":
        fmt = "jpg"
    if fmt not in CONVERTIBLE_FORMATS:
        return Conversion(data=data, output_format=fmt or None, converted=False)
    try:
        return _encode(data, quality)
    except ConversionFailure as e:
        log.warning("image conversion failed, keeping original %s: %s", fmt, e)
        return Conversion(data=data, output_format=fmt, converted=False)
