"""Normalize uploaded plant photos into one provider-agnostic JPEG payload."""
import base64
import io
import logging
from typing import Iterable, List, Optional, Sequence

from PIL import Image, ImageOps, UnidentifiedImageError

from plantdx.domain.errors import InvalidImageError
from plantdx.domain.models import NormalizedImage


logger = logging.getLogger(__name__)

EXIF_ORIENTATION_TAG = 0x0112
JPEG_ALIASES = {"jpeg", "jpg", "mpo"}


class ImagePreprocessor:
    """Bounds pixel dimensions and byte size, re-encodes to JPEG.

    An input that is already a baseline RGB JPEG inside both bounds is passed
    through unchanged, which makes preprocessing idempotent.
    """

    def __init__(
        self,
        max_dimension: int = 512,
        quality: int = 85,
        max_bytes: int = 4 * 1024 * 1024,
        min_quality: int = 45,
        supported_formats: Optional[Iterable[str]] = None,
    ):
        self.max_dimension = max_dimension
        self.quality = quality
        self.max_bytes = max_bytes
        self.min_quality = min_quality
        formats = supported_formats or ("jpg", "jpeg", "png", "webp")
        self.supported_formats = {f.lower() for f in formats}
        if self.supported_formats & JPEG_ALIASES:
            self.supported_formats |= JPEG_ALIASES

    def preprocess(self, raw: bytes) -> NormalizedImage:
        img = self._decode(raw)
        fmt = (img.format or "").lower()
        if fmt not in self.supported_formats:
            raise InvalidImageError(f"Unsupported image format: {img.format or 'unknown'}")

        if self._is_normalized(img, fmt, raw):
            return self._build(raw, img.size, self._quality_hint(img))

        img = ImageOps.exif_transpose(img)
        if img.mode != "RGB":
            img = img.convert("RGB")
        if max(img.size) > self.max_dimension:
            img.thumbnail((self.max_dimension, self.max_dimension), resample=Image.BICUBIC)

        quality = self.quality
        data = self._encode(img, quality)
        while len(data) > self.max_bytes and quality > self.min_quality:
            quality -= 10
            data = self._encode(img, quality)
        if len(data) > self.max_bytes:
            raise InvalidImageError(
                f"Image exceeds {self.max_bytes} bytes even at quality {quality}"
            )
        return self._build(data, img.size, quality)

    def preprocess_many(self, raw_images: Sequence[bytes]) -> List[NormalizedImage]:
        if not raw_images:
            raise InvalidImageError("At least one image is required")
        images = [self.preprocess(raw) for raw in raw_images]
        logger.debug("Preprocessed %d image(s): %s", len(images),
                     [f"{i.width}x{i.height}/{i.size}B" for i in images])
        return images

    @staticmethod
    def _decode(raw: bytes) -> Image.Image:
        if not raw:
            raise InvalidImageError("Empty image payload")
        try:
            img = Image.open(io.BytesIO(raw))
            # Avoid returning an Image bound to a closed fp.
            img.load()
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
            raise InvalidImageError(f"Invalid image: {exc}") from exc
        return img

    def _is_normalized(self, img: Image.Image, fmt: str, raw: bytes) -> bool:
        if fmt != "jpeg" or img.mode != "RGB":
            return False
        if max(img.size) > self.max_dimension or len(raw) > self.max_bytes:
            return False
        orientation = img.getexif().get(EXIF_ORIENTATION_TAG, 1)
        return orientation == 1

    def _quality_hint(self, img: Image.Image) -> int:
        return int(img.info.get("quality", self.quality))

    @staticmethod
    def _encode(img: Image.Image, quality: int) -> bytes:
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=quality, optimize=True)
        return buf.getvalue()

    @staticmethod
    def _build(data: bytes, size, quality: int) -> NormalizedImage:
        width, height = size
        return NormalizedImage(
            data=data,
            base64=base64.b64encode(data).decode("ascii"),
            width=width,
            height=height,
            format="jpeg",
            size=len(data),
            quality=quality,
        )
