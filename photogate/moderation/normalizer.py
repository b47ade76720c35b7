"""Image normalizer — encoded bytes to the classifier's fixed RGB buffer.

Runs inside the inference worker pool, NOT on the event loop. Everything here
is synchronous.

Pipeline:
  1. Decode with Pillow (any container Pillow reads: JPEG, PNG, WebP, GIF, ...).
  2. Map the Pillow mode onto a raw channel layout: 1 (L), 3 (RGB) or 4 (RGBA).
  3. Resize directly to input_size × input_size (no aspect preservation, no crop).
  4. Canonicalize channels to exactly 3 (RGB) — see canonicalize_channels().
  5. Wrap the result in a PixelBuffer the caller must release.
"""

from __future__ import annotations

import io
import logging
import warnings
from typing import Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from photogate.constants import MODEL_INPUT_SIZE
from photogate.moderation.errors import DecodeError

logger = logging.getLogger(__name__)

# Pillow modes whose pixel layout is already one of the raw layouts we accept.
_NATIVE_MODES: frozenset[str] = frozenset({"L", "RGB", "RGBA"})

# Pillow modes converted before resizing, keyed by target mode.
_MODE_CONVERSIONS: dict[str, str] = {
    # bilevel / wide grayscale → 8-bit grayscale
    "1": "L",
    "I": "L",
    "I;16": "L",
    "I;16L": "L",
    "I;16B": "L",
    "I;16N": "L",
    "F": "L",
    # palette and alpha-carrying modes → RGBA (alpha is dropped later)
    "P": "RGBA",
    "PA": "RGBA",
    "LA": "RGBA",
    "La": "RGBA",
    "RGBa": "RGBA",
    # other colour spaces → RGB
    "CMYK": "RGB",
    "YCbCr": "RGB",
    "LAB": "RGB",
    "HSV": "RGB",
    "RGBX": "RGB",
}


class PixelBuffer:
    """Exclusively-owned [H, W, 3] uint8 pixel buffer for one classification call.

    ``release()`` drops the underlying array. It is idempotent, and the buffer
    works as a context manager that releases on exit. Reading ``array`` after
    release raises RuntimeError.
    """

    __slots__ = ("_array",)

    def __init__(self, array: np.ndarray) -> None:
        if array.dtype != np.uint8 or array.ndim != 3 or array.shape[2] != 3:
            raise ValueError(
                f"PixelBuffer requires a uint8 [H, W, 3] array, got "
                f"dtype={array.dtype} shape={array.shape}"
            )
        self._array: Optional[np.ndarray] = np.ascontiguousarray(array)

    @property
    def array(self) -> np.ndarray:
        if self._array is None:
            raise RuntimeError("PixelBuffer already released")
        return self._array

    @property
    def shape(self) -> tuple[int, ...]:
        return self.array.shape

    @property
    def released(self) -> bool:
        return self._array is None

    def release(self) -> None:
        self._array = None

    def __enter__(self) -> "PixelBuffer":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.release()


def canonicalize_channels(pixels: np.ndarray) -> np.ndarray:
    """Return a [H, W, 3] uint8 copy of ``pixels`` in RGB channel order.

    Accepted raw layouts:
      - [H, W] or [H, W, 1] grayscale → the intensity is replicated into R, G and B
      - [H, W, 3] RGB                 → returned unchanged
      - [H, W, 4] RGBA                → alpha dropped; no compositing against a background

    Raises:
        DecodeError: For any other channel count (2-channel, 5+, ...).
    """
    if pixels.ndim == 2:
        pixels = pixels[:, :, np.newaxis]
    if pixels.ndim != 3:
        raise DecodeError(f"Unsupported pixel array rank: {pixels.ndim}")

    channels = pixels.shape[2]
    if channels == 1:
        rgb = np.repeat(pixels, 3, axis=2)
    elif channels == 3:
        rgb = pixels
    elif channels == 4:
        rgb = pixels[:, :, :3]
    else:
        raise DecodeError(f"Unsupported channel count: {channels}")
    return np.ascontiguousarray(rgb, dtype=np.uint8)


class ImageNormalizer:
    """Decodes arbitrary image bytes into a PixelBuffer of fixed geometry.

    Args:
        input_size: Side length of the square output, taken from the ModelSpec.
    """

    def __init__(self, input_size: int = MODEL_INPUT_SIZE) -> None:
        if input_size <= 0:
            raise ValueError("input_size must be positive")
        self.input_size = input_size

    def normalize(self, data: bytes) -> PixelBuffer:
        """Decode, resize and canonicalize ``data``.

        Raises:
            DecodeError: If the bytes are not a decodable raster image, or decode
                         to a layout that cannot be canonicalized to RGB.
        """
        if not data:
            raise DecodeError("Empty image payload")

        try:
            with warnings.catch_warnings():
                # Pillow warns before it raises on oversized images; escalate so
                # decompression bombs are rejected instead of decoded.
                warnings.simplefilter("error", Image.DecompressionBombWarning)
                with Image.open(io.BytesIO(data)) as image:
                    image.load()
                    raster = self._to_raw_layout(image)
                    try:
                        resized = raster.resize(
                            (self.input_size, self.input_size),
                            Image.Resampling.BILINEAR,
                        )
                    finally:
                        if raster is not image:
                            raster.close()
        except DecodeError:
            raise
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            Image.DecompressionBombWarning,
            OSError,
            ValueError,
            SyntaxError,  # raised by some Pillow plugins on corrupt headers
        ) as exc:
            raise DecodeError(f"{type(exc).__name__}: {exc}") from exc

        try:
            pixels = np.asarray(resized, dtype=np.uint8)
        finally:
            resized.close()

        return PixelBuffer(canonicalize_channels(pixels))

    @staticmethod
    def _to_raw_layout(image: Image.Image) -> Image.Image:
        mode = image.mode
        if mode in _NATIVE_MODES:
            return image
        target = _MODE_CONVERSIONS.get(mode)
        if target is None:
            raise DecodeError(f"Unsupported image mode: {mode}")
        logger.debug("Converting image mode %s -> %s", mode, target)
        return image.convert(target)
