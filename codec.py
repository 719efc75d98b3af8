import contextlib
import logging
import os
import uuid
import warnings
from pathlib import Path

import numpy as np
from PIL import Image

from image_buffer import DecodeFailure, EncodeFailure, ImageBuffer

LOGGER = logging.getLogger(__name__)

# Pillow modes that carry 16/32-bit integer samples
_WIDE_INT_MODES = {"I", "I;16", "I;16B", "I;16L", "I;16N"}


def _to_rgba_array(image):
    """Normalize any Pillow mode to an (h, w, 4) uint8 array."""
    if image.mode == "RGBA":
        return np.array(image, dtype=np.uint8)

    if image.mode in _WIDE_INT_MODES:
        # Keep the high byte of each sample, same as stripping 16-bit to 8-bit
        wide = np.asarray(image).astype(np.int64)
        gray = (np.clip(wide, 0, 0xFFFF) >> 8).astype(np.uint8)
        rgba = np.empty(gray.shape + (4,), dtype=np.uint8)
        rgba[..., :3] = gray[..., None]
        rgba[..., 3] = 255
        return rgba

    if image.mode == "F":
        gray = np.clip(np.asarray(image), 0, 255).astype(np.uint8)
        rgba = np.empty(gray.shape + (4,), dtype=np.uint8)
        rgba[..., :3] = gray[..., None]
        rgba[..., 3] = 255
        return rgba

    # Palette (incl. tRNS transparency), 1-bit, L, LA, RGB, CMYK ...
    return np.array(image.convert("RGBA"), dtype=np.uint8)


def decode(path, ignore_warnings=True):
    """Read ``path`` into an owned RGBA buffer.

    Returns the sentinel buffer when the file does not exist. Raises
    ``DecodeFailure`` when the file exists but cannot be decoded.
    """
    path = Path(path)
    if not path.is_file():
        LOGGER.info("File not found: %s. Skipping...", path)
        return ImageBuffer.missing()

    with warnings.catch_warnings():
        if ignore_warnings:
            warnings.simplefilter("ignore")
        try:
            with Image.open(path) as image:
                image.load()
                arr = _to_rgba_array(image)
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
            raise DecodeFailure(f"Could not decode {path}: {exc}") from exc

    return ImageBuffer.from_array(arr)


def _format_for(path):
    return Image.registered_extensions().get(path.suffix.lower(), "PNG")


def _staged_path(destination):
    return destination.parent / f".{destination.name}.tmp-{uuid.uuid4().hex}"


def encode(path, buffer):
    """Write ``buffer`` to ``path`` as 8-bit RGBA.

    The image is staged next to the destination and moved into place, so a
    failed write never leaves a truncated file. The parent directory must
    already exist.
    """
    if buffer.is_missing or buffer.pixels is None:
        raise ValueError(f"Nothing to encode for {path}")

    path = Path(path)
    staged = _staged_path(path)
    try:
        Image.fromarray(buffer.pixels).save(staged, format=_format_for(path))
        os.replace(staged, path)
    except OSError as exc:
        with contextlib.suppress(OSError):
            staged.unlink()
        raise EncodeFailure(f"Could not write {path}: {exc}") from exc
    return True
