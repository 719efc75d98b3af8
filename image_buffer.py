from dataclasses import dataclass
from typing import Optional

import numpy as np


# --- Error taxonomy ---

class PipelineError(Exception):
    """Base class for pipeline failures."""


class DecodeFailure(PipelineError):
    """Source exists but could not be decoded. Fatal to that image only."""


class EncodeFailure(PipelineError):
    """Destination could not be written. Fatal to that output only."""


class AllocationFailure(PipelineError):
    """Out of memory while allocating a pixel buffer. Fatal to the run."""


# --- Buffer ---

@dataclass(eq=False)
class ImageBuffer:
    """Owned 8-bit RGBA raster backed by a single contiguous allocation.

    ``pixels`` has shape ``(height, width, 4)``. A buffer with ``width == 0``
    is the sentinel for a source that could not be found and carries no
    pixel data.
    """

    width: int
    height: int
    pixels: Optional[np.ndarray] = None

    CHANNELS = 4

    def __post_init__(self):
        if self.width == 0:
            if self.pixels is not None:
                raise ValueError("Sentinel buffer cannot carry pixel data")
            return
        if self.pixels is None:
            raise ValueError("Buffer with non-zero width needs pixel data")
        expected = (self.height, self.width, self.CHANNELS)
        if self.pixels.shape != expected:
            raise ValueError(f"Pixel shape {self.pixels.shape} does not match {expected}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Pixel dtype must be uint8, got {self.pixels.dtype}")
        if not self.pixels.flags.c_contiguous:
            raise ValueError("Pixel data must be one contiguous allocation")

    @classmethod
    def missing(cls):
        return cls(width=0, height=0)

    @classmethod
    def from_array(cls, arr):
        """Wrap an ``(h, w, 4)`` uint8 array, taking ownership of it."""
        arr = np.ascontiguousarray(arr, dtype=np.uint8)
        return cls(width=arr.shape[1], height=arr.shape[0], pixels=arr)

    @classmethod
    def filled(cls, width, height, rgba):
        arr = np.empty((height, width, cls.CHANNELS), dtype=np.uint8)
        arr[...] = rgba
        return cls(width=width, height=height, pixels=arr)

    @property
    def is_missing(self):
        return self.width == 0

    @property
    def released(self):
        return self.width > 0 and self.pixels is None

    @property
    def stride(self):
        return self.width * self.CHANNELS

    @property
    def nbytes(self):
        return 0 if self.pixels is None else self.pixels.nbytes

    def row(self, y):
        """Flat byte view of row ``y``, located by offset into the allocation."""
        if self.pixels is None:
            raise ValueError("Buffer holds no pixel data")
        if not 0 <= y < self.height:
            raise IndexError(f"Row {y} out of range for height {self.height}")
        flat = self.pixels.reshape(-1)
        return flat[y * self.stride:(y + 1) * self.stride]

    def copy(self):
        """Return a new, exclusively owned copy of this buffer."""
        if self.is_missing:
            return ImageBuffer.missing()
        if self.pixels is None:
            raise ValueError("Cannot copy a released buffer")
        try:
            data = self.pixels.copy(order="C")
        except MemoryError as exc:
            raise AllocationFailure(
                f"Could not allocate {self.nbytes} bytes for a {self.width}x{self.height} copy"
            ) from exc
        return ImageBuffer(self.width, self.height, data)

    def release(self):
        # Safe to call more than once.
        self.pixels = None
