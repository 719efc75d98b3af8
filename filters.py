from dataclasses import dataclass
from typing import ClassVar

import numpy as np

from image_buffer import ImageBuffer

# Blur border policies: divide by the in-bounds weight sum, or by the full kernel total
NORMALIZATIONS = ("actual", "fixed")

_INT32_LIMIT = 2 ** 31 - 1


@dataclass(frozen=True, eq=False)
class Kernel:
    """Square, odd-sized weight matrix. Read-only once built."""

    weights: np.ndarray

    def __post_init__(self):
        w = np.array(self.weights)
        if w.ndim != 2 or w.shape[0] != w.shape[1]:
            raise ValueError(f"Kernel must be square, got shape {w.shape}")
        if w.shape[0] % 2 == 0:
            raise ValueError(f"Kernel size must be odd, got {w.shape[0]}")
        if not (np.issubdtype(w.dtype, np.integer) or np.issubdtype(w.dtype, np.floating)):
            raise ValueError(f"Kernel weights must be numeric, got {w.dtype}")
        if (w < 0).any() or w.sum() <= 0:
            raise ValueError("Kernel weights must be non-negative with a positive total")
        w.setflags(write=False)
        object.__setattr__(self, "weights", w)

    @classmethod
    def box(cls, size):
        if isinstance(size, bool) or not isinstance(size, (int, np.integer)):
            raise ValueError(f"Kernel size must be an integer, got {size!r}")
        if size < 1 or size % 2 == 0:
            raise ValueError(f"Kernel size must be an odd positive integer, got {size}")
        return cls(np.ones((size, size), dtype=np.int64))

    @property
    def size(self):
        return self.weights.shape[0]

    @property
    def radius(self):
        return self.size // 2

    @property
    def total(self):
        return self.weights.sum()

    @property
    def is_integral(self):
        return np.issubdtype(self.weights.dtype, np.integer)


# --- Row-level kernels (operate on (rows, width, 4) uint8 slabs) ---

def _negate_rows(px):
    px[..., :3] = 255 - px[..., :3]


def _grayscale_rows(px):
    gray = px[..., :3].sum(axis=2, dtype=np.uint16) // 3
    px[..., :3] = gray.astype(np.uint8)[..., None]


def _brightness_rows(px, delta):
    # Any shift past +/-255 saturates the same way
    delta = max(-255, min(255, int(delta)))
    shifted = px[..., :3].astype(np.int16) + delta
    px[..., :3] = np.clip(shifted, 0, 255).astype(np.uint8)


def _blur_rows(slab, kernel, normalization, first, last):
    """Blur rows [first, last) of ``slab``. Rows outside the slab count as out of bounds."""
    h, w = slab.shape[:2]
    r = kernel.radius
    n = last - first

    if kernel.is_integral:
        acc_type = np.int32 if 255 * int(kernel.total) <= _INT32_LIMIT else np.int64
    else:
        acc_type = np.float64
    weights = kernel.weights.astype(acc_type)

    padded = np.zeros((h + 2 * r, w + 2 * r, 3), dtype=acc_type)
    padded[r:r + h, r:r + w] = slab[..., :3]
    acc = np.zeros((n, w, 3), dtype=acc_type)

    unbiased = normalization == "actual"
    if unbiased:
        inside = np.zeros((h + 2 * r, w + 2 * r), dtype=acc_type)
        inside[r:r + h, r:r + w] = 1
        weight_sum = np.zeros((n, w), dtype=acc_type)

    # Padded row (y + ky) holds source row (y + ky - r)
    for ky in range(kernel.size):
        rows = slice(first + ky, first + ky + n)
        for kx in range(kernel.size):
            weight = weights[ky, kx]
            if weight == 0:
                continue
            acc += weight * padded[rows, kx:kx + w]
            if unbiased:
                weight_sum += weight * inside[rows, kx:kx + w]

    if unbiased:
        denom = np.maximum(weight_sum, 1)[..., None]
    else:
        denom = weights.sum()

    if kernel.is_integral:
        blurred = acc // denom
    else:
        blurred = np.floor(acc / denom)

    out = np.empty((n, w, 4), dtype=np.uint8)
    out[..., :3] = np.clip(blurred, 0, 255).astype(np.uint8)
    out[..., 3] = 255
    return out


# --- Whole-buffer transforms ---

def negate(buffer):
    _negate_rows(buffer.pixels)
    return buffer


def grayscale(buffer):
    _grayscale_rows(buffer.pixels)
    return buffer


def adjust_brightness(buffer, delta):
    _brightness_rows(buffer.pixels, delta)
    return buffer


def box_blur(source, kernel, normalization="actual"):
    """Blur ``source`` into a new buffer. ``source`` is only read."""
    if normalization not in NORMALIZATIONS:
        raise ValueError(f"Unknown normalization {normalization!r}; expected one of {NORMALIZATIONS}")
    out = _blur_rows(source.pixels, kernel, normalization, 0, source.height)
    return ImageBuffer(source.width, source.height, out)


# --- Transform objects (picklable, shipped to pool workers) ---

class Transform:
    """A pixel transform with its own output folder.

    ``derive`` always hands back a new buffer owned by the caller and never
    mutates the source.
    """

    name: ClassVar[str] = ""
    folder: ClassVar[str] = ""
    in_place: ClassVar[bool] = True
    halo: ClassVar[int] = 0

    def apply(self, buffer):
        self.apply_rows(buffer.pixels)
        return buffer

    def apply_rows(self, px):
        raise NotImplementedError

    def derive(self, source):
        if self.in_place:
            return self.apply(source.copy())
        return self.apply(source)


@dataclass(frozen=True)
class Negate(Transform):
    name: ClassVar[str] = "negate"
    folder: ClassVar[str] = "negated"

    def apply_rows(self, px):
        _negate_rows(px)


@dataclass(frozen=True)
class Grayscale(Transform):
    name: ClassVar[str] = "grayscale"
    folder: ClassVar[str] = "grayscale"

    def apply_rows(self, px):
        _grayscale_rows(px)


@dataclass(frozen=True)
class Brightness(Transform):
    delta: int
    name: ClassVar[str] = "brightness"
    folder: ClassVar[str] = "brightened"

    def apply_rows(self, px):
        _brightness_rows(px, self.delta)


@dataclass(frozen=True)
class BoxBlur(Transform):
    kernel: Kernel
    normalization: str = "actual"
    name: ClassVar[str] = "blur"
    folder: ClassVar[str] = "blurred"
    in_place: ClassVar[bool] = False

    def __post_init__(self):
        if self.normalization not in NORMALIZATIONS:
            raise ValueError(
                f"Unknown normalization {self.normalization!r}; expected one of {NORMALIZATIONS}"
            )

    @property
    def halo(self):
        return self.kernel.radius

    def apply(self, buffer):
        return box_blur(buffer, self.kernel, self.normalization)

    def blur_rows(self, slab, first, last):
        return _blur_rows(slab, self.kernel, self.normalization, first, last)


TRANSFORM_ORDER = ("negate", "brightness", "grayscale", "blur")


def build_transforms(names, kernel_size=3, delta=20, normalization="actual"):
    """Instantiate the requested transforms in canonical order."""
    requested = set(names)
    unknown = requested.difference(TRANSFORM_ORDER)
    if unknown:
        raise ValueError(f"Unknown transform(s): {', '.join(sorted(unknown))}")

    transforms = []
    for name in TRANSFORM_ORDER:
        if name not in requested:
            continue
        if name == "negate":
            transforms.append(Negate())
        elif name == "brightness":
            transforms.append(Brightness(delta))
        elif name == "grayscale":
            transforms.append(Grayscale())
        else:
            transforms.append(BoxBlur(Kernel.box(kernel_size), normalization))
    return transforms


# --- Worker functions for chunks (executed in parallel processes) ---

def _process_pointwise_chunk(args):

    transform, chunk, start_row = args
    transform.apply_rows(chunk)
    return start_row, chunk


def _process_blur_chunk(args):

    transform, slab, slab_start, start_row, end_row = args
    out = transform.blur_rows(slab, start_row - slab_start, end_row - slab_start)
    return start_row, out


# --- Parallel Orchestration ---

def apply_parallel_filter(buffer, transform, pool, num_workers):
    """Run ``transform`` over horizontal chunks of ``buffer`` across ``pool``.

    Returns a new buffer; ``buffer`` is left untouched. Blur chunks carry
    ``radius`` halo rows on each interior edge so the result matches a
    whole-image pass exactly.
    """
    h = buffer.height
    chunk_size = max(1, h // num_workers)
    chunks = []

    for i in range(0, h, chunk_size):
        end = min(i + chunk_size, h)
        if transform.in_place:
            chunks.append((transform, buffer.pixels[i:end].copy(), i))
        else:
            pad = transform.halo
            c_start, c_end = max(0, i - pad), min(h, end + pad)
            chunks.append((transform, buffer.pixels[c_start:c_end], c_start, i, end))

    worker = _process_pointwise_chunk if transform.in_place else _process_blur_chunk
    results = pool.map(worker, chunks)

    out = np.empty_like(buffer.pixels)
    for start_row, chunk_data in results:
        out[start_row:start_row + chunk_data.shape[0]] = chunk_data
    return ImageBuffer(buffer.width, buffer.height, out)
