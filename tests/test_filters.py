import multiprocessing

import numpy as np
import pytest

from filters import (BoxBlur, Brightness, Grayscale, Kernel, Negate, adjust_brightness,
                     apply_parallel_filter, box_blur, build_transforms, grayscale, negate)
from image_buffer import ImageBuffer
from tests.conftest import UNIFORM_RGBA, gradient_rgba


def _uniform(height=4, width=4):
    return ImageBuffer.filled(width, height, UNIFORM_RGBA)


def _gradient(height=7, width=9):
    return ImageBuffer.from_array(gradient_rgba(height, width))


def _naive_blur(arr, weights, normalization):
    """Direct per-pixel loop over the kernel footprint."""
    h, w = arr.shape[:2]
    k = weights.shape[0]
    pad = k // 2
    out = np.zeros_like(arr)
    for i in range(h):
        for j in range(w):
            sums = [0, 0, 0]
            weight_sum = 0
            for ki in range(-pad, pad + 1):
                for kj in range(-pad, pad + 1):
                    ni, nj = i + ki, j + kj
                    if 0 <= ni < h and 0 <= nj < w:
                        wt = int(weights[ki + pad, kj + pad])
                        for c in range(3):
                            sums[c] += int(arr[ni, nj, c]) * wt
                        weight_sum += wt
            denom = weight_sum if normalization == "actual" else int(weights.sum())
            for c in range(3):
                out[i, j, c] = sums[c] // denom
            out[i, j, 3] = 255
    return out


class _InlinePool:
    def map(self, fn, iterable):
        return [fn(item) for item in iterable]


# --- Kernel ---

def test_box_kernel_is_all_ones():
    kernel = Kernel.box(5)
    assert kernel.size == 5
    assert kernel.radius == 2
    assert kernel.total == 25
    assert (kernel.weights == 1).all()


def test_kernel_weights_are_read_only():
    kernel = Kernel.box(3)
    with pytest.raises(ValueError):
        kernel.weights[0, 0] = 7


def test_kernel_does_not_alias_caller_array():
    weights = np.ones((3, 3), dtype=np.int64)
    kernel = Kernel(weights)
    weights[1, 1] = 50
    assert kernel.weights[1, 1] == 1


@pytest.mark.parametrize("size", [0, -3, 2, 4, 2.0, True])
def test_box_kernel_rejects_bad_sizes(size):
    with pytest.raises(ValueError):
        Kernel.box(size)


@pytest.mark.parametrize(
    "weights",
    [
        np.ones((3, 5)),
        np.ones((2, 2)),
        np.zeros((3, 3)),
        -np.ones((3, 3)),
    ],
)
def test_kernel_rejects_bad_weights(weights):
    with pytest.raises(ValueError):
        Kernel(weights)


# --- Pointwise transforms ---

def test_negate_uniform_example():
    out = negate(_uniform())
    assert (out.pixels == (155, 105, 55, 255)).all()


def test_negate_is_an_involution():
    buf = _gradient()
    original = buf.pixels.copy()
    negate(negate(buf))
    assert np.array_equal(buf.pixels, original)


def test_negate_leaves_alpha_alone():
    buf = _gradient()
    negate(buf)
    assert (buf.pixels[..., 3] == 200).all()


def test_grayscale_uniform_example():
    out = grayscale(_uniform())
    assert (out.pixels == (150, 150, 150, 255)).all()


def test_grayscale_truncates():
    buf = ImageBuffer.filled(1, 1, (1, 1, 2, 9))
    grayscale(buf)
    assert buf.pixels[0, 0].tolist() == [1, 1, 1, 9]


def test_grayscale_is_a_fixed_point():
    once = grayscale(_gradient()).pixels.copy()
    twice = grayscale(grayscale(_gradient())).pixels
    assert np.array_equal(once, twice)


def test_brightness_uniform_example_clamps_at_255():
    out = adjust_brightness(_uniform(), 60)
    assert (out.pixels == (160, 210, 255, 255)).all()


@pytest.mark.parametrize("delta", [0, 1, 20, 128, 300])
def test_brightness_is_monotone_and_bounded(delta):
    buf = _gradient()
    before = buf.pixels.copy()
    adjust_brightness(buf, delta)
    assert (buf.pixels[..., :3] >= before[..., :3]).all()
    assert (buf.pixels[..., :3] <= 255).all()
    assert np.array_equal(buf.pixels[..., 3], before[..., 3])


def test_negative_brightness_clamps_at_zero():
    buf = ImageBuffer.filled(1, 1, (10, 50, 200, 255))
    adjust_brightness(buf, -60)
    assert buf.pixels[0, 0].tolist() == [0, 0, 140, 255]


@pytest.mark.parametrize("delta, expected", [(3_000_000_000, 255), (-3_000_000_000, 0)])
def test_huge_brightness_delta_saturates(delta, expected):
    out = adjust_brightness(_uniform(), delta)
    assert (out.pixels[..., :3] == expected).all()
    assert (out.pixels[..., 3] == 255).all()


def test_huge_brightness_delta_in_row_chunks():
    src = _gradient(8, 3)
    chunked = apply_parallel_filter(src, Brightness(3_000_000_000), _InlinePool(), 3)
    assert (chunked.pixels[..., :3] == 255).all()
    assert (chunked.pixels[..., 3] == 200).all()


# --- Box blur ---

def test_blur_uniform_is_identity_with_actual_normalization():
    src = _uniform()
    out = box_blur(src, Kernel.box(3), "actual")
    assert (out.pixels == UNIFORM_RGBA).all()


@pytest.mark.parametrize("size", [1, 3, 5, 9])
def test_blur_uniform_any_size_any_kernel(size):
    src = ImageBuffer.filled(6, 3, UNIFORM_RGBA)
    out = box_blur(src, Kernel.box(size), "actual")
    assert (out.pixels == UNIFORM_RGBA).all()


def test_fixed_normalization_darkens_borders_only():
    src = ImageBuffer.filled(4, 4, (90, 90, 90, 255))
    out = box_blur(src, Kernel.box(3), "fixed").pixels[..., 0]
    assert out[0, 0] == 360 // 9
    assert out[0, 1] == 540 // 9
    assert (out[1:3, 1:3] == 90).all()


def test_one_by_one_kernel_is_identity_on_rgb():
    src = _gradient()
    out = box_blur(src, Kernel.box(1))
    assert np.array_equal(out.pixels[..., :3], src.pixels[..., :3])
    assert (out.pixels[..., 3] == 255).all()


@pytest.mark.parametrize("normalization", ["actual", "fixed"])
@pytest.mark.parametrize("size", [3, 5])
def test_blur_matches_direct_loop(normalization, size):
    src = _gradient()
    kernel = Kernel.box(size)
    out = box_blur(src, kernel, normalization)
    expected = _naive_blur(src.pixels, kernel.weights, normalization)
    assert np.array_equal(out.pixels, expected)


def test_blur_with_weighted_kernel_matches_direct_loop():
    src = _gradient()
    kernel = Kernel(np.array([[1, 2, 1], [2, 4, 2], [1, 2, 1]]))
    out = box_blur(src, kernel, "actual")
    assert np.array_equal(out.pixels, _naive_blur(src.pixels, kernel.weights, "actual"))


def test_blur_reads_source_without_modifying_it():
    src = _gradient()
    before = src.pixels.copy()
    out = box_blur(src, Kernel.box(3))
    assert out.pixels is not src.pixels
    assert np.array_equal(src.pixels, before)


def test_blur_rejects_unknown_normalization():
    with pytest.raises(ValueError):
        box_blur(_uniform(), Kernel.box(3), "mean")
    with pytest.raises(ValueError):
        BoxBlur(Kernel.box(3), "mean")


# --- Transform objects ---

def test_build_transforms_uses_canonical_order():
    transforms = build_transforms(["blur", "negate", "grayscale"], kernel_size=5)
    assert [t.name for t in transforms] == ["negate", "grayscale", "blur"]
    assert transforms[-1].kernel.size == 5


def test_build_transforms_rejects_unknown_names():
    with pytest.raises(ValueError):
        build_transforms(["sharpen"])


def test_output_folders():
    folders = {t.name: t.folder for t in build_transforms(["negate", "brightness", "grayscale", "blur"])}
    assert folders == {
        "negate": "negated",
        "brightness": "brightened",
        "grayscale": "grayscale",
        "blur": "blurred",
    }


@pytest.mark.parametrize("transform", [Negate(), Grayscale(), Brightness(40), BoxBlur(Kernel.box(3))])
def test_derive_never_mutates_source(transform):
    src = _gradient()
    before = src.pixels.copy()
    result = transform.derive(src)
    assert result is not src
    assert result.pixels is not src.pixels
    assert np.array_equal(src.pixels, before)


# --- Pixel-level parallelism ---

@pytest.mark.parametrize("workers", [1, 2, 3, 7, 20])
@pytest.mark.parametrize("size", [1, 3, 5])
def test_chunked_blur_equals_whole_image_blur(workers, size):
    src = _gradient(11, 6)
    transform = BoxBlur(Kernel.box(size))
    chunked = apply_parallel_filter(src, transform, _InlinePool(), workers)
    assert np.array_equal(chunked.pixels, transform.apply(src).pixels)


@pytest.mark.parametrize("transform", [Negate(), Grayscale(), Brightness(-30)])
def test_chunked_pointwise_equals_whole_image(transform):
    src = _gradient(9, 4)
    before = src.pixels.copy()
    chunked = apply_parallel_filter(src, transform, _InlinePool(), 4)
    assert np.array_equal(src.pixels, before)
    assert np.array_equal(chunked.pixels, transform.derive(src).pixels)


def test_chunked_blur_over_process_pool():
    src = _gradient(10, 8)
    transform = BoxBlur(Kernel.box(3), "fixed")
    with multiprocessing.Pool(processes=2) as pool:
        chunked = apply_parallel_filter(src, transform, pool, 2)
    assert np.array_equal(chunked.pixels, transform.apply(src).pixels)
