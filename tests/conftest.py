from pathlib import Path
import sys

import numpy as np
import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

UNIFORM_RGBA = (100, 150, 200, 255)


def write_png(path, arr):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(np.asarray(arr, dtype=np.uint8)).save(path)
    return path


def read_rgba(path):
    with Image.open(path) as image:
        return np.array(image.convert("RGBA"))


def gradient_rgba(height, width):
    ys, xs = np.mgrid[0:height, 0:width]
    arr = np.empty((height, width, 4), dtype=np.uint8)
    arr[..., 0] = (ys * 37 + xs * 11) % 256
    arr[..., 1] = (ys * 5 + xs * 61) % 256
    arr[..., 2] = (ys * 97 + xs * 3) % 256
    arr[..., 3] = 200
    return arr


@pytest.fixture
def corpus(tmp_path):
    """1.png uniform, 2.png missing, 3.png gradient."""
    input_dir = tmp_path / "DataSet"
    input_dir.mkdir()
    write_png(input_dir / "1.png", np.full((4, 4, 4), UNIFORM_RGBA, dtype=np.uint8))
    write_png(input_dir / "3.png", gradient_rgba(6, 5))
    return input_dir
