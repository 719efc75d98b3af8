import multiprocessing
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from filters import NORMALIZATIONS, TRANSFORM_ORDER

# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
INPUT_DIR = './DataSet'
OUTPUT_DIR = './output_images'
INPUT_EXTENSION = '.png'

DEFAULT_KERNEL_SIZE = 3
DEFAULT_BRIGHTNESS = 20
DEFAULT_BATCH_SIZE = 100
DEFAULT_STRATEGY = 'windowed'
DEFAULT_NORMALIZATION = 'actual'

STRATEGIES = ('sequential', 'pixel', 'flat', 'sections', 'tasks', 'windowed')


def default_workers():
    return os.cpu_count() or multiprocessing.cpu_count()


@dataclass
class PipelineConfig:
    """Scalar run configuration for one pipeline invocation."""

    input_dir: Path = Path(INPUT_DIR)
    output_dir: Path = Path(OUTPUT_DIR)
    first_index: int = 1
    count: Optional[int] = None          # None => largest numbered file in input_dir
    transforms: Tuple[str, ...] = TRANSFORM_ORDER
    kernel_size: Optional[int] = DEFAULT_KERNEL_SIZE
    brightness: int = DEFAULT_BRIGHTNESS
    normalization: str = DEFAULT_NORMALIZATION
    batch_size: int = DEFAULT_BATCH_SIZE
    workers: int = field(default_factory=default_workers)
    strategy: str = DEFAULT_STRATEGY
    ignore_decode_warnings: bool = True

    def __post_init__(self):
        self.input_dir = Path(self.input_dir)
        self.output_dir = Path(self.output_dir)
        self.transforms = tuple(self.transforms)

    def validate(self):
        """Raise ``ValueError`` describing the first invalid option."""
        if self.strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy {self.strategy!r}; expected one of {STRATEGIES}")
        if self.normalization not in NORMALIZATIONS:
            raise ValueError(f"Unknown normalization {self.normalization!r}; expected one of {NORMALIZATIONS}")
        if not self.transforms:
            raise ValueError("At least one transform must be requested")
        unknown = set(self.transforms).difference(TRANSFORM_ORDER)
        if unknown:
            raise ValueError(f"Unknown transform(s): {', '.join(sorted(unknown))}")
        if 'blur' in self.transforms:
            if self.kernel_size is None or self.kernel_size < 1 or self.kernel_size % 2 == 0:
                raise ValueError(f"Kernel size must be an odd positive integer, got {self.kernel_size}")
        if self.first_index < 0:
            raise ValueError(f"First index must be non-negative, got {self.first_index}")
        if self.count is not None and self.count < 0:
            raise ValueError(f"Count must be non-negative, got {self.count}")
        if self.batch_size < 1:
            raise ValueError(f"Batch size must be at least 1, got {self.batch_size}")
        if self.workers < 1:
            raise ValueError(f"Worker count must be at least 1, got {self.workers}")
        return self

    def input_path(self, index):
        return self.input_dir / f"{index}{INPUT_EXTENSION}"

    def output_path(self, transform, index):
        return self.output_dir / transform.folder / f"{index}{INPUT_EXTENSION}"

    def discover_count(self):
        """Largest numeric stem among the input files, or 0 when none exist."""
        highest = 0
        for path in self.input_dir.glob(f"*{INPUT_EXTENSION}"):
            # Only unpadded names map back to input_path(index)
            if path.stem.isdecimal() and str(int(path.stem)) == path.stem:
                highest = max(highest, int(path.stem))
        return max(0, highest - self.first_index + 1)

    def indices(self):
        count = self.count if self.count is not None else self.discover_count()
        return list(range(self.first_index, self.first_index + count))
