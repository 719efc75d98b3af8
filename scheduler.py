"""Batch scheduling of (image, transform) work items.

One ``BatchScheduler`` runs the whole corpus under a configurable
``Strategy``. Strategies differ in how many decoded buffers are resident at
once and in where the parallelism sits:

sequential  one image at a time, in process (baseline)
pixel       one image at a time, each transform split into row chunks
flat        decode everything, then a parallel-for over images
sections    decode everything, copy once per transform, one stream per transform
tasks       decode in the parent, one pool task per transform, bounded in-flight
windowed    fused decode/transform/encode over fixed windows (bounded memory)
"""
import concurrent.futures
import logging
import multiprocessing
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import codec
from filters import Transform, apply_parallel_filter
from image_buffer import DecodeFailure, EncodeFailure, ImageBuffer

LOGGER = logging.getLogger(__name__)

WRITTEN = "written"
MISSING = "missing"
DECODE_FAILED = "decode_failed"
ENCODE_FAILED = "encode_failed"

SKIP_STATUSES = (MISSING, DECODE_FAILED)


class Strategy(str, Enum):
    SEQUENTIAL = "sequential"
    PIXEL = "pixel"
    FLAT = "flat"
    SECTIONS = "sections"
    TASKS = "tasks"
    WINDOWED = "windowed"


@dataclass(frozen=True)
class WorkOutcome:
    index: int
    transform: str
    status: str
    path: str


@dataclass(frozen=True)
class ImageJob:
    """One source image and every (transform, destination) it feeds."""

    index: int
    source: Path
    targets: Tuple[Tuple[Transform, Path], ...]
    ignore_warnings: bool = True


@dataclass
class RunReport:
    strategy: str
    workers: int
    images_total: int = 0
    outcomes: List[WorkOutcome] = field(default_factory=list)
    timings: Dict[str, float] = field(default_factory=dict)

    def count(self, status):
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def outputs_written(self):
        return self.count(WRITTEN)

    @property
    def outputs_failed(self):
        return self.count(ENCODE_FAILED)

    @property
    def images_skipped(self):
        skipped = {o.index for o in self.outcomes if o.status in SKIP_STATUSES}
        return len(skipped)

    @property
    def images_processed(self):
        return self.images_total - self.images_skipped

    @property
    def total_time(self):
        return sum(self.timings.values())

    def add_time(self, phase, seconds):
        self.timings[phase] = self.timings.get(phase, 0.0) + seconds


class _Phase:
    """Accumulate wall time of a ``with`` block into ``report.timings``."""

    def __init__(self, report, name):
        self.report = report
        self.name = name

    def __enter__(self):
        self.start = time.time()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.report.add_time(self.name, time.time() - self.start)
        return False


# --- Worker functions (module level so pools can pickle them) ---

def _skip_all(job, status):
    return [WorkOutcome(job.index, t.name, status, str(dest)) for t, dest in job.targets]


def _decode_job(job):
    """Decode ``job.source``. Returns ``(index, buffer, failure_status)``."""
    try:
        buffer = codec.decode(job.source, ignore_warnings=job.ignore_warnings)
    except DecodeFailure as exc:
        LOGGER.warning("%s. Skipping...", exc)
        return job.index, None, DECODE_FAILED
    if buffer.is_missing:
        return job.index, None, MISSING
    return job.index, buffer, None


def _write_one(index, transform, result, dest):
    """Encode ``result`` and release it, whatever the outcome."""
    try:
        codec.encode(dest, result)
    except EncodeFailure as exc:
        LOGGER.warning("%s. Skipping output...", exc)
        return WorkOutcome(index, transform.name, ENCODE_FAILED, str(dest))
    finally:
        result.release()
    return WorkOutcome(index, transform.name, WRITTEN, str(dest))


def _transform_image(job, source):
    # Transforms run one after another, each on its own derived buffer
    try:
        return [_write_one(job.index, t, t.derive(source), dest) for t, dest in job.targets]
    finally:
        source.release()


def _run_image(job):
    """Fused decode -> transform -> encode -> release for one image."""
    _, source, failure = _decode_job(job)
    if source is None:
        return _skip_all(job, failure)
    return _transform_image(job, source)


def _transform_job(args):
    job, source = args
    return _transform_image(job, source)


def _run_task(index, transform, copy, dest):
    # ``copy`` belongs to this task alone
    result = transform.apply(copy)
    outcome = _write_one(index, transform, result, dest)
    copy.release()
    return outcome


def _run_section(transform, items):
    """One stream: apply ``transform`` to every ``(index, copy, dest)`` in order."""
    outcomes = []
    for index, copy, dest in items:
        outcomes.append(_run_task(index, transform, copy, dest))
    return outcomes


# --- Scheduler ---

class BatchScheduler:
    """Run every (image, transform) work item under one strategy."""

    def __init__(self, config, transforms):
        self.config = config
        self.transforms = list(transforms)
        self.strategy = Strategy(config.strategy)
        self.workers = config.workers
        self._order = {t.name: i for i, t in enumerate(self.transforms)}

    def build_jobs(self, indices):
        jobs = []
        for index in indices:
            targets = tuple((t, self.config.output_path(t, index)) for t in self.transforms)
            jobs.append(ImageJob(index, self.config.input_path(index), targets,
                                 self.config.ignore_decode_warnings))
        return jobs

    def run(self, indices=None):
        if indices is None:
            indices = self.config.indices()
        jobs = self.build_jobs(indices)
        report = RunReport(self.strategy.value, self.workers, images_total=len(jobs))

        runner = getattr(self, f"_run_{self.strategy.value}")
        LOGGER.debug("Running %d image(s) x %d transform(s) with strategy=%s workers=%d",
                     len(jobs), len(self.transforms), self.strategy.value, self.workers)
        runner(jobs, report)

        report.outcomes.sort(key=lambda o: (o.index, self._order.get(o.transform, 0)))
        return report

    def _windows(self, jobs):
        size = self.config.batch_size
        for start in range(0, len(jobs), size):
            yield jobs[start:start + size]

    # Strategy 0: baseline, read / process / write timed separately per image
    def _run_sequential(self, jobs, report):
        self._run_one_at_a_time(jobs, report, pool=None)

    # Strategy 5: pixel-level, each transform split across the pool by rows
    def _run_pixel(self, jobs, report):
        with multiprocessing.Pool(processes=self.workers) as pool:
            self._run_one_at_a_time(jobs, report, pool=pool)

    def _run_one_at_a_time(self, jobs, report, pool):
        for job in jobs:
            with _Phase(report, "read"):
                _, source, failure = _decode_job(job)
            if source is None:
                report.outcomes.extend(_skip_all(job, failure))
                continue
            try:
                for transform, dest in job.targets:
                    with _Phase(report, "process"):
                        if pool is None:
                            result = transform.derive(source)
                        else:
                            result = apply_parallel_filter(source, transform, pool, self.workers)
                    with _Phase(report, "write"):
                        report.outcomes.append(_write_one(job.index, transform, result, dest))
            finally:
                source.release()

    # Strategy 1: read the whole corpus, then parallel-for over images
    def _run_flat(self, jobs, report):
        with multiprocessing.Pool(processes=self.workers) as pool:
            with _Phase(report, "read"):
                slots = self._read_all(pool.map, jobs, report)

            def hand_off():
                for slot, job in enumerate(jobs):
                    source = slots[slot]
                    if source is None:
                        continue
                    # The worker owns the buffer from here on
                    slots[slot] = None
                    yield job, source

            with _Phase(report, "process+write"):
                for image_outcomes in pool.imap_unordered(_transform_job, hand_off()):
                    report.outcomes.extend(image_outcomes)

    # Strategy 2: one concurrent stream per transform over the whole corpus.
    # Decoding uses the full pool; at most len(transforms) streams run at once.
    def _run_sections(self, jobs, report):
        with concurrent.futures.ProcessPoolExecutor(max_workers=self.workers) as executor:
            with _Phase(report, "read"):
                slots = self._read_all(executor.map, jobs, report)

            # Every copy is made before any stream starts
            streams = [[] for _ in self.transforms]
            for slot, job in enumerate(jobs):
                source = slots[slot]
                if source is None:
                    continue
                for stream, (_, dest) in zip(streams, job.targets):
                    stream.append((job.index, source.copy(), dest))
                source.release()
                slots[slot] = None

            with _Phase(report, "process+write"):
                futures = [executor.submit(_run_section, t, stream)
                           for t, stream in zip(self.transforms, streams)]
                del streams
                for future in concurrent.futures.as_completed(futures):
                    report.outcomes.extend(future.result())

    # Strategy 3: decode once, fan out one task per transform
    def _run_tasks(self, jobs, report):
        outcomes = []
        errors = []
        pending = deque()
        start = time.time()
        read_time = 0.0

        with multiprocessing.Pool(processes=self.workers) as pool:
            for job in jobs:
                while len(pending) >= self.config.batch_size:
                    for result in pending.popleft():
                        result.wait()

                read_start = time.time()
                _, source, failure = _decode_job(job)
                read_time += time.time() - read_start
                if source is None:
                    outcomes.extend(_skip_all(job, failure))
                    continue

                pending.append([
                    pool.apply_async(_run_task, (job.index, transform, source.copy(), dest),
                                     callback=outcomes.append, error_callback=errors.append)
                    for transform, dest in job.targets
                ])
                source.release()

            while pending:
                for result in pending.popleft():
                    result.wait()

        if errors:
            raise errors[0]
        report.outcomes.extend(outcomes)
        report.add_time("read", read_time)
        report.add_time("process+write", time.time() - start - read_time)

    # Strategy 4: fused per-image loop over bounded windows
    def _run_windowed(self, jobs, report):
        with multiprocessing.Pool(processes=self.workers) as pool:
            with _Phase(report, "read+process+write"):
                for window in self._windows(jobs):
                    # pool.map returns only when the whole window is done
                    for image_outcomes in pool.map(_run_image, window):
                        report.outcomes.extend(image_outcomes)

    def _read_all(self, mapper, jobs, report):
        """Decode every job; returns a run-time sized slot list (None for skips)."""
        slots: List[Optional[ImageBuffer]] = [None] * len(jobs)
        for slot, (job, (_, buffer, failure)) in enumerate(zip(jobs, mapper(_decode_job, jobs))):
            if buffer is None:
                report.outcomes.extend(_skip_all(job, failure))
            else:
                slots[slot] = buffer
        return slots
