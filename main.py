# Standard library imports
import argparse
import csv
import json
import logging
import multiprocessing
import os
import sys
from datetime import datetime
from pathlib import Path

# Local imports
from config import (DEFAULT_BATCH_SIZE, DEFAULT_BRIGHTNESS, DEFAULT_NORMALIZATION,
                    DEFAULT_STRATEGY, INPUT_DIR, OUTPUT_DIR, STRATEGIES, PipelineConfig,
                    default_workers)
from filters import NORMALIZATIONS, TRANSFORM_ORDER, build_transforms
from image_buffer import AllocationFailure
from scheduler import BatchScheduler

EXIT_OK = 0
EXIT_MISSING_INPUT = 1
EXIT_BAD_CONFIG = 2
EXIT_OUT_OF_MEMORY = 3


# === LOGGING SETUP ===
class DualLogger:
    """Logs to file only - console printing handled separately"""
    def __init__(self, file_path=None):
        self.file = open(file_path, 'w', encoding='utf-8') if file_path else None

    def write(self, message):
        if self.file is None:
            return
        self.file.write(message)
        self.file.flush()

    def flush(self):
        if self.file is not None:
            self.file.flush()

    def close(self):
        if self.file is not None:
            self.file.close()
            self.file = None


def get_numbered_filename(base_path, extension):
    """Find next available numbered filename if base file exists"""
    if not os.path.exists(base_path):
        return base_path

    directory = os.path.dirname(base_path)
    base_name = os.path.splitext(os.path.basename(base_path))[0]

    counter = 1
    while True:
        new_path = os.path.join(directory, f"{base_name}_{counter}{extension}")
        if not os.path.exists(new_path):
            return new_path
        counter += 1


def setup_logging(output_dir):
    """Setup logging to file"""
    os.makedirs(output_dir, exist_ok=True)
    log_file = os.path.join(output_dir, 'pipeline_output.txt')
    log_file = get_numbered_filename(log_file, '.txt')

    logger = DualLogger(log_file)
    return logger, log_file


def print_both(logger, message="", end="\n"):
    """Print to both console and log file"""
    logger.write(message + end)
    print(message, end=end)


# === CONFIGURATION ===

def build_argparser():
    p = argparse.ArgumentParser(
        description="Apply negate/brightness/grayscale/blur transforms to a numbered PNG corpus")

    g_io = p.add_argument_group("I/O")
    g_io.add_argument("--input-dir", type=Path, default=Path(INPUT_DIR),
                      help="Folder holding 1.png ... N.png")
    g_io.add_argument("--output-dir", type=Path, default=Path(OUTPUT_DIR),
                      help="Root folder; one subfolder per transform")
    g_io.add_argument("--first-index", type=int, default=1)
    g_io.add_argument("--count", type=int, default=None,
                      help="Number of indices to process (default: largest numbered file)")
    g_io.add_argument("--export", action="store_true", help="Write the run report as CSV and JSON")
    g_io.add_argument("--no-log-file", action="store_true", help="Only print the summary to the console")
    g_io.add_argument("--show-decoder-warnings", action="store_true",
                      help="Let decoder warnings through instead of suppressing them")
    g_io.add_argument("-v", "--verbose", action="store_true")

    g_tr = p.add_argument_group("Transforms")
    g_tr.add_argument("--transforms", nargs="+", choices=TRANSFORM_ORDER, default=list(TRANSFORM_ORDER))
    g_tr.add_argument("--kernel-size", type=int, default=None,
                      help="Odd blur kernel side length (prompted when omitted)")
    g_tr.add_argument("--brightness", type=int, default=DEFAULT_BRIGHTNESS)
    g_tr.add_argument("--normalization", choices=NORMALIZATIONS, default=DEFAULT_NORMALIZATION,
                      help="Blur border policy: in-bounds weight sum or full kernel total")

    g_run = p.add_argument_group("Scheduling")
    g_run.add_argument("--strategy", choices=STRATEGIES, default=DEFAULT_STRATEGY)
    g_run.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE)
    g_run.add_argument("--workers", type=int, default=None,
                       help=f"Worker processes (default: {default_workers()})")
    return p


def prompt_kernel_size(read=input, write=print):
    """Ask for the blur kernel size until an odd positive integer is given."""
    while True:
        try:
            answer = read("Enter the size of Mask:\n")
        except EOFError:
            raise ValueError("No kernel size given") from None
        try:
            size = int(answer.strip())
        except ValueError:
            write(f"Not an integer: {answer.strip()!r}")
            continue
        if size >= 1 and size % 2 == 1:
            return size
        write(f"Kernel size must be an odd positive integer, got {size}")


def config_from_args(args, read=input):
    kernel_size = args.kernel_size
    if kernel_size is None and "blur" in args.transforms:
        kernel_size = prompt_kernel_size(read=read)
    return PipelineConfig(
        input_dir=args.input_dir,
        output_dir=args.output_dir,
        first_index=args.first_index,
        count=args.count,
        transforms=tuple(args.transforms),
        kernel_size=kernel_size,
        brightness=args.brightness,
        normalization=args.normalization,
        batch_size=args.batch_size,
        workers=args.workers if args.workers is not None else default_workers(),
        strategy=args.strategy,
        ignore_decode_warnings=not args.show_decoder_warnings,
    ).validate()


# === PIPELINE ===

def ensure_output_dirs(config, transforms):
    """Create one output folder per transform before anything is encoded."""
    dirs = []
    for transform in transforms:
        folder = config.output_dir / transform.folder
        folder.mkdir(parents=True, exist_ok=True)
        dirs.append(folder)
    return dirs


def run_pipeline(config):
    transforms = build_transforms(config.transforms, config.kernel_size,
                                  config.brightness, config.normalization)
    ensure_output_dirs(config, transforms)
    return BatchScheduler(config, transforms).run()


def print_summary(logger, config, report):
    print_both(logger, "=" * 60)
    print_both(logger, "BATCH TRANSFORM PIPELINE")
    print_both(logger, "=" * 60)
    print_both(logger, f"Input folder: {config.input_dir}")
    print_both(logger, f"Output folder: {config.output_dir}")
    print_both(logger, f"Transforms: {', '.join(config.transforms)}")
    print_both(logger, f"Strategy: {report.strategy} | Workers: {report.workers} | Batch size: {config.batch_size}")
    if "blur" in config.transforms:
        print_both(logger, f"Kernel: {config.kernel_size}x{config.kernel_size} ({config.normalization} normalization)")
    print_both(logger, f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    print_both(logger, "\n" + "-" * 60)
    print_both(logger, f"Images: {report.images_total} | Processed: {report.images_processed} | Skipped: {report.images_skipped}")
    print_both(logger, f"Outputs written: {report.outputs_written} | Outputs failed: {report.outputs_failed}")

    print_both(logger, "\n" + "-" * 60)
    for phase, seconds in report.timings.items():
        print_both(logger, f"Time Taken for {phase}: {seconds:.4f} seconds, and {seconds / 60.0:.2f} minutes")
    print_both(logger, f"Total Execution time: {report.total_time:.4f} seconds")
    print_both(logger, "=" * 60)


def export_report(report, output_dir):
    """Save per-item outcomes as CSV and the run summary as JSON."""
    csv_file = get_numbered_filename(os.path.join(output_dir, 'run_report.csv'), '.csv')
    with open(csv_file, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(['Index', 'Transform', 'Status', 'Path'])
        for o in report.outcomes:
            writer.writerow([o.index, o.transform, o.status, o.path])

    json_file = get_numbered_filename(os.path.join(output_dir, 'run_report.json'), '.json')
    json_data = {
        'timestamp': datetime.now().isoformat(),
        'strategy': report.strategy,
        'workers': report.workers,
        'cpu_cores': multiprocessing.cpu_count(),
        'images_total': report.images_total,
        'images_processed': report.images_processed,
        'images_skipped': report.images_skipped,
        'outputs_written': report.outputs_written,
        'outputs_failed': report.outputs_failed,
        'timings': report.timings,
        'total_time': report.total_time,
    }
    with open(json_file, 'w', encoding='utf-8') as f:
        json.dump(json_data, f, indent=2)
    return csv_file, json_file


def main(argv=None, read=input):
    args = build_argparser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    if not args.input_dir.is_dir():
        print(f"Input directory doesn't exist: {args.input_dir}")
        return EXIT_MISSING_INPUT

    try:
        config = config_from_args(args, read=read)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}")
        return EXIT_BAD_CONFIG

    if args.no_log_file:
        logger, log_file = DualLogger(), None
    else:
        logger, log_file = setup_logging(config.output_dir)

    try:
        report = run_pipeline(config)
    except (AllocationFailure, MemoryError) as exc:
        print_both(logger, f"Out of memory, aborting run: {exc}")
        logger.close()
        return EXIT_OUT_OF_MEMORY

    print_summary(logger, config, report)
    if args.export:
        csv_file, json_file = export_report(report, config.output_dir)
        print_both(logger, "\nResults saved to:")
        print_both(logger, f"  - {csv_file}")
        print_both(logger, f"  - {json_file}")
    logger.close()
    if log_file:
        print(f"\nLog saved to: {log_file}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
