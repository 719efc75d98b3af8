import argparse
import csv
import dataclasses
import json
import multiprocessing
import os
import sys
import time
from pathlib import Path

# Disable internal parallelization in NumPy to ensure fair benchmarking
os.environ.setdefault('OPENBLAS_NUM_THREADS', '1')
os.environ.setdefault('MKL_NUM_THREADS', '1')
os.environ.setdefault('NUMEXPR_MAX_THREADS', '1')
os.environ.setdefault('OMP_NUM_THREADS', '1')

from config import (DEFAULT_BATCH_SIZE, DEFAULT_KERNEL_SIZE, INPUT_DIR, OUTPUT_DIR,
                    STRATEGIES, PipelineConfig)
from filters import TRANSFORM_ORDER
from main import DualLogger, get_numbered_filename, print_both, run_pipeline

PARALLEL_STRATEGIES = tuple(s for s in STRATEGIES if s != 'sequential')


def default_worker_counts():
    counts = [1, 2, 4, 8]
    if multiprocessing.cpu_count() >= 16:
        counts.append(16)
    return counts


def run_benchmark(config, strategy, workers=1):
    """Run the whole pipeline once and return its wall time."""
    run_config = dataclasses.replace(config, strategy=strategy, workers=workers)
    start = time.time()
    report = run_pipeline(run_config)
    return time.time() - start, report


def record_result(results, strategy, workers, time_val, t_seq, logger):
    """Calculate and record performance metrics."""
    speedup = t_seq / time_val if time_val > 0 else 0
    efficiency = speedup / workers if workers > 0 else 0
    print_both(logger, f"  Time: {time_val:.4f}s | Speedup: {speedup:.2f}x | Efficiency: {efficiency:.2%}")
    results.setdefault(strategy, {})[workers] = {'time': time_val, 'speedup': speedup, 'efficiency': efficiency}


def amdahl_fraction(speedup, workers):
    """Parallelizable fraction p solving S(n) = 1 / ((1-p) + p/n), clamped to [0, 1]."""
    if speedup <= 0 or workers <= 1:
        return 0.0
    p = (workers * (speedup - 1)) / (speedup * (workers - 1))
    return max(0.0, min(1.0, p))


def analyze_amdahl(logger, strategy, results, worker_counts):
    """Perform Amdahl's Law analysis on benchmark results."""
    print_both(logger, f"\n{strategy}:")
    print_both(logger, "-" * 60)

    data = results[strategy]
    max_w = worker_counts[-1]
    max_speedup = data[max_w]['speedup']
    max_efficiency = data[max_w]['efficiency']

    print_both(logger, f"\nObserved at {max_w} workers:")
    print_both(logger, f"  Speedup: {max_speedup:.2f}x")
    print_both(logger, f"  Efficiency: {max_efficiency:.2%}")

    if max_w <= 1 or max_speedup <= 1:
        print_both(logger, "  (Single worker or no speedup)")
        return

    p = amdahl_fraction(max_speedup, max_w)
    serial_portion = 1 - p

    print_both(logger, "\nAmdahl's Law Decomposition:")
    print_both(logger, f"  Parallelizable portion (p): {p*100:.2f}%")
    print_both(logger, f"  Serial portion (1-p):       {serial_portion*100:.2f}%")

    if serial_portion > 0.001:
        print_both(logger, f"\nTheoretical Maximum Speedup: {1 / serial_portion:.2f}x")


def export_results(results, t_seq, output_dir):
    csv_file = get_numbered_filename(os.path.join(output_dir, 'benchmark_results.csv'), '.csv')
    with open(csv_file, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(['Strategy', 'Workers', 'Time', 'Speedup', 'Efficiency'])
        for s in results:
            for w, d in results[s].items():
                writer.writerow([s, w, f"{d['time']:.4f}", f"{d['speedup']:.4f}", f"{d['efficiency']:.4f}"])

    json_file = get_numbered_filename(os.path.join(output_dir, 'benchmark_results.json'), '.json')
    with open(json_file, 'w', encoding='utf-8') as f:
        json.dump({
            'cpu_count': multiprocessing.cpu_count(),
            'sequential_time': t_seq,
            'results': results
        }, f, indent=2)
    return csv_file, json_file


def build_argparser():
    p = argparse.ArgumentParser(description="Compare scheduling strategies across worker counts")
    p.add_argument("--input-dir", type=Path, default=Path(INPUT_DIR))
    p.add_argument("--output-dir", type=Path, default=Path(OUTPUT_DIR))
    p.add_argument("--count", type=int, default=None)
    p.add_argument("--transforms", nargs="+", choices=TRANSFORM_ORDER, default=list(TRANSFORM_ORDER))
    p.add_argument("--kernel-size", type=int, default=DEFAULT_KERNEL_SIZE)
    p.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE)
    p.add_argument("--strategies", nargs="+", choices=PARALLEL_STRATEGIES, default=list(PARALLEL_STRATEGIES))
    p.add_argument("--workers", type=int, nargs="+", default=None,
                   help="Worker counts to try (default: 1 2 4 8 [16])")
    p.add_argument("--no-chart", action="store_true")
    return p


def main(argv=None):
    args = build_argparser().parse_args(argv)
    if not args.input_dir.is_dir():
        print(f"Input directory doesn't exist: {args.input_dir}")
        return 1

    try:
        config = PipelineConfig(
            input_dir=args.input_dir,
            output_dir=args.output_dir,
            count=args.count,
            transforms=tuple(args.transforms),
            kernel_size=args.kernel_size,
            batch_size=args.batch_size,
            workers=1,
            strategy='sequential',
        ).validate()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}")
        return 2

    worker_counts = sorted(set(args.workers)) if args.workers else default_worker_counts()
    os.makedirs(config.output_dir, exist_ok=True)
    log_file = get_numbered_filename(os.path.join(config.output_dir, 'benchmark_output.txt'), '.txt')
    logger = DualLogger(log_file)

    num_imgs = len(config.indices())
    print_both(logger, "=" * 60)
    print_both(logger, "SCHEDULING STRATEGY BENCHMARK")
    print_both(logger, "=" * 60)
    print_both(logger, f"Images: {num_imgs} | CPU Cores: {multiprocessing.cpu_count()}")
    print_both(logger, f"Input: {config.input_dir} | Output: {config.output_dir}")
    print_both(logger, f"Transforms: {', '.join(config.transforms)}")

    # Step 1: Sequential Baseline
    print_both(logger, "\n" + "-" * 60)
    print_both(logger, "Step 1: Sequential Processing (Baseline)")
    print_both(logger, "-" * 60)
    t_seq, _ = run_benchmark(config, 'sequential')
    per_image = t_seq / num_imgs if num_imgs else 0.0
    print_both(logger, f"Total time: {t_seq:.4f}s | Avg per image: {per_image:.4f}s")

    # Step 2: Parallel strategies
    results = {}
    print_both(logger, "\n" + "-" * 60)
    print_both(logger, "Step 2: Parallel Strategy Benchmarks")
    print_both(logger, "-" * 60)
    for w in worker_counts:
        print_both(logger, f"\n{'='*40}")
        print_both(logger, f"Testing with {w} worker(s)")
        print_both(logger, f"{'='*40}")
        for strategy in args.strategies:
            print_both(logger, f"\n[{strategy}]...")
            t, _ = run_benchmark(config, strategy, w)
            record_result(results, strategy, w, t, t_seq, logger)

    # Step 3: Amdahl's Law Analysis
    print_both(logger, "\n" + "=" * 60)
    print_both(logger, "AMDAHL'S LAW ANALYSIS")
    print_both(logger, "=" * 60)
    for strategy in results:
        analyze_amdahl(logger, strategy, results, worker_counts)

    csv_file, json_file = export_results(results, t_seq, config.output_dir)
    print_both(logger, "\nResults saved to:")
    print_both(logger, f"  - {csv_file}")
    print_both(logger, f"  - {json_file}")

    if not args.no_chart:
        from charts import plot_benchmark
        chart_path = get_numbered_filename(
            os.path.join(config.output_dir, 'performance_strategies.png'), '.png')
        plot_benchmark(results, worker_counts, chart_path)
        print_both(logger, f"  - {chart_path}")

    print_both(logger, "\n" + "=" * 60)
    print_both(logger, "BENCHMARK COMPLETE")
    print_both(logger, "=" * 60)
    logger.close()
    print(f"\nLog saved to: {log_file}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
