import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402

STRATEGY_COLORS = {
    'pixel': '#E63946',
    'flat': '#06FFA5',
    'sections': '#F4A261',
    'tasks': '#3498DB',
    'windowed': '#8E44AD',
}


def plot_benchmark(results, worker_counts, path):
    """Speedup, time and efficiency vs workers, one line per strategy."""
    fig, axes = plt.subplots(1, 3, figsize=(15, 5))

    # Speedup chart
    ax = axes[0]
    for s in results:
        spd = [results[s][w]['speedup'] for w in worker_counts]
        ax.plot(worker_counts, spd, label=s, color=STRATEGY_COLORS.get(s), marker='o')
    ax.plot(worker_counts, worker_counts, 'k:', label='Ideal')
    ax.set_xlabel('Workers')
    ax.set_ylabel('Speedup')
    ax.set_title('Speedup vs Workers')
    ax.legend()
    ax.grid(True, alpha=0.3)

    # Time chart
    ax = axes[1]
    for s in results:
        times = [results[s][w]['time'] for w in worker_counts]
        ax.plot(worker_counts, times, label=s, color=STRATEGY_COLORS.get(s), marker='o')
    ax.set_xlabel('Workers')
    ax.set_ylabel('Time (seconds)')
    ax.set_title('Execution Time vs Workers')
    ax.legend()
    ax.grid(True, alpha=0.3)

    # Efficiency chart
    ax = axes[2]
    for s in results:
        eff = [results[s][w]['efficiency'] for w in worker_counts]
        ax.plot(worker_counts, eff, label=s, color=STRATEGY_COLORS.get(s), marker='o')
    ax.axhline(y=1.0, color='k', linestyle=':', label='Ideal (100%)')
    ax.set_xlabel('Workers')
    ax.set_ylabel('Efficiency')
    ax.set_title('Parallel Efficiency vs Workers')
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.suptitle('Scheduling Strategy Benchmark', fontsize=14, fontweight='bold')
    plt.tight_layout()
    plt.savefig(path, dpi=150)
    plt.close(fig)
    return path
