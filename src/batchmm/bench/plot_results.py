"""
Utility script to plot batched GEMM benchmark results from CSV.
Usage: python src/batchmm/bench/plot_results.py
"""

import pandas as pd
import matplotlib.pyplot as plt
from pathlib import Path

results_dir = Path(__file__).parent.parent.parent.parent / "results"
plots_dir = results_dir / "plots"

# Columns written by bench_batched_matmul for each offload step
STEP_COLUMNS = [
    ('upload_a_ms', 'Upload A'),
    ('upload_b_ms', 'Upload B'),
    ('dispatch_ms', 'Dispatch'),
    ('synchronize_ms', 'Synchronize'),
    ('download_ms', 'Download'),
    ('release_all_ms', 'Release'),
]


def plot_kernel_comparison(df):
    """Latency and throughput per kernel against batch size, one figure per order."""
    for order, order_data in df.groupby('order'):
        fig, axes = plt.subplots(1, 2, figsize=(14, 5))

        for kernel, kernel_data in order_data.groupby('kernel'):
            kernel_data = kernel_data.sort_values('batch_size')
            axes[0].loglog(kernel_data['batch_size'], kernel_data['latency_ms'], 'o-', label=kernel)
            axes[1].semilogx(kernel_data['batch_size'], kernel_data['throughput_gops'], 'o-', label=kernel)

        axes[0].set_xlabel('Batch Size (matrices)')
        axes[0].set_ylabel('Latency (ms)')
        axes[0].set_title(f'Batched GEMM Latency (order={order})')
        axes[0].legend()
        axes[0].grid(True, alpha=0.3)

        axes[1].set_xlabel('Batch Size (matrices)')
        axes[1].set_ylabel('Throughput (GOPS)')
        axes[1].set_title(f'Batched GEMM Throughput (order={order})')
        axes[1].legend()
        axes[1].grid(True, alpha=0.3)

        plt.tight_layout()
        output_path = plots_dir / f"batched_matmul_order{order}.png"
        plt.savefig(output_path, dpi=150)
        print(f"Saved plot: {output_path}")
        plt.close()


def plot_offload_breakdown(df):
    """Stacked per-step time of the offload pipeline for each configuration."""
    offload = df[df['kernel'].str.startswith('offload_')]
    columns = [(col, label) for col, label in STEP_COLUMNS if col in offload.columns]
    if offload.empty or not columns:
        print("No offload step timings found, skipping breakdown plot")
        return

    labels = [f"{row.kernel}\nO={row.order} N={row.batch_size}" for row in offload.itertuples()]
    fig, ax = plt.subplots(figsize=(max(8, len(labels) * 1.2), 5))
    bottom = pd.Series(0.0, index=offload.index)
    for col, label in columns:
        values = offload[col].fillna(0.0)
        ax.bar(range(len(labels)), values, bottom=bottom, label=label)
        bottom = bottom + values

    ax.set_xticks(range(len(labels)))
    ax.set_xticklabels(labels, rotation=45, ha='right', fontsize=8)
    ax.set_ylabel('Time (ms)')
    ax.set_title('Offload Pipeline Breakdown')
    ax.legend()
    ax.grid(True, axis='y', alpha=0.3)

    plt.tight_layout()
    output_path = plots_dir / "offload_breakdown.png"
    plt.savefig(output_path, dpi=150)
    print(f"Saved plot: {output_path}")
    plt.close()


def plot_batched_matmul_results():
    """Plot batched GEMM benchmark results."""
    csv_path = results_dir / "batched_matmul_results.csv"
    if not csv_path.exists():
        print(f"Results file not found: {csv_path}")
        return

    df = pd.read_csv(csv_path)
    plot_kernel_comparison(df)
    plot_offload_breakdown(df)


if __name__ == "__main__":
    plots_dir.mkdir(parents=True, exist_ok=True)

    print("Generating plots from benchmark results...")
    plot_batched_matmul_results()
    print("Plot generation complete!")
