"""
Benchmark script for batched small-matrix multiply.
Tests baseline, NumPy, host Numba and the offload pipeline on each backend.
"""

import sys
import os
import time
from pathlib import Path

# Set thread limits BEFORE importing NumPy to prevent BLAS thread contention
os.environ["OMP_NUM_THREADS"] = "1"
os.environ["MKL_NUM_THREADS"] = "1"
os.environ["OPENBLAS_NUM_THREADS"] = "1"
os.environ["NUMEXPR_NUM_THREADS"] = "1"

import numpy as np
import pandas as pd
from numba import cuda

# Make the package importable when run from a source checkout
src_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(src_root))

from batchmm.host_io import generate_batch
from batchmm.kernels.batch_buffer import buffer_nbytes
from batchmm.kernels.batched_matmul_baseline import batched_matmul_baseline
from batchmm.kernels.batched_matmul_numba import batched_matmul_numba
from batchmm.kernels.batched_matmul_numpy import batched_matmul_numpy
from batchmm.offload.backends import CudaBackend, HostBackend
from batchmm.offload.orchestrator import OffloadOrchestrator


def summarize_times(times, ops):
    """Latency percentiles (ms) and throughput (GOPS) from per-run seconds."""
    times = np.array(times)
    return {
        'latency_ms': np.median(times) * 1000,
        'latency_p50_ms': np.percentile(times, 50) * 1000,
        'latency_p95_ms': np.percentile(times, 95) * 1000,
        'latency_p99_ms': np.percentile(times, 99) * 1000,
        'throughput_gops': (ops / 1e9) / np.median(times),
    }


def time_runs(fn, num_warmup, num_runs):
    """Run fn num_warmup times untimed, then num_runs times timed."""
    for _ in range(num_warmup):
        result = fn()
    times = []
    for _ in range(num_runs):
        t_start = time.perf_counter()
        result = fn()
        t_end = time.perf_counter()
        times.append(t_end - t_start)
    return result, times


def benchmark_batched_matmul(configs, num_warmup=3, num_runs=10, threads_per_block=256):
    """
    Benchmark batched matmul kernels.

    Args:
        configs: List of tuples (order, batch_size)
        num_warmup: Number of warmup runs (covers JIT compilation)
        num_runs: Number of timed runs
        threads_per_block: CUDA workers per block for the offload runs

    Returns:
        DataFrame with benchmark results
    """
    results = []

    backends = [HostBackend()]
    if cuda.is_available():
        backends.append(CudaBackend())
    else:
        print("No CUDA device detected, offload runs use the host backend only")

    for order, batch_size in configs:
        print(f"\nBenchmarking batched GEMM: order={order}, batch_size={batch_size}")

        A = generate_batch(batch_size, order, seed=42)
        B = generate_batch(batch_size, order)
        C_ref = batched_matmul_numpy(A, B, order, batch_size)

        # Multiply-adds per matrix: order^3, counted as 2 ops each
        ops = 2 * order ** 3 * batch_size
        bytes_moved = 3 * buffer_nbytes(batch_size, order)
        base = {'order': order, 'batch_size': batch_size, 'ops': ops, 'bytes_moved': bytes_moved}

        # 1. Baseline (pure Python)
        print("  Testing baseline (pure Python)...")
        try:
            if ops < 1e6:
                C, times = time_runs(
                    lambda: batched_matmul_baseline(A, B, order, batch_size), 1, max(3, num_runs // 3)
                )
                assert np.array_equal(C, C_ref), "Baseline correctness check failed"
                results.append({'kernel': 'baseline', **base, **summarize_times(times, ops)})
            else:
                print("    Skipping baseline (problem too large)")
        except Exception as e:
            print(f"    Error: {e}")

        # 2. NumPy
        print("  Testing NumPy (vectorized)...")
        try:
            C, times = time_runs(lambda: batched_matmul_numpy(A, B, order, batch_size), num_warmup, num_runs)
            assert np.array_equal(C, C_ref), "NumPy correctness check failed"
            results.append({'kernel': 'numpy', **base, **summarize_times(times, ops)})
        except Exception as e:
            print(f"    Error: {e}")

        # 3. Numba on the host
        print("  Testing Numba (host prange)...")
        try:
            C, times = time_runs(lambda: batched_matmul_numba(A, B, order, batch_size), num_warmup, num_runs)
            assert np.array_equal(C, C_ref), "Numba correctness check failed"
            results.append({'kernel': 'numba', **base, **summarize_times(times, ops)})
        except Exception as e:
            print(f"    Error: {e}")

        # 4. Full offload pipeline, per backend
        for backend in backends:
            print(f"  Testing offload pipeline ({backend.name})...")
            try:
                orchestrator = OffloadOrchestrator(backend=backend, threads_per_block=threads_per_block)
                step_times = []

                def offload():
                    C = orchestrator.run(A, B, order, batch_size)
                    step_times.append(dict(orchestrator.timings))
                    return C

                C, times = time_runs(offload, num_warmup, num_runs)
                if not np.array_equal(C, C_ref):
                    mismatched = np.count_nonzero(C != C_ref)
                    raise AssertionError(f"Offload correctness check failed: {mismatched} mismatched elements")

                # Per-step medians over the timed runs only
                step_frame = pd.DataFrame(step_times[num_warmup:])
                step_medians = {f'{name}_ms': step_frame[name].median() for name in step_frame.columns}
                results.append({
                    'kernel': f'offload_{backend.name}',
                    **base,
                    'threads_per_block': threads_per_block,
                    **summarize_times(times, ops),
                    **step_medians,
                })
            except Exception as e:
                print(f"    Error: {e}")

    return pd.DataFrame(results)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description='Benchmark batched GEMM kernels')
    parser.add_argument('--threads-per-block', type=int, default=256,
                        help='CUDA workers per block for offload runs')
    parser.add_argument('--runs', type=int, default=10, help='Timed runs per kernel')
    args = parser.parse_args()

    # Benchmark configurations
    # Format: (order, batch_size)
    configs = [
        (3, 1024),     # Reference configuration
        (3, 16384),
        (3, 262144),
        (8, 1024),
        (8, 65536),
        (16, 16384),
    ]

    print("=" * 60)
    print("Batched GEMM Benchmark Suite")
    print("=" * 60)

    df = benchmark_batched_matmul(configs, num_warmup=3, num_runs=args.runs,
                                  threads_per_block=args.threads_per_block)

    # Save results
    output_dir = Path(__file__).parent.parent.parent.parent / "results"
    output_dir.mkdir(exist_ok=True)
    output_path = output_dir / "batched_matmul_results.csv"
    df.to_csv(output_path, index=False)
    print(f"\nResults saved to: {output_path}")

    # Print summary
    print("\n" + "=" * 60)
    print("Summary")
    print("=" * 60)
    print(df.to_string(index=False))
