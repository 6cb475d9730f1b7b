"""
Profiling script for the batched matmul oracle and the host offload pipeline.
Uses cProfile to show where host-side time goes.
"""

import sys
import cProfile
import pstats
from pathlib import Path

# Make the package importable when run from a source checkout
src_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(src_root))

from batchmm.host_io import generate_batch
from batchmm.kernels.batched_matmul_baseline import batched_matmul_baseline
from batchmm.offload.backends import HostBackend
from batchmm.offload.orchestrator import OffloadOrchestrator


def print_top(profiler, limit=10):
    stats = pstats.Stats(profiler)
    stats.sort_stats('cumulative')
    print(f"\nTop {limit} functions by cumulative time:")
    stats.print_stats(limit)
    return stats


def profile_baseline():
    """Profile the pure-Python batched matmul."""
    print("Profiling baseline batched matmul...")
    order, batch_size = 3, 1024
    A = generate_batch(batch_size, order, seed=42)
    B = generate_batch(batch_size, order)

    profiler = cProfile.Profile()
    profiler.enable()
    C = batched_matmul_baseline(A, B, order, batch_size)
    profiler.disable()

    return print_top(profiler)


def profile_host_offload():
    """Profile the offload pipeline on the host backend, JIT warmup excluded."""
    print("\nProfiling host offload pipeline...")
    order, batch_size = 3, 1024
    A = generate_batch(batch_size, order, seed=42)
    B = generate_batch(batch_size, order)

    orchestrator = OffloadOrchestrator(backend=HostBackend())
    # Warmup (JIT compilation)
    orchestrator.run(A, B, order, batch_size)

    profiler = cProfile.Profile()
    profiler.enable()
    for _ in range(100):
        C = orchestrator.run(A, B, order, batch_size)
    profiler.disable()

    return print_top(profiler, limit=15)


if __name__ == "__main__":
    print("=" * 60)
    print("Batched Matmul Profiling")
    print("=" * 60)

    profile_baseline()
    profile_host_offload()

    print("\n" + "=" * 60)
    print("Profiling complete!")
    print("=" * 60)
