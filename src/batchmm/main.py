"""
Generate two random batches, multiply them on the accelerator and print
the first few products.
Usage: batchmm --order 3 --batch-size 1024 --backend auto --verify
"""

import argparse
import sys
import time

import numpy as np

from batchmm.config import (
    BACKEND_NAMES,
    DEFAULT_THREADS_PER_BLOCK,
    REFERENCE_BATCH_SIZE,
    REFERENCE_ORDER,
)
from batchmm.host_io import generate_batch, print_products
from batchmm.kernels.batched_matmul_numpy import batched_matmul_numpy
from batchmm.offload.backends import get_backend
from batchmm.offload.errors import DeviceError
from batchmm.offload.orchestrator import OffloadOrchestrator


def build_parser():
    parser = argparse.ArgumentParser(description="Batched small-matrix multiply offload")
    parser.add_argument("--order", type=int, default=REFERENCE_ORDER,
                        help="Order of every square matrix")
    parser.add_argument("--batch-size", type=int, default=REFERENCE_BATCH_SIZE,
                        help="Number of matrix pairs")
    parser.add_argument("--backend", choices=BACKEND_NAMES, default=None,
                        help="Device backend (default: $BATCHMM_BACKEND or auto)")
    parser.add_argument("--threads-per-block", type=int, default=DEFAULT_THREADS_PER_BLOCK,
                        help="Workers per block, capped by the device")
    parser.add_argument("--seed", type=int, default=42,
                        help="Seed for input generation")
    parser.add_argument("--show", type=int, default=4,
                        help="Number of products to print")
    parser.add_argument("--verify", action="store_true",
                        help="Check every product against the NumPy reference")
    parser.add_argument("--verbose", action="store_true",
                        help="Print pipeline state transitions and timings")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        backend = get_backend(args.backend)
    except ValueError as e:
        parser.error(str(e))

    print("=" * 60)
    print("Batched Matrix Multiply Offload")
    print("=" * 60)
    print(f"Backend: {backend.name}, order={args.order}, batch_size={args.batch_size}")

    A = generate_batch(args.batch_size, args.order, seed=args.seed)
    B = generate_batch(args.batch_size, args.order)

    orchestrator = OffloadOrchestrator(
        backend=backend,
        threads_per_block=args.threads_per_block,
        verbose=args.verbose,
    )
    t_start = time.perf_counter()
    try:
        C = orchestrator.run(A, B, args.order, args.batch_size)
    except DeviceError as e:
        print(f"Offload failed: {type(e).__name__}: {e}")
        return 1
    t_end = time.perf_counter()
    print(f"Offload completed in {(t_end - t_start) * 1000:.3f} ms")

    if args.show > 0:
        print()
        print_products(A, B, C, args.order, limit=args.show)

    if args.verify:
        C_ref = batched_matmul_numpy(A, B, args.order, args.batch_size)
        if np.array_equal(C, C_ref):
            print("Correctness check passed!")
        else:
            mismatched = np.count_nonzero(C != C_ref)
            print(f"Correctness check failed! {mismatched} mismatched elements")
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
