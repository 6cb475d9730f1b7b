"""
Baseline batched GEMM using pure Python loops.
Intentionally slow; serves as the host-side oracle for the offload kernels.
"""

import numpy as np

from batchmm.config import ELEMENT_DTYPE
from batchmm.kernels.batch_buffer import as_batch_buffer, flat_index


def batched_matmul_baseline(A, B, order, batch_size):
    """
    Compute C[i] = A[i] @ B[i] for every matrix in a flat batch.

    Accumulates in Python integers and wraps to int32 on store, matching
    the fixed-width arithmetic of the device kernel.

    Args:
        A: flat buffer of batch_size*order*order integers
        B: flat buffer of batch_size*order*order integers
        order: matrix order
        batch_size: number of matrices

    Returns:
        C: flat int32 numpy array of batch_size*order*order elements
    """
    A = as_batch_buffer(A, order, batch_size)
    B = as_batch_buffer(B, order, batch_size)

    C = np.zeros(A.size, dtype=np.int64)

    # Quadruple nested loop - intentionally slow
    for i in range(batch_size):
        for row in range(order):
            for col in range(order):
                accumulator = 0
                for k in range(order):
                    accumulator += int(A[flat_index(i, row, k, order)]) * int(
                        B[flat_index(i, k, col, order)]
                    )
                C[flat_index(i, row, col, order)] = accumulator

    return C.astype(ELEMENT_DTYPE)


def verify_correctness(A, B, C_result, order, batch_size):
    """Verify that C_result matches the batched product of A and B exactly."""
    C_ref = batched_matmul_baseline(A, B, order, batch_size)
    return np.array_equal(np.asarray(C_result).reshape(-1), C_ref)


if __name__ == "__main__":
    # Test with a small batch
    np.random.seed(42)
    order, batch_size = 3, 64
    A = np.random.randint(1, 201, size=batch_size * order * order).astype(np.int32)
    B = np.random.randint(1, 201, size=batch_size * order * order).astype(np.int32)

    print("Running baseline batched matmul...")
    C = batched_matmul_baseline(A, B, order, batch_size)

    expected = np.matmul(
        A.reshape(batch_size, order, order).astype(np.int64),
        B.reshape(batch_size, order, order).astype(np.int64),
    ).astype(np.int32).reshape(-1)
    if np.array_equal(C, expected):
        print("Correctness check passed!")
    else:
        print("Correctness check failed!")
