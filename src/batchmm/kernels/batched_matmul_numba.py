"""
Numba JIT batched GEMM on the host.
Features:
- One prange iteration per matrix, mirroring one CUDA worker per matrix
- Each iteration touches only its own A[i], B[i], C[i] slices
- Naive triple loop; matrices are tiny so tiling buys nothing
"""

import numpy as np
from numba import njit, prange

from batchmm.config import ELEMENT_DTYPE
from batchmm.kernels.batch_buffer import as_batch_buffer, flat_index

flat_index_host = njit(cache=True)(flat_index)


@njit(cache=True)
def multiply_pair(A, B, C, i, order):
    """Write A[i] @ B[i] into C[i] for flat batch buffers."""
    for row in range(order):
        for col in range(order):
            acc = 0
            for k in range(order):
                acc += A[flat_index_host(i, row, k, order)] * B[flat_index_host(i, k, col, order)]
            C[flat_index_host(i, row, col, order)] = acc


@njit(parallel=True, cache=True)
def batched_matmul_numba_into(A, B, C, order, batch_size):
    """
    Compute C[i] = A[i] @ B[i] in place for i in [0, batch_size).

    Iterations are independent; the int32 store into C wraps on overflow.
    """
    for i in prange(batch_size):
        multiply_pair(A, B, C, i, order)


def batched_matmul_numba(A, B, order, batch_size):
    """
    Allocate a result buffer and run the parallel host kernel.

    Args:
        A: flat buffer of batch_size*order*order integers
        B: flat buffer of batch_size*order*order integers
        order: matrix order
        batch_size: number of matrices

    Returns:
        C: flat int32 numpy array
    """
    A = as_batch_buffer(A, order, batch_size)
    B = as_batch_buffer(B, order, batch_size)
    C = np.zeros_like(A, dtype=ELEMENT_DTYPE)
    if batch_size:
        batched_matmul_numba_into(A, B, C, order, batch_size)
    return C


if __name__ == "__main__":
    np.random.seed(42)
    order, batch_size = 3, 1024
    A = np.random.randint(1, 201, size=batch_size * order * order).astype(np.int32)
    B = np.random.randint(1, 201, size=batch_size * order * order).astype(np.int32)

    print("Running Numba batched matmul...")
    # Warmup
    _ = batched_matmul_numba(A, B, order, batch_size)

    C = batched_matmul_numba(A, B, order, batch_size)

    expected = np.matmul(
        A.reshape(batch_size, order, order), B.reshape(batch_size, order, order)
    ).reshape(-1)
    if np.array_equal(C, expected):
        print("Correctness check passed!")
    else:
        print("Correctness check failed!")
        print(f"Mismatched elements: {np.count_nonzero(C != expected)}")
