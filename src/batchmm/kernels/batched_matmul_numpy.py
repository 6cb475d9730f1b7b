"""
NumPy vectorized batched GEMM.
Uses np.matmul broadcasting over the batch dimension.
"""

import numpy as np

from batchmm.config import ELEMENT_DTYPE
from batchmm.kernels.batch_buffer import as_batch_buffer, as_matrices


def batched_matmul_numpy(A, B, order, batch_size):
    """
    Compute C[i] = A[i] @ B[i] using NumPy vectorization.

    Args:
        A: flat buffer of batch_size*order*order integers
        B: flat buffer of batch_size*order*order integers
        order: matrix order
        batch_size: number of matrices

    Returns:
        C: flat int32 numpy array, wrapped from an int64 product
    """
    A = as_matrices(as_batch_buffer(A, order, batch_size), order)
    B = as_matrices(as_batch_buffer(B, order, batch_size), order)
    C = np.matmul(A.astype(np.int64), B.astype(np.int64))
    return C.astype(ELEMENT_DTYPE).reshape(-1)


def verify_correctness(A, B, C_result, order, batch_size):
    """Verify that C_result matches the NumPy batched product exactly."""
    C_ref = batched_matmul_numpy(A, B, order, batch_size)
    return np.array_equal(np.asarray(C_result).reshape(-1), C_ref)


if __name__ == "__main__":
    np.random.seed(42)
    order, batch_size = 3, 1024
    A = np.random.randint(1, 201, size=batch_size * order * order).astype(np.int32)
    B = np.random.randint(1, 201, size=batch_size * order * order).astype(np.int32)

    print("Running NumPy batched matmul...")
    C = batched_matmul_numpy(A, B, order, batch_size)
    print(f"Result shape: {C.shape}, first matrix:\n{C[:order * order].reshape(order, order)}")
