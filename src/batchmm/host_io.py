"""
Host-side producers and consumers of flat batch buffers:
random input generation and console formatting of products.
"""

import numpy as np

from batchmm.config import ELEMENT_DTYPE, VALUE_HIGH, VALUE_LOW
from batchmm.kernels.batch_buffer import as_matrices, batch_elements


def generate_batch(batch_size, order, low=VALUE_LOW, high=VALUE_HIGH, seed=None):
    """
    Random flat batch buffer with entries drawn uniformly from [low, high].

    Args:
        batch_size: number of matrices
        order: matrix order
        low, high: inclusive value bounds
        seed: optional seed for NumPy's global RNG

    Returns:
        Flat contiguous int32 array of batch_size*order*order elements
    """
    if low > high:
        raise ValueError(f"Empty value range [{low}, {high}]")
    if seed is not None:
        np.random.seed(seed)
    values = np.random.randint(low, high + 1, size=batch_elements(batch_size, order))
    return np.ascontiguousarray(values, dtype=ELEMENT_DTYPE)


def identity_batch(batch_size, order):
    """Flat batch buffer holding `batch_size` identity matrices."""
    eye = np.eye(order, dtype=ELEMENT_DTYPE)
    return np.ascontiguousarray(np.broadcast_to(eye, (batch_size, order, order))).reshape(-1)


def format_matrix(buffer, index, order):
    """Render matrix `index` of a flat batch as right-aligned rows."""
    matrix = as_matrices(buffer, order)[index]
    width = max(len(str(v)) for v in matrix.flat)
    return "\n".join(" ".join(str(v).rjust(width) for v in row) for row in matrix)


def format_products(A, B, C, order, limit=None):
    """
    Render `A[i] x B[i] = C[i]` blocks for the first `limit` matrices.

    Returns:
        Multi-line string; empty for an empty batch
    """
    count = as_matrices(C, order).shape[0]
    if limit is not None:
        count = min(count, limit)

    blocks = []
    for i in range(count):
        blocks.append(
            f"[{i}] A:\n{format_matrix(A, i, order)}\n"
            f"[{i}] B:\n{format_matrix(B, i, order)}\n"
            f"[{i}] C = A x B:\n{format_matrix(C, i, order)}"
        )
    return "\n\n".join(blocks)


def print_products(A, B, C, order, limit=None):
    text = format_products(A, B, C, order, limit=limit)
    if text:
        print(text)
