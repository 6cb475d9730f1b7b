"""
Flat host-resident storage for a batch of square matrices.

A batch of N matrices of order O lives in one contiguous 1-D int32 buffer.
Element (batch, row, col) sits at batch*O*O + row*O + col.
"""

import numpy as np

from batchmm.config import ELEMENT_DTYPE


def flat_index(batch, row, col, order):
    """Offset of element (row, col) of matrix `batch` in a flat buffer."""
    return batch * order * order + row * order + col


def matrix_elements(order):
    return order * order


def batch_elements(batch_size, order):
    return batch_size * order * order


def buffer_nbytes(batch_size, order):
    """Size in bytes of a flat batch buffer."""
    return batch_elements(batch_size, order) * np.dtype(ELEMENT_DTYPE).itemsize


def _check_shape(order, batch_size):
    if order < 1:
        raise ValueError(f"Matrix order must be positive, got {order}")
    if batch_size < 0:
        raise ValueError(f"Batch size must be non-negative, got {batch_size}")


def as_batch_buffer(data, order, batch_size):
    """
    Convert matrix data into a contiguous flat int32 batch buffer.

    Args:
        data: array-like, either flat (N*O*O,) or shaped (N, O, O)
        order: matrix order O
        batch_size: number of matrices N

    Returns:
        Flat contiguous numpy array of N*O*O int32 elements

    Raises:
        ValueError: if order/batch_size are invalid or the data has the
            wrong number of elements
    """
    _check_shape(order, batch_size)
    buffer = np.ascontiguousarray(data, dtype=ELEMENT_DTYPE).reshape(-1)
    expected = batch_elements(batch_size, order)
    if buffer.size != expected:
        raise ValueError(
            f"Buffer holds {buffer.size} elements, expected {expected} "
            f"({batch_size} matrices of order {order})"
        )
    return buffer


def empty_batch(batch_size, order):
    """Allocate an uninitialized flat batch buffer."""
    _check_shape(order, batch_size)
    return np.empty(batch_elements(batch_size, order), dtype=ELEMENT_DTYPE)


def as_matrices(buffer, order):
    """View a flat batch buffer as an (N, O, O) array without copying."""
    return np.asarray(buffer).reshape(-1, order, order)
