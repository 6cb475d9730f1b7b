import numpy as np
import pytest

from batchmm.kernels.batch_buffer import (
    as_batch_buffer,
    as_matrices,
    batch_elements,
    buffer_nbytes,
    empty_batch,
    flat_index,
    matrix_elements,
)


def test_flat_index_is_row_major_per_matrix():
    order = 3
    assert flat_index(0, 0, 0, order) == 0
    assert flat_index(0, 0, 2, order) == 2
    assert flat_index(0, 1, 0, order) == 3
    assert flat_index(1, 0, 0, order) == 9
    assert flat_index(4, 2, 1, order) == 4 * 9 + 2 * 3 + 1


def test_flat_index_matches_numpy_layout():
    order, batch_size = 4, 5
    buffer = np.arange(batch_elements(batch_size, order))
    matrices = as_matrices(buffer, order)
    for i in range(batch_size):
        for row in range(order):
            for col in range(order):
                assert buffer[flat_index(i, row, col, order)] == matrices[i, row, col]


def test_sizes():
    assert matrix_elements(3) == 9
    assert batch_elements(1024, 3) == 9216
    assert buffer_nbytes(1024, 3) == 9216 * 4
    assert buffer_nbytes(0, 3) == 0


def test_as_batch_buffer_flattens_shaped_input():
    data = [[[1, 2], [3, 4]], [[5, 6], [7, 8]]]
    buffer = as_batch_buffer(data, order=2, batch_size=2)
    assert buffer.dtype == np.int32
    assert buffer.ndim == 1
    assert buffer.flags["C_CONTIGUOUS"]
    np.testing.assert_array_equal(buffer, np.arange(1, 9))


def test_as_batch_buffer_copies_non_contiguous_input():
    data = np.arange(32, dtype=np.int32)[::2]
    buffer = as_batch_buffer(data, order=2, batch_size=4)
    assert buffer.flags["C_CONTIGUOUS"]
    np.testing.assert_array_equal(buffer, data)


@pytest.mark.parametrize("order, batch_size, size", [
    (3, 2, 17),
    (3, 2, 19),
    (2, 0, 1),
])
def test_as_batch_buffer_rejects_wrong_length(order, batch_size, size):
    with pytest.raises(ValueError, match="expected"):
        as_batch_buffer(np.zeros(size), order, batch_size)


def test_as_batch_buffer_rejects_bad_shape_parameters():
    with pytest.raises(ValueError, match="order"):
        as_batch_buffer([], order=0, batch_size=0)
    with pytest.raises(ValueError, match="Batch size"):
        as_batch_buffer([], order=2, batch_size=-1)


def test_empty_batch():
    buffer = empty_batch(16, 3)
    assert buffer.shape == (144,)
    assert buffer.dtype == np.int32
    assert empty_batch(0, 3).size == 0


def test_as_matrices_is_a_view():
    buffer = np.zeros(8, dtype=np.int32)
    matrices = as_matrices(buffer, 2)
    matrices[1, 0, 1] = 7
    assert buffer[flat_index(1, 0, 1, 2)] == 7
