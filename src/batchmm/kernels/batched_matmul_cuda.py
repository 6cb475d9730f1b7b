"""
CUDA batched GEMM kernel for numba.cuda.
Features:
- One thread (worker) per matrix, indexed from its position in a 1-D grid
- Workers share no state and never write outside their own C[i]
- Multi-block grid; grids beyond the device limit are split into chunks
  launched with a batch offset
"""

from numba import cuda

from batchmm.kernels.batch_buffer import flat_index

flat_index_device = cuda.jit(device=True)(flat_index)


@cuda.jit
def batched_matmul_kernel(A, B, C, order, batch_size, offset):
    """
    Compute C[i] = A[i] @ B[i] for the worker's batch index i.

    A, B and C are flat device buffers. Threads past the end of the batch
    exit without touching memory.
    """
    i = offset + cuda.grid(1)
    if i < batch_size:
        for row in range(order):
            for col in range(order):
                acc = 0
                for k in range(order):
                    acc += A[flat_index_device(i, row, k, order)] * B[flat_index_device(i, k, col, order)]
                C[flat_index_device(i, row, col, order)] = acc


def blocks_for(workers, threads_per_block):
    return (workers + threads_per_block - 1) // threads_per_block


def launch_chunks(batch_size, threads_per_block, max_grid_blocks):
    """
    Split a batch into kernel launches that respect the grid size limit.

    Args:
        batch_size: number of matrices (workers) to cover
        threads_per_block: workers per block
        max_grid_blocks: largest grid the device accepts along x

    Returns:
        List of (offset, blocks) tuples, one per launch
    """
    if threads_per_block < 1 or max_grid_blocks < 1:
        raise ValueError(
            f"Launch limits must be positive, got threads_per_block={threads_per_block}, "
            f"max_grid_blocks={max_grid_blocks}"
        )
    workers_per_launch = threads_per_block * max_grid_blocks
    chunks = []
    for offset in range(0, batch_size, workers_per_launch):
        workers = min(workers_per_launch, batch_size - offset)
        chunks.append((offset, blocks_for(workers, threads_per_block)))
    return chunks


def launch_batched_matmul(d_A, d_B, d_C, order, batch_size, threads_per_block, max_grid_blocks):
    """
    Enqueue the kernel over the whole batch without synchronizing.

    Returns:
        Number of kernel launches issued
    """
    chunks = launch_chunks(batch_size, threads_per_block, max_grid_blocks)
    for offset, blocks in chunks:
        batched_matmul_kernel[blocks, threads_per_block](d_A, d_B, d_C, order, batch_size, offset)
    return len(chunks)
