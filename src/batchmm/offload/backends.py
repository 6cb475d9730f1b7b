"""
Device backends for the offload pipeline.

A backend owns the accelerator-specific calls: device selection, raw buffer
allocation, host<->device copies, kernel dispatch and the completion
barrier. Native driver exceptions are translated into the DeviceError
taxonomy here; the orchestrator tags them with the failing step.
"""

import numpy as np
from numba import cuda
from numba.core.errors import NumbaError
from numba.cuda.cudadrv.driver import CudaAPIError
from numba.cuda.cudadrv.error import CudaSupportError

from batchmm.config import BACKEND_NAMES, ELEMENT_DTYPE, default_backend_name
from batchmm.kernels.batched_matmul_cuda import launch_batched_matmul
from batchmm.kernels.batched_matmul_numba import batched_matmul_numba_into
from batchmm.offload.errors import (
    AllocationError,
    DeviceSelectionError,
    SynchronizationError,
    TeardownError,
    TransferError,
)

CUDA_ERRORS = (CudaAPIError, CudaSupportError)

# Used when the device does not report an attribute (e.g. the simulator)
DEFAULT_LIMITS = {
    "MAX_THREADS_PER_BLOCK": 1024,
    "MAX_GRID_DIM_X": 2**31 - 1,
}


def query_device_limits(device):
    """
    Read launch limits from a numba CUDA device.

    Returns the defaults for any attribute the device cannot report.
    """
    limits = dict(DEFAULT_LIMITS)
    for name in limits:
        value = getattr(device, name, None)
        if value:
            limits[name] = int(value)
    return limits


def _elements(nbytes):
    itemsize = np.dtype(ELEMENT_DTYPE).itemsize
    if nbytes % itemsize:
        raise ValueError(f"{nbytes} bytes is not a whole number of {itemsize}-byte elements")
    return nbytes // itemsize


class CudaBackend:
    """Offload through numba.cuda; also runs under NUMBA_ENABLE_CUDASIM=1."""

    name = "cuda"

    def __init__(self):
        self.device = None
        self.limits = dict(DEFAULT_LIMITS)
        self._context = None

    def select_device(self, device_id=0):
        if not cuda.is_available():
            raise DeviceSelectionError(f"No usable CUDA device: {cuda.cuda_error()}")
        try:
            cuda.select_device(device_id)
            self._context = cuda.current_context()
        except CUDA_ERRORS as e:
            raise DeviceSelectionError(f"Could not select CUDA device {device_id}: {e}", cause=e) from e
        self.device = self._context.device
        self.limits = query_device_limits(self.device)
        return self.device

    def max_threads_per_block(self):
        return self.limits["MAX_THREADS_PER_BLOCK"]

    def max_grid_blocks(self):
        return self.limits["MAX_GRID_DIM_X"]

    def allocate(self, nbytes):
        try:
            return cuda.device_array(_elements(nbytes), dtype=ELEMENT_DTYPE)
        except CUDA_ERRORS as e:
            raise AllocationError(f"cudaMalloc of {nbytes} bytes failed: {e}", cause=e) from e

    def release(self, handle):
        # free() queues cuMemFree on the context even while other references
        # to the array survive; teardown() flushes the queue.
        gpu_data = getattr(handle, "gpu_data", None)
        if gpu_data is None:
            # Simulator arrays wrap host memory
            return
        try:
            gpu_data.free()
        except CUDA_ERRORS + (RuntimeError,) as e:
            raise TeardownError(f"Could not free device buffer: {e}", cause=e) from e

    def upload(self, host, handle):
        try:
            handle.copy_to_device(host)
        except CUDA_ERRORS as e:
            raise TransferError(f"Host to device copy failed: {e}", cause=e) from e

    def download(self, handle, host):
        try:
            handle.copy_to_host(host)
        except CUDA_ERRORS as e:
            raise TransferError(f"Device to host copy failed: {e}", cause=e) from e

    def dispatch(self, d_A, d_B, d_C, order, batch_size, threads_per_block):
        try:
            return launch_batched_matmul(
                d_A, d_B, d_C, order, batch_size, threads_per_block, self.max_grid_blocks()
            )
        except CUDA_ERRORS + (NumbaError,) as e:
            raise SynchronizationError(f"Kernel launch failed: {e}", cause=e) from e

    def synchronize(self):
        try:
            cuda.synchronize()
        except CUDA_ERRORS as e:
            raise SynchronizationError(f"Device faulted during compute: {e}", cause=e) from e

    def teardown(self):
        context, self._context = self._context, None
        self.device = None
        # The simulator context keeps no deallocation queue
        deallocations = getattr(context, "deallocations", None)
        if deallocations is None:
            return
        try:
            deallocations.clear()
        except CUDA_ERRORS as e:
            raise TeardownError(f"Could not free device memory: {e}", cause=e) from e


class HostBackend:
    """
    Host memory standing in for device memory.

    Dispatch runs the prange kernel, one iteration per matrix. Used on
    machines without a GPU and as the base for test doubles.
    """

    name = "host"

    def __init__(self):
        self.device = None
        self.limits = dict(DEFAULT_LIMITS)

    def select_device(self, device_id=0):
        if device_id != 0:
            raise DeviceSelectionError(f"Host backend has a single device, got id {device_id}")
        self.device = "host"
        return self.device

    def max_threads_per_block(self):
        return self.limits["MAX_THREADS_PER_BLOCK"]

    def max_grid_blocks(self):
        return self.limits["MAX_GRID_DIM_X"]

    def allocate(self, nbytes):
        try:
            return np.empty(_elements(nbytes), dtype=ELEMENT_DTYPE)
        except MemoryError as e:
            raise AllocationError(f"Host allocation of {nbytes} bytes failed", cause=e) from e

    def release(self, handle):
        pass

    def upload(self, host, handle):
        np.copyto(handle, host)

    def download(self, handle, host):
        np.copyto(host, handle)

    def dispatch(self, d_A, d_B, d_C, order, batch_size, threads_per_block):
        batched_matmul_numba_into(d_A, d_B, d_C, order, batch_size)
        return 1

    def synchronize(self):
        # prange loops have joined by the time dispatch returns
        pass

    def teardown(self):
        self.device = None


def get_backend(name=None):
    """
    Build a backend by name.

    Args:
        name: 'cuda', 'host' or 'auto' (CUDA when available, else host).
            Defaults to BATCHMM_BACKEND from the environment.

    Raises:
        ValueError: for an unknown name
    """
    if name is None:
        name = default_backend_name()
    if name not in BACKEND_NAMES:
        raise ValueError(f"Unknown backend {name!r}, expected one of {BACKEND_NAMES}")
    if name == "auto":
        name = "cuda" if cuda.is_available() else "host"
    if name == "cuda":
        return CudaBackend()
    return HostBackend()
