import os

# Must be set before numba is first imported
os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

import numpy as np
import pytest

from batchmm.offload.backends import HostBackend
from batchmm.offload.errors import (
    AllocationError,
    DeviceSelectionError,
    SynchronizationError,
    TeardownError,
    TransferError,
)

ALLOCATION_STEPS = ("allocate_a", "allocate_b", "allocate_dest")
UPLOAD_STEPS = ("upload_a", "upload_b")


class TrackingBackend(HostBackend):
    """
    HostBackend that records every live allocation and raises an injected
    error at the named step ('allocate_b', 'dispatch', 'release', ...).
    """

    def __init__(self, fail_at=None):
        super().__init__()
        self.fail_at = fail_at
        self.live = {}
        self.calls = []
        self._allocations = 0
        self._uploads = 0

    @property
    def outstanding(self):
        return len(self.live)

    def select_device(self, device_id=0):
        self.calls.append("select_device")
        if self.fail_at == "select_device":
            raise DeviceSelectionError("injected: no device")
        return super().select_device(device_id)

    def allocate(self, nbytes):
        step = ALLOCATION_STEPS[self._allocations]
        self._allocations += 1
        self.calls.append(step)
        if self.fail_at == step:
            raise AllocationError(f"injected: out of memory allocating {nbytes} bytes")
        handle = super().allocate(nbytes)
        self.live[id(handle)] = handle
        return handle

    def release(self, handle):
        self.calls.append("release")
        if self.fail_at == "release":
            # Fail once; the handle stays allocated
            self.fail_at = None
            raise TeardownError("injected: release failed")
        self.live.pop(id(handle))
        super().release(handle)

    def upload(self, host, handle):
        step = UPLOAD_STEPS[self._uploads]
        self._uploads += 1
        self.calls.append(step)
        if self.fail_at == step:
            raise TransferError("injected: host to device copy failed")
        super().upload(host, handle)

    def download(self, handle, host):
        self.calls.append("download")
        if self.fail_at == "download":
            raise TransferError("injected: device to host copy failed")
        super().download(handle, host)

    def dispatch(self, d_A, d_B, d_C, order, batch_size, threads_per_block):
        self.calls.append("dispatch")
        if self.fail_at == "dispatch":
            raise SynchronizationError("injected: launch failed")
        return super().dispatch(d_A, d_B, d_C, order, batch_size, threads_per_block)

    def synchronize(self):
        self.calls.append("synchronize")
        if self.fail_at == "synchronize":
            raise SynchronizationError("injected: worker faulted")
        super().synchronize()

    def teardown(self):
        self.calls.append("teardown")
        self._allocations = 0
        self._uploads = 0
        if self.fail_at == "teardown":
            self.fail_at = None
            raise TeardownError("injected: device reset failed")
        super().teardown()


@pytest.fixture
def tracking_backend():
    return TrackingBackend()


def reference_product(A, B, order, batch_size):
    """Independent oracle: int64 matmul wrapped to int32."""
    A = np.asarray(A).reshape(batch_size, order, order).astype(np.int64)
    B = np.asarray(B).reshape(batch_size, order, order).astype(np.int64)
    return np.matmul(A, B).astype(np.int32).reshape(-1)


@pytest.fixture
def oracle():
    return reference_product
