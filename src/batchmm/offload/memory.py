"""
Device memory ownership for one batched operation.

The manager is a scoped resource: every handle it hands out is released
when the `with` block exits, on success and on every error path.
"""

from batchmm.offload.errors import TeardownError


class DeviceMemoryManager:
    """
    Tracks the device buffers allocated during a single offload call.

    Args:
        backend: device backend providing allocate/release
        verbose: print allocations and releases
    """

    def __init__(self, backend, verbose=False):
        self.backend = backend
        self.verbose = verbose
        # id(handle) -> (label, handle, nbytes), in allocation order
        self._live = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        # An error already in flight wins over release failures
        self.release_all(raise_errors=exc_type is None)
        return False

    @property
    def outstanding(self):
        return len(self._live)

    @property
    def outstanding_bytes(self):
        return sum(nbytes for _, _, nbytes in self._live.values())

    def allocate(self, nbytes, label):
        """
        Allocate one device buffer of `nbytes` bytes.

        Raises:
            AllocationError: propagated from the backend; nothing is tracked
        """
        handle = self.backend.allocate(nbytes)
        self._live[id(handle)] = (label, handle, nbytes)
        if self.verbose:
            print(f"  alloc {label}: {nbytes} bytes ({self.outstanding} live)")
        return handle

    def release(self, handle):
        """Release a handle; no-op for None, unknown or already released handles."""
        if handle is None:
            return
        entry = self._live.pop(id(handle), None)
        if entry is None:
            return
        label = entry[0]
        self.backend.release(handle)
        if self.verbose:
            print(f"  free {label} ({self.outstanding} live)")

    def release_all(self, raise_errors=True):
        """
        Release every outstanding handle, newest first.

        All handles are attempted even if some releases fail.

        Raises:
            TeardownError: if any release failed and raise_errors is set
        """
        failures = []
        for label, handle, _ in reversed(list(self._live.values())):
            try:
                self.release(handle)
            except Exception as e:
                self._live.pop(id(handle), None)
                failures.append((label, e))

        if not failures:
            return
        if raise_errors:
            label, first = failures[0]
            raise TeardownError(
                f"Failed to release {len(failures)} device buffer(s), first was {label}: {first}",
                cause=first,
            ) from first
        for label, e in failures:
            print(f"Warning: could not release device buffer {label}: {e}")
