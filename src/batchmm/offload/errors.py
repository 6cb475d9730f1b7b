"""
Errors raised by the offload pipeline.

Every failure is fatal to the current batched_multiply call. Each error
records the pipeline step that failed and, when it wraps a backend
exception, that exception as `cause`.
"""


class DeviceError(Exception):
    """Base class for accelerator failures."""

    def __init__(self, message, step=None, cause=None):
        super().__init__(message)
        self.step = step
        self.cause = cause

    def __str__(self):
        message = super().__str__()
        if self.step is not None:
            return f"[{self.step.value}] {message}"
        return message


class DeviceSelectionError(DeviceError):
    """No usable accelerator."""


class AllocationError(DeviceError):
    """Device memory for one of the batch buffers could not be allocated."""


class TransferError(DeviceError):
    """A host<->device copy failed."""


class SynchronizationError(DeviceError):
    """Kernel launch or a worker failed, or the device went away mid-compute."""


class TeardownError(DeviceError):
    """Device resources could not be released after the operation."""
