"""
Synchronous host<->device copies of whole batch buffers.

Byte counts must match both the host buffer and the device allocation
exactly. A mismatch is a caller bug and raises ValueError before any copy
is attempted; device-side failures surface as TransferError.
"""


def _check_nbytes(host_buffer, handle, nbytes):
    if host_buffer.nbytes != nbytes or handle.nbytes != nbytes:
        raise ValueError(
            f"Transfer size mismatch: requested {nbytes} bytes, host buffer "
            f"{host_buffer.nbytes} bytes, device buffer {handle.nbytes} bytes"
        )
    if not host_buffer.flags["C_CONTIGUOUS"]:
        raise ValueError("Host buffer must be C-contiguous")


def upload(backend, host_buffer, handle, nbytes):
    """Copy `nbytes` from host_buffer into the device buffer `handle`."""
    _check_nbytes(host_buffer, handle, nbytes)
    backend.upload(host_buffer, handle)


def download(backend, handle, host_buffer, nbytes):
    """Copy `nbytes` from the device buffer `handle` into host_buffer."""
    _check_nbytes(host_buffer, handle, nbytes)
    backend.download(handle, host_buffer)
