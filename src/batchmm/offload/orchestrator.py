"""
Batched matmul offload pipeline.

Runs one batched multiply as a linear sequence of steps:
select device -> allocate A, B, C -> upload A, B -> dispatch -> synchronize
-> download -> release all. Any failure aborts the call, releases every
device resource acquired so far and re-raises. Nothing is retried and
nothing (device choice, buffers) is kept between calls.
"""

import time
import traceback

from batchmm.config import DEFAULT_THREADS_PER_BLOCK
from batchmm.kernels.batch_buffer import as_batch_buffer, buffer_nbytes, empty_batch
from batchmm.offload.backends import get_backend
from batchmm.offload.errors import DeviceError
from batchmm.offload.memory import DeviceMemoryManager
from batchmm.offload.steps import Step
from batchmm.offload.transfer import download, upload


def _drop_frame_locals(exc):
    """
    Clear the finished frames an error carries, along its cause/context chain.

    Those frames hold the device arrays of the failed call; without this
    they live as long as the caller keeps the exception.
    """
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        traceback.clear_frames(exc.__traceback__)
        exc = exc.__cause__ or exc.__context__


class OffloadOrchestrator:
    """
    Sequences a single batched multiply on a device backend.

    Args:
        backend: device backend; defaults to get_backend() (BATCHMM_BACKEND)
        threads_per_block: requested workers per block, capped by the device
        device_id: device to select on every call
        verbose: print state transitions, buffer sizes and timings

    After run(), `state` is Step.DONE or Step.FAILED, `history` lists the
    states visited and `timings` maps step names to milliseconds.
    """

    def __init__(self, backend=None, threads_per_block=DEFAULT_THREADS_PER_BLOCK, device_id=0, verbose=False):
        if threads_per_block < 1:
            raise ValueError(f"threads_per_block must be positive, got {threads_per_block}")
        self.backend = backend if backend is not None else get_backend()
        self.threads_per_block = threads_per_block
        self.device_id = device_id
        self.verbose = verbose
        self.state = None
        self.history = []
        self.timings = {}
        self.launches = 0

    def _enter(self, step):
        self.state = step
        self.history.append(step)
        if self.verbose:
            print(f"-> {step.value}")

    def _run_step(self, step, fn, *args):
        self._enter(step)
        t_start = time.perf_counter()
        try:
            return fn(*args)
        except DeviceError as e:
            if e.step is None:
                e.step = step
            raise
        finally:
            self.timings[step.value] = (time.perf_counter() - t_start) * 1000

    def run(self, A, B, order, batch_size):
        """
        Compute C[i] = A[i] @ B[i] for a batch on the device.

        Args:
            A: flat (or (N, O, O)) buffer of batch_size*order*order integers
            B: same shape as A
            order: matrix order O
            batch_size: number of matrices N

        Returns:
            Flat int32 numpy array with the N products

        Raises:
            ValueError: malformed inputs, before any device work
            DeviceError: a pipeline step failed; all device memory has been
                released and no partial result is returned
        """
        A = as_batch_buffer(A, order, batch_size)
        B = as_batch_buffer(B, order, batch_size)
        self.state = None
        self.history = []
        self.timings = {}
        self.launches = 0

        result = empty_batch(batch_size, order)
        if batch_size == 0:
            self._enter(Step.DONE)
            return result

        memory = DeviceMemoryManager(self.backend, verbose=self.verbose)
        try:
            self._offload(memory, A, B, result, order, batch_size)
        except Exception as e:
            self._release_all(memory, raise_errors=False)
            _drop_frame_locals(e)
            self._enter(Step.FAILED)
            raise

        try:
            self._release_all(memory, raise_errors=True)
        except DeviceError:
            self._enter(Step.FAILED)
            raise

        self._enter(Step.DONE)
        if self.verbose:
            breakdown = ", ".join(f"{name}={ms:.3f} ms" for name, ms in self.timings.items())
            print(f"  timings: {breakdown}")
        return result

    def _offload(self, memory, A, B, result, order, batch_size):
        nbytes = buffer_nbytes(batch_size, order)
        backend = self.backend

        self._run_step(Step.SELECT_DEVICE, backend.select_device, self.device_id)
        threads_per_block = min(self.threads_per_block, backend.max_threads_per_block())
        if self.verbose:
            print(f"  device: {backend.device}, {batch_size} matrices of order {order}, "
                  f"{nbytes} bytes per buffer")

        d_A = self._run_step(Step.ALLOCATE_A, memory.allocate, nbytes, "A")
        d_B = self._run_step(Step.ALLOCATE_B, memory.allocate, nbytes, "B")
        d_C = self._run_step(Step.ALLOCATE_DEST, memory.allocate, nbytes, "C")

        self._run_step(Step.UPLOAD_A, upload, backend, A, d_A, nbytes)
        self._run_step(Step.UPLOAD_B, upload, backend, B, d_B, nbytes)

        self.launches = self._run_step(
            Step.DISPATCH, backend.dispatch, d_A, d_B, d_C, order, batch_size, threads_per_block
        )
        if self.verbose:
            print(f"  launched {self.launches} grid(s) of {threads_per_block} threads per block")

        self._run_step(Step.SYNCHRONIZE, backend.synchronize)
        self._run_step(Step.DOWNLOAD, download, backend, d_C, result, nbytes)

    def _teardown(self, raise_errors):
        try:
            self.backend.teardown()
        except DeviceError as e:
            if raise_errors:
                raise
            print(f"Warning: device teardown failed: {e}")

    def _release_all(self, memory, raise_errors):
        self._enter(Step.RELEASE_ALL)
        t_start = time.perf_counter()
        try:
            memory.release_all(raise_errors=raise_errors)
            self._teardown(raise_errors)
        except DeviceError as e:
            if e.step is None:
                e.step = Step.RELEASE_ALL
            # Buffers are gone either way; still try to reset the device
            self._teardown(raise_errors=False)
            raise
        finally:
            self.timings[Step.RELEASE_ALL.value] = (time.perf_counter() - t_start) * 1000


def batched_multiply(A, B, order, batch_size, backend=None, **options):
    """
    Multiply two batches of square matrices elementwise on the device.

    A fresh orchestrator is built per call, so no device state carries over.
    Keyword options are passed to OffloadOrchestrator.

    Returns:
        Flat int32 numpy array of batch_size*order*order elements

    Raises:
        DeviceError: see OffloadOrchestrator.run
    """
    return OffloadOrchestrator(backend=backend, **options).run(A, B, order, batch_size)
