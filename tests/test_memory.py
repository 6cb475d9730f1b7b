import pytest

from batchmm.offload.errors import AllocationError, TeardownError
from batchmm.offload.memory import DeviceMemoryManager

from conftest import TrackingBackend


def test_allocate_and_release(tracking_backend):
    memory = DeviceMemoryManager(tracking_backend)
    handle = memory.allocate(36, "A")
    assert handle.nbytes == 36
    assert memory.outstanding == 1
    assert memory.outstanding_bytes == 36
    assert tracking_backend.outstanding == 1

    memory.release(handle)
    assert memory.outstanding == 0
    assert tracking_backend.outstanding == 0


def test_release_is_idempotent(tracking_backend):
    memory = DeviceMemoryManager(tracking_backend)
    handle = memory.allocate(36, "A")
    memory.release(handle)
    memory.release(handle)
    assert tracking_backend.calls.count("release") == 1


def test_release_ignores_none_and_foreign_handles(tracking_backend):
    memory = DeviceMemoryManager(tracking_backend)
    memory.release(None)
    memory.release(object())
    assert "release" not in tracking_backend.calls


def test_scope_releases_everything_on_success(tracking_backend):
    with DeviceMemoryManager(tracking_backend) as memory:
        memory.allocate(36, "A")
        memory.allocate(36, "B")
        memory.allocate(36, "C")
        assert tracking_backend.outstanding == 3
    assert memory.outstanding == 0
    assert tracking_backend.outstanding == 0


@pytest.mark.parametrize("fail_at", ["allocate_a", "allocate_b", "allocate_dest"])
def test_partial_allocation_failure_rolls_back(fail_at):
    backend = TrackingBackend(fail_at=fail_at)
    with pytest.raises(AllocationError):
        with DeviceMemoryManager(backend) as memory:
            memory.allocate(36, "A")
            memory.allocate(36, "B")
            memory.allocate(36, "C")
    assert backend.outstanding == 0
    assert memory.outstanding == 0


def test_release_all_newest_first(tracking_backend):
    memory = DeviceMemoryManager(tracking_backend)
    handles = [memory.allocate(4 * (n + 1), label) for n, label in enumerate("ABC")]
    released = []
    original = tracking_backend.release

    def record(handle):
        released.append(handle.nbytes)
        original(handle)

    tracking_backend.release = record
    memory.release_all()
    assert released == [h.nbytes for h in reversed(handles)]


def test_release_failure_raises_teardown_error_after_trying_all():
    backend = TrackingBackend(fail_at="release")
    memory = DeviceMemoryManager(backend)
    for label in "ABC":
        memory.allocate(36, label)

    with pytest.raises(TeardownError, match="1 device buffer"):
        memory.release_all()
    assert backend.calls.count("release") == 3
    assert memory.outstanding == 0
    # The buffer whose release failed is still held by the backend
    assert backend.outstanding == 1


def test_release_failure_does_not_mask_error_in_flight(capsys):
    backend = TrackingBackend(fail_at="release")
    with pytest.raises(RuntimeError, match="boom"):
        with DeviceMemoryManager(backend) as memory:
            memory.allocate(36, "A")
            raise RuntimeError("boom")
    assert "could not release device buffer A" in capsys.readouterr().out


def test_verbose_prints_allocations(tracking_backend, capsys):
    with DeviceMemoryManager(tracking_backend, verbose=True) as memory:
        memory.allocate(36, "A")
    out = capsys.readouterr().out
    assert "alloc A: 36 bytes" in out
    assert "free A" in out


def test_unexpected_release_error_still_releases_older_buffers():
    backend = TrackingBackend()
    memory = DeviceMemoryManager(backend)
    for label in "ABC":
        memory.allocate(36, label)
    original = backend.release

    def fail_on_first(handle):
        if backend.calls.count("release") == 0:
            backend.calls.append("release")
            raise RuntimeError("Freeing dead memory")
        original(handle)

    backend.release = fail_on_first
    with pytest.raises(TeardownError, match="first was C: Freeing dead memory") as excinfo:
        memory.release_all()
    assert isinstance(excinfo.value.cause, RuntimeError)
    assert backend.calls.count("release") == 3
    assert memory.outstanding == 0
    # Only C, whose release blew up, is still held
    assert backend.outstanding == 1
