import pytest
from numba import cuda

from batchmm import main as cli
from batchmm.offload.errors import AllocationError

from conftest import TrackingBackend


def test_host_run_verifies(capsys):
    code = cli.main(["--backend", "host", "--batch-size", "64", "--show", "1", "--verify"])
    out = capsys.readouterr().out
    assert code == 0
    assert "Backend: host, order=3, batch_size=64" in out
    assert "[0] C = A x B:" in out
    assert "[1]" not in out
    assert "Correctness check passed!" in out


@pytest.mark.skipif(not cuda.is_available(), reason="needs a CUDA device or the simulator")
def test_cuda_run_on_small_batch(capsys):
    code = cli.main(["--backend", "cuda", "--order", "2", "--batch-size", "8",
                     "--threads-per-block", "4", "--show", "0", "--verify"])
    assert code == 0
    assert "Correctness check passed!" in capsys.readouterr().out


def test_device_error_exits_nonzero(monkeypatch, capsys):
    monkeypatch.setattr(cli, "get_backend", lambda name: TrackingBackend(fail_at="allocate_b"))
    code = cli.main(["--batch-size", "4"])
    out = capsys.readouterr().out
    assert code == 1
    assert f"Offload failed: {AllocationError.__name__}: [allocate_b]" in out


def test_verbose_flag(capsys):
    cli.main(["--backend", "host", "--batch-size", "4", "--show", "0", "--verbose"])
    assert "-> dispatch" in capsys.readouterr().out


def test_rejects_unknown_backend():
    with pytest.raises(SystemExit):
        cli.main(["--backend", "tpu"])


def test_bad_backend_environment_is_a_usage_error(monkeypatch, capsys):
    monkeypatch.setenv("BATCHMM_BACKEND", "tpu")
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--batch-size", "4"])
    assert excinfo.value.code == 2
    assert "BATCHMM_BACKEND must be one of" in capsys.readouterr().err


def test_backend_flag_overrides_environment(monkeypatch, capsys):
    monkeypatch.setenv("BATCHMM_BACKEND", "cuda")
    assert cli.main(["--backend", "host", "--batch-size", "4", "--show", "0"]) == 0
    assert "Backend: host" in capsys.readouterr().out
