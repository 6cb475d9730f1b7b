"""States of the offload pipeline, in the order a successful call visits them."""

from enum import Enum


class Step(Enum):
    SELECT_DEVICE = "select_device"
    ALLOCATE_A = "allocate_a"
    ALLOCATE_B = "allocate_b"
    ALLOCATE_DEST = "allocate_dest"
    UPLOAD_A = "upload_a"
    UPLOAD_B = "upload_b"
    DISPATCH = "dispatch"
    SYNCHRONIZE = "synchronize"
    DOWNLOAD = "download"
    RELEASE_ALL = "release_all"
    DONE = "done"
    FAILED = "failed"


# Linear success path; every state may instead fall through to FAILED
PIPELINE = (
    Step.SELECT_DEVICE,
    Step.ALLOCATE_A,
    Step.ALLOCATE_B,
    Step.ALLOCATE_DEST,
    Step.UPLOAD_A,
    Step.UPLOAD_B,
    Step.DISPATCH,
    Step.SYNCHRONIZE,
    Step.DOWNLOAD,
    Step.RELEASE_ALL,
    Step.DONE,
)
