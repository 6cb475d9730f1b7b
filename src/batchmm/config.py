"""
Default configuration for batched matrix multiply runs.
Command-line flags in batchmm.main override these values.
"""

import os

import numpy as np

# Reference configuration: 1024 matrices of order 3
REFERENCE_ORDER = 3
REFERENCE_BATCH_SIZE = 1024

# Inclusive range of generated matrix entries
VALUE_LOW = 1
VALUE_HIGH = 200

# Native 32-bit integers, wraps on overflow
ELEMENT_DTYPE = np.int32

DEFAULT_THREADS_PER_BLOCK = 256

BACKEND_NAMES = ("auto", "cuda", "host")


def default_backend_name():
    """Backend name from BATCHMM_BACKEND, falling back to 'auto'."""
    name = os.environ.get("BATCHMM_BACKEND", "auto").strip().lower()
    if name not in BACKEND_NAMES:
        raise ValueError(
            f"BATCHMM_BACKEND must be one of {BACKEND_NAMES}, got {name!r}"
        )
    return name
