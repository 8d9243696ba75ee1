"""
Shared fixtures.

Device image tests run on the host backend everywhere, and again on the
CUDA backend when OpenCV reports a CUDA device.
"""

import pytest

from bodydetect.backend import cuda_available
from bodydetect.host_backend import HostBackend


@pytest.fixture(params=[
    "host",
    pytest.param(
        "cuda",
        marks=pytest.mark.skipif(
            not cuda_available(), reason="No CUDA-enabled OpenCV device"
        ),
    ),
])
def backend(request):
    if request.param == "cuda":
        from bodydetect.cuda_backend import CudaBackend
        return CudaBackend()
    return HostBackend()


@pytest.fixture
def stream(backend):
    return backend.create_stream()
