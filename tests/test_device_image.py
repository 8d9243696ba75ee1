"""
Tests for the DeviceImage handle.
"""

import numpy as np
import pytest

from bodydetect.depth import ElementDepth
from bodydetect.device_image import DeviceImage, Point
from bodydetect.errors import (
    AllocationError,
    DeviceError,
    HandleReleasedError,
    ShapeMismatchError,
)
from bodydetect.host_backend import HostBackend


class CountingBackend(HostBackend):
    """Host backend that counts buffer acquisitions and releases."""

    def __init__(self, fail_reduction: bool = False) -> None:
        super().__init__()
        self.acquired = 0
        self.freed = 0
        self._fail_reduction = fail_reduction

    def create(self, rows, cols, channels, depth):
        self.acquired += 1
        return super().create(rows, cols, channels, depth)

    def reshape(self, ref, channels, rows, cols):
        self.acquired += 1
        return super().reshape(ref, channels, rows, cols)

    def byte_view(self, ref):
        self.acquired += 1
        return super().byte_view(ref)

    def release(self, ref):
        self.freed += 1
        super().release(ref)

    def min_max_loc(self, ref):
        if self._fail_reduction:
            raise DeviceError("injected reduction failure")
        return super().min_max_loc(ref)


def _random_image(shape, dtype=np.uint8, seed=0):
    rng = np.random.default_rng(seed)
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return rng.integers(info.min, info.max, size=shape, dtype=dtype, endpoint=True)
    return rng.standard_normal(shape).astype(dtype)


# ---------------------------------------------------------------------------
# Construction and queries
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("rows, cols, channels", [(4, 4, 1), (3, 5, 3), (0, 7, 2), (2, 2, 4)])
def test_allocate_reports_shape(backend, rows, cols, channels):
    """Allocated images report the requested size and channel count."""
    image = DeviceImage.allocate(rows, cols, channels, ElementDepth.U16, backend)

    assert image.size == (rows, cols)
    assert image.rows == rows
    assert image.cols == cols
    assert image.channels == channels
    assert image.depth is ElementDepth.U16


def test_allocate_rejects_invalid_shape(backend):
    """Negative dimensions and zero channels cannot be allocated."""
    with pytest.raises(AllocationError):
        DeviceImage.allocate(-1, 4, 1, ElementDepth.U8, backend)

    with pytest.raises(AllocationError, match="Channel count"):
        DeviceImage.allocate(4, 4, 0, ElementDepth.U8, backend)


def test_from_host_infers_shape_and_depth(backend):
    """from_host derives shape and depth from the array."""
    host = _random_image((6, 8, 3), np.float32)
    image = DeviceImage.from_host(host, backend)

    assert image.size == (6, 8)
    assert image.channels == 3
    assert image.depth is ElementDepth.F32


def test_from_host_rejects_unsupported_input(backend):
    """Non-arrays and dtypes without an OpenCV depth are rejected."""
    with pytest.raises(ShapeMismatchError):
        DeviceImage.from_host([[1, 2], [3, 4]], backend)

    with pytest.raises(ShapeMismatchError, match="Unsupported element type"):
        DeviceImage.from_host(np.zeros((2, 2), dtype=np.uint32), backend)

    with pytest.raises(ShapeMismatchError):
        DeviceImage.from_host(np.zeros(5, dtype=np.uint8), backend)


# ---------------------------------------------------------------------------
# Transfer
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("shape, dtype", [
    ((5, 7, 3), np.uint8),
    ((4, 4), np.float32),
    ((3, 2, 4), np.int16),
])
def test_upload_download_round_trip(backend, shape, dtype):
    """Downloaded data is bit-for-bit the uploaded data."""
    host = _random_image(shape, dtype)
    image = DeviceImage.allocate(shape[0], shape[1], 1 if len(shape) == 2 else shape[2],
                                 ElementDepth.from_dtype(dtype), backend)

    image.upload(host)
    host2 = np.empty_like(host)
    returned = image.download(host2)

    assert returned is host2
    np.testing.assert_array_equal(host2, host)


def test_download_without_buffer_returns_new_array(backend):
    """Single-channel images download as 2-D arrays."""
    host = _random_image((3, 4, 1))
    image = DeviceImage.from_host(host, backend)

    data = image.download()

    assert data.shape == (3, 4)
    np.testing.assert_array_equal(data, host[:, :, 0])


def test_transfer_shape_mismatch(backend):
    """Transfers with a mismatched host buffer fail before copying."""
    image = DeviceImage.allocate(4, 4, 3, ElementDepth.U8, backend)

    with pytest.raises(ShapeMismatchError, match="shape"):
        image.upload(np.zeros((4, 5, 3), dtype=np.uint8))

    with pytest.raises(ShapeMismatchError, match="dtype"):
        image.upload(np.zeros((4, 4, 3), dtype=np.float32))

    with pytest.raises(ShapeMismatchError):
        image.download(np.zeros((4, 4), dtype=np.uint8))


# ---------------------------------------------------------------------------
# Split / merge
# ---------------------------------------------------------------------------

def test_split_yields_each_channel(backend):
    """Each split plane holds the matching channel of the source."""
    host = _random_image((5, 6, 3))
    image = DeviceImage.from_host(host, backend)

    planes = image.split()

    assert len(planes) == 3
    for i, plane in enumerate(planes):
        assert plane.channels == 1
        assert plane.size == image.size
        np.testing.assert_array_equal(plane.download(), host[:, :, i])


def test_split_single_channel_is_a_copy(backend):
    """Splitting a single-channel image copies it into one plane."""
    host = _random_image((4, 4))
    image = DeviceImage.from_host(host, backend)

    (plane,) = image.split()

    np.testing.assert_array_equal(plane.download(), host)
    plane.set_to(0)
    np.testing.assert_array_equal(image.download(), host)


def test_split_then_merge_reconstructs(backend):
    """Merging the split planes rebuilds an equal image."""
    original = DeviceImage.from_host(_random_image((5, 6, 3)), backend)
    planes = original.split()

    rebuilt = DeviceImage.allocate(5, 6, 3, ElementDepth.U8, backend)
    rebuilt.merge_from(planes)

    assert rebuilt.equals(original)


def test_split_into_wrong_count_leaves_inputs_unmodified(backend):
    """A destination count mismatch fails and writes nothing."""
    host = _random_image((4, 4, 3))
    image = DeviceImage.from_host(host, backend)
    destinations = [DeviceImage.allocate(4, 4, 1, ElementDepth.U8, backend) for _ in range(2)]
    for dst in destinations:
        dst.set_to(7)

    with pytest.raises(ShapeMismatchError, match="Expected 3 destinations"):
        image.split_into(destinations)

    np.testing.assert_array_equal(image.download(), host)
    for dst in destinations:
        assert np.all(dst.download() == 7)


def test_split_into_rejects_bad_destinations(backend):
    """Destinations must be single-channel, same size, same depth."""
    image = DeviceImage.allocate(4, 4, 2, ElementDepth.U8, backend)
    good = DeviceImage.allocate(4, 4, 1, ElementDepth.U8, backend)

    wrong_size = DeviceImage.allocate(4, 5, 1, ElementDepth.U8, backend)
    with pytest.raises(ShapeMismatchError, match="size"):
        image.split_into([good, wrong_size])

    two_channels = DeviceImage.allocate(4, 4, 2, ElementDepth.U8, backend)
    with pytest.raises(ShapeMismatchError, match="1 channel"):
        image.split_into([good, two_channels])

    wrong_depth = DeviceImage.allocate(4, 4, 1, ElementDepth.F32, backend)
    with pytest.raises(ShapeMismatchError, match="depth"):
        image.split_into([good, wrong_depth])


def test_merge_from_rejects_bad_sources(backend):
    """merge_from applies the same contract as split_into."""
    image = DeviceImage.allocate(3, 3, 3, ElementDepth.U8, backend)
    sources = [DeviceImage.allocate(3, 3, 1, ElementDepth.U8, backend) for _ in range(4)]

    with pytest.raises(ShapeMismatchError):
        image.merge_from(sources)


# ---------------------------------------------------------------------------
# Reduction
# ---------------------------------------------------------------------------

def test_filled_image_min_max_scenario(backend):
    """A 4x4x3 image filled with 255 splits into planes with min == max == 255."""
    image = DeviceImage.allocate(4, 4, 3, ElementDepth.U8, backend)
    image.set_to(255)

    planes = image.split()

    assert len(planes) == 3
    for plane in planes:
        result = plane.min_max()
        assert result.min_values == [255.0]
        assert result.max_values == [255.0]


def test_min_max_reads_each_channel(backend):
    """Multi-channel extrema come from each channel's own plane."""
    host = np.full((4, 5, 3), 100, dtype=np.uint8)
    host[2, 3, 0] = 1
    host[1, 0, 1] = 200
    host[:, :, 2] = 42

    result = DeviceImage.from_host(host, backend).min_max()

    assert result.min_values == [1.0, 100.0, 42.0]
    assert result.max_values == [100.0, 200.0, 42.0]
    assert result.min_locations[0] == Point(x=3, y=2)
    assert result.max_locations[1] == Point(x=0, y=1)


def test_min_max_releases_temporaries():
    """Temporaries are released on success and on failure."""
    backend = CountingBackend()
    image = DeviceImage.from_host(_random_image((3, 3, 3)), backend)
    acquired, freed = backend.acquired, backend.freed

    image.min_max()

    assert backend.acquired - acquired == 3
    assert backend.freed - freed == 3

    failing = CountingBackend(fail_reduction=True)
    image = DeviceImage.from_host(_random_image((3, 3, 3)), failing)
    acquired, freed = failing.acquired, failing.freed

    with pytest.raises(DeviceError, match="injected"):
        image.min_max()

    assert failing.acquired - acquired == failing.freed - freed == 3


# ---------------------------------------------------------------------------
# Equality
# ---------------------------------------------------------------------------

def test_equals_is_reflexive(backend):
    image = DeviceImage.from_host(_random_image((4, 4, 3)), backend)
    assert image.equals(image)
    assert image == image


def test_equals_false_on_shape_difference(backend):
    """Different size, channel count or depth compare unequal."""
    base = DeviceImage.allocate(4, 4, 3, ElementDepth.U8, backend)
    base.set_to(0)

    other_size = DeviceImage.allocate(4, 5, 3, ElementDepth.U8, backend)
    other_channels = DeviceImage.allocate(4, 4, 1, ElementDepth.U8, backend)
    other_depth = DeviceImage.allocate(4, 4, 3, ElementDepth.S8, backend)

    assert not base.equals(other_size)
    assert not base.equals(other_channels)
    assert not base.equals(other_depth)


def test_equals_tracks_content(backend):
    """Two uploads of one buffer are equal until one is modified."""
    host = _random_image((6, 6, 3))
    a = DeviceImage.from_host(host, backend)
    b = DeviceImage.from_host(host, backend)

    assert a.equals(b)

    b.set_to(0)
    assert not a.equals(b)
    assert a != b


def test_equals_detects_single_element_difference_in_floats(backend):
    host = _random_image((3, 3), np.float64)
    changed = host.copy()
    changed[1, 1] += 1e-9

    a = DeviceImage.from_host(host, backend)
    b = DeviceImage.from_host(changed, backend)

    assert not a.equals(b)


@pytest.mark.parametrize("dtype", [np.float32, np.float64])
def test_equals_detects_sign_flip_in_floats(backend, dtype):
    """x XOR -x leaves only sign bits set, which still counts as a difference."""
    host = np.array([[1.0, 2.0], [3.0, 4.0]], dtype=dtype)
    a = DeviceImage.from_host(host, backend)
    b = DeviceImage.from_host(-host, backend)

    assert not a.equals(b)
    assert a != b


def test_equals_distinguishes_signed_zeros(backend):
    positive = DeviceImage.from_host(np.zeros((2, 3, 2), dtype=np.float32), backend)
    negative = DeviceImage.from_host(np.full((2, 3, 2), -0.0, dtype=np.float32), backend)

    assert not positive.equals(negative)
    assert positive.equals(positive)


def test_equals_releases_temporaries():
    """The XOR buffer and its byte view are both released."""
    backend = CountingBackend()
    host = _random_image((4, 4, 3))
    a = DeviceImage.from_host(host, backend)
    b = DeviceImage.from_host(host, backend)
    acquired, freed = backend.acquired, backend.freed

    assert a.equals(b)

    assert backend.acquired - acquired == 2
    assert backend.freed - freed == 2


# ---------------------------------------------------------------------------
# Conversion, reshape, fill
# ---------------------------------------------------------------------------

def test_convert_to_new_depth(backend):
    """Conversion returns a new image and leaves the source untouched."""
    host = np.array([[0, 10], [100, 255]], dtype=np.uint8)
    image = DeviceImage.from_host(host, backend)

    converted = image.convert_to(ElementDepth.F32, alpha=0.5, beta=1.0)

    assert converted is not image
    assert converted.depth is ElementDepth.F32
    assert image.depth is ElementDepth.U8
    np.testing.assert_allclose(converted.download(), host * 0.5 + 1.0)
    np.testing.assert_array_equal(image.download(), host)


def test_convert_to_saturates(backend):
    host = np.array([[300.7, -4.0, 1.4]], dtype=np.float32)
    image = DeviceImage.from_host(host, backend)

    converted = image.convert_to(ElementDepth.U8)

    np.testing.assert_array_equal(converted.download(), [[255, 0, 1]])


def test_reshape_zero_zero_keeps_layout(backend):
    image = DeviceImage.allocate(4, 6, 3, ElementDepth.U8, backend)

    reshaped = image.reshape(0, 0)

    assert reshaped.size == image.size
    assert reshaped.channels == image.channels


def test_reshape_changes_layout_without_copying(backend):
    """A reshaped view shares storage with its source."""
    image = DeviceImage.allocate(4, 4, 3, ElementDepth.U8, backend)
    image.set_to(0)

    flat = image.reshape(1, 0)
    assert flat.size == (4, 12)
    assert flat.channels == 1

    tall = image.reshape(3, 2)
    assert tall.size == (2, 8)

    flat.set_to(9)
    assert np.all(image.download() == 9)

    flat.release()
    assert np.all(image.download() == 9)


def test_reshape_rejects_unrepresentable_layout(backend):
    image = DeviceImage.allocate(4, 4, 3, ElementDepth.U8, backend)

    with pytest.raises(ShapeMismatchError):
        image.reshape(5, 0)

    with pytest.raises(ShapeMismatchError):
        image.reshape(1, 5)


def test_set_to_with_mask(backend):
    """Only masked elements are written."""
    image = DeviceImage.allocate(4, 4, 2, ElementDepth.U8, backend)
    image.set_to(0)
    mask_host = np.zeros((4, 4), dtype=np.uint8)
    mask_host[:2, :2] = 1
    mask = DeviceImage.from_host(mask_host, backend)

    image.set_to((9, 8), mask=mask)

    data = image.download()
    np.testing.assert_array_equal(data[:2, :2, 0], 9)
    np.testing.assert_array_equal(data[:2, :2, 1], 8)
    assert data[2:, :, :].sum() == 0
    assert data[:, 2:, :].sum() == 0


def test_set_to_rejects_bad_mask_and_values(backend):
    image = DeviceImage.allocate(4, 4, 3, ElementDepth.U8, backend)

    with pytest.raises(ShapeMismatchError, match="Mask"):
        image.set_to(1, mask=DeviceImage.allocate(4, 4, 1, ElementDepth.F32, backend))

    with pytest.raises(ShapeMismatchError, match="Mask"):
        image.set_to(1, mask=DeviceImage.allocate(3, 4, 1, ElementDepth.U8, backend))

    with pytest.raises(ShapeMismatchError, match="fill values"):
        image.set_to((1, 2))


def test_set_to_saturates(backend):
    image = DeviceImage.allocate(2, 2, 1, ElementDepth.U8, backend)

    image.set_to(300)
    assert np.all(image.download() == 255)

    image.set_to(-5)
    assert np.all(image.download() == 0)


# ---------------------------------------------------------------------------
# Lifetime
# ---------------------------------------------------------------------------

def test_release_is_idempotent_and_blocks_reuse():
    backend = CountingBackend()
    image = DeviceImage.allocate(2, 2, 1, ElementDepth.U8, backend)

    image.release()
    image.release()

    assert backend.freed == 1
    assert image.released
    with pytest.raises(HandleReleasedError):
        image.download()
    with pytest.raises(HandleReleasedError):
        image.split()


def test_context_manager_releases(backend):
    with DeviceImage.allocate(2, 2, 1, ElementDepth.U8, backend) as image:
        image.set_to(1)

    assert image.released


def test_released_destination_is_rejected(backend):
    image = DeviceImage.allocate(2, 2, 1, ElementDepth.U8, backend)
    dst = DeviceImage.allocate(2, 2, 1, ElementDepth.U8, backend)
    dst.release()

    with pytest.raises(HandleReleasedError):
        image.split_into([dst])


def test_mixing_backends_is_rejected(backend):
    image = DeviceImage.allocate(2, 2, 1, ElementDepth.U8, backend)
    foreign = DeviceImage.allocate(2, 2, 1, ElementDepth.U8, HostBackend())

    with pytest.raises(DeviceError, match="backend"):
        image.equals(foreign)
