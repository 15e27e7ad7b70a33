"""Flat, typed storage for chunk and region data.

A :class:`Buffer` is a contiguous one-dimensional numpy array of one of the
:class:`~zchunk.dtype.DataType` primitives, addressed through a logical shape in
row-major (C) order.
"""
import math
import numbers
from typing import Sequence, Tuple

import numpy as np
from numcodecs.compat import ensure_contiguous_ndarray

from zchunk.dtype import DataType, normalize_dtype
from zchunk.errors import ConfigurationError, RangeError

# largest buffer length numpy can index on this platform
MAX_BUFFER_LENGTH = int(np.iinfo(np.intp).max)


def compute_size(shape: Sequence[int]) -> int:
    """Number of elements addressed by `shape`. The empty shape addresses a single
    element; any zero component gives zero."""
    count = 1
    for s in shape:
        s = int(s)
        if s < 0:
            raise ConfigurationError('shape components must be >= 0, found {!r}'
                                     .format(tuple(shape)))
        count *= s
    return count


def compute_allocation_size(shape: Sequence[int]) -> int:
    """Like :func:`compute_size`, but refuses counts that cannot be allocated as a
    single buffer rather than letting them wrap around."""
    count = compute_size(shape)
    if count > MAX_BUFFER_LENGTH:
        raise RangeError('shape {!r} addresses {} elements, more than the maximum '
                         'buffer length {}'.format(tuple(shape), count, MAX_BUFFER_LENGTH))
    return count


def _normalize_buffer_shape(shape) -> Tuple[int, ...]:
    if isinstance(shape, numbers.Integral):
        shape = (shape,)
    return tuple(int(s) for s in shape)


class Buffer(object):
    """Contiguous storage of primitive elements with a logical shape.

    Parameters
    ----------
    data : ndarray
        Flat array holding ``compute_size(shape)`` elements.
    dtype : DataType
        Element type; `data` is converted to it if needed.
    shape : tuple of ints
        Logical shape used to address `data` in row-major order.

    """

    __slots__ = ('data', 'dtype', 'shape')

    def __init__(self, data, dtype, shape):
        dtype = normalize_dtype(dtype)
        shape = _normalize_buffer_shape(shape)
        data = np.ascontiguousarray(narrow_array(data, dtype)).reshape(-1)
        size = compute_size(shape)
        if data.shape[0] != size:
            raise RangeError('buffer holds {} elements, shape {!r} requires {}'
                             .format(data.shape[0], shape, size))
        self.data = data
        self.dtype = dtype
        self.shape = shape

    @classmethod
    def from_array(cls, values, dtype=None) -> 'Buffer':
        """Build a buffer from any array-like, taking its shape."""
        if isinstance(values, Buffer):
            if dtype is None or normalize_dtype(dtype) is values.dtype:
                return values
            return cls(values.data, dtype, values.shape)
        if dtype is None:
            arr = np.asarray(values)
            dtype = normalize_dtype(arr.dtype)
        else:
            dtype = normalize_dtype(dtype)
            arr = narrow_array(values, dtype)
        return cls(arr.reshape(-1, order='C'), dtype, arr.shape)

    @classmethod
    def frombytes(cls, raw, dtype, shape, byte_order: str = '<') -> 'Buffer':
        """Decode raw chunk bytes holding elements in the given byte order."""
        dtype = normalize_dtype(dtype)
        raw = ensure_contiguous_ndarray(raw).view('u1')
        try:
            arr = raw.view(dtype.numpy_dtype.newbyteorder(byte_order))
        except ValueError as e:
            raise RangeError('cannot decode {} bytes as {} elements'
                             .format(raw.nbytes, dtype)) from e
        # copy so the buffer is writeable and native-endian
        return cls(arr.astype(dtype.numpy_dtype), dtype, shape)

    def tobytes(self, byte_order: str = '<') -> bytes:
        return self.data.astype(self.dtype.numpy_dtype.newbyteorder(byte_order),
                                copy=False).tobytes()

    @property
    def size(self) -> int:
        return self.data.shape[0]

    @property
    def nbytes(self) -> int:
        return self.data.nbytes

    @property
    def ndim(self) -> int:
        return len(self.shape)

    def as_ndarray(self) -> np.ndarray:
        """Shaped view on the underlying storage; writes go through to the buffer."""
        return self.data.reshape(self.shape)

    def tolist(self):
        return self.data.tolist()

    def copy(self) -> 'Buffer':
        return Buffer(self.data.copy(), self.dtype, self.shape)

    def __len__(self):
        return self.size

    def __eq__(self, other):
        return (
            isinstance(other, Buffer) and
            self.dtype is other.dtype and
            self.shape == other.shape and
            bool(np.array_equal(self.data, other.data))
        )

    def __repr__(self):
        return '<Buffer {} {}>'.format(self.shape, self.dtype)


def create_data_buffer(dtype, shape) -> Buffer:
    """Allocate a zero-initialized buffer of `dtype` elements for `shape`."""
    dtype = normalize_dtype(dtype)
    shape = _normalize_buffer_shape(shape)
    size = compute_allocation_size(shape)
    return Buffer(np.zeros(size, dtype=dtype.numpy_dtype), dtype, shape)


def _saturation_bounds(dtype: DataType):
    # floats convert through a 64-bit integer for i8 and a 32-bit one otherwise
    info = np.iinfo(np.int64 if dtype is DataType.i8 else np.int32)
    return int(info.min), int(info.max)


def _wrap(v: int, dtype: DataType) -> int:
    bits = 8 * dtype.itemsize
    v &= (1 << bits) - 1
    if dtype.kind == 'i' and v >= 1 << (bits - 1):
        v -= 1 << bits
    return v


def narrow(value, dtype: DataType):
    """Convert a number into the domain of `dtype` the way a native narrowing
    conversion does.

    Floating targets round to the target precision. Integer values wrap around
    modulo the type width. Floating values bound for an integer type first
    truncate toward zero into a 32-bit integer (64-bit for ``i8``), with NaN
    giving 0 and out of range values saturating, and then wrap to the type width.
    """

    if isinstance(value, (bool, np.bool_)):
        value = int(value)
    if not isinstance(value, numbers.Real):
        raise TypeError('expected a real number, found {!r}'.format(value))

    if not dtype.is_integer:
        return dtype.numpy_dtype.type(float(value))

    if isinstance(value, numbers.Integral):
        v = int(value)
    else:
        value = float(value)
        lo, hi = _saturation_bounds(dtype)
        if math.isnan(value):
            v = 0
        elif math.isinf(value):
            v = hi if value > 0 else lo
        else:
            # int() truncates toward zero
            v = min(max(int(value), lo), hi)
    return dtype.numpy_dtype.type(_wrap(v, dtype))


def narrow_array(values, dtype) -> np.ndarray:
    """Convert an array-like to the element type of `dtype`, narrowing every
    element the way :func:`narrow` does a single value."""

    dtype = normalize_dtype(dtype)
    arr = np.asarray(values)
    if arr.dtype == dtype.numpy_dtype:
        return arr

    if arr.dtype.kind == 'O':
        # e.g. integers too large for any numpy integer type
        flat = [narrow(v, dtype) for v in arr.reshape(-1)]
        return np.array(flat, dtype=dtype.numpy_dtype).reshape(arr.shape)
    if arr.dtype.kind not in 'biuf':
        raise TypeError('cannot convert {} values to {}'.format(arr.dtype, dtype))

    if dtype.is_integer and arr.dtype.kind == 'f':
        lo, hi = _saturation_bounds(dtype)
        flat = np.trunc(np.nan_to_num(arr.reshape(-1).astype(np.float64), nan=0.0))
        high = flat >= float(hi)
        low = flat <= float(lo)
        inside = ~(high | low)
        ints = np.empty(flat.shape, dtype=np.int64)
        ints[inside] = flat[inside].astype(np.int64)
        ints[high] = hi
        ints[low] = lo
        arr = ints.reshape(arr.shape)

    # integer to integer casts wrap around modulo the type width
    return arr.astype(dtype.numpy_dtype, casting='unsafe')


def create_data_buffer_filled_with(value, dtype, shape) -> Buffer:
    """Allocate a buffer of `dtype` elements for `shape` with every element set to
    `value`, narrowed to the target type. No overflow check is done."""
    dtype = normalize_dtype(dtype)
    fill = narrow(value, dtype)
    buffer = create_data_buffer(dtype, shape)
    buffer.data.fill(fill)
    return buffer
