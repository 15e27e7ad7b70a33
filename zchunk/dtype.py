import enum

import numpy as np

from zchunk.errors import ConfigurationError


class DataType(enum.Enum):
    """The primitive numeric representations a chunked array can hold.

    Member values are the literal tokens used in array metadata.
    """

    i1 = 'i1'
    u1 = 'u1'
    i2 = 'i2'
    u2 = 'u2'
    i4 = 'i4'
    u4 = 'u4'
    i8 = 'i8'
    f4 = 'f4'
    f8 = 'f8'

    @property
    def token(self) -> str:
        return self.value

    @property
    def kind(self) -> str:
        return self.value[0]

    @property
    def itemsize(self) -> int:
        return int(self.value[1:])

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype('<' + self.value)

    @property
    def is_integer(self) -> bool:
        return self.kind in 'iu'

    def __str__(self):
        return self.value


def normalize_dtype(dtype) -> DataType:
    """Convenience function to normalize the `dtype` argument.

    Accepts a :class:`DataType`, one of its tokens, a token with a leading
    byte order character (e.g. ``'<i4'``) or an equivalent numpy dtype.
    """

    if isinstance(dtype, DataType):
        return dtype

    if isinstance(dtype, str):
        token = dtype[1:] if dtype[:1] in '<>|=' else dtype
        try:
            return DataType(token)
        except ValueError:
            raise ConfigurationError('unsupported dtype: {!r}'.format(dtype)) from None

    try:
        np_dtype = np.dtype(dtype)
    except TypeError as e:
        raise ConfigurationError('unsupported dtype: {!r}'.format(dtype)) from e
    token = '{}{}'.format(np_dtype.kind, np_dtype.itemsize)
    try:
        return DataType(token)
    except ValueError:
        raise ConfigurationError('unsupported dtype: {!r}'.format(dtype)) from None
