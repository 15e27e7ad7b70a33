import math
import numbers
from collections.abc import Mapping
from typing import Any, Dict, Optional, Union

from zchunk.buffer import narrow
from zchunk.config import parse_dimension_separator
from zchunk.dtype import DataType, normalize_dtype
from zchunk.errors import MetadataError, SerializationError
from zchunk.util import json_dumps, json_loads, normalize_chunks, normalize_shape

ZARR_FORMAT = 2

FLOAT_FILLS = {'NaN': math.nan, 'Infinity': math.inf, '-Infinity': -math.inf}


def parse_metadata(s: Union[Mapping, bytes, str]) -> Mapping:
    # allow that a store may return an already-parsed metadata object
    if isinstance(s, Mapping):
        return s
    try:
        meta = json_loads(s)
    except SerializationError as e:
        raise MetadataError('error decoding metadata') from e
    if not isinstance(meta, Mapping):
        raise MetadataError('expected a json object, found {}'.format(type(meta).__name__))
    return meta


def encode_dtype(dtype: DataType, byte_order: str = '<') -> str:
    if byte_order == '>' and dtype.itemsize > 1:
        return '>' + dtype.token
    return dtype.token


def decode_dtype(d: str):
    """Return the data type and the byte order of chunk data."""
    if not isinstance(d, str):
        raise MetadataError('dtype must be a string, found {!r}'.format(d))
    byte_order = '>' if d.startswith('>') else '<'
    return normalize_dtype(d), byte_order


def normalize_fill_value(fill_value, dtype: DataType):
    if fill_value is None:
        return None
    return narrow(fill_value, dtype).item()


def encode_fill_value(v: Any, dtype: DataType) -> Any:
    if v is None:
        return v
    if dtype.is_integer:
        return int(v)
    v = float(v)
    if math.isnan(v):
        return 'NaN'
    elif math.isinf(v):
        return 'Infinity' if v > 0 else '-Infinity'
    return v


def decode_fill_value(v: Any, dtype: DataType) -> Any:
    if v is None:
        return v
    if isinstance(v, str) and not dtype.is_integer and v in FLOAT_FILLS:
        return FLOAT_FILLS[v]
    if isinstance(v, bool) or not isinstance(v, numbers.Real):
        raise MetadataError('invalid fill_value {!r} for dtype {}'.format(v, dtype))
    return normalize_fill_value(v, dtype)


def decode_array_metadata(s: Union[Mapping, bytes, str]) -> Dict[str, Any]:
    meta = parse_metadata(s)

    # check metadata format
    zarr_format = meta.get('zarr_format', None)
    if zarr_format != ZARR_FORMAT:
        raise MetadataError('unsupported zarr format: {!r}'.format(zarr_format))

    # extract array metadata fields
    try:
        raw_shape = meta['shape']
        raw_chunks = meta['chunks']
        dtype, byte_order = decode_dtype(meta['dtype'])
        fill_value = decode_fill_value(meta['fill_value'], dtype)
        compressor = meta['compressor']
        order = meta.get('order', 'C')
        dimension_separator = meta.get('dimension_separator', None)
    except KeyError as e:
        raise MetadataError('error decoding metadata; missing field {}'.format(e)) from e
    if order != 'C':
        raise MetadataError('unsupported memory order: {!r}'.format(order))
    if compressor is not None and not isinstance(compressor, Mapping):
        raise MetadataError('compressor must be an object or null, found {!r}'
                            .format(compressor))

    shape = normalize_shape(raw_shape)
    chunks = normalize_chunks(raw_chunks, shape)
    if len(tuple(raw_chunks)) != len(shape):
        raise MetadataError('chunks {!r} do not match shape {!r}'.format(raw_chunks, shape))

    return dict(
        zarr_format=zarr_format,
        shape=shape,
        chunks=chunks,
        dtype=dtype,
        byte_order=byte_order,
        fill_value=fill_value,
        compressor=compressor,
        order=order,
        filters=None,
        dimension_separator=parse_dimension_separator(dimension_separator),
    )


def encode_array_metadata(meta: Mapping) -> bytes:
    dtype = normalize_dtype(meta['dtype'])
    dimension_separator: Optional[str] = meta.get('dimension_separator')
    meta = dict(
        zarr_format=ZARR_FORMAT,
        shape=list(meta['shape']),
        chunks=list(meta['chunks']),
        dtype=encode_dtype(dtype, meta.get('byte_order', '<')),
        compressor=meta['compressor'],
        fill_value=encode_fill_value(meta['fill_value'], dtype),
        order='C',
        filters=None,
    )
    if dimension_separator:
        meta['dimension_separator'] = parse_dimension_separator(dimension_separator)
    return json_dumps(meta)
