import json
import numbers
import os
from collections.abc import Mapping
from threading import Lock
from typing import Any, Optional, Tuple, Union

import numpy as np
from numcodecs.compat import ensure_text

from zchunk.config import config, parse_json_indent
from zchunk.errors import ConfigurationError, SerializationError


class JSONCodec:
    """Encoder/decoder pair used for every JSON document written by this package.

    Instances hold no mutable state once constructed, so a single instance can be
    shared freely between threads.

    Parameters
    ----------
    indent : int, optional
        Number of spaces used for each nesting level when pretty printing.
    linesep : str, optional
        Line break used when pretty printing. Defaults to the platform line break.

    """

    def __init__(self, indent: int = 4, linesep: Optional[str] = None):
        self.indent = parse_json_indent(indent)
        self.linesep = os.linesep if linesep is None else linesep
        self._encoder = json.JSONEncoder(ensure_ascii=False, allow_nan=False,
                                         separators=(',', ':'))
        self._pretty_encoder = json.JSONEncoder(ensure_ascii=False, allow_nan=False,
                                                indent=self.indent,
                                                separators=(',', ': '))
        self._decoder = json.JSONDecoder()

    def dumps(self, o: Any, pretty: bool = False) -> str:
        try:
            if not pretty:
                return self._encoder.encode(o)
            text = self._pretty_encoder.encode(o)
        except (TypeError, ValueError) as e:
            raise SerializationError('unable to convert the source object to json') from e
        # newlines inside strings are escaped by the encoder, so every remaining
        # newline is structural
        if self.linesep != '\n':
            text = text.replace('\n', self.linesep)
        return text

    def loads(self, s: Union[str, bytes]) -> Any:
        try:
            text = ensure_text(s, 'utf-8')
            return self._decoder.decode(text)
        except (TypeError, ValueError) as e:
            raise SerializationError('unable to parse json document') from e


_json_codec: Optional[JSONCodec] = None
_json_codec_lock = Lock()


def get_json_codec() -> JSONCodec:
    """Return the process-wide JSON codec, creating it on first use."""
    global _json_codec
    if _json_codec is None:
        with _json_codec_lock:
            if _json_codec is None:
                _json_codec = JSONCodec(indent=config.get('json_indent'))
    return _json_codec


def json_dumps(o: Any, pretty: bool = True) -> bytes:
    """Write JSON in a consistent, human-readable way."""
    return get_json_codec().dumps(o, pretty=pretty).encode('utf-8')


def json_loads(s: Union[str, bytes]) -> Any:
    """Read JSON in a consistent way."""
    return get_json_codec().loads(s)


def normalize_json_value(value: Any) -> Any:
    """Coerce `value` into the JSON value model (null, bool, number, string,
    list, string-keyed mapping)."""

    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real):
        return float(value)
    if isinstance(value, np.ndarray):
        return normalize_json_value(value.tolist())
    if isinstance(value, (list, tuple)):
        return [normalize_json_value(v) for v in value]
    if isinstance(value, Mapping):
        d = dict()
        for k, v in value.items():
            if not isinstance(k, str):
                raise SerializationError('json object keys must be strings, found {!r}'
                                         .format(k))
            d[k] = normalize_json_value(v)
        return d
    raise SerializationError('value {!r} of type {} cannot be represented as json'
                             .format(value, type(value).__name__))


def normalize_shape(shape) -> Tuple[int, ...]:
    """Convenience function to normalize the `shape` argument."""

    if shape is None:
        raise TypeError('shape is None')

    # handle 1D convenience form
    if isinstance(shape, numbers.Integral):
        shape = (int(shape),)

    # normalize
    try:
        shape = tuple(int(s) for s in shape)
    except (TypeError, ValueError) as e:
        raise ConfigurationError('invalid shape: {!r}'.format(shape)) from e
    if any(s < 1 for s in shape):
        raise ConfigurationError('shape components must be >= 1, found {!r}'.format(shape))
    return shape


def normalize_chunks(chunks, shape: Tuple[int, ...]) -> Tuple[int, ...]:
    """Convenience function to normalize the `chunks` argument for an array
    with the given `shape`. ``None`` or ``False`` means a single chunk spanning
    the whole array."""

    # N.B., expect shape already normalized

    # handle no chunking
    if chunks is None or chunks is False:
        return tuple(shape)

    # handle 1D convenience form
    if isinstance(chunks, numbers.Integral):
        chunks = tuple(int(chunks) for _ in shape)

    try:
        chunks = tuple(chunks)
    except TypeError as e:
        raise ConfigurationError('invalid chunks: {!r}'.format(chunks)) from e

    # handle bad dimensionality
    if len(chunks) > len(shape):
        raise ConfigurationError('too many dimensions in chunks')

    # handle underspecified chunks
    if len(chunks) < len(shape):
        # assume chunks across remaining dimensions
        chunks += tuple(shape[len(chunks):])

    # handle None or -1 in chunks
    try:
        chunks = tuple(s if c == -1 or c is None else int(c)
                       for s, c in zip(shape, chunks))
    except (TypeError, ValueError) as e:
        raise ConfigurationError('invalid chunks: {!r}'.format(chunks)) from e

    if any(c < 1 for c in chunks):
        raise ConfigurationError('chunk components must be >= 1, found {!r}'.format(chunks))

    return chunks


def normalize_storage_path(path: Union[str, bytes, None]) -> str:

    # handle bytes
    if isinstance(path, bytes):
        path = str(path, 'ascii')

    # ensure str
    if path is not None and not isinstance(path, str):
        path = str(path)

    if path:

        # convert backslash to forward slash
        path = path.replace('\\', '/')

        # ensure no leading or trailing slash
        path = path.strip('/')

        # collapse any repeated slashes
        path = '/'.join(s for s in path.split('/') if s)

        # don't allow path segments with just '.' or '..'
        segments = path.split('/')
        if any(s in {'.', '..'} for s in segments):
            raise ConfigurationError("path containing '.' or '..' segment not allowed")

    else:
        path = ''

    return path


def path_to_prefix(path: Optional[str]) -> str:
    # assume path already normalized
    if path:
        return path + '/'
    return ''


class NoLock(object):
    """A lock that doesn't lock."""

    def __enter__(self):
        pass

    def __exit__(self, *args):
        pass


nolock = NoLock()
