import logging
import numbers
import re

import numcodecs
from numcodecs.compat import ensure_bytes

from zchunk.attrs import Attributes
from zchunk.buffer import (Buffer, compute_size, create_data_buffer,
                           create_data_buffer_filled_with)
from zchunk.errors import (ArrayNotFoundError, BoundsCheckError, ConfigurationError,
                           ReadOnlyError, err_rank_mismatch)
from zchunk.indexing import (chunk_grid_shape, chunk_key, chunk_origin,
                             compute_chunk_indices, is_valid_chunk_index)
from zchunk.meta import decode_array_metadata
from zchunk.partial import copy_chunk_to_region, copy_region_to_chunk
from zchunk.storage import BaseStore, array_meta_key
from zchunk.util import nolock, normalize_storage_path, path_to_prefix

logger = logging.getLogger(__name__)


class Array(object):
    """Instantiate an array from an initialized store.

    Parameters
    ----------
    store : MutableMapping
        Array store, already initialized with :func:`zchunk.storage.init_array`.
    path : string, optional
        Storage path.
    read_only : bool, optional
        True if array should be protected against modification.
    chunk_store : MutableMapping, optional
        Separate storage for chunks. If not provided, `store` will be used
        for storage of both chunks and metadata.
    synchronizer : object, optional
        Array synchronizer. Writes to a chunk hold the synchronizer's lock for that
        chunk's key for the whole read-modify-write cycle. Without one, callers
        writing the same chunk concurrently must serialize those writes themselves.

    Examples
    --------
    >>> from zchunk.storage import init_array
    >>> store = dict()
    >>> init_array(store, shape=(4, 6), chunks=(2, 3), dtype='i4', fill_value=-1)
    >>> z = Array(store)
    >>> z.write([[1, 2], [3, 4]], offset=(1, 2))
    >>> sorted(k for k in store if not k.startswith('.'))
    ['0.0', '0.1', '1.0', '1.1']
    >>> z.read((2, 4), offset=(1, 1)).as_ndarray().tolist()
    [[-1, 1, 2, -1], [-1, 3, 4, -1]]

    """

    def __init__(
        self,
        store,
        path=None,
        read_only=False,
        chunk_store=None,
        synchronizer=None,
    ):
        self._store = BaseStore._ensure_store(store)
        self._chunk_store = BaseStore._ensure_store(chunk_store)
        self._path = normalize_storage_path(path)
        self._key_prefix = path_to_prefix(self._path)
        self._read_only = bool(read_only)
        self._synchronizer = synchronizer

        # initialize metadata
        self._load_metadata()

        # initialize attributes
        self._attrs = Attributes(self._store, path=self._path, read_only=read_only,
                                 synchronizer=synchronizer)

    def _load_metadata(self):
        mkey = self._key_prefix + array_meta_key
        try:
            meta_bytes = self._store[mkey]
        except KeyError:
            raise ArrayNotFoundError(self._path) from None
        meta = decode_array_metadata(meta_bytes)
        self._meta = meta
        self._shape = meta['shape']
        self._chunks = meta['chunks']
        self._dtype = meta['dtype']
        self._byte_order = meta['byte_order']
        self._fill_value = meta['fill_value']
        self._dimension_separator = meta['dimension_separator']
        config = meta['compressor']
        if config is None:
            self._compressor = None
        else:
            try:
                self._compressor = numcodecs.get_codec(dict(config))
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError(f'unknown compressor config {config!r}') from e

    @property
    def store(self):
        """A MutableMapping providing the underlying storage for the array."""
        return self._store

    @property
    def chunk_store(self):
        """A MutableMapping providing the underlying storage for array chunks."""
        if self._chunk_store is None:
            return self._store
        else:
            return self._chunk_store

    @property
    def path(self):
        """Storage path."""
        return self._path

    @property
    def name(self):
        """Array name following h5py convention."""
        if self._path:
            # follow h5py convention: add leading slash
            name = self._path
            if name[0] != '/':
                name = '/' + name
            return name
        return None

    @property
    def read_only(self):
        return self._read_only

    @property
    def shape(self):
        return self._shape

    @property
    def chunks(self):
        return self._chunks

    @property
    def dtype(self):
        return self._dtype

    @property
    def fill_value(self):
        return self._fill_value

    @property
    def compressor(self):
        return self._compressor

    @property
    def attrs(self):
        """An :class:`Attributes` instance for the user-defined attributes of
        this array."""
        return self._attrs

    @property
    def ndim(self):
        return len(self._shape)

    @property
    def size(self):
        return compute_size(self._shape)

    @property
    def cdata_shape(self):
        """A tuple of integers describing the number of chunks along each
        dimension of the array."""
        return chunk_grid_shape(self._shape, self._chunks)

    @property
    def nchunks(self):
        """Total number of chunks."""
        return compute_size(self.cdata_shape)

    @property
    def nchunks_initialized(self):
        """The number of chunks that have been initialized with some data."""
        sep = re.escape(self._dimension_separator)
        if self.ndim:
            prog = re.compile(sep.join([r'\d+'] * self.ndim) + '$')
        else:
            prog = re.compile(r'0$')
        prefix = self._key_prefix
        return sum(1 for k in list(self.chunk_store.keys())
                   if k.startswith(prefix) and prog.match(k[len(prefix):]))

    def _normalize_offset(self, offset):
        if offset is None:
            return (0,) * self.ndim
        if isinstance(offset, numbers.Integral):
            offset = (offset,)
        offset = tuple(int(o) for o in offset)
        if len(offset) != self.ndim:
            err_rank_mismatch('region offset', self.ndim, len(offset))
        return offset

    def _chunk_key(self, chunk_index):
        return self._key_prefix + chunk_key(chunk_index, self._dimension_separator)

    def _new_chunk(self):
        if self._fill_value is None:
            return create_data_buffer(self._dtype, self._chunks)
        return create_data_buffer_filled_with(self._fill_value, self._dtype, self._chunks)

    def read(self, shape=None, offset=None):
        """Read a region of the array.

        Parameters
        ----------
        shape : tuple of ints, optional
            Shape of the region. Defaults to everything from `offset` to the end of
            the array.
        offset : tuple of ints, optional
            Position of the region's origin within the array. Defaults to the
            origin of the array. Components may be negative.

        Returns
        -------
        Buffer
            Region data. Positions outside the array or in chunks that were never
            written hold the fill value.

        """

        offset = self._normalize_offset(offset)
        if shape is None:
            shape = tuple(max(0, s - o) for s, o in zip(self._shape, offset))
        elif isinstance(shape, numbers.Integral):
            shape = (int(shape),)
        shape = tuple(int(s) for s in shape)
        if len(shape) != self.ndim:
            err_rank_mismatch('region shape', self.ndim, len(shape))

        fill_value = 0 if self._fill_value is None else self._fill_value
        region = create_data_buffer_filled_with(fill_value, self._dtype, shape)
        if region.size == 0:
            return region

        grid_shape = self.cdata_shape
        for chunk_index in compute_chunk_indices(self._shape, self._chunks, shape, offset):
            if not is_valid_chunk_index(chunk_index, grid_shape):
                # nothing stored outside the chunk grid
                continue
            chunk = self._load_chunk(self._chunk_key(chunk_index))
            if chunk is None:
                continue
            origin = chunk_origin(chunk_index, self._chunks)
            to = tuple(o - c for o, c in zip(offset, origin))
            copy_chunk_to_region(to, chunk, region)

        return region

    def write(self, data, offset=None):
        """Write a region of the array.

        Parameters
        ----------
        data : Buffer or array-like
            Region data; converted to the array's data type. Its shape is the
            shape of the region.
        offset : tuple of ints, optional
            Position of the region's origin within the array. The whole region must
            lie within the array.

        """

        # guard conditions
        if self._read_only:
            raise ReadOnlyError()

        offset = self._normalize_offset(offset)
        value = Buffer.from_array(data, dtype=self._dtype)
        if value.ndim != self.ndim:
            err_rank_mismatch('region shape', self.ndim, value.ndim)
        if any(o < 0 or o + n > s for o, n, s in zip(offset, value.shape, self._shape)):
            raise BoundsCheckError(value.shape, offset, self._shape)
        if value.size == 0:
            return

        for chunk_index in compute_chunk_indices(self._shape, self._chunks,
                                                 value.shape, offset):
            origin = chunk_origin(chunk_index, self._chunks)
            to = tuple(o - c for o, c in zip(offset, origin))
            self._chunk_write(chunk_index, to, value)

    def _chunk_write(self, chunk_index, to, value):
        ckey = self._chunk_key(chunk_index)
        if self._synchronizer is None:
            # no synchronization
            lock = nolock
        else:
            # synchronize on the chunk
            lock = self._synchronizer[ckey]

        with lock:
            self._chunk_write_nosync(chunk_index, ckey, to, value)

    def _chunk_write_nosync(self, chunk_index, ckey, to, value):
        if self._covers_chunk(chunk_index, to, value.shape):
            # totally replace chunk, no need to access the existing chunk data
            chunk = self._new_chunk()
        else:
            # partially replace the contents of this chunk
            chunk = self._load_chunk(ckey)
            if chunk is None:
                chunk = self._new_chunk()

        copy_region_to_chunk(to, value, chunk)
        self._store_chunk(ckey, chunk)

    def _covers_chunk(self, chunk_index, to, region_shape):
        # only the part of an edge chunk that lies within the array needs covering
        origin = chunk_origin(chunk_index, self._chunks)
        for t, n, c, o, s in zip(to, region_shape, self._chunks, origin, self._shape):
            extent = min(c, s - o)
            if t > 0 or t + n < extent:
                return False
        return True

    def _load_chunk(self, ckey):
        stream = self.chunk_store.get_input_stream(ckey)
        if stream is None:
            return None
        with stream:
            cdata = stream.read()
        logger.debug("loaded chunk %r (%d bytes)", ckey, len(cdata))
        return self._decode_chunk(cdata)

    def _store_chunk(self, ckey, chunk):
        cdata = self._encode_chunk(chunk)
        with self.chunk_store.get_output_stream(ckey) as stream:
            stream.write(cdata)
        logger.debug("stored chunk %r (%d bytes)", ckey, len(cdata))

    def _decode_chunk(self, cdata):
        # decompress
        if self._compressor:
            chunk = self._compressor.decode(cdata)
        else:
            chunk = cdata
        return Buffer.frombytes(chunk, self._dtype, self._chunks, byte_order=self._byte_order)

    def _encode_chunk(self, chunk):
        raw = chunk.tobytes(byte_order=self._byte_order)
        if self._compressor:
            cdata = self._compressor.encode(raw)
        else:
            cdata = raw
        return ensure_bytes(cdata)

    def __repr__(self):
        t = type(self)
        r = f"<{t.__module__}.{t.__name__}"
        if self.name:
            r += f" {self.name!r}"
        r += f" {str(self.shape)}"
        r += f" {self.dtype}"
        if self._read_only:
            r += " read-only"
        r += ">"
        return r
