"""This module contains storage classes for chunked arrays.

Any object implementing the :class:`MutableMapping` interface from the
:mod:`collections` module in the Python standard library can be used as a store,
as long as it accepts string (str) keys and bytes values. Such mappings are
wrapped in a :class:`KVStore` where a :class:`Store` is required.

On top of the mapping interface, stores provide a stream boundary used by the
chunk and attribute I/O paths: `get_input_stream` (returns None for a missing
key), `get_output_stream` (the value is committed when the stream is closed) and
`delete_recursively` (removes a key and everything nested under it, innermost
entries first).

"""

import io
import logging
import os
import time
import uuid
import zipfile
from collections.abc import MutableMapping
from threading import Lock, RLock
from typing import Any, BinaryIO, List, Optional, Union

import numcodecs
from numcodecs.abc import Codec
from numcodecs.compat import ensure_bytes, ensure_contiguous_ndarray

from zchunk.config import config, parse_dimension_separator
from zchunk.dtype import normalize_dtype
from zchunk.errors import (
    ConfigurationError,
    ContainsArrayError,
    FSPathExistNotDir,
    ReadOnlyError,
    StorageError,
)
from zchunk.meta import encode_array_metadata, normalize_fill_value
from zchunk.types import PathLike as Path
from zchunk.util import normalize_chunks, normalize_shape, normalize_storage_path, path_to_prefix

logger = logging.getLogger(__name__)

# store keys
array_meta_key = '.zarray'
attrs_key = '.zattrs'


class _StoreOutputStream(io.BytesIO):
    """In-memory stream whose content is written to the store when closed.

    If the stream is used as a context manager and the block raises, nothing is
    written.
    """

    def __init__(self, store, key):
        super().__init__()
        self._store = store
        self._key = key
        self._discard = False

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is not None:
            self._discard = True
        self.close()

    def close(self):
        if self.closed:
            return
        try:
            if not self._discard:
                self._store[self._key] = self.getvalue()
        finally:
            super().close()


class BaseStore(MutableMapping):
    """Abstract base class for store implementations.

    This is a thin wrapper over MutableMapping that provides methods to check
    whether a store is writeable and erasable, plus the stream based access used
    for chunk and attribute I/O.

    Stores can be used as context manager to make sure they close on exit.

    """

    _writeable = True
    _erasable = True

    def is_writeable(self):
        return self._writeable

    def is_erasable(self):
        return self._erasable

    def __enter__(self):
        if not hasattr(self, "_open_count"):
            self._open_count = 0
        self._open_count += 1
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self._open_count -= 1
        if self._open_count == 0:
            self.close()

    def close(self) -> None:
        """Do nothing by default"""
        pass

    def get_input_stream(self, key: str) -> Optional[BinaryIO]:
        """Open the value stored under `key` for reading.

        Returns None if there is no such key. The caller is responsible for
        closing the stream, ideally by using it as a context manager.
        """
        try:
            value = self[key]
        except KeyError:
            return None
        return io.BytesIO(ensure_bytes(value))

    def get_output_stream(self, key: str) -> BinaryIO:
        """Open a stream for writing the value of `key`. The key is created, or its
        content replaced, when the stream is closed."""
        if not self.is_writeable():
            raise ReadOnlyError()
        return _StoreOutputStream(self, key)

    def delete_recursively(self, path: Path = None) -> None:
        """Remove the key `path` and all keys nested under it, innermost first.
        An empty path removes everything."""
        if not self.is_erasable():
            raise StorageError(
                f'{type(self).__name__} is not erasable, cannot call "delete_recursively"'
            )
        path = normalize_storage_path(path)
        _delete_from_keys(self, path)

    @staticmethod
    def _ensure_store(store: Any):
        """
        We want to make sure internally that stores are always a class with a
        specific interface derived from ``BaseStore``, which is slightly different
        than ``MutableMapping``.

        We'll do this conversion in a few places automatically
        """
        if store is None:
            return None
        elif isinstance(store, BaseStore):
            return store
        elif isinstance(store, MutableMapping):
            return KVStore(store)
        else:
            for attr in [
                "keys",
                "values",
                "get",
                "__setitem__",
                "__getitem__",
                "__delitem__",
                "__contains__",
            ]:
                if not hasattr(store, attr):
                    break
            else:
                return KVStore(store)

        raise ConfigurationError(
            "stores must be subclasses of BaseStore, if your store exposes the "
            f"MutableMapping interface wrap it in zchunk.storage.KVStore. Got {store}"
        )


class Store(BaseStore):
    """Abstract store class adding a public `listdir` method on top of BaseStore."""

    def listdir(self, path: str = "") -> List[str]:
        path = normalize_storage_path(path)
        return _listdir_from_keys(self, path)


# allow MutableMapping for backwards compatibility
StoreLike = Union[BaseStore, MutableMapping]


def _delete_from_keys(store: StoreLike, path: str) -> None:
    # assume path already normalized
    prefix = path_to_prefix(path)
    keys = [k for k in list(store.keys()) if k == path or k.startswith(prefix)]
    # reverse order removes nested keys before the keys they are nested under
    for key in sorted(keys, reverse=True):
        del store[key]


def _listdir_from_keys(store: StoreLike, path: Optional[str] = None) -> List[str]:
    # assume path already normalized
    prefix = path_to_prefix(path)
    children = set()
    for key in list(store.keys()):
        if key.startswith(prefix) and len(key) > len(prefix):
            suffix = key[len(prefix):]
            child = suffix.split('/')[0]
            children.add(child)
    return sorted(children)


def contains_array(store: StoreLike, path: Path = None) -> bool:
    """Return True if the store contains an array at the given logical path."""
    path = normalize_storage_path(path)
    key = path_to_prefix(path) + array_meta_key
    return key in store


def delete_recursively(store: StoreLike, path: Path = None) -> None:
    """Remove all items under the given path. Falls back to deleting key by key
    for plain mappings."""
    path = normalize_storage_path(path)
    logger.debug("deleting %r recursively from %r", path, store)
    if isinstance(store, BaseStore):
        store.delete_recursively(path)
    else:
        _delete_from_keys(store, path)


def listdir(store: StoreLike, path: Path = None) -> List[str]:
    """Obtain a directory listing for the given path."""
    path = normalize_storage_path(path)
    if hasattr(store, 'listdir'):
        return store.listdir(path)
    return _listdir_from_keys(store, path)


def normalize_compressor(compressor) -> Optional[Codec]:
    if isinstance(compressor, str) and compressor == 'default':
        compressor = config.get('array.compressor')
    if compressor is None:
        return None
    if isinstance(compressor, str) and compressor == 'default':
        return numcodecs.Blosc()
    if isinstance(compressor, Codec):
        return compressor
    if isinstance(compressor, dict):
        try:
            return numcodecs.get_codec(compressor)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f'unknown compressor config {compressor!r}') from e
    raise ConfigurationError(f'bad compressor; expected Codec object, found {compressor!r}')


def init_array(
    store: StoreLike,
    shape,
    chunks=None,
    dtype='f8',
    compressor='default',
    fill_value=0,
    overwrite: bool = False,
    path: Path = None,
    chunk_store: Optional[StoreLike] = None,
    dimension_separator: Optional[str] = None,
):
    """Initialize an array store with the given configuration.

    Every argument is validated before anything in the store is touched.

    Parameters
    ----------
    store : Store
        A mapping that supports string keys and bytes-like values.
    shape : int or tuple of ints
        Array shape.
    chunks : int or tuple of ints, optional
        Chunk shape. If None, the whole array is a single chunk.
    dtype : string or DataType, optional
        One of the tokens 'i1', 'u1', 'i2', 'u2', 'i4', 'u4', 'i8', 'f4', 'f8'.
    compressor : Codec, optional
        Primary compressor. 'default' uses the configured default compressor,
        None stores chunks uncompressed.
    fill_value : number, optional
        Value of array elements in chunks that were never written.
    overwrite : bool, optional
        If True, erase all data under `path` prior to initialisation. The store
        (and chunk store) must then be erasable.
    path : string, bytes, optional
        Path under which array is stored.
    chunk_store : Store, optional
        Separate storage for chunks. If not provided, `store` will be used
        for storage of both chunks and metadata.
    dimension_separator : {'.', '/'}, optional
        Separator placed between the dimensions of a chunk key.

    Examples
    --------
    Initialize an array store::

        >>> from zchunk.storage import init_array, KVStore
        >>> store = KVStore(dict())
        >>> init_array(store, shape=(10000, 10000), chunks=(1000, 1000), dtype='i4')
        >>> sorted(store.keys())
        ['.zarray']

    """

    # normalize and validate everything up front
    path = normalize_storage_path(path)
    shape = normalize_shape(shape)
    chunks = normalize_chunks(chunks, shape)
    dtype = normalize_dtype(dtype)
    fill_value = normalize_fill_value(fill_value, dtype)
    compressor = normalize_compressor(compressor)
    if dimension_separator is None:
        dimension_separator = config.get('array.dimension_separator')
    dimension_separator = parse_dimension_separator(dimension_separator)
    meta = dict(
        shape=shape,
        chunks=chunks,
        dtype=dtype,
        compressor=compressor.get_config() if compressor is not None else None,
        fill_value=fill_value,
        dimension_separator=dimension_separator,
    )
    encoded = encode_array_metadata(meta)
    if overwrite:
        for s in (store, chunk_store):
            if isinstance(s, BaseStore) and not s.is_erasable():
                raise ConfigurationError(
                    f"cannot overwrite, {type(s).__name__} is not erasable"
                )

    # guard conditions
    if contains_array(store, path):
        if not overwrite:
            raise ContainsArrayError(path)
        delete_recursively(store, path)
        if chunk_store is not None:
            delete_recursively(chunk_store, path)

    key = path_to_prefix(path) + array_meta_key
    logger.debug("initializing array at %r with shape %r and chunks %r", path, shape, chunks)
    store[key] = encoded


def _dict_store_keys(d, prefix="", cls=dict):
    for k in d.keys():
        v = d[k]
        if isinstance(v, cls):
            yield from _dict_store_keys(v, prefix + k + "/", cls)
        else:
            yield prefix + k


class KVStore(Store):
    """
    This provides a default implementation of a store interface around
    a mutable mapping, to avoid having to test stores for presence of methods.

    This, for most methods should just be a pass-through to the underlying KV
    store which is likely to expose a MutableMapping interface.
    """

    def __init__(self, mutablemapping):
        self._mutable_mapping = mutablemapping

    def __getitem__(self, key):
        return self._mutable_mapping[key]

    def __setitem__(self, key, value):
        self._mutable_mapping[key] = value

    def __delitem__(self, key):
        del self._mutable_mapping[key]

    def __contains__(self, key):
        return key in self._mutable_mapping

    def get(self, key, default=None):
        return self._mutable_mapping.get(key, default)

    def values(self):
        return self._mutable_mapping.values()

    def __iter__(self):
        return iter(self._mutable_mapping)

    def __len__(self):
        return len(self._mutable_mapping)

    def __repr__(self):
        return f"<{self.__class__.__name__}: \n{self._mutable_mapping!r}\n at {id(self):#x}>"

    def __eq__(self, other):
        if isinstance(other, KVStore):
            return self._mutable_mapping == other._mutable_mapping
        else:
            return NotImplemented


class MemoryStore(Store):
    """Store class that uses a hierarchy of dictionaries, thus all data
    will be held in main memory.

    Notes
    -----
    Safe to write in multiple threads.

    """

    def __init__(self, root=None, cls=dict):
        if root is None:
            self.root = cls()
        else:
            self.root = root
        self.cls = cls
        self.write_mutex = Lock()

    def _get_parent(self, item: str):
        parent = self.root
        # split the item
        segments = item.split("/")
        # find the parent container
        for k in segments[:-1]:
            parent = parent[k]
            if not isinstance(parent, self.cls):
                raise KeyError(item)
        return parent, segments[-1]

    def _require_parent(self, item):
        parent = self.root
        # split the item
        segments = item.split("/")
        # require the parent container
        for k in segments[:-1]:
            try:
                parent = parent[k]
            except KeyError:
                parent[k] = self.cls()
                parent = parent[k]
            else:
                if not isinstance(parent, self.cls):
                    raise KeyError(item)
        return parent, segments[-1]

    def __getitem__(self, item: str):
        parent, key = self._get_parent(item)
        try:
            value = parent[key]
        except KeyError as e:
            raise KeyError(item) from e
        else:
            if isinstance(value, self.cls):
                raise KeyError(item)
            else:
                return value

    def __setitem__(self, item: str, value):
        with self.write_mutex:
            parent, key = self._require_parent(item)
            value = ensure_bytes(value)
            parent[key] = value

    def __delitem__(self, item: str):
        with self.write_mutex:
            parent, key = self._get_parent(item)
            try:
                del parent[key]
            except KeyError as e:
                raise KeyError(item) from e

    def __contains__(self, item: str):  # type: ignore[override]
        try:
            parent, key = self._get_parent(item)
            value = parent[key]
        except KeyError:
            return False
        else:
            return not isinstance(value, self.cls)

    def keys(self):
        yield from _dict_store_keys(self.root, cls=self.cls)

    def __iter__(self):
        return self.keys()

    def __len__(self) -> int:
        return sum(1 for _ in self.keys())

    def listdir(self, path: Path = None) -> List[str]:
        path = normalize_storage_path(path)
        if path:
            try:
                parent, key = self._get_parent(path)
                value = parent[key]
            except KeyError:
                return []
        else:
            value = self.root
        if isinstance(value, self.cls):
            return sorted(value.keys())
        else:
            return []

    def delete_recursively(self, path: Path = None) -> None:
        path = normalize_storage_path(path)
        with self.write_mutex:
            if path:
                try:
                    parent, key = self._get_parent(path)
                    del parent[key]
                except KeyError:
                    return
            else:
                # clear out root
                self.root = self.cls()

    def clear(self):
        with self.write_mutex:
            self.root.clear()


class DirectoryStore(Store):
    """Storage class using directories and files on a standard file system.

    Parameters
    ----------
    path : string
        Location of directory to use as the root of the storage hierarchy.
    mode : {'r', 'a'}, optional
        With 'r' the directory must already exist and the store is read-only.
        With 'a' (default) the directory is created on the first write.

    Examples
    --------
    Store a single array::

        >>> from zchunk.storage import DirectoryStore, init_array
        >>> from zchunk.core import Array
        >>> store = DirectoryStore('data/array.zchunk')
        >>> init_array(store, shape=(10, 10), chunks=(5, 5), dtype='i4', overwrite=True)
        >>> z = Array(store)
        >>> z.write([[42] * 10] * 10)

    Each chunk of the array is stored as a separate file on the file system,
    i.e.::

        >>> import os
        >>> sorted(os.listdir('data/array.zchunk'))
        ['.zarray', '0.0', '0.1', '1.0', '1.1']

    Notes
    -----
    Atomic writes are used, which means that data are first written to a
    temporary file, then moved into place when the write is successfully
    completed. Files are only held open while they are being read or written and are
    closed immediately afterwards, so there is no need to manually close any files.

    Safe to write in multiple threads or processes.

    """

    def __init__(self, path, mode='a'):
        # guard conditions
        path = os.path.abspath(path)
        if os.path.exists(path) and not os.path.isdir(path):
            raise FSPathExistNotDir(path)
        if mode == 'r':
            if not os.path.isdir(path):
                raise ConfigurationError(
                    f"path {path!r} is not a valid path or not a directory"
                )
            self._writeable = False
            self._erasable = False
        elif mode != 'a':
            raise ConfigurationError(f"bad mode: {mode!r}")

        self.path = path
        self.mode = mode

    @staticmethod
    def _fromfile(fn):
        with open(fn, "rb") as f:
            return f.read()

    @staticmethod
    def _tofile(a, fn):
        with open(fn, mode="wb") as f:
            f.write(a)

    def _check_writeable(self):
        if not self._writeable:
            raise ReadOnlyError()

    def __getitem__(self, key):
        filepath = os.path.join(self.path, key)
        if os.path.isfile(filepath):
            try:
                return self._fromfile(filepath)
            except OSError as e:
                raise StorageError(f"unable to read key {key!r} from {self.path!r}") from e
        else:
            raise KeyError(key)

    def get_input_stream(self, key):
        filepath = os.path.join(self.path, key)
        if not os.path.isfile(filepath):
            return None
        try:
            return open(filepath, "rb")
        except OSError as e:
            raise StorageError(f"unable to open key {key!r} in {self.path!r}") from e

    def __setitem__(self, key, value):
        self._check_writeable()

        # coerce to flat, contiguous array (ideally without copying)
        value = ensure_contiguous_ndarray(value)

        # destination path for key
        file_path = os.path.join(self.path, key)
        dir_path, file_name = os.path.split(file_path)

        # write to temporary file
        # note we're not using tempfile.NamedTemporaryFile to avoid restrictive file permissions
        temp_name = file_name + "." + uuid.uuid4().hex + ".partial"
        temp_path = os.path.join(dir_path, temp_name)
        try:
            # ensure containing directory exists
            os.makedirs(dir_path, exist_ok=True)
            self._tofile(value, temp_path)

            # move temporary file into place
            os.replace(temp_path, file_path)
        except OSError as e:
            raise StorageError(f"unable to write key {key!r} to {self.path!r}") from e
        finally:
            # clean up if temp file still exists for whatever reason
            if os.path.exists(temp_path):  # pragma: no cover
                os.remove(temp_path)

    def __delitem__(self, key):
        self._check_writeable()
        path = os.path.join(self.path, key)
        if not os.path.isfile(path):
            raise KeyError(key)
        try:
            os.remove(path)
        except OSError as e:
            raise StorageError(f"unable to delete key {key!r} from {self.path!r}") from e

    def __contains__(self, key):
        file_path = os.path.join(self.path, key)
        return os.path.isfile(file_path)

    def keys(self):
        if os.path.exists(self.path):
            yield from self._keys_fast(self.path)

    @staticmethod
    def _keys_fast(path, walker=os.walk):
        for dirpath, _, filenames in walker(path):
            dirpath = os.path.relpath(dirpath, path)
            if dirpath == os.curdir:
                for f in filenames:
                    yield f
            else:
                dirpath = dirpath.replace("\\", "/")
                for f in filenames:
                    yield "/".join((dirpath, f))

    def __iter__(self):
        return self.keys()

    def __len__(self):
        return sum(1 for _ in self.keys())

    def dir_path(self, path=None):
        store_path = normalize_storage_path(path)
        dir_path = self.path
        if store_path:
            dir_path = os.path.join(dir_path, store_path)
        return dir_path

    def listdir(self, path=None):
        dir_path = self.dir_path(path)
        if os.path.isdir(dir_path):
            return sorted(os.listdir(dir_path))
        else:
            return []

    def delete_recursively(self, path=None):
        self._check_writeable()
        fs_path = self.dir_path(path)
        try:
            if os.path.isfile(fs_path):
                os.remove(fs_path)
            elif os.path.isdir(fs_path):
                entries = [fs_path]
                for dirpath, dirnames, filenames in os.walk(fs_path):
                    entries.extend(os.path.join(dirpath, n) for n in dirnames + filenames)
                # reverse order visits the entries of a directory before the directory
                for entry in sorted(entries, reverse=True):
                    if os.path.isdir(entry) and not os.path.islink(entry):
                        os.rmdir(entry)
                    else:
                        os.remove(entry)
        except OSError as e:
            raise StorageError(f"unable to delete {fs_path!r}") from e


# noinspection PyPep8Naming
class ZipStore(Store):
    """Storage class using a Zip file.

    Parameters
    ----------
    path : string
        Location of file.
    compression : integer, optional
        Compression method to use when writing to the archive.
    allowZip64 : bool, optional
        If True (the default) will create ZIP files that use the ZIP64
        extensions when the zipfile is larger than 2 GiB. If False
        will raise an exception when the ZIP file would require ZIP64
        extensions.
    mode : string, optional
        One of 'r' to read an existing file, 'w' to truncate and write a new
        file, 'a' to append to an existing file, or 'x' to exclusively create
        and write a new file.

    Notes
    -----
    Each chunk of an array is stored as a separate entry in the Zip file. Zip files
    do not provide any way to remove or replace existing entries, so this store
    is not erasable, and writing the same chunk twice leaves a duplicate entry.

    After modifying a ZipStore, the ``close()`` method must be called, otherwise
    essential data will not be written to the underlying Zip file.

    Safe to write in multiple threads but not in multiple processes.

    """

    _erasable = False

    def __init__(self, path, compression=zipfile.ZIP_STORED, allowZip64=True, mode="a"):
        # store properties
        path = os.path.abspath(path)
        self.path = path
        self.compression = compression
        self.allowZip64 = allowZip64
        self.mode = mode
        if mode == "r":
            self._writeable = False

        # zipfile in the stdlib is not thread-safe, lock for both read and write
        self.mutex = RLock()

        # open zip file
        try:
            self.zf = zipfile.ZipFile(path, mode=mode, compression=compression,
                                      allowZip64=allowZip64)
        except (OSError, zipfile.BadZipFile) as e:
            raise StorageError(f"unable to open zip file {path!r}") from e

    def close(self):
        """Closes the underlying zip file, ensuring all records are written."""
        with self.mutex:
            self.zf.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def __getitem__(self, key):
        with self.mutex:
            try:
                with self.zf.open(key) as f:  # will raise KeyError
                    return f.read()
            except (OSError, zipfile.BadZipFile) as e:
                raise StorageError(f"unable to read key {key!r} from {self.path!r}") from e

    def __setitem__(self, key, value):
        if self.mode == "r":
            raise ReadOnlyError()
        value = ensure_contiguous_ndarray(value).view("u1")
        with self.mutex:
            # writestr(key, value) writes with default permissions from
            # zipfile (600) that are too restrictive, build ZipInfo for
            # the key to work around limitation
            keyinfo = zipfile.ZipInfo(filename=key, date_time=time.localtime(time.time())[:6])
            keyinfo.compress_type = self.compression
            keyinfo.external_attr = 0o644 << 16  # ?rw-r--r--
            try:
                self.zf.writestr(keyinfo, value.tobytes())
            except (OSError, ValueError) as e:
                raise StorageError(f"unable to write key {key!r} to {self.path!r}") from e

    def __delitem__(self, key):
        raise StorageError(f"cannot delete key {key!r}, zip files are not erasable")

    def keylist(self):
        with self.mutex:
            return sorted(set(self.zf.namelist()))

    def keys(self):
        yield from self.keylist()

    def __iter__(self):
        return self.keys()

    def __len__(self):
        return sum(1 for _ in self.keys())

    def __contains__(self, key):
        try:
            with self.mutex:
                self.zf.getinfo(key)
        except KeyError:
            return False
        else:
            return True
