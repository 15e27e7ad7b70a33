import logging
from collections.abc import Mapping, MutableMapping
from typing import Optional

from zchunk.errors import ReadOnlyError, SerializationError
from zchunk.storage import BaseStore, attrs_key
from zchunk.types import AttributeMap, PathLike
from zchunk.util import (JSONCodec, get_json_codec, normalize_json_value,
                         normalize_storage_path, path_to_prefix)

logger = logging.getLogger(__name__)


def _attrs_key(path: PathLike) -> str:
    return path_to_prefix(normalize_storage_path(path)) + attrs_key


def write_attributes(attributes: Optional[Mapping], path: PathLike, store,
                     codec: Optional[JSONCodec] = None) -> None:
    """Write `attributes` as a pretty printed JSON object under the attributes key
    of `path`.

    Nothing is written for an empty mapping; a missing key is how an empty
    attribute set is represented.
    """
    if not attributes:
        return
    store = BaseStore._ensure_store(store)
    codec = get_json_codec() if codec is None else codec
    key = _attrs_key(path)
    text = codec.dumps(normalize_json_value(dict(attributes)), pretty=True)
    logger.debug("writing %d attributes to %r", len(attributes), key)
    with store.get_output_stream(key) as stream:
        stream.write(text.encode('utf-8'))


def read_attributes(path: PathLike, store, codec: Optional[JSONCodec] = None) -> AttributeMap:
    """Read the attributes stored for `path`. Returns an empty dict if there are
    none."""
    store = BaseStore._ensure_store(store)
    codec = get_json_codec() if codec is None else codec
    key = _attrs_key(path)
    stream = store.get_input_stream(key)
    if stream is None:
        return dict()
    with stream:
        data = stream.read()
    logger.debug("read %d bytes of attributes from %r", len(data), key)
    d = codec.loads(data)
    if not isinstance(d, dict):
        raise SerializationError('attributes under {!r} are not a json object'.format(key))
    return d


class Attributes(MutableMapping):
    """Class providing access to user attributes on an array. Every read goes to
    the store and every modification is written back immediately; nothing is
    cached.

    Parameters
    ----------
    store : MutableMapping
        The store in which to store the attributes.
    path : str, optional
        Storage path of the array or group owning the attributes.
    read_only : bool, optional
        If True, attributes cannot be modified.
    synchronizer : Synchronizer
        Only necessary if attributes may be modified from multiple threads or processes.

    """

    def __init__(self, store, path=None, read_only=False, synchronizer=None):
        self.store = BaseStore._ensure_store(store)
        self.path = normalize_storage_path(path)
        self.key = _attrs_key(self.path)
        self.read_only = read_only
        self.synchronizer = synchronizer

    def asdict(self):
        """Retrieve all attributes as a dictionary."""
        return read_attributes(self.path, self.store)

    def __contains__(self, x):
        return x in self.asdict()

    def __getitem__(self, item):
        return self.asdict()[item]

    def _write_op(self, f, *args, **kwargs):

        # guard condition
        if self.read_only:
            raise ReadOnlyError()

        # synchronization
        if self.synchronizer is None:
            return f(*args, **kwargs)
        else:
            with self.synchronizer[self.key]:
                return f(*args, **kwargs)

    def __setitem__(self, item, value):
        self._write_op(self._setitem_nosync, item, value)

    def _setitem_nosync(self, item, value):
        d = self.asdict()
        d[item] = value
        self._put_nosync(d)

    def __delitem__(self, item):
        self._write_op(self._delitem_nosync, item)

    def _delitem_nosync(self, key):
        d = self.asdict()
        del d[key]
        self._put_nosync(d)

    def put(self, d):
        """Overwrite all attributes with the key/value pairs in the provided dictionary
        `d` in a single operation."""
        self._write_op(self._put_nosync, dict(d))

    def _put_nosync(self, d):
        if d:
            write_attributes(d, self.path, self.store)
        elif self.key in self.store:
            # keep the empty state encoded as absence of the key
            del self.store[self.key]

    # noinspection PyMethodOverriding
    def update(self, *args, **kwargs):
        """Update the values of several attributes in a single operation."""
        self._write_op(self._update_nosync, *args, **kwargs)

    def _update_nosync(self, *args, **kwargs):
        d = self.asdict()
        d.update(*args, **kwargs)
        self._put_nosync(d)

    def keys(self):
        return self.asdict().keys()

    def __iter__(self):
        return iter(self.asdict())

    def __len__(self):
        return len(self.asdict())
