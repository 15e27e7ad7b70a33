# flake8: noqa
from zchunk.attrs import Attributes, read_attributes, write_attributes
from zchunk.buffer import (Buffer, compute_allocation_size, compute_size, create_data_buffer,
                           create_data_buffer_filled_with)
from zchunk.config import config
from zchunk.core import Array
from zchunk.dtype import DataType
from zchunk.errors import (ConfigurationError, RangeError, SerializationError, StorageError,
                           MetadataError)
from zchunk.indexing import chunk_key, compute_chunk_indices
from zchunk.partial import copy_chunk_to_region, copy_region_to_chunk
from zchunk.storage import (DirectoryStore, KVStore, MemoryStore, ZipStore, init_array)
from zchunk.sync import ProcessSynchronizer, ThreadSynchronizer
from zchunk.version import version as __version__
