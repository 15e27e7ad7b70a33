import math

import numcodecs
import numpy as np
import pytest
from numpy.testing import assert_array_equal

from zchunk.buffer import Buffer, create_data_buffer_filled_with
from zchunk.core import Array
from zchunk.dtype import DataType
from zchunk.errors import ArrayNotFoundError, BoundsCheckError, RangeError, ReadOnlyError
from zchunk.meta import encode_array_metadata
from zchunk.storage import DirectoryStore, KVStore, MemoryStore, init_array
from zchunk.tests.util import CountingDict


class TestArray():

    def create_array(self, read_only=False, **kwargs):
        store = kwargs.pop('store', None)
        if store is None:
            store = KVStore(dict())
        kwargs.setdefault('compressor', None)
        chunk_store = kwargs.pop('chunk_store', None)
        path = kwargs.pop('path', None)
        init_array(store, path=path, chunk_store=chunk_store, **kwargs)
        return Array(store, path=path, read_only=read_only, chunk_store=chunk_store)

    def test_properties(self):
        z = self.create_array(shape=(10, 11), chunks=(5, 5), dtype='i4', fill_value=-1)
        assert (10, 11) == z.shape
        assert (5, 5) == z.chunks
        assert DataType.i4 is z.dtype
        assert -1 == z.fill_value
        assert z.compressor is None
        assert 2 == z.ndim
        assert 110 == z.size
        assert (2, 3) == z.cdata_shape
        assert 6 == z.nchunks
        assert 0 == z.nchunks_initialized
        assert z.path == ''
        assert z.name is None
        assert not z.read_only
        assert isinstance(z.store, KVStore)
        assert z.store is z.chunk_store
        assert '<zchunk.core.Array (10, 11) i4>' == repr(z)

    def test_array_not_found(self):
        with pytest.raises(ArrayNotFoundError):
            Array(dict())
        store = dict()
        init_array(store, shape=10, path='foo')
        with pytest.raises(ArrayNotFoundError):
            Array(store, path='bar')

    def test_read_unwritten(self):
        z = self.create_array(shape=(4, 6), chunks=(2, 3), dtype='i4', fill_value=-1)
        b = z.read()
        assert isinstance(b, Buffer)
        assert (4, 6) == b.shape
        assert DataType.i4 is b.dtype
        assert [-1] * 24 == b.tolist()
        assert 0 == len([k for k in z.store if not k.startswith('.')])

    def test_write_read(self):
        z = self.create_array(shape=(4, 6), chunks=(2, 3), dtype='i4', fill_value=-1)
        z.write([[1, 2], [3, 4]], offset=(1, 2))
        assert ['0.0', '0.1', '1.0', '1.1'] == sorted(k for k in z.store
                                                      if not k.startswith('.'))
        assert 4 == z.nchunks_initialized

        expect = np.full((4, 6), -1, dtype='i4')
        expect[1:3, 2:4] = [[1, 2], [3, 4]]
        assert expect.tolist() == z.read().as_ndarray().tolist()
        assert [[-1, 1, 2, -1], [-1, 3, 4, -1]] == \
            z.read((2, 4), offset=(1, 1)).as_ndarray().tolist()
        assert [[4]] == z.read((1, 1), offset=(2, 3)).as_ndarray().tolist()

    def test_write_whole_array(self):
        z = self.create_array(shape=(10, 10), chunks=(3, 4), dtype='f8', fill_value=0)
        data = np.arange(100, dtype='f8').reshape(10, 10)
        z.write(data)
        assert z.nchunks == z.nchunks_initialized
        assert_array_equal(data, z.read().as_ndarray())
        # read across chunk boundaries
        assert_array_equal(data[2:7, 3:9], z.read((5, 6), offset=(2, 3)).as_ndarray())

    def test_read_defaults_to_rest_of_array(self):
        z = self.create_array(shape=(5, 5), chunks=(2, 2), dtype='u1', fill_value=0)
        data = np.arange(25, dtype='u1').reshape(5, 5)
        z.write(data)
        assert data[3:, 1:].tolist() == z.read(offset=(3, 1)).as_ndarray().tolist()
        assert (0, 5) == z.read(offset=(7, 0)).shape

    def test_read_outside_array(self):
        z = self.create_array(shape=(4, 4), chunks=(2, 2), dtype='i2', fill_value=9)
        z.write(np.arange(16, dtype='i2').reshape(4, 4))
        b = z.read((3, 3), offset=(-1, -1))
        assert [[9, 9, 9], [9, 0, 1], [9, 4, 5]] == b.as_ndarray().tolist()
        b = z.read((2, 3), offset=(3, 2))
        assert [[14, 15, 9], [9, 9, 9]] == b.as_ndarray().tolist()
        b = z.read((2, 2), offset=(10, -10))
        assert [9] * 4 == b.tolist()

    def test_partial_chunk_write_preserves_content(self):
        z = self.create_array(shape=(6,), chunks=(6,), dtype='i8', fill_value=0)
        z.write([1, 2, 3, 4, 5, 6])
        z.write([20, 30], offset=2)
        assert [1, 2, 20, 30, 5, 6] == z.read().tolist()

    def test_edge_chunks(self):
        z = self.create_array(shape=(5,), chunks=(2,), dtype='i4', fill_value=-1)
        z.write([1, 2, 3, 4, 5])
        assert ['.zarray', '0', '1', '2'] == sorted(z.store)
        # edge chunks are stored full size, padded with the fill value
        assert np.array([5, -1], dtype='<i4').tobytes() == z.store['2']
        assert [1, 2, 3, 4, 5] == z.read().tolist()

    def test_full_chunk_write_skips_load(self):
        store = CountingDict()
        z = self.create_array(store=store, shape=(4, 4), chunks=(2, 2), dtype='i4')
        z.write(np.ones((4, 4)))
        assert 0 == store.counter['__getitem__', '0.0']
        z.write(np.ones((2, 2)), offset=(0, 0))
        assert 0 == store.counter['__getitem__', '0.0']
        z.write(np.ones((1, 1)), offset=(0, 0))
        assert 1 == store.counter['__getitem__', '0.0']

    def test_edge_chunk_write_skips_load(self):
        store = CountingDict()
        z = self.create_array(store=store, shape=(5,), chunks=(2,), dtype='i4')
        z.write([7], offset=4)
        z.write([8], offset=4)
        assert 0 == store.counter['__getitem__', '2']
        assert [0, 0, 0, 0, 8] == z.read().tolist()

    def test_write_bounds(self):
        z = self.create_array(shape=(4, 4), chunks=(2, 2), dtype='i4')
        with pytest.raises(BoundsCheckError):
            z.write(np.ones((2, 2)), offset=(3, 0))
        with pytest.raises(BoundsCheckError):
            z.write(np.ones((2, 2)), offset=(-1, 0))
        with pytest.raises(BoundsCheckError):
            z.write(np.ones((5, 1)))
        # bounds errors are range errors
        with pytest.raises(RangeError):
            z.write(np.ones((1, 1)), offset=(0, 4))
        assert 0 == z.nchunks_initialized

    def test_rank_mismatch(self):
        z = self.create_array(shape=(4, 4), chunks=(2, 2), dtype='i4')
        with pytest.raises(RangeError):
            z.write(np.ones(4))
        with pytest.raises(RangeError):
            z.write(np.ones((2, 2)), offset=(0,))
        with pytest.raises(RangeError):
            z.read((2, 2, 2))
        with pytest.raises(RangeError):
            z.read((2, 2), offset=(0, 0, 0))

    def test_empty_write(self):
        z = self.create_array(shape=(4, 4), chunks=(2, 2), dtype='i4')
        z.write(np.ones((0, 2)), offset=(1, 1))
        assert 0 == z.nchunks_initialized

    def test_write_converts_dtype(self):
        z = self.create_array(shape=(3,), chunks=(2,), dtype='u1')
        z.write(Buffer.from_array([1, 2, 3], dtype='i8'))
        b = z.read()
        assert DataType.u1 is b.dtype
        assert [1, 2, 3] == b.tolist()

    def test_write_narrows_like_fill(self):
        z = self.create_array(shape=(3,), chunks=(2,), dtype='u1')
        z.write([300])
        z.write(np.array([-1, 256]), offset=1)
        assert [44, 255, 0] == z.read().tolist()

        z = self.create_array(shape=(4,), chunks=(2,), dtype='i4')
        z.write([math.nan, 3e9, -3e9, -2.7])
        assert [0, 2147483647, -2147483648, -2] == z.read().tolist()
        for v in [math.nan, 3e9, -2.7]:
            fill = create_data_buffer_filled_with(v, 'i4', (1,))
            z.write([v], offset=0)
            assert fill.tolist() == z.read((1,), offset=0).tolist()

    def test_read_only(self):
        store = dict()
        z = self.create_array(store=KVStore(store), shape=(4,), chunks=(2,), dtype='i4')
        z.write([1, 2, 3, 4])
        z = Array(store, read_only=True)
        assert z.read_only
        assert [1, 2, 3, 4] == z.read().tolist()
        with pytest.raises(ReadOnlyError):
            z.write([5], offset=0)
        with pytest.raises(PermissionError):
            z.attrs['foo'] = 'bar'
        assert '<zchunk.core.Array (4,) i4 read-only>' == repr(z)

    def test_fill_values(self):
        z = self.create_array(shape=(3,), chunks=(2,), dtype='f4', fill_value=math.nan)
        assert math.isnan(z.fill_value)
        assert all(math.isnan(v) for v in z.read().tolist())
        z.write([1.5], offset=1)
        values = z.read().tolist()
        assert math.isnan(values[0]) and 1.5 == values[1] and math.isnan(values[2])

        z = self.create_array(shape=(3,), chunks=(2,), dtype='i4', fill_value=None)
        assert z.fill_value is None
        assert [0, 0, 0] == z.read().tolist()
        z.write([5], offset=2)
        assert [0, 0, 5] == z.read().tolist()

    def test_compressor(self):
        store = dict()
        compressor = numcodecs.Zlib(level=1)
        z = self.create_array(store=KVStore(store), shape=(100,), chunks=(50,), dtype='i8',
                              compressor=compressor)
        assert compressor == z.compressor
        data = np.arange(100)
        z.write(data)
        assert data.tolist() == z.read().tolist()
        assert np.arange(50, dtype='<i8').tobytes() == compressor.decode(store['0'])
        assert len(store['0']) < 400

    def test_default_compressor(self):
        z = self.create_array(shape=(100,), chunks=(10,), dtype='i4', compressor='default')
        assert isinstance(z.compressor, numcodecs.Blosc)
        z.write(np.arange(100))
        assert list(range(100)) == z.read().tolist()

    def test_big_endian_chunks(self):
        store = dict()
        store['.zarray'] = encode_array_metadata(dict(
            shape=(4,), chunks=(2,), dtype='i2', byte_order='>', compressor=None,
            fill_value=0,
        ))
        store['0'] = np.array([1, 2], dtype='>i2').tobytes()
        z = Array(store)
        assert [1, 2, 0, 0] == z.read().tolist()
        z.write([3, 4], offset=2)
        assert np.array([3, 4], dtype='>i2').tobytes() == store['1']

    def test_zero_dimensional(self):
        z = self.create_array(shape=(), dtype='f8', fill_value=1.5)
        assert () == z.shape
        assert () == z.chunks
        assert 1 == z.size
        assert 1 == z.nchunks
        assert [1.5] == z.read().tolist()
        z.write(np.array(7.0))
        assert ['.zarray', '0'] == sorted(z.store)
        assert 1 == z.nchunks_initialized
        b = z.read()
        assert () == b.shape
        assert [7.0] == b.tolist()

    def test_path(self):
        store = MemoryStore()
        z = self.create_array(store=store, path='foo/bar', shape=(4, 4), chunks=(2, 2),
                              dtype='i4')
        assert 'foo/bar' == z.path
        assert '/foo/bar' == z.name
        z.write(np.ones((2, 2)), offset=(2, 0))
        assert ['foo/bar/.zarray', 'foo/bar/1.0'] == sorted(store.keys())
        assert 1 == z.nchunks_initialized
        assert "<zchunk.core.Array '/foo/bar' (4, 4) i4>" == repr(z)

    def test_dimension_separator(self):
        store = MemoryStore()
        z = self.create_array(store=store, shape=(4, 4), chunks=(2, 2), dtype='i4',
                              dimension_separator='/')
        z.write(np.ones((4, 4)))
        assert ['.zarray', '0/0', '0/1', '1/0', '1/1'] == sorted(store.keys())
        assert 4 == z.nchunks_initialized
        assert [1] * 16 == z.read().tolist()

    def test_chunk_store(self):
        store = dict()
        chunk_store = dict()
        z = self.create_array(store=KVStore(store), chunk_store=chunk_store, shape=(4,),
                              chunks=(2,), dtype='u2')
        z.write([1, 2, 3, 4])
        assert ['.zarray'] == list(store)
        assert ['0', '1'] == sorted(chunk_store)
        assert 2 == z.nchunks_initialized
        assert [1, 2, 3, 4] == z.read().tolist()

    def test_attrs(self):
        store = dict()
        z = self.create_array(store=KVStore(store), shape=(4,), dtype='i4')
        assert {} == z.attrs.asdict()
        z.attrs['units'] = 'm'
        assert '.zattrs' in store
        assert 'm' == Array(store).attrs['units']

    def test_directory_store(self, tmp_path):
        path = str(tmp_path / 'array')
        z = self.create_array(store=DirectoryStore(path), shape=(10, 10), chunks=(5, 5),
                              dtype='i4', compressor=numcodecs.Zlib())
        data = np.arange(100, dtype='i4').reshape(10, 10)
        z.write(data)

        z = Array(DirectoryStore(path, mode='r'), read_only=True)
        assert_array_equal(data, z.read().as_ndarray())
        assert 4 == z.nchunks_initialized
