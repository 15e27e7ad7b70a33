import os
import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from zchunk.core import Array
from zchunk.storage import DirectoryStore, MemoryStore, init_array
from zchunk.sync import ProcessSynchronizer, ThreadSynchronizer


def test_thread_synchronizer_locks():
    sync = ThreadSynchronizer()
    lock = sync['foo/0.0']
    assert lock is sync['foo/0.0']
    assert lock is not sync['foo/0.1']
    with lock:
        assert not lock.acquire(blocking=False)
    assert lock.acquire(blocking=False)
    lock.release()


def test_thread_synchronizer_pickle_state():
    sync = ThreadSynchronizer()
    sync['foo'].acquire()
    state = sync.__getstate__()
    other = ThreadSynchronizer.__new__(ThreadSynchronizer)
    other.__setstate__(state)
    assert other['foo'].acquire(blocking=False)


def test_process_synchronizer_lock_path(tmp_path):
    sync = ProcessSynchronizer(str(tmp_path))
    with sync['foo/bar/0.0']:
        assert os.path.exists(os.path.join(str(tmp_path), 'foo', 'bar', '0.0'))


def test_array_with_process_synchronizer(tmp_path):
    store = DirectoryStore(str(tmp_path / 'data'))
    init_array(store, shape=(4, 4), chunks=(2, 2), dtype='u2', path='arr')
    sync = ProcessSynchronizer(str(tmp_path / 'locks'))
    z = Array(store, path='arr', synchronizer=sync)
    z.write(np.ones((3, 3)), offset=(1, 1))
    z.attrs['foo'] = 'bar'
    assert [0, 0, 0, 0, 0, 1, 1, 1, 0, 1, 1, 1, 0, 1, 1, 1] == z.read().tolist()
    assert 'bar' == z.attrs['foo']
    # one lock file per chunk key written
    assert ['0.0', '0.1', '1.0', '1.1'] == sorted(
        n for n in os.listdir(str(tmp_path / 'locks' / 'arr')) if not n.startswith('.'))


def _write_columns(z, ncols):
    def write(j):
        z.write(np.full((z.shape[0], 1), j), offset=(0, j))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(write, range(ncols)))


@pytest.mark.parametrize('store_type', ['memory', 'directory'])
def test_concurrent_writes_to_shared_chunk(store_type, tmp_path):
    if store_type == 'directory':
        store = DirectoryStore(str(tmp_path / 'data'))
    else:
        store = MemoryStore()
    init_array(store, shape=(3, 40), chunks=(3, 40), dtype='i4', fill_value=-1,
               compressor=None)
    z = Array(store, synchronizer=ThreadSynchronizer())

    # every write is a read-modify-write of the single chunk
    _write_columns(z, 40)

    expect = np.tile(np.arange(40, dtype='i4'), (3, 1))
    assert expect.tolist() == z.read().as_ndarray().tolist()


def test_attributes_synchronized():
    store = MemoryStore()
    init_array(store, shape=(10,))
    z = Array(store, synchronizer=ThreadSynchronizer())

    def set_attr(i):
        z.attrs['key{}'.format(i)] = i

    threads = [threading.Thread(target=set_attr, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert {'key{}'.format(i): i for i in range(20)} == z.attrs.asdict()
