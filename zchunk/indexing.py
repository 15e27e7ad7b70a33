import itertools
from typing import List, Sequence

from zchunk.errors import ConfigurationError, err_rank_mismatch
from zchunk.types import ChunkIndex, Shape


def ceildiv(a, b):
    return -(-a // b)


def check_rank(what, expected, actual):
    if len(actual) != expected:
        err_rank_mismatch(what, expected, len(actual))


def check_chunks(chunks):
    for c in chunks:
        if int(c) < 1:
            raise ConfigurationError(
                'chunk components must be >= 1, found {!r}'.format(tuple(chunks))
            )


def chunk_grid_shape(shape: Sequence[int], chunks: Sequence[int]) -> Shape:
    """Number of chunks along each dimension of an array."""
    check_rank('chunks', len(shape), chunks)
    check_chunks(chunks)
    return tuple(ceildiv(int(s), int(c)) for s, c in zip(shape, chunks))


def compute_chunk_indices(shape: Sequence[int],
                          chunks: Sequence[int],
                          region_shape: Sequence[int],
                          offset: Sequence[int]) -> List[ChunkIndex]:
    """Determine the indices of all chunks intersecting a region.

    Parameters
    ----------
    shape : sequence of ints
        Shape of the array.
    chunks : sequence of ints
        Chunk shape of the array.
    region_shape : sequence of ints
        Shape of the region.
    offset : sequence of ints
        Position of the region's origin within the array. May be negative.

    Returns
    -------
    list of tuples
        Chunk indices in row-major order, i.e., the index along the last dimension
        varies fastest. Indices may lie outside the chunk grid when the region
        extends past the array.

    """

    ndim = len(shape)
    check_rank('chunks', ndim, chunks)
    check_rank('region shape', ndim, region_shape)
    check_rank('region offset', ndim, offset)
    check_chunks(chunks)

    ranges = []
    for o, n, c in zip(offset, region_shape, chunks):
        o, n, c = int(o), int(n), int(c)
        if n < 1:
            # empty region intersects no chunk
            return []
        # floor division, so regions starting before the origin give negative indices
        start = o // c
        stop = (o + n - 1) // c
        ranges.append(range(start, stop + 1))

    return list(itertools.product(*ranges))


def is_valid_chunk_index(index: Sequence[int], grid_shape: Sequence[int]) -> bool:
    return len(index) == len(grid_shape) and \
        all(0 <= i < n for i, n in zip(index, grid_shape))


def chunk_key(index: Sequence[int], dimension_separator: str = '.') -> str:
    """Storage key of the chunk at `index`, e.g. ``(2, 0, 5) -> '2.0.5'``.

    A zero-dimensional array has a single chunk, stored under ``'0'``.
    """
    if len(index) == 0:
        return '0'
    return dimension_separator.join(str(int(i)) for i in index)


def chunk_origin(index: Sequence[int], chunks: Sequence[int]) -> Shape:
    """Position of the first element of a chunk within the array."""
    return tuple(int(i) * int(c) for i, c in zip(index, chunks))
