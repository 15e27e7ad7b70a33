"""Copy the overlapping part of two buffers placed relative to each other.

Both buffers are hyper-rectangles; `offset` gives the position of the target's
origin in the coordinate system of the source. Only elements that fall inside
both buffers are copied, everything else in the target is left untouched.
"""
from typing import Optional, Sequence, Tuple

from zchunk.buffer import Buffer
from zchunk.errors import err_rank_mismatch


def overlap(offset: Sequence[int],
            source_shape: Sequence[int],
            target_shape: Sequence[int]) -> Optional[Tuple[Tuple[slice, ...],
                                                           Tuple[slice, ...]]]:
    """Compute the selections of the overlapping hyper-rectangle.

    Returns a pair ``(source_selection, target_selection)`` of tuples of slices, or
    None if the buffers do not overlap along some dimension.
    """

    ndim = len(target_shape)
    if len(source_shape) != ndim:
        err_rank_mismatch('source shape', ndim, len(source_shape))
    if len(offset) != ndim:
        err_rank_mismatch('offset', ndim, len(offset))

    source_selection = []
    target_selection = []
    for o, ns, nt in zip(offset, source_shape, target_shape):
        o = int(o)
        # target index k maps to source index k + o
        start = max(0, -o)
        stop = min(nt, ns - o)
        if start >= stop:
            return None
        target_selection.append(slice(start, stop))
        source_selection.append(slice(start + o, stop + o))

    return tuple(source_selection), tuple(target_selection)


def copy(offset: Sequence[int], source: Buffer, target: Buffer) -> bool:
    """Set ``target[k] = source[k + offset]`` wherever both sides are in range.

    Returns True if anything was copied.
    """

    if source.dtype is not target.dtype:
        raise TypeError('cannot copy {} elements into a {} buffer'
                        .format(source.dtype, target.dtype))

    selections = overlap(offset, source.shape, target.shape)
    if selections is None:
        return False
    source_selection, target_selection = selections

    # numpy walks the outer dimensions and copies contiguous runs along the last one
    target.as_ndarray()[target_selection] = source.as_ndarray()[source_selection]
    return True


def copy_chunk_to_region(to: Sequence[int], chunk: Buffer, region: Buffer) -> bool:
    """Read path: copy chunk data into a region buffer.

    `to` is the region's origin in chunk-local coordinates, i.e. the region offset
    minus the chunk origin. Components may be negative.
    """
    return copy(to, chunk, region)


def copy_region_to_chunk(to: Sequence[int], region: Buffer, chunk: Buffer) -> bool:
    """Write path: copy region data into a chunk buffer, with `to` as for
    :func:`copy_chunk_to_region`."""
    return copy(tuple(-int(t) for t in to), region, chunk)
