"""
Chunked, wave-limited dispatch of generation requests.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from operator import attrgetter
from typing import Any, List, TypeVar

from tqdm.asyncio import tqdm

from .errors import PolicyError

logger = logging.getLogger("storyboard")

T = TypeVar("T")
R = TypeVar("R")

CHUNK_SIZE = 15
BATCH_CONCURRENCY = 3
MAX_ATTEMPTS = 2  # first try + one retry


def chunk_units(units: Sequence[T], size: int) -> List[List[T]]:
    """Split units into ordered chunks of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [list(units[i:i + size]) for i in range(0, len(units), size)]


async def _process_chunk(
    generate: Callable[[List[T]], Awaitable[List[R]]],
    chunk: List[T],
    chunk_no: int,
) -> List[R]:
    """Run one chunk, retrying once. A chunk that fails twice yields no results."""
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            return list(await generate(chunk))
        except Exception as e:
            logger.warning(f"Chunk {chunk_no} failed (attempt {attempt}/{MAX_ATTEMPTS}): {e}")
    logger.error(f"Chunk {chunk_no} dropped after {MAX_ATTEMPTS} attempts ({len(chunk)} items lost)")
    return []


async def dispatch_chunks(
    units: Sequence[T],
    generate: Callable[[List[T]], Awaitable[List[R]]],
    *,
    chunk_size: int = CHUNK_SIZE,
    concurrency: int = BATCH_CONCURRENCY,
    index_of: Callable[[R], Any] | None = None,
    on_progress: Callable[[float], None] | None = None,
    desc: str = "Chunks",
) -> List[R]:
    """
    Dispatch units to ``generate`` in chunks, ``concurrency`` chunks per wave.

    Args:
        units: Ordered work units
        generate: Async callable turning one chunk into a list of results
        chunk_size: Max units per chunk
        concurrency: Chunks dispatched together in one wave
        index_of: Key carried by each result; output is sorted on it
            (default: the ``subtitle_index`` attribute)
        on_progress: Called with a percentage after every wave
        desc: Progress bar label

    Returns:
        All results sorted by their carried index
    """
    if not units:
        raise PolicyError("Nothing to process: no work units")
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")

    key = index_of or attrgetter("subtitle_index")
    chunks = chunk_units(units, chunk_size)
    total = len(chunks)
    logger.info(f"Dispatching {len(units)} units in {total} chunks ({concurrency} per wave)")

    results: List[R] = []
    done = 0
    with tqdm(total=total, desc=desc, unit="chunk") as bar:
        for start in range(0, total, concurrency):
            wave = chunks[start:start + concurrency]
            wave_results = await asyncio.gather(
                *(_process_chunk(generate, chunk, start + n + 1) for n, chunk in enumerate(wave))
            )
            for res in wave_results:
                results.extend(res)
            done += len(wave)
            bar.update(len(wave))
            if on_progress:
                on_progress(min(99, round(done / total * 100)))

    if on_progress:
        on_progress(100)
    return sorted(results, key=key)
