"""Deduplicate positions and drive them through a weather source in bounded chunks."""
from __future__ import annotations

import threading
import time
from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from app.data_sources.base import WeatherDataSource
from app.domain import BatchResult, FetchOutcome, FetchReason, Position, ResultMap, position_key
from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="batch_fetcher")

DEFAULT_MAX_CONCURRENT = 10

BatchCallback = Callable[[ResultMap], None]


def dedupe_positions(positions: Iterable[Position]) -> List[Position]:
    """Collapse positions sharing a key; the first occurrence wins and order is kept."""
    unique: Dict[str, Position] = {}
    for pos in positions:
        unique.setdefault(position_key(pos.latitude, pos.longitude), pos)
    return list(unique.values())


def chunked(items: Sequence[Position], size: int) -> List[List[Position]]:
    """Split `items` into contiguous lists of at most `size` elements."""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def _safe_lookup(source: WeatherDataSource, pos: Position) -> FetchOutcome:
    """Run one lookup, converting any unexpected exception into an absence."""
    try:
        return source.lookup(pos.latitude, pos.longitude)
    except Exception as exc:
        logger.warning("Weather lookup raised for %s: %s", pos.key, exc)
        return FetchOutcome.absent(pos.key, FetchReason.NETWORK_ERROR)


def _run_chunk(source: WeatherDataSource, chunk: List[Position]) -> List[FetchOutcome]:
    """Fan out every lookup in the chunk and wait for all of them to settle."""
    with ThreadPoolExecutor(max_workers=len(chunk), thread_name_prefix="weather") as pool:
        futures = [pool.submit(_safe_lookup, source, pos) for pos in chunk]
        wait(futures, return_when=ALL_COMPLETED)
    return [f.result() for f in futures]


def fetch_weather_for_positions(
    positions: Sequence[Position],
    source: WeatherDataSource,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    on_batch_complete: Optional[BatchCallback] = None,
    *,
    cancel_event: Optional[threading.Event] = None,
    chunk_pause_seconds: float = 0.0,
) -> BatchResult:
    """
    Fetch current weather for every distinct grid cell in `positions`.

    Unique positions are processed in sequential chunks of `max_concurrent`;
    within a chunk all lookups run concurrently and the chunk ends only when
    every one has settled. After each chunk `on_batch_complete` receives just
    that chunk's successful observations. Failed lookups are simply missing.

    Setting `cancel_event` stops further chunks from being issued; whatever
    already resolved is returned with `cancelled=True`.
    """
    if max_concurrent < 1:
        raise ValueError("max_concurrent must be at least 1")

    unique = dedupe_positions(positions)
    chunks = chunked(unique, max_concurrent)
    result = BatchResult(requested=len(positions), unique=len(unique))

    logger.info(
        "Fetching weather for positions",
        extra={"requested": len(positions), "unique": len(unique), "chunks": len(chunks)},
    )

    for index, chunk in enumerate(chunks):
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Weather batch cancelled", extra={"completed_chunks": index, "chunks": len(chunks)})
            result.cancelled = True
            break

        outcomes = _run_chunk(source, chunk)
        chunk_map: ResultMap = {}
        for outcome in outcomes:
            if outcome.ok:
                chunk_map[outcome.key] = outcome.observation
        result.observations.update(chunk_map)
        result.chunks += 1

        logger.debug(
            "Weather chunk complete",
            extra={"chunk": index + 1, "size": len(chunk), "resolved": len(chunk_map)},
        )

        if on_batch_complete is not None:
            try:
                on_batch_complete(dict(chunk_map))
            except Exception:
                logger.exception("on_batch_complete callback failed for chunk %d", index + 1)

        if chunk_pause_seconds > 0 and index + 1 < len(chunks):
            time.sleep(chunk_pause_seconds)

    result.matched = [
        (pos, result.observations[pos.key])
        for pos in positions
        if pos.key in result.observations
    ]

    logger.info(
        "Computed weather for positions",
        extra={"resolved": len(result.observations), "matched": len(result.matched)},
    )
    return result
