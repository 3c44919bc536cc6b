"""Parallel indexing of large files, with chunk results combined through a CRDT counter."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import defaultdict
from collections.abc import Hashable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from fugu.index import InvertedIndex
from fugu.terms import Token, WhitespaceTokenizer

logger = logging.getLogger(__name__)

MIN_CHUNK_SIZE = 8192


@dataclass
class GCounter:
    """Grow-only counter: each actor only increments its own slot.

    Merging keeps the larger count of every actor, so merges are
    commutative, associative and idempotent.
    """

    counts: dict[Hashable, int] = field(default_factory=dict)

    def increment(self, actor: Hashable) -> None:
        """Add one to ``actor``'s slot."""
        self.counts[actor] = self.counts.get(actor, 0) + 1

    def merge(self, other: GCounter) -> None:
        """Fold ``other`` into this counter."""
        for actor, count in other.counts.items():
            if count > self.counts.get(actor, 0):
                self.counts[actor] = count

    def value(self) -> int:
        """Total of all actors' counts."""
        return sum(self.counts.values())


@dataclass
class _ChunkResult:
    counter: GCounter
    positions: dict[str, list[int]]


def _chunk_bounds(file_size: int, workers: int) -> list[tuple[int, int]]:
    ideal_chunks = max(workers, 1) * 2
    chunk_size = max(file_size // ideal_chunks, MIN_CHUNK_SIZE)
    return [
        (start, min(start + chunk_size, file_size))
        for start in range(0, file_size, chunk_size)
    ]


class ParallelIndexer:
    """Indexes one file by tokenising byte ranges of it concurrently.

    A term's position is the byte offset of its chunk plus the token's
    position inside the chunk. Words that straddle a chunk boundary are
    indexed as two fragments.
    """

    def __init__(self, workers: int | None = None) -> None:
        self._workers = workers if workers is not None else (os.cpu_count() or 1)
        if self._workers < 1:
            raise ValueError("workers must be at least 1")

    @property
    def workers(self) -> int:
        return self._workers

    def index_file(
        self, index: InvertedIndex, file_path: str | os.PathLike[str], file_name: str
    ) -> float:
        """Index ``file_path`` into ``index`` under ``file_name``; return seconds taken."""
        start_time = time.perf_counter()
        path = Path(file_path)
        file_size = path.stat().st_size
        bounds = _chunk_bounds(file_size, self._workers)
        total = len(bounds)
        logger.info(
            "Starting parallel indexing of %s (%d bytes, %d chunks)", path, file_size, total
        )

        tokenizer = WhitespaceTokenizer()
        done = 0
        done_lock = threading.Lock()

        def process(chunk: tuple[int, int]) -> _ChunkResult:
            nonlocal done
            begin, end = chunk
            with open(path, "rb") as handle:
                handle.seek(begin)
                data = handle.read(end - begin)
            if len(data) != end - begin:
                raise OSError(f"unexpected end of file reading bytes {begin}..{end}")
            text = data.decode("utf-8", errors="replace")
            counter = GCounter()
            positions: dict[str, list[int]] = defaultdict(list)
            for token in tokenizer.tokenize(text, file_name):
                counter.increment(token.term)
                positions[token.term].append(begin + token.position)
            with done_lock:
                done += 1
                logger.debug("Indexed chunk %d of %d (%.1f%%)", done, total, done / total * 100)
            return _ChunkResult(counter, dict(positions))

        results: Iterable[_ChunkResult]
        if bounds:
            with ThreadPoolExecutor(max_workers=min(total, self._workers * 2)) as pool:
                futures = [pool.submit(process, chunk) for chunk in bounds]
                try:
                    results = [future.result() for future in futures]
                except OSError:
                    raise
                except Exception as exc:
                    raise OSError(f"Worker task error: {exc}") from exc
        else:
            results = []

        main_counter = GCounter()
        merged: dict[str, list[int]] = defaultdict(list)
        for result in results:
            main_counter.merge(result.counter)
            for term, found in result.positions.items():
                merged[term].extend(found)

        term_total = len(merged)
        logger.info(
            "Beginning term indexing phase: %d terms, %d counted occurrences",
            term_total,
            main_counter.value(),
        )
        for indexed, (term, found) in enumerate(merged.items(), start=1):
            try:
                index.add_term_with_positions(Token(term, file_name, 0), sorted(set(found)))
            except ValueError as exc:
                raise OSError(f"Failed to add term with positions: {exc}") from exc
            if indexed % 100 == 0:
                logger.debug("Term indexing progress: %d of %d", indexed, term_total)

        elapsed = time.perf_counter() - start_time
        logger.info(
            "Completed parallel indexing of %s in %.6fs (%d terms, %d chunks)",
            file_name,
            elapsed,
            term_total,
            total,
        )
        return elapsed