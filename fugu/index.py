"""Persistent inverted index with TF-IDF ranked text search."""

from __future__ import annotations

import logging
import math
import os
import threading
import time
from collections import defaultdict
from pathlib import Path
from typing import Any

import msgpack

from fugu.store import KeyValueStore
from fugu.terms import (
    ConsolidatedIndex,
    DocIndex,
    SearchMetrics,
    SearchResult,
    TermIndex,
    Token,
    Tokenizer,
)

logger = logging.getLogger(__name__)

CONSOLIDATED_FILE = "consolidated.bin"
CACHE_SIZE_THRESHOLD = 2 * 1024 * 1024


def _pack(record: dict[str, Any]) -> bytes:
    return msgpack.packb(record, use_bin_type=True)


def _unpack(raw: bytes) -> Any:
    try:
        return msgpack.unpackb(raw, raw=False, strict_map_key=False)
    except Exception as exc:
        raise ValueError(f"corrupt record: {exc}") from exc


def _decode_term(raw: bytes) -> TermIndex:
    return TermIndex.from_dict(_unpack(raw))


def _decode_doc(raw: bytes) -> DocIndex:
    return DocIndex.from_dict(_unpack(raw))


class InvertedIndex:
    """Inverted index stored under a directory.

    Term entries, document contents and document-to-term mappings live in
    three separate stores; ``flush`` also writes a consolidated snapshot of
    everything to a single file, from which a new instance is restored.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._path.mkdir(parents=True, exist_ok=True)
        self._consolidated_path = self._path / CONSOLIDATED_FILE
        self._lock = threading.RLock()
        self._cache_size_threshold = CACHE_SIZE_THRESHOLD
        self._last_metrics = SearchMetrics()
        self._total_docs = 0
        self._term_cache: dict[str, TermIndex] = {}

        self._db = KeyValueStore(self._path / "index")
        self._doc_db = KeyValueStore(self._path / "docs")
        self._doc_term_db = KeyValueStore(self._path / "doc_terms")

        if self._consolidated_path.exists():
            try:
                self._restore(self._read_consolidated())
                logger.info("Loaded consolidated index from %s", self._consolidated_path)
            except (OSError, ValueError) as exc:
                logger.warning("Could not load consolidated index: %s", exc)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def consolidated_path(self) -> Path:
        return self._consolidated_path

    @property
    def cached_terms(self) -> dict[str, TermIndex]:
        """Term entries last loaded from the consolidated snapshot."""
        with self._lock:
            return dict(self._term_cache)

    def _read_consolidated(self) -> ConsolidatedIndex:
        return ConsolidatedIndex.from_bytes(self._consolidated_path.read_bytes())

    def _restore(self, consolidated: ConsolidatedIndex) -> None:
        with self._lock:
            for term, entry in consolidated.terms.items():
                self._db.insert(term, _pack(entry.to_dict()))
            for doc_id, content in consolidated.documents.items():
                self._doc_db.insert(doc_id, content)
            for doc_id, entry in consolidated.doc_terms.items():
                self._doc_term_db.insert(doc_id, _pack(entry.to_dict()))
            self._total_docs = consolidated.total_docs
            self._term_cache = dict(consolidated.terms)

    def get_last_metrics(self) -> SearchMetrics:
        """Metrics of the most recent text search."""
        with self._lock:
            m = self._last_metrics
            return SearchMetrics(
                query_parsing_time=m.query_parsing_time,
                retrieval_time=m.retrieval_time,
                scoring_time=m.scoring_time,
                total_time=m.total_time,
                documents_searched=m.documents_searched,
                documents_matched=m.documents_matched,
            )

    def total_terms(self) -> int:
        """Number of distinct terms in the index."""
        with self._lock:
            return len(self._db)

    def total_docs(self) -> int:
        """Number of documents counted as indexed."""
        with self._lock:
            return self._total_docs

    def flush(self) -> None:
        """Persist every store and write the consolidated snapshot."""
        with self._lock:
            self._db.flush()
            self._doc_db.flush()
            self._doc_term_db.flush()
            logger.info("Flushed index and document data to %s", self._path)
            try:
                self._save_consolidated()
                logger.info("Consolidated index saved to %s", self._consolidated_path)
            except (OSError, ValueError) as exc:
                logger.error("Failed to save consolidated index: %s", exc)

    def _save_consolidated(self) -> None:
        consolidated = ConsolidatedIndex(total_docs=self._total_docs)
        for key, value in self._db.items():
            try:
                consolidated.terms[key.decode("utf-8")] = _decode_term(value)
            except (UnicodeDecodeError, ValueError):
                continue
        for key, value in self._doc_db.items():
            try:
                consolidated.documents[key.decode("utf-8")] = value.decode("utf-8")
            except UnicodeDecodeError:
                continue
        for key, value in self._doc_term_db.items():
            try:
                consolidated.doc_terms[key.decode("utf-8")] = _decode_doc(value)
            except (UnicodeDecodeError, ValueError):
                continue
        tmp = self._consolidated_path.with_name(self._consolidated_path.name + ".tmp")
        tmp.write_bytes(consolidated.to_bytes())
        os.replace(tmp, self._consolidated_path)

    def close(self) -> None:
        """Flush everything and release the underlying stores."""
        with self._lock:
            if self._db.closed:
                return
            self.flush()
            self._db.close()
            self._doc_db.close()
            self._doc_term_db.close()
            logger.info("Closed database connections for %s", self._path)

    def __enter__(self) -> InvertedIndex:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def load_index_direct(self) -> None:
        """Reload the document count and term cache from the consolidated file."""
        with self._lock:
            if not self._consolidated_path.exists():
                raise FileNotFoundError(
                    f"Consolidated file not found: {self._consolidated_path}"
                )
            consolidated = self._read_consolidated()
            self._total_docs = consolidated.total_docs
            self._term_cache = dict(consolidated.terms)
            logger.info(
                "Loaded index directly from consolidated file: %s", self._consolidated_path
            )

    def get_cache_info(self) -> tuple[str, int, int]:
        """Return ``(index path, stored document count, total stored bytes)``."""
        with self._lock:
            count = 0
            size = 0
            for _, value in self._doc_db.items():
                count += 1
                size += len(value)
            return str(self._path), count, size

    def add_term(self, token: Token) -> None:
        """Record a single occurrence of a term."""
        with self._lock:
            existing = self._db.get(token.term)
            if existing is not None:
                entry = _decode_term(existing)
                entry.doc_ids.setdefault(token.doc_id, []).append(token.position)
                entry.term_frequency += 1
            else:
                entry = TermIndex(
                    term=token.term,
                    doc_ids={token.doc_id: [token.position]},
                    term_frequency=1,
                )
            self._db.insert(token.term, _pack(entry.to_dict()))

    def add_term_with_positions(self, token: Token, positions: list[int]) -> None:
        """Record many positions of a term in one document at once.

        Positions are merged, sorted and deduplicated; the token's own
        position is ignored.
        """
        if not positions:
            return
        with self._lock:
            existing = self._db.get(token.term)
            if existing is not None:
                entry = _decode_term(existing)
                merged = set(entry.doc_ids.get(token.doc_id, []))
                merged.update(positions)
                entry.doc_ids[token.doc_id] = sorted(merged)
                entry.term_frequency = sum(len(p) for p in entry.doc_ids.values())
            else:
                unique = sorted(set(positions))
                entry = TermIndex(
                    term=token.term,
                    doc_ids={token.doc_id: unique},
                    term_frequency=len(unique),
                )
            self._db.insert(token.term, _pack(entry.to_dict()))

    def index_document(self, doc_id: str, text: str, tokenizer: Tokenizer) -> None:
        """Store a document's text and index all of its terms."""
        start = time.perf_counter()
        logger.info("Starting document indexing: %s (%d chars)", doc_id, len(text))
        with self._lock:
            self._doc_db.insert(doc_id, text)
            tokens = tokenizer.tokenize(text, doc_id)
            self._total_docs += 1

            grouped: dict[tuple[str, str], list[int]] = defaultdict(list)
            for token in tokens:
                grouped[(token.term, token.doc_id)].append(token.position)

            unique_terms = {term for term, _ in grouped}
            doc_index = DocIndex(doc_id=doc_id, terms=unique_terms)
            self._doc_term_db.insert(doc_id, _pack(doc_index.to_dict()))

            for (term, owner), positions in grouped.items():
                self.add_term_with_positions(Token(term, owner, 0), positions)
        logger.info(
            "Document %s indexed in %.6fs with %d terms",
            doc_id,
            time.perf_counter() - start,
            len(unique_terms),
        )

    def remove_term(self, term: str, doc_id: str) -> None:
        """Remove a document from a term's entry; drop the term when unused."""
        with self._lock:
            existing = self._db.get(term)
            if existing is None:
                logger.debug("Term %r not found in index", term)
                return
            try:
                entry = _decode_term(existing)
            except ValueError as exc:
                raise ValueError(f"Failed to deserialize term index: {exc}") from exc
            entry.doc_ids.pop(doc_id, None)
            entry.term_frequency = len(entry.doc_ids)
            if entry.doc_ids:
                self._db.insert(term, _pack(entry.to_dict()))
            else:
                self._db.remove(term)

    def search(self, term: str) -> TermIndex | None:
        """Return the entry for an exact term, or None."""
        with self._lock:
            raw = self._db.get(term)
        return None if raw is None else _decode_term(raw)

    def get_document(self, doc_id: str) -> str | None:
        """Return the stored text of a document, or None."""
        with self._lock:
            raw = self._doc_db.get(doc_id)
        if raw is None:
            return None
        return raw.decode("utf-8", errors="replace")

    def delete_document(self, doc_id: str) -> float:
        """Remove a document from the index; return the time taken in seconds."""
        start = time.perf_counter()
        with self._lock:
            raw = self._doc_term_db.get(doc_id)
            terms: list[str]
            if raw is None:
                terms = self._find_terms_by_full_scan(doc_id)
            else:
                try:
                    terms = sorted(_decode_doc(raw).terms)
                except ValueError as exc:
                    logger.warning("Bad document-terms record for %s: %s", doc_id, exc)
                    terms = self._find_terms_by_full_scan(doc_id)

            self._doc_term_db.remove(doc_id)
            for term in terms:
                try:
                    self.remove_term(term, doc_id)
                except ValueError as exc:
                    logger.error("Error removing term %r: %s", term, exc)
            self._doc_db.remove(doc_id)

            if terms and self._total_docs > 0:
                self._total_docs -= 1
        return time.perf_counter() - start

    def _find_terms_by_full_scan(self, doc_id: str) -> list[str]:
        found = []
        for key, value in self._db.items():
            try:
                entry = _decode_term(value)
                if doc_id in entry.doc_ids:
                    found.append(key.decode("utf-8"))
            except (ValueError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable term entry: %s", exc)
        return found

    def search_text(self, query: str, tokenizer: Tokenizer) -> list[SearchResult]:
        """Rank documents matching any query term by normalised TF-IDF."""
        search_start = time.perf_counter()
        metrics = SearchMetrics()

        parsing_start = time.perf_counter()
        tokens = tokenizer.tokenize(query, "query")
        if not tokens:
            return []
        metrics.query_parsing_time = time.perf_counter() - parsing_start

        retrieval_start = time.perf_counter()
        term_results: dict[str, TermIndex] = {}
        all_docs: set[str] = set()
        for token in tokens:
            entry = self.search(token.term)
            if entry is not None:
                term_results[token.term] = entry
                all_docs.update(entry.doc_ids)
        metrics.retrieval_time = time.perf_counter() - retrieval_start
        metrics.documents_searched = sum(len(e.doc_ids) for e in term_results.values())
        metrics.documents_matched = len(all_docs)

        if not all_docs:
            metrics.total_time = time.perf_counter() - search_start
            with self._lock:
                self._last_metrics = metrics
            return []

        scoring_start = time.perf_counter()
        total_docs = float(self.total_docs())
        results = []
        for doc_id in all_docs:
            score = 0.0
            total_terms = 0.0
            matches: dict[str, list[int]] = {}
            for term, entry in term_results.items():
                positions = entry.doc_ids.get(doc_id)
                if positions is None:
                    continue
                term_freq = float(len(positions))
                doc_freq = float(len(entry.doc_ids))
                ratio = total_docs / doc_freq
                idf = math.log(ratio) if ratio > 0 else -math.inf
                total_terms += term_freq
                score += term_freq * idf
                matches[term] = list(positions)
            if total_terms > 0:
                score /= total_terms
            if matches:
                results.append(
                    SearchResult(doc_id=doc_id, relevance_score=score, term_matches=matches)
                )
        metrics.scoring_time = time.perf_counter() - scoring_start

        results.sort(key=lambda r: r.relevance_score, reverse=True)
        metrics.total_time = time.perf_counter() - search_start
        logger.info(
            "Search for %r found %d results in %.6fs", query, len(results), metrics.total_time
        )
        with self._lock:
            self._last_metrics = metrics
        return results