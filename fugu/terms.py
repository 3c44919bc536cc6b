"""Core records of the inverted index: terms, tokens, documents and results."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import msgpack


@dataclass
class TermIndex:
    """An indexed term together with every position it occupies in each document."""

    term: str
    doc_ids: dict[str, list[int]] = field(default_factory=dict)
    term_frequency: int = 0

    def __str__(self) -> str:
        return f"{self.term} found in  {self.term_frequency} documents"

    @property
    def docs(self) -> list[str]:
        """Identifiers of the documents that contain this term."""
        return list(self.doc_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "term": self.term,
            "doc_ids": {doc: list(positions) for doc, positions in self.doc_ids.items()},
            "term_frequency": self.term_frequency,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TermIndex:
        try:
            return cls(
                term=str(data["term"]),
                doc_ids={
                    str(doc): [int(p) for p in positions]
                    for doc, positions in data["doc_ids"].items()
                },
                term_frequency=int(data["term_frequency"]),
            )
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise ValueError(f"invalid term index record: {exc}") from exc


@dataclass(frozen=True)
class Token:
    """A single occurrence of a term in a document (position is 0-based)."""

    term: str
    doc_id: str
    position: int


class Tokenizer(ABC):
    """Strategy that turns text into tokens."""

    @abstractmethod
    def tokenize(self, text: str, doc_id: str) -> list[Token]:
        """Split ``text`` into tokens belonging to ``doc_id``."""


class WhitespaceTokenizer(Tokenizer):
    """Splits on whitespace, lower-cases terms and numbers them from zero."""

    def tokenize(self, text: str, doc_id: str) -> list[Token]:
        terms = (word.strip().lower() for word in text.split())
        return [
            Token(term=term, doc_id=doc_id, position=position)
            for position, term in enumerate(t for t in terms if t)
        ]


@dataclass
class SearchMetrics:
    """Timings (in seconds) and counts collected during one search."""

    query_parsing_time: float = 0.0
    retrieval_time: float = 0.0
    scoring_time: float = 0.0
    total_time: float = 0.0
    documents_searched: int = 0
    documents_matched: int = 0


@dataclass
class SearchResult:
    """A matching document, its relevance score and the matched term positions."""

    doc_id: str
    relevance_score: float
    term_matches: dict[str, list[int]] = field(default_factory=dict)


@dataclass
class DocIndex:
    """The set of terms a document contains, used for fast deletion."""

    doc_id: str
    terms: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, Any]:
        return {"doc_id": self.doc_id, "terms": sorted(self.terms)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocIndex:
        try:
            return cls(doc_id=str(data["doc_id"]), terms={str(t) for t in data["terms"]})
        except (KeyError, TypeError) as exc:
            raise ValueError(f"invalid document index record: {exc}") from exc


@dataclass
class ConsolidatedIndex:
    """Every piece of a namespace's index, serialisable to a single file."""

    terms: dict[str, TermIndex] = field(default_factory=dict)
    documents: dict[str, str] = field(default_factory=dict)
    doc_terms: dict[str, DocIndex] = field(default_factory=dict)
    total_docs: int = 0

    def to_bytes(self) -> bytes:
        payload = {
            "terms": {name: entry.to_dict() for name, entry in self.terms.items()},
            "documents": dict(self.documents),
            "doc_terms": {doc: entry.to_dict() for doc, entry in self.doc_terms.items()},
            "total_docs": self.total_docs,
        }
        return msgpack.packb(payload, use_bin_type=True)

    @classmethod
    def from_bytes(cls, data: bytes) -> ConsolidatedIndex:
        try:
            payload = msgpack.unpackb(data, raw=False, strict_map_key=False)
        except Exception as exc:
            raise ValueError(f"corrupt consolidated index: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError("corrupt consolidated index: expected a mapping")
        try:
            return cls(
                terms={
                    str(name): TermIndex.from_dict(entry)
                    for name, entry in payload["terms"].items()
                },
                documents={str(k): str(v) for k, v in payload["documents"].items()},
                doc_terms={
                    str(doc): DocIndex.from_dict(entry)
                    for doc, entry in payload["doc_terms"].items()
                },
                total_docs=int(payload["total_docs"]),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"corrupt consolidated index: {exc}") from exc