"""Persistent inverted index with TF-IDF search, parallel file indexing and write-ahead log records."""

__version__ = "0.1.0"

__all__ = ["index", "parallel", "store", "terms", "walrecords"]