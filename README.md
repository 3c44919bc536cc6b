# fugu

A small full-text indexing library: a persistent inverted index with TF-IDF
ranking, a parallel indexer for large files, and the building blocks of a
write-ahead log (operation records, batches and a single-file writer).

## Installation

```
pip install .
```

## Indexing and searching

```python
from fugu.index import InvertedIndex
from fugu.terms import WhitespaceTokenizer

index = InvertedIndex("/tmp/my-index")
tokenizer = WhitespaceTokenizer()

index.index_document("doc1", "The quick brown fox jumps over the lazy dog", tokenizer)
index.index_document("doc2", "A quick brown dog chases the fox", tokenizer)

for result in index.search_text("quick fox", tokenizer):
    print(result.doc_id, result.relevance_score, result.term_matches)

entry = index.search("fox")          # TermIndex or None
print(entry.doc_ids)                 # {"doc1": [3], "doc2": [6]}

print(index.get_document("doc1"))    # the stored text
elapsed = index.delete_document("doc2")   # seconds taken
index.flush()
index.close()
```

`WhitespaceTokenizer` splits on whitespace and lowercases each term; positions
start at zero. Other tokenizers can be written by subclassing
`fugu.terms.Tokenizer` and implementing `tokenize(text, doc_id)`.

Each matching document's score is the sum over matched terms of term
frequency times `ln(total_docs / doc_freq)`, divided by the number of matched
term occurrences in that document. Results come back highest score first.
`get_last_metrics()` returns a `SearchMetrics` with the timings (in seconds)
and counts of the most recent text search.

Other members of `InvertedIndex`:

- `add_term(token)` records one occurrence of a `Token`.
- `add_term_with_positions(token, positions)` records many positions of a
  term in one document; positions are merged, sorted and deduplicated.
- `remove_term(term, doc_id)` drops a document from a term's entry, and the
  term itself when no document is left.
- `total_terms()` and `total_docs()` give the number of distinct terms and
  of indexed documents.
- `get_cache_info()` returns `(index path, stored document count, total
  stored bytes)`.

The index directory holds three stores (`index`, `docs`, `doc_terms`), each a
`fugu.store.KeyValueStore`. `flush()` writes them to disk and also saves a
single consolidated snapshot, `consolidated.bin`, of every term, document
and document-to-terms mapping. A new `InvertedIndex` opened on the same
directory restores itself from that snapshot, and `load_index_direct()`
reloads the document count and cached terms from it (raising
`FileNotFoundError` if it does not exist). `InvertedIndex` and
`KeyValueStore` can both be used as context managers, which close them on
exit.

## Large files

`ParallelIndexer` from `fugu.parallel` splits a file into byte ranges,
tokenizes them concurrently in a thread pool, merges the per-chunk counts
with a grow-only counter (`GCounter`) and adds every term with all of its
positions to an index:

```python
from fugu.parallel import ParallelIndexer

elapsed = ParallelIndexer().index_file(index, "big.txt", "big.txt")
```

A term's position is the byte offset of its chunk plus its token position
within the chunk, and a word that straddles a chunk boundary is indexed as
two fragments. The number of workers defaults to the CPU count.

## Write-ahead log records

`fugu.walrecords` provides the pieces of a write-ahead log:

```python
from fugu.walrecords import OpKind, WalOp, WalWriter

writer = WalWriter("/tmp/wal/orders_wal.bin")
writer.append(WalOp(OpKind.PUT, "key1", b"value1"))
writer.append(WalOp(OpKind.DELETE, "key1"))
writer.flush(True)
print(writer.read_all())
```

- `WalOp` is a put, delete or patch; only deletes carry no value.
- `WalBatch` collects operations and their estimated size and serialises
  them as one record.
- `WalWriter` batches appended operations, writes a batch when it reaches
  1 MiB or when `flush` is called, and reads every recorded operation back
  with `read_all()`. A damaged file raises `WalError`.
- `WalCommand` describes a put, delete, patch, dump or flush request;
  `to_op()` gives the operation it records, or None for dump and flush.

## What this package does not do

There is no log manager that keeps one log file per namespace, runs a
periodic background flush, keeps recent operations in memory or carries out
`WalCommand` requests: a `WalWriter` writes a single file, and flushing it
is up to the caller. There is also no server and no command-line program;
everything is used as a library.

## Running the tests

```
pip install .[test]
pytest
```