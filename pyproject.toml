[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fugu"
version = "0.1.0"
description = "Persistent inverted index with TF-IDF search, parallel file indexing and write-ahead log records"
requires-python = ">=3.10"
keywords = ["search", "inverted-index", "tf-idf", "write-ahead-log", "indexing", "crdt"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Text Processing :: Indexing",
]
dependencies = [
    "msgpack",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["fugu"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
