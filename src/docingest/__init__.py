"""PDF ingestion service: page extraction, chunking and background indexing."""

__version__ = "0.1.0"
