"""PDF extraction, cleaning and chunking."""

from .chunking import ChunkingConfig, ChunkSegmenter
from .errors import IngestError
from .models import DocumentChunk, DocumentMetadata, ExtractionRequest, ExtractionTool, PendingDocument
from .normalization import clean_text
from .pipeline import DocumentPipeline

__all__ = [
    "ChunkingConfig",
    "ChunkSegmenter",
    "DocumentChunk",
    "DocumentMetadata",
    "DocumentPipeline",
    "ExtractionRequest",
    "ExtractionTool",
    "IngestError",
    "PendingDocument",
    "clean_text",
]
