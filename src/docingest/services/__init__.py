"""Application services: background ingestion, scheduling and document operations."""

from .documents import DocumentService, get_document_service
from .ingestion import IngestionJobRunner, IngestionRunReport
from .scheduler import IntervalScheduler

__all__ = [
    "DocumentService",
    "IngestionJobRunner",
    "IngestionRunReport",
    "IntervalScheduler",
    "get_document_service",
]
