"""clirag ingest: fetcher, crawler, chunker, ingest pipeline."""

from clirag.ingest.chunker import Document, DocumentChunker
from clirag.ingest.crawler import WebCrawler
from clirag.ingest.pipeline import IngestPipeline, IngestResult
from clirag.ingest.web import SsrfError, fetch_document

__all__ = [
    "Document",
    "DocumentChunker",
    "IngestPipeline",
    "IngestResult",
    "SsrfError",
    "WebCrawler",
    "fetch_document",
]
