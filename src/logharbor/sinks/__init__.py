"""LogHarbor Sinks -- 搜索索引 sink + 文档存储 sink"""

from .document_store import DocumentStoreSink, init_documents_db
from .mapping import LogDocument, search_document, to_document
from .protocols import Sink
from .search_index import SearchIndexSink

__all__ = [
    "Sink",
    "SearchIndexSink",
    "DocumentStoreSink",
    "init_documents_db",
    "LogDocument",
    "to_document",
    "search_document",
]
