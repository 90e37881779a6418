"""Knowledge retrieval: text splitting, BM25 keyword index and the two-tier knowledge base."""

from .bm25 import STOPWORDS, BM25Index, tokenize
from .knowledge_base import (
    EMPTY_CORPUS_MESSAGE,
    NO_MATCH_MESSAGE,
    KnowledgeBase,
    RetrievalHit,
    RetrievalMode,
    RetrievalResult,
)
from .splitter import RecursiveTextSplitter

__all__ = [
    "STOPWORDS",
    "BM25Index",
    "tokenize",
    "EMPTY_CORPUS_MESSAGE",
    "NO_MATCH_MESSAGE",
    "KnowledgeBase",
    "RetrievalHit",
    "RetrievalMode",
    "RetrievalResult",
    "RecursiveTextSplitter",
]
