"""
Knowledge Base.

Two-tier retrieval over a directory of reference documents:

- Tier 1 (semantic): chunk embeddings ranked by cosine similarity. Built
  only when an embedding provider is configured; a build failure leaves
  the tier disabled.
- Tier 2 (keyword, BM25): always built, and used whenever the semantic
  tier is unavailable, raises at query time, or finds nothing.

The index is built lazily on first use, at most once per process, and is
read-only afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import numpy as np

from ..domain.entities import KnowledgeChunk
from ..domain.ports import IEmbeddingProvider
from ..errors import RetrievalError
from .bm25 import BM25Index
from .splitter import RecursiveTextSplitter

logger = logging.getLogger(__name__)

EMPTY_CORPUS_MESSAGE = "知识库为空，请在 knowledge/ 目录下添加 .txt 文件。"
NO_MATCH_MESSAGE = "知识库中没有找到与问题相关的信息。"
HIT_SEPARATOR = "\n\n---\n\n"


class RetrievalMode(str, Enum):
    """Which tier served a query."""

    SEMANTIC = "semantic"
    KEYWORD = "keyword"


@dataclass
class RetrievalHit:
    """A ranked chunk.

    Attributes:
        chunk: The matching chunk
        score: Cosine similarity (semantic) or BM25 score (keyword)
    """

    chunk: KnowledgeChunk
    score: float


@dataclass
class RetrievalResult:
    """Hits plus the tier that produced them.

    Attributes:
        hits: Ranked hits, best first
        mode: Tier that served the query (None if nothing was searched)
        corpus_empty: True when the knowledge directory had no documents
    """

    hits: list[RetrievalHit] = field(default_factory=list)
    mode: Optional[RetrievalMode] = None
    corpus_empty: bool = False

    def render(self) -> str:
        """Render hits for the model. Never returns an empty string."""
        if self.corpus_empty:
            return EMPTY_CORPUS_MESSAGE
        if not self.hits:
            return NO_MATCH_MESSAGE

        blocks = []
        for hit in self.hits:
            if self.mode == RetrievalMode.SEMANTIC:
                header = f"【来源: {hit.chunk.source} | 方式: 向量检索】"
            else:
                header = f"【来源: {hit.chunk.source} | 方式: 关键词检索 | 分数: {hit.score:.2f}】"
            blocks.append(f"{header}\n{hit.chunk.content}")
        return HIT_SEPARATOR.join(blocks)


class KnowledgeBase:
    """Lazily built two-tier knowledge base.

    Usage:
        kb = KnowledgeBase("knowledge", embedder=embedding_provider)
        await kb.initialize()  # optional; search() initializes on demand
        text = await kb.search_text("年假几天", top_k=3)
    """

    EMBED_BATCH_SIZE = 64
    INIT_POLL_SECONDS = 0.1

    def __init__(
        self,
        knowledge_dir: str | Path = "knowledge",
        embedder: Optional[IEmbeddingProvider] = None,
        chunk_size: int = 300,
        chunk_overlap: int = 50,
    ):
        """Initialize the knowledge base.

        Args:
            knowledge_dir: Directory of .txt documents
            embedder: Embedding provider for the semantic tier (optional)
            chunk_size: Maximum characters per chunk
            chunk_overlap: Characters carried between consecutive chunks
        """
        self.knowledge_dir = Path(knowledge_dir)
        self.embedder = embedder
        self.splitter = RecursiveTextSplitter(chunk_size=chunk_size, chunk_overlap=chunk_overlap)

        self.chunks: list[KnowledgeChunk] = []
        self.bm25: Optional[BM25Index] = None
        self._matrix: Optional[np.ndarray] = None
        self._semantic_enabled = False

        self._initialized = False
        self._initializing = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def semantic_enabled(self) -> bool:
        return self._semantic_enabled

    async def initialize(self) -> None:
        """Build the index once.

        Concurrent callers wait for the in-flight build instead of
        starting another one.
        """
        if self._initialized:
            return
        if self._initializing:
            while self._initializing:
                await asyncio.sleep(self.INIT_POLL_SECONDS)
            return

        self._initializing = True
        logger.info(f"Initializing knowledge base from {self.knowledge_dir}")

        try:
            self.chunks = self._load_chunks()
            if not self.chunks:
                logger.warning(f"Knowledge base is empty: no .txt files in {self.knowledge_dir}")
                self._initialized = True
                return

            self.bm25 = BM25Index(self.chunks)

            if self.embedder is not None:
                try:
                    await self._build_semantic_index()
                    self._semantic_enabled = True
                    logger.info(
                        f"Knowledge base ready (semantic mode): {len(self.chunks)} chunks"
                    )
                except Exception as e:
                    logger.warning(
                        f"Semantic index build failed, falling back to keyword search: {e}"
                    )
                    self._matrix = None
                    self._semantic_enabled = False

            if not self._semantic_enabled:
                logger.info(f"Knowledge base ready (keyword mode): {len(self.chunks)} chunks")

            self._initialized = True
        finally:
            self._initializing = False

    def _load_chunks(self) -> list[KnowledgeChunk]:
        if not self.knowledge_dir.is_dir():
            logger.warning(f"Knowledge directory does not exist: {self.knowledge_dir}")
            return []

        chunks: list[KnowledgeChunk] = []
        files = sorted(self.knowledge_dir.glob("*.txt"))
        for path in files:
            try:
                text = path.read_text(encoding="utf-8")
            except UnicodeDecodeError as e:
                logger.warning(f"{path.name} is not valid UTF-8, decoding with replacements: {e}")
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning(f"Skipping unreadable knowledge file {path.name}: {e}")
                continue
            for piece in self.splitter.split_text(text):
                chunks.append(KnowledgeChunk(content=piece, source=path.name, index=len(chunks)))

        logger.info(f"Loaded {len(files)} documents into {len(chunks)} chunks")
        return chunks

    async def _build_semantic_index(self) -> None:
        vectors: list[list[float]] = []
        texts = [chunk.content for chunk in self.chunks]
        for start in range(0, len(texts), self.EMBED_BATCH_SIZE):
            batch = texts[start:start + self.EMBED_BATCH_SIZE]
            vectors.extend(await self.embedder.embed_texts(batch))

        if len(vectors) != len(self.chunks):
            raise RetrievalError(
                f"Embedding count mismatch: {len(vectors)} vectors for {len(self.chunks)} chunks"
            )

        self.chunks = [
            KnowledgeChunk(
                content=chunk.content,
                source=chunk.source,
                index=chunk.index,
                embedding=tuple(vector),
            )
            for chunk, vector in zip(self.chunks, vectors)
        ]
        self._matrix = np.asarray(vectors, dtype=np.float32)
        self.bm25 = BM25Index(self.chunks)

    async def _semantic_search(self, query: str, top_k: int) -> list[RetrievalHit]:
        query_vector = np.asarray(await self.embedder.embed_text(query), dtype=np.float32)
        if self._matrix is None or query_vector.shape[0] != self._matrix.shape[1]:
            raise RetrievalError("Query embedding does not match the index dimensions")

        query_norm = np.linalg.norm(query_vector)
        if query_norm == 0:
            return []
        doc_norms = np.linalg.norm(self._matrix, axis=1)
        doc_norms = np.where(doc_norms == 0, 1, doc_norms)
        similarities = np.dot(self._matrix, query_vector) / (doc_norms * query_norm)

        # Stable so equal similarities keep corpus order
        order = np.argsort(-similarities, kind="stable")[:top_k]
        return [RetrievalHit(chunk=self.chunks[i], score=float(similarities[i])) for i in order]

    async def search(self, query: str, top_k: int = 3) -> RetrievalResult:
        """Search the knowledge base.

        Never raises for retrieval failures: semantic errors fall through
        to the keyword tier.
        """
        await self.initialize()

        if not self.chunks:
            return RetrievalResult(corpus_empty=True)

        if self._semantic_enabled:
            try:
                hits = await self._semantic_search(query, top_k)
                if hits:
                    return RetrievalResult(hits=hits, mode=RetrievalMode.SEMANTIC)
            except Exception as e:
                logger.warning(f"Semantic search failed, falling back to keyword search: {e}")

        pairs = self.bm25.search(query, top_k) if self.bm25 else []
        return RetrievalResult(
            hits=[RetrievalHit(chunk=chunk, score=score) for chunk, score in pairs],
            mode=RetrievalMode.KEYWORD,
        )

    async def search_text(self, query: str, top_k: int = 3) -> str:
        """Search and render hits as text for the model."""
        result = await self.search(query, top_k)
        return result.render()
