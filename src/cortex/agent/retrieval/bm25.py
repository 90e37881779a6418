"""
BM25 keyword index.

The keyword tier of the knowledge base. It is pure CPU and always builds,
so it serves every query the semantic tier cannot.

Scoring (k1=1.5, b=0.75):
    idf(t)   = ln((N - df + 0.5) / (df + 0.5) + 1)
    score(d) = sum over t of idf(t) * tf*(k1+1) / (tf + k1*(1 - b + b*len(d)/avglen))

Chinese text is not whitespace separated, so a query token that is not a
document token is expanded to the document tokens it contains (or that
contain it): "报销流程" still reaches a chunk tokenized as "报销".
"""

from __future__ import annotations

import logging
import math
import re
import string
from collections import Counter
from typing import Optional

from ..domain.entities import KnowledgeChunk

logger = logging.getLogger(__name__)

STOPWORDS = frozenset({
    "的", "了", "在", "是", "我", "有", "和", "就",
    "不", "人", "都", "一", "一个", "上", "也", "很",
    "到", "说", "要", "去", "你", "会", "着", "没有",
    "看", "好", "自己", "这",
})

_SEPARATORS = re.compile(
    r"[，。！？、；：“”‘’\"'（）【】\s" + re.escape(string.punctuation) + r"]"
)

MIN_TOKEN_LENGTH = 2


def tokenize(text: str) -> list[str]:
    """Split text into lowercase keyword tokens.

    Punctuation (Chinese and ASCII) and whitespace become separators;
    tokens shorter than two characters and stopwords are dropped.
    """
    tokens = []
    for word in _SEPARATORS.sub(" ", text).split():
        word = word.lower()
        if len(word) >= MIN_TOKEN_LENGTH and word not in STOPWORDS:
            tokens.append(word)
    return tokens


class BM25Index:
    """In-memory BM25 index over knowledge chunks.

    The index is immutable after construction.

    Usage:
        index = BM25Index(chunks)
        for chunk, score in index.search("报销流程", top_k=3):
            print(chunk.source, score)
    """

    def __init__(self, chunks: list[KnowledgeChunk], k1: float = 1.5, b: float = 0.75):
        self.chunks = list(chunks)
        self.k1 = k1
        self.b = b

        self._term_freqs: list[Counter] = []
        self._lengths: list[int] = []
        self._doc_freq: Counter = Counter()

        for chunk in self.chunks:
            tokens = tokenize(chunk.content)
            self._term_freqs.append(Counter(tokens))
            self._lengths.append(len(tokens))
            self._doc_freq.update(set(tokens))

        total = sum(self._lengths)
        self._avg_length = total / len(self.chunks) if self.chunks else 0.0

        logger.debug(
            f"BM25 index built: {len(self.chunks)} chunks, "
            f"{len(self._doc_freq)} distinct terms"
        )

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def vocabulary(self) -> set[str]:
        return set(self._doc_freq)

    def idf(self, term: str) -> float:
        n = len(self.chunks)
        df = self._doc_freq.get(term, 0)
        return math.log((n - df + 0.5) / (df + 0.5) + 1)

    def expand_query(self, query: str) -> list[str]:
        """Map query tokens to index terms.

        Exact terms are used as-is; otherwise the token is expanded to
        every index term that is a substring of it, or contains it.
        """
        terms: list[str] = []
        for token in tokenize(query):
            if token in self._doc_freq:
                terms.append(token)
                continue
            terms.extend(
                term for term in self._doc_freq if term in token or token in term
            )
        return list(dict.fromkeys(terms))

    def score(self, index: int, terms: list[str]) -> float:
        """BM25 score of one chunk for already expanded terms."""
        tf_counts = self._term_freqs[index]
        length = self._lengths[index]
        norm = 1 - self.b + self.b * (length / self._avg_length if self._avg_length else 0)

        total = 0.0
        for term in terms:
            tf = tf_counts.get(term, 0)
            if tf == 0:
                continue
            total += self.idf(term) * (tf * (self.k1 + 1)) / (tf + self.k1 * norm)
        return total

    def search(
        self, query: str, top_k: int = 3, terms: Optional[list[str]] = None
    ) -> list[tuple[KnowledgeChunk, float]]:
        """Return up to top_k (chunk, score) pairs with score > 0.

        Ties keep corpus order.
        """
        if not self.chunks or top_k <= 0:
            return []

        terms = self.expand_query(query) if terms is None else terms
        if not terms:
            return []

        scored = [
            (chunk, self.score(i, terms)) for i, chunk in enumerate(self.chunks)
        ]
        scored = [pair for pair in scored if pair[1] > 0]
        # sorted() is stable
        scored = sorted(scored, key=lambda pair: pair[1], reverse=True)
        return scored[:top_k]
