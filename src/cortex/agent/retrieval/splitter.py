"""
Recursive text splitter.

Splits documents into overlapping chunks, preferring paragraph breaks,
then line breaks, then sentence ends, then spaces, and finally single
characters. Separators stay attached to the end of the piece they
terminate, so Chinese sentences keep their full stop.
"""

from __future__ import annotations

from typing import Optional

DEFAULT_SEPARATORS = ("\n\n", "\n", "。", ". ", " ", "")


class RecursiveTextSplitter:
    """Split text into chunks of at most chunk_size characters.

    Usage:
        splitter = RecursiveTextSplitter(chunk_size=300, chunk_overlap=50)
        chunks = splitter.split_text(document)
    """

    def __init__(
        self,
        chunk_size: int = 300,
        chunk_overlap: int = 50,
        separators: Optional[tuple[str, ...]] = None,
    ):
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = separators or DEFAULT_SEPARATORS

    def split_text(self, text: str) -> list[str]:
        """Split one document into chunks."""
        if not text or not text.strip():
            return []
        return self._split(text, list(self.separators))

    def _split(self, text: str, separators: list[str]) -> list[str]:
        separator = separators[-1]
        remaining: list[str] = []
        for i, candidate in enumerate(separators):
            if candidate == "" or candidate in text:
                separator = candidate
                remaining = separators[i + 1:]
                break

        pieces = self._split_keeping_separator(text, separator)

        chunks: list[str] = []
        pending: list[str] = []
        for piece in pieces:
            if len(piece) <= self.chunk_size:
                pending.append(piece)
                continue

            if pending:
                chunks.extend(self._merge(pending))
                pending = []
            if remaining:
                chunks.extend(self._split(piece, remaining))
            else:
                chunks.append(piece)

        if pending:
            chunks.extend(self._merge(pending))

        return chunks

    @staticmethod
    def _split_keeping_separator(text: str, separator: str) -> list[str]:
        if separator == "":
            return list(text)

        parts = text.split(separator)
        pieces = [part + separator for part in parts[:-1]]
        pieces.append(parts[-1])
        return [piece for piece in pieces if piece]

    def _merge(self, pieces: list[str]) -> list[str]:
        """Greedily merge small pieces into chunks, carrying an overlap."""
        chunks: list[str] = []
        window: list[str] = []
        total = 0

        for piece in pieces:
            length = len(piece)
            if window and total + length > self.chunk_size:
                chunk = "".join(window).strip()
                if chunk:
                    chunks.append(chunk)
                # Drop from the front until the carried overlap fits
                while window and (
                    total > self.chunk_overlap or total + length > self.chunk_size
                ):
                    total -= len(window[0])
                    window.pop(0)

            window.append(piece)
            total += length

        chunk = "".join(window).strip()
        if chunk:
            chunks.append(chunk)

        return chunks
