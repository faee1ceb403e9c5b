from __future__ import annotations

import re
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from common.config import yaml_config
from ingestion.document_models import Chunk, ChunkRecord

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def _paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _PARAGRAPH_BREAK.split(text) if p.strip()]


def _sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_END.split(text) if s.strip()]


def _words(text: str) -> List[str]:
    return text.split()


# Granularity levels, coarsest first: (splitter, joiner inside one chunk).
_LEVELS: Sequence[Tuple[Callable[[str], List[str]], str]] = (
    (_paragraphs, "\n\n"),
    (_sentences, " "),
    (_words, " "),
)


class _Packer:
    """
    Accumulates pieces into chunks of at most `max_size` characters.
    A closed chunk seeds the next one with its last `carry_words` words.
    """

    def __init__(self, max_size: int, carry_words: int):
        self.max_size = max_size
        self.carry_words = carry_words
        self.chunks: List[str] = []
        self.current = ""

    def close(self) -> str:
        piece = self.current.strip()
        if piece:
            self.chunks.append(piece)
        self.current = ""
        return piece

    def _seed(self, closed: str, piece: str, joiner: str) -> str:
        words = closed.split()[-self.carry_words :] if self.carry_words > 0 else []
        while words and len(" ".join(words)) + len(joiner) + len(piece) > self.max_size:
            words.pop(0)
        return joiner.join([" ".join(words), piece]) if words else piece

    def add(self, piece: str, level: int, joiner: str) -> None:
        if len(piece) > self.max_size:
            if level + 1 < len(_LEVELS):
                split, inner = _LEVELS[level + 1]
                for i, sub in enumerate(split(piece)):
                    self.add(sub, level + 1, joiner if i == 0 else inner)
            else:
                # a single word longer than a chunk
                for start in range(0, len(piece), self.max_size):
                    part = piece[start : start + self.max_size]
                    self.add(part, level, joiner if start == 0 else "")
            return

        if not self.current:
            self.current = piece
            return
        candidate = self.current + joiner + piece
        if len(candidate) <= self.max_size:
            self.current = candidate
            return
        closed = self.close()
        self.current = self._seed(closed, piece, joiner)


def _validate(max_size: int, overlap: int) -> None:
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if overlap < 0 or overlap >= max_size:
        raise ValueError(
            f"overlap must satisfy 0 <= overlap < max_size, got {overlap} (max_size={max_size})"
        )


def chunk_text(
    text: str,
    max_size: Optional[int] = None,
    overlap: Optional[int] = None,
    min_chunk_length: Optional[int] = None,
) -> List[Chunk]:
    """
    Split text into chunks of at most `max_size` characters, preferring
    paragraph, then sentence, then word boundaries.

    Overlap is approximated in words: the last `overlap // chars_per_word`
    words of a chunk open the next one. Chunks shorter than
    `min_chunk_length` are dropped, but at least one chunk always survives.

    Sentence splits keep each fragment's own terminator; a trailing fragment
    without one is left as is rather than given a period.
    """
    cfg = yaml_config.chunking
    max_size = cfg.chunk_size if max_size is None else max_size
    overlap = cfg.chunk_overlap if overlap is None else overlap
    min_chunk_length = cfg.min_chunk_length if min_chunk_length is None else min_chunk_length
    _validate(max_size, overlap)

    if not text or not text.strip():
        return []
    if len(text) <= max_size:
        return [Chunk(index=0, content=text, length=len(text))]

    packer = _Packer(max_size, overlap // cfg.chars_per_word)
    split, joiner = _LEVELS[0]
    for paragraph in split(text):
        packer.add(paragraph, 0, joiner)
    packer.close()

    kept = [c for c in packer.chunks if len(c) >= min_chunk_length]
    if not kept and packer.chunks:
        kept = [max(packer.chunks, key=len)]
    return [Chunk(index=i, content=c, length=len(c)) for i, c in enumerate(kept)]


def chunk_records(document_id: str, chunks: Iterable[Chunk]) -> List[ChunkRecord]:
    return [
        ChunkRecord(
            document_id=document_id,
            chunk_index=c.index,
            content=c.content,
            metadata={"chunk_size": c.length},
        )
        for c in chunks
    ]
