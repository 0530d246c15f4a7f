import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Dict, Any

from kbrag.core.config import settings
from kbrag.utils.tokenizer import Tokenizer

_NEWLINE_RUNS = re.compile(r"\n+")


def clean_text(text: str) -> str:
    """Collapse runs of newlines into a single newline."""
    return _NEWLINE_RUNS.sub("\n", text)


@dataclass(frozen=True)
class ChunkingParams:
    chunk_size: int = 800
    chunk_overlap: int = 350
    min_chunk_tokens: int = 5
    max_chunk_chars: int = 10000
    keep_paragraphs: bool = True

    @classmethod
    def from_settings(cls) -> "ChunkingParams":
        return cls(
            chunk_size=settings.CHUNK_SIZE,
            chunk_overlap=settings.CHUNK_OVERLAP,
            min_chunk_tokens=settings.MIN_CHUNK_TOKENS,
            max_chunk_chars=settings.MAX_CHUNK_CHARS,
            keep_paragraphs=settings.KEEP_PARAGRAPHS,
        )


@dataclass
class _Unit:
    text: str
    tokens: int
    paragraph: int


class ChunkingStrategy(ABC):
    @abstractmethod
    def chunk(self, text: str) -> List[Dict[str, Any]]:
        pass


class TokenChunking(ChunkingStrategy):
    """
    Sentence-aware chunking bounded by token count, with token overlap between neighbours.

    Sentences are packed into a chunk until the next one would push it past `chunk_size`
    tokens; the following chunk starts with the trailing sentences of the previous one
    (up to `chunk_overlap` tokens). Sentences longer than a whole chunk are cut into word
    windows. With `keep_paragraphs`, a chunk that is at least half full is closed before
    a paragraph that would not fit, and paragraph breaks survive as newlines.
    Chunks below `min_chunk_tokens` are dropped, chunks above `max_chunk_chars` are cut.
    """

    def __init__(self, params: ChunkingParams, tokenizer: Tokenizer = None):
        if params.chunk_overlap >= params.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        self.params = params
        self.tokenizer = tokenizer or Tokenizer()

    def _units(self, text: str) -> List[_Unit]:
        if self.params.keep_paragraphs:
            paragraphs = [p for p in text.split("\n") if p.strip()]
        else:
            paragraphs = [text]

        units = []
        for index, paragraph in enumerate(paragraphs):
            for sentence in self.tokenizer.tokenize(paragraph):
                tokens = self.tokenizer.count_tokens(sentence)
                if tokens:
                    units.append(_Unit(sentence, tokens, index))
        return units

    def _join(self, units: List[_Unit]) -> str:
        parts = []
        previous = None
        for unit in units:
            if previous is not None:
                parts.append("\n" if unit.paragraph != previous.paragraph else " ")
            parts.append(unit.text)
            previous = unit
        return "".join(parts)

    def _overlap_tail(self, units: List[_Unit]) -> List[_Unit]:
        tail: List[_Unit] = []
        total = 0
        for unit in reversed(units):
            if total + unit.tokens > self.params.chunk_overlap:
                break
            tail.insert(0, unit)
            total += unit.tokens
        return tail

    def _word_windows(self, unit: _Unit) -> List[str]:
        words = self.tokenizer.words(unit.text)
        step = self.params.chunk_size - self.params.chunk_overlap
        windows = []
        for start in range(0, len(words), step):
            windows.append(" ".join(words[start:start + self.params.chunk_size]))
            if start + self.params.chunk_size >= len(words):
                break
        return windows

    def _cap(self, text: str) -> List[str]:
        limit = self.params.max_chunk_chars
        if len(text) <= limit:
            return [text]
        pieces = []
        start = 0
        while start < len(text):
            end = min(start + limit, len(text))
            if end < len(text):
                split_pos = text.rfind(" ", start, end)
                if split_pos > start:
                    end = split_pos
            pieces.append(text[start:end].strip())
            start = end
        return [p for p in pieces if p]

    def chunk(self, text: str) -> List[Dict[str, Any]]:
        if not text or not text.strip():
            return []

        units = self._units(text)
        paragraph_tokens: Dict[int, int] = {}
        for unit in units:
            paragraph_tokens[unit.paragraph] = paragraph_tokens.get(unit.paragraph, 0) + unit.tokens

        raw_chunks: List[str] = []
        current: List[_Unit] = []
        current_tokens = 0

        for unit in units:
            if unit.tokens > self.params.chunk_size:
                if current:
                    raw_chunks.append(self._join(current))
                raw_chunks.extend(self._word_windows(unit))
                current, current_tokens = [], 0
                continue

            starts_paragraph = not current or current[-1].paragraph != unit.paragraph
            paragraph_would_overflow = (
                self.params.keep_paragraphs
                and starts_paragraph
                and current_tokens >= self.params.chunk_size // 2
                and current_tokens + paragraph_tokens[unit.paragraph] > self.params.chunk_size
            )

            if current and (current_tokens + unit.tokens > self.params.chunk_size or paragraph_would_overflow):
                raw_chunks.append(self._join(current))
                current = self._overlap_tail(current)
                current_tokens = sum(u.tokens for u in current)
                while current and current_tokens + unit.tokens > self.params.chunk_size:
                    current_tokens -= current.pop(0).tokens

            current.append(unit)
            current_tokens += unit.tokens

        if current:
            raw_chunks.append(self._join(current))

        chunks = []
        for raw in raw_chunks:
            for piece in self._cap(raw):
                token_count = self.tokenizer.count_tokens(piece)
                if token_count < self.params.min_chunk_tokens:
                    continue
                chunks.append({
                    "text": piece,
                    "token_count": token_count,
                    "char_count": len(piece),
                })
        return chunks
