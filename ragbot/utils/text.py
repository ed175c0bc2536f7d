
import re
from dataclasses import dataclass
from typing import Iterator, List, Sequence

# Tried in order when looking for a place to end a chunk
SEPARATORS: Sequence[str] = ("\n\n", "\n", ". ", "? ", "! ", " ")

_WS = re.compile(r"\s+")

def collapse_whitespace(text: str) -> str:
    return _WS.sub(" ", text).strip()

@dataclass(frozen=True)
class Chunks:
    """Lazy view over the chunks of one text; iterating again restarts from the beginning."""
    splitter: "TextSplitter"
    text: str

    def __iter__(self) -> Iterator[str]:
        return self.splitter.iter_chunks(self.text)

class TextSplitter:
    """Fixed-size character chunking with overlap.

    A chunk ends at the last paragraph, line, sentence or word boundary found
    within `lookback` characters before the size limit; without one it is cut
    hard at `chunk_size`. The next chunk starts `chunk_overlap` characters
    before the previous chunk's end.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        separators: Sequence[str] = SEPARATORS,
        lookback: int | None = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = tuple(separators)
        # Keeps every step moving forward by at least one character
        max_lookback = chunk_size - chunk_overlap - 1
        self.lookback = min(chunk_size // 5 if lookback is None else lookback, max_lookback)

    def split(self, text: str) -> Chunks:
        return Chunks(self, text)

    def iter_chunks(self, text: str) -> Iterator[str]:
        n = len(text)
        if not text.strip():
            return
        start = 0
        while start < n:
            end = min(start + self.chunk_size, n)
            if end < n:
                end = self._boundary(text, start, end)
            yield text[start:end]
            if end >= n:
                return
            start = max(end - self.chunk_overlap, start + 1)

    def _boundary(self, text: str, start: int, end: int) -> int:
        floor = max(start + 1, end - self.lookback)
        for sep in self.separators:
            idx = text.rfind(sep, floor, end)
            if idx != -1:
                return idx + len(sep)
        return end

def chunk_text(text: str, chunk_size: int = 1000, chunk_overlap: int = 200) -> List[str]:
    return list(TextSplitter(chunk_size, chunk_overlap).split(text))
