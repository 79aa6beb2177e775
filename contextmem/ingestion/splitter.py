"""Recursive character text splitting for document ingestion.

Chunking strategy:
    Delegates to `langchain_text_splitters.RecursiveCharacterTextSplitter`:
    1. Pick the first separator (coarse to fine: paragraph, line, word,
       character) that occurs in the text.
    2. Split on it; oversized pieces are split again with the finer separators.
    3. Pieces are merged greedily into chunks of at most `chunk_size`
       characters, carrying up to `chunk_overlap` trailing characters into the
       next chunk.

Determinism:
    Pure function of input text and settings; chunk order follows text order.

Sizing:
    For text without separators, length L yields `ceil((L - overlap) /
    (size - overlap))` chunks (L=2500, 1000/200 -> 3), and consecutive chunks
    share exactly `overlap` characters.
"""

from langchain_text_splitters import RecursiveCharacterTextSplitter


CHUNK_SIZE = 1000
CHUNK_OVERLAP = 200
DEFAULT_SEPARATORS = ("\n\n", "\n", " ", "")


class RecursiveTextSplitter:
    def __init__(self, chunk_size=CHUNK_SIZE, chunk_overlap=CHUNK_OVERLAP, separators=DEFAULT_SEPARATORS):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = list(separators)
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=self.separators,
        )

    def split_text(self, text):
        """Split `text` into ordered, overlapping chunks (empty text -> `[]`)."""
        if not text or not text.strip():
            return []
        return self._splitter.split_text(text)
