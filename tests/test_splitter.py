"""
Unit tests for the recursive character splitter.
"""

import pytest

from contextmem.ingestion.splitter import RecursiveTextSplitter


class TestRecursiveTextSplitter:
    def test_2500_chars_give_three_overlapping_chunks(self):
        splitter = RecursiveTextSplitter(chunk_size=1000, chunk_overlap=200)

        chunks = splitter.split_text("x" * 2500)

        assert [len(chunk) for chunk in chunks] == [1000, 1000, 900]

    def test_adjacent_chunks_share_overlap(self):
        text = "".join(chr(ord("a") + (i % 26)) for i in range(2500))
        splitter = RecursiveTextSplitter(chunk_size=1000, chunk_overlap=200)

        chunks = splitter.split_text(text)

        assert len(chunks) == 3
        assert chunks[0] == text[:1000]
        assert chunks[1] == text[800:1800]
        assert chunks[2] == text[1600:]
        for left, right in zip(chunks, chunks[1:]):
            assert left[-200:] == right[:200]

    def test_word_boundaries_are_preferred(self):
        words = [f"w{i:03d}" for i in range(400)]
        splitter = RecursiveTextSplitter(chunk_size=1000, chunk_overlap=200)

        chunks = splitter.split_text(" ".join(words))

        assert len(chunks) >= 2
        assert all(len(chunk) <= 1000 for chunk in chunks)
        for chunk in chunks:
            assert all(token in words for token in chunk.split(" "))
        first_of_second = chunks[1].split(" ")[0]
        assert first_of_second in chunks[0].split(" ")

    def test_short_paragraphs_are_merged(self):
        splitter = RecursiveTextSplitter(chunk_size=100, chunk_overlap=10)

        assert splitter.split_text("First paragraph.\n\nSecond paragraph.") == [
            "First paragraph.\n\nSecond paragraph."
        ]

    def test_empty_or_blank_text_gives_no_chunks(self):
        splitter = RecursiveTextSplitter()

        assert splitter.split_text("") == []
        assert splitter.split_text("  \n\n  ") == []

    def test_overlap_must_be_smaller_than_size(self):
        with pytest.raises(ValueError):
            RecursiveTextSplitter(chunk_size=100, chunk_overlap=100)
