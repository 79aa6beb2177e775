"""
Unit tests for document extraction, chunking and indexing.
"""

import asyncio
import time

import pytest

from contextmem.errors import (
    CredentialRequired,
    EmbeddingProviderError,
    UnsupportedFormat,
    ValidationError,
)
from contextmem.ingestion.extractors import TextExtractorRegistry
from contextmem.ingestion.pipeline import DocumentIngestionPipeline, FileMetadata
from contextmem.memory.models import ItemType


@pytest.fixture
def pipeline(gateway, clock):
    return DocumentIngestionPipeline(gateway, clock=clock)


class TestProcessDocument:
    async def test_missing_credential_is_checked_before_format(self, pipeline, provider):
        with pytest.raises(CredentialRequired):
            await pipeline.process_document(b"\x89PNG", "image/png", "a.png", "alice", None)

        assert provider.calls == []

    async def test_unsupported_format(self, pipeline):
        with pytest.raises(UnsupportedFormat):
            await pipeline.process_document(b"\x89PNG", "image/png", "a.png", "alice", "key-a")

    async def test_chunks_are_tagged_in_text_order(self, pipeline, gateway, clock):
        document = await pipeline.process_document(
            b"x" * 2500, "text/plain; charset=utf-8", "notes.txt", "alice", "key-a"
        )

        assert document.total_chunks == 3
        assert [chunk.chunk_index for chunk in document.chunks] == [0, 1, 2]
        assert {chunk.total_chunks for chunk in document.chunks} == {3}
        assert {chunk.document_id for chunk in document.chunks} == {document.id}
        assert document.uploaded_at == clock()

        indexed = [item for item in gateway.index.items() if item.item_type is ItemType.DOCUMENT]
        assert [item.ref_id for item in indexed] == [chunk.id for chunk in document.chunks]
        assert indexed[0].metadata["file_name"] == "notes.txt"
        assert indexed[2].metadata["chunk_index"] == 2

    async def test_corrupt_pdf_is_a_validation_error(self, pipeline, gateway):
        with pytest.raises(ValidationError, match="Document processing failed"):
            await pipeline.process_document(
                b"%PDF-1.4 garbage", "application/pdf", "broken.pdf", "alice", "key-a"
            )

        assert gateway.index is None

    async def test_extraction_does_not_block_event_loop(self, gateway, clock):
        def slow_extract(data):
            time.sleep(0.3)
            return data.decode()

        pipeline = DocumentIngestionPipeline(
            gateway,
            extractors=TextExtractorRegistry({"text/plain": slow_extract}),
            clock=clock,
        )
        ticks = []

        async def ticker():
            while True:
                ticks.append(time.monotonic())
                await asyncio.sleep(0.02)

        task = asyncio.create_task(ticker())
        await asyncio.sleep(0)
        try:
            await pipeline.process_document(b"slow notes", "text/plain", "a.txt", "alice", "key-a")
        finally:
            task.cancel()

        gaps = [later - earlier for earlier, later in zip(ticks, ticks[1:])]
        assert len(gaps) >= 5
        assert max(gaps) < 0.2

    async def test_empty_text_is_rejected(self, pipeline):
        with pytest.raises(ValidationError):
            await pipeline.process(" \n ", FileMetadata("blank.txt", "text/plain"), "alice", "key-a")

    async def test_missing_user_is_rejected(self, pipeline):
        with pytest.raises(ValidationError):
            await pipeline.process("text", FileMetadata("a.txt", "text/plain"), "", "key-a")

    async def test_provider_errors_propagate(self, pipeline, provider):
        provider.fail_with = EmbeddingProviderError("rate limited")

        with pytest.raises(EmbeddingProviderError):
            await pipeline.process("some text", FileMetadata("a.txt", "text/plain"), "alice", "key-a")


class TestTextExtractorRegistry:
    def test_default_supports_text_markdown_and_pdf(self):
        registry = TextExtractorRegistry.default()

        assert registry.supports("text/plain")
        assert registry.supports("text/markdown")
        assert registry.supports("application/pdf")
        assert not registry.supports("image/png")

    def test_custom_extractor_can_be_registered(self):
        registry = TextExtractorRegistry()
        registry.register("Application/X-Custom", lambda data: data.decode().upper())

        assert registry.extract(b"abc", "application/x-custom") == "ABC"

    def test_invalid_utf8_is_replaced(self):
        registry = TextExtractorRegistry.default()

        assert registry.extract(b"caf\xff", "text/plain") == "caf�"

    def test_extractor_failures_become_validation_errors(self):
        def broken(data):
            raise RuntimeError("cannot parse")

        registry = TextExtractorRegistry({"application/pdf": broken})

        with pytest.raises(ValidationError) as excinfo:
            registry.extract(b"...", "application/pdf")

        assert isinstance(excinfo.value.__cause__, RuntimeError)
