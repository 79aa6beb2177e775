"""Document ingestion: extract, split, tag and index.

Pipeline summary:
    1. Require a credential up front (`CredentialRequired`).
    2. Extract plain text for the MIME type in a worker thread
       (`UnsupportedFormat` for unknown types, `ValidationError` for payloads
       the extractor cannot parse).
    3. Split with `RecursiveTextSplitter`.
    4. Tag each chunk with `chunk_index` / `total_chunks` and shared document
       metadata.
    5. Embed and insert synchronously via `EmbeddingGateway.add_items`;
       provider errors propagate to the caller.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from contextmem.errors import ValidationError
from contextmem.ingestion.extractors import TextExtractorRegistry
from contextmem.ingestion.splitter import RecursiveTextSplitter
from contextmem.memory.gateway import EmbeddingGateway, require_credential
from contextmem.memory.models import DocumentChunk, IndexedItem, ProcessedDocument
from contextmem.memory.session_store import utc_now


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileMetadata:
    file_name: str
    file_type: str


class DocumentIngestionPipeline:
    def __init__(
        self,
        gateway: EmbeddingGateway,
        splitter: RecursiveTextSplitter | None = None,
        extractors: TextExtractorRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.gateway = gateway
        self.splitter = splitter or RecursiveTextSplitter()
        self.extractors = extractors or TextExtractorRegistry.default()
        self._clock = clock or utc_now

    async def process_document(
        self,
        data: bytes,
        mime_type: str,
        file_name: str,
        user_id: str,
        credential: str | None,
    ) -> ProcessedDocument:
        """Extract text from uploaded bytes, then run `process`."""
        require_credential(credential)
        raw_text = await asyncio.to_thread(self.extractors.extract, data, mime_type)
        return await self.process(raw_text, FileMetadata(file_name, mime_type), user_id, credential)

    async def process(
        self,
        raw_text: str,
        file_metadata: FileMetadata,
        user_id: str,
        credential: str | None,
    ) -> ProcessedDocument:
        """Chunk `raw_text` and index every chunk for `user_id`.

        Returns:
            `ProcessedDocument` whose chunks carry deterministic indices
            `0..total_chunks-1` in text order.

        Raises:
            CredentialRequired: Missing credential (checked before any work).
            ValidationError: Missing user id or no extractable text.
            CredentialInvalid / CredentialMismatch / EmbeddingProviderError:
                Propagated from the gateway.
        """
        credential = require_credential(credential)

        if not user_id or not str(user_id).strip():
            raise ValidationError("user_id is required")

        pieces = self.splitter.split_text(raw_text or "")
        if not pieces:
            raise ValidationError(f"No text content found in {file_metadata.file_name}")

        document_id = str(uuid.uuid4())
        uploaded_at = self._clock()
        total = len(pieces)

        chunks = [
            DocumentChunk(
                id=str(uuid.uuid4()),
                document_id=document_id,
                user_id=user_id,
                content=piece,
                chunk_index=index,
                total_chunks=total,
                file_name=file_metadata.file_name,
                file_type=file_metadata.file_type,
                uploaded_at=uploaded_at,
            )
            for index, piece in enumerate(pieces)
        ]

        await self.gateway.add_items([IndexedItem.from_chunk(chunk) for chunk in chunks], credential)

        logger.info("Processed document %s (%d chunks)", file_metadata.file_name, total)

        return ProcessedDocument(
            id=document_id,
            file_name=file_metadata.file_name,
            file_type=file_metadata.file_type,
            chunks=chunks,
            total_chunks=total,
            uploaded_at=uploaded_at,
            user_id=user_id,
        )
