"""MIME-type keyed plain-text extraction.

Architectural role:
    Turns uploaded bytes into plain text before chunking. Binary parsing is a
    collaborator concern: the registry only dispatches, and a missing entry is
    reported as `UnsupportedFormat` and a payload the extractor cannot parse
    as `ValidationError`.

Built-in extractors:
    - `text/plain`, `text/markdown`: UTF-8 decode (invalid bytes replaced).
    - `application/pdf`: page text via `pdfplumber` (imported on first use).
"""

import io
import logging
from typing import Callable

from contextmem.errors import ContextMemError, UnsupportedFormat, ValidationError


logger = logging.getLogger(__name__)


Extractor = Callable[[bytes], str]


def extract_plain_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def extract_pdf_text(data: bytes) -> str:
    """Concatenate the text of every PDF page, newline separated."""
    import pdfplumber

    pages = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            pages.append(page.extract_text() or "")
    return "\n".join(pages)


class TextExtractorRegistry:
    def __init__(self, extractors: dict[str, Extractor] | None = None) -> None:
        self._extractors: dict[str, Extractor] = {}
        for mime_type, extractor in (extractors or {}).items():
            self.register(mime_type, extractor)

    @classmethod
    def default(cls) -> "TextExtractorRegistry":
        return cls({
            "text/plain": extract_plain_text,
            "text/markdown": extract_plain_text,
            "application/pdf": extract_pdf_text,
        })

    def register(self, mime_type: str, extractor: Extractor) -> None:
        self._extractors[_normalize_mime(mime_type)] = extractor

    def supports(self, mime_type: str) -> bool:
        return _normalize_mime(mime_type) in self._extractors

    def extract(self, data: bytes, mime_type: str) -> str:
        """Extract text from `data`.

        Raises:
            UnsupportedFormat: No extractor is registered for `mime_type`.
            ValidationError: The extractor could not parse the payload.
        """
        extractor = self._extractors.get(_normalize_mime(mime_type))
        if extractor is None:
            raise UnsupportedFormat(f"Unsupported file type: {mime_type}")

        try:
            text = extractor(data)
        except ContextMemError:
            raise
        except Exception as exc:
            logger.warning("Text extraction failed for %s payload: %s", mime_type, exc)
            raise ValidationError(f"Document processing failed: {exc}") from exc

        logger.info("Extracted %d characters from %s payload", len(text), mime_type)
        return text


def _normalize_mime(mime_type: str) -> str:
    # "text/plain; charset=utf-8" -> "text/plain"
    return (mime_type or "").split(";", 1)[0].strip().lower()
