"""PDF text extraction with pdfplumber."""

import asyncio
from io import BytesIO
from typing import Optional, Protocol
from uuid import UUID

import pdfplumber

from contractflow.core.config import settings
from contractflow.core.exceptions import PdfEmptyError, PdfParseFailedError, PdfTooLargeError
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)


class DocumentTextParser(Protocol):
    async def parse_text(self, pdf_bytes: bytes, workflow_id: Optional[UUID] = None) -> str:
        ...


class PdfTextParser:
    """Extracts plain text from every page of a PDF.

    pdfplumber is synchronous, so parsing runs in a worker thread.
    """

    def __init__(self, max_size_bytes: Optional[int] = None):
        self.max_size_bytes = max_size_bytes if max_size_bytes is not None else settings.pipeline.max_pdf_size_bytes

    async def parse_text(self, pdf_bytes: bytes, workflow_id: Optional[UUID] = None) -> str:
        """Extract text from PDF bytes.

        Args:
            pdf_bytes: PDF file content
            workflow_id: Workflow being processed, for logging

        Returns:
            Page texts joined by newlines

        Raises:
            PdfTooLargeError: If the document exceeds the size limit
            PdfParseFailedError: If the bytes cannot be read as a PDF
            PdfEmptyError: If no page contains text
        """
        log_extra = {"workflow_id": str(workflow_id) if workflow_id else None, "step": "parsing_pdf"}

        if len(pdf_bytes) > self.max_size_bytes:
            LOGGER.error(
                "PDF exceeds size limit",
                extra={**log_extra, "size_bytes": len(pdf_bytes), "error_code": PdfTooLargeError.code},
            )
            raise PdfTooLargeError(
                f"PDF size {len(pdf_bytes)} bytes exceeds {self.max_size_bytes} byte limit"
            )

        try:
            page_count, text = await asyncio.to_thread(self._extract, pdf_bytes)
        except Exception as e:
            LOGGER.error(
                f"Failed to parse PDF: {e}",
                extra={**log_extra, "error_type": type(e).__name__, "error_code": PdfParseFailedError.code},
            )
            raise PdfParseFailedError("Failed to parse PDF document", details=str(e), original_error=e) from e

        if not text:
            LOGGER.error(
                "PDF contains no text",
                extra={**log_extra, "page_count": page_count, "error_code": PdfEmptyError.code},
            )
            raise PdfEmptyError("PDF contains no extractable text")

        LOGGER.info(
            "PDF text extracted",
            extra={**log_extra, "page_count": page_count, "text_length": len(text)},
        )
        return text

    @staticmethod
    def _extract(pdf_bytes: bytes) -> tuple[int, str]:
        with pdfplumber.open(BytesIO(pdf_bytes)) as pdf:
            page_texts = [page.extract_text() or "" for page in pdf.pages]
            return len(pdf.pages), "\n".join(page_texts).strip()
