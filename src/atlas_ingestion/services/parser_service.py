"""File parsing service for the supported document types."""

import asyncio
import io
from pathlib import Path
from typing import Optional, Union

import PyPDF2

from atlas_ingestion.models.document import FileType, ParsedDocument
from atlas_ingestion.utils.errors import ParseError
from atlas_ingestion.utils.logging import get_logger

logger = get_logger("parser_service")

EXTENSION_TYPES = {
    ".pdf": FileType.PDF,
    ".ts": FileType.CODE,
    ".tsx": FileType.CODE,
    ".js": FileType.CODE,
    ".jsx": FileType.CODE,
    ".py": FileType.CODE,
    ".java": FileType.CODE,
    ".cpp": FileType.CODE,
    ".c": FileType.CODE,
    ".h": FileType.CODE,
    ".hpp": FileType.CODE,
    ".go": FileType.CODE,
    ".rs": FileType.CODE,
    ".json": FileType.CODE,
    ".yaml": FileType.CODE,
    ".yml": FileType.CODE,
    ".xml": FileType.CODE,
    ".html": FileType.CODE,
    ".css": FileType.CODE,
    ".scss": FileType.CODE,
    ".md": FileType.MARKDOWN,
    ".txt": FileType.TEXT,
}

SUPPORTED_EXTENSIONS = frozenset(EXTENSION_TYPES)

# latin-1 decodes any byte string, so it goes last
TEXT_ENCODINGS = ["utf-8", "cp1252", "latin-1"]


def detect_file_type(file_path: Union[str, Path]) -> FileType:
    """Map a file's extension to its FileType, defaulting to text."""
    return EXTENSION_TYPES.get(Path(file_path).suffix.lower(), FileType.TEXT)


def is_file_supported(file_path: Union[str, Path]) -> bool:
    """Check whether a file's extension is one the pipeline ingests."""
    return Path(file_path).suffix.lower() in SUPPORTED_EXTENSIONS


class ParserService:
    """
    Service for extracting text from files on disk.

    Supports:
    - PDF (`.pdf`) - PyPDF2, reports the page count
    - Source code, markdown and plain text - decoded with an encoding fallback
    """

    async def parse_file(
        self, file_path: Union[str, Path], file_type: Optional[FileType] = None
    ) -> ParsedDocument:
        """
        Parse a file from disk.

        Args:
            file_path: Path of the file to read
            file_type: Known file type; detected from the extension when omitted

        Returns:
            ParsedDocument with the extracted text (possibly empty)

        Raises:
            ParseError: If the file cannot be read or decoded
        """
        path = Path(file_path)
        file_type = file_type or detect_file_type(path)

        try:
            file_data = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            logger.error(f"Failed to read file: {path} - {e}")
            raise ParseError(
                f"Failed to read file: {e}",
                file_path=str(path),
                file_type=file_type.value,
            ) from e

        logger.info(f"Parsing file: type={file_type.value}, path={path}")

        if file_type == FileType.PDF:
            return await asyncio.to_thread(self._parse_pdf, file_data, str(path))
        return self._parse_text(file_data, file_type, str(path))

    def _parse_pdf(self, file_data: bytes, file_path: str) -> ParsedDocument:
        """
        Extract text from every page of a PDF.

        Pages that fail to extract are skipped with a warning.
        """
        try:
            reader = PyPDF2.PdfReader(io.BytesIO(file_data))
            page_count = len(reader.pages)

            text_parts = []
            for page_num, page in enumerate(reader.pages, start=1):
                try:
                    page_text = page.extract_text() or ""
                except Exception as page_error:
                    logger.warning(
                        f"Failed to extract text from page {page_num} in {file_path}: {page_error}"
                    )
                    continue
                if page_text.strip():
                    text_parts.append(page_text)
        except PyPDF2.errors.PdfReadError as e:
            raise ParseError(
                f"Failed to parse PDF: {e}",
                file_path=file_path,
                file_type=FileType.PDF.value,
            ) from e
        except Exception as e:
            logger.error(f"Unexpected error parsing PDF: {file_path} - {e}", exc_info=True)
            raise ParseError(
                f"Failed to parse PDF: {e}",
                file_path=file_path,
                file_type=FileType.PDF.value,
            ) from e

        text = "\n\n".join(text_parts)
        logger.info(f"Parsed PDF: {file_path}, pages={page_count}, chars={len(text)}")
        return ParsedDocument(text=text, file_type=FileType.PDF, page_count=page_count)

    def _parse_text(self, file_data: bytes, file_type: FileType, file_path: str) -> ParsedDocument:
        """Decode a code, markdown or text file."""
        text = None
        used_encoding = None
        for encoding in TEXT_ENCODINGS:
            try:
                text = file_data.decode(encoding)
                used_encoding = encoding
                break
            except UnicodeDecodeError:
                continue

        if text is None:
            raise ParseError(
                "Failed to decode file. Unsupported encoding.",
                file_path=file_path,
                file_type=file_type.value,
            )

        if text.startswith("\ufeff"):
            text = text[1:]

        logger.debug(f"Parsed {file_type.value} file: {file_path}, chars={len(text)}, encoding={used_encoding}")
        return ParsedDocument(text=text, file_type=file_type, encoding=used_encoding)
