"""Character-based text chunking for embedding."""

import re
from typing import List, Optional

from atlas_ingestion.config import ChunkingSettings
from atlas_ingestion.models.chunk import TextChunk
from atlas_ingestion.models.document import FileType
from atlas_ingestion.utils.errors import ConfigurationError
from atlas_ingestion.utils.logging import get_logger

logger = get_logger("chunking_service")

# Characters a word-preserving cut may land after
WORD_BOUNDARY_CHARS = (" ", "\n", ".", ",", ";", ")")

# How far back from the naive cut point to look for a word boundary
WORD_BOUNDARY_LOOKBACK = 100

CODE_BOUNDARY_PATTERNS = [
    re.compile(r"\n\s*function\s+"),  # JS function declarations
    re.compile(r"\n\s*const\s+\w+\s*=\s*\("),  # arrow functions
    re.compile(r"\n\s*class\s+"),  # class declarations (JS, TS, Python)
    re.compile(r"\n\s*export\s+(function|class|const)"),
    re.compile(r"\n\s*(async\s+)?def\s+"),  # Python functions
    re.compile(r"\n\s*public\s+(class|interface|void|static)"),  # Java / C#
    re.compile(r"\n\s*func\s+"),  # Go
    re.compile(r"\n\s*(pub\s+)?(fn|impl)\s+"),  # Rust
]


class ChunkingService:
    """
    Split extracted text into overlapping character windows.

    Two strategies are available:
    - chunk_text: sliding window, optionally pulled back to a word boundary
    - chunk_code: cuts at function/class declarations where possible

    Every method is pure: identical input always yields identical chunks.
    """

    def __init__(self, settings: Optional[ChunkingSettings] = None):
        """
        Initialize the chunking service.

        Args:
            settings: Default chunk size and overlap, used when a caller passes none
        """
        self.settings = settings or ChunkingSettings()

    def _resolve(self, chunk_size: Optional[int], chunk_overlap: Optional[int]) -> tuple[int, int]:
        chunk_size = self.settings.chunk_size if chunk_size is None else chunk_size
        chunk_overlap = self.settings.chunk_overlap if chunk_overlap is None else chunk_overlap

        if chunk_size <= 0:
            raise ConfigurationError(
                "Chunk size must be greater than 0", details={"chunk_size": chunk_size}
            )
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ConfigurationError(
                "Chunk overlap must be between 0 and chunk size",
                details={"chunk_size": chunk_size, "chunk_overlap": chunk_overlap},
            )
        return chunk_size, chunk_overlap

    def chunk_text(
        self,
        text: str,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        preserve_words: bool = True,
    ) -> List[TextChunk]:
        """
        Split text with a sliding window.

        The window advances by ``chunk_size - chunk_overlap`` characters. When
        ``preserve_words`` is set and the cut falls before the end of the text,
        the cut is moved back to just after the last boundary character found
        in the preceding 100 characters.

        Args:
            text: Text to split
            chunk_size: Window size in characters
            chunk_overlap: Characters shared by consecutive windows
            preserve_words: Avoid cutting inside a word

        Returns:
            Ordered list of TextChunk instances (empty for empty text)

        Raises:
            ConfigurationError: If chunk_size or chunk_overlap is invalid
        """
        chunk_size, chunk_overlap = self._resolve(chunk_size, chunk_overlap)
        if not text:
            return []

        length = len(text)
        step = chunk_size - chunk_overlap
        chunks: List[TextChunk] = []
        start = 0

        while start < length:
            end = min(start + chunk_size, length)

            if preserve_words and end < length:
                search_start = max(start, end - WORD_BOUNDARY_LOOKBACK)
                window = text[search_start:end]
                last_boundary = max(window.rfind(c) for c in WORD_BOUNDARY_CHARS)
                if last_boundary > 0:
                    end = search_start + last_boundary + 1

            chunks.append(TextChunk(content=text[start:end], start_char=start, end_char=end))

            start = start + step if step > 0 else end

        return chunks

    def chunk_code(
        self,
        code: str,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> List[TextChunk]:
        """
        Split source code, preferring cuts at declaration boundaries.

        Falls back to word-preserving chunk_text when the code fits in one
        chunk or contains no recognizable declarations.
        """
        chunk_size, chunk_overlap = self._resolve(chunk_size, chunk_overlap)

        boundaries = {0}
        for pattern in CODE_BOUNDARY_PATTERNS:
            boundaries.update(match.start() for match in pattern.finditer(code))
        ordered = sorted(boundaries)

        if len(ordered) <= 1 or len(code) <= chunk_size:
            return self.chunk_text(code, chunk_size, chunk_overlap, preserve_words=True)

        length = len(code)
        chunks: List[TextChunk] = []
        start = 0

        while start < length:
            end = start + chunk_size
            if end < length:
                candidates = [b for b in ordered if start < b <= end]
                if candidates:
                    end = candidates[-1]
            else:
                end = length

            chunks.append(TextChunk(content=code[start:end], start_char=start, end_char=end))
            if end >= length:
                break

            # Overlap counts back from the cut, which may sit on a boundary
            next_start = end - chunk_overlap
            start = next_start if next_start > start else end

        return chunks

    def chunk_document(
        self,
        text: str,
        file_type: FileType,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> List[TextChunk]:
        """Chunk extracted text with the strategy that suits its file type."""
        if file_type == FileType.CODE:
            chunks = self.chunk_code(text, chunk_size, chunk_overlap)
        else:
            chunks = self.chunk_text(text, chunk_size, chunk_overlap, preserve_words=True)

        logger.debug(
            f"Chunked {len(text)} characters into {len(chunks)} chunks",
            extra={"file_type": file_type.value, "chunk_size": chunk_size, "chunk_overlap": chunk_overlap},
        )
        return chunks
