import pytest

from atlas_ingestion.config import ChunkingSettings
from atlas_ingestion.models.document import FileType
from atlas_ingestion.services.chunking_service import ChunkingService
from atlas_ingestion.utils.errors import ConfigurationError


@pytest.fixture
def svc():
    return ChunkingService(ChunkingSettings(chunk_size=100, chunk_overlap=20))


def test_fixed_window_produces_truncated_tail(svc):
    chunks = svc.chunk_text("abcdefghij", chunk_size=4, chunk_overlap=1, preserve_words=False)

    assert [(c.start_char, c.end_char, c.content) for c in chunks] == [
        (0, 4, "abcd"),
        (3, 7, "defg"),
        (6, 10, "ghij"),
        (9, 10, "j"),
    ]


def test_empty_text_yields_no_chunks(svc):
    assert svc.chunk_text("") == []
    assert svc.chunk_code("", chunk_size=10, chunk_overlap=2) == []


def test_fixed_windows_cover_input_and_respect_size(svc):
    text = "".join(chr(ord("a") + i % 26) for i in range(503))
    for size, overlap in [(10, 0), (10, 3), (64, 63), (500, 100), (1000, 10)]:
        chunks = svc.chunk_text(text, chunk_size=size, chunk_overlap=overlap, preserve_words=False)

        assert chunks[0].start_char == 0
        assert chunks[-1].end_char == len(text)
        for chunk in chunks:
            assert 0 < chunk.length <= size
            assert chunk.content == text[chunk.start_char : chunk.end_char]
        for previous, current in zip(chunks, chunks[1:]):
            assert current.start_char - previous.start_char == size - overlap
            assert current.start_char <= previous.end_char


def test_preserve_words_cuts_after_boundary(svc):
    text = "alpha beta gamma delta epsilon zeta eta theta"
    chunks = svc.chunk_text(text, chunk_size=12, chunk_overlap=0, preserve_words=True)

    assert chunks[0].content == "alpha beta "
    assert chunks[0].end_char == 11
    for chunk in chunks[:-1]:
        assert chunk.content[-1] in " .,;)\n"


def test_preserve_words_keeps_naive_cut_without_boundary(svc):
    text = "x" * 50
    chunks = svc.chunk_text(text, chunk_size=20, chunk_overlap=5, preserve_words=True)

    assert chunks[0].end_char == 20


def test_defaults_come_from_settings(svc):
    text = "a" * 250
    chunks = svc.chunk_text(text, preserve_words=False)

    assert [c.start_char for c in chunks] == [0, 80, 160, 240]


@pytest.mark.parametrize(
    "size,overlap",
    [(0, 0), (-5, 0), (10, 10), (10, 11), (10, -1)],
)
def test_invalid_parameters_raise(svc, size, overlap):
    with pytest.raises(ConfigurationError):
        svc.chunk_text("some text", chunk_size=size, chunk_overlap=overlap)


def test_code_chunks_cut_at_declarations(svc):
    functions = [f"\ndef function_{i}(value):\n    return value * {i}\n" for i in range(6)]
    code = "import os\n" + "".join(functions)

    chunks = svc.chunk_code(code, chunk_size=80, chunk_overlap=0)

    assert len(chunks) > 1
    assert chunks[-1].end_char == len(code)
    for chunk in chunks[:-1]:
        assert code[chunk.end_char :].lstrip("\n").startswith("def ")


def test_code_without_declarations_falls_back_to_text(svc):
    code = "x = 1\n" * 40
    assert svc.chunk_code(code, chunk_size=50, chunk_overlap=10) == svc.chunk_text(
        code, chunk_size=50, chunk_overlap=10, preserve_words=True
    )


def test_small_code_is_one_chunk(svc):
    code = "def f():\n    return 1\n"
    chunks = svc.chunk_code(code, chunk_size=500, chunk_overlap=50)

    assert len(chunks) == 1
    assert chunks[0].content == code


def test_chunk_document_picks_strategy_by_type(svc):
    code = "\nclass A:\n    pass\n" * 20

    assert svc.chunk_document(code, FileType.CODE, 60, 0) == svc.chunk_code(code, 60, 0)
    assert svc.chunk_document(code, FileType.TEXT, 60, 0) == svc.chunk_text(code, 60, 0)


def test_chunking_is_deterministic(svc):
    text = "The quick brown fox jumps over the lazy dog. " * 30
    assert svc.chunk_text(text) == svc.chunk_text(text)
