from atlas_ingestion.utils.errors import (
    ConcurrencyConflictError,
    ConfigurationError,
    DimensionMismatchError,
    EmbeddingServiceError,
    IndexIOError,
    IngestionException,
    NotFoundError,
    ParseError,
)


def test_to_dict_shape():
    error = ParseError("bad file", file_path="/a.pdf", file_type="pdf")

    assert error.to_dict() == {
        "error": {
            "message": "bad file",
            "code": "PARSE_ERROR",
            "status_code": 422,
            "details": {"file_path": "/a.pdf", "file_type": "pdf"},
        }
    }


def test_every_error_is_an_ingestion_exception():
    errors = [
        ConfigurationError(),
        ParseError(),
        EmbeddingServiceError(model="nomic-embed-text"),
        DimensionMismatchError(expected=768, actual=384),
        ConcurrencyConflictError(resource="vector_index", resource_id="p1"),
        NotFoundError("Document", "d1"),
        IndexIOError(project_id="p1"),
    ]

    for error in errors:
        assert isinstance(error, IngestionException)
        assert error.message
        assert str(error) == error.message


def test_dimension_mismatch_details():
    error = DimensionMismatchError(expected=768, actual=384)

    assert error.expected == 768
    assert error.actual == 384
    assert error.details == {"expected_dimension": 768, "actual_dimension": 384}
    assert "768" in error.message and "384" in error.message


def test_not_found_message():
    error = NotFoundError("Project", "p1")

    assert error.message == "Project not found: p1"
    assert error.status_code == 404
    assert error.details["resource_id"] == "p1"


def test_conflict_status():
    assert ConcurrencyConflictError().status_code == 409
