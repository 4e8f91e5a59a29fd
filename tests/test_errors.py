from taskboard.errors import (
    ErrorResponse,
    StoreError,
    TaskboardError,
    error_response,
    success_response,
)


def test_error_response_serializes_details():
    error = ErrorResponse(
        code="INVALID_CATEGORY", message="Nope", details={"category": "Chores"}
    )

    assert error.to_dict() == {
        "code": "INVALID_CATEGORY",
        "message": "Nope",
        "details": {"category": "Chores"},
    }


def test_taskboard_error_defaults_details():
    exc = TaskboardError("AUTH_REQUIRED", "Missing bearer token.")

    assert exc.error.to_dict() == {
        "code": "AUTH_REQUIRED",
        "message": "Missing bearer token.",
        "details": {},
    }


def test_envelopes():
    error = ErrorResponse(code="X", message="bad")

    assert success_response({"tasks": []}) == {"ok": True, "data": {"tasks": []}}
    assert error_response(error) == {
        "ok": False,
        "error": {"code": "X", "message": "bad", "details": {}},
    }


def test_store_error_keeps_code_and_message():
    exc = StoreError("permission-denied", "Missing or insufficient permissions.")

    assert exc.code == "permission-denied"
    assert exc.message == "Missing or insufficient permissions."
    assert str(exc) == "Missing or insufficient permissions."
