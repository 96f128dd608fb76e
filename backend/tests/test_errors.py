from exam_prep.errors import (
    ConcurrentModificationError,
    ContestRequiredError,
    ErrorCode,
    HTTP_STATUS_BY_CODE,
    InvalidStateError,
    RateLimitError,
    WeekAlreadyCompletedError,
    WeekNotAvailableError,
    WeekNotFoundError,
    error_code_of,
)


def test_every_code_has_a_status():
    assert set(HTTP_STATUS_BY_CODE) == set(ErrorCode)


def test_domain_errors_carry_code_and_status():
    assert WeekAlreadyCompletedError(2, "u").status_code == 409
    assert InvalidStateError("out of order").code == ErrorCode.INVALID_WEEK_ORDER
    assert InvalidStateError("out of order").status_code == 400
    assert WeekNotAvailableError(3, "locked").status_code == 423
    assert ConcurrentModificationError("progression_status", "u:c").status_code == 409
    assert ContestRequiredError().status_code == 422
    assert WeekNotFoundError(9, "c1").code == ErrorCode.WEEK_NOT_FOUND
    assert RateLimitError(5, 60, 12).retry_after == 12


def test_unknown_exceptions_map_to_internal_error():
    assert error_code_of(RuntimeError("boom")) == ErrorCode.INTERNAL_ERROR
    assert error_code_of(WeekNotFoundError(1)) == ErrorCode.WEEK_NOT_FOUND
