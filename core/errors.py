from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import uuid4


HTTP_TO_APP_CODE = {
    400: "OXA-400",
    401: "OXA-401",
    403: "OXA-403",
    404: "OXA-404",
    409: "OXA-409",
    422: "OXA-422",
    429: "OXA-429",
    500: "OXA-500",
    502: "OXA-502",
    503: "OXA-503",
    504: "OXA-504",
}


class ErrorCode(str, Enum):
    INVALID_TYPE = "INVALID_TYPE"
    INVALID_INTEGER = "INVALID_INTEGER"
    NEGATIVE_COUNT = "NEGATIVE_COUNT"
    COUNT_TOO_HIGH = "COUNT_TOO_HIGH"
    INVALID_LIMIT = "INVALID_LIMIT"
    LIMIT_TOO_HIGH = "LIMIT_TOO_HIGH"
    INVALID_DATE_FORMAT = "INVALID_DATE_FORMAT"
    INVALID_DATE = "INVALID_DATE"
    FUTURE_DATE = "FUTURE_DATE"
    DATE_TOO_OLD = "DATE_TOO_OLD"
    INVALID_MONTH_FORMAT = "INVALID_MONTH_FORMAT"
    INVALID_MONTH = "INVALID_MONTH"
    INVALID_YEAR = "INVALID_YEAR"
    FUTURE_MONTH = "FUTURE_MONTH"
    CANNOT_DECREMENT = "CANNOT_DECREMENT"
    START_DATE_TOO_OLD = "START_DATE_TOO_OLD"
    INVALID_START_DATE = "INVALID_START_DATE"
    INVALID_STRUCTURE = "INVALID_STRUCTURE"


class UsageLimitValidationError(Exception):
    """Raised when a usage-limit value fails validation.

    Attributes:
        code: machine-readable ErrorCode
        message: human-readable message
        field: label of the offending field
        value: the rejected value
    """

    def __init__(self, code: ErrorCode, message: str, field: str, value: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.field = field
        self.value = value

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message, "field": self.field}

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class AppError:
    error_id: str
    error_code: str
    message: str
    retryable: bool

    def to_response(self) -> dict:
        return {
            "id": self.error_id,
            "code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
        }


def build_error(status_code: int, message: str, *, retryable: bool = False) -> AppError:
    return AppError(
        error_id=f"err_{uuid4().hex[:12]}",
        error_code=HTTP_TO_APP_CODE.get(status_code, "OXA-500"),
        message=message,
        retryable=retryable,
    )
