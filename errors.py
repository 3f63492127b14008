from typing import Optional

from fastapi import HTTPException


class ApiError(HTTPException):
    """HTTPException with a fixed status code and optional extra body fields."""

    status_code = 500

    def __init__(self, detail: str, extra: Optional[dict] = None):
        super().__init__(status_code=type(self).status_code, detail=detail)
        self.extra = extra or {}


class BadRequest(ApiError):
    status_code = 400


class Unauthorized(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409
