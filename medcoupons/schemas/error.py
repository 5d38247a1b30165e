from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Wire shape for infrastructure and lookup failures; business rejections never use it."""

    detail: Any
    code: str | None = None
    request_id: str | None = None
