from typing import Any, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    """
    Single source of truth for successful API responses.
    Payload schemas serialize with their camelCase aliases.
    """
    content = {"success": status_code < 400, "message": message}
    if data is not None:
        content["data"] = jsonable_encoder(data, by_alias=True)

    return JSONResponse(status_code=status_code, content=content)


def error_response(
    *,
    message: str,
    status_code: int,
    detail: Optional[Any] = None,
    error_code: Optional[str] = None,
) -> JSONResponse:
    content = {"success": False, "statusCode": status_code, "message": message}
    if error_code:
        content["errorCode"] = error_code
    if detail is not None:
        content["detail"] = jsonable_encoder(detail)

    return JSONResponse(status_code=status_code, content=content)
