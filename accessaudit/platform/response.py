from typing import Any, Dict, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel


def _encode_data(data: Any) -> Any:
    if data is None:
        return {}
    if isinstance(data, BaseModel):
        # Aliased engine fields (helpUrl, nodes, ...) keep their wire names
        return data.model_dump(mode="json", by_alias=True)
    return jsonable_encoder(data)


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """
    Envelope for every API response, success or error:
    ``{status_code, status, message, data}``. ``status`` is derived from the
    code, and ``headers`` carries extras such as Retry-After.
    """
    return JSONResponse(
        status_code=status_code,
        content={
            "status_code": status_code,
            "status": "error" if status_code >= status.HTTP_400_BAD_REQUEST else "success",
            "message": message,
            "data": _encode_data(data),
        },
        headers=headers,
    )
