from typing import Any, Optional
from fastapi.encoders import jsonable_encoder


def envelope(data: Any = None, message: Optional[str] = None) -> dict:
    """Successful response body: {success, data?, message?}"""
    body = {"success": True}
    if data is not None:
        body["data"] = jsonable_encoder(data)
    if message:
        body["message"] = message
    return body
