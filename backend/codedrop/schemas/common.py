"""Shared Pydantic schemas."""
from codedrop.schemas.base import CamelResponseModel


class DeleteResponse(CamelResponseModel):
    deleted: bool = True
    id: str = ""


class MessageResponse(CamelResponseModel):
    message: str
