"""Account request/response schemas."""
from datetime import datetime

from codedrop.schemas.base import CamelModel, CamelResponseModel


class Credentials(CamelModel):
    username: str = ""
    password: str = ""


class AccountResponse(CamelResponseModel):
    id: str
    username: str
    created_at: datetime
