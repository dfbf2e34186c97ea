"""Procedure run schemas."""
from pydantic import BaseModel, Field

MAX_TIMEOUT_SECONDS = 3600


class ProcedureRunRequest(BaseModel):
    timeout: int | None = Field(default=None, ge=0, le=MAX_TIMEOUT_SECONDS, strict=True)


class ProcedureRunRead(BaseModel):
    success: bool
    status: str
    code: str
    message: str
    driver: str


class ErrorRead(BaseModel):
    success: bool = False
    code: str
    message: str
    number: int | str | None = None
