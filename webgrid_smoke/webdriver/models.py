"""Pydantic models for WebDriver protocol responses."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ELEMENT_KEY = "element-6066-11e4-a52f-4f735466cecf"


class NewSession(BaseModel):
    """Value of a W3C new session response."""

    session_id: str = Field(..., alias="sessionId")
    capabilities: Mapping[str, Any] = Field(default_factory=dict)


class ErrorValue(BaseModel):
    """Value of a W3C error response."""

    error: str
    message: str | None = ""
    stacktrace: str | None = None


class ElementReference(BaseModel):
    """Web element reference as returned by find element commands."""

    model_config = ConfigDict(populate_by_name=True)

    element_id: str = Field(..., alias=ELEMENT_KEY)


class Cookie(BaseModel):
    """Cookie payload for the add cookie command."""

    name: str
    value: str
    path: str | None = None
    domain: str | None = None
    secure: bool | None = None
    http_only: bool | None = Field(default=None, serialization_alias="httpOnly")
    expiry: int | None = None
