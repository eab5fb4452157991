from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Envelope(BaseModel):
    """Generic wire wrapper pairing a type name with opaque payload bytes.

    The type name still carries its 4-character category prefix (for example
    ``.lq.``); see :func:`majsoul_api.codec.strip_category_prefix`.
    """

    model_config = ConfigDict(frozen=True)

    type_name: str = Field(..., description="Category-prefixed schema type name")
    payload: bytes = b""

    @field_validator("type_name")
    def _name_present(cls, v: str):
        if not v:
            raise ValueError("type_name must be non-empty")
        return v


class DecodedEvent(BaseModel):
    """One entry of a decoded game record log."""

    name: str
    # protobuf JSON mapping of the decoded message, original field names
    data: Dict[str, Any] = Field(default_factory=dict)
