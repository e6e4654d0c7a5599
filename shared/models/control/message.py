from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ControlMessage(BaseModel):
    """Command frame sent by the bridge server.

    Command parameters travel flattened next to the routing fields, so unknown keys
    are kept and exposed through :meth:`params`.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: Optional[str] = None
    action: Optional[str] = None
    request_id: Optional[str] = Field(default=None, alias="requestId")
    timestamp: Optional[float] = None

    @field_validator("request_id", mode="before")
    @classmethod
    def _coerce_request_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def command(self) -> Optional[str]:
        return self.type or self.action

    def params(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class ResponseMessage(BaseModel):
    """Result frame sent back to the bridge server for one request."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str
    success: bool
    error: Optional[str] = None
    request_id: str = Field(alias="requestId")
    timestamp: int


class HeartbeatFrame(BaseModel):
    action: Literal["ping", "pong"]
    timestamp: int
