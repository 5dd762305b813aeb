"""Pydantic models for protocol-level data."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TargetInfo(BaseModel):
    """A debuggable target. Identity is ``target_id``."""

    model_config = ConfigDict(populate_by_name=True)

    target_id: str = Field(alias="targetId")
    type: str = ""
    url: str = ""
    title: str = ""
    attached: bool = False

    @classmethod
    def from_protocol(cls, payload: Dict[str, Any]) -> "TargetInfo":
        """Build from a ``Target.TargetInfo`` protocol object."""
        return cls(
            target_id=payload.get("targetId", ""),
            type=payload.get("type", ""),
            url=payload.get("url", ""),
            title=payload.get("title", ""),
            attached=False,
        )


class ProtocolMessage(BaseModel):
    """One protocol event as delivered to catch-all listeners."""

    method: str
    params: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None
