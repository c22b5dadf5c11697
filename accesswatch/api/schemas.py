"""Pydantic request models for the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class AccessControlRequest(BaseModel):
    """Full replacement of the access-control policy."""

    enabled: bool = Field(False, description="Turn policy enforcement on")
    whitelist_only: bool = Field(False, description="Deny credentials absent from every whitelist")
    whitelist: List[str] = Field(default_factory=list)
    blacklist: List[str] = Field(default_factory=list)
    reader_whitelists: Dict[str, List[str]] = Field(default_factory=dict)
    reader_blacklists: Dict[str, List[str]] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "example": {
                "enabled": True,
                "whitelist_only": True,
                "whitelist": ["04A1B2C3"],
                "blacklist": ["DEADBEEF"],
                "reader_whitelists": {"door-lobby": ["04FFEE01"]},
                "reader_blacklists": {},
            }
        }
    }


class ClearRequest(BaseModel):
    target: str = Field(..., description="What to clear: alerts | metrics")


class EventRequest(BaseModel):
    """An already-normalised access attempt."""

    reader_id: str = Field(..., min_length=1, description="Reader that saw the credential")
    credential_id: str = Field("", description="Badge / card identifier")
    raw_result: Literal["success", "failure"] = Field(..., description="Reader's own verdict")
    timestamp: Optional[datetime] = Field(None, description="Defaults to receive time")
    context: Dict[str, str] = Field(default_factory=dict, description="Door, facility, ...")
