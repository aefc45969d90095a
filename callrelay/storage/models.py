"""
Pydantic models for call logs and captured leads.

JSON on the wire uses camelCase names (``endedAt``, ``callLogId``);
Python code uses snake_case. Create/update models validate request
bodies; CallLog and Lead are the stored records.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from callrelay.session.models import utcnow


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Call logs
# ---------------------------------------------------------------------------


class CallLogCreate(_CamelModel):
    """Body of ``POST /api/calls``."""

    engine_call_id: Optional[str] = None
    duration: int = Field(..., ge=0)
    status: str
    ended_at: Optional[datetime] = None
    recording_url: Optional[str] = None
    transcript: Optional[str] = None


class CallLogUpdate(_CamelModel):
    """Body of ``PATCH /api/calls/{id}``; only fields present are applied."""

    engine_call_id: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)
    status: Optional[str] = None
    ended_at: Optional[datetime] = None
    recording_url: Optional[str] = None
    transcript: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        """Explicitly set fields; a null for a required column is ignored."""
        data = self.model_dump(exclude_unset=True)
        return {k: v for k, v in data.items() if v is not None or k not in ("duration", "status")}


class CallLog(_CamelModel):
    id: str = Field(default_factory=new_id)
    engine_call_id: Optional[str] = None
    duration: int = 0
    status: str = "pending"
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    recording_url: Optional[str] = None
    transcript: Optional[str] = None


class CallStats(_CamelModel):
    total_calls: int = 0
    avg_duration: int = 0
    total_duration: int = 0
    completed_calls: int = 0


# ---------------------------------------------------------------------------
# Leads
# ---------------------------------------------------------------------------


class LeadCreate(_CamelModel):
    """Body of ``POST /api/leads``."""

    call_log_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    notes: Optional[str] = None
    extracted_data: Optional[Dict[str, Any]] = None


class Lead(_CamelModel):
    id: str = Field(default_factory=new_id)
    call_log_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    notes: Optional[str] = None
    extracted_data: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)
