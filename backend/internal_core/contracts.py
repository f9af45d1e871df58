from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

RecordingStatus = Literal["pending", "under_review", "scored", "closed"]

RestartMode = Literal["soft", "hard"]


class Recording(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    identity: str
    media_reference: str
    status: RecordingStatus = "pending"
    score: Optional[int] = Field(default=None, ge=0, le=100)
    result: Optional[Dict[str, Any]] = None
    created_at: datetime


class PortalStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_open: bool = True


class User(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    email: str
    created_at: datetime
    is_admin: bool = False


class EvaluationOutcome(BaseModel):
    """Terminal payload returned by the remote scorer for one task."""

    model_config = ConfigDict(extra="forbid")

    task_id: str
    status: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    poll_attempts: int = 0
    poll_errors: List[str] = Field(default_factory=list)
