from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserSummary(BaseModel):
    """Display info for a user, as supplied by the user directory."""

    id: int
    display_name: str
    email: str
    avatar_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ParticipantResponse(BaseModel):
    """Response model for participant data."""

    user_id: int
    display_name: str
    email: str
    avatar_url: Optional[str] = None
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AddParticipantsRequest(BaseModel):
    """Request model for adding users to a conversation."""

    user_ids: List[int] = Field(..., min_length=1, description="Users to add")


class AddParticipantsResponse(BaseModel):
    """Result of an add-participants call."""

    added_count: int
    is_group: bool
    participants: List[ParticipantResponse]
