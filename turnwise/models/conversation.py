"""Request and response models for the HTTP surface."""

from datetime import datetime

from pydantic import BaseModel

from turnwise.models.approval import ApprovalStatus
from turnwise.models.messages import Message


class ConversationRequest(BaseModel):
    """Request model for conversation endpoint."""

    message: str
    session_id: str | None = None


class ConversationResponse(BaseModel):
    """Response model for conversation endpoint."""

    response: str
    session_id: str
    rounds: int = 0


class ConversationMessagesResponse(BaseModel):
    """Messages of a conversation in chronological order."""

    session_id: str
    messages: list[Message]


class ResetRequest(BaseModel):
    """Request model for rewinding a conversation."""

    message_id: str
    inclusive: bool = True


class ApprovalDecisionRequest(BaseModel):
    """Decision submitted by a reviewer for a pending approval."""

    status: ApprovalStatus
    content: str = ""


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
