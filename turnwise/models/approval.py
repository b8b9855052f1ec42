"""Permission request and approval models."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from turnwise.models.messages import generate_id


class ApprovalStatus(StrEnum):
    """Decision state of a permission request. Only APPROVED and DENIED are terminal."""

    APPROVED = "approved"
    DENIED = "denied"
    PENDING = "pending"


class PermissionRequest(BaseModel):
    """A request for permission to perform a sensitive action."""

    id: str = Field(default_factory=generate_id)
    tool_name: str
    arguments: str | None = None
    content: str = ""
    requester: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True

    @classmethod
    def for_tool_call(
        cls,
        tool_name: str,
        arguments: str | None,
        request_id: str | None = None,
        requester: str | None = None,
    ) -> "PermissionRequest":
        """Build a request to call ``tool_name`` with serialized ``arguments``."""
        return cls(
            id=request_id or generate_id(),
            tool_name=tool_name,
            arguments=arguments,
            content=f"Request to call tool {tool_name}",
            requester=requester,
        )


class PermissionApproval(BaseModel):
    """Decision returned by an approver."""

    status: ApprovalStatus
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True

    @classmethod
    def approved(cls, content: str = "") -> "PermissionApproval":
        return cls(status=ApprovalStatus.APPROVED, content=content)

    @classmethod
    def denied(cls, content: str = "") -> "PermissionApproval":
        return cls(status=ApprovalStatus.DENIED, content=content)

    @property
    def is_approved(self) -> bool:
        return self.status is ApprovalStatus.APPROVED

    def __str__(self) -> str:
        if self.content:
            return f"{self.status.name}: {self.content}"
        return self.status.name
