"""
Pydantic models for the Case Copilot FastAPI surface.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import ApprovalDecision, ChatMessage, ChatMode


class SendMessageRequest(BaseModel):
    """Request body for sending a chat message."""
    model_config = ConfigDict(protected_namespaces=())

    session_id: Optional[str] = None
    case_id: str = Field(..., min_length=1)
    workspace_id: str = Field(..., min_length=1)
    account_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=20000)
    mode: Optional[ChatMode] = None
    model_id: Optional[str] = None


class ApprovalResolutionRequest(BaseModel):
    """Request body for approving or rejecting a suspended run."""
    decision: ApprovalDecision
    fields: Optional[dict[str, str]] = None


class ChatMessageResponse(BaseModel):
    """A chat message with its tool calls, citations and confidence."""
    model_config = ConfigDict(protected_namespaces=())

    id: str
    session_id: str
    role: str
    content: str
    mode: str
    status: str
    tool_calls: list[dict[str, Any]] = []
    source_citations: list[dict[str, Any]] = []
    norm_citations: list[dict[str, Any]] = []
    finding_refs: list[dict[str, Any]] = []
    confidence: Optional[dict[str, Any]] = None
    model_id: Optional[str] = None
    token_estimate: int = 0
    duration_ms: Optional[int] = None
    used_memory_ids: list[str] = []
    created_at: str
    updated_at: str

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageResponse":
        return cls(**message.to_dict())


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    llm_provider: str
    quota_enabled: bool
