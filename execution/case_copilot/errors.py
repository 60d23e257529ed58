"""
Error taxonomy for the case copilot pipeline.

Only quota refusals and backend failures are raised across module
boundaries. Clarification requests, pending approvals and stale approval
resolutions are ordinary outcomes and never appear here.
"""

from typing import Optional


class CopilotError(Exception):
    """Base class for all case copilot errors."""


class QuotaExceededError(CopilotError):
    """Raised when the metering service refuses to consume credits."""

    def __init__(self, message: str, quota_type: str, current: int, limit: int):
        super().__init__(message)
        self.quota_type = quota_type
        self.current = current
        self.limit = limit


class BackendUnavailableError(CopilotError):
    """Raised by LLM backends on transport errors, non-2xx or unusable payloads."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ApprovalFieldError(CopilotError, ValueError):
    """Raised when an approval resolution carries unknown field keys."""

    def __init__(self, unknown_keys: list[str]):
        super().__init__(f"Unknown approval fields: {', '.join(sorted(unknown_keys))}")
        self.unknown_keys = unknown_keys


class ToolCallStateError(CopilotError):
    """Raised on an illegal tool call status transition."""


class MessageFinalizedError(CopilotError):
    """Raised when a complete chat message would be mutated."""

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} is complete and can no longer change")
        self.message_id = message_id
