"""
FastAPI Surface for the Case Copilot

Thin HTTP layer over CaseCopilot: send a chat message, resolve a pending
approval, list a session's messages, health and metrics.

Run with: uvicorn execution.case_copilot.api:app --host 0.0.0.0 --port 8000
"""

import logging
import os
import time
from collections import defaultdict

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api_models import (
    ApprovalResolutionRequest,
    ChatMessageResponse,
    HealthResponse,
    SendMessageRequest,
)
from .config import CopilotConfig
from .errors import ApprovalFieldError
from .generation import Generator
from .llm_backend import build_backend
from .memory import InMemoryMemoryProvider
from .metrics import get_metrics_collector
from .orchestrator import CaseCopilot
from .quotas import HttpQuotaService, QuotaGate
from .store import InMemoryCaseStore

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Case Copilot API",
    description="Legal case chat with grounded answers, credit gating and approval control",
    version=__version__,
)

# Configure CORS: use CORS_ORIGINS env var (comma-separated) or default to localhost
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Rate Limiting
# =============================================================================

class RateLimiter:
    """Simple in-memory rate limiter using sliding window."""

    def __init__(self, max_requests: int = 60, window_seconds: int = 60):
        self._max_requests = max_requests
        self._window = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)

    def is_allowed(self, key: str) -> bool:
        now = time.time()
        window_start = now - self._window
        self._requests[key] = [t for t in self._requests[key] if t > window_start]

        if len(self._requests[key]) >= self._max_requests:
            return False

        self._requests[key].append(now)
        return True


_rate_limiter = RateLimiter(
    max_requests=int(os.getenv("RATE_LIMIT_RPM", "60")),
    window_seconds=60,
)


async def check_rate_limit(request: Request):
    """FastAPI dependency that enforces rate limiting per account."""
    key = request.headers.get("x-account-id") or (request.client.host if request.client else "anonymous")
    if not _rate_limiter.is_allowed(key):
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Try again later.")


# =============================================================================
# Service Container
# =============================================================================

class ServiceContainer:
    """Lazily builds one CaseCopilot from the environment."""

    def __init__(self):
        self._config = None
        self._copilot = None

    def get_config(self) -> CopilotConfig:
        if self._config is None:
            self._config = CopilotConfig.from_env()
        return self._config

    def get_copilot(self) -> CaseCopilot:
        if self._copilot is None:
            config = self.get_config()
            quota_gate = None
            if config.quota_endpoint:
                quota_gate = QuotaGate(
                    HttpQuotaService(config.quota_endpoint),
                    cache_ttl=config.quota_cache_ttl,
                    language=config.language.language,
                )
            self._copilot = CaseCopilot(
                InMemoryCaseStore(),
                config=config,
                quota_gate=quota_gate,
                generator=Generator(build_backend(config), config),
                memory=InMemoryMemoryProvider(config.language.language),
                metrics=get_metrics_collector(),
            )
            logger.info(f"Case copilot ready (language={config.language.language}, quota={bool(quota_gate)})")
        return self._copilot


_container = ServiceContainer()


def get_copilot() -> CaseCopilot:
    return _container.get_copilot()


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse)
def health_check(copilot: CaseCopilot = Depends(get_copilot)):
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=__version__,
        llm_provider=copilot.config.llm_provider,
        quota_enabled=copilot.quota_gate is not None,
    )


@app.post(
    "/api/v1/chat/messages",
    response_model=ChatMessageResponse,
    dependencies=[Depends(check_rate_limit)],
)
def send_message(request: SendMessageRequest, copilot: CaseCopilot = Depends(get_copilot)):
    """Run one user message through the copilot pipeline."""
    message = copilot.send_message(
        session_id=request.session_id,
        case_id=request.case_id,
        workspace_id=request.workspace_id,
        account_id=request.account_id,
        content=request.content,
        mode=request.mode,
        model_id=request.model_id,
    )
    return ChatMessageResponse.from_message(message)


@app.post("/api/v1/chat/approvals/{tool_call_id}", response_model=ChatMessageResponse)
def resolve_approval(
    tool_call_id: str,
    request: ApprovalResolutionRequest,
    copilot: CaseCopilot = Depends(get_copilot),
):
    """Approve or reject a run suspended at the approval gate."""
    try:
        message = copilot.resolve_approval(tool_call_id, request.decision, request.fields)
    except ApprovalFieldError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if message is None:
        raise HTTPException(status_code=404, detail="Approval not found or already resolved")
    return ChatMessageResponse.from_message(message)


@app.get("/api/v1/chat/sessions/{session_id}/messages", response_model=list[ChatMessageResponse])
def list_session_messages(session_id: str, copilot: CaseCopilot = Depends(get_copilot)):
    """All messages of a chat session in order."""
    if copilot.store.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return [ChatMessageResponse.from_message(m) for m in copilot.list_messages(session_id)]


@app.get("/api/v1/metrics")
def get_metrics(copilot: CaseCopilot = Depends(get_copilot)):
    """Pipeline metrics."""
    return copilot.metrics.get_metrics_dict()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
