"""
Case Copilot - Grounded Chat for Legal Case Work

This module provides the chat pipeline behind a case workspace:
- Context assembly from case documents, findings, deadlines and norms
- Credit gating against an external quota service
- Human approval for high-risk requests
- Grounded generation with citations, confidence and a deterministic fallback

Run the HTTP surface with: uvicorn execution.case_copilot.api:app
"""

__version__ = "0.1.0"

from .config import CopilotConfig
from .context import ContextAssembler
from .memory import InMemoryMemoryProvider
from .orchestrator import CaseCopilot
from .quotas import HttpQuotaService, QuotaGate
from .retriever import RelevanceRetriever
from .store import InMemoryCaseStore

__all__ = [
    "CaseCopilot",
    "ContextAssembler",
    "CopilotConfig",
    "HttpQuotaService",
    "InMemoryCaseStore",
    "InMemoryMemoryProvider",
    "QuotaGate",
    "RelevanceRetriever",
]
