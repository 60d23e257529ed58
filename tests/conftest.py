"""
Shared fixtures and test utilities for Case Copilot tests.

Provides a populated in-memory case store, fake LLM backends, a fake
metering service and fake side-channel collaborators so that all tests
run without API keys, network access or an LLM.
"""

import sys
import threading
from datetime import timedelta
from pathlib import Path

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

CASE_ID = "case:mueller"
WORKSPACE_ID = "ws:kanzlei"
ACCOUNT_ID = "acct:kanzlei"

BACKEND_ANSWER = (
    "Nach der Klageschrift haftet der Beklagte gemäß § 823 BGB für den Schaden. "
    "Die Zeugenaussage von Frau Schmidt stützt den Unfallhergang an der Kreuzung, "
    "widerspricht aber dem Gutachten zur Geschwindigkeit. Die Berufungsfrist ist zu beachten."
)


# ---------------------------------------------------------------------------
# Sample case material
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_documents():
    from execution.case_copilot.models import DocumentMeta, IndexStatus, Jurisdiction
    return [
        DocumentMeta(
            id="doc-klage",
            title="Klageschrift Müller gegen Schneider",
            quality_score=0.9,
            detected_jurisdiction=Jurisdiction.DE,
            paragraph_references=("§ 823 BGB", "§ 253 BGB"),
        ),
        DocumentMeta(
            id="doc-zeuge",
            title="Zeugenaussage Schmidt",
            quality_score=0.7,
            detected_jurisdiction=Jurisdiction.DE,
        ),
        DocumentMeta(
            id="doc-gutachten",
            title="Gutachten Unfallrekonstruktion",
            index_status=IndexStatus.NEEDS_REVIEW,
            quality_score=0.4,
        ),
        DocumentMeta(
            id="doc-scan",
            title="Gescannte Korrespondenz",
            index_status=IndexStatus.PENDING,
        ),
    ]


@pytest.fixture
def sample_chunks():
    from execution.case_copilot.models import ExtractedEntities, TextChunk
    return [
        TextChunk(
            id="chunk-1",
            document_id="doc-klage",
            text=(
                "Der Kläger macht einen Anspruch auf Schadenersatz nach § 823 Abs. 1 BGB geltend. "
                "Der Beklagte fuhr mit überhöhter Geschwindigkeit in die Kreuzung ein."
            ),
            category="klageschrift",
            keywords=frozenset({"schadenersatz", "haftung", "kreuzung"}),
            extracted_entities=ExtractedEntities(
                persons=("Schneider",), legal_refs=("§ 823 Abs. 1 BGB",),
            ),
            quality_score=0.9,
        ),
        TextChunk(
            id="chunk-2",
            document_id="doc-zeuge",
            text=(
                "Die Zeugin Schmidt sah den Unfall an der Kreuzung. Sie gab an, das Fahrzeug des "
                "Beklagten sei bei Rot gefahren."
            ),
            category="zeuge",
            keywords=frozenset({"zeugin", "unfall", "ampel"}),
            extracted_entities=ExtractedEntities(persons=("Schmidt",)),
            quality_score=0.7,
        ),
        TextChunk(
            id="chunk-3",
            document_id="doc-gutachten",
            text=(
                "Das Gutachten schätzt die Geschwindigkeit des Beklagten auf 48 km/h und damit "
                "innerhalb der zulässigen Höchstgeschwindigkeit."
            ),
            category="gutachten",
            keywords=frozenset({"geschwindigkeit", "gutachten"}),
            quality_score=0.5,
        ),
        TextChunk(
            id="chunk-4",
            document_id="doc-scan",
            text="Schreiben der Gegenseite vom 3. März zur Haftung.",
            category="korrespondenz",
            quality_score=0.6,
        ),
    ]


@pytest.fixture
def sample_findings():
    from execution.case_copilot.models import Finding
    return [
        Finding(
            id="finding-1",
            title="Widerspruch Geschwindigkeit",
            description="Zeugenaussage und Gutachten weichen bei der Geschwindigkeit voneinander ab.",
            type="contradiction",
            severity="high",
        ),
        Finding(
            id="finding-2",
            title="Fehlende Ampelschaltung",
            description="Die Ampelschaltpläne liegen nicht vor.",
            type="evidence_gap",
            severity="critical",
        ),
    ]


@pytest.fixture
def sample_deadlines():
    from execution.case_copilot.models import Deadline, utc_now
    now = utc_now()
    return [
        Deadline(id="dl-1", title="Berufungsfrist", due_at=now + timedelta(days=5)),
        Deadline(id="dl-2", title="Stellungnahme", due_at=now + timedelta(days=20)),
        Deadline(id="dl-3", title="Akteneinsicht", due_at=now - timedelta(days=2)),
        Deadline(id="dl-4", title="Erledigt", due_at=now + timedelta(days=1), status="completed"),
    ]


@pytest.fixture
def sample_case():
    from execution.case_copilot.models import CaseRecord, OpposingParty
    return CaseRecord(
        id=CASE_ID,
        title="Müller ./. Schneider",
        client_name="Anna Müller",
        matter_title="Verkehrsunfall Kreuzung Hauptstraße",
        file_reference="12 O 345/24",
        court="LG München I",
        opposing_parties=(OpposingParty("Klaus Schneider", "person", "RA Dr. Weber"),),
    )


@pytest.fixture
def sample_case_law():
    from execution.case_copilot.models import CaseLawHit
    return [
        CaseLawHit("bgh-1", "BGH VI ZR 12/20", 0.8, "binding", "current"),
        CaseLawHit("olg-1", "OLG München 10 U 1/99", 0.9, "persuasive", "historical"),
        CaseLawHit("lg-1", "LG Berlin 5 O 7/18", 0.5, "reference", "unknown"),
    ]


@pytest.fixture
def case_store(
    sample_case, sample_chunks, sample_documents, sample_findings, sample_deadlines, sample_case_law,
):
    """InMemoryCaseStore populated with one fully equipped case."""
    from execution.case_copilot.store import InMemoryCaseStore
    store = InMemoryCaseStore()
    store.add_case(
        sample_case,
        chunks=sample_chunks,
        documents=sample_documents,
        findings=sample_findings,
        norms=["§ 823 BGB", "§ 7 StVG"],
        deadlines=sample_deadlines,
        case_law=sample_case_law,
    )
    return store


@pytest.fixture
def empty_case_store():
    """Store with a case that has no material at all."""
    from execution.case_copilot.models import CaseRecord
    from execution.case_copilot.store import InMemoryCaseStore
    store = InMemoryCaseStore()
    store.add_case(CaseRecord(id="case:empty", title="Leere Akte"))
    return store


@pytest.fixture
def copilot_config():
    from execution.case_copilot.config import CopilotConfig
    return CopilotConfig()


@pytest.fixture
def make_snapshot():
    """Build a ContextSnapshot with empty defaults and keyword overrides."""
    from execution.case_copilot.models import ChatMode, ContextSnapshot, ScoredChunk

    def factory(**overrides):
        values = dict(
            case_id=CASE_ID,
            workspace_id=WORKSPACE_ID,
            mode=ChatMode.GENERAL,
            relevant_chunks=(),
            active_norms=(),
            findings_summary="Keine Findings vorhanden.",
            deadline_warnings=(),
            contradiction_highlights=(),
            evidence_gaps=(),
            opposing_party_context="Keine Gegner erfasst.",
            case_law_context=(),
            source_reliability_warnings=(),
            system_prompt="SYSTEM",
        )
        values.update(overrides)
        return ContextSnapshot(**values)

    factory.chunk = lambda chunk_id, doc_id, title, excerpt, score=0.5, category="klageschrift": ScoredChunk(
        chunk_id=chunk_id,
        document_id=doc_id,
        document_title=title,
        excerpt=excerpt,
        category=category,
        relevance_score=score,
    )
    return factory


# ---------------------------------------------------------------------------
# Fake LLM backends
# ---------------------------------------------------------------------------

class FakeBackend:
    """Records every call and returns a fixed answer."""

    def __init__(self, answer=BACKEND_ANSWER):
        self.answer = answer
        self.calls = []

    def chat(self, system_prompt, messages, model):
        self.calls.append({"system_prompt": system_prompt, "messages": list(messages), "model": model})
        return self.answer


class FailingBackend:
    """Always unavailable."""

    def __init__(self):
        self.calls = 0

    def chat(self, system_prompt, messages, model):
        from execution.case_copilot.errors import BackendUnavailableError
        self.calls += 1
        raise BackendUnavailableError("connection refused", status_code=503)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def failing_backend():
    return FailingBackend()


# ---------------------------------------------------------------------------
# Fake metering service
# ---------------------------------------------------------------------------

class FakeQuotaService:
    """In-memory metering service with per-pool balances."""

    def __init__(self, balances=None, fail_fetch=False):
        self.balances = dict(balances or {})
        self.fail_fetch = fail_fetch
        self.fetch_count = 0
        self.consumed = []
        self._lock = threading.Lock()

    def fetch_balances(self, account_id):
        from execution.case_copilot.quotas import CreditBalance
        with self._lock:
            self.fetch_count += 1
        if self.fail_fetch:
            raise ConnectionError("metering service down")
        return [CreditBalance(pool, amount) for pool, amount in self.balances.items()]

    def consume(self, account_id, pool, amount, description=None, reference_id=None):
        from execution.case_copilot.errors import QuotaExceededError
        with self._lock:
            if self.balances.get(pool, 0) < amount:
                raise QuotaExceededError("insufficient", pool, self.balances.get(pool, 0), amount)
            self.balances[pool] -= amount
            self.consumed.append((pool, amount, description, reference_id))
            return self.balances[pool]


@pytest.fixture
def quota_service_factory():
    return FakeQuotaService


# ---------------------------------------------------------------------------
# Fake side-channel collaborators
# ---------------------------------------------------------------------------

class FakeNormLookup:
    def __init__(self, matches=None, fail=False):
        self.matches = matches or {}
        self.fail = fail
        self.queries = []

    def search(self, query, jurisdictions):
        self.queries.append((query, list(jurisdictions)))
        if self.fail:
            raise RuntimeError("norm index offline")
        return self.matches.get(query, [])


class FakeEvidenceGaps:
    def __init__(self, gaps=None, fail=False):
        self.gaps = gaps or []
        self.fail = fail

    def analyze_gaps(self, case_id):
        if self.fail:
            raise RuntimeError("gap analysis failed")
        return self.gaps


class FakeCollective:
    def __init__(self, context=None, fail=False):
        self.context = context
        self.fail = fail

    def build_context(self, query, active_norms):
        if self.fail:
            raise RuntimeError("collective store offline")
        return self.context

    def to_prompt(self, context):
        return "\n═══ KOLLEKTIVES WISSEN ═══\n" + context.summary


class FakeOpponentProfiles:
    def __init__(self, snapshot=None, fail=False):
        self.snapshot = snapshot
        self.fail = fail

    def build_snapshot(self, opposing_parties, court):
        if self.fail:
            raise RuntimeError("profile lookup failed")
        return self.snapshot

    def to_prompt(self, snapshot):
        return f"\n═══ GEGNERPROFIL ═══\n{snapshot.firm_profile or ''}"


@pytest.fixture
def fakes():
    """Namespace of fake collaborator classes."""
    class Fakes:
        NormLookup = FakeNormLookup
        EvidenceGaps = FakeEvidenceGaps
        Collective = FakeCollective
        OpponentProfiles = FakeOpponentProfiles
        Backend = FakeBackend
        FailingBackend = FailingBackend
        QuotaService = FakeQuotaService
    return Fakes


# ---------------------------------------------------------------------------
# Copilot factory
# ---------------------------------------------------------------------------

@pytest.fixture
def make_copilot(case_store, copilot_config):
    """Build a CaseCopilot over the sample store with optional collaborators."""
    from execution.case_copilot.generation import Generator
    from execution.case_copilot.memory import InMemoryMemoryProvider
    from execution.case_copilot.metrics import MetricsCollector
    from execution.case_copilot.orchestrator import CaseCopilot
    from execution.case_copilot.quotas import QuotaGate

    def factory(backend=None, quota_service=None, memory=True, store=None, **kwargs):
        gate = QuotaGate(quota_service, cache_ttl=30) if quota_service is not None else None
        return CaseCopilot(
            store or case_store,
            config=copilot_config,
            quota_gate=gate,
            generator=Generator(backend, copilot_config),
            memory=InMemoryMemoryProvider() if memory else None,
            metrics=MetricsCollector(),
            **kwargs,
        )

    return factory


@pytest.fixture(autouse=True)
def reset_metrics_collector():
    """Reset the global MetricsCollector between tests."""
    import execution.case_copilot.metrics as metrics_mod
    metrics_mod._collector = None
    yield
    metrics_mod._collector = None
