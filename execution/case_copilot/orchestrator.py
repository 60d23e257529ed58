"""
Tool-Call Orchestrator for the Case Copilot

Runs one user message through the pipeline

    credit_check -> build_context -> [search_chunks] -> [collective_intelligence]
    -> memory_lookup -> [approval_gate] -> generate -> reasoning_chain -> confidence_score

recording every stage as a ToolCall on the assistant message and
republishing the message to the store after each stage.

Memory instructions and vague requests short-circuit before any paid work.
High-risk requests suspend at the approval gate: the run (including its
frozen ContextSnapshot and credit reservation) is parked in a
PendingRunStore and resumed or cancelled by ``resolve_approval``.
"""

import logging
import time
from typing import Mapping, Optional, Sequence

from .approvals import (
    PendingRunStore,
    build_approval_request,
    clarification_message,
    merge_approval_fields,
    parse_slash_command,
    requires_approval,
    resolve_slash_command_mode,
    should_clarify,
    validate_approval_fields,
)
from .citation import CitationExtractor
from .confidence import ConfidenceInput, compute_confidence
from .config import CopilotConfig
from .context import ContextAssembler
from .generation import Generator
from .language_patterns import MODE_LABELS, PIPELINE_LABELS, get_labels
from .llm_backend import credit_cost, resolve_model
from .memory import MemoryProvider
from .metrics import (
    OUTCOME_AWAITING_APPROVAL,
    OUTCOME_CLARIFIED,
    OUTCOME_COMPLETED,
    OUTCOME_FALLBACK,
    OUTCOME_MEMORY,
    OUTCOME_QUOTA_DENIED,
    OUTCOME_REJECTED,
    MetricsCollector,
)
from .models import (
    ApprovalDecision,
    ChatMessage,
    ChatMode,
    ChatSession,
    ContextSnapshot,
    MessageRole,
    MessageStatus,
    PendingRun,
    ToolCall,
    ToolCallDetailLine,
    ToolCallName,
    ToolCallStatus,
    create_id,
    estimate_tokens,
)
from .quotas import QuotaGate
from .store import CaseStore, NormLookup, call_side_channel

logger = logging.getLogger(__name__)


MAX_CONTEXT_NORM_LINES = 5
MAX_CONTEXT_DEADLINE_LINES = 3
MAX_CONTEXT_WARNING_LINES = 2
MAX_SEARCH_DETAIL_LINES = 8
INPUT_PREVIEW = 50
SESSION_PREVIEW = 100
MEMORY_RESPONSE_TOKENS = 20


class CaseCopilot:
    """
    Pipeline entry point for chat messages on a case.

    Usage:
        copilot = CaseCopilot(store, config=CopilotConfig.from_env(), quota_gate=gate, generator=generator)
        message = copilot.send_message("session:1", "case:1", "ws:1", "acct:1", "Welche Fristen laufen?")
        if message.pending_approval:
            message = copilot.resolve_approval(message.pending_approval.id, ApprovalDecision.APPROVED)
    """

    def __init__(
        self,
        store: CaseStore,
        config: Optional[CopilotConfig] = None,
        assembler: Optional[ContextAssembler] = None,
        quota_gate: Optional[QuotaGate] = None,
        generator: Optional[Generator] = None,
        memory: Optional[MemoryProvider] = None,
        norm_lookup: Optional[NormLookup] = None,
        pending_runs: Optional[PendingRunStore] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.config = config or CopilotConfig()
        self.assembler = assembler or ContextAssembler(store, config=self.config)
        self.quota_gate = quota_gate
        self.generator = generator or Generator(None, self.config)
        self.memory = memory
        self.citations = CitationExtractor(
            norm_lookup,
            language=self.config.language.language,
            jurisdiction=self.config.language.jurisdiction,
        )
        self.pending_runs = pending_runs or PendingRunStore()
        self.metrics = metrics or MetricsCollector()

    @property
    def language(self) -> str:
        return self.config.language.language

    def _labels(self) -> dict:
        return get_labels(PIPELINE_LABELS, self.language)

    # =========================================================================
    # Sessions
    # =========================================================================

    def create_session(
        self,
        case_id: str,
        workspace_id: str,
        mode: ChatMode = ChatMode.GENERAL,
        model_id: Optional[str] = None,
    ) -> ChatSession:
        session = ChatSession(
            id=create_id("chat-session"),
            case_id=case_id,
            workspace_id=workspace_id,
            mode=mode,
            model_id=model_id,
        )
        return self.store.save_session(session)

    def _get_or_create_session(
        self, session_id: Optional[str], case_id: str, workspace_id: str, mode: ChatMode,
    ) -> ChatSession:
        if session_id:
            session = self.store.get_session(session_id)
            if session is not None:
                return session
            session = ChatSession(id=session_id, case_id=case_id, workspace_id=workspace_id, mode=mode)
            return self.store.save_session(session)
        return self.create_session(case_id, workspace_id, mode)

    def _update_session(self, session_id: str, user_content: str, added_tokens: int) -> None:
        self.store.bump_session(session_id, 2, added_tokens, user_content[:SESSION_PREVIEW])

    def list_messages(self, session_id: str) -> list[ChatMessage]:
        return self.store.get_chat_messages(session_id)

    # =========================================================================
    # Publishing
    # =========================================================================

    def _publish(self, message_id: str, tool_calls: Sequence[ToolCall], **patch) -> ChatMessage:
        return self.store.update_message(message_id, {"tool_calls": list(tool_calls), **patch})

    def _finish(
        self,
        message_id: str,
        tool_calls: Sequence[ToolCall],
        content: str,
        session_id: str,
        user_content: str,
        user_tokens: int,
        response_tokens: Optional[int] = None,
        **patch,
    ) -> ChatMessage:
        tokens = estimate_tokens(content) if response_tokens is None else response_tokens
        message = self._publish(
            message_id,
            tool_calls,
            content=content,
            status=MessageStatus.COMPLETE,
            token_estimate=tokens,
            **patch,
        )
        self._update_session(session_id, user_content, user_tokens + tokens)
        return message

    # =========================================================================
    # Send
    # =========================================================================

    def send_message(
        self,
        session_id: Optional[str],
        case_id: str,
        workspace_id: str,
        account_id: str,
        content: str,
        mode: Optional[ChatMode] = None,
        model_id: Optional[str] = None,
    ) -> ChatMessage:
        """
        Run the pipeline for one user message.

        Args:
            session_id: Chat session (created when None or unknown)
            case_id: Case the session belongs to
            workspace_id: Workspace (tenant) identifier
            account_id: Account charged for credits
            content: User message
            mode: Chat mode; defaults to the slash command's mode or the session's mode
            model_id: Model override; defaults to the session's or the tenant's model

        Returns:
            The assistant message: complete, or pending with an approval tool call
        """
        self.expire_pending_approvals()

        slash = parse_slash_command(content)
        session = self._get_or_create_session(session_id, case_id, workspace_id, mode or ChatMode.GENERAL)
        if mode is None:
            mode = resolve_slash_command_mode(slash.command) if slash else session.mode
        model = resolve_model(model_id or session.model_id, self.config.language.default_model_id)

        history = tuple(
            m for m in self.store.get_chat_messages(session.id) if m.status == MessageStatus.COMPLETE
        )
        user_message = self.store.append_message(ChatMessage(
            id=create_id("chat-msg"),
            session_id=session.id,
            role=MessageRole.USER,
            content=content,
            mode=mode,
            status=MessageStatus.COMPLETE,
            token_estimate=estimate_tokens(content),
        ))
        assistant = self.store.append_message(ChatMessage(
            id=create_id("chat-msg"),
            session_id=session.id,
            role=MessageRole.ASSISTANT,
            content="",
            mode=mode,
            model_id=model.id,
        ))

        with self.metrics.track_run(assistant.id, account_id, mode.value) as tracker:
            run = PendingRun(
                tool_call_id="",
                assistant_message_id=assistant.id,
                session_id=session.id,
                case_id=case_id,
                workspace_id=workspace_id,
                account_id=account_id,
                mode=mode,
                model=model,
                context=None,
                history=history,
                tool_calls=[],
                start_time=time.monotonic(),
                original_content=content,
                user_token_estimate=user_message.token_estimate,
                credit_cost=credit_cost(model),
            )
            try:
                message, outcome = self._run_pipeline(run)
            except Exception as e:
                self._abort(run, e)
                raise
            tracker.set_outcome(outcome, tool_calls=len(message.tool_calls))
        return message

    def _run_pipeline(self, run: PendingRun) -> tuple[ChatMessage, str]:
        labels = self._labels()
        content = run.original_content
        tool_calls = run.tool_calls

        # Memory instructions
        if self.memory is not None:
            result = call_side_channel(
                "memory_instruction",
                lambda: self.memory.handle_instruction(run.workspace_id, run.case_id, run.session_id, content),
            )
            if result.contributed and result.contribution.handled:
                instruction = result.contribution
                tc = ToolCall.start(ToolCallName.MEMORY_LOOKUP, labels["tool_memory_lookup"])
                tool_calls.append(tc.complete(instruction.response))
                message = self._finish(
                    run.assistant_message_id, tool_calls, instruction.response or "",
                    run.session_id, content, run.user_token_estimate,
                    response_tokens=MEMORY_RESPONSE_TOKENS,
                )
                return message, OUTCOME_MEMORY

        # Clarification
        if should_clarify(content):
            tc = ToolCall.start(ToolCallName.CLARIFY_REQUEST, labels["tool_clarify_request"])
            tool_calls.append(tc.complete(labels["clarify_needed"]))
            message = self._finish(
                run.assistant_message_id, tool_calls, clarification_message(run.mode, self.language),
                run.session_id, content, run.user_token_estimate,
            )
            logger.info(f"Clarification requested for {run.assistant_message_id}")
            return message, OUTCOME_CLARIFIED

        # Credit check
        tc = ToolCall.start(ToolCallName.CREDIT_CHECK, labels["tool_credit_check"], str(run.credit_cost))
        tool_calls.append(tc)
        self._publish(run.assistant_message_id, tool_calls)
        if self.quota_gate is None:
            tc.complete(labels["credits_free_tier"])
        else:
            decision = self.quota_gate.check_and_reserve(run.account_id, "ai", run.credit_cost)
            if not decision.allowed:
                tc.fail(labels["credits_insufficient"])
                message = self._finish(
                    run.assistant_message_id, tool_calls,
                    f"⚠️ **{labels['credits_insufficient']}**\n\n{decision.message}",
                    run.session_id, content, run.user_token_estimate,
                )
                return message, OUTCOME_QUOTA_DENIED
            run.reservation = decision.reservation
            tc.complete(
                labels["credits_free_tier"] if decision.reservation.free_tier else labels["credits_available"]
            )
        self._publish(run.assistant_message_id, tool_calls)

        return self._run_context_stages(run)

    def _run_context_stages(self, run: PendingRun) -> tuple[ChatMessage, str]:
        labels = self._labels()
        content = run.original_content
        tool_calls = run.tool_calls

        # Build context
        tc = ToolCall.start(ToolCallName.BUILD_CONTEXT, labels["tool_build_context"], content[:INPUT_PREVIEW])
        tool_calls.append(tc)
        self._publish(run.assistant_message_id, tool_calls)
        snapshot = self.assembler.build(run.case_id, run.workspace_id, content, run.history, run.mode)
        tc.complete(
            labels["context_summary"].format(
                chunks=len(snapshot.relevant_chunks),
                norms=len(snapshot.active_norms),
                deadlines=len(snapshot.deadline_warnings),
            ),
            self._context_detail_lines(snapshot),
        )
        self._publish(run.assistant_message_id, tool_calls)

        # Search chunks
        if snapshot.relevant_chunks:
            tc = ToolCall.start(ToolCallName.SEARCH_CHUNKS, labels["tool_search_chunks"], content[:INPUT_PREVIEW])
            tool_calls.append(tc.complete(
                labels["search_summary"].format(count=len(snapshot.relevant_chunks)),
                [
                    ToolCallDetailLine(
                        icon="chunk",
                        label=chunk.document_title,
                        meta=chunk.category,
                        added=round(chunk.relevance_score * 100),
                    )
                    for chunk in snapshot.relevant_chunks[:MAX_SEARCH_DETAIL_LINES]
                ],
            ))
            self._publish(run.assistant_message_id, tool_calls)

        # Collective intelligence
        if snapshot.collective_context is not None:
            tc = ToolCall.start(ToolCallName.COLLECTIVE_INTELLIGENCE, labels["tool_collective_intelligence"])
            tool_calls.append(tc.complete(
                labels["collective_summary"].format(count=len(snapshot.collective_context.matched_entries))
            ))
            self._publish(run.assistant_message_id, tool_calls)

        # Memory lookup
        tc = ToolCall.start(ToolCallName.MEMORY_LOOKUP, labels["tool_memory_lookup"])
        tool_calls.append(tc)
        self._publish(run.assistant_message_id, tool_calls)
        used_memory_ids = []
        if self.memory is None:
            tc.complete(labels["memory_unavailable"])
        else:
            result = call_side_channel(
                "memory_lookup",
                lambda: self.memory.build_context_block(run.workspace_id, run.case_id, run.session_id, content),
            )
            if result.contributed:
                snapshot = snapshot.with_memory_block(result.contribution.block)
                used_memory_ids = list(result.contribution.used_memory_ids)
                tc.complete(
                    labels["memory_used"].format(count=len(used_memory_ids))
                    if used_memory_ids else labels["memory_none"]
                )
            else:
                tc.complete(labels["memory_unavailable"])
        self._publish(run.assistant_message_id, tool_calls, used_memory_ids=used_memory_ids)
        run.context = snapshot

        # Approval gate
        if requires_approval(content):
            tc = ToolCall.start(ToolCallName.APPROVAL_GATE, labels["tool_approval_gate"])
            tool_calls.append(tc.await_approval(
                build_approval_request(content, run.mode, self.language), labels["approval_waiting"],
            ))
            run.tool_call_id = tc.id
            message = self._publish(
                run.assistant_message_id, tool_calls, content=labels["approval_pending_message"],
            )
            self.pending_runs.put(run)
            return message, OUTCOME_AWAITING_APPROVAL

        return self._run_generation(run, content)

    def _context_detail_lines(self, snapshot: ContextSnapshot) -> list[ToolCallDetailLine]:
        labels = self._labels()
        lines = []

        per_document: dict[str, list] = {}
        for chunk in snapshot.relevant_chunks:
            per_document.setdefault(chunk.document_id, [chunk.document_title, 0])[1] += 1
        for title, count in per_document.values():
            lines.append(ToolCallDetailLine(
                icon="file", label=title, meta=labels["context_chunks_meta"].format(count=count), added=count,
            ))

        for norm in snapshot.active_norms[:MAX_CONTEXT_NORM_LINES]:
            lines.append(ToolCallDetailLine(icon="norm", label=norm))
        if len(snapshot.active_norms) > MAX_CONTEXT_NORM_LINES:
            lines.append(ToolCallDetailLine(
                icon="norm",
                label=labels["context_more_norms"].format(count=len(snapshot.active_norms) - MAX_CONTEXT_NORM_LINES),
            ))

        for warning in snapshot.deadline_warnings[:MAX_CONTEXT_DEADLINE_LINES]:
            lines.append(ToolCallDetailLine(icon="deadline", label=warning))
        if snapshot.case_law_context:
            lines.append(ToolCallDetailLine(
                icon="norm", label=labels["context_case_law"].format(count=len(snapshot.case_law_context)),
            ))
        for warning in snapshot.source_reliability_warnings[:MAX_CONTEXT_WARNING_LINES]:
            lines.append(ToolCallDetailLine(icon="warning", label=warning))
        if snapshot.contradiction_highlights:
            lines.append(ToolCallDetailLine(
                icon="warning",
                label=labels["context_contradictions"].format(count=len(snapshot.contradiction_highlights)),
            ))
        if snapshot.evidence_gaps:
            lines.append(ToolCallDetailLine(
                icon="warning", label=labels["context_evidence_gaps"].format(count=len(snapshot.evidence_gaps)),
            ))
        return lines

    # =========================================================================
    # Generation stage
    # =========================================================================

    def _run_generation(self, run: PendingRun, content: str) -> tuple[ChatMessage, str]:
        labels = self._labels()
        tool_calls = run.tool_calls
        snapshot = run.context
        mode_label = get_labels(MODE_LABELS, self.language)[run.mode.value]

        tc = ToolCall.start(ToolCallName.GENERATE, f"{run.model.label} · {mode_label}")
        tool_calls.append(tc)
        self._publish(run.assistant_message_id, tool_calls, status=MessageStatus.STREAMING)

        def publish_partial(text: str) -> None:
            self._publish(run.assistant_message_id, tool_calls, content=text, status=MessageStatus.STREAMING)

        result = self.generator.generate(content, snapshot, run.history, run.model, on_partial=publish_partial)

        text = result.text
        sources, norms, findings = [], [], []
        if result.used_external_backend:
            extracted = self.citations.extract(text, snapshot, self.store.get_findings(run.case_id))
            sources, norms, findings = extracted.sources, extracted.norms, extracted.findings
            text = self.citations.append_source_notice(text, snapshot, sources)
            tc.complete(labels["generate_tokens"].format(tokens=estimate_tokens(text)))
        else:
            tc.fail(labels["generate_failed"])

        # Reasoning chain
        steps = [ToolCallDetailLine(
            icon="check",
            label=labels["reasoning_retrieve"].format(count=len(snapshot.relevant_chunks)),
            meta="retrieve",
        )]
        if snapshot.active_norms:
            steps.append(ToolCallDetailLine(
                icon="check", label=labels["reasoning_norms"].format(count=len(snapshot.active_norms)), meta="verify",
            ))
        if snapshot.contradiction_highlights:
            steps.append(ToolCallDetailLine(
                icon="check",
                label=labels["reasoning_contradictions"].format(count=len(snapshot.contradiction_highlights)),
                meta="compare",
            ))
        steps.append(ToolCallDetailLine(
            icon="check", label=labels["reasoning_synthesize"].format(model=run.model.label), meta="synthesize",
        ))
        tc = ToolCall.start(ToolCallName.REASONING_CHAIN, labels["tool_reasoning_chain"])
        tool_calls.append(tc.complete(labels["reasoning_summary"].format(count=len(steps)), steps))

        # Confidence
        current = self.store.get_message(run.assistant_message_id)
        confidence = compute_confidence(
            ConfidenceInput(
                relevant_chunk_count=len(snapshot.relevant_chunks),
                source_doc_count=len(snapshot.source_document_ids),
                relevance_scores=[c.relevance_score for c in snapshot.relevant_chunks],
                norm_citation_count=len(norms),
                case_law_count=len(snapshot.case_law_context),
                contradiction_count=len(snapshot.contradiction_highlights),
                source_citation_count=len(sources),
                finding_count=len(findings),
                memory_count=len(current.used_memory_ids) if current else 0,
                has_collective_context=snapshot.collective_context is not None,
            ),
            self.language,
        )
        tc = ToolCall.start(ToolCallName.CONFIDENCE_SCORE, labels["tool_confidence_score"])
        tool_calls.append(tc.complete(
            labels["confidence_summary"].format(percent=round(confidence.score * 100), level=confidence.level),
            [ToolCallDetailLine(icon="warning", label=w) for w in confidence.warnings],
        ))

        message = self._finish(
            run.assistant_message_id,
            tool_calls,
            text,
            run.session_id,
            run.original_content,
            run.user_token_estimate,
            source_citations=sources,
            norm_citations=norms,
            finding_refs=findings,
            confidence=confidence,
            model_id=run.model.id,
            duration_ms=int((time.monotonic() - run.start_time) * 1000),
        )

        if result.used_external_backend:
            self._commit(run, content)
            return message, OUTCOME_COMPLETED
        self._release(run)
        return message, OUTCOME_FALLBACK

    def _commit(self, run: PendingRun, content: str) -> None:
        if self.quota_gate is None or run.reservation is None:
            return
        self.quota_gate.commit(
            run.reservation,
            description=f"Chat ({run.mode.value}, {run.model.label}): \"{content[:INPUT_PREVIEW]}\"",
            reference_id=run.assistant_message_id,
        )

    def _release(self, run: PendingRun) -> None:
        if self.quota_gate is not None and run.reservation is not None:
            self.quota_gate.release(run.reservation)

    def _abort(self, run: PendingRun, error: Exception) -> None:
        """Settle a run whose stage raised; the caller re-raises ``error``."""
        logger.error(f"Run {run.assistant_message_id} failed: {type(error).__name__}: {error}")
        self._release(run)
        labels = self._labels()
        for tc in run.tool_calls:
            if tc.status == ToolCallStatus.RUNNING:
                tc.fail(labels["run_failed"])
        try:
            self._finish(
                run.assistant_message_id, run.tool_calls, labels["run_failed_message"],
                run.session_id, run.original_content, run.user_token_estimate,
            )
        except Exception as e:
            logger.error(f"Could not finalize failed run {run.assistant_message_id}: {e}")

    # =========================================================================
    # Approval expiry
    # =========================================================================

    def expire_pending_approvals(self, max_age: Optional[float] = None) -> list[ChatMessage]:
        """
        Cancel runs that waited at the approval gate for longer than ``max_age``.

        Their credit reservations are released before any message is
        finalized. Defaults to ``config.approval_ttl``.

        Returns:
            The finalized assistant messages of the expired runs
        """
        max_age = self.config.approval_ttl if max_age is None else max_age
        expired = self.pending_runs.expire(max_age)
        if not expired:
            return []

        labels = self._labels()
        for run in expired:
            self._release(run)
            for tc in run.tool_calls:
                if tc.status == ToolCallStatus.AWAITING_APPROVAL:
                    tc.cancel(labels["approval_expired"])

        messages = []
        for run in expired:
            logger.info(f"Approval {run.tool_call_id} expired after {max_age:.0f}s")
            messages.append(self._finish(
                run.assistant_message_id, run.tool_calls, labels["approval_expired_message"],
                run.session_id, run.original_content, run.user_token_estimate,
            ))
        return messages

    # =========================================================================
    # Approval resolution
    # =========================================================================

    def resolve_approval(
        self,
        tool_call_id: str,
        decision: ApprovalDecision,
        fields: Optional[Mapping[str, str]] = None,
    ) -> Optional[ChatMessage]:
        """
        Resume or cancel a run suspended at the approval gate.

        Args:
            tool_call_id: Id of the awaiting approval_gate tool call
            decision: approved or rejected
            fields: Edited approval field values (goal, format, focus)

        Returns:
            The completed assistant message, or None when the approval is
            unknown or was already resolved

        Raises:
            ApprovalFieldError: Unknown field keys (the run stays pending)
        """
        decision = ApprovalDecision(decision)
        if decision == ApprovalDecision.APPROVED:
            validate_approval_fields(fields)
        self.expire_pending_approvals()

        run = self.pending_runs.take(tool_call_id)
        if run is None:
            logger.info(f"Approval {tool_call_id} is unknown or already resolved")
            self.metrics.record_stale_resolution()
            return None

        tc = next((t for t in run.tool_calls if t.id == tool_call_id), None)
        if tc is None:
            logger.warning(f"Pending run for {tool_call_id} has no matching tool call")
            self._release(run)
            return None

        labels = self._labels()
        self.metrics.record_approval(decision == ApprovalDecision.APPROVED)

        with self.metrics.track_run(run.assistant_message_id, run.account_id, run.mode.value) as tracker:
            if decision == ApprovalDecision.REJECTED:
                tc.cancel(labels["approval_rejected"])
                self._release(run)
                message = self._finish(
                    run.assistant_message_id, run.tool_calls, labels["approval_cancel_message"],
                    run.session_id, run.original_content, run.user_token_estimate,
                )
                logger.info(f"Approval {tool_call_id} rejected")
                tracker.set_outcome(OUTCOME_REJECTED, tool_calls=len(message.tool_calls))
                return message

            tc.resume()
            tc.complete(labels["approval_granted"])
            content = merge_approval_fields(run.original_content, fields, self.language)
            logger.info(f"Approval {tool_call_id} granted; resuming generation")
            try:
                message, outcome = self._run_generation(run, content)
            except Exception as e:
                self._abort(run, e)
                raise
            tracker.set_outcome(outcome, tool_calls=len(message.tool_calls))
            return message
