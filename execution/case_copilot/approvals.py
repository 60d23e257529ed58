"""
Request Triage: Slash Commands, Clarification and Approval Gating

Decides, before any paid work, whether a message is too vague to act on
and whether it needs human approval. Approval requests carry editable
fields; the approved values are merged back into the message as a
structured addendum.

PendingRunStore holds runs suspended at the approval gate. ``take`` removes
and returns a run atomically, so exactly one of several racing resolutions
sees it.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .errors import ApprovalFieldError
from .language_patterns import (
    HIGH_RISK_PATTERNS,
    MODE_LABELS,
    PIPELINE_LABELS,
    SLASH_COMMAND_PATTERN,
    VAGUE_REQUEST_PATTERN,
    get_labels,
)
from .models import ApprovalField, ApprovalRequest, ChatMode, PendingRun

logger = logging.getLogger(__name__)


# ============================================================================
# Slash commands
# ============================================================================

@dataclass(frozen=True)
class SlashCommand:
    command: str
    args: str


@dataclass(frozen=True)
class SlashCommandInfo:
    command: str
    description: str
    example: str


SLASH_COMMAND_CATALOG = (
    SlashCommandInfo("/norm", "Norm nachschlagen", "/norm § 823 BGB"),
    SlashCommandInfo("/beweis", "Beweislage prüfen", "/beweis Welche Beweise stützen den Anspruch?"),
    SlashCommandInfo("/frist", "Fristen prüfen", "/frist Welche Fristen laufen aktuell?"),
    SlashCommandInfo("/ocr", "OCR für gescannte Dokumente starten", "/ocr"),
    SlashCommandInfo("/analyse", "Vollständige Fallanalyse starten", "/analyse"),
    SlashCommandInfo("/workflow", "Agenten-Workflow starten", "/workflow Klageerwiderung vorbereiten"),
    SlashCommandInfo("/folder", "Ordner durchsuchen", "/folder Korrespondenz 2024"),
    SlashCommandInfo("/widerspruch", "Widersprüche suchen", "/widerspruch Gibt es Widersprüche in den Zeugenaussagen?"),
    SlashCommandInfo("/strategie", "Strategieberatung", "/strategie Wie sollten wir im Berufungsverfahren vorgehen?"),
    SlashCommandInfo("/gegner", "Gegner-Perspektive", "/gegner Was wird die Gegenseite argumentieren?"),
    SlashCommandInfo("/dropbox", "Dropbox-Akten durchsuchen", "/dropbox kündigung 2024"),
    SlashCommandInfo("/zusammenfassung", "Fall-Zusammenfassung", "/zusammenfassung"),
    SlashCommandInfo("/dokument", "Dokument per AI erstellen", "/dokument Schriftsatz zur Klageerwiderung"),
    SlashCommandInfo("/richter", "Richter-Simulation", "/richter Wie würde das Gericht entscheiden?"),
    SlashCommandInfo("/crosscheck", "Cross-Check neuer Dokumente gegen Akte", "/crosscheck"),
    SlashCommandInfo("/merke", "Information im Copilot-Gedächtnis speichern", "/merke Mandant bevorzugt formelle Ansprache"),
    SlashCommandInfo("/gedaechtnis", "Copilot-Gedächtnis anzeigen", "/gedaechtnis"),
)

SLASH_COMMAND_MODES = {
    "norm": ChatMode.NORMEN,
    "normen": ChatMode.NORMEN,
    "beweis": ChatMode.BEWEISLAGE,
    "beweislage": ChatMode.BEWEISLAGE,
    "frist": ChatMode.FRISTEN,
    "fristen": ChatMode.FRISTEN,
    "strategie": ChatMode.STRATEGIE,
    "gegner": ChatMode.GEGNER,
    "richter": ChatMode.RICHTER,
    "gericht": ChatMode.RICHTER,
}

APPROVAL_REQUIRED_COMMANDS = frozenset({"dokument", "workflow", "ocr", "analyse", "dropbox"})
HIGH_RISK_COMMANDS = frozenset({"dokument"})


def parse_slash_command(content: str) -> Optional[SlashCommand]:
    """Parse ``/command args``; returns None for ordinary messages."""
    match = SLASH_COMMAND_PATTERN.match(content.strip())
    if not match:
        return None
    return SlashCommand(command=match.group(1).lower(), args=match.group(2).strip())


def resolve_slash_command_mode(command: str) -> ChatMode:
    return SLASH_COMMAND_MODES.get(command.lower().lstrip("/"), ChatMode.GENERAL)


# ============================================================================
# Clarification
# ============================================================================

MIN_REQUEST_LENGTH = 18
MAX_VAGUE_TOKENS = 3


def should_clarify(content: str) -> bool:
    """
    True when a message is too vague to act on.

    Slash commands are never vague. Otherwise: empty, shorter than
    MIN_REQUEST_LENGTH, at most MAX_VAGUE_TOKENS words without a question
    mark, or a known filler phrase.
    """
    normalized = content.strip()
    if not normalized:
        return True
    if parse_slash_command(normalized):
        return False
    if len(normalized) < MIN_REQUEST_LENGTH:
        return True
    if len(normalized.split()) <= MAX_VAGUE_TOKENS and "?" not in normalized:
        return True
    return bool(VAGUE_REQUEST_PATTERN.search(normalized))


def clarification_message(mode: ChatMode, language: str = "de") -> str:
    mode_label = get_labels(MODE_LABELS, language)[mode.value]
    return get_labels(PIPELINE_LABELS, language)["clarify_message"].format(mode_label=mode_label)


# ============================================================================
# Approval gating
# ============================================================================

FIELD_GOAL = "goal"
FIELD_FORMAT = "format"
FIELD_FOCUS = "focus"
APPROVAL_FIELD_KEYS = frozenset({FIELD_GOAL, FIELD_FORMAT, FIELD_FOCUS})


def requires_approval(content: str) -> bool:
    """High-risk intents and a few explicit slash commands need approval."""
    slash = parse_slash_command(content)
    if slash:
        return slash.command in APPROVAL_REQUIRED_COMMANDS
    return any(pattern.search(content) for pattern in HIGH_RISK_PATTERNS)


def build_approval_request(content: str, mode: ChatMode, language: str = "de") -> ApprovalRequest:
    """Approval request with goal/format/focus fields pre-filled from the message."""
    labels = get_labels(PIPELINE_LABELS, language)
    slash = parse_slash_command(content)
    risk_level = "high" if slash and slash.command in HIGH_RISK_COMMANDS else "medium"

    return ApprovalRequest(
        title=labels["approval_title"],
        description=labels["approval_description"],
        risk_level=risk_level,
        fields=[
            ApprovalField(
                key=FIELD_GOAL,
                label=labels["approval_field_goal"],
                value=content,
                required=True,
                placeholder=labels["approval_field_goal_placeholder"],
            ),
            ApprovalField(
                key=FIELD_FORMAT,
                label=labels["approval_field_format"],
                value=labels["approval_field_format_default"],
                placeholder=labels["approval_field_format_placeholder"],
            ),
            ApprovalField(
                key=FIELD_FOCUS,
                label=labels["approval_field_focus"],
                value=get_labels(MODE_LABELS, language)[mode.value],
                placeholder=labels["approval_field_focus_placeholder"],
            ),
        ],
        confirm_label=labels["approval_confirm"],
        cancel_label=labels["approval_cancel"],
    )


def validate_approval_fields(fields: Optional[Mapping[str, str]]) -> None:
    """
    Raises:
        ApprovalFieldError: If any key is not an approval field
    """
    unknown = [key for key in (fields or {}) if key not in APPROVAL_FIELD_KEYS]
    if unknown:
        raise ApprovalFieldError(unknown)


def merge_approval_fields(
    content: str,
    fields: Optional[Mapping[str, str]],
    language: str = "de",
) -> str:
    """
    Merge edited approval fields into the original message.

    The edited goal replaces the content when non-blank. Non-blank format
    and focus values are appended as an addendum, never merged silently.
    With no fields at all the content is returned unchanged.
    """
    validate_approval_fields(fields)
    if not fields:
        return content

    labels = get_labels(PIPELINE_LABELS, language)
    target = (fields.get(FIELD_GOAL) or "").strip() or content

    extras = []
    output_format = (fields.get(FIELD_FORMAT) or "").strip()
    if output_format:
        extras.append(labels["approval_addendum_format"].format(value=output_format))
    focus = (fields.get(FIELD_FOCUS) or "").strip()
    if focus:
        extras.append(labels["approval_addendum_focus"].format(value=focus))

    if not extras:
        return target
    return f"{target}\n\n{labels['approval_addendum']}\n" + "\n".join(extras)


# ============================================================================
# Pending runs
# ============================================================================

class PendingRunStore:
    """Runs suspended at the approval gate, keyed by approval tool call id."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._runs: dict[str, tuple[PendingRun, float]] = {}

    def put(self, run: PendingRun) -> None:
        with self._lock:
            self._runs[run.tool_call_id] = (run, self._clock())
        logger.info(f"Run suspended for approval {run.tool_call_id}")

    def get(self, tool_call_id: str) -> Optional[PendingRun]:
        with self._lock:
            entry = self._runs.get(tool_call_id)
            return entry[0] if entry else None

    def take(self, tool_call_id: str) -> Optional[PendingRun]:
        """Remove and return the run; None if absent or already taken."""
        with self._lock:
            entry = self._runs.pop(tool_call_id, None)
            return entry[0] if entry else None

    def expire(self, max_age: float) -> list[PendingRun]:
        """Remove and return every run suspended for longer than ``max_age`` seconds."""
        cutoff = self._clock() - max_age
        with self._lock:
            stale = [key for key, (_, stored_at) in self._runs.items() if stored_at <= cutoff]
            return [self._runs.pop(key)[0] for key in stale]

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)

    def __contains__(self, tool_call_id: str) -> bool:
        with self._lock:
            return tool_call_id in self._runs
