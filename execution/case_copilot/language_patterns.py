"""
Multilingual Pattern Definitions for the Case Copilot

All regex patterns, prompt templates, and user-facing labels organized by
language. Modules import from here instead of defining texts inline.
Templates use ``str.format`` placeholders.
"""

import re

# =============================================================================
# Legal Reference Patterns
# =============================================================================

# "§ 823", "§§ 280 Abs. 1" in user queries (matched against chunk entities)
QUERY_LEGAL_REF_PATTERN = re.compile(r"§§?\s*\d+[a-z]?(?:\s*abs\.?\s*\d+)?", re.IGNORECASE)

# "§ 823 BGB" in generated answers: paragraph + law token
NORM_CITATION_PATTERN = re.compile(r"§\s*(\d+[a-z]?)\s+([\wÄÖÜäöüß]+)", re.IGNORECASE)

# =============================================================================
# Request Classification
# =============================================================================

SLASH_COMMAND_PATTERN = re.compile(r"^/(\w+)\s*(.*)", re.DOTALL)

VAGUE_REQUEST_PATTERN = re.compile(
    r"(mach\s+das|irgendwas|hilfe\b|weißt\s+du\b|weiter\s*\?)", re.IGNORECASE
)

# Document generation / finalization and send, submit, delete, publish intents
HIGH_RISK_PATTERNS = [
    re.compile(r"\b(erstell\w*|generier\w*|entw[iu]rf\w*|verfass\w*)\b.*\b(dokument\w*|schriftsatz\w*|klage\w*|brief\w*|vertrag\w*)", re.IGNORECASE),
    re.compile(r"\b(sende\w*|versend\w*|verschick\w*|einreich\w*|reiche\w*\s+\w+\s+ein|veröffentlich\w*|lösch\w*|speicher\w*|finalisier\w*)", re.IGNORECASE),
    re.compile(r"\b(create|generate|draft)\b.*\b(document|brief|pleading|letter|contract)s?\b", re.IGNORECASE),
    re.compile(r"\b(send|submit|delete|remove|publish|finali[sz]e)\b", re.IGNORECASE),
]

MEMORY_REMEMBER_PATTERNS = [
    re.compile(r"^merke?\s*dir[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
    re.compile(r"^remember[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
    re.compile(r"^speichere?[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
    re.compile(r"^notiere?[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
    re.compile(r"^wichtig[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
]

MEMORY_FORGET_PATTERNS = [
    re.compile(r"^vergiss[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
    re.compile(r"^lösche?\s*(?:die?\s*)?(?:erinnerung|memory|notiz)[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
    re.compile(r"^forget[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
]

MEMORY_CATEGORY_PATTERNS = [
    ("preference", re.compile(r"\b(immer|nie|stets|bitte|soll|bevorzugt|standard|always|never|prefer\w*)\b")),
    ("rule", re.compile(r"\b(regel|grundsatz|prinzip|pflicht|muss|rule|must)\b")),
    ("strategy", re.compile(r"\b(strategie|vorgehen|taktik|ansatz|plan|strategy|tactic)\b")),
    ("deadline", re.compile(r"\b(frist|termin|deadline|ablauf|bis zum)\b")),
    ("contradiction", re.compile(r"\b(widerspruch|inkonsistent|abweich\w*|gegensätzlich|contradiction)\b")),
    ("entity", re.compile(r"\b(person|name|firma|organisation|mandant|gegner|richter|anwalt|client|judge)\b")),
]

MEMORY_WORKSPACE_SCOPE_PATTERN = re.compile(
    r"\b(kanzlei|allgemein|generell|immer|für alle|standard|firm|always|general)\b"
)

# =============================================================================
# Mode Prompts
# =============================================================================

MODE_PROMPTS = {
    "de": {
        "general": (
            "Du bist ein erfahrener Rechtsanwalt und juristischer Berater. Du analysierst den "
            "vorliegenden Fall auf Basis der bereitgestellten Dokumente, Normen, Findings und "
            "Beweismittel. Antworte präzise, strukturiert und mit Quellenverweisen. Zitiere immer "
            "die relevanten Rechtsgrundlagen."
        ),
        "strategie": (
            "Du bist ein Senior-Litigation-Partner und entwickelst die Prozessstrategie für diesen Fall. Analysiere:\n"
            "- Stärken und Schwächen der eigenen Position\n"
            "- Mögliche Angriffs- und Verteidigungslinien\n"
            "- Prozessrisiken und Erfolgsaussichten\n"
            "- Taktische Empfehlungen für das weitere Vorgehen\n"
            "- Vergleichsoptionen und deren Bewertung\n"
            "Sei strategisch, pragmatisch und ergebnisorientiert."
        ),
        "subsumtion": (
            "Du bist ein Subsumtionsexperte. Führe eine präzise rechtliche Subsumtion durch:\n"
            "1. Obersatz: Nenne die einschlägige Norm und deren Tatbestandsmerkmale\n"
            "2. Definition: Definiere die einzelnen Tatbestandsmerkmale\n"
            "3. Subsumtion: Ordne den Sachverhalt unter die Tatbestandsmerkmale ein\n"
            "4. Ergebnis: Formuliere das Prüfungsergebnis\n"
            "Arbeite sauber methodisch und verweise auf Dokument-Quellen."
        ),
        "gegner": (
            "Du denkst aus der Perspektive der Gegenseite und nutzt das bekannte Profil der "
            "gegnerischen Kanzlei. Analysiere:\n"
            "- Welche Argumente wird die Gegenseite vorbringen?\n"
            "- Welche Schwachstellen in unserer Argumentation wird sie angreifen?\n"
            "- Welche Beweismittel und Normen wird sie für sich beanspruchen?\n"
            "- Wie können wir uns gezielt gegen ihre typischen Angriffe verteidigen?\n"
            "Sei kritisch und schonungslos ehrlich."
        ),
        "richter": (
            "Du bist ein erfahrener Richter und prüfst den Fall wie in der mündlichen Verhandlung:\n"
            "1. ZULÄSSIGKEIT: Zuständigkeit, Parteifähigkeit, Rechtsschutzbedürfnis\n"
            "2. BEGRÜNDETHEIT: Anspruchsgrundlage und Tatbestandsmerkmale\n"
            "3. BEWEISLAST: Wer muss was beweisen? Reichen die Beweise?\n"
            "4. ABWÄGUNG: Wie würdest du entscheiden und warum?\n"
            "5. VERGLEICH: Würdest du einen Vergleich vorschlagen?\n"
            "6. HINWEISE: Welche Hinweise würdest du den Parteien geben (§ 139 ZPO)?\n"
            "Sei neutral, aber direkt."
        ),
        "beweislage": (
            "Du bist Beweisrechtsexperte. Analysiere die Beweislage des Falls:\n"
            "- Welche Beweismittel liegen vor und wie stark sind sie?\n"
            "- Wo bestehen Beweislücken?\n"
            "- Wer trägt die Beweislast für welche Tatsachen?\n"
            "- Welche Beweisanträge sollten gestellt werden?\n"
            "- Gibt es Beweisverwertungsverbote?\n"
            "Bewerte jeden Beweis nach Qualität und Überzeugungskraft."
        ),
        "fristen": (
            "Du bist Spezialist für Fristen und Termine. Analysiere:\n"
            "- Welche Fristen laufen aktuell und welche drohen versäumt zu werden?\n"
            "- Welche Verjährungsfristen sind zu beachten?\n"
            "- Welche prozessualen Fristen müssen eingehalten werden?\n"
            "Sei präzise mit Datumsangaben und Fristberechnungen."
        ),
        "normen": (
            "Du bist ein Normenexperte. Analysiere:\n"
            "- Welche Normen sind für diesen Fall einschlägig?\n"
            "- Wie ist die aktuelle Rechtsprechung zu diesen Normen?\n"
            "- Gibt es Normenkonflikte oder Konkurrenzen?\n"
            "- Welche Rechtsfolgen ergeben sich?\n"
            "Verweise auf konkrete Paragraphen und Gerichtsentscheidungen."
        ),
    },
    "en": {
        "general": (
            "You are an experienced attorney and legal advisor. Analyze the case based on the "
            "provided documents, norms, findings and evidence. Answer precisely, in a structured "
            "way and with source references. Always cite the relevant legal basis."
        ),
        "strategie": (
            "You are a senior litigation partner developing the litigation strategy for this case. Analyze:\n"
            "- Strengths and weaknesses of our position\n"
            "- Possible lines of attack and defense\n"
            "- Litigation risks and prospects of success\n"
            "- Tactical recommendations for next steps\n"
            "- Settlement options and their assessment\n"
            "Be strategic, pragmatic and outcome-oriented."
        ),
        "subsumtion": (
            "You are an expert in legal subsumption. Perform a precise legal analysis:\n"
            "1. Major premise: name the applicable norm and its elements\n"
            "2. Definition: define each element\n"
            "3. Subsumption: apply the facts to each element\n"
            "4. Conclusion: state the result\n"
            "Work methodically and refer to document sources."
        ),
        "gegner": (
            "Think from the perspective of the opposing side, using the known profile of the "
            "opposing firm. Analyze:\n"
            "- Which arguments will the other side raise?\n"
            "- Which weaknesses in our argument will they attack?\n"
            "- Which evidence and norms will they rely on?\n"
            "- How can we defend against their typical attacks?\n"
            "Be critical and brutally honest."
        ),
        "richter": (
            "You are an experienced judge and review the case as in an oral hearing:\n"
            "1. ADMISSIBILITY: jurisdiction, capacity, legal interest\n"
            "2. MERITS: basis of claim and its elements\n"
            "3. BURDEN OF PROOF: who must prove what, and is the evidence sufficient?\n"
            "4. WEIGHING: how would you decide and why?\n"
            "5. SETTLEMENT: would you propose one?\n"
            "6. GUIDANCE: which hints would you give the parties?\n"
            "Be neutral but direct."
        ),
        "beweislage": (
            "You are an expert in the law of evidence. Analyze the evidentiary situation:\n"
            "- Which evidence exists and how strong is it?\n"
            "- Where are the gaps?\n"
            "- Who bears the burden of proof for which facts?\n"
            "- Which motions for evidence should be filed?\n"
            "Rate each item by quality and persuasiveness."
        ),
        "fristen": (
            "You are a specialist for deadlines and hearings. Analyze:\n"
            "- Which deadlines are running and which are at risk?\n"
            "- Which limitation periods apply?\n"
            "- Which procedural deadlines must be met?\n"
            "Be precise with dates and deadline calculations."
        ),
        "normen": (
            "You are an expert on statutes. Analyze:\n"
            "- Which norms apply to this case?\n"
            "- What is the current case law on them?\n"
            "- Are there conflicts between norms?\n"
            "- Which legal consequences follow?\n"
            "Refer to concrete sections and court decisions."
        ),
    },
}

MODE_LABELS = {
    "de": {
        "general": "Allgemeine Fallberatung",
        "strategie": "Prozessstrategie",
        "subsumtion": "Subsumtion & Prüfung",
        "gegner": "Gegner-Perspektive",
        "richter": "Richter-Perspektive",
        "beweislage": "Beweislage-Analyse",
        "fristen": "Fristen & Termine",
        "normen": "Normen-Analyse",
    },
    "en": {
        "general": "General case advice",
        "strategie": "Litigation strategy",
        "subsumtion": "Legal subsumption",
        "gegner": "Opposing perspective",
        "richter": "Judge perspective",
        "beweislage": "Evidence analysis",
        "fristen": "Deadlines & hearings",
        "normen": "Norm analysis",
    },
}

# =============================================================================
# System Prompt Sections
# =============================================================================

PROMPT_SECTIONS = {
    "de": {
        "case_header": "═══ FALLKONTEXT ═══",
        "case": "Fall",
        "client": "Mandant",
        "matter": "Akte",
        "file_reference": "AZ",
        "court": "Gericht",
        "opponents": "Gegner",
        "norms": "═══ EINSCHLÄGIGE NORMEN ═══",
        "findings": "═══ FINDINGS ═══",
        "deadlines": "═══ FRISTEN ═══",
        "contradictions": "═══ WIDERSPRÜCHE ═══",
        "evidence_gaps": "═══ BEWEISLÜCKEN ═══",
        "case_law": "═══ JUDIKATUR-KONTEXT (AUTORITÄTSGEWICHTET) ═══",
        "reliability": "═══ QUELLEN-RISIKO-WARNUNGEN ═══",
        "chunks": "═══ RELEVANTE DOKUMENT-ABSCHNITTE ═══",
        "instructions": "═══ ANWEISUNGEN ═══",
    },
    "en": {
        "case_header": "═══ CASE CONTEXT ═══",
        "case": "Case",
        "client": "Client",
        "matter": "Matter",
        "file_reference": "File ref",
        "court": "Court",
        "opponents": "Opponents",
        "norms": "═══ APPLICABLE NORMS ═══",
        "findings": "═══ FINDINGS ═══",
        "deadlines": "═══ DEADLINES ═══",
        "contradictions": "═══ CONTRADICTIONS ═══",
        "evidence_gaps": "═══ EVIDENCE GAPS ═══",
        "case_law": "═══ CASE LAW CONTEXT (AUTHORITY-WEIGHTED) ═══",
        "reliability": "═══ SOURCE RISK WARNINGS ═══",
        "chunks": "═══ RELEVANT DOCUMENT EXCERPTS ═══",
        "instructions": "═══ INSTRUCTIONS ═══",
    },
}

CLOSING_INSTRUCTIONS = {
    "de": [
        "Beziehe dich auf die bereitgestellten Dokumente und zitiere Quellen.",
        "Wenn du eine Norm erwähnst, nenne den genauen Paragraphen.",
        "Strukturiere deine Antwort mit Überschriften und Aufzählungen.",
        "Wenn dir Informationen fehlen, weise explizit darauf hin.",
        "Nutze das kollektive Wissen aus anderen anonymisierten Fällen, um deine Analyse zu stärken.",
        "Verwende historische/überholte Judikatur niemals als tragende Begründung.",
        "Bei unklarer zeitlicher Gültigkeit kennzeichne die Quelle explizit als verifikationspflichtig.",
        "Antworte auf {response_language}.",
    ],
    "en": [
        "Refer to the provided documents and cite sources.",
        "When you mention a norm, name the exact section.",
        "Structure your answer with headings and bullet points.",
        "If information is missing, say so explicitly.",
        "Use collective knowledge from other anonymized cases to strengthen your analysis.",
        "Never rely on historical or overruled case law as a supporting basis.",
        "Mark sources with unclear temporal validity as requiring verification.",
        "Respond in {response_language}.",
    ],
}

# =============================================================================
# Context Summaries
# =============================================================================

CONTEXT_LABELS = {
    "de": {
        "no_findings": "Keine Findings vorhanden.",
        "findings_total": "{count} Findings insgesamt",
        "findings_critical": "⚠️ {count} kritisch: {titles}",
        "findings_high": "🔴 {count} hoch: {titles}",
        "no_opponents": "Keine Gegner erfasst.",
        "opponent_representative": " — RA: {name}",
        "deadline_overdue": "❌ ÜBERFÄLLIG: {title} (seit {days} Tagen)",
        "deadline_due": "⚠️ {title}: fällig in {days} Tag(en) ({date})",
        "deadline_upcoming": "📅 {title}: fällig am {date} ({days} Tage)",
        "unknown_case": "Unbekannt",
        "untitled_document": "Dokument",
        "warn_historical": "{count} Judikatur-Treffer sind historisch/überholt und dürfen nur als Kontext, nicht als tragende Quelle genutzt werden.",
        "warn_unknown_temporal": "{count} Judikatur-Treffer haben unklare zeitliche Gültigkeit und müssen verifiziert werden.",
        "warn_very_low_quality": "{count} Dokument(e) haben sehr niedrige Extraktionsqualität (<30%), extrahierter Text ist möglicherweise unvollständig oder fehlerhaft: {titles}.",
        "warn_low_quality": "{count} Aktendokument(e) haben reduzierte Extraktionsqualität; Aussagen daraus mit Vorsicht verwenden.",
        "warn_pending": "{count} Dokument(e) werden noch verarbeitet und stehen noch nicht als Kontext zur Verfügung.",
    },
    "en": {
        "no_findings": "No findings available.",
        "findings_total": "{count} findings in total",
        "findings_critical": "⚠️ {count} critical: {titles}",
        "findings_high": "🔴 {count} high: {titles}",
        "no_opponents": "No opposing parties recorded.",
        "opponent_representative": " — counsel: {name}",
        "deadline_overdue": "❌ OVERDUE: {title} ({days} days ago)",
        "deadline_due": "⚠️ {title}: due in {days} day(s) ({date})",
        "deadline_upcoming": "📅 {title}: due on {date} ({days} days)",
        "unknown_case": "Unknown",
        "untitled_document": "Document",
        "warn_historical": "{count} case-law hits are historical or overruled and may only be used as context, not as a supporting source.",
        "warn_unknown_temporal": "{count} case-law hits have unclear temporal validity and must be verified.",
        "warn_very_low_quality": "{count} document(s) have very low extraction quality (<30%); extracted text may be incomplete or wrong: {titles}.",
        "warn_low_quality": "{count} case document(s) have reduced extraction quality; use statements from them with care.",
        "warn_pending": "{count} document(s) are still being processed and are not yet available as context.",
    },
}

# =============================================================================
# Pipeline Messages
# =============================================================================

PIPELINE_LABELS = {
    "de": {
        "tool_clarify_request": "Anfrage präzisieren",
        "tool_credit_check": "Credits prüfen",
        "tool_build_context": "Fallkontext aufbauen",
        "tool_search_chunks": "Dokumente durchsuchen",
        "tool_collective_intelligence": "Kollektives Wissen abfragen",
        "tool_memory_lookup": "Copilot-Gedächtnis abfragen",
        "tool_approval_gate": "Freigabe einholen",
        "tool_generate": "Antwort generieren",
        "tool_reasoning_chain": "Denk-Schritte aufbauen",
        "tool_confidence_score": "Konfidenz berechnen",
        "clarify_needed": "Rückfrage erforderlich",
        "clarify_message": (
            "Damit ich im Modus **{mode_label}** präzise arbeiten kann, brauche ich noch etwas Kontext:\n\n"
            "1. Was ist dein konkretes Ziel (z. B. Schriftsatz, Risikoanalyse, Fristenprüfung)?\n"
            "2. Auf welche Dokumente/Aspekte soll ich priorisiert fokussieren?\n"
            "3. Gibt es zeitliche, strategische oder formale Vorgaben?\n\n"
            "Sobald du das kurz ergänzt, starte ich den Agenten-Workflow vollständig mit Quellen und klaren Tool-Schritten."
        ),
        "credits_available": "Credits verfügbar",
        "credits_free_tier": "Kein Credit-Addon aktiv. Nutzung im Free-Tier.",
        "credits_insufficient": "Nicht genügend Credits",
        "credits_denied": "Nicht genügend AI-Credits. Verfügbar: {available}, benötigt: {required}. Bitte AI-Credits im Add-on-Shop nachkaufen.",
        "credits_denied_pages": "Nicht genügend Seiten-Credits. Verfügbar: {available}, benötigt: {required}.",
        "context_summary": "{chunks} Chunks, {norms} Normen, {deadlines} Fristen",
        "context_chunks_meta": "{count} Chunks",
        "context_more_norms": "+{count} weitere Normen",
        "context_case_law": "{count} Judikatur-Treffer (autoritätsgewichtet)",
        "context_contradictions": "{count} Widersprüche erkannt",
        "context_evidence_gaps": "{count} Beweislücken",
        "search_summary": "{count} relevante Dokument-Abschnitte gefunden",
        "collective_summary": "{count} kollektive Wissensmuster injiziert",
        "memory_used": "{count} Erinnerung(en) aktiviert",
        "memory_none": "Keine relevanten Erinnerungen",
        "memory_unavailable": "Keine Erinnerungen verfügbar",
        "memory_saved": "Gespeichert ({scope}, {category}): \"{content}\"",
        "memory_deleted": "{count} Erinnerung(en) gelöscht.",
        "memory_not_found": "Keine passende Erinnerung gefunden für: \"{content}\"",
        "approval_title": "Ausführung prüfen & freigeben",
        "approval_description": "Bitte prüfe die geplante Agent-Ausführung. Du kannst Parameter vor Start anpassen.",
        "approval_field_goal": "Ziel",
        "approval_field_goal_placeholder": "Was genau soll der Agent liefern?",
        "approval_field_format": "Ausgabeformat",
        "approval_field_format_default": "Strukturierte Antwort mit Quellen, Risiken und nächsten Schritten",
        "approval_field_format_placeholder": "z. B. Schriftsatz, Checkliste, Executive Summary",
        "approval_field_focus": "Fokus",
        "approval_field_focus_placeholder": "z. B. Fristen, Beweise, Judikatur, Gegenseite",
        "approval_confirm": "Freigeben",
        "approval_cancel": "Abbrechen",
        "approval_waiting": "Warte auf Freigabe",
        "approval_pending_message": "Ich bin bereit für die Ausführung. Bitte prüfe und bestätige die Parameter im Freigabe-Tool-Call, dann starte ich den nächsten Agent-Schritt.",
        "approval_granted": "Freigegeben",
        "approval_rejected": "Vom Nutzer abgebrochen",
        "approval_cancel_message": "Ausführung wurde vor dem nächsten Agent-Schritt abgebrochen.",
        "approval_expired": "Freigabe abgelaufen",
        "approval_expired_message": "Die Freigabe ist abgelaufen. Bitte sende die Anfrage erneut, wenn sie noch ausgeführt werden soll.",
        "run_failed": "Interner Fehler",
        "run_failed_message": "⚠️ Bei der Bearbeitung ist ein interner Fehler aufgetreten. Es wurden keine Credits verbraucht.",
        "approval_addendum": "Freigegebene Ausführungsparameter:",
        "approval_addendum_format": "- Ausgabeformat: {value}",
        "approval_addendum_focus": "- Fokus: {value}",
        "generate_tokens": "{tokens} Tokens generiert",
        "generate_failed": "LLM nicht erreichbar — lokale Analyse",
        "reasoning_retrieve": "{count} Dokument-Abschnitte durchsucht",
        "reasoning_norms": "{count} Normen geprüft",
        "reasoning_contradictions": "{count} Widersprüche berücksichtigt",
        "reasoning_synthesize": "Antwort generiert ({model})",
        "reasoning_summary": "{count} Denk-Schritte",
        "confidence_summary": "Konfidenz: {percent}% ({level})",
    },
    "en": {
        "tool_clarify_request": "Clarify request",
        "tool_credit_check": "Check credits",
        "tool_build_context": "Build case context",
        "tool_search_chunks": "Search documents",
        "tool_collective_intelligence": "Query collective knowledge",
        "tool_memory_lookup": "Query copilot memory",
        "tool_approval_gate": "Request approval",
        "tool_generate": "Generate answer",
        "tool_reasoning_chain": "Build reasoning steps",
        "tool_confidence_score": "Compute confidence",
        "clarify_needed": "Clarification required",
        "clarify_message": (
            "To work precisely in **{mode_label}** mode I need a bit more context:\n\n"
            "1. What is your concrete goal (e.g. brief, risk analysis, deadline check)?\n"
            "2. Which documents or aspects should I focus on?\n"
            "3. Are there time, strategic or formal constraints?\n\n"
            "Once you add this, I will run the full agent workflow with sources and clear tool steps."
        ),
        "credits_available": "Credits available",
        "credits_free_tier": "No credit add-on active. Using the free tier.",
        "credits_insufficient": "Not enough credits",
        "credits_denied": "Not enough AI credits. Available: {available}, required: {required}. Please purchase AI credits in the add-on shop.",
        "credits_denied_pages": "Not enough page credits. Available: {available}, required: {required}.",
        "context_summary": "{chunks} chunks, {norms} norms, {deadlines} deadlines",
        "context_chunks_meta": "{count} chunks",
        "context_more_norms": "+{count} more norms",
        "context_case_law": "{count} case-law hits (authority-weighted)",
        "context_contradictions": "{count} contradictions detected",
        "context_evidence_gaps": "{count} evidence gaps",
        "search_summary": "{count} relevant document excerpts found",
        "collective_summary": "{count} collective knowledge patterns injected",
        "memory_used": "{count} memory item(s) activated",
        "memory_none": "No relevant memories",
        "memory_unavailable": "No memories available",
        "memory_saved": "Saved ({scope}, {category}): \"{content}\"",
        "memory_deleted": "{count} memory item(s) deleted.",
        "memory_not_found": "No matching memory found for: \"{content}\"",
        "approval_title": "Review & approve execution",
        "approval_description": "Please review the planned agent run. You can adjust parameters before it starts.",
        "approval_field_goal": "Goal",
        "approval_field_goal_placeholder": "What exactly should the agent deliver?",
        "approval_field_format": "Output format",
        "approval_field_format_default": "Structured answer with sources, risks and next steps",
        "approval_field_format_placeholder": "e.g. brief, checklist, executive summary",
        "approval_field_focus": "Focus",
        "approval_field_focus_placeholder": "e.g. deadlines, evidence, case law, opposing side",
        "approval_confirm": "Approve",
        "approval_cancel": "Cancel",
        "approval_waiting": "Waiting for approval",
        "approval_pending_message": "Ready to run. Please review and confirm the parameters in the approval tool call, then I will start the next agent step.",
        "approval_granted": "Approved",
        "approval_rejected": "Cancelled by user",
        "approval_cancel_message": "Execution was cancelled before the next agent step.",
        "approval_expired": "Approval expired",
        "approval_expired_message": "The approval expired. Please send the request again if it should still run.",
        "run_failed": "Internal error",
        "run_failed_message": "⚠️ An internal error occurred while processing the request. No credits were consumed.",
        "approval_addendum": "Approved execution parameters:",
        "approval_addendum_format": "- Output format: {value}",
        "approval_addendum_focus": "- Focus: {value}",
        "generate_tokens": "{tokens} tokens generated",
        "generate_failed": "LLM unreachable — local analysis",
        "reasoning_retrieve": "{count} document excerpts searched",
        "reasoning_norms": "{count} norms verified",
        "reasoning_contradictions": "{count} contradictions considered",
        "reasoning_synthesize": "Answer generated ({model})",
        "reasoning_summary": "{count} reasoning steps",
        "confidence_summary": "Confidence: {percent}% ({level})",
    },
}

# =============================================================================
# Local Fallback Answer
# =============================================================================

FALLBACK_LABELS = {
    "de": {
        "banner": "> *Fallback-Analyse (LLM-Backend temporär nicht erreichbar)*\n",
        "chunks": "### Relevante Dokument-Abschnitte\n",
        "norms": "### Einschlägige Normen\n",
        "findings": "### Findings\n",
        "deadlines": "### Fristen-Warnungen\n",
        "contradictions": "### Widersprüche\n",
        "evidence_gaps": "### Beweislücken\n",
        "nothing_found": "Für die Anfrage \"{query}\" konnten keine relevanten Informationen im Akt gefunden werden.",
        "ensure_indexed": "Bitte stellen Sie sicher, dass Dokumente indexiert wurden.",
        "footer": "\n---\n*Für vollständige KI-Analyse: bitte später erneut versuchen. Das LLM-Backend war temporär nicht erreichbar.*",
    },
    "en": {
        "banner": "> *Fallback analysis (LLM backend temporarily unreachable)*\n",
        "chunks": "### Relevant document excerpts\n",
        "norms": "### Applicable norms\n",
        "findings": "### Findings\n",
        "deadlines": "### Deadline warnings\n",
        "contradictions": "### Contradictions\n",
        "evidence_gaps": "### Evidence gaps\n",
        "nothing_found": "No relevant information could be found in the file for the request \"{query}\".",
        "ensure_indexed": "Please make sure the documents have been indexed.",
        "footer": "\n---\n*For a full AI analysis please try again later. The LLM backend was temporarily unreachable.*",
    },
}

# =============================================================================
# Source Notice & Confidence
# =============================================================================

SOURCE_NOTICE_LABELS = {
    "de": {
        "heading": "### Quellen- & Gültigkeitshinweis",
        "no_citations": "Für diese Antwort wurden keine belastbaren Dokumentzitate erkannt. Bitte Antwort in den Aktenquellen verifizieren.",
        "only_historical": "Die erkannte Judikatur ist ausschließlich historisch/überholt. Nicht als tragende aktuelle Rechtsgrundlage verwenden.",
        "unknown_validity": "Mindestens eine zitierte Quelle hat unklare zeitliche Gültigkeit. Aktualität vor Verwendung prüfen.",
        "norm_referenced": "Referenziert",
        "norm_score": "Score: {percent}%",
    },
    "en": {
        "heading": "### Source & validity notice",
        "no_citations": "No reliable document citations were detected for this answer. Please verify it against the case sources.",
        "only_historical": "The detected case law is exclusively historical or overruled. Do not use it as a current legal basis.",
        "unknown_validity": "At least one cited source has unclear temporal validity. Check that it is current before use.",
        "norm_referenced": "Referenced",
        "norm_score": "Score: {percent}%",
    },
}

CONFIDENCE_LABELS = {
    "de": {
        "coverage": "Quellenabdeckung",
        "coverage_desc": "{chunks} relevante Abschnitte aus {docs} Dokument(en).",
        "diversity": "Quellenvielfalt",
        "diversity_desc": "{docs} unterschiedliche Quelldokumente.",
        "quality": "Dokumentqualität",
        "quality_desc": "Durchschnittliche Relevanz: {percent}%",
        "legal": "Rechtliche Absicherung",
        "legal_desc": "{norms} Normen, {case_law} Judikatur-Treffer.",
        "contradictions": "Widerspruchsfreiheit",
        "contradictions_desc": "{count} Widerspruch/Widersprüche in den Quellen.",
        "contradictions_none": "Keine Widersprüche erkannt.",
        "richness": "Kontexttiefe",
        "richness_desc": "{memories} Memories, {findings} Findings{collective}.",
        "richness_collective": ", kollektives Wissen",
        "warn_no_chunks": "Keine relevanten Dokumentabschnitte gefunden, Antwort basiert auf allgemeinem Wissen.",
        "warn_no_citations": "Keine Dokumentzitate erkannt.",
        "warn_contradictions": "Mehrere Widersprüche in den Quellen, Antwort könnte ungenau sein.",
        "warn_low_quality": "Niedrige Dokumentqualität, extrahierter Text möglicherweise fehlerhaft.",
        "warn_no_legal": "Keine Norm- oder Judikatur-Zitate, rechtliche Absicherung fehlt.",
    },
    "en": {
        "coverage": "Source coverage",
        "coverage_desc": "{chunks} relevant excerpts from {docs} document(s).",
        "diversity": "Source diversity",
        "diversity_desc": "{docs} distinct source documents.",
        "quality": "Document quality",
        "quality_desc": "Average relevance: {percent}%",
        "legal": "Legal backing",
        "legal_desc": "{norms} norms, {case_law} case-law hits.",
        "contradictions": "Consistency",
        "contradictions_desc": "{count} contradiction(s) in the sources.",
        "contradictions_none": "No contradictions detected.",
        "richness": "Context depth",
        "richness_desc": "{memories} memories, {findings} findings{collective}.",
        "richness_collective": ", collective knowledge",
        "warn_no_chunks": "No relevant document excerpts found; the answer is based on general knowledge.",
        "warn_no_citations": "No document citations detected.",
        "warn_contradictions": "Several contradictions in the sources; the answer may be inaccurate.",
        "warn_low_quality": "Low document quality; extracted text may be faulty.",
        "warn_no_legal": "No norm or case-law citations; legal backing is missing.",
    },
}

# =============================================================================
# Copilot Memory
# =============================================================================

MEMORY_LABELS = {
    "de": {
        "block_header": "\n═══ COPILOT-GEDÄCHTNIS ═══",
        "section_instructions": "── Anweisungen & Präferenzen ──",
        "section_facts": "── Bekannte Fakten ──",
        "section_strategies": "── Strategien & Regeln ──",
        "section_deadlines": "── Fristen & Termine ──",
        "section_cross_checks": "── Cross-Check Ergebnisse ──",
        "scopes": {"session": "Sitzung", "case": "Fall", "workspace": "Kanzlei"},
        "categories": {
            "fact": "Fakt",
            "preference": "Präferenz",
            "rule": "Regel",
            "strategy": "Strategie",
            "entity": "Person/Entität",
            "deadline": "Frist/Termin",
            "contradiction": "Widerspruch",
            "instruction": "Anweisung",
        },
    },
    "en": {
        "block_header": "\n═══ COPILOT MEMORY ═══",
        "section_instructions": "── Instructions & preferences ──",
        "section_facts": "── Known facts ──",
        "section_strategies": "── Strategies & rules ──",
        "section_deadlines": "── Deadlines & dates ──",
        "section_cross_checks": "── Cross-check results ──",
        "scopes": {"session": "Session", "case": "Case", "workspace": "Firm"},
        "categories": {
            "fact": "Fact",
            "preference": "Preference",
            "rule": "Rule",
            "strategy": "Strategy",
            "entity": "Person/entity",
            "deadline": "Deadline/date",
            "contradiction": "Contradiction",
            "instruction": "Instruction",
        },
    },
}


def get_labels(table: dict, language: str) -> dict:
    """Look up a language entry in a label table, falling back to German."""
    return table.get(language, table["de"])
