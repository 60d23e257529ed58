"""
Tests for execution/case_copilot/memory.py

Covers: instruction parsing, category and scope inference, remember/forget
        handling, scope visibility, relevance ranking and the prompt block.
"""

import pytest


WS = "ws:kanzlei"
CASE = "case:mueller"


def _memory(memory_id, content, scope="case", category="fact", title=None, **kwargs):
    from execution.case_copilot.memory import CopilotMemory
    values = dict(
        id=memory_id,
        workspace_id=WS,
        scope=scope,
        category=category,
        title=title or content[:80],
        content=content,
        case_id=CASE if scope == "case" else None,
    )
    values.update(kwargs)
    return CopilotMemory(**values)


# ---------------------------------------------------------------------------
# Parsing and inference
# ---------------------------------------------------------------------------

class TestParseMemoryInstruction:
    @pytest.mark.parametrize("message,expected", [
        ("Merke dir: Mandant bevorzugt formelle Ansprache", ("remember", "Mandant bevorzugt formelle Ansprache")),
        ("remember: client prefers email", ("remember", "client prefers email")),
        ("Wichtig: Zeuge Schmidt ist befangen", ("remember", "Zeuge Schmidt ist befangen")),
        ("/merke Frist beachten", ("remember", "Frist beachten")),
        ("Vergiss Ansprache", ("forget", "Ansprache")),
        ("Lösche Erinnerung: Ansprache", ("forget", "Ansprache")),
        ("forget: email", ("forget", "email")),
    ])
    def test_instructions(self, message, expected):
        from execution.case_copilot.memory import parse_memory_instruction
        assert parse_memory_instruction(message) == expected

    @pytest.mark.parametrize("message", [
        "Wie ist die Beweislage?",
        "Merke dir:",
        "Der Mandant merkt sich alles",
    ])
    def test_not_an_instruction(self, message):
        from execution.case_copilot.memory import parse_memory_instruction
        assert parse_memory_instruction(message) == (None, "")


class TestInference:
    @pytest.mark.parametrize("content,category", [
        ("Mandant bevorzugt formelle Ansprache", "preference"),
        ("Grundsatz: keine Vergleiche unter 10.000", "rule"),
        ("Strategie: Vergleich anstreben", "strategy"),
        ("Frist zur Stellungnahme läuft am 3.4.", "deadline"),
        ("Zeugenaussage im Widerspruch zum Gutachten", "contradiction"),
        ("Mandant heißt Anna Müller", "entity"),
        ("Aktenzeichen lautet 12 O 345/24", "instruction"),
    ])
    def test_category(self, content, category):
        from execution.case_copilot.memory import infer_category
        assert infer_category(content) == category

    def test_scope(self):
        from execution.case_copilot.memory import infer_scope
        assert infer_scope("Immer Sie-Form verwenden", CASE) == "workspace"
        assert infer_scope("Zeuge ist unzuverlässig", CASE) == "case"
        assert infer_scope("Zeuge ist unzuverlässig", None) == "workspace"


# ---------------------------------------------------------------------------
# Instruction handling
# ---------------------------------------------------------------------------

class TestHandleInstruction:
    """Tests for InMemoryMemoryProvider.handle_instruction."""

    def test_remember(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        provider = InMemoryMemoryProvider()
        result = provider.handle_instruction(WS, CASE, None, "Merke dir: Mandant bevorzugt formelle Ansprache")
        assert result.handled is True
        assert result.response == 'Gespeichert (Fall, Präferenz): "Mandant bevorzugt formelle Ansprache"'
        stored = provider.active(WS)
        assert [m.id for m in stored] == [result.memory_id]
        assert stored[0].scope == "case"
        assert stored[0].case_id == CASE

    def test_remember_workspace_scope(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        provider = InMemoryMemoryProvider()
        result = provider.handle_instruction(WS, CASE, None, "remember: always cite the BGH first")
        assert result.response.startswith("Gespeichert (Kanzlei, ")

    def test_forget(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        provider = InMemoryMemoryProvider()
        provider.handle_instruction(WS, CASE, None, "Merke dir: Mandant bevorzugt formelle Ansprache")
        result = provider.handle_instruction(WS, CASE, None, "Vergiss formelle Ansprache")
        assert result.handled is True
        assert result.response == "1 Erinnerung(en) gelöscht."
        assert provider.active(WS) == []

    def test_forget_not_found(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        provider = InMemoryMemoryProvider()
        provider.add(_memory("mem:1", "Zeuge Schmidt stand an der Kreuzung"))
        result = provider.handle_instruction(WS, CASE, None, "Vergiss Kaffee")
        assert result.response == 'Keine passende Erinnerung gefunden für: "Kaffee"'
        assert len(provider.active(WS)) == 1

    def test_ordinary_message_not_handled(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        result = InMemoryMemoryProvider().handle_instruction(WS, CASE, None, "Wie ist die Beweislage?")
        assert result.handled is False
        assert result.response is None

    def test_english_labels(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        provider = InMemoryMemoryProvider(language="en")
        result = provider.handle_instruction(WS, None, None, "remember: client prefers email")
        assert result.response.startswith("Saved (Firm, Preference)")


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

class TestFindRelevant:
    """Tests for InMemoryMemoryProvider.find_relevant."""

    def test_scope_visibility(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        provider = InMemoryMemoryProvider()
        provider.add(_memory("mem:ws", "Immer Sie-Form", scope="workspace", category="instruction"))
        provider.add(_memory("mem:case", "Fallnotiz", category="instruction"))
        provider.add(_memory("mem:other", "Anderer Fall", category="instruction", case_id="case:other"))
        provider.add(_memory("mem:session", "Sitzungsnotiz", scope="session", category="instruction",
                             session_id="session:1"))
        provider.add(_memory("mem:foreign", "Fremde Kanzlei", scope="workspace", category="instruction",
                             workspace_id="ws:other"))

        ids = {m.id for m in provider.find_relevant(WS, CASE, "session:1", "Beweislage")}
        assert ids == {"mem:ws", "mem:case", "mem:session"}
        ids = {m.id for m in provider.find_relevant(WS, None, None, "Beweislage")}
        assert ids == {"mem:ws"}

    def test_unrelated_facts_dropped(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        provider = InMemoryMemoryProvider()
        provider.add(_memory("mem:witness", "Zeuge Schmidt stand an der Kreuzung"))
        provider.add(_memory("mem:contract", "Kaufvertrag unterschrieben"))
        provider.add(_memory("mem:style", "Sie-Form verwenden", category="instruction"))

        ids = [m.id for m in provider.find_relevant(WS, CASE, None, "Was sagte Zeuge Schmidt?")]
        assert "mem:witness" in ids
        assert "mem:style" in ids
        assert "mem:contract" not in ids

    def test_token_less_query_returns_all_visible(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        provider = InMemoryMemoryProvider()
        provider.add(_memory("mem:contract", "Kaufvertrag unterschrieben"))
        assert [m.id for m in provider.find_relevant(WS, CASE, None, "?!")] == ["mem:contract"]

    def test_capped(self):
        from execution.case_copilot.memory import MAX_MEMORIES, InMemoryMemoryProvider
        provider = InMemoryMemoryProvider()
        for i in range(MAX_MEMORIES + 5):
            provider.add(_memory(f"mem:{i}", f"Anweisung {i}", category="instruction"))
        assert len(provider.find_relevant(WS, CASE, None, "Beweislage")) == MAX_MEMORIES

    def test_scope_boost(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider, memory_tokens
        provider = InMemoryMemoryProvider()
        query = memory_tokens("Zeuge Schmidt")
        session = _memory("mem:s", "Zeuge Schmidt", scope="session", session_id="session:1")
        workspace = _memory("mem:w", "Zeuge Schmidt", scope="workspace")
        assert provider.score(session, query) > provider.score(workspace, query)


class TestBuildContextBlock:
    """Tests for InMemoryMemoryProvider.build_context_block."""

    def test_block_sections(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        provider = InMemoryMemoryProvider()
        provider.add(_memory("mem:style", "Immer Sie-Form verwenden", scope="workspace", category="instruction"))
        provider.add(_memory("mem:witness", "Zeuge Schmidt stand an der Kreuzung", title="Zeuge Schmidt"))

        context = provider.build_context_block(WS, CASE, None, "Was sagte Zeuge Schmidt?")
        assert context.block.startswith("\n═══ COPILOT-GEDÄCHTNIS ═══\n── Anweisungen & Präferenzen ──")
        assert "- [Kanzlei] Immer Sie-Form verwenden" in context.block
        assert "── Bekannte Fakten ──\n- Zeuge Schmidt: Zeuge Schmidt stand an der Kreuzung" in context.block
        assert set(context.used_memory_ids) == {"mem:style", "mem:witness"}

    def test_usage_tracked(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        provider = InMemoryMemoryProvider()
        memory = provider.add(_memory("mem:style", "Sie-Form verwenden", category="instruction"))
        provider.build_context_block(WS, CASE, None, "Schriftsatz")
        provider.build_context_block(WS, CASE, None, "Schriftsatz")
        assert memory.usage_count == 2
        assert memory.last_used_at is not None

    def test_empty(self):
        from execution.case_copilot.memory import InMemoryMemoryProvider
        context = InMemoryMemoryProvider().build_context_block(WS, CASE, None, "Schriftsatz")
        assert context.block == ""
        assert context.used_memory_ids == []
