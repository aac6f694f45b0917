"""
Intent store loading: graceful degradation, defaults, duplicate handling.
"""

from pathlib import Path

import pytest

from conftest import write_intents
from intent_store import (
    Intent, IntentStatus, IntentStore, StaticIntentStore,
    find_intent_by_id, load_active_intents, parse_intents,
)


class TestLoadActiveIntents:

    def test_loads_all_entries_in_source_order(self, workspace):
        intents = load_active_intents(workspace)
        assert [i.id for i in intents] == ["INT-001", "INT-002", "INT-003", "INT-004", "INT-005"]

    def test_fields_are_parsed(self, workspace):
        intent = find_intent_by_id(workspace, "INT-001")
        assert intent is not None
        assert intent.name == "JWT authentication"
        assert intent.status == IntentStatus.IN_PROGRESS.value
        assert intent.owned_scope == ["src/auth/**"]
        assert intent.constraints == ["Keep the public login API stable"]
        assert intent.acceptance_criteria == ["All auth tests pass"]

    def test_missing_optional_fields_default_to_empty(self, workspace):
        intent = find_intent_by_id(workspace, "INT-003")
        assert intent.constraints == []
        assert intent.acceptance_criteria == []

    def test_missing_file_yields_no_intents(self, tmp_path):
        assert load_active_intents(tmp_path) == []
        assert find_intent_by_id(tmp_path, "INT-001") is None

    def test_invalid_yaml_yields_no_intents(self, tmp_path):
        write_intents(tmp_path, "active_intents: [unclosed\n  - : :")
        assert load_active_intents(tmp_path) == []

    def test_wrong_shape_yields_no_intents(self, tmp_path):
        write_intents(tmp_path, "- just\n- a\n- list\n")
        assert load_active_intents(tmp_path) == []

        write_intents(tmp_path, "active_intents: not-a-list\n")
        assert load_active_intents(tmp_path) == []

    def test_empty_file_yields_no_intents(self, tmp_path):
        write_intents(tmp_path, "")
        assert load_active_intents(tmp_path) == []

    def test_unreadable_bytes_yield_no_intents(self, tmp_path):
        path = write_intents(tmp_path, "")
        path.write_bytes(b"\xff\xfe\x00garbage")
        assert load_active_intents(tmp_path) == []

    def test_deleted_file_degrades_to_empty(self, workspace):
        IntentStore(workspace).source_path.unlink()
        assert load_active_intents(workspace) == []


class TestParseIntents:

    def test_unknown_fields_ignored(self):
        intents = parse_intents(
            "active_intents:\n"
            "  - id: X\n"
            "    name: x\n"
            "    status: PENDING\n"
            "    owned_scope: [a/**]\n"
            "    owner: someone\n"
            "    priority: 3\n"
        )
        assert intents == [Intent(id="X", name="x", status="PENDING", owned_scope=["a/**"])]

    def test_malformed_entries_skipped(self):
        intents = parse_intents(
            "active_intents:\n"
            "  - just a string\n"
            "  - name: no id\n"
            "  - id: OK-1\n"
            "    name: fine\n"
            "    status: PENDING\n"
        )
        assert [i.id for i in intents] == ["OK-1"]

    def test_scalar_scope_coerced_to_list(self):
        intents = parse_intents(
            "active_intents:\n"
            "  - id: S\n"
            "    name: s\n"
            "    status: IN_PROGRESS\n"
            "    owned_scope: src/**\n"
        )
        assert intents[0].owned_scope == ["src/**"]

    def test_missing_scope_is_unrestricted(self):
        intents = parse_intents("active_intents:\n  - id: U\n    name: u\n    status: PENDING\n")
        assert intents[0].owned_scope == []
        assert intents[0].is_unrestricted

    def test_status_normalized_to_upper_case(self):
        intents = parse_intents("active_intents:\n  - id: L\n    name: l\n    status: in_progress\n")
        assert intents[0].status == "IN_PROGRESS"
        assert not intents[0].is_terminal


class TestDuplicates:

    DUPLICATED = (
        "active_intents:\n"
        "  - id: DUP\n"
        "    name: first\n"
        "    status: IN_PROGRESS\n"
        "    owned_scope: [first/**]\n"
        "  - id: DUP\n"
        "    name: second\n"
        "    status: IN_PROGRESS\n"
        "    owned_scope: [second/**]\n"
    )

    def test_first_match_wins(self, tmp_path):
        write_intents(tmp_path, self.DUPLICATED)
        intent = find_intent_by_id(tmp_path, "DUP")
        assert intent.name == "first"
        assert intent.owned_scope == ["first/**"]

    def test_duplicates_are_logged(self, tmp_path, isolated_env):
        write_intents(tmp_path, self.DUPLICATED)
        load_active_intents(tmp_path)
        log_text = (Path(isolated_env) / "governance.log").read_text(encoding="utf-8")
        assert "Duplicate intent id 'DUP'" in log_text

    def test_list_ids_is_distinct(self, tmp_path):
        write_intents(tmp_path, self.DUPLICATED)
        assert IntentStore(tmp_path).list_ids() == ["DUP"]


class TestIntentStatus:

    def test_terminal_statuses(self):
        for status in ("COMPLETED", "ABANDONED", "CANCELLED"):
            assert Intent(id="t", name="t", status=status).is_terminal

    @pytest.mark.parametrize("status", ["PENDING", "IN_PROGRESS", "BLOCKED", "ON_HOLD"])
    def test_other_statuses_are_not_terminal(self, status):
        assert not Intent(id="x", name="x", status=status).is_terminal


class TestIntentStore:

    def test_store_reads_live(self, workspace):
        store = IntentStore(workspace)
        assert store.find_by_id("INT-001").owned_scope == ["src/auth/**"]

        write_intents(workspace, (
            "active_intents:\n"
            "  - id: INT-001\n"
            "    name: JWT authentication\n"
            "    status: IN_PROGRESS\n"
            "    owned_scope: [src/auth/**, src/session/**]\n"
        ))
        assert store.find_by_id("INT-001").owned_scope == ["src/auth/**", "src/session/**"]

    def test_static_store(self):
        store = StaticIntentStore([Intent(id="A", name="a", status="PENDING")])
        assert store.find_by_id("A").name == "a"
        assert store.find_by_id("B") is None
        assert [i.id for i in store.load_all()] == ["A"]

    def test_to_dict_round_trip_fields(self, intent_store):
        d = intent_store.find_by_id("INT-003").to_dict()
        assert d == {
            "id": "INT-003",
            "name": "Middleware tidy-up",
            "status": "PENDING",
            "owned_scope": ["src/mw/*"],
            "constraints": [],
            "acceptance_criteria": [],
        }
