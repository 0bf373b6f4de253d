"""Tests for version arithmetic and history-ledger application."""

from __future__ import annotations

import pytest
import yaml

from evospec.errors import ConfigurationError, ExtractionError
from evospec.versioning.evolution import (
    BumpKind,
    VersionEntry,
    VersionTransition,
    apply_evolution,
    build_entry,
    bump_version,
    parse_version,
    plan_transition,
    read_current_version,
    read_history,
)


class TestBumpVersion:
    @pytest.mark.parametrize(
        "kind, expected",
        [
            (BumpKind.MAJOR, "2.0.0"),
            (BumpKind.MINOR, "1.3.0"),
            (BumpKind.PATCH, "1.2.4"),
            (BumpKind.NONE, "1.2.3"),
        ],
    )
    def test_bump_from_1_2_3(self, kind, expected):
        assert bump_version("1.2.3", kind) == expected

    def test_none_kind_is_no_bump(self):
        assert bump_version("4.5.6", None) == "4.5.6"

    def test_accepts_string_kind(self):
        assert bump_version("0.9.9", "minor") == "0.10.0"

    def test_v_prefix_is_normalised(self):
        assert bump_version("v1.0.0", BumpKind.PATCH) == "1.0.1"

    @pytest.mark.parametrize("bad", ["", "1.2", "1.2.3.4", "one.two.three", "1.2.x", None])
    def test_malformed_version_is_configuration_error(self, bad):
        with pytest.raises(ConfigurationError):
            parse_version(bad)


class TestReadDocument:
    def test_reads_current_version(self, valid_spec):
        assert read_current_version(valid_spec) == "1.0.0"

    def test_falls_back_to_last_history_entry(self, valid_doc):
        del valid_doc["project"]["versioning"]
        text = yaml.safe_dump(valid_doc, sort_keys=False)
        assert read_current_version(text) == "1.0.0"

    def test_missing_version_everywhere(self, valid_doc):
        del valid_doc["project"]["versioning"]
        valid_doc["history"] = []
        with pytest.raises(ConfigurationError):
            read_current_version(yaml.safe_dump(valid_doc))

    def test_malformed_current_version(self, valid_spec):
        broken = valid_spec.replace('current: "1.0.0"', 'current: "latest"')
        with pytest.raises(ConfigurationError, match="Malformed"):
            read_current_version(broken)

    def test_broken_yaml_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            read_current_version("project: [unclosed")

    def test_read_history(self, valid_spec):
        history = read_history(valid_spec)
        assert len(history) == 1
        assert history[0]["version"] == "1.0.0"


class TestTransitionAndEntry:
    def test_plan_transition(self, valid_spec):
        t = plan_transition(valid_spec, BumpKind.MAJOR)
        assert (t.previous, t.new, t.bump) == ("1.0.0", "2.0.0", BumpKind.MAJOR)
        assert t.changed is True

    def test_plan_transition_without_bump(self, valid_spec):
        t = plan_transition(valid_spec, None)
        assert t.new == t.previous
        assert t.changed is False

    def test_entry_records_change(self):
        t = VersionTransition(previous="1.2.3", new="1.3.0", bump=BumpKind.MINOR)
        entry = build_entry(t, "  Add invoices  ", notes="billing")
        assert entry.to_document() == {
            "version": "1.3.0",
            "basedOn": "1.2.3",
            "changes": [{"description": "Add invoices"}],
            "migrations": [],
            "notes": "billing",
        }

    def test_empty_change_gives_empty_changes(self):
        t = VersionTransition(previous="1.0.0", new="1.0.0", bump=BumpKind.NONE)
        assert build_entry(t, "").changes == []

    def test_entry_is_frozen(self):
        entry = VersionEntry(version="1.0.0", basedOn=None)
        with pytest.raises(Exception):
            entry.version = "2.0.0"


class TestApplyEvolution:
    def test_sets_version_and_appends_exactly_one_entry(self, valid_doc):
        original = list(valid_doc["history"])
        t = VersionTransition(previous="1.0.0", new="1.1.0", bump=BumpKind.MINOR)
        text = apply_evolution(valid_doc, original, t, build_entry(t, "Add carts"))
        out = yaml.safe_load(text)
        assert out["project"]["versioning"]["current"] == "1.1.0"
        assert len(out["history"]) == len(original) + 1
        assert out["history"][:-1] == original
        assert out["history"][-1]["basedOn"] == "1.0.0"
        assert out["domain"] == valid_doc["domain"]

    def test_model_edits_to_history_are_discarded(self, valid_doc):
        original = list(valid_doc["history"])
        candidate = dict(valid_doc)
        candidate["history"] = [{"version": "9.9.9", "basedOn": None}]
        t = VersionTransition(previous="1.0.0", new="1.0.1", bump=BumpKind.PATCH)
        out = yaml.safe_load(apply_evolution(candidate, original, t, build_entry(t, "fix")))
        assert [h["version"] for h in out["history"]] == ["1.0.0", "1.0.1"]

    def test_candidate_is_not_mutated(self, valid_doc):
        before = yaml.safe_dump(valid_doc)
        t = VersionTransition(previous="1.0.0", new="2.0.0", bump=BumpKind.MAJOR)
        apply_evolution(valid_doc, list(valid_doc["history"]), t, build_entry(t, "x"))
        assert yaml.safe_dump(valid_doc) == before

    def test_missing_project_is_extraction_error(self):
        t = VersionTransition(previous="1.0.0", new="1.1.0", bump=BumpKind.MINOR)
        with pytest.raises(ExtractionError):
            apply_evolution({"domain": {}}, [], t, build_entry(t, "x"))
