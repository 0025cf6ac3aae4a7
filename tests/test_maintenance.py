"""
Tests for catalog drift detection and repair.
"""

import json
from datetime import datetime

import pytest

from studyrepo.core.maintenance import (
    MaintenanceReport,
    content_type_of,
    detect_catalog_drift,
    display_name_from_file,
    reconcile_catalogs,
)
from studyrepo.core.store import FileStore


def write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


def read(path):
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


class TestMaintenanceReport:
    """Test maintenance report functionality."""

    def test_report_to_dict(self):
        report = MaintenanceReport(
            operation="test_op",
            started_at=datetime(2025, 1, 1, 12, 0, 0),
            completed_at=datetime(2025, 1, 1, 12, 1, 0),
            issues_found=1,
            metadata={"key": "value"}
        )

        data = report.to_dict()
        assert data["operation"] == "test_op"
        assert data["issues_found"] == 1
        assert data["completed_at"] == "2025-01-01T12:01:00"
        assert data["metadata"]["key"] == "value"

    def test_incomplete_report_has_no_completed_at(self):
        report = MaintenanceReport(operation="op", started_at=datetime(2025, 1, 1))
        assert "completed_at" not in report.to_dict()
        assert report.actions_taken == []


class TestFileNameHelpers:
    """Test recovery of type and name from dataset file names."""

    @pytest.mark.parametrize("file_name,content_type", [
        ("flashcard_econ_w1.json", "flashcard"),
        ("decoder_econ_d1.json", "decoder"),
        ("practice_stats_p1.json", "practice"),
        ("notes.json", None),
    ])
    def test_content_type_of(self, file_name, content_type):
        assert content_type_of(file_name) == content_type

    def test_display_name_from_file(self):
        assert display_name_from_file("flashcard_econ_w1.json", "flashcard") == "econ_w1"


class TestDriftDetection:
    """Test drift findings across personal and shared scopes."""

    def test_consistent_store_has_no_drift(self, seeded_store):
        seeded_store.upsert_dataset("alice", "flashcard", "flashcard_econ_w1.json", [], "Week 1", "econ")
        seeded_store.publish_to_shared("demo", "econ", "flashcard", "flashcard_econ_w1.json", [], "Week 1")
        assert detect_catalog_drift(seeded_store) == []
        report = reconcile_catalogs(seeded_store)
        assert report.issues_found == 0
        assert report.errors == []

    def test_finding_types(self, seeded_store):
        write(seeded_store.workspace_dir("alice") / "flashcard_econ_lost.json", [])
        write(seeded_store.workspace_dir("alice") / "notes.json", {})
        seeded_store.upsert_dataset("bob", "decoder", "decoder_econ_gone.json", [], "Gone", "econ")
        (seeded_store.workspace_dir("bob") / "decoder_econ_gone.json").unlink()

        findings = {(f.type, f.file) for f in detect_catalog_drift(seeded_store)}
        assert findings == {
            ("orphaned_body", "flashcard_econ_lost.json"),
            ("unclassified_body", "notes.json"),
            ("dangling_entry", "decoder_econ_gone.json"),
        }

    def test_check_mode_changes_nothing(self, seeded_store):
        write(seeded_store.workspace_dir("alice") / "flashcard_econ_lost.json", [])
        report = reconcile_catalogs(seeded_store, apply=False)
        assert report.issues_found == 1
        assert report.issues_resolved == 0
        assert report.metadata["mode"] == "check"
        assert read(seeded_store.workspace_dir("alice") / "flashcard_topics.json") == []


class TestReconcile:
    """Test drift repair."""

    def test_orphaned_personal_body_is_indexed(self, seeded_store):
        write(seeded_store.workspace_dir("alice") / "flashcard_econ_lost.json", [])
        report = reconcile_catalogs(seeded_store, apply=True)

        assert report.issues_resolved == 1
        index = read(seeded_store.workspace_dir("alice") / "flashcard_topics.json")
        assert [(e["file"], e["name"], e["subject"]) for e in index] == [("flashcard_econ_lost.json", "econ_lost", "")]
        assert detect_catalog_drift(seeded_store) == []

    def test_orphaned_body_named_like_topics_is_indexed(self, seeded_store):
        write(seeded_store.workspace_dir("alice") / "flashcard_econ_week_topics.json", [])
        findings = detect_catalog_drift(seeded_store)
        assert [(f.type, f.file) for f in findings] == [("orphaned_body", "flashcard_econ_week_topics.json")]

        report = reconcile_catalogs(seeded_store, apply=True)
        assert report.issues_resolved == 1
        index = read(seeded_store.workspace_dir("alice") / "flashcard_topics.json")
        assert [e["file"] for e in index] == ["flashcard_econ_week_topics.json"]

    def test_orphaned_shared_body_gets_subject(self, seeded_store):
        shared_dir = seeded_store.shared_dir("demo", "stats")
        shared_dir.mkdir(parents=True)
        write(shared_dir / "practice_stats_p1.json", [])

        reconcile_catalogs(seeded_store, apply=True)
        index = read(shared_dir / "practice_topics.json")
        assert index[0]["subject"] == "stats"

    def test_dangling_entry_is_dropped(self, seeded_store):
        seeded_store.upsert_dataset("alice", "decoder", "decoder_econ_gone.json", [], "Gone", "econ")
        (seeded_store.workspace_dir("alice") / "decoder_econ_gone.json").unlink()

        report = reconcile_catalogs(seeded_store, apply=True)
        assert report.metadata["dangling_entries"] == 1
        assert read(seeded_store.workspace_dir("alice") / "decoder_topics.json") == []

    def test_unclassified_body_is_left_alone(self, seeded_store):
        write(seeded_store.workspace_dir("alice") / "notes.json", {})
        report = reconcile_catalogs(seeded_store, apply=True)
        assert report.issues_resolved == 0
        assert any("notes.json" in rec for rec in report.recommendations)
        assert (seeded_store.workspace_dir("alice") / "notes.json").exists()

    def test_empty_content_root(self, tmp_path):
        report = reconcile_catalogs(FileStore(tmp_path / "missing"), apply=True)
        assert report.issues_found == 0


class TestFormatReport:
    """Test the command-line report formatting."""

    def test_format_report(self, seeded_store):
        from scripts.maintenance import format_report

        write(seeded_store.workspace_dir("alice") / "flashcard_econ_lost.json", [])
        text = format_report(reconcile_catalogs(seeded_store))
        assert "Operation: reconcile_catalogs" in text
        assert "DRIFT FOUND" in text
        assert "orphaned_body: alice/flashcard_econ_lost.json" in text

        text = format_report(reconcile_catalogs(seeded_store, apply=True))
        assert "Status: SUCCESS" in text
        assert "Re-indexed alice/flashcard_econ_lost.json" in text
