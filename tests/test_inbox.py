"""
Tests for dataset submission and the inbox moderation state machine.
"""

import json
import threading
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from studyrepo.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    UnavailableError,
    UnprocessableContentError,
)
from studyrepo.core.inbox import InboxWorkflow


@pytest.fixture
def workflow(seeded_store):
    return InboxWorkflow(seeded_store)


@pytest.fixture
def submitted(workflow, flashcards):
    """A pending flashcard submission by alice under Economics."""
    return workflow.submit("alice", "flashcard", "Economics", "Week 1", flashcards)


def read(path):
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


class TestSubmit:
    """Test the audit gate and what a submission writes."""

    def test_valid_submission(self, workflow, seeded_store):
        result = workflow.submit("alice", "flashcard", "Economics", "Week 1", [{"question": "2+2?", "answer": "4"}])

        assert result.report.overall_pass is True
        assert result.file_name == "flashcard_economics_week_1.json"
        assert seeded_store.get_dataset("alice", result.file_name) == [{"question": "2+2?", "answer": "4"}]

        record = result.record
        assert record.status == "pending"
        assert record.tenant_id == "alice"
        assert record.school_id == "demo"
        assert record.subject_id == "econ"
        assert record.subject_label == "Economics"
        assert record.id.startswith("inbox_")
        assert [r.id for r in workflow.list_inbox()] == [record.id]

        body = result.to_dict()
        assert body["ok"] is True
        assert body["inbox"]["status"] == "pending"
        assert body["audit"]["overallPass"] is True

    def test_display_name_ending_in_topics(self, workflow, seeded_store, flashcards):
        result = workflow.submit("alice", "flashcard", "Economics", "Key Topics", flashcards)
        assert result.file_name == "flashcard_economics_key_topics.json"
        assert seeded_store.get_dataset("alice", result.file_name) == flashcards
        assert result.record.status == "pending"

    def test_wrapped_input_is_stored_as_items(self, workflow, seeded_store, flashcards):
        result = workflow.submit("alice", "flashcard", "econ", "Wrapped", {"cards": flashcards})
        assert seeded_store.get_dataset("alice", result.file_name) == flashcards
        assert result.record.input_shape == "wrapped"

    def test_unregistered_subject_label_is_kept(self, workflow):
        result = workflow.submit("alice", "flashcard", "Astronomy", "Stars", [{"question": "Sun?", "answer": "star"}])
        assert result.record.subject_id is None
        assert result.record.subject_label == "Astronomy"

    def test_failed_audit_writes_nothing(self, workflow, seeded_store):
        with pytest.raises(UnprocessableContentError) as exc_info:
            workflow.submit("alice", "flashcard", "econ", "Broken", [{"answer": "no question"}])

        body = exc_info.value.to_dict()
        assert body["kind"] == "UnprocessableContent"
        assert body["audit"]["overallPass"] is False
        assert body["issues"][0]["ruleId"] == "flashcard.question"
        assert workflow.list_inbox() == []
        assert seeded_store.list_catalog("alice", "flashcard") == []
        assert not (seeded_store.workspace_dir("alice") / "flashcard_econ_broken.json").exists()

    def test_resubmission_replaces_body_and_keeps_entry(self, workflow, seeded_store, flashcards):
        first = workflow.submit("alice", "flashcard", "econ", "Week 1", flashcards)
        second = workflow.submit("alice", "flashcard", "econ", "Week 1", flashcards[:1])
        assert first.file_name == second.file_name
        assert seeded_store.get_dataset("alice", first.file_name) == flashcards[:1]
        assert len(seeded_store.list_catalog("alice", "flashcard")) == 1
        assert len(workflow.list_inbox()) == 2

    @pytest.mark.parametrize("content_type,name", [("essay", "X"), ("flashcard", "  ")])
    def test_invalid_input(self, workflow, flashcards, content_type, name):
        with pytest.raises(InvalidInputError):
            workflow.submit("alice", content_type, "econ", name, flashcards)

    def test_scalar_body_is_invalid_input(self, workflow):
        with pytest.raises(InvalidInputError):
            workflow.submit("alice", "flashcard", "econ", "Scalar", "just text")

    def test_size_limit(self, workflow, flashcards, monkeypatch):
        monkeypatch.setenv("MAX_UPLOAD_BYTES", "10")
        with pytest.raises(InvalidInputError):
            workflow.submit("alice", "flashcard", "econ", "Big", flashcards)

    def test_inactive_or_unknown_tenant(self, workflow, seeded_store, flashcards):
        seeded_store.deactivate_workspace("bob")
        with pytest.raises(ForbiddenError):
            workflow.submit("bob", "flashcard", "econ", "W", flashcards)
        with pytest.raises(NotFoundError):
            workflow.submit("nobody", "flashcard", "econ", "W", flashcards)

    def test_inbox_write_failure_surfaces_unavailable(self, workflow, seeded_store, flashcards):
        """No record is created when the inbox index cannot be written."""
        with patch.object(seeded_store, "append_inbox_record", side_effect=UnavailableError("disk full")):
            with pytest.raises(UnavailableError):
                workflow.submit("alice", "flashcard", "econ", "W", flashcards)
        assert workflow.list_inbox() == []


class TestListAndDetail:
    """Test inbox listing and ownership of details."""

    def test_newest_first_and_status_filter(self, workflow, flashcards):
        with patch("studyrepo.core.inbox.utc_now", return_value=datetime(2024, 1, 1, tzinfo=timezone.utc)):
            first = workflow.submit("alice", "flashcard", "econ", "One", flashcards)
        with patch("studyrepo.core.inbox.utc_now", return_value=datetime(2024, 1, 2, tzinfo=timezone.utc)):
            second = workflow.submit("bob", "flashcard", "econ", "Two", flashcards)
        workflow.reject(first.record.id, "alice")

        assert [r.id for r in workflow.list_inbox()][0] == second.record.id
        assert [r.id for r in workflow.list_inbox("pending")] == [second.record.id]
        assert [r.id for r in workflow.list_inbox("rejected")] == [first.record.id]
        with pytest.raises(InvalidInputError):
            workflow.list_inbox("archived")

    def test_detail_owner_only(self, workflow, submitted, flashcards):
        detail = workflow.get_detail(submitted.record.id, "alice")
        assert detail["body"] == flashcards
        with pytest.raises(ForbiddenError):
            workflow.get_detail(submitted.record.id, "bob")
        with pytest.raises(NotFoundError):
            workflow.get_detail("inbox_missing", "alice")


class TestTransitions:
    """Test the pending -> terminal state machine."""

    def test_move_to_user(self, workflow, submitted):
        record = workflow.move_to_user(submitted.record.id, "alice")
        assert record.status == "moved_to_user"
        assert record.moved_target == "user/alice"
        assert record.moved_at is not None

    def test_move_to_shared(self, workflow, seeded_store, submitted, flashcards):
        record = workflow.move_to_shared(submitted.record.id, "alice")
        assert record.status == "moved_to_shared"
        assert record.moved_target == "shared/demo/econ"

        shared_dir = seeded_store.shared_dir("demo", "econ")
        assert read(shared_dir / submitted.file_name) == flashcards
        assert [e["file"] for e in read(shared_dir / "flashcard_topics.json")] == [submitted.file_name]
        assert seeded_store.get_dataset("bob", submitted.file_name) == flashcards

    def test_reject(self, workflow, submitted):
        record = workflow.reject(submitted.record.id, " Alice ")
        assert record.status == "rejected"
        assert record.rejected_by == "alice"
        assert record.rejected_at is not None
        assert record.moved_target is None

    @pytest.mark.parametrize("second_action", ["move_to_user", "move_to_shared", "reject"])
    def test_second_transition_conflicts(self, workflow, submitted, second_action):
        workflow.reject(submitted.record.id, "alice")
        with pytest.raises(ConflictError):
            getattr(workflow, second_action)(submitted.record.id, "alice")
        assert workflow.store.get_inbox_record(submitted.record.id).status == "rejected"

    def test_non_owner_forbidden(self, workflow, submitted):
        with pytest.raises(ForbiddenError):
            workflow.move_to_shared(submitted.record.id, "bob")
        assert workflow.store.get_inbox_record(submitted.record.id).status == "pending"

    def test_unknown_record(self, workflow):
        with pytest.raises(NotFoundError):
            workflow.reject("inbox_missing", "alice")

    def test_concurrent_publish_happens_once(self, workflow, submitted):
        outcomes = []

        def publish():
            try:
                workflow.move_to_shared(submitted.record.id, "alice")
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=publish) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict", "conflict", "conflict", "ok"]
        assert workflow.store.get_inbox_record(submitted.record.id).status == "moved_to_shared"


class TestSubjectResolution:
    """Test subject lookup and opt-in creation when publishing."""

    def test_unregistered_subject_requires_opt_in(self, workflow, seeded_store):
        result = workflow.submit("alice", "flashcard", "Finance", "Bonds", [{"question": "Bond?", "answer": "debt"}])

        with pytest.raises(UnprocessableContentError):
            workflow.move_to_shared(result.record.id, "alice")
        assert workflow.store.get_inbox_record(result.record.id).status == "pending"
        assert seeded_store.get_school("demo").find_subject("finance") is None

        record = workflow.move_to_shared(result.record.id, "alice", create_subject_if_missing=True)
        assert record.status == "moved_to_shared"
        assert record.subject_id == "finance"
        assert seeded_store.get_school("demo").find_subject("finance").label == "Finance"
        assert "finance" in seeded_store.get_workspace("alice").enabled_subjects

    def test_autocreate_disabled(self, workflow, monkeypatch):
        monkeypatch.setenv("ALLOW_SUBJECT_AUTOCREATE", "false")
        result = workflow.submit("alice", "flashcard", "Finance", "Bonds", [{"question": "Bond?", "answer": "debt"}])
        with pytest.raises(ForbiddenError):
            workflow.move_to_shared(result.record.id, "alice", create_subject_if_missing=True)

    def test_alias_resolves(self, workflow):
        result = workflow.submit("alice", "flashcard", "Micro", "Costs", [{"question": "MC?", "answer": "cost"}])
        assert result.record.subject_id == "econ"
        assert workflow.move_to_shared(result.record.id, "alice").moved_target == "shared/demo/econ"

    def test_explicit_target_subject(self, workflow, submitted):
        record = workflow.move_to_shared(submitted.record.id, "alice", target_subject_id="stats")
        assert record.moved_target == "shared/demo/stats"
        assert record.subject_id == "stats"


class TestAssign:
    """Test explicit routing of a pending record."""

    def test_assign_to_shared(self, workflow, submitted):
        record = workflow.assign(submitted.record.id, "alice", "shared", "stats")
        assert record.status == "moved_to_shared"
        assert record.moved_target == "shared/demo/stats"
        assert record.assigned_by == "alice"
        assert record.assigned_at is not None

    def test_assign_to_other_school_forbidden(self, workflow, seeded_store, submitted):
        seeded_store.create_school("other", [{"id": "econ", "label": "Economics"}])
        with pytest.raises(ForbiddenError):
            workflow.assign(submitted.record.id, "alice", "shared", "econ", target_school_id="other")
        assert workflow.store.get_inbox_record(submitted.record.id).status == "pending"

    def test_assign_to_user_copies_body(self, workflow, seeded_store, submitted, flashcards):
        record = workflow.assign(submitted.record.id, "alice", "user", "econ", target_tenant_id="bob")
        assert record.status == "moved_to_user"
        assert record.moved_target == "user/bob/econ"
        assert read(seeded_store.workspace_dir("bob") / submitted.file_name) == flashcards
        assert [e.file for e in seeded_store.list_catalog("bob", "flashcard")] == [submitted.file_name]

    def test_assign_to_user_creates_subject(self, workflow, seeded_store, submitted):
        workflow.assign(submitted.record.id, "alice", "user", "finance", create_subject_if_missing=True)
        assert "finance" in seeded_store.get_workspace("alice").enabled_subjects
        assert seeded_store.get_school("demo").find_subject("finance") is not None

    def test_assign_to_inactive_workspace(self, workflow, seeded_store, submitted):
        seeded_store.deactivate_workspace("bob")
        with pytest.raises(ForbiddenError):
            workflow.assign(submitted.record.id, "alice", "user", "econ", target_tenant_id="bob")

    @pytest.mark.parametrize("scope,subject", [("global", "econ"), ("shared", "Not A Slug")])
    def test_assign_invalid_input(self, workflow, submitted, scope, subject):
        with pytest.raises(InvalidInputError):
            workflow.assign(submitted.record.id, "alice", scope, subject)

    def test_assign_after_transition_conflicts(self, workflow, submitted):
        workflow.move_to_user(submitted.record.id, "alice")
        with pytest.raises(ConflictError):
            workflow.assign(submitted.record.id, "alice", "shared", "econ")
