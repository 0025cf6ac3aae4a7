"""
Moderation workflow for submitted datasets.

A submission writes the dataset into the submitter's personal scope and
opens a pending inbox record. The record then moves exactly once:

    pending -> moved_to_user | moved_to_shared | rejected

Every transition runs under the inbox lock and re-checks that the record
is still pending right before it is written, so a second moderator action
fails with ConflictError instead of publishing twice.
"""

import json
import uuid
from typing import Any, Dict, Optional

from .auditor import ContentAuditor, content_auditor, summarize_issues
from .config import AUDIT_MAX_ISSUES_IN_ERROR, CONTENT_TYPES, get_max_upload_bytes, is_subject_autocreate_allowed
from .errors import ConflictError, ForbiddenError, InvalidInputError, UnprocessableContentError
from .naming import derive_file_name, is_valid_slug, normalize_id, resolve_subject, sanitize_part
from .schema import InboxRecord, SubmissionResult, Subject, utc_now
from .store import FileStore
from ..util.logging import audit_event, logger

INBOX_STATUSES = ["pending", "moved_to_user", "moved_to_shared", "rejected"]
TARGET_SCOPES = ["user", "shared"]


def new_record_id() -> str:
    return f"inbox_{uuid.uuid4().hex[:12]}"


class InboxWorkflow:
    """Submission and moderation of datasets over a FileStore."""

    def __init__(self, store: FileStore, auditor: Optional[ContentAuditor] = None):
        self.store = store
        self.auditor = auditor or content_auditor

    def submit(self, tenant_id: str, content_type: str, subject_label: str, display_name: str, body: Any) -> SubmissionResult:
        """Audit a dataset, store it in the personal scope and open a pending record.

        Nothing is written when the audit finds a Blocker.
        """
        if content_type not in CONTENT_TYPES:
            raise InvalidInputError(f"Unknown content type: {content_type}")
        display_name = (display_name or "").strip()
        if not display_name:
            raise InvalidInputError("displayName is required")
        subject_label = (subject_label or "").strip()

        context = self.store.get_workspace_context(tenant_id)

        size = len(json.dumps(body, ensure_ascii=False).encode("utf-8"))
        if size > get_max_upload_bytes():
            raise InvalidInputError(f"Submission is {size} bytes, limit is {get_max_upload_bytes()}")

        normalized, report = self.auditor.inspect(content_type, body)
        if not report.overall_pass:
            logger.log_operation("inbox.submit", "rejected", {
                "tenant_id": context.workspace.id,
                "content_type": content_type,
                "blockers": len(report.blockers)
            })
            raise UnprocessableContentError(
                f"Content failed audit with {len(report.blockers)} blocker issue(s)",
                details={
                    "audit": report.to_dict(),
                    "issues": summarize_issues(report, AUDIT_MAX_ISSUES_IN_ERROR)
                }
            )

        file_name = derive_file_name(content_type, subject_label, display_name)
        subject = resolve_subject(context.school, subject_label)

        self.store.upsert_dataset(context.workspace.id, content_type, file_name, normalized.items,
                                  display_name, subject_label)

        record = InboxRecord(
            id=new_record_id(),
            file_name=file_name,
            display_name=display_name,
            content_type=content_type,
            tenant_id=context.workspace.id,
            school_id=context.school.id,
            created_at=utc_now(),
            status="pending",
            subject_id=subject.id if subject else None,
            subject_label=subject_label,
            input_shape=normalized.shape
        )
        self.store.append_inbox_record(record)

        logger.log_inbox_transition(record.id, "new", "pending", context.workspace.id)
        audit_event("inbox.submitted", {"record_id": record.id, "tenant_id": record.tenant_id},
                    {"file": file_name, "content_type": content_type, "items": normalized.items})
        return SubmissionResult(file_name=file_name, report=report, record=record)

    def list_inbox(self, status: Optional[str] = None):
        """All records, newest first, optionally filtered by status."""
        if status is not None and status not in INBOX_STATUSES:
            raise InvalidInputError(f"Unknown inbox status: {status}")
        records = self.store.list_inbox_records()
        if status:
            records = [r for r in records if r.status == status]
        return sorted(records, key=lambda r: r.created_at.timestamp() if r.created_at else 0, reverse=True)

    def get_detail(self, record_id: str, caller: str) -> Dict[str, Any]:
        """Record plus its dataset body; only the owning workspace may read it."""
        record = self.store.get_inbox_record(record_id)
        self._check_owner(record, caller, "detail")
        body = self.store.get_dataset(record.tenant_id, record.file_name)
        return {"record": record, "body": body}

    def move_to_user(self, record_id: str, caller: str) -> InboxRecord:
        """Acknowledge a submission as personal content. Storage is unchanged."""
        with self.store.inbox_lock():
            record = self._load_pending(record_id, caller, "move_to_user")
            self.store.get_dataset(record.tenant_id, record.file_name)
            return self._transition(record, "moved_to_user", caller, moved_target=f"user/{record.tenant_id}")

    def move_to_shared(self, record_id: str, caller: str, create_subject_if_missing: bool = False,
                       target_subject_id: Optional[str] = None) -> InboxRecord:
        """Publish a submission into the shared catalog of its school subject."""
        with self.store.inbox_lock():
            record = self._load_pending(record_id, caller, "move_to_shared")
            body = self.store.get_dataset(record.tenant_id, record.file_name)
            wanted = target_subject_id or record.subject_id or record.subject_label
            subject = self._resolve_subject(record, wanted, create_subject_if_missing)
            self.store.publish_to_shared(record.school_id, subject.id, record.content_type,
                                         record.file_name, body, record.display_name)
            return self._transition(record, "moved_to_shared", caller,
                                    moved_target=f"shared/{record.school_id}/{subject.id}",
                                    subject_id=subject.id)

    def reject(self, record_id: str, caller: str) -> InboxRecord:
        """Close a submission without publishing it. The dataset stays on disk."""
        with self.store.inbox_lock():
            record = self._load_pending(record_id, caller, "reject")
            now = utc_now()
            return self._transition(record, "rejected", caller, rejected_at=now, rejected_by=normalize_id(caller))

    def assign(self, record_id: str, caller: str, target_scope: str, target_subject_id: str,
               target_tenant_id: Optional[str] = None, target_school_id: Optional[str] = None,
               create_subject_if_missing: bool = False) -> InboxRecord:
        """Route a pending record to an explicit scope and subject."""
        if target_scope not in TARGET_SCOPES:
            raise InvalidInputError(f"targetScope must be one of: {', '.join(TARGET_SCOPES)}")
        subject_id = normalize_id(target_subject_id)
        if not is_valid_slug(subject_id):
            raise InvalidInputError(f"Invalid target subject id: {target_subject_id!r}")

        with self.store.inbox_lock():
            record = self._load_pending(record_id, caller, "assign")
            body = self.store.get_dataset(record.tenant_id, record.file_name)
            stamps = {"assigned_by": normalize_id(caller), "assigned_at": utc_now()}

            if target_scope == "shared":
                school_id = normalize_id(target_school_id) or record.school_id
                if school_id != record.school_id:
                    raise ForbiddenError(f"Cannot publish to school '{school_id}' from '{record.school_id}'")
                subject = self._resolve_subject(record, subject_id, create_subject_if_missing)
                self.store.publish_to_shared(record.school_id, subject.id, record.content_type,
                                             record.file_name, body, record.display_name)
                return self._transition(record, "moved_to_shared", caller,
                                        moved_target=f"shared/{record.school_id}/{subject.id}",
                                        subject_id=subject.id, **stamps)

            target_tenant = normalize_id(target_tenant_id) or record.tenant_id
            target = self.store.get_workspace(target_tenant)
            if not target.is_active:
                raise ForbiddenError(f"Workspace '{target.id}' is not active")
            if create_subject_if_missing:
                self._check_autocreate()
                if target.school_id:
                    self.store.ensure_school_subject(target.school_id, subject_id)
                self.store.ensure_workspace_subject(target.id, subject_id)
            self.store.upsert_dataset(target.id, record.content_type, record.file_name, body,
                                      record.display_name, subject_id)
            return self._transition(record, "moved_to_user", caller,
                                    moved_target=f"user/{target.id}/{subject_id}",
                                    subject_id=subject_id, **stamps)

    # Guards

    def _check_owner(self, record: InboxRecord, caller: str, action: str):
        if normalize_id(caller) != record.tenant_id:
            logger.log_transition_blocked(record.id, action, str(caller), "caller is not the owner")
            raise ForbiddenError(f"Inbox record '{record.id}' belongs to another workspace")

    def _load_pending(self, record_id: str, caller: str, action: str) -> InboxRecord:
        record = self.store.get_inbox_record(record_id)
        self._check_owner(record, caller, action)
        if not record.is_pending:
            logger.log_transition_blocked(record.id, action, str(caller), f"status is {record.status}")
            raise ConflictError(f"Inbox record '{record.id}' is already {record.status}")
        return record

    def _check_autocreate(self):
        if not is_subject_autocreate_allowed():
            raise ForbiddenError("Subject auto-creation is disabled")

    def _resolve_subject(self, record: InboxRecord, wanted: Optional[str], create_if_missing: bool) -> Subject:
        """Map a subject label or id onto the school registry, creating it on request."""
        wanted = (wanted or "").strip()
        school = self.store.get_school(record.school_id)
        subject = resolve_subject(school, wanted)
        if subject is not None:
            return subject

        if not create_if_missing:
            raise UnprocessableContentError(
                f"Subject '{wanted}' is not registered for school '{school.id}'",
                details={"subject": wanted, "schoolId": school.id}
            )
        self._check_autocreate()

        subject_id = sanitize_part(wanted) if wanted else ""
        if not is_valid_slug(subject_id):
            raise UnprocessableContentError(
                f"Cannot derive a subject id from '{wanted}'; pass an explicit subject id",
                details={"subject": wanted, "schoolId": school.id}
            )
        subject = self.store.ensure_school_subject(school.id, subject_id, label=wanted)
        self.store.ensure_workspace_subject(record.tenant_id, subject.id)
        return subject

    def _transition(self, record: InboxRecord, to_status: str, caller: str,
                    moved_target: Optional[str] = None, **fields) -> InboxRecord:
        """Persist a state change, re-checking pending on the stored copy."""
        now = utc_now()

        def mutate(stored: InboxRecord):
            if not stored.is_pending:
                raise ConflictError(f"Inbox record '{stored.id}' is already {stored.status}")
            stored.status = to_status
            if moved_target is not None:
                stored.moved_at = now
                stored.moved_target = moved_target
            for name, value in fields.items():
                setattr(stored, name, value)

        updated = self.store.update_inbox_record(record.id, mutate)
        logger.log_inbox_transition(record.id, "pending", to_status, str(caller), target=moved_target)
        return updated
