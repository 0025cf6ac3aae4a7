"""
Records persisted by the content store and returned by the workflow.
On-disk JSON keeps camelCase keys; to_dict/from_dict translate.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp, accepting a trailing 'Z'."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Subject:
    id: str
    label: str
    enabled: bool = True
    aliases: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "label": self.label, "enabled": self.enabled}
        if self.aliases:
            data["aliases"] = list(self.aliases)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Subject':
        return cls(
            id=str(data["id"]),
            label=str(data.get("label") or data["id"]),
            enabled=data.get("enabled", True) is not False,
            aliases=[str(a) for a in data.get("aliases") or []]
        )


@dataclass
class School:
    id: str
    subjects: List[Subject] = field(default_factory=list)
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "subjects": [s.to_dict() for s in self.subjects]}
        if self.name:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], school_id: Optional[str] = None) -> 'School':
        """Create from a school.json document; raises ValueError when malformed."""
        if not isinstance(data, dict) or not isinstance(data.get("subjects"), list):
            raise ValueError("school document must be an object with a subjects list")
        subjects = []
        for entry in data["subjects"]:
            if not isinstance(entry, dict) or not entry.get("id"):
                raise ValueError("every subject needs an id")
            subjects.append(Subject.from_dict(entry))
        return cls(id=data.get("id") or school_id, subjects=subjects, name=data.get("name"))

    def find_subject(self, subject_id: str) -> Optional[Subject]:
        for subject in self.subjects:
            if subject.id == subject_id:
                return subject
        return None


@dataclass
class WorkspaceMeta:
    id: str
    display_name: str
    status: str  # active, inactive
    created_at: datetime
    updated_at: datetime
    school_id: str = ""
    enabled_subjects: List[str] = field(default_factory=list)
    data_version: str = "v1"
    is_system: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "id": self.id,
            "displayName": self.display_name,
            "status": self.status,
            "schoolId": self.school_id,
            "enabledSubjects": list(self.enabled_subjects),
            "dataVersion": self.data_version,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "isSystem": self.is_system
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkspaceMeta':
        """Create from dictionary (for loading from storage)."""
        enabled = data.get("enabledSubjects")
        if enabled is None:
            enabled = data.get("enabledSubjectIds") or []
        return cls(
            id=data["id"],
            display_name=data.get("displayName") or data["id"],
            status=data.get("status", "active"),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
            school_id=data.get("schoolId") or "",
            enabled_subjects=[str(s) for s in enabled],
            data_version=data.get("dataVersion", "v1"),
            is_system=bool(data.get("isSystem", False))
        )


@dataclass
class WorkspaceContext:
    """A workspace resolved against its school's subject registry."""
    workspace: WorkspaceMeta
    school: School
    accessible_subjects: List[Subject]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workspace": self.workspace.to_dict(),
            "school": self.school.to_dict(),
            "accessibleSubjects": [s.to_dict() for s in self.accessible_subjects]
        }


@dataclass
class CatalogEntry:
    id: str
    name: str
    file: str
    subject: str
    created_at: datetime
    updated_at: datetime
    scope: Optional[str] = None  # user, shared (merged views only)
    subject_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "file": self.file,
            "subject": self.subject,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at)
        }
        if self.scope:
            data["scope"] = self.scope
        if self.subject_id:
            data["subjectId"] = self.subject_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CatalogEntry':
        created_at = parse_timestamp(data.get("createdAt"))
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or data.get("file", ""),
            file=data["file"],
            subject=data.get("subject") or "",
            created_at=created_at,
            updated_at=parse_timestamp(data.get("updatedAt")) or created_at,
            scope=data.get("scope"),
            subject_id=data.get("subjectId")
        )


@dataclass
class InboxRecord:
    id: str
    file_name: str
    display_name: str
    content_type: str
    tenant_id: str
    school_id: str
    created_at: datetime
    status: str  # pending, moved_to_user, moved_to_shared, rejected
    subject_id: Optional[str] = None
    subject_label: str = ""
    input_shape: str = "array"
    moved_at: Optional[datetime] = None
    moved_target: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        data = {
            "id": self.id,
            "fileName": self.file_name,
            "displayName": self.display_name,
            "contentType": self.content_type,
            "subjectId": self.subject_id,
            "subjectLabel": self.subject_label,
            "tenantId": self.tenant_id,
            "schoolId": self.school_id,
            "inputShape": self.input_shape,
            "createdAt": format_timestamp(self.created_at),
            "status": self.status
        }
        optional = {
            "movedAt": format_timestamp(self.moved_at),
            "movedTarget": self.moved_target,
            "rejectedAt": format_timestamp(self.rejected_at),
            "rejectedBy": self.rejected_by,
            "assignedBy": self.assigned_by,
            "assignedAt": format_timestamp(self.assigned_at)
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InboxRecord':
        """Create from dictionary (for loading from storage)."""
        return cls(
            id=data["id"],
            file_name=data["fileName"],
            display_name=data.get("displayName") or data["fileName"],
            content_type=data["contentType"],
            tenant_id=data["tenantId"],
            school_id=data.get("schoolId") or "",
            created_at=parse_timestamp(data.get("createdAt")),
            status=data.get("status", "pending"),
            subject_id=data.get("subjectId"),
            subject_label=data.get("subjectLabel") or data.get("subjectId") or "",
            input_shape=data.get("inputShape", "array"),
            moved_at=parse_timestamp(data.get("movedAt")),
            moved_target=data.get("movedTarget"),
            rejected_at=parse_timestamp(data.get("rejectedAt")),
            rejected_by=data.get("rejectedBy"),
            assigned_by=data.get("assignedBy"),
            assigned_at=parse_timestamp(data.get("assignedAt"))
        )


@dataclass
class AuditIssue:
    severity: str  # Blocker, Major, Minor
    module: str
    rule_id: str
    location: str
    description: str
    fix_suggestion: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity,
            "module": self.module,
            "ruleId": self.rule_id,
            "location": self.location,
            "description": self.description,
            "fixSuggestion": self.fix_suggestion
        }


@dataclass
class AuditReport:
    overall_pass: bool
    protocol_score: int
    teaching_score: int
    issues: List[AuditIssue] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    item_count: int = 0

    @property
    def blockers(self) -> List[AuditIssue]:
        return [i for i in self.issues if i.severity == "Blocker"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overallPass": self.overall_pass,
            "protocolScore": self.protocol_score,
            "teachingScore": self.teaching_score,
            "issues": [i.to_dict() for i in self.issues],
            "suggestions": list(self.suggestions),
            "itemCount": self.item_count
        }


@dataclass
class SubmissionResult:
    file_name: str
    report: AuditReport
    record: InboxRecord

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "fileName": self.file_name,
            "audit": self.report.to_dict(),
            "inbox": self.record.to_dict()
        }
