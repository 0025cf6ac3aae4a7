"""
Catalog consistency maintenance.

Dataset bodies and catalog indexes are separate files, written body first.
A crash between the two writes leaves a body without an index entry; an
external delete leaves an entry without a body. This module finds both
kinds of drift and, when asked, repairs them through the store's locks.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import CONTENT_TYPES
from .errors import RepositoryError
from .store import SHARED_DIR, FileStore, is_dataset_file_name
from .schema import utc_now
from ..util.logging import logger


@dataclass
class MaintenanceReport:
    """Maintenance operation report."""
    operation: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    issues_found: int = 0
    issues_resolved: int = 0
    actions_taken: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "issues_found": self.issues_found,
            "issues_resolved": self.issues_resolved,
            "actions_taken": self.actions_taken,
            "recommendations": self.recommendations,
            "errors": self.errors,
            "metadata": self.metadata
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


@dataclass
class DriftFinding:
    """A mismatch between a scope's dataset bodies and its catalog index."""
    id: str
    type: str  # 'orphaned_body', 'dangling_entry', 'unclassified_body'
    scope_dir: Path
    file: str
    content_type: Optional[str]
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def repairable(self) -> bool:
        return self.type in ("orphaned_body", "dangling_entry")


def content_type_of(file_name: str) -> Optional[str]:
    """Content type encoded in a derived dataset file name, if any."""
    for content_type in CONTENT_TYPES:
        if file_name.startswith(f"{content_type}_"):
            return content_type
    return None


def display_name_from_file(file_name: str, content_type: str) -> str:
    stem = file_name[:-len(".json")] if file_name.endswith(".json") else file_name
    return stem[len(content_type) + 1:] or stem


def _scope_label(store: FileStore, scope_dir: Path) -> str:
    return scope_dir.relative_to(store.content_dir).as_posix()


def _scope_subject(store: FileStore, scope_dir: Path) -> str:
    """Subject id for shared scopes, empty for personal ones."""
    parts = scope_dir.relative_to(store.content_dir).parts
    return parts[2] if len(parts) == 3 and parts[0] == SHARED_DIR else ""


def detect_catalog_drift(store: FileStore) -> List[DriftFinding]:
    """Compare every scope's bodies with its indexes."""
    findings = []
    for scope_dir in store.iter_catalog_scopes():
        indexed = {}
        for content_type in CONTENT_TYPES:
            for entry in store.read_index(scope_dir, content_type):
                indexed[entry["file"]] = content_type

        bodies = sorted(p.name for p in scope_dir.iterdir() if p.is_file() and is_dataset_file_name(p.name))
        location = _scope_label(store, scope_dir)

        for file_name in bodies:
            if file_name in indexed:
                continue
            content_type = content_type_of(file_name)
            finding_type = "orphaned_body" if content_type else "unclassified_body"
            findings.append(DriftFinding(str(uuid.uuid4()), finding_type, scope_dir, file_name, content_type))
            logger.log_drift_finding(finding_type, location, file_name)

        for file_name, content_type in sorted(indexed.items()):
            if file_name not in bodies:
                findings.append(DriftFinding(str(uuid.uuid4()), "dangling_entry", scope_dir, file_name, content_type))
                logger.log_drift_finding("dangling_entry", location, file_name)

    return findings


def reconcile_catalogs(store: FileStore, apply: bool = False) -> MaintenanceReport:
    """Report catalog drift; with apply=True re-index orphans and drop dangling entries."""
    report = MaintenanceReport(operation="reconcile_catalogs", started_at=utc_now())
    report.metadata["mode"] = "apply" if apply else "check"

    findings = detect_catalog_drift(store)
    report.issues_found = len(findings)
    report.metadata["orphaned_bodies"] = sum(1 for f in findings if f.type == "orphaned_body")
    report.metadata["dangling_entries"] = sum(1 for f in findings if f.type == "dangling_entry")
    report.metadata["unclassified_bodies"] = sum(1 for f in findings if f.type == "unclassified_body")

    for finding in findings:
        location = f"{_scope_label(store, finding.scope_dir)}/{finding.file}"
        if not finding.repairable:
            report.recommendations.append(f"Rename or remove {location}: file name does not encode a content type")
            continue
        if not apply:
            report.recommendations.append(f"{finding.type}: {location}")
            continue

        index_path = store.index_path(finding.scope_dir, finding.content_type)
        try:
            if finding.type == "orphaned_body":
                store.upsert_index_entry(index_path, finding.file,
                                         display_name_from_file(finding.file, finding.content_type),
                                         _scope_subject(store, finding.scope_dir))
                report.actions_taken.append(f"Re-indexed {location}")
            else:
                store.remove_index_entry(index_path, finding.file)
                report.actions_taken.append(f"Dropped dangling entry {location}")
            report.issues_resolved += 1
        except RepositoryError as e:
            report.errors.append(f"Failed to repair {location}: {e}")

    if findings and not apply:
        report.recommendations.append("Re-run with apply to repair the catalog indexes")

    report.completed_at = utc_now()
    logger.log_operation("maintenance.reconcile", "failed" if report.errors else "success", {
        "issues_found": report.issues_found,
        "issues_resolved": report.issues_resolved,
        "mode": report.metadata["mode"]
    })
    return report
