"""
File-backed content store.

Layout under the content root:

    users.json                                  global workspace list
    <workspace>/meta.json                       workspace metadata
    <workspace>/<type>_topics.json              personal catalog index
    <workspace>/<fileName>                      personal dataset bodies
    shared/<school>/school.json                 school subject registry
    shared/<school>/<subject>/<type>_topics.json
    shared/<school>/<subject>/<fileName>        shared dataset bodies
    inbox/index.json                            moderation records

Every mutation goes through write_json_atomic. Read-modify-write of any
shared file happens under a per-key lock from KeyedLocks.
"""

import json
import os
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .config import CONTENT_TYPES, DATA_VERSION, RESERVED_WORKSPACE_IDS, get_content_dir, get_default_school_id
from .errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    RepositoryError,
    UnavailableError,
)
from .locks import KeyedLocks
from .naming import is_valid_slug, normalize_id
from .schema import (
    CatalogEntry,
    InboxRecord,
    School,
    Subject,
    WorkspaceContext,
    WorkspaceMeta,
    format_timestamp,
    utc_now,
)
from ..util.logging import logger

USERS_FILE = "users.json"
META_FILE = "meta.json"
SCHOOL_FILE = "school.json"
SHARED_DIR = "shared"
INBOX_DIR = "inbox"
INBOX_INDEX = "index.json"

WORKSPACES_LOCK = "workspaces"
INBOX_LOCK = "inbox"

INDEX_FILE_NAMES = frozenset(f"{content_type}_topics.json" for content_type in CONTENT_TYPES)


def index_file_name(content_type: str) -> str:
    """Catalog index file for a content type."""
    if content_type not in CONTENT_TYPES:
        raise InvalidInputError(f"Unknown content type: {content_type}")
    return f"{content_type}_topics.json"


def new_dataset_id() -> str:
    return f"ds_{uuid.uuid4().hex[:12]}"


def is_dataset_file_name(file_name: str) -> bool:
    """True for names that can hold a dataset body (not metadata or indexes)."""
    return (
        file_name.endswith(".json")
        and file_name not in (META_FILE, SCHOOL_FILE, USERS_FILE)
        and file_name not in INDEX_FILE_NAMES
        and not file_name.startswith(".")
    )


class FileStore:
    """Durable storage for workspaces, schools, datasets, catalogs and the inbox."""

    def __init__(self, content_dir: Union[str, Path, None] = None, locks: Optional[KeyedLocks] = None):
        self.content_dir = Path(content_dir) if content_dir is not None else get_content_dir()
        self.locks = locks or KeyedLocks()

    # Paths

    @property
    def users_path(self) -> Path:
        return self.content_dir / USERS_FILE

    @property
    def inbox_path(self) -> Path:
        return self.content_dir / INBOX_DIR / INBOX_INDEX

    def workspace_dir(self, workspace_id: str) -> Path:
        return self.content_dir / workspace_id

    def shared_dir(self, school_id: str, subject_id: Optional[str] = None) -> Path:
        path = self.content_dir / SHARED_DIR / school_id
        return path / subject_id if subject_id else path

    def index_path(self, scope_dir: Path, content_type: str) -> Path:
        return scope_dir / index_file_name(content_type)

    # Primitives

    def ensure_root(self):
        """Create the content root if missing."""
        try:
            self.content_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise UnavailableError(f"Cannot create content directory: {e}") from e

    def write_json_atomic(self, path: Path, data: Any, kind: str = "document"):
        """Write JSON to a temp file in the same directory, then rename it into place.

        A failure at any point leaves the previous file untouched and removes the temp file.
        """
        path = Path(path)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            logger.log_store_write(path, kind, "failed", {"error": str(e)})
            raise UnavailableError(f"Failed to write {path.name}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.log_store_write(path, kind)

    def read_json(self, path: Path, default: Any = None) -> Any:
        """Read a JSON document; default when absent, UnavailableError when unreadable."""
        path = Path(path)
        if not path.exists():
            return default
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as e:
            logger.error(f"Read JSON failed from {path}: {e}")
            raise UnavailableError(f"Cannot read {path.name}: {e}") from e

    def _read_list(self, path: Path) -> List[Any]:
        data = self.read_json(path, default=[])
        if not isinstance(data, list):
            raise UnavailableError(f"{path.name} is not a list")
        return data

    # Workspaces

    def _validated_id(self, workspace_id) -> str:
        normalized = normalize_id(workspace_id)
        if not is_valid_slug(normalized):
            raise InvalidInputError(f"Invalid workspace id: {workspace_id!r}")
        return normalized

    def create_workspace(self, workspace_id: str, display_name: str, school_id: Optional[str] = None,
                         enabled_subject_ids: Optional[Iterable[str]] = None) -> WorkspaceMeta:
        """Create a workspace directory with empty catalogs and register it globally."""
        workspace_id = self._validated_id(workspace_id)
        if workspace_id in RESERVED_WORKSPACE_IDS:
            raise ConflictError(f"Workspace id '{workspace_id}' is reserved")

        school_id = normalize_id(school_id) or get_default_school_id()
        if school_id and not is_valid_slug(school_id):
            raise InvalidInputError(f"Invalid school id: {school_id!r}")

        subjects = []
        for subject_id in enabled_subject_ids or []:
            subject_id = normalize_id(subject_id)
            if not is_valid_slug(subject_id):
                raise InvalidInputError(f"Invalid subject id: {subject_id!r}")
            if subject_id not in subjects:
                subjects.append(subject_id)

        self.ensure_root()
        with self.locks.hold(WORKSPACES_LOCK):
            workspace_dir = self.workspace_dir(workspace_id)
            if workspace_dir.exists():
                raise ConflictError(f"Workspace '{workspace_id}' already exists")
            try:
                workspace_dir.mkdir()
            except OSError as e:
                raise UnavailableError(f"Cannot create workspace directory: {e}") from e

            now = utc_now()
            meta = WorkspaceMeta(
                id=workspace_id,
                display_name=(display_name or "").strip() or workspace_id,
                status="active",
                created_at=now,
                updated_at=now,
                school_id=school_id,
                enabled_subjects=subjects,
                data_version=DATA_VERSION,
                is_system=False
            )
            try:
                for content_type in CONTENT_TYPES:
                    self.write_json_atomic(self.index_path(workspace_dir, content_type), [], kind="index")
                self._save_workspace(meta)
            except RepositoryError:
                shutil.rmtree(workspace_dir, ignore_errors=True)
                logger.log_workspace_event(workspace_id, "created", status="rolled_back")
                raise

        logger.log_workspace_event(workspace_id, "created", details={"school_id": school_id})
        return meta

    def _save_workspace(self, meta: WorkspaceMeta):
        """Write meta.json and replace-or-append the entry in users.json. Caller holds WORKSPACES_LOCK."""
        self.write_json_atomic(self.workspace_dir(meta.id) / META_FILE, meta.to_dict(), kind="meta")
        users = [u for u in self._read_list(self.users_path) if not (isinstance(u, dict) and u.get("id") == meta.id)]
        users.append(meta.to_dict())
        self.write_json_atomic(self.users_path, users, kind="users")

    def get_workspace(self, workspace_id: str) -> WorkspaceMeta:
        """Load workspace metadata or raise NotFoundError."""
        workspace_id = self._validated_id(workspace_id)
        data = self.read_json(self.workspace_dir(workspace_id) / META_FILE)
        if not isinstance(data, dict):
            raise NotFoundError(f"Workspace '{workspace_id}' not found")
        return WorkspaceMeta.from_dict(data)

    def list_workspaces(self) -> List[WorkspaceMeta]:
        """Active, non-system workspaces from the global list."""
        users = self._read_list(self.users_path)
        metas = [WorkspaceMeta.from_dict(u) for u in users if isinstance(u, dict) and u.get("id")]
        return [m for m in metas if m.is_active and not m.is_system]

    def deactivate_workspace(self, workspace_id: str) -> WorkspaceMeta:
        """Soft delete: mark the workspace inactive. Content stays on disk."""
        with self.locks.hold(WORKSPACES_LOCK):
            meta = self.get_workspace(workspace_id)
            if meta.is_active:
                meta.status = "inactive"
                meta.updated_at = utc_now()
                self._save_workspace(meta)
        logger.log_workspace_event(meta.id, "deactivated")
        return meta

    def ensure_workspace_subject(self, workspace_id: str, subject_id: str) -> WorkspaceMeta:
        """Enable a subject for a workspace if it is not already enabled."""
        with self.locks.hold(WORKSPACES_LOCK):
            meta = self.get_workspace(workspace_id)
            if subject_id not in meta.enabled_subjects:
                meta.enabled_subjects.append(subject_id)
                meta.updated_at = utc_now()
                self._save_workspace(meta)
                logger.log_workspace_event(meta.id, "subject_enabled", details={"subject_id": subject_id})
        return meta

    def get_workspace_context(self, workspace_id: str) -> WorkspaceContext:
        """Resolve a workspace against its school's subject registry."""
        meta = self.get_workspace(workspace_id)
        if not meta.is_active:
            raise ForbiddenError(f"Workspace '{meta.id}' is not active")
        if not meta.school_id:
            raise InvalidInputError(f"Workspace '{meta.id}' has no school")

        school = self.get_school(meta.school_id)
        accessible = [s for s in school.subjects if s.enabled and s.id in meta.enabled_subjects]
        return WorkspaceContext(workspace=meta, school=school, accessible_subjects=accessible)

    # Schools

    def create_school(self, school_id: str, subjects: Iterable[Union[Subject, Dict[str, Any]]] = (),
                      name: Optional[str] = None) -> School:
        """Register a school and its subject list."""
        school_id = normalize_id(school_id)
        if not is_valid_slug(school_id):
            raise InvalidInputError(f"Invalid school id: {school_id!r}")

        parsed = []
        for subject in subjects:
            if isinstance(subject, dict):
                subject = Subject.from_dict(subject)
            if not is_valid_slug(subject.id):
                raise InvalidInputError(f"Invalid subject id: {subject.id!r}")
            parsed.append(subject)

        school = School(id=school_id, subjects=parsed, name=name)
        school_path = self.shared_dir(school_id) / SCHOOL_FILE
        with self.locks.hold(f"school:{school_id}"):
            if school_path.exists():
                raise ConflictError(f"School '{school_id}' already exists")
            try:
                school_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise UnavailableError(f"Cannot create school directory: {e}") from e
            self.write_json_atomic(school_path, school.to_dict(), kind="school")

        logger.log_operation("school.created", "success", {"school_id": school_id, "subjects": len(parsed)})
        return school

    def get_school(self, school_id: str) -> School:
        """Load a school registry; NotFoundError if absent, UnavailableError if malformed."""
        school_path = self.shared_dir(school_id) / SCHOOL_FILE
        data = self.read_json(school_path)
        if data is None:
            raise NotFoundError(f"School '{school_id}' not found")
        try:
            return School.from_dict(data, school_id=school_id)
        except ValueError as e:
            raise UnavailableError(f"School '{school_id}' configuration is malformed: {e}") from e

    def ensure_school_subject(self, school_id: str, subject_id: str, label: Optional[str] = None) -> Subject:
        """Add a subject to a school's registry unless it already exists."""
        with self.locks.hold(f"school:{school_id}"):
            school = self.get_school(school_id)
            subject = school.find_subject(subject_id)
            if subject is None:
                subject = Subject(id=subject_id, label=(label or "").strip() or subject_id, enabled=True)
                school.subjects.append(subject)
                self.write_json_atomic(self.shared_dir(school_id) / SCHOOL_FILE, school.to_dict(), kind="school")
                logger.log_operation("school.subject_added", "success", {"school_id": school_id, "subject_id": subject_id})
        return subject

    # Datasets and catalogs

    def read_index(self, scope_dir: Path, content_type: str) -> List[Dict[str, Any]]:
        """Raw catalog entries of one scope directory; entries without a file are dropped."""
        entries = self._read_list(self.index_path(scope_dir, content_type))
        return [e for e in entries if isinstance(e, dict) and e.get("file")]

    def upsert_index_entry(self, index_path: Path, file_name: str, name: str, subject: str,
                           entry_id: Optional[str] = None) -> CatalogEntry:
        """Insert or replace the entry for file_name, preserving id and createdAt on replace."""
        with self.locks.hold(str(index_path)):
            entries = self._read_list(index_path)
            now = format_timestamp(utc_now())
            for pos, existing in enumerate(entries):
                if isinstance(existing, dict) and existing.get("file") == file_name:
                    updated = dict(existing)
                    updated.update({"name": name, "subject": subject, "updatedAt": now})
                    updated.setdefault("createdAt", now)
                    updated.setdefault("id", entry_id or new_dataset_id())
                    entries[pos] = updated
                    break
            else:
                updated = {
                    "id": entry_id or new_dataset_id(),
                    "name": name,
                    "file": file_name,
                    "subject": subject,
                    "createdAt": now,
                    "updatedAt": now
                }
                entries.append(updated)
            self.write_json_atomic(index_path, entries, kind="index")
        return CatalogEntry.from_dict(updated)

    def remove_index_entry(self, index_path: Path, file_name: str) -> bool:
        """Drop the entry for file_name; returns False when there was none."""
        with self.locks.hold(str(index_path)):
            entries = self._read_list(index_path)
            kept = [e for e in entries if not (isinstance(e, dict) and e.get("file") == file_name)]
            if len(kept) == len(entries):
                return False
            self.write_json_atomic(index_path, kept, kind="index")
        return True

    def upsert_dataset(self, tenant_id: str, content_type: str, file_name: str, body: Any,
                       display_name: str, subject: str) -> CatalogEntry:
        """Write a personal dataset body, then upsert its catalog entry."""
        meta = self.get_workspace(tenant_id)
        if not meta.is_active:
            raise NotFoundError(f"Workspace '{meta.id}' is not active")
        file_name = os.path.basename(file_name)
        if not is_dataset_file_name(file_name):
            raise InvalidInputError(f"Invalid dataset file name: {file_name!r}")

        workspace_dir = self.workspace_dir(meta.id)
        index_path = self.index_path(workspace_dir, content_type)
        with self.locks.hold(str(index_path)):
            self.write_json_atomic(workspace_dir / file_name, body, kind="dataset")
            entry = self.upsert_index_entry(index_path, file_name, display_name, subject)
        return entry

    def publish_to_shared(self, school_id: str, subject_id: str, content_type: str, file_name: str,
                          body: Any, display_name: str, entry_id: Optional[str] = None) -> CatalogEntry:
        """Copy a dataset into a shared school/subject directory and upsert the shared index."""
        self.get_school(school_id)
        if not is_valid_slug(subject_id):
            raise InvalidInputError(f"Invalid subject id: {subject_id!r}")
        file_name = os.path.basename(file_name)

        subject_dir = self.shared_dir(school_id, subject_id)
        try:
            subject_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise UnavailableError(f"Cannot create shared directory: {e}") from e

        index_path = self.index_path(subject_dir, content_type)
        with self.locks.hold(str(index_path)):
            self.write_json_atomic(subject_dir / file_name, body, kind="dataset")
            entry = self.upsert_index_entry(index_path, file_name, display_name or file_name, subject_id, entry_id)

        logger.log_operation("shared.published", "success", {
            "school_id": school_id, "subject_id": subject_id, "file": file_name
        })
        return entry

    def get_dataset(self, tenant_id: str, file_name: str) -> Any:
        """Personal copy first, then every shared subject the workspace can access."""
        meta = self.get_workspace(tenant_id)
        safe_name = os.path.basename(file_name or "")
        if not is_dataset_file_name(safe_name):
            raise NotFoundError(f"Dataset '{file_name}' not found")

        personal_path = self.workspace_dir(meta.id) / safe_name
        if personal_path.exists():
            return self.read_json(personal_path)

        try:
            context = self.get_workspace_context(meta.id)
        except (NotFoundError, ForbiddenError, InvalidInputError) as e:
            logger.warning(f"Shared lookup skipped for {meta.id}: {e}")
            raise NotFoundError(f"Dataset '{safe_name}' not found") from e

        for subject in context.accessible_subjects:
            shared_path = self.shared_dir(context.school.id, subject.id) / safe_name
            if shared_path.exists():
                return self.read_json(shared_path)

        raise NotFoundError(f"Dataset '{safe_name}' not found")

    def list_catalog(self, tenant_id: str, content_type: str) -> List[CatalogEntry]:
        """Personal catalog entries only, unmerged."""
        meta = self.get_workspace(tenant_id)
        entries = self.read_index(self.workspace_dir(meta.id), content_type)
        return [CatalogEntry.from_dict(e) for e in entries]

    # Inbox

    @contextmanager
    def inbox_lock(self):
        """Serialize inbox transitions."""
        with self.locks.hold(INBOX_LOCK):
            yield

    def append_inbox_record(self, record: InboxRecord) -> InboxRecord:
        with self.inbox_lock():
            try:
                self.inbox_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise UnavailableError(f"Cannot create inbox directory: {e}") from e
            records = self._read_list(self.inbox_path)
            records.append(record.to_dict())
            self.write_json_atomic(self.inbox_path, records, kind="inbox")
        return record

    def list_inbox_records(self) -> List[InboxRecord]:
        return [InboxRecord.from_dict(r) for r in self._read_list(self.inbox_path) if isinstance(r, dict)]

    def get_inbox_record(self, record_id: str) -> InboxRecord:
        for record in self.list_inbox_records():
            if record.id == record_id:
                return record
        raise NotFoundError(f"Inbox record '{record_id}' not found")

    def update_inbox_record(self, record_id: str, mutate: Callable[[InboxRecord], None]) -> InboxRecord:
        """Apply mutate to the freshly read record under the inbox lock and persist it.

        If mutate raises, nothing is written.
        """
        with self.inbox_lock():
            records = self._read_list(self.inbox_path)
            for pos, data in enumerate(records):
                if isinstance(data, dict) and data.get("id") == record_id:
                    record = InboxRecord.from_dict(data)
                    mutate(record)
                    records[pos] = record.to_dict()
                    self.write_json_atomic(self.inbox_path, records, kind="inbox")
                    return record
        raise NotFoundError(f"Inbox record '{record_id}' not found")

    # Maintenance support

    def iter_catalog_scopes(self) -> Iterable[Path]:
        """Every directory that owns catalog indexes: workspaces, then shared subjects."""
        if not self.content_dir.exists():
            return
        for meta in self._all_workspace_metas():
            path = self.workspace_dir(meta.id)
            if path.is_dir():
                yield path
        shared_root = self.content_dir / SHARED_DIR
        if shared_root.is_dir():
            for school_dir in sorted(p for p in shared_root.iterdir() if p.is_dir()):
                for subject_dir in sorted(p for p in school_dir.iterdir() if p.is_dir()):
                    yield subject_dir

    def _all_workspace_metas(self) -> List[WorkspaceMeta]:
        users = self._read_list(self.users_path)
        return [WorkspaceMeta.from_dict(u) for u in users if isinstance(u, dict) and u.get("id")]


