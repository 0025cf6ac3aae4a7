"""
Request and response models for the HTTP API.
Field aliases keep the camelCase wire format used by existing clients.
"""

import re
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.config import CONTENT_TYPES

SLUG_RE = re.compile(r"^[a-z0-9_-]+$")


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(CamelModel):
    ok: bool
    mode: str
    version: str
    content_dir: str = Field(alias="contentDir")
    timestamp: datetime
    config_issues: List[str] = Field(default_factory=list, alias="configIssues")


class WorkspaceCreateRequest(CamelModel):
    id: str
    display_name: str = Field(alias="displayName")
    school_id: Optional[str] = Field(default=None, alias="schoolId")
    enabled_subject_ids: List[str] = Field(default_factory=list, alias="enabledSubjectIds")

    @field_validator('id')
    @classmethod
    def id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('id cannot be empty')
        return v

    @field_validator('display_name')
    @classmethod
    def display_name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('displayName cannot be empty')
        return v


class SubjectModel(CamelModel):
    id: str
    label: Optional[str] = None
    enabled: bool = True
    aliases: List[str] = Field(default_factory=list)

    @field_validator('id')
    @classmethod
    def id_must_be_slug(cls, v):
        if not SLUG_RE.match(v):
            raise ValueError('subject id may only contain a-z, 0-9, _ and -')
        return v


class SchoolCreateRequest(CamelModel):
    id: str
    name: Optional[str] = None
    subjects: List[SubjectModel] = Field(default_factory=list)

    @field_validator('id')
    @classmethod
    def id_must_be_slug(cls, v):
        v = v.strip().lower()
        if not SLUG_RE.match(v):
            raise ValueError('school id may only contain a-z, 0-9, _ and -')
        return v


class DatasetSubmitRequest(CamelModel):
    type: str
    subject: str = ""
    name: str
    data: Any

    @field_validator('type')
    @classmethod
    def type_must_be_valid(cls, v):
        if v not in CONTENT_TYPES:
            raise ValueError(f'type must be one of: {CONTENT_TYPES}')
        return v

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('name cannot be empty')
        return v


class AuditRequest(CamelModel):
    type: str
    data: Any

    @field_validator('type')
    @classmethod
    def type_must_be_valid(cls, v):
        if v not in CONTENT_TYPES:
            raise ValueError(f'type must be one of: {CONTENT_TYPES}')
        return v


class MoveToSharedRequest(CamelModel):
    create_subject_if_missing: bool = Field(default=False, alias="createSubjectIfMissing")
    target_subject_id: Optional[str] = Field(default=None, alias="targetSubjectId")


class AssignRequest(CamelModel):
    target_scope: str = Field(alias="targetScope")
    target_subject_id: str = Field(alias="targetSubjectId")
    create_subject_if_missing: bool = Field(default=False, alias="createSubjectIfMissing")
    target_school_id: Optional[str] = Field(default=None, alias="targetSchoolId")
    target_user_id: Optional[str] = Field(default=None, alias="targetUserId")

    @field_validator('target_scope')
    @classmethod
    def scope_must_be_valid(cls, v):
        if v not in ['shared', 'user']:
            raise ValueError('targetScope must be shared or user')
        return v

    @field_validator('target_subject_id')
    @classmethod
    def subject_must_be_slug(cls, v):
        v = v.strip()
        if not SLUG_RE.match(v):
            raise ValueError('targetSubjectId may only contain a-z, 0-9, _ and -')
        return v


class ReconcileRequest(CamelModel):
    apply: bool = False
