"""
Runtime configuration for the study content repository.
All values come from environment variables so deployments and tests can override them.
"""

import os
from pathlib import Path

# Content store root
CONTENT_DIR = os.getenv("CONTENT_DIR", "./content")

DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# Store concurrency and limits
STORE_LOCK_TIMEOUT_SEC = float(os.getenv("STORE_LOCK_TIMEOUT_SEC", "10"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

# Workspace and school defaults
DEFAULT_SCHOOL_ID = os.getenv("DEFAULT_SCHOOL_ID", "")
ALLOW_SUBJECT_AUTOCREATE = os.getenv("ALLOW_SUBJECT_AUTOCREATE", "true").lower() == "true"

# Audit reporting
AUDIT_MAX_ISSUES_IN_ERROR = int(os.getenv("AUDIT_MAX_ISSUES_IN_ERROR", "20"))

# API server
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Names that can never be used as workspace ids (they are top-level store directories)
RESERVED_WORKSPACE_IDS = ["inbox", "verified", "tmp", "system", "catalog", "shared"]

CONTENT_TYPES = ["flashcard", "decoder", "practice"]

DATA_VERSION = "v1"

VERSION = "1.0.0"


def get_content_dir() -> Path:
    """Get the content root, re-reading the environment."""
    return Path(os.getenv("CONTENT_DIR", CONTENT_DIR))


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def get_lock_timeout() -> float:
    """Get the per-key lock acquisition timeout in seconds."""
    return float(os.getenv("STORE_LOCK_TIMEOUT_SEC", str(STORE_LOCK_TIMEOUT_SEC)))


def get_max_upload_bytes() -> int:
    """Get the largest accepted submission body in bytes."""
    return int(os.getenv("MAX_UPLOAD_BYTES", str(MAX_UPLOAD_BYTES)))


def get_default_school_id() -> str:
    """Get the school assigned to new workspaces when none is given."""
    return os.getenv("DEFAULT_SCHOOL_ID", DEFAULT_SCHOOL_ID).strip().lower()


def is_subject_autocreate_allowed():
    """Check if callers may opt in to creating missing subjects."""
    return os.getenv("ALLOW_SUBJECT_AUTOCREATE", "true" if ALLOW_SUBJECT_AUTOCREATE else "false").lower() == "true"


def validate_store_config():
    """Validate store configuration and return any issues."""
    issues = []

    if get_lock_timeout() <= 0:
        issues.append("STORE_LOCK_TIMEOUT_SEC must be > 0")

    if get_max_upload_bytes() < 1:
        issues.append("MAX_UPLOAD_BYTES must be >= 1")

    content_dir = get_content_dir()
    if content_dir.exists() and not content_dir.is_dir():
        issues.append(f"CONTENT_DIR is not a directory: {content_dir}")
    elif content_dir.exists() and not os.access(content_dir, os.W_OK):
        issues.append(f"CONTENT_DIR is not writable: {content_dir}")

    if AUDIT_MAX_ISSUES_IN_ERROR < 1:
        issues.append("AUDIT_MAX_ISSUES_IN_ERROR must be >= 1")

    return issues
