"""
Slug rules for workspace ids, subject ids and dataset file names.
"""

import re
from typing import Optional

from .schema import School, Subject

SLUG_PATTERN = re.compile(r"^[a-z0-9_-]+$")

# Letters, digits, CJK unified ideographs, underscore and hyphen survive
_UNSAFE_RUN = re.compile(r"[^a-z0-9一-龥_-]+")
_UNDERSCORE_RUN = re.compile(r"_+")


def sanitize_part(value) -> str:
    """Reduce a free-text label to a file-name-safe fragment."""
    text = str(value if value is not None else "").strip().lower()
    text = _UNSAFE_RUN.sub("_", text)
    text = _UNDERSCORE_RUN.sub("_", text)
    text = text.strip("_")
    return text or "untitled"


def derive_file_name(content_type: str, subject_label, display_name) -> str:
    """Deterministic dataset file name for a (type, subject, name) triple."""
    return f"{content_type}_{sanitize_part(subject_label)}_{sanitize_part(display_name)}.json"


def normalize_id(value) -> str:
    """Trim and lower-case an id supplied by a caller."""
    return str(value if value is not None else "").strip().lower()


def is_valid_slug(value: str) -> bool:
    return bool(value) and bool(SLUG_PATTERN.match(value))


def resolve_subject(school: School, label_or_id) -> Optional[Subject]:
    """Find the school subject a free-text label refers to.

    Matches, case-insensitively and in this order: subject id, display
    label, a registered alias, then the sanitized form of the label
    against the id. Returns None when nothing matches.
    """
    needle = str(label_or_id if label_or_id is not None else "").strip()
    if not needle:
        return None
    lowered = needle.lower()

    for subject in school.subjects:
        if subject.id.lower() == lowered:
            return subject
    for subject in school.subjects:
        if subject.label.strip().lower() == lowered:
            return subject
    for subject in school.subjects:
        if any(alias.strip().lower() == lowered for alias in subject.aliases):
            return subject

    slug = sanitize_part(needle)
    for subject in school.subjects:
        if subject.id.lower() == slug:
            return subject
    return None
