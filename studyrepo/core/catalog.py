"""
Effective catalog a workspace sees: shared entries from every accessible
subject, overlaid by the workspace's own entries (personal always wins).
"""

import logging
from typing import Dict, List

from .schema import CatalogEntry
from .store import FileStore, index_file_name

log = logging.getLogger(__name__)


def get_merged_catalog(store: FileStore, tenant_id: str, content_type: str) -> List[CatalogEntry]:
    """Merge shared and personal catalog entries keyed by file name."""
    index_file_name(content_type)
    context = store.get_workspace_context(tenant_id)
    merged: Dict[str, CatalogEntry] = {}

    # Iteration order over shared subjects decides between colliding shared
    # file names; callers must not rely on it.
    for subject in context.accessible_subjects:
        subject_dir = store.shared_dir(context.school.id, subject.id)
        for data in store.read_index(subject_dir, content_type):
            entry = CatalogEntry.from_dict(data)
            entry.scope = "shared"
            entry.subject_id = subject.id
            merged[entry.file] = entry

    for data in store.read_index(store.workspace_dir(context.workspace.id), content_type):
        entry = CatalogEntry.from_dict(data)
        entry.scope = "user"
        merged[entry.file] = entry

    log.debug(f"Merged {len(merged)} {content_type} entries for {context.workspace.id}")
    return list(merged.values())
