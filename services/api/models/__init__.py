from __future__ import annotations

from .document import Document
from .version import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    VERSION_STATUSES,
    Version,
)
from .version_history import (
    LegacyScalar,
    NoHistory,
    NormalizedHistory,
    VersionList,
    normalize_versions,
    parse_version_field,
)

__all__ = [
    "Document",
    "Version",
    "STATUS_PENDING",
    "STATUS_APPROVED",
    "STATUS_REJECTED",
    "VERSION_STATUSES",
    "LegacyScalar",
    "NoHistory",
    "VersionList",
    "NormalizedHistory",
    "normalize_versions",
    "parse_version_field",
]
