"""
Records exchanged between the retrieval stages.

Boundary records (SourceGroup, GroupOutcome) are validated pydantic models;
in-process records are plain dataclasses.
"""

from catalog_sync.schemas.assets import (
    DRIVE_IMAGE_EXTENSIONS,
    FOLDER_MIME_TYPE,
    DriveItem,
    ProcessedAsset,
    RetrievedAsset,
)
from catalog_sync.schemas.groups import SourceGroup
from catalog_sync.schemas.outcomes import GroupOutcome, OutcomeStatus

__all__ = [
    "DRIVE_IMAGE_EXTENSIONS",
    "FOLDER_MIME_TYPE",
    "DriveItem",
    "GroupOutcome",
    "OutcomeStatus",
    "ProcessedAsset",
    "RetrievedAsset",
    "SourceGroup",
]
