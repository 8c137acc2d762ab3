"""Asset records passed between retrieval, naming and archiving."""

from dataclasses import dataclass, field
from typing import List, Optional

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

DRIVE_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "webp", "gif", "bmp", "tiff", "jfif")


@dataclass
class RetrievedAsset:
    """Binary payload produced by a successful retrieval.

    Attributes:
        original_identifier: Source filename or reference, used for ordering
        payload: Raw bytes
        content_type: Declared media type ("" if unknown)
        group_name: Owning group
        container_path: Containing folder name for hierarchical sources
        source_reference: Reference the payload was fetched from
    """

    original_identifier: str
    payload: bytes
    content_type: str = ""
    group_name: str = ""
    container_path: Optional[str] = None
    source_reference: Optional[str] = None

    @property
    def byte_size(self) -> int:
        return len(self.payload)


@dataclass
class ProcessedAsset:
    """Asset after deterministic naming, ready for the archive."""

    original_identifier: str
    assigned_name: str
    payload: bytes
    group_folder: str
    source_reference: Optional[str] = None

    @property
    def byte_size(self) -> int:
        return len(self.payload)

    @property
    def member_path(self) -> str:
        """Path of this asset inside the archive."""
        return f"{self.group_folder}/{self.assigned_name}"


@dataclass
class DriveItem:
    """One child entry returned by a folder listing."""

    id: str
    name: str
    mime_type: str = ""
    parents: List[str] = field(default_factory=list)

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @property
    def is_image(self) -> bool:
        """Leaf accepted when the extension or the media type says image."""
        if self.is_folder:
            return False
        lowered = self.name.lower()
        if "." in lowered and lowered.rsplit(".", 1)[1] in DRIVE_IMAGE_EXTENSIONS:
            return True
        return self.mime_type.startswith("image/")

    @property
    def parent_id(self) -> Optional[str]:
        return self.parents[0] if self.parents else None

    @classmethod
    def from_api(cls, data: dict) -> "DriveItem":
        """Build from a files.list entry."""
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            mime_type=str(data.get("mimeType", "")),
            parents=list(data.get("parents") or []),
        )
