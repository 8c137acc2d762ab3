"""
Deterministic naming and grouping policy.

Retrieved assets are renamed ``{folder}_{n}.{ext}`` where n is the 1-based
position of the asset in natural order of its original identifier. The same
input set always yields the same names, whatever order the downloads
finished in.

Also hosts the filename-prefix grouping cascade used by the local-folder
tools (categorize, rename).
"""

import re
import warnings
from collections import defaultdict
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from catalog_sync.fetch import infer_extension
from catalog_sync.schemas.assets import ProcessedAsset, RetrievedAsset

UNMATCHED = "UNMATCHED"
UNCATEGORIZED = "Uncategorized"
ROOT_FOLDER = "ROOT"

LOCAL_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "webp", "gif", "jfif", "bmp")

_DIGITS = re.compile(r"(\d+)")
_UNSAFE = re.compile(r'[\\/:*?"<>|\s]+')
_NUMERIC_PREFIX = re.compile(r"^(\d+)")
_UPPER_BLOCK = re.compile(r"^([A-Z0-9]+?)(?=[a-z\s.]|$)")
_ALNUM_PREFIX = re.compile(r"^([a-zA-Z0-9]+)")


def natural_key(text: str) -> Tuple:
    """
    Case-insensitive, numeric-aware sort key.

    ``image_2`` sorts before ``image_10``. The original text is the final
    tie-breaker so the order is total.
    """
    parts = []
    for chunk in _DIGITS.split(text):
        if not chunk:
            continue
        if chunk.isdigit():
            parts.append((0, int(chunk), ""))
        else:
            parts.append((1, 0, chunk.casefold()))
    return (tuple(parts), text)


def safe_folder_name(name: Optional[str]) -> str:
    """Trim, replace whitespace and path-unsafe characters with ``_``."""
    cleaned = _UNSAFE.sub("_", (name or "").strip())
    return cleaned or UNCATEGORIZED


def _asset_sort_key(asset: RetrievedAsset) -> Tuple:
    return (
        natural_key(asset.original_identifier),
        asset.source_reference or "",
        asset.byte_size,
    )


def assign_names(
    assets: Iterable[RetrievedAsset],
    group_folder: Optional[str] = None,
) -> List[ProcessedAsset]:
    """
    Name assets ``{folder}_{n}.{ext}``, numbering each folder separately.

    Args:
        assets: Retrieved assets in any order
        group_folder: Folder for every asset; when omitted each asset uses
            its container path, falling back to its group name

    Returns:
        ProcessedAssets ordered by folder, then sequence number
    """
    buckets: Dict[str, List[RetrievedAsset]] = defaultdict(list)
    for asset in assets:
        folder = safe_folder_name(group_folder or asset.container_path or asset.group_name)
        buckets[folder].append(asset)

    processed: List[ProcessedAsset] = []
    for folder in sorted(buckets, key=natural_key):
        ordered = sorted(buckets[folder], key=_asset_sort_key)
        for index, asset in enumerate(ordered, start=1):
            ext = infer_extension(
                asset.content_type, asset.original_identifier or asset.source_reference
            )
            processed.append(
                ProcessedAsset(
                    original_identifier=asset.original_identifier,
                    assigned_name=f"{folder}_{index}.{ext}",
                    payload=asset.payload,
                    group_folder=folder,
                    source_reference=asset.source_reference,
                )
            )
    return processed


def derive_group_key(filename: str) -> str:
    """
    Derive a group (SKU) key from a filename.

    Cascade, first match wins:
        1. text before the first ``_``
        2. text before the first ``-``
        3. text before the first space
        4. leading digits, at least two
        5. leading upper-case/digit block before a lower-case letter,
           space or dot, at least two characters
        6. leading alphanumeric run, truncated to 8 characters
    Returns ``UNMATCHED`` when nothing applies or a separator yields an
    empty prefix.
    """
    name = PurePosixPath(filename.replace("\\", "/")).name

    for separator in ("_", "-", " "):
        if separator in name:
            prefix = name.split(separator, 1)[0].strip()
            return prefix or UNMATCHED

    match = _NUMERIC_PREFIX.match(name)
    if match and len(match.group(1)) >= 2:
        return match.group(1)

    match = _UPPER_BLOCK.match(name)
    if match and len(match.group(1)) >= 2:
        return match.group(1)

    match = _ALNUM_PREFIX.match(name)
    if match:
        return match.group(1)[:8]

    return UNMATCHED


def split_prefix_key(filename: str) -> str:
    """
    Group key from the text before the first underscore only.

    Deprecated: use derive_group_key(), which also handles names without
    an underscore.
    """
    warnings.warn(
        "split_prefix_key() is deprecated; use derive_group_key()",
        DeprecationWarning,
        stacklevel=2,
    )
    name = PurePosixPath(filename.replace("\\", "/")).name
    parts = name.split("_")
    if len(parts) > 1 and parts[0].strip():
        return parts[0].strip()
    return UNMATCHED


def is_local_image(path: str) -> bool:
    """Image extension and no hidden or system path component."""
    parts = PurePosixPath(path.replace("\\", "/")).parts
    if not parts:
        return False
    if any(part.startswith(".") or part.startswith("__") for part in parts):
        return False
    name = parts[-1]
    return "." in name and name.rsplit(".", 1)[1].lower() in LOCAL_IMAGE_EXTENSIONS


@dataclass
class NamingPlan:
    """Where one local file goes in the output archive."""

    source_path: str
    group_folder: str
    assigned_name: str

    @property
    def member_path(self) -> str:
        return f"{self.group_folder}/{self.assigned_name}"


def categorize_files(paths: Sequence[str]) -> List[NamingPlan]:
    """
    Group local files by filename prefix, keeping their names.

    Hidden, system and non-image files are skipped. Files whose prefix
    cannot be derived go to ``UNMATCHED``.
    """
    plans = []
    seen: Dict[str, int] = {}
    for path in sorted(paths, key=natural_key):
        if not is_local_image(path):
            continue
        name = PurePosixPath(path.replace("\\", "/")).name
        group = derive_group_key(name)
        member = f"{group}/{name}".casefold()
        seen[member] = seen.get(member, 0) + 1
        if seen[member] > 1:
            stem, ext = name.rsplit(".", 1)
            name = f"{stem} ({seen[member]}).{ext}"
        plans.append(NamingPlan(path, group, name))
    return plans


def sequence_folder_files(paths: Sequence[str], group_by: str = "folder") -> List[NamingPlan]:
    """
    Rename local files ``{group}_{n}.{ext}`` in natural order per group.

    Args:
        paths: Relative file paths
        group_by: "folder" groups by immediate parent directory (``ROOT``
            for top-level files), "prefix" by derive_group_key()

    Returns:
        Plans ordered by group, then sequence number
    """
    if group_by not in ("folder", "prefix"):
        raise ValueError(f"group_by must be 'folder' or 'prefix', got {group_by!r}")

    groups: Dict[str, List[str]] = defaultdict(list)
    for path in paths:
        if not is_local_image(path):
            continue
        posix = PurePosixPath(path.replace("\\", "/"))
        if group_by == "folder":
            key = posix.parent.name if len(posix.parts) > 1 else ROOT_FOLDER
        else:
            key = derive_group_key(posix.name)
        groups[key].append(path)

    plans = []
    for key in sorted(groups, key=natural_key):
        ordered = sorted(
            groups[key],
            key=lambda p: (natural_key(PurePosixPath(p.replace("\\", "/")).name), natural_key(p)),
        )
        for index, path in enumerate(ordered, start=1):
            ext = path.rsplit(".", 1)[1].lower()
            plans.append(NamingPlan(path, key, f"{key}_{index}.{ext}"))
    return plans
