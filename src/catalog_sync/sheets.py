"""
Input loading: sheet exports and pasted link lists.

Sheet layout: column A is the group name, every other cell that starts with
``http`` is a reference. The first row is a header unless one of its cells
contains ``http``. Rows without references are dropped.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence

import polars as pl

from catalog_sync.naming import UNCATEGORIZED
from catalog_sync.schemas.groups import SourceGroup
from core.errors.exceptions import ValidationError

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = (".txt", ".list")
_CELL_SPLIT = re.compile(r"[,\t]")
_LINK_SPLIT = re.compile(r"[\s,]+")


def _is_link(cell: Optional[str]) -> bool:
    return bool(cell) and cell.strip().lower().startswith("http")


def groups_from_rows(rows: Sequence[Sequence[Optional[str]]]) -> List[SourceGroup]:
    """
    Convert sheet rows into SourceGroups.

    Args:
        rows: Cell values, row-major; None for empty cells

    Returns:
        One group per row that has at least one reference, in row order
    """
    if not rows:
        return []

    first = rows[0]
    has_header = not any(cell and "http" in cell.lower() for cell in first)
    data_rows = rows[1:] if has_header else rows

    groups: List[SourceGroup] = []
    for row in data_rows:
        if not row:
            continue
        name = (row[0] or "").replace("\ufeff", "").strip() or UNCATEGORIZED
        references = [cell.strip() for cell in row[1:] if _is_link(cell)]
        if not references:
            continue
        groups.append(SourceGroup(name=name, references=references))
    return groups


def read_sheet_rows(path: Path) -> List[List[Optional[str]]]:
    """
    Read a CSV/TSV export (via polars) or a plain text list into rows.

    Raises:
        ValidationError: File missing or unparseable
    """
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"Input file not found: {path}")

    if path.suffix.lower() in TEXT_SUFFIXES:
        text = path.read_text(encoding="utf-8-sig")
        return [
            [cell.strip() for cell in _CELL_SPLIT.split(line)]
            for line in text.splitlines()
            if line.strip()
        ]

    separator = "\t" if path.suffix.lower() == ".tsv" else ","
    try:
        df = pl.read_csv(
            path,
            has_header=False,
            separator=separator,
            infer_schema_length=0,
            truncate_ragged_lines=True,
            encoding="utf8-lossy",
        )
    except pl.exceptions.NoDataError:
        return []
    except Exception as e:
        raise ValidationError(f"Cannot parse sheet {path.name}: {e}", cause=e)

    return [list(row) for row in df.iter_rows()]


def load_source_groups(path: Path) -> List[SourceGroup]:
    """Load SourceGroups from a sheet export or text file."""
    groups = groups_from_rows(read_sheet_rows(path))
    logger.info(f"Loaded {len(groups)} groups from {Path(path).name}", extra={"groups": len(groups)})
    return groups


def groups_from_links(text: str, name: str = "Manual_Sync") -> List[SourceGroup]:
    """
    Build a single group from pasted links (newline, comma or space separated).

    Returns:
        [SourceGroup] or [] when the text holds no links
    """
    references = [token for token in _LINK_SPLIT.split(text or "") if _is_link(token)]
    if not references:
        return []
    return [SourceGroup(name=name.strip() or UNCATEGORIZED, references=references)]
