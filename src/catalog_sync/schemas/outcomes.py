"""
Per-group outcome records.

One GroupOutcome is produced per SourceGroup after its retrieval completes
and is never mutated afterwards. The archive report is built from these.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class OutcomeStatus(str, Enum):
    """Result of retrieving one group."""

    SUCCESS = "Success"
    PARTIAL = "Partial"
    FAILED = "Failed"


class GroupOutcome(BaseModel):
    """Schema for one group's retrieval outcome.

    Attributes:
        group_name: Group (SKU) name as written to the archive
        primary_reference: First source reference of the group
        status: Success, Partial or Failed
        assets_found: Number of assets retrieved
        notes: Human-readable summary
        completed_at: UTC timestamp when the group finished
    """

    model_config = ConfigDict(frozen=True)

    group_name: str = Field(..., min_length=1)
    primary_reference: str = Field(default="")
    status: OutcomeStatus
    assets_found: int = Field(default=0, ge=0)
    notes: str = Field(default="")
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("completed_at")
    def serialize_completed_at(self, completed_at: datetime) -> str:
        return completed_at.isoformat()

    @classmethod
    def from_counts(
        cls,
        group_name: str,
        primary_reference: str,
        found: int,
        attempted: int,
        notes: str = "",
        assets_found: Optional[int] = None,
    ) -> "GroupOutcome":
        """
        Build an outcome from success and attempt counts.

        All attempted items retrieved -> Success, some -> Partial,
        none -> Failed. ``assets_found`` overrides the reported count when
        one item can yield several assets (archives).
        """
        if found <= 0:
            status = OutcomeStatus.FAILED
        elif found >= attempted:
            status = OutcomeStatus.SUCCESS
        else:
            status = OutcomeStatus.PARTIAL

        if not notes:
            notes = f"{found}/{attempted} captured." if attempted else "No assets found."

        return cls(
            group_name=group_name,
            primary_reference=primary_reference,
            status=status,
            assets_found=max(found if assets_found is None else assets_found, 0),
            notes=notes,
        )

    @classmethod
    def failed(cls, group_name: str, primary_reference: str, notes: str) -> "GroupOutcome":
        """Outcome for a group that produced nothing."""
        return cls(
            group_name=group_name,
            primary_reference=primary_reference,
            status=OutcomeStatus.FAILED,
            assets_found=0,
            notes=notes,
        )
