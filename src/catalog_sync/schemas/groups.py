"""
Input schema for one named output unit.

A SourceGroup is one row of the input sheet: the group (SKU) name and the
references to retrieve for it.
"""

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceGroup(BaseModel):
    """Schema for one named group of source references.

    Attributes:
        name: Group (SKU) name, becomes the archive subfolder
        references: Ordered source references (URLs, folder links, gallery pages)

    Example:
        >>> group = SourceGroup(name="SKU1", references=["http://x/a.jpg"])
        >>> group.primary_reference
        'http://x/a.jpg'
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Group (SKU) name", min_length=1)
    references: List[str] = Field(
        default_factory=list,
        description="Ordered source references",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject whitespace-only names."""
        if not v.strip():
            raise ValueError("name cannot be empty or whitespace")
        return v.strip()

    @field_validator("references")
    @classmethod
    def strip_references(cls, v: List[str]) -> List[str]:
        """Trim references and drop empty entries, keeping order."""
        return [ref.strip() for ref in v if ref and ref.strip()]

    @property
    def primary_reference(self) -> str:
        """First reference, or empty string when there is none."""
        return self.references[0] if self.references else ""
