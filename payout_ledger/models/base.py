from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ConfigDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentModel(BaseModel):
    """Base for records persisted through the document store."""

    id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        validate_default=True,
        extra="ignore"
    )

    def to_document(self) -> Dict[str, Any]:
        """Dump for insertion; the store assigns the id."""
        return self.model_dump(exclude={"id"})

    @classmethod
    def from_document(cls, doc: Dict[str, Any]):
        return cls.model_validate(doc)
