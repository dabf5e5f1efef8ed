"""
Shared model plumbing — timestamps and the camelCase record base.

Records are stored and served with camelCase keys (``projectId``,
``completedAt``) but are addressed with snake_case attributes in
Python.  ``populate_by_name`` lets both spellings load.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid.uuid4())


class RecordModel(BaseModel):
    """Base for persisted records (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_dict(self) -> dict[str, Any]:
        """Serialize with wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)
