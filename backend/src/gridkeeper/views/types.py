"""Saved view types."""

from dataclasses import dataclass, field
from typing import Any

# Name of the per-(user, resource) default view
DEFAULT_VIEW_NAME = "grid"


@dataclass
class View:
    """A named, persisted grid configuration owned by one user for one resource."""

    id: str
    owner_id: str
    resource: str
    name: str
    columns: list[str] = field(default_factory=list)
    filters: dict[str, Any] | None = None
    sort: list[dict[str, str]] = field(default_factory=list)
    column_order: list[str] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_default(self) -> bool:
        return self.name == DEFAULT_VIEW_NAME

    def to_summary(self) -> dict[str, str]:
        return {"id": self.id, "viewName": self.name}

    def to_dict(self) -> dict[str, Any]:
        """Convert to API response dict."""
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "resource": self.resource,
            "viewName": self.name,
            "columns": self.columns,
            "filters": self.filters,
            "sort": self.sort,
            "columnOrder": self.column_order,
            "groupBy": self.group_by,
            "isDefault": self.is_default,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
