"""Saved views: persistence, orchestration and response shaping."""

from gridkeeper.views.types import DEFAULT_VIEW_NAME, View
from gridkeeper.views.store import ViewStore
from gridkeeper.views.service import ViewParams, ViewService

__all__ = [
    "DEFAULT_VIEW_NAME",
    "View",
    "ViewParams",
    "ViewService",
    "ViewStore",
]
