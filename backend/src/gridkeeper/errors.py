"""Exceptions raised across the query and view layers."""


class GridkeeperError(Exception):
    """Base class for all gridkeeper errors."""

    pass


class AccessDenied(GridkeeperError):
    """The principal lacks the capability required for the operation."""

    pass


class ValidationFailure(GridkeeperError):
    """A request was well-formed but semantically invalid (e.g. duplicate view name)."""

    pass


class UnknownEntity(GridkeeperError):
    """The requested resource is not a supported entity."""

    def __init__(self, name: str):
        super().__init__(f"Entity '{name}' not found")
        self.name = name


class NotFound(GridkeeperError):
    """A referenced record (e.g. a view) does not exist."""

    pass
