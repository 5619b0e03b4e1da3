"""Type definitions for access control."""

from dataclasses import dataclass


@dataclass
class UserContext:
    """Identity of the caller, established upstream of the query service.

    Attributes:
        user_id: The authenticated principal's ID
    """

    user_id: str


@dataclass
class Principal:
    """A user as stored in the access tables.

    Attributes:
        id: User ID
        email: Login email
        name: Display name
        role_id: The single role the user belongs to (None = no role grants)
        suspended: Suspended users resolve to an empty access set
    """

    id: str
    email: str
    name: str
    role_id: str | None = None
    suspended: bool = False
