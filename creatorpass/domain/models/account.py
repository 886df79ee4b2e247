"""Account model mirroring the identity data the engine depends on."""

from datetime import datetime, timezone
from typing import Optional

from .enums import Role


class Account:
    """
    Local mirror of a platform user.

    Attributes:
        id: Principal identifier shared with the identity service
        email: Contact address forwarded to the payment gateway
        username: Display name forwarded to the payment gateway
        role: viewer, creator or admin
        external_customer_id: Cached gateway customer handle, if any
        created_at: Row creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        id: str,
        email: Optional[str] = None,
        username: Optional[str] = None,
        role: Role = Role.VIEWER,
        external_customer_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.email = email
        self.username = username
        self.role = role
        self.external_customer_id = external_customer_id
        now = datetime.now(timezone.utc)
        self.created_at = created_at or now
        self.updated_at = updated_at or now

    def is_creator(self) -> bool:
        return self.role is Role.CREATOR

    def __repr__(self) -> str:
        return f"<Account id={self.id} role={self.role.value}>"
