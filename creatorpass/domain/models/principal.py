from __future__ import annotations

from dataclasses import dataclass

from .enums import Role


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller as resolved from a bearer token."""

    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN
