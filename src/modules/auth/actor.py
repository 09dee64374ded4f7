import uuid
from dataclasses import dataclass

from src.models.enums import UserRole


@dataclass(frozen=True)
class Actor:
    """The user performing an operation.

    Built once per request from the verified token and the ``users`` row,
    then passed explicitly into every service call.
    """

    id: uuid.UUID
    role: UserRole
    team_id: uuid.UUID | None
    name: str = ""
    email: str | None = None

    @property
    def is_manager(self) -> bool:
        return self.role in (UserRole.MANAGER, UserRole.ADMIN)

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(
            id=user.id,
            role=user.role,
            team_id=user.team_id,
            name=user.name,
            email=user.email,
        )
