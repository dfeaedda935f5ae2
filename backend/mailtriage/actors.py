"""The acting user behind a request."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    id: int
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def can_act_for(self, user_id: int) -> bool:
        return self.is_admin or self.id == user_id
