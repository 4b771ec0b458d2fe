from dataclasses import dataclass

from booking_core.domain.enums import ActorModel

ROLE_TO_MODEL = {
    "user": ActorModel.USER,
    "driver": ActorModel.DRIVER,
    "admin": ActorModel.ADMIN,
}


@dataclass(frozen=True)
class Actor:
    """Authenticated caller: identity plus the model it acts as."""

    id: str
    model: ActorModel

    @property
    def is_admin(self) -> bool:
        return self.model == ActorModel.ADMIN

    @classmethod
    def from_role(cls, actor_id: str, role: str) -> "Actor":
        return cls(id=actor_id, model=ROLE_TO_MODEL[role])
