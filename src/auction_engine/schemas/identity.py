"""Caller identity supplied by the upstream identity service."""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class Identity(BaseModel):
    """Authenticated caller. Trusted as given; no credential checks happen here."""

    model_config = ConfigDict(frozen=True)

    user_id: UUID
    role: Literal["user", "admin"] = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
