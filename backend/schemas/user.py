from datetime import datetime
from typing import List, Optional

from models.user import UserRole
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Role labels used by the legacy console
ROLE_ALIASES = {
    "administrador": UserRole.ADMINISTRATOR,
    "operador": UserRole.OPERATOR,
    "tecnico": UserRole.TECHNICIAN,
    "técnico": UserRole.TECHNICIAN,
    "observador": UserRole.OBSERVER,
}


def parse_role(value) -> UserRole:
    if isinstance(value, UserRole):
        return value
    raw = str(value or "").strip()
    for role in UserRole:
        if raw.lower() == role.value.lower():
            return role
    try:
        return ROLE_ALIASES[raw.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown role {raw!r}. Valid roles: {', '.join(r.value for r in UserRole)}"
        ) from None


class Actor(BaseModel):
    """Who is performing a request"""

    username: str = "anonymous"
    role: UserRole = UserRole.OBSERVER
    assigned_sites: List[str] = Field(default_factory=list)

    @field_validator("role", mode="before")
    @classmethod
    def validate_role(cls, v):
        return parse_role(v)

    @property
    def can_mutate(self) -> bool:
        return self.role.can_mutate

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMINISTRATOR

    @property
    def site_scope(self) -> Optional[List[str]]:
        """Sites bulk operations are limited to; None means every site"""
        if self.is_admin or not self.assigned_sites:
            return None
        return list(self.assigned_sites)


class UserBase(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    full_name: Optional[str] = None
    role: UserRole = UserRole.OBSERVER
    assigned_sites: List[str] = Field(default_factory=list)

    @field_validator("role", mode="before")
    @classmethod
    def validate_role(cls, v):
        return parse_role(v)

    @field_validator("assigned_sites", mode="before")
    @classmethod
    def default_sites(cls, v):
        return v or []


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserResponse(UserBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime
