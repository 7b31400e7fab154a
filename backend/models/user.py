import enum

from database import Base, TimestampMixin
from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String


class UserRole(str, enum.Enum):
    ADMINISTRATOR = "Administrator"
    OPERATOR = "Operator"
    TECHNICIAN = "Technician"
    OBSERVER = "Observer"

    @property
    def can_mutate(self) -> bool:
        return self != UserRole.OBSERVER


class User(Base, TimestampMixin):
    """Console user"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255))
    role = Column(String(20), nullable=False, default=UserRole.OBSERVER.value)
    # Default site filter only, not an access boundary
    assigned_sites = Column(JSON, default=list)
    is_active = Column(Boolean, default=True, index=True)
    last_login = Column(DateTime)
