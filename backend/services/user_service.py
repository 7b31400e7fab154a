import logging
from typing import List, Optional

from models.user import User
from passlib.context import CryptContext
from schemas.user import UserCreate
from sqlalchemy.orm import Session
from utils.clock import utcnow

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class UserService:
    """Console users; roles decide whether a user may mutate state"""

    def verify_password(self, plain_password: str, password_hash: str) -> bool:
        return pwd_context.verify(plain_password, password_hash)

    def get_password_hash(self, password: str) -> str:
        return pwd_context.hash(password)

    def get_user(self, db: Session, username: str) -> Optional[User]:
        return db.query(User).filter(User.username == username).first()

    def get_active_user(self, db: Session, username: str) -> Optional[User]:
        return (
            db.query(User)
            .filter(User.username == username, User.is_active.is_(True))
            .first()
        )

    def list_users(self, db: Session) -> List[User]:
        return db.query(User).order_by(User.username).all()

    def create_user(self, db: Session, user_data: UserCreate) -> User:
        if self.get_user(db, user_data.username):
            raise ValueError(f"User {user_data.username} already exists")

        try:
            user = User(
                username=user_data.username,
                password_hash=self.get_password_hash(user_data.password),
                full_name=user_data.full_name,
                role=user_data.role.value,
                assigned_sites=list(user_data.assigned_sites),
                is_active=True,
            )
            db.add(user)
            db.commit()
            db.refresh(user)

            logger.info(f"Created user {user.username} ({user.role})")
            return user

        except Exception as e:
            db.rollback()
            logger.error(f"Failed to create user {user_data.username}: {e}")
            raise

    def authenticate(self, db: Session, username: str, password: str) -> Optional[User]:
        user = self.get_active_user(db, username)
        if not user or not self.verify_password(password, user.password_hash):
            return None

        user.last_login = utcnow()
        db.commit()
        return user


# Global instance
user_service = UserService()
