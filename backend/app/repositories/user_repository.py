"""User repository for data access."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.models.user import User


class UserRepository:
    """Repository for User model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: UUID) -> User | None:
        """Get a user by ID."""
        return self.db.query(User).filter(User.id == user_id).first()

    def get_by_email(self, email: str) -> User | None:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()

    def get_by_mobile(self, mobile: str) -> User | None:
        return self.db.query(User).filter(User.mobile == mobile.strip()).first()
