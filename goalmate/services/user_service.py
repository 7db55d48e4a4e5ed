"""
User directory service.
Accounts, passwords and sessions live with the identity provider; this keeps
the display identity and premium flag goals need.
"""
from sqlalchemy.orm import Session

from goalmate.models import User
from goalmate.schemas import UserCreate
from goalmate.repositories.user_repository import UserRepository
from goalmate.exceptions import UserNotFoundException, ValidationException


class UserService:
    """Service for the user directory"""

    def __init__(self, db: Session):
        self.db = db
        self.user_repo = UserRepository()

    def get_user(self, user_id: int) -> User:
        user = self.user_repo.get_by_id(self.db, user_id)
        if not user:
            raise UserNotFoundException(user_id)
        return user

    def create_user(self, user_data: UserCreate) -> User:
        if self.user_repo.get_by_email(self.db, user_data.email):
            raise ValidationException("email", "already registered")
        return self.user_repo.create(self.db, User(**user_data.model_dump()))
