"""Repository for Student lookups and conflict-safe creation."""

from typing import Optional

from sqlalchemy.orm import Session

from billing_engine.models.student import Student
from billing_engine.repositories.base_repository import BaseRepository


class StudentRepository(BaseRepository[Student]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, Student)

    def get_by_email(self, email: str) -> Optional[Student]:
        """Exact match on the stored (already normalized) email."""
        return self.find_one_by(email=email)

    def insert_if_absent(self, email: str, full_name: Optional[str] = None) -> bool:
        """Insert a student row unless the email already exists. Returns True when inserted."""
        return (
            self.insert_ignoring_conflict(
                [{"email": email, "full_name": full_name}], conflict_columns=["email"]
            )
            > 0
        )
