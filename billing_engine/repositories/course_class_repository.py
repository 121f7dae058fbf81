"""Repository for offered classes."""

from typing import Optional

from sqlalchemy.orm import Session

from billing_engine.models.course_class import CourseClass
from billing_engine.repositories.base_repository import BaseRepository


class CourseClassRepository(BaseRepository[CourseClass]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, CourseClass)

    def get_by_public_id(self, class_id: str) -> Optional[CourseClass]:
        """Look up a class by the identifier carried in checkout metadata."""
        return self.find_one_by(class_id=class_id)
