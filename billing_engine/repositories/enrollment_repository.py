"""Repository for enrollments."""

from typing import Optional

from sqlalchemy.orm import Session

from billing_engine.core.exceptions import RepositoryException
from billing_engine.models.enrollment import Enrollment, EnrollmentStatus
from billing_engine.repositories.base_repository import BaseRepository


class EnrollmentRepository(BaseRepository[Enrollment]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, Enrollment)

    def get_for(self, student_id: str, class_id: str) -> Optional[Enrollment]:
        return self.find_one_by(student_id=student_id, class_id=class_id)

    def get_or_create(
        self, student_id: str, class_id: str, status: str = EnrollmentStatus.REGISTERED.value
    ) -> tuple[Enrollment, bool]:
        """
        Return the enrollment for (student, class), creating it when missing.

        Returns:
            (enrollment, created)
        """
        created = (
            self.insert_ignoring_conflict(
                [{"student_id": student_id, "class_id": class_id, "status": status}],
                conflict_columns=["student_id", "class_id"],
            )
            > 0
        )
        enrollment = self.get_for(student_id, class_id)
        if enrollment is None:
            # Only reachable if the row vanished between insert and select
            raise RepositoryException(
                f"Enrollment for student {student_id} / class {class_id} not found"
            )
        return enrollment, created
