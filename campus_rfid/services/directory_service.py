"""
Directory Service.
Resolves badge taps to active campus users. Read-only.
"""
from typing import Optional, List, Set
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
import logging

from campus_rfid.models.database_models import User, Enrollment
from campus_rfid.schemas.schemas import Role
from campus_rfid.exceptions import SubjectNotFound, BadgeMismatch

logger = logging.getLogger(__name__)


class DirectoryService:
    """Lookups against the campus user directory."""

    @staticmethod
    async def lookup_active_user(
        db: AsyncSession,
        user_id: str,
        badge_id: str
    ) -> Optional[User]:
        """Active user matching both the id and the RFID card, or None."""
        query = select(User).where(
            and_(
                User.user_id == user_id,
                User.rfid_card_id == badge_id,
                User.is_active.is_(True)
            )
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def resolve_subject(
        db: AsyncSession,
        claimed_id: str,
        badge_id: str
    ) -> User:
        """
        Resolve the subject of a badge tap.

        The card must belong to the claimed identity; a mismatch is
        rejected and never corrected to the card's real owner.
        """
        user = await DirectoryService.lookup_active_user(db, claimed_id, badge_id)
        if user is None:
            logger.info(f"Rejected badge {badge_id} for claimed subject {claimed_id}")
            raise SubjectNotFound("Invalid user or RFID card")
        return user

    @staticmethod
    async def resolve_student(
        db: AsyncSession,
        claimed_id: str,
        badge_id: str
    ) -> User:
        """Resolve a dining swipe: the subject must be an active student holding this card."""
        result = await db.execute(
            select(User).where(
                and_(
                    User.user_id == claimed_id,
                    User.role == Role.student.value,
                    User.is_active.is_(True)
                )
            )
        )
        student = result.scalar_one_or_none()
        if student is None:
            raise SubjectNotFound("Student not found")
        if student.rfid_card_id != badge_id:
            raise BadgeMismatch("RFID card mismatch")
        return student

    @staticmethod
    async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.user_id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def list_enrolled_subjects(db: AsyncSession, session_id: str) -> Set[str]:
        result = await db.execute(
            select(Enrollment.student_id).where(Enrollment.session_id == session_id)
        )
        return set(result.scalars().all())

    @staticmethod
    async def users_in_group(
        db: AsyncSession,
        role: Optional[Role] = None,
        department: Optional[str] = None,
        year: Optional[int] = None,
        hostel_name: Optional[str] = None
    ) -> List[User]:
        """Active users matching every given filter."""
        conditions = [User.is_active.is_(True)]
        if role is not None:
            conditions.append(User.role == role.value)
        if department is not None:
            conditions.append(User.department == department)
        if year is not None:
            conditions.append(User.year == year)
        if hostel_name is not None:
            conditions.append(User.hostel_name == hostel_name)

        result = await db.execute(select(User).where(and_(*conditions)).order_by(User.user_id))
        return list(result.scalars().all())
