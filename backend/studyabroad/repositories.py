"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
courses, tests, appointments, transactions, cms content,
notifications). Repositories return SQLModel objects and perform
commits/refreshes where appropriate; services decide what to persist.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlmodel import Session, select

from . import models


def paginate(session: Session, stmt, page: int, limit: int) -> Tuple[list, int]:
    """Run `stmt` for one page and return `(rows, total_count)`."""
    total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
    rows = session.exec(stmt.offset((page - 1) * limit).limit(limit)).all()
    return list(rows), int(total)


class BaseRepository:
    """Shared add/get/delete helpers; subclasses set `model`."""
    model = None

    def __init__(self, session: Session):
        self.session = session

    def get(self, obj_id: int):
        """Fetch a row by primary key or `None`."""
        return self.session.get(self.model, obj_id)

    def save(self, obj):
        """Persist `obj` and return the refreshed instance."""
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.session.commit()

    def count(self, *conditions) -> int:
        stmt = select(func.count()).select_from(self.model)
        if conditions:
            stmt = stmt.where(*conditions)
        return int(self.session.exec(stmt).one())


class UserRepository(BaseRepository):
    """CRUD operations for `User` objects."""
    model = models.User

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by (case-insensitive) e-mail or `None`."""
        stmt = select(models.User).where(func.lower(models.User.email) == email.strip().lower())
        return self.session.exec(stmt).first()

    def get_by_verification_token(self, token: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.verification_token == token)
        return self.session.exec(stmt).first()

    def get_by_reset_token(self, token: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.reset_token == token)
        return self.session.exec(stmt).first()

    def search(self, search: Optional[str], role: Optional[models.UserRole], page: int, limit: int):
        stmt = select(models.User)
        if search:
            like = f"%{search.lower()}%"
            stmt = stmt.where(or_(
                func.lower(models.User.email).like(like),
                func.lower(models.User.first_name).like(like),
                func.lower(models.User.last_name).like(like),
            ))
        if role:
            stmt = stmt.where(models.User.role == role)
        return paginate(self.session, stmt.order_by(models.User.created_at.desc()), page, limit)

    def list_by_ids(self, ids: Sequence[int]) -> List[models.User]:
        if not ids:
            return []
        return list(self.session.exec(select(models.User).where(models.User.id.in_(ids))).all())

    def list_by_role(self, role: models.UserRole) -> List[models.User]:
        stmt = select(models.User).where(models.User.role == role, models.User.is_active == True)  # noqa: E712
        return list(self.session.exec(stmt).all())

    def recent(self, limit: int) -> List[models.User]:
        stmt = select(models.User).order_by(models.User.created_at.desc()).limit(limit)
        return list(self.session.exec(stmt).all())


class CourseRepository(BaseRepository):
    """Courses plus their module/lesson outline."""
    model = models.Course

    def get_by_slug(self, slug: str) -> Optional[models.Course]:
        return self.session.exec(select(models.Course).where(models.Course.slug == slug)).first()

    def slug_exists(self, slug: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(models.Course.id).where(models.Course.slug == slug)
        if exclude_id:
            stmt = stmt.where(models.Course.id != exclude_id)
        return self.session.exec(stmt).first() is not None

    def categories(self) -> List[str]:
        stmt = select(models.Course.category).where(models.Course.is_published == True).distinct()  # noqa: E712
        return sorted(c for c in self.session.exec(stmt).all() if c)

    def featured(self, limit: int) -> List[models.Course]:
        stmt = (
            select(models.Course)
            .where(models.Course.is_published == True, models.Course.is_featured == True)  # noqa: E712
            .order_by(models.Course.created_at.desc())
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())

    def modules(self, course_id: int) -> List[models.CourseModule]:
        stmt = (
            select(models.CourseModule)
            .where(models.CourseModule.course_id == course_id)
            .order_by(models.CourseModule.order_index, models.CourseModule.id)
        )
        return list(self.session.exec(stmt).all())

    def lessons(self, module_id: int) -> List[models.CourseLesson]:
        stmt = (
            select(models.CourseLesson)
            .where(models.CourseLesson.module_id == module_id)
            .order_by(models.CourseLesson.order_index, models.CourseLesson.id)
        )
        return list(self.session.exec(stmt).all())

    def lesson_ids(self, course_id: int) -> List[int]:
        stmt = (
            select(models.CourseLesson.id)
            .join(models.CourseModule, models.CourseModule.id == models.CourseLesson.module_id)
            .where(models.CourseModule.course_id == course_id, models.CourseLesson.is_published == True)  # noqa: E712
        )
        return list(self.session.exec(stmt).all())

    def get_module(self, module_id: int) -> Optional[models.CourseModule]:
        return self.session.get(models.CourseModule, module_id)

    def get_lesson(self, lesson_id: int) -> Optional[models.CourseLesson]:
        return self.session.get(models.CourseLesson, lesson_id)

    def recent_published(self, limit: int) -> List[models.Course]:
        stmt = (
            select(models.Course)
            .where(models.Course.is_published == True)  # noqa: E712
            .order_by(models.Course.updated_at.desc())
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())


class EnrollmentRepository(BaseRepository):
    model = models.CourseEnrollment

    def get_for(self, user_id: int, course_id: int) -> Optional[models.CourseEnrollment]:
        stmt = select(models.CourseEnrollment).where(
            models.CourseEnrollment.user_id == user_id,
            models.CourseEnrollment.course_id == course_id,
        )
        return self.session.exec(stmt).first()

    def list_for_user(self, user_id: int) -> List[models.CourseEnrollment]:
        stmt = (
            select(models.CourseEnrollment)
            .where(models.CourseEnrollment.user_id == user_id)
            .order_by(models.CourseEnrollment.enrolled_at.desc())
        )
        return list(self.session.exec(stmt).all())

    def count_for_course(self, course_id: int, active_only: bool = True) -> int:
        conds = [models.CourseEnrollment.course_id == course_id]
        if active_only:
            conds.append(models.CourseEnrollment.status != models.EnrollmentStatus.CANCELLED)
        return self.count(*conds)

    def recent(self, limit: int) -> List[models.CourseEnrollment]:
        stmt = select(models.CourseEnrollment).order_by(models.CourseEnrollment.enrolled_at.desc()).limit(limit)
        return list(self.session.exec(stmt).all())


class ReviewRepository(BaseRepository):
    model = models.CourseReview

    def get_for(self, user_id: int, course_id: int) -> Optional[models.CourseReview]:
        stmt = select(models.CourseReview).where(
            models.CourseReview.user_id == user_id,
            models.CourseReview.course_id == course_id,
        )
        return self.session.exec(stmt).first()

    def published_for_course(self, course_id: int, page: int, limit: int):
        stmt = (
            select(models.CourseReview)
            .where(models.CourseReview.course_id == course_id, models.CourseReview.is_published == True)  # noqa: E712
            .order_by(models.CourseReview.created_at.desc())
        )
        return paginate(self.session, stmt, page, limit)

    def ratings(self, course_id: int) -> List[int]:
        stmt = select(models.CourseReview.rating).where(
            models.CourseReview.course_id == course_id,
            models.CourseReview.is_published == True,  # noqa: E712
        )
        return list(self.session.exec(stmt).all())


class TestRepository(BaseRepository):
    """Tests, sections and questions."""
    __test__ = False
    model = models.Test

    def get_by_slug(self, slug: str) -> Optional[models.Test]:
        return self.session.exec(select(models.Test).where(models.Test.slug == slug)).first()

    def slug_exists(self, slug: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(models.Test.id).where(models.Test.slug == slug)
        if exclude_id:
            stmt = stmt.where(models.Test.id != exclude_id)
        return self.session.exec(stmt).first() is not None

    def sections(self, test_id: int) -> List[models.TestSection]:
        stmt = (
            select(models.TestSection)
            .where(models.TestSection.test_id == test_id)
            .order_by(models.TestSection.order_index, models.TestSection.id)
        )
        return list(self.session.exec(stmt).all())

    def questions(self, section_id: int) -> List[models.Question]:
        stmt = (
            select(models.Question)
            .where(models.Question.section_id == section_id)
            .order_by(models.Question.order_index, models.Question.id)
        )
        return list(self.session.exec(stmt).all())

    def get_section(self, section_id: int) -> Optional[models.TestSection]:
        return self.session.get(models.TestSection, section_id)

    def get_question(self, question_id: int) -> Optional[models.Question]:
        return self.session.get(models.Question, question_id)

    def count_questions(self, test_id: int) -> int:
        stmt = (
            select(func.count(models.Question.id))
            .join(models.TestSection, models.TestSection.id == models.Question.section_id)
            .where(models.TestSection.test_id == test_id)
        )
        return int(self.session.exec(stmt).one())

    def question_exists(self, section_id: int, question_text: str) -> bool:
        """Return True if a question with the same text already exists in the section."""
        stmt = select(models.Question.id).where(
            models.Question.section_id == section_id,
            models.Question.question_text == question_text,
        )
        return self.session.exec(stmt).first() is not None

    def featured(self, limit: int) -> List[models.Test]:
        stmt = (
            select(models.Test)
            .where(models.Test.is_published == True)  # noqa: E712
            .order_by(models.Test.created_at.desc())
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())


class AttemptRepository(BaseRepository):
    model = models.TestAttempt

    def in_progress(self, user_id: int, test_id: int) -> Optional[models.TestAttempt]:
        stmt = select(models.TestAttempt).where(
            models.TestAttempt.user_id == user_id,
            models.TestAttempt.test_id == test_id,
            models.TestAttempt.status == models.AttemptStatus.IN_PROGRESS,
        )
        return self.session.exec(stmt).first()

    def for_user(self, user_id: int, test_id: Optional[int] = None, status: Optional[models.AttemptStatus] = None):
        stmt = select(models.TestAttempt).where(models.TestAttempt.user_id == user_id)
        if test_id:
            stmt = stmt.where(models.TestAttempt.test_id == test_id)
        if status:
            stmt = stmt.where(models.TestAttempt.status == status)
        return list(self.session.exec(stmt.order_by(models.TestAttempt.started_at.desc())).all())

    def for_test(self, test_id: int, page: int, limit: int):
        stmt = (
            select(models.TestAttempt)
            .where(models.TestAttempt.test_id == test_id)
            .order_by(models.TestAttempt.started_at.desc())
        )
        return paginate(self.session, stmt, page, limit)

    def all_for_test(self, test_id: int) -> List[models.TestAttempt]:
        stmt = select(models.TestAttempt).where(models.TestAttempt.test_id == test_id)
        return list(self.session.exec(stmt).all())


class ConsultantRepository(BaseRepository):
    model = models.Consultant

    def active(self) -> List[models.Consultant]:
        stmt = select(models.Consultant).where(models.Consultant.is_active == True).order_by(models.Consultant.name)  # noqa: E712
        return list(self.session.exec(stmt).all())

    def all(self) -> List[models.Consultant]:
        return list(self.session.exec(select(models.Consultant).order_by(models.Consultant.name)).all())

    def for_user(self, user_id: int) -> Optional[models.Consultant]:
        return self.session.exec(select(models.Consultant).where(models.Consultant.user_id == user_id)).first()


class AppointmentTypeRepository(BaseRepository):
    model = models.AppointmentType

    def list(self, active_only: bool = True) -> List[models.AppointmentType]:
        stmt = select(models.AppointmentType)
        if active_only:
            stmt = stmt.where(models.AppointmentType.is_active == True)  # noqa: E712
        return list(self.session.exec(stmt.order_by(models.AppointmentType.id)).all())


class AppointmentRepository(BaseRepository):
    model = models.Appointment

    def active_between(self, consultant_id: int, start: datetime, end: datetime,
                       exclude_id: Optional[int] = None) -> List[models.Appointment]:
        """Active appointments of a consultant starting in `[start, end)`."""
        stmt = select(models.Appointment).where(
            models.Appointment.consultant_id == consultant_id,
            models.Appointment.status.in_(models.ACTIVE_APPOINTMENT_STATUSES),
            models.Appointment.scheduled_at >= start,
            models.Appointment.scheduled_at < end,
        )
        if exclude_id:
            stmt = stmt.where(models.Appointment.id != exclude_id)
        return list(self.session.exec(stmt).all())

    def messages(self, appointment_id: int) -> List[models.AppointmentMessage]:
        stmt = (
            select(models.AppointmentMessage)
            .where(models.AppointmentMessage.appointment_id == appointment_id)
            .order_by(models.AppointmentMessage.created_at, models.AppointmentMessage.id)
        )
        return list(self.session.exec(stmt).all())

    def recent(self, limit: int) -> List[models.Appointment]:
        stmt = select(models.Appointment).order_by(models.Appointment.created_at.desc()).limit(limit)
        return list(self.session.exec(stmt).all())


class TransactionRepository(BaseRepository):
    model = models.Transaction

    def get_by_reference(self, reference_id: str) -> Optional[models.Transaction]:
        stmt = select(models.Transaction).where(models.Transaction.reference_id == reference_id)
        return self.session.exec(stmt).first()

    def get_by_payment_id(self, payment_id: str) -> Optional[models.Transaction]:
        stmt = select(models.Transaction).where(models.Transaction.payment_id == payment_id)
        return self.session.exec(stmt).first()

    def completed_for(self, user_id: int, tx_type: models.TransactionType, **target) -> Optional[models.Transaction]:
        """Return a COMPLETED transaction of `tx_type` for the given target ids."""
        stmt = select(models.Transaction).where(
            models.Transaction.user_id == user_id,
            models.Transaction.type == tx_type,
            models.Transaction.status == models.TransactionStatus.COMPLETED,
        )
        for column, value in target.items():
            stmt = stmt.where(getattr(models.Transaction, column) == value)
        return self.session.exec(stmt).first()

    def search(self, page: int, limit: int, user_id: Optional[int] = None,
               status: Optional[models.TransactionStatus] = None,
               tx_type: Optional[models.TransactionType] = None,
               gateway: Optional[models.PaymentGateway] = None):
        stmt = select(models.Transaction)
        if user_id:
            stmt = stmt.where(models.Transaction.user_id == user_id)
        if status:
            stmt = stmt.where(models.Transaction.status == status)
        if tx_type:
            stmt = stmt.where(models.Transaction.type == tx_type)
        if gateway:
            stmt = stmt.where(models.Transaction.gateway == gateway)
        return paginate(self.session, stmt.order_by(models.Transaction.created_at.desc()), page, limit)

    def revenue(self, start: Optional[datetime] = None, end: Optional[datetime] = None,
                tx_type: Optional[models.TransactionType] = None) -> float:
        """Sum of COMPLETED amounts created in `[start, end)`."""
        stmt = select(func.coalesce(func.sum(models.Transaction.amount), 0.0)).where(
            models.Transaction.status == models.TransactionStatus.COMPLETED
        )
        if start:
            stmt = stmt.where(models.Transaction.created_at >= start)
        if end:
            stmt = stmt.where(models.Transaction.created_at < end)
        if tx_type:
            stmt = stmt.where(models.Transaction.type == tx_type)
        return float(self.session.exec(stmt).one() or 0.0)

    def grouped_count(self, column) -> dict:
        stmt = select(column, func.count(models.Transaction.id)).group_by(column)
        return {_enum_value(k): int(v) for k, v in self.session.exec(stmt).all()}

    def recent(self, limit: int) -> List[models.Transaction]:
        stmt = select(models.Transaction).order_by(models.Transaction.created_at.desc()).limit(limit)
        return list(self.session.exec(stmt).all())


class PageRepository(BaseRepository):
    model = models.Page

    def get_by_slug(self, slug: str) -> Optional[models.Page]:
        return self.session.exec(select(models.Page).where(models.Page.slug == slug)).first()

    def list(self, published_only: bool) -> List[models.Page]:
        stmt = select(models.Page)
        if published_only:
            stmt = stmt.where(models.Page.is_published == True)  # noqa: E712
        return list(self.session.exec(stmt.order_by(models.Page.title)).all())

    def sections(self, page_id: int, active_only: bool = False) -> List[models.PageSection]:
        stmt = select(models.PageSection).where(models.PageSection.page_id == page_id)
        if active_only:
            stmt = stmt.where(models.PageSection.is_active == True)  # noqa: E712
        return list(self.session.exec(stmt.order_by(models.PageSection.order_index, models.PageSection.id)).all())


class MenuRepository(BaseRepository):
    model = models.Menu

    def get_by_slug(self, slug: str) -> Optional[models.Menu]:
        return self.session.exec(select(models.Menu).where(models.Menu.slug == slug)).first()

    def list(self, location: Optional[models.MenuLocation] = None, include_inactive: bool = False) -> List[models.Menu]:
        stmt = select(models.Menu)
        if location:
            stmt = stmt.where(models.Menu.location == location)
        if not include_inactive:
            stmt = stmt.where(models.Menu.is_active == True)  # noqa: E712
        return list(self.session.exec(stmt.order_by(models.Menu.name)).all())

    def active_at(self, location: models.MenuLocation) -> Optional[models.Menu]:
        stmt = (
            select(models.Menu)
            .where(models.Menu.location == location, models.Menu.is_active == True)  # noqa: E712
            .order_by(models.Menu.id)
        )
        return self.session.exec(stmt).first()

    def items(self, menu_id: int, include_inactive: bool = False) -> List[models.MenuItem]:
        stmt = select(models.MenuItem).where(models.MenuItem.menu_id == menu_id)
        if not include_inactive:
            stmt = stmt.where(models.MenuItem.is_active == True)  # noqa: E712
        return list(self.session.exec(stmt.order_by(models.MenuItem.order_index, models.MenuItem.id)).all())

    def get_item(self, item_id: int) -> Optional[models.MenuItem]:
        return self.session.get(models.MenuItem, item_id)

    def next_item_index(self, menu_id: int, parent_id: Optional[int]) -> int:
        stmt = select(func.max(models.MenuItem.order_index)).where(
            models.MenuItem.menu_id == menu_id,
            models.MenuItem.parent_id == parent_id,
        )
        current = self.session.exec(stmt).one()
        return 0 if current is None else int(current) + 1


class ContentBlockRepository(BaseRepository):
    model = models.ContentBlock

    def by_kind(self, kind: models.ContentKind, active_only: bool = True) -> List[models.ContentBlock]:
        stmt = select(models.ContentBlock).where(models.ContentBlock.kind == kind)
        if active_only:
            stmt = stmt.where(models.ContentBlock.is_active == True)  # noqa: E712
        return list(self.session.exec(stmt.order_by(models.ContentBlock.order_index, models.ContentBlock.id)).all())


class BlogRepository(BaseRepository):
    model = models.BlogPost

    def get_by_slug(self, slug: str) -> Optional[models.BlogPost]:
        return self.session.exec(select(models.BlogPost).where(models.BlogPost.slug == slug)).first()

    def search(self, page: int, limit: int, published_only: bool = True,
               category: Optional[str] = None, search: Optional[str] = None):
        stmt = select(models.BlogPost)
        if published_only:
            stmt = stmt.where(models.BlogPost.is_published == True)  # noqa: E712
        if category:
            stmt = stmt.where(models.BlogPost.category == category)
        if search:
            like = f"%{search.lower()}%"
            stmt = stmt.where(or_(
                func.lower(models.BlogPost.title).like(like),
                func.lower(models.BlogPost.content).like(like),
            ))
        stmt = stmt.order_by(models.BlogPost.published_at.desc(), models.BlogPost.created_at.desc())
        return paginate(self.session, stmt, page, limit)

    def categories(self) -> List[dict]:
        stmt = (
            select(models.BlogPost.category, func.count(models.BlogPost.id))
            .where(models.BlogPost.is_published == True, models.BlogPost.category != None)  # noqa: E711,E712
            .group_by(models.BlogPost.category)
            .order_by(models.BlogPost.category)
        )
        return [{"name": name, "count": int(count)} for name, count in self.session.exec(stmt).all()]


class SettingRepository(BaseRepository):
    model = models.Setting

    def get_value(self, category: str, key: str) -> Optional[models.Setting]:
        stmt = select(models.Setting).where(models.Setting.category == category, models.Setting.key == key)
        return self.session.exec(stmt).first()

    def by_category(self, category: Optional[str] = None) -> List[models.Setting]:
        stmt = select(models.Setting)
        if category:
            stmt = stmt.where(models.Setting.category == category)
        return list(self.session.exec(stmt.order_by(models.Setting.category, models.Setting.key)).all())


class MediaRepository(BaseRepository):
    model = models.MediaFile

    def search(self, page: int, limit: int, kind: Optional[str] = None):
        stmt = select(models.MediaFile)
        if kind:
            stmt = stmt.where(models.MediaFile.kind == kind)
        return paginate(self.session, stmt.order_by(models.MediaFile.created_at.desc()), page, limit)


class InquiryRepository(BaseRepository):
    model = models.Inquiry

    def search(self, page: int, limit: int, status: Optional[models.InquiryStatus] = None,
               kind: Optional[models.InquiryKind] = None):
        stmt = select(models.Inquiry)
        if status:
            stmt = stmt.where(models.Inquiry.status == status)
        if kind:
            stmt = stmt.where(models.Inquiry.kind == kind)
        return paginate(self.session, stmt.order_by(models.Inquiry.created_at.desc()), page, limit)


class NotificationRepository(BaseRepository):
    model = models.Notification

    def search(self, user_id: int, page: int, limit: int, unread_only: bool = False, ntype: Optional[str] = None):
        stmt = select(models.Notification).where(models.Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(models.Notification.is_read == False)  # noqa: E712
        if ntype:
            stmt = stmt.where(models.Notification.type == ntype)
        return paginate(self.session, stmt.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()), page, limit)

    def unread_count(self, user_id: int) -> int:
        return self.count(models.Notification.user_id == user_id, models.Notification.is_read == False)  # noqa: E712

    def unread(self, user_id: int) -> List[models.Notification]:
        stmt = select(models.Notification).where(
            models.Notification.user_id == user_id,
            models.Notification.is_read == False,  # noqa: E712
        )
        return list(self.session.exec(stmt).all())


def _enum_value(value):
    return getattr(value, "value", value)
