"""Course catalog, enrollment, progress and reviews."""

import logging
from collections import Counter
from typing import Optional

from sqlalchemy import func, or_
from sqlmodel import Session, select

from .. import models, repositories
from ..config import settings
from ..database import utcnow
from ..errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError, PaymentRequiredError
from ..serializers import course_out, course_summary, lesson_out, user_brief
from ..utils.mailer import EmailType, send_email
from ..utils.pagination import pagination_block
from ..utils.text import slugify, unique_slug
from .notifications import NotificationService

logger = logging.getLogger("studyabroad.courses")

SORT_COLUMNS = {
    "title": models.Course.title,
    "price": models.Course.price,
    "rating": models.Course.rating,
    "students": models.Course.total_students,
    "created": models.Course.created_at,
}

UNENROLL_PROGRESS_LIMIT = 50


class CourseService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.CourseRepository(session)
        self.enrollments = repositories.EnrollmentRepository(session)
        self.reviews = repositories.ReviewRepository(session)

    # -- lookup -----------------------------------------------------------

    def get(self, identifier, include_drafts: bool = False) -> models.Course:
        """Course by numeric id or slug; drafts are hidden unless requested."""
        ident = str(identifier)
        course = self.repo.get(int(ident)) if ident.isdigit() else self.repo.get_by_slug(ident)
        if not course or (not course.is_published and not include_drafts):
            raise NotFoundError("Course not found")
        return course

    def active_enrollment(self, user: Optional[models.User], course_id: int) -> Optional[models.CourseEnrollment]:
        if user is None:
            return None
        enrollment = self.enrollments.get_for(user.id, course_id)
        if enrollment and enrollment.status != models.EnrollmentStatus.CANCELLED:
            return enrollment
        return None

    # -- catalog ----------------------------------------------------------

    def list(self, *, search: Optional[str] = None, category: Optional[str] = None,
             level: Optional[models.CourseLevel] = None, min_price: Optional[float] = None,
             max_price: Optional[float] = None, featured: Optional[bool] = None,
             sort_by: str = "created", sort_order: str = "desc", page: int = 1, limit: int = 12,
             published_only: bool = True) -> dict:
        stmt = select(models.Course)
        if published_only:
            stmt = stmt.where(models.Course.is_published == True)  # noqa: E712
        if search:
            like = f"%{search.lower()}%"
            stmt = stmt.where(or_(
                func.lower(models.Course.title).like(like),
                func.lower(models.Course.description).like(like),
                func.lower(models.Course.instructor_name).like(like),
            ))
        if category:
            stmt = stmt.where(models.Course.category == category)
        if level:
            stmt = stmt.where(models.Course.level == level)
        if min_price is not None:
            stmt = stmt.where(models.Course.price >= min_price)
        if max_price is not None:
            stmt = stmt.where(models.Course.price <= max_price)
        if featured is not None:
            stmt = stmt.where(models.Course.is_featured == featured)
        column = SORT_COLUMNS.get(sort_by, models.Course.created_at)
        stmt = stmt.order_by(column.asc() if sort_order == "asc" else column.desc(), models.Course.id)
        courses, total = repositories.paginate(self.session, stmt, page, limit)
        return {
            "courses": [course_summary(c) for c in courses],
            "pagination": pagination_block(page, limit, total),
            "categories": self.repo.categories(),
        }

    def outline(self, course: models.Course, full: bool = False) -> list:
        """Modules with their lessons; lesson content only when `full`."""
        out = []
        for module in self.repo.modules(course.id):
            if not module.is_published and not full:
                continue
            lessons = [
                lesson_out(lesson, with_content=full)
                for lesson in self.repo.lessons(module.id)
                if lesson.is_published or full
            ]
            out.append({**module.model_dump(), "lessons": lessons})
        return out

    def detail(self, identifier, user: Optional[models.User]) -> dict:
        is_admin = bool(user and user.is_admin)
        course = self.get(identifier, include_drafts=is_admin)
        enrollment = self.active_enrollment(user, course.id)
        return {
            "course": course_out(course),
            "modules": self.outline(course),
            "is_enrolled": enrollment is not None,
            "enrollment": enrollment.model_dump() if enrollment else None,
        }

    def lessons(self, course_id: int, user: models.User) -> dict:
        course = self.get(course_id, include_drafts=user.is_admin)
        has_access = user.is_admin or self.active_enrollment(user, course.id) is not None
        modules = []
        for module in self.outline(course, full=True):
            if has_access:
                modules.append(module)
                continue
            previews = [lesson for lesson in module["lessons"] if lesson["is_free_preview"] and lesson["is_published"]]
            if previews:
                modules.append({**module, "lessons": previews})
        return {"course_id": course.id, "has_access": has_access, "modules": modules}

    def access(self, course_id: int, user: models.User) -> dict:
        course = self.get(course_id, include_drafts=user.is_admin)
        enrollment = self.active_enrollment(user, course.id)
        return {
            "course_id": course.id,
            "has_access": user.is_admin or enrollment is not None,
            "enrollment": enrollment.model_dump() if enrollment else None,
        }

    # -- enrollment -------------------------------------------------------

    def grant_enrollment(self, user: models.User, course: models.Course) -> models.CourseEnrollment:
        """Create (or reactivate) the user's enrollment; idempotent for active ones."""
        enrollment = self.enrollments.get_for(user.id, course.id)
        if enrollment and enrollment.status != models.EnrollmentStatus.CANCELLED:
            return enrollment
        if enrollment is None:
            enrollment = models.CourseEnrollment(user_id=user.id, course_id=course.id)
        else:
            enrollment.status = models.EnrollmentStatus.ACTIVE
            enrollment.progress = 0.0
            enrollment.completed_lessons = []
            enrollment.completed_at = None
            enrollment.enrolled_at = utcnow()
        course.total_students = (course.total_students or 0) + 1
        self.session.add(course)
        enrollment = self.enrollments.save(enrollment)
        logger.info("enrolled user_id=%s course_id=%s", user.id, course.id)
        send_email(EmailType.COURSE_ENROLLMENT, user.email, {
            "first_name": user.first_name,
            "course_title": course.title,
            "course_url": f"{settings.APP_URL}/courses/{course.slug}",
        })
        NotificationService(self.session).notify(
            user.id, "COURSE_ENROLLMENT", "Enrollment confirmed",
            f"You are now enrolled in {course.title}.", f"/courses/{course.slug}",
        )
        return enrollment

    def revoke_enrollment(self, user_id: int, course: models.Course) -> None:
        enrollment = self.enrollments.get_for(user_id, course.id)
        if not enrollment or enrollment.status == models.EnrollmentStatus.CANCELLED:
            return
        enrollment.status = models.EnrollmentStatus.CANCELLED
        course.total_students = max(0, (course.total_students or 0) - 1)
        self.session.add(course)
        self.enrollments.save(enrollment)

    def enroll(self, course_id: int, user: models.User) -> models.CourseEnrollment:
        if user.role != models.UserRole.STUDENT:
            raise ForbiddenError("Only students can enroll in courses")
        course = self.get(course_id, include_drafts=True)
        if not course.is_published:
            raise BadRequestError("Course is not available for enrollment")
        if self.active_enrollment(user, course.id):
            raise BadRequestError("Already enrolled in this course")
        if course.max_students and self.enrollments.count_for_course(course.id) >= course.max_students:
            raise BadRequestError("Course is full")
        if course.price and course.price > 0:
            raise PaymentRequiredError("Payment required to enroll in this course", extra={
                "payment_required": True,
                "course": {"id": course.id, "title": course.title, "price": course.price, "currency": course.currency},
            })
        return self.grant_enrollment(user, course)

    def unenroll(self, course_id: int, user: models.User) -> None:
        course = self.get(course_id, include_drafts=True)
        enrollment = self.enrollments.get_for(user.id, course.id)
        if not enrollment:
            raise NotFoundError("Not enrolled in this course")
        if enrollment.progress > UNENROLL_PROGRESS_LIMIT:
            raise BadRequestError(f"Cannot unenroll after completing more than {UNENROLL_PROGRESS_LIMIT}% of the course")
        if enrollment.status != models.EnrollmentStatus.CANCELLED:
            course.total_students = max(0, (course.total_students or 0) - 1)
            self.session.add(course)
        self.enrollments.delete(enrollment)

    def my_courses(self, user: models.User) -> list:
        out = []
        for enrollment in self.enrollments.list_for_user(user.id):
            if enrollment.status == models.EnrollmentStatus.CANCELLED:
                continue
            course = self.repo.get(enrollment.course_id)
            if course is None:
                continue
            out.append({**enrollment.model_dump(), "course": course_summary(course)})
        return out

    # -- progress ---------------------------------------------------------

    def _require_enrollment(self, course_id: int, user: models.User):
        course = self.get(course_id, include_drafts=True)
        enrollment = self.active_enrollment(user, course.id)
        if not enrollment:
            raise NotFoundError("Not enrolled in this course")
        return course, enrollment

    def get_progress(self, course_id: int, user: models.User) -> dict:
        course, enrollment = self._require_enrollment(course_id, user)
        lesson_ids = self.repo.lesson_ids(course.id)
        return {
            **enrollment.model_dump(),
            "total_lessons": len(lesson_ids),
            "completed_count": len(set(enrollment.completed_lessons or []) & set(lesson_ids)),
        }

    def update_progress(self, course_id: int, user: models.User, progress: Optional[float] = None,
                        lesson_id: Optional[int] = None) -> dict:
        course, enrollment = self._require_enrollment(course_id, user)
        if lesson_id is not None:
            lesson_ids = self.repo.lesson_ids(course.id)
            if lesson_id not in lesson_ids:
                raise BadRequestError("Lesson does not belong to this course")
            completed = sorted(set(enrollment.completed_lessons or []) | {lesson_id})
            enrollment.completed_lessons = completed
            enrollment.progress = round(len(set(completed) & set(lesson_ids)) / len(lesson_ids) * 100, 2)
        else:
            enrollment.progress = round(progress, 2)
        enrollment.last_accessed_at = utcnow()
        just_completed = enrollment.progress >= 100 and enrollment.status != models.EnrollmentStatus.COMPLETED
        if just_completed:
            enrollment.progress = 100.0
            enrollment.status = models.EnrollmentStatus.COMPLETED
            enrollment.completed_at = utcnow()
        enrollment = self.enrollments.save(enrollment)
        if just_completed:
            send_email(EmailType.COURSE_COMPLETION, user.email, {"first_name": user.first_name, "course_title": course.title})
            NotificationService(self.session).notify(
                user.id, "COURSE_COMPLETION", "Course completed",
                f"Congratulations on completing {course.title}!", f"/courses/{course.slug}",
            )
        return self.get_progress(course.id, user)

    # -- reviews ----------------------------------------------------------

    def list_reviews(self, course_id: int, page: int, limit: int) -> dict:
        course = self.get(course_id)
        reviews, total = self.reviews.published_for_course(course.id, page, limit)
        ratings = self.reviews.ratings(course.id)
        counts = Counter(ratings)
        users = {u.id: u for u in repositories.UserRepository(self.session).list_by_ids([r.user_id for r in reviews])}
        return {
            "reviews": [{**r.model_dump(), "user": user_brief(users.get(r.user_id))} for r in reviews],
            "average_rating": round(sum(ratings) / len(ratings), 2) if ratings else 0.0,
            "total_reviews": len(ratings),
            "distribution": {str(star): counts.get(star, 0) for star in range(1, 6)},
            "pagination": pagination_block(page, limit, total),
        }

    def add_review(self, course_id: int, user: models.User, rating: int, review_text: Optional[str]) -> models.CourseReview:
        course = self.get(course_id)
        if not self.active_enrollment(user, course.id):
            raise ForbiddenError("Only enrolled students can review this course")
        if self.reviews.get_for(user.id, course.id):
            raise ConflictError("You have already reviewed this course")
        review = self.reviews.save(models.CourseReview(
            user_id=user.id, course_id=course.id, rating=rating, review_text=review_text,
        ))
        ratings = self.reviews.ratings(course.id)
        course.rating = round(sum(ratings) / len(ratings), 2) if ratings else 0.0
        self.repo.save(course)
        return review

    # -- admin ------------------------------------------------------------

    def _resolve_slug(self, requested: Optional[str], title: str, exclude_id: Optional[int] = None) -> str:
        if requested:
            slug = slugify(requested)
            if self.repo.slug_exists(slug, exclude_id):
                raise ConflictError("A course with this slug already exists")
            return slug
        return unique_slug(slugify(title), lambda s: self.repo.slug_exists(s, exclude_id))

    def create(self, data: dict) -> models.Course:
        data = dict(data)
        data["slug"] = self._resolve_slug(data.pop("slug", None), data["title"])
        data["currency"] = (data.get("currency") or settings.DEFAULT_CURRENCY).upper()
        course = self.repo.save(models.Course(**data))
        logger.info("course_created course_id=%s", course.id)
        return course

    def update(self, course_id: int, changes: dict) -> models.Course:
        course = self.get(course_id, include_drafts=True)
        if "slug" in changes:
            requested = changes.pop("slug")
            if requested and slugify(requested) != course.slug:
                course.slug = self._resolve_slug(requested, course.title, course.id)
        if changes.get("currency"):
            changes["currency"] = changes["currency"].upper()
        for key, value in changes.items():
            setattr(course, key, value)
        course.updated_at = utcnow()
        return self.repo.save(course)

    def delete(self, course_id: int, force: bool = False) -> None:
        course = self.get(course_id, include_drafts=True)
        enrolled = self.enrollments.count_for_course(course.id, active_only=False)
        if enrolled and not force:
            raise BadRequestError(f"Course has {enrolled} enrollment(s); pass force=true to delete it anyway")
        for enrollment in self.session.exec(
            select(models.CourseEnrollment).where(models.CourseEnrollment.course_id == course.id)
        ).all():
            self.session.delete(enrollment)
        for review in self.session.exec(select(models.CourseReview).where(models.CourseReview.course_id == course.id)).all():
            self.session.delete(review)
        for module in self.repo.modules(course.id):
            for lesson in self.repo.lessons(module.id):
                self.session.delete(lesson)
            self.session.delete(module)
        self.session.delete(course)
        self.session.commit()
        logger.info("course_deleted course_id=%s force=%s", course_id, force)

    def add_module(self, course_id: int, data: dict) -> models.CourseModule:
        course = self.get(course_id, include_drafts=True)
        if data.get("order_index") is None:
            data["order_index"] = len(self.repo.modules(course.id))
        return self.repo.save(models.CourseModule(course_id=course.id, **data))

    def _module(self, course_id: int, module_id: int) -> models.CourseModule:
        module = self.repo.get_module(module_id)
        if not module or module.course_id != course_id:
            raise NotFoundError("Module not found")
        return module

    def update_module(self, course_id: int, module_id: int, changes: dict) -> models.CourseModule:
        module = self._module(course_id, module_id)
        for key, value in changes.items():
            setattr(module, key, value)
        return self.repo.save(module)

    def delete_module(self, course_id: int, module_id: int) -> None:
        module = self._module(course_id, module_id)
        for lesson in self.repo.lessons(module.id):
            self.session.delete(lesson)
        self.session.delete(module)
        self.session.commit()

    def add_lesson(self, course_id: int, module_id: int, data: dict) -> models.CourseLesson:
        module = self._module(course_id, module_id)
        if data.get("order_index") is None:
            data["order_index"] = len(self.repo.lessons(module.id))
        return self.repo.save(models.CourseLesson(module_id=module.id, **data))

    def _lesson(self, course_id: int, lesson_id: int) -> models.CourseLesson:
        lesson = self.repo.get_lesson(lesson_id)
        if not lesson:
            raise NotFoundError("Lesson not found")
        self._module(course_id, lesson.module_id)
        return lesson

    def update_lesson(self, course_id: int, lesson_id: int, changes: dict) -> models.CourseLesson:
        lesson = self._lesson(course_id, lesson_id)
        for key, value in changes.items():
            setattr(lesson, key, value)
        return self.repo.save(lesson)

    def delete_lesson(self, course_id: int, lesson_id: int) -> None:
        self.repo.delete(self._lesson(course_id, lesson_id))

    def stats(self) -> dict:
        C = models.Course
        E = models.CourseEnrollment
        by_category = self.session.exec(select(C.category, func.count(C.id)).group_by(C.category)).all()
        top = self.session.exec(select(C).order_by(C.total_students.desc()).limit(5)).all()
        return {
            "total_courses": self.repo.count(),
            "published_courses": self.repo.count(C.is_published == True),  # noqa: E712
            "draft_courses": self.repo.count(C.is_published == False),  # noqa: E712
            "featured_courses": self.repo.count(C.is_featured == True),  # noqa: E712
            "total_enrollments": self.enrollments.count(),
            "active_enrollments": self.enrollments.count(E.status == models.EnrollmentStatus.ACTIVE),
            "completed_enrollments": self.enrollments.count(E.status == models.EnrollmentStatus.COMPLETED),
            "course_revenue": repositories.TransactionRepository(self.session).revenue(
                tx_type=models.TransactionType.COURSE_PURCHASE),
            "by_category": {category: int(count) for category, count in by_category},
            "top_courses": [{"id": c.id, "title": c.title, "total_students": c.total_students, "rating": c.rating} for c in top],
        }
