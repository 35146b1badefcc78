"""Course catalog, enrollment, progress and review endpoints (+ admin CRUD)."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, get_optional_user, require_admin
from ..database import get_session
from ..schemas import CourseCreate, CourseUpdate, LessonIn, LessonUpdate, ModuleIn, ModuleUpdate, ProgressUpdate, ReviewIn
from ..serializers import course_out
from ..services.courses import CourseService

router = APIRouter(tags=["courses"])


@router.get("/courses")
def list_courses(search: Optional[str] = None, category: Optional[str] = None,
                 level: Optional[models.CourseLevel] = None,
                 min_price: Optional[float] = Query(None, ge=0), max_price: Optional[float] = Query(None, ge=0),
                 featured: Optional[bool] = None, sort_by: str = "created",
                 sort_order: str = Query("desc", pattern="^(asc|desc)$"),
                 page: int = Query(1, ge=1), limit: int = Query(12, ge=1, le=100),
                 db: Session = Depends(get_session)):
    """Published courses with filters, sorting and pagination."""
    return CourseService(db).list(search=search, category=category, level=level, min_price=min_price,
                                  max_price=max_price, featured=featured, sort_by=sort_by,
                                  sort_order=sort_order, page=page, limit=limit)


@router.get("/courses/my-courses")
def my_courses(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {"enrollments": CourseService(db).my_courses(user)}


@router.get("/courses/{identifier}")
def course_detail(identifier: str, db: Session = Depends(get_session),
                  user: Optional[models.User] = Depends(get_optional_user)):
    """Course by id or slug, with its published outline (no lesson content)."""
    return CourseService(db).detail(identifier, user)


@router.get("/courses/{course_id}/lessons")
def course_lessons(course_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return CourseService(db).lessons(course_id, user)


@router.get("/courses/{course_id}/access")
def course_access(course_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return CourseService(db).access(course_id, user)


@router.post("/courses/{course_id}/enroll", status_code=201)
def enroll(course_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Enroll in a free course; paid courses answer 402 with payment details."""
    enrollment = CourseService(db).enroll(course_id, user)
    return {"message": "Enrolled successfully", "enrollment": enrollment.model_dump()}


@router.delete("/courses/{course_id}/enroll")
def unenroll(course_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    CourseService(db).unenroll(course_id, user)
    return {"message": "Unenrolled successfully"}


@router.get("/courses/{course_id}/progress")
def get_progress(course_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return CourseService(db).get_progress(course_id, user)


@router.put("/courses/{course_id}/progress")
def update_progress(course_id: int, payload: ProgressUpdate, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    return CourseService(db).update_progress(course_id, user, payload.progress, payload.lesson_id)


@router.get("/courses/{course_id}/reviews")
def list_reviews(course_id: int, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=50),
                 db: Session = Depends(get_session)):
    return CourseService(db).list_reviews(course_id, page, limit)


@router.post("/courses/{course_id}/reviews", status_code=201)
def add_review(course_id: int, payload: ReviewIn, db: Session = Depends(get_session),
               user: models.User = Depends(get_current_user)):
    review = CourseService(db).add_review(course_id, user, payload.rating, payload.review_text)
    return review.model_dump()


# -- admin ----------------------------------------------------------------

@router.get("/admin/courses")
def admin_list_courses(search: Optional[str] = None, category: Optional[str] = None,
                       level: Optional[models.CourseLevel] = None, sort_by: str = "created",
                       sort_order: str = Query("desc", pattern="^(asc|desc)$"),
                       page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                       db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return CourseService(db).list(search=search, category=category, level=level, sort_by=sort_by,
                                  sort_order=sort_order, page=page, limit=limit, published_only=False)


@router.get("/admin/courses/stats")
def admin_course_stats(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return CourseService(db).stats()


@router.get("/admin/courses/{course_id}")
def admin_course_detail(course_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    svc = CourseService(db)
    course = svc.get(course_id, include_drafts=True)
    return {"course": course_out(course), "modules": svc.outline(course, full=True)}


@router.post("/admin/courses", status_code=201)
def admin_create_course(payload: CourseCreate, db: Session = Depends(get_session),
                        admin: models.User = Depends(require_admin)):
    return course_out(CourseService(db).create(payload.model_dump()))


@router.put("/admin/courses/{course_id}")
def admin_update_course(course_id: int, payload: CourseUpdate, db: Session = Depends(get_session),
                        admin: models.User = Depends(require_admin)):
    return course_out(CourseService(db).update(course_id, payload.model_dump(exclude_unset=True)))


@router.delete("/admin/courses/{course_id}")
def admin_delete_course(course_id: int, force: bool = False, db: Session = Depends(get_session),
                        admin: models.User = Depends(require_admin)):
    CourseService(db).delete(course_id, force)
    return {"message": "Course deleted"}


@router.post("/admin/courses/{course_id}/modules", status_code=201)
def admin_add_module(course_id: int, payload: ModuleIn, db: Session = Depends(get_session),
                     admin: models.User = Depends(require_admin)):
    return CourseService(db).add_module(course_id, payload.model_dump()).model_dump()


@router.put("/admin/courses/{course_id}/modules/{module_id}")
def admin_update_module(course_id: int, module_id: int, payload: ModuleUpdate, db: Session = Depends(get_session),
                        admin: models.User = Depends(require_admin)):
    return CourseService(db).update_module(course_id, module_id, payload.model_dump(exclude_unset=True)).model_dump()


@router.delete("/admin/courses/{course_id}/modules/{module_id}")
def admin_delete_module(course_id: int, module_id: int, db: Session = Depends(get_session),
                        admin: models.User = Depends(require_admin)):
    CourseService(db).delete_module(course_id, module_id)
    return {"message": "Module deleted"}


@router.post("/admin/courses/{course_id}/modules/{module_id}/lessons", status_code=201)
def admin_add_lesson(course_id: int, module_id: int, payload: LessonIn, db: Session = Depends(get_session),
                     admin: models.User = Depends(require_admin)):
    return CourseService(db).add_lesson(course_id, module_id, payload.model_dump()).model_dump()


@router.put("/admin/courses/{course_id}/lessons/{lesson_id}")
def admin_update_lesson(course_id: int, lesson_id: int, payload: LessonUpdate, db: Session = Depends(get_session),
                        admin: models.User = Depends(require_admin)):
    return CourseService(db).update_lesson(course_id, lesson_id, payload.model_dump(exclude_unset=True)).model_dump()


@router.delete("/admin/courses/{course_id}/lessons/{lesson_id}")
def admin_delete_lesson(course_id: int, lesson_id: int, db: Session = Depends(get_session),
                        admin: models.User = Depends(require_admin)):
    CourseService(db).delete_lesson(course_id, lesson_id)
    return {"message": "Lesson deleted"}
