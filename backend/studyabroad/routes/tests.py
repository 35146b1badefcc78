"""Test-prep endpoints: catalog, attempts, results and admin authoring."""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, get_optional_user, require_admin
from ..database import get_session
from ..schemas import AttemptAnswers, QuestionIn, QuestionUpdate, SectionIn, SectionUpdate, TestCreate, TestUpdate
from ..serializers import attempt_out, question_out, test_summary
from ..services.test_prep import QuestionImportService, TestPrepService
from ..utils.uploads import read_upload

router = APIRouter(tags=["test-prep"])


@router.get("/tests")
def list_tests(search: Optional[str] = None, type: Optional[models.TestType] = None,
               difficulty: Optional[models.DifficultyLevel] = None, is_free: Optional[bool] = None,
               sort_by: str = "created", sort_order: str = Query("desc", pattern="^(asc|desc)$"),
               page: int = Query(1, ge=1), limit: int = Query(12, ge=1, le=100),
               db: Session = Depends(get_session)):
    return TestPrepService(db).list(search=search, test_type=type, difficulty=difficulty, is_free=is_free,
                                    sort_by=sort_by, sort_order=sort_order, page=page, limit=limit)


@router.get("/tests/by-slug/{slug}")
def test_by_slug(slug: str, db: Session = Depends(get_session),
                 user: Optional[models.User] = Depends(get_optional_user)):
    return TestPrepService(db).detail_by_slug(slug, user)


@router.get("/tests/{test_id}")
def test_detail(test_id: int, db: Session = Depends(get_session),
                user: Optional[models.User] = Depends(get_optional_user)):
    """Sections and questions without correct answers or explanations."""
    return TestPrepService(db).detail_by_id(test_id, user)


@router.post("/tests/{test_id}/start")
def start_attempt(test_id: int, response: Response, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    """Start a new attempt (201), or resume the user's IN_PROGRESS one (200)."""
    svc = TestPrepService(db)
    attempt, created = svc.start(test_id, user)
    response.status_code = 201 if created else 200
    test = svc.get(test_id)
    return {
        "attempt": attempt_out(attempt),
        "resumed": not created,
        "test": test_summary(test),
        "sections": svc.structure(test, with_answers=False),
    }


@router.post("/tests/{test_id}/save-progress")
def save_progress(test_id: int, payload: AttemptAnswers, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    attempt = TestPrepService(db).save_progress(test_id, payload.attempt_id, user, payload.answers, payload.time_spent)
    return {"message": "Progress saved", "attempt": attempt_out(attempt)}


@router.post("/tests/{test_id}/submit")
def submit_attempt(test_id: int, payload: AttemptAnswers, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    """Score the attempt and return per-section and per-question results."""
    return TestPrepService(db).submit(test_id, payload.attempt_id, user, payload.answers, payload.time_spent)


@router.get("/test-attempts")
def my_attempts(test_id: Optional[int] = None, status: Optional[models.AttemptStatus] = None,
                db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {"attempts": TestPrepService(db).user_attempts(user, test_id, status)}


@router.get("/test-attempts/{attempt_id}")
def attempt_detail(attempt_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return TestPrepService(db).attempt_detail(attempt_id, user)


@router.get("/user/test-results")
def my_results(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return TestPrepService(db).user_results(user)


# -- admin ----------------------------------------------------------------

@router.get("/admin/tests")
def admin_list_tests(search: Optional[str] = None, type: Optional[models.TestType] = None,
                     page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                     db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return TestPrepService(db).list(search=search, test_type=type, page=page, limit=limit, published_only=False)


@router.get("/admin/tests/stats")
def admin_test_stats(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return TestPrepService(db).stats()


@router.get("/admin/tests/{test_id}")
def admin_test_detail(test_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    svc = TestPrepService(db)
    test = svc.get(test_id, include_drafts=True)
    return {"test": test_summary(test), "sections": svc.structure(test, with_answers=True)}


@router.post("/admin/tests", status_code=201)
def admin_create_test(payload: TestCreate, db: Session = Depends(get_session),
                      admin: models.User = Depends(require_admin)):
    return test_summary(TestPrepService(db).create(payload.model_dump()))


@router.put("/admin/tests/{test_id}")
def admin_update_test(test_id: int, payload: TestUpdate, db: Session = Depends(get_session),
                      admin: models.User = Depends(require_admin)):
    return test_summary(TestPrepService(db).update(test_id, payload.model_dump(exclude_unset=True)))


@router.delete("/admin/tests/{test_id}")
def admin_delete_test(test_id: int, force: bool = False, db: Session = Depends(get_session),
                      admin: models.User = Depends(require_admin)):
    TestPrepService(db).delete(test_id, force)
    return {"message": "Test deleted"}


@router.post("/admin/tests/{test_id}/sections", status_code=201)
def admin_add_section(test_id: int, payload: SectionIn, db: Session = Depends(get_session),
                      admin: models.User = Depends(require_admin)):
    return TestPrepService(db).add_section(test_id, payload.model_dump()).model_dump()


@router.put("/admin/tests/{test_id}/sections/{section_id}")
def admin_update_section(test_id: int, section_id: int, payload: SectionUpdate,
                         db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return TestPrepService(db).update_section(test_id, section_id, payload.model_dump(exclude_unset=True)).model_dump()


@router.delete("/admin/tests/{test_id}/sections/{section_id}")
def admin_delete_section(test_id: int, section_id: int, db: Session = Depends(get_session),
                         admin: models.User = Depends(require_admin)):
    TestPrepService(db).delete_section(test_id, section_id)
    return {"message": "Section deleted"}


@router.post("/admin/tests/{test_id}/sections/{section_id}/questions", status_code=201)
def admin_add_question(test_id: int, section_id: int, payload: QuestionIn,
                       db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return question_out(TestPrepService(db).add_question(test_id, section_id, payload.model_dump()), with_answer=True)


@router.put("/admin/tests/{test_id}/questions/{question_id}")
def admin_update_question(test_id: int, question_id: int, payload: QuestionUpdate,
                          db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    question = TestPrepService(db).update_question(test_id, question_id, payload.model_dump(exclude_unset=True))
    return question_out(question, with_answer=True)


@router.delete("/admin/tests/{test_id}/questions/{question_id}")
def admin_delete_question(test_id: int, question_id: int, db: Session = Depends(get_session),
                          admin: models.User = Depends(require_admin)):
    TestPrepService(db).delete_question(test_id, question_id)
    return {"message": "Question deleted"}


@router.post("/admin/tests/{test_id}/sections/{section_id}/import")
def admin_import_questions(test_id: int, section_id: int, file: UploadFile = File(...),
                           deduplicate: bool = Form(True), dry_run: bool = Form(False),
                           db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    """Import questions from a JSON, CSV, TXT or DOCX file into a section.

    Returns `{created, skipped, errors, dry_run}`; invalid items are
    reported per index and do not abort the import.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="no file")
    content = read_upload(file)
    try:
        return QuestionImportService(db).import_file(test_id, section_id, content, file.filename,
                                                     deduplicate=deduplicate, dry_run=dry_run)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/admin/tests/{test_id}/attempts")
def admin_test_attempts(test_id: int, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                        db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return TestPrepService(db).admin_attempts(test_id, page, limit)


@router.get("/admin/tests/{test_id}/analytics")
def admin_test_analytics(test_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return TestPrepService(db).analytics(test_id)
