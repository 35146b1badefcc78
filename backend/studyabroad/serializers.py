"""Row-to-JSON mapping helpers.

Routes return plain dicts; these helpers decide which columns leave the
server (never password hashes or tokens, never correct answers before a
test is submitted).
"""

from typing import Iterable, Optional

from . import models


def user_out(user: models.User) -> dict:
    return user.model_dump(exclude={"password_hash", "verification_token", "reset_token", "reset_token_expires"}) | {
        "full_name": user.full_name,
    }


def user_brief(user: Optional[models.User]) -> Optional[dict]:
    if user is None:
        return None
    return {"id": user.id, "email": user.email, "first_name": user.first_name,
            "last_name": user.last_name, "full_name": user.full_name}


def course_summary(course: models.Course) -> dict:
    return course.model_dump(exclude={"description", "requirements", "learning_objectives"})


def course_out(course: models.Course) -> dict:
    return course.model_dump()


def lesson_out(lesson: models.CourseLesson, with_content: bool) -> dict:
    data = lesson.model_dump()
    if not with_content:
        data.pop("content", None)
        data.pop("video_url", None)
    return data


def question_out(question: models.Question, with_answer: bool = False) -> dict:
    data = question.model_dump()
    if not with_answer:
        data.pop("correct_answer", None)
        data.pop("explanation", None)
    return data


def test_summary(test: models.Test) -> dict:
    return test.model_dump()


def attempt_out(attempt: models.TestAttempt) -> dict:
    return attempt.model_dump()


def consultant_out(consultant: models.Consultant) -> dict:
    return consultant.model_dump()


def appointment_out(appointment: models.Appointment, consultant: Optional[models.Consultant] = None,
                    appointment_type: Optional[models.AppointmentType] = None,
                    user: Optional[models.User] = None) -> dict:
    data = appointment.model_dump()
    if consultant is not None:
        data["consultant"] = {"id": consultant.id, "name": consultant.name, "email": consultant.email,
                              "avatar_url": consultant.avatar_url}
    if appointment_type is not None:
        data["type"] = appointment_type.model_dump()
    if user is not None:
        data["user"] = user_brief(user)
    return data


def transaction_out(tx: models.Transaction) -> dict:
    return tx.model_dump(exclude={"gateway_response"})


def rows(items: Iterable, fn=None) -> list:
    fn = fn or (lambda obj: obj.model_dump())
    return [fn(item) for item in items]
