"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Responses are plain dictionaries built by
the services so rows can be mapped without leaking private columns.
"""

import re
from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from .models import (
    AppointmentStatus,
    ContentKind,
    CourseLevel,
    DifficultyLevel,
    InquiryKind,
    InquiryStatus,
    MeetingType,
    MenuLocation,
    QuestionType,
    TestType,
    TransactionType,
    UserRole,
)

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ---------------------------------------------------------------------------
# auth & users
# ---------------------------------------------------------------------------

class RegisterIn(BaseModel):
    """Payload for user registration."""
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=80)
    last_name: str = Field(min_length=1, max_length=80)
    phone: Optional[str] = Field(default=None, max_length=30)


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    phone: Optional[str] = Field(default=None, max_length=30)
    bio: Optional[str] = Field(default=None, max_length=2000)
    avatar_url: Optional[str] = None
    nationality: Optional[str] = None
    target_country: Optional[str] = None


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=128)


class TokenIn(BaseModel):
    token: str = Field(min_length=1)


class EmailIn(BaseModel):
    email: EmailStr


class ResetPasswordIn(BaseModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=128)


class AdminUserUpdate(BaseModel):
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    is_verified: Optional[bool] = None


# ---------------------------------------------------------------------------
# courses
# ---------------------------------------------------------------------------

class CourseCreate(BaseModel):
    title: str = Field(min_length=3, max_length=200)
    slug: Optional[str] = None
    description: str = Field(min_length=10)
    short_description: Optional[str] = Field(default=None, max_length=500)
    instructor_name: str = Field(min_length=2)
    price: float = Field(default=0.0, ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    duration: int = Field(default=1, ge=1)
    level: CourseLevel = CourseLevel.BEGINNER
    category: str = "General"
    tags: List[str] = []
    requirements: List[str] = []
    learning_objectives: List[str] = []
    max_students: Optional[int] = Field(default=None, ge=1)
    language: str = "English"
    thumbnail_url: Optional[str] = None
    is_published: bool = False
    is_featured: bool = False


class CourseUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=3, max_length=200)
    slug: Optional[str] = None
    description: Optional[str] = Field(default=None, min_length=10)
    short_description: Optional[str] = Field(default=None, max_length=500)
    instructor_name: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=1)
    level: Optional[CourseLevel] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    requirements: Optional[List[str]] = None
    learning_objectives: Optional[List[str]] = None
    max_students: Optional[int] = Field(default=None, ge=1)
    language: Optional[str] = None
    thumbnail_url: Optional[str] = None
    is_published: Optional[bool] = None
    is_featured: Optional[bool] = None


class ModuleIn(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    order_index: Optional[int] = None
    is_published: bool = True


class ModuleUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    order_index: Optional[int] = None
    is_published: Optional[bool] = None


class LessonIn(BaseModel):
    title: str = Field(min_length=1)
    content: Optional[str] = None
    video_url: Optional[str] = None
    duration: int = Field(default=0, ge=0)
    order_index: Optional[int] = None
    is_published: bool = True
    is_free_preview: bool = False


class LessonUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = None
    video_url: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)
    order_index: Optional[int] = None
    is_published: Optional[bool] = None
    is_free_preview: Optional[bool] = None


class ProgressUpdate(BaseModel):
    """Either an explicit percentage or a lesson marked as completed."""
    progress: Optional[float] = Field(default=None, ge=0, le=100)
    lesson_id: Optional[int] = None

    @model_validator(mode="after")
    def _one_of(self):
        if self.progress is None and self.lesson_id is None:
            raise ValueError("progress or lesson_id is required")
        return self


class ReviewIn(BaseModel):
    rating: int = Field(ge=1, le=5)
    review_text: Optional[str] = Field(default=None, min_length=10, max_length=2000)


# ---------------------------------------------------------------------------
# test prep
# ---------------------------------------------------------------------------

class QuestionIn(BaseModel):
    question_text: str = Field(min_length=1)
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    options: List[str] = []
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None
    points: int = Field(default=1, ge=0)
    order_index: Optional[int] = None
    audio_url: Optional[str] = None
    image_url: Optional[str] = None


class QuestionUpdate(BaseModel):
    question_text: Optional[str] = Field(default=None, min_length=1)
    question_type: Optional[QuestionType] = None
    options: Optional[List[str]] = None
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None
    points: Optional[int] = Field(default=None, ge=0)
    order_index: Optional[int] = None
    audio_url: Optional[str] = None
    image_url: Optional[str] = None


class SectionIn(BaseModel):
    section_name: str = Field(min_length=1)
    description: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=1)
    order_index: Optional[int] = None
    questions: List[QuestionIn] = []


class SectionUpdate(BaseModel):
    section_name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=1)
    order_index: Optional[int] = None


class TestCreate(BaseModel):
    title: str = Field(min_length=3, max_length=200)
    slug: Optional[str] = None
    description: str = Field(min_length=10)
    type: TestType = TestType.CUSTOM
    duration: int = Field(default=60, ge=1)
    passing_score: Optional[float] = Field(default=None, ge=0, le=100)
    difficulty_level: DifficultyLevel = DifficultyLevel.MEDIUM
    price: float = Field(default=0.0, ge=0)
    currency: Optional[str] = None
    is_free: bool = True
    instructions: Optional[str] = None
    tags: List[str] = []
    is_published: bool = False
    sections: List[SectionIn] = []


class TestUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=3, max_length=200)
    slug: Optional[str] = None
    description: Optional[str] = Field(default=None, min_length=10)
    type: Optional[TestType] = None
    duration: Optional[int] = Field(default=None, ge=1)
    passing_score: Optional[float] = Field(default=None, ge=0, le=100)
    difficulty_level: Optional[DifficultyLevel] = None
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    is_free: Optional[bool] = None
    instructions: Optional[str] = None
    tags: Optional[List[str]] = None
    is_published: Optional[bool] = None


class AttemptAnswers(BaseModel):
    """Answers keyed by question id; used for both submit and save-progress."""
    attempt_id: int
    answers: Dict[str, Any] = {}
    time_spent: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# appointments
# ---------------------------------------------------------------------------

class BreakIn(BaseModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        if not _TIME_RE.match(v):
            raise ValueError("time must be HH:MM")
        return v


class DayAvailability(BaseModel):
    available: bool = True
    start_time: str = "09:00"
    end_time: str = "17:00"
    breaks: List[BreakIn] = []

    @field_validator("start_time", "end_time")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        if not _TIME_RE.match(v):
            raise ValueError("time must be HH:MM")
        return v

    @model_validator(mode="after")
    def _ordered(self):
        if self.available and self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class ConsultantIn(BaseModel):
    user_id: Optional[int] = None
    name: str = Field(min_length=2)
    email: EmailStr
    bio: Optional[str] = None
    specialties: List[str] = []
    languages: List[str] = []
    avatar_url: Optional[str] = None
    hourly_rate: float = Field(default=0.0, ge=0)
    time_zone: str = "Asia/Kolkata"
    availability: Dict[str, DayAvailability] = {}
    is_active: bool = True


class ConsultantUpdate(BaseModel):
    user_id: Optional[int] = None
    name: Optional[str] = Field(default=None, min_length=2)
    email: Optional[EmailStr] = None
    bio: Optional[str] = None
    specialties: Optional[List[str]] = None
    languages: Optional[List[str]] = None
    avatar_url: Optional[str] = None
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    time_zone: Optional[str] = None
    availability: Optional[Dict[str, DayAvailability]] = None
    is_active: Optional[bool] = None


class AppointmentTypeIn(BaseModel):
    name: str = Field(min_length=2)
    description: Optional[str] = None
    duration: int = Field(default=60, ge=15, le=480)
    price: float = Field(default=0.0, ge=0)
    currency: Optional[str] = None
    meeting_type: MeetingType = MeetingType.VIDEO
    is_active: bool = True


class AppointmentTypeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    description: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=15, le=480)
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    meeting_type: Optional[MeetingType] = None
    is_active: Optional[bool] = None


class BookingIn(BaseModel):
    """Booking payload; guest fields are required when no token is sent."""
    consultant_id: int
    type_id: int
    scheduled_date: date
    scheduled_time: str
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    notes: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None

    @field_validator("scheduled_time")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        if not _TIME_RE.match(v):
            raise ValueError("scheduled_time must be HH:MM")
        return v


class AppointmentUpdate(BaseModel):
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None
    meeting_link: Optional[str] = None
    cancel_reason: Optional[str] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None

    @field_validator("scheduled_time")
    @classmethod
    def _hhmm(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _TIME_RE.match(v):
            raise ValueError("scheduled_time must be HH:MM")
        return v


class MessageIn(BaseModel):
    message: str = Field(min_length=1, max_length=5000)


# ---------------------------------------------------------------------------
# payments
# ---------------------------------------------------------------------------

class PurchaseIn(BaseModel):
    """Purchase target for both Stripe intents and Razorpay orders."""
    type: TransactionType
    course_id: Optional[int] = None
    appointment_id: Optional[int] = None
    test_id: Optional[int] = None
    amount: Optional[float] = Field(default=None, gt=0)
    currency: Optional[str] = None

    @model_validator(mode="after")
    def _target(self):
        needed = {
            TransactionType.COURSE_PURCHASE: self.course_id,
            TransactionType.APPOINTMENT_BOOKING: self.appointment_id,
            TransactionType.TEST_PURCHASE: self.test_id,
        }[self.type]
        if needed is None:
            raise ValueError(f"{self.type.value} requires its target id")
        return self


class ConfirmIn(BaseModel):
    payment_intent_id: str = Field(min_length=1)


class VerifyIn(BaseModel):
    razorpay_order_id: str = Field(min_length=1)
    razorpay_payment_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)


class RefundIn(BaseModel):
    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# cms
# ---------------------------------------------------------------------------

class PageSectionIn(BaseModel):
    section_type: str = "text"
    title: Optional[str] = None
    content: Dict[str, Any] = {}
    order_index: Optional[int] = None
    is_active: bool = True


class PageIn(BaseModel):
    title: str = Field(min_length=1)
    slug: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    template: str = "default"
    featured_image: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    is_published: bool = False
    sections: List[PageSectionIn] = []


class PageUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    slug: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    template: Optional[str] = None
    featured_image: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    is_published: Optional[bool] = None
    sections: Optional[List[PageSectionIn]] = None


class MenuIn(BaseModel):
    name: str = Field(min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    location: MenuLocation = MenuLocation.HEADER
    is_active: bool = True


class MenuUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    location: Optional[MenuLocation] = None
    is_active: Optional[bool] = None


class MenuItemIn(BaseModel):
    label: str = Field(min_length=1)
    url: str = "#"
    type: str = "link"
    target: Literal["_self", "_blank"] = "_self"
    css_class: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[int] = None
    order_index: Optional[int] = None
    is_active: bool = True


class MenuItemUpdate(BaseModel):
    label: Optional[str] = Field(default=None, min_length=1)
    url: Optional[str] = None
    type: Optional[str] = None
    target: Optional[Literal["_self", "_blank"]] = None
    css_class: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[int] = None
    order_index: Optional[int] = None
    is_active: Optional[bool] = None


class ReorderIn(BaseModel):
    item_ids: List[int] = Field(min_length=1)


class ContentBlockIn(BaseModel):
    kind: ContentKind
    title: str = Field(min_length=1)
    subtitle: Optional[str] = None
    body: Optional[str] = None
    image_url: Optional[str] = None
    link_url: Optional[str] = None
    order_index: Optional[int] = None
    is_active: bool = True
    extra: Dict[str, Any] = {}


class ContentBlockUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    subtitle: Optional[str] = None
    body: Optional[str] = None
    image_url: Optional[str] = None
    link_url: Optional[str] = None
    order_index: Optional[int] = None
    is_active: Optional[bool] = None
    extra: Optional[Dict[str, Any]] = None


class BlogPostIn(BaseModel):
    title: str = Field(min_length=3)
    slug: Optional[str] = None
    excerpt: Optional[str] = None
    content: str = ""
    category: Optional[str] = None
    tags: List[str] = []
    featured_image: Optional[str] = None
    is_published: bool = False


class BlogPostUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=3)
    slug: Optional[str] = None
    excerpt: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    featured_image: Optional[str] = None
    is_published: Optional[bool] = None


class SettingsUpdate(BaseModel):
    """Nested `{category: {key: value}}` map."""
    settings: Dict[str, Dict[str, Optional[str]]]


class InquiryIn(BaseModel):
    kind: InquiryKind = InquiryKind.CONTACT
    name: str = Field(min_length=2, max_length=120)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=30)
    subject: Optional[str] = Field(default=None, max_length=200)
    message: str = Field(min_length=10, max_length=5000)
    preferred_country: Optional[str] = None


class InquiryUpdate(BaseModel):
    status: Optional[InquiryStatus] = None
    admin_notes: Optional[str] = None


# ---------------------------------------------------------------------------
# notifications
# ---------------------------------------------------------------------------

class NotificationUpdate(BaseModel):
    is_read: bool = True


class BroadcastIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1)
    type: str = "ANNOUNCEMENT"
    channel: Literal["in_app", "email", "both"] = "in_app"
    user_ids: Optional[List[int]] = None
    role: Optional[UserRole] = None
    action_url: Optional[str] = None

    @model_validator(mode="after")
    def _audience(self):
        if not self.user_ids and self.role is None:
            raise ValueError("user_ids or role is required")
        return self
