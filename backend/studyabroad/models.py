"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table; list/dict attributes are stored in JSON
columns. Enumerations are `str` enums whose values equal their names so
they serialize unchanged into API payloads.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship

from .database import utcnow


def _json_list():
    return Field(default_factory=list, sa_column=Column(JSON))


def _json_dict():
    return Field(default_factory=dict, sa_column=Column(JSON))


# ---------------------------------------------------------------------------
# enums
# ---------------------------------------------------------------------------

class UserRole(str, Enum):
    STUDENT = "STUDENT"
    CONSULTANT = "CONSULTANT"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPER_ADMIN)


class CourseLevel(str, Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"
    EXPERT = "EXPERT"


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TestType(str, Enum):
    IELTS = "IELTS"
    TOEFL = "TOEFL"
    PTE = "PTE"
    GRE = "GRE"
    GMAT = "GMAT"
    SAT = "SAT"
    ACT = "ACT"
    DUOLINGO = "DUOLINGO"
    CAEL = "CAEL"
    CELPIP = "CELPIP"
    CUSTOM = "CUSTOM"


class DifficultyLevel(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"
    EXPERT = "EXPERT"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TRUE_FALSE = "TRUE_FALSE"
    FILL_BLANK = "FILL_BLANK"
    SHORT_ANSWER = "SHORT_ANSWER"
    ESSAY = "ESSAY"
    LISTENING = "LISTENING"
    READING = "READING"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


class MeetingType(str, Enum):
    VIDEO = "VIDEO"
    PHONE = "PHONE"
    IN_PERSON = "IN_PERSON"
    CHAT = "CHAT"


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"


ACTIVE_APPOINTMENT_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
)


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class TransactionType(str, Enum):
    COURSE_PURCHASE = "COURSE_PURCHASE"
    APPOINTMENT_BOOKING = "APPOINTMENT_BOOKING"
    TEST_PURCHASE = "TEST_PURCHASE"


class PaymentGateway(str, Enum):
    STRIPE = "STRIPE"
    RAZORPAY = "RAZORPAY"


class MenuLocation(str, Enum):
    HEADER = "HEADER"
    FOOTER = "FOOTER"
    SIDEBAR = "SIDEBAR"
    MOBILE = "MOBILE"
    CUSTOM = "CUSTOM"


class ContentKind(str, Enum):
    hero_slide = "hero_slide"
    feature = "feature"
    testimonial = "testimonial"
    partner = "partner"
    statistic = "statistic"
    journey_step = "journey_step"
    service = "service"
    country = "country"
    faq = "faq"


class InquiryKind(str, Enum):
    CONTACT = "CONTACT"
    CONSULTATION = "CONSULTATION"
    UNIVERSITY = "UNIVERSITY"


class InquiryStatus(str, Enum):
    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


# ---------------------------------------------------------------------------
# users
# ---------------------------------------------------------------------------

class User(SQLModel, table=True):
    """A registered (or guest-created) account.

    Guest bookings create users with `is_verified=False` and a password
    hash that can never verify; such users recover access through the
    forgot-password flow.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    role: UserRole = Field(default=UserRole.STUDENT, index=True)
    is_verified: bool = False
    is_active: bool = True
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    nationality: Optional[str] = None
    target_country: Optional[str] = None
    last_login: Optional[datetime] = None
    verification_token: Optional[str] = Field(default=None, index=True)
    reset_token: Optional[str] = Field(default=None, index=True)
    reset_token_expires: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


# ---------------------------------------------------------------------------
# courses
# ---------------------------------------------------------------------------

class Course(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    slug: str = Field(index=True, unique=True)
    description: str
    short_description: Optional[str] = None
    instructor_name: str
    price: float = 0.0
    original_price: Optional[float] = None
    currency: str = "INR"
    duration: int = 1
    level: CourseLevel = CourseLevel.BEGINNER
    category: str = Field(default="General", index=True)
    tags: List[str] = _json_list()
    requirements: List[str] = _json_list()
    learning_objectives: List[str] = _json_list()
    max_students: Optional[int] = None
    language: str = "English"
    thumbnail_url: Optional[str] = None
    is_published: bool = Field(default=False, index=True)
    is_featured: bool = False
    rating: float = 0.0
    total_students: int = 0
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    modules: List["CourseModule"] = Relationship(back_populates="course")


class CourseModule(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    title: str
    description: Optional[str] = None
    order_index: int = 0
    is_published: bool = True
    course: Optional[Course] = Relationship(back_populates="modules")
    lessons: List["CourseLesson"] = Relationship(back_populates="module")


class CourseLesson(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    module_id: int = Field(foreign_key="coursemodule.id", index=True)
    title: str
    content: Optional[str] = None
    video_url: Optional[str] = None
    duration: int = 0
    order_index: int = 0
    is_published: bool = True
    is_free_preview: bool = False
    module: Optional[CourseModule] = Relationship(back_populates="lessons")


class CourseEnrollment(SQLModel, table=True):
    """Join record between a user and a course, one per pair."""
    __table_args__ = (UniqueConstraint("user_id", "course_id"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    progress: float = 0.0
    completed_lessons: List[int] = _json_list()
    enrolled_at: datetime = Field(default_factory=utcnow, index=True)
    last_accessed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class CourseReview(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "course_id"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    rating: int
    review_text: Optional[str] = None
    is_published: bool = True
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# test prep
# ---------------------------------------------------------------------------

class Test(SQLModel, table=True):
    __test__ = False  # not a pytest class
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    slug: str = Field(index=True, unique=True)
    description: str
    type: TestType = Field(default=TestType.CUSTOM, index=True)
    duration: int = 60
    total_questions: int = 0
    passing_score: Optional[float] = None
    difficulty_level: DifficultyLevel = DifficultyLevel.MEDIUM
    price: float = 0.0
    currency: str = "INR"
    is_free: bool = True
    instructions: Optional[str] = None
    tags: List[str] = _json_list()
    is_published: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    sections: List["TestSection"] = Relationship(back_populates="test")


class TestSection(SQLModel, table=True):
    __test__ = False
    id: Optional[int] = Field(default=None, primary_key=True)
    test_id: int = Field(foreign_key="test.id", index=True)
    section_name: str
    description: Optional[str] = None
    duration: Optional[int] = None
    order_index: int = 0
    test: Optional[Test] = Relationship(back_populates="sections")
    questions: List["Question"] = Relationship(back_populates="section")


class Question(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    section_id: int = Field(foreign_key="testsection.id", index=True)
    question_text: str
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    options: List[str] = _json_list()
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None
    points: int = 1
    order_index: int = 0
    audio_url: Optional[str] = None
    image_url: Optional[str] = None
    section: Optional[TestSection] = Relationship(back_populates="questions")


class TestAttempt(SQLModel, table=True):
    """A user's run through a test; at most one IN_PROGRESS per user+test."""
    __test__ = False
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    test_id: int = Field(foreign_key="test.id", index=True)
    status: AttemptStatus = Field(default=AttemptStatus.IN_PROGRESS, index=True)
    answers: dict = _json_dict()
    score: Optional[float] = None
    correct_answers: int = 0
    total_questions: int = 0
    earned_points: int = 0
    total_points: int = 0
    time_spent: int = 0
    section_scores: List[dict] = _json_list()
    started_at: datetime = Field(default_factory=utcnow, index=True)
    completed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# appointments
# ---------------------------------------------------------------------------

class Consultant(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    name: str
    email: str
    bio: Optional[str] = None
    specialties: List[str] = _json_list()
    languages: List[str] = _json_list()
    avatar_url: Optional[str] = None
    hourly_rate: float = 0.0
    rating: float = 0.0
    time_zone: str = "Asia/Kolkata"
    availability: dict = _json_dict()
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class AppointmentType(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    duration: int = 60
    price: float = 0.0
    currency: str = "INR"
    meeting_type: MeetingType = MeetingType.VIDEO
    is_active: bool = True


class Appointment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    consultant_id: int = Field(foreign_key="consultant.id", index=True)
    type_id: int = Field(foreign_key="appointmenttype.id")
    title: str
    description: Optional[str] = None
    scheduled_at: datetime = Field(index=True)
    duration: int = 60
    status: AppointmentStatus = Field(default=AppointmentStatus.SCHEDULED, index=True)
    meeting_type: MeetingType = MeetingType.VIDEO
    meeting_link: Optional[str] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class AppointmentMessage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    appointment_id: int = Field(foreign_key="appointment.id", index=True)
    sender_id: int = Field(foreign_key="user.id")
    message: str
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# payments
# ---------------------------------------------------------------------------

class Transaction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    amount: float
    currency: str = "INR"
    status: TransactionStatus = Field(default=TransactionStatus.PENDING, index=True)
    type: TransactionType = Field(index=True)
    description: Optional[str] = None
    gateway: PaymentGateway
    reference_id: Optional[str] = Field(default=None, index=True)
    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    gateway_response: dict = _json_dict()
    failure_reason: Optional[str] = None
    refund_id: Optional[str] = None
    course_id: Optional[int] = Field(default=None, foreign_key="course.id")
    appointment_id: Optional[int] = Field(default=None, foreign_key="appointment.id")
    test_id: Optional[int] = Field(default=None, foreign_key="test.id")
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# cms
# ---------------------------------------------------------------------------

class Page(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    slug: str = Field(index=True, unique=True)
    content: Optional[str] = None
    excerpt: Optional[str] = None
    template: str = "default"
    featured_image: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    is_published: bool = False
    published_at: Optional[datetime] = None
    author_id: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    sections: List["PageSection"] = Relationship(back_populates="page")


class PageSection(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    page_id: int = Field(foreign_key="page.id", index=True)
    section_type: str = "text"
    title: Optional[str] = None
    content: dict = _json_dict()
    order_index: int = 0
    is_active: bool = True
    page: Optional[Page] = Relationship(back_populates="sections")


class Menu(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    slug: str = Field(index=True, unique=True)
    description: Optional[str] = None
    location: MenuLocation = Field(default=MenuLocation.HEADER, index=True)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class MenuItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    menu_id: int = Field(foreign_key="menu.id", index=True)
    parent_id: Optional[int] = Field(default=None, foreign_key="menuitem.id")
    label: str
    url: str = "#"
    type: str = "link"
    target: str = "_self"
    css_class: Optional[str] = None
    description: Optional[str] = None
    order_index: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ContentBlock(SQLModel, table=True):
    """Small homepage-style content: slides, testimonials, partners, stats."""
    id: Optional[int] = Field(default=None, primary_key=True)
    kind: ContentKind = Field(index=True)
    title: str
    subtitle: Optional[str] = None
    body: Optional[str] = None
    image_url: Optional[str] = None
    link_url: Optional[str] = None
    order_index: int = 0
    is_active: bool = True
    extra: dict = _json_dict()
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class BlogPost(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    slug: str = Field(index=True, unique=True)
    excerpt: Optional[str] = None
    content: str = ""
    category: Optional[str] = Field(default=None, index=True)
    tags: List[str] = _json_list()
    featured_image: Optional[str] = None
    is_published: bool = False
    published_at: Optional[datetime] = None
    views: int = 0
    author_id: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Setting(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("category", "key"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    category: str = Field(index=True)
    key: str
    value: Optional[str] = None
    is_secret: bool = False
    updated_at: datetime = Field(default_factory=utcnow)


class MediaFile(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    filename: str
    stored_name: str = Field(unique=True)
    content_type: Optional[str] = None
    kind: str = "document"
    size: int = 0
    uploaded_by: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow)


class Inquiry(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    kind: InquiryKind = Field(default=InquiryKind.CONTACT, index=True)
    name: str
    email: str
    phone: Optional[str] = None
    subject: Optional[str] = None
    message: str
    preferred_country: Optional[str] = None
    status: InquiryStatus = Field(default=InquiryStatus.NEW, index=True)
    admin_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# notifications
# ---------------------------------------------------------------------------

class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    type: str = Field(index=True)
    title: str
    message: str
    action_url: Optional[str] = None
    is_read: bool = Field(default=False, index=True)
    read_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
