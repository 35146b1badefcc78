"""Seed a local database with demo content.

Usage: python scripts/seed_demo.py [--admin-email EMAIL] [--admin-password PASSWORD]

Creates an admin account, a few courses and practice tests, one consultant
with appointment types, the header menu, homepage blocks and site settings.
Running it twice is harmless: existing rows (matched by e-mail or slug) are left alone.
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `studyabroad` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from studyabroad import models, repositories
from studyabroad.auth import hash_password
from studyabroad.config import settings, smtp_config
from studyabroad.database import create_db_and_tables, open_session
from studyabroad.services.booking import AppointmentTypeService, ConsultantService
from studyabroad.services.cms import ContentService, MenuService, SettingsService
from studyabroad.services.courses import CourseService
from studyabroad.services.test_prep import TestPrepService

COURSES = [
    {'title': 'IELTS Academic Masterclass', 'slug': 'ielts-academic-masterclass', 'category': 'IELTS',
     'description': 'Band-focused preparation for all four IELTS modules.', 'instructor_name': 'Dr. Anita Rao',
     'price': 4999, 'level': models.CourseLevel.INTERMEDIATE, 'is_featured': True},
    {'title': 'Writing a Statement of Purpose', 'slug': 'statement-of-purpose', 'category': 'Applications',
     'description': 'Plan, draft and polish an SOP that admissions teams remember.',
     'instructor_name': 'Karan Mehta', 'price': 0},
]

TESTS = [
    {'title': 'IELTS Reading Practice 1', 'slug': 'ielts-reading-practice-1', 'type': models.TestType.IELTS,
     'description': 'A short timed reading drill.', 'duration': 20, 'passing_score': 60,
     'sections': [{'section_name': 'Reading', 'questions': [
         {'question_text': 'The passage suggests the author is ...', 'options': ['Optimistic', 'Neutral', 'Critical'],
          'correct_answer': 'Critical'},
         {'question_text': 'Urban bees produce more honey than rural bees.', 'options': ['True', 'False'],
          'question_type': models.QuestionType.TRUE_FALSE, 'correct_answer': 'False'},
     ]}]},
]

HOMEPAGE = [
    {'kind': models.ContentKind.hero_slide, 'title': 'Study abroad with confidence',
     'subtitle': 'Admissions, test prep and visas in one place', 'link_url': '/appointments'},
    {'kind': models.ContentKind.statistic, 'title': 'Students placed', 'body': '2,500+'},
    {'kind': models.ContentKind.journey_step, 'title': 'Book a free profile review'},
    {'kind': models.ContentKind.journey_step, 'title': 'Shortlist universities'},
]

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday')

MENU = ['Courses', 'Test Prep', 'Blog', 'Contact']


def ensure_admin(session, email: str, password: str) -> models.User:
    users = repositories.UserRepository(session)
    existing = users.get_by_email(email)
    if existing:
        print(f'Admin {email} already exists')
        return existing
    admin = users.save(models.User(
        email=email.lower(), password_hash=hash_password(password), first_name='Site', last_name='Admin',
        role=models.UserRole.SUPER_ADMIN, is_verified=True,
    ))
    print(f'Created admin {email}')
    return admin


def seed_catalog(session) -> None:
    courses = CourseService(session)
    for data in COURSES:
        if courses.repo.get_by_slug(data['slug']):
            continue
        courses.create({**data, 'is_published': True})
        print(f"Created course {data['title']}")
    tests = TestPrepService(session)
    for data in TESTS:
        if tests.repo.get_by_slug(data['slug']):
            continue
        tests.create({**data, 'is_published': True})
        print(f"Created test {data['title']}")


def seed_booking(session) -> None:
    consultants = ConsultantService(session)
    if consultants.list(include_inactive=True):
        return
    # days missing from the map fall back to the default schedule, so weekends are listed explicitly
    availability = {day: {'available': False} for day in ('saturday', 'sunday')}
    for day in WEEKDAYS:
        availability[day] = {'start_time': '10:00', 'end_time': '18:00', 'breaks': [{'start': '13:00', 'end': '14:00'}]}
    consultants.create({
        'name': 'Priya Sharma', 'email': 'priya@example.com', 'specialties': ['UK Admissions', 'Visas'],
        'languages': ['English', 'Hindi'], 'availability': availability,
    })
    types = AppointmentTypeService(session)
    types.create({'name': 'Free profile review', 'duration': 30}, settings.DEFAULT_CURRENCY)
    types.create({'name': 'Application strategy session', 'duration': 60, 'price': 1500}, settings.DEFAULT_CURRENCY)
    print('Created consultant and appointment types')


def seed_site(session) -> None:
    menus = MenuService(session)
    if not menus.repo.get_by_slug('main-navigation'):
        menu = menus.create({'name': 'Main navigation', 'location': models.MenuLocation.HEADER})
        for label in MENU:
            menus.add_item(menu.id, {'label': label, 'url': '/' + label.lower().replace(' ', '-')})
        print('Created header menu')
    content = ContentService(session)
    if not content.by_kind(models.ContentKind.hero_slide, active_only=False):
        for block in HOMEPAGE:
            content.create(block)
        print('Created homepage blocks')
    SettingsService(session).update({
        'general': {'site_name': 'Study Abroad Consultancy', 'contact_email': smtp_config()['from_email']},
    })


def main(admin_email: str, admin_password: str) -> None:
    create_db_and_tables()
    with open_session() as session:
        ensure_admin(session, admin_email, admin_password)
        seed_catalog(session)
        seed_booking(session)
        seed_site(session)
    print('Seed complete')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--admin-email', default='admin@example.com')
    parser.add_argument('--admin-password', default='change-me-now')
    args = parser.parse_args()
    main(args.admin_email, args.admin_password)
