import uuid
from datetime import date, datetime
from types import SimpleNamespace

import pytest
from sqlmodel import select

from studyabroad import models
from studyabroad.utils import slots
from studyabroad.utils.mailer import outbox


def test_generate_time_slots_skips_breaks():
    result = slots.generate_time_slots('09:00', '17:00', 60, [{'start': '12:00', 'end': '13:00'}])
    assert result == ['09:00', '10:00', '11:00', '13:00', '14:00', '15:00', '16:00']


def test_generate_time_slots_last_slot_must_fit():
    assert slots.generate_time_slots('09:00', '10:30', 45) == ['09:00', '09:45']
    with pytest.raises(ValueError):
        slots.generate_time_slots('09:00', '10:00', 0)


def test_time_parsing():
    assert slots.time_to_minutes('09:30') == 570
    assert slots.minutes_to_time(570) == '09:30'
    for bad in ('9', '25:00', 'ab:cd', None):
        with pytest.raises(ValueError):
            slots.time_to_minutes(bad)


def test_working_hours():
    day = {'available': True, 'start_time': '09:00', 'end_time': '17:00', 'breaks': [{'start': '12:00', 'end': '13:00'}]}
    assert slots.within_working_hours(day, 9 * 60, 60)
    assert not slots.within_working_hours(day, 16 * 60 + 30, 60)
    assert not slots.within_working_hours(day, 12 * 60, 30)
    assert not slots.within_working_hours({**day, 'available': False}, 10 * 60, 30)


def test_missing_weekday_uses_default_schedule():
    monday = date(2030, 1, 7)
    assert slots.day_schedule({'tuesday': {'available': False}}, monday) is slots.DEFAULT_DAY
    assert slots.day_schedule({'monday': {'available': False}}, monday) == {'available': False}


def test_available_days_drops_booked_and_past_slots():
    monday = date(2030, 1, 7)
    booked = [
        SimpleNamespace(scheduled_at=datetime(2030, 1, 7, 10, 0), duration=60),
        SimpleNamespace(scheduled_at=datetime(2030, 1, 7, 11, 30), duration=30),
    ]
    now = datetime(2030, 1, 7, 9, 15)
    days = slots.available_days({'tuesday': {'available': False}}, monday, 2, booked, now)
    assert days[0]['slots'] == ['13:00', '14:00', '15:00', '16:00']
    assert days[1] == {'date': '2030-01-08', 'weekday': 'tuesday', 'slots': [], 'available': False}


# -- API ------------------------------------------------------------------

@pytest.fixture
def booking_setup(client, admin, headers):
    h = headers(admin)
    consultant = client.post('/admin/consultants', json={
        'name': 'Priya Sharma',
        'email': f'consultant-{uuid.uuid4().hex[:6]}@example.com',
        'specialties': ['UK Admissions', 'Visas'],
        'availability': {
            'monday': {'start_time': '09:00', 'end_time': '17:00', 'breaks': [{'start': '12:00', 'end': '13:00'}]},
            'sunday': {'available': False},
        },
    }, headers=h)
    assert consultant.status_code == 201, consultant.text
    appt_type = client.post('/admin/appointment-types', json={'name': 'Profile review', 'duration': 60}, headers=h)
    assert appt_type.status_code == 201
    return consultant.json(), appt_type.json()


def _booking(day, consultant, appt_type, time_str='10:00', **extra):
    return {'consultant_id': consultant['id'], 'type_id': appt_type['id'],
            'scheduled_date': day.isoformat(), 'scheduled_time': time_str, **extra}


def test_consultant_listing_and_specialty_filter(client, booking_setup):
    consultant, appt_type = booking_setup
    r = client.get('/consultants', params={'specialty': 'visas'})
    assert consultant['id'] in [c['id'] for c in r.json()['consultants']]
    assert appt_type['currency'] == 'INR'
    assert appt_type['id'] in [t['id'] for t in client.get('/appointment-types').json()['types']]


def test_book_and_conflicts(client, booking_setup, student, make_user, headers, booking_day):
    consultant, appt_type = booking_setup
    r = client.post('/appointments', json=_booking(booking_day, consultant, appt_type), headers=headers(student))
    assert r.status_code == 201, r.text
    body = r.json()
    assert body['payment_required'] is False
    assert body['appointment']['status'] == 'SCHEDULED'
    assert body['appointment']['meeting_link'].startswith('https://')
    assert outbox[-1]['type'] == 'APPOINTMENT_CONFIRMATION'

    other = make_user()
    r = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, '10:30'), headers=headers(other))
    assert r.status_code == 409
    r = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, '12:00'), headers=headers(other))
    assert r.status_code == 400
    r = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, '16:30'), headers=headers(other))
    assert r.status_code == 400
    r = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, '11:00'), headers=headers(other))
    assert r.status_code == 201

    availability = client.get(f"/consultants/{consultant['id']}/availability",
                              params={'date': booking_day.isoformat(), 'days': 1}).json()
    assert availability['availability'][0]['slots'] == ['09:00', '13:00', '14:00', '15:00', '16:00']


def test_booking_in_the_past_rejected(client, booking_setup, student, headers, booking_day):
    consultant, appt_type = booking_setup
    payload = {**_booking(booking_day, consultant, appt_type), 'scheduled_date': '2020-01-06'}
    assert client.post('/appointments', json=payload, headers=headers(student)).status_code == 400


def test_guest_booking(client, booking_setup, booking_day):
    consultant, appt_type = booking_setup
    r = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, first_name='Ravi', last_name='K',
                                                   email='guest@example.com'))
    assert r.status_code == 400
    guest_email = f'guest-{uuid.uuid4().hex[:6]}@example.com'
    r = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, '14:00', first_name='Ravi', last_name='K',
                                                   email=guest_email, phone='+91 98765 43210'))
    assert r.status_code == 201
    assert r.json()['appointment']['user']['email'] == guest_email
    assert outbox[-1]['to'] == guest_email


def test_rejected_guest_booking_leaves_no_account(client, db, booking_setup, student, headers, booking_day):
    consultant, appt_type = booking_setup
    guest = {'first_name': 'Meera', 'last_name': 'S', 'phone': '+91 90000 00000'}
    early = f'early-{uuid.uuid4().hex[:6]}@example.com'
    r = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, '07:00', email=early, **guest))
    assert r.status_code == 400

    taken = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, '16:00'),
                        headers=headers(student))
    assert taken.status_code == 201
    clash = f'clash-{uuid.uuid4().hex[:6]}@example.com'
    r = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, '16:00', email=clash, **guest))
    assert r.status_code == 409

    for email in (early, clash):
        assert db.exec(select(models.User).where(models.User.email == email)).first() is None


def test_students_can_only_cancel(client, booking_setup, student, make_user, admin, headers, booking_day):
    consultant, appt_type = booking_setup
    booked = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, '15:00'), headers=headers(student))
    appointment_id = booked.json()['appointment']['id']
    h = headers(student)

    assert client.patch(f'/appointments/{appointment_id}', json={'notes': 'bring transcripts'},
                        headers=h).status_code == 403
    assert client.get(f'/appointments/{appointment_id}', headers=headers(make_user())).status_code == 403

    r = client.post(f'/appointments/{appointment_id}/messages', json={'message': 'Looking forward to it'}, headers=h)
    assert r.status_code == 201
    assert len(client.get(f'/appointments/{appointment_id}/messages', headers=h).json()['messages']) == 1

    r = client.patch(f'/appointments/{appointment_id}', json={'status': 'CANCELLED', 'cancel_reason': 'exam clash'},
                     headers=h)
    assert r.status_code == 200
    assert r.json()['status'] == 'CANCELLED'
    assert client.patch(f'/appointments/{appointment_id}', json={'status': 'CANCELLED'}, headers=h).status_code == 400

    mine = client.get('/appointments', headers=h).json()
    assert mine['status_counts'].get('CANCELLED', 0) >= 1

    # deleting a consultant that has bookings only deactivates it
    r = client.delete(f"/admin/consultants/{consultant['id']}", headers=headers(admin))
    assert r.json() == {'deleted': False, 'deactivated': True}
    assert client.get(f"/consultants/{consultant['id']}").status_code == 404


def test_admin_reschedule_checks_overlap(client, booking_setup, student, make_user, admin, headers, booking_day):
    consultant, appt_type = booking_setup
    first = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, '09:00'), headers=headers(student))
    second = client.post('/appointments', json=_booking(booking_day, consultant, appt_type, '14:00'), headers=headers(make_user()))
    second_id = second.json()['appointment']['id']
    assert first.status_code == second.status_code == 201

    r = client.patch(f'/appointments/{second_id}', json={'scheduled_time': '09:00'}, headers=headers(admin))
    assert r.status_code == 409
    r = client.patch(f'/appointments/{second_id}', json={'scheduled_time': '16:00', 'status': 'CONFIRMED'},
                     headers=headers(admin))
    assert r.status_code == 200
    assert r.json()['scheduled_at'].endswith('16:00:00')
    assert r.json()['status'] == 'CONFIRMED'
