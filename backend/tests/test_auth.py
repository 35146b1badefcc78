import uuid

from sqlmodel import select

from studyabroad import models
from studyabroad.utils.mailer import outbox


def _register(client, email=None, password='secret-pass-1'):
    email = email or f'reg-{uuid.uuid4().hex[:8]}@example.com'
    r = client.post('/auth/register', json={
        'email': email, 'password': password, 'first_name': 'Asha', 'last_name': 'Menon',
    })
    return email, r


def test_register_login_and_me(client):
    email, r = _register(client)
    assert r.status_code == 201
    body = r.json()
    assert body['user']['role'] == 'STUDENT'
    assert 'password_hash' not in body['user']
    assert outbox[-1]['type'] == 'WELCOME'
    assert outbox[-1]['to'] == email

    r2 = client.post('/auth/login', json={'email': email.upper(), 'password': 'secret-pass-1'})
    assert r2.status_code == 200
    token = r2.json()['access_token']
    me = client.get('/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert me.status_code == 200
    assert me.json()['email'] == email
    assert me.json()['last_login'] is not None


def test_duplicate_registration_conflicts(client):
    email, _ = _register(client)
    _, r = _register(client, email=email)
    assert r.status_code == 409


def test_bad_credentials(client):
    email, _ = _register(client)
    r = client.post('/auth/login', json={'email': email, 'password': 'wrong-password'})
    assert r.status_code == 401
    r = client.post('/auth/login', json={'email': 'nobody@example.com', 'password': 'whatever1'})
    assert r.status_code == 401


def test_missing_or_invalid_token_rejected(client):
    r = client.get('/auth/me')
    assert r.status_code in (401, 403)
    r = client.get('/auth/me', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r.status_code == 401


def test_disabled_account_cannot_login(client, make_user):
    user = make_user(is_active=False)
    r = client.post('/auth/login', json={'email': user.email, 'password': 'password123'})
    assert r.status_code == 401


def test_timestamps_round_trip_as_naive_utc(client, make_user, db):
    user = make_user()
    assert client.post('/auth/login', json={'email': user.email, 'password': 'password123'}).status_code == 200
    db.refresh(user)
    assert user.created_at.tzinfo is None
    assert user.last_login is not None and user.last_login.tzinfo is None
    assert user.last_login >= user.created_at


def test_verify_email_flow(client, db):
    email, r = _register(client)
    token = r.json()['access_token']
    user = db.exec(select(models.User).where(models.User.email == email)).first()
    verify = client.post('/auth/verify-email', json={'token': user.verification_token})
    assert verify.status_code == 200
    assert verify.json()['user']['is_verified'] is True
    again = client.post('/auth/resend-verification', headers={'Authorization': f'Bearer {token}'})
    assert again.status_code == 400
    assert client.post('/auth/verify-email', json={'token': 'bogus'}).status_code == 400


def test_forgot_password_never_reveals_accounts(client):
    r = client.post('/auth/forgot-password', json={'email': 'ghost@example.com'})
    assert r.status_code == 200
    assert outbox == []


def test_password_reset_flow(client, make_user, db):
    user = make_user()
    r = client.post('/auth/forgot-password', json={'email': user.email})
    assert r.status_code == 200
    assert outbox[-1]['type'] == 'PASSWORD_RESET'
    db.refresh(user)
    token = user.reset_token
    assert token and token in outbox[-1]['html']

    r = client.post('/auth/reset-password', json={'token': token, 'new_password': 'brand-new-pass'})
    assert r.status_code == 200
    assert client.post('/auth/login', json={'email': user.email, 'password': 'brand-new-pass'}).status_code == 200
    # tokens are single use
    r = client.post('/auth/reset-password', json={'token': token, 'new_password': 'another-pass'})
    assert r.status_code == 400


def test_change_password_and_profile(client, student, headers):
    h = headers(student)
    r = client.post('/auth/change-password', json={'current_password': 'nope-nope', 'new_password': 'whatever99'},
                    headers=h)
    assert r.status_code == 400
    r = client.post('/auth/change-password', json={'current_password': 'password123', 'new_password': 'whatever99'},
                    headers=h)
    assert r.status_code == 200
    r = client.put('/auth/profile', json={'target_country': 'Canada', 'bio': 'Aspiring engineer'}, headers=h)
    assert r.status_code == 200
    assert r.json()['target_country'] == 'Canada'


def test_login_rate_limited(client, monkeypatch):
    monkeypatch.setenv('AUTH_RATE_LIMIT_PER_MIN', '2')
    payload = {'email': 'limited@example.com', 'password': 'whatever1'}
    codes = [client.post('/auth/login', json=payload).status_code for _ in range(3)]
    assert codes[:2] == [401, 401]
    assert codes[2] == 429


def test_admin_user_management_rules(client, student, admin, super_admin, headers):
    assert client.get('/admin/users', headers=headers(student)).status_code == 403
    r = client.get('/admin/users', params={'role': 'STUDENT'}, headers=headers(admin))
    assert r.status_code == 200
    assert all(u['role'] == 'STUDENT' for u in r.json()['users'])

    # plain admins cannot hand out admin roles
    r = client.patch(f'/admin/users/{student.id}', json={'role': 'ADMIN'}, headers=headers(admin))
    assert r.status_code == 403
    r = client.patch(f'/admin/users/{student.id}', json={'role': 'CONSULTANT'}, headers=headers(admin))
    assert r.status_code == 200
    assert r.json()['role'] == 'CONSULTANT'
    r = client.patch(f'/admin/users/{student.id}', json={'role': 'ADMIN'}, headers=headers(super_admin))
    assert r.status_code == 200

    r = client.patch(f'/admin/users/{admin.id}', json={'is_active': False}, headers=headers(admin))
    assert r.status_code == 400
