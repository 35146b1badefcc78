from studyabroad.utils.mailer import outbox


def _with_lessons(client, admin_headers, course_id, count=2):
    r = client.post(f'/admin/courses/{course_id}/modules', json={'title': 'Getting started'}, headers=admin_headers)
    assert r.status_code == 201
    module_id = r.json()['id']
    lesson_ids = []
    for i in range(count):
        r = client.post(f'/admin/courses/{course_id}/modules/{module_id}/lessons',
                        json={'title': f'Lesson {i + 1}', 'content': 'Secret notes', 'is_free_preview': i == 0},
                        headers=admin_headers)
        assert r.status_code == 201
        lesson_ids.append(r.json()['id'])
    return module_id, lesson_ids


def test_catalog_hides_drafts_and_filters(client, make_course):
    published = make_course(category='IELTS')
    draft = make_course(is_published=False, category='IELTS')
    r = client.get('/courses', params={'category': 'IELTS', 'limit': 100})
    assert r.status_code == 200
    ids = [c['id'] for c in r.json()['courses']]
    assert published['id'] in ids
    assert draft['id'] not in ids
    assert 'description' not in r.json()['courses'][0]
    assert client.get(f"/courses/{draft['slug']}").status_code == 404
    assert client.get(f"/courses/{published['slug']}").json()['course']['id'] == published['id']


def test_duplicate_slug_rejected(client, make_course, admin, headers):
    course = make_course()
    r = client.post('/admin/courses', json={
        'title': 'Another course', 'slug': course['slug'], 'description': 'Something else entirely.',
        'instructor_name': 'Ms. Lee',
    }, headers=headers(admin))
    assert r.status_code == 409


def test_free_enrollment_and_progress_to_completion(client, make_course, student, admin, headers):
    course = make_course()
    _, lesson_ids = _with_lessons(client, headers(admin), course['id'])
    h = headers(student)

    locked = client.get(f"/courses/{course['id']}/lessons", headers=h).json()
    assert locked['has_access'] is False
    assert [len(m['lessons']) for m in locked['modules']] == [1]

    r = client.post(f"/courses/{course['id']}/enroll", headers=h)
    assert r.status_code == 201
    assert outbox[-1]['type'] == 'COURSE_ENROLLMENT'
    assert client.post(f"/courses/{course['id']}/enroll", headers=h).status_code == 400
    assert client.get(f"/courses/{course['id']}/access", headers=h).json()['has_access'] is True

    r = client.put(f"/courses/{course['id']}/progress", json={'lesson_id': lesson_ids[0]}, headers=h)
    assert r.status_code == 200
    assert r.json()['progress'] == 50.0
    assert r.json()['status'] == 'ACTIVE'

    r = client.put(f"/courses/{course['id']}/progress", json={'lesson_id': lesson_ids[1]}, headers=h)
    body = r.json()
    assert body['progress'] == 100.0
    assert body['status'] == 'COMPLETED'
    assert body['completed_count'] == 2
    assert outbox[-1]['type'] == 'COURSE_COMPLETION'

    mine = client.get('/courses/my-courses', headers=h).json()['enrollments']
    assert course['id'] in [e['course_id'] for e in mine]


def test_progress_rejects_foreign_lesson(client, make_course, student, admin, headers):
    course = make_course()
    other = make_course()
    _, other_lessons = _with_lessons(client, headers(admin), other['id'], count=1)
    client.post(f"/courses/{course['id']}/enroll", headers=headers(student))
    r = client.put(f"/courses/{course['id']}/progress", json={'lesson_id': other_lessons[0]}, headers=headers(student))
    assert r.status_code == 400


def test_paid_course_requires_payment(client, make_course, student, headers):
    course = make_course(price=4999)
    r = client.post(f"/courses/{course['id']}/enroll", headers=headers(student))
    assert r.status_code == 402
    body = r.json()
    assert body['payment_required'] is True
    assert body['course']['price'] == 4999
    assert body['course']['currency'] == 'INR'


def test_only_students_enroll(client, make_course, admin, headers):
    course = make_course()
    assert client.post(f"/courses/{course['id']}/enroll", headers=headers(admin)).status_code == 403


def test_unenroll_blocked_after_half_progress(client, make_course, student, headers):
    course = make_course()
    h = headers(student)
    client.post(f"/courses/{course['id']}/enroll", headers=h)
    client.put(f"/courses/{course['id']}/progress", json={'progress': 75}, headers=h)
    assert client.delete(f"/courses/{course['id']}/enroll", headers=h).status_code == 400

    fresh = make_course()
    client.post(f"/courses/{fresh['id']}/enroll", headers=h)
    assert client.delete(f"/courses/{fresh['id']}/enroll", headers=h).status_code == 200
    assert client.get(f"/courses/{fresh['id']}/progress", headers=h).status_code == 404


def test_reviews_need_enrollment_and_are_unique(client, make_course, student, make_user, headers):
    course = make_course()
    review = {'rating': 4, 'review_text': 'Clear explanations and good pacing.'}
    outsider = make_user()
    assert client.post(f"/courses/{course['id']}/reviews", json=review, headers=headers(outsider)).status_code == 403

    client.post(f"/courses/{course['id']}/enroll", headers=headers(student))
    r = client.post(f"/courses/{course['id']}/reviews", json=review, headers=headers(student))
    assert r.status_code == 201
    assert client.post(f"/courses/{course['id']}/reviews", json=review, headers=headers(student)).status_code == 409

    listing = client.get(f"/courses/{course['id']}/reviews").json()
    assert listing['total_reviews'] == 1
    assert listing['distribution']['4'] == 1
    assert client.get(f"/courses/{course['id']}").json()['course']['rating'] == 4.0


def test_delete_with_enrollments_needs_force(client, make_course, student, admin, headers):
    course = make_course()
    client.post(f"/courses/{course['id']}/enroll", headers=headers(student))
    assert client.delete(f"/admin/courses/{course['id']}", headers=headers(admin)).status_code == 400
    r = client.delete(f"/admin/courses/{course['id']}", params={'force': True}, headers=headers(admin))
    assert r.status_code == 200
    assert client.get(f"/admin/courses/{course['id']}", headers=headers(admin)).status_code == 404


def test_admin_stats(client, make_course, admin, student, headers):
    make_course(is_featured=True)
    assert client.get('/admin/courses/stats', headers=headers(student)).status_code == 403
    stats = client.get('/admin/courses/stats', headers=headers(admin)).json()
    assert stats['total_courses'] >= 1
    assert stats['featured_courses'] >= 1
