from types import SimpleNamespace

from studyabroad.utils.mailer import outbox
from studyabroad.utils.scoring import normalize_answer, percentage, score_attempt


def _q(qid, answer, points=1):
    return SimpleNamespace(id=qid, correct_answer=answer, points=points, explanation=None)


def test_normalize_answer():
    assert normalize_answer('  Paris ') == 'paris'
    assert normalize_answer(['b', 'A']) == normalize_answer('a,b')
    assert normalize_answer(None) == ''
    assert normalize_answer(4) == '4'


def test_percentage_handles_zero_total():
    assert percentage(1, 3) == 33.33
    assert percentage(5, 0) == 0.0


def test_score_attempt_sections_and_pass_mark():
    reading = SimpleNamespace(id=1, section_name='Reading')
    listening = SimpleNamespace(id=2, section_name='Listening')
    sections = [
        (reading, [_q(1, 'A'), _q(2, 'B', points=3)]),
        (listening, [_q(3, 'True'), _q(4, None)]),
    ]
    result = score_attempt(sections, {1: 'a', '2': 'C', '3': ' true '}, passing_score=40)
    assert result['earned_points'] == 2
    assert result['total_points'] == 6
    assert result['score'] == 33.33
    assert result['passed'] is False
    assert result['correct_answers'] == 2
    assert result['total_questions'] == 4
    assert [s['score'] for s in result['section_scores']] == [25.0, 50.0]
    # unanswerable questions never count as correct
    assert result['question_results'][-1]['is_correct'] is False


def test_no_pass_mark_always_passes():
    section = SimpleNamespace(id=1, section_name='Mock')
    assert score_attempt([(section, [_q(1, 'A')])], {}, None)['passed'] is True


def _question_ids(detail):
    return [q['id'] for s in detail['sections'] for q in s['questions']]


def test_public_detail_hides_answers(client, make_test):
    test = make_test()
    r = client.get(f"/tests/{test['id']}")
    assert r.status_code == 200
    questions = [q for s in r.json()['sections'] for q in s['questions']]
    assert len(questions) == 3
    assert all('correct_answer' not in q and 'explanation' not in q for q in questions)
    assert client.get(f"/tests/by-slug/{test['slug']}").json()['test']['id'] == test['id']


def test_attempt_flow(client, make_test, student, make_user, headers):
    test = make_test()
    h = headers(student)
    r = client.post(f"/tests/{test['id']}/start", headers=h)
    assert r.status_code == 201
    started = r.json()
    assert started['resumed'] is False
    attempt_id = started['attempt']['id']
    q1, q2, q3 = _question_ids(started)

    r = client.post(f"/tests/{test['id']}/start", headers=h)
    assert r.status_code == 200
    again = r.json()
    assert again['resumed'] is True
    assert again['attempt']['id'] == attempt_id

    saved = client.post(f"/tests/{test['id']}/save-progress",
                        json={'attempt_id': attempt_id, 'answers': {str(q1): ' paris '}, 'time_spent': 60}, headers=h)
    assert saved.status_code == 200
    assert saved.json()['attempt']['answers'] == {str(q1): ' paris '}

    intruder = make_user()
    r = client.post(f"/tests/{test['id']}/submit", json={'attempt_id': attempt_id, 'answers': {}},
                    headers=headers(intruder))
    assert r.status_code == 403

    r = client.post(f"/tests/{test['id']}/submit",
                    json={'attempt_id': attempt_id, 'answers': {str(q2): '3', str(q3): 'BLUE'}, 'time_spent': 600},
                    headers=h)
    assert r.status_code == 200
    result = r.json()
    assert result['earned_points'] == 2
    assert result['total_points'] == 4
    assert result['score'] == 50.0
    assert result['passed'] is True
    assert result['attempt']['status'] == 'COMPLETED'
    assert result['attempt']['score'] == 50.0
    assert result['attempt']['completed_at'] is not None
    assert outbox[-1]['type'] == 'TEST_COMPLETED'

    r = client.post(f"/tests/{test['id']}/submit", json={'attempt_id': attempt_id, 'answers': {}}, headers=h)
    assert r.status_code == 400

    detail = client.get(f'/test-attempts/{attempt_id}', headers=h).json()
    by_id = {item['question_id']: item for item in detail['question_results']}
    assert by_id[q2]['correct_answer'] == '4'
    assert by_id[q2]['is_correct'] is False
    assert client.get(f'/test-attempts/{attempt_id}', headers=headers(intruder)).status_code == 403

    results = client.get('/user/test-results', headers=h).json()
    assert results['total_completed'] == 1
    assert results['best_scores'][0]['best_score'] == 50.0


def test_unpublished_test_cannot_start(client, make_test, student, headers):
    test = make_test(is_published=False)
    assert client.post(f"/tests/{test['id']}/start", headers=headers(student)).status_code == 400


def test_delete_with_attempts_needs_force(client, make_test, student, admin, headers):
    test = make_test()
    client.post(f"/tests/{test['id']}/start", headers=headers(student))
    assert client.delete(f"/admin/tests/{test['id']}", headers=headers(admin)).status_code == 400
    assert client.delete(f"/admin/tests/{test['id']}?force=true", headers=headers(admin)).status_code == 200


def test_csv_import_with_dedupe_and_errors(client, make_test, admin, headers):
    test = make_test()
    detail = client.get(f"/admin/tests/{test['id']}", headers=headers(admin)).json()
    section_id = detail['sections'][0]['id']
    assert detail['sections'][0]['questions'][0]['correct_answer'] == 'Paris'

    csv = (b'question,options,correct\n'
           b'Capital of France?,Paris|Rome,Paris\n'
           b'Largest ocean?,Atlantic|Pacific,Pacific\n'
           b'Broken row?,A|B,Z\n')
    url = f"/admin/tests/{test['id']}/sections/{section_id}/import"
    r = client.post(url, files={'file': ('bank.csv', csv, 'text/csv')}, data={'dry_run': 'true'},
                    headers=headers(admin))
    assert r.status_code == 200
    body = r.json()
    assert (body['created'], body['skipped'], body['dry_run']) == (1, 1, True)
    assert [e['index'] for e in body['errors']] == [2]

    r = client.post(url, files={'file': ('bank.csv', csv, 'text/csv')}, headers=headers(admin))
    assert r.json()['created'] == 1
    refreshed = client.get(f"/admin/tests/{test['id']}", headers=headers(admin)).json()
    assert refreshed['test']['total_questions'] == 4

    r = client.post(url, files={'file': ('bank.xls', b'junk', 'application/octet-stream')}, headers=headers(admin))
    assert r.status_code == 400


def test_analytics(client, make_test, student, admin, headers):
    test = make_test()
    h = headers(student)
    started = client.post(f"/tests/{test['id']}/start", headers=h).json()
    q1 = _question_ids(started)[0]
    client.post(f"/tests/{test['id']}/submit",
                json={'attempt_id': started['attempt']['id'], 'answers': {str(q1): 'Paris'}}, headers=h)
    stats = client.get(f"/admin/tests/{test['id']}/analytics", headers=headers(admin)).json()
    assert stats['completed_attempts'] == 1
    assert stats['completion_rate'] == 100.0
    first = next(q for q in stats['questions'] if q['question_id'] == q1)
    assert first['correct_rate'] == 100.0
