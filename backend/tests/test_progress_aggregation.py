import uuid

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from tracker import aggregation, models, repositories
from tracker.database import engine
from tracker.aggregation import SubjectAggregate, count_aggregate
from tracker.main import app

client = TestClient(app)


def _subject_progress(headers, subject_id, account_id=None):
    params = {'account_id': account_id} if account_id else None
    rows = client.get('/progress/subjects', params=params, headers=headers).json()
    return next((r for r in rows if r['subject_id'] == subject_id), None)


def _rollup(headers, subject_id):
    row = _subject_progress(headers, subject_id)
    return (row['total_sections'], row['completed_sections'])


def _upsert(headers, section_id, **payload):
    return client.put(f'/progress/sections/{section_id}', json=payload, headers=headers)


def test_count_aggregate_counts_only_live_completed_sections():
    s1, s2, s3, gone = (uuid.uuid4() for _ in range(4))
    completion = {s1: True, s2: False, gone: True}
    assert count_aggregate([s1, s2, s3], completion) == SubjectAggregate(total_sections=3, completed_sections=1)
    assert count_aggregate([], completion) == SubjectAggregate(total_sections=0, completed_sections=0)


def test_history_scenario(admin_headers, student):
    _, headers = student
    subject = client.post('/subjects', json={'name': f'History {uuid.uuid4().hex[:6]}'}, headers=admin_headers).json()
    module = client.post(f"/subjects/{subject['id']}/modules", json={'name': 'Modern India'},
                         headers=admin_headers).json()
    s1 = client.post(f"/modules/{module['id']}/sections", json={'name': 'S1', 'type': 'source'},
                     headers=admin_headers).json()
    s2 = client.post(f"/modules/{module['id']}/sections", json={'name': 'S2', 'type': 'test'},
                     headers=admin_headers).json()
    client.post(f"/modules/{module['id']}/sections", json={'name': 'S3', 'type': 'resource'}, headers=admin_headers)
    questions = [
        client.post(f"/sections/{s2['id']}/questions", json={
            'question_text': f'Question {n}', 'option_a': 'a', 'option_b': 'b', 'option_c': 'c', 'option_d': 'd',
            'correct_answer': letter,
        }, headers=admin_headers).json()
        for n, letter in enumerate(['B', 'D', 'A', 'C', 'A'])
    ]

    assert client.post(f"/sections/{s1['id']}/complete", headers=headers).status_code == 200
    assert _rollup(headers, subject['id']) == (3, 1)

    perfect = [{'question_id': q['id'], 'answer': q['correct_answer']} for q in questions]
    result = client.post(f"/sections/{s2['id']}/submit", json={'answers': perfect}, headers=headers).json()
    assert result['passed'] is True
    assert result['progress']['is_completed'] is True
    assert result['progress']['score'] == 100
    assert _rollup(headers, subject['id']) == (3, 2)

    # 3 of 5 correct is 60%, which must not undo the completion
    partial = perfect[:3] + [{'question_id': q['id'], 'answer': 'B' if q['correct_answer'] != 'B' else 'A'}
                             for q in questions[3:]]
    result = client.post(f"/sections/{s2['id']}/submit", json={'answers': partial}, headers=headers).json()
    assert result['score'] == 60
    assert result['passed'] is False
    assert result['progress']['is_completed'] is True
    assert result['progress']['score'] == 100
    assert result['progress']['attempts'] == 2
    assert _rollup(headers, subject['id']) == (3, 2)


def test_repeated_identical_upserts_are_idempotent(student, course):
    _, headers = student
    subject_id = course['subject']['id']
    for _ in range(3):
        r = _upsert(headers, course['reading']['id'], is_completed=True, score=100)
        assert r.status_code == 200
        assert _rollup(headers, subject_id) == (4, 1)
    rows = client.get('/progress/sections', headers=headers).json()
    assert len([r for r in rows if r['section_id'] == course['reading']['id']]) == 1


def test_unsetting_completion_lowers_the_count(student, course):
    _, headers = student
    subject_id = course['subject']['id']
    _upsert(headers, course['reading']['id'], is_completed=True)
    _upsert(headers, course['resource']['id'], is_completed=True)
    assert _rollup(headers, subject_id) == (4, 2)
    r = _upsert(headers, course['reading']['id'], is_completed=False)
    assert r.json()['is_completed'] is False
    assert _rollup(headers, subject_id) == (4, 1)
    assert client.delete(f"/progress/sections/{course['resource']['id']}", headers=headers).status_code == 200
    assert _rollup(headers, subject_id) == (4, 0)


def test_completed_at_is_kept_across_repeated_completions(student, course):
    _, headers = student
    first = client.post(f"/sections/{course['reading']['id']}/complete", headers=headers).json()
    second = client.post(f"/sections/{course['reading']['id']}/complete", headers=headers).json()
    assert first['completed_at'] is not None
    assert second['completed_at'] == first['completed_at']
    assert second['attempts'] == 2


def test_structure_changes_refresh_totals(admin_headers, student, course):
    _, headers = student
    subject_id = course['subject']['id']
    client.post(f"/sections/{course['reading']['id']}/complete", headers=headers)
    assert _rollup(headers, subject_id) == (4, 1)

    module_id = course['modules'][1]['id']
    client.post(f'/modules/{module_id}/sections', json={'name': 'Mughal administration'}, headers=admin_headers)
    assert _rollup(headers, subject_id) == (5, 1)

    client.delete(f"/sections/{course['reading']['id']}", headers=admin_headers)
    assert _rollup(headers, subject_id) == (4, 0)

    client.delete(f'/modules/{module_id}', headers=admin_headers)
    assert _rollup(headers, subject_id) == (2, 0)


def test_moving_a_section_updates_both_subjects(admin_headers, student, course):
    _, headers = student
    source_subject = course['subject']['id']
    other = client.post('/subjects', json={'name': f'Polity {uuid.uuid4().hex[:6]}'}, headers=admin_headers).json()
    other_module = client.post(f"/subjects/{other['id']}/modules", json={'name': 'Constitution'},
                               headers=admin_headers).json()
    other_section = client.post(f"/modules/{other_module['id']}/sections", json={'name': 'Preamble'},
                                headers=admin_headers).json()
    client.post(f"/sections/{course['reading']['id']}/complete", headers=headers)
    client.post(f"/sections/{other_section['id']}/complete", headers=headers)
    assert _rollup(headers, source_subject) == (4, 1)
    assert _rollup(headers, other['id']) == (1, 1)

    r = client.patch(f"/sections/{course['reading']['id']}", json={'module_id': other_module['id']},
                     headers=admin_headers)
    assert r.status_code == 200
    assert _rollup(headers, source_subject) == (3, 0)
    assert _rollup(headers, other['id']) == (2, 2)


def test_progress_of_other_accounts_is_protected(admin_headers, make_student, course):
    owner, owner_headers = make_student()
    _, intruder_headers = make_student()
    section_id = course['reading']['id']
    client.post(f'/sections/{section_id}/complete', headers=owner_headers)

    r = client.get('/progress/sections', params={'account_id': owner['id']}, headers=intruder_headers)
    assert r.status_code == 403
    r = client.get('/progress/subjects', params={'account_id': owner['id']}, headers=intruder_headers)
    assert r.status_code == 403
    r = _upsert(intruder_headers, section_id, account_id=owner['id'], is_completed=False)
    assert r.status_code == 403
    # the intruder's own listing never includes the owner's rows
    assert client.get('/progress/sections', headers=intruder_headers).json() == []

    # admins can read but not write
    rows = client.get('/progress/sections', params={'account_id': owner['id']}, headers=admin_headers).json()
    assert [r['section_id'] for r in rows] == [section_id]
    assert _subject_progress(admin_headers, course['subject']['id'], owner['id'])['completed_sections'] == 1
    r = _upsert(admin_headers, section_id, account_id=owner['id'], is_completed=False)
    assert r.status_code == 403
    assert _rollup(owner_headers, course['subject']['id']) == (4, 1)


def test_score_is_validated(student, course):
    _, headers = student
    assert _upsert(headers, course['reading']['id'], score=101).status_code == 422
    assert _upsert(headers, course['reading']['id'], score=-1).status_code == 422


def test_progress_for_unknown_section_is_404(student):
    _, headers = student
    assert _upsert(headers, uuid.uuid4(), is_completed=True).status_code == 404


def test_aggregation_failure_rolls_back_the_write(monkeypatch, student, course):
    _, headers = student

    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(aggregation, 'recompute_subject_aggregate', broken)
    r = client.post(f"/sections/{course['reading']['id']}/complete", headers=headers)
    assert r.status_code == 500
    assert r.json() == {'detail': 'progress could not be saved, please retry'}
    monkeypatch.undo()

    assert client.get('/progress/sections', headers=headers).json() == []
    assert _subject_progress(headers, course['subject']['id']) is None


def test_partial_upsert_keeps_the_stored_score(student, course):
    _, headers = student
    section_id = course['reading']['id']
    assert _upsert(headers, section_id, is_completed=True, score=100).json()['score'] == 100
    r = _upsert(headers, section_id, is_completed=True)
    assert r.status_code == 200
    assert r.json()['score'] == 100
    r = _upsert(headers, section_id, score=40)
    assert r.json()['is_completed'] is True
    assert r.json()['score'] == 40


def test_stale_rollup_row_is_overwritten(student, course):
    account, headers = student
    subject_id = course['subject']['id']
    with Session(engine) as session:
        session.add(models.SubjectProgress(account_id=uuid.UUID(account['id']), subject_id=uuid.UUID(subject_id),
                                           total_sections=99, completed_sections=42))
        session.commit()

    assert client.post(f"/sections/{course['reading']['id']}/complete", headers=headers).status_code == 200
    assert _rollup(headers, subject_id) == (4, 1)
    with Session(engine) as session:
        rows = session.exec(select(models.SubjectProgress).where(
            models.SubjectProgress.account_id == uuid.UUID(account['id']),
            models.SubjectProgress.subject_id == uuid.UUID(subject_id),
        )).all()
    assert len(rows) == 1


def test_concurrent_first_write_updates_the_existing_row(monkeypatch, student, course):
    _, headers = student
    section_id = course['reading']['id']
    assert _upsert(headers, section_id, is_completed=True, score=60).status_code == 200

    # the next lookup misses the row, as if another writer inserted it just after
    original = repositories.ProgressRepository.get_section_progress
    calls = []

    def missed_once(self, *args, **kwargs):
        calls.append(args)
        return None if len(calls) == 1 else original(self, *args, **kwargs)

    monkeypatch.setattr(repositories.ProgressRepository, 'get_section_progress', missed_once)
    r = _upsert(headers, section_id, is_completed=True, score=90)
    monkeypatch.undo()

    assert r.status_code == 200
    assert r.json()['score'] == 90
    rows = client.get('/progress/sections', headers=headers).json()
    assert [row['score'] for row in rows if row['section_id'] == section_id] == [90]
    assert _rollup(headers, course['subject']['id']) == (4, 1)
