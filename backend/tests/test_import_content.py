import importlib.util
import json
import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from tracker import repositories
from tracker.database import engine
from tracker.main import app
from tracker.utils.content_loader import parse_content_file, validate_subject

client = TestClient(app)

SCRIPTS = Path(__file__).resolve().parents[1] / 'scripts'


def _tree(name):
    return {
        'name': name,
        'description': 'Indian economy basics',
        'modules': [{
            'name': 'National income',
            'sections': [
                {'name': 'Reading: GDP and GNP', 'type': 'source', 'content': 'Chapter 2'},
                {'name': 'Quiz', 'type': 'test', 'questions': [{
                    'question_text': 'GDP measures output produced within...',
                    'option_a': 'a country', 'option_b': 'its citizens abroad', 'option_c': 'a state',
                    'option_d': 'the RBI', 'correct_answer': 'A',
                }]},
            ],
        }],
    }


def _upload(headers, payload, dry_run=False, filename='content.json'):
    files = {'file': (filename, json.dumps(payload).encode('utf-8'), 'application/json')}
    return client.post('/admin/import', files=files, data={'dry_run': str(dry_run).lower()}, headers=headers)


def _load_script(name):
    spec = importlib.util.spec_from_file_location(name, SCRIPTS / f'{name}.py')
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_parse_content_file_accepts_list_or_wrapped_object():
    assert parse_content_file(b'[{"name": "A"}]', 'x.json') == [{'name': 'A'}]
    assert parse_content_file(b'{"subjects": [{"name": "B"}]}', 'x.JSON') == [{'name': 'B'}]
    with pytest.raises(ValueError):
        parse_content_file(b'name,description', 'x.csv')
    with pytest.raises(ValueError):
        parse_content_file(b'{"subjects": "nope"}', 'x.json')


@pytest.mark.parametrize('mutate,message', [
    (lambda t: t.update(name=' '), 'subject missing name'),
    (lambda t: t['modules'][0].update(name=''), 'module missing name'),
    (lambda t: t['modules'][0]['sections'][0].update(type='video'), 'invalid section type'),
    (lambda t: t['modules'][0]['sections'][1]['questions'][0].update(correct_answer='E'), 'correct_answer'),
    (lambda t: t['modules'][0]['sections'][1]['questions'][0].pop('option_d'), 'option_d'),
])
def test_validate_subject_reports_first_problem(mutate, message):
    tree = _tree('Economy')
    mutate(tree)
    with pytest.raises(ValueError) as exc:
        validate_subject(tree)
    assert message in str(exc.value)


def test_import_creates_full_tree(admin_headers):
    name = f'Economy {uuid.uuid4().hex[:6]}'
    r = _upload(admin_headers, [_tree(name)])
    assert r.status_code == 200
    assert r.json() == {'created': 1, 'skipped': 0, 'errors': []}

    subject = next(s for s in client.get('/subjects', headers=admin_headers).json() if s['name'] == name)
    outline = client.get(f"/subjects/{subject['id']}/outline", headers=admin_headers).json()
    sections = outline['modules'][0]['sections']
    assert [s['type'] for s in sections] == ['source', 'test']
    questions = client.get(f"/sections/{sections[1]['id']}/questions", headers=admin_headers).json()
    assert questions[0]['correct_answer'] == 'A'


def test_import_skips_existing_names_and_collects_errors(admin_headers):
    name = f'Ethics {uuid.uuid4().hex[:6]}'
    assert _upload(admin_headers, [_tree(name)]).json()['created'] == 1
    bad = _tree('Broken')
    bad['modules'][0]['sections'][0]['type'] = 'video'
    r = _upload(admin_headers, {'subjects': [_tree(name), bad]})
    body = r.json()
    assert body['created'] == 0
    assert body['skipped'] == 1
    assert body['errors'] == [{'index': 1, 'error': 'invalid section type: video'}]


def test_import_rejects_mistyped_values_per_item(admin_headers, student):
    _, headers = student
    wrong = {'name': f'Art {uuid.uuid4().hex[:6]}', 'order_index': 'first'}
    vague = {'name': f'Art {uuid.uuid4().hex[:6]}', 'is_active': 'sometimes'}
    good = _tree(f'Culture {uuid.uuid4().hex[:6]}')
    r = _upload(admin_headers, [wrong, vague, good])
    assert r.status_code == 200
    body = r.json()
    assert body['created'] == 1
    assert [e['index'] for e in body['errors']] == [0, 1]
    assert 'order_index' in body['errors'][0]['error']
    assert 'is_active' in body['errors'][1]['error']

    # nothing unreadable was stored, so listings keep working
    assert client.get('/subjects', headers=headers).status_code == 200
    names = {s['name'] for s in client.get('/subjects', headers=admin_headers).json()}
    assert wrong['name'] not in names
    assert good['name'] in names


def test_import_coerces_values_like_the_api(admin_headers, student):
    _, headers = student
    name = f'Ethics {uuid.uuid4().hex[:6]}'
    r = _upload(admin_headers, [{'name': name, 'is_active': 'no', 'order_index': '7'}])
    assert r.json() == {'created': 1, 'skipped': 0, 'errors': []}
    subject = next(s for s in client.get('/subjects', headers=admin_headers).json() if s['name'] == name)
    assert subject['is_active'] is False
    assert subject['order_index'] == 7
    assert name not in {s['name'] for s in client.get('/subjects', headers=headers).json()}


def test_dry_run_writes_nothing(admin_headers):
    name = f'Geography {uuid.uuid4().hex[:6]}'
    r = _upload(admin_headers, [_tree(name)], dry_run=True)
    assert r.json()['created'] == 1
    assert name not in {s['name'] for s in client.get('/subjects', headers=admin_headers).json()}


def test_import_requires_admin(student):
    _, headers = student
    assert _upload(headers, [_tree('Nope')]).status_code == 403
    assert _upload(headers, [_tree('Nope')], dry_run=True).status_code == 403


def test_import_rejects_malformed_files(admin_headers):
    files = {'file': ('content.json', b'{not json', 'application/json')}
    assert client.post('/admin/import', files=files, headers=admin_headers).status_code == 422
    assert _upload(admin_headers, [], filename='content.txt').status_code == 422


def test_import_script_runs_as_admin(tmp_path, admin_headers, capsys):
    script = _load_script('import_content')
    name = f'Science {uuid.uuid4().hex[:6]}'
    path = tmp_path / 'content.json'
    path.write_text(json.dumps([_tree(name)]), encoding='utf-8')
    assert script.main(path, 'admin@example.com') == 0
    assert 'Created 1 subjects' in capsys.readouterr().out
    with Session(engine) as session:
        assert repositories.SubjectRepository(session).exists_by_name(name)


def test_grant_admin_script(make_student):
    account, headers = make_student()
    script = _load_script('grant_admin')
    assert client.get('/admin/stats', headers=headers).status_code == 403
    assert script.main(account['email']) == 0
    assert client.get('/admin/stats', headers=headers).status_code == 200
    assert script.main(account['email'], revoke=True) == 0
    assert client.get('/admin/stats', headers=headers).status_code == 403
    assert script.main('missing@example.com') == 1
