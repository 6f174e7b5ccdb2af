import os
import tempfile
import uuid
from pathlib import Path

# Settings are read when `tracker` is imported, so the environment is
# prepared before any test module imports the app.
_DB_DIR = Path(tempfile.mkdtemp(prefix="tracker-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ["BOOTSTRAP_ADMIN_EMAILS"] = "admin@example.com"
os.environ["ALLOW_ADMIN_SIGNUP"] = "false"
os.environ["IDENTITY_RETRY_DELAY_SECONDS"] = "0"

import pytest
from fastapi.testclient import TestClient

from tracker.main import app

ADMIN_EMAIL = "admin@example.com"
PASSWORD = "secret123"

client = TestClient(app)


def unique_email(prefix: str = "student") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


def login_headers(email: str, password: str = PASSWORD) -> dict:
    r = client.post('/auth/login', json={'email': email, 'password': password})
    assert r.status_code == 200, r.text
    return {'Authorization': f"Bearer {r.json()['access_token']}"}


@pytest.fixture(scope="session")
def admin_headers():
    """Bearer headers of the bootstrap admin, created once per run."""
    r = client.post('/auth/signup', json={'email': ADMIN_EMAIL, 'password': PASSWORD, 'role': 'admin'})
    assert r.status_code in (200, 409), r.text
    return login_headers(ADMIN_EMAIL)


@pytest.fixture
def make_student():
    """Factory returning `(account, headers)` for a fresh student."""
    def _make(full_name: str = "Test Student"):
        email = unique_email()
        r = client.post('/auth/signup', json={'email': email, 'password': PASSWORD, 'full_name': full_name})
        assert r.status_code == 200, r.text
        return r.json(), login_headers(email)
    return _make


@pytest.fixture
def student(make_student):
    return make_student()


@pytest.fixture
def course(admin_headers):
    """A subject with two modules: three sections in the first, one in the second.

    The first module holds a `source`, a `resource` and a `test` section
    with two questions (answers A and C).
    """
    name = f"History {uuid.uuid4().hex[:6]}"
    subject = client.post('/subjects', json={'name': name}, headers=admin_headers).json()
    m1 = client.post(f"/subjects/{subject['id']}/modules", json={'name': 'Ancient India'}, headers=admin_headers).json()
    m2 = client.post(f"/subjects/{subject['id']}/modules", json={'name': 'Medieval India'}, headers=admin_headers).json()
    reading = client.post(f"/modules/{m1['id']}/sections", json={'name': 'NCERT chapter 1'}, headers=admin_headers).json()
    resource = client.post(f"/modules/{m1['id']}/sections", json={'name': 'Map practice', 'type': 'resource'},
                           headers=admin_headers).json()
    test = client.post(f"/modules/{m1['id']}/sections", json={'name': 'Module test', 'type': 'test'},
                       headers=admin_headers).json()
    q1 = client.post(f"/sections/{test['id']}/questions", json={
        'question_text': 'Who founded the Maurya empire?',
        'option_a': 'Chandragupta Maurya', 'option_b': 'Ashoka', 'option_c': 'Bindusara', 'option_d': 'Harsha',
        'correct_answer': 'A', 'explanation': 'Chandragupta founded it around 321 BCE.',
    }, headers=admin_headers).json()
    q2 = client.post(f"/sections/{test['id']}/questions", json={
        'question_text': 'Which site is associated with the Harappan civilisation?',
        'option_a': 'Hampi', 'option_b': 'Nalanda', 'option_c': 'Lothal', 'option_d': 'Sanchi',
        'correct_answer': 'C',
    }, headers=admin_headers).json()
    later = client.post(f"/modules/{m2['id']}/sections", json={'name': 'Delhi Sultanate'}, headers=admin_headers).json()
    return {
        'subject': subject,
        'modules': [m1, m2],
        'sections': [reading, resource, test, later],
        'reading': reading,
        'resource': resource,
        'test': test,
        'questions': [q1, q2],
    }
