import logging
import uuid
from types import SimpleNamespace

import pytest
from sqlmodel import Session, select

from tracker import models
from tracker.database import engine
from tracker.errors import AuthorizationDenied
from tracker.policy import (
    Caller,
    Decision,
    Operation,
    Resource,
    authorize,
    can_read,
    require,
    require_update,
    resolve_caller,
    visible_clause,
)

ADMIN = Caller(account_id=uuid.uuid4(), role="admin")
STUDENT = Caller(account_id=uuid.uuid4(), role="student")
UNPROVISIONED = Caller(account_id=uuid.uuid4(), role=None)


def _progress(owner):
    return models.SectionProgress(account_id=owner.account_id, section_id=uuid.uuid4())


def test_unmatched_operations_are_denied_by_default():
    assert authorize(STUDENT, Operation.INSERT, Resource.SUBJECT, models.Subject(name="x")) is Decision.DENY
    assert authorize(UNPROVISIONED, Operation.DELETE, Resource.SECTION, models.Section(name="x")) is Decision.DENY
    # no policy grants anyone writes to other people's progress
    assert authorize(ADMIN, Operation.INSERT, Resource.SECTION_PROGRESS, _progress(STUDENT)) is Decision.DENY


def test_active_flag_controls_content_reads_for_non_admins():
    active = models.Subject(name="Polity", is_active=True)
    hidden = models.Subject(name="Draft", is_active=False)
    assert can_read(STUDENT, Resource.SUBJECT, active)
    assert not can_read(STUDENT, Resource.SUBJECT, hidden)
    assert can_read(ADMIN, Resource.SUBJECT, hidden)
    assert not can_read(STUDENT, Resource.MODULE, models.Module(name="m", is_active=False))


def test_sections_and_questions_are_readable_by_everyone():
    assert can_read(STUDENT, Resource.SECTION, models.Section(name="s"))
    assert can_read(UNPROVISIONED, Resource.QUESTION, models.Question(question_text="q"))
    assert authorize(STUDENT, Operation.UPDATE, Resource.SECTION, models.Section(name="s")) is Decision.DENY


def test_progress_rows_belong_to_their_owner():
    own = _progress(STUDENT)
    other = _progress(ADMIN)
    for op in Operation:
        assert authorize(STUDENT, op, Resource.SECTION_PROGRESS, own) is Decision.ALLOW
    assert not can_read(STUDENT, Resource.SECTION_PROGRESS, other)
    # admins read everyone's progress but cannot change it
    assert can_read(ADMIN, Resource.SECTION_PROGRESS, own)
    assert authorize(ADMIN, Operation.UPDATE, Resource.SECTION_PROGRESS, own) is Decision.DENY


def test_accounts_are_visible_to_self_and_admins():
    me = models.Account(id=STUDENT.account_id, email="me@example.com")
    other = models.Account(id=uuid.uuid4(), email="other@example.com")
    assert can_read(STUDENT, Resource.ACCOUNT, me)
    assert not can_read(STUDENT, Resource.ACCOUNT, other)
    assert can_read(ADMIN, Resource.ACCOUNT, other)


def test_update_checks_both_stored_and_proposed_rows():
    current = _progress(STUDENT)
    moved = SimpleNamespace(account_id=ADMIN.account_id, section_id=current.section_id)
    require_update(STUDENT, Resource.SECTION_PROGRESS, current, current)
    with pytest.raises(AuthorizationDenied):
        require_update(STUDENT, Resource.SECTION_PROGRESS, current, moved)


def test_denials_are_logged(caplog):
    with caplog.at_level(logging.INFO, logger="tracker.policy"):
        with pytest.raises(AuthorizationDenied):
            require(STUDENT, Operation.DELETE, Resource.SUBJECT, models.Subject(name="x"))
    assert any("policy_denied" in r.getMessage() and '"operation": "delete"' in r.getMessage()
               for r in caplog.records)


def test_visible_clause_filters_list_reads():
    marker = uuid.uuid4().hex
    with Session(engine) as session:
        session.add(models.Subject(name=f"visible-{marker}", is_active=True))
        session.add(models.Subject(name=f"hidden-{marker}", is_active=False))
        session.commit()
        stmt = select(models.Subject.name).where(models.Subject.name.contains(marker))
        seen_by_student = set(session.exec(stmt.where(visible_clause(STUDENT, Resource.SUBJECT))).all())
        seen_by_admin = set(session.exec(stmt.where(visible_clause(ADMIN, Resource.SUBJECT))).all())
    assert seen_by_student == {f"visible-{marker}"}
    assert seen_by_admin == {f"visible-{marker}", f"hidden-{marker}"}


def test_resolve_caller_reads_current_role():
    account_id = uuid.uuid4()
    with Session(engine) as session:
        assert resolve_caller(session, account_id).role is None
        session.add(models.Account(id=account_id, email=f"{account_id.hex}@example.com", role="admin"))
        session.commit()
        assert resolve_caller(session, account_id).is_admin
