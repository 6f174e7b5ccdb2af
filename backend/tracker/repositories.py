"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (identities,
accounts, the content tree, progress). Repositories return SQLModel
objects and flush their writes; committing is left to the service that
owns the unit of work, so a progress write and its aggregate land in the
same transaction.

Repositories know nothing about callers. Authorization happens in the
services before a repository is called, and list filters built by
`tracker.policy.visible_clause` are passed in as `where` clauses.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import Session, select

from . import models

_NATIVE_UPSERT = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def upsert(session: Session, model, keys: Dict, values: Dict):
    """Insert or update the row identified by `keys` in one statement.

    Uses `INSERT ... ON CONFLICT DO UPDATE` on the unique key, so two
    writers racing on the same key both succeed and the last one wins.
    Returns the stored row, reloaded into the session.
    """
    session.flush()
    where = [getattr(model, k) == v for k, v in keys.items()]
    insert = _NATIVE_UPSERT.get(session.get_bind().dialect.name)
    if insert is None:
        # dialects without ON CONFLICT: plain select-then-write
        row = session.exec(select(model).where(*where)).first() or model(**keys)
        for k, v in values.items():
            setattr(row, k, v)
        session.add(row)
        session.flush()
        return row
    stmt = insert(model.__table__).values(id=uuid.uuid4(), created_at=models.utcnow(), **keys, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(keys),
        set_={k: stmt.excluded[k] for k in values},
    )
    session.connection().execute(stmt)
    return session.exec(select(model).where(*where).execution_options(populate_existing=True)).one()


class IdentityRepository:
    """Credential and session records of the built-in identity provider."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, identity: models.Identity) -> models.Identity:
        self.session.add(identity)
        self.session.flush()
        return identity

    def get(self, identity_id: uuid.UUID) -> Optional[models.Identity]:
        return self.session.get(models.Identity, identity_id)

    def get_by_email(self, email: str) -> Optional[models.Identity]:
        """Return an `Identity` by (normalized) email or `None`."""
        stmt = select(models.Identity).where(models.Identity.email == email)
        return self.session.exec(stmt).first()

    def open_session(self, identity_id: uuid.UUID, expires_at: datetime) -> models.AuthSession:
        auth_session = models.AuthSession(identity_id=identity_id, expires_at=expires_at)
        self.session.add(auth_session)
        self.session.flush()
        return auth_session

    def get_session(self, session_id: uuid.UUID) -> Optional[models.AuthSession]:
        return self.session.get(models.AuthSession, session_id)

    def revoke_session(self, auth_session: models.AuthSession) -> None:
        auth_session.revoked_at = models.utcnow()
        self.session.add(auth_session)
        self.session.flush()


class AccountRepository:
    """CRUD operations for `Account` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, account: models.Account) -> models.Account:
        self.session.add(account)
        self.session.flush()
        return account

    def get(self, account_id: uuid.UUID) -> Optional[models.Account]:
        return self.session.get(models.Account, account_id)

    def get_by_email(self, email: str) -> Optional[models.Account]:
        stmt = select(models.Account).where(models.Account.email == email)
        return self.session.exec(stmt).first()

    def list(self, where) -> List[models.Account]:
        stmt = select(models.Account).where(where).order_by(models.Account.created_at)
        return list(self.session.exec(stmt).all())

    def save(self, account: models.Account) -> models.Account:
        account.updated_at = models.utcnow()
        self.session.add(account)
        self.session.flush()
        return account

    def count_by_role(self, role: str) -> int:
        stmt = select(func.count()).select_from(models.Account).where(models.Account.role == role)
        return self.session.exec(stmt).one()


class _TreeRepository:
    """Shared operations for the ordered content tables."""
    model = None
    parent_field: Optional[str] = None

    def __init__(self, session: Session):
        self.session = session

    def get(self, row_id: uuid.UUID):
        return self.session.get(self.model, row_id)

    def list(self, where, parent_id: Optional[uuid.UUID] = None):
        """Rows matching `where` (and `parent_id`), in display order."""
        stmt = select(self.model).where(where)
        if parent_id is not None:
            stmt = stmt.where(getattr(self.model, self.parent_field) == parent_id)
        stmt = stmt.order_by(self.model.order_index, self.model.created_at)
        return list(self.session.exec(stmt).all())

    def next_order_index(self, parent_id: Optional[uuid.UUID] = None) -> int:
        """One past the highest `order_index` among the parent's rows (0 when empty)."""
        stmt = select(func.max(self.model.order_index))
        if parent_id is not None:
            stmt = stmt.where(getattr(self.model, self.parent_field) == parent_id)
        current = self.session.exec(stmt).one()
        return 0 if current is None else current + 1

    def add(self, row):
        self.session.add(row)
        self.session.flush()
        return row

    def save(self, row):
        if hasattr(row, "updated_at"):
            row.updated_at = models.utcnow()
        self.session.add(row)
        self.session.flush()
        return row

    def delete(self, row) -> None:
        self.session.delete(row)
        self.session.flush()

    def count(self, where) -> int:
        stmt = select(func.count()).select_from(self.model).where(where)
        return self.session.exec(stmt).one()


class SubjectRepository(_TreeRepository):
    model = models.Subject

    def exists_by_name(self, name: str) -> bool:
        stmt = select(models.Subject.id).where(models.Subject.name == name)
        return self.session.exec(stmt).first() is not None


class ModuleRepository(_TreeRepository):
    model = models.Module
    parent_field = "subject_id"


class SectionRepository(_TreeRepository):
    model = models.Section
    parent_field = "module_id"


class QuestionRepository(_TreeRepository):
    model = models.Question
    parent_field = "section_id"


class ProgressRepository:
    """Section progress writes and progress reads for both tables."""
    def __init__(self, session: Session):
        self.session = session

    def get_section_progress(self, account_id: uuid.UUID, section_id: uuid.UUID) -> Optional[models.SectionProgress]:
        stmt = select(models.SectionProgress).where(
            models.SectionProgress.account_id == account_id,
            models.SectionProgress.section_id == section_id,
        )
        return self.session.exec(stmt).first()

    def list_section_progress(self, where, account_id: Optional[uuid.UUID] = None) -> List[models.SectionProgress]:
        stmt = select(models.SectionProgress).where(where)
        if account_id is not None:
            stmt = stmt.where(models.SectionProgress.account_id == account_id)
        return list(self.session.exec(stmt.order_by(models.SectionProgress.created_at)).all())

    def upsert_section_progress(self, row: models.SectionProgress) -> models.SectionProgress:
        """Write `row` keyed by (account, section), overwriting a concurrent insert."""
        return upsert(
            self.session, models.SectionProgress,
            keys={"account_id": row.account_id, "section_id": row.section_id},
            values={"is_completed": row.is_completed, "score": row.score,
                    "attempts": row.attempts, "completed_at": row.completed_at},
        )

    def save_section_progress(self, row: models.SectionProgress) -> models.SectionProgress:
        self.session.add(row)
        self.session.flush()
        return row

    def delete_section_progress(self, row: models.SectionProgress) -> None:
        self.session.delete(row)
        self.session.flush()

    def list_subject_progress(self, where, account_id: Optional[uuid.UUID] = None) -> List[models.SubjectProgress]:
        stmt = select(models.SubjectProgress).where(where)
        if account_id is not None:
            stmt = stmt.where(models.SubjectProgress.account_id == account_id)
        return list(self.session.exec(stmt.order_by(models.SubjectProgress.created_at)).all())
