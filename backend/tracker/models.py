"""SQLModel data models.

This module defines the application's database tables using SQLModel.
The content tree (subjects, modules, sections, questions) cascades on
delete both in the ORM and through ``ON DELETE CASCADE`` foreign keys, so
rows removed outside the ORM leave no dangling children either.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

ROLES = ("admin", "student")
SECTION_TYPES = ("source", "test", "resource", "pyq")
ANSWER_LETTERS = ("A", "B", "C", "D")

_TREE_CASCADE = {"cascade": "all, delete-orphan", "passive_deletes": True}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Identity(SQLModel, table=True):
    """A credential record owned by the identity provider.

    `full_name` and `role` are the claims supplied at signup; they are
    only read once, when the matching `Account` is provisioned.
    """
    __tablename__ = "identities"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    full_name: Optional[str] = None
    role: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class AuthSession(SQLModel, table=True):
    """A sign-in session; its id is the `sid` claim of issued tokens."""
    __tablename__ = "auth_sessions"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    identity_id: uuid.UUID = Field(foreign_key="identities.id", ondelete="CASCADE", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    revoked_at: Optional[datetime] = None


class Account(SQLModel, table=True):
    """A registered user. The primary key equals the identity id."""
    __tablename__ = "accounts"
    __table_args__ = (CheckConstraint("role IN ('admin', 'student')", name="ck_accounts_role"),)

    id: uuid.UUID = Field(primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    full_name: Optional[str] = None
    role: str = Field(default="student")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Subject(SQLModel, table=True):
    __tablename__ = "subjects"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    description: Optional[str] = None
    order_index: int = 0
    is_active: bool = True
    created_by: Optional[uuid.UUID] = Field(default=None, foreign_key="accounts.id", ondelete="SET NULL")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    modules: List["Module"] = Relationship(back_populates="subject", sa_relationship_kwargs=_TREE_CASCADE)


class Module(SQLModel, table=True):
    __tablename__ = "modules"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    subject_id: uuid.UUID = Field(foreign_key="subjects.id", ondelete="CASCADE", index=True)
    name: str
    description: Optional[str] = None
    order_index: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    subject: Optional[Subject] = Relationship(back_populates="modules")
    sections: List["Section"] = Relationship(back_populates="module", sa_relationship_kwargs=_TREE_CASCADE)


class Section(SQLModel, table=True):
    """A unit of content: reading source, test, resource or past-question set."""
    __tablename__ = "sections"
    __table_args__ = (
        CheckConstraint("type IN ('source', 'test', 'resource', 'pyq')", name="ck_sections_type"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    module_id: uuid.UUID = Field(foreign_key="modules.id", ondelete="CASCADE", index=True)
    name: str
    type: str = Field(default="source")
    content: Optional[str] = None
    link_url: Optional[str] = None
    order_index: int = 0
    is_required: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    module: Optional[Module] = Relationship(back_populates="sections")
    questions: List["Question"] = Relationship(back_populates="section", sa_relationship_kwargs=_TREE_CASCADE)


class Question(SQLModel, table=True):
    """A four-option multiple-choice question of a `test` section."""
    __tablename__ = "questions"
    __table_args__ = (
        CheckConstraint("correct_answer IN ('A', 'B', 'C', 'D')", name="ck_questions_correct_answer"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    section_id: uuid.UUID = Field(foreign_key="sections.id", ondelete="CASCADE", index=True)
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_answer: str
    explanation: Optional[str] = None
    order_index: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    section: Optional[Section] = Relationship(back_populates="questions")


class SectionProgress(SQLModel, table=True):
    """Per account and section completion state. The only student-writable table."""
    __tablename__ = "section_progress"
    __table_args__ = (UniqueConstraint("account_id", "section_id", name="uq_section_progress_account_section"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    account_id: uuid.UUID = Field(foreign_key="accounts.id", ondelete="CASCADE", index=True)
    section_id: uuid.UUID = Field(foreign_key="sections.id", ondelete="CASCADE", index=True)
    is_completed: bool = False
    score: int = 0
    attempts: int = 0
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class SubjectProgress(SQLModel, table=True):
    """Per account and subject rollup, maintained by `tracker.aggregation` only."""
    __tablename__ = "subject_progress"
    __table_args__ = (UniqueConstraint("account_id", "subject_id", name="uq_subject_progress_account_subject"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    account_id: uuid.UUID = Field(foreign_key="accounts.id", ondelete="CASCADE", index=True)
    subject_id: uuid.UUID = Field(foreign_key="subjects.id", ondelete="CASCADE", index=True)
    total_sections: int = 0
    completed_sections: int = 0
    last_accessed: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
