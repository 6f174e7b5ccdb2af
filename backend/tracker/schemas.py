"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and reject malformed values
(unknown roles, section types or answer letters) before they reach the
services. Update payloads are partial: only fields that were sent are
applied.
"""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["admin", "student"]
SectionType = Literal["source", "test", "resource", "pyq"]
AnswerLetter = Literal["A", "B", "C", "D"]


class _Out(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class _Patch(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SignUpIn(BaseModel):
    """Registration payload; `full_name` and `role` are identity claims."""
    email: str
    password: str
    full_name: Optional[str] = None
    role: Optional[Role] = None


class LoginIn(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class AccountOut(_Out):
    id: uuid.UUID
    email: str
    full_name: Optional[str] = None
    role: Role
    created_at: datetime
    updated_at: datetime


class AccountUpdate(_Patch):
    """Fields an account owner may change. Role and email are not among them."""
    full_name: Optional[str] = None


class RoleAssignment(BaseModel):
    role: Role


class SessionOut(BaseModel):
    identity_id: uuid.UUID
    email: str
    expires_at: datetime
    account: Optional[AccountOut] = None


class SubjectIn(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    order_index: Optional[int] = None
    is_active: bool = True


class SubjectUpdate(_Patch):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    order_index: Optional[int] = None
    is_active: Optional[bool] = None


class SubjectOut(_Out):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    order_index: int
    is_active: bool
    created_by: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime


class ModuleIn(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    order_index: Optional[int] = None
    is_active: bool = True


class ModuleUpdate(_Patch):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    order_index: Optional[int] = None
    is_active: Optional[bool] = None


class ModuleOut(_Out):
    id: uuid.UUID
    subject_id: uuid.UUID
    name: str
    description: Optional[str] = None
    order_index: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


class SectionIn(BaseModel):
    name: str = Field(min_length=1)
    type: SectionType = "source"
    content: Optional[str] = None
    link_url: Optional[str] = None
    order_index: Optional[int] = None
    is_required: bool = True


class SectionUpdate(_Patch):
    name: Optional[str] = Field(default=None, min_length=1)
    type: Optional[SectionType] = None
    content: Optional[str] = None
    link_url: Optional[str] = None
    order_index: Optional[int] = None
    is_required: Optional[bool] = None
    module_id: Optional[uuid.UUID] = None


class SectionOut(_Out):
    id: uuid.UUID
    module_id: uuid.UUID
    name: str
    type: SectionType
    content: Optional[str] = None
    link_url: Optional[str] = None
    order_index: int
    is_required: bool
    created_at: datetime
    updated_at: datetime


class SectionOrderIn(BaseModel):
    """New display order of a module's sections, first to last."""
    section_ids: List[uuid.UUID]


class QuestionIn(BaseModel):
    question_text: str = Field(min_length=1)
    option_a: str = Field(min_length=1)
    option_b: str = Field(min_length=1)
    option_c: str = Field(min_length=1)
    option_d: str = Field(min_length=1)
    correct_answer: AnswerLetter
    explanation: Optional[str] = None
    order_index: Optional[int] = None


class QuestionUpdate(_Patch):
    question_text: Optional[str] = Field(default=None, min_length=1)
    option_a: Optional[str] = Field(default=None, min_length=1)
    option_b: Optional[str] = Field(default=None, min_length=1)
    option_c: Optional[str] = Field(default=None, min_length=1)
    option_d: Optional[str] = Field(default=None, min_length=1)
    correct_answer: Optional[AnswerLetter] = None
    explanation: Optional[str] = None
    order_index: Optional[int] = None


class QuestionOut(_Out):
    """A question as students see it before answering."""
    id: uuid.UUID
    section_id: uuid.UUID
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    order_index: int


class QuestionAdminOut(QuestionOut):
    correct_answer: AnswerLetter
    explanation: Optional[str] = None
    created_at: datetime


class SectionProgressIn(BaseModel):
    """Upsert payload for a section progress row.

    `account_id` defaults to the caller; naming another account is
    rejected by the policy layer.
    """
    account_id: Optional[uuid.UUID] = None
    is_completed: bool = False
    score: int = Field(default=0, ge=0, le=100)
    attempts: Optional[int] = Field(default=None, ge=0)
    completed_at: Optional[datetime] = None


class SectionProgressOut(_Out):
    id: uuid.UUID
    account_id: uuid.UUID
    section_id: uuid.UUID
    is_completed: bool
    score: int
    attempts: int
    completed_at: Optional[datetime] = None
    created_at: datetime


class SubjectProgressOut(_Out):
    id: uuid.UUID
    account_id: uuid.UUID
    subject_id: uuid.UUID
    total_sections: int
    completed_sections: int
    last_accessed: datetime
    created_at: datetime


class TestAnswerIn(BaseModel):
    """Single submitted answer used when grading a test section."""
    question_id: uuid.UUID
    answer: Optional[AnswerLetter] = None


class TestSubmission(BaseModel):
    answers: List[TestAnswerIn]


class TestResultItem(BaseModel):
    question_id: uuid.UUID
    given: Optional[AnswerLetter] = None
    correct: bool
    correct_answer: AnswerLetter
    explanation: Optional[str] = None


class TestResultOut(BaseModel):
    section_id: uuid.UUID
    score: int
    correct: int
    total: int
    passed: bool
    progress: SectionProgressOut
    items: List[TestResultItem]
