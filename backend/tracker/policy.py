"""Row-level access policies.

Every store operation is checked here before it touches the database.
Policies are declarative: each names a resource, the operations it
covers, a predicate over ``(caller, row)`` and the equivalent SQL clause
used to filter list reads. An operation is allowed when at least one
matching policy accepts the row; anything else is denied.

The caller's role is resolved from the `Account` table once per request
(`resolve_caller`) and is never cached beyond it, so a role change takes
effect on the next request.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from sqlalchemy import false, or_, true
from sqlmodel import Session

from . import models
from .errors import AuthorizationDenied

logger = logging.getLogger("tracker.policy")


class Operation(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


ALL_OPERATIONS = frozenset(Operation)


class Resource(str, Enum):
    ACCOUNT = "account"
    SUBJECT = "subject"
    MODULE = "module"
    SECTION = "section"
    QUESTION = "question"
    SECTION_PROGRESS = "section_progress"
    SUBJECT_PROGRESS = "subject_progress"


class Decision(Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class Caller:
    """The authenticated identity behind a request.

    `role` is ``None`` while the identity has no `Account` row yet
    (authenticated but not provisioned); such callers get no admin rights.
    """
    account_id: uuid.UUID
    role: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class Policy:
    name: str
    resource: Resource
    operations: frozenset
    check: Callable[[Caller, Any], bool]
    clause: Callable[[Caller], Any]


def _admin_check(caller: Caller, row: Any) -> bool:
    return caller.is_admin


def _admin_clause(caller: Caller):
    return true() if caller.is_admin else false()


def _anyone_check(caller: Caller, row: Any) -> bool:
    return True


def _anyone_clause(caller: Caller):
    return true()


def _active_policy(name: str, resource: Resource, model) -> Policy:
    return Policy(
        name=name,
        resource=resource,
        operations=frozenset({Operation.SELECT}),
        check=lambda caller, row: row is not None and bool(row.is_active),
        clause=lambda caller: model.is_active == true(),
    )


def _owner_policy(name: str, resource: Resource, model, operations) -> Policy:
    return Policy(
        name=name,
        resource=resource,
        operations=frozenset(operations),
        check=lambda caller, row: row is not None and row.account_id == caller.account_id,
        clause=lambda caller: model.account_id == caller.account_id,
    )


def _self_account_policy(name: str, operations) -> Policy:
    return Policy(
        name=name,
        resource=Resource.ACCOUNT,
        operations=frozenset(operations),
        check=lambda caller, row: row is not None and row.id == caller.account_id,
        clause=lambda caller: models.Account.id == caller.account_id,
    )


def _admin_policy(name: str, resource: Resource, operations=ALL_OPERATIONS) -> Policy:
    return Policy(name, resource, frozenset(operations), _admin_check, _admin_clause)


def _read_all_policy(name: str, resource: Resource) -> Policy:
    return Policy(name, resource, frozenset({Operation.SELECT}), _anyone_check, _anyone_clause)


POLICIES: List[Policy] = [
    _self_account_policy("users can insert own account during signup", {Operation.INSERT}),
    _self_account_policy("users can read own account", {Operation.SELECT}),
    _self_account_policy("users can update own account", {Operation.UPDATE}),
    _admin_policy("admins can read all accounts", Resource.ACCOUNT, {Operation.SELECT}),

    _active_policy("everyone can read active subjects", Resource.SUBJECT, models.Subject),
    _admin_policy("admins can manage all subjects", Resource.SUBJECT),

    _active_policy("everyone can read active modules", Resource.MODULE, models.Module),
    _admin_policy("admins can manage all modules", Resource.MODULE),

    # Sections and questions are not gated by the parent's active flag.
    _read_all_policy("everyone can read sections", Resource.SECTION),
    _admin_policy("admins can manage all sections", Resource.SECTION),

    _read_all_policy("everyone can read questions", Resource.QUESTION),
    _admin_policy("admins can manage all questions", Resource.QUESTION),

    _owner_policy("users can manage own section progress", Resource.SECTION_PROGRESS,
                  models.SectionProgress, ALL_OPERATIONS),
    _admin_policy("admins can read all section progress", Resource.SECTION_PROGRESS, {Operation.SELECT}),

    _owner_policy("users can manage own subject progress", Resource.SUBJECT_PROGRESS,
                  models.SubjectProgress, ALL_OPERATIONS),
    _admin_policy("admins can read all subject progress", Resource.SUBJECT_PROGRESS, {Operation.SELECT}),
]


def policies_for(resource: Resource, operation: Operation) -> List[Policy]:
    return [p for p in POLICIES if p.resource == resource and operation in p.operations]


def authorize(caller: Caller, operation: Operation, resource: Resource, row: Any = None) -> Decision:
    """Decide whether `caller` may apply `operation` to `row`.

    For inserts `row` is the proposed row; for selects, updates and
    deletes it is the stored row.
    """
    for policy in policies_for(resource, operation):
        if policy.check(caller, row):
            return Decision.ALLOW
    return Decision.DENY


def _deny(caller: Caller, operation: Operation, resource: Resource):
    logger.info(
        "policy_denied %s",
        json.dumps(
            {
                "account_id": str(caller.account_id),
                "role": caller.role,
                "operation": operation.value,
                "resource": resource.value,
            },
            ensure_ascii=True,
        ),
    )
    raise AuthorizationDenied()


def require(caller: Caller, operation: Operation, resource: Resource, row: Any = None) -> None:
    """Raise `AuthorizationDenied` unless `authorize` allows the operation."""
    if authorize(caller, operation, resource, row) is Decision.DENY:
        _deny(caller, operation, resource)


def require_update(caller: Caller, resource: Resource, current: Any, proposed: Any) -> None:
    """Check an update against the stored row and the row as it would be written."""
    if (authorize(caller, Operation.UPDATE, resource, current) is Decision.DENY
            or authorize(caller, Operation.UPDATE, resource, proposed) is Decision.DENY):
        _deny(caller, Operation.UPDATE, resource)


def require_role_assignment(caller: Caller) -> None:
    """Only an existing admin may change another account's role."""
    if not caller.is_admin:
        _deny(caller, Operation.UPDATE, Resource.ACCOUNT)


def can_read(caller: Caller, resource: Resource, row: Any) -> bool:
    return authorize(caller, Operation.SELECT, resource, row) is Decision.ALLOW


def visible_clause(caller: Caller, resource: Resource):
    """SQL filter equivalent to the SELECT policies of `resource`."""
    clauses = [p.clause(caller) for p in policies_for(resource, Operation.SELECT)]
    if not clauses:
        return false()
    return or_(*clauses)


def resolve_caller(session: Session, account_id: uuid.UUID, email: Optional[str] = None) -> Caller:
    """Build the request's `Caller` by reading the current role from `Account`."""
    account = session.get(models.Account, account_id)
    role = account.role if account else None
    return Caller(account_id=account_id, role=role, email=email)
