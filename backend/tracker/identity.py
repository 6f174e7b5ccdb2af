"""Built-in identity provider and account provisioning.

`IdentityService` plays the hosted identity provider: it owns email and
password credentials, issues signed JWT access tokens bound to a
revocable `AuthSession`, and publishes lifecycle events (`account_created`,
`signed_in`, `signed_out`, `token_refreshed`) to subscribed listeners.

`AccountProvisioner` is the one listener the application always installs:
it materializes the `Account` row the first time an identity is created.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .errors import AuthenticationFailed, ConstraintViolation

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
EVENTS = ("account_created", "signed_in", "signed_out", "token_refreshed")
MIN_PASSWORD_LENGTH = 6

logger = logging.getLogger("tracker.identity")


@dataclass(frozen=True)
class IdentitySession:
    """A validated sign-in session, as seen by the rest of the application."""
    session_id: uuid.UUID
    identity_id: uuid.UUID
    email: str
    expires_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    access_token: str
    session: IdentitySession


def normalize_email(email: str) -> str:
    """Trim and lower-case an email address, rejecting obvious garbage."""
    value = (email or "").strip().lower()
    local, _, domain = value.partition("@")
    if not local or "." not in domain or " " in value:
        raise ConstraintViolation("invalid email address", status_code=422)
    return value


def encode_token(identity_session: IdentitySession) -> str:
    payload = {
        "sub": str(identity_session.identity_id),
        "sid": str(identity_session.session_id),
        "email": identity_session.email,
        "exp": int(identity_session.expires_at.timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT, raising `AuthenticationFailed` on any problem."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationFailed("token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationFailed("invalid token")


class AccountProvisioner:
    """Create the `Account` for a newly registered identity.

    Idempotent: a second call for the same identity returns the existing
    row. A role claim of ``admin`` is honoured only when admin signup is
    enabled or the email is a configured bootstrap admin; otherwise the
    account is created as a student and the attempt is logged.
    """
    def __init__(self, session: Session):
        self.session = session
        self.accounts = repositories.AccountRepository(session)

    def resolve_role(self, identity: models.Identity) -> str:
        requested = (identity.role or "student").strip().lower()
        if requested not in models.ROLES:
            raise ConstraintViolation("invalid role", status_code=422)
        if requested == "admin" and not (settings.ALLOW_ADMIN_SIGNUP or identity.email in settings.BOOTSTRAP_ADMIN_EMAILS):
            logger.warning("admin_role_claim_ignored email=%s", identity.email)
            return "student"
        return requested

    def provision(self, identity: models.Identity) -> models.Account:
        existing = self.accounts.get(identity.id)
        if existing:
            return existing
        account = models.Account(
            id=identity.id,
            email=identity.email,
            full_name=identity.full_name or identity.email,
            role=self.resolve_role(identity),
        )
        self.accounts.create(account)
        logger.info("account_provisioned id=%s role=%s", account.id, account.role)
        return account


class IdentityService:
    """Sign-up, sign-in, sign-out, refresh and session lookup."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.IdentityRepository(session)
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)
        self.subscribe("account_created", lambda identity: AccountProvisioner(session).provision(identity))

    def subscribe(self, event: str, listener: Callable) -> None:
        if event not in EVENTS:
            raise ValueError(f"unknown identity event: {event}")
        self._listeners[event].append(listener)

    def _emit(self, event: str, payload) -> None:
        for listener in self._listeners[event]:
            listener(payload)

    def sign_up(self, email: str, password: str, claims: Optional[dict] = None) -> models.Identity:
        """Register an identity and provision its account in one transaction."""
        claims = claims or {}
        email = normalize_email(email)
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ConstraintViolation(f"password must be at least {MIN_PASSWORD_LENGTH} characters", status_code=422)
        if self.repo.get_by_email(email):
            raise ConstraintViolation("email already registered")
        identity = models.Identity(
            email=email,
            password_hash=PWD_CTX.hash(password),
            full_name=(claims.get("full_name") or "").strip() or None,
            role=claims.get("role"),
        )
        try:
            self.repo.create(identity)
            self._emit("account_created", identity)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConstraintViolation("email already registered")
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(identity)
        logger.info("identity_created id=%s", identity.id)
        return identity

    def _issue(self, identity: models.Identity) -> IssuedToken:
        expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        auth_session = self.repo.open_session(identity.id, expires_at)
        value = IdentitySession(
            session_id=auth_session.id,
            identity_id=identity.id,
            email=identity.email,
            expires_at=expires_at,
        )
        return IssuedToken(access_token=encode_token(value), session=value)

    def sign_in_with_password(self, email: str, password: str) -> IssuedToken:
        """Verify credentials and return a signed token for a new session."""
        try:
            email = normalize_email(email)
        except ConstraintViolation:
            raise AuthenticationFailed("invalid credentials")
        identity = self.repo.get_by_email(email)
        if not identity or not PWD_CTX.verify(password, identity.password_hash):
            raise AuthenticationFailed("invalid credentials")
        issued = self._issue(identity)
        self.session.commit()
        self._emit("signed_in", issued.session)
        return issued

    def get_current_session(self, token: str) -> IdentitySession:
        """Validate `token` against its signature, expiry and session row."""
        payload = decode_token(token)
        try:
            session_id = uuid.UUID(payload["sid"])
            identity_id = uuid.UUID(payload["sub"])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationFailed("invalid token payload")
        auth_session = self.repo.get_session(session_id)
        if auth_session is None or auth_session.identity_id != identity_id or auth_session.revoked_at is not None:
            raise AuthenticationFailed("session expired")
        return IdentitySession(
            session_id=session_id,
            identity_id=identity_id,
            email=payload.get("email", ""),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    def sign_out(self, identity_session: IdentitySession) -> None:
        auth_session = self.repo.get_session(identity_session.session_id)
        if auth_session and auth_session.revoked_at is None:
            self.repo.revoke_session(auth_session)
            self.session.commit()
        self._emit("signed_out", identity_session)

    def refresh(self, identity_session: IdentitySession) -> IssuedToken:
        """Revoke the current session and issue a token for a fresh one."""
        identity = self.repo.get(identity_session.identity_id)
        auth_session = self.repo.get_session(identity_session.session_id)
        if identity is None or auth_session is None:
            raise AuthenticationFailed("session expired")
        self.repo.revoke_session(auth_session)
        issued = self._issue(identity)
        self.session.commit()
        self._emit("token_refreshed", issued.session)
        return issued
