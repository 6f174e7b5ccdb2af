"""Authentication helpers and FastAPI security dependencies.

`get_identity_session` validates the bearer token against the identity
provider (signature, expiry, session not revoked). `get_caller` then
re-reads the caller's role from the `Account` table for this request
only and returns the immutable `Caller` passed to every service.
"""

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from .database import get_session
from .errors import AuthenticationFailed
from .identity import IdentityService, IdentitySession
from .policy import Caller, resolve_caller

bearer_scheme = HTTPBearer(auto_error=False)


def get_identity_session(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> IdentitySession:
    """FastAPI dependency that returns the validated sign-in session.

    Raises `AuthenticationFailed` (401) when the header is missing or the
    token is invalid, expired or revoked.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationFailed()
    return IdentityService(db).get_current_session(credentials.credentials)


def get_caller(
    identity_session: IdentitySession = Depends(get_identity_session),
    db: Session = Depends(get_session),
) -> Caller:
    """FastAPI dependency that returns the request's `Caller` with its current role."""
    return resolve_caller(db, identity_session.identity_id, email=identity_session.email)
