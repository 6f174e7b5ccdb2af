"""Python API client with session bootstrap.

`TrackerClient` wraps an `httpx.Client` (a `fastapi.testclient.TestClient`
works too). Session state is an immutable `SessionState` value: every
lifecycle event produces a new state instead of mutating shared globals,
and callers pass the state they hold to each authorized call.

Bootstrapping (session lookup, then profile load) retries transport
failures and 5xx responses a bounded number of times with a linearly
increasing delay, then degrades: no session means `anonymous`, a session
without a loadable profile means `profile_pending`. Authorization and
validation errors are raised immediately and never retried.
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

import httpx

from .config import settings
from .errors import AuthenticationFailed, TrackerError, TransientIdentityError, error_for_status

logger = logging.getLogger("tracker.client")

ANONYMOUS = "anonymous"
AUTHENTICATED = "authenticated"
PROFILE_PENDING = "profile_pending"


@dataclass(frozen=True)
class SessionState:
    token: Optional[str] = None
    identity_id: Optional[str] = None
    email: Optional[str] = None
    account: Optional[dict] = None
    status: str = ANONYMOUS

    @property
    def is_admin(self) -> bool:
        return bool(self.account) and self.account.get("role") == "admin"

    def apply(self, event: str, token: Optional[str] = None, session: Optional[dict] = None,
              account: Optional[dict] = None) -> "SessionState":
        """Return the state that follows `event`.

        `signed_in` and `token_refreshed` carry the new token (and the
        session payload when known); `profile_loaded` carries the account;
        `signed_out`, or a refresh without a token, resets to anonymous.
        """
        if event == "signed_out" or (event == "token_refreshed" and not token):
            return SessionState()
        if event in ("signed_in", "token_refreshed"):
            state = replace(self, token=token, status=self.status if self.account else PROFILE_PENDING)
            if session:
                state = replace(state, identity_id=session.get("identity_id"), email=session.get("email"))
            return state
        if event == "profile_loaded":
            if account is None:
                return replace(self, account=None, status=PROFILE_PENDING)
            return replace(self, account=account, status=AUTHENTICATED)
        raise ValueError(f"unknown session event: {event}")


class TrackerClient:
    def __init__(self, http: httpx.Client, attempts: Optional[int] = None, delay: Optional[float] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.http = http
        self.attempts = attempts or settings.IDENTITY_RETRY_ATTEMPTS
        self.delay = settings.IDENTITY_RETRY_DELAY_SECONDS if delay is None else delay
        self.sleep = sleep

    @staticmethod
    def _headers(state: Optional[SessionState]) -> dict:
        if state is None or not state.token:
            return {}
        return {"Authorization": f"Bearer {state.token}"}

    def _request(self, method: str, path: str, state: Optional[SessionState] = None, **kwargs):
        try:
            response = self.http.request(method, path, headers=self._headers(state), **kwargs)
        except httpx.TransportError as exc:
            raise TransientIdentityError() from exc
        if response.status_code >= 500:
            raise TransientIdentityError()
        if response.status_code >= 400:
            try:
                summary = response.json().get("detail")
            except ValueError:
                summary = None
            if not isinstance(summary, str):
                summary = response.reason_phrase or "request failed"
            raise error_for_status(response.status_code, summary)
        return response.json()

    def _with_retry(self, method: str, path: str, state: Optional[SessionState] = None, **kwargs):
        """Retry transient failures `attempts` times, waiting delay * attempt between tries."""
        for attempt in range(1, self.attempts + 1):
            try:
                return self._request(method, path, state, **kwargs)
            except TransientIdentityError:
                logger.warning("transient_failure path=%s attempt=%s/%s", path, attempt, self.attempts)
                if attempt == self.attempts:
                    raise
                self.sleep(self.delay * attempt)

    # identity

    def sign_up(self, email: str, password: str, full_name: Optional[str] = None) -> dict:
        """Register; the server decides the role, so none is sent."""
        return self._request("POST", "/auth/signup", json={"email": email, "password": password, "full_name": full_name})

    def sign_in(self, email: str, password: str) -> SessionState:
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})
        return self.bootstrap(data["access_token"])

    def sign_out(self, state: SessionState) -> SessionState:
        try:
            self._request("POST", "/auth/logout", state)
        except AuthenticationFailed:
            pass  # already signed out server side
        return state.apply("signed_out")

    def refresh(self, state: SessionState) -> SessionState:
        data = self._request("POST", "/auth/refresh", state)
        return state.apply("token_refreshed", token=data["access_token"])

    def bootstrap(self, token: Optional[str]) -> SessionState:
        """Resolve a stored token into a session state without ever blocking indefinitely."""
        state = SessionState()
        if not token:
            return state
        pending = SessionState(token=token)
        try:
            session = self._with_retry("GET", "/auth/session", pending)
        except AuthenticationFailed:
            return state
        except TransientIdentityError:
            logger.warning("session_bootstrap_degraded status=%s", ANONYMOUS)
            return state
        state = state.apply("signed_in", token=token, session=session)
        account = session.get("account")
        if account is None:
            try:
                account = self._with_retry("GET", "/accounts/me", state)
            except TrackerError:
                logger.warning("session_bootstrap_degraded status=%s", PROFILE_PENDING)
                account = None
        return state.apply("profile_loaded", account=account)

    # content and progress

    def list_subjects(self, state: SessionState) -> List[dict]:
        return self._request("GET", "/subjects", state)

    def subject_outline(self, state: SessionState, subject_id: str) -> dict:
        return self._request("GET", f"/subjects/{subject_id}/outline", state)

    def complete_section(self, state: SessionState, section_id: str) -> dict:
        return self._request("POST", f"/sections/{section_id}/complete", state)

    def submit_test(self, state: SessionState, section_id: str, answers: dict) -> dict:
        """`answers` maps question ids to the chosen letter."""
        payload = {"answers": [{"question_id": str(q), "answer": a} for q, a in answers.items()]}
        return self._request("POST", f"/sections/{section_id}/submit", state, json=payload)

    def dashboard(self, state: SessionState) -> dict:
        return self._request("GET", "/dashboard", state)
