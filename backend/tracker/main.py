"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the UPSC Tracker backend.
Controllers are intentionally thin: they resolve the caller, delegate to
services, and return JSON responses. Every service error is a
`TrackerError` and is rendered by a single exception handler.

Endpoints implemented:
- POST /auth/signup, /auth/login, /auth/logout, /auth/refresh; GET /auth/session
- GET/PATCH /accounts/me, GET /accounts, POST /accounts/{id}/role
- /subjects, /modules, /sections, /questions (CRUD, section reordering, outline)
- POST /sections/{id}/complete, POST /sections/{id}/submit
- /progress/sections, /progress/subjects
- GET /dashboard, GET /admin/stats, POST /admin/import, GET /health
"""

import json
import logging
import time
import uuid
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session

from . import schemas, services
from .auth import get_caller, get_identity_session
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import ConstraintViolation, NotFound, TrackerError
from .identity import IdentityService, IdentitySession
from .policy import Caller, resolve_caller

app = FastAPI(title="UPSC Tracker API")
logger = logging.getLogger("tracker.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
            },
            ensure_ascii=True,
        ),
    )
    return response


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError):
    """Render service errors as `{"detail": summary}` with the mapped status."""
    if exc.status_code >= 500:
        logger.error(
            "tracker_error request_id=%s path=%s cause=%r",
            getattr(request.state, "request_id", ""), request.url.path, exc.__cause__ or exc,
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.summary})


# auth

def resolve_caller_account(db: Session, identity_id: uuid.UUID):
    caller = resolve_caller(db, identity_id)
    return services.AccountService(db, caller).me()


@app.post('/auth/signup', response_model=schemas.AccountOut)
def signup(payload: schemas.SignUpIn, db: Session = Depends(get_session)):
    """Register an identity; its account is provisioned in the same step.

    A `role` claim of `admin` is only honoured for configured bootstrap
    admins or when admin signup is enabled; otherwise the account is a
    student account.
    """
    identity = IdentityService(db).sign_up(
        payload.email, payload.password, {'full_name': payload.full_name, 'role': payload.role}
    )
    return resolve_caller_account(db, identity.id)


@app.post('/auth/login', response_model=schemas.TokenOut)
def login(payload: schemas.LoginIn, db: Session = Depends(get_session)):
    """Authenticate with email and password and return a bearer token."""
    issued = IdentityService(db).sign_in_with_password(payload.email, payload.password)
    return {'access_token': issued.access_token, 'expires_at': issued.session.expires_at}


@app.post('/auth/logout')
def logout(identity_session: IdentitySession = Depends(get_identity_session), db: Session = Depends(get_session)):
    """Revoke the current session; the token stops working immediately."""
    IdentityService(db).sign_out(identity_session)
    return {'status': 'ok'}


@app.post('/auth/refresh', response_model=schemas.TokenOut)
def refresh(identity_session: IdentitySession = Depends(get_identity_session), db: Session = Depends(get_session)):
    """Exchange a valid token for a new one; the old session is revoked."""
    issued = IdentityService(db).refresh(identity_session)
    return {'access_token': issued.access_token, 'expires_at': issued.session.expires_at}


@app.get('/auth/session', response_model=schemas.SessionOut)
def current_session(identity_session: IdentitySession = Depends(get_identity_session), db: Session = Depends(get_session)):
    """Return the current session and, once provisioned, the caller's account."""
    account = resolve_caller_account(db, identity_session.identity_id)
    return {
        'identity_id': identity_session.identity_id,
        'email': identity_session.email,
        'expires_at': identity_session.expires_at,
        'account': schemas.AccountOut.model_validate(account) if account else None,
    }


# accounts

@app.get('/accounts/me', response_model=schemas.AccountOut)
def read_me(caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    account = services.AccountService(db, caller).me()
    if account is None:
        raise NotFound("account not provisioned yet")
    return account


@app.patch('/accounts/me', response_model=schemas.AccountOut)
def update_me(payload: schemas.AccountUpdate, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.AccountService(db, caller).update_me(payload.model_dump(exclude_unset=True))


@app.get('/accounts', response_model=List[schemas.AccountOut])
def list_accounts(caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """Admins see every account; other callers see only their own."""
    return services.AccountService(db, caller).list_accounts()


@app.post('/accounts/{account_id}/role', response_model=schemas.AccountOut)
def assign_role(account_id: uuid.UUID, payload: schemas.RoleAssignment,
                caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """Grant or revoke the admin role. Requires an admin caller."""
    return services.AccountService(db, caller).assign_role(account_id, payload.role)


# subjects

@app.get('/subjects', response_model=List[schemas.SubjectOut])
def list_subjects(caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """List subjects in display order; non-admins only see active ones."""
    return services.ContentService(db, caller).list_subjects()


@app.post('/subjects', response_model=schemas.SubjectOut)
def create_subject(payload: schemas.SubjectIn, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).create_subject(payload.model_dump())


@app.get('/subjects/{subject_id}', response_model=schemas.SubjectOut)
def get_subject(subject_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).get_subject(subject_id)


@app.patch('/subjects/{subject_id}', response_model=schemas.SubjectOut)
def update_subject(subject_id: uuid.UUID, payload: schemas.SubjectUpdate,
                   caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).update_subject(subject_id, payload.model_dump(exclude_unset=True))


@app.delete('/subjects/{subject_id}')
def delete_subject(subject_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """Delete a subject together with everything underneath it."""
    services.ContentService(db, caller).delete_subject(subject_id)
    return {'status': 'ok'}


@app.get('/subjects/{subject_id}/outline')
def subject_outline(subject_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """Modules and sections of a subject with the caller's completion and unlock state."""
    return services.ContentService(db, caller).subject_outline(subject_id)


# modules

@app.get('/subjects/{subject_id}/modules', response_model=List[schemas.ModuleOut])
def list_modules(subject_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).list_modules(subject_id)


@app.post('/subjects/{subject_id}/modules', response_model=schemas.ModuleOut)
def create_module(subject_id: uuid.UUID, payload: schemas.ModuleIn,
                  caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).create_module(subject_id, payload.model_dump())


@app.get('/modules/{module_id}', response_model=schemas.ModuleOut)
def get_module(module_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).get_module(module_id)


@app.patch('/modules/{module_id}', response_model=schemas.ModuleOut)
def update_module(module_id: uuid.UUID, payload: schemas.ModuleUpdate,
                  caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).update_module(module_id, payload.model_dump(exclude_unset=True))


@app.delete('/modules/{module_id}')
def delete_module(module_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    services.ContentService(db, caller).delete_module(module_id)
    return {'status': 'ok'}


# sections

@app.get('/modules/{module_id}/sections', response_model=List[schemas.SectionOut])
def list_sections(module_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).list_sections(module_id)


@app.post('/modules/{module_id}/sections', response_model=schemas.SectionOut)
def create_section(module_id: uuid.UUID, payload: schemas.SectionIn,
                   caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).create_section(module_id, payload.model_dump())


@app.put('/modules/{module_id}/sections/order', response_model=List[schemas.SectionOut])
def reorder_sections(module_id: uuid.UUID, payload: schemas.SectionOrderIn,
                     caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """Store the order produced by drag-and-drop in the admin UI."""
    return services.ContentService(db, caller).reorder_sections(module_id, payload.section_ids)


@app.get('/sections/{section_id}', response_model=schemas.SectionOut)
def get_section(section_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).get_section(section_id)


@app.patch('/sections/{section_id}', response_model=schemas.SectionOut)
def update_section(section_id: uuid.UUID, payload: schemas.SectionUpdate,
                   caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).update_section(section_id, payload.model_dump(exclude_unset=True))


@app.delete('/sections/{section_id}')
def delete_section(section_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    services.ContentService(db, caller).delete_section(section_id)
    return {'status': 'ok'}


# questions

def _question_out(question, caller: Caller):
    # answers stay hidden from students until they submit the test
    if caller.is_admin:
        return schemas.QuestionAdminOut.model_validate(question)
    return schemas.QuestionOut.model_validate(question)


@app.get('/sections/{section_id}/questions')
def list_questions(section_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    questions = services.ContentService(db, caller).list_questions(section_id)
    return [_question_out(q, caller) for q in questions]


@app.post('/sections/{section_id}/questions', response_model=schemas.QuestionAdminOut)
def create_question(section_id: uuid.UUID, payload: schemas.QuestionIn,
                    caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).create_question(section_id, payload.model_dump())


@app.get('/questions/{question_id}')
def get_question(question_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return _question_out(services.ContentService(db, caller).get_question(question_id), caller)


@app.patch('/questions/{question_id}', response_model=schemas.QuestionAdminOut)
def update_question(question_id: uuid.UUID, payload: schemas.QuestionUpdate,
                    caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ContentService(db, caller).update_question(question_id, payload.model_dump(exclude_unset=True))


@app.delete('/questions/{question_id}')
def delete_question(question_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    services.ContentService(db, caller).delete_question(question_id)
    return {'status': 'ok'}


# progress

@app.post('/sections/{section_id}/complete', response_model=schemas.SectionProgressOut)
def complete_section(section_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """Mark a reading, resource or past-question section as completed."""
    return services.ProgressService(db, caller).complete_section(section_id)


@app.post('/sections/{section_id}/submit', response_model=schemas.TestResultOut)
def submit_test(section_id: uuid.UUID, submission: schemas.TestSubmission,
                caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """Grade a test section. Only a 100% score completes the section."""
    answers = [{'question_id': a.question_id, 'answer': a.answer} for a in submission.answers]
    result = services.ProgressService(db, caller).submit_test(section_id, answers)
    result['progress'] = schemas.SectionProgressOut.model_validate(result['progress'])
    return result


@app.get('/progress/sections', response_model=List[schemas.SectionProgressOut])
def list_section_progress(account_id: Optional[uuid.UUID] = None,
                          caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """The caller's section progress; admins may pass `account_id` to read another account's."""
    return services.ProgressService(db, caller).list_section_progress(account_id)


@app.put('/progress/sections/{section_id}', response_model=schemas.SectionProgressOut)
def upsert_section_progress(section_id: uuid.UUID, payload: schemas.SectionProgressIn,
                            caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.ProgressService(db, caller).upsert_section_progress(section_id, payload.model_dump(exclude_unset=True))


@app.delete('/progress/sections/{section_id}')
def delete_section_progress(section_id: uuid.UUID, caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    services.ProgressService(db, caller).delete_section_progress(section_id)
    return {'status': 'ok'}


@app.get('/progress/subjects', response_model=List[schemas.SubjectProgressOut])
def list_subject_progress(account_id: Optional[uuid.UUID] = None,
                          caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """Per-subject rollups maintained by the aggregation engine."""
    return services.ProgressService(db, caller).list_subject_progress(account_id)


# dashboards

@app.get('/dashboard')
def dashboard(caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """Per-subject completion, overall percentage and a motivational message."""
    return services.DashboardService(db, caller).student_dashboard()


@app.get('/admin/stats')
def admin_stats(caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    return services.DashboardService(db, caller).admin_stats()


@app.post('/admin/import')
def import_content(file: UploadFile = File(...), dry_run: bool = Form(False),
                   caller: Caller = Depends(get_caller), db: Session = Depends(get_session)):
    """Upload a JSON content tree (subjects -> modules -> sections -> questions).

    Requires an admin caller; every row goes through the same policy
    checks as the CRUD endpoints. Returns created/skipped counts and the
    validation errors per subject.
    """
    if not file.filename:
        raise ConstraintViolation('no file', status_code=422)
    content = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise ConstraintViolation('file too large', status_code=422)
    try:
        return services.ImportService(db, caller).import_file(content, file.filename, dry_run=dry_run)
    except ValueError as e:
        raise ConstraintViolation(str(e), status_code=422)


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
