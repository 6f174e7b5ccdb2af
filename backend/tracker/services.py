"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
the policy layer and the aggregation engine. Each service is bound to a
session and to the `Caller` of the current request; every store
operation is authorized before it runs, and each public write method is
one unit of work that commits or rolls back as a whole.
"""

import logging
import uuid
from types import SimpleNamespace
from typing import Dict, List, Optional

from sqlalchemy import true
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import aggregation, models, repositories
from .errors import AggregationFailure, AuthorizationDenied, ConstraintViolation, NotFound, TrackerError
from .policy import Caller, Operation, Resource, can_read, require, require_role_assignment, require_update, visible_clause
from .utils.content_loader import parse_content_file, validate_subject

logger = logging.getLogger("tracker.services")

MOTIVATION_BANDS = (
    (25, "This speed can't help you reach your goal - you have to be faster!"),
    (50, "Good start! Keep pushing yourself to maintain momentum."),
    (75, "You're making solid progress! Stay consistent with your efforts."),
    (90, "Almost there! You're perfectly aligned with your goal."),
)
MOTIVATION_TOP = "Outstanding progress! You're excelling in your UPSC preparation."


def motivational_message(overall_percentage: float, has_subjects: bool = True) -> str:
    """Pick the dashboard message for an overall completion percentage."""
    if not has_subjects:
        return MOTIVATION_BANDS[0][1]
    for upper, message in MOTIVATION_BANDS:
        if overall_percentage < upper:
            return message
    return MOTIVATION_TOP


def percentage(completed: int, total: int) -> float:
    return (completed / total) * 100 if total > 0 else 0.0


class _Service:
    def __init__(self, session: Session, caller: Caller):
        self.session = session
        self.caller = caller

    def _commit(self) -> None:
        """Commit the unit of work, translating constraint errors."""
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.info("integrity_error %s", exc.orig)
            raise ConstraintViolation("conflicts with an existing record or an invalid value")

    def _abort(self) -> None:
        self.session.rollback()

    def _load(self, repo, resource: Resource, row_id: uuid.UUID):
        """Fetch a row the caller may see; hidden and missing rows both raise `NotFound`."""
        row = repo.get(row_id)
        if row is None or not can_read(self.caller, resource, row):
            raise NotFound(f"{resource.value.replace('_', ' ')} not found")
        return row

    def _patch(self, repo, resource: Resource, row, changes: Dict):
        proposed = SimpleNamespace(**{**row.model_dump(), **changes})
        require_update(self.caller, resource, row, proposed)
        for key, value in changes.items():
            setattr(row, key, value)
        return repo.save(row)


class AccountService(_Service):
    """Own-profile reads and edits, the admin directory and role assignment."""
    def __init__(self, session: Session, caller: Caller):
        super().__init__(session, caller)
        self.accounts = repositories.AccountRepository(session)

    def me(self) -> Optional[models.Account]:
        """Return the caller's account, or `None` while it is not provisioned."""
        account = self.accounts.get(self.caller.account_id)
        if account is None:
            return None
        require(self.caller, Operation.SELECT, Resource.ACCOUNT, account)
        return account

    def update_me(self, changes: Dict) -> models.Account:
        account = self.me()
        if account is None:
            raise NotFound("account not found")
        updated = self._patch(self.accounts, Resource.ACCOUNT, account, changes)
        self._commit()
        return updated

    def list_accounts(self) -> List[models.Account]:
        return self.accounts.list(visible_clause(self.caller, Resource.ACCOUNT))

    def assign_role(self, account_id: uuid.UUID, role: str) -> models.Account:
        """Change another account's role. Admin only; admins cannot demote themselves."""
        require_role_assignment(self.caller)
        if role not in models.ROLES:
            raise ConstraintViolation("invalid role", status_code=422)
        account = self._load(self.accounts, Resource.ACCOUNT, account_id)
        if account.id == self.caller.account_id and role != "admin":
            raise ConstraintViolation("admins cannot remove their own admin role", status_code=422)
        account.role = role
        self.accounts.save(account)
        self._commit()
        logger.info("role_assigned account=%s role=%s by=%s", account.id, role, self.caller.account_id)
        return account


class ContentService(_Service):
    """Subjects, modules, sections and questions."""
    def __init__(self, session: Session, caller: Caller):
        super().__init__(session, caller)
        self.subjects = repositories.SubjectRepository(session)
        self.modules = repositories.ModuleRepository(session)
        self.sections = repositories.SectionRepository(session)
        self.questions = repositories.QuestionRepository(session)

    # subjects

    def list_subjects(self) -> List[models.Subject]:
        return self.subjects.list(visible_clause(self.caller, Resource.SUBJECT))

    def get_subject(self, subject_id: uuid.UUID) -> models.Subject:
        return self._load(self.subjects, Resource.SUBJECT, subject_id)

    def create_subject(self, data: Dict) -> models.Subject:
        if data.get("order_index") is None:
            data["order_index"] = self.subjects.next_order_index()
        subject = models.Subject(**data, created_by=self.caller.account_id)
        require(self.caller, Operation.INSERT, Resource.SUBJECT, subject)
        self.subjects.add(subject)
        self._commit()
        return subject

    def update_subject(self, subject_id: uuid.UUID, changes: Dict) -> models.Subject:
        subject = self.get_subject(subject_id)
        self._patch(self.subjects, Resource.SUBJECT, subject, changes)
        self._commit()
        return subject

    def delete_subject(self, subject_id: uuid.UUID) -> None:
        """Delete a subject with its modules, sections, questions and progress rows."""
        subject = self.get_subject(subject_id)
        require(self.caller, Operation.DELETE, Resource.SUBJECT, subject)
        self.subjects.delete(subject)
        self._commit()

    # modules

    def list_modules(self, subject_id: uuid.UUID) -> List[models.Module]:
        self.get_subject(subject_id)
        return self.modules.list(visible_clause(self.caller, Resource.MODULE), parent_id=subject_id)

    def get_module(self, module_id: uuid.UUID) -> models.Module:
        return self._load(self.modules, Resource.MODULE, module_id)

    def create_module(self, subject_id: uuid.UUID, data: Dict) -> models.Module:
        self.get_subject(subject_id)
        if data.get("order_index") is None:
            data["order_index"] = self.modules.next_order_index(subject_id)
        module = models.Module(**data, subject_id=subject_id)
        require(self.caller, Operation.INSERT, Resource.MODULE, module)
        self.modules.add(module)
        self._commit()
        return module

    def update_module(self, module_id: uuid.UUID, changes: Dict) -> models.Module:
        module = self.get_module(module_id)
        self._patch(self.modules, Resource.MODULE, module, changes)
        self._commit()
        return module

    def delete_module(self, module_id: uuid.UUID) -> None:
        module = self.get_module(module_id)
        require(self.caller, Operation.DELETE, Resource.MODULE, module)
        subject_id = module.subject_id
        self.modules.delete(module)
        self._refresh_and_commit(subject_id)

    # sections

    def _module_exists(self, module_id: uuid.UUID) -> models.Module:
        module = self.modules.get(module_id)
        if module is None:
            raise NotFound("module not found")
        return module

    def list_sections(self, module_id: uuid.UUID) -> List[models.Section]:
        # Sections are readable even when their module is inactive.
        self._module_exists(module_id)
        return self.sections.list(visible_clause(self.caller, Resource.SECTION), parent_id=module_id)

    def get_section(self, section_id: uuid.UUID) -> models.Section:
        return self._load(self.sections, Resource.SECTION, section_id)

    def create_section(self, module_id: uuid.UUID, data: Dict) -> models.Section:
        module = self._module_exists(module_id)
        if data.get("order_index") is None:
            data["order_index"] = self.sections.next_order_index(module_id)
        section = models.Section(**data, module_id=module_id)
        require(self.caller, Operation.INSERT, Resource.SECTION, section)
        self.sections.add(section)
        self._refresh_and_commit(module.subject_id)
        return section

    def update_section(self, section_id: uuid.UUID, changes: Dict) -> models.Section:
        section = self.get_section(section_id)
        old_subject_id = self._module_exists(section.module_id).subject_id
        new_subject_id = old_subject_id
        if changes.get("module_id") is not None and changes["module_id"] != section.module_id:
            new_subject_id = self._module_exists(changes["module_id"]).subject_id
        self._patch(self.sections, Resource.SECTION, section, changes)
        if new_subject_id != old_subject_id:
            aggregation.refresh_subject(self.session, old_subject_id)
        self._refresh_and_commit(new_subject_id)
        return section

    def delete_section(self, section_id: uuid.UUID) -> None:
        section = self.get_section(section_id)
        require(self.caller, Operation.DELETE, Resource.SECTION, section)
        subject_id = self._module_exists(section.module_id).subject_id
        self.sections.delete(section)
        self._refresh_and_commit(subject_id)

    def reorder_sections(self, module_id: uuid.UUID, section_ids: List[uuid.UUID]) -> List[models.Section]:
        """Persist a new display order; `section_ids` must list every section of the module once."""
        self._module_exists(module_id)
        current = self.sections.list(visible_clause(self.caller, Resource.SECTION), parent_id=module_id)
        by_id = {s.id: s for s in current}
        if len(section_ids) != len(set(section_ids)) or set(section_ids) != set(by_id):
            raise ConstraintViolation("section_ids must list each section of the module exactly once", status_code=422)
        for index, section_id in enumerate(section_ids):
            self._patch(self.sections, Resource.SECTION, by_id[section_id], {"order_index": index})
        self._commit()
        return [by_id[section_id] for section_id in section_ids]

    def _refresh_and_commit(self, subject_id: uuid.UUID) -> None:
        try:
            aggregation.refresh_subject(self.session, subject_id)
        except AggregationFailure:
            self._abort()
            raise
        self._commit()

    # questions

    def list_questions(self, section_id: uuid.UUID) -> List[models.Question]:
        self.get_section(section_id)
        return self.questions.list(visible_clause(self.caller, Resource.QUESTION), parent_id=section_id)

    def get_question(self, question_id: uuid.UUID) -> models.Question:
        return self._load(self.questions, Resource.QUESTION, question_id)

    def create_question(self, section_id: uuid.UUID, data: Dict) -> models.Question:
        self.get_section(section_id)
        if data.get("order_index") is None:
            data["order_index"] = self.questions.next_order_index(section_id)
        question = models.Question(**data, section_id=section_id)
        require(self.caller, Operation.INSERT, Resource.QUESTION, question)
        self.questions.add(question)
        self._commit()
        return question

    def update_question(self, question_id: uuid.UUID, changes: Dict) -> models.Question:
        question = self.get_question(question_id)
        self._patch(self.questions, Resource.QUESTION, question, changes)
        self._commit()
        return question

    def delete_question(self, question_id: uuid.UUID) -> None:
        question = self.get_question(question_id)
        require(self.caller, Operation.DELETE, Resource.QUESTION, question)
        self.questions.delete(question)
        self._commit()

    # outline

    def subject_outline(self, subject_id: uuid.UUID) -> Dict:
        """Visible modules and sections of a subject with the caller's progress.

        A module is unlocked when it is the first one or every section of
        the previous module is complete; a section is accessible when its
        module is unlocked and it is the first section or the previous one
        is complete. The flags are advisory and not enforced on writes.
        """
        subject = self.get_subject(subject_id)
        modules = self.list_modules(subject_id)
        progress = repositories.ProgressRepository(self.session).list_section_progress(
            visible_clause(self.caller, Resource.SECTION_PROGRESS), account_id=self.caller.account_id
        )
        done = {p.section_id for p in progress if p.is_completed}
        out_modules = []
        previous_complete = True
        for module in modules:
            sections = self.sections.list(visible_clause(self.caller, Resource.SECTION), parent_id=module.id)
            unlocked = previous_complete
            completed = sum(1 for s in sections if s.id in done)
            out_sections = []
            for index, s in enumerate(sections):
                accessible = unlocked and (index == 0 or sections[index - 1].id in done)
                out_sections.append({
                    'id': s.id,
                    'name': s.name,
                    'type': s.type,
                    'order_index': s.order_index,
                    'is_required': s.is_required,
                    'is_completed': s.id in done,
                    'accessible': accessible,
                })
            out_modules.append({
                'id': module.id,
                'name': module.name,
                'description': module.description,
                'order_index': module.order_index,
                'unlocked': unlocked,
                'total_sections': len(sections),
                'completed_sections': completed,
                'progress_percentage': percentage(completed, len(sections)),
                'sections': out_sections,
            })
            previous_complete = all(s.id in done for s in sections)
        return {'id': subject.id, 'name': subject.name, 'description': subject.description, 'modules': out_modules}


class ProgressService(_Service):
    """Section progress writes, test grading and progress reads.

    Every write to `SectionProgress` runs the aggregation for the
    section's subject before committing, so a successful response means
    `SubjectProgress` is already consistent.
    """
    def __init__(self, session: Session, caller: Caller):
        super().__init__(session, caller)
        self.progress = repositories.ProgressRepository(session)
        self.content = ContentService(session, caller)

    def _require_read_of(self, resource: Resource, account_id: uuid.UUID) -> None:
        sample = models.SectionProgress(account_id=account_id) if resource == Resource.SECTION_PROGRESS \
            else models.SubjectProgress(account_id=account_id)
        require(self.caller, Operation.SELECT, resource, sample)

    def list_section_progress(self, account_id: Optional[uuid.UUID] = None) -> List[models.SectionProgress]:
        """The caller's rows, or another account's rows when the policy allows it."""
        if account_id is not None:
            self._require_read_of(Resource.SECTION_PROGRESS, account_id)
        else:
            account_id = self.caller.account_id
        return self.progress.list_section_progress(
            visible_clause(self.caller, Resource.SECTION_PROGRESS), account_id=account_id
        )

    def list_subject_progress(self, account_id: Optional[uuid.UUID] = None) -> List[models.SubjectProgress]:
        if account_id is not None:
            self._require_read_of(Resource.SUBJECT_PROGRESS, account_id)
        else:
            account_id = self.caller.account_id
        return self.progress.list_subject_progress(
            visible_clause(self.caller, Resource.SUBJECT_PROGRESS), account_id=account_id
        )

    def get_section_progress(self, section_id: uuid.UUID,
                             account_id: Optional[uuid.UUID] = None) -> Optional[models.SectionProgress]:
        account_id = account_id or self.caller.account_id
        row = self.progress.get_section_progress(account_id, section_id)
        if row is not None:
            require(self.caller, Operation.SELECT, Resource.SECTION_PROGRESS, row)
        elif account_id != self.caller.account_id:
            self._require_read_of(Resource.SECTION_PROGRESS, account_id)
        return row

    def _write(self, current: Optional[models.SectionProgress], proposed: models.SectionProgress) -> models.SectionProgress:
        if current is None:
            require(self.caller, Operation.INSERT, Resource.SECTION_PROGRESS, proposed)
            row = None
        else:
            require_update(self.caller, Resource.SECTION_PROGRESS, current, proposed)
            for key in ("is_completed", "score", "attempts", "completed_at"):
                setattr(current, key, getattr(proposed, key))
            row = current
        try:
            if row is None:
                row = self.progress.upsert_section_progress(proposed)
            else:
                self.progress.save_section_progress(row)
            aggregation.on_section_progress_changed(self.session, row.account_id, row.section_id)
        except AggregationFailure:
            self._abort()
            raise
        except IntegrityError:
            self._abort()
            raise ConstraintViolation("progress row violates a database constraint")
        self._commit()
        self.session.refresh(row)
        return row

    def _proposal(self, current: Optional[models.SectionProgress], account_id: uuid.UUID,
                  section_id: uuid.UUID, **values) -> models.SectionProgress:
        base = {
            'is_completed': False, 'score': 0, 'attempts': 0, 'completed_at': None,
        } if current is None else {
            'is_completed': current.is_completed, 'score': current.score,
            'attempts': current.attempts, 'completed_at': current.completed_at,
        }
        base.update(values)
        return models.SectionProgress(account_id=account_id, section_id=section_id, **base)

    def upsert_section_progress(self, section_id: uuid.UUID, data: Dict) -> models.SectionProgress:
        """Create or overwrite one (account, section) progress row."""
        self.content.get_section(section_id)
        account_id = data.get("account_id") or self.caller.account_id
        if account_id != self.caller.account_id and not self.caller.is_admin:
            # writes to someone else's row are denied even when no row exists yet
            require(self.caller, Operation.INSERT, Resource.SECTION_PROGRESS,
                    models.SectionProgress(account_id=account_id, section_id=section_id))
        current = self.progress.get_section_progress(account_id, section_id)
        # fields left out of the request keep their stored values
        is_completed = bool(data["is_completed"]) if "is_completed" in data else bool(current and current.is_completed)
        completed_at = data.get("completed_at")
        if is_completed and completed_at is None:
            completed_at = current.completed_at if current is not None and current.completed_at else models.utcnow()
        values = {'is_completed': is_completed, 'completed_at': completed_at}
        if "score" in data:
            values['score'] = data["score"]
        if data.get("attempts") is not None:
            values['attempts'] = data["attempts"]
        return self._write(current, self._proposal(current, account_id, section_id, **values))

    def delete_section_progress(self, section_id: uuid.UUID, account_id: Optional[uuid.UUID] = None) -> None:
        account_id = account_id or self.caller.account_id
        row = self.progress.get_section_progress(account_id, section_id)
        if row is None:
            if account_id != self.caller.account_id:
                self._require_read_of(Resource.SECTION_PROGRESS, account_id)
            raise NotFound("section progress not found")
        require(self.caller, Operation.DELETE, Resource.SECTION_PROGRESS, row)
        try:
            self.progress.delete_section_progress(row)
            aggregation.on_section_progress_changed(self.session, account_id, section_id)
        except AggregationFailure:
            self._abort()
            raise
        self._commit()

    def complete_section(self, section_id: uuid.UUID) -> models.SectionProgress:
        """Mark a non-test section as completed by the caller."""
        section = self.content.get_section(section_id)
        if section.type == "test":
            raise ConstraintViolation("test sections are completed by passing the test", status_code=422)
        current = self.progress.get_section_progress(self.caller.account_id, section_id)
        proposed = self._proposal(
            current, self.caller.account_id, section_id,
            is_completed=True,
            score=100,
            attempts=(current.attempts if current else 0) + 1,
            completed_at=current.completed_at if current is not None and current.is_completed else models.utcnow(),
        )
        return self._write(current, proposed)

    def submit_test(self, section_id: uuid.UUID, answers: List[Dict]) -> Dict:
        """Grade a test section and record the attempt.

        Only a perfect score completes the section. A lower score counts
        as an attempt; it records the score while the section is still
        open and never clears an earlier completion.
        """
        section = self.content.get_section(section_id)
        if section.type != "test":
            raise ConstraintViolation("only test sections can be submitted", status_code=422)
        questions = self.content.questions.list(visible_clause(self.caller, Resource.QUESTION), parent_id=section_id)
        if not questions:
            raise ConstraintViolation("this test has no questions yet", status_code=422)
        given = {a['question_id']: a.get('answer') for a in answers}
        unknown = set(given) - {q.id for q in questions}
        if unknown:
            raise ConstraintViolation("answers reference questions outside this test", status_code=422)
        items = []
        correct = 0
        for q in questions:
            is_correct = given.get(q.id) == q.correct_answer
            if is_correct:
                correct += 1
            items.append({
                'question_id': q.id,
                'given': given.get(q.id),
                'correct': is_correct,
                'correct_answer': q.correct_answer,
                'explanation': q.explanation,
            })
        score = round(percentage(correct, len(questions)))
        passed = correct == len(questions)
        current = self.progress.get_section_progress(self.caller.account_id, section_id)
        attempts = (current.attempts if current else 0) + 1
        if passed:
            values = {'is_completed': True, 'score': 100, 'attempts': attempts,
                      'completed_at': current.completed_at if current is not None and current.is_completed else models.utcnow()}
        elif current is not None and current.is_completed:
            values = {'attempts': attempts}
        else:
            values = {'is_completed': False, 'score': score, 'attempts': attempts}
        row = self._write(current, self._proposal(current, self.caller.account_id, section_id, **values))
        logger.info("test_submitted section=%s account=%s score=%s", section_id, self.caller.account_id, score)
        return {
            'section_id': section_id,
            'score': score,
            'correct': correct,
            'total': len(questions),
            'passed': passed,
            'progress': row,
            'items': items,
        }


class DashboardService(_Service):
    """Read models for the student dashboard and the admin overview."""
    def __init__(self, session: Session, caller: Caller):
        super().__init__(session, caller)
        self.content = ContentService(session, caller)
        self.progress = ProgressService(session, caller)

    def student_dashboard(self) -> Dict:
        subjects = self.content.list_subjects()
        rollups = {p.subject_id: p for p in self.progress.list_subject_progress()}
        items = []
        for subject in subjects:
            rollup = rollups.get(subject.id)
            if rollup is not None:
                total, completed = rollup.total_sections, rollup.completed_sections
            else:
                total, completed = len(aggregation.section_ids_for_subject(self.session, subject.id)), 0
            items.append({
                'id': subject.id,
                'name': subject.name,
                'total_sections': total,
                'completed_sections': completed,
                'progress_percentage': percentage(completed, total),
            })
        overall = sum(i['progress_percentage'] for i in items) / len(items) if items else 0.0
        return {
            'subjects': items,
            'overall_percentage': overall,
            'message': motivational_message(overall, has_subjects=bool(items)),
        }

    def admin_stats(self) -> Dict:
        if not self.caller.is_admin:
            raise AuthorizationDenied()
        return {
            'total_subjects': self.content.subjects.count(models.Subject.is_active == true()),
            'total_modules': self.content.modules.count(models.Module.is_active == true()),
            'total_sections': self.content.sections.count(visible_clause(self.caller, Resource.SECTION)),
            'total_students': repositories.AccountRepository(self.session).count_by_role("student"),
        }


class ImportService(_Service):
    """Import subject trees from content files and persist them to the DB."""
    def __init__(self, session: Session, caller: Caller):
        super().__init__(session, caller)
        self.content = ContentService(session, caller)

    def import_file(self, file_bytes: bytes, filename: str, dry_run: bool = False) -> Dict:
        """Parse `filename` contents and create the subjects it describes.

        Each subject is validated as a whole and written in its own unit of
        work, so one bad subject never leaves a half-imported tree behind.
        Subjects whose name already exists are skipped. Returns the number
        of created and skipped subjects and the validation `errors` per item.
        """
        # imports are admin work, dry runs included
        require(self.caller, Operation.INSERT, Resource.SUBJECT, models.Subject(name="", created_by=self.caller.account_id))
        parsed = parse_content_file(file_bytes, filename)
        created = 0
        skipped = 0
        errors = []
        for idx, item in enumerate(parsed):
            try:
                tree = validate_subject(item)
            except ValueError as e:
                errors.append({'index': idx, 'error': str(e)})
                continue
            if self.content.subjects.exists_by_name(tree['name']):
                skipped += 1
                continue
            if dry_run:
                created += 1
                continue
            try:
                self._create_tree(tree)
                self._commit()
            except IntegrityError as exc:
                self._abort()
                logger.info("integrity_error %s", exc.orig)
                errors.append({'index': idx, 'error': 'conflicts with an existing record or an invalid value'})
                continue
            except TrackerError as e:
                self._abort()
                errors.append({'index': idx, 'error': e.summary})
                continue
            created += 1
        logger.info("content_imported file=%s created=%s skipped=%s errors=%s dry_run=%s",
                    filename, created, skipped, len(errors), dry_run)
        return {'created': created, 'skipped': skipped, 'errors': errors}

    @staticmethod
    def _order(item: Dict, default: int) -> int:
        return default if item['order_index'] is None else item['order_index']

    def _create_tree(self, tree: Dict) -> models.Subject:
        """Persist a tree already normalized by `validate_subject`."""
        subject = models.Subject(
            name=tree['name'],
            description=tree['description'],
            order_index=self._order(tree, self.content.subjects.next_order_index()),
            is_active=tree['is_active'],
            created_by=self.caller.account_id,
        )
        require(self.caller, Operation.INSERT, Resource.SUBJECT, subject)
        self.content.subjects.add(subject)
        for m_idx, m in enumerate(tree['modules']):
            module = models.Module(
                subject_id=subject.id,
                name=m['name'],
                description=m['description'],
                order_index=self._order(m, m_idx),
                is_active=m['is_active'],
            )
            require(self.caller, Operation.INSERT, Resource.MODULE, module)
            self.content.modules.add(module)
            for s_idx, s in enumerate(m['sections']):
                section = models.Section(
                    module_id=module.id,
                    name=s['name'],
                    type=s['type'],
                    content=s['content'],
                    link_url=s['link_url'],
                    order_index=self._order(s, s_idx),
                    is_required=s['is_required'],
                )
                require(self.caller, Operation.INSERT, Resource.SECTION, section)
                self.content.sections.add(section)
                for q_idx, q in enumerate(s['questions']):
                    fields = {k: v for k, v in q.items() if k != 'order_index'}
                    question = models.Question(**fields, section_id=section.id, order_index=self._order(q, q_idx))
                    require(self.caller, Operation.INSERT, Resource.QUESTION, question)
                    self.content.questions.add(question)
        return subject
