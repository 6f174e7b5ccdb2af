"""Subject progress aggregation.

`SubjectProgress` rows are derived data: after every write to a
`SectionProgress` row the owning subject's counts are recomputed from
scratch and written over the stored row. Recomputing instead of applying
deltas keeps concurrent completions correct regardless of ordering.

These functions run inside the caller's session and never commit; the
service that wrote the section progress commits both changes together.
They bypass the policy layer on purpose and are only reachable through
the progress and content services.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from . import models, repositories
from .errors import AggregationFailure

logger = logging.getLogger("tracker.aggregation")


@dataclass(frozen=True)
class SubjectAggregate:
    total_sections: int
    completed_sections: int


def count_aggregate(section_ids: Iterable[uuid.UUID], completion: Mapping[uuid.UUID, bool]) -> SubjectAggregate:
    """Count sections and completed sections.

    `completion` maps section ids to the account's completion flag;
    sections without an entry count as not completed, and entries for
    sections outside `section_ids` are ignored.
    """
    ids = set(section_ids)
    completed = sum(1 for section_id in ids if completion.get(section_id))
    return SubjectAggregate(total_sections=len(ids), completed_sections=completed)


def subject_for_section(session: Session, section_id: uuid.UUID) -> Optional[uuid.UUID]:
    """Walk Section -> Module -> Subject; `None` if the section is gone."""
    stmt = (
        select(models.Module.subject_id)
        .join(models.Section, models.Section.module_id == models.Module.id)
        .where(models.Section.id == section_id)
    )
    return session.exec(stmt).first()


def section_ids_for_subject(session: Session, subject_id: uuid.UUID) -> List[uuid.UUID]:
    stmt = (
        select(models.Section.id)
        .join(models.Module, models.Section.module_id == models.Module.id)
        .where(models.Module.subject_id == subject_id)
    )
    return list(session.exec(stmt).all())


def recompute_subject_aggregate(session: Session, account_id: uuid.UUID, subject_id: uuid.UUID) -> SubjectAggregate:
    """Read the live sections of a subject and the account's completion flags."""
    section_ids = section_ids_for_subject(session, subject_id)
    if not section_ids:
        return SubjectAggregate(total_sections=0, completed_sections=0)
    stmt = select(models.SectionProgress.section_id, models.SectionProgress.is_completed).where(
        models.SectionProgress.account_id == account_id,
        models.SectionProgress.section_id.in_(section_ids),
    )
    completion = {section_id: bool(done) for section_id, done in session.exec(stmt).all()}
    return count_aggregate(section_ids, completion)


def _store(session: Session, account_id: uuid.UUID, subject_id: uuid.UUID,
           aggregate: SubjectAggregate) -> models.SubjectProgress:
    return repositories.upsert(
        session, models.SubjectProgress,
        keys={"account_id": account_id, "subject_id": subject_id},
        values={
            "total_sections": aggregate.total_sections,
            "completed_sections": aggregate.completed_sections,
            "last_accessed": models.utcnow(),
        },
    )


def on_section_progress_changed(session: Session, account_id: uuid.UUID,
                                section_id: uuid.UUID) -> Optional[models.SubjectProgress]:
    """Bring the account's rollup for the section's subject up to date.

    Raises `AggregationFailure` when the recomputation cannot be written;
    the caller must then roll back the triggering write.
    """
    try:
        subject_id = subject_for_section(session, section_id)
        if subject_id is None:
            return None
        aggregate = recompute_subject_aggregate(session, account_id, subject_id)
        row = _store(session, account_id, subject_id, aggregate)
    except SQLAlchemyError as exc:
        logger.exception("aggregation_failed account=%s section=%s", account_id, section_id)
        raise AggregationFailure() from exc
    logger.debug(
        "aggregate account=%s subject=%s total=%s completed=%s",
        account_id, subject_id, aggregate.total_sections, aggregate.completed_sections,
    )
    return row


def refresh_subject(session: Session, subject_id: uuid.UUID) -> int:
    """Recompute every existing rollup of a subject.

    Used after sections are added, moved or removed, which changes
    `total_sections` for every account. Returns the number of rows updated.
    """
    try:
        account_ids = session.exec(
            select(models.SubjectProgress.account_id).where(models.SubjectProgress.subject_id == subject_id)
        ).all()
        for account_id in account_ids:
            _store(session, account_id, subject_id, recompute_subject_aggregate(session, account_id, subject_id))
    except SQLAlchemyError as exc:
        logger.exception("aggregation_failed subject=%s", subject_id)
        raise AggregationFailure() from exc
    return len(account_ids)
