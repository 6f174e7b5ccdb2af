"""Parsers that turn content files into a normalized subject tree.

Supported inputs:

- JSON: a list of subjects (or ``{"subjects": [...]}``), each with
  nested ``modules`` -> ``sections`` -> ``questions``.

Every level is checked against the same schemas the CRUD endpoints use
(`SubjectIn`, `ModuleIn`, `SectionIn`, `QuestionIn`), so imported rows
carry exactly the types an API-created row would. Parsers only shape and
validate data; persisting happens in `tracker.services.ImportService`.
"""

import json
from typing import Dict, List, Type

from pydantic import BaseModel, ValidationError

from ..models import ANSWER_LETTERS, SECTION_TYPES
from ..schemas import ModuleIn, QuestionIn, SectionIn, SubjectIn

QUESTION_FIELDS = ('question_text', 'option_a', 'option_b', 'option_c', 'option_d', 'correct_answer')


def parse_content_file(file_bytes: bytes, filename: str) -> List[Dict]:
    """Dispatch on file extension and return a list of subject dicts."""
    name = filename.lower()
    if name.endswith('.json'):
        return parse_json(file_bytes)
    raise ValueError('Unsupported file type; expected .json')


def parse_json(b: bytes) -> List[Dict]:
    data = json.loads(b.decode('utf-8'))
    if isinstance(data, dict):
        data = data.get('subjects', [])
    if not isinstance(data, list):
        raise ValueError('expected a list of subjects')
    return data


def _checked(schema: Type[BaseModel], item: Dict, what: str) -> Dict:
    """Validate `item` against `schema` and return the coerced fields."""
    fields = {k: v for k, v in item.items() if k in schema.model_fields}
    try:
        return schema.model_validate(fields).model_dump()
    except ValidationError as e:
        first = e.errors()[0]
        field = '.'.join(str(p) for p in first['loc']) or what
        raise ValueError(f"invalid {what} {field}: {first['msg']}")


def _children(item: Dict, key: str, what: str) -> List:
    children = item.get(key) or []
    if not isinstance(children, list):
        raise ValueError(f'{what} {key} must be a list')
    return children


def validate_question(q: Dict) -> Dict:
    """Return the normalized question, raising ValueError when it is incomplete or malformed."""
    if not isinstance(q, dict):
        raise ValueError('question item must be an object')
    for key in QUESTION_FIELDS:
        value = q.get(key)
        if not value or not isinstance(value, str) or not value.strip():
            raise ValueError(f'missing or empty {key}')
    if q['correct_answer'] not in ANSWER_LETTERS:
        raise ValueError('correct_answer must be one of A, B, C, D')
    return _checked(QuestionIn, q, 'question')


def validate_section(s: Dict) -> Dict:
    if not isinstance(s, dict):
        raise ValueError('section item must be an object')
    if not isinstance(s.get('name'), str) or not s['name'].strip():
        raise ValueError('section missing name')
    if s.get('type', 'source') not in SECTION_TYPES:
        raise ValueError(f"invalid section type: {s.get('type')}")
    section = _checked(SectionIn, {**s, 'name': s['name'].strip()}, 'section')
    section['questions'] = [validate_question(q) for q in _children(s, 'questions', 'section')]
    return section


def validate_subject(subject: Dict) -> Dict:
    """Validate a whole subject tree and return it normalized.

    The first problem found is raised as ValueError.
    """
    if not isinstance(subject, dict):
        raise ValueError('subject item must be an object')
    if not isinstance(subject.get('name'), str) or not subject['name'].strip():
        raise ValueError('subject missing name')
    out = _checked(SubjectIn, {**subject, 'name': subject['name'].strip()}, 'subject')
    out['modules'] = []
    for m in _children(subject, 'modules', 'subject'):
        if not isinstance(m, dict) or not isinstance(m.get('name'), str) or not m['name'].strip():
            raise ValueError('module missing name')
        module = _checked(ModuleIn, {**m, 'name': m['name'].strip()}, 'module')
        module['sections'] = [validate_section(s) for s in _children(m, 'sections', 'module')]
        out['modules'].append(module)
    return out
