# timetable_sync/services/core/subjects_service.py

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date as date_cls
from typing import Any, Dict, List, Optional

from config import Config
from timetable_sync.services.clients.document_store import DOCUMENT_ID_FIELD, DocumentStore, create_document_store
from timetable_sync.services.core.cache_manager import Resource, SyncReconciler
from timetable_sync.services.utils.data_validator import clean_str, coerce_float


log = logging.getLogger(__name__)

SUBJECTS_RESOURCE = "subjects"
SUBJECTS_STORAGE_KEY = "gradeCalculator"

DEFAULT_GRADE_VALUE = 5.0
DEFAULT_GRADE_WEIGHT = 1.0

# Источники по-разному называют ссылку на предмет
_SUBJECT_REF_FIELDS = ('subjectId', 'subjectid', 'subject_id', 'SubjectId')


@dataclass
class Grade:
    id: str
    value: float = DEFAULT_GRADE_VALUE
    type: str = ''
    date: Optional[str] = None
    weight: float = DEFAULT_GRADE_WEIGHT

    def to_dict(self) -> dict:
        return {"id": self.id, "value": self.value, "type": self.type, "date": self.date, "weight": self.weight}


@dataclass
class Subject:
    id: str
    name: str
    grades: List[Grade] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "grades": [g.to_dict() for g in self.grades]}


def parse_grade(raw: Any) -> Optional[Grade]:
    """Оценка из словаря. Значение - число по умолчанию 5.0, вес - 1.0."""
    if not isinstance(raw, dict):
        return None
    grade_id = clean_str(raw.get('gradeid') or raw.get('id') or raw.get(DOCUMENT_ID_FIELD))
    if not grade_id:
        return None
    return Grade(
        id=grade_id,
        value=coerce_float(raw.get('value'), DEFAULT_GRADE_VALUE),
        type=clean_str(raw.get('type') or raw.get('name')),
        date=clean_str(raw.get('date')) or None,
        weight=coerce_float(raw.get('weight'), DEFAULT_GRADE_WEIGHT),
    )


def parse_subject(raw: Any, grades: Optional[List[Grade]] = None) -> Optional[Subject]:
    """Предмет без id или названия отбрасывается."""
    if not isinstance(raw, dict):
        return None
    subject_id = clean_str(raw.get('subjectid') or raw.get('id') or raw.get(DOCUMENT_ID_FIELD))
    name = clean_str(raw.get('name'))
    if not subject_id or not name:
        log.warning(f"Пропуск предмета без id или названия: {raw}")
        return None
    if grades is None:
        grades = [g for g in map(parse_grade, raw.get('grades') or []) if g is not None]
    return Subject(id=subject_id, name=name, grades=grades)


def decode_subjects(raw: Any) -> Optional[List[Subject]]:
    if not isinstance(raw, list):
        return None
    return [s for s in map(parse_subject, raw) if s is not None]


def encode_subjects(subjects: List[Subject]) -> List[dict]:
    return [s.to_dict() for s in subjects]


def _subject_ref(doc: dict) -> str:
    for name in _SUBJECT_REF_FIELDS:
        if doc.get(name):
            return str(doc[name])
    return ''


class SubjectsRepository:
    """Предметы и оценки пользователя в удаленном хранилище (две коллекции, фильтр по userId)."""

    def __init__(self, store: Optional[DocumentStore] = None, user_id: str = 'local',
                 subjects_collection: Optional[str] = None, grades_collection: Optional[str] = None):
        self.store = store or create_document_store()
        self.user_id = user_id
        self.subjects_collection = subjects_collection or Config.SUBJECTS_COLLECTION
        self.grades_collection = grades_collection or Config.GRADES_COLLECTION

    async def _list_both(self):
        filters = {'userId': self.user_id}
        return await asyncio.gather(
            self.store.list_documents(self.subjects_collection, filters),
            self.store.list_documents(self.grades_collection, filters),
        )

    async def fetch_subjects(self) -> List[Subject]:
        subject_docs, grade_docs = await self._list_both()
        log.info(f"Хранилище: предметов - {len(subject_docs)}, оценок - {len(grade_docs)}")

        grades_by_subject: Dict[str, List[Grade]] = {}
        for doc in grade_docs:
            grade = parse_grade(doc)
            if grade is not None:
                grades_by_subject.setdefault(_subject_ref(doc), []).append(grade)

        subjects = []
        for doc in subject_docs:
            subject_id = clean_str(doc.get('subjectid') or doc.get('id') or doc.get(DOCUMENT_ID_FIELD))
            subject = parse_subject(doc, grades_by_subject.get(subject_id, []))
            if subject is not None:
                subjects.append(subject)
        return subjects

    async def push_subjects(self, subjects: List[Subject]) -> None:
        """
        Приводит удаленные коллекции к локальному списку целиком:
        новые документы создаются, измененные обновляются, лишние удаляются.
        """
        subject_docs, grade_docs = await self._list_both()
        remote_subjects = {clean_str(d.get('subjectid') or d.get('id')): d for d in subject_docs}
        remote_grades = {clean_str(d.get('gradeid') or d.get('id')): d for d in grade_docs}

        local_grade_ids = set()
        for subject in subjects:
            data = {'userId': self.user_id, 'subjectid': subject.id, 'name': subject.name}
            doc = remote_subjects.get(subject.id)
            if doc is None:
                await self.store.create_document(self.subjects_collection, data)
            elif doc.get('name') != subject.name:
                await self.store.update_document(self.subjects_collection, doc[DOCUMENT_ID_FIELD], data)

            for grade in subject.grades:
                local_grade_ids.add(grade.id)
                grade_data = {'userId': self.user_id, 'subjectId': subject.id, 'gradeid': grade.id,
                              'value': grade.value, 'type': grade.type, 'date': grade.date, 'weight': grade.weight}
                grade_doc = remote_grades.get(grade.id)
                if grade_doc is None:
                    await self.store.create_document(self.grades_collection, grade_data)
                elif any(grade_doc.get(k) != v for k, v in grade_data.items()):
                    await self.store.update_document(self.grades_collection, grade_doc[DOCUMENT_ID_FIELD], grade_data)

        local_subject_ids = {s.id for s in subjects}
        for subject_id, doc in remote_subjects.items():
            if subject_id not in local_subject_ids:
                await self.store.delete_document(self.subjects_collection, doc[DOCUMENT_ID_FIELD])
        for grade_id, doc in remote_grades.items():
            if grade_id not in local_grade_ids:
                await self.store.delete_document(self.grades_collection, doc[DOCUMENT_ID_FIELD])


class SubjectsService:
    """
    Предметы и оценки поверх синхронизатора (снимок 'gradeCalculator').
    Без удаленной синхронизации источником данных служит сам снимок.
    """

    def __init__(self, repository: Optional[SubjectsRepository] = None,
                 reconciler: Optional[SyncReconciler] = None):
        self.repository = repository or SubjectsRepository()
        self.reconciler = reconciler or SyncReconciler()
        remote = self.reconciler.remote_sync_enabled
        self.reconciler.register(Resource(
            name=SUBJECTS_RESOURCE,
            storage_key=SUBJECTS_STORAGE_KEY,
            fetch=self.repository.fetch_subjects if remote else self._fetch_local,
            encode=encode_subjects,
            decode=decode_subjects,
            fallback=lambda reason: [],
            push=self.repository.push_subjects if remote else None,
        ))

    async def _fetch_local(self) -> List[Subject]:
        return self.reconciler.peek(SUBJECTS_RESOURCE) or []

    async def get_subjects(self, force_refresh: bool = False) -> List[Subject]:
        subjects = await self.reconciler.get(SUBJECTS_RESOURCE, force_refresh=force_refresh)
        return [replace(s, grades=list(s.grades)) for s in subjects or []]

    async def add_subject(self, name: str) -> Subject:
        name = clean_str(name)
        if not name:
            raise ValueError("Название предмета не может быть пустым")
        subjects = await self.get_subjects()
        subject = Subject(id=uuid.uuid4().hex, name=name)
        self.reconciler.put(SUBJECTS_RESOURCE, subjects + [subject])
        log.info(f"Добавлен предмет '{name}' ({subject.id})")
        return subject

    async def delete_subject(self, subject_id: str) -> bool:
        subjects = await self.get_subjects()
        remaining = [s for s in subjects if s.id != subject_id]
        if len(remaining) == len(subjects):
            log.error(f"Предмет с ID {subject_id} не найден")
            return False
        self.reconciler.put(SUBJECTS_RESOURCE, remaining)
        return True

    async def add_grade(self, subject_id: str, value: Any, grade_type: str = '',
                        grade_date: Optional[str] = None, weight: Any = DEFAULT_GRADE_WEIGHT) -> Optional[Grade]:
        subjects = await self.get_subjects()
        subject = next((s for s in subjects if s.id == subject_id), None)
        if subject is None:
            log.error(f"Предмет с ID {subject_id} не найден")
            return None

        grade = Grade(
            id=uuid.uuid4().hex,
            value=coerce_float(value, DEFAULT_GRADE_VALUE),
            type=clean_str(grade_type),
            date=grade_date or date_cls.today().isoformat(),
            weight=coerce_float(weight, DEFAULT_GRADE_WEIGHT),
        )
        subject.grades.append(grade)
        self.reconciler.put(SUBJECTS_RESOURCE, subjects)
        return grade

    async def delete_grade(self, subject_id: str, grade_id: str) -> bool:
        subjects = await self.get_subjects()
        subject = next((s for s in subjects if s.id == subject_id), None)
        if subject is None:
            log.error(f"Предмет с ID {subject_id} не найден")
            return False

        remaining = [g for g in subject.grades if g.id != grade_id]
        if len(remaining) == len(subject.grades):
            log.error(f"Оценка {grade_id} у предмета {subject_id} не найдена")
            return False
        subject.grades = remaining
        self.reconciler.put(SUBJECTS_RESOURCE, subjects)
        return True
