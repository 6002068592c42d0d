"""
Adaptateur de stockage du moteur de présence.

- AttendanceStore : contrat consommé par le moteur (élèves, formules, présences)
- SqlAttendanceStore : implémentation SQLAlchemy (PostgreSQL, SQLite en dev)

Règle centrale : au plus une ligne par (élève, jour). Elle est garantie par la
contrainte UNIQUE de la table et par un upsert atomique
(INSERT ... ON CONFLICT DO UPDATE), jamais par un "SELECT puis INSERT".

Toute erreur SQLAlchemy est convertie en StorageError après rollback ;
aucune nouvelle tentative n'est faite ici.
"""

import datetime as dt
import functools
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Protocol, Set

from fastapi import Depends
from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import SessionLocal, get_db
from app.models.attendance import AttendanceRecord
from app.models.plan import Plan
from app.models.student import Student
from app.schemas.attendance import ActiveStudent, AttendanceRecordResponse, StudentProfile
from app.schemas.meal import Meal

logger = logging.getLogger(__name__)

ALL_MEALS_KEYWORD = "all"


class StorageError(Exception):
    """Échec de la couche de persistance (seul cas potentiellement transitoire)."""


def parse_meal_list(text: Optional[str]) -> Set[Meal]:
    """
    Convertit la liste de repas saisie en texte libre en ensemble de repas.

    "Breakfast, Lunch" → {BREAKFAST, LUNCH} ; "All" → les trois repas.
    Insensible à la casse ; les valeurs inconnues sont ignorées.
    """
    meals: Set[Meal] = set()
    for part in (text or "").split(","):
        token = part.strip().lower()
        if not token:
            continue
        if token == ALL_MEALS_KEYWORD:
            return set(Meal)
        try:
            meals.add(Meal(token))
        except ValueError:
            logger.debug("Repas inconnu ignoré dans la formule : %r", part)
    return meals


class AttendanceStore(Protocol):
    def get_student_by_id(self, student_id: int) -> Optional[StudentProfile]:
        raise NotImplementedError

    def get_student_by_user_id(self, user_id: str) -> Optional[StudentProfile]:
        raise NotImplementedError

    def get_plan_meals(self, plan_id: Optional[int]) -> Set[Meal]:
        raise NotImplementedError

    def find_record(self, student_id: int, record_date: dt.date) -> Optional[AttendanceRecordResponse]:
        raise NotImplementedError

    def get_record(self, record_id: int) -> Optional[AttendanceRecordResponse]:
        raise NotImplementedError

    def upsert_record(
        self,
        student_id: int,
        record_date: dt.date,
        flags: Dict[Meal, bool],
        *,
        now: datetime,
        scanned_at: Optional[datetime] = None,
        only_if_unset: Optional[Meal] = None,
    ) -> Optional[AttendanceRecordResponse]:
        """
        Crée ou met à jour atomiquement la ligne (student_id, record_date).

        - Création : repas non fournis à False, scanned_at = `scanned_at`
        - Mise à jour : seuls les repas de `flags` et updated_at changent,
          scanned_at n'est jamais réécrit
        - only_if_unset : compare-and-set, la mise à jour n'a lieu que si ce repas
          est encore à False ; sinon rien n'est écrit et None est retourné
        """
        raise NotImplementedError

    def update_record(
        self, record_id: int, flags: Dict[Meal, bool], *, now: datetime
    ) -> Optional[AttendanceRecordResponse]:
        raise NotImplementedError

    def delete_record(self, record_id: int) -> bool:
        raise NotImplementedError

    def list_records_for_date(self, record_date: dt.date) -> List[AttendanceRecordResponse]:
        raise NotImplementedError

    def list_records_for_student(
        self, student_id: int, start: dt.date, end: dt.date
    ) -> List[AttendanceRecordResponse]:
        """Lignes de l'élève entre start et end (inclus), de la plus récente à la plus ancienne."""
        raise NotImplementedError

    def list_active_students(self, day: dt.date) -> List[ActiveStudent]:
        raise NotImplementedError


def _storage_errors(method):
    """Convertit les erreurs SQLAlchemy en StorageError (après rollback de la session)."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Erreur de stockage (%s) : %s", method.__name__, exc)
            raise StorageError(str(exc)) from exc

    return wrapper


class SqlAttendanceStore:
    """Implémentation SQLAlchemy du contrat AttendanceStore (une session par instance)."""

    def __init__(self, db: Session):
        self.db = db

    @_storage_errors
    def get_student_by_id(self, student_id: int) -> Optional[StudentProfile]:
        student = self.db.get(Student, student_id)
        return StudentProfile.model_validate(student) if student else None

    @_storage_errors
    def get_student_by_user_id(self, user_id: str) -> Optional[StudentProfile]:
        student = self.db.execute(
            select(Student).where(Student.user_id == user_id)
        ).scalar()
        return StudentProfile.model_validate(student) if student else None

    @_storage_errors
    def get_plan_meals(self, plan_id: Optional[int]) -> Set[Meal]:
        if plan_id is None:
            return set()
        plan = self.db.get(Plan, plan_id)
        return parse_meal_list(plan.meals) if plan else set()

    @_storage_errors
    def find_record(self, student_id: int, record_date: dt.date) -> Optional[AttendanceRecordResponse]:
        record = self.db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.student_id == student_id,
                AttendanceRecord.date == record_date,
            )
        ).scalar()
        return AttendanceRecordResponse.model_validate(record) if record else None

    @_storage_errors
    def get_record(self, record_id: int) -> Optional[AttendanceRecordResponse]:
        record = self.db.get(AttendanceRecord, record_id)
        return AttendanceRecordResponse.model_validate(record) if record else None

    @_storage_errors
    def upsert_record(
        self,
        student_id: int,
        record_date: dt.date,
        flags: Dict[Meal, bool],
        *,
        now: datetime,
        scanned_at: Optional[datetime] = None,
        only_if_unset: Optional[Meal] = None,
    ) -> Optional[AttendanceRecordResponse]:
        values = {
            "student_id": student_id,
            "date": record_date,
            "breakfast": False,
            "lunch": False,
            "dinner": False,
            "scanned_at": scanned_at,
            "updated_at": now,
        }
        values.update({meal.value: present for meal, present in flags.items()})

        stmt = self._insert()(AttendanceRecord).values(**values)
        # scanned_at volontairement absent du SET : seule la création le renseigne
        changes = {meal.value: stmt.excluded[meal.value] for meal in flags}
        changes["updated_at"] = stmt.excluded.updated_at

        condition = None
        if only_if_unset is not None:
            condition = AttendanceRecord.__table__.c[only_if_unset.value].is_(False)

        stmt = (
            stmt.on_conflict_do_update(
                index_elements=["student_id", "date"],
                set_=changes,
                where=condition,
            )
            .returning(AttendanceRecord)
            .execution_options(populate_existing=True)
        )

        row = self.db.scalars(stmt).first()
        record = AttendanceRecordResponse.model_validate(row) if row else None
        self.db.commit()
        return record

    @_storage_errors
    def update_record(
        self, record_id: int, flags: Dict[Meal, bool], *, now: datetime
    ) -> Optional[AttendanceRecordResponse]:
        changes = {meal.value: present for meal, present in flags.items()}
        row = self.db.scalars(
            update(AttendanceRecord)
            .where(AttendanceRecord.id == record_id)
            .values(**changes, updated_at=now)
            .returning(AttendanceRecord)
            .execution_options(populate_existing=True)
        ).first()
        record = AttendanceRecordResponse.model_validate(row) if row else None
        self.db.commit()
        return record

    @_storage_errors
    def delete_record(self, record_id: int) -> bool:
        result = self.db.execute(
            delete(AttendanceRecord).where(AttendanceRecord.id == record_id)
        )
        self.db.commit()
        return result.rowcount > 0

    @_storage_errors
    def list_records_for_date(self, record_date: dt.date) -> List[AttendanceRecordResponse]:
        records = self.db.execute(
            select(AttendanceRecord).where(AttendanceRecord.date == record_date)
        ).scalars().all()
        return [AttendanceRecordResponse.model_validate(r) for r in records]

    @_storage_errors
    def list_records_for_student(
        self, student_id: int, start: dt.date, end: dt.date
    ) -> List[AttendanceRecordResponse]:
        records = self.db.execute(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.student_id == student_id,
                AttendanceRecord.date >= start,
                AttendanceRecord.date <= end,
            )
            .order_by(AttendanceRecord.date.desc())
        ).scalars().all()
        return [AttendanceRecordResponse.model_validate(r) for r in records]

    @_storage_errors
    def list_active_students(self, day: dt.date) -> List[ActiveStudent]:
        rows = self.db.execute(
            select(Student, Plan)
            .outerjoin(Plan, Plan.id == Student.plan_id)
            .where(
                Student.is_active.is_(True),
                Student.join_date <= day,
                Student.end_date >= day,
            )
            .order_by(Student.name)
        ).all()
        return [
            ActiveStudent(
                id=student.id,
                name=student.name,
                roll_number=student.roll_number,
                meals=frozenset(parse_meal_list(plan.meals if plan else None)),
            )
            for student, plan in rows
        ]

    def _insert(self):
        """INSERT spécifique au dialecte (ON CONFLICT existe en PostgreSQL et SQLite)."""
        if self.db.get_bind().dialect.name == "sqlite":
            return sqlite_insert
        return pg_insert


def get_store(db: Session = Depends(get_db)) -> SqlAttendanceStore:
    """Dépendance FastAPI : adaptateur de stockage lié à la session de la requête."""
    return SqlAttendanceStore(db)


@contextmanager
def session_store() -> Iterator[SqlAttendanceStore]:
    """Ouvre une session dédiée (marquage groupé, tâches planifiées) et la ferme après usage."""
    db = SessionLocal()
    try:
        yield SqlAttendanceStore(db)
    finally:
        db.close()
