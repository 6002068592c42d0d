"""
Configuration partagée pour tous les tests.
Override la dépendance get_db pour éviter toute connexion réelle à PostgreSQL,
et fournit un stockage en mémoire + une horloge figée pour les tests du moteur.
"""

import datetime as dt
import threading
from datetime import datetime
from typing import Dict, List, Optional, Set
from unittest.mock import MagicMock, patch
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.main import app
from app.schemas.attendance import ActiveStudent, AttendanceRecordResponse, StudentProfile
from app.schemas.meal import Meal, MealWindow
from app.services.attendance_store import parse_meal_list
from app.services.clock import Clock

TZ = "Asia/Kolkata"
TODAY = dt.date(2026, 3, 10)


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée (scheduler désactivé)."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with patch("app.main.start_scheduler"), patch("app.main.stop_scheduler"):
        with TestClient(app) as c:
            yield c
    app.dependency_overrides.clear()


# ----------------------------------------------------------------
# Stockage en mémoire (même contrat que SqlAttendanceStore)
# ----------------------------------------------------------------

class InMemoryAttendanceStore:
    """
    Double de test du stockage. Le verrou reproduit l'atomicité de l'upsert
    SQL (ON CONFLICT) pour les tests concurrents.
    """

    def __init__(self):
        self.students: Dict[int, StudentProfile] = {}
        self.plans: Dict[int, str] = {}
        self.records: Dict[int, AttendanceRecordResponse] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    # --- Données de test ---

    def add_student(
        self,
        student_id: int,
        meals: str = "Breakfast, Lunch, Dinner",
        join_date: dt.date = dt.date(2026, 1, 1),
        end_date: dt.date = dt.date(2026, 12, 31),
        is_active: bool = True,
        user_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> StudentProfile:
        self.plans[student_id] = meals
        student = StudentProfile(
            id=student_id,
            user_id=user_id or f"user-{student_id}",
            name=name or f"Élève {student_id}",
            roll_number=f"R{student_id:03d}",
            plan_id=student_id,
            join_date=join_date,
            end_date=end_date,
            is_active=is_active,
        )
        self.students[student_id] = student
        return student

    # --- Contrat AttendanceStore ---

    def get_student_by_id(self, student_id: int) -> Optional[StudentProfile]:
        return self.students.get(student_id)

    def get_student_by_user_id(self, user_id: str) -> Optional[StudentProfile]:
        return next((s for s in self.students.values() if s.user_id == user_id), None)

    def get_plan_meals(self, plan_id: Optional[int]) -> Set[Meal]:
        return parse_meal_list(self.plans.get(plan_id))

    def find_record(self, student_id: int, record_date: dt.date) -> Optional[AttendanceRecordResponse]:
        with self._lock:
            return next(
                (r for r in self.records.values() if r.student_id == student_id and r.date == record_date),
                None,
            )

    def get_record(self, record_id: int) -> Optional[AttendanceRecordResponse]:
        return self.records.get(record_id)

    def upsert_record(self, student_id, record_date, flags, *, now, scanned_at=None, only_if_unset=None):
        with self._lock:
            existing = self.find_record(student_id, record_date)
            if existing is None:
                values = {"breakfast": False, "lunch": False, "dinner": False}
                values.update({m.value: v for m, v in flags.items()})
                record = AttendanceRecordResponse(
                    id=self._next_id,
                    student_id=student_id,
                    date=record_date,
                    scanned_at=scanned_at,
                    updated_at=now,
                    **values,
                )
                self._next_id += 1
            else:
                if only_if_unset is not None and existing.has_meal(only_if_unset):
                    return None
                record = existing.model_copy(
                    update={**{m.value: v for m, v in flags.items()}, "updated_at": now}
                )
            self.records[record.id] = record
            return record

    def update_record(self, record_id, flags, *, now):
        with self._lock:
            existing = self.records.get(record_id)
            if existing is None:
                return None
            record = existing.model_copy(
                update={**{m.value: v for m, v in flags.items()}, "updated_at": now}
            )
            self.records[record_id] = record
            return record

    def delete_record(self, record_id: int) -> bool:
        with self._lock:
            return self.records.pop(record_id, None) is not None

    def list_records_for_date(self, record_date: dt.date) -> List[AttendanceRecordResponse]:
        with self._lock:
            return [r for r in self.records.values() if r.date == record_date]

    def list_records_for_student(self, student_id: int, start: dt.date, end: dt.date) -> List[AttendanceRecordResponse]:
        with self._lock:
            records = [
                r for r in self.records.values()
                if r.student_id == student_id and start <= r.date <= end
            ]
        return sorted(records, key=lambda r: r.date, reverse=True)

    def list_active_students(self, day: dt.date) -> List[ActiveStudent]:
        return [
            ActiveStudent(
                id=s.id,
                name=s.name,
                roll_number=s.roll_number,
                meals=frozenset(self.get_plan_meals(s.plan_id)),
            )
            for s in sorted(self.students.values(), key=lambda s: s.name)
            if s.is_active_on(day)
        ]


# ----------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------

def make_clock(hour: int, minute: int = 0, day: dt.date = TODAY) -> Clock:
    """Horloge figée à l'heure locale donnée (fuseau de la cantine)."""
    instant = datetime(day.year, day.month, day.day, hour, minute, tzinfo=ZoneInfo(TZ))
    return Clock(TZ, now_fn=lambda: instant)


@pytest.fixture
def store():
    return InMemoryAttendanceStore()


@pytest.fixture
def clock_at():
    """Fabrique d'horloges figées : clock_at(8, 15) → 08:15 heure locale."""
    return make_clock


@pytest.fixture
def windows():
    """Fenêtres par défaut : 07:30–10:30, 12:30–15:30, 19:30–22:30, tolérance 30 min."""
    return [
        MealWindow(meal=Meal.BREAKFAST, normal_start=dt.time(7, 30), normal_end=dt.time(10, 30), grace_period_minutes=30),
        MealWindow(meal=Meal.LUNCH, normal_start=dt.time(12, 30), normal_end=dt.time(15, 30), grace_period_minutes=30),
        MealWindow(meal=Meal.DINNER, normal_start=dt.time(19, 30), normal_end=dt.time(22, 30), grace_period_minutes=30),
    ]
