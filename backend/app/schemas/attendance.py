"""
Schémas Pydantic du moteur de présence aux repas.

Les échecs métier (élève introuvable, repas hors formule…) ne sont jamais
levés en exception : ils sont renvoyés comme valeurs (AttendanceResult),
pour que l'API comme le marquage groupé puissent brancher dessus sans try/except.
"""

import datetime as dt
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from app.schemas.meal import Meal


class MarkSource(str, Enum):
    MANUAL = "MANUAL"  # Admin (écran présences, marquage groupé)
    SCAN = "SCAN"      # QR code scanné par l'élève


class FailureKind(str, Enum):
    STUDENT_NOT_FOUND = "StudentNotFound"
    STUDENT_INACTIVE = "StudentInactive"
    PLAN_NOT_STARTED = "PlanNotStarted"
    PLAN_EXPIRED = "PlanExpired"
    NOT_ELIGIBLE = "NotEligible"
    RECORD_NOT_FOUND = "RecordNotFound"
    NO_FIELDS_PROVIDED = "NoFieldsProvided"
    INVALID_QR_CODE = "InvalidQRCode"
    NO_ACTIVE_MEAL_WINDOW = "NoActiveMealWindow"
    STORAGE_ERROR = "StorageError"


class StudentProfile(BaseModel):
    """Vue de l'élève telle que fournie par le collaborateur de stockage."""
    id: int
    user_id: Optional[str] = None
    name: str = ""
    roll_number: Optional[str] = None
    plan_id: Optional[int] = None
    join_date: dt.date
    end_date: dt.date
    is_active: bool = True

    model_config = {"from_attributes": True}

    def is_active_on(self, day: dt.date) -> bool:
        """Actif ce jour-là : flag is_active ET date dans [join_date, end_date]."""
        return self.is_active and self.join_date <= day <= self.end_date


class ActiveStudent(BaseModel):
    """Élève actif à une date donnée, avec les repas de sa formule déjà normalisés."""
    id: int
    name: str = ""
    roll_number: Optional[str] = None
    meals: FrozenSet[Meal] = frozenset()


class AttendanceRecordResponse(BaseModel):
    """Ligne de présence d'un élève pour une journée (trois repas)."""
    id: int
    student_id: int
    date: dt.date
    breakfast: bool = False
    lunch: bool = False
    dinner: bool = False
    scanned_at: Optional[datetime] = None
    updated_at: datetime

    model_config = {"from_attributes": True}

    def has_meal(self, meal: Meal) -> bool:
        return bool(getattr(self, meal.value))


class AttendanceFailure(BaseModel):
    kind: FailureKind
    message: str


class AttendanceResult(BaseModel):
    """Résultat d'une opération du moteur : succès (avec la ligne) ou échec typé."""
    ok: bool
    record: Optional[AttendanceRecordResponse] = None
    failure: Optional[AttendanceFailure] = None
    already_set: bool = False  # Repas déjà marqué présent : rien n'a été écrit

    @classmethod
    def success(
        cls, record: Optional[AttendanceRecordResponse] = None, already_set: bool = False
    ) -> "AttendanceResult":
        return cls(ok=True, record=record, already_set=already_set)

    @classmethod
    def fail(cls, kind: FailureKind, message: str) -> "AttendanceResult":
        return cls(ok=False, failure=AttendanceFailure(kind=kind, message=message))


class MarkMealRequest(BaseModel):
    """Corps de POST /api/v1/attendance/mark."""
    student_id: int
    date: dt.date
    meal: Meal
    present: bool = True


class AttendancePatch(BaseModel):
    """Corps de PATCH /api/v1/attendance/{id} : seuls les repas fournis sont modifiés."""
    breakfast: Optional[bool] = None
    lunch: Optional[bool] = None
    dinner: Optional[bool] = None

    def flags(self) -> Dict[Meal, bool]:
        values = self.model_dump(exclude_none=True)
        return {Meal(meal): value for meal, value in values.items()}


class BulkMarkRequest(BaseModel):
    """Corps de POST /api/v1/attendance/bulk."""
    student_ids: List[int] = Field(min_length=1, max_length=500)
    date: dt.date
    meal: Meal
    present: bool = True


class BulkFailure(BaseModel):
    student_id: int
    reason: FailureKind
    message: str


class BulkMarkResult(BaseModel):
    """Rapport du marquage groupé : succès comptés, échecs détaillés par élève."""
    success_count: int
    failures: List[BulkFailure]


class MealStats(BaseModel):
    present: int
    eligible_total: int
    percentage: int


class AttendanceStats(BaseModel):
    """Statistiques d'une journée, par repas."""
    date: dt.date
    breakfast: MealStats
    lunch: MealStats
    dinner: MealStats
    attendance_percentage: int  # élèves ayant au moins un repas / élèves actifs

    def for_meal(self, meal: Meal) -> MealStats:
        return getattr(self, meal.value)


class StudentMealAttendance(BaseModel):
    """Ligne de l'écran présences : un élève et ses trois repas du jour."""
    student_id: int
    record_id: Optional[int] = None
    name: str
    roll_number: Optional[str]
    plan_meals: List[Meal]
    breakfast: bool = False
    lunch: bool = False
    dinner: bool = False
    scanned_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AttendanceView(BaseModel):
    """Présents / absents d'un repas (élèves éligibles uniquement)."""
    date: dt.date
    meal: Meal
    stats: AttendanceStats
    present: List[StudentMealAttendance]
    missing: List[StudentMealAttendance]


class CurrentMealStatus(BaseModel):
    """Bandeau "repas en cours" du tableau de bord admin."""
    meal: Optional[Meal]
    time_window: str
    present: int
    total: int
    percentage: int


class HistoryRange(str, Enum):
    WEEK = "week"    # 7 derniers jours + aujourd'hui
    MONTH = "month"  # depuis le 1er du mois
    ALL = "all"      # 90 derniers jours


class DayMeals(BaseModel):
    """Repas marqués d'un élève pour un jour donné."""
    date: dt.date
    breakfast: bool = False
    lunch: bool = False
    dinner: bool = False

    def meal_count(self) -> int:
        return int(self.breakfast) + int(self.lunch) + int(self.dinner)


class StudentAttendanceHistory(BaseModel):
    """Onglet présences de l'élève : repas du jour et historique sur une période."""
    student_id: int
    range: HistoryRange
    start_date: dt.date
    end_date: dt.date
    today: DayMeals
    records: List[DayMeals]  # du plus récent au plus ancien
    days_present: int        # jours avec au moins un repas marqué
    meals_attended: int


class AttendanceTrend(BaseModel):
    """Fréquentation globale (tous repas confondus) d'aujourd'hui comparée à hier."""
    today_percentage: int
    yesterday_percentage: int
    difference: int
