"""
Moteur de présence aux repas : marquage, correction, suppression, statistiques.

Toutes les opérations d'écriture renvoient un AttendanceResult (succès ou échec
typé) au lieu de lever une exception. Règles communes :
- l'éligibilité est recalculée à chaque appel depuis la formule *actuelle* de l'élève
  (elle peut changer entre deux appels), jamais mise en cache
- marquer présent un repas hors formule est refusé ; marquer absent est toujours permis
- la ligne (élève, jour) est créée à la volée par un upsert atomique ;
  scanned_at n'est posé qu'à la création par un scan QR
"""

import datetime as dt
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from app.schemas.attendance import (
    AttendanceResult,
    AttendanceStats,
    AttendanceTrend,
    AttendanceView,
    CurrentMealStatus,
    DayMeals,
    FailureKind,
    HistoryRange,
    MarkSource,
    MealStats,
    StudentAttendanceHistory,
    StudentMealAttendance,
)
from app.schemas.meal import Meal, MealWindow
from app.services.attendance_store import AttendanceStore, StorageError
from app.services.clock import Clock
from app.services.eligibility import is_eligible
from app.services.meal_window_service import format_window, get_window, resolve_meal

logger = logging.getLogger(__name__)

MEAL_LABELS = {
    Meal.BREAKFAST: "petit-déjeuner",
    Meal.LUNCH: "déjeuner",
    Meal.DINNER: "dîner",
}


def _storage_failure(exc: StorageError) -> AttendanceResult:
    return AttendanceResult.fail(
        FailureKind.STORAGE_ERROR,
        f"Erreur de stockage, réessayez plus tard : {exc}",
    )


def mark_meal(
    store: AttendanceStore,
    student_id: int,
    record_date: dt.date,
    meal: Meal,
    present: bool,
    source: MarkSource,
    *,
    clock: Clock,
) -> AttendanceResult:
    """
    Marque (ou démarque) un repas pour un élève à une date donnée.

    Étapes :
    1. Élève introuvable → StudentNotFound
    2. Élève inactif à cette date → StudentInactive
    3. present=True et repas hors formule → NotEligible
    4. Upsert atomique de la ligne (élève, jour) : seul ce repas est modifié
    5. scanned_at = maintenant uniquement si source=SCAN et ligne nouvellement créée

    Idempotent : un second appel identique réussit et laisse la ligne inchangée.
    Si le repas était déjà marqué présent, rien n'est écrit et `already_set` vaut True.
    """
    try:
        student = store.get_student_by_id(student_id)
        if student is None:
            return AttendanceResult.fail(
                FailureKind.STUDENT_NOT_FOUND, f"Élève {student_id} introuvable."
            )
        if not student.is_active_on(record_date):
            return AttendanceResult.fail(
                FailureKind.STUDENT_INACTIVE,
                f"L'élève {student_id} n'est pas actif le {record_date.isoformat()}.",
            )

        if present:
            plan_meals = store.get_plan_meals(student.plan_id)
            if not is_eligible(plan_meals, meal):
                return AttendanceResult.fail(
                    FailureKind.NOT_ELIGIBLE,
                    f"La formule de l'élève {student_id} n'inclut pas le {MEAL_LABELS[meal]}.",
                )

        now = clock.now()
        record = store.upsert_record(
            student_id,
            record_date,
            {meal: present},
            now=now,
            scanned_at=now if source == MarkSource.SCAN else None,
            # Compare-and-set : un repas déjà présent n'est pas réécrit
            only_if_unset=meal if present else None,
        )
        already_set = record is None
        if already_set:
            record = store.find_record(student_id, record_date)
    except StorageError as exc:
        return _storage_failure(exc)

    logger.info(
        "Présence %s élève=%s date=%s repas=%s → %s%s",
        source.value, student_id, record_date, meal.value, present,
        " (déjà marqué)" if already_set else "",
    )
    return AttendanceResult.success(record, already_set=already_set)


def update_record(
    store: AttendanceStore,
    record_id: int,
    patch: Dict[Meal, bool],
    *,
    clock: Clock,
) -> AttendanceResult:
    """
    Modifie plusieurs repas d'une ligne existante en une seule écriture.

    Chaque repas passé à True est revalidé contre la formule actuelle de l'élève
    de la ligne. Ne touche jamais scanned_at.
    """
    if not patch:
        return AttendanceResult.fail(
            FailureKind.NO_FIELDS_PROVIDED, "Aucun repas à modifier n'a été fourni."
        )

    try:
        record = store.get_record(record_id)
        if record is None:
            return AttendanceResult.fail(
                FailureKind.RECORD_NOT_FOUND, f"Présence {record_id} introuvable."
            )

        if any(patch.values()):
            student = store.get_student_by_id(record.student_id)
            if student is None:
                return AttendanceResult.fail(
                    FailureKind.STUDENT_NOT_FOUND, f"Élève {record.student_id} introuvable."
                )
            plan_meals = store.get_plan_meals(student.plan_id)
            for meal, present in patch.items():
                if present and not is_eligible(plan_meals, meal):
                    return AttendanceResult.fail(
                        FailureKind.NOT_ELIGIBLE,
                        f"La formule de l'élève {record.student_id} n'inclut pas le {MEAL_LABELS[meal]}.",
                    )

        updated = store.update_record(record_id, patch, now=clock.now())
    except StorageError as exc:
        return _storage_failure(exc)

    # Ligne supprimée entre la lecture et l'écriture
    if updated is None:
        return AttendanceResult.fail(
            FailureKind.RECORD_NOT_FOUND, f"Présence {record_id} introuvable."
        )

    logger.info(
        "Présence %s modifiée : %s",
        record_id, ", ".join(f"{m.value}={v}" for m, v in patch.items()),
    )
    return AttendanceResult.success(updated)


def delete_record(store: AttendanceStore, record_id: int) -> AttendanceResult:
    """
    Supprime entièrement une ligne de présence.
    Une seconde suppression renvoie RecordNotFound : l'appelant peut distinguer
    la première suppression d'une nouvelle tentative.
    """
    try:
        deleted = store.delete_record(record_id)
    except StorageError as exc:
        return _storage_failure(exc)

    if not deleted:
        return AttendanceResult.fail(
            FailureKind.RECORD_NOT_FOUND, f"Présence {record_id} introuvable ou déjà supprimée."
        )
    logger.info("Présence %s supprimée", record_id)
    return AttendanceResult.success()


def _percentage(present: int, total: int) -> int:
    """Pourcentage arrondi à l'entier le plus proche (.5 vers le haut), 0 si total nul."""
    if total <= 0:
        return 0
    return (200 * present + total) // (2 * total)


def get_stats(store: AttendanceStore, day: dt.date) -> AttendanceStats:
    """
    Statistiques d'une journée.

    Par repas :
    - eligible_total : élèves actifs ce jour dont la formule inclut le repas
    - present : lignes de présence où ce repas est marqué
    attendance_percentage : élèves avec au moins un repas marqué / élèves actifs.

    Lève StorageError si la lecture échoue.
    """
    students = store.list_active_students(day)
    records = store.list_records_for_date(day)

    per_meal = {}
    for meal in Meal:
        present = sum(1 for r in records if r.has_meal(meal))
        eligible = sum(1 for s in students if meal in s.meals)
        per_meal[meal.value] = MealStats(
            present=present,
            eligible_total=eligible,
            percentage=_percentage(present, eligible),
        )

    active_ids = {s.id for s in students}
    with_attendance = sum(
        1 for r in records
        if r.student_id in active_ids and (r.breakfast or r.lunch or r.dinner)
    )

    return AttendanceStats(
        date=day,
        attendance_percentage=_percentage(with_attendance, len(students)),
        **per_meal,
    )


def get_attendance_view(store: AttendanceStore, day: dt.date, meal: Meal) -> AttendanceView:
    """
    Écran présences d'un repas : élèves actifs et éligibles, séparés en présents
    et absents, triés par nom. Les élèves dont la formule n'inclut pas le repas
    n'apparaissent dans aucune des deux listes.
    """
    students = store.list_active_students(day)
    records = {r.student_id: r for r in store.list_records_for_date(day)}

    present: List[StudentMealAttendance] = []
    missing: List[StudentMealAttendance] = []
    for student in students:
        if meal not in student.meals:
            continue
        record = records.get(student.id)
        row = StudentMealAttendance(
            student_id=student.id,
            record_id=record.id if record else None,
            name=student.name,
            roll_number=student.roll_number,
            plan_meals=[m for m in Meal if m in student.meals],
            breakfast=record.breakfast if record else False,
            lunch=record.lunch if record else False,
            dinner=record.dinner if record else False,
            scanned_at=record.scanned_at if record else None,
            updated_at=record.updated_at if record else None,
        )
        if record and record.has_meal(meal):
            present.append(row)
        else:
            missing.append(row)

    return AttendanceView(
        date=day,
        meal=meal,
        stats=get_stats(store, day),
        present=present,
        missing=missing,
    )


def get_current_meal_status(
    store: AttendanceStore,
    clock: Clock,
    windows: Sequence[MealWindow],
) -> CurrentMealStatus:
    """Repas en cours (selon l'heure locale) et sa fréquentation du jour."""
    now = clock.now()
    meal = resolve_meal(now, windows)
    if meal is None:
        return CurrentMealStatus(meal=None, time_window="", present=0, total=0, percentage=0)

    meal_stats = get_stats(store, clock.local_date(now)).for_meal(meal)
    window = get_window(meal, windows)
    return CurrentMealStatus(
        meal=meal,
        time_window=format_window(window) if window else "",
        present=meal_stats.present,
        total=meal_stats.eligible_total,
        percentage=meal_stats.percentage,
    )


# Profondeur de l'historique "tout" (jours)
ALL_HISTORY_DAYS = 90


def history_bounds(history_range: HistoryRange, today: dt.date) -> Tuple[dt.date, dt.date]:
    """Bornes (incluses) de la période d'historique, calculées depuis la date locale."""
    if history_range == HistoryRange.WEEK:
        return today - dt.timedelta(days=7), today
    if history_range == HistoryRange.MONTH:
        return today.replace(day=1), today
    return today - dt.timedelta(days=ALL_HISTORY_DAYS), today


def get_student_history(
    store: AttendanceStore,
    student_id: int,
    history_range: HistoryRange,
    *,
    clock: Clock,
) -> Optional[StudentAttendanceHistory]:
    """
    Onglet présences d'un élève : repas marqués aujourd'hui et historique
    de la période (semaine, mois, 90 jours).
    Retourne None si l'élève n'existe pas ; lève StorageError si la lecture échoue.
    """
    if store.get_student_by_id(student_id) is None:
        return None

    today = clock.local_date()
    start, end = history_bounds(history_range, today)
    records = [
        DayMeals(date=r.date, breakfast=r.breakfast, lunch=r.lunch, dinner=r.dinner)
        for r in store.list_records_for_student(student_id, start, end)
    ]
    today_meals = next((r for r in records if r.date == today), DayMeals(date=today))

    return StudentAttendanceHistory(
        student_id=student_id,
        range=history_range,
        start_date=start,
        end_date=end,
        today=today_meals,
        records=records,
        days_present=sum(1 for r in records if r.meal_count() > 0),
        meals_attended=sum(r.meal_count() for r in records),
    )


def _overall_percentage(stats: AttendanceStats) -> int:
    """Repas servis / repas attendus, tous repas confondus."""
    per_meal = [stats.for_meal(meal) for meal in Meal]
    return _percentage(
        sum(s.present for s in per_meal),
        sum(s.eligible_total for s in per_meal),
    )


def get_attendance_trend(store: AttendanceStore, clock: Clock) -> AttendanceTrend:
    """Fréquentation d'aujourd'hui comparée à celle d'hier (jours locaux)."""
    today = clock.local_date()
    today_pct = _overall_percentage(get_stats(store, today))
    yesterday_pct = _overall_percentage(get_stats(store, today - dt.timedelta(days=1)))
    return AttendanceTrend(
        today_percentage=today_pct,
        yesterday_percentage=yesterday_pct,
        difference=today_pct - yesterday_pct,
    )
