"""
Router admin pour les présences aux repas.
Marquage unitaire, marquage groupé, correction, suppression,
statistiques du jour, écran présents/absents, bandeau "repas en cours",
tendance et historique d'un élève.
"""

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from app.config import settings
from app.schemas.attendance import (
    AttendancePatch,
    AttendanceRecordResponse,
    AttendanceResult,
    AttendanceStats,
    AttendanceTrend,
    AttendanceView,
    BulkMarkRequest,
    BulkMarkResult,
    CurrentMealStatus,
    FailureKind,
    HistoryRange,
    MarkMealRequest,
    MarkSource,
    StudentAttendanceHistory,
)
from app.schemas.meal import Meal
from app.services import attendance_service, bulk_service
from app.services.attendance_store import SqlAttendanceStore, StorageError, get_store, session_store
from app.services.clock import Clock, get_clock
from app.services.meal_window_service import resolve_meal

router = APIRouter(prefix="/api/v1/attendance", tags=["Présences"])

# Code HTTP associé à chaque type d'échec du moteur
FAILURE_STATUS = {
    FailureKind.STUDENT_NOT_FOUND: 404,
    FailureKind.RECORD_NOT_FOUND: 404,
    FailureKind.STUDENT_INACTIVE: 409,
    FailureKind.PLAN_NOT_STARTED: 409,
    FailureKind.PLAN_EXPIRED: 409,
    FailureKind.NOT_ELIGIBLE: 409,
    FailureKind.NO_ACTIVE_MEAL_WINDOW: 409,
    FailureKind.NO_FIELDS_PROVIDED: 400,
    FailureKind.INVALID_QR_CODE: 400,
    FailureKind.STORAGE_ERROR: 503,
}


def raise_for_failure(kind: FailureKind, message: str) -> None:
    raise HTTPException(
        status_code=FAILURE_STATUS.get(kind, 400),
        detail={"kind": kind.value, "message": message},
    )


def _record_or_raise(result: AttendanceResult) -> Optional[AttendanceRecordResponse]:
    if not result.ok:
        raise_for_failure(result.failure.kind, result.failure.message)
    return result.record


@router.post("/mark", response_model=AttendanceRecordResponse, summary="Marquer un repas pour un élève")
def mark_meal(
    data: MarkMealRequest,
    store: SqlAttendanceStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """
    Marque (present=true) ou démarque (present=false) un repas pour un élève.

    - 404 si l'élève est introuvable
    - 409 si l'élève est inactif à cette date ou si sa formule n'inclut pas le repas
    - Idempotent : remarquer un repas déjà présent renvoie la ligne inchangée
    """
    result = attendance_service.mark_meal(
        store, data.student_id, data.date, data.meal, data.present, MarkSource.MANUAL, clock=clock,
    )
    return _record_or_raise(result)


@router.post("/bulk", response_model=BulkMarkResult, summary="Marquer un repas pour plusieurs élèves")
def mark_bulk(data: BulkMarkRequest, clock: Clock = Depends(get_clock)):
    """
    Applique le même marquage à une liste d'élèves.
    Toujours 200 : les échecs individuels (inéligible, inactif…) sont détaillés
    dans `failures` sans interrompre le reste du lot.
    """
    return bulk_service.mark_bulk(
        session_store,
        data.student_ids,
        data.date,
        data.meal,
        data.present,
        clock=clock,
        max_workers=settings.BULK_MAX_WORKERS,
    )


@router.get("/stats", response_model=AttendanceStats, summary="Statistiques d'une journée")
def get_stats(
    date: dt.date = Query(..., description="Jour au format AAAA-MM-JJ"),
    store: SqlAttendanceStore = Depends(get_store),
):
    """Présents / éligibles et pourcentage pour chacun des trois repas."""
    try:
        return attendance_service.get_stats(store, date)
    except StorageError as e:
        raise_for_failure(FailureKind.STORAGE_ERROR, str(e))


@router.get("/view", response_model=AttendanceView, summary="Présents et absents d'un repas")
def get_attendance_view(
    date: dt.date = Query(..., description="Jour au format AAAA-MM-JJ"),
    meal: Optional[Meal] = Query(None, description="Repas ; par défaut le repas en cours"),
    store: SqlAttendanceStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """
    Liste les élèves éligibles au repas, séparés en présents et absents.
    Sans repas précisé, utilise le repas en cours ; 409 en dehors des heures de repas.
    """
    meal = meal or resolve_meal(clock.now(), settings.get_meal_windows())
    if meal is None:
        raise_for_failure(FailureKind.NO_ACTIVE_MEAL_WINDOW, "Aucun repas en cours : précisez le repas.")
    try:
        return attendance_service.get_attendance_view(store, date, meal)
    except StorageError as e:
        raise_for_failure(FailureKind.STORAGE_ERROR, str(e))


@router.get("/current-meal", response_model=CurrentMealStatus, summary="Repas en cours")
def get_current_meal(
    store: SqlAttendanceStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """Repas en cours, sa fenêtre horaire et sa fréquentation du jour."""
    try:
        return attendance_service.get_current_meal_status(store, clock, settings.get_meal_windows())
    except StorageError as e:
        raise_for_failure(FailureKind.STORAGE_ERROR, str(e))


@router.get("/trend", response_model=AttendanceTrend, summary="Tendance aujourd'hui / hier")
def get_trend(
    store: SqlAttendanceStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """Pourcentage de repas servis aujourd'hui, hier, et l'écart entre les deux."""
    try:
        return attendance_service.get_attendance_trend(store, clock)
    except StorageError as e:
        raise_for_failure(FailureKind.STORAGE_ERROR, str(e))


@router.get(
    "/student/{student_id}",
    response_model=StudentAttendanceHistory,
    summary="Historique des présences d'un élève",
)
def get_student_history(
    student_id: int = Path(..., gt=0),
    history_range: HistoryRange = Query(HistoryRange.WEEK, alias="range", description="week, month ou all"),
    store: SqlAttendanceStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """
    Repas marqués aujourd'hui et historique de l'élève sur la période demandée.
    404 si l'élève est introuvable.
    """
    try:
        history = attendance_service.get_student_history(store, student_id, history_range, clock=clock)
    except StorageError as e:
        raise_for_failure(FailureKind.STORAGE_ERROR, str(e))
    if history is None:
        raise_for_failure(FailureKind.STUDENT_NOT_FOUND, f"Élève {student_id} introuvable.")
    return history


@router.patch("/{record_id}", response_model=AttendanceRecordResponse, summary="Corriger une présence")
def update_record(
    data: AttendancePatch,
    record_id: int = Path(..., gt=0),
    store: SqlAttendanceStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """
    Modifie un ou plusieurs repas d'une ligne existante.
    400 si aucun repas n'est fourni, 404 si la ligne est introuvable,
    409 si un repas passé à true n'est pas inclus dans la formule.
    """
    result = attendance_service.update_record(store, record_id, data.flags(), clock=clock)
    return _record_or_raise(result)


@router.delete("/{record_id}", status_code=204, summary="Supprimer une présence")
def delete_record(
    record_id: int = Path(..., gt=0),
    store: SqlAttendanceStore = Depends(get_store),
):
    """
    Supprime la ligne complète (les trois repas).
    404 si elle n'existe pas ou a déjà été supprimée.
    """
    result = attendance_service.delete_record(store, record_id)
    _record_or_raise(result)
