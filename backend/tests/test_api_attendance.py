"""
Tests d'intégration API pour les présences admin.
Testent POST /api/v1/attendance/mark, POST /api/v1/attendance/bulk,
      GET /api/v1/attendance/stats, /view, /current-meal, /trend, /student/{id},
      PATCH et DELETE /api/v1/attendance/{record_id}
"""

from datetime import date, datetime
from unittest.mock import patch

from app.schemas.attendance import (
    AttendanceRecordResponse,
    AttendanceResult,
    AttendanceStats,
    AttendanceTrend,
    AttendanceView,
    BulkFailure,
    BulkMarkResult,
    CurrentMealStatus,
    DayMeals,
    FailureKind,
    HistoryRange,
    MealStats,
    StudentAttendanceHistory,
)
from app.schemas.meal import Meal
from app.services.attendance_store import StorageError


# --- Helpers ---

def make_record(**kwargs) -> AttendanceRecordResponse:
    return AttendanceRecordResponse(
        id=kwargs.get("id", 10),
        student_id=kwargs.get("student_id", 1),
        date=kwargs.get("date", date(2026, 3, 10)),
        breakfast=kwargs.get("breakfast", False),
        lunch=kwargs.get("lunch", True),
        dinner=kwargs.get("dinner", False),
        scanned_at=kwargs.get("scanned_at", None),
        updated_at=kwargs.get("updated_at", datetime(2026, 3, 10, 13, 0)),
    )


def make_stats(**kwargs) -> AttendanceStats:
    stats = MealStats(present=3, eligible_total=4, percentage=75)
    return AttendanceStats(
        date=date(2026, 3, 10),
        breakfast=stats,
        lunch=stats,
        dinner=MealStats(present=0, eligible_total=0, percentage=0),
        attendance_percentage=kwargs.get("attendance_percentage", 80),
    )


# ============================================================
# POST /api/v1/attendance/mark
# ============================================================

def test_mark_meal_succes(client):
    with patch("app.routers.attendance.attendance_service.mark_meal") as mock:
        mock.return_value = AttendanceResult.success(make_record())

        response = client.post(
            "/api/v1/attendance/mark",
            json={"student_id": 1, "date": "2026-03-10", "meal": "lunch", "present": True},
        )

    assert response.status_code == 200
    data = response.json()
    assert data["lunch"] is True
    assert data["student_id"] == 1


def test_mark_meal_repas_hors_formule_409(client):
    with patch("app.routers.attendance.attendance_service.mark_meal") as mock:
        mock.return_value = AttendanceResult.fail(FailureKind.NOT_ELIGIBLE, "Hors formule")

        response = client.post(
            "/api/v1/attendance/mark",
            json={"student_id": 1, "date": "2026-03-10", "meal": "dinner"},
        )

    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "NotEligible"


def test_mark_meal_eleve_introuvable_404(client):
    with patch("app.routers.attendance.attendance_service.mark_meal") as mock:
        mock.return_value = AttendanceResult.fail(FailureKind.STUDENT_NOT_FOUND, "Introuvable")

        response = client.post(
            "/api/v1/attendance/mark",
            json={"student_id": 99, "date": "2026-03-10", "meal": "lunch"},
        )

    assert response.status_code == 404


def test_mark_meal_stockage_indisponible_503(client):
    with patch("app.routers.attendance.attendance_service.mark_meal") as mock:
        mock.return_value = AttendanceResult.fail(FailureKind.STORAGE_ERROR, "BDD indisponible")

        response = client.post(
            "/api/v1/attendance/mark",
            json={"student_id": 1, "date": "2026-03-10", "meal": "lunch"},
        )

    assert response.status_code == 503


def test_mark_meal_repas_inconnu_422(client):
    response = client.post(
        "/api/v1/attendance/mark",
        json={"student_id": 1, "date": "2026-03-10", "meal": "brunch"},
    )
    assert response.status_code == 422


# ============================================================
# POST /api/v1/attendance/bulk
# ============================================================

def test_bulk_echec_partiel_200(client):
    with patch("app.routers.attendance.bulk_service.mark_bulk") as mock:
        mock.return_value = BulkMarkResult(
            success_count=4,
            failures=[BulkFailure(student_id=5, reason=FailureKind.NOT_ELIGIBLE, message="Hors formule")],
        )

        response = client.post(
            "/api/v1/attendance/bulk",
            json={"student_ids": [1, 2, 3, 4, 5], "date": "2026-03-10", "meal": "dinner"},
        )

    assert response.status_code == 200
    data = response.json()
    assert data["success_count"] == 4
    assert data["failures"][0]["reason"] == "NotEligible"


def test_bulk_liste_vide_422(client):
    response = client.post(
        "/api/v1/attendance/bulk",
        json={"student_ids": [], "date": "2026-03-10", "meal": "dinner"},
    )
    assert response.status_code == 422


# ============================================================
# GET /api/v1/attendance/stats, /view, /current-meal
# ============================================================

def test_stats_succes(client):
    with patch("app.routers.attendance.attendance_service.get_stats") as mock:
        mock.return_value = make_stats()

        response = client.get("/api/v1/attendance/stats", params={"date": "2026-03-10"})

    assert response.status_code == 200
    data = response.json()
    assert data["lunch"]["percentage"] == 75
    assert data["attendance_percentage"] == 80


def test_stats_date_manquante_422(client):
    response = client.get("/api/v1/attendance/stats")
    assert response.status_code == 422


def test_stats_stockage_indisponible_503(client):
    with patch("app.routers.attendance.attendance_service.get_stats") as mock:
        mock.side_effect = StorageError("timeout")

        response = client.get("/api/v1/attendance/stats", params={"date": "2026-03-10"})

    assert response.status_code == 503
    assert response.json()["detail"]["kind"] == "StorageError"


def test_view_repas_explicite(client):
    with patch("app.routers.attendance.attendance_service.get_attendance_view") as mock:
        mock.return_value = AttendanceView(
            date=date(2026, 3, 10), meal=Meal.LUNCH, stats=make_stats(), present=[], missing=[],
        )

        response = client.get("/api/v1/attendance/view", params={"date": "2026-03-10", "meal": "lunch"})

    assert response.status_code == 200
    assert response.json()["meal"] == "lunch"
    assert mock.call_args.args[2] == Meal.LUNCH


def test_view_sans_repas_hors_heures_409(client):
    with patch("app.routers.attendance.resolve_meal", return_value=None):
        response = client.get("/api/v1/attendance/view", params={"date": "2026-03-10"})

    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "NoActiveMealWindow"


def test_view_sans_repas_utilise_le_repas_en_cours(client):
    with patch("app.routers.attendance.resolve_meal", return_value=Meal.DINNER), \
         patch("app.routers.attendance.attendance_service.get_attendance_view") as mock:
        mock.return_value = AttendanceView(
            date=date(2026, 3, 10), meal=Meal.DINNER, stats=make_stats(), present=[], missing=[],
        )

        response = client.get("/api/v1/attendance/view", params={"date": "2026-03-10"})

    assert response.status_code == 200
    assert mock.call_args.args[2] == Meal.DINNER


def test_current_meal(client):
    with patch("app.routers.attendance.attendance_service.get_current_meal_status") as mock:
        mock.return_value = CurrentMealStatus(
            meal=Meal.BREAKFAST, time_window="07:00 - 11:00", present=12, total=20, percentage=60,
        )

        response = client.get("/api/v1/attendance/current-meal")

    assert response.status_code == 200
    data = response.json()
    assert data["meal"] == "breakfast"
    assert data["time_window"] == "07:00 - 11:00"


# ============================================================
# GET /api/v1/attendance/trend et /student/{student_id}
# ============================================================

def test_trend(client):
    with patch("app.routers.attendance.attendance_service.get_attendance_trend") as mock:
        mock.return_value = AttendanceTrend(today_percentage=80, yesterday_percentage=70, difference=10)

        response = client.get("/api/v1/attendance/trend")

    assert response.status_code == 200
    assert response.json()["difference"] == 10


def test_historique_eleve_mois(client):
    with patch("app.routers.attendance.attendance_service.get_student_history") as mock:
        today = DayMeals(date=date(2026, 3, 10), breakfast=True)
        mock.return_value = StudentAttendanceHistory(
            student_id=1, range=HistoryRange.MONTH,
            start_date=date(2026, 3, 1), end_date=date(2026, 3, 10),
            today=today, records=[today], days_present=1, meals_attended=1,
        )

        response = client.get("/api/v1/attendance/student/1", params={"range": "month"})

    assert response.status_code == 200
    data = response.json()
    assert data["range"] == "month"
    assert data["today"]["breakfast"] is True
    assert mock.call_args.args[2] == HistoryRange.MONTH


def test_historique_eleve_semaine_par_defaut(client):
    with patch("app.routers.attendance.attendance_service.get_student_history") as mock:
        mock.return_value = None
        client.get("/api/v1/attendance/student/1")

    assert mock.call_args.args[2] == HistoryRange.WEEK


def test_historique_eleve_introuvable_404(client):
    with patch("app.routers.attendance.attendance_service.get_student_history", return_value=None):
        response = client.get("/api/v1/attendance/student/99")

    assert response.status_code == 404


def test_historique_periode_inconnue_422(client):
    response = client.get("/api/v1/attendance/student/1", params={"range": "year"})
    assert response.status_code == 422


def test_historique_stockage_indisponible_503(client):
    with patch("app.routers.attendance.attendance_service.get_student_history") as mock:
        mock.side_effect = StorageError("connexion perdue")

        response = client.get("/api/v1/attendance/student/1")

    assert response.status_code == 503


# ============================================================
# PATCH / DELETE /api/v1/attendance/{record_id}
# ============================================================

def test_update_record_succes(client):
    with patch("app.routers.attendance.attendance_service.update_record") as mock:
        mock.return_value = AttendanceResult.success(make_record(breakfast=True, lunch=False))

        response = client.patch("/api/v1/attendance/10", json={"breakfast": True, "lunch": False})

    assert response.status_code == 200
    # Seuls les repas fournis sont transmis au moteur
    assert mock.call_args.args[2] == {Meal.BREAKFAST: True, Meal.LUNCH: False}


def test_update_record_aucun_champ_400(client):
    with patch("app.routers.attendance.attendance_service.update_record") as mock:
        mock.return_value = AttendanceResult.fail(FailureKind.NO_FIELDS_PROVIDED, "Aucun repas")

        response = client.patch("/api/v1/attendance/10", json={})

    assert response.status_code == 400


def test_update_record_id_invalide_422(client):
    response = client.patch("/api/v1/attendance/0", json={"lunch": True})
    assert response.status_code == 422


def test_delete_record_204(client):
    with patch("app.routers.attendance.attendance_service.delete_record") as mock:
        mock.return_value = AttendanceResult.success()

        response = client.delete("/api/v1/attendance/10")

    assert response.status_code == 204


def test_delete_record_deja_supprime_404(client):
    with patch("app.routers.attendance.attendance_service.delete_record") as mock:
        mock.return_value = AttendanceResult.fail(FailureKind.RECORD_NOT_FOUND, "Déjà supprimée")

        response = client.delete("/api/v1/attendance/10")

    assert response.status_code == 404
