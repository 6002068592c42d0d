"""
Check-in par QR code : l'élève scanne le QR affiché au réfectoire.

Flux :
  1. Vérifier le contenu du QR (jetons exacts ou chemin reconnu, sans appel réseau)
  2. Déterminer le repas en cours (heure locale + tolérances)
  3. Retrouver l'élève depuis son compte utilisateur
  4. Vérifier que sa formule a commencé et n'a pas expiré (date locale)
  5. Vérifier que sa formule inclut le repas en cours
  6. Repas déjà marqué aujourd'hui → ALREADY_MARKED (succès, pas une erreur)
  7. Sinon marquer via le moteur (source SCAN, compare-and-set)

Deux scans quasi simultanés (double tap, caméra qui déclenche deux fois)
convergent vers la même ligne ; le second renvoie ALREADY_MARKED.
"""

import logging
from typing import Iterable, Sequence

from app.schemas.attendance import FailureKind, MarkSource
from app.schemas.checkin import CheckInResult, CheckInStatus
from app.schemas.meal import MealWindow
from app.services import attendance_service
from app.services.attendance_store import AttendanceStore, StorageError
from app.services.clock import Clock
from app.services.eligibility import is_eligible
from app.services.meal_window_service import resolve_meal

logger = logging.getLogger(__name__)


def validate_qr_code(payload: str, accepted_tokens: Iterable[str], path_pattern: str) -> bool:
    """
    Vérifie le contenu d'un QR code scanné.
    Accepte un jeton exact (ex. mess-management://attendance, mess://attendance)
    ou toute URL contenant le chemin configuré (ex. /attendance/mobile).
    """
    if not payload or not isinstance(payload, str):
        return False
    trimmed = payload.strip()
    if trimmed in set(accepted_tokens):
        return True
    return bool(path_pattern) and path_pattern in trimmed


def _meal_title(meal) -> str:
    return meal.value.capitalize()


def check_in(
    store: AttendanceStore,
    qr_payload: str,
    user_id: str,
    *,
    clock: Clock,
    windows: Sequence[MealWindow],
    accepted_tokens: Iterable[str],
    path_pattern: str,
) -> CheckInResult:
    """Enregistre la présence de l'élève au repas en cours à partir d'un scan QR."""
    if not validate_qr_code(qr_payload, accepted_tokens, path_pattern):
        return CheckInResult.fail(
            FailureKind.INVALID_QR_CODE, "QR code non reconnu. Scannez le QR code du réfectoire."
        )

    now = clock.now()
    meal = resolve_meal(now, windows)
    if meal is None:
        return CheckInResult.fail(
            FailureKind.NO_ACTIVE_MEAL_WINDOW,
            "Aucun repas en cours. Scannez pendant les heures de repas.",
        )

    # Date calendaire locale au moment du scan (jamais une date UTC tronquée)
    today = clock.local_date(now)

    try:
        student = store.get_student_by_user_id(user_id)
        if student is None:
            return CheckInResult.fail(
                FailureKind.STUDENT_NOT_FOUND,
                "Profil élève introuvable. Contactez l'administrateur.",
            )
        if not student.is_active:
            return CheckInResult.fail(
                FailureKind.STUDENT_INACTIVE, "Votre compte est désactivé. Contactez l'administrateur."
            )
        if today < student.join_date:
            return CheckInResult.fail(
                FailureKind.PLAN_NOT_STARTED, "Votre formule n'a pas encore commencé."
            )
        if today > student.end_date:
            return CheckInResult.fail(
                FailureKind.PLAN_EXPIRED, "Votre formule a expiré. Renouvelez-la pour continuer."
            )

        plan_meals = store.get_plan_meals(student.plan_id)
        if not is_eligible(plan_meals, meal):
            return CheckInResult.fail(
                FailureKind.NOT_ELIGIBLE,
                f"Votre formule n'inclut pas le repas {_meal_title(meal)}. Contactez l'administrateur.",
            )

        existing = store.find_record(student.id, today)
    except StorageError as exc:
        logger.error("Check-in impossible pour l'utilisateur %s : %s", user_id, exc)
        return CheckInResult.fail(
            FailureKind.STORAGE_ERROR, "Impossible de vérifier la présence. Réessayez."
        )

    if existing is not None and existing.has_meal(meal):
        return CheckInResult(
            ok=True,
            status=CheckInStatus.ALREADY_MARKED,
            meal=meal,
            message=f"✓ {_meal_title(meal)} déjà enregistré aujourd'hui !",
            record=existing,
        )

    result = attendance_service.mark_meal(
        store, student.id, today, meal, True, MarkSource.SCAN, clock=clock,
    )
    if not result.ok:
        return CheckInResult(ok=False, message=result.failure.message, failure=result.failure)

    # Scan concurrent arrivé entre la lecture et l'écriture : le repas était déjà marqué
    if result.already_set:
        return CheckInResult(
            ok=True,
            status=CheckInStatus.ALREADY_MARKED,
            meal=meal,
            message=f"✓ {_meal_title(meal)} déjà enregistré aujourd'hui !",
            record=result.record,
        )

    logger.info("Check-in QR : élève %s, %s du %s", student.id, meal.value, today)
    return CheckInResult(
        ok=True,
        status=CheckInStatus.MARKED,
        meal=meal,
        message="Présence enregistrée avec succès !",
        record=result.record,
    )
