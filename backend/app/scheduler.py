"""
Planificateur APScheduler : résumé de fréquentation à la fin de chaque repas.

Un job cron par repas, déclenché à la fin de sa fenêtre effective
(tolérance comprise), journalise présents / éligibles pour le jour local.
Les horaires suivent la configuration : changer une fenêtre de repas
déplace le job correspondant au prochain démarrage.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import settings
from app.schemas.meal import Meal
from app.services.attendance_service import get_stats
from app.services.attendance_store import session_store
from app.services.clock import get_clock
from app.services.meal_window_service import effective_bounds

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(timezone=settings.MESS_TIMEZONE)


def _log_meal_summary(meal: Meal) -> None:
    """Tâche planifiée : calcule les statistiques du jour et journalise celles du repas."""
    today = get_clock().local_date()
    try:
        with session_store() as store:
            stats = get_stats(store, today).for_meal(meal)
        logger.info(
            "Fin du repas %s (%s) : %d présents sur %d éligibles (%d%%)",
            meal.value, today, stats.present, stats.eligible_total, stats.percentage,
        )
    except Exception as exc:
        logger.error("Erreur lors du résumé du repas %s : %s", meal.value, exc)


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    if not settings.MEAL_SUMMARY_ENABLED:
        logger.info("Résumés de fin de repas désactivés.")
        return

    for window in settings.get_meal_windows():
        _, end = effective_bounds(window)
        scheduler.add_job(
            _log_meal_summary,
            trigger="cron",
            hour=end // 60,
            minute=end % 60,
            args=[window.meal],
            id=f"meal_summary_{window.meal.value}",
            replace_existing=True,
        )
    scheduler.start()
    logger.info("Scheduler démarré : résumé à la fin de chaque repas.")


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
