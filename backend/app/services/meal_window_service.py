"""
Résolution du repas en cours à partir de l'heure locale.

Fonctions pures : aucune E/S, l'heure est toujours injectée par l'appelant.
Résolution à la minute (les secondes sont ignorées) ; les deux bornes de
l'intervalle effectif sont incluses : avec 07:30–10:30 et 30 min de tolérance,
07:00 et 11:00 sont encore "petit-déjeuner", 06:59 et 11:01 ne le sont plus.
Une fenêtre ne traverse jamais minuit (refusé par MealWindow).
"""

import logging
from datetime import datetime, time
from typing import Iterable, Optional, Sequence, Tuple, Union

from app.schemas.meal import Meal, MealWindow

logger = logging.getLogger(__name__)


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def effective_bounds(window: MealWindow) -> Tuple[int, int]:
    """Intervalle effectif (tolérance comprise), en minutes depuis minuit."""
    return (
        _minutes(window.normal_start) - window.grace_period_minutes,
        _minutes(window.normal_end) + window.grace_period_minutes,
    )


def _distance_to_normal(minute: int, window: MealWindow) -> int:
    """Distance (min) entre l'instant et l'intervalle normal ; 0 si à l'intérieur."""
    start, end = _minutes(window.normal_start), _minutes(window.normal_end)
    if minute < start:
        return start - minute
    if minute > end:
        return minute - end
    return 0


def resolve_meal(now: Union[datetime, time], windows: Sequence[MealWindow]) -> Optional[Meal]:
    """
    Retourne le repas dont la fenêtre effective contient `now`, ou None.

    Si plusieurs fenêtres se chevauchent (erreur de configuration), on retient
    celle dont l'intervalle *normal* est le plus proche de `now` ; à distance
    égale, la première dans l'ordre de configuration.
    """
    minute = _minutes(now.time() if isinstance(now, datetime) else now)

    candidates = []
    for window in windows:
        start, end = effective_bounds(window)
        if start <= minute <= end:
            candidates.append(window)

    if not candidates:
        return None
    if len(candidates) > 1:
        logger.warning(
            "Fenêtres de repas qui se chevauchent à %02d:%02d : %s",
            minute // 60, minute % 60, ", ".join(w.meal.value for w in candidates),
        )

    best = min(candidates, key=lambda w: _distance_to_normal(minute, w))
    return best.meal


def get_window(meal: Meal, windows: Iterable[MealWindow]) -> Optional[MealWindow]:
    for window in windows:
        if window.meal == meal:
            return window
    return None


def format_window(window: MealWindow) -> str:
    """Libellé de la fenêtre effective, ex. "07:00 - 11:00"."""
    start, end = effective_bounds(window)
    return f"{start // 60:02d}:{start % 60:02d} - {end // 60:02d}:{end % 60:02d}"
