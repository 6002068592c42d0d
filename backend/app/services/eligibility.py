"""
Éligibilité d'un élève à un repas : le repas fait-il partie de sa formule ?

La formule arrive ici déjà normalisée en ensemble de repas (le texte libre
"Breakfast, Lunch" est parsé par l'adaptateur de stockage). Aucune recherche
de sous-chaîne : on compare des valeurs d'énumération, sans tenir compte de la casse.
"""

from typing import Iterable, Optional, Union

from app.schemas.meal import Meal


def _as_meal(value: Union[Meal, str]) -> Optional[Meal]:
    if isinstance(value, Meal):
        return value
    try:
        return Meal(value.strip().lower())
    except ValueError:
        return None


def is_eligible(plan_meals: Iterable[Union[Meal, str]], meal: Union[Meal, str]) -> bool:
    """True si `meal` appartient aux repas de la formule. Valeur inconnue → False."""
    wanted = _as_meal(meal)
    if wanted is None:
        return False
    return any(_as_meal(m) == wanted for m in plan_meals)
