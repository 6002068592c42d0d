"""
Schémas Pydantic des repas et de leurs fenêtres horaires.

Une fenêtre de repas est une valeur de configuration (pas une table) :
horaires normaux + période de tolérance avant le début et après la fin.
Ex : petit-déjeuner 07:30–10:30 avec 30 min de tolérance ⇒ 07:00–11:00.
"""

from datetime import time
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class Meal(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"


class MealWindow(BaseModel):
    """Fenêtre horaire quotidienne d'un repas."""
    meal: Meal
    normal_start: time
    normal_end: time
    grace_period_minutes: int = Field(default=0, ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def start_before_end(self) -> "MealWindow":
        if self.normal_start >= self.normal_end:
            raise ValueError(
                f"Fenêtre {self.meal.value} invalide : le début doit précéder la fin."
            )
        # La résolution compare des minutes du jour sans boucler sur minuit
        start = self.normal_start.hour * 60 + self.normal_start.minute - self.grace_period_minutes
        end = self.normal_end.hour * 60 + self.normal_end.minute + self.grace_period_minutes
        if start < 0 or end > 24 * 60 - 1:
            raise ValueError(
                f"Fenêtre {self.meal.value} invalide : la tolérance ne peut pas dépasser minuit."
            )
        return self
