"""
Modèle SQLAlchemy pour les formules repas (plans).

La colonne `meals` est du texte libre saisi par l'admin ("Breakfast, Lunch",
"All"…) ; elle est convertie en ensemble de repas par l'adaptateur de stockage.
"""

from sqlalchemy import Column, DateTime, Integer, String, func

from app.database import Base


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    meals = Column(String(100), nullable=False)             # Ex : "Breakfast, Lunch, Dinner"
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
