"""
Modèle SQLAlchemy pour la table students.
Un élève est rattaché à une formule et n'est éligible aux repas qu'entre
join_date et end_date (bornes incluses) tant que is_active est vrai.
"""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, func

from app.database import Base


class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), unique=True, nullable=True)   # Compte de connexion de l'élève
    name = Column(String(200), nullable=False)
    roll_number = Column(String(50), nullable=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    join_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
