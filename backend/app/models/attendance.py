"""
Modèle SQLAlchemy pour les présences aux repas.

Une seule ligne par (élève, jour) : contrainte UNIQUE en base, exploitée par
l'upsert atomique (INSERT ... ON CONFLICT) de l'adaptateur de stockage.
- breakfast / lunch / dinner : présence à chacun des trois repas
- scanned_at : posé uniquement à la création par un scan QR, jamais modifié ensuite
"""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, UniqueConstraint, func

from app.database import Base


class AttendanceRecord(Base):
    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint("student_id", "date", name="uq_attendance_student_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)                     # Jour calendaire local (sans heure)

    breakfast = Column(Boolean, default=False, nullable=False)
    lunch = Column(Boolean, default=False, nullable=False)
    dinner = Column(Boolean, default=False, nullable=False)

    scanned_at = Column(DateTime(timezone=True), nullable=True)   # Premier scan QR (création)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
