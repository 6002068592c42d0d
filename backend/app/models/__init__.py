# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles
# (students.plan_id → plans.id, attendances.student_id → students.id).

from app.models.plan import Plan  # noqa: F401  doit précéder student
from app.models.student import Student  # noqa: F401
from app.models.attendance import AttendanceRecord  # noqa: F401
