"""
Schémas Pydantic pour le check-in par QR code (scan élève).
Endpoint : POST /api/v1/checkin
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator

from app.schemas.attendance import AttendanceFailure, AttendanceRecordResponse, FailureKind
from app.schemas.meal import Meal


class CheckInStatus(str, Enum):
    MARKED = "MARKED"
    ALREADY_MARKED = "ALREADY_MARKED"  # Re-scan : confirmation, pas une erreur


class CheckInRequest(BaseModel):
    qr_payload: str
    user_id: str

    @field_validator("user_id")
    @classmethod
    def user_id_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("L'identifiant utilisateur ne peut pas être vide.")
        return v.strip()


class CheckInResult(BaseModel):
    """Réponse du scan : succès (MARKED / ALREADY_MARKED) ou échec typé."""
    ok: bool
    status: Optional[CheckInStatus] = None
    meal: Optional[Meal] = None
    message: str
    record: Optional[AttendanceRecordResponse] = None
    failure: Optional[AttendanceFailure] = None

    @property
    def already_marked(self) -> bool:
        return self.status == CheckInStatus.ALREADY_MARKED

    @classmethod
    def fail(cls, kind: FailureKind, message: str) -> "CheckInResult":
        return cls(ok=False, message=message, failure=AttendanceFailure(kind=kind, message=message))
