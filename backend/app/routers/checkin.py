"""
Router pour le check-in des élèves par QR code.
POST /api/v1/checkin          : scan du QR du réfectoire par l'app élève
GET  /api/v1/checkin/qr-code  : image PNG du QR à afficher (écran admin / impression)
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.config import settings
from app.routers.attendance import raise_for_failure
from app.schemas.checkin import CheckInRequest, CheckInResult
from app.services import checkin_service, qr_code_service
from app.services.attendance_store import SqlAttendanceStore, get_store
from app.services.clock import Clock, get_clock

router = APIRouter(prefix="/api/v1/checkin", tags=["Check-in QR"])


@router.post("", response_model=CheckInResult, summary="Enregistrer sa présence par scan QR")
def check_in(
    data: CheckInRequest,
    store: SqlAttendanceStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """
    Marque l'élève présent au repas en cours.

    - 200 MARKED : présence enregistrée
    - 200 ALREADY_MARKED : re-scan, le repas était déjà enregistré (pas une erreur)
    - 400 QR code non reconnu
    - 404 profil élève introuvable
    - 409 hors heures de repas, formule non commencée / expirée, repas hors formule
    """
    result = checkin_service.check_in(
        store,
        data.qr_payload,
        data.user_id,
        clock=clock,
        windows=settings.get_meal_windows(),
        accepted_tokens=settings.QR_ACCEPTED_TOKENS,
        path_pattern=settings.QR_PATH_PATTERN,
    )
    if not result.ok:
        raise_for_failure(result.failure.kind, result.failure.message)
    return result


@router.get("/qr-code", summary="QR code de présence du réfectoire (PNG)")
def get_qr_code():
    """Retourne l'image PNG du QR code que les élèves scannent à chaque repas."""
    png = qr_code_service.generate_qr_image(qr_code_service.get_checkin_token())
    return Response(content=png, media_type="image/png")
