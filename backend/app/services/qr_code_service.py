"""
QR code de présence affiché dans le réfectoire.

Le QR encode un jeton fixe (mess-management://attendance) : c'est le
téléphone de l'élève qui apporte son identité au moment du scan, le QR
lui-même ne contient aucune donnée personnelle.
"""

import io
import logging

import qrcode

from app.config import settings

logger = logging.getLogger(__name__)


def get_checkin_token() -> str:
    """Jeton principal encodé dans le QR (premier jeton accepté de la configuration)."""
    return settings.QR_ACCEPTED_TOKENS[0]


def generate_qr_image(data: str, box_size: int = 10) -> bytes:
    """Génère une image PNG du QR code encodant la chaîne donnée."""
    qr = qrcode.QRCode(version=1, box_size=box_size, border=4)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    logger.debug("QR code généré pour %s (%d octets)", data, buf.tell())
    return buf.getvalue()
